"""
Tests for resolution reduction.

Tests output sizing, overview selection and area-average downsampling.
"""

import pytest
import numpy as np


class TestOutputShape:
    """Tests for output_shape function."""

    def test_landscape(self):
        """The larger side becomes the target."""
        from src.gisview.transforms import output_shape

        assert output_shape(1000, 500, 100) == (100, 50)

    def test_portrait(self):
        """Height is the larger side for portrait rasters."""
        from src.gisview.transforms import output_shape

        assert output_shape(300, 900, 90) == (30, 90)

    def test_never_enlarges(self):
        """A target at or above the source size returns the source size."""
        from src.gisview.transforms import output_shape

        assert output_shape(40, 20, 40) == (40, 20)
        assert output_shape(40, 20, 4000) == (40, 20)

    @pytest.mark.parametrize(
        "width,height,target",
        [(1000, 333, 97), (7, 1999, 50), (4096, 3001, 640), (123, 457, 12)],
    )
    def test_aspect_within_one_pixel(self, width, height, target):
        """Output aspect ratio matches the source within one pixel."""
        from src.gisview.transforms import output_shape

        out_w, out_h = output_shape(width, height, target)
        assert max(out_w, out_h) == target
        assert abs(out_w - width * out_h / height) <= 1.0

    def test_thin_raster_keeps_one_pixel(self):
        """A very thin raster is never reduced to zero pixels."""
        from src.gisview.transforms import output_shape

        assert output_shape(10000, 1, 100) == (100, 1)

    def test_empty_raster(self):
        """Zero width or height raises EmptyRasterError."""
        from src.gisview.errors import EmptyRasterError
        from src.gisview.transforms import output_shape

        with pytest.raises(EmptyRasterError):
            output_shape(0, 10, 5)
        with pytest.raises(EmptyRasterError):
            output_shape(10, 0, 5)

    def test_invalid_target(self):
        """Target must be positive."""
        from src.gisview.transforms import output_shape

        with pytest.raises(ValueError):
            output_shape(10, 10, 0)


class TestPlanRead:
    """Tests for plan_read function."""

    def test_max_res_limits_larger_side(self):
        """A positive max_res behaves like output_shape."""
        from src.gisview.transforms import plan_read

        assert plan_read(8000, 4000, 4000, 4000 * 4000) == (4000, 2000)

    def test_full_resolution_under_cap(self):
        """max_res 0 reads full resolution when under the pixel cap."""
        from src.gisview.transforms import plan_read

        assert plan_read(5000, 3000, 0, 4000 * 4000) == (5000, 3000)

    def test_full_resolution_over_cap(self):
        """max_res 0 scales down to the pixel cap."""
        from src.gisview.transforms import plan_read

        w, h = plan_read(10000, 10000, 0, 100 * 100)
        assert w * h <= 100 * 100
        assert w == h
        assert w >= 99


class TestSelectOverview:
    """Tests for select_overview function."""

    def test_picks_smallest_sufficient_level(self):
        """The chosen overview is the smallest that is still >= target."""
        from src.gisview.transforms import select_overview

        sizes = [(2000, 1000), (1000, 500), (500, 250), (250, 125)]
        assert select_overview(sizes, 600) == 1
        assert select_overview(sizes, 500) == 2

    def test_none_when_all_too_small(self):
        """No overview is used if every level is smaller than the target."""
        from src.gisview.transforms import select_overview

        assert select_overview([(100, 50), (50, 25)], 400) is None

    def test_no_overviews(self):
        """An empty overview list selects nothing."""
        from src.gisview.transforms import select_overview

        assert select_overview([], 100) is None


class TestDownsample:
    """Tests for downsample function."""

    def test_reduces_to_target(self):
        """The larger output side equals the target."""
        from src.gisview.compose import RgbBuffer
        from src.gisview.transforms import downsample

        buf = RgbBuffer(np.zeros((100, 200, 3), dtype=np.uint8))
        out = downsample(buf, 50)
        assert out.size == (50, 25)

    def test_target_at_or_above_source_is_copy(self, rgb_buffer):
        """No reduction returns an equal but independent buffer."""
        from src.gisview.transforms import downsample

        out = downsample(rgb_buffer, 1000)
        assert np.array_equal(out.pixels, rgb_buffer.pixels)
        assert out is not rgb_buffer
        assert not np.shares_memory(out.pixels, rgb_buffer.pixels)

    def test_uniform_color_preserved(self):
        """Averaging a flat image keeps its color."""
        from src.gisview.compose import RgbBuffer
        from src.gisview.transforms import downsample

        pixels = np.empty((90, 60, 3), dtype=np.uint8)
        pixels[:] = (12, 200, 77)
        out = downsample(RgbBuffer(pixels), 17)
        assert np.all(out.pixels == (12, 200, 77))

    def test_logs_downsampling(self, caplog):
        """Reductions are reported at INFO level."""
        import logging
        from src.gisview.compose import RgbBuffer
        from src.gisview.transforms import downsample

        buf = RgbBuffer(np.zeros((40, 80, 3), dtype=np.uint8))
        with caplog.at_level(logging.INFO, logger="src.gisview.transforms"):
            downsample(buf, 20)
        assert "Downsampling 80x40 -> 20x10 for display" in caplog.text


class TestAreaAverage:
    """Tests for area_average function."""

    def test_integer_factor_is_block_mean(self):
        """A 2x reduction averages each 2x2 block."""
        from src.gisview.transforms import area_average

        pixels = np.zeros((2, 2, 3), dtype=np.uint8)
        pixels[0, 0] = (100, 0, 0)
        pixels[0, 1] = (200, 0, 0)
        pixels[1, 0] = (0, 40, 0)
        pixels[1, 1] = (0, 40, 8)
        out = area_average(pixels, 1, 1)
        assert out[0, 0].tolist() == [75, 20, 2]

    def test_fractional_factor_preserves_mean(self):
        """Area averaging preserves the overall mean brightness."""
        from src.gisview.transforms import area_average

        rng = np.random.default_rng(3)
        pixels = rng.integers(0, 256, size=(70, 110, 3), dtype=np.uint8)
        out = area_average(pixels, 33, 21)

        assert out.shape == (21, 33, 3)
        assert abs(out.astype(float).mean() - pixels.astype(float).mean()) < 1.0

    def test_box_weights_rows_sum_to_one(self):
        """Each output pixel's weights cover exactly one pixel's worth of area."""
        from src.gisview.transforms import _box_weights

        weights = _box_weights(10, 3)
        assert weights.shape == (3, 10)
        assert np.allclose(np.asarray(weights.sum(axis=1)).ravel(), 1.0)


class TestFitWithin:
    """Tests for fit_within function."""

    def test_shrinks_to_box(self):
        """The result fits inside the bounding box with aspect preserved."""
        from src.gisview.compose import RgbBuffer
        from src.gisview.transforms import fit_within

        buf = RgbBuffer(np.zeros((100, 400, 3), dtype=np.uint8))
        out = fit_within(buf, 80, 80)
        assert out.size == (80, 20)

    def test_never_enlarges(self, rgb_buffer):
        """A buffer already inside the box is copied unchanged."""
        from src.gisview.transforms import fit_within

        out = fit_within(rgb_buffer, 500, 500)
        assert out.size == rgb_buffer.size
