"""
Interactive subdataset and band selection.

The dialogue is a small state machine. Each transition takes the current
state and one user choice and returns the next state; invalid choices raise
InvalidSelectionError and leave the caller holding the previous state, so the
session can re-prompt without losing anything.

    SelectingSubdataset --choose_subdataset--> SelectingBands
    SelectingBands      --choose_bands------> Ready

Plain single-dataset rasters start directly in SelectingBands. Once Ready,
the explorer prints the equivalent non-interactive command so the selection
can be reused in scripts.
"""

import logging
import shlex
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

from src.config import PROGRAM_NAME
from src.gisview.errors import InvalidSelectionError
from src.gisview.raster_source import RasterSource, SubdatasetEntry

logger = logging.getLogger(__name__)

# (label, bands) in the order they are offered
BAND_PRESETS = (
    ("True color (3,2,1) - Red, Green, Blue", (3, 2, 1)),
    ("False color (4,3,2) - NIR, Red, Green", (4, 3, 2)),
    ("Color infrared (4,2,1) - NIR, Green, Blue", (4, 2, 1)),
    ("Agriculture (4,3,1) - NIR, Red, Blue", (4, 3, 1)),
)


@dataclass(frozen=True)
class SelectingSubdataset:
    path: str
    entries: Tuple[SubdatasetEntry, ...]


@dataclass(frozen=True)
class SelectingBands:
    path: str
    """Dataset to render: the input file or the chosen subdataset identifier."""

    band_count: int
    subdataset: Optional[SubdatasetEntry] = None


@dataclass(frozen=True)
class Ready:
    path: str
    bands: Tuple[int, ...]
    subdataset: Optional[SubdatasetEntry] = None


ExplorerState = Union[SelectingSubdataset, SelectingBands, Ready]


def start(path: str, entries: Sequence[SubdatasetEntry], band_count: int) -> ExplorerState:
    """
    Entry state for a dataset.

    Containers with at least one subdataset start with subdataset selection;
    anything else goes straight to band selection.
    """
    if entries:
        return SelectingSubdataset(path, tuple(entries))
    if band_count <= 0:
        raise InvalidSelectionError(f"{path} has no raster bands or subdatasets")
    return SelectingBands(path, band_count)


def choose_subdataset(state: SelectingSubdataset, index: int) -> SelectingBands:
    """
    Pick a subdataset by its 1-based menu position.

    Raises:
        InvalidSelectionError: If the index is out of range or the subdataset
            has no readable bands
    """
    if not isinstance(state, SelectingSubdataset):
        raise TypeError(f"Cannot choose a subdataset in state {type(state).__name__}")
    count = len(state.entries)
    if not 1 <= index <= count:
        raise InvalidSelectionError(f"Subdataset {index} out of range (1-{count})")

    entry = state.entries[index - 1]
    if entry.band_count <= 0:
        raise InvalidSelectionError(f"Subdataset '{entry.label}' has no readable raster bands")
    logger.debug(f"Selected subdataset {entry.identifier}")
    return SelectingBands(entry.identifier, entry.band_count, entry)


def choose_bands(state: SelectingBands, bands: Sequence[int]) -> Ready:
    """
    Pick 1 (grayscale) or 3 (RGB) bands.

    Raises:
        InvalidSelectionError: For 0, 2 or more than 3 bands, or any index
            outside 1..band_count
    """
    if not isinstance(state, SelectingBands):
        raise TypeError(f"Cannot choose bands in state {type(state).__name__}")
    bands = tuple(bands)
    if len(bands) not in (1, 3):
        raise InvalidSelectionError(
            f"Select 1 band (grayscale) or 3 bands (RGB), got {len(bands)}"
        )
    for b in bands:
        if not 1 <= b <= state.band_count:
            raise InvalidSelectionError(
                f"Band {b} out of range ({state.band_count} bands available)"
            )
    return Ready(state.path, bands, state.subdataset)


def parse_band_list(text: str) -> Tuple[int, ...]:
    """
    Parse '4,3,2' (commas and/or spaces) into band indices.

    Raises:
        InvalidSelectionError: If any item is not an integer
    """
    items = [item for item in text.replace(",", " ").split() if item]
    try:
        return tuple(int(item) for item in items)
    except ValueError:
        raise InvalidSelectionError(f"Not a band list: '{text}'") from None


def band_presets(band_count: int) -> List[Tuple[str, Tuple[int, ...]]]:
    """Presets whose bands all exist in a dataset with ``band_count`` bands."""
    return [(label, bands) for label, bands in BAND_PRESETS if max(bands) <= band_count]


def format_bands(bands: Sequence[int]) -> str:
    return ",".join(str(b) for b in bands)


def equivalent_command(ready: Ready, program: str = PROGRAM_NAME) -> str:
    """Non-interactive command reproducing a finished selection."""
    return f"{program} {shlex.quote(ready.path)} --bands {format_bands(ready.bands)}"


def run_interactive(
    path: str,
    source: Optional[RasterSource] = None,
    prompt: Callable[[str], str] = input,
    echo: Callable[[str], None] = print,
) -> Ready:
    """
    Run the selection dialogue on a terminal.

    Args:
        path: File given on the command line
        source: Raster source (default: RasterSource())
        prompt: Reads one line of user input
        echo: Writes one line of output

    Returns:
        The Ready state; the equivalent command has been echoed

    Raises:
        EOFError, KeyboardInterrupt: If the user aborts input
    """
    source = source or RasterSource()
    with source.open(path) as dataset:
        entries = source.list_subdatasets(dataset)
        band_count = dataset.count

    state = start(path, entries, band_count)
    while not isinstance(state, Ready):
        try:
            if isinstance(state, SelectingSubdataset):
                state = _ask_subdataset(state, prompt, echo)
            else:
                state = _ask_bands(state, prompt, echo)
        except InvalidSelectionError as e:
            echo(f"Invalid selection: {e}")

    echo("\nEquivalent command:")
    echo(f"  {equivalent_command(state)}\n")
    return state


def _ask_menu(items: Sequence[str], question: str, prompt, echo) -> int:
    for i, item in enumerate(items, start=1):
        echo(f"  {i}) {item}")
    answer = prompt(f"{question} [1-{len(items)}, default 1]: ").strip()
    if not answer:
        return 1
    try:
        return int(answer)
    except ValueError:
        raise InvalidSelectionError(f"Not a number: '{answer}'") from None


def _ask_subdataset(state: SelectingSubdataset, prompt, echo) -> SelectingBands:
    echo("Available subdatasets:\n")
    labels = [entry.summary() for entry in state.entries]
    return choose_subdataset(state, _ask_menu(labels, "Select subdataset", prompt, echo))


def _ask_bands(state: SelectingBands, prompt, echo) -> Ready:
    if state.band_count == 1:
        return choose_bands(state, (1,))

    options = band_presets(state.band_count)
    labels = [label for label, _ in options]
    labels.append("Single band grayscale")
    if state.band_count >= 3:
        labels.append("Custom bands")

    echo(f"Select band combination ({state.band_count} bands available):")
    choice = _ask_menu(labels, "Band combination", prompt, echo)
    if not 1 <= choice <= len(labels):
        raise InvalidSelectionError(f"Choice {choice} out of range (1-{len(labels)})")

    if choice <= len(options):
        return choose_bands(state, options[choice - 1][1])
    if labels[choice - 1] == "Single band grayscale":
        bands = parse_band_list(prompt(f"Band for grayscale [1-{state.band_count}]: "))
        if len(bands) != 1:
            raise InvalidSelectionError(f"Enter exactly one band, got {len(bands)}")
        return choose_bands(state, bands)
    answer = prompt("Bands for red, green, blue (e.g. 4,3,2): ")
    return choose_bands(state, parse_band_list(answer))
