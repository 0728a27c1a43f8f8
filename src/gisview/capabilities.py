"""
Terminal graphics capability resolution.

Turns environment signals (and at most one bounded terminal query) into a
single display protocol. Protocols are ranked Kitty > iTerm2 > Sixel > Blocks;
the first one whose support signal is present wins, and an explicit user
override always beats auto-detection.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class Protocol(Enum):
    """Terminal output protocols, declared from highest to lowest fidelity."""

    KITTY = "kitty"
    ITERM2 = "iterm"
    SIXEL = "sixel"
    BLOCKS = "blocks"

    @property
    def rank(self) -> int:
        return PROTOCOL_ORDER.index(self)

    def __str__(self):
        return self.value


PROTOCOL_ORDER = (Protocol.KITTY, Protocol.ITERM2, Protocol.SIXEL, Protocol.BLOCKS)

# Accepted spellings for --protocol
PROTOCOL_ALIASES = {
    "kitty": Protocol.KITTY,
    "iterm": Protocol.ITERM2,
    "iterm2": Protocol.ITERM2,
    "sixel": Protocol.SIXEL,
    "blocks": Protocol.BLOCKS,
    "ansi": Protocol.BLOCKS,
}

KITTY_TERM_PROGRAMS = {"ghostty", "wezterm"}
SIXEL_TERMS = ("sixel", "foot", "mlterm", "yaft", "contour")


@dataclass(frozen=True)
class CapabilityInputs:
    """Everything the resolver is allowed to look at."""

    env: Mapping[str, str] = field(default_factory=dict)
    """Environment variables (TERM, TERM_PROGRAM, ...)."""

    override: Optional[str] = None
    """Protocol name forced by the user, e.g. from --protocol."""

    query: Optional[Callable[[], Optional[bool]]] = None
    """
    Bounded terminal query reporting sixel support: True, False, or None when
    the terminal did not answer in time.
    """


@dataclass(frozen=True)
class CapabilityDescriptor:
    """The protocol chosen for this invocation and how it was chosen."""

    protocol: Protocol
    source: str = "default"
    """One of 'override', 'environment', 'query', 'default'."""

    def fallback_chain(self) -> Tuple[Protocol, ...]:
        """The resolved protocol followed by every lower tier."""
        return PROTOCOL_ORDER[self.protocol.rank:]


def parse_protocol(name: str) -> Protocol:
    """
    Parse a user-supplied protocol name.

    Raises:
        ValueError: If the name is not a known protocol
    """
    key = name.strip().lower()
    if key not in PROTOCOL_ALIASES:
        raise ValueError(f"Unknown protocol '{name}'. Use: kitty, iterm, sixel, or blocks")
    return PROTOCOL_ALIASES[key]


def next_protocol(protocol: Protocol) -> Optional[Protocol]:
    """Return the next lower tier, or None below Blocks."""
    rank = protocol.rank
    if rank + 1 >= len(PROTOCOL_ORDER):
        return None
    return PROTOCOL_ORDER[rank + 1]


def resolve(inputs: CapabilityInputs) -> CapabilityDescriptor:
    """
    Resolve the display protocol for this session.

    Args:
        inputs: Environment, override and optional query callable

    Returns:
        CapabilityDescriptor for the best supported protocol

    Raises:
        ValueError: If the override names an unknown protocol
    """
    if inputs.override:
        protocol = parse_protocol(inputs.override)
        logger.info(f"Using protocol {protocol} (user override)")
        return CapabilityDescriptor(protocol, "override")

    env = inputs.env
    for protocol, detector in (
        (Protocol.KITTY, _kitty_signal),
        (Protocol.ITERM2, _iterm_signal),
        (Protocol.SIXEL, _sixel_signal),
    ):
        if detector(env):
            logger.info(f"Using protocol {protocol} (detected from environment)")
            return CapabilityDescriptor(protocol, "environment")

    if inputs.query is not None:
        answer = inputs.query()
        if answer:
            logger.info("Using protocol sixel (terminal reported sixel graphics)")
            return CapabilityDescriptor(Protocol.SIXEL, "query")
        if answer is None:
            logger.debug("Terminal query timed out or was inconclusive")

    logger.info("Using protocol blocks (no graphics support detected)")
    return CapabilityDescriptor(Protocol.BLOCKS, "default")


def _kitty_signal(env: Mapping[str, str]) -> bool:
    term = env.get("TERM", "").lower()
    term_program = env.get("TERM_PROGRAM", "").lower()
    return (
        "kitty" in term
        or bool(env.get("KITTY_WINDOW_ID"))
        or term_program in KITTY_TERM_PROGRAMS
    )


def _iterm_signal(env: Mapping[str, str]) -> bool:
    return (
        env.get("TERM_PROGRAM", "") == "iTerm.app"
        or env.get("LC_TERMINAL", "") == "iTerm2"
        or bool(env.get("ITERM_SESSION_ID"))
    )


def _sixel_signal(env: Mapping[str, str]) -> bool:
    term = env.get("TERM", "").lower()
    return any(name in term for name in SIXEL_TERMS)
