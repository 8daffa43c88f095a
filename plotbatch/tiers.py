"""Choice of streaming pipeline tier when the full buffer pool does not fit.

Three tiers trade PCIe traffic for lower peak device memory:

* ``plain``: no parking of intermediate tables on the host and a
  single-pass T2 match. Fastest, highest peak.
* ``compact``: parks intermediates on pinned host memory and stages the
  T2 match in two tiles.
* ``minimal``: compact's parking plus eight T2 match tiles and tiled sort
  gathers. Lowest peak, slowest.
"""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass

from plotbatch.memory import GIB, MIB, DeviceMemInfo, InsufficientVramError
from plotbatch.peaks import (
    streaming_minimal_peak_bytes,
    streaming_peak_bytes,
    streaming_plain_peak_bytes,
)

# Headroom above the measured peaks for runtime context and driver state.
STREAMING_MARGIN_BYTES = 128 * MIB

DEFAULT_T2_TILE_COUNT = 2
DEFAULT_GATHER_TILE_COUNT = 1
MINIMAL_T2_TILE_COUNT = 8
MINIMAL_GATHER_TILE_COUNT = 4


class StreamingTier(enum.Enum):
    """Streaming pipeline tier, from largest peak to smallest."""

    PLAIN = "plain"
    COMPACT = "compact"
    MINIMAL = "minimal"


@dataclass(frozen=True)
class TierChoice:
    """The selected tier and the pipeline settings that go with it."""

    tier: StreamingTier
    required_bytes: int
    free_bytes: int
    plain_floor_bytes: int
    forced_below_floor: bool = False

    @property
    def plain_mode(self) -> bool:
        """True when no intermediates are parked on the host."""
        return self.tier is StreamingTier.PLAIN

    @property
    def t2_tile_count(self) -> int:
        """Number of staging tiles for the T2 match."""
        if self.tier is StreamingTier.MINIMAL:
            return MINIMAL_T2_TILE_COUNT
        return DEFAULT_T2_TILE_COUNT

    @property
    def gather_tile_count(self) -> int:
        """Number of tiles for the sort gathers."""
        if self.tier is StreamingTier.MINIMAL:
            return MINIMAL_GATHER_TILE_COUNT
        return DEFAULT_GATHER_TILE_COUNT


def _trunc_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b > 0) else -quotient


def pinned_capacity(k: int) -> int:
    """Entries each pinned fragment buffer must hold for a plot of size ``k``."""
    num_section_bits = 2 if k < 28 else k - 26
    extra_margin_bits = 8 - _trunc_div(28 - k, 2)
    per_section = (1 << (k - num_section_bits)) + (1 << (k - extra_margin_bits))
    return per_section << num_section_bits


def _gib(count: int) -> float:
    return count / GIB


def _gib_text(count: int) -> str:
    return f"{count / GIB:f}"[:5]


def _parse_preference(preference: str | StreamingTier | None) -> StreamingTier | None:
    if isinstance(preference, StreamingTier):
        return preference
    if not preference:
        return None
    try:
        return StreamingTier(preference)
    except ValueError:
        return None


def select_streaming_tier(
    k: int,
    mem: DeviceMemInfo,
    preference: str | StreamingTier | None = None,
    adjustment: int = 0,
) -> TierChoice:
    """Pick the streaming tier for plots of size ``k`` on a device ``mem``.

    A recognised ``preference`` forces that tier; anything else picks the
    largest tier whose peak plus margin fits the free memory. A forced
    plain or compact tier below its floor only warns. The minimal tier
    below its floor raises :class:`InsufficientVramError`, since there is
    nothing smaller to fall back to.
    """
    peaks = {
        StreamingTier.PLAIN: streaming_plain_peak_bytes(k, adjustment),
        StreamingTier.COMPACT: streaming_peak_bytes(k, adjustment),
        StreamingTier.MINIMAL: streaming_minimal_peak_bytes(k, adjustment),
    }
    margin = STREAMING_MARGIN_BYTES
    free = mem.free_bytes

    tier = _parse_preference(preference)
    if tier is None:
        tier = next(
            (
                candidate
                for candidate in (StreamingTier.PLAIN, StreamingTier.COMPACT)
                if free >= peaks[candidate] + margin
            ),
            StreamingTier.MINIMAL,
        )

    required = peaks[tier]
    below_floor = free < required + margin

    if below_floor and tier is StreamingTier.MINIMAL:
        raise InsufficientVramError(
            f"[batch] streaming pipeline needs ~{_gib_text(required + margin)}"
            f" GiB peak for k={k} (minimal tier, the smallest available),"
            f" device reports {_gib_text(free)} GiB free of"
            f" {_gib_text(mem.total_bytes)} GiB total. Use a smaller k or a"
            " larger GPU (or --cpu for CPU plotting).",
            required_bytes=required + margin,
            free_bytes=free,
            total_bytes=mem.total_bytes,
        )
    if below_floor:
        print(
            f"[batch] streaming tier: {tier.value} forced ({_gib(free):.2f} GiB"
            f" free < {_gib(required + margin):.2f} GiB {tier.value} floor)"
            " — proceeding, may OOM mid-plot",
            file=sys.stderr,
        )

    plain_floor = peaks[StreamingTier.PLAIN] + margin
    print(
        f"[batch] streaming tier: {tier.value} ({_gib(free):.2f} GiB free,"
        f" {_gib(required):.2f} GiB peak, {_gib(plain_floor):.2f} GiB plain floor)",
        file=sys.stderr,
    )
    return TierChoice(
        tier=tier,
        required_bytes=required,
        free_bytes=free,
        plain_floor_bytes=plain_floor,
        forced_below_floor=below_floor,
    )