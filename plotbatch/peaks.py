"""Peak device-memory estimates for the streaming pipeline tiers.

Each tier has a peak measured at k=28. The dominant buffers scale with
2^k, so other k extrapolate by doubling or halving per step, with a small
floor for tiny test plots and a ceiling at k=32.
"""

from __future__ import annotations

MIB_SHIFT = 20
ANCHOR_K = 28
MIN_SCALED_K = 18
MAX_SCALED_K = 32

# Measured peaks at k=28, in MiB.
COMPACT_ANCHOR_MB = 5200
PLAIN_ANCHOR_MB = 7290
MINIMAL_ANCHOR_MB = 3760

# Floor used below MIN_SCALED_K, in MiB.
TINY_PLOT_FLOOR_MB = 16

# Sort scratch already accounted for in the anchors at k=28, in bytes.
SORT_SCRATCH_BASELINE_K28 = 256 << MIB_SHIFT


def sort_scratch_adjustment(k: int, actual_scratch_bytes: int) -> int:
    """Return how far the sort scratch exceeds what the anchors budget for.

    The baseline is 256 MiB at k=28 and doubles per step of k. Scratch at
    or below the baseline needs no adjustment.
    """
    baseline = SORT_SCRATCH_BASELINE_K28
    dk = k - ANCHOR_K
    if dk > 0:
        baseline <<= dk
    elif dk < 0:
        baseline >>= -dk
    return max(0, actual_scratch_bytes - baseline)


def _scaled_peak(anchor_mb: int, k: int, adjustment: int) -> int:
    anchor = anchor_mb << MIB_SHIFT
    if k == ANCHOR_K:
        peak = anchor
    elif k < MIN_SCALED_K:
        peak = TINY_PLOT_FLOOR_MB << MIB_SHIFT
    elif k > MAX_SCALED_K:
        peak = anchor << (MAX_SCALED_K - ANCHOR_K)
    elif k < ANCHOR_K:
        peak = anchor >> (ANCHOR_K - k)
    else:
        peak = anchor << (k - ANCHOR_K)
    return peak + adjustment


def streaming_peak_bytes(k: int, adjustment: int = 0) -> int:
    """Peak device bytes of the compact streaming tier at ``k``."""
    return _scaled_peak(COMPACT_ANCHOR_MB, k, adjustment)


def streaming_plain_peak_bytes(k: int, adjustment: int = 0) -> int:
    """Peak device bytes of the plain (no parking) streaming tier at ``k``."""
    return _scaled_peak(PLAIN_ANCHOR_MB, k, adjustment)


def streaming_minimal_peak_bytes(k: int, adjustment: int = 0) -> int:
    """Peak device bytes of the minimal streaming tier at ``k``."""
    return _scaled_peak(MINIMAL_ANCHOR_MB, k, adjustment)