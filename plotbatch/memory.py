"""Device memory queries and the buffer-pool VRAM preflight."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

MIB = 1 << 20
GIB = 1 << 30

# Headroom kept above the pool's own buffers for driver/context state,
# lookup tables and small runtime allocations.
POOL_MARGIN_BYTES = 256 * MIB

MAX_VRAM_ENV = "POS2GPU_MAX_VRAM_MB"

_LEADING_UINT = re.compile(r"\s*\+?(\d+)")


class InsufficientVramError(RuntimeError):
    """The requested buffers do not fit in the device's free memory."""

    def __init__(
        self,
        message: str,
        required_bytes: int = 0,
        free_bytes: int = 0,
        total_bytes: int = 0,
    ) -> None:
        super().__init__(message)
        self.required_bytes = required_bytes
        self.free_bytes = free_bytes
        self.total_bytes = total_bytes


@dataclass(frozen=True)
class DeviceMemInfo:
    """Free and total device memory, in bytes."""

    free_bytes: int = 0
    total_bytes: int = 0


def format_alloc_bytes(count: int) -> str:
    """Format a byte count as ``"<N> bytes (<N.NN> MB)"`` for diagnostics."""
    return f"{count} bytes ({count / MIB:.2f} MB)"


def _gib_text(count: int) -> str:
    # Five characters of the fixed-point rendering, e.g. "11.98".
    return f"{count / GIB:f}"[:5]


def _parse_leading_uint(text: str) -> int:
    match = _LEADING_UINT.match(text)
    return int(match.group(1)) if match else 0


def query_device_memory(
    total_bytes: int, environ: Mapping[str, str] | None = None
) -> DeviceMemInfo:
    """Describe device memory given the device's reported total.

    Free memory has no portable query, so it is taken to equal the total.
    A non-empty ``POS2GPU_MAX_VRAM_MB`` caps both figures.
    """
    env = os.environ if environ is None else environ
    free = total = total_bytes
    limit = env.get(MAX_VRAM_ENV)
    if limit:
        cap = _parse_leading_uint(limit) * MIB
        free = min(free, cap)
        total = min(total, cap)
    return DeviceMemInfo(free_bytes=free, total_bytes=total)


def check_pool_fits(required_bytes: int, total_bytes: int, k: int, strength: int) -> int:
    """Check that a pool of ``required_bytes`` fits the device.

    Returns the bytes needed including the runtime margin; raises
    :class:`InsufficientVramError` when the device is too small.
    """
    needed = required_bytes + POOL_MARGIN_BYTES
    free_bytes = total_bytes
    if free_bytes < needed:
        raise InsufficientVramError(
            f"buffer pool: insufficient device VRAM for k={k} strength={strength}"
            f"; need ~{_gib_text(needed)} GiB (pool {_gib_text(required_bytes)}"
            f" GiB + ~0.25 GiB runtime), only {_gib_text(free_bytes)} GiB free"
            f" of {_gib_text(total_bytes)} GiB total."
            " Use a smaller k or a GPU with more VRAM.",
            required_bytes=needed,
            free_bytes=free_bytes,
            total_bytes=total_bytes,
        )
    return needed