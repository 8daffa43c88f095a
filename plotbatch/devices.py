"""Device-id sentinels and resolution of the worker device list."""

from __future__ import annotations

import sys
from collections.abc import Iterable

# Default device: let the runtime pick its preferred GPU. Real GPU ids are
# 0..N-1; negative values are reserved for selectors without a number.
DEFAULT_GPU_ID = -1

# Routes a worker to the CPU plotting path.
CPU_DEVICE_ID = -2


def resolve_device_ids(
    use_all_devices: bool,
    device_ids: Iterable[int],
    include_cpu: bool,
    gpu_count: int,
) -> list[int]:
    """Return the list of device ids the batch should fan out over.

    ``use_all_devices`` expands to every GPU the runtime reports
    (``gpu_count``) and overrides ``device_ids``. ``include_cpu`` appends
    the CPU sentinel once, whichever GPUs were chosen. An empty result
    means "single worker on the default device".
    """
    resolved: list[int] = []
    if use_all_devices:
        if gpu_count <= 0:
            print(
                "[batch] --devices all: runtime enumerated 0 GPUs — "
                "falling back to the default selector",
                file=sys.stderr,
            )
        else:
            resolved = list(range(gpu_count))
    else:
        resolved = list(device_ids)

    if include_cpu and CPU_DEVICE_ID not in resolved:
        resolved.append(CPU_DEVICE_ID)
    return resolved