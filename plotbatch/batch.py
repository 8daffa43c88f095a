"""Staggered multi-plot batch pipeline.

A producer runs the plotting pipeline back to back while a consumer
thread writes the finished plot files. A bounded channel between them
lets pipeline work for plot N+1 overlap the file write of plot N. With
several devices the batch is split round-robin across one worker per
device.
"""

from __future__ import annotations

import abc
import os
import shutil
import sys
import threading
import time
from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from plotbatch.cancel import cancel_requested
from plotbatch.devices import CPU_DEVICE_ID, DEFAULT_GPU_ID, resolve_device_ids
from plotbatch.manifest import MAX_MEMO_BYTES, BatchEntry
from plotbatch.memory import GIB, DeviceMemInfo, InsufficientVramError
from plotbatch.peaks import sort_scratch_adjustment
from plotbatch.tiers import TierChoice, select_streaming_tier

# Rotating output slots; the channel holds one fewer item than this so the
# producer never overwrites a slot the consumer is still reading.
NUM_PINNED_BUFFERS = 3

# Memo written when an entry carries none: pool hash, farmer key, secret.
DEFAULT_MEMO_BYTES = 32 + 48 + 32

PLOT_MAGIC = b"pos2"
MIN_PLOT_FILE_BYTES = 64

STREAMING_ENV = "PLOTBATCH_STREAMING"
STREAMING_TIER_ENV = "PLOTBATCH_STREAMING_TIER"
CPU_BENCH_ENV = "PLOTBATCH_CPU_BENCH"


def _log(message: str) -> None:
    print(message, file=sys.stderr)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").startswith("1")


@dataclass
class BatchOptions:
    """Options controlling a batch run."""

    verbose: bool = False
    skip_existing: bool = False
    continue_on_error: bool = False
    device_ids: list[int] = field(default_factory=list)
    use_all_devices: bool = False
    include_cpu: bool = False
    streaming_tier: str = ""


@dataclass
class BatchResult:
    """Counts and wall time of a batch run."""

    plots_written: int = 0
    plots_skipped: int = 0
    plots_failed: int = 0
    total_wall_seconds: float = 0.0


class PlotBackend(abc.ABC):
    """The plotting pipeline and file writer a batch drives."""

    def gpu_device_count(self) -> int:
        """Number of GPU devices the runtime can enumerate."""
        return 0

    def prepare_pool(self, device_id: int, k: int, strength: int, testnet: bool) -> None:
        """Set up reusable buffers on ``device_id``.

        Raises :class:`InsufficientVramError` when they do not fit, which
        switches the worker to the streaming pipeline.
        """

    def sort_scratch_bytes(self, device_id: int, k: int) -> int:
        """Sort scratch the device's sort implementation needs at ``k``."""
        return 0

    @abc.abstractmethod
    def device_memory(self, device_id: int) -> DeviceMemInfo:
        """Free and total memory of ``device_id``."""

    @abc.abstractmethod
    def run_pipeline(
        self,
        entry: BatchEntry,
        device_id: int,
        slot: int,
        tier: TierChoice | None,
    ) -> Any:
        """Compute the plot for ``entry``; ``tier`` is None on the pool path."""

    @abc.abstractmethod
    def write_plot(self, path: str, entry: BatchEntry, result: Any, memo: bytes) -> None:
        """Write a finished plot to ``path``."""

    @abc.abstractmethod
    def plot_cpu(self, entry: BatchEntry, path: str) -> None:
        """Compute and write the plot for ``entry`` on the CPU."""


class ChannelClosed(Exception):
    """Raised by :meth:`Channel.pop` once the channel is closed and drained."""


class Channel:
    """Bounded blocking queue with an end-of-stream signal."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("channel capacity must be at least 1")
        self._capacity = capacity
        self._items: deque[Any] = deque()
        self._closed = False
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)

    def push(self, item: Any) -> bool:
        """Add ``item``, waiting for room. Returns False if the channel closed."""
        with self._not_full:
            self._not_full.wait_for(
                lambda: len(self._items) < self._capacity or self._closed
            )
            if self._closed:
                return False
            self._items.append(item)
            self._not_empty.notify()
            return True

    def pop(self) -> Any:
        """Take the oldest item, waiting for one; raise ChannelClosed at the end."""
        with self._not_empty:
            self._not_empty.wait_for(lambda: bool(self._items) or self._closed)
            if self._items:
                item = self._items.popleft()
                self._not_full.notify()
                return item
            raise ChannelClosed

    def close(self) -> None:
        """Close the channel; waiting producers and consumers wake up."""
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()

    def __iter__(self) -> Iterator[Any]:
        while True:
            try:
                yield self.pop()
            except ChannelClosed:
                return


@dataclass
class _WorkItem:
    entry: BatchEntry
    result: Any
    index: int


def approx_plot_bytes_upper_bound(k: int) -> int:
    """Pessimistic uncompressed size of a plot of size ``k``; 0 if k is invalid."""
    if k <= 0 or k > 32:
        return 0
    return ((1 << k) * (2 * k)) // 8


def looks_like_complete_plot(path: str | Path) -> bool:
    """True if ``path`` exists, is large enough and starts with the plot magic."""
    try:
        if os.path.getsize(path) < MIN_PLOT_FILE_BYTES:
            return False
        with open(path, "rb") as handle:
            return handle.read(len(PLOT_MAGIC)) == PLOT_MAGIC
    except OSError:
        return False


def preflight_disk_space(
    entries: Sequence[BatchEntry], options: BatchOptions
) -> dict[str, tuple[int, int]]:
    """Warn about output directories that look too small for their plots.

    Purely advisory. Returns, per output directory, the number of plots
    and the upper-bound bytes they may need.
    """
    tally: dict[str, tuple[int, int]] = {}
    for entry in entries:
        directory = entry.out_dir or "."
        count, need = tally.get(directory, (0, 0))
        tally[directory] = (count + 1, need + approx_plot_bytes_upper_bound(entry.k))

    for directory, (count, need) in tally.items():
        try:
            os.makedirs(directory, exist_ok=True)
            free = shutil.disk_usage(directory).free
        except OSError as exc:
            if options.verbose:
                _log(
                    f"[batch] preflight: cannot stat free space on {directory}"
                    f" ({exc}) — skipping check"
                )
            continue
        if free < need:
            _log(
                f"[batch] WARNING: {directory} has {free / GIB:.1f} GB free but"
                f" {count} plot(s) may need up to ~{need / GIB:.1f} GB"
                " (uncompressed upper bound). The batch will still run, but"
                " consider freeing space or reducing count."
            )
        elif options.verbose:
            _log(
                f"[batch] preflight: {directory} has {free / GIB:.1f} GB free,"
                f" {count} plot(s) need up to ~{need / GIB:.1f} GB"
            )
    return tally


def _out_path(entry: BatchEntry) -> str:
    return os.path.join(entry.out_dir, entry.out_name)


def _should_skip(entry: BatchEntry, index: int, options: BatchOptions, tag: str) -> bool:
    if not options.skip_existing:
        return False
    path = _out_path(entry)
    if not looks_like_complete_plot(path):
        return False
    if options.verbose:
        _log(f"[{tag}] skipping plot {index}: {path} (already exists)")
    return True


def _run_cpu_slice(
    entries: Sequence[BatchEntry], options: BatchOptions, backend: PlotBackend
) -> BatchResult:
    result = BatchResult()
    start = time.monotonic()
    for index, entry in enumerate(entries):
        if _should_skip(entry, index, options, "batch:cpu"):
            result.plots_skipped += 1
            continue
        try:
            if len(entry.memo) > MAX_MEMO_BYTES:
                raise ValueError(
                    f"memo size {len(entry.memo)} exceeds the"
                    f" {MAX_MEMO_BYTES}-byte on-disk limit"
                )
            backend.plot_cpu(entry, _out_path(entry))
            result.plots_written += 1
            if options.verbose:
                _log(f"[batch:cpu] plot {index + 1}/{len(entries)} done: {entry.out_name}")
        except Exception as exc:
            _log(f"[batch:cpu] plot {index} FAILED: {exc}")
            result.plots_failed += 1
            if not options.continue_on_error:
                break
        if cancel_requested():
            break
    result.total_wall_seconds = time.monotonic() - start
    return result


def _choose_tier(
    entries: Sequence[BatchEntry],
    options: BatchOptions,
    backend: PlotBackend,
    device_id: int,
) -> TierChoice | None:
    first = entries[0]
    force_streaming = _env_flag(STREAMING_ENV)
    try:
        if force_streaming:
            raise InsufficientVramError(f"{STREAMING_ENV}=1 forced")
        backend.prepare_pool(device_id, first.k, first.strength, first.testnet)
        return None
    except InsufficientVramError as exc:
        if force_streaming:
            _log(f"[batch] {STREAMING_ENV}=1 — using streaming pipeline per plot")
        else:
            _log(
                f"[batch] pool needs {exc.required_bytes / GIB:.2f} GiB, only"
                f" {exc.free_bytes / GIB:.2f} GiB free — using streaming"
                " pipeline per plot"
            )
    adjustment = sort_scratch_adjustment(
        first.k, backend.sort_scratch_bytes(device_id, first.k)
    )
    preference = options.streaming_tier or os.environ.get(STREAMING_TIER_ENV, "")
    return select_streaming_tier(
        first.k, backend.device_memory(device_id), preference, adjustment
    )


def _run_slice(
    entries: Sequence[BatchEntry],
    options: BatchOptions,
    backend: PlotBackend,
    device_id: int,
) -> BatchResult:
    if device_id == CPU_DEVICE_ID and not _env_flag(CPU_BENCH_ENV):
        return _run_cpu_slice(entries, options, backend)

    result = BatchResult()
    if not entries:
        return result

    tier = _choose_tier(entries, options, backend, device_id)
    channel = Channel(NUM_PINNED_BUFFERS - 1)
    consumer_state: dict[str, Any] = {"written": 0, "failed": 0, "error": None}
    start = time.monotonic()

    def consume() -> None:
        try:
            for item in channel:
                path = _out_path(item.entry)
                try:
                    if item.entry.out_dir:
                        os.makedirs(item.entry.out_dir, exist_ok=True)
                    memo = item.entry.memo or bytes(DEFAULT_MEMO_BYTES)
                    backend.write_plot(path, item.entry, item.result, memo)
                    consumer_state["written"] += 1
                    if options.verbose:
                        _log(f"[batch] consumer wrote plot {item.index}: {path}")
                except Exception as exc:
                    if not options.continue_on_error:
                        raise
                    consumer_state["failed"] += 1
                    _log(
                        f"[batch] plot {item.index} FAILED (write {path}):"
                        f" {exc} — continuing"
                    )
        except BaseException as exc:
            consumer_state["error"] = exc
            channel.close()

    consumer = threading.Thread(target=consume, name="plot-writer")
    consumer.start()

    producer_failed = 0
    try:
        for index, entry in enumerate(entries):
            if consumer_state["error"] is not None:
                break
            if cancel_requested():
                _log(
                    f"[batch] cancel received — stopping before plot {index}"
                    f" ({len(entries) - index} plot(s) not started)"
                )
                break
            if _should_skip(entry, index, options, "batch"):
                result.plots_skipped += 1
                continue

            plot_start = time.monotonic()
            slot = index % NUM_PINNED_BUFFERS
            try:
                produced = backend.run_pipeline(entry, device_id, slot, tier)
            except Exception as exc:
                if not options.continue_on_error:
                    raise
                producer_failed += 1
                _log(f"[batch] plot {index} FAILED (GPU): {exc} — continuing")
                continue

            if options.verbose:
                elapsed_ms = (time.monotonic() - plot_start) * 1000.0
                _log(f"[batch] producer finished plot {index} in {elapsed_ms:.2f} ms")
            channel.push(_WorkItem(entry=entry, result=produced, index=index))
    except BaseException:
        channel.close()
        consumer.join()
        raise

    channel.close()
    consumer.join()
    if consumer_state["error"] is not None:
        raise consumer_state["error"]

    result.plots_written = consumer_state["written"]
    result.plots_failed = producer_failed + consumer_state["failed"]
    result.total_wall_seconds = time.monotonic() - start
    return result


def run_batch(
    entries: Sequence[BatchEntry], options: BatchOptions, backend: PlotBackend
) -> BatchResult:
    """Produce every plot in ``entries`` through ``backend``.

    All entries must share k, strength and testnet. With more than one
    device the entries are assigned round-robin, one worker per device.
    """
    if not entries:
        return BatchResult()

    first = entries[0]
    for entry in entries[1:]:
        if (entry.k, entry.strength, entry.testnet) != (
            first.k,
            first.strength,
            first.testnet,
        ):
            raise ValueError("run_batch: all entries must share (k, strength, testnet)")

    preflight_disk_space(entries, options)

    gpu_count = backend.gpu_device_count() if options.use_all_devices else 0
    device_ids = resolve_device_ids(
        options.use_all_devices, options.device_ids, options.include_cpu, gpu_count
    )

    start = time.monotonic()
    if len(device_ids) <= 1:
        device = device_ids[0] if device_ids else DEFAULT_GPU_ID
        result = _run_slice(entries, options, backend, device)
        result.total_wall_seconds = time.monotonic() - start
        return result

    workers = len(device_ids)
    buckets = [list(entries[i::workers]) for i in range(workers)]
    _log(
        f"[batch] multi-device: {len(entries)} plots across {workers} workers"
        " — devices: " + " ".join(str(d) for d in device_ids)
    )

    results: list[BatchResult | None] = [None] * workers
    errors: list[BaseException | None] = [None] * workers

    def work(slot: int) -> None:
        try:
            results[slot] = _run_slice(buckets[slot], options, backend, device_ids[slot])
        except BaseException as exc:
            errors[slot] = exc

    threads = [
        threading.Thread(target=work, args=(i,), name=f"plot-worker-{i}")
        for i in range(workers)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for error in errors:
        if error is not None:
            raise error

    total = BatchResult()
    for part in results:
        if part is None:
            continue
        total.plots_written += part.plots_written
        total.plots_skipped += part.plots_skipped
        total.plots_failed += part.plots_failed
    total.total_wall_seconds = time.monotonic() - start
    return total