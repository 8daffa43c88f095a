# plotbatch

`plotbatch` schedules batches of proof-of-space plots. It handles the work
around plotting:

- it reads a manifest of plots;
- it checks free disk space in the output directories;
- it chooses which devices to use;
- it estimates how much device memory each pipeline tier needs;
- it runs a staggered producer/consumer pipeline, so that computing plot
  N+1 overlaps with writing plot N.

The plots themselves are computed and written by a backend that you supply.

## Installation

```
pip install plotbatch
pip install "plotbatch[test]"   # also installs pytest, for the test suite
```

The package has no runtime dependencies outside the standard library.

## Manifests (`plotbatch.manifest`)

A manifest lists one plot per line. Each line has nine fields separated by
whitespace:

```
# k strength plot_index meta_group testnet plot_id_hex memo_hex out_dir out_name
28 2 0 0 0 <64 hex chars> <memo hex> /plots plot-0.plot2
```

The parser follows these rules:

- Empty lines and lines that start with `#` are skipped.
- `testnet` is true when it is `1`, `true` or `True`.
- The plot id must be exactly 32 bytes, written as 64 hex characters.
- The memo must be valid hex and at most 255 bytes.

```python
from plotbatch.manifest import parse_manifest, parse_manifest_lines, ManifestError

entries = parse_manifest("batch.txt")      # list[BatchEntry]
entries = parse_manifest_lines(text.splitlines())
```

Errors raise `ManifestError`, a subclass of `ValueError`. The message names
the line number, and the same error is raised when the file cannot be
opened.

`parse_hex(text)` decodes a string of hex-digit pairs. It raises
`ValueError` on bad input.

## Running a batch (`plotbatch.batch`)

```python
from plotbatch.batch import BatchOptions, PlotBackend, run_batch
from plotbatch.memory import DeviceMemInfo


class MyBackend(PlotBackend):
    def device_memory(self, device_id):
        return DeviceMemInfo(free_bytes=16 << 30, total_bytes=16 << 30)

    def run_pipeline(self, entry, device_id, slot, tier):
        ...  # compute the plot; tier is None on the pool path

    def write_plot(self, path, entry, result, memo):
        ...  # write the result to path

    def plot_cpu(self, entry, path):
        ...  # compute and write on the CPU


options = BatchOptions(verbose=True, skip_existing=True, continue_on_error=True)
result = run_batch(entries, options, MyBackend())
print(result.plots_written, result.plots_skipped, result.plots_failed,
      result.total_wall_seconds)
```

### Backend hooks

`PlotBackend` also has three hooks you may override. Their defaults are shown
in the table.

| Hook | Default | What it does |
|------|---------|--------------|
| `gpu_device_count()` | `0` | Reports how many GPU devices there are. |
| `prepare_pool(device_id, k, strength, testnet)` | does nothing | Prepares reusable buffers on the device. |
| `sort_scratch_bytes(device_id, k)` | `0` | Reports the sort scratch the device needs. |

If `prepare_pool` raises `InsufficientVramError`, that worker switches to the
streaming pipeline. A tier is then chosen with `select_streaming_tier` and
passed to `run_pipeline`.

### Batch rules

- All entries must have the same `k`, `strength` and `testnet`. Otherwise
  `run_batch` raises `ValueError`.
- `preflight_disk_space` warns on stderr when an output directory looks too
  small for its plots. It never stops the batch. It returns the plot count
  and the upper-bound byte total for each directory. The upper bound for a
  single plot comes from `approx_plot_bytes_upper_bound(k)`.
- With `skip_existing`, a plot is skipped when `looks_like_complete_plot`
  accepts its output file: the file is at least 64 bytes and starts with
  `pos2`.
- With `continue_on_error`, a failing plot is counted in `plots_failed`. It
  does not stop the batch.
- An entry with an empty memo is written with 112 zero bytes as its memo.
- `Channel` is the bounded blocking queue between producer and consumer. It
  has `push`, `pop` and `close`, and it can be iterated.

### Devices (`plotbatch.devices`)

`resolve_device_ids(use_all_devices, device_ids, include_cpu, gpu_count)`
builds the list of workers.

| Id | Meaning |
|----|---------|
| `0..N-1` | An explicit GPU. |
| `DEFAULT_GPU_ID` (`-1`) | The default device. |
| `CPU_DEVICE_ID` (`-2`) | The CPU. |

How many workers run depends on the resolved list:

- An empty list, or a list with one id, runs the batch on one worker.
- With more ids there is one worker thread per device. Entries are assigned
  round-robin: entry `i` goes to worker `i % N`.

CPU workers call `plot_cpu` for each plot, one plot at a time.

### Environment variables

| Variable | Effect |
|----------|--------|
| `PLOTBATCH_STREAMING=1` | Skips the pool and always uses the streaming pipeline. |
| `PLOTBATCH_STREAMING_TIER` | Sets the tier when `BatchOptions.streaming_tier` is empty. |
| `PLOTBATCH_CPU_BENCH=1` | Sends CPU workers through the pipeline path instead of `plot_cpu`. |
| `POS2GPU_MAX_VRAM_MB` | Caps the free and total memory that `query_device_memory` reports. |

## Memory planning

### `plotbatch.memory`

- `query_device_memory(total_bytes, environ=None)` returns a
  `DeviceMemInfo`. Free memory is taken to equal the total, then both values
  are capped by `POS2GPU_MAX_VRAM_MB`.
- `check_pool_fits(required_bytes, total_bytes, k, strength)` adds a 256 MiB
  margin. It returns the total needed, or raises `InsufficientVramError` with
  `required_bytes`, `free_bytes` and `total_bytes` set.
- `format_alloc_bytes(count)` formats a byte count as
  `"<N> bytes (<N.NN> MB)"`.

### `plotbatch.peaks`

These functions give the peak device memory of each streaming tier. Each peak
was measured at k=28 and is scaled by 2^k for other values of k.

| Function | Tier | Peak at k=28 |
|----------|------|--------------|
| `streaming_plain_peak_bytes(k, adjustment)` | plain | 7290 MiB |
| `streaming_peak_bytes(k, adjustment)` | compact | 5200 MiB |
| `streaming_minimal_peak_bytes(k, adjustment)` | minimal | 3760 MiB |

`sort_scratch_adjustment(k, actual_scratch_bytes)` returns how far the sort
scratch goes beyond what the peaks already allow for.

### `plotbatch.tiers`

`select_streaming_tier(k, mem, preference, adjustment)` returns a
`TierChoice`.

- If `preference` names a tier, that tier is used. Otherwise the largest tier
  whose peak plus a 128 MiB margin fits is chosen.
- If a forced plain or compact tier does not fit, it only warns.
- If the minimal tier does not fit, it raises `InsufficientVramError`.

`TierChoice` exposes `plain_mode`, `t2_tile_count` and `gather_tile_count`.
`pinned_capacity(k)` gives the entry count of each output buffer.

## Cancellation (`plotbatch.cancel`)

`install_cancel_signal_handlers()` installs handlers for SIGINT and SIGTERM.

- After the first signal, `cancel_requested()` returns true. Batches stop
  before starting their next plot.
- A second signal restores the default handler and raises the signal again,
  which normally ends the process.
- `reset_cancel()` clears the flag.

## What this package does not do

- It contains no plotting algorithm.
- It has no plot-file writer.
- It has no GPU or CPU compute code.
- It cannot query a real device's memory.

All of that comes from the `PlotBackend` you pass to `run_batch`. There is
also no command-line program: batches are run from Python.