"""SIGINT/SIGTERM handling for long-running batches.

The first signal sets a cancel flag so the batch stops after the current
plot; a second signal restores the default disposition and re-raises it,
so a stuck shutdown can still be escaped with another Ctrl-C.
"""

from __future__ import annotations

import signal
import sys
import threading

_cancelled = threading.Event()

_NOTICE = (
    "\n[plotbatch] cancel requested — finishing current plot then "
    "stopping. Press Ctrl-C again to abort immediately.\n"
)


def _cancel_handler(signum, frame) -> None:
    if _cancelled.is_set():
        signal.signal(signum, signal.SIG_DFL)
        signal.raise_signal(signum)
        return
    _cancelled.set()
    try:
        sys.stderr.write(_NOTICE)
        sys.stderr.flush()
    except (OSError, ValueError):
        pass


def install_cancel_signal_handlers() -> None:
    """Install the SIGINT and SIGTERM handlers. Safe to call repeatedly."""
    signal.signal(signal.SIGINT, _cancel_handler)
    signal.signal(signal.SIGTERM, _cancel_handler)


def cancel_requested() -> bool:
    """True once a cancelling signal has arrived (or since the last reset)."""
    return _cancelled.is_set()


def reset_cancel() -> None:
    """Clear the cancel flag."""
    _cancelled.clear()