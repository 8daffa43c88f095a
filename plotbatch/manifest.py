"""Batch manifest: one plot per line, nine whitespace-separated fields.

Fields are ``k strength plot_index meta_group testnet plot_id_hex
memo_hex out_dir out_name``. Empty lines and lines starting with ``#``
are skipped.
"""

from __future__ import annotations

import string
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

_HEX_DIGITS = frozenset(string.hexdigits)
_TRUE_WORDS = frozenset({"1", "true", "True"})
_FIELD_COUNT = 9
MAX_MEMO_BYTES = 255
PLOT_ID_BYTES = 32


class ManifestError(ValueError):
    """Raised for a manifest that cannot be read or parsed."""


@dataclass
class BatchEntry:
    """One plot to produce."""

    k: int = 28
    strength: int = 2
    plot_index: int = 0
    meta_group: int = 0
    testnet: bool = False
    plot_id: bytes = bytes(PLOT_ID_BYTES)
    memo: bytes = b""
    out_dir: str = ""
    out_name: str = ""


def parse_hex(text: str) -> bytes:
    """Decode a string of hex digit pairs; raise ValueError on bad input."""
    if len(text) % 2:
        raise ValueError(f"odd-length hex string: {text!r}")
    if not _HEX_DIGITS.issuperset(text):
        raise ValueError(f"invalid hex digit in {text!r}")
    return bytes.fromhex(text)


def _parse_line(line: str, line_no: int) -> BatchEntry:
    tokens = line.split()
    try:
        if len(tokens) < _FIELD_COUNT:
            raise ValueError("too few fields")
        k, strength, plot_index, meta_group = (int(t) for t in tokens[:4])
    except ValueError:
        raise ManifestError(
            f"manifest line {line_no}: expected 9 whitespace-separated fields "
            "(k strength plot_index meta_group testnet "
            "plot_id_hex memo_hex out_dir out_name)"
        ) from None

    testnet_s, plot_id_s, memo_s, out_dir, out_name = tokens[4:_FIELD_COUNT]

    try:
        plot_id = parse_hex(plot_id_s)
    except ValueError:
        plot_id = b""
    if len(plot_id) != PLOT_ID_BYTES:
        raise ManifestError(f"manifest line {line_no}: plot_id must be 64 hex chars")

    try:
        memo = parse_hex(memo_s)
    except ValueError:
        memo = None
    if memo is None or len(memo) > MAX_MEMO_BYTES:
        raise ManifestError(
            f"manifest line {line_no}: memo invalid hex or > 255 bytes"
        )

    return BatchEntry(
        k=k,
        strength=strength,
        plot_index=plot_index,
        meta_group=meta_group,
        testnet=testnet_s in _TRUE_WORDS,
        plot_id=plot_id,
        memo=memo,
        out_dir=out_dir,
        out_name=out_name,
    )


def parse_manifest_lines(lines: Iterable[str]) -> list[BatchEntry]:
    """Parse manifest text given as an iterable of lines."""
    entries = []
    for line_no, raw in enumerate(lines, start=1):
        line = raw.rstrip("\n")
        if not line or line.startswith("#"):
            continue
        entries.append(_parse_line(line, line_no))
    return entries


def parse_manifest(path: str | Path) -> list[BatchEntry]:
    """Read and parse the manifest file at ``path``."""
    try:
        with open(path, encoding="utf-8") as handle:
            return parse_manifest_lines(handle)
    except OSError as exc:
        raise ManifestError(f"cannot open manifest: {path}") from exc