"""The alignment computation for a single archive entry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Entry:
    """
    Metadata of one source archive entry, as seen by the aligner.

    The payload itself is never needed here: padding depends only on sizes,
    the existing extra field length and whether the entry is stored.
    """

    name: str
    is_stored: bool
    existing_extra_length: int


@dataclass(frozen=True)
class PaddedEntry:
    """The alignment decision for one entry."""

    entry: Entry
    padlen: int
    bias_before: int

    @property
    def rewritten_extra_length(self) -> int:
        return self.entry.existing_extra_length + self.padlen

    @property
    def bias_after(self) -> int:
        return self.bias_before + self.padlen


def is_stored(compress_size: int, file_size: int) -> bool:
    """An entry counts as stored when its data was not shrunk, whatever its method code says."""
    return compress_size == file_size


def align(entry: Entry, alignment: int, bias: int) -> Tuple[int, int]:
    """
    Computes the padding for `entry` given the padding inserted so far.

    Returns ``(padlen, new_bias)``. Compressed entries are never padded.
    """
    if alignment <= 0:
        raise ValueError(f"Alignment must be a positive integer, got {alignment}")

    if not entry.is_stored:
        return 0, bias

    candidate_offset = entry.existing_extra_length + bias
    # The outer modulo maps an already aligned offset to 0 instead of a full unit.
    padlen = (alignment - (candidate_offset % alignment)) % alignment

    return padlen, bias + padlen
