"""The Planner turns the ordered entry sequence into a sequence of padding decisions."""

from __future__ import annotations

from typing import Iterable, Iterator, List

from .aligner import Entry, PaddedEntry, align


class Planner:
    """
    Threads the running bias through `align` for one run.

    Entries must be fed in archive order: the padding of entry k depends on
    the padding chosen for every entry before it.
    """

    def __init__(self, alignment: int = 4):
        if alignment <= 0:
            raise ValueError(f"Alignment must be a positive integer, got {alignment}")
        self.alignment = alignment
        self.bias = 0

    def reset(self) -> None:
        self.bias = 0

    def next(self, entry: Entry) -> PaddedEntry:
        """Aligns one entry and folds its padding into the bias."""
        padlen, new_bias = align(entry, self.alignment, self.bias)
        padded = PaddedEntry(entry=entry, padlen=padlen, bias_before=self.bias)
        self.bias = new_bias
        return padded

    def plan(self, entries: Iterable[Entry]) -> Iterator[PaddedEntry]:
        """
        Lazily yields one PaddedEntry per entry, starting from the current bias.

        Each decision is committed to the bias before the next entry is read.
        """
        for entry in entries:
            yield self.next(entry)

    def plan_all(self, entries: Iterable[Entry]) -> List[PaddedEntry]:
        """Plans a complete run from a fresh bias."""
        self.reset()
        return list(self.plan(entries))

    def total_padding(self) -> int:
        return self.bias
