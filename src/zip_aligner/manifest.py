from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

from .aligner import PaddedEntry


class AlignmentReport:
    """Records the alignment decision for every entry of one run."""

    def __init__(self, report_path: Path, alignment: int):
        self.report_path = Path(report_path)
        self.alignment = alignment
        self.entries: List[Dict] = []

    def add_entry(self, padded: PaddedEntry) -> None:
        self.entries.append(
            {
                "name": padded.entry.name,
                "stored": padded.entry.is_stored,
                "extra_length": padded.entry.existing_extra_length,
                "padding": padded.padlen,
                "bias": padded.bias_before,
            }
        )

    def total_padding(self) -> int:
        return sum(entry["padding"] for entry in self.entries)

    def save(self) -> None:
        self.report_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.report_path, "w") as f:
            json.dump(
                {
                    "alignment": self.alignment,
                    "total_padding": self.total_padding(),
                    "entries": self.entries,
                },
                f,
                indent=2,
            )
