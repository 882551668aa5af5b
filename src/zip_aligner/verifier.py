"""Re-reads an aligned archive and checks every entry against its source."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .archive import ArchiveReader, EntryRecord
from .errors import VerificationError


@dataclass(frozen=True)
class EntryCheck:
    """Alignment status of one output entry."""

    name: str
    is_stored: bool
    source_extra_length: int
    output_extra_length: int
    padlen: int
    bias_before: int
    data_offset: int
    problem: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.problem is None


def verify(
    source: Union[str, Path], output: Union[str, Path], alignment: int
) -> List[EntryCheck]:
    """Compares `output` with the `source` archive it was aligned from."""
    with ArchiveReader(source) as src_reader:
        records = [entry.to_record() for entry in src_reader.entries()]
    return verify_records(records, output, alignment)


def verify_records(
    source_records: Sequence[EntryRecord], output: Union[str, Path], alignment: int
) -> List[EntryCheck]:
    """
    Compares `output` with the source entry metadata it was aligned from.

    The padding of each entry is recovered as the growth of its extra field,
    and the bias is rebuilt from it in archive order. Raises VerificationError
    only when the output does not hold the same entries; per-entry defects
    are reported through `EntryCheck.problem`.
    """
    if alignment <= 0:
        raise ValueError(f"Alignment must be a positive integer, got {alignment}")

    checks = []
    bias = 0

    with ArchiveReader(output) as out_reader:
        out_entries = list(out_reader.entries())

        if len(source_records) != len(out_entries):
            raise VerificationError(
                f"Output has {len(out_entries)} entries, source has {len(source_records)}"
            )

        for src, out_entry in zip(source_records, out_entries):
            out = out_entry.to_record()
            if src.name != out.name:
                raise VerificationError(
                    f"Entry order differs: expected {src.name!r}, found {out.name!r}"
                )

            padlen = len(out.extra) - len(src.extra)
            checks.append(
                EntryCheck(
                    name=out.name,
                    is_stored=out.is_stored,
                    source_extra_length=len(src.extra),
                    output_extra_length=len(out.extra),
                    padlen=padlen,
                    bias_before=bias,
                    data_offset=out_reader.read_local_header(out_entry.info).data_offset,
                    problem=_find_problem(src, out, padlen, bias, alignment),
                )
            )
            bias += max(padlen, 0)

    return checks


def _find_problem(
    src: EntryRecord, out: EntryRecord, padlen: int, bias: int, alignment: int
) -> Optional[str]:
    if (src.compress_type, src.crc, src.compress_size, src.file_size) != (
        out.compress_type, out.crc, out.compress_size, out.file_size
    ):
        return "payload metadata differs from source"
    if padlen < 0 or out.extra[: len(src.extra)] != src.extra:
        return "extra field does not start with the source extra field"
    if out.extra[len(src.extra):].strip(b"\x00"):
        return "padding is not zero-filled"
    if not src.is_stored:
        return "compressed entry was padded" if padlen else None
    if padlen >= alignment:
        return f"padding of {padlen} bytes is not below the alignment of {alignment}"
    if (len(out.extra) + bias) % alignment:
        return (
            f"extra field of {len(out.extra)} bytes with bias {bias} "
            f"is not a multiple of {alignment}"
        )
    return None


def ensure_aligned(checks: List[EntryCheck]) -> None:
    failed = [check for check in checks if not check.ok]
    if failed:
        raise VerificationError(
            "Misaligned entries: "
            + ", ".join(f"{check.name} ({check.problem})" for check in failed)
        )
