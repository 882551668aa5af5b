"""Aligned ZIP rewriting."""

from __future__ import annotations

import contextlib
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

import click

from ..aligner import PaddedEntry
from ..archive import DEFAULT_CHUNK_SIZE, ArchiveReader, ArchiveWriter, EntryRecord, SourceEntry
from ..errors import ArchiveWriteError
from ..manifest import AlignmentReport
from ..planner import Planner


@dataclass(frozen=True)
class ExportResult:
    """Summary of one aligned export."""

    output: Path
    entries: int
    stored_entries: int
    total_padding: int
    sources: Tuple[EntryRecord, ...] = ()
    """Source entry metadata, captured before the output replaced anything."""


class AlignedZipExporter:
    """
    Copies a ZIP archive so that the data of every stored entry is aligned.

    The rewritten archive is byte-identical in payloads, methods, sizes and CRCs.
    Only the extra fields of stored entries grow by the computed padding.
    """

    def __init__(
        self,
        alignment: int = 4,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        verbose: bool = False,
    ):
        if alignment <= 0:
            raise ValueError(f"Alignment must be a positive integer, got {alignment}")
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")
        self.alignment = alignment
        self.chunk_size = chunk_size
        self.verbose = verbose

    def export(
        self, src_zip: Path, dest_zip: Path, report: Optional[AlignmentReport] = None
    ) -> ExportResult:
        """
        Writes the aligned copy of `src_zip` to `dest_zip`.

        This method:
        1. Reads the source entries in archive order.
        2. Plans each entry's padding against the running bias.
        3. Streams the raw payload into a temporary file next to `dest_zip`.
        4. Saves the report, if any.
        5. Replaces `dest_zip` only once the whole archive has been written.
        """
        src_zip = Path(src_zip)
        dest_zip = Path(dest_zip)

        planner = Planner(self.alignment)
        entries = 0
        stored_entries = 0
        sources: List[EntryRecord] = []

        with ArchiveReader(src_zip) as reader:
            tmp_fp, tmp_path = self._create_temp_file(dest_zip)
            committed = False
            try:
                with tmp_fp as fp:
                    writer = ArchiveWriter(fp)

                    for source in reader.entries():
                        if self.verbose:
                            click.echo(f"Processing {source.name!r} from input archive")

                        sources.append(source.to_record())
                        padded = planner.next(source.to_entry())
                        self._log_decision(source, padded)

                        writer.write_entry(
                            source,
                            source.extra + b"\x00" * padded.padlen,
                            reader.iter_payload(source, self.chunk_size),
                        )

                        entries += 1
                        if padded.entry.is_stored:
                            stored_entries += 1
                        if report is not None:
                            report.add_entry(padded)

                    writer.close(comment=reader.comment)

                if report is not None:
                    try:
                        report.save()
                    except OSError as e:
                        raise ArchiveWriteError(
                            f"Cannot write report {report.report_path}: {e}"
                        ) from e

                self._commit(tmp_path, dest_zip)
                committed = True
            finally:
                if not committed:
                    with contextlib.suppress(OSError):
                        tmp_path.unlink()

        return ExportResult(
            output=dest_zip,
            entries=entries,
            stored_entries=stored_entries,
            total_padding=planner.total_padding(),
            sources=tuple(sources),
        )

    def _log_decision(self, source: SourceEntry, padded: PaddedEntry) -> None:
        if not self.verbose:
            return

        entry = padded.entry
        if not entry.is_stored:
            click.echo(f"--- {entry.name}: len {source.info.file_size} (compressed)")
            return

        click.echo(
            f"--- {entry.name}: extra {entry.existing_extra_length} bytes, "
            f"padding {padded.padlen} bytes, bias {padded.bias_before}"
        )

    @staticmethod
    def _create_temp_file(dest_zip: Path) -> Tuple[BinaryIO, Path]:
        try:
            dest_zip.parent.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(
                prefix=f".{dest_zip.name}.", suffix=".tmp", dir=dest_zip.parent
            )
            fp = os.fdopen(fd, "wb")
        except OSError as e:
            raise ArchiveWriteError(f"Cannot create output archive {dest_zip}: {e}") from e
        return fp, Path(name)

    @staticmethod
    def _commit(tmp_path: Path, dest_zip: Path) -> None:
        try:
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, dest_zip)
        except OSError as e:
            raise ArchiveWriteError(f"Cannot write output archive {dest_zip}: {e}") from e
