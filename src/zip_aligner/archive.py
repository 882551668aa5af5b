"""
Sequential ZIP reading and writing without touching entry payloads.

The standard library `zipfile` parses the central directory for us, but it can
only hand out decompressed data and always recompresses on write. Aligning an
archive must copy each payload verbatim, so payloads are read straight from
the source file and written behind hand-built headers.
"""

from __future__ import annotations

import struct
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, List, Optional, Tuple, Union

from .aligner import Entry, is_stored
from .errors import ArchiveReadError, ArchiveWriteError

LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"
CENTRAL_HEADER_SIGNATURE = b"PK\x01\x02"
END_OF_CENTRAL_DIR_SIGNATURE = b"PK\x05\x06"
DATA_DESCRIPTOR_SIGNATURE = b"PK\x07\x08"

LOCAL_HEADER_STRUCT = struct.Struct("<4s2B4HL2L2H")
CENTRAL_HEADER_STRUCT = struct.Struct("<4s4B4HL2L5H2L")
END_OF_CENTRAL_DIR_STRUCT = struct.Struct("<4s4H2LH")
DATA_DESCRIPTOR_STRUCT = struct.Struct("<4s3L")

FLAG_DATA_DESCRIPTOR = 1 << 3
FLAG_UTF8 = 1 << 11

ZIP32_LIMIT = 0xFFFFFFFF
ZIP16_LIMIT = 0xFFFF

DEFAULT_CHUNK_SIZE = 1024 * 1024

PathLike = Union[str, Path]


@dataclass(frozen=True)
class LocalHeader:
    """Position of an entry's local header and the lengths that follow it."""

    offset: int
    name_length: int
    extra_length: int

    @property
    def data_offset(self) -> int:
        return self.offset + LOCAL_HEADER_STRUCT.size + self.name_length + self.extra_length


@dataclass(frozen=True)
class EntryRecord:
    """Snapshot of the directory metadata of one entry, detached from its archive."""

    name: str
    extra: bytes
    compress_type: int
    crc: int
    compress_size: int
    file_size: int

    @property
    def is_stored(self) -> bool:
        return is_stored(self.compress_size, self.file_size)


@dataclass(frozen=True)
class SourceEntry:
    """One entry of a source archive, as recorded in its central directory."""

    info: zipfile.ZipInfo

    @property
    def name(self) -> str:
        return self.info.filename

    @property
    def raw_name(self) -> bytes:
        encoding = "utf-8" if self.info.flag_bits & FLAG_UTF8 else "cp437"
        return self.info.orig_filename.encode(encoding)

    @property
    def extra(self) -> bytes:
        return self.info.extra

    @property
    def is_stored(self) -> bool:
        return is_stored(self.info.compress_size, self.info.file_size)

    def to_entry(self) -> Entry:
        return Entry(
            name=self.name,
            is_stored=self.is_stored,
            existing_extra_length=len(self.extra),
        )

    def to_record(self) -> EntryRecord:
        return EntryRecord(
            name=self.name,
            extra=self.extra,
            compress_type=self.info.compress_type,
            crc=self.info.CRC,
            compress_size=self.info.compress_size,
            file_size=self.info.file_size,
        )


class ArchiveReader:
    """
    Reads a ZIP archive entry by entry, in central directory order.

    Use as a context manager; both the `zipfile.ZipFile` used for the directory
    and the raw file handle used for payloads are closed on exit.
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._zip: Optional[zipfile.ZipFile] = None
        self._fp: Optional[BinaryIO] = None

    def open(self) -> ArchiveReader:
        try:
            self._zip = zipfile.ZipFile(self.path, "r")
            self._fp = open(self.path, "rb")
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, NotImplementedError) as e:
            self.close()
            raise ArchiveReadError(f"Cannot open input archive {self.path}: {e}") from e
        return self

    def close(self) -> None:
        if self._fp is not None:
            self._fp.close()
            self._fp = None
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self) -> ArchiveReader:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def comment(self) -> bytes:
        return self._require_zip().comment

    def entries(self) -> Iterator[SourceEntry]:
        for info in self._require_zip().infolist():
            self._check_supported(info)
            yield SourceEntry(info)

    def read_local_header(self, info: zipfile.ZipInfo) -> LocalHeader:
        fp = self._require_fp()
        try:
            fp.seek(info.header_offset)
            header = fp.read(LOCAL_HEADER_STRUCT.size)
        except OSError as e:
            raise ArchiveReadError(f"Cannot read local header of {info.filename}: {e}") from e

        if len(header) != LOCAL_HEADER_STRUCT.size or header[:4] != LOCAL_HEADER_SIGNATURE:
            raise ArchiveReadError(
                f"Bad local header for {info.filename} at offset {info.header_offset}"
            )

        fields = LOCAL_HEADER_STRUCT.unpack(header)
        return LocalHeader(offset=info.header_offset, name_length=fields[10], extra_length=fields[11])

    def iter_payload(
        self, entry: SourceEntry, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> Iterator[memoryview]:
        """
        Streams the raw (possibly compressed) bytes of an entry.

        Every chunk is a view into the same reusable buffer, so it must be
        consumed before the next one is requested.
        """
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")

        fp = self._require_fp()
        local_header = self.read_local_header(entry.info)

        buffer = memoryview(bytearray(chunk_size))
        remaining = entry.info.compress_size

        try:
            fp.seek(local_header.data_offset)
            while remaining > 0:
                n = fp.readinto(buffer[: min(chunk_size, remaining)])
                if not n:
                    raise ArchiveReadError(
                        f"Unexpected end of archive while reading {entry.name} "
                        f"({remaining} bytes missing)"
                    )
                remaining -= n
                yield buffer[:n]
        except OSError as e:
            raise ArchiveReadError(f"Cannot read data of {entry.name}: {e}") from e

    def _check_supported(self, info: zipfile.ZipInfo) -> None:
        if max(info.file_size, info.compress_size, info.header_offset) >= ZIP32_LIMIT:
            raise ArchiveReadError(f"ZIP64 entries are not supported: {info.filename}")
        if info.volume != 0:
            raise ArchiveReadError(f"Multi-disk archives are not supported: {info.filename}")

    def _require_zip(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise RuntimeError("ArchiveReader is not open")
        return self._zip

    def _require_fp(self) -> BinaryIO:
        if self._fp is None:
            raise RuntimeError("ArchiveReader is not open")
        return self._fp


def dos_timestamp(date_time: Tuple[int, int, int, int, int, int]) -> Tuple[int, int]:
    """Packs a ZipInfo.date_time tuple into the (date, time) words of a ZIP header."""
    year, month, day, hour, minute, second = date_time
    dosdate = (year - 1980) << 9 | month << 5 | day
    dostime = hour << 11 | minute << 5 | (second // 2)
    return dosdate, dostime


class ArchiveWriter:
    """
    Writes a ZIP archive one entry at a time.

    Each entry keeps the metadata of its source entry; only the extra field is
    supplied by the caller. The central directory is written by `close()`.
    """

    def __init__(self, fileobj: BinaryIO):
        self._fp = fileobj
        self._written: List[Tuple[zipfile.ZipInfo, bytes, bytes, int]] = []
        self.closed = False

    def tell(self) -> int:
        try:
            return self._fp.tell()
        except OSError as e:
            raise ArchiveWriteError(f"Cannot determine output position: {e}") from e

    def write_entry(
        self, entry: SourceEntry, extra: bytes, payload: Iterable[Union[bytes, memoryview]]
    ) -> int:
        """Writes the local header, payload and optional data descriptor. Returns the header offset."""
        if self.closed:
            raise ArchiveWriteError("Archive has already been closed")

        info = entry.info
        name = entry.raw_name
        offset = self.tell()

        if offset >= ZIP32_LIMIT:
            raise ArchiveWriteError(f"Output archive too large for {entry.name} (ZIP64 is not supported)")
        if len(extra) > ZIP16_LIMIT:
            raise ArchiveWriteError(f"Extra field of {entry.name} exceeds {ZIP16_LIMIT} bytes")

        dosdate, dostime = dos_timestamp(info.date_time)
        header = LOCAL_HEADER_STRUCT.pack(
            LOCAL_HEADER_SIGNATURE,
            info.extract_version,
            info.reserved,
            info.flag_bits,
            info.compress_type,
            dostime,
            dosdate,
            info.CRC,
            info.compress_size,
            info.file_size,
            len(name),
            len(extra),
        )
        self._write(header + name + extra)

        copied = 0
        for chunk in payload:
            self._write(chunk)
            copied += len(chunk)

        if copied != info.compress_size:
            raise ArchiveWriteError(
                f"Wrote {copied} bytes for {entry.name}, expected {info.compress_size}"
            )

        if info.flag_bits & FLAG_DATA_DESCRIPTOR:
            self._write(
                DATA_DESCRIPTOR_STRUCT.pack(
                    DATA_DESCRIPTOR_SIGNATURE, info.CRC, info.compress_size, info.file_size
                )
            )

        self._written.append((info, name, extra, offset))
        return offset

    def close(self, comment: bytes = b"") -> None:
        """Writes the central directory and the end record."""
        if self.closed:
            return

        if len(self._written) > ZIP16_LIMIT:
            raise ArchiveWriteError(f"Too many entries ({len(self._written)}) for a non-ZIP64 archive")

        cd_offset = self.tell()
        for info, name, extra, offset in self._written:
            dosdate, dostime = dos_timestamp(info.date_time)
            record = CENTRAL_HEADER_STRUCT.pack(
                CENTRAL_HEADER_SIGNATURE,
                info.create_version,
                info.create_system,
                info.extract_version,
                info.reserved,
                info.flag_bits,
                info.compress_type,
                dostime,
                dosdate,
                info.CRC,
                info.compress_size,
                info.file_size,
                len(name),
                len(extra),
                len(info.comment),
                0,
                info.internal_attr,
                info.external_attr,
                offset,
            )
            self._write(record + name + extra + info.comment)

        cd_end = self.tell()
        if cd_end >= ZIP32_LIMIT:
            raise ArchiveWriteError("Output archive too large (ZIP64 is not supported)")

        count = len(self._written)
        self._write(
            END_OF_CENTRAL_DIR_STRUCT.pack(
                END_OF_CENTRAL_DIR_SIGNATURE,
                0,
                0,
                count,
                count,
                cd_end - cd_offset,
                cd_offset,
                len(comment),
            )
            + comment
        )

        try:
            self._fp.flush()
        except OSError as e:
            raise ArchiveWriteError(f"Cannot flush output archive: {e}") from e

        self.closed = True

    def _write(self, data: Union[bytes, memoryview]) -> None:
        try:
            self._fp.write(data)
        except OSError as e:
            raise ArchiveWriteError(f"Cannot write output archive: {e}") from e
