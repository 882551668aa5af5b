import json
import zipfile

import pytest
from zip_aligner.archive import ArchiveReader, ArchiveWriter
from zip_aligner.errors import ArchiveReadError, ArchiveWriteError
from zip_aligner.exporters.zip import AlignedZipExporter
from zip_aligner.manifest import AlignmentReport
from zip_aligner.verifier import verify


def test_export_pads_stored_entries(sample_zip, tmp_path):
    dest = tmp_path / "aligned.zip"

    result = AlignedZipExporter(alignment=4).export(sample_zip, dest)

    assert result.entries == 3
    assert result.stored_entries == 2
    assert result.total_padding == 3

    with zipfile.ZipFile(dest) as zf:
        assert zf.getinfo("A").extra == b""
        assert zf.getinfo("B").extra == b""
        assert zf.getinfo("C").extra == b"\x00" * 4
        assert zf.read("A") == b"0123456789"
        assert zf.read("B") == b"hello"
        assert zf.read("C") == b"abc"
        assert zf.getinfo("B").compress_type == zipfile.ZIP_DEFLATED


def test_export_output_passes_verification(sample_zip, tmp_path):
    dest = tmp_path / "aligned.zip"
    AlignedZipExporter(alignment=4).export(sample_zip, dest)

    checks = verify(sample_zip, dest, 4)

    assert all(check.ok for check in checks)
    assert [check.padlen for check in checks] == [0, 0, 3]


def test_compressed_payload_is_copied_verbatim(make_zip, tmp_path):
    source = make_zip(
        [
            ("text.txt", b"lorem ipsum " * 200, zipfile.ZIP_DEFLATED, b"\x00"),
            ("raw.bin", bytes(range(256)), zipfile.ZIP_STORED, b"\x00"),
        ]
    )
    dest = tmp_path / "aligned.zip"
    AlignedZipExporter(alignment=8, chunk_size=7).export(source, dest)

    def raw_payloads(path):
        with ArchiveReader(path) as reader:
            return [
                b"".join(bytes(chunk) for chunk in reader.iter_payload(entry))
                for entry in reader.entries()
            ]

    assert raw_payloads(dest) == raw_payloads(source)

    with zipfile.ZipFile(dest) as zf:
        assert zf.getinfo("text.txt").extra == b"\x00"
        assert zf.getinfo("raw.bin").extra == b"\x00" * 8


def test_export_keeps_archive_comment(make_zip, tmp_path):
    source = make_zip([("a", b"a", zipfile.ZIP_STORED, b"")], comment=b"hello comment")
    dest = tmp_path / "aligned.zip"

    AlignedZipExporter().export(source, dest)

    with zipfile.ZipFile(dest) as zf:
        assert zf.comment == b"hello comment"


@pytest.mark.parametrize("alignment", [2, 3, 4, 16])
def test_every_stored_entry_is_aligned(make_zip, tmp_path, alignment):
    entries = [
        (f"file{i}", b"x" * (i * 3 + 1), zipfile.ZIP_STORED, b"\x00" * (i % 5))
        for i in range(12)
    ]
    source = make_zip(entries)
    dest = tmp_path / "aligned.zip"

    result = AlignedZipExporter(alignment=alignment).export(source, dest)
    checks = verify(source, dest, alignment)

    assert all(check.ok for check in checks)
    assert result.total_padding == sum(check.padlen for check in checks)


def test_export_can_replace_its_input(sample_zip):
    AlignedZipExporter(alignment=4).export(sample_zip, sample_zip)

    with zipfile.ZipFile(sample_zip) as zf:
        assert zf.getinfo("C").extra == b"\x00" * 4
        assert zf.read("C") == b"abc"


def test_export_writes_report(sample_zip, tmp_path):
    report = AlignmentReport(tmp_path / "reports" / "alignment.json", alignment=4)

    AlignedZipExporter(alignment=4).export(sample_zip, tmp_path / "aligned.zip", report=report)

    data = json.loads(report.report_path.read_text())
    assert data["alignment"] == 4
    assert data["total_padding"] == 3
    assert [e["name"] for e in data["entries"]] == ["A", "B", "C"]
    assert data["entries"][2] == {
        "name": "C",
        "stored": True,
        "extra_length": 1,
        "padding": 3,
        "bias": 0,
    }


def test_verbose_export_logs_decisions(sample_zip, tmp_path, capsys):
    AlignedZipExporter(alignment=4, verbose=True).export(sample_zip, tmp_path / "aligned.zip")

    out = capsys.readouterr().out
    assert "--- B: len 5 (compressed)" in out
    assert "--- C: extra 1 bytes, padding 3 bytes, bias 0" in out


def test_missing_input_leaves_no_output(tmp_path):
    dest = tmp_path / "aligned.zip"

    with pytest.raises(ArchiveReadError):
        AlignedZipExporter().export(tmp_path / "missing.zip", dest)

    assert list(tmp_path.iterdir()) == []


def test_failed_write_keeps_previous_output(sample_zip, tmp_path, mocker):
    dest = tmp_path / "aligned.zip"
    dest.write_bytes(b"previous")
    mocker.patch.object(ArchiveWriter, "write_entry", side_effect=ArchiveWriteError("disk full"))

    with pytest.raises(ArchiveWriteError, match="disk full"):
        AlignedZipExporter().export(sample_zip, dest)

    assert dest.read_bytes() == b"previous"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["aligned.zip", "source.zip"]


def test_exporter_rejects_bad_settings():
    with pytest.raises(ValueError):
        AlignedZipExporter(alignment=0)
    with pytest.raises(ValueError):
        AlignedZipExporter(chunk_size=0)


def relabel_as_deflated(source, dest, name):
    """Copies `source`, marking entry `name` as deflated while keeping its unshrunk bytes."""
    with ArchiveReader(source) as reader, open(dest, "wb") as fp:
        writer = ArchiveWriter(fp)
        for entry in reader.entries():
            if entry.name == name:
                entry.info.compress_type = zipfile.ZIP_DEFLATED
            writer.write_entry(entry, entry.extra, reader.iter_payload(entry))
        writer.close()
    return dest


def test_deflated_entry_that_did_not_shrink_is_padded(make_zip, tmp_path):
    plain = make_zip([("packed.bin", b"0123456789", zipfile.ZIP_STORED, b"\x00")])
    source = relabel_as_deflated(plain, tmp_path / "relabelled.zip", "packed.bin")
    dest = tmp_path / "aligned.zip"

    with ArchiveReader(source) as reader:
        entry = next(reader.entries())
        assert entry.info.compress_type == zipfile.ZIP_DEFLATED
        assert entry.is_stored

    result = AlignedZipExporter(alignment=4).export(source, dest)

    assert result.stored_entries == 1
    assert result.total_padding == 3
    with zipfile.ZipFile(dest) as zf:
        info = zf.getinfo("packed.bin")
        assert info.compress_type == zipfile.ZIP_DEFLATED
        assert info.extra == b"\x00" * 4
        assert info.compress_size == info.file_size == 10
    assert all(check.ok for check in verify(source, dest, 4))


def test_failed_report_keeps_previous_output(sample_zip, tmp_path):
    dest = tmp_path / "aligned.zip"
    dest.write_bytes(b"previous")
    report_path = tmp_path / "report.json"
    report_path.mkdir()

    with pytest.raises(ArchiveWriteError, match="Cannot write report"):
        AlignedZipExporter().export(sample_zip, dest, report=AlignmentReport(report_path, 4))

    assert dest.read_bytes() == b"previous"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["aligned.zip", "report.json", "source.zip"]


def test_export_result_keeps_source_entries(sample_zip, tmp_path):
    result = AlignedZipExporter().export(sample_zip, sample_zip)

    assert [record.name for record in result.sources] == ["A", "B", "C"]
    assert [len(record.extra) for record in result.sources] == [0, 0, 1]
    assert [record.is_stored for record in result.sources] == [True, False, True]
