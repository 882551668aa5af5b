import zipfile

import pytest

FIXED_DATE = (1980, 1, 1, 0, 0, 0)


def write_zip(path, entries, comment=b""):
    """
    Writes a test archive. `entries` is a list of (name, data, compress_type, extra).
    """
    with zipfile.ZipFile(path, "w") as zf:
        for name, data, compress_type, extra in entries:
            info = zipfile.ZipInfo(name, date_time=FIXED_DATE)
            info.compress_type = compress_type
            info.extra = extra
            zf.writestr(info, data)
        zf.comment = comment
    return path


@pytest.fixture
def make_zip(tmp_path):
    def _make(entries, name="source.zip", comment=b""):
        return write_zip(tmp_path / name, entries, comment=comment)

    return _make


@pytest.fixture
def sample_zip(make_zip):
    """A: stored without extra, B: compressed, C: stored with a one byte extra field."""
    return make_zip(
        [
            ("A", b"0123456789", zipfile.ZIP_STORED, b""),
            ("B", b"hello", zipfile.ZIP_DEFLATED, b""),
            ("C", b"abc", zipfile.ZIP_STORED, b"\x00"),
        ]
    )
