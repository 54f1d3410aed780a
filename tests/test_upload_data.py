import io
import pytest
from upload_engine.core.exceptions import UploadDataError
from upload_engine.uploader.data import BytesUploadData, FileUploadData, StreamUploadData

CONTENT = b"0123456789abcdefghij"


def read(data, offset, size):
    buffer = bytearray(size)
    count = data.read_at(offset, buffer)
    return bytes(buffer[:count])


def test_bytes_data_reads_from_any_offset():
    data = BytesUploadData(CONTENT)

    assert data.length == 20
    assert read(data, 0, 4) == b"0123"
    assert read(data, 15, 10) == b"fghij"
    assert read(data, 20, 4) == b""


def test_bytes_data_fills_memoryview_slices():
    data = BytesUploadData(CONTENT)
    buffer = memoryview(bytearray(8))

    count = data.read_at(10, buffer[:3])

    assert count == 3
    assert bytes(buffer[:3]) == b"abc"


def test_offset_outside_payload_is_rejected():
    data = BytesUploadData(CONTENT)

    with pytest.raises(UploadDataError):
        read(data, 21, 1)
    with pytest.raises(UploadDataError):
        read(data, -1, 1)


def test_file_data_reads_ranges(tmp_path):
    path = tmp_path / "payload.bin"
    path.write_bytes(CONTENT)

    with FileUploadData(path) as data:
        assert data.length == 20
        assert read(data, 5, 5) == b"56789"
        assert read(data, 0, 3) == b"012"
        assert read(data, 18, 10) == b"ij"


def test_file_data_requires_readable_file(tmp_path):
    with pytest.raises(UploadDataError):
        FileUploadData(tmp_path / "missing.bin")


def test_file_data_reports_closed_file(tmp_path):
    path = tmp_path / "payload.bin"
    path.write_bytes(CONTENT)
    data = FileUploadData(path)
    data.close()

    with pytest.raises(UploadDataError):
        read(data, 0, 4)


def test_stream_data_can_seek_backwards():
    """Bytes already consumed from the stream are served from the spool."""
    stream = io.BytesIO(CONTENT)
    data = StreamUploadData(stream, length=20, spool_size=4)

    assert read(data, 10, 5) == b"abcde"
    assert read(data, 0, 10) == b"0123456789"
    assert read(data, 12, 20) == b"cdefghij"
    data.close()


def test_stream_data_returns_short_reads_when_stream_ends_early():
    data = StreamUploadData(io.BytesIO(CONTENT[:8]), length=20)

    assert read(data, 4, 10) == b"4567"
    assert read(data, 8, 10) == b""


def test_stream_data_rejects_negative_length():
    with pytest.raises(ValueError):
        StreamUploadData(io.BytesIO(b""), length=-1)
