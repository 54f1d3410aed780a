import pytest
from upload_engine.utils.ranges import (
    format_content_range,
    format_range_header,
    next_byte_from_range_header,
    parse_content_range,
)


def test_format_content_range():
    assert format_content_range(0, 10, 25) == "bytes 0-9/25"
    assert format_content_range(20, 5, 25) == "bytes 20-24/25"
    assert format_content_range(0, 0, 0) == "bytes */0"
    assert format_content_range(25, 0, 25) == "bytes */25"


def test_parse_content_range():
    assert parse_content_range("bytes 10-19/25") == (10, 19, 25)
    assert parse_content_range("bytes */25") == (None, None, 25)
    assert parse_content_range("bytes 0-9/*") == (0, 9, None)


@pytest.mark.parametrize("header", [
    "bytes 9-0/25",
    "bytes 0-25/25",
    "items 0-9/25",
    "bytes=0-9",
    "",
])
def test_parse_content_range_rejects_bad_headers(header):
    with pytest.raises(ValueError):
        parse_content_range(header)


def test_format_range_header():
    assert format_range_header(0) is None
    assert format_range_header(10) == "bytes=0-9"


@pytest.mark.parametrize("header, expected", [
    ("bytes=0-9", 10),
    ("0-41", 42),
    ("bytes=5-9", 0),
    ("bytes=garbage", 0),
    ("", 0),
    (None, 0),
])
def test_next_byte_from_range_header(header, expected):
    assert next_byte_from_range_header(header) == expected
