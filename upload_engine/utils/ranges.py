import re
from typing import Optional, Tuple

# "bytes=0-1023" as sent back by the server in 308 responses
RANGE_PATTERN = re.compile(r"(\d+)-(\d+)")

# "bytes 0-1023/4096" or "bytes */4096"
CONTENT_RANGE_PATTERN = re.compile(r"^bytes (?:(\d+)-(\d+)|\*)/(\d+|\*)$")


def format_content_range(start_byte: int, length: int, total_bytes: int) -> str:
    """
    Build the Content-Range value for a chunk request.

    Zero-length chunks carry no byte positions, only the total.
    """
    if total_bytes == 0 or length == 0:
        return f"bytes */{total_bytes}"
    return f"bytes {start_byte}-{start_byte + length - 1}/{total_bytes}"


def parse_content_range(header: str) -> Tuple[Optional[int], Optional[int], Optional[int]]:
    """
    Parse a Content-Range request header.

    Returns:
        Tuple containing (start_byte, end_byte, total_bytes); the positions
        are None for "bytes */N" and the total is None for an unknown length.

    Raises:
        ValueError: If the header is malformed or the range is inverted
    """
    match = CONTENT_RANGE_PATTERN.match(header.strip())
    if not match:
        raise ValueError(f"Invalid Content-Range header: {header!r}")

    start_str, end_str, total_str = match.groups()
    total_bytes = None if total_str == "*" else int(total_str)
    if start_str is None:
        return None, None, total_bytes

    start_byte, end_byte = int(start_str), int(end_str)
    if end_byte < start_byte:
        raise ValueError("Invalid byte range (end_byte < start_byte)")
    if total_bytes is not None and end_byte >= total_bytes:
        raise ValueError("Invalid byte range (end_byte beyond total length)")
    return start_byte, end_byte, total_bytes


def format_range_header(bytes_received: int) -> Optional[str]:
    """
    Build the Range header acknowledging the first bytes_received bytes.
    Nothing is acknowledged when no bytes have been stored.
    """
    if bytes_received <= 0:
        return None
    return f"bytes=0-{bytes_received - 1}"


def next_byte_from_range_header(range_header: Optional[str]) -> int:
    """
    Compute the next byte to send from a server's Range header.

    Servers must acknowledge from the beginning of the payload, so any
    range that does not start at 0, or that cannot be parsed, means
    starting over from byte 0.
    """
    if not range_header or "-" not in range_header:
        return 0

    match = RANGE_PATTERN.search(range_header)
    if not match:
        return 0

    first_byte, last_byte = int(match.group(1)), int(match.group(2))
    if first_byte != 0:
        return 0
    return last_byte + 1
