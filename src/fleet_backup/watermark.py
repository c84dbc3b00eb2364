"""Recover the last written timestamp of an output file from its last line."""

import logging
import os
from datetime import datetime, timezone

from fleet_backup.exceptions import FileContentionError, MalformedWatermarkError

logger = logging.getLogger(__name__)

MIN_TIMESTAMP = datetime.min.replace(tzinfo=timezone.utc)


def ends_with_newline(path: str | os.PathLike) -> bool:
    """True when the file is empty or its last byte is a newline."""
    with open(path, "rb") as f:
        if f.seek(0, os.SEEK_END) == 0:
            return True
        f.seek(-1, os.SEEK_END)
        return f.read(1) == b"\n"


def read_last_line(path: str | os.PathLike, encoding: str = "utf-8") -> str | None:
    """Return the last non-empty line of a file without reading all of it.

    Scans backwards one byte at a time and decodes only once the whole line
    has been collected, so multi-byte characters are never split.
    Returns None for an empty file.
    """
    with open(path, "rb") as f:
        position = f.seek(0, os.SEEK_END) - 1
        if position < 0:
            return None

        line = bytearray()
        while position >= 0:
            f.seek(position)
            byte = f.read(1)
            if byte == b"\n" and line.strip(b"\r\n"):
                break
            line[0:0] = byte
            position -= 1

    return line.decode(encoding, errors="replace").strip("\r\n")


def parse_timestamp(text: str) -> datetime | None:
    """Parse an ISO 8601 timestamp; naive values are UTC. None on garbage."""
    text = text.strip()
    if not text:
        return None
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_watermark_line(line: str) -> datetime:
    """Timestamp from the first comma-separated field of a data row."""
    first = line.split(",", 1)[0]
    ts = parse_timestamp(first)
    if ts is None:
        raise MalformedWatermarkError(f"Not a timestamp: {first[:40]!r}")
    return ts


def resolve_watermark(path: str | os.PathLike) -> datetime:
    """Latest timestamp already durable in ``path``.

    MIN_TIMESTAMP when the file is missing, empty, holds only the header or
    ends with a line we cannot parse. An unreadable file raises
    FileContentionError instead: writing without a watermark would duplicate
    every row already in it.
    """
    try:
        line = read_last_line(path)
    except FileNotFoundError:
        return MIN_TIMESTAMP
    except OSError as e:
        raise FileContentionError(
            f"Could not read last line of {path}: {e}", path=str(path)
        ) from e

    if not line or not line.strip():
        return MIN_TIMESTAMP
    try:
        return parse_watermark_line(line)
    except MalformedWatermarkError:
        logger.debug("No watermark in %s, writing all records", path)
        return MIN_TIMESTAMP
