from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from fleet_backup.exceptions import FileContentionError, MalformedWatermarkError
from fleet_backup.watermark import (
    MIN_TIMESTAMP,
    ends_with_newline,
    parse_timestamp,
    parse_watermark_line,
    read_last_line,
    resolve_watermark,
)
from fleet_backup.writer import HEADER


def test_read_last_line_single_row_without_newline(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_bytes(b"2024-01-01T00:00:00Z,E1,Truck 1,G9,VIN1,1,2,3,-")
    assert read_last_line(path) == "2024-01-01T00:00:00Z,E1,Truck 1,G9,VIN1,1,2,3,-"


def test_read_last_line_ignores_trailing_newlines(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_bytes(b"first\nsecond\r\n\n")
    assert read_last_line(path) == "second"


def test_read_last_line_multibyte_characters(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_text("header\n2024-01-01T00:00:00Z,E1,Camión Ñandú,G9\n", encoding="utf-8")
    assert read_last_line(path) == "2024-01-01T00:00:00Z,E1,Camión Ñandú,G9"


def test_read_last_line_empty_file(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_bytes(b"")
    assert read_last_line(path) is None


def test_parse_timestamp_variants():
    assert parse_timestamp("2024-01-01T00:00:00Z") == datetime(
        2024, 1, 1, tzinfo=timezone.utc
    )
    # Naive values are UTC
    assert parse_timestamp("2024-01-01T00:00:00") == datetime(
        2024, 1, 1, tzinfo=timezone.utc
    )
    assert parse_timestamp("sTimestamp") is None
    assert parse_timestamp("") is None


def test_parse_watermark_line_rejects_header():
    with pytest.raises(MalformedWatermarkError):
        parse_watermark_line(HEADER)


def test_resolve_watermark_missing_file(tmp_path):
    assert resolve_watermark(tmp_path / "nope.csv") == MIN_TIMESTAMP


def test_resolve_watermark_header_only(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_text(HEADER + "\n")
    assert resolve_watermark(path) == MIN_TIMESTAMP


def test_resolve_watermark_malformed_last_line(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_text(HEADER + "\nnot a date,E1\n")
    assert resolve_watermark(path) == MIN_TIMESTAMP


def test_resolve_watermark_reads_last_row(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_text(
        HEADER
        + "\n2024-01-01T00:00:00Z,E1,T,G,V,1,2,3,-"
        + "\n2024-01-01T00:05:30.250000Z,E2,T,G,V,-,-,-,100\n"
    )
    assert resolve_watermark(path) == datetime(
        2024, 1, 1, 0, 5, 30, 250000, tzinfo=timezone.utc
    )


def test_resolve_watermark_unreadable_file(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_text(HEADER + "\n")
    with patch(
        "fleet_backup.watermark.read_last_line",
        side_effect=PermissionError("locked"),
    ):
        with pytest.raises(FileContentionError):
            resolve_watermark(path)


def test_ends_with_newline(tmp_path):
    path = tmp_path / "b1.csv"
    path.write_bytes(b"")
    assert ends_with_newline(path) is True
    path.write_bytes(b"row\n")
    assert ends_with_newline(path) is True
    path.write_bytes(b"row")
    assert ends_with_newline(path) is False
