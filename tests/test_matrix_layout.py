"""
Tests: matrix workbook label grammar and layout marker.

Pure functions — no database access.
"""

import pytest

from crewflow.services.matrix_layout import (
    LAYOUT_MARKER,
    LAYOUT_VERSION,
    cell_text,
    function_label,
    parse_label_id,
    parse_layout_version,
    training_label,
)


def test_training_label_uses_separator():
    assert training_label(12, "Work at Height") == "12 - Work at Height"


def test_function_label_fills_missing_parts():
    assert function_label(3, "Welder", "OFFSHORE") == "3 - Welder - OFFSHORE"
    assert function_label(3, "Welder", None) == "3 - Welder - N/A"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("12 - Work at Height", 12),
        ("12", 12),
        (12, 12),
        (12.0, 12),
        ("  7 - Rigger - ONSHORE ", 7),
        ("7-Rigger", 7),
        ("Work at Height", None),
        ("0 - Nothing", None),
        ("", None),
        (None, None),
        ("12a - Bad", None),
    ],
)
def test_parse_label_id(value, expected):
    assert parse_label_id(value) == expected


def test_cell_text_strips_and_drops_float_suffix():
    assert cell_text(None) == ""
    assert cell_text("  AP ") == "AP"
    assert cell_text(5.0) == "5"
    assert cell_text(5.5) == "5.5"


def test_layout_marker_round_trip():
    assert parse_layout_version(LAYOUT_MARKER) == LAYOUT_VERSION
    assert parse_layout_version(f"matrix, {LAYOUT_MARKER}") == LAYOUT_VERSION
    assert parse_layout_version("training-matrix-layout:v9") == 9


def test_layout_marker_absent():
    assert parse_layout_version(None) is None
    assert parse_layout_version("") is None
    assert parse_layout_version("some keywords") is None
