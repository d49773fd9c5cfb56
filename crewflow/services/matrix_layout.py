"""
Training matrix workbook layout — the on-disk contract shared by the
exporter and the importer.

Primary sheet ("Matrix"):
    Rows 1-3   per training column: id / hours / validity (formulas keyed
               off the header cell in row 4)
    Row 4      header — A: function group label, B: training group label,
               C..: "<TrainingId> - <TrainingName>" or blank (spare capacity)
    Rows 5..   A: "<FunctionId> - <FunctionName> - <Regime>" or blank,
               C..: RA | AP | C | SD | N/A or blank

Label grammar (both header and row labels):

    label   := integer SEP text
    SEP     := " - "

Only the leading integer is significant on import; the text is informative.
Bump LAYOUT_VERSION whenever the separator, the row offsets or the column
offsets change.  The version travels in the workbook keywords property.
"""

import re

LAYOUT_VERSION = 1
LAYOUT_MARKER_PREFIX = "training-matrix-layout:v"
LAYOUT_MARKER = f"{LAYOUT_MARKER_PREFIX}{LAYOUT_VERSION}"

LABEL_SEPARATOR = " - "

# ── Sheet names ───────────────────────────────────────────────────────────────
MATRIX_SHEET = "Matrix"
TRAININGS_SHEET = "Trainings"
FUNCTIONS_SHEET = "Functions"
OBLIGATIONS_SHEET = "ObligationTypes"
SUMMARY_SHEET = "Summary"
LEGEND_SHEET = "Legend"

# ── Offsets (1-based, as openpyxl addresses cells) ───────────────────────────
ID_ROW = 1
HOURS_ROW = 2
VALIDITY_ROW = 3
HEADER_ROW = 4
FIRST_DATA_ROW = 5

FUNCTION_COL = 1
GROUP_COL = 2
FIRST_TRAINING_COL = 3

FUNCTION_HEADER_LABEL = "Function (ID - Name - Regime)"
TRAINING_GROUP_LABEL = "Training >"

DEFAULT_TRAINING_CAPACITY = 50
DEFAULT_ROW_CAPACITY = 300

_LEADING_ID = re.compile(r"^\d+$")
_MARKER = re.compile(re.escape(LAYOUT_MARKER_PREFIX) + r"(\d+)")


def training_label(training_id: int, name: str | None) -> str:
    return f"{training_id}{LABEL_SEPARATOR}{name or ''}"


def function_label(function_id: int, name: str | None, regime: str | None) -> str:
    return f"{function_id}{LABEL_SEPARATOR}{name or 'N/A'}{LABEL_SEPARATOR}{regime or 'N/A'}"


def cell_text(value) -> str:
    """Render a raw cell value as trimmed text.

    Whole floats (Excel stores typed numbers as doubles) lose their ".0" so a
    header typed as ``12`` still parses as id 12.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_label_id(value) -> int | None:
    """Return the leading integer id of a label, or None when it has none.

    ``"12 - Working at Height"`` → 12, ``"12"`` → 12,
    ``"Working at Height"`` → None, ``"0 - X"`` → None.
    """
    text = cell_text(value)
    if not text:
        return None
    head = text.split(LABEL_SEPARATOR.strip(), 1)[0].strip()
    if not _LEADING_ID.match(head):
        return None
    parsed = int(head)
    return parsed or None


def parse_layout_version(keywords: str | None) -> int | None:
    """Extract the layout version from the workbook keywords, if present."""
    if not keywords:
        return None
    match = _MARKER.search(keywords)
    return int(match.group(1)) if match else None
