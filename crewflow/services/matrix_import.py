"""
Spreadsheet decoder — parses an edited matrix workbook into column/row sets
and a flat list of cell operations.

No writes happen here.  Whole-request problems raise MatrixFormatError;
row- and cell-level problems are counted as "ignored" and described in
``warnings``.
"""

import io
import logging
import zipfile
from dataclasses import dataclass, field

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from crewflow.core.exceptions import MatrixFormatError
from crewflow.models.matrix import LEGACY_OBLIGATION_CODES, OBLIGATION_CODES, OBLIGATION_NOT_APPLICABLE
from crewflow.services import catalog_service
from crewflow.services.matrix_layout import (
    FIRST_DATA_ROW,
    FIRST_TRAINING_COL,
    FUNCTION_COL,
    HEADER_ROW,
    LAYOUT_VERSION,
    MATRIX_SHEET,
    cell_text,
    parse_label_id,
    parse_layout_version,
)

logger = logging.getLogger(__name__)


class InvalidObligation(ValueError):
    """Cell value outside the obligation vocabulary after normalization."""


@dataclass
class CellOperation:
    """Desired state of one (function, training) pair; ``value`` None means remove."""

    function_id: int
    training_id: int
    value: str | None
    cell: str = ""

    @property
    def is_removal(self) -> bool:
        return self.value is None


@dataclass
class DecodedMatrix:
    training_ids: list[int] = field(default_factory=list)
    function_ids: list[int] = field(default_factory=list)
    operations: list[CellOperation] = field(default_factory=list)
    ignored_rows: int = 0
    ignored_cells: int = 0
    warnings: list[str] = field(default_factory=list)
    layout_version: int | None = None

    @property
    def ignored(self) -> int:
        return self.ignored_rows + self.ignored_cells


def normalize_obligation(raw) -> str | None:
    """Map a raw cell to a stored code, or None for the removal signal.

    Blank and N/A remove; legacy codes are remapped; anything else raises
    InvalidObligation.
    """
    text = _value_text(raw).upper()
    if not text or text == OBLIGATION_NOT_APPLICABLE:
        return None
    text = LEGACY_OBLIGATION_CODES.get(text, text)
    if text not in OBLIGATION_CODES:
        raise InvalidObligation(text)
    return text


def _value_text(raw) -> str:
    text = cell_text(raw)
    # Formulas without a cached result (never opened in Excel) read as blank
    if text.startswith("="):
        return ""
    return text


def _open_workbook(content: bytes):
    try:
        return load_workbook(io.BytesIO(content), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise MatrixFormatError("File is not a readable xlsx workbook") from exc


def decode_matrix_workbook(content: bytes) -> DecodedMatrix:
    """Parse workbook bytes into a DecodedMatrix.

    Raises MatrixFormatError when the workbook is unreadable, carries an
    unsupported layout version, is too short to hold a header row, has no
    training columns, or names trainings unknown to the catalog.
    """
    wb = _open_workbook(content)
    decoded = DecodedMatrix()

    decoded.layout_version = parse_layout_version(wb.properties.keywords)
    if decoded.layout_version is not None and decoded.layout_version != LAYOUT_VERSION:
        raise MatrixFormatError(
            f"Unsupported matrix layout version {decoded.layout_version}; "
            f"export a fresh workbook (layout v{LAYOUT_VERSION})",
            details={"layout_version": decoded.layout_version},
        )

    if MATRIX_SHEET in wb.sheetnames:
        ws = wb[MATRIX_SHEET]
    else:
        ws = wb.worksheets[0]
        logger.warning("Sheet %r not found, reading first sheet %r", MATRIX_SHEET, ws.title)

    max_row = ws.max_row or 0
    max_col = ws.max_column or 0
    if max_row < HEADER_ROW:
        raise MatrixFormatError(
            f"Sheet '{ws.title}' has no header row (expected at row {HEADER_ROW})",
        )

    # ── Header row → training columns ────────────────────────────────────
    columns: list[tuple[int, int]] = []
    for col in range(FIRST_TRAINING_COL, max_col + 1):
        training_id = parse_label_id(_value_text(ws.cell(row=HEADER_ROW, column=col).value))
        if training_id is None:
            continue
        columns.append((col, training_id))
        if training_id not in decoded.training_ids:
            decoded.training_ids.append(training_id)

    if not columns:
        raise MatrixFormatError("No training columns found in the header row")

    missing = catalog_service.missing_training_ids(decoded.training_ids)
    if missing:
        raise MatrixFormatError(
            f"Unknown training ids in header: {', '.join(str(i) for i in missing)}",
            details={"unknown_training_ids": missing},
        )

    # ── Data rows → function ids ─────────────────────────────────────────
    rows: list[tuple[int, int]] = []
    for row in range(FIRST_DATA_ROW, max_row + 1):
        label = _value_text(ws.cell(row=row, column=FUNCTION_COL).value)
        if not label:
            continue
        function_id = parse_label_id(label)
        if function_id is None:
            decoded.ignored_rows += 1
            decoded.warnings.append(f"Row {row}: function label '{label}' has no numeric id")
            continue
        rows.append((row, function_id))

    known = catalog_service.functions_by_id(fid for _, fid in rows)
    for row, function_id in rows:
        if function_id not in known:
            decoded.ignored_rows += 1
            decoded.warnings.append(f"Row {row}: function id {function_id} does not exist")
            continue
        if function_id not in decoded.function_ids:
            decoded.function_ids.append(function_id)

        for col, training_id in columns:
            raw = ws.cell(row=row, column=col).value
            coordinate = f"{get_column_letter(col)}{row}"
            try:
                value = normalize_obligation(raw)
            except InvalidObligation as exc:
                decoded.ignored_cells += 1
                decoded.warnings.append(f"Cell {coordinate}: invalid obligation '{exc}'")
                continue
            decoded.operations.append(CellOperation(function_id, training_id, value, coordinate))

    logger.info(
        "Matrix decoded: %d training columns, %d function rows, %d operations, %d ignored",
        len(decoded.training_ids), len(decoded.function_ids), len(decoded.operations), decoded.ignored,
    )
    return decoded
