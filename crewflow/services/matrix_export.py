"""
Spreadsheet encoder — renders a contract's training matrix as an editable
xlsx workbook.

The workbook is the round-trip format read back by ``matrix_import``; the
cell layout lives in ``matrix_layout`` and must not be changed here alone.

Sheets:
    Matrix           the editable grid (function rows × training columns)
    Summary          contract identification
    Legend           obligation codes and which regions are editable
    Trainings        catalog source for the header dropdown and lookups
    Functions        catalog source for the function dropdown
    ObligationTypes  source for the obligation dropdown
"""

import io
import logging
import os
import re
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.drawing.image import Image
from openpyxl.styles import Alignment, Protection
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from crewflow.models.matrix import OBLIGATION_LABELS, OBLIGATION_NOT_APPLICABLE, OBLIGATION_TYPES
from crewflow.services import catalog_service, matrix_repository
from crewflow.services.matrix_layout import (
    DEFAULT_ROW_CAPACITY,
    DEFAULT_TRAINING_CAPACITY,
    FIRST_DATA_ROW,
    FIRST_TRAINING_COL,
    FUNCTION_COL,
    FUNCTION_HEADER_LABEL,
    FUNCTIONS_SHEET,
    GROUP_COL,
    HEADER_ROW,
    HOURS_ROW,
    ID_ROW,
    LAYOUT_MARKER,
    LEGEND_SHEET,
    MATRIX_SHEET,
    OBLIGATIONS_SHEET,
    SUMMARY_SHEET,
    TRAINING_GROUP_LABEL,
    TRAININGS_SHEET,
    VALIDITY_ROW,
    function_label,
    training_label,
)
from crewflow.services.xlsx_style import (
    CENTER,
    HIGHLIGHT_FILL,
    META_FILL,
    META_FONT,
    NOTE_FONT,
    THIN_BORDER,
    TITLE_FONT,
    apply_header_style,
    auto_width,
    write_table,
)

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
WORKBOOK_CREATOR = "CrewFlow"

UNLOCKED = Protection(locked=False)
LOGO_WIDTH_PX = 150
LOGO_HEIGHT_PX = 56


def export_filename(contract_number: str) -> str:
    safe = re.sub(r"[^\w.-]+", "_", contract_number or "").strip("_") or "contract"
    return f"training-matrix_{safe}_v2.xlsx"


def build_matrix_workbook(
    contract_id: int,
    training_capacity: int = DEFAULT_TRAINING_CAPACITY,
    row_capacity: int = DEFAULT_ROW_CAPACITY,
    logo_path: str | None = None,
) -> tuple[bytes, str]:
    """
    Render the contract's matrix.

    Returns ``(xlsx_bytes, filename)``.  Raises NotFoundError before any
    rendering when the contract does not exist.
    """
    contract = catalog_service.get_contract(contract_id)

    entries = matrix_repository.entries_for_contract(contract_id)
    values: dict[tuple[int, int], str] = {}
    function_ids: set[int] = set()
    training_ids: set[int] = set()
    for entry in entries:
        function_ids.add(entry.function_id)
        if entry.training_id is not None:
            training_ids.add(entry.training_id)
            # Oldest row wins when legacy duplicates exist
            values.setdefault((entry.function_id, entry.training_id), entry.obligation)

    trainings = sorted(
        catalog_service.trainings_by_id(training_ids).values(), key=lambda t: (t.name.lower(), t.id)
    )
    functions = sorted(
        catalog_service.functions_by_id(function_ids).values(), key=lambda f: (f.name.lower(), f.id)
    )
    catalog_trainings = catalog_service.list_active_trainings(order_by="id")
    catalog_functions = catalog_service.list_active_functions()

    wb = Workbook()
    wb.properties.creator = WORKBOOK_CREATOR
    wb.properties.title = f"Training matrix {contract.number}"
    wb.properties.keywords = LAYOUT_MARKER

    ws = wb.active
    ws.title = MATRIX_SHEET

    n_cols = max(training_capacity, len(trainings))
    n_rows = max(row_capacity, len(functions))
    last_col = FIRST_TRAINING_COL + n_cols - 1
    last_row = FIRST_DATA_ROW + n_rows - 1

    _write_matrix_frame(ws, last_col, last_row, logo_path)
    _write_matrix_columns(ws, trainings, last_col)
    _write_matrix_rows(ws, functions, trainings, values, last_col, last_row)
    _add_matrix_validations(ws, catalog_trainings, catalog_functions, last_col, last_row)
    ws.protection.sheet = True

    _write_summary_sheet(wb, contract, len(functions), len(trainings))
    _write_legend_sheet(wb)
    _write_catalog_sheets(wb, catalog_trainings, catalog_functions)

    buf = io.BytesIO()
    wb.save(buf)
    logger.info(
        "Matrix exported: %d functions x %d trainings (capacity %dx%d)",
        len(functions), len(trainings), n_rows, n_cols,
        extra={"contract_id": contract_id},
    )
    return buf.getvalue(), export_filename(contract.number)


# ── Matrix sheet ─────────────────────────────────────────────────────────────


def _write_matrix_frame(ws, last_col: int, last_row: int, logo_path: str | None) -> None:
    ws.merge_cells(start_row=ID_ROW, start_column=FUNCTION_COL, end_row=VALIDITY_ROW, end_column=FUNCTION_COL)
    for row, label in ((ID_ROW, "ID >"), (HOURS_ROW, "Hours >"), (VALIDITY_ROW, "Validity >")):
        cell = ws.cell(row=row, column=GROUP_COL, value=label)
        cell.font = META_FONT
        cell.fill = META_FILL
        cell.alignment = Alignment(horizontal="right")

    ws.cell(row=HEADER_ROW, column=FUNCTION_COL, value=FUNCTION_HEADER_LABEL)
    ws.cell(row=HEADER_ROW, column=GROUP_COL, value=TRAINING_GROUP_LABEL)
    apply_header_style(ws, HEADER_ROW, last_col)
    ws.row_dimensions[HEADER_ROW].height = 60

    ws.merge_cells(start_row=FIRST_DATA_ROW, start_column=GROUP_COL, end_row=last_row, end_column=GROUP_COL)

    ws.column_dimensions[get_column_letter(FUNCTION_COL)].width = 48
    ws.column_dimensions[get_column_letter(GROUP_COL)].width = 12
    for col in range(FIRST_TRAINING_COL, last_col + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18

    ws.freeze_panes = ws.cell(row=FIRST_DATA_ROW, column=FIRST_TRAINING_COL)
    ws.sheet_view.showGridLines = False

    if logo_path:
        _embed_logo(ws, logo_path)


def _embed_logo(ws, logo_path: str) -> None:
    if not os.path.isfile(logo_path):
        logger.debug("Branding logo not found at %s, skipped", logo_path)
        return
    try:
        img = Image(logo_path)
    except (OSError, ValueError, ImportError):
        logger.debug("Branding logo unreadable at %s, skipped", logo_path)
        return
    img.width = LOGO_WIDTH_PX
    img.height = LOGO_HEIGHT_PX
    ws.add_image(img, "A1")


def _write_matrix_columns(ws, trainings, last_col: int) -> None:
    for offset in range(last_col - FIRST_TRAINING_COL + 1):
        col = FIRST_TRAINING_COL + offset
        letter = get_column_letter(col)
        header = f"{letter}{HEADER_ROW}"
        id_ref = f"{letter}{ID_ROW}"

        ws.cell(row=ID_ROW, column=col,
                value=f'=IFERROR(VALUE(TRIM(LEFT({header},FIND(" - ",{header})-1))),"")')
        ws.cell(row=HOURS_ROW, column=col,
                value=f'=IFERROR(VLOOKUP(VALUE({id_ref}),{TRAININGS_SHEET}!$A:$C,3,FALSE),"")')
        ws.cell(row=VALIDITY_ROW, column=col,
                value=(f'=IF({id_ref}="","",'
                       f'IFERROR(VLOOKUP(VALUE({id_ref}),{TRAININGS_SHEET}!$A:$E,5,FALSE),"")'
                       f'&" "&IFERROR(VLOOKUP(VALUE({id_ref}),{TRAININGS_SHEET}!$A:$F,6,FALSE),""))'))
        for row in (ID_ROW, HOURS_ROW, VALIDITY_ROW):
            cell = ws.cell(row=row, column=col)
            cell.font = META_FONT
            cell.fill = META_FILL
            cell.alignment = CENTER

        header_cell = ws.cell(row=HEADER_ROW, column=col)
        if offset < len(trainings):
            training = trainings[offset]
            header_cell.value = training_label(training.id, training.name)
        header_cell.protection = UNLOCKED


def _write_matrix_rows(ws, functions, trainings, values, last_col: int, last_row: int) -> None:
    n_trainings = len(trainings)
    for offset in range(last_row - FIRST_DATA_ROW + 1):
        row = FIRST_DATA_ROW + offset
        label_cell = ws.cell(row=row, column=FUNCTION_COL)
        label_cell.protection = UNLOCKED
        label_cell.border = THIN_BORDER

        function = functions[offset] if offset < len(functions) else None
        if function is not None:
            label_cell.value = function_label(function.id, function.name, function.regime)

        for col in range(FIRST_TRAINING_COL, last_col + 1):
            cell = ws.cell(row=row, column=col)
            cell.protection = UNLOCKED
            cell.alignment = CENTER
            t_index = col - FIRST_TRAINING_COL
            if function is not None and t_index < n_trainings:
                value = values.get((function.id, trainings[t_index].id), OBLIGATION_NOT_APPLICABLE)
                cell.value = value
                cell.border = THIN_BORDER
                if value == "AP":
                    cell.fill = HIGHLIGHT_FILL
            else:
                # Spare capacity: N/A once both the row and the column are filled in
                letter = get_column_letter(col)
                cell.value = f'=IF($A{row}<>"",IF({letter}${HEADER_ROW}<>"","N/A",""),"")'


def _add_matrix_validations(ws, catalog_trainings, catalog_functions, last_col: int, last_row: int) -> None:
    first_letter = get_column_letter(FIRST_TRAINING_COL)
    last_letter = get_column_letter(last_col)
    fn_letter = get_column_letter(FUNCTION_COL)

    dv_obligation = DataValidation(
        type="list",
        formula1=f"{OBLIGATIONS_SHEET}!$A$2:$A${len(OBLIGATION_TYPES) + 1}",
        allow_blank=True,
    )
    dv_obligation.showErrorMessage = True
    dv_obligation.errorTitle = "Invalid obligation"
    dv_obligation.error = f"Must be one of: {', '.join(OBLIGATION_TYPES)}"
    dv_obligation.add(f"{first_letter}{FIRST_DATA_ROW}:{last_letter}{last_row}")
    ws.add_data_validation(dv_obligation)

    # Label dropdowns stay open-ended: duplicates are allowed and typing is not blocked
    if catalog_trainings:
        dv_training = DataValidation(
            type="list",
            formula1=f"{TRAININGS_SHEET}!$D$2:$D${len(catalog_trainings) + 1}",
            allow_blank=True,
        )
        dv_training.showErrorMessage = False
        dv_training.add(f"{first_letter}{HEADER_ROW}:{last_letter}{HEADER_ROW}")
        ws.add_data_validation(dv_training)

    if catalog_functions:
        dv_function = DataValidation(
            type="list",
            formula1=f"{FUNCTIONS_SHEET}!$D$2:$D${len(catalog_functions) + 1}",
            allow_blank=True,
        )
        dv_function.showErrorMessage = False
        dv_function.add(f"{fn_letter}{FIRST_DATA_ROW}:{fn_letter}{last_row}")
        ws.add_data_validation(dv_function)


# ── Auxiliary sheets ─────────────────────────────────────────────────────────


def _write_summary_sheet(wb, contract, n_functions: int, n_trainings: int) -> None:
    ws = wb.create_sheet(SUMMARY_SHEET)
    ws["A1"] = f"Training Matrix — {contract.number}"
    ws["A1"].font = TITLE_FONT
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = NOTE_FONT
    rows = [
        ("Contract number", contract.number),
        ("Contract name", contract.name),
        ("Client", contract.client or ""),
        ("Status", contract.status or ""),
        ("Functions", n_functions),
        ("Trainings", n_trainings),
        ("Layout", LAYOUT_MARKER),
    ]
    write_table(ws, ["Field", "Value"], rows, start_row=4)
    auto_width(ws)
    ws.protection.sheet = True


def _write_legend_sheet(wb) -> None:
    ws = wb.create_sheet(LEGEND_SHEET)
    ws["A1"] = "How to edit this workbook"
    ws["A1"].font = TITLE_FONT
    notes = [
        f"Column A (from row {FIRST_DATA_ROW}): pick a function; clear the label to remove the function.",
        f"Row {HEADER_ROW} (from column C): pick a training; clear the label to remove the training.",
        "Grid cells: choose an obligation code; N/A or blank removes the obligation.",
        f"Rows {ID_ROW}-{VALIDITY_ROW} are computed from the training label and cannot be edited.",
        "Do not rename, move or reorder the sheets.",
    ]
    for i, note in enumerate(notes, start=2):
        ws.cell(row=i, column=1, value=note).font = NOTE_FONT

    start = len(notes) + 3
    write_table(ws, ["Code", "Meaning"], [(code, OBLIGATION_LABELS[code]) for code in OBLIGATION_TYPES],
                start_row=start)
    ws.column_dimensions["A"].width = 90
    ws.column_dimensions["B"].width = 40
    ws.protection.sheet = True


def _write_catalog_sheets(wb, catalog_trainings, catalog_functions) -> None:
    ws = wb.create_sheet(TRAININGS_SHEET)
    write_table(
        ws,
        ["ID", "Name", "Hours", "Label", "Validity", "Unit"],
        [
            (t.id, t.name, t.hours, training_label(t.id, t.name), t.validity_value, t.validity_unit or "")
            for t in catalog_trainings
        ],
    )
    auto_width(ws)
    ws.protection.sheet = True

    ws = wb.create_sheet(FUNCTIONS_SHEET)
    write_table(
        ws,
        ["ID", "Name", "Regime", "Label"],
        [(f.id, f.name, f.regime or "", function_label(f.id, f.name, f.regime)) for f in catalog_functions],
    )
    auto_width(ws)
    ws.protection.sheet = True

    ws = wb.create_sheet(OBLIGATIONS_SHEET)
    write_table(ws, ["Code", "Description"], [(code, OBLIGATION_LABELS[code]) for code in OBLIGATION_TYPES])
    auto_width(ws)
    ws.protection.sheet = True
