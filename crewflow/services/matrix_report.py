"""
Change report builder — renders a ReconcileResult as a small xlsx workbook.

Pure rendering: every row comes from what the reconciliation actually did.
"""

import io
import re
from datetime import datetime, timezone

from openpyxl import Workbook

from crewflow.services.matrix_reconcile import STAT_KEYS, ReconcileResult
from crewflow.services.xlsx_style import NOTE_FONT, TITLE_FONT, auto_width, write_table

STAT_LABELS = {
    "created": "Entries created",
    "updated": "Entries updated",
    "converted": "Placeholders converted",
    "removed": "Entries removed",
    "ignored": "Rows/cells ignored",
    "errors": "Cell errors",
    "duplicates_removed": "Duplicates collapsed",
    "placeholders_created": "Placeholders created",
}


def report_filename(contract_number: str, import_id: int | None = None) -> str:
    safe = re.sub(r"[^\w.-]+", "_", contract_number or "").strip("_") or "contract"
    suffix = f"_{import_id}" if import_id else ""
    return f"training-matrix_{safe}_import-report{suffix}.xlsx"


def build_change_report(result: ReconcileResult, contract=None, filename: str = "") -> bytes:
    """Return the change report workbook as bytes."""
    wb = Workbook()

    # ── Summary ──────────────────────────────────────────────────────────
    ws = wb.active
    ws.title = "Summary"
    title = "Training Matrix Import Report"
    if contract is not None:
        title += f" — {contract.number}"
    ws["A1"] = title
    ws["A1"].font = TITLE_FONT
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = NOTE_FONT
    if filename:
        ws["A3"] = f"Source file: {filename}"
        ws["A3"].font = NOTE_FONT
    write_table(ws, ["Metric", "Count"], [(STAT_LABELS[key], result.stats.get(key, 0)) for key in STAT_KEYS],
                start_row=5)
    auto_width(ws)

    # ── Operations ───────────────────────────────────────────────────────
    ws = wb.create_sheet("Operations")
    write_table(
        ws,
        ["#", "Action", "Function ID", "Training ID", "From", "To"],
        [
            (i, rec.action, rec.function_id, rec.training_id, rec.old_value or "", rec.new_value or "")
            for i, rec in enumerate(result.audit, start=1)
        ],
    )
    auto_width(ws)

    # ── Removed columns / rows ───────────────────────────────────────────
    ws = wb.create_sheet("Removed Columns")
    write_table(
        ws,
        ["Training ID", "Training", "Entries removed"],
        [(c["training_id"], c["training_name"], c["removed"]) for c in result.removed_columns],
    )
    auto_width(ws)

    ws = wb.create_sheet("Removed Rows")
    write_table(
        ws,
        ["Function ID", "Function", "Entries removed"],
        [(r["function_id"], r["function_name"], r["removed"]) for r in result.removed_rows],
    )
    auto_width(ws)

    # ── Errors (cell failures and ignored input) ─────────────────────────
    ws = wb.create_sheet("Errors")
    rows = [("error", msg) for msg in result.errors] + [("ignored", msg) for msg in result.warnings]
    write_table(ws, ["Kind", "Message"], rows)
    auto_width(ws)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
