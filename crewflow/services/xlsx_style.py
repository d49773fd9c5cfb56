"""Shared openpyxl styling for the matrix workbook and the change report."""

from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
META_FILL = PatternFill(start_color="D9E1EA", end_color="D9E1EA", fill_type="solid")
META_FONT = Font(size=9, italic=True, color="354A5F")
HIGHLIGHT_FILL = PatternFill(start_color="B7E1CD", end_color="B7E1CD", fill_type="solid")
TITLE_FONT = Font(size=14, bold=True)
NOTE_FONT = Font(size=10, italic=True, color="666666")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
CENTER = Alignment(horizontal="center", vertical="center")


def apply_header_style(ws, row: int, col_count: int, first_col: int = 1) -> None:
    """Apply dark-header styling to an Excel row (1-indexed)."""
    for col in range(first_col, first_col + col_count):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def write_table(ws, headers: list[str], rows, start_row: int = 1) -> int:
    """Write a header row plus data rows; returns the last row written."""
    for col, header in enumerate(headers, 1):
        ws.cell(row=start_row, column=col, value=header)
    apply_header_style(ws, start_row, len(headers))
    row = start_row
    for row_values in rows:
        row += 1
        for col, value in enumerate(row_values, 1):
            ws.cell(row=row, column=col, value=value).border = THIN_BORDER
    return row


def auto_width(ws) -> None:
    """Auto-size column widths based on content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)
