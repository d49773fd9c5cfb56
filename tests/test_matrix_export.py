"""
Tests: training matrix spreadsheet encoder.

Exports use small capacities so the grid stays quick to inspect; one test
covers the configured defaults through the app settings.
"""

import io

import openpyxl
import pytest

from crewflow.core.exceptions import NotFoundError
from crewflow.models import db as _db
from crewflow.models.matrix import MatrixEntry
from crewflow.services.matrix_export import build_matrix_workbook, export_filename
from crewflow.services.matrix_layout import LAYOUT_MARKER


# ── ORM helpers ───────────────────────────────────────────────────────────────


def _make_entry(contract, function, training=None, obligation="AP") -> MatrixEntry:
    e = MatrixEntry(
        contract_id=contract.id,
        function_id=function.id,
        training_id=training.id if training is not None else None,
        obligation=obligation if training is not None else "N/A",
    )
    _db.session.add(e)
    _db.session.flush()
    return e


def _export(contract_id, **kwargs):
    kwargs.setdefault("training_capacity", 5)
    kwargs.setdefault("row_capacity", 10)
    content, filename = build_matrix_workbook(contract_id, **kwargs)
    return openpyxl.load_workbook(io.BytesIO(content)), filename


@pytest.fixture()
def seeded(contract, catalog):
    _make_entry(contract, catalog["welder"], catalog["nr10"], "AP")
    _make_entry(contract, catalog["welder"], catalog["nr35"], "RA")
    _make_entry(contract, catalog["rigger"])  # placeholder
    _db.session.commit()
    return contract, catalog


# ── Workbook structure ────────────────────────────────────────────────────────


class TestWorkbookStructure:
    def test_sheets_and_properties(self, seeded):
        contract, _ = seeded
        wb, filename = _export(contract.id)

        assert wb.sheetnames == ["Matrix", "Summary", "Legend", "Trainings", "Functions", "ObligationTypes"]
        assert wb.properties.creator == "CrewFlow"
        assert wb.properties.keywords == LAYOUT_MARKER
        assert filename == "training-matrix_CT-001_v2.xlsx"

    def test_filename_sanitises_contract_number(self):
        assert export_filename("CT/2024 01") == "training-matrix_CT_2024_01_v2.xlsx"

    def test_unknown_contract_raises_not_found(self):
        with pytest.raises(NotFoundError):
            build_matrix_workbook(999)

    def test_auxiliary_sheets_list_catalogs(self, seeded):
        contract, catalog = seeded
        wb, _ = _export(contract.id)

        ws = wb["Trainings"]
        assert [c.value for c in ws[1]] == ["ID", "Name", "Hours", "Label", "Validity", "Unit"]
        ids = [ws.cell(row=r, column=1).value for r in range(2, ws.max_row + 1)]
        assert ids == sorted(t.id for t in (catalog["nr10"], catalog["nr35"], catalog["huet"]))
        nr35_row = ids.index(catalog["nr35"].id) + 2
        assert ws.cell(row=nr35_row, column=4).value == f"{catalog['nr35'].id} - NR-35 Work at Height"
        assert ws.cell(row=nr35_row, column=6).value == "years"

        ws = wb["Functions"]
        labels = [ws.cell(row=r, column=4).value for r in range(2, ws.max_row + 1)]
        assert f"{catalog['welder'].id} - Welder - OFFSHORE" in labels

        ws = wb["ObligationTypes"]
        assert [ws.cell(row=r, column=1).value for r in range(2, 7)] == ["RA", "AP", "C", "SD", "N/A"]

        for name in ("Summary", "Legend", "Trainings", "Functions", "ObligationTypes"):
            assert wb[name].protection.sheet is True


# ── Matrix grid ───────────────────────────────────────────────────────────────


class TestMatrixGrid:
    def test_header_and_metadata_rows(self, seeded):
        contract, catalog = seeded
        ws = _export(contract.id)[0]["Matrix"]

        assert ws["B1"].value == "ID >"
        assert ws["B4"].value == "Training >"
        # Trainings ordered by name
        assert ws["C4"].value == f"{catalog['nr10'].id} - NR-10 Electrical Safety"
        assert ws["D4"].value == f"{catalog['nr35'].id} - NR-35 Work at Height"
        assert ws["E4"].value is None
        assert ws["C1"].value.startswith('=IFERROR(VALUE(TRIM(LEFT(C4,FIND(" - ",C4)-1)))')
        assert "Trainings!$A:$C,3" in ws["C2"].value
        assert "Trainings!$A:$E,5" in ws["C3"].value
        # unused capacity columns render a blank validity, not a lone space
        assert ws["E3"].value.startswith('=IF(E1="","",')

    def test_rows_values_and_padding(self, seeded):
        contract, catalog = seeded
        ws = _export(contract.id)[0]["Matrix"]

        # Functions ordered by name: Rigger, Welder
        assert ws["A5"].value == f"{catalog['rigger'].id} - Rigger - ONSHORE"
        assert ws["A6"].value == f"{catalog['welder'].id} - Welder - OFFSHORE"
        assert ws["C5"].value == "N/A"
        assert ws["D5"].value == "N/A"
        assert ws["C6"].value == "AP"
        assert ws["D6"].value == "RA"
        assert ws["C6"].fill.fgColor.rgb.endswith("B7E1CD")

        # Capacity: 5 training columns (C..G), 10 rows (5..14)
        assert ws["A7"].value is None
        assert ws["E6"].value == '=IF($A6<>"",IF(E$4<>"","N/A",""),"")'
        assert ws["G14"].value.startswith("=IF($A14")
        assert ws["H14"].value is None
        assert ws["C15"].value is None

    def test_capacity_never_truncates_data(self, seeded):
        contract, _ = seeded
        ws = _export(contract.id, training_capacity=1, row_capacity=1)[0]["Matrix"]

        assert ws["D4"].value is not None
        assert ws.max_column == 4
        assert ws["A6"].value is not None
        assert ws.max_row == 6

    def test_duplicate_entries_export_oldest_value(self, contract, catalog):
        _make_entry(contract, catalog["welder"], catalog["nr10"], "AP")
        _make_entry(contract, catalog["welder"], catalog["nr10"], "SD")
        _db.session.commit()

        ws = _export(contract.id)[0]["Matrix"]
        assert ws["C5"].value == "AP"
        assert ws["D4"].value is None

    def test_inactive_function_with_entries_is_exported(self, contract, catalog):
        catalog["rigger"].active = False
        _make_entry(contract, catalog["rigger"], catalog["huet"], "C")
        _db.session.commit()

        ws = _export(contract.id)[0]["Matrix"]
        assert ws["A5"].value.startswith(f"{catalog['rigger'].id} - Rigger")
        assert ws["C5"].value == "C"

    def test_protection_and_freeze(self, seeded):
        contract, _ = seeded
        ws = _export(contract.id)[0]["Matrix"]

        assert ws.protection.sheet is True
        assert ws.freeze_panes == "C5"
        assert ws["C4"].protection.locked is False
        assert ws["A5"].protection.locked is False
        assert ws["D6"].protection.locked is False
        assert ws["C1"].protection.locked is True
        assert ws["B4"].protection.locked is True

    def test_dropdown_validations(self, seeded):
        contract, _ = seeded
        ws = _export(contract.id)[0]["Matrix"]

        ranges = {str(dv.sqref): dv.formula1 for dv in ws.data_validations.dataValidation}
        assert ranges["C5:G14"] == "ObligationTypes!$A$2:$A$6"
        assert ranges["C4:G4"].startswith("Trainings!$D$2")
        assert ranges["A5:A14"].startswith("Functions!$D$2")

    def test_empty_contract_exports_blank_grid(self, contract, catalog):
        ws = _export(contract.id)[0]["Matrix"]
        assert ws["C4"].value is None
        assert ws["A5"].value is None
        assert ws["C5"].value.startswith("=IF(")


# ── Branding / settings ───────────────────────────────────────────────────────


class TestBranding:
    def test_unreadable_logo_is_skipped(self, seeded, tmp_path):
        contract, _ = seeded
        logo = tmp_path / "logo.png"
        logo.write_bytes(b"not an image")

        wb, _ = _export(contract.id, logo_path=str(logo))
        assert wb["Matrix"]["C6"].value == "AP"

    def test_missing_logo_is_skipped(self, seeded, tmp_path):
        contract, _ = seeded
        wb, _ = _export(contract.id, logo_path=str(tmp_path / "missing.png"))
        assert wb["Matrix"]["C6"].value == "AP"
