"""Tests: flask matrix-export / matrix-import / matrix-check commands."""

import openpyxl
import pytest

from crewflow.models import db as _db
from crewflow.models.matrix import MatrixEntry


@pytest.fixture()
def runner(app, monkeypatch):
    monkeypatch.setitem(app.config, "MATRIX_TRAINING_CAPACITY", 4)
    monkeypatch.setitem(app.config, "MATRIX_ROW_CAPACITY", 6)
    return app.test_cli_runner()


@pytest.fixture()
def seeded(contract, catalog):
    _db.session.add(MatrixEntry(contract_id=contract.id, function_id=catalog["welder"].id,
                                training_id=catalog["nr10"].id, obligation="AP"))
    _db.session.add(MatrixEntry(contract_id=contract.id, function_id=catalog["rigger"].id,
                                training_id=None))
    _db.session.commit()
    return contract, catalog


def test_export_then_import(runner, seeded, tmp_path):
    contract, catalog = seeded
    workbook = tmp_path / "matrix.xlsx"
    report = tmp_path / "report.xlsx"

    result = runner.invoke(args=["matrix-export", str(contract.id), str(workbook)])
    assert result.exit_code == 0, result.output
    assert "training-matrix_CT-001_v2.xlsx" in result.output

    wb = openpyxl.load_workbook(workbook)
    wb["Matrix"]["C6"] = "SD"
    wb.save(workbook)

    result = runner.invoke(args=["matrix-import", str(contract.id), str(workbook), "--report", str(report)])
    assert result.exit_code == 0, result.output
    assert "1 updated" in result.output
    assert openpyxl.load_workbook(report).sheetnames[0] == "Summary"

    entry = _db.session.query(MatrixEntry).filter_by(training_id=catalog["nr10"].id).one()
    assert entry.obligation == "SD"


def test_import_unknown_contract(runner, contract, tmp_path):
    path = tmp_path / "matrix.xlsx"
    openpyxl.Workbook().save(path)

    result = runner.invoke(args=["matrix-import", "999", str(path)])

    assert result.exit_code == 1
    assert "Contract id=999 not found" in result.output


def test_check(runner, seeded):
    contract, catalog = seeded

    result = runner.invoke(args=["matrix-check", str(contract.id)])
    assert result.exit_code == 0
    assert "OK" in result.output

    _db.session.add(MatrixEntry(contract_id=contract.id, function_id=catalog["welder"].id, training_id=None))
    _db.session.commit()

    result = runner.invoke(args=["matrix-check", str(contract.id)])
    assert result.exit_code == 1
    assert "placeholder_with_entries" in result.output
