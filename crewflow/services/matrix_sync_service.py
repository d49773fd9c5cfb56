"""
Matrix sync service — export and import entry points shared by the HTTP
blueprint and the CLI.

Import flow:
    decode (no writes) → lock contract → reconcile → change report →
    MatrixImportRun → single commit

Fatal problems (unknown contract, unreadable or malformed workbook, rejected
orphan columns) raise before anything is committed.
"""

import logging

from flask import current_app

from crewflow.core.exceptions import NotFoundError
from crewflow.models import db
from crewflow.models.matrix import MatrixImportRun
from crewflow.services import catalog_service, matrix_repository
from crewflow.services.matrix_export import build_matrix_workbook
from crewflow.services.matrix_import import decode_matrix_workbook
from crewflow.services.matrix_layout import DEFAULT_ROW_CAPACITY, DEFAULT_TRAINING_CAPACITY
from crewflow.services.matrix_reconcile import ORPHAN_POLICY_DELETE, reconcile_matrix
from crewflow.services.matrix_report import build_change_report, report_filename

logger = logging.getLogger(__name__)


def export_matrix(contract_id: int) -> tuple[bytes, str]:
    """Render the contract's workbook using the app's matrix settings."""
    cfg = current_app.config
    return build_matrix_workbook(
        contract_id,
        training_capacity=cfg.get("MATRIX_TRAINING_CAPACITY", DEFAULT_TRAINING_CAPACITY),
        row_capacity=cfg.get("MATRIX_ROW_CAPACITY", DEFAULT_ROW_CAPACITY),
        logo_path=cfg.get("MATRIX_BRANDING_LOGO") or None,
    )


def import_matrix(
    contract_id: int,
    content: bytes,
    filename: str = "",
    orphan_column_policy: str | None = None,
) -> dict:
    """
    Apply an edited workbook to the contract and persist the outcome.

    Returns a summary dict: success, message, import_id, stats, errors,
    warnings, removed_columns, removed_rows.
    """
    contract = catalog_service.get_contract(contract_id)
    policy = orphan_column_policy or current_app.config.get("MATRIX_ORPHAN_COLUMN_POLICY", ORPHAN_POLICY_DELETE)

    decoded = decode_matrix_workbook(content)

    try:
        with matrix_repository.contract_lock(contract_id):
            result = reconcile_matrix(contract_id, decoded, orphan_column_policy=policy)
            report = build_change_report(result, contract=contract, filename=filename)
            run = MatrixImportRun(
                contract_id=contract_id,
                filename=filename or "",
                status="partial" if result.stats["errors"] else "completed",
                stats=result.stats,
                errors=result.errors,
                report=report,
            )
            db.session.add(run)
            db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Matrix import %d finished: %s", run.id, result.stats,
        extra={"contract_id": contract_id, "import_id": run.id},
    )

    stats = result.stats
    message = (
        f"Import finished: {stats['created']} created, {stats['updated']} updated, "
        f"{stats['converted']} converted, {stats['removed']} removed, "
        f"{stats['ignored']} ignored, {stats['errors']} errors"
    )
    return {
        "success": True,
        "message": message,
        "import_id": run.id,
        "stats": stats,
        "errors": result.errors,
        "warnings": result.warnings,
        "removed_columns": result.removed_columns,
        "removed_rows": result.removed_rows,
        "operations": [rec.to_dict() for rec in result.audit],
    }


def get_import_run(import_id: int) -> MatrixImportRun:
    run = db.session.get(MatrixImportRun, import_id)
    if run is None:
        raise NotFoundError(resource="MatrixImportRun", resource_id=import_id)
    return run


def get_import_report(import_id: int) -> tuple[bytes, str]:
    """Return the stored change report of an import run and its filename."""
    run = get_import_run(import_id)
    if run.report is None:
        raise NotFoundError(resource="Import report", resource_id=import_id)
    contract = catalog_service.get_contract(run.contract_id)
    return run.report, report_filename(contract.number, run.id)
