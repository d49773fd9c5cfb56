"""
Training Matrix Blueprint.

Endpoints:
    GET    /api/v1/training-matrix                               — list entries (filters + pagination)
    POST   /api/v1/training-matrix                               — create entry
    GET    /api/v1/training-matrix/<entry_id>                    — get entry
    PUT    /api/v1/training-matrix/<entry_id>                    — update entry
    DELETE /api/v1/training-matrix/<entry_id>                    — delete entry (placeholder-aware)
    GET    /api/v1/training-matrix/contracts                     — contract overview
    GET    /api/v1/training-matrix/contracts/<id>                — contract detail
    POST   /api/v1/training-matrix/contracts/<id>/functions      — track functions
    DELETE /api/v1/training-matrix/contracts/<id>/functions      — untrack functions
    GET    /api/v1/training-matrix/contracts/<id>/export         — xlsx download
    POST   /api/v1/training-matrix/contracts/<id>/import         — xlsx upload (multipart "file")
    GET    /api/v1/training-matrix/contracts/<id>/integrity      — placeholder invariant report
    GET    /api/v1/training-matrix/imports/<import_id>           — import run summary
    GET    /api/v1/training-matrix/imports/<import_id>/report    — change report download

Layer contract:
    - No ORM calls here — all DB work delegated to services.
    - No db.session.commit() here.
"""

import logging

from flask import Blueprint, Response, jsonify, request, url_for
from werkzeug.exceptions import HTTPException

from crewflow.blueprints import pagination_args
from crewflow.core.exceptions import ConflictError, MatrixFormatError, NotFoundError, ValidationError
from crewflow.services import catalog_service, matrix_repository, matrix_service, matrix_sync_service
from crewflow.services.matrix_export import XLSX_MIMETYPE
from crewflow.utils.errors import E, api_error, error_response

logger = logging.getLogger(__name__)

matrix_bp = Blueprint("training_matrix", __name__, url_prefix="/api/v1/training-matrix")

ALLOWED_EXTENSIONS = (".xlsx", ".xlsm")


# ── Error handlers ────────────────────────────────────────────────────────────


@matrix_bp.errorhandler(NotFoundError)
@matrix_bp.errorhandler(ValidationError)
@matrix_bp.errorhandler(ConflictError)
def _handle_domain_error(error: Exception):
    if isinstance(error, MatrixFormatError):
        logger.info("Matrix workbook rejected: %s", error.message)
    return error_response(error)


@matrix_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in matrix_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _xlsx_response(content: bytes, filename: str) -> Response:
    return Response(
        content,
        mimetype=XLSX_MIMETYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# ═════════════════════════════════════════════════════════════════════════
# Entries
# ═════════════════════════════════════════════════════════════════════════


@matrix_bp.route("", methods=["GET"])
def list_entries():
    """List matrix entries.

    Query params: contract_id, function_id, training_id, obligation, search,
    limit, offset.
    """
    limit, offset = pagination_args()
    result = matrix_service.list_entries(
        contract_id=request.args.get("contract_id", type=int),
        function_id=request.args.get("function_id", type=int),
        training_id=request.args.get("training_id", type=int),
        obligation=request.args.get("obligation", type=str),
        search=request.args.get("search", type=str),
        limit=limit,
        offset=offset,
    )
    return jsonify(result), 200


@matrix_bp.route("", methods=["POST"])
def create_entry():
    data = request.get_json(silent=True) or {}
    entry = matrix_service.create_entry(data)
    return jsonify(entry.to_dict(include_refs=True)), 201


@matrix_bp.route("/<int:entry_id>", methods=["GET"])
def get_entry(entry_id: int):
    return jsonify(matrix_service.get_entry(entry_id).to_dict(include_refs=True)), 200


@matrix_bp.route("/<int:entry_id>", methods=["PUT"])
def update_entry(entry_id: int):
    data = request.get_json(silent=True) or {}
    entry = matrix_service.update_entry(entry_id, data)
    return jsonify(entry.to_dict(include_refs=True)), 200


@matrix_bp.route("/<int:entry_id>", methods=["DELETE"])
def delete_entry(entry_id: int):
    return jsonify(matrix_service.delete_entry(entry_id)), 200


# ═════════════════════════════════════════════════════════════════════════
# Contracts
# ═════════════════════════════════════════════════════════════════════════


@matrix_bp.route("/contracts", methods=["GET"])
def contract_overview():
    items = matrix_service.contract_overview()
    return jsonify({"items": items, "total": len(items)}), 200


@matrix_bp.route("/contracts/<int:contract_id>", methods=["GET"])
def contract_detail(contract_id: int):
    return jsonify(matrix_service.contract_detail(contract_id)), 200


@matrix_bp.route("/contracts/<int:contract_id>/functions", methods=["POST"])
def add_functions(contract_id: int):
    data = request.get_json(silent=True) or {}
    return jsonify(matrix_service.add_functions(contract_id, data)), 201


@matrix_bp.route("/contracts/<int:contract_id>/functions", methods=["DELETE"])
def remove_functions(contract_id: int):
    data = request.get_json(silent=True) or {}
    return jsonify(matrix_service.remove_functions(contract_id, data)), 200


@matrix_bp.route("/contracts/<int:contract_id>/integrity", methods=["GET"])
def contract_integrity(contract_id: int):
    catalog_service.get_contract(contract_id)
    violations = matrix_repository.check_placeholder_invariant(contract_id)
    return jsonify({"contract_id": contract_id, "ok": not violations, "violations": violations}), 200


# ═════════════════════════════════════════════════════════════════════════
# Spreadsheet round-trip
# ═════════════════════════════════════════════════════════════════════════


@matrix_bp.route("/contracts/<int:contract_id>/export", methods=["GET"])
def export_matrix(contract_id: int):
    content, filename = matrix_sync_service.export_matrix(contract_id)
    return _xlsx_response(content, filename)


@matrix_bp.route("/contracts/<int:contract_id>/import", methods=["POST"])
def import_matrix(contract_id: int):
    """Apply an edited workbook.

    Form data:
        file — the .xlsx workbook (required)
    """
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return api_error(E.VALIDATION_REQUIRED, "No file uploaded (form field 'file')")
    if not upload.filename.lower().endswith(ALLOWED_EXTENSIONS):
        return api_error(E.MATRIX_FORMAT, "File must be an .xlsx workbook",
                         details={"filename": upload.filename})

    outcome = matrix_sync_service.import_matrix(contract_id, upload.read(), filename=upload.filename)
    outcome["report_url"] = url_for(".download_import_report", import_id=outcome["import_id"])
    return jsonify(outcome), 200


@matrix_bp.route("/imports/<int:import_id>", methods=["GET"])
def get_import_run(import_id: int):
    return jsonify(matrix_sync_service.get_import_run(import_id).to_dict()), 200


@matrix_bp.route("/imports/<int:import_id>/report", methods=["GET"])
def download_import_report(import_id: int):
    content, filename = matrix_sync_service.get_import_report(import_id)
    return _xlsx_response(content, filename)
