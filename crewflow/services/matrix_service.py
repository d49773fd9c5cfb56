"""
Training matrix maintenance service — single-entry CRUD and contract-level
function management.

Business context:
    Outside spreadsheet imports, operators edit the matrix one cell at a time
    and add or remove functions from a contract.  The same placeholder rule
    holds here: a tracked function has exactly one placeholder when it has no
    trainings and none otherwise.

    - create on a function holding only a placeholder converts the placeholder
    - delete of a function's last real entry turns it back into the placeholder
    - delete of a placeholder stops tracking the function in the contract

Layer contract: services commit; blueprints never touch the session.
"""

import logging

from sqlalchemy import func, or_, select

from crewflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from crewflow.models import db
from crewflow.models.matrix import (
    OBLIGATION_CODES,
    OBLIGATION_NOT_APPLICABLE,
    OBLIGATION_TYPES,
    Contract,
    Function,
    MatrixEntry,
    Training,
)
from crewflow.services import catalog_service, matrix_repository

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _require_int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None or value == "":
        raise ValidationError(f"{key} is required", details={key: "required"})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer", details={key: value}) from None


def _get_function(function_id: int) -> Function:
    function = db.session.get(Function, function_id)
    if function is None:
        raise NotFoundError(resource="Function", resource_id=function_id)
    return function


def _get_training(training_id: int) -> Training:
    training = db.session.get(Training, training_id)
    if training is None:
        raise NotFoundError(resource="Training", resource_id=training_id)
    return training


def _find_entry(contract_id: int, function_id: int, training_id: int, exclude_id: int | None = None):
    stmt = select(MatrixEntry).where(
        MatrixEntry.contract_id == contract_id,
        MatrixEntry.function_id == function_id,
        MatrixEntry.training_id == training_id,
    )
    if exclude_id is not None:
        stmt = stmt.where(MatrixEntry.id != exclude_id)
    return db.session.execute(stmt.order_by(MatrixEntry.id)).scalars().first()


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ═════════════════════════════════════════════════════════════════════════════
# Entries
# ═════════════════════════════════════════════════════════════════════════════


def list_entries(
    contract_id: int | None = None,
    function_id: int | None = None,
    training_id: int | None = None,
    obligation: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """Filtered, paginated entry list plus the option lists for the filters."""
    stmt = (
        select(MatrixEntry)
        .join(Contract, MatrixEntry.contract_id == Contract.id)
        .join(Function, MatrixEntry.function_id == Function.id)
        .outerjoin(Training, MatrixEntry.training_id == Training.id)
    )
    if contract_id:
        stmt = stmt.where(MatrixEntry.contract_id == contract_id)
    if function_id:
        stmt = stmt.where(MatrixEntry.function_id == function_id)
    if training_id:
        stmt = stmt.where(MatrixEntry.training_id == training_id)
    if obligation:
        stmt = stmt.where(MatrixEntry.obligation == obligation.upper())
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            Contract.name.ilike(pattern),
            Contract.number.ilike(pattern),
            Function.name.ilike(pattern),
            Training.name.ilike(pattern),
        ))

    total = db.session.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0
    items = db.session.execute(
        stmt.order_by(Contract.number, Function.name, MatrixEntry.id).limit(limit).offset(offset)
    ).scalars().all()

    return {
        "items": [e.to_dict(include_refs=True) for e in items],
        "total": total,
        "limit": limit,
        "offset": offset,
        "filters": {
            "contracts": [
                {"id": c.id, "number": c.number, "name": c.name}
                for c in db.session.execute(select(Contract).order_by(Contract.number)).scalars()
            ],
            "functions": [{"id": f.id, "name": f.name} for f in catalog_service.list_active_functions()],
            "trainings": [
                {"id": t.id, "name": t.name} for t in catalog_service.list_active_trainings(order_by="name")
            ],
            "obligation_types": catalog_service.obligation_types(),
        },
    }


def get_entry(entry_id: int) -> MatrixEntry:
    entry = db.session.get(MatrixEntry, entry_id)
    if entry is None:
        raise NotFoundError(resource="MatrixEntry", resource_id=entry_id)
    return entry


def create_entry(data: dict) -> MatrixEntry:
    """Create a (contract, function, training) entry.

    Converts the function's placeholder in place when it has one.
    Raises ValidationError, NotFoundError or ConflictError.
    """
    contract_id = _require_int(data, "contract_id")
    function_id = _require_int(data, "function_id")
    training_id = _require_int(data, "training_id")
    obligation = str(data.get("obligation") or "").strip().upper()
    if obligation not in OBLIGATION_CODES:
        raise ValidationError(
            f"obligation must be one of: {', '.join(OBLIGATION_CODES)}",
            details={"obligation": obligation},
        )

    catalog_service.get_contract(contract_id)
    _get_function(function_id)
    _get_training(training_id)

    if _find_entry(contract_id, function_id, training_id) is not None:
        raise ConflictError("MatrixEntry", "contract_id/function_id/training_id",
                            f"{contract_id}/{function_id}/{training_id}")

    placeholder = matrix_repository.find_placeholder(contract_id, function_id)
    if placeholder is not None:
        entry = matrix_repository.convert_placeholder(placeholder, training_id, obligation)
        logger.info("Placeholder %d converted to training %d", entry.id, training_id,
                    extra={"contract_id": contract_id})
    else:
        entry = matrix_repository.create_entry(contract_id, function_id, training_id, obligation)
    _commit()
    return entry


def update_entry(entry_id: int, data: dict) -> MatrixEntry:
    """Update function / training / obligation / active of an entry.

    Placeholder rules hold after the move: a placeholder keeps N/A and may
    only move to an untracked function; a real entry moving onto a function
    replaces that function's placeholder, and the function it leaves gets a
    placeholder back when it has no real entries left.
    """
    entry = get_entry(entry_id)
    contract_id = entry.contract_id
    old_function_id = entry.function_id

    function_id = entry.function_id
    training_id = entry.training_id
    if data.get("function_id") not in (None, ""):
        function_id = _require_int(data, "function_id")
        _get_function(function_id)
    if data.get("training_id") not in (None, ""):
        training_id = _require_int(data, "training_id")
        _get_training(training_id)

    obligation = entry.obligation
    if "obligation" in data:
        obligation = str(data.get("obligation") or "").strip().upper()
        if obligation not in OBLIGATION_TYPES:
            raise ValidationError(
                f"obligation must be one of: {', '.join(OBLIGATION_TYPES)}",
                details={"obligation": obligation},
            )

    moved = function_id != old_function_id
    if training_id is None:
        if obligation != OBLIGATION_NOT_APPLICABLE:
            raise ValidationError(
                "An entry without a training only holds N/A; set training_id to assign an obligation",
                details={"obligation": obligation},
            )
        if moved and function_id in matrix_repository.persisted_function_ids(contract_id):
            raise ConflictError("MatrixEntry", "contract_id/function_id", f"{contract_id}/{function_id}")
    else:
        if obligation not in OBLIGATION_CODES:
            raise ValidationError(
                f"obligation must be one of: {', '.join(OBLIGATION_CODES)}",
                details={"obligation": obligation},
            )
        if (function_id, training_id) != (entry.function_id, entry.training_id):
            if _find_entry(contract_id, function_id, training_id, exclude_id=entry.id) is not None:
                raise ConflictError("MatrixEntry", "contract_id/function_id/training_id",
                                    f"{contract_id}/{function_id}/{training_id}")
        if moved:
            target_placeholder = matrix_repository.find_placeholder(contract_id, function_id)
            if target_placeholder is not None:
                matrix_repository.delete_entry(target_placeholder)

    was_real = not entry.is_placeholder
    entry.function_id = function_id
    entry.training_id = training_id
    entry.obligation = obligation
    if "active" in data:
        entry.active = bool(data["active"])
    db.session.flush()

    if moved and was_real and not matrix_repository.count_real_entries(contract_id, old_function_id):
        if matrix_repository.find_placeholder(contract_id, old_function_id) is None:
            matrix_repository.create_placeholder(contract_id, old_function_id)
            logger.info("Placeholder restored for function %d", old_function_id, extra={"contract_id": contract_id})

    _commit()
    return entry


def delete_entry(entry_id: int) -> dict:
    """Delete an entry, keeping the placeholder rule.

    Returns ``{"action": "converted_to_placeholder" | "deleted" |
    "function_removed", "entry_id": ...}``.
    """
    entry = get_entry(entry_id)
    contract_id, function_id = entry.contract_id, entry.function_id

    if entry.is_placeholder:
        matrix_repository.delete_entry(entry)
        _commit()
        logger.info("Function %d removed from contract", function_id, extra={"contract_id": contract_id})
        return {"action": "function_removed", "entry_id": entry_id}

    if matrix_repository.count_real_entries(contract_id, function_id) <= 1:
        if matrix_repository.find_placeholder(contract_id, function_id) is None:
            matrix_repository.to_placeholder(entry)
            _commit()
            return {"action": "converted_to_placeholder", "entry_id": entry_id}

    matrix_repository.delete_entry(entry)
    _commit()
    return {"action": "deleted", "entry_id": entry_id}


# ═════════════════════════════════════════════════════════════════════════════
# Contract functions
# ═════════════════════════════════════════════════════════════════════════════


def _parse_id_list(data: dict, key: str = "function_ids") -> list[int]:
    raw = data.get(key)
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{key} must be a non-empty list", details={key: "required"})
    try:
        return list(dict.fromkeys(int(v) for v in raw))
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must contain integers", details={key: raw}) from None


def add_functions(contract_id: int, data: dict) -> dict:
    """Track functions in a contract by giving each new one a placeholder."""
    catalog_service.get_contract(contract_id)
    function_ids = _parse_id_list(data)

    functions = catalog_service.functions_by_id(function_ids)
    missing = [fid for fid in function_ids if fid not in functions or not functions[fid].active]
    if missing:
        raise NotFoundError(resource="Function", resource_id=", ".join(str(m) for m in missing))

    tracked = matrix_repository.persisted_function_ids(contract_id)
    added = []
    for function_id in function_ids:
        if function_id in tracked:
            continue
        matrix_repository.create_placeholder(contract_id, function_id)
        added.append(function_id)
    _commit()

    logger.info("Functions added to contract: %s", added, extra={"contract_id": contract_id})
    return {
        "added": len(added),
        "already_present": len(function_ids) - len(added),
        "total": len(function_ids),
        "function_ids": added,
    }


def remove_functions(contract_id: int, data: dict) -> dict:
    """Stop tracking functions in a contract (all their entries go)."""
    catalog_service.get_contract(contract_id)
    function_ids = _parse_id_list(data)
    removed = sum(matrix_repository.delete_function_entries(contract_id, fid) for fid in function_ids)
    _commit()
    logger.info("Functions removed from contract: %s (%d entries)", function_ids, removed,
                extra={"contract_id": contract_id})
    return {"removed_entries": removed, "function_ids": function_ids}


# ═════════════════════════════════════════════════════════════════════════════
# Contract views
# ═════════════════════════════════════════════════════════════════════════════


def contract_overview() -> list[dict]:
    """Contracts with their real-entry and tracked-function counts."""
    entry_counts = dict(db.session.execute(
        select(MatrixEntry.contract_id, func.count(MatrixEntry.id))
        .where(MatrixEntry.training_id.isnot(None))
        .group_by(MatrixEntry.contract_id)
    ).all())
    function_counts = dict(db.session.execute(
        select(MatrixEntry.contract_id, func.count(func.distinct(MatrixEntry.function_id)))
        .group_by(MatrixEntry.contract_id)
    ).all())

    contracts = db.session.execute(select(Contract).order_by(Contract.number)).scalars().all()
    return [
        {
            **c.to_dict(),
            "entry_count": entry_counts.get(c.id, 0),
            "function_count": function_counts.get(c.id, 0),
        }
        for c in contracts
    ]


def contract_detail(contract_id: int) -> dict:
    """Contract with its tracked functions and their trainings, plus pickers."""
    contract = catalog_service.get_contract(contract_id)
    entries = matrix_repository.entries_for_contract(contract_id)

    by_function: dict[int, dict] = {}
    for entry in entries:
        fn = by_function.setdefault(entry.function_id, {
            **entry.function.to_dict(),
            "placeholder_id": None,
            "trainings": [],
        })
        if entry.is_placeholder:
            fn["placeholder_id"] = entry.id
            continue
        fn["trainings"].append({
            **entry.training.to_dict(),
            "entry_id": entry.id,
            "obligation": entry.obligation,
            "active": entry.active,
        })

    functions = sorted(by_function.values(), key=lambda f: (f["name"].lower(), f["id"]))
    for fn in functions:
        fn["trainings"].sort(key=lambda t: (t["name"].lower(), t["id"]))

    return {
        "contract": contract.to_dict(),
        "functions": functions,
        "trainings": [t.to_dict() for t in catalog_service.list_active_trainings(order_by="name")],
        "obligation_types": catalog_service.obligation_types(),
    }
