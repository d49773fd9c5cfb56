"""
Reconciliation engine — applies a decoded matrix workbook to the persisted
MatrixEntry rows of one contract.

Business context:
    The workbook is the desired state of the contract's matrix.  The engine
    re-derives the stored matrix from it while touching as few rows as
    possible, so untouched entries keep their ids and timestamps.

Ordered steps:
    1. Column orphans — trainings stored for the contract but missing from the
       header are deleted for every function (or the import is rejected,
       depending on the orphan-column policy).
    2. Duplicate repair — for functions in the sheet, rows sharing the same
       (function, training) pair collapse to the oldest one.
    3. Cell operations — create / update / convert placeholder / delete, in
       sheet order.  Each cell runs in its own SAVEPOINT; a failing cell is
       rolled back, counted and reported and the loop continues.
    4. Row orphans — functions stored for the contract but missing from the
       sheet lose all their entries, placeholder included.

    Invariant: a tracked function has exactly one placeholder when it has no
    real entries, and none otherwise.  A final sweep restores the placeholder
    of sheet functions that were tracked before the import and ended up empty.

Nothing here commits; ``matrix_sync_service`` owns the unit of work.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from crewflow.core.exceptions import MatrixFormatError
from crewflow.models import db
from crewflow.models.matrix import OBLIGATION_NOT_APPLICABLE
from crewflow.services import catalog_service, matrix_repository
from crewflow.services.matrix_import import DecodedMatrix

logger = logging.getLogger(__name__)

ORPHAN_POLICY_DELETE = "delete"
ORPHAN_POLICY_REJECT = "reject"

STAT_KEYS = (
    "created",
    "updated",
    "converted",
    "removed",
    "ignored",
    "errors",
    "duplicates_removed",
    "placeholders_created",
)


@dataclass
class AuditRecord:
    action: str
    function_id: int
    training_id: int | None
    old_value: str | None = None
    new_value: str | None = None

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "function_id": self.function_id,
            "training_id": self.training_id,
            "de": self.old_value,
            "para": self.new_value,
            "from": self.old_value,
            "to": self.new_value,
        }


@dataclass
class ReconcileResult:
    stats: dict = field(default_factory=lambda: dict.fromkeys(STAT_KEYS, 0))
    audit: list[AuditRecord] = field(default_factory=list)
    removed_columns: list[dict] = field(default_factory=list)
    removed_rows: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        s = self.stats
        return s["created"] + s["updated"] + s["converted"] + s["removed"] + s["placeholders_created"]


def reconcile_matrix(
    contract_id: int,
    decoded: DecodedMatrix,
    orphan_column_policy: str = ORPHAN_POLICY_DELETE,
) -> ReconcileResult:
    """Apply ``decoded`` to the contract's stored matrix.

    Raises MatrixFormatError (before any write) when the policy is
    ``reject`` and stored trainings are missing from the header.
    """
    result = ReconcileResult()
    result.stats["ignored"] = decoded.ignored
    result.warnings.extend(decoded.warnings)
    log_extra = {"contract_id": contract_id}

    tracked_before = matrix_repository.persisted_function_ids(contract_id)

    # ── 1. Column orphans ────────────────────────────────────────────────
    orphan_trainings = sorted(matrix_repository.persisted_training_ids(contract_id) - set(decoded.training_ids))
    if orphan_trainings and orphan_column_policy == ORPHAN_POLICY_REJECT:
        raise MatrixFormatError(
            "Header is missing trainings stored for this contract: "
            + ", ".join(str(t) for t in orphan_trainings),
            details={"missing_training_ids": orphan_trainings},
        )
    _remove_orphan_columns(contract_id, orphan_trainings, result)
    logger.info("Orphan columns removed: %d", len(result.removed_columns), extra=log_extra)

    # ── 2. Duplicate repair ──────────────────────────────────────────────
    current, placeholders, real_count = _repair_duplicates(contract_id, decoded.function_ids, result)
    logger.info("Duplicates removed: %d", result.stats["duplicates_removed"], extra=log_extra)

    # ── 3. Cell operations ───────────────────────────────────────────────
    for op in decoded.operations:
        try:
            _apply_operation(contract_id, op, current, placeholders, real_count, result)
        except Exception as exc:
            result.stats["errors"] += 1
            result.errors.append(f"{op.cell or 'cell'} (function {op.function_id}, training {op.training_id}): {exc}")
            logger.exception(
                "Matrix cell failed: function=%s training=%s", op.function_id, op.training_id, extra=log_extra,
            )
    logger.info(
        "Cells applied: created=%d updated=%d converted=%d removed=%d errors=%d",
        result.stats["created"], result.stats["updated"], result.stats["converted"],
        result.stats["removed"], result.stats["errors"], extra=log_extra,
    )

    # ── 4. Row orphans ───────────────────────────────────────────────────
    orphan_functions = sorted(matrix_repository.persisted_function_ids(contract_id) - set(decoded.function_ids))
    _remove_orphan_rows(contract_id, orphan_functions, result)
    logger.info("Orphan rows removed: %d", len(result.removed_rows), extra=log_extra)

    # ── Placeholder sweep ────────────────────────────────────────────────
    for function_id in decoded.function_ids:
        if function_id in tracked_before and not real_count[function_id] and function_id not in placeholders:
            try:
                with db.session.begin_nested():
                    placeholders[function_id] = matrix_repository.create_placeholder(contract_id, function_id)
            except Exception as exc:
                result.stats["errors"] += 1
                result.errors.append(f"placeholder (function {function_id}): {exc}")
                logger.exception("Placeholder restore failed: function=%s", function_id, extra=log_extra)
                continue
            result.stats["placeholders_created"] += 1
            result.audit.append(AuditRecord("placeholder_created", function_id, None, None, OBLIGATION_NOT_APPLICABLE))

    return result


def _remove_orphan_columns(contract_id: int, training_ids: list[int], result: ReconcileResult) -> None:
    names = {t.id: t.name for t in catalog_service.trainings_by_id(training_ids).values()}
    for training_id in training_ids:
        entries = matrix_repository.entries_for_contract(contract_id, training_ids=[training_id])
        for entry in entries:
            result.audit.append(
                AuditRecord("column_removed", entry.function_id, training_id, entry.obligation, None)
            )
        removed = matrix_repository.delete_training_entries(contract_id, training_id)
        result.stats["removed"] += removed
        result.removed_columns.append({
            "training_id": training_id,
            "training_name": names.get(training_id, ""),
            "removed": removed,
        })


def _repair_duplicates(contract_id: int, function_ids: list[int], result: ReconcileResult):
    """Collapse duplicate rows; return the canonical in-memory view of the sheet functions."""
    groups: dict[tuple[int, int | None], list] = defaultdict(list)
    for entry in matrix_repository.entries_for_contract(contract_id, function_ids=function_ids):
        groups[(entry.function_id, entry.training_id)].append(entry)

    current = {}
    placeholders = {}
    real_count: dict[int, int] = defaultdict(int)
    for (function_id, training_id), entries in groups.items():
        keep, extras = entries[0], entries[1:]
        for extra in extras:
            matrix_repository.delete_entry(extra)
            result.stats["removed"] += 1
            result.stats["duplicates_removed"] += 1
            result.audit.append(
                AuditRecord("duplicate_removed", function_id, training_id, extra.obligation, None)
            )
        if training_id is None:
            placeholders[function_id] = keep
        else:
            current[(function_id, training_id)] = keep
            real_count[function_id] += 1
    return current, placeholders, real_count


def _apply_operation(contract_id, op, current, placeholders, real_count, result: ReconcileResult) -> None:
    key = (op.function_id, op.training_id)
    existing = current.get(key)

    if op.is_removal:
        if existing is None:
            return
        old = existing.obligation
        placeholder = None
        with db.session.begin_nested():
            matrix_repository.delete_entry(existing)
            if real_count[op.function_id] <= 1 and op.function_id not in placeholders:
                placeholder = matrix_repository.create_placeholder(contract_id, op.function_id)
        del current[key]
        real_count[op.function_id] -= 1
        result.stats["removed"] += 1
        result.audit.append(AuditRecord("removed", op.function_id, op.training_id, old, None))
        if placeholder is not None:
            placeholders[op.function_id] = placeholder
            result.stats["placeholders_created"] += 1
            result.audit.append(
                AuditRecord("placeholder_created", op.function_id, None, None, OBLIGATION_NOT_APPLICABLE)
            )
        return

    if existing is not None:
        if existing.obligation == op.value:
            return
        old = existing.obligation
        with db.session.begin_nested():
            matrix_repository.update_obligation(existing, op.value)
        result.stats["updated"] += 1
        result.audit.append(AuditRecord("updated", op.function_id, op.training_id, old, op.value))
        return

    placeholder = placeholders.get(op.function_id)
    if placeholder is not None:
        with db.session.begin_nested():
            matrix_repository.convert_placeholder(placeholder, op.training_id, op.value)
        del placeholders[op.function_id]
        current[key] = placeholder
        real_count[op.function_id] += 1
        result.stats["converted"] += 1
        result.audit.append(
            AuditRecord("converted", op.function_id, op.training_id, OBLIGATION_NOT_APPLICABLE, op.value)
        )
        return

    with db.session.begin_nested():
        entry = matrix_repository.create_entry(contract_id, op.function_id, op.training_id, op.value)
    current[key] = entry
    real_count[op.function_id] += 1
    result.stats["created"] += 1
    result.audit.append(AuditRecord("created", op.function_id, op.training_id, None, op.value))


def _remove_orphan_rows(contract_id: int, function_ids: list[int], result: ReconcileResult) -> None:
    names = {f.id: f.name for f in catalog_service.functions_by_id(function_ids).values()}
    for function_id in function_ids:
        entries = matrix_repository.entries_for_contract(contract_id, function_ids=[function_id])
        for entry in entries:
            result.audit.append(
                AuditRecord("row_removed", function_id, entry.training_id, entry.obligation, None)
            )
        removed = matrix_repository.delete_function_entries(contract_id, function_id)
        result.stats["removed"] += removed
        result.removed_rows.append({
            "function_id": function_id,
            "function_name": names.get(function_id, ""),
            "removed": removed,
        })
