"""
Matrix repository — persistence primitives for MatrixEntry rows.

Every write flushes immediately so storage faults surface inside the caller's
SAVEPOINT (``db.session.begin_nested()``) instead of at commit time.  Nothing
here commits; the caller owns the unit of work.
"""

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager

from sqlalchemy import delete, select

from crewflow.models import db
from crewflow.models.matrix import OBLIGATION_NOT_APPLICABLE, Contract, MatrixEntry

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_contract_locks: dict[int, threading.Lock] = {}


# ── Locking ──────────────────────────────────────────────────────────────────


def _lock_for(contract_id: int) -> threading.Lock:
    with _locks_guard:
        lock = _contract_locks.get(contract_id)
        if lock is None:
            lock = _contract_locks[contract_id] = threading.Lock()
        return lock


@contextmanager
def contract_lock(contract_id: int):
    """Serialize matrix rewrites of one contract.

    Holds a process-local lock and takes ``SELECT ... FOR UPDATE`` on the
    contract row (PostgreSQL honours it; SQLite ignores the clause), so two
    imports against the same contract cannot interleave reads and writes.
    """
    lock = _lock_for(contract_id)
    with lock:
        db.session.execute(
            select(Contract.id).where(Contract.id == contract_id).with_for_update()
        )
        yield


# ── Reads ────────────────────────────────────────────────────────────────────


def entries_for_contract(contract_id: int, function_ids=None, training_ids=None) -> list[MatrixEntry]:
    """All entries of a contract, optionally restricted to some functions/trainings.

    Ordered by id so "the first" of a duplicate group is the oldest row.
    """
    stmt = select(MatrixEntry).where(MatrixEntry.contract_id == contract_id)
    if function_ids is not None:
        stmt = stmt.where(MatrixEntry.function_id.in_(list(function_ids)))
    if training_ids is not None:
        stmt = stmt.where(MatrixEntry.training_id.in_(list(training_ids)))
    return db.session.execute(stmt.order_by(MatrixEntry.id)).scalars().all()


def persisted_training_ids(contract_id: int) -> set[int]:
    stmt = (
        select(MatrixEntry.training_id)
        .where(MatrixEntry.contract_id == contract_id, MatrixEntry.training_id.isnot(None))
        .distinct()
    )
    return set(db.session.execute(stmt).scalars())


def persisted_function_ids(contract_id: int) -> set[int]:
    stmt = select(MatrixEntry.function_id).where(MatrixEntry.contract_id == contract_id).distinct()
    return set(db.session.execute(stmt).scalars())


def count_real_entries(contract_id: int, function_id: int) -> int:
    stmt = select(db.func.count(MatrixEntry.id)).where(
        MatrixEntry.contract_id == contract_id,
        MatrixEntry.function_id == function_id,
        MatrixEntry.training_id.isnot(None),
    )
    return db.session.execute(stmt).scalar() or 0


def find_placeholder(contract_id: int, function_id: int) -> MatrixEntry | None:
    stmt = (
        select(MatrixEntry)
        .where(
            MatrixEntry.contract_id == contract_id,
            MatrixEntry.function_id == function_id,
            MatrixEntry.training_id.is_(None),
        )
        .order_by(MatrixEntry.id)
    )
    return db.session.execute(stmt).scalars().first()


# ── Writes ───────────────────────────────────────────────────────────────────


def create_entry(contract_id: int, function_id: int, training_id: int | None, obligation: str) -> MatrixEntry:
    entry = MatrixEntry(
        contract_id=contract_id,
        function_id=function_id,
        training_id=training_id,
        obligation=obligation,
        active=True,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def create_placeholder(contract_id: int, function_id: int) -> MatrixEntry:
    return create_entry(contract_id, function_id, None, OBLIGATION_NOT_APPLICABLE)


def update_obligation(entry: MatrixEntry, obligation: str) -> MatrixEntry:
    entry.obligation = obligation
    entry.active = True
    db.session.flush()
    return entry


def convert_placeholder(entry: MatrixEntry, training_id: int, obligation: str) -> MatrixEntry:
    """Turn a placeholder into a real entry in place (same row id)."""
    entry.training_id = training_id
    entry.obligation = obligation
    entry.active = True
    db.session.flush()
    return entry


def to_placeholder(entry: MatrixEntry) -> MatrixEntry:
    """Turn a real entry into the function's placeholder in place."""
    entry.training_id = None
    entry.obligation = OBLIGATION_NOT_APPLICABLE
    db.session.flush()
    return entry


def delete_entry(entry: MatrixEntry) -> None:
    db.session.delete(entry)
    db.session.flush()


def delete_training_entries(contract_id: int, training_id: int) -> int:
    """Delete every entry of a training in a contract. Returns the row count."""
    result = db.session.execute(
        delete(MatrixEntry)
        .where(MatrixEntry.contract_id == contract_id, MatrixEntry.training_id == training_id)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def delete_function_entries(contract_id: int, function_id: int) -> int:
    """Delete every entry of a function in a contract, placeholder included."""
    result = db.session.execute(
        delete(MatrixEntry)
        .where(MatrixEntry.contract_id == contract_id, MatrixEntry.function_id == function_id)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


# ── Integrity ────────────────────────────────────────────────────────────────


def check_placeholder_invariant(contract_id: int) -> list[dict]:
    """List placeholder violations for a contract.

    A function must carry exactly one placeholder when it has no real
    entries and none otherwise.  A function with no rows at all is simply
    not tracked and is not a violation.
    """
    real: dict[int, int] = defaultdict(int)
    placeholders: dict[int, int] = defaultdict(int)
    for entry in entries_for_contract(contract_id):
        if entry.is_placeholder:
            placeholders[entry.function_id] += 1
        else:
            real[entry.function_id] += 1

    violations = []
    for function_id in sorted(set(real) | set(placeholders)):
        n_real, n_ph = real[function_id], placeholders[function_id]
        if n_real and n_ph:
            violations.append({
                "function_id": function_id,
                "issue": "placeholder_with_entries",
                "real_entries": n_real,
                "placeholders": n_ph,
            })
        elif n_ph > 1:
            violations.append({
                "function_id": function_id,
                "issue": "multiple_placeholders",
                "real_entries": 0,
                "placeholders": n_ph,
            })
    return violations
