"""
Reference catalogs — read-only snapshots of Contracts, Functions, Trainings
and the obligation-type enumeration.

Used both to populate the workbook lookup sheets and to validate identifiers
read back from an imported workbook.  Existence checks are batched: one query
per catalog per import, never one per cell.
"""

import logging
from collections.abc import Iterable

from sqlalchemy import select

from crewflow.core.exceptions import NotFoundError
from crewflow.models import db
from crewflow.models.matrix import (
    OBLIGATION_LABELS,
    OBLIGATION_TYPES,
    Contract,
    Function,
    Training,
)

logger = logging.getLogger(__name__)


def get_contract(contract_id: int) -> Contract:
    """Return the contract or raise NotFoundError."""
    contract = db.session.get(Contract, contract_id)
    if contract is None:
        raise NotFoundError(resource="Contract", resource_id=contract_id)
    return contract


def list_active_functions() -> list[Function]:
    """Active functions ordered by display name (function dropdown source)."""
    stmt = select(Function).where(Function.active.is_(True)).order_by(Function.name, Function.id)
    return db.session.execute(stmt).scalars().all()


def list_active_trainings(order_by: str = "id") -> list[Training]:
    """Active trainings ordered by ``id`` (dropdown source) or ``name``."""
    order = (Training.name, Training.id) if order_by == "name" else (Training.id,)
    stmt = select(Training).where(Training.active.is_(True)).order_by(*order)
    return db.session.execute(stmt).scalars().all()


def trainings_by_id(ids: Iterable[int]) -> dict[int, Training]:
    """Batch-load trainings for the given ids (any active state)."""
    ids = set(ids)
    if not ids:
        return {}
    stmt = select(Training).where(Training.id.in_(ids))
    return {t.id: t for t in db.session.execute(stmt).scalars()}


def functions_by_id(ids: Iterable[int]) -> dict[int, Function]:
    """Batch-load functions for the given ids (any active state)."""
    ids = set(ids)
    if not ids:
        return {}
    stmt = select(Function).where(Function.id.in_(ids))
    return {f.id: f for f in db.session.execute(stmt).scalars()}


def missing_training_ids(ids: Iterable[int]) -> list[int]:
    """Return the ids that do not exist in the training catalog, sorted."""
    ids = set(ids)
    found = trainings_by_id(ids)
    return sorted(ids - set(found))


def obligation_types() -> list[dict]:
    """The closed obligation enumeration with display labels."""
    return [{"value": code, "label": OBLIGATION_LABELS[code]} for code in OBLIGATION_TYPES]
