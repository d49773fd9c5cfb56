"""
CrewFlow
Training matrix domain models.

Models:
    - Contract: read-only context for the matrix (number, name, client)
    - Function: job function with its work regime (shift-type tag)
    - Training: catalog training with hours and validity period
    - MatrixEntry: one (Contract, Function, Training) → obligation record
    - MatrixImportRun: persisted outcome of a spreadsheet import

Architecture chain: Contract → MatrixEntry ← Function / Training

A MatrixEntry with training_id = NULL is the *placeholder* entry: the function
is tracked in the contract but has no training assigned.  It must exist exactly
when the function has no real entries left in the contract.
"""

from datetime import datetime, timezone

from crewflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

OBLIGATION_NOT_APPLICABLE = "N/A"

# Persisted obligation codes, in display order.
OBLIGATION_CODES = ("RA", "AP", "C", "SD")

# Full enumeration offered in spreadsheet dropdowns (N/A = removal signal).
OBLIGATION_TYPES = OBLIGATION_CODES + (OBLIGATION_NOT_APPLICABLE,)

OBLIGATION_LABELS = {
    "RA": "Initial or admission requirement",
    "AP": "Required",
    "C": "Complementary, after onboarding",
    "SD": "On request or demand",
    "N/A": "Not applicable",
}

# Codes from the first matrix revision, remapped on import.
LEGACY_OBLIGATION_CODES = {"OB": "AP", "RC": "C", "AD": "SD"}

CONTRACT_STATUSES = {"active", "suspended", "closed"}


# ═══════════════════════════════════════════════════════════════════════════
#  CONTRACT
# ═══════════════════════════════════════════════════════════════════════════

class Contract(db.Model):
    __tablename__ = "contracts"

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(50), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    client = db.Column(db.String(200), default="")
    status = db.Column(db.String(20), default="active")
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    entries = db.relationship("MatrixEntry", back_populates="contract", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "number": self.number,
            "name": self.name,
            "client": self.client,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }

    def __repr__(self):
        return f"<Contract {self.number}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  FUNCTION
# ═══════════════════════════════════════════════════════════════════════════

class Function(db.Model):
    __tablename__ = "functions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    regime = db.Column(db.String(50), nullable=True, comment="Shift-type tag, e.g. ONSHORE / OFFSHORE")
    active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "regime": self.regime,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Function {self.id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  TRAINING
# ═══════════════════════════════════════════════════════════════════════════

class Training(db.Model):
    __tablename__ = "trainings"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    hours = db.Column(db.Integer, nullable=True)
    validity_value = db.Column(db.Integer, nullable=True, comment="Numeric part of the validity period")
    validity_unit = db.Column(db.String(20), nullable=True, comment="months / years / days")
    active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "hours": self.hours,
            "validity_value": self.validity_value,
            "validity_unit": self.validity_unit,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Training {self.id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  MATRIX ENTRY
# ═══════════════════════════════════════════════════════════════════════════

class MatrixEntry(db.Model):
    """One cell of the training matrix for a contract.

    No unique constraint on (contract_id, function_id, training_id): legacy
    data contains duplicates that the import repairs, so they must remain
    representable.
    """

    __tablename__ = "matrix_entries"
    __table_args__ = (
        db.Index("ix_matrix_entries_contract_function_training", "contract_id", "function_id", "training_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    contract_id = db.Column(
        db.Integer, db.ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    function_id = db.Column(
        db.Integer, db.ForeignKey("functions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    training_id = db.Column(
        db.Integer,
        db.ForeignKey("trainings.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="NULL = placeholder (function tracked without trainings)",
    )
    obligation = db.Column(db.String(10), nullable=False, default=OBLIGATION_NOT_APPLICABLE)
    active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    contract = db.relationship("Contract", back_populates="entries")
    function = db.relationship("Function")
    training = db.relationship("Training")

    @property
    def is_placeholder(self) -> bool:
        return self.training_id is None

    def to_dict(self, include_refs: bool = False):
        data = {
            "id": self.id,
            "contract_id": self.contract_id,
            "function_id": self.function_id,
            "training_id": self.training_id,
            "obligation": self.obligation,
            "active": self.active,
            "is_placeholder": self.is_placeholder,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_refs:
            data["contract"] = self.contract.to_dict() if self.contract else None
            data["function"] = self.function.to_dict() if self.function else None
            data["training"] = self.training.to_dict() if self.training else None
        return data

    def __repr__(self):
        return (
            f"<MatrixEntry {self.id}: c={self.contract_id} f={self.function_id} "
            f"t={self.training_id} {self.obligation}>"
        )


# ═══════════════════════════════════════════════════════════════════════════
#  IMPORT RUN
# ═══════════════════════════════════════════════════════════════════════════

class MatrixImportRun(db.Model):
    """Outcome of one spreadsheet import, kept so the change report stays downloadable."""

    __tablename__ = "matrix_import_runs"

    id = db.Column(db.Integer, primary_key=True)
    contract_id = db.Column(
        db.Integer, db.ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    filename = db.Column(db.String(255), default="")
    status = db.Column(db.String(20), default="completed", comment="completed / partial")
    stats = db.Column(db.JSON, default=dict)
    errors = db.Column(db.JSON, default=list)
    report = db.Column(db.LargeBinary, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "contract_id": self.contract_id,
            "filename": self.filename,
            "status": self.status,
            "stats": self.stats or {},
            "errors": self.errors or [],
            "has_report": self.report is not None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
