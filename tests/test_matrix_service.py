"""
Tests: training matrix maintenance service (single-entry CRUD, contract
function management, contract views).
"""

import pytest

from crewflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from crewflow.models import db as _db
from crewflow.models.matrix import Contract, MatrixEntry
from crewflow.services import matrix_service
from crewflow.services.matrix_repository import check_placeholder_invariant


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


def _entries(contract_id):
    return _db.session.query(MatrixEntry).filter_by(contract_id=contract_id).order_by(MatrixEntry.id).all()


# ═════════════════════════════════════════════════════════════════════════════
# Create / update
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateEntry:
    def test_create(self, contract, catalog):
        entry = matrix_service.create_entry({
            "contract_id": contract.id,
            "function_id": catalog["welder"].id,
            "training_id": catalog["nr10"].id,
            "obligation": "ap",
        })
        assert entry.id is not None
        assert entry.obligation == "AP"

    def test_missing_field(self, contract, catalog):
        with pytest.raises(ValidationError, match="training_id is required"):
            matrix_service.create_entry({
                "contract_id": contract.id, "function_id": catalog["welder"].id, "obligation": "AP",
            })

    def test_na_is_not_a_stored_value(self, contract, catalog):
        with pytest.raises(ValidationError):
            matrix_service.create_entry({
                "contract_id": contract.id,
                "function_id": catalog["welder"].id,
                "training_id": catalog["nr10"].id,
                "obligation": "N/A",
            })

    def test_unknown_training(self, contract, catalog):
        with pytest.raises(NotFoundError):
            matrix_service.create_entry({
                "contract_id": contract.id,
                "function_id": catalog["welder"].id,
                "training_id": 999,
                "obligation": "AP",
            })

    def test_duplicate_triple_conflicts(self, contract, catalog):
        _make_entry(contract, catalog["welder"], catalog["nr10"])
        with pytest.raises(ConflictError):
            matrix_service.create_entry({
                "contract_id": contract.id,
                "function_id": catalog["welder"].id,
                "training_id": catalog["nr10"].id,
                "obligation": "RA",
            })

    def test_placeholder_is_converted(self, contract, catalog):
        placeholder = _make_entry(contract, catalog["rigger"])
        entry = matrix_service.create_entry({
            "contract_id": contract.id,
            "function_id": catalog["rigger"].id,
            "training_id": catalog["huet"].id,
            "obligation": "SD",
        })
        assert entry.id == placeholder.id
        assert len(_entries(contract.id)) == 1


class TestUpdateEntry:
    def test_update_obligation_and_active(self, contract, catalog):
        entry = _make_entry(contract, catalog["welder"], catalog["nr10"])
        updated = matrix_service.update_entry(entry.id, {"obligation": "c", "active": False})
        assert updated.obligation == "C"
        assert updated.active is False

    def test_invalid_obligation(self, contract, catalog):
        entry = _make_entry(contract, catalog["welder"], catalog["nr10"])
        with pytest.raises(ValidationError):
            matrix_service.update_entry(entry.id, {"obligation": "XX"})

    def test_move_to_taken_training_conflicts(self, contract, catalog):
        entry = _make_entry(contract, catalog["welder"], catalog["nr10"])
        _make_entry(contract, catalog["welder"], catalog["nr35"])
        with pytest.raises(ConflictError):
            matrix_service.update_entry(entry.id, {"training_id": catalog["nr35"].id})

    def test_unknown_entry(self):
        with pytest.raises(NotFoundError):
            matrix_service.update_entry(12345, {"obligation": "AP"})

    def test_move_onto_placeholder_function_replaces_placeholder(self, contract, catalog):
        welder, rigger = catalog["welder"], catalog["rigger"]
        entry = _make_entry(contract, welder, catalog["nr10"])
        _make_entry(contract, welder, catalog["nr35"])
        _make_entry(contract, rigger)

        matrix_service.update_entry(entry.id, {"function_id": rigger.id})

        rigger_rows = [(e.id, e.training_id) for e in _entries(contract.id) if e.function_id == rigger.id]
        assert rigger_rows == [(entry.id, catalog["nr10"].id)]
        assert check_placeholder_invariant(contract.id) == []

    def test_moving_last_entry_restores_source_placeholder(self, contract, catalog):
        welder, rigger = catalog["welder"], catalog["rigger"]
        entry = _make_entry(contract, welder, catalog["nr10"])

        matrix_service.update_entry(entry.id, {"function_id": rigger.id})

        welder_rows = [(e.training_id, e.obligation) for e in _entries(contract.id) if e.function_id == welder.id]
        assert welder_rows == [(None, "N/A")]
        assert check_placeholder_invariant(contract.id) == []

    def test_placeholder_cannot_move_onto_tracked_function(self, contract, catalog):
        placeholder = _make_entry(contract, catalog["rigger"])
        _make_entry(contract, catalog["welder"])
        with pytest.raises(ConflictError):
            matrix_service.update_entry(placeholder.id, {"function_id": catalog["welder"].id})

    def test_placeholder_keeps_not_applicable(self, contract, catalog):
        placeholder = _make_entry(contract, catalog["rigger"])
        with pytest.raises(ValidationError):
            matrix_service.update_entry(placeholder.id, {"obligation": "RA"})
        assert (placeholder.training_id, placeholder.obligation) == (None, "N/A")

    def test_placeholder_converted_by_assigning_training(self, contract, catalog):
        placeholder = _make_entry(contract, catalog["rigger"])

        updated = matrix_service.update_entry(
            placeholder.id, {"training_id": catalog["huet"].id, "obligation": "SD"}
        )

        assert (updated.id, updated.obligation) == (placeholder.id, "SD")
        assert check_placeholder_invariant(contract.id) == []


# ═════════════════════════════════════════════════════════════════════════════
# Delete (placeholder-aware)
# ═════════════════════════════════════════════════════════════════════════════


class TestDeleteEntry:
    def test_last_entry_becomes_placeholder(self, contract, catalog):
        entry = _make_entry(contract, catalog["welder"], catalog["nr10"])

        result = matrix_service.delete_entry(entry.id)

        assert result["action"] == "converted_to_placeholder"
        remaining = _entries(contract.id)
        assert len(remaining) == 1
        assert remaining[0].id == entry.id
        assert remaining[0].training_id is None
        assert remaining[0].obligation == "N/A"

    def test_non_last_entry_is_deleted(self, contract, catalog):
        entry = _make_entry(contract, catalog["welder"], catalog["nr10"])
        _make_entry(contract, catalog["welder"], catalog["nr35"])

        result = matrix_service.delete_entry(entry.id)

        assert result["action"] == "deleted"
        assert [e.training_id for e in _entries(contract.id)] == [catalog["nr35"].id]

    def test_deleting_placeholder_untracks_function(self, contract, catalog):
        placeholder = _make_entry(contract, catalog["rigger"])

        result = matrix_service.delete_entry(placeholder.id)

        assert result["action"] == "function_removed"
        assert _entries(contract.id) == []


# ═════════════════════════════════════════════════════════════════════════════
# Contract functions and views
# ═════════════════════════════════════════════════════════════════════════════


class TestContractFunctions:
    def test_add_functions_creates_placeholders(self, contract, catalog):
        _make_entry(contract, catalog["welder"], catalog["nr10"])

        result = matrix_service.add_functions(
            contract.id, {"function_ids": [catalog["welder"].id, catalog["rigger"].id]}
        )

        assert result == {"added": 1, "already_present": 1, "total": 2, "function_ids": [catalog["rigger"].id]}
        placeholders = [e for e in _entries(contract.id) if e.training_id is None]
        assert [p.function_id for p in placeholders] == [catalog["rigger"].id]

    def test_add_inactive_function_is_not_found(self, contract, catalog):
        catalog["rigger"].active = False
        _db.session.flush()
        with pytest.raises(NotFoundError):
            matrix_service.add_functions(contract.id, {"function_ids": [catalog["rigger"].id]})

    def test_add_requires_list(self, contract):
        with pytest.raises(ValidationError):
            matrix_service.add_functions(contract.id, {"function_ids": []})

    def test_remove_functions(self, contract, catalog):
        _make_entry(contract, catalog["welder"], catalog["nr10"])
        _make_entry(contract, catalog["welder"], catalog["nr35"])
        _make_entry(contract, catalog["rigger"])

        result = matrix_service.remove_functions(contract.id, {"function_ids": [catalog["welder"].id]})

        assert result["removed_entries"] == 2
        assert [e.function_id for e in _entries(contract.id)] == [catalog["rigger"].id]


class TestContractViews:
    def test_overview_counts(self, contract, catalog):
        other = Contract(number="CT-002", name="Onshore Base")
        _db.session.add(other)
        _make_entry(contract, catalog["welder"], catalog["nr10"])
        _make_entry(contract, catalog["welder"], catalog["nr35"])
        _make_entry(contract, catalog["rigger"])

        overview = {c["number"]: c for c in matrix_service.contract_overview()}

        assert overview["CT-001"]["entry_count"] == 2
        assert overview["CT-001"]["function_count"] == 2
        assert overview["CT-002"]["entry_count"] == 0

    def test_detail_groups_by_function(self, contract, catalog):
        _make_entry(contract, catalog["welder"], catalog["nr35"], "RA")
        _make_entry(contract, catalog["welder"], catalog["nr10"], "AP")
        placeholder = _make_entry(contract, catalog["rigger"])

        detail = matrix_service.contract_detail(contract.id)

        assert detail["contract"]["number"] == "CT-001"
        names = [f["name"] for f in detail["functions"]]
        assert names == ["Rigger", "Welder"]
        rigger, welder = detail["functions"]
        assert rigger["placeholder_id"] == placeholder.id
        assert rigger["trainings"] == []
        assert [t["obligation"] for t in welder["trainings"]] == ["AP", "RA"]
        assert len(detail["obligation_types"]) == 5

    def test_detail_unknown_contract(self):
        with pytest.raises(NotFoundError):
            matrix_service.contract_detail(404)


class TestListEntries:
    def test_filters_and_pagination(self, contract, catalog):
        _make_entry(contract, catalog["welder"], catalog["nr10"], "AP")
        _make_entry(contract, catalog["welder"], catalog["nr35"], "RA")
        _make_entry(contract, catalog["rigger"], catalog["nr10"], "AP")

        result = matrix_service.list_entries(contract_id=contract.id, obligation="ap")
        assert result["total"] == 2

        result = matrix_service.list_entries(search="height")
        assert result["total"] == 1
        assert result["items"][0]["training"]["name"] == "NR-35 Work at Height"

        page = matrix_service.list_entries(contract_id=contract.id, limit=2, offset=2)
        assert page["total"] == 3
        assert len(page["items"]) == 1
        assert {o["value"] for o in page["filters"]["obligation_types"]} == {"RA", "AP", "C", "SD", "N/A"}
