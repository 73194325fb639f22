"""
Tests for the Movement Admission Service
Recording, approval workflow and tombstoning of movements
"""

import pytest
from dataclasses import replace
from datetime import date

from millstock.core.exceptions import (
    BusinessLogicError, InsufficientPermissionsError, InsufficientStock,
    ProjectionError, RecordNotFound, VarietyMismatch
)
from millstock.models import MovementEventRec
from millstock.services.ledger.admission import Actor, MovementAdmissionService
from millstock.services.ledger.balance_engine import StockBalanceEngine
from millstock.services.ledger.event_store import NotDeleted
from millstock.services.ledger.projections import MovementAdmitted, ProjectionDispatcher

from tests.conftest import make_event

FEB_1 = date(2024, 2, 1)


@pytest.fixture
def service(db_session):
    return MovementAdmissionService(db_session)


class TestAdmitMovement:
    """Test suite for recording movements"""

    @pytest.mark.parametrize("role,expected", [
        ("staff", "pending"),
        ("manager", "approved"),
        ("admin", "admin-approved"),
    ])
    def test_initial_status_follows_role(self, service, mill, role, expected):
        event_id = service.admit_movement(make_event("purchase", 10, destination=mill.k1), Actor(7, role))

        rec = service.get_movement(event_id)
        assert rec.status == expected
        assert rec.created_by == 7

    def test_loose_entries_are_admitted_at_once(self, service, mill, manager):
        event_id = service.admit_movement(make_event("loose", 4, variety="", destination=mill.k2), manager)

        rec = service.get_movement(event_id)
        assert rec.status == "admin-approved"
        assert rec.variety == "IR64"

    def test_staff_cannot_record_loose_entries(self, db_session, service, mill, staff):
        with pytest.raises(InsufficientPermissionsError):
            service.admit_movement(make_event("loose", 500, variety="", destination=mill.k2), staff)

        assert db_session.query(MovementEventRec).count() == 0
        assert StockBalanceEngine(db_session).compute_opening_balance(FEB_1).warehouse_balances == {}

    def test_plain_string_kind_is_accepted(self, service, mill, admin):
        proposal = replace(make_event("purchase", 10, destination=mill.k1), kind="purchase")

        event_id = service.admit_movement(proposal, admin)

        assert service.get_movement(event_id).kind == "purchase"

    def test_serial_numbers(self, service, mill, admin):
        first = service.admit_movement(make_event("purchase", 10, destination=mill.k1), admin)
        second = service.admit_movement(make_event("purchase", 10, destination=mill.k1), admin)

        assert service.get_movement(first).sl_no == "A00001"
        assert service.get_movement(second).sl_no == "A00002"

    def test_trip_details_are_stored(self, service, mill, admin):
        event_id = service.admit_movement(
            make_event("purchase", 10, destination=mill.k1),
            admin,
            {"broker": "Ramesh", "lorry_number": "AP09 1234", "wb_no": "WB-17", "unknown": "ignored"},
        )

        rec = service.get_movement(event_id)
        assert rec.broker == "Ramesh"
        assert rec.lorry_number == "AP09 1234"
        assert rec.wb_no == "WB-17"

    def test_variety_is_stored_normalized(self, service, mill, admin):
        event_id = service.admit_movement(make_event("purchase", 10, variety=" ir64", destination=mill.k1), admin)

        assert service.get_movement(event_id).variety == "IR64"

    def test_rejected_proposal_is_not_persisted(self, db_session, service, mill, admin):
        with pytest.raises(VarietyMismatch):
            service.admit_movement(make_event("purchase", 10, variety="Sona Masuri", destination=mill.k2), admin)

        assert db_session.query(MovementEventRec).count() == 0

    def test_failing_projection_does_not_undo_admission(self, db_session, mill, admin):
        def broken(notification):
            raise ProjectionError("rates offline")

        dispatcher = ProjectionDispatcher()
        dispatcher.subscribe(MovementAdmitted.event_type, broken)
        service = MovementAdmissionService(db_session, dispatcher=dispatcher)

        event_id = service.admit_movement(make_event("purchase", 10, destination=mill.k1), admin)

        assert service.get_movement(event_id).status == "admin-approved"

    def test_projection_only_sees_admitted_movements(self, db_session, mill, staff, admin):
        seen = []
        dispatcher = ProjectionDispatcher()
        dispatcher.subscribe(MovementAdmitted.event_type, seen.append)
        service = MovementAdmissionService(db_session, dispatcher=dispatcher)

        service.admit_movement(make_event("purchase", 10, destination=mill.k1), staff)
        admitted_id = service.admit_movement(make_event("purchase", 10, destination=mill.k1), admin)

        assert [n.event.event_id for n in seen] == [admitted_id]
        assert seen[0].actor_id == admin.user_id


class TestApprovalWorkflow:
    """Test suite for pending -> approved -> admin-approved"""

    def test_full_workflow(self, db_session, service, mill, staff, manager, admin):
        event_id = service.admit_movement(make_event("purchase", 25, destination=mill.k1), staff)
        engine = StockBalanceEngine(db_session)

        service.approve(event_id, manager)
        assert engine.compute_opening_balance(FEB_1).total_bags() == 0

        rec = service.admin_approve(event_id, admin)
        assert rec.status == "admin-approved"
        assert rec.approved_by == manager.user_id
        assert rec.admin_approved_by == admin.user_id
        assert engine.compute_opening_balance(FEB_1).warehouse_balance("IR64", mill.k1) == 25

    def test_staff_cannot_approve(self, service, mill, staff):
        event_id = service.admit_movement(make_event("purchase", 25, destination=mill.k1), staff)

        with pytest.raises(InsufficientPermissionsError):
            service.approve(event_id, staff)

    def test_manager_cannot_admin_approve(self, service, mill, manager):
        event_id = service.admit_movement(make_event("purchase", 25, destination=mill.k1), manager)

        with pytest.raises(InsufficientPermissionsError):
            service.admin_approve(event_id, manager)

    def test_admin_approval_needs_manager_approval(self, service, mill, staff, admin):
        event_id = service.admit_movement(make_event("purchase", 25, destination=mill.k1), staff)

        with pytest.raises(BusinessLogicError, match="manager-approved"):
            service.admin_approve(event_id, admin)

    def test_only_pending_can_be_approved(self, service, mill, manager):
        event_id = service.admit_movement(make_event("purchase", 25, destination=mill.k1), manager)

        with pytest.raises(BusinessLogicError, match="Only pending"):
            service.approve(event_id, manager)

    def test_reject_appends_remarks(self, service, mill, staff, manager):
        event_id = service.admit_movement(make_event("purchase", 25, destination=mill.k1), staff, {"remarks": "first load"})

        rec = service.reject(event_id, manager, "weighbridge slip missing")

        assert rec.status == "rejected"
        assert rec.remarks == "first load\nweighbridge slip missing"

    def test_admin_approval_revalidates(self, service, mill, admit, manager, admin):
        """Two approved sales cannot jointly overdraw the source"""
        admit("purchase", 100, destination=mill.k1)
        first = service.admit_movement(make_event("sale", 60, source=mill.k1), manager)
        second = service.admit_movement(make_event("sale", 60, source=mill.k1), manager)

        service.admin_approve(first, admin)
        with pytest.raises(InsufficientStock) as exc_info:
            service.admin_approve(second, admin)

        assert exc_info.value.available == 40
        assert service.get_movement(second).status == "approved"

    def test_unknown_movement(self, service, manager):
        with pytest.raises(RecordNotFound):
            service.approve(404, manager)


class TestLocking:
    """Test suite for row locks taken by an admission"""

    @pytest.fixture
    def locks(self, service, monkeypatch):
        taken = []
        lock_kunchinittu = service.store.lock_kunchinittu
        lock_outturn = service.store.lock_outturn

        def record_kunchinittu(kunchinittu_id):
            taken.append(("kunchinittu", kunchinittu_id))
            return lock_kunchinittu(kunchinittu_id)

        def record_outturn(outturn_id):
            taken.append(("outturn", outturn_id))
            return lock_outturn(outturn_id)

        monkeypatch.setattr(service.store, "lock_kunchinittu", record_kunchinittu)
        monkeypatch.setattr(service.store, "lock_outturn", record_outturn)
        return taken

    def test_purchase_locks_destination(self, service, mill, admin, locks):
        service.admit_movement(make_event("purchase", 10, destination=mill.k1), admin)

        assert locks == [("kunchinittu", mill.k1_id)]

    def test_shifting_locks_in_ascending_order(self, service, mill, admit, admin, locks):
        admit("purchase", 50, destination=mill.k3)
        locks.clear()

        service.admit_movement(make_event("shifting", 20, source=mill.k3, destination=mill.k1), admin)

        expected = sorted([mill.k1_id, mill.k3_id])
        assert locks == [("kunchinittu", kunchinittu_id) for kunchinittu_id in expected]

    def test_production_shifting_locks_outturn(self, service, mill, admit, admin, locks):
        admit("purchase", 50, destination=mill.k1)
        locks.clear()

        service.admit_movement(make_event("production-shifting", 20, source=mill.k1, outturn_id=mill.o1), admin)

        assert locks == [("kunchinittu", mill.k1_id), ("outturn", mill.o1)]

    def test_admin_approval_relocks_destination(self, service, mill, manager, admin, locks):
        event_id = service.admit_movement(make_event("purchase", 10, destination=mill.k1), manager)
        locks.clear()

        service.admin_approve(event_id, admin)

        assert locks == [("kunchinittu", mill.k1_id)]


class TestDelete:
    """Test suite for tombstoning"""

    def test_delete_tombstones(self, db_session, service, mill, admit, manager):
        event_id = admit("purchase", 100, destination=mill.k1)

        rec = service.delete(event_id, manager)

        assert rec.deleted_at is not None
        assert rec.deleted_by == manager.user_id
        assert db_session.query(MovementEventRec).count() == 1
        assert service.count_movements(NotDeleted()) == 0

    def test_deleted_movement_cannot_change(self, service, mill, admit, manager):
        event_id = admit("purchase", 100, destination=mill.k1)
        service.delete(event_id, manager)

        with pytest.raises(BusinessLogicError, match="has been deleted"):
            service.delete(event_id, manager)

    def test_staff_cannot_delete(self, service, mill, admit, staff):
        event_id = admit("purchase", 100, destination=mill.k1)

        with pytest.raises(InsufficientPermissionsError):
            service.delete(event_id, staff)

    def test_pending_cannot_be_deleted(self, service, mill, staff, manager):
        event_id = service.admit_movement(make_event("purchase", 25, destination=mill.k1), staff)

        with pytest.raises(BusinessLogicError, match="Only approved"):
            service.delete(event_id, manager)

    def test_outturn_movements_cannot_be_deleted(self, service, mill, admit, manager):
        admit("purchase", 100, destination=mill.k1)
        event_id = admit("production-shifting", 30, source=mill.k1, outturn_id=mill.o1)

        with pytest.raises(BusinessLogicError, match="linked to an outturn"):
            service.delete(event_id, manager)
