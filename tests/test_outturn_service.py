"""
Tests for the Outturn Service
Rice production against outturn paddy and outturn clearing
"""

import pytest
from datetime import date
from decimal import Decimal

from millstock.core.exceptions import (
    BusinessLogicError, InsufficientPermissionsError, InvalidArgument, RecordNotFound
)
from millstock.services.ledger.outturn_service import OutturnService, paddy_bags_for


@pytest.fixture
def service(db_session):
    return OutturnService(db_session)


@pytest.fixture
def stocked_outturn(mill, admit):
    """Outturn 1 holding 50 admitted bags of IR64"""
    admit("purchase", 100, destination=mill.k1, event_date=date(2024, 1, 1))
    admit("production-shifting", 50, source=mill.k1, outturn_id=mill.o1, event_date=date(2024, 1, 2))
    return mill.o1


@pytest.mark.parametrize("quantity,product,expected", [
    ("10", "Rice", 30),
    ("1.5", "Broken", 5),
    ("0.1", "Rice", 0),
    ("12", "bran", 0),
    ("12", "Farm Bran", 0),
])
def test_paddy_bags_for(quantity, product, expected):
    assert paddy_bags_for(Decimal(quantity), product) == expected


class TestRecordProduction:
    """Test suite for production entries"""

    def test_manager_entry_is_approved(self, service, stocked_outturn, manager):
        production = service.record_production(stocked_outturn, date(2024, 1, 10), "Rice", Decimal("10"), manager)

        assert production.status == "approved"
        assert production.paddy_bags_deducted == 30
        assert production.approved_by == manager.user_id

    def test_pending_entries_reserve_paddy(self, service, stocked_outturn, staff):
        production = service.record_production(stocked_outturn, date(2024, 1, 10), "Rice", Decimal("10"), staff)

        assert production.status == "pending"
        assert service.available_paddy_bags(stocked_outturn) == 20

    def test_insufficient_paddy(self, service, stocked_outturn, manager):
        with pytest.raises(BusinessLogicError, match="Available: 50, required: 60"):
            service.record_production(stocked_outturn, date(2024, 1, 10), "Rice", Decimal("20"), manager)

    def test_byproducts_need_no_paddy(self, service, mill, manager):
        production = service.record_production(mill.o2, date(2024, 1, 10), "Bran", Decimal("8"), manager)

        assert production.paddy_bags_deducted == 0

    def test_quantity_must_be_positive(self, service, stocked_outturn, manager):
        with pytest.raises(InvalidArgument, match="greater than zero"):
            service.record_production(stocked_outturn, date(2024, 1, 10), "Rice", Decimal("0"), manager)

    def test_cleared_outturn_takes_no_production(self, service, stocked_outturn, manager):
        service.clear_outturn(stocked_outturn, manager, clear_date=date(2024, 1, 20))

        with pytest.raises(BusinessLogicError, match="cleared"):
            service.record_production(stocked_outturn, date(2024, 1, 21), "Rice", Decimal("1"), manager)

    def test_unknown_outturn(self, service, manager):
        with pytest.raises(RecordNotFound):
            service.record_production(404, date(2024, 1, 10), "Rice", Decimal("1"), manager)

    def test_approve_production(self, service, stocked_outturn, staff, manager):
        production = service.record_production(stocked_outturn, date(2024, 1, 10), "Rice", Decimal("10"), staff)

        approved = service.approve_production(production.production_id, manager)

        assert approved.status == "approved"
        assert service.outturn_balance(stocked_outturn).bags == 20
        with pytest.raises(BusinessLogicError, match="Only pending"):
            service.approve_production(production.production_id, manager)


class TestClearOutturn:
    """Test suite for outturn clearing"""

    def test_clear_records_remaining_bags(self, service, stocked_outturn, manager):
        service.record_production(stocked_outturn, date(2024, 1, 10), "Rice", Decimal("10"), manager)

        outturn = service.clear_outturn(stocked_outturn, manager, clear_date=date(2024, 1, 20))

        assert outturn.is_cleared is True
        assert outturn.remaining_bags == 20
        assert outturn.cleared_by == manager.user_id
        assert outturn.cleared_at.date() == date(2024, 1, 20)

    def test_clear_twice(self, service, stocked_outturn, manager):
        service.clear_outturn(stocked_outturn, manager, clear_date=date(2024, 1, 20))

        with pytest.raises(BusinessLogicError, match="already cleared"):
            service.clear_outturn(stocked_outturn, manager)

    def test_empty_outturn_cannot_be_cleared(self, service, mill, manager):
        with pytest.raises(BusinessLogicError, match="No remaining bags"):
            service.clear_outturn(mill.o2, manager)

    def test_staff_cannot_clear(self, service, stocked_outturn, staff):
        with pytest.raises(InsufficientPermissionsError):
            service.clear_outturn(stocked_outturn, staff)
