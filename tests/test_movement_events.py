"""
Tests for movement deltas
Each movement kind's signed contribution to the locations it touches
"""

from datetime import date, datetime
from decimal import Decimal

from millstock.services.ledger.events import (
    ApprovalState, MovementEvent, MovementKind, OutturnLocation, ProductionConsumption,
    WarehouseLocation, consumption_deltas, movement_deltas, normalize_variety
)

A = WarehouseLocation(1, 1)
B = WarehouseLocation(2, 1)
DAY = date(2024, 3, 1)


def deltas_by_location(event):
    return {d.location: d.bags for d in movement_deltas(event)}


class TestMovementDeltas:
    """Test suite for per-kind delta functions"""

    def test_purchase_adds_at_destination(self):
        event = MovementEvent(MovementKind.PURCHASE, DAY, " ir64 ", 50,
                              net_weight=Decimal("3750"), destination=A)
        deltas = movement_deltas(event)

        assert len(deltas) == 1
        assert deltas[0].location == A
        assert deltas[0].bags == 50
        assert deltas[0].net_weight == Decimal("3750")
        assert deltas[0].variety == "IR64"

    def test_purchase_into_outturn_adds_at_outturn_only(self):
        event = MovementEvent(MovementKind.PURCHASE, DAY, "IR64", 20, destination=A, outturn_id=7)
        assert deltas_by_location(event) == {OutturnLocation(7): 20}

    def test_shifting_moves_bags(self):
        event = MovementEvent(MovementKind.SHIFTING, DAY, "IR64", 40, source=A, destination=B)
        assert deltas_by_location(event) == {A: -40, B: 40}

    def test_production_shifting_feeds_outturn(self):
        event = MovementEvent(MovementKind.PRODUCTION_SHIFTING, DAY, "IR64", 30, source=A, outturn_id=9)
        assert deltas_by_location(event) == {A: -30, OutturnLocation(9): 30}

    def test_sale_draws_from_source(self):
        event = MovementEvent(MovementKind.SALE, DAY, "IR64", 10, source=A)
        assert deltas_by_location(event) == {A: -10}

    def test_loose_adds_at_destination(self):
        event = MovementEvent(MovementKind.LOOSE, DAY, "IR64", 5, destination=B)
        assert deltas_by_location(event) == {B: 5}

    def test_palti_loses_shortage_at_source(self):
        event = MovementEvent(MovementKind.PALTI, DAY, "IR64", 18, source=A, destination=B, shortage_bags=2)
        assert deltas_by_location(event) == {A: -20, B: 18}

    def test_palti_without_destination_repacks_in_place(self):
        event = MovementEvent(MovementKind.PALTI, DAY, "IR64", 18, source=A, shortage_bags=2)
        deltas = movement_deltas(event)

        assert sum(d.bags for d in deltas) == -2
        assert all(d.location == A for d in deltas)

    def test_every_kind_has_a_delta_function(self):
        """Closed enum: no kind falls through"""
        for kind in MovementKind:
            event = MovementEvent(kind, DAY, "IR64", 1, source=A, destination=B, outturn_id=3)
            assert movement_deltas(event)

    def test_admitted_requires_admin_approval_and_no_tombstone(self):
        admitted = MovementEvent(MovementKind.SALE, DAY, "IR64", 1, source=A)
        approved = MovementEvent(MovementKind.SALE, DAY, "IR64", 1, source=A, status=ApprovalState.APPROVED)
        deleted = MovementEvent(MovementKind.SALE, DAY, "IR64", 1, source=A,
                                deleted_at=datetime(2024, 3, 2))

        assert admitted.is_admitted
        assert not approved.is_admitted
        assert not deleted.is_admitted


class TestConsumptionDeltas:
    """Test suite for rice-production consumption"""

    def test_rice_production_deducts_from_outturn(self):
        consumption = ProductionConsumption(4, DAY, "Rice", 30, "ir64")
        deltas = consumption_deltas(consumption, ["BRAN"])

        assert len(deltas) == 1
        assert deltas[0].location == OutturnLocation(4)
        assert deltas[0].bags == -30
        assert deltas[0].variety == "IR64"

    def test_exempt_byproducts_consume_nothing(self):
        for product in ("Bran", "Farm Bran", " faram ", "FARM"):
            consumption = ProductionConsumption(4, DAY, product, 30, "IR64")
            assert consumption_deltas(consumption, ["BRAN", "FARM BRAN", "FARAM", "FARM"]) == []


def test_normalize_variety():
    assert normalize_variety("  Sona Masuri ") == "SONA MASURI"
    assert normalize_variety(None) == ""
