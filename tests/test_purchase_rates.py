"""
Tests for purchase pricing
Amount calculation, display formula and the rate service
"""

import pytest
from decimal import Decimal

from millstock.core.exceptions import InsufficientPermissionsError, InvalidArgument, RecordNotFound
from millstock.models import PurchaseRateRec
from millstock.services.ledger.events import WarehouseLocation
from millstock.services.ledger.purchase_rates import (
    PurchaseRateInput, PurchaseRateService, amount_formula, calculate_purchase_amount
)
from millstock.services.ledger.rate_propagation import RatePropagationService


class TestCalculatePurchaseAmount:
    """Test suite for the pricing formula"""

    def test_per_bag_base_rate(self):
        amount = calculate_purchase_amount(100, Decimal("7500"), PurchaseRateInput(Decimal("2000"), "CDL"))

        assert amount.base_rate_amount == Decimal("200000")
        assert amount.total_amount == Decimal("200000.00")
        assert amount.average_rate == Decimal("2000.00")

    def test_per_bag_sute_reduces_weight(self):
        rate = PurchaseRateInput(Decimal("2000"), "CDL", sute=Decimal("1"))

        amount = calculate_purchase_amount(100, Decimal("7500"), rate)

        assert amount.sute_amount == Decimal("100")
        assert amount.sute_net_weight == Decimal("7400")
        assert amount.total_amount == Decimal("197333.33")
        assert amount.average_rate == Decimal("1973.33")

    def test_per_quintal_charges(self):
        rate = PurchaseRateInput(
            Decimal("2000"), "MDWB",
            base_rate_calculation_method="per_quintal",
            h=Decimal("2"),
            lf=Decimal("1"), lf_calculation_method="per_quintal",
            egb=Decimal("1"),
        )

        amount = calculate_purchase_amount(100, Decimal("7500"), rate)

        assert amount.base_rate_amount == Decimal("150000")
        assert amount.h_amount == Decimal("200")
        assert amount.lf_amount == Decimal("75")
        assert amount.egb_amount == Decimal("100")
        assert amount.total_amount == Decimal("150375.00")
        assert amount.average_rate == Decimal("1503.75")

    def test_unknown_rate_type(self):
        with pytest.raises(InvalidArgument, match="Invalid rate type"):
            calculate_purchase_amount(10, Decimal("750"), PurchaseRateInput(Decimal("2000"), "XYZ"))

    def test_negative_charges_are_refused(self):
        with pytest.raises(InvalidArgument, match="sute must be a positive number"):
            calculate_purchase_amount(10, Decimal("750"), PurchaseRateInput(Decimal("2000"), "CDL", sute=Decimal("-1")))

    def test_hamali_may_be_negative(self):
        rate = PurchaseRateInput(Decimal("2000"), "CDL", h=Decimal("-2"))

        amount = calculate_purchase_amount(10, Decimal("750"), rate)

        assert amount.total_amount == Decimal("19980.00")


class TestAmountFormula:
    """Test suite for the display formula"""

    def test_base_only(self):
        assert amount_formula(PurchaseRateInput(Decimal("2000.00"), "CDL")) == "2000cdl"

    def test_adjustments_line(self):
        rate = PurchaseRateInput(
            Decimal("2000"), "CDWB",
            sute=Decimal("1"), h=Decimal("-2"), b=Decimal("1.50"), egb=Decimal("3"),
        )

        assert amount_formula(rate) == "2000cdwb\n+1s/bag-2h+1.5b+3egb"

    def test_per_quintal_sute_label(self):
        rate = PurchaseRateInput(Decimal("1900"), "MDL", sute=Decimal("0.5"), sute_calculation_method="per_quintal")

        assert amount_formula(rate) == "1900mdl\n+0.5s/Q"


class TestPurchaseRateService:
    """Test suite for saving purchase rates"""

    def test_save_and_update(self, db_session, mill, admit, manager, admin):
        event_id = admit("purchase", 100, destination=mill.k1)
        service = PurchaseRateService(db_session)

        service.save_rate(event_id, PurchaseRateInput(Decimal("2000"), "CDL"), manager)
        record = service.save_rate(event_id, PurchaseRateInput(Decimal("2200"), "CDL"), admin)

        assert db_session.query(PurchaseRateRec).count() == 1
        assert record.updated_by == admin.user_id
        assert Decimal(service.get_rate(event_id).average_rate) == Decimal("2200")

    def test_saving_refreshes_destination_rate(self, db_session, mill, admit, manager):
        event_id = admit("purchase", 100, destination=mill.k1)
        PurchaseRateService(db_session).save_rate(event_id, PurchaseRateInput(Decimal("2000"), "CDL"), manager)

        snapshot = RatePropagationService(db_session).get_rate(WarehouseLocation(mill.k1_id, mill.w1))
        assert snapshot.rate == Decimal("2000")
        assert snapshot.last_calculated_at is not None

    def test_only_purchases_are_priced(self, db_session, mill, admit, manager):
        admit("purchase", 100, destination=mill.k1)
        sale_id = admit("sale", 10, source=mill.k1)

        with pytest.raises(InvalidArgument, match="only be added to purchase"):
            PurchaseRateService(db_session).save_rate(sale_id, PurchaseRateInput(Decimal("2000"), "CDL"), manager)

    def test_staff_cannot_price(self, db_session, mill, admit, staff):
        event_id = admit("purchase", 100, destination=mill.k1)

        with pytest.raises(InsufficientPermissionsError):
            PurchaseRateService(db_session).save_rate(event_id, PurchaseRateInput(Decimal("2000"), "CDL"), staff)

    def test_unknown_purchase(self, db_session, manager):
        service = PurchaseRateService(db_session)

        with pytest.raises(RecordNotFound):
            service.save_rate(404, PurchaseRateInput(Decimal("2000"), "CDL"), manager)
        with pytest.raises(RecordNotFound):
            service.get_rate(404)
