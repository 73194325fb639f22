"""
Purchase Rate Service
Prices purchase movements and keeps the destination rate in step.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from millstock.core.config import settings
from millstock.core.exceptions import InvalidArgument, RecordNotFound
from millstock.core.logging import get_logger
from millstock.models import MovementEventRec, PurchaseRateRec
from .admission import Actor, ROLE_ADMIN, ROLE_MANAGER
from .events import ApprovalState, MovementKind
from .rate_propagation import RatePropagationService, quantize_rate

logger = get_logger("ledger")

RATE_TYPES = ("CDL", "CDWB", "MDL", "MDWB")
CALCULATION_METHODS = ("per_bag", "per_quintal")

TWO_PLACES = Decimal("0.01")
QUINTAL_KG = Decimal("100")


@dataclass(frozen=True)
class PurchaseRateInput:
    base_rate: Decimal
    rate_type: str
    sute: Decimal = Decimal("0")
    sute_calculation_method: str = "per_bag"
    base_rate_calculation_method: str = "per_bag"
    h: Decimal = Decimal("0")
    b: Decimal = Decimal("0")
    b_calculation_method: str = "per_bag"
    lf: Decimal = Decimal("0")
    lf_calculation_method: str = "per_bag"
    egb: Decimal = Decimal("0")


@dataclass(frozen=True)
class PurchaseAmount:
    sute_amount: Decimal
    sute_net_weight: Decimal
    base_rate_amount: Decimal
    h_amount: Decimal
    b_amount: Decimal
    lf_amount: Decimal
    egb_amount: Decimal
    total_amount: Decimal
    average_rate: Decimal
    amount_formula: str


def _plain(value: Decimal) -> str:
    return format(Decimal(value).normalize(), "f")


def validate_rate_input(rate: PurchaseRateInput):
    """Reject unknown rate types, unknown methods and negative charges"""
    if rate.rate_type not in RATE_TYPES:
        raise InvalidArgument(
            f"Invalid rate type. Must be one of {', '.join(RATE_TYPES)}", field="rate_type"
        )
    for name in ("sute_calculation_method", "base_rate_calculation_method",
                 "b_calculation_method", "lf_calculation_method"):
        if getattr(rate, name) not in CALCULATION_METHODS:
            raise InvalidArgument(f"Invalid {name}", field=name)
    # Hamali may be negative; everything else may not
    for name in ("base_rate", "sute", "b", "lf", "egb"):
        if Decimal(getattr(rate, name)) < 0:
            raise InvalidArgument(f"{name} must be a positive number", field=name)


def calculate_purchase_amount(bags: int, net_weight: Decimal, rate: PurchaseRateInput) -> PurchaseAmount:
    """
    Price one purchase.

    Sute per bag is deducted from the net weight before the per-bag base
    rate is applied (base is quoted per 75 kg); per-quintal sute leaves the
    weight alone. Per-quintal charges use the actual net weight.
    """
    validate_rate_input(rate)
    bags = Decimal(bags)
    net_weight = Decimal(net_weight)
    if net_weight <= 0:
        raise InvalidArgument("Net weight must be greater than zero to price a purchase", field="net_weight")

    unit = Decimal(settings.RATE_UNIT_KG)
    quintals = net_weight / QUINTAL_KG
    sute, base, h, b, lf, egb = (Decimal(v) for v in (rate.sute, rate.base_rate, rate.h, rate.b, rate.lf, rate.egb))

    if rate.sute_calculation_method == "per_bag":
        sute_amount = sute * bags
        sute_net_weight = net_weight - sute_amount
    else:
        sute_amount = quintals * sute
        sute_net_weight = net_weight

    if rate.base_rate_calculation_method == "per_bag":
        base_amount = sute_net_weight / unit * base
    else:
        base_amount = quintals * base

    h_amount = bags * h
    b_amount = bags * b if rate.b_calculation_method == "per_bag" else quintals * b
    lf_amount = bags * lf if rate.lf_calculation_method == "per_bag" else quintals * lf
    egb_amount = bags * egb

    total = base_amount + h_amount + b_amount + lf_amount + egb_amount
    average = total / net_weight * unit

    return PurchaseAmount(
        sute_amount=sute_amount,
        sute_net_weight=sute_net_weight,
        base_rate_amount=base_amount,
        h_amount=h_amount,
        b_amount=b_amount,
        lf_amount=lf_amount,
        egb_amount=egb_amount,
        total_amount=total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP),
        average_rate=quantize_rate(average),
        amount_formula=amount_formula(rate),
    )


def amount_formula(rate: PurchaseRateInput) -> str:
    """Display formula: base rate on the first line, adjustments on the second"""
    base_line = f"{_plain(rate.base_rate)}{rate.rate_type.lower()}"
    parts = []
    if Decimal(rate.sute) != 0:
        label = "s/bag" if rate.sute_calculation_method == "per_bag" else "s/Q"
        parts.append(f"+{_plain(rate.sute)}{label}")
    if Decimal(rate.h) != 0:
        sign = "+" if Decimal(rate.h) > 0 else ""
        parts.append(f"{sign}{_plain(rate.h)}h")
    for value, suffix in ((rate.b, "b"), (rate.lf, "lf"), (rate.egb, "egb")):
        if Decimal(value) != 0:
            parts.append(f"+{_plain(value)}{suffix}")
    return f"{base_line}\n{''.join(parts)}" if parts else base_line


class PurchaseRateService:
    """Attach prices to purchase movements"""

    def __init__(self, db: Session, rates: Optional[RatePropagationService] = None):
        self.db = db
        self.rates = rates or RatePropagationService(db)

    def save_rate(self, event_id: int, rate: PurchaseRateInput, actor: Actor) -> PurchaseRateRec:
        """
        Create or update the rate of a purchase, then refresh the average
        rate of the kunchinittu or outturn it was bought into.
        """
        actor.require(ROLE_MANAGER, ROLE_ADMIN)
        event = self.db.query(MovementEventRec).filter(MovementEventRec.event_id == event_id).first()
        if event is None or event.deleted_at is not None:
            raise RecordNotFound("Purchase record", event_id)
        if event.kind != MovementKind.PURCHASE.value:
            raise InvalidArgument("Rates can only be added to purchase records", field="event_id")

        amount = calculate_purchase_amount(event.bags, event.net_weight, rate)
        values = dict(
            sute=rate.sute,
            sute_calculation_method=rate.sute_calculation_method,
            base_rate=rate.base_rate,
            rate_type=rate.rate_type,
            base_rate_calculation_method=rate.base_rate_calculation_method,
            h=rate.h,
            b=rate.b,
            b_calculation_method=rate.b_calculation_method,
            lf=rate.lf,
            lf_calculation_method=rate.lf_calculation_method,
            egb=rate.egb,
            amount_formula=amount.amount_formula,
            total_amount=amount.total_amount,
            average_rate=amount.average_rate,
        )

        existing = event.purchase_rate
        try:
            if existing is not None:
                for key, value in values.items():
                    setattr(existing, key, value)
                existing.updated_by = actor.user_id
                record = existing
            else:
                record = PurchaseRateRec(event_id=event.event_id, created_by=actor.user_id, **values)
                self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error saving purchase rate for event {event_id}: {e}")
            raise

        logger.info(
            f"Purchase rate {'updated' if existing is not None else 'created'} for {event.sl_no}: "
            f"total {amount.total_amount}, average {amount.average_rate}"
        )
        self._refresh_destination_rate(event)
        return record

    def get_rate(self, event_id: int) -> PurchaseRateRec:
        record = self.db.query(PurchaseRateRec).filter(PurchaseRateRec.event_id == event_id).first()
        if record is None:
            raise RecordNotFound("Purchase rate", event_id)
        return record

    def _refresh_destination_rate(self, event: MovementEventRec):
        # Only admitted purchases feed the average; the rate record still saves
        if event.status != ApprovalState.ADMIN_APPROVED.value:
            return
        try:
            if event.outturn_id is not None:
                self.rates.calculate_outturn_rate(event.outturn_id)
            elif event.to_kunchinittu_id is not None:
                self.rates.calculate_kunchinittu_rate(event.to_kunchinittu_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating average rate after pricing {event.sl_no}: {e}")
