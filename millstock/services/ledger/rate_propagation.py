"""
Rate Propagation Service
Maintains the average purchase rate of kunchinittus and outturns: recomputed
from priced purchases, or copied from the source when stock is shifted in.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from millstock.core.config import settings
from millstock.core.exceptions import ProjectionError, RecordNotFound
from millstock.core.logging import get_logger
from millstock.models import (
    BalanceAuditTrailRec, KunchinittuRec, MovementEventRec, OutturnRec, PurchaseRateRec
)
from .event_store import ADMITTED, IntoOutturn, KindIn
from .events import (
    MovementEvent, MovementKind, OutturnLocation, RATE_TRANSFER_KINDS, WarehouseLocation
)
from .projections import MovementAdmitted

logger = get_logger("projection")


@dataclass(frozen=True)
class RateSnapshot:
    rate: Decimal
    last_calculated_at: Optional[datetime]


@dataclass(frozen=True)
class RateTransferPlan:
    """Source rate captured in phase one of a transfer"""
    event_id: Optional[int]
    kind: MovementKind
    source_kunchinittu_id: int
    source_rate: Decimal
    destination: Union[WarehouseLocation, OutturnLocation]
    quantity_quintals: Decimal


def quantize_rate(value: Decimal) -> Decimal:
    exponent = Decimal(1).scaleb(-settings.RATE_DECIMAL_PLACES)
    return Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RatePropagationService:
    """
    Rate projection over admitted purchases and shiftings.

    Runs after the movement is committed. Rate calculations only flush;
    ``apply_transfer`` commits the new destination rate before auditing it.
    """

    def __init__(self, db: Session):
        self.db = db

    # Purchase rate calculation

    def _priced_purchase_totals(self, *clauses):
        query = (
            self.db.query(
                func.count(PurchaseRateRec.rate_id),
                func.sum(PurchaseRateRec.total_amount),
                func.sum(MovementEventRec.net_weight),
            )
            .join(MovementEventRec, MovementEventRec.event_id == PurchaseRateRec.event_id)
        )
        for predicate in (*ADMITTED, KindIn((MovementKind.PURCHASE,))):
            query = query.filter(predicate.clause())
        count, total_amount, total_weight = query.filter(*clauses).one()
        return count or 0, Decimal(str(total_amount or 0)), Decimal(str(total_weight or 0))

    def _apply_calculated_rate(self, rec, count: int, total_amount: Decimal, total_weight: Decimal) -> RateSnapshot:
        now = _now()
        if count == 0 or total_weight <= 0:
            # Keep a rate inherited from an earlier shift
            if rec.average_rate and Decimal(rec.average_rate) > 0:
                rec.last_rate_calculation = now
                self.db.flush()
                return RateSnapshot(Decimal(rec.average_rate), now)
            rec.average_rate = Decimal("0")
        else:
            rec.average_rate = quantize_rate(total_amount / total_weight * settings.RATE_UNIT_KG)
        rec.last_rate_calculation = now
        self.db.flush()
        return RateSnapshot(Decimal(rec.average_rate), now)

    def calculate_kunchinittu_rate(self, kunchinittu_id: int) -> RateSnapshot:
        """
        Weighted average rate of admitted priced purchases into a kunchinittu.

        rate = sum(total_amount) / sum(net_weight) * 75
        """
        rec = self._get_kunchinittu(kunchinittu_id)
        count, total_amount, total_weight = self._priced_purchase_totals(
            MovementEventRec.to_kunchinittu_id == kunchinittu_id,
            MovementEventRec.outturn_id.is_(None),
        )
        snapshot = self._apply_calculated_rate(rec, count, total_amount, total_weight)
        logger.info(
            f"Kunchinittu {rec.code} rate {snapshot.rate} from {count} priced purchases"
        )
        return snapshot

    def calculate_outturn_rate(self, outturn_id: int) -> RateSnapshot:
        """Same rule for purchases bought directly into an outturn"""
        rec = self._get_outturn(outturn_id)
        count, total_amount, total_weight = self._priced_purchase_totals(
            IntoOutturn(outturn_id).clause()
        )
        snapshot = self._apply_calculated_rate(rec, count, total_amount, total_weight)
        logger.info(f"Outturn {rec.code} rate {snapshot.rate} from {count} priced purchases")
        return snapshot

    # Two-phase transfer

    def prepare_transfer(self, event: MovementEvent) -> RateTransferPlan:
        """Phase one: recompute the source rate and capture it"""
        if event.kind not in RATE_TRANSFER_KINDS:
            raise ProjectionError(f"{event.kind.value} movements do not carry a rate")

        source = self.calculate_kunchinittu_rate(event.source.kunchinittu_id)
        if event.kind == MovementKind.PRODUCTION_SHIFTING:
            destination = OutturnLocation(event.outturn_id)
        else:
            destination = event.destination

        return RateTransferPlan(
            event_id=event.event_id,
            kind=event.kind,
            source_kunchinittu_id=event.source.kunchinittu_id,
            source_rate=source.rate,
            destination=destination,
            quantity_quintals=Decimal(event.net_weight or 0) / 100,
        )

    def apply_transfer(self, plan: RateTransferPlan, actor_id: int) -> Optional[RateSnapshot]:
        """
        Phase two: overwrite the destination rate with the source rate.

        The copy is verbatim, never blended with the destination's prior
        rate. Nothing happens when the source has no rate. The audit row is
        written after the rate commit so a failing audit cannot lose the rate.
        """
        if plan.source_rate <= 0:
            logger.info(
                f"Skipping rate transfer for event {plan.event_id}: source kunchinittu "
                f"{plan.source_kunchinittu_id} has no rate"
            )
            return None

        if isinstance(plan.destination, OutturnLocation):
            entity_type, entity_id = "outturn", plan.destination.outturn_id
            rec = self._get_outturn(entity_id)
        else:
            entity_type, entity_id = "kunchinittu", plan.destination.kunchinittu_id
            rec = self._get_kunchinittu(entity_id)

        previous_rate = Decimal(rec.average_rate or 0)
        now = _now()
        rec.average_rate = plan.source_rate
        rec.last_rate_calculation = now
        self.db.commit()

        logger.info(
            f"Rate transfer {plan.kind.value}: kunchinittu {plan.source_kunchinittu_id} -> "
            f"{entity_type} {entity_id}, {previous_rate} -> {plan.source_rate}"
        )
        self._audit_transfer(plan, entity_type, entity_id, previous_rate, actor_id)
        return RateSnapshot(plan.source_rate, now)

    def _audit_transfer(self, plan, entity_type, entity_id, previous_rate, actor_id):
        try:
            BalanceAuditTrailRec.record(
                self.db,
                action_type="rate_transfer",
                entity_type=entity_type,
                entity_id=entity_id,
                performed_by=actor_id,
                previous_value={"average_rate": str(previous_rate)},
                new_value={"average_rate": str(plan.source_rate)},
                details={
                    "event_id": plan.event_id,
                    "movement_kind": plan.kind.value,
                    "source_kunchinittu_id": plan.source_kunchinittu_id,
                    "source_rate": str(plan.source_rate),
                    "rate_change": str(plan.source_rate - previous_rate),
                    "shifted_quintals": str(plan.quantity_quintals),
                },
                description=(
                    f"Rate transferred from kunchinittu {plan.source_kunchinittu_id} "
                    f"to {entity_type} {entity_id}"
                ),
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to audit rate transfer for event {plan.event_id}: {e}")

    # Projection entry point

    def handle_admitted(self, notification: MovementAdmitted):
        """React to a movement becoming admin-approved"""
        event = notification.event
        try:
            if event.kind == MovementKind.PURCHASE:
                self.recalculate_for_purchase(event)
                self.db.commit()
            elif event.kind in RATE_TRANSFER_KINDS:
                plan = self.prepare_transfer(event)
                self.db.commit()
                self.apply_transfer(plan, notification.actor_id)
        except (SQLAlchemyError, RecordNotFound) as e:
            self.db.rollback()
            raise ProjectionError(f"Rate propagation failed for event {event.event_id}: {e}") from e

    def recalculate_for_purchase(self, event: MovementEvent) -> Optional[RateSnapshot]:
        if event.outturn_id is not None:
            return self.calculate_outturn_rate(event.outturn_id)
        if event.destination is not None:
            return self.calculate_kunchinittu_rate(event.destination.kunchinittu_id)
        return None

    def get_rate(self, location: Union[WarehouseLocation, OutturnLocation]) -> RateSnapshot:
        if isinstance(location, OutturnLocation):
            rec = self._get_outturn(location.outturn_id)
        else:
            rec = self._get_kunchinittu(location.kunchinittu_id)
        return RateSnapshot(Decimal(rec.average_rate or 0), rec.last_rate_calculation)

    def _get_kunchinittu(self, kunchinittu_id: int) -> KunchinittuRec:
        rec = self.db.query(KunchinittuRec).filter(KunchinittuRec.kunchinittu_id == kunchinittu_id).first()
        if rec is None:
            raise RecordNotFound("Kunchinittu", kunchinittu_id)
        return rec

    def _get_outturn(self, outturn_id: int) -> OutturnRec:
        rec = self.db.query(OutturnRec).filter(OutturnRec.outturn_id == outturn_id).first()
        if rec is None:
            raise RecordNotFound("Outturn", outturn_id)
        return rec
