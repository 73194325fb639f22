"""
Kunchinittu Ledger Service
Manual opening balances per kunchinittu, carried forward by the admitted
movement ledger.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from millstock.core.exceptions import InvalidArgument, RecordNotFound
from millstock.core.logging import get_logger
from millstock.models import BalanceAuditTrailRec, KunchinittuRec, OpeningBalanceRec
from .admission import Actor, ROLE_ADMIN, ROLE_MANAGER
from .balance_engine import coerce_cutoff
from .event_store import ADMITTED, DateBefore, DateRange, EventStoreAdapter, TouchesKunchinittu
from .events import WarehouseLocation, movement_deltas

logger = get_logger("ledger")

SOURCE_MANUAL = "exact_match"
SOURCE_CARRIED_FORWARD = "calculated_from_manual"
SOURCE_LEDGER = "calculated_from_start"


@dataclass(frozen=True)
class KunchinittuBalance:
    kunchinittu_id: int
    on_date: date
    bags: int
    net_weight: Decimal
    is_manual: bool
    source: str


class KunchinittuLedgerService:
    """Opening balances of a kunchinittu across all varieties and warehouses"""

    def __init__(self, db: Session):
        self.db = db
        self.store = EventStoreAdapter(db)

    def get_opening_balance(self, kunchinittu_id: int, on_date) -> KunchinittuBalance:
        """
        Opening balance of a kunchinittu at the start of ``on_date``.

        Uses a manual balance for that exact date when one exists, else the
        latest earlier manual balance plus the movements since it, else the
        full movement history.
        """
        self._get_kunchinittu(kunchinittu_id)
        on_date = coerce_cutoff(on_date)

        exact = self._manual_balance(kunchinittu_id, on_date)
        if exact is not None:
            return KunchinittuBalance(
                kunchinittu_id, on_date, exact.opening_bags,
                Decimal(exact.opening_net_weight), True, SOURCE_MANUAL,
            )

        earlier = (
            self.db.query(OpeningBalanceRec)
            .filter(
                OpeningBalanceRec.kunchinittu_id == kunchinittu_id,
                OpeningBalanceRec.balance_date < on_date,
            )
            .order_by(OpeningBalanceRec.balance_date.desc())
            .first()
        )
        if earlier is not None:
            bags, weight = self.movement_between(kunchinittu_id, earlier.balance_date, on_date)
            return KunchinittuBalance(
                kunchinittu_id, on_date,
                earlier.opening_bags + bags,
                Decimal(earlier.opening_net_weight) + weight,
                False, SOURCE_CARRIED_FORWARD,
            )

        bags, weight = self.movement_between(kunchinittu_id, None, on_date)
        return KunchinittuBalance(kunchinittu_id, on_date, bags, weight, False, SOURCE_LEDGER)

    def movement_between(
        self,
        kunchinittu_id: int,
        start: Optional[date],
        end: date,
    ) -> Tuple[int, Decimal]:
        """Net bags and weight moved through a kunchinittu in [start, end)"""
        filters = [*ADMITTED, TouchesKunchinittu(kunchinittu_id), DateBefore(end)]
        if start is not None:
            filters.append(DateRange(start=start))

        bags = 0
        weight = Decimal("0")
        for event in self.store.scan_movements(*filters):
            for delta in movement_deltas(event):
                location = delta.location
                if isinstance(location, WarehouseLocation) and location.kunchinittu_id == kunchinittu_id:
                    bags += delta.bags
                    weight += delta.net_weight
        return bags, weight

    def set_opening_balance(
        self,
        kunchinittu_id: int,
        on_date,
        bags: int,
        net_weight: Decimal,
        actor: Actor,
        remarks: Optional[str] = None,
    ) -> OpeningBalanceRec:
        """Create or overwrite the manual opening balance for a date"""
        actor.require(ROLE_MANAGER, ROLE_ADMIN)
        self._get_kunchinittu(kunchinittu_id)
        on_date = coerce_cutoff(on_date)
        net_weight = Decimal(net_weight)

        if bags is None or bags < 0:
            raise InvalidArgument("Bags must be a non-negative number", field="bags")
        if net_weight < 0:
            raise InvalidArgument("Net weight must be a non-negative number", field="net_weight")
        if bags > 0 and net_weight <= 0:
            raise InvalidArgument("If bags are present, net weight must be greater than 0", field="net_weight")

        record = self._manual_balance(kunchinittu_id, on_date)
        previous = None
        try:
            if record is not None:
                previous = {"bags": record.opening_bags, "net_weight": str(record.opening_net_weight)}
                record.opening_bags = bags
                record.opening_net_weight = net_weight
                record.remarks = remarks
                record.updated_by = actor.user_id
                action = "opening_balance_update"
            else:
                record = OpeningBalanceRec(
                    kunchinittu_id=kunchinittu_id,
                    balance_date=on_date,
                    opening_bags=bags,
                    opening_net_weight=net_weight,
                    is_manual=True,
                    remarks=remarks,
                    created_by=actor.user_id,
                )
                self.db.add(record)
                action = "opening_balance_create"

            BalanceAuditTrailRec.record(
                self.db,
                action_type=action,
                entity_type="kunchinittu",
                entity_id=kunchinittu_id,
                performed_by=actor.user_id,
                previous_value=previous,
                new_value={"bags": bags, "net_weight": str(net_weight)},
                details={"date": on_date.isoformat(), "remarks": remarks},
                description=f"Manual opening balance for {on_date.isoformat()}",
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error setting opening balance for kunchinittu {kunchinittu_id}: {e}")
            raise

        logger.info(f"Opening balance of kunchinittu {kunchinittu_id} on {on_date} set to {bags} bags")
        return record

    def opening_balance_history(
        self,
        kunchinittu_id: int,
        from_date=None,
        to_date=None,
        limit: int = 50,
    ) -> List[OpeningBalanceRec]:
        query = self.db.query(OpeningBalanceRec).filter(OpeningBalanceRec.kunchinittu_id == kunchinittu_id)
        if from_date is not None:
            query = query.filter(OpeningBalanceRec.balance_date >= coerce_cutoff(from_date))
        if to_date is not None:
            query = query.filter(OpeningBalanceRec.balance_date <= coerce_cutoff(to_date))
        return query.order_by(OpeningBalanceRec.balance_date.desc()).limit(limit).all()

    def _manual_balance(self, kunchinittu_id: int, on_date: date) -> Optional[OpeningBalanceRec]:
        return (
            self.db.query(OpeningBalanceRec)
            .filter(
                OpeningBalanceRec.kunchinittu_id == kunchinittu_id,
                OpeningBalanceRec.balance_date == on_date,
            )
            .first()
        )

    def _get_kunchinittu(self, kunchinittu_id: int) -> KunchinittuRec:
        rec = self.db.query(KunchinittuRec).filter(KunchinittuRec.kunchinittu_id == kunchinittu_id).first()
        if rec is None:
            raise RecordNotFound("Kunchinittu", kunchinittu_id)
        return rec
