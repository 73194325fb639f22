"""
Event Store Adapter
Reads and appends movement events, production consumptions and outturn
clearings. Queries are composed from typed filter predicates that compile to
SQLAlchemy expressions.
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from functools import wraps
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, or_, func, true
from sqlalchemy.exc import DBAPIError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from millstock.core.exceptions import RecordNotFound, StoreUnavailable
from millstock.core.logging import get_logger
from millstock.models import (
    KunchinittuRec, MovementEventRec, OutturnRec, RiceProductionRec
)
from .events import (
    ApprovalState, MovementEvent, MovementKind, ProductionConsumption,
    WarehouseLocation, normalize_variety
)

logger = get_logger("database")


# Filter predicates

@dataclass(frozen=True)
class DateBefore:
    """Events dated strictly before the cutoff"""
    cutoff: date

    def clause(self):
        return MovementEventRec.event_date < self.cutoff


@dataclass(frozen=True)
class DateRange:
    """Events dated within [start, end]; either bound may be open"""
    start: Optional[date] = None
    end: Optional[date] = None

    def clause(self):
        clauses = []
        if self.start is not None:
            clauses.append(MovementEventRec.event_date >= self.start)
        if self.end is not None:
            clauses.append(MovementEventRec.event_date <= self.end)
        return and_(*clauses) if clauses else true()


@dataclass(frozen=True)
class StatusIn:
    states: Tuple[ApprovalState, ...]

    def clause(self):
        return MovementEventRec.status.in_([ApprovalState(s).value for s in self.states])


@dataclass(frozen=True)
class NotDeleted:
    def clause(self):
        return MovementEventRec.deleted_at.is_(None)


@dataclass(frozen=True)
class KindIn:
    kinds: Tuple[MovementKind, ...]

    def clause(self):
        return MovementEventRec.kind.in_([MovementKind(k).value for k in self.kinds])


@dataclass(frozen=True)
class VarietyIs:
    """Variety match on the normalized (trimmed, upper-cased) name"""
    variety: str

    def clause(self):
        return func.upper(func.trim(MovementEventRec.variety)) == normalize_variety(self.variety)


@dataclass(frozen=True)
class TouchesLocation:
    """Events entering or leaving a kunchinittu/warehouse pair"""
    location: WarehouseLocation

    def clause(self):
        loc = self.location
        return or_(
            and_(MovementEventRec.from_kunchinittu_id == loc.kunchinittu_id,
                 MovementEventRec.from_warehouse_id == loc.warehouse_id),
            and_(MovementEventRec.to_kunchinittu_id == loc.kunchinittu_id,
                 MovementEventRec.to_warehouse_id == loc.warehouse_id),
        )


@dataclass(frozen=True)
class TouchesKunchinittu:
    """Events entering or leaving a kunchinittu in any warehouse"""
    kunchinittu_id: int

    def clause(self):
        return or_(
            MovementEventRec.from_kunchinittu_id == self.kunchinittu_id,
            MovementEventRec.to_kunchinittu_id == self.kunchinittu_id,
        )


@dataclass(frozen=True)
class IntoOutturn:
    outturn_id: int

    def clause(self):
        return MovementEventRec.outturn_id == self.outturn_id


@dataclass(frozen=True)
class ExcludeEvent:
    event_id: int

    def clause(self):
        return MovementEventRec.event_id != self.event_id


# Only admin-approved, non-deleted events count towards stock and rates
ADMITTED = (StatusIn((ApprovalState.ADMIN_APPROVED,)), NotDeleted())


def store_call(method):
    """Translate driver failures and statement timeouts into StoreUnavailable"""
    @wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except (DBAPIError, PoolTimeoutError) as e:
            logger.error(f"Event store call {method.__name__} failed: {e}")
            raise StoreUnavailable(f"Event store unavailable: {e}", original=e) from e
    return wrapper


def location_of(kunchinittu_id: Optional[int], warehouse_id: Optional[int]) -> Optional[WarehouseLocation]:
    if kunchinittu_id is None or warehouse_id is None:
        return None
    return WarehouseLocation(kunchinittu_id, warehouse_id)


def to_movement_event(rec: MovementEventRec) -> MovementEvent:
    """Domain view of a stored ledger row"""
    return MovementEvent(
        kind=MovementKind(rec.kind),
        event_date=rec.event_date,
        variety=rec.variety or "",
        bags=rec.bags,
        net_weight=Decimal(rec.net_weight or 0),
        source=location_of(rec.from_kunchinittu_id, rec.from_warehouse_id),
        destination=location_of(rec.to_kunchinittu_id, rec.to_warehouse_id),
        outturn_id=rec.outturn_id,
        shortage_bags=rec.shortage_bags or 0,
        status=ApprovalState(rec.status),
        event_id=rec.event_id,
        deleted_at=rec.deleted_at,
    )


class EventStoreAdapter:
    """
    Read/append access to the movement ledger.

    Never retries: a failed or timed-out statement surfaces as
    StoreUnavailable to the caller.
    """

    def __init__(self, db: Session):
        self.db = db

    def _movement_query(self, filters: Iterable):
        query = self.db.query(MovementEventRec)
        for predicate in filters:
            query = query.filter(predicate.clause())
        return query

    @store_call
    def scan_movements(self, *filters) -> List[MovementEvent]:
        """All movement events matching every filter, oldest first"""
        rows = (
            self._movement_query(filters)
            .order_by(MovementEventRec.event_date, MovementEventRec.event_id)
            .all()
        )
        return [to_movement_event(row) for row in rows]

    @store_call
    def list_records(self, *filters, skip: int = 0, limit: int = 100) -> List[MovementEventRec]:
        """Stored rows matching the filters, newest first"""
        return (
            self._movement_query(filters)
            .order_by(MovementEventRec.event_date.desc(), MovementEventRec.event_id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    @store_call
    def count_records(self, *filters) -> int:
        return self._movement_query(filters).count()

    @store_call
    def scan_consumptions(
        self,
        before: Optional[date] = None,
        outturn_id: Optional[int] = None,
        variety: Optional[str] = None,
        statuses: Sequence[str] = ("approved",),
    ) -> List[ProductionConsumption]:
        """Rice-production deductions, tagged with the outturn's allotted variety"""
        query = (
            self.db.query(RiceProductionRec, OutturnRec.allotted_variety)
            .join(OutturnRec, OutturnRec.outturn_id == RiceProductionRec.outturn_id)
            .filter(RiceProductionRec.status.in_(list(statuses)))
        )
        if before is not None:
            query = query.filter(RiceProductionRec.production_date < before)
        if outturn_id is not None:
            query = query.filter(RiceProductionRec.outturn_id == outturn_id)
        if variety:
            query = query.filter(
                func.upper(func.trim(OutturnRec.allotted_variety)) == normalize_variety(variety)
            )

        return [
            ProductionConsumption(
                outturn_id=prod.outturn_id,
                production_date=prod.production_date,
                product_type=prod.product_type,
                paddy_bags_deducted=prod.paddy_bags_deducted,
                variety=allotted,
                production_id=prod.production_id,
            )
            for prod, allotted in query.order_by(RiceProductionRec.production_date).all()
        ]

    @store_call
    def outturn_clearings(self) -> Dict[int, date]:
        """Clearing date of every cleared outturn"""
        rows = (
            self.db.query(OutturnRec.outturn_id, OutturnRec.cleared_at)
            .filter(OutturnRec.is_cleared.is_(True), OutturnRec.cleared_at.isnot(None))
            .all()
        )
        return {
            outturn_id: cleared_at.date() if isinstance(cleared_at, datetime) else cleared_at
            for outturn_id, cleared_at in rows
        }

    @store_call
    def get_record(self, event_id: int) -> MovementEventRec:
        rec = self.db.query(MovementEventRec).filter(MovementEventRec.event_id == event_id).first()
        if rec is None:
            raise RecordNotFound("Movement event", event_id)
        return rec

    @store_call
    def lock_outturn(self, outturn_id: int) -> Optional[OutturnRec]:
        """Lock an outturn row so admissions into the same outturn serialise"""
        return (
            self.db.query(OutturnRec)
            .filter(OutturnRec.outturn_id == outturn_id)
            .with_for_update()
            .first()
        )

    @store_call
    def lock_kunchinittu(self, kunchinittu_id: int) -> Optional[KunchinittuRec]:
        """
        Lock a kunchinittu row until the current transaction ends.

        Serialises admissions touching the same kunchinittu so the occupancy
        and sufficiency checks and the insert see the same balance.
        """
        return (
            self.db.query(KunchinittuRec)
            .filter(KunchinittuRec.kunchinittu_id == kunchinittu_id)
            .with_for_update()
            .first()
        )

    @store_call
    def next_sl_no(self) -> str:
        last_id = self.db.query(func.max(MovementEventRec.event_id)).scalar() or 0
        return f"A{last_id + 1:05d}"

    @store_call
    def append(self, rec: MovementEventRec) -> MovementEventRec:
        """Stage a new ledger row in the current transaction"""
        if not rec.sl_no:
            rec.sl_no = self.next_sl_no()
        self.db.add(rec)
        self.db.flush()
        return rec
