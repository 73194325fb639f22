"""
Movement Validator
Chain-of-custody checks run before a movement event is persisted.
"""
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from millstock.core.exceptions import (
    InvalidArgument, InsufficientStock, OutturnVarietyMismatch,
    SourceStockNotFound, VarietyConflict, VarietyMismatch
)
from millstock.core.logging import get_logger
from millstock.models import KunchinittuRec, OutturnRec, WarehouseRec
from .balance_engine import StockBalanceEngine
from .events import (
    MovementEvent, MovementKind, SOURCE_KINDS, WarehouseLocation, normalize_variety
)

logger = get_logger("ledger")

# Location fields each kind must carry
REQUIRED_FIELDS = {
    MovementKind.PURCHASE: (),
    MovementKind.LOOSE: ("destination",),
    MovementKind.SHIFTING: ("source", "destination"),
    MovementKind.PRODUCTION_SHIFTING: ("source", "outturn_id"),
    MovementKind.SALE: ("source",),
    MovementKind.PALTI: ("source",),
}


class MovementValidator:
    """
    Admit-or-reject a proposed movement.

    Rules run in a fixed order and stop at the first failure; nothing is
    persisted by the validator itself.
    """

    def __init__(self, db: Session, engine: Optional[StockBalanceEngine] = None):
        self.db = db
        self.engine = engine or StockBalanceEngine(db)

    def validate(self, event: MovementEvent, exclude_event_id: Optional[int] = None) -> None:
        """
        Raise the first rule violation for the proposed event.

        Args:
            event: Proposed movement
            exclude_event_id: Stored id of the same event when re-validating
                at approval time, so it is not counted against itself

        Raises:
            InvalidArgument, VarietyMismatch, VarietyConflict,
            SourceStockNotFound, InsufficientStock, OutturnVarietyMismatch
        """
        self._check_arguments(event)
        variety = normalize_variety(event.variety)

        # 1. Variety required (loose entries take it from the kunchinittu)
        if not variety:
            if event.kind == MovementKind.LOOSE:
                variety = self.resolve_loose_variety(event.destination)
            else:
                raise InvalidArgument("Variety is required", field="variety")

        if event.destination is not None:
            # 2. Destination allotment
            self._check_destination_allotment(event.destination, variety)
            # 3. Destination occupancy
            self._check_destination_occupancy(event.destination, variety, exclude_event_id)

        if event.kind in SOURCE_KINDS:
            # 4. Source existence
            available = self.available_bags(event.source, variety, exclude_event_id)
            if available <= 0 and event.kind in (MovementKind.SHIFTING, MovementKind.PRODUCTION_SHIFTING):
                raise SourceStockNotFound(
                    f"No {variety} stock found at kunchinittu {event.source.kunchinittu_id} "
                    f"in warehouse {event.source.warehouse_id}",
                    variety=variety,
                    kunchinittu_id=event.source.kunchinittu_id,
                    warehouse_id=event.source.warehouse_id,
                )

            # 5. Source sufficiency
            requested = event.bags + (event.shortage_bags if event.kind == MovementKind.PALTI else 0)
            if requested > available:
                raise InsufficientStock(
                    f"Insufficient stock. Available: {available} bags, requested: {requested} bags",
                    available=available,
                    requested=requested,
                    variety=variety,
                )

        # 6. Outturn variety
        if event.outturn_id is not None:
            outturn = self.db.query(OutturnRec).filter(OutturnRec.outturn_id == event.outturn_id).first()
            allotted = normalize_variety(outturn.allotted_variety)
            if allotted != variety:
                raise OutturnVarietyMismatch(
                    f"Outturn {outturn.code} is allotted to {allotted}, not {variety}",
                    expected=allotted,
                    actual=variety,
                    outturn_id=outturn.outturn_id,
                )

    def normalized(self, event: MovementEvent) -> MovementEvent:
        """The event with a typed kind and its variety in comparison form, derived for loose entries"""
        variety = normalize_variety(event.variety)
        if not variety and event.kind == MovementKind.LOOSE and event.destination is not None:
            variety = self.resolve_loose_variety(event.destination)
        return replace(event, kind=MovementKind(event.kind), variety=variety)

    def available_bags(
        self,
        location: WarehouseLocation,
        variety: str,
        exclude_event_id: Optional[int] = None,
    ) -> int:
        balances = self.engine.location_balances(location, exclude_event_id=exclude_event_id)
        entry = balances.get(normalize_variety(variety))
        return entry.bags if entry else 0

    def resolve_loose_variety(self, location: WarehouseLocation) -> str:
        """Variety of a loose entry: the kunchinittu allotment, else the current occupant"""
        kunchinittu = self._kunchinittu(location.kunchinittu_id)
        if kunchinittu.allotted_variety:
            return normalize_variety(kunchinittu.allotted_variety)

        occupants = [v for v, e in self.engine.location_balances(location).items() if e.bags != 0]
        if len(occupants) == 1:
            return occupants[0]
        raise InvalidArgument(
            f"Kunchinittu {kunchinittu.code} has no allotted variety for a loose entry",
            field="variety",
        )

    # Internal checks

    def _check_arguments(self, event: MovementEvent):
        try:
            kind = MovementKind(event.kind)
        except ValueError:
            raise InvalidArgument(f"Unknown movement kind: {event.kind}", field="kind")

        if not isinstance(event.event_date, date):
            raise InvalidArgument("Movement date is required", field="event_date")

        if isinstance(event.bags, bool) or not isinstance(event.bags, int) or event.bags <= 0:
            raise InvalidArgument("Bags must be a positive whole number", field="bags", value=event.bags)

        if event.shortage_bags < 0:
            raise InvalidArgument("Shortage bags cannot be negative", field="shortage_bags")

        net_weight = Decimal(event.net_weight or 0)
        if kind == MovementKind.PURCHASE and net_weight <= 0:
            raise InvalidArgument(
                "Net weight must be greater than zero for a purchase",
                field="net_weight",
                value=net_weight,
            )
        if net_weight < 0:
            raise InvalidArgument("Net weight cannot be negative", field="net_weight", value=net_weight)

        for name in REQUIRED_FIELDS[kind]:
            if getattr(event, name) is None:
                raise InvalidArgument(f"{name} is required for a {kind.value} movement", field=name)

        if kind == MovementKind.PURCHASE and event.destination is None and event.outturn_id is None:
            raise InvalidArgument(
                "A purchase needs a destination kunchinittu or an outturn",
                field="destination",
            )

        if kind == MovementKind.SHIFTING and event.source == event.destination:
            raise InvalidArgument("Source and destination must differ", field="destination")

        for location in (event.source, event.destination):
            if location is not None:
                self._kunchinittu(location.kunchinittu_id)
                self._warehouse(location.warehouse_id)

        if event.outturn_id is not None:
            outturn = self.db.query(OutturnRec).filter(OutturnRec.outturn_id == event.outturn_id).first()
            if outturn is None:
                raise InvalidArgument(f"Outturn {event.outturn_id} does not exist", field="outturn_id")
            if outturn.is_cleared:
                raise InvalidArgument(
                    f"Outturn {outturn.code} is cleared and cannot receive paddy",
                    field="outturn_id",
                )

    def _check_destination_allotment(self, location: WarehouseLocation, variety: str):
        kunchinittu = self._kunchinittu(location.kunchinittu_id)
        allotted = normalize_variety(kunchinittu.allotted_variety)
        if allotted and allotted != variety:
            raise VarietyMismatch(
                f"Kunchinittu {kunchinittu.code} is allotted to {allotted}, not {variety}",
                expected=allotted,
                actual=variety,
                kunchinittu_id=kunchinittu.kunchinittu_id,
            )

    def _check_destination_occupancy(
        self,
        location: WarehouseLocation,
        variety: str,
        exclude_event_id: Optional[int],
    ):
        balances = self.engine.location_balances(location, exclude_event_id=exclude_event_id)
        for existing, entry in balances.items():
            if existing != variety and entry.bags != 0:
                raise VarietyConflict(
                    f"Kunchinittu {location.kunchinittu_id} already holds {entry.bags} bags of "
                    f"{existing}; cannot add {variety}",
                    existing=existing,
                    incoming=variety,
                    kunchinittu_id=location.kunchinittu_id,
                )

    def _kunchinittu(self, kunchinittu_id: int) -> KunchinittuRec:
        rec = self.db.query(KunchinittuRec).filter(KunchinittuRec.kunchinittu_id == kunchinittu_id).first()
        if rec is None:
            raise InvalidArgument(f"Kunchinittu {kunchinittu_id} does not exist", field="kunchinittu_id")
        return rec

    def _warehouse(self, warehouse_id: int) -> WarehouseRec:
        rec = self.db.query(WarehouseRec).filter(WarehouseRec.warehouse_id == warehouse_id).first()
        if rec is None:
            raise InvalidArgument(f"Warehouse {warehouse_id} does not exist", field="warehouse_id")
        return rec
