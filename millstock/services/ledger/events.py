"""
Movement Events
Domain model of the stock ledger and the signed deltas each movement kind
contributes to the locations it touches.
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Union


class MovementKind(str, Enum):
    PURCHASE = "purchase"
    SHIFTING = "shifting"
    PRODUCTION_SHIFTING = "production-shifting"
    LOOSE = "loose"
    SALE = "sale"
    PALTI = "palti"


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ADMIN_APPROVED = "admin-approved"
    REJECTED = "rejected"


# Kinds that draw down a source warehouse location
SOURCE_KINDS = frozenset({
    MovementKind.SHIFTING,
    MovementKind.PRODUCTION_SHIFTING,
    MovementKind.SALE,
    MovementKind.PALTI,
})

# Kinds whose rate travels with the stock
RATE_TRANSFER_KINDS = frozenset({
    MovementKind.SHIFTING,
    MovementKind.PRODUCTION_SHIFTING,
})


def normalize_variety(value: Optional[str]) -> str:
    """Comparison form of a variety name: trimmed and upper-cased"""
    if value is None:
        return ""
    return value.strip().upper()


@dataclass(frozen=True)
class WarehouseLocation:
    """A Kunchinittu (stacking bay) inside a warehouse"""
    kunchinittu_id: int
    warehouse_id: int


@dataclass(frozen=True)
class OutturnLocation:
    """A production batch that consumes paddy"""
    outturn_id: int


Location = Union[WarehouseLocation, OutturnLocation]


@dataclass(frozen=True)
class MovementEvent:
    """
    One entry of the append-only movement ledger.

    ``source`` is the location stock leaves, ``destination`` the location it
    arrives at. ``outturn_id`` is the destination outturn of a
    production-shifting, or the outturn a purchase was bought directly into.
    """
    kind: MovementKind
    event_date: date
    variety: str
    bags: int
    net_weight: Decimal = Decimal("0")
    source: Optional[WarehouseLocation] = None
    destination: Optional[WarehouseLocation] = None
    outturn_id: Optional[int] = None
    shortage_bags: int = 0
    status: ApprovalState = ApprovalState.ADMIN_APPROVED
    event_id: Optional[int] = None
    deleted_at: Optional[datetime] = None

    @property
    def outturn(self) -> Optional[OutturnLocation]:
        if self.outturn_id is None:
            return None
        return OutturnLocation(self.outturn_id)

    @property
    def is_admitted(self) -> bool:
        return self.status == ApprovalState.ADMIN_APPROVED and self.deleted_at is None


@dataclass(frozen=True)
class ProductionConsumption:
    """Paddy bags consumed from an outturn by a rice-production record"""
    outturn_id: int
    production_date: date
    product_type: str
    paddy_bags_deducted: int
    variety: str
    production_id: Optional[int] = None

    @property
    def outturn(self) -> OutturnLocation:
        return OutturnLocation(self.outturn_id)


@dataclass(frozen=True)
class StockDelta:
    """A signed change to one (variety, location) group"""
    location: Location
    variety: str
    bags: int
    net_weight: Decimal
    event_date: date


def _delta(event: MovementEvent, location: Location, sign: int, bags: int = None) -> StockDelta:
    return StockDelta(
        location=location,
        variety=normalize_variety(event.variety),
        bags=sign * (event.bags if bags is None else bags),
        net_weight=sign * Decimal(event.net_weight or 0),
        event_date=event.event_date,
    )


def purchase_deltas(event: MovementEvent) -> List[StockDelta]:
    if event.outturn_id is not None:
        return [_delta(event, event.outturn, +1)]
    return [_delta(event, event.destination, +1)]


def loose_deltas(event: MovementEvent) -> List[StockDelta]:
    return [_delta(event, event.destination, +1)]


def shifting_deltas(event: MovementEvent) -> List[StockDelta]:
    return [
        _delta(event, event.destination, +1),
        _delta(event, event.source, -1),
    ]


def production_shifting_deltas(event: MovementEvent) -> List[StockDelta]:
    return [
        _delta(event, event.source, -1),
        _delta(event, event.outturn, +1),
    ]


def sale_deltas(event: MovementEvent) -> List[StockDelta]:
    return [_delta(event, event.source, -1)]


def palti_deltas(event: MovementEvent) -> List[StockDelta]:
    # Repacking within the same bay when no target is given; the shortage
    # bags are lost in the conversion and only leave the source.
    target = event.destination or event.source
    return [
        _delta(event, target, +1),
        _delta(event, event.source, -1, bags=event.bags + event.shortage_bags),
    ]


DELTA_FUNCTIONS: Dict[MovementKind, Callable[[MovementEvent], List[StockDelta]]] = {
    MovementKind.PURCHASE: purchase_deltas,
    MovementKind.LOOSE: loose_deltas,
    MovementKind.SHIFTING: shifting_deltas,
    MovementKind.PRODUCTION_SHIFTING: production_shifting_deltas,
    MovementKind.SALE: sale_deltas,
    MovementKind.PALTI: palti_deltas,
}


def movement_deltas(event: MovementEvent) -> List[StockDelta]:
    """Signed deltas for one movement event"""
    return DELTA_FUNCTIONS[MovementKind(event.kind)](event)


def consumption_deltas(
    consumption: ProductionConsumption,
    exempt_products: Iterable[str] = (),
) -> List[StockDelta]:
    """Signed deltas for a rice-production record; by-products consume nothing"""
    exempt: FrozenSet[str] = frozenset(normalize_variety(p) for p in exempt_products)
    if normalize_variety(consumption.product_type) in exempt:
        return []
    return [StockDelta(
        location=consumption.outturn,
        variety=normalize_variety(consumption.variety),
        bags=-consumption.paddy_bags_deducted,
        net_weight=Decimal("0"),
        event_date=consumption.production_date,
    )]
