"""
Stock Balance Engine
Folds the admitted movement ledger into per-location bag balances at a cutoff.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from millstock.core.config import settings
from millstock.core.exceptions import InvalidArgument
from millstock.core.logging import get_logger
from .event_store import (
    ADMITTED, DateBefore, DateRange, EventStoreAdapter, ExcludeEvent,
    IntoOutturn, TouchesLocation, VarietyIs
)
from .events import (
    Location, MovementEvent, OutturnLocation, ProductionConsumption,
    StockDelta, WarehouseLocation, consumption_deltas, movement_deltas,
    normalize_variety
)
from .projection_cache import ProjectionCache

logger = get_logger("ledger")


@dataclass(frozen=True)
class BalanceEntry:
    variety: str
    location: Location
    bags: int
    net_weight: Decimal


@dataclass
class OpeningBalance:
    """Balances strictly before ``cutoff``, split into warehouse and production stock"""
    cutoff: Optional[date]
    warehouse_balances: Dict[Tuple[str, WarehouseLocation], BalanceEntry] = field(default_factory=dict)
    production_balances: Dict[Tuple[str, OutturnLocation], BalanceEntry] = field(default_factory=dict)

    def total_bags(self, variety: Optional[str] = None) -> int:
        wanted = normalize_variety(variety) if variety else None
        return sum(
            entry.bags
            for entry in list(self.warehouse_balances.values()) + list(self.production_balances.values())
            if wanted is None or entry.variety == wanted
        )

    def warehouse_balance(self, variety: str, location: WarehouseLocation) -> int:
        entry = self.warehouse_balances.get((normalize_variety(variety), location))
        return entry.bags if entry else 0

    def production_balance(self, variety: str, outturn_id: int) -> int:
        entry = self.production_balances.get((normalize_variety(variety), OutturnLocation(outturn_id)))
        return entry.bags if entry else 0


def coerce_cutoff(value) -> date:
    """Accept a date, a datetime or an ISO ``YYYY-MM-DD`` string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise InvalidArgument(f"Invalid cutoff date: {value!r}", field="cutoff", value=str(value))


def _cleared_out(delta: StockDelta, clearings: Mapping[int, date]) -> bool:
    # A cleared outturn is frozen at its clearing date
    if not isinstance(delta.location, OutturnLocation):
        return False
    cleared_on = clearings.get(delta.location.outturn_id)
    return cleared_on is not None and delta.event_date > cleared_on


def compute_balances(
    events: Iterable[MovementEvent],
    consumptions: Iterable[ProductionConsumption] = (),
    cutoff: Optional[date] = None,
    clearings: Optional[Mapping[int, date]] = None,
    exempt_products: Iterable[str] = (),
    variety: Optional[str] = None,
) -> OpeningBalance:
    """
    Fold movement events and production consumptions into balances.

    Args:
        events: Movement events; anything not admin-approved or tombstoned is ignored
        consumptions: Approved rice-production deductions
        cutoff: Exclusive upper bound on the business date, None for no bound
        clearings: Clearing date per outturn id
        exempt_products: By-product names that never consume paddy
        variety: Restrict the result to one variety

    Returns:
        OpeningBalance holding only groups with a non-zero bag total
    """
    clearings = clearings or {}
    wanted = normalize_variety(variety) if variety else None

    deltas: List[StockDelta] = []
    for event in events:
        if not event.is_admitted:
            continue
        if cutoff is not None and event.event_date >= cutoff:
            continue
        deltas.extend(movement_deltas(event))

    for consumption in consumptions:
        if cutoff is not None and consumption.production_date >= cutoff:
            continue
        deltas.extend(consumption_deltas(consumption, exempt_products))

    bags: Dict[Tuple[str, Location], int] = defaultdict(int)
    weights: Dict[Tuple[str, Location], Decimal] = defaultdict(Decimal)
    for delta in deltas:
        if wanted is not None and delta.variety != wanted:
            continue
        if _cleared_out(delta, clearings):
            continue
        group = (delta.variety, delta.location)
        bags[group] += delta.bags
        weights[group] += delta.net_weight

    result = OpeningBalance(cutoff=cutoff)
    for (group_variety, location), total in bags.items():
        if total == 0:
            continue
        entry = BalanceEntry(group_variety, location, total, weights[(group_variety, location)])
        if isinstance(location, OutturnLocation):
            result.production_balances[(group_variety, location)] = entry
        else:
            result.warehouse_balances[(group_variety, location)] = entry
    return result


class StockBalanceEngine:
    """
    Read-only projection of stock over the event store.

    Never mutates events or rates. Store failures propagate as
    StoreUnavailable without retry.
    """

    def __init__(
        self,
        db: Session,
        store: Optional[EventStoreAdapter] = None,
        cache: Optional[ProjectionCache] = None,
    ):
        self.db = db
        self.store = store or EventStoreAdapter(db)
        self.cache = cache or ProjectionCache.disabled()
        self.exempt_products = settings.EXEMPT_BYPRODUCTS

    def compute_opening_balance(self, cutoff, variety: Optional[str] = None) -> OpeningBalance:
        """
        Opening balance of every location strictly before the cutoff date.

        Args:
            cutoff: date, datetime or ISO date string
            variety: Optional variety filter

        Returns:
            OpeningBalance with warehouse and production balances
        """
        cutoff = coerce_cutoff(cutoff)
        key = self.cache.key("opening", variety, cutoff.isoformat())
        return self.cache.get_or_compute(key, lambda: self._opening_balance(cutoff, variety))

    def _opening_balance(self, cutoff: date, variety: Optional[str]) -> OpeningBalance:
        filters = [*ADMITTED, DateBefore(cutoff)]
        if variety:
            filters.append(VarietyIs(variety))

        events = self.store.scan_movements(*filters)
        consumptions = self.store.scan_consumptions(before=cutoff, variety=variety)
        clearings = self.store.outturn_clearings()

        balance = compute_balances(
            events, consumptions, cutoff, clearings, self.exempt_products, variety
        )
        logger.debug(
            f"Opening balance before {cutoff} ({variety or 'all varieties'}): "
            f"{len(balance.warehouse_balances)} warehouse groups, "
            f"{len(balance.production_balances)} production groups"
        )
        return balance

    def location_balances(
        self,
        location: WarehouseLocation,
        cutoff=None,
        exclude_event_id: Optional[int] = None,
    ) -> Dict[str, BalanceEntry]:
        """Admitted stock per variety held at one kunchinittu/warehouse pair"""
        cutoff = coerce_cutoff(cutoff) if cutoff is not None else None
        filters = [*ADMITTED, TouchesLocation(location)]
        if cutoff is not None:
            filters.append(DateBefore(cutoff))
        if exclude_event_id is not None:
            filters.append(ExcludeEvent(exclude_event_id))

        balance = compute_balances(self.store.scan_movements(*filters), cutoff=cutoff)
        return {
            entry.variety: entry
            for entry in balance.warehouse_balances.values()
            if entry.location == location
        }

    def location_variety_history(
        self,
        location: WarehouseLocation,
        variety: str,
        exclude_event_id: Optional[int] = None,
    ) -> Tuple[int, int]:
        """
        Inflow and outflow bag totals of one variety at a location.

        Returns:
            (bags received, bags drawn out)
        """
        filters = [*ADMITTED, TouchesLocation(location), VarietyIs(variety)]
        if exclude_event_id is not None:
            filters.append(ExcludeEvent(exclude_event_id))

        inflow = outflow = 0
        for event in self.store.scan_movements(*filters):
            for delta in movement_deltas(event):
                if delta.location != location:
                    continue
                if delta.bags > 0:
                    inflow += delta.bags
                else:
                    outflow -= delta.bags
        return inflow, outflow

    def outturn_balance(self, outturn_id: int, cutoff=None) -> BalanceEntry:
        """Paddy bags held by an outturn after production deductions"""
        cutoff = coerce_cutoff(cutoff) if cutoff is not None else None
        filters = [*ADMITTED, IntoOutturn(outturn_id)]
        if cutoff is not None:
            filters.append(DateBefore(cutoff))

        balance = compute_balances(
            self.store.scan_movements(*filters),
            self.store.scan_consumptions(before=cutoff, outturn_id=outturn_id),
            cutoff,
            self.store.outturn_clearings(),
            self.exempt_products,
        )
        location = OutturnLocation(outturn_id)
        bags = sum(e.bags for e in balance.production_balances.values() if e.location == location)
        weight = sum(
            (e.net_weight for e in balance.production_balances.values() if e.location == location),
            Decimal("0"),
        )
        varieties = {e.variety for e in balance.production_balances.values() if e.location == location}
        return BalanceEntry(",".join(sorted(varieties)), location, bags, weight)

    def stock_by_variety(
        self,
        variety: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[BalanceEntry]:
        """Warehouse locations holding a variety, largest stock first"""
        if not normalize_variety(variety):
            raise InvalidArgument("Variety is required", field="variety")

        key = self.cache.key(
            "stock",
            variety,
            date_from.isoformat() if date_from else None,
            date_to.isoformat() if date_to else None,
        )

        def compute():
            events = self.store.scan_movements(
                *ADMITTED, VarietyIs(variety), DateRange(date_from, date_to)
            )
            balance = compute_balances(events, variety=variety)
            entries = [e for e in balance.warehouse_balances.values() if e.bags > 0]
            return sorted(entries, key=lambda e: e.bags, reverse=True)

        return self.cache.get_or_compute(key, compute)
