"""Stock Ledger Services - movement ledger, balances, rates and projections"""

from .events import (
    MovementKind,
    ApprovalState,
    MovementEvent,
    ProductionConsumption,
    WarehouseLocation,
    OutturnLocation,
    normalize_variety,
)
from .event_store import EventStoreAdapter
from .balance_engine import StockBalanceEngine, OpeningBalance, BalanceEntry
from .validator import MovementValidator
from .rate_propagation import RatePropagationService, RateSnapshot
from .projections import ProjectionDispatcher, MovementAdmitted
from .projection_cache import ProjectionCache
from .admission import Actor, MovementAdmissionService
from .purchase_rates import PurchaseRateService, PurchaseRateInput
from .outturn_service import OutturnService
from .kunchinittu_ledger import KunchinittuLedgerService

__all__ = [
    "MovementKind",
    "ApprovalState",
    "MovementEvent",
    "ProductionConsumption",
    "WarehouseLocation",
    "OutturnLocation",
    "normalize_variety",
    "EventStoreAdapter",
    "StockBalanceEngine",
    "OpeningBalance",
    "BalanceEntry",
    "MovementValidator",
    "RatePropagationService",
    "RateSnapshot",
    "ProjectionDispatcher",
    "MovementAdmitted",
    "ProjectionCache",
    "Actor",
    "MovementAdmissionService",
    "PurchaseRateService",
    "PurchaseRateInput",
    "OutturnService",
    "KunchinittuLedgerService",
]
