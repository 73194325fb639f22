"""
Mill Stock SQLAlchemy Models
"""

# Import all models to ensure they are registered with SQLAlchemy
from .location import WarehouseRec, VarietyRec, KunchinittuRec, OutturnRec
from .movement import MovementEventRec, PurchaseRateRec
from .production import RiceProductionRec
from .ledger import OpeningBalanceRec, BalanceAuditTrailRec

__all__ = [
    "WarehouseRec",
    "VarietyRec",
    "KunchinittuRec",
    "OutturnRec",
    "MovementEventRec",
    "PurchaseRateRec",
    "RiceProductionRec",
    "OpeningBalanceRec",
    "BalanceAuditTrailRec",
]
