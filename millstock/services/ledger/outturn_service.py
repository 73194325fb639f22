"""
Outturn Service
Rice production against an outturn and clearing of finished outturns.
"""
from datetime import date, datetime, time, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from millstock.core.config import settings
from millstock.core.exceptions import BusinessLogicError, InvalidArgument, RecordNotFound
from millstock.core.logging import get_logger
from millstock.models import OutturnRec, RiceProductionRec
from .admission import Actor, ROLE_ADMIN, ROLE_MANAGER, ROLES
from .balance_engine import StockBalanceEngine, coerce_cutoff
from .event_store import ADMITTED, EventStoreAdapter, IntoOutturn
from .events import normalize_variety
from .projection_cache import ProjectionCache

logger = get_logger("ledger")


def paddy_bags_for(quantity_quintals: Decimal, product_type: str) -> int:
    """Paddy bags consumed by a production quantity; by-products consume none"""
    if normalize_variety(product_type) in settings.EXEMPT_BYPRODUCTS:
        return 0
    bags = Decimal(quantity_quintals) * settings.PADDY_BAGS_PER_QUINTAL
    return int(bags.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class OutturnService:
    """Production records and clearing for outturns"""

    def __init__(self, db: Session, cache: Optional[ProjectionCache] = None):
        self.db = db
        self.store = EventStoreAdapter(db)
        self.engine = StockBalanceEngine(db, self.store)
        self.cache = cache or ProjectionCache.disabled()

    def available_paddy_bags(self, outturn_id: int) -> int:
        """
        Admitted paddy received by the outturn less every deduction already
        booked against it, pending or approved.
        """
        outturn = self._get_outturn(outturn_id)
        received = sum(
            event.bags for event in self.store.scan_movements(*ADMITTED, IntoOutturn(outturn.outturn_id))
        )
        deducted = (
            self.db.query(func.coalesce(func.sum(RiceProductionRec.paddy_bags_deducted), 0))
            .filter(
                RiceProductionRec.outturn_id == outturn_id,
                RiceProductionRec.status.in_(["pending", "approved"]),
            )
            .scalar()
        )
        return received - int(deducted or 0)

    def record_production(
        self,
        outturn_id: int,
        production_date,
        product_type: str,
        quantity_quintals: Decimal,
        actor: Actor,
    ) -> RiceProductionRec:
        """
        Book rice produced from an outturn.

        Raises:
            BusinessLogicError: outturn cleared or not enough paddy left
            InvalidArgument: bad date or quantity
        """
        actor.require(*ROLES)
        outturn = self._get_outturn(outturn_id)
        production_date = coerce_cutoff(production_date)
        quantity = Decimal(quantity_quintals)
        if quantity <= 0:
            raise InvalidArgument("Quantity must be greater than zero", field="quantity_quintals")
        if not product_type or not product_type.strip():
            raise InvalidArgument("Product type is required", field="product_type")
        if outturn.is_cleared:
            raise BusinessLogicError(f"Outturn {outturn.code} is cleared; no further production allowed")

        deducted = paddy_bags_for(quantity, product_type)
        available = self.available_paddy_bags(outturn_id)
        if deducted > available:
            raise BusinessLogicError(
                f"Insufficient paddy bags available. Available: {available}, required: {deducted}"
            )

        production = RiceProductionRec(
            outturn_id=outturn_id,
            production_date=production_date,
            product_type=product_type.strip(),
            quantity_quintals=quantity,
            paddy_bags_deducted=deducted,
            status="pending",
            created_by=actor.user_id,
        )
        if actor.role in (ROLE_MANAGER, ROLE_ADMIN):
            production.status = "approved"
            production.approved_by = actor.user_id
            production.approved_at = datetime.now(timezone.utc)

        self.db.add(production)
        self.db.commit()
        logger.info(
            f"Production of {quantity} quintals {product_type} from outturn {outturn.code} "
            f"deducts {deducted} paddy bags ({production.status})"
        )
        if production.status == "approved":
            self.cache.invalidate_variety(outturn.allotted_variety)
        return production

    def approve_production(self, production_id: int, actor: Actor) -> RiceProductionRec:
        actor.require(ROLE_MANAGER, ROLE_ADMIN)
        production = (
            self.db.query(RiceProductionRec)
            .filter(RiceProductionRec.production_id == production_id)
            .first()
        )
        if production is None:
            raise RecordNotFound("Rice production", production_id)
        if production.status != "pending":
            raise BusinessLogicError("Only pending productions can be approved")

        production.status = "approved"
        production.approved_by = actor.user_id
        production.approved_at = datetime.now(timezone.utc)
        self.db.commit()

        outturn = self._get_outturn(production.outturn_id)
        self.cache.invalidate_variety(outturn.allotted_variety)
        return production

    def clear_outturn(self, outturn_id: int, actor: Actor, clear_date=None) -> OutturnRec:
        """
        Close an outturn.

        After clearing, balances of the outturn only include movements dated
        on or before the clearing date, whatever cutoff is asked for.
        """
        actor.require(ROLE_MANAGER, ROLE_ADMIN)
        outturn = self._get_outturn(outturn_id)
        if outturn.is_cleared:
            raise BusinessLogicError("Outturn already cleared")

        clear_on = coerce_cutoff(clear_date) if clear_date is not None else date.today()
        remaining = self.available_paddy_bags(outturn_id)
        if remaining <= 0:
            raise BusinessLogicError("No remaining bags to clear")

        outturn.is_cleared = True
        outturn.cleared_at = datetime.combine(clear_on, time.min, tzinfo=timezone.utc)
        outturn.cleared_by = actor.user_id
        outturn.remaining_bags = remaining
        self.db.commit()

        logger.info(f"Outturn {outturn.code} cleared on {clear_on} with {remaining} bags remaining")
        self.cache.invalidate_variety(outturn.allotted_variety)
        return outturn

    def outturn_balance(self, outturn_id: int, cutoff=None):
        self._get_outturn(outturn_id)
        return self.engine.outturn_balance(outturn_id, cutoff)

    def _get_outturn(self, outturn_id: int) -> OutturnRec:
        outturn = self.db.query(OutturnRec).filter(OutturnRec.outturn_id == outturn_id).first()
        if outturn is None:
            raise RecordNotFound("Outturn", outturn_id)
        return outturn
