"""
Movement Admission Service
Validates, persists and approves movement events, then hands admitted
movements to the derived projections.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from millstock.core.exceptions import (
    BusinessLogicError, InsufficientPermissionsError, ValidationError
)
from millstock.core.logging import get_logger
from millstock.models import MovementEventRec
from .balance_engine import StockBalanceEngine
from .event_store import EventStoreAdapter, to_movement_event
from .events import ApprovalState, MovementEvent, MovementKind
from .projection_cache import ProjectionCache
from .projections import MovementAdmitted, ProjectionDispatcher
from .rate_propagation import RatePropagationService
from .validator import MovementValidator

logger = get_logger("ledger")

ROLE_STAFF = "staff"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
ROLES = (ROLE_STAFF, ROLE_MANAGER, ROLE_ADMIN)

# Trip details stored alongside a movement
DETAIL_FIELDS = ("gross_weight", "tare_weight", "broker", "from_location", "lorry_number", "wb_no", "remarks")


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str

    def require(self, *roles: str):
        if self.role not in roles:
            raise InsufficientPermissionsError(
                f"Role '{self.role}' may not perform this action (requires {', '.join(roles)})"
            )


def default_dispatcher(db: Session) -> ProjectionDispatcher:
    """Dispatcher wired with the rate projection"""
    dispatcher = ProjectionDispatcher()
    dispatcher.subscribe(MovementAdmitted.event_type, RatePropagationService(db).handle_admitted)
    return dispatcher


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MovementAdmissionService:
    """
    Entry point for every change to the movement ledger.

    Each admission runs in one transaction: lock the locations it touches,
    validate, persist, commit. Rate propagation and cache invalidation follow
    the commit and never fail it.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional[ProjectionCache] = None,
        dispatcher: Optional[ProjectionDispatcher] = None,
    ):
        self.db = db
        self.store = EventStoreAdapter(db)
        self.cache = cache or ProjectionCache.disabled()
        self.dispatcher = dispatcher or default_dispatcher(db)
        # Validation always reads the store, never the cache
        self.validator = MovementValidator(db, StockBalanceEngine(db, self.store))

    def admit_movement(
        self,
        proposal: MovementEvent,
        actor: Actor,
        details: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Validate and record a proposed movement.

        The initial approval state depends on the actor: staff entries are
        pending, manager entries approved, admin entries admitted at once.
        Loose entries are administrative: only managers and admins record
        them, and they are admitted at once.

        Args:
            proposal: Proposed movement
            actor: Submitting user
            details: Optional trip details (weights, broker, lorry, remarks)

        Returns:
            Stored event id

        Raises:
            ValidationError subclass when the movement is rejected
        """
        actor.require(*ROLES)
        if proposal.kind == MovementKind.LOOSE:
            actor.require(ROLE_MANAGER, ROLE_ADMIN)

        try:
            self._lock_locations(proposal)
            self.validator.validate(proposal)
            event = self.validator.normalized(proposal)

            status = self._initial_status(event, actor)
            rec = self._build_record(event, actor, status, details or {})
            self.store.append(rec)
            self.db.commit()
        except ValidationError as e:
            self.db.rollback()
            logger.warning(f"Rejected {getattr(proposal.kind, 'value', proposal.kind)} movement from user {actor.user_id}: {e}")
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Recorded {event.kind.value} {rec.sl_no} ({event.bags} bags {event.variety}) "
            f"as {status.value} by user {actor.user_id}"
        )

        if status == ApprovalState.ADMIN_APPROVED:
            self._after_admission(to_movement_event(rec), actor)
        return rec.event_id

    def approve(self, event_id: int, actor: Actor) -> MovementEventRec:
        """Manager approval: pending -> approved"""
        actor.require(ROLE_MANAGER, ROLE_ADMIN)
        rec = self.store.get_record(event_id)
        self._require_live(rec)
        if rec.status != ApprovalState.PENDING.value:
            raise BusinessLogicError(f"Only pending movements can be approved (status: {rec.status})")

        rec.status = ApprovalState.APPROVED.value
        rec.approved_by = actor.user_id
        rec.approved_at = _now()
        self.db.commit()
        logger.info(f"Movement {rec.sl_no} approved by user {actor.user_id}")
        return rec

    def reject(self, event_id: int, actor: Actor, remarks: Optional[str] = None) -> MovementEventRec:
        """Manager rejection: pending -> rejected"""
        actor.require(ROLE_MANAGER, ROLE_ADMIN)
        rec = self.store.get_record(event_id)
        self._require_live(rec)
        if rec.status != ApprovalState.PENDING.value:
            raise BusinessLogicError(f"Only pending movements can be rejected (status: {rec.status})")

        rec.status = ApprovalState.REJECTED.value
        if remarks:
            rec.remarks = f"{rec.remarks}\n{remarks}" if rec.remarks else remarks
        self.db.commit()
        logger.info(f"Movement {rec.sl_no} rejected by user {actor.user_id}")
        return rec

    def admin_approve(self, event_id: int, actor: Actor) -> MovementEventRec:
        """
        Admin approval: approved -> admin-approved.

        Re-validates under the location locks, so two movements approved
        concurrently cannot jointly overdraw a source or mix a bay.
        """
        actor.require(ROLE_ADMIN)
        rec = self.store.get_record(event_id)
        self._require_live(rec)
        if rec.status != ApprovalState.APPROVED.value:
            raise BusinessLogicError(
                f"Only manager-approved movements can be admin-approved (status: {rec.status})"
            )

        event = to_movement_event(rec)
        try:
            self._lock_locations(event)
            self.validator.validate(event, exclude_event_id=rec.event_id)
            rec.status = ApprovalState.ADMIN_APPROVED.value
            rec.admin_approved_by = actor.user_id
            rec.admin_approved_at = _now()
            if rec.approved_by is None:
                rec.approved_by = actor.user_id
                rec.approved_at = rec.admin_approved_at
            self.db.commit()
        except ValidationError as e:
            self.db.rollback()
            logger.warning(f"Admin approval of {rec.sl_no} rejected: {e}")
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Movement {rec.sl_no} admin-approved by user {actor.user_id}")
        self._after_admission(to_movement_event(rec), actor)
        return rec

    def delete(self, event_id: int, actor: Actor) -> MovementEventRec:
        """
        Tombstone a movement.

        The row stays in the ledger and drops out of every later replay.
        Rates already propagated from it are left as they are.
        """
        actor.require(ROLE_MANAGER, ROLE_ADMIN)
        rec = self.store.get_record(event_id)
        self._require_live(rec)
        if rec.status not in (ApprovalState.APPROVED.value, ApprovalState.ADMIN_APPROVED.value):
            raise BusinessLogicError("Only approved movements can be deleted")
        if rec.outturn_id is not None:
            raise BusinessLogicError("Movements linked to an outturn cannot be deleted")

        was_admitted = rec.status == ApprovalState.ADMIN_APPROVED.value
        rec.deleted_at = _now()
        rec.deleted_by = actor.user_id
        self.db.commit()
        logger.info(f"Movement {rec.sl_no} deleted by user {actor.user_id}")

        if was_admitted:
            self.cache.invalidate_variety(rec.variety)
        return rec

    def get_movement(self, event_id: int) -> MovementEventRec:
        return self.store.get_record(event_id)

    def list_movements(self, *filters, skip: int = 0, limit: int = 100) -> List[MovementEventRec]:
        return self.store.list_records(*filters, skip=skip, limit=limit)

    def count_movements(self, *filters) -> int:
        return self.store.count_records(*filters)

    # Internal helpers

    def _after_admission(self, event: MovementEvent, actor: Actor):
        self.dispatcher.publish(MovementAdmitted(event=event, actor_id=actor.user_id))
        self.cache.invalidate_variety(event.variety)

    def _lock_locations(self, event: MovementEvent):
        """Lock every row the movement checks, kunchinittus in ascending id order"""
        kunchinittu_ids = {loc.kunchinittu_id for loc in (event.source, event.destination) if loc is not None}
        for kunchinittu_id in sorted(kunchinittu_ids):
            self.store.lock_kunchinittu(kunchinittu_id)
        if event.outturn_id is not None:
            self.store.lock_outturn(event.outturn_id)

    @staticmethod
    def _initial_status(event: MovementEvent, actor: Actor) -> ApprovalState:
        if event.kind == MovementKind.LOOSE or actor.role == ROLE_ADMIN:
            return ApprovalState.ADMIN_APPROVED
        if actor.role == ROLE_MANAGER:
            return ApprovalState.APPROVED
        return ApprovalState.PENDING

    @staticmethod
    def _require_live(rec: MovementEventRec):
        if rec.deleted_at is not None:
            raise BusinessLogicError(f"Movement {rec.sl_no} has been deleted")

    @staticmethod
    def _build_record(
        event: MovementEvent,
        actor: Actor,
        status: ApprovalState,
        details: Dict[str, Any],
    ) -> MovementEventRec:
        now = _now()
        net_weight = Decimal(event.net_weight or 0)
        extra = {k: details[k] for k in DETAIL_FIELDS if details.get(k) is not None}
        rec = MovementEventRec(
            event_date=event.event_date,
            kind=event.kind.value,
            variety=event.variety,
            bags=event.bags,
            net_weight=net_weight,
            gross_weight=extra.pop("gross_weight", net_weight),
            tare_weight=extra.pop("tare_weight", Decimal("0")),
            shortage_bags=event.shortage_bags,
            from_kunchinittu_id=event.source.kunchinittu_id if event.source else None,
            from_warehouse_id=event.source.warehouse_id if event.source else None,
            to_kunchinittu_id=event.destination.kunchinittu_id if event.destination else None,
            to_warehouse_id=event.destination.warehouse_id if event.destination else None,
            outturn_id=event.outturn_id,
            status=status.value,
            created_by=actor.user_id,
            **extra,
        )
        if status in (ApprovalState.APPROVED, ApprovalState.ADMIN_APPROVED):
            rec.approved_by = actor.user_id
            rec.approved_at = now
        if status == ApprovalState.ADMIN_APPROVED:
            rec.admin_approved_by = actor.user_id
            rec.admin_approved_at = now
        return rec
