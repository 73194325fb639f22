"""
Projection Dispatcher
Routes notifications about admitted movements to derived projections
(rate propagation, cache invalidation). Runs after the ledger write has
committed; a failing projection is logged and never undoes the write.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List

from millstock.core.logging import get_logger
from .events import MovementEvent

logger = get_logger("projection")


@dataclass(frozen=True)
class MovementAdmitted:
    """A movement became admin-approved"""
    event: MovementEvent
    actor_id: int

    event_type = "movement.admitted"


Handler = Callable[[MovementAdmitted], None]


class ProjectionDispatcher:
    """Sequential, per-handler isolated dispatch"""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_type: str, handler: Handler):
        self._handlers.setdefault(event_type, []).append(handler)

    def publish(self, notification) -> dict:
        """
        Deliver a notification to every subscriber of its type.

        Returns:
            dict with notified/failed counts and failure details
        """
        event_type = notification.event_type
        result = {"event_type": event_type, "notified": 0, "failed": 0, "failures": []}

        for handler in self._handlers.get(event_type, []):
            handler_name = getattr(handler, "__qualname__", repr(handler))
            try:
                handler(notification)
                result["notified"] += 1
            except Exception as exc:
                result["failed"] += 1
                result["failures"].append({
                    "handler": handler_name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                })
                logger.error(
                    f"Projection {handler_name} failed for {event_type} "
                    f"(event_id: {notification.event.event_id}): {exc}",
                    exc_info=True,
                )

        logger.debug(
            f"Dispatched {event_type}: {result['notified']} notified, {result['failed']} failed"
        )
        return result
