"""
Purchase Events - Process-wide "purchase completed" broadcast.

Fired exactly once per successful redemption, never on failure,
cancellation or irrelevant-product finishes. Carries no payload; listeners
re-query the ledger balance.
"""

from collections.abc import Callable

from structlog import get_logger

logger = get_logger(__name__)

PurchaseCompletedListener = Callable[[], None]


class PurchaseEvents:
    """In-process broadcast for completed purchases."""

    def __init__(self) -> None:
        self._listeners: list[PurchaseCompletedListener] = []
        self.emitted = 0

    def subscribe(self, listener: PurchaseCompletedListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish_purchase_completed(self) -> None:
        """Notify every listener that a purchase was credited."""
        self.emitted += 1
        logger.info("purchase_completed_broadcast", listeners=len(self._listeners))
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                # A broken listener must not undo an already finished purchase
                logger.exception("purchase_completed_listener_failed")
