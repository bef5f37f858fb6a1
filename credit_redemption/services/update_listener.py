"""
Update Listener - Long-lived consumer of the platform transaction stream.

If the process died before a redemption finished, the platform re-delivers
the transaction here. Deferred purchases (parental approval) and restores
arrive the same way. Each update is processed independently; one bad
update never stops the stream from draining.
"""

import asyncio
import contextlib

from structlog import get_logger

from credit_redemption.exceptions import RedeemError, StoreError, VerificationError
from credit_redemption.models.domain import VerificationResult
from credit_redemption.observability.metrics import metrics
from credit_redemption.services.pipeline import RedemptionPipeline
from credit_redemption.services.platform import StorePlatform
from credit_redemption.services.purchase_state import PurchaseStateStore

logger = get_logger(__name__)

SOURCE = "listener"


class UpdateListener:
    """Background task draining ``StorePlatform.transaction_updates``."""

    def __init__(
        self,
        platform: StorePlatform,
        pipeline: RedemptionPipeline,
        state: PurchaseStateStore,
    ) -> None:
        self.platform = platform
        self.pipeline = pipeline
        self.state = state
        self._task: asyncio.Task[None] | None = None
        self.processed = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start consuming updates. Calling it twice keeps the single consumer."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="transaction-update-listener")
        logger.info("update_listener_started")

    async def stop(self) -> None:
        """
        Cancel the subscription.

        A redemption already in flight is allowed to complete (and finish its
        transaction) before this returns.
        """
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        await self.pipeline.wait_in_flight()
        logger.info("update_listener_stopped", processed=self.processed)

    async def wait_until_drained(self) -> None:
        """Wait for the stream to end (finite streams only, e.g. in tests)."""
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        async for update in self.platform.transaction_updates():
            metrics.listener_updates_total.inc()
            try:
                await self.process_update(update)
            except Exception as exc:
                self.state.set_error(f"Auto-redeem failed: {exc}")
                logger.exception("update_listener_unexpected_error")
            finally:
                self.processed += 1
        logger.info("update_listener_stream_ended", processed=self.processed)

    async def process_update(self, update: VerificationResult) -> None:
        """Verify, redeem and finish-or-leave one delivered transaction."""
        try:
            transaction = self.pipeline.verify(update, SOURCE)
        except VerificationError as exc:
            self.state.set_error(str(exc))
            logger.error(
                "update_verification_failed",
                transaction_id=exc.transaction_id,
                reason=exc.reason,
            )
            return

        logger.info(
            "transaction_update_received",
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
            environment=transaction.environment.value,
        )

        try:
            await self.pipeline.redeem_and_finish(
                transaction, SOURCE, error_prefix="Auto-redeem failed"
            )
        except RedeemError as exc:
            logger.error(
                "auto_redeem_failed_awaiting_redelivery",
                transaction_id=transaction.transaction_id,
                error=exc.message,
            )
        except StoreError as exc:
            logger.error(
                "auto_redeem_finish_failed_awaiting_redelivery",
                transaction_id=transaction.transaction_id,
                error=exc.message,
            )
