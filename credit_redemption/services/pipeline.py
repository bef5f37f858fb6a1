"""
Redemption Pipeline - The shared funnel behind purchases and re-deliveries.

verify -> redeem -> finish-or-leave-unfinished

Both entry points (the purchase flow and the update listener) run through
here, so the finish rule lives in exactly one place: a transaction is
finished only after the coordinator returned a decision with
``finish=True``.
"""

import asyncio

from structlog import get_logger

from credit_redemption.exceptions import StoreError
from credit_redemption.models.domain import (
    RedemptionDecision,
    Transaction,
    VerificationResult,
)
from credit_redemption.observability.logging import log_context
from credit_redemption.observability.metrics import metrics
from credit_redemption.services.events import PurchaseEvents
from credit_redemption.services.platform import StorePlatform
from credit_redemption.services.purchase_state import PurchaseStateStore
from credit_redemption.services.redemption import RedemptionCoordinator
from credit_redemption.services.verifier import verify

logger = get_logger(__name__)


class RedemptionPipeline:
    """Runs verified transactions through redemption and finishing."""

    def __init__(
        self,
        platform: StorePlatform,
        coordinator: RedemptionCoordinator,
        events: PurchaseEvents,
        state: PurchaseStateStore,
        device_id: str,
    ) -> None:
        self.platform = platform
        self.coordinator = coordinator
        self.events = events
        self.state = state
        self.device_id = device_id
        self._in_flight: set[asyncio.Task[RedemptionDecision]] = set()

    def verify(self, result: VerificationResult, source: str) -> Transaction:
        """
        Verify a platform result, counting failures per entry point.

        Raises:
            VerificationError: If the platform did not verify the transaction
        """
        try:
            return verify(result)
        except Exception:
            metrics.record_verification_failure(source)
            raise

    async def redeem_and_finish(
        self,
        transaction: Transaction,
        source: str,
        error_prefix: str = "Redeem failed",
    ) -> RedemptionDecision:
        """
        Redeem a verified transaction and finish it on success.

        The ledger call and the finish run in a shielded task: cancelling the
        caller does not abort a redemption that may already be applied. Failures
        are recorded in ``last_error`` by that task, so they surface even when
        nobody is left awaiting the result.

        Args:
            transaction: Verified transaction
            source: Entry point label for metrics and logs
            error_prefix: Prefix for the ``last_error`` message on redeem failure

        Raises:
            RedeemError: Redemption failed; the transaction was left unfinished
            StoreError: Redeemed, but the platform did not acknowledge the finish
        """
        task = asyncio.create_task(
            self._redeem_and_finish(transaction, source, error_prefix),
            name=f"redeem-{transaction.transaction_id}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    async def _redeem_and_finish(
        self,
        transaction: Transaction,
        source: str,
        error_prefix: str,
    ) -> RedemptionDecision:
        with log_context(transaction_id=transaction.transaction_id, source=source):
            try:
                decision = await self.coordinator.redeem(transaction, self.device_id)
            except Exception as exc:
                self._leave_unfinished(transaction, source, f"{error_prefix}: {exc}")
                raise

            # Every path reaching here has finish=True; the coordinator raises otherwise
            try:
                await self.platform.finish(transaction)
            except StoreError as exc:
                self._leave_unfinished(transaction, source, f"Finish failed: {exc.message}")
                raise
            except Exception as exc:
                self._leave_unfinished(transaction, source, f"Finish failed: {exc}")
                raise StoreError(str(exc)) from exc

            if decision.is_irrelevant:
                metrics.record_finished("irrelevant", source)
                logger.info("transaction_finished_irrelevant", product_id=transaction.product_id)
                return decision

            metrics.record_finished("redeemed", source)
            logger.info(
                "transaction_finished",
                product_id=transaction.product_id,
                granted=decision.outcome.granted if decision.outcome else 0,
                balance=decision.outcome.balance if decision.outcome else None,
            )
            self.state.clear_error()
            self.events.publish_purchase_completed()
            return decision

    def _leave_unfinished(self, transaction: Transaction, source: str, message: str) -> None:
        metrics.record_unfinished(source)
        self.state.set_error(message)
        logger.warning(
            "transaction_left_unfinished",
            product_id=transaction.product_id,
            error=message,
        )

    async def wait_in_flight(self) -> None:
        """Wait for shielded redemptions still running after a cancellation."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
