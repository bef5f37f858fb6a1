"""
Purchase Flow - User-initiated purchase state machine.

IDLE -> PURCHASING -> VERIFYING -> REDEEMING -> FINISHED | RETRY_PENDING
                   -> CANCELLED | DEFERRED_PENDING
      (verification or store failure)        -> FAILED

Cancelled and pending purchases surface no error. A pending purchase
(e.g. parental approval) is picked up later by the update listener.
RETRY_PENDING leaves the transaction unfinished; the platform re-delivers it.
"""

from structlog import get_logger

from credit_redemption.exceptions import RedeemError, StoreError, VerificationError
from credit_redemption.models.domain import (
    Product,
    PurchaseAttempt,
    PurchaseFlowState,
    PurchaseResult,
    PurchaseResultKind,
)
from credit_redemption.services.pipeline import RedemptionPipeline
from credit_redemption.services.platform import StorePlatform
from credit_redemption.services.purchase_state import PurchaseStateStore

logger = get_logger(__name__)

SOURCE = "purchase"


class _Trace:
    """Collects state transitions for one purchase."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        self.history: list[PurchaseFlowState] = [PurchaseFlowState.IDLE]

    def to(self, state: PurchaseFlowState) -> None:
        logger.debug(
            "purchase_flow_transition",
            product_id=self.product_id,
            from_state=self.history[-1].value,
            to_state=state.value,
        )
        self.history.append(state)

    def attempt(self, **kwargs: object) -> PurchaseAttempt:
        return PurchaseAttempt(
            product_id=self.product_id,
            state=self.history[-1],
            history=tuple(self.history),
            **kwargs,  # type: ignore[arg-type]
        )


class PurchaseFlow:
    """Runs one user purchase through the redemption pipeline."""

    def __init__(
        self,
        platform: StorePlatform,
        pipeline: RedemptionPipeline,
        state: PurchaseStateStore,
    ) -> None:
        self.platform = platform
        self.pipeline = pipeline
        self.state = state

    async def buy(self, product: Product) -> PurchaseAttempt:
        """
        Purchase a product and redeem it.

        Never raises for pipeline failures: every failure is recorded in the
        shared ``last_error`` and reflected in the returned attempt.
        """
        trace = _Trace(product.product_id)
        trace.to(PurchaseFlowState.PURCHASING)
        logger.info("purchase_started", product_id=product.product_id)

        try:
            result = await self.platform.purchase(product)
        except StoreError as exc:
            self.state.set_error(exc.message)
            trace.to(PurchaseFlowState.FAILED)
            logger.error("purchase_call_failed", product_id=product.product_id, error=exc.message)
            return trace.attempt(error=exc.message)

        return await self._handle_purchase_result(result, trace)

    async def _handle_purchase_result(
        self,
        result: PurchaseResult,
        trace: _Trace,
    ) -> PurchaseAttempt:
        if result.kind is PurchaseResultKind.USER_CANCELLED:
            trace.to(PurchaseFlowState.CANCELLED)
            logger.info("purchase_cancelled", product_id=trace.product_id)
            return trace.attempt()

        if result.kind is PurchaseResultKind.PENDING:
            trace.to(PurchaseFlowState.DEFERRED_PENDING)
            logger.info("purchase_pending", product_id=trace.product_id)
            return trace.attempt()

        assert result.verification is not None
        trace.to(PurchaseFlowState.VERIFYING)
        try:
            transaction = self.pipeline.verify(result.verification, SOURCE)
        except VerificationError as exc:
            message = str(exc)
            self.state.set_error(message)
            trace.to(PurchaseFlowState.FAILED)
            logger.error(
                "purchase_verification_failed",
                product_id=trace.product_id,
                transaction_id=exc.transaction_id,
                reason=exc.reason,
            )
            return trace.attempt(transaction_id=exc.transaction_id, error=message)

        trace.to(PurchaseFlowState.REDEEMING)
        try:
            decision = await self.pipeline.redeem_and_finish(transaction, SOURCE)
        except RedeemError as exc:
            # last_error is recorded by the pipeline with the same message
            trace.to(PurchaseFlowState.RETRY_PENDING)
            logger.error(
                "purchase_redeem_failed_awaiting_redelivery",
                transaction_id=transaction.transaction_id,
                error=exc.message,
            )
            return trace.attempt(
                transaction_id=transaction.transaction_id,
                error=f"Redeem failed: {exc.message}",
            )
        except StoreError as exc:
            # Redeemed but not acknowledged: re-delivery hits the ledger's 409 path
            trace.to(PurchaseFlowState.RETRY_PENDING)
            logger.error(
                "purchase_finish_failed",
                transaction_id=transaction.transaction_id,
                error=exc.message,
            )
            return trace.attempt(
                transaction_id=transaction.transaction_id,
                error=f"Finish failed: {exc.message}",
            )

        trace.to(PurchaseFlowState.FINISHED)
        return trace.attempt(transaction_id=transaction.transaction_id, outcome=decision.outcome)
