"""
Redemption Coordinator - Turns a verified transaction into a ledger grant.

Protocol order:
1. Signed-transaction protocol (JWS) when the transaction carries one.
2. Legacy receipt protocol as fallback.

The coordinator never finishes transactions itself. It returns a decision;
the caller finishes only when ``decision.finish`` is True. A RedeemError
means "leave unfinished" so the platform re-delivers the transaction and the
whole sequence runs again. Retries are safe because the ledger is idempotent
per transaction ID.
"""

from structlog import get_logger

from credit_redemption.exceptions import LedgerError, ReceiptError, RedeemError
from credit_redemption.models.domain import (
    RedemptionDecision,
    RedemptionOutcome,
    RedemptionProtocol,
    Transaction,
)
from credit_redemption.observability.metrics import metrics
from credit_redemption.services.credit_packs import is_credit_pack
from credit_redemption.services.ledger_client import LedgerClient
from credit_redemption.services.receipt import LegacyReceiptResolver

logger = get_logger(__name__)


class RedemptionCoordinator:
    """
    Stateless redemption coordinator.

    Every call is independent; concurrent calls for the same transaction
    are resolved by the ledger's idempotency, not here.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        receipts: LegacyReceiptResolver | None,
        signed_protocol_enabled: bool = True,
    ) -> None:
        """
        Initialize redemption coordinator.

        Args:
            ledger: Ledger client
            receipts: Legacy receipt resolver, None disables the legacy path
            signed_protocol_enabled: False on platforms without signed transactions
        """
        self.ledger = ledger
        self.receipts = receipts
        self.signed_protocol_enabled = signed_protocol_enabled

    async def _redeem_signed(self, transaction: Transaction, device_id: str) -> RedemptionOutcome:
        outcome = await self.ledger.redeem_signed_transactions(
            device_id=device_id,
            signed_transactions=[transaction.signed_payload],
        )
        metrics.record_redemption(RedemptionProtocol.SIGNED.value, True, outcome.granted)
        return outcome

    async def _redeem_legacy(
        self, receipts: LegacyReceiptResolver, device_id: str
    ) -> RedemptionOutcome:
        receipt_b64 = await receipts.legacy_receipt(refresh_if_needed=True)
        outcome = await self.ledger.redeem_receipt(
            device_id=device_id,
            receipt_base64=receipt_b64,
        )
        metrics.record_redemption(RedemptionProtocol.LEGACY.value, True, outcome.granted)
        return outcome

    async def redeem(self, transaction: Transaction, device_id: str) -> RedemptionDecision:
        """
        Redeem a verified transaction on the ledger.

        Args:
            transaction: Verified platform transaction
            device_id: Device the credits are granted to

        Returns:
            Decision with ``finish=True``; ``outcome`` is None for products
            outside the credit-pack catalog (no ledger call was made)

        Raises:
            RedeemError: Every available protocol failed; do not finish
        """
        if not is_credit_pack(transaction.product_id):
            logger.info(
                "redemption_skipped_irrelevant_product",
                transaction_id=transaction.transaction_id,
                product_id=transaction.product_id,
            )
            return RedemptionDecision(transaction_id=transaction.transaction_id, finish=True)

        last_error: Exception | None = None

        if self.signed_protocol_enabled and transaction.has_signed_payload():
            try:
                outcome = await self._redeem_signed(transaction, device_id)
                return self._succeeded(transaction, outcome)
            except LedgerError as exc:
                metrics.record_redemption(RedemptionProtocol.SIGNED.value, False)
                last_error = exc
                logger.warning(
                    "redemption_signed_failed",
                    transaction_id=transaction.transaction_id,
                    status=exc.status_code,
                    error=exc.message,
                    fallback=self.receipts is not None,
                )
        else:
            logger.info(
                "redemption_signed_unavailable",
                transaction_id=transaction.transaction_id,
                enabled=self.signed_protocol_enabled,
            )

        if self.receipts is not None:
            try:
                outcome = await self._redeem_legacy(self.receipts, device_id)
                return self._succeeded(transaction, outcome)
            except (ReceiptError, LedgerError) as exc:
                metrics.record_redemption(RedemptionProtocol.LEGACY.value, False)
                last_error = exc
                logger.warning(
                    "redemption_legacy_failed",
                    transaction_id=transaction.transaction_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )

        logger.error(
            "redemption_failed_leaving_unfinished",
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
            error=str(last_error) if last_error else "no redemption protocol available",
        )
        if last_error is None:
            raise RedeemError("No redemption protocol available")
        raise RedeemError(str(last_error), cause=last_error) from last_error

    def _succeeded(self, transaction: Transaction, outcome: RedemptionOutcome) -> RedemptionDecision:
        logger.info(
            "redemption_succeeded",
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
            protocol=outcome.protocol.value,
            granted=outcome.granted,
            balance=outcome.balance,
            already_redeemed=outcome.already_redeemed,
        )
        return RedemptionDecision(
            transaction_id=transaction.transaction_id,
            finish=True,
            outcome=outcome,
        )
