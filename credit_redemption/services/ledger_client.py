"""
Ledger Client - Stateless HTTP wrapper over the remote credit ledger.

NO DICTIONARIES - All data uses strongly typed models.

Endpoints:
- POST /credits/redeem-signed  (signed-transaction protocol)
- POST /credits/redeem         (legacy receipt protocol)
- GET  /credits/balance

The ledger answers 409 when a transaction was already processed. That is
the idempotent "success-equivalent": granted is 0 and balance is current.
"""

import time

import httpx
from pydantic import ValidationError
from structlog import get_logger

from credit_redemption.exceptions import LedgerError
from credit_redemption.models.domain import RedemptionOutcome, RedemptionProtocol
from credit_redemption.models.ledger import (
    BalanceResponse,
    RedeemReceiptRequest,
    RedeemResponse,
    RedeemSignedRequest,
)
from credit_redemption.observability.metrics import metrics
from credit_redemption.observability.tracing import trace_operation

logger = get_logger(__name__)

DEVICE_ID_HEADER = "X-Device-Id"

REDEEM_SIGNED_PATH = "/credits/redeem-signed"
REDEEM_RECEIPT_PATH = "/credits/redeem"
BALANCE_PATH = "/credits/balance"


class LedgerClient:
    """
    Credit ledger client.

    Holds configuration only; every call opens its own HTTP client so
    concurrent callers never share connection state.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize ledger client.

        Args:
            base_url: Ledger base URL (no trailing slash required)
            timeout: Transport timeout in seconds
            transport: Optional httpx transport (tests, proxies)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _make_request(
        self,
        method: str,
        path: str,
        device_id: str,
        json_body: dict[str, object] | None = None,
    ) -> httpx.Response:
        """Send a request to the ledger and map transport failures."""
        headers = {DEVICE_ID_HEADER: device_id}
        started = time.perf_counter()

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, headers=headers, json=json_body)
        except httpx.HTTPError as exc:
            metrics.record_ledger_request(path, False, time.perf_counter() - started)
            logger.warning(
                "ledger_transport_error",
                path=path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise LedgerError(f"Transport error: {exc}") from exc

        metrics.record_ledger_request(
            path,
            response.is_success or response.status_code == 409,
            time.perf_counter() - started,
        )
        return response

    def _parse_redeem_response(
        self,
        response: httpx.Response,
        protocol: RedemptionProtocol,
    ) -> RedemptionOutcome:
        """Map a redemption response to an outcome or raise LedgerError."""
        status = response.status_code

        if status != 409 and not response.is_success:
            logger.error(
                "ledger_redeem_rejected",
                protocol=protocol.value,
                status=status,
                error=response.text[:400],
            )
            raise LedgerError(response.text or "Server error", status_code=status)

        try:
            body = RedeemResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise LedgerError(f"Invalid ledger response: {exc}", status_code=status) from exc

        if status == 409:
            logger.info(
                "ledger_transaction_already_redeemed",
                protocol=protocol.value,
                balance=body.balance,
            )
            return RedemptionOutcome(
                granted=0,
                balance=body.balance,
                protocol=protocol,
                already_redeemed=True,
            )

        # A 200 can still carry per-transaction rejections (bad JWS, bundle mismatch)
        rejected = [tx for tx in body.per_tx if tx.error and not tx.ok]
        if rejected:
            reasons = ", ".join(str(tx.error) for tx in rejected)
            logger.error(
                "ledger_transactions_rejected",
                protocol=protocol.value,
                reasons=reasons,
            )
            raise LedgerError(f"Transaction rejected: {reasons}", status_code=status)

        duplicate = bool(body.per_tx) and all(tx.duplicate for tx in body.per_tx)
        return RedemptionOutcome(
            granted=body.granted,
            balance=body.balance,
            protocol=protocol,
            already_redeemed=duplicate,
        )

    async def redeem_signed_transactions(
        self,
        device_id: str,
        signed_transactions: list[str],
    ) -> RedemptionOutcome:
        """
        Redeem signed (JWS) transactions for credits.

        Args:
            device_id: Device the credits are granted to
            signed_transactions: JWS representations of the transactions

        Returns:
            Granted credits and the new ledger balance

        Raises:
            LedgerError: On transport failure or ledger rejection
        """
        request = RedeemSignedRequest(signed_transactions=signed_transactions)

        with trace_operation(
            "ledger.redeem_signed", device_id=device_id, count=len(signed_transactions)
        ) as span:
            response = await self._make_request(
                "POST",
                REDEEM_SIGNED_PATH,
                device_id,
                json_body=request.model_dump(by_alias=True),
            )
            outcome = self._parse_redeem_response(response, RedemptionProtocol.SIGNED)
            span.set_attribute("granted", outcome.granted)

        logger.info(
            "ledger_redeem_signed_succeeded",
            granted=outcome.granted,
            balance=outcome.balance,
            already_redeemed=outcome.already_redeemed,
        )
        return outcome

    async def redeem_receipt(
        self,
        device_id: str,
        receipt_base64: str,
    ) -> RedemptionOutcome:
        """
        Redeem a legacy app receipt for credits.

        Args:
            device_id: Device the credits are granted to
            receipt_base64: Base64 encoded application receipt

        Returns:
            Granted credits and the new ledger balance

        Raises:
            LedgerError: On transport failure or ledger rejection
        """
        request = RedeemReceiptRequest(receipt=receipt_base64)

        with trace_operation(
            "ledger.redeem_receipt", device_id=device_id, receipt_length=len(receipt_base64)
        ) as span:
            response = await self._make_request(
                "POST",
                REDEEM_RECEIPT_PATH,
                device_id,
                json_body=request.model_dump(),
            )
            outcome = self._parse_redeem_response(response, RedemptionProtocol.LEGACY)
            span.set_attribute("granted", outcome.granted)

        logger.info(
            "ledger_redeem_receipt_succeeded",
            granted=outcome.granted,
            balance=outcome.balance,
            already_redeemed=outcome.already_redeemed,
        )
        return outcome

    async def fetch_balance(self, device_id: str) -> int:
        """
        Get the device's current ledger balance. Read-only.

        Raises:
            LedgerError: On transport failure or non-2xx response
        """
        with trace_operation("ledger.balance", device_id=device_id):
            response = await self._make_request("GET", BALANCE_PATH, device_id)

            if not response.is_success:
                raise LedgerError(response.text or "Server error", status_code=response.status_code)

            try:
                body = BalanceResponse.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                raise LedgerError(
                    f"Invalid ledger response: {exc}", status_code=response.status_code
                ) from exc

        logger.debug("ledger_balance_fetched", balance=body.balance, reserved=body.reserved)
        return body.balance
