"""
Transaction Verifier - Maps platform verification results to trusted transactions.

Cryptographic verification belongs to the billing platform. This module only
turns its verdict into a Transaction or a VerificationError. No I/O.
"""

from datetime import UTC, datetime

import jwt

from credit_redemption.exceptions import VerificationError
from credit_redemption.models.domain import Environment, Transaction, VerificationResult


def verify(result: VerificationResult) -> Transaction:
    """
    Extract the trusted transaction from a platform verification result.

    Args:
        result: Verified or unverified platform result

    Returns:
        The verified transaction

    Raises:
        VerificationError: If the platform did not verify the transaction
    """
    if result.is_verified and result.transaction is not None:
        return result.transaction

    transaction_id = result.transaction.transaction_id if result.transaction else None
    raise VerificationError(result.error or "unverified transaction", transaction_id)


def _parse_timestamp(ms: object, transaction_id: str) -> datetime:
    if ms is None:
        return datetime.now(UTC)
    try:
        return datetime.fromtimestamp(int(ms) / 1000, tz=UTC)  # type: ignore[call-overload]
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise VerificationError(f"Invalid purchaseDate: {ms!r}", transaction_id) from exc


def transaction_from_jws(signed_transaction: str) -> Transaction:
    """
    Build a Transaction from a signed transaction (JWS) payload.

    The signature is not checked here: the platform hands over JWS only for
    transactions it already verified, and the ledger re-verifies with the
    store before granting anything.

    Raises:
        VerificationError: If the JWS cannot be decoded, lacks required fields
            or carries an unreadable purchaseDate
    """
    try:
        payload: dict[str, object] = jwt.decode(
            signed_transaction,
            options={"verify_signature": False},
        )
    except jwt.exceptions.DecodeError as exc:
        raise VerificationError(f"Invalid JWS data: {exc}") from exc

    transaction_id = str(payload.get("transactionId") or "").strip()
    product_id = str(payload.get("productId") or "").strip()
    if not transaction_id or not product_id:
        raise VerificationError("JWS payload missing transactionId or productId", transaction_id or None)

    return Transaction(
        transaction_id=transaction_id,
        product_id=product_id,
        environment=Environment.parse(str(payload.get("environment") or "")),
        purchase_date=_parse_timestamp(payload.get("purchaseDate"), transaction_id),
        signed_payload=signed_transaction,
    )
