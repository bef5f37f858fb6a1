"""
Store Platform Protocol - Typed boundary to the billing platform.

NO DICTIONARIES - All data uses strongly typed models.

The pipeline never talks to a concrete store SDK. Anything that can load
products, run a purchase, stream transaction updates and finish transactions
can drive it: a device bridge in production, an in-memory fake in tests.
"""

from collections.abc import AsyncIterator
from typing import Protocol

from credit_redemption.models.domain import (
    Product,
    PurchaseResult,
    Transaction,
    VerificationResult,
)


class StorePlatform(Protocol):
    """
    Billing platform protocol.

    Transactions that are not finished are re-delivered by the platform
    through ``transaction_updates`` (at-least-once delivery).
    """

    async def load_products(self, product_ids: list[str]) -> list[Product]:
        """
        Load catalog entries for the given product IDs.

        Raises:
            StoreError: If the store cannot be reached
        """
        ...

    async def purchase(self, product: Product) -> PurchaseResult:
        """
        Start a purchase and wait for its immediate result.

        Raises:
            StoreError: If the purchase call itself fails
        """
        ...

    def transaction_updates(self) -> AsyncIterator[VerificationResult]:
        """Lazy, unbounded stream of transaction updates and re-deliveries."""
        ...

    async def finish(self, transaction: Transaction) -> None:
        """
        Acknowledge a transaction so it is not re-delivered.

        Raises:
            StoreError: If the store rejects the acknowledgement
        """
        ...


class ReceiptSource(Protocol):
    """Access to the legacy whole-application receipt."""

    def read_receipt(self) -> bytes | None:
        """Return the cached receipt blob, or None when absent."""
        ...

    async def refresh_receipt(self) -> None:
        """
        Ask the platform to refresh the receipt (may prompt the user).

        Raises:
            StoreError: If the refresh fails
        """
        ...
