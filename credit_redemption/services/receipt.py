"""
Legacy Receipt Resolver - check, refresh, recheck.

Refreshing the receipt is expensive (it can prompt the user for store
credentials), so the cached receipt is always tried first.
"""

import base64
from pathlib import Path

from structlog import get_logger

from credit_redemption.exceptions import (
    MissingReceiptError,
    RefreshProducedNothingError,
)
from credit_redemption.services.platform import ReceiptSource

logger = get_logger(__name__)


class LegacyReceiptResolver:
    """Produces the base64 app receipt for the legacy redemption protocol."""

    def __init__(self, source: ReceiptSource) -> None:
        self.source = source

    def _load_receipt_if_present(self) -> bytes | None:
        data = self.source.read_receipt() or b""
        logger.debug("legacy_receipt_read", size=len(data))
        return data or None

    async def legacy_receipt(self, refresh_if_needed: bool = True) -> str:
        """
        Get the base64 encoded application receipt.

        Args:
            refresh_if_needed: Ask the platform for a refresh when no receipt is cached

        Returns:
            Base64 encoded receipt

        Raises:
            MissingReceiptError: No receipt and refresh not allowed
            RefreshProducedNothingError: Still no receipt after refresh
        """
        data = self._load_receipt_if_present()
        if data is not None:
            logger.info("legacy_receipt_cached", size=len(data))
            return base64.b64encode(data).decode("ascii")

        if not refresh_if_needed:
            logger.info("legacy_receipt_missing", refresh_if_needed=False)
            raise MissingReceiptError()

        logger.info("legacy_receipt_refresh_requested")
        try:
            await self.source.refresh_receipt()
        except Exception as exc:
            # Best effort: the recheck below decides the outcome
            logger.warning("legacy_receipt_refresh_failed", error=str(exc))

        data = self._load_receipt_if_present()
        if data is not None:
            logger.info("legacy_receipt_after_refresh", size=len(data))
            return base64.b64encode(data).decode("ascii")

        logger.error("legacy_receipt_refresh_produced_nothing")
        raise RefreshProducedNothingError()


class FileReceiptSource:
    """Receipt source backed by a receipt file on disk.

    Refresh is delegated to an optional platform callback; without one a
    refresh is a no-op and only the file is re-read.
    """

    def __init__(self, path: Path, refresher: ReceiptSource | None = None) -> None:
        self.path = path
        self.refresher = refresher

    def read_receipt(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("legacy_receipt_unreadable", path=str(self.path), error=str(exc))
            return None

    async def refresh_receipt(self) -> None:
        if self.refresher is not None:
            await self.refresher.refresh_receipt()
