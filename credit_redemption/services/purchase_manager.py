"""
Purchase Manager - Process-level facade over the redemption pipeline.

Wires the ledger client, coordinator, state store, event bus, purchase flow
and update listener, and owns their lifecycle:

    manager = PurchaseManager.from_settings(platform, receipts, settings)
    await manager.start()      # state owner + update listener + catalog load
    attempt = await manager.buy_credits(product)
    balance = await manager.fetch_server_balance()
    await manager.stop()
"""

import asyncio

from structlog import get_logger

from credit_redemption.config import Settings
from credit_redemption.exceptions import LedgerError, StoreError
from credit_redemption.models.domain import Product, PurchaseAttempt, PurchaseState
from credit_redemption.services.credit_packs import credit_pack_ids, get_credits_for_product
from credit_redemption.services.device_id import current_device_id
from credit_redemption.services.events import PurchaseEvents
from credit_redemption.services.ledger_client import LedgerClient
from credit_redemption.services.pipeline import RedemptionPipeline
from credit_redemption.services.platform import ReceiptSource, StorePlatform
from credit_redemption.services.purchase_flow import PurchaseFlow
from credit_redemption.services.purchase_state import PurchaseStateStore
from credit_redemption.services.receipt import LegacyReceiptResolver
from credit_redemption.services.redemption import RedemptionCoordinator
from credit_redemption.services.update_listener import UpdateListener

logger = get_logger(__name__)


class PurchaseManager:
    """Owns the purchase pipeline for the lifetime of the process."""

    def __init__(
        self,
        platform: StorePlatform,
        ledger: LedgerClient,
        coordinator: RedemptionCoordinator,
        device_id: str,
        events: PurchaseEvents | None = None,
        state: PurchaseStateStore | None = None,
    ) -> None:
        self.platform = platform
        self.ledger = ledger
        self.device_id = device_id
        self.events = events or PurchaseEvents()
        self.state = state or PurchaseStateStore()
        self.pipeline = RedemptionPipeline(
            platform=platform,
            coordinator=coordinator,
            events=self.events,
            state=self.state,
            device_id=device_id,
        )
        self.flow = PurchaseFlow(platform, self.pipeline, self.state)
        self.listener = UpdateListener(platform, self.pipeline, self.state)
        self._refresh_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        platform: StorePlatform,
        receipts: ReceiptSource | None,
        settings: Settings,
    ) -> "PurchaseManager":
        """Build a manager from configuration."""
        ledger = LedgerClient(settings.ledger_base_url, timeout=settings.request_timeout_seconds)
        resolver = (
            LegacyReceiptResolver(receipts)
            if receipts is not None and settings.legacy_protocol_enabled
            else None
        )
        coordinator = RedemptionCoordinator(
            ledger,
            resolver,
            signed_protocol_enabled=settings.signed_protocol_enabled,
        )
        return cls(platform, ledger, coordinator, current_device_id(settings))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the state owner, the update listener and an initial catalog load."""
        await self.state.start()
        self.listener.start()
        self._refresh_task = asyncio.create_task(self.refresh(), name="catalog-refresh")
        logger.info("purchase_manager_started", device_id=self.device_id)

    async def stop(self) -> None:
        """Tear down the listener first, then the state owner."""
        if self._refresh_task is not None:
            await self._refresh_task
            self._refresh_task = None
        await self.listener.stop()
        await self.state.stop()
        logger.info("purchase_manager_stopped")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @property
    def purchase_state(self) -> PurchaseState:
        return self.state.snapshot()

    async def refresh(self) -> None:
        """Load credit pack products from the store, smallest pack first."""
        self.state.set_loading(True)
        try:
            product_ids = credit_pack_ids()
            logger.info("catalog_refresh_requested", product_ids=product_ids)
            products = await self.platform.load_products(product_ids)
            ordered = sorted(products, key=self.credits_for)
            self.state.set_products(ordered)
            logger.info("catalog_refreshed", product_ids=[p.product_id for p in ordered])
        except StoreError as exc:
            self.state.set_error(exc.message)
            logger.error("catalog_refresh_failed", error=exc.message)
        finally:
            self.state.set_loading(False)

    def credits_for(self, product: Product) -> int:
        """Credits granted by a product; 0 outside the credit pack catalog."""
        return get_credits_for_product(product.product_id)

    async def buy_credits(self, product: Product) -> PurchaseAttempt:
        """Run a user purchase through the pipeline."""
        return await self.flow.buy(product)

    async def fetch_server_balance(self) -> int:
        """
        Current ledger balance for this device.

        Raises:
            LedgerError: If the ledger cannot be reached
        """
        try:
            return await self.ledger.fetch_balance(self.device_id)
        except LedgerError as exc:
            logger.warning("server_balance_unavailable", error=exc.message)
            raise
