"""
Pytest Configuration and Centralized Fixtures.

Provides in-memory collaborators for the redemption pipeline:
- A fake credit ledger served through httpx.MockTransport (tracks seen
  transaction IDs, so redemption is idempotent exactly like the real one)
- A fake store platform (catalog, purchase results, update stream, finishes)
- A fake legacy receipt source
- Factories for signed transactions and receipts
"""

import asyncio
import base64
import json
import os
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from decimal import Decimal

import httpx
import jwt
import pytest

# Settings are read at import time by the metrics module
os.environ.setdefault("CREDIT_REDEMPTION_LEDGER_BASE_URL", "https://ledger.test")
os.environ.setdefault("CREDIT_REDEMPTION_LOG_FORMAT", "console")

from credit_redemption.exceptions import StoreError
from credit_redemption.models.domain import (
    Product,
    PurchaseResult,
    Transaction,
    VerificationResult,
)
from credit_redemption.services.credit_packs import (
    CREDITS_MEDIUM,
    CREDITS_SMALL,
    get_credits_for_product,
)
from credit_redemption.services.events import PurchaseEvents
from credit_redemption.services.ledger_client import LedgerClient
from credit_redemption.services.pipeline import RedemptionPipeline
from credit_redemption.services.purchase_state import PurchaseStateStore
from credit_redemption.services.receipt import LegacyReceiptResolver
from credit_redemption.services.redemption import RedemptionCoordinator
from credit_redemption.services.verifier import transaction_from_jws

DEVICE_ID = "DEVICE-D"
LEDGER_URL = "https://ledger.test"
JWS_TEST_KEY = "test-signing-key-for-fake-platform-jws"


# ============================================================================
# Factories
# ============================================================================


def make_jws(
    transaction_id: str,
    product_id: str = CREDITS_SMALL,
    environment: str = "Sandbox",
    purchase_date_ms: int = 1_757_300_000_000,
) -> str:
    """Signed transaction as the platform would hand it over."""
    payload = {
        "transactionId": transaction_id,
        "originalTransactionId": transaction_id,
        "productId": product_id,
        "bundleId": "io.robinfederico.InputMaximizer",
        "environment": environment,
        "purchaseDate": purchase_date_ms,
        "type": "Consumable",
    }
    return jwt.encode(payload, JWS_TEST_KEY, algorithm="HS256")


def make_transaction(
    transaction_id: str = "2000000001",
    product_id: str = CREDITS_SMALL,
    signed: bool = True,
) -> Transaction:
    """Verified transaction, with or without a signed payload."""
    transaction = transaction_from_jws(make_jws(transaction_id, product_id))
    if signed:
        return transaction
    return Transaction(
        transaction_id=transaction.transaction_id,
        product_id=transaction.product_id,
        environment=transaction.environment,
        purchase_date=transaction.purchase_date,
    )


def make_receipt(*items: tuple[str, str]) -> bytes:
    """Raw app receipt listing (transaction_id, product_id) purchases."""
    return json.dumps(
        {"in_app": [{"transaction_id": tx, "product_id": pid} for tx, pid in items]}
    ).encode()


def make_product(product_id: str = CREDITS_SMALL, price: str = "0.99") -> Product:
    return Product(
        product_id=product_id,
        display_name=f"{get_credits_for_product(product_id)} Credits",
        display_price=f"${price}",
        price=Decimal(price),
    )


# ============================================================================
# Fake Ledger
# ============================================================================


@dataclass
class LedgerCall:
    path: str
    device_id: str
    body: dict[str, object]


@dataclass
class FakeLedger:
    """Credit ledger with per-transaction idempotency."""

    balances: dict[str, int] = field(default_factory=dict)
    seen: dict[str, int] = field(default_factory=dict)
    calls: list[LedgerCall] = field(default_factory=list)
    failures: dict[str, list[int | None]] = field(default_factory=dict)
    conflict_on_duplicate: bool = False

    def fail_next(self, path: str, status: int | None = None, times: int = 1) -> None:
        """Fail the next call(s) to ``path``; status None means transport error."""
        self.failures.setdefault(path, []).extend([status] * times)

    def calls_to(self, path: str) -> list[LedgerCall]:
        return [call for call in self.calls if call.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _grant(self, device_id: str, transaction_id: str, product_id: str) -> int | None:
        """Grant once per transaction; None means already processed."""
        if transaction_id in self.seen:
            return None
        credits = get_credits_for_product(product_id)
        self.seen[transaction_id] = credits
        self.balances[device_id] = self.balances.get(device_id, 0) + credits
        return credits

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        device_id = request.headers.get("X-Device-Id", "")
        body = json.loads(request.content) if request.content else {}
        self.calls.append(LedgerCall(path=path, device_id=device_id, body=body))

        pending = self.failures.get(path)
        if pending:
            status = pending.pop(0)
            if status is None:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(status, text="ledger unavailable")

        if path == "/credits/balance":
            balance = self.balances.get(device_id, 0)
            return httpx.Response(200, json={"balance": balance, "reserved": 0, "available": balance})

        if path == "/credits/redeem-signed":
            granted = 0
            per_tx: list[dict[str, object]] = []
            duplicates = 0
            for jws in body.get("signedTransactions", []):
                payload = jwt.decode(jws, options={"verify_signature": False})
                tx_id, product_id = payload["transactionId"], payload["productId"]
                credits = self._grant(device_id, tx_id, product_id)
                if credits is None:
                    duplicates += 1
                    per_tx.append({"txId": tx_id, "ok": True, "duplicate": True, "credits": 0})
                    continue
                granted += credits
                per_tx.append({"txId": tx_id, "ok": True, "productId": product_id, "credits": credits})
            balance = self.balances.get(device_id, 0)
            if self.conflict_on_duplicate and duplicates and not granted:
                return httpx.Response(409, json={"error": "already_redeemed", "balance": balance})
            return httpx.Response(
                200, json={"ok": True, "granted": granted, "perTx": per_tx, "balance": balance}
            )

        if path == "/credits/redeem":
            receipt = json.loads(base64.b64decode(body["receipt"]))
            granted = 0
            for item in receipt.get("in_app", []):
                credits = self._grant(device_id, item["transaction_id"], item["product_id"])
                granted += credits or 0
            balance = self.balances.get(device_id, 0)
            return httpx.Response(
                200,
                json={"ok": True, "granted": granted, "balance": balance, "environment": "Sandbox"},
            )

        return httpx.Response(404, json={"error": "not_found"})


# ============================================================================
# Fake Store Platform
# ============================================================================


_STREAM_END = object()


class FakeStorePlatform:
    """Billing platform double recording every finish."""

    def __init__(self) -> None:
        self.catalog: dict[str, Product] = {
            CREDITS_MEDIUM: make_product(CREDITS_MEDIUM, "3.99"),
            CREDITS_SMALL: make_product(CREDITS_SMALL, "0.99"),
        }
        self.purchase_results: list[PurchaseResult] = []
        self.load_error: StoreError | None = None
        self.purchase_error: StoreError | None = None
        self.finish_errors: list[Exception] = []
        self.finished: list[str] = []
        self.purchased: list[str] = []
        self._updates: asyncio.Queue[object] = asyncio.Queue()

    async def load_products(self, product_ids: list[str]) -> list[Product]:
        if self.load_error is not None:
            raise self.load_error
        return [self.catalog[pid] for pid in product_ids if pid in self.catalog]

    async def purchase(self, product: Product) -> PurchaseResult:
        self.purchased.append(product.product_id)
        if self.purchase_error is not None:
            raise self.purchase_error
        return self.purchase_results.pop(0)

    def deliver(self, result: VerificationResult) -> None:
        """Push a transaction update (new, deferred or re-delivered)."""
        self._updates.put_nowait(result)

    def redeliver(self, transaction: Transaction) -> None:
        self.deliver(VerificationResult.verified(transaction))

    def close_stream(self) -> None:
        self._updates.put_nowait(_STREAM_END)

    async def transaction_updates(self) -> AsyncIterator[VerificationResult]:
        while True:
            item = await self._updates.get()
            if item is _STREAM_END:
                return
            assert isinstance(item, VerificationResult)
            yield item

    async def finish(self, transaction: Transaction) -> None:
        if self.finish_errors:
            raise self.finish_errors.pop(0)
        self.finished.append(transaction.transaction_id)


class FakeReceiptSource:
    """Legacy receipt on 'disk'; refresh swaps in ``refreshed`` bytes."""

    def __init__(self, data: bytes | None = None, refreshed: bytes | None = None) -> None:
        self.data = data
        self.refreshed = refreshed
        self.refresh_calls = 0
        self.refresh_error: Exception | None = None

    def read_receipt(self) -> bytes | None:
        return self.data

    async def refresh_receipt(self) -> None:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        if self.refreshed is not None:
            self.data = self.refreshed


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def ledger_client(fake_ledger: FakeLedger) -> LedgerClient:
    return LedgerClient(LEDGER_URL, timeout=5.0, transport=fake_ledger.transport)


@pytest.fixture
def platform() -> FakeStorePlatform:
    return FakeStorePlatform()


@pytest.fixture
def receipt_source() -> FakeReceiptSource:
    return FakeReceiptSource()


@pytest.fixture
def coordinator(ledger_client: LedgerClient, receipt_source: FakeReceiptSource) -> RedemptionCoordinator:
    return RedemptionCoordinator(ledger_client, LegacyReceiptResolver(receipt_source))


@pytest.fixture
def events() -> PurchaseEvents:
    return PurchaseEvents()


@pytest.fixture
async def state_store() -> AsyncGenerator[PurchaseStateStore, None]:
    store = PurchaseStateStore()
    await store.start()
    yield store
    await store.stop()


@pytest.fixture
def pipeline(
    platform: FakeStorePlatform,
    coordinator: RedemptionCoordinator,
    events: PurchaseEvents,
    state_store: PurchaseStateStore,
) -> RedemptionPipeline:
    return RedemptionPipeline(
        platform=platform,
        coordinator=coordinator,
        events=events,
        state=state_store,
        device_id=DEVICE_ID,
    )


@pytest.fixture
def ledger_factory() -> type[FakeLedger]:
    """Fresh ledgers inside property-based tests (one per example)."""
    return FakeLedger


@pytest.fixture
def platform_factory() -> type[FakeStorePlatform]:
    return FakeStorePlatform
