"""
Purchase State Store - Single-owner observable purchase state.

Only the owner task writes ``PurchaseState``. Every other task posts a
mutation message; the owner applies messages in arrival order, so a loading
flag flipped by one path can never interleave with a partial update from
another.
"""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, replace

from structlog import get_logger

from credit_redemption.models.domain import Product, PurchaseState

logger = get_logger(__name__)

StateListener = Callable[[PurchaseState], None]


@dataclass(frozen=True)
class SetProducts:
    """Replace the loaded catalog."""

    products: tuple[Product, ...]

    def apply(self, state: PurchaseState) -> PurchaseState:
        return replace(state, products=self.products)


@dataclass(frozen=True)
class SetLoading:
    """Flip the loading flag."""

    is_loading: bool

    def apply(self, state: PurchaseState) -> PurchaseState:
        return replace(state, is_loading=self.is_loading)


@dataclass(frozen=True)
class SetError:
    """Record a user-visible error."""

    message: str

    def apply(self, state: PurchaseState) -> PurchaseState:
        return replace(state, last_error=self.message)


@dataclass(frozen=True)
class ClearError:
    """Clear the user-visible error."""

    def apply(self, state: PurchaseState) -> PurchaseState:
        return replace(state, last_error=None)


StateMutation = SetProducts | SetLoading | SetError | ClearError


class PurchaseStateStore:
    """
    Owner of the process-wide PurchaseState.

    Usage:
        store = PurchaseStateStore()
        await store.start()
        store.set_error("Redeem failed: timeout")
        await store.drain()
        assert store.snapshot().last_error == "Redeem failed: timeout"
    """

    def __init__(self) -> None:
        self._state = PurchaseState()
        self._queue: asyncio.Queue[StateMutation] = asyncio.Queue()
        self._owner: asyncio.Task[None] | None = None
        self._listeners: list[StateListener] = []

    @property
    def is_running(self) -> bool:
        return self._owner is not None and not self._owner.done()

    async def start(self) -> None:
        """Start the owner task. Idempotent."""
        if self.is_running:
            return
        self._owner = asyncio.create_task(self._run(), name="purchase-state-owner")
        logger.debug("purchase_state_owner_started")

    async def stop(self) -> None:
        """Apply pending mutations, then stop the owner task."""
        if self._owner is None:
            return
        if not self._owner.done():
            await self._queue.join()
            self._owner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._owner
        self._owner = None
        logger.debug("purchase_state_owner_stopped")

    async def _run(self) -> None:
        while True:
            mutation = await self._queue.get()
            try:
                self._apply(mutation)
            finally:
                self._queue.task_done()

    def _apply(self, mutation: StateMutation) -> None:
        self._state = mutation.apply(self._state)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("purchase_state_listener_failed")

    # ------------------------------------------------------------------
    # Message passing API (safe from any task)
    # ------------------------------------------------------------------

    def post(self, mutation: StateMutation) -> None:
        """Queue a mutation for the owner task."""
        self._queue.put_nowait(mutation)

    def set_products(self, products: list[Product] | tuple[Product, ...]) -> None:
        self.post(SetProducts(tuple(products)))

    def set_loading(self, is_loading: bool) -> None:
        self.post(SetLoading(is_loading))

    def set_error(self, message: str) -> None:
        self.post(SetError(message))

    def clear_error(self) -> None:
        self.post(ClearError())

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self) -> PurchaseState:
        """Current state as last applied by the owner."""
        return self._state

    async def drain(self) -> PurchaseState:
        """Wait until every posted mutation is applied and return the state."""
        if not self.is_running:
            raise RuntimeError("PurchaseStateStore owner task is not running")
        await self._queue.join()
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` after each applied mutation; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
