"""
Domain Models - Immutable dataclasses for the redemption pipeline.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.

A Transaction is a read-only handle into platform-managed purchase state.
The pipeline never mutates it; it only asks the platform to finish it once
the ledger has acknowledged the grant.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class Environment(str, Enum):
    """Purchase environment reported by the billing platform."""

    SANDBOX = "Sandbox"
    PRODUCTION = "Production"

    @classmethod
    def parse(cls, value: str | None) -> "Environment":
        """Parse a platform environment string, defaulting to production."""
        if value and value.lower() == "sandbox":
            return cls.SANDBOX
        return cls.PRODUCTION


class RedemptionProtocol(str, Enum):
    """Which ledger endpoint produced a redemption outcome."""

    SIGNED = "signed"
    LEGACY = "legacy"


@dataclass(frozen=True)
class Transaction:
    """Verified platform transaction."""

    transaction_id: str  # Platform-unique identifier
    product_id: str  # Store product identifier
    environment: Environment
    purchase_date: datetime
    signed_payload: str = ""  # JWS representation, empty when unavailable

    def __post_init__(self) -> None:
        """Validate transaction fields."""
        if not self.transaction_id:
            raise ValueError("Transaction ID required")
        if not self.product_id:
            raise ValueError("Product ID required")

    def is_sandbox(self) -> bool:
        """Check if this is a sandbox (test) transaction."""
        return self.environment is Environment.SANDBOX

    def has_signed_payload(self) -> bool:
        """Check if the signed-token protocol can be attempted."""
        return bool(self.signed_payload)


@dataclass(frozen=True)
class Product:
    """Purchasable catalog entry as loaded from the billing platform."""

    product_id: str
    display_name: str
    display_price: str
    price: Decimal = Decimal("0")


@dataclass(frozen=True)
class RedemptionOutcome:
    """Ledger response to a successful redemption.

    The ledger is the source of truth for balance; this is never persisted.
    """

    granted: int
    balance: int
    protocol: RedemptionProtocol
    already_redeemed: bool = False

    def __post_init__(self) -> None:
        """Validate ledger amounts."""
        if self.granted < 0:
            raise ValueError(f"Granted credits cannot be negative: {self.granted}")


@dataclass(frozen=True)
class RedemptionDecision:
    """What the caller must do with a transaction after a redemption attempt.

    ``finish`` is only ever True after a successful ledger response or for a
    product outside the credit-pack catalog (``outcome`` is None then).
    """

    transaction_id: str
    finish: bool
    outcome: RedemptionOutcome | None = None

    @property
    def is_irrelevant(self) -> bool:
        """True when the transaction was finished without a ledger call."""
        return self.finish and self.outcome is None


@dataclass(frozen=True)
class PurchaseState:
    """Observable purchase state read by the UI."""

    products: tuple[Product, ...] = ()
    is_loading: bool = False
    last_error: str | None = None


# ============================================================================
# Platform results
# ============================================================================


@dataclass(frozen=True)
class VerificationResult:
    """Opaque platform verification result.

    Either verified (``error`` is None) or unverified with the platform's
    underlying error attached.
    """

    transaction: Transaction | None
    error: str | None = None

    @classmethod
    def verified(cls, transaction: Transaction) -> "VerificationResult":
        return cls(transaction=transaction)

    @classmethod
    def unverified(
        cls, error: str, transaction: Transaction | None = None
    ) -> "VerificationResult":
        return cls(transaction=transaction, error=error or "unknown verification error")

    @property
    def is_verified(self) -> bool:
        return self.error is None and self.transaction is not None


class PurchaseResultKind(str, Enum):
    """Immediate result of a platform purchase call."""

    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    PENDING = "pending"


@dataclass(frozen=True)
class PurchaseResult:
    """Platform purchase result. ``verification`` is set only on success."""

    kind: PurchaseResultKind
    verification: VerificationResult | None = None

    def __post_init__(self) -> None:
        """Validate that success carries a verification result."""
        if self.kind is PurchaseResultKind.SUCCESS and self.verification is None:
            raise ValueError("Successful purchase requires a verification result")

    @classmethod
    def success(cls, verification: VerificationResult) -> "PurchaseResult":
        return cls(kind=PurchaseResultKind.SUCCESS, verification=verification)

    @classmethod
    def user_cancelled(cls) -> "PurchaseResult":
        return cls(kind=PurchaseResultKind.USER_CANCELLED)

    @classmethod
    def pending(cls) -> "PurchaseResult":
        return cls(kind=PurchaseResultKind.PENDING)


# ============================================================================
# Purchase flow trace
# ============================================================================


class PurchaseFlowState(str, Enum):
    """States of a user-initiated purchase."""

    IDLE = "idle"
    PURCHASING = "purchasing"
    VERIFYING = "verifying"
    REDEEMING = "redeeming"
    FINISHED = "finished"
    RETRY_PENDING = "retry_pending"
    CANCELLED = "cancelled"
    DEFERRED_PENDING = "deferred_pending"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        """Check if the flow stops in this state."""
        return self in _TERMINAL_FLOW_STATES


_TERMINAL_FLOW_STATES = frozenset(
    {
        PurchaseFlowState.FINISHED,
        PurchaseFlowState.RETRY_PENDING,
        PurchaseFlowState.CANCELLED,
        PurchaseFlowState.DEFERRED_PENDING,
        PurchaseFlowState.FAILED,
    }
)


@dataclass(frozen=True)
class PurchaseAttempt:
    """Record of one purchase flow run."""

    product_id: str
    state: PurchaseFlowState
    history: tuple[PurchaseFlowState, ...] = field(default_factory=tuple)
    transaction_id: str | None = None
    outcome: RedemptionOutcome | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        """Validate that the attempt ended in a terminal state."""
        if not self.state.is_terminal():
            raise ValueError(f"Purchase attempt cannot end in state: {self.state.value}")
