"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class RedemptionPipelineError(Exception):
    """Base exception for all redemption pipeline errors."""

    pass


class VerificationError(RedemptionPipelineError):
    """Raised when the platform says a transaction is not authentic.

    Never retried automatically. The transaction stays unfinished so the
    platform may re-deliver it for another verification.
    """

    def __init__(self, reason: str, transaction_id: str | None = None) -> None:
        self.reason = reason
        self.transaction_id = transaction_id
        super().__init__(f"Verification failed: {reason}")


class LedgerError(RedemptionPipelineError):
    """Raised when a ledger call fails (transport error or rejection)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Ledger error: {message}")

    @property
    def is_transport_error(self) -> bool:
        """True when the request never produced an HTTP response."""
        return self.status_code is None


class RedeemError(RedemptionPipelineError):
    """Raised when every redemption protocol failed for a transaction."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class ReceiptError(RedemptionPipelineError):
    """Raised when no legacy receipt blob could be obtained."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class MissingReceiptError(ReceiptError):
    """Raised when no receipt is cached and refresh was not allowed."""

    def __init__(self) -> None:
        super().__init__("Missing receipt")


class RefreshProducedNothingError(ReceiptError):
    """Raised when a receipt refresh still left no receipt on disk."""

    def __init__(self) -> None:
        super().__init__("Receipt refresh did not produce a receipt")


class StoreError(RedemptionPipelineError):
    """Raised when a billing platform call fails (product load, purchase)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Store error: {message}")
