"""
Ledger API Models - Pydantic models for the credit ledger wire format.

NO DICTIONARIES - All data structures are strongly typed.
"""

from pydantic import BaseModel, ConfigDict, Field


class RedeemSignedRequest(BaseModel):
    """POST /credits/redeem-signed request body."""

    model_config = ConfigDict(populate_by_name=True)

    signed_transactions: list[str] = Field(..., alias="signedTransactions", min_length=1)


class RedeemReceiptRequest(BaseModel):
    """POST /credits/redeem request body."""

    receipt: str = Field(..., min_length=1, description="Base64 encoded app receipt")


class RedeemedTransaction(BaseModel):
    """Per-transaction entry of a signed redemption response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tx_id: str | None = Field(None, alias="txId")
    ok: bool = False
    duplicate: bool = False
    product_id: str | None = Field(None, alias="productId")
    credits: int = 0
    error: str | None = None


class RedeemResponse(BaseModel):
    """Response of both redemption endpoints.

    A 409 (already processed) body only carries ``balance``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ok: bool = True
    granted: int = Field(default=0, ge=0)
    balance: int = 0
    per_tx: list[RedeemedTransaction] = Field(default_factory=list, alias="perTx")
    environment: str | None = None


class BalanceResponse(BaseModel):
    """GET /credits/balance response."""

    model_config = ConfigDict(extra="ignore")

    balance: int = 0
    reserved: int = 0
    available: int | None = None
