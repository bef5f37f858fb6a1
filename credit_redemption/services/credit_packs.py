"""
Credit pack catalog configuration.

Maps App Store product IDs to credit amounts.
Product IDs must match those configured in App Store Connect and the ledger.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CreditPack:
    """Credit pack product configuration."""

    product_id: str  # App Store Connect product ID
    credits: int  # Credits granted on purchase
    name: str  # Display name

    def __post_init__(self) -> None:
        """Validate product configuration."""
        if self.credits <= 0:
            raise ValueError(f"Credits must be positive: {self.credits}")
        if not self.product_id:
            raise ValueError("Product ID required")
        if not self.name:
            raise ValueError("Name required")


CREDITS_SMALL = "io.robinfederico.InputMaximizer.credits_10"
CREDITS_MEDIUM = "io.robinfederico.InputMaximizer.credits_50"

# Product catalog (must match App Store Connect configuration)
CREDIT_PACKS: dict[str, CreditPack] = {
    CREDITS_SMALL: CreditPack(
        product_id=CREDITS_SMALL,
        credits=10,
        name="10 Credits",
    ),
    CREDITS_MEDIUM: CreditPack(
        product_id=CREDITS_MEDIUM,
        credits=50,
        name="50 Credits",
    ),
}


def is_credit_pack(product_id: str) -> bool:
    """Check if a product ID belongs to the credit pack catalog."""
    return product_id in CREDIT_PACKS


def credit_pack_ids() -> list[str]:
    """Product IDs to request from the store, smallest pack first."""
    return sorted(CREDIT_PACKS, key=lambda pid: CREDIT_PACKS[pid].credits)


def get_credits_for_product(product_id: str) -> int:
    """Number of credits for a product, 0 for anything outside the catalog."""
    pack = CREDIT_PACKS.get(product_id)
    return pack.credits if pack else 0
