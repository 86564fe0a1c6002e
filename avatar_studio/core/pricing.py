"""
Credit pricing.

Fixed credit costs per content kind and conversion of settled payments into credits.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Dict

from avatar_studio.storage.models import ContentKind


@dataclass(frozen=True)
class CreditPricingTable:
    """Fixed credit cost per content kind."""
    costs: Dict[ContentKind, int]

    def get_cost(self, kind: ContentKind) -> int:
        """Get the credit cost for a content kind.

        Args:
            kind: Content kind being generated

        Returns:
            Number of credits charged

        Raises:
            ValueError: If the kind has no price
        """
        if kind not in self.costs:
            raise ValueError(f"Unsupported content kind: {kind}")
        return self.costs[kind]


# Policy constants - not derived from generation time or provider cost
CREDIT_PRICING = CreditPricingTable({
    ContentKind.IMAGE: 1,
    ContentKind.VIDEO: 3,
})


def credit_cost(kind: ContentKind) -> int:
    """Credits charged for one generation of the given kind."""
    return CREDIT_PRICING.get_cost(kind)


def credits_for_payment(amount_cents: int, credits_per_usd: int) -> int:
    """Convert a settled payment into credits with conservative rounding.

    Args:
        amount_cents: Settled amount in cents
        credits_per_usd: Credits granted per whole dollar

    Returns:
        Credits granted, rounded DOWN to a whole credit

    Raises:
        ValueError: If the amount or rate is not positive
    """
    if amount_cents <= 0:
        raise ValueError("amount_cents must be > 0")
    if credits_per_usd <= 0:
        raise ValueError("credits_per_usd must be > 0")

    dollars = Decimal(amount_cents) / Decimal("100")
    credits = (dollars * Decimal(credits_per_usd)).quantize(Decimal("1"), rounding=ROUND_DOWN)
    return int(credits)
