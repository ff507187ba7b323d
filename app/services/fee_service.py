from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from app.core.errors import InvalidRequest

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class FeeBreakdown:
    platform_fee: Decimal
    business_amount: Decimal
    total_amount: Decimal
    fee_percentage: Decimal

    def as_metadata(self) -> dict[str, str]:
        """String form sent to the gateway and read back by the reconciler."""
        return {
            "platform_fee": str(self.platform_fee),
            "business_amount": str(self.business_amount),
            "fee_percentage": str(self.fee_percentage),
        }


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_fees(price, fee_percentage) -> FeeBreakdown:
    """Split a session price into platform fee, business amount and total charge.

    `fee_percentage` is a percentage (5 means 5%). The fee is rounded half-up to
    cents; the business keeps the full price and the customer pays price + fee.
    """
    price = Decimal(str(price))
    pct = Decimal(str(fee_percentage))
    if price < 0:
        raise InvalidRequest("price must be >= 0")
    if pct < 0:
        raise InvalidRequest("fee percentage must be >= 0")

    business_amount = to_money(price)
    platform_fee = (price * pct / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return FeeBreakdown(
        platform_fee=platform_fee,
        business_amount=business_amount,
        total_amount=business_amount + platform_fee,
        fee_percentage=pct,
    )


def to_minor_units(amount: Decimal) -> int:
    """Gateway amounts are integer cents."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
