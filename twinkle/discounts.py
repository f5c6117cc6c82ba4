"""
Discount code validation.

Validation is read-only: it never changes ``used_count``, so a code can be
re-validated as often as the order changes. The counter moves only through
``record_redemption`` once an order has been written.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .errors import DiscountErrorKind, DiscountRejected
from .pricing import money
from .schemas import DiscountCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppliedDiscount:
    discount_id: str
    code: str
    discount_type: str
    discount_value: float
    amount: float

    def to_dict(self) -> dict:
        return {
            "discount_id": self.discount_id,
            "code": self.code,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "amount": self.amount,
        }


def _format_amount(value: float) -> str:
    return f"${value:g}" if float(value).is_integer() else f"${value:.2f}"


def discount_amount(code: DiscountCode, subtotal: float) -> float:
    """
    Amount to take off ``subtotal``.

    A percentage code rounds the discounted total once, half-up, and the
    discount is whatever is left, so ``subtotal - amount`` is always the
    correctly rounded total.
    """
    subtotal_d = Decimal(str(subtotal))
    if code.discount_type == "percentage":
        keep = Decimal(100) - Decimal(str(code.discount_value))
        amount = subtotal_d - Decimal(str(money(subtotal_d * keep / Decimal(100))))
    else:
        amount = Decimal(str(code.discount_value))
    return money(max(min(amount, subtotal_d), Decimal(0)))


def check_discount(code: DiscountCode, subtotal: float, now: Optional[datetime] = None) -> AppliedDiscount:
    """Run the date, minimum-order and usage gates against an already fetched code."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if code.valid_from and now < code.valid_from:
        raise DiscountRejected(DiscountErrorKind.NOT_YET_ACTIVE, "This discount code is not yet active")
    if code.valid_until and now > code.valid_until:
        raise DiscountRejected(DiscountErrorKind.EXPIRED, "This discount code has expired")
    if subtotal < code.min_order_amount:
        raise DiscountRejected(
            DiscountErrorKind.BELOW_MINIMUM,
            f"Minimum order amount of {_format_amount(code.min_order_amount)} required",
        )
    if code.max_uses is not None and code.used_count >= code.max_uses:
        raise DiscountRejected(
            DiscountErrorKind.USAGE_LIMIT_REACHED, "This discount code has reached its usage limit"
        )
    return AppliedDiscount(
        discount_id=code.id,
        code=code.code,
        discount_type=code.discount_type,
        discount_value=code.discount_value,
        amount=discount_amount(code, subtotal),
    )


async def find_discount_code(store, code: str) -> Optional[DiscountCode]:
    normalized = (code or "").strip().upper()
    if not normalized:
        return None
    doc = await store.find_document("discount_codes", {"code": normalized, "is_active": True})
    return DiscountCode(**doc) if doc else None


async def validate_discount(store, code: str, subtotal: float, now: Optional[datetime] = None) -> AppliedDiscount:
    found = await find_discount_code(store, code)
    if found is None:
        raise DiscountRejected(DiscountErrorKind.NOT_FOUND, "Invalid or expired discount code")
    return check_discount(found, subtotal, now)


async def record_redemption(store, discount_id: str) -> bool:
    """Count one use of a code. Capped codes only count while uses remain."""
    doc = await store.find_document("discount_codes", {"id": discount_id})
    if not doc:
        logger.warning("Redeemed discount code %s no longer exists", discount_id)
        return False
    ok = await store.increment_field(
        "discount_codes", discount_id, "used_count", below=doc.get("max_uses")
    )
    if not ok:
        logger.warning("Discount code %s was redeemed past its usage limit", doc.get("code"))
    return ok
