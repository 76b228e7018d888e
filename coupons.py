"""Coupon evaluation: redeemability checks and discount amounts.

Everything here is a pure function of its arguments. Callers fetch the
coupon and the cart fresh for each evaluation and pass the current time in.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional

from logger import get_logger
from models import CartLineItem, CollectionScope, Coupon, ProductScope

log = get_logger(__name__)


class ValidationReason(str, Enum):
    DISABLED = "coupon_disabled"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    BELOW_MINIMUM = "below_minimum_order_amount"
    USAGE_LIMIT_REACHED = "usage_limit_reached"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[ValidationReason] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, reason: ValidationReason, message: str) -> "ValidationResult":
        return cls(valid=False, reason=reason, message=message)


def format_yen(amount: int) -> str:
    return f"¥{amount:,}"


def validate(coupon: Coupon, subtotal: int, now: datetime) -> ValidationResult:
    """Check whether ``coupon`` can be redeemed against ``subtotal`` at ``now``.

    Checks run in a fixed order and the first failure is returned. Both ends
    of the validity window are inclusive, as is the minimum order amount.
    ``used_count`` is a point-in-time read; the store re-checks it atomically
    when the coupon is actually redeemed.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    result = _validate(coupon, subtotal, now)
    if not result.valid:
        log.debug("Coupon %s rejected: %s", coupon.code, result.reason.value)
    return result


def _validate(coupon: Coupon, subtotal: int, now: datetime) -> ValidationResult:
    if not coupon.active:
        return ValidationResult.fail(ValidationReason.DISABLED, "このクーポンは無効です")

    if coupon.valid_from is not None and now < coupon.valid_from:
        return ValidationResult.fail(
            ValidationReason.NOT_YET_VALID, "このクーポンはまだ使用できません"
        )

    if coupon.valid_to is not None and now > coupon.valid_to:
        return ValidationResult.fail(ValidationReason.EXPIRED, "このクーポンは期限切れです")

    if subtotal < coupon.min_order_amount:
        return ValidationResult.fail(
            ValidationReason.BELOW_MINIMUM,
            f"最低購入金額（{format_yen(coupon.min_order_amount)}）に達していません",
        )

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return ValidationResult.fail(
            ValidationReason.USAGE_LIMIT_REACHED, "クーポンの使用上限に達しました"
        )

    return ValidationResult.ok()


def eligible_amount(coupon: Coupon, line_items: Iterable[CartLineItem], subtotal: int) -> int:
    """Return the part of the cart the coupon's scope makes discountable."""
    scope = coupon.scope
    if isinstance(scope, ProductScope):
        return sum(
            item.line_total for item in line_items if item.product_id in scope.product_ids
        )
    if isinstance(scope, CollectionScope):
        return sum(
            item.line_total
            for item in line_items
            if not scope.handles.isdisjoint(item.collection_handles)
        )
    return subtotal


def percentage_of(amount: int, percentage: float) -> int:
    """``amount * percentage / 100`` rounded half up to whole yen."""
    exact = Decimal(amount) * Decimal(str(percentage)) / Decimal(100)
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_discount(coupon: Coupon, line_items: Iterable[CartLineItem], subtotal: int) -> int:
    """Discount in yen the coupon yields for this cart.

    A result of 0 from an empty eligible base means "valid but not applicable
    to this cart"; use ``eligible_amount`` to tell that apart from a 0% coupon.
    Percentages above 100 are not clamped.
    """
    base = eligible_amount(coupon, line_items, subtotal)
    if base == 0:
        return 0
    return percentage_of(base, coupon.discount_percentage)
