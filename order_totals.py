"""Order total assembly: subtotal, coupon discount, shipping and the final total."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Union

from coupons import ValidationReason, compute_discount, eligible_amount, validate
from logger import get_logger
from models import CartLineItem, Coupon, OrderTotals

log = get_logger(__name__)

NOT_APPLICABLE_MESSAGE = "カート内の商品はこのクーポンの対象外です"


@dataclass(frozen=True)
class Applied:
    code: str
    eligible_amount: int
    amount: int


@dataclass(frozen=True)
class RejectedInvalid:
    code: str
    reason: ValidationReason
    message: str


@dataclass(frozen=True)
class RejectedNotApplicable:
    code: str
    message: str = NOT_APPLICABLE_MESSAGE


CouponOutcome = Union[Applied, RejectedInvalid, RejectedNotApplicable]
Rejection = Union[RejectedInvalid, RejectedNotApplicable]


def cart_subtotal(line_items: Iterable[CartLineItem]) -> int:
    return sum(item.line_total for item in line_items)


def apply_coupon(
    coupon: Coupon,
    line_items: Sequence[CartLineItem],
    subtotal: int,
    now: datetime,
) -> CouponOutcome:
    """Evaluate one coupon against a cart snapshot.

    Returns exactly one of the three outcomes; the caller renders each one
    differently, so they are never collapsed into a zero discount.
    """
    result = validate(coupon, subtotal, now)
    if not result.valid:
        return RejectedInvalid(code=coupon.code, reason=result.reason, message=result.message)

    base = eligible_amount(coupon, line_items, subtotal)
    if base == 0:
        log.debug("Coupon %s does not apply to any cart line", coupon.code)
        return RejectedNotApplicable(code=coupon.code)

    return Applied(
        code=coupon.code,
        eligible_amount=base,
        amount=compute_discount(coupon, line_items, subtotal),
    )


def build_order_totals(
    line_items: Iterable[CartLineItem],
    coupon: Optional[Coupon],
    shipping_fee: int,
    now: Optional[datetime] = None,
) -> Union[OrderTotals, Rejection]:
    """Assemble the totals for one checkout attempt.

    The line items are snapshotted once so validation and discount see the
    same subtotal. A coupon rejection is returned instead of totals. The
    total never drops below zero. Nothing is persisted and ``used_count`` is
    left to the store.
    """
    items = tuple(line_items)
    subtotal = cart_subtotal(items)

    discount_total = 0
    coupon_code = None
    if coupon is not None:
        outcome = apply_coupon(coupon, items, subtotal, now or datetime.now(timezone.utc))
        if not isinstance(outcome, Applied):
            return outcome
        discount_total = outcome.amount
        coupon_code = outcome.code

    return OrderTotals(
        subtotal=subtotal,
        discount_total=discount_total,
        shipping_fee=shipping_fee,
        total=max(0, subtotal - discount_total + shipping_fee),
        coupon_code=coupon_code,
    )
