"""
Tests for order total assembly and the three coupon outcomes.
"""
import random
from datetime import datetime, timezone

import pytest

from coupons import ValidationReason
from models import CartLineItem, Coupon, OrderTotals
from order_totals import (
    Applied,
    RejectedInvalid,
    RejectedNotApplicable,
    apply_coupon,
    build_order_totals,
    cart_subtotal,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

WELCOME10 = Coupon.from_record({
    "code": "WELCOME10",
    "discount_percentage": 10,
    "scope": "global",
    "min_order_amount": 0,
    "active": True,
})

TOYS20 = Coupon.from_record({
    "code": "TOYS20",
    "discount_percentage": 20,
    "scope": "collection",
    "applies_to_collection_handles": ["toys"],
})


def line(product_id, price, quantity=1, handles=()):
    return CartLineItem(
        product_id=product_id, price=price, quantity=quantity, collection_handles=frozenset(handles)
    )


class TestBuildOrderTotals:

    def test_without_coupon(self):
        totals = build_order_totals([line(1, 3000, 2)], None, 500, NOW)
        assert totals == OrderTotals(
            subtotal=6000, discount_total=0, shipping_fee=500, total=6500, coupon_code=None
        )

    def test_global_coupon_scenario(self):
        totals = build_order_totals([line(1, 4000, 2)], WELCOME10, 0, NOW)
        assert totals.subtotal == 8000
        assert totals.discount_total == 800
        assert totals.total == 7200
        assert totals.coupon_code == "WELCOME10"

    def test_collection_coupon_scenario(self):
        items = [
            line(1, 2000, 2, handles=["toys"]),
            line(2, 1000, 1, handles=["baby-clothing"]),
        ]
        totals = build_order_totals(items, TOYS20, 0, NOW)
        assert totals.subtotal == 5000
        assert totals.discount_total == 800
        assert totals.total == 4200

    def test_shipping_is_added_after_discount(self):
        totals = build_order_totals([line(1, 8000)], WELCOME10, 800, NOW)
        assert totals.total == 8000

    def test_invalid_coupon_is_returned_not_ignored(self):
        coupon = WELCOME10.model_copy(update={"usage_limit": 5, "used_count": 5})
        result = build_order_totals([line(1, 8000)], coupon, 0, NOW)
        assert isinstance(result, RejectedInvalid)
        assert result.reason == ValidationReason.USAGE_LIMIT_REACHED
        assert result.code == "WELCOME10"

    def test_not_applicable_coupon_is_returned(self):
        items = [line(2, 1000, 1, handles=["baby-clothing"])]
        result = build_order_totals(items, TOYS20, 0, NOW)
        assert isinstance(result, RejectedNotApplicable)
        assert result.message

    def test_accepts_a_one_shot_iterable(self):
        items = (line(i, 1000) for i in range(3))
        totals = build_order_totals(items, WELCOME10, 0, NOW)
        assert totals.subtotal == 3000
        assert totals.discount_total == 300

    def test_discount_over_100_percent_floors_total(self):
        coupon = WELCOME10.model_copy(update={"discount_percentage": 150})
        totals = build_order_totals([line(1, 1000)], coupon, 300, NOW)
        assert totals.discount_total == 1500
        assert totals.total == 0

    def test_empty_cart(self):
        totals = build_order_totals([], None, 0, NOW)
        assert totals.total == 0

    def test_totals_are_immutable(self):
        totals = build_order_totals([line(1, 1000)], None, 0, NOW)
        with pytest.raises(Exception):
            totals.total = 1

    def test_defaults_to_current_time(self):
        expired = WELCOME10.model_copy(
            update={"valid_to": datetime(2000, 1, 1, tzinfo=timezone.utc)}
        )
        result = build_order_totals([line(1, 1000)], expired, 0)
        assert isinstance(result, RejectedInvalid)
        assert result.reason == ValidationReason.EXPIRED

    def test_total_never_negative(self):
        rng = random.Random(20261018)
        for _ in range(500):
            subtotal = rng.randint(0, 100000)
            coupon = WELCOME10.model_copy(
                update={"discount_percentage": rng.uniform(0, 150)}
            )
            shipping_fee = rng.randint(-500, 5000)
            result = build_order_totals([line(1, subtotal)], coupon, shipping_fee, NOW)
            if isinstance(result, OrderTotals):
                assert result.total >= 0
                assert result.total == max(
                    0, result.subtotal - result.discount_total + shipping_fee
                )
            else:
                # only an empty eligible base can reject a global coupon here
                assert isinstance(result, RejectedNotApplicable)
                assert subtotal == 0


class TestApplyCoupon:

    def test_applied(self):
        items = [line(1, 999)]
        outcome = apply_coupon(WELCOME10, items, cart_subtotal(items), NOW)
        assert outcome == Applied(code="WELCOME10", eligible_amount=999, amount=100)

    def test_product_coupon_without_matching_lines(self):
        coupon = Coupon.from_record({
            "code": "BOTTLE15",
            "discount_percentage": 15,
            "scope": "product",
            "applies_to_product_ids": [42],
        })
        items = [line(1, 1200), line(2, 800)]
        outcome = apply_coupon(coupon, items, cart_subtotal(items), NOW)
        assert outcome == RejectedNotApplicable(code="BOTTLE15")

    def test_validation_runs_before_applicability(self):
        coupon = TOYS20.model_copy(update={"active": False})
        items = [line(1, 1000, handles=["baby-clothing"])]
        outcome = apply_coupon(coupon, items, cart_subtotal(items), NOW)
        assert isinstance(outcome, RejectedInvalid)
        assert outcome.reason == ValidationReason.DISABLED

    def test_zero_percent_on_eligible_cart_is_applied(self):
        coupon = WELCOME10.model_copy(update={"discount_percentage": 0})
        outcome = apply_coupon(coupon, [line(1, 1000)], 1000, NOW)
        assert outcome == Applied(code="WELCOME10", eligible_amount=1000, amount=0)

    def test_minimum_checked_against_full_subtotal(self):
        coupon = TOYS20.model_copy(update={"min_order_amount": 3000})
        items = [line(1, 1000, handles=["toys"]), line(2, 2000, handles=["baby-clothing"])]
        outcome = apply_coupon(coupon, items, cart_subtotal(items), NOW)
        assert outcome == Applied(code="TOYS20", eligible_amount=1000, amount=200)
