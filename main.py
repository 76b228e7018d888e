from fastapi.middleware.cors import CORSMiddleware
from fastapi import Depends, FastAPI, Header, HTTPException
from models import (
    Coupon, CouponConfigError, CouponRecord, CouponResponse,
    CouponValidateRequest, CouponValidateResponse,
    OrderCreateRequest, OrderResponse,
)
from firebase_util import CouponRedemptionError, CouponStore, get_db_ref
from order_totals import (
    Applied, RejectedInvalid, RejectedNotApplicable,
    apply_coupon, build_order_totals, cart_subtotal,
)
from datetime import datetime, timezone
from typing import List
import time

import config
from logger import get_logger

log = get_logger("api")

app = FastAPI(title="Baby Store Checkout API")

# Allow storefront CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_store() -> CouponStore:
    return CouponStore(get_db_ref())


# Admin API key check
def check_admin(api_key: str = Header(..., alias="x-api-key")):
    if not config.ADMIN_KEY or api_key != config.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def load_coupon(store: CouponStore, code: str):
    try:
        return store.get_coupon(code)
    except CouponConfigError as e:
        log.error("Stored coupon %s is malformed: %s", code, e)
        raise HTTPException(status_code=500, detail="Coupon record is malformed")


def parse_coupon(body: CouponRecord) -> Coupon:
    try:
        return Coupon.from_record(body.model_dump())
    except CouponConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))


# 1. CREATE COUPON
@app.post("/api/coupons", response_model=CouponResponse, dependencies=[Depends(check_admin)])
def create_coupon(body: CouponRecord, store: CouponStore = Depends(get_store)):
    coupon = parse_coupon(body)
    if load_coupon(store, coupon.code):
        raise HTTPException(status_code=409, detail="Coupon code already exists")

    store.save_coupon(coupon)
    log.info("Coupon %s created (%s%% %s)", coupon.code, coupon.discount_percentage, coupon.scope.kind)
    return {"message": f"Coupon {coupon.code} created successfully"}


# 2. UPDATE COUPON
@app.put("/api/coupons/{code}", response_model=CouponRecord, dependencies=[Depends(check_admin)])
def update_coupon(code: str, body: CouponRecord, store: CouponStore = Depends(get_store)):
    coupon = parse_coupon(body.model_copy(update={"code": code}))
    try:
        # the live redemption count wins unless the admin sets it explicitly
        store.save_coupon(coupon, keep_used_count="used_count" not in body.model_fields_set)
    except CouponRedemptionError as e:
        raise HTTPException(status_code=503, detail=f"Coupon {e.code} is busy, try again")
    coupon = store.get_coupon(coupon.code)
    log.info("Coupon %s saved", coupon.code)
    return coupon.to_record()


# 3. LIST COUPONS
@app.get("/api/coupons", response_model=List[CouponRecord], dependencies=[Depends(check_admin)])
def list_coupons(store: CouponStore = Depends(get_store)):
    try:
        return [coupon.to_record() for coupon in store.list_coupons()]
    except CouponConfigError as e:
        log.error("Stored coupon is malformed: %s", e)
        raise HTTPException(status_code=500, detail="Coupon record is malformed")


# 4. DELETE COUPON
@app.delete("/api/coupons/{code}", response_model=CouponResponse, dependencies=[Depends(check_admin)])
def delete_coupon(code: str, store: CouponStore = Depends(get_store)):
    if not store.delete_coupon(code):
        raise HTTPException(status_code=404, detail="Coupon not found")
    log.info("Coupon %s deleted", code.strip().upper())
    return {"message": f"Coupon {code.strip().upper()} deleted"}


# 5. VALIDATE COUPON AGAINST A CART
@app.post("/api/coupons/validate", response_model=CouponValidateResponse)
def validate_coupon(body: CouponValidateRequest, store: CouponStore = Depends(get_store)):
    subtotal = cart_subtotal(body.cart)

    coupon = load_coupon(store, body.code)
    if not coupon:
        return {
            "status": "invalid",
            "reason": "not_found",
            "subtotal": subtotal,
            "newTotal": subtotal,
            "message": "無効なクーポンコードです"
        }

    outcome = apply_coupon(coupon, body.cart, subtotal, datetime.now(timezone.utc))
    if isinstance(outcome, Applied):
        return {
            "status": "applied",
            "discount": outcome.amount,
            "subtotal": subtotal,
            "newTotal": max(0, subtotal - outcome.amount),
            "message": f"{coupon.code} を適用しました（{coupon.discount_percentage:g}% OFF）"
        }
    if isinstance(outcome, RejectedInvalid):
        return {
            "status": "invalid",
            "reason": outcome.reason.value,
            "subtotal": subtotal,
            "newTotal": subtotal,
            "message": outcome.message
        }
    return {
        "status": "not_applicable",
        "subtotal": subtotal,
        "newTotal": subtotal,
        "message": outcome.message
    }


def redemption_error(e: CouponRedemptionError) -> HTTPException:
    if e.reason == "busy":
        return HTTPException(status_code=503, detail={
            "status": "invalid", "reason": e.reason, "message": "混み合っています。もう一度お試しください"
        })
    return HTTPException(status_code=409, detail={
        "status": "invalid", "reason": e.reason, "message": "クーポンの使用上限に達しました"
    })


def new_order_no() -> str:
    return f"ORD-{str(int(time.time() * 1000))[-8:]}"


# 6. CREATE ORDER
@app.post("/api/orders", response_model=OrderResponse, status_code=201)
def create_order(body: OrderCreateRequest, store: CouponStore = Depends(get_store)):
    coupon = None
    if body.couponCode:
        coupon = load_coupon(store, body.couponCode)
        if not coupon:
            raise HTTPException(status_code=422, detail={
                "status": "invalid", "reason": "not_found", "message": "無効なクーポンコードです"
            })

    totals = build_order_totals(body.items, coupon, config.SHIPPING_FEE)
    if isinstance(totals, RejectedInvalid):
        raise HTTPException(status_code=422, detail={
            "status": "invalid", "reason": totals.reason.value, "message": totals.message
        })
    if isinstance(totals, RejectedNotApplicable):
        raise HTTPException(status_code=422, detail={
            "status": "not_applicable", "reason": None, "message": totals.message
        })

    if totals.coupon_code:
        try:
            store.redeem_coupon(totals.coupon_code)
        except CouponRedemptionError as e:
            log.warning("Redemption of %s failed: %s", e.code, e.reason)
            raise redemption_error(e)

    order_no = new_order_no()
    order = {
        "order_no": order_no,
        "customer_name": f"{body.lastName} {body.firstName}",
        "phone": body.phone,
        "postal_code": body.postalCode,
        "prefecture": body.prefecture,
        "city": body.city,
        "address_line1": body.addressLine1,
        "address_line2": body.addressLine2,
        "notes": body.notes,
        "items": [
            {
                "sku": item.slug, "title": item.title, "price": item.price,
                "qty": item.quantity, "image": item.image, "variant": item.variant_title,
            }
            for item in body.items
        ],
        "subtotal": totals.subtotal,
        "discount_total": totals.discount_total,
        "shipping_fee": totals.shipping_fee,
        "total": totals.total,
        "coupon_code": totals.coupon_code,
        "payment_method": "COD",
        "payment_status": "pending",
        "status": "new",
        "line_oa_handle": None,
        "line_confirmed": False,
        "utm": body.utm,
    }
    try:
        order["line_oa_handle"] = store.next_line_handle()
        store.create_order(order)
    except Exception:
        if totals.coupon_code:
            log.error("Order %s not saved, releasing coupon %s", order_no, totals.coupon_code)
            store.release_coupon(totals.coupon_code)
        raise
    log.info("Order %s created (total=%s, coupon=%s)", order_no, totals.total, totals.coupon_code)

    return {
        "orderNo": order_no,
        "subtotal": totals.subtotal,
        "discountTotal": totals.discount_total,
        "shippingFee": totals.shipping_fee,
        "total": totals.total,
        "couponCode": totals.coupon_code,
        "lineOaHandle": order["line_oa_handle"],
        "status": "new",
        "message": f"Order {order_no} created"
    }


# 7. ORDER LOOKUP
@app.get("/api/orders/{order_no}", dependencies=[Depends(check_admin)])
def get_order(order_no: str, store: CouponStore = Depends(get_store)):
    order = store.get_order(order_no)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order
