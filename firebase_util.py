import firebase_admin
from firebase_admin import credentials, db
from datetime import datetime, timezone
from typing import List, Optional

from config import FIREBASE_CRED_PATH, FIREBASE_DB_URL
from logger import get_logger
from models import Coupon

log = get_logger(__name__)


class CouponRedemptionError(Exception):
    """The coupon could not be redeemed against its live usage counter."""

    def __init__(self, code: str, reason: str):
        super().__init__(f"Coupon {code} cannot be redeemed: {reason}")
        self.code = code
        self.reason = reason


def get_db_ref() -> db.Reference:
    """Return the root reference, initializing the Firebase app on first use."""
    if not firebase_admin._apps:
        try:
            cred = credentials.Certificate(FIREBASE_CRED_PATH)
            firebase_admin.initialize_app(cred, {
                'databaseURL': FIREBASE_DB_URL
            })
        except Exception as e:
            raise RuntimeError(f"Firebase initialization failed: {e}") from e
    return db.reference("/")


class CouponStore:
    """Coupons, orders and checkout settings kept in the Realtime Database.

    Layout::

        coupons/<CODE>          flat coupon record
        orders/<ORDER_NO>       order record
        settings/line_oas       [{"handle": ..., "enabled": ...}]
        settings/line_rr_idx    round-robin counter for LINE handles
    """

    def __init__(self, root):
        self._root = root

    # --- Coupons ---

    def get_coupon(self, code: str) -> Optional[Coupon]:
        data = self._root.child("coupons").child(code.strip().upper()).get()
        if not data:
            return None
        return Coupon.from_record(data)

    def list_coupons(self) -> List[Coupon]:
        data = self._root.child("coupons").get() or {}
        return [Coupon.from_record(record) for _, record in sorted(data.items())]

    def save_coupon(self, coupon: Coupon, keep_used_count: bool = False) -> None:
        """Write ``coupon``; with ``keep_used_count`` the stored counter wins.

        Admin edits pass ``keep_used_count`` so a redemption that commits
        while the edit is in flight is not overwritten.
        """
        record = coupon.to_record()
        coupon_ref = self._root.child("coupons").child(coupon.code)
        if not keep_used_count:
            coupon_ref.set(record)
            return

        def _merge(current):
            merged = dict(record)
            if current:
                merged["used_count"] = current.get("used_count") or 0
            return merged

        self._run_transaction(coupon_ref, _merge, coupon.code)

    def delete_coupon(self, code: str) -> bool:
        coupon_ref = self._root.child("coupons").child(code.strip().upper())
        if not coupon_ref.get():
            return False
        coupon_ref.delete()
        return True

    def redeem_coupon(self, code: str) -> int:
        """Atomically check the usage limit and bump ``used_count``.

        Runs as a database transaction, so concurrent checkouts cannot push a
        limited coupon past ``usage_limit``. Returns the new ``used_count``.
        """
        code = code.strip().upper()

        def _increment(record):
            if not record:
                raise CouponRedemptionError(code, "not_found")
            used = record.get("used_count") or 0
            limit = record.get("usage_limit")
            if limit is not None and used >= limit:
                raise CouponRedemptionError(code, "usage_limit_reached")
            record["used_count"] = used + 1
            return record

        updated = self._run_transaction(self._root.child("coupons").child(code), _increment, code)
        log.info("Coupon %s redeemed (%s uses)", code, updated["used_count"])
        return updated["used_count"]

    def release_coupon(self, code: str) -> None:
        """Give back one use taken by ``redeem_coupon`` when the order was not saved."""
        code = code.strip().upper()

        def _decrement(record):
            if not record:
                raise CouponRedemptionError(code, "not_found")
            record["used_count"] = max(0, (record.get("used_count") or 0) - 1)
            return record

        self._run_transaction(self._root.child("coupons").child(code), _decrement, code)
        log.info("Coupon %s use released", code)

    @staticmethod
    def _run_transaction(ref, update, code: str):
        try:
            return ref.transaction(update)
        except db.TransactionAbortedError as e:
            raise CouponRedemptionError(code, "busy") from e

    # --- Orders ---

    def create_order(self, order: dict) -> dict:
        record = dict(order)
        record.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self._root.child("orders").child(record["order_no"]).set(record)
        return record

    def get_order(self, order_no: str) -> Optional[dict]:
        return self._root.child("orders").child(order_no).get()

    # --- Settings ---

    def next_line_handle(self) -> Optional[str]:
        """Pick the next enabled LINE official account, round robin.

        The counter lives only in the database and is advanced in a
        transaction, so every checkout gets its own slot.
        """
        settings = self._root.child("settings")
        accounts = settings.child("line_oas").get() or []
        handles = [oa["handle"] for oa in accounts if oa.get("enabled") and oa.get("handle")]
        if not handles:
            return None
        slot = settings.child("line_rr_idx").transaction(lambda current: (current or 0) + 1)
        return handles[(slot - 1) % len(handles)]
