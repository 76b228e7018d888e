from datetime import datetime, timezone
from typing import Annotated, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

SCOPE_KINDS = ("global", "product", "collection")


class CouponConfigError(ValueError):
    """A coupon record is malformed: unknown scope, inconsistent targets or bad field types."""


# Coupon scopes. Exactly one variant carries targets, so a product coupon
# can never also hold collection handles.

class GlobalScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["global"] = "global"


class ProductScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["product"] = "product"
    product_ids: FrozenSet[int] = frozenset()


class CollectionScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["collection"] = "collection"
    handles: FrozenSet[str] = frozenset()


Scope = Annotated[
    Union[GlobalScope, ProductScope, CollectionScope],
    Field(discriminator="kind"),
]


class Coupon(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    discount_percentage: float = Field(ge=0)  # above 100 is allowed
    scope: Scope = GlobalScope()
    min_order_amount: int = 0
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    usage_limit: Optional[int] = None  # None = unlimited
    used_count: int = 0
    active: bool = True
    stackable: bool = False  # stored only, one coupon per order

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        code = value.strip().upper()
        if not code:
            raise ValueError("coupon code must not be empty")
        return code

    @field_validator("valid_from", "valid_to")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_record(cls, record: dict) -> "Coupon":
        """Build a coupon from its flat stored shape.

        The stored shape keeps ``scope`` as a string next to the
        ``applies_to_product_ids`` / ``applies_to_collection_handles`` lists.
        Targets on the wrong list are rejected instead of being ignored.
        """
        data = dict(record)
        kind = data.pop("scope", None) or "global"
        product_ids = data.pop("applies_to_product_ids", None) or []
        handles = data.pop("applies_to_collection_handles", None) or []

        if kind not in SCOPE_KINDS:
            raise CouponConfigError(f"Unknown coupon scope '{kind}'")
        if product_ids and kind != "product":
            raise CouponConfigError(f"Scope '{kind}' cannot target product ids")
        if handles and kind != "collection":
            raise CouponConfigError(f"Scope '{kind}' cannot target collection handles")

        if kind == "product":
            data["scope"] = {"kind": "product", "product_ids": product_ids}
        elif kind == "collection":
            data["scope"] = {"kind": "collection", "handles": handles}
        else:
            data["scope"] = {"kind": "global"}

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise CouponConfigError(f"Invalid coupon record: {e}") from e

    def to_record(self) -> dict:
        data = self.model_dump(mode="json", exclude={"scope"})
        data["scope"] = self.scope.kind
        data["applies_to_product_ids"] = (
            sorted(self.scope.product_ids) if isinstance(self.scope, ProductScope) else []
        )
        data["applies_to_collection_handles"] = (
            sorted(self.scope.handles) if isinstance(self.scope, CollectionScope) else []
        )
        return data


class CartLineItem(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    product_id: int
    collection_handles: FrozenSet[str] = frozenset()
    price: int
    quantity: int
    slug: Optional[str] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    image: Optional[str] = None

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


class OrderTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: int
    discount_total: int
    shipping_fee: int
    total: int
    coupon_code: Optional[str] = None


# --- API payloads ---

class CouponRecord(BaseModel):
    code: str
    discount_percentage: float = 10
    scope: str = "global"
    applies_to_product_ids: List[int] = []
    applies_to_collection_handles: List[str] = []
    min_order_amount: int = 0
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    usage_limit: Optional[int] = None
    used_count: int = 0
    active: bool = True
    stackable: bool = False


class CouponResponse(BaseModel):
    message: str


class CouponValidateRequest(BaseModel):
    code: str
    cart: List[CartLineItem]


class CouponValidateResponse(BaseModel):
    status: Literal["applied", "invalid", "not_applicable"]
    reason: Optional[str] = None
    discount: int = 0
    subtotal: int = 0
    newTotal: int = 0
    message: str


class OrderCreateRequest(BaseModel):
    lastName: str
    firstName: str
    phone: str
    postalCode: str
    prefecture: str
    city: str
    addressLine1: str
    addressLine2: Optional[str] = None
    notes: Optional[str] = None
    items: List[CartLineItem] = Field(min_length=1)
    couponCode: Optional[str] = None
    utm: Dict[str, str] = {}


class OrderResponse(BaseModel):
    orderNo: str
    subtotal: int
    discountTotal: int
    shippingFee: int
    total: int
    couponCode: Optional[str] = None
    lineOaHandle: Optional[str] = None
    status: str
    message: str
