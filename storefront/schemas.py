from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, Field, StringConstraints, model_validator

# Each collection class => one collection, lowercased name
# Money fields are whole currency units.


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


DiscountType = Literal["percentage", "fixed"]


class Product(BaseModel):
    id: Optional[str] = None
    name: str
    price: int = Field(ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    category: str
    description: Optional[str] = None
    image: Optional[str] = None
    images: list[str] = []
    sizes: list[str] = []
    colors: list[str] = []
    stock: int = Field(0, ge=0)
    in_stock: bool = True
    featured: bool = False
    trending: bool = False
    sku: Optional[str] = None
    rating: float = Field(0, ge=0, le=5)
    review_count: int = 0


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    images: Optional[list[str]] = None
    sizes: Optional[list[str]] = None
    colors: Optional[list[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    in_stock: Optional[bool] = None
    featured: Optional[bool] = None
    trending: Optional[bool] = None
    sku: Optional[str] = None


class StoredCartLine(BaseModel):
    product_id: str
    size: str
    color: str
    quantity: int = Field(ge=1)


CouponCode = Annotated[str, StringConstraints(strip_whitespace=True, to_upper=True, min_length=1)]


def _check_percentage(discount_type: Optional[str], value: Optional[int]) -> None:
    if discount_type == "percentage" and value is not None and value > 100:
        raise ValueError("percentage value must be at most 100")


class Coupon(BaseModel):
    id: Optional[str] = None
    code: CouponCode
    discount_type: DiscountType
    value: int = Field(gt=0)
    min_order_value: int = Field(0, ge=0)
    max_discount: Optional[int] = Field(None, ge=0)
    usage_limit: int = Field(ge=0)
    used_count: int = Field(0, ge=0)
    expiry_date: datetime
    is_active: bool = True
    description: str = ""
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_limits(self) -> "Coupon":
        if self.used_count > self.usage_limit:
            raise ValueError("used_count cannot exceed usage_limit")
        _check_percentage(self.discount_type, self.value)
        return self


class CouponCreate(BaseModel):
    code: CouponCode
    discount_type: DiscountType
    value: int = Field(gt=0)
    min_order_value: int = Field(0, ge=0)
    max_discount: Optional[int] = Field(None, ge=0)
    usage_limit: int = Field(100, ge=0)
    expiry_date: datetime
    is_active: bool = True
    description: str = ""

    @model_validator(mode="after")
    def _check_value(self) -> "CouponCreate":
        _check_percentage(self.discount_type, self.value)
        return self


class CouponUpdate(BaseModel):
    """Partial coupon update. Only fields the caller actually sent are merged;
    an explicit ``max_discount: null`` removes the cap."""

    code: Optional[CouponCode] = None
    discount_type: Optional[DiscountType] = None
    value: Optional[int] = Field(None, gt=0)
    min_order_value: Optional[int] = Field(None, ge=0)
    max_discount: Optional[int] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    expiry_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_value(self) -> "CouponUpdate":
        _check_percentage(self.discount_type, self.value)
        return self


class Address(BaseModel):
    name: str
    street: str
    city: str
    state: str
    zip_code: str
    is_default: bool = False


class User(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    addresses: list[Address] = []
    is_blocked: bool = False


class OrderItem(BaseModel):
    product_id: str
    name: str
    image: Optional[str] = None
    size: str
    color: str
    price: int = Field(ge=0)
    quantity: int = Field(ge=1)


class Order(BaseModel):
    id: Optional[str] = None
    user_id: str
    items: list[OrderItem]
    subtotal: int = Field(ge=0)
    shipping_fee: int = Field(0, ge=0)
    tax: int = Field(0, ge=0)
    discount: int = Field(0, ge=0)
    coupon_code: Optional[str] = None
    total: int = Field(ge=0)
    status: OrderStatus = OrderStatus.PENDING
    shipping_address: Address
    payment_method: str
    tracking_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
