"""Shopping cart and checkout pricing.

A cart holds one shopper's line items keyed by ``(product_id, size, color)``.
Prices are always read from the referenced product, so a price change in the
catalog shows up in the next subtotal; orders snapshot prices at checkout.
"""
from __future__ import annotations
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict

from storefront.config import settings
from storefront.errors import InvalidQuantity
from storefront.schemas import Product

logger = logging.getLogger(__name__)

LineKey = tuple[str, str, str]


def round_half_up(value) -> int:
    """Round to a whole currency unit, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class PricingPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    free_shipping_threshold: int = 999
    shipping_fee: int = 50
    tax_rate: float = 0.18

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        return cls(
            free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
            shipping_fee=settings.SHIPPING_FEE,
            tax_rate=settings.TAX_RATE,
        )


class CartLine(BaseModel):
    product: Product
    size: str
    color: str
    quantity: int

    @property
    def key(self) -> LineKey:
        return (self.product.id, self.size, self.color)

    @property
    def line_total(self) -> int:
        return self.product.price * self.quantity


class CartTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: int
    shipping_fee: int
    tax: int
    discount: int
    total: int
    item_count: int


class Cart:
    def __init__(self, policy: Optional[PricingPolicy] = None):
        self.policy = policy or PricingPolicy()
        self._lines: dict[LineKey, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self._lines.values())

    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    def get(self, product_id: str, size: str, color: str) -> Optional[CartLine]:
        return self._lines.get((product_id, size, color))

    def add(self, product: Product, size: str, color: str, quantity: int = 1) -> CartLine:
        if quantity < 1:
            raise InvalidQuantity(quantity)
        key = (product.id, size, color)
        line = self._lines.get(key)
        if line is None:
            line = CartLine(product=product, size=size, color=color, quantity=quantity)
            self._lines[key] = line
        else:
            line.quantity += quantity
        logger.debug("cart add %s qty=%d -> %d", key, quantity, line.quantity)
        return line

    def set_quantity(self, product_id: str, size: str, color: str, quantity: int) -> None:
        key = (product_id, size, color)
        if quantity <= 0:
            self._lines.pop(key, None)
            return
        line = self._lines.get(key)
        if line is not None:
            line.quantity = quantity

    def remove(self, product_id: str, size: str, color: str) -> None:
        self._lines.pop((product_id, size, color), None)

    def clear(self) -> None:
        self._lines.clear()

    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def subtotal(self) -> int:
        return sum(line.line_total for line in self._lines.values())

    def shipping_fee(self, subtotal: int) -> int:
        if subtotal > self.policy.free_shipping_threshold:
            return 0
        return self.policy.shipping_fee

    def tax(self, subtotal: int) -> int:
        return round_half_up(Decimal(subtotal) * Decimal(str(self.policy.tax_rate)))

    def grand_total(self) -> int:
        subtotal = self.subtotal()
        return subtotal + self.shipping_fee(subtotal) + self.tax(subtotal)

    def totals(self, discount: int = 0) -> CartTotals:
        # Discount comes off the grand total; shipping and tax are charged on
        # the undiscounted subtotal.
        subtotal = self.subtotal()
        shipping = self.shipping_fee(subtotal)
        tax = self.tax(subtotal)
        discount = max(0, min(discount, subtotal))
        return CartTotals(
            subtotal=subtotal,
            shipping_fee=shipping,
            tax=tax,
            discount=discount,
            total=subtotal + shipping + tax - discount,
            item_count=self.item_count(),
        )
