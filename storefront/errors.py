"""Domain errors.

All of these are expected outcomes of a user or admin action; the HTTP layer
turns them into 4xx responses.
"""
from __future__ import annotations
from typing import Optional


class StorefrontError(Exception):
    """Base class for recoverable storefront errors."""


class NotFound(StorefrontError):
    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


class InvalidQuantity(StorefrontError):
    def __init__(self, quantity: int):
        super().__init__(f"Quantity must be at least 1, got {quantity}")
        self.quantity = quantity


class CouponNotRedeemable(StorefrontError):
    def __init__(self, code: str, reason: str):
        super().__init__(f"Coupon {code} cannot be applied: {reason}")
        self.code = code
        self.reason = reason


class UsageLimitExceeded(StorefrontError):
    def __init__(self, code: str, usage_limit: Optional[int] = None):
        super().__init__(f"Coupon {code} has reached its usage limit")
        self.code = code
        self.usage_limit = usage_limit


class InvalidStatusTransition(StorefrontError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move order from {current} to {requested}")
        self.current = current
        self.requested = requested
