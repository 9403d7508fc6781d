"""Storefront backend: cart pricing, coupons and order status on FastAPI + MongoDB."""

__version__ = "1.0.0"
