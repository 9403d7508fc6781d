from __future__ import annotations
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from bson import ObjectId
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from storefront import database
from storefront.cart import Cart, PricingPolicy
from storefront.config import settings
from storefront.coupons import coupon_state, evaluate, matches_state
from storefront.errors import (
    CouponNotRedeemable,
    InvalidQuantity,
    InvalidStatusTransition,
    NotFound,
    UsageLimitExceeded,
)
from storefront.orders import progress_percent
from storefront.schemas import (
    Address,
    Coupon,
    CouponCreate,
    CouponUpdate,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ProductUpdate,
    StoredCartLine,
    User,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API")

# Allow all origins for the storefront and admin frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# Error mapping
# -----------------------------

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    # Model checks that run inside a route, e.g. a merged coupon update
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors(include_url=False, include_context=False))},
    )


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidQuantity)
async def invalid_quantity_handler(request: Request, exc: InvalidQuantity):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(CouponNotRedeemable)
async def coupon_not_redeemable_handler(request: Request, exc: CouponNotRedeemable):
    return JSONResponse(status_code=409, content={"detail": str(exc), "reason": exc.reason})


@app.exception_handler(UsageLimitExceeded)
async def usage_limit_handler(request: Request, exc: UsageLimitExceeded):
    return JSONResponse(status_code=409, content={"detail": str(exc), "reason": "exhausted"})


@app.exception_handler(InvalidStatusTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStatusTransition):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "current": exc.current, "requested": exc.requested},
    )


# -----------------------------
# Helpers
# -----------------------------

def pricing_policy() -> PricingPolicy:
    return PricingPolicy.from_settings()


async def load_cart(session_id: str) -> Cart:
    """Rebuild a session cart against current catalog prices."""
    stored = await database.get_cart_lines(session_id)
    products = await database.get_products_by_ids([line.product_id for line in stored])
    cart = Cart(pricing_policy())
    for line in stored:
        doc = products.get(line.product_id)
        if doc is None:
            logger.info("dropping cart line for missing product %s", line.product_id)
            continue
        cart.add(Product(**doc), line.size, line.color, line.quantity)
    return cart


async def save_cart(session_id: str, cart: Cart) -> None:
    await database.save_cart_lines(session_id, [
        StoredCartLine(product_id=line.product.id, size=line.size, color=line.color, quantity=line.quantity)
        for line in cart
    ])


class CartItemOut(BaseModel):
    product_id: str
    name: str
    image: Optional[str] = None
    price: int
    size: str
    color: str
    quantity: int
    line_total: int


class CartOut(BaseModel):
    session_id: str
    items: list[CartItemOut]
    subtotal: int
    shipping_fee: int
    tax: int
    discount: int
    total: int
    item_count: int


class DiscountOut(BaseModel):
    valid: bool
    code: str
    discount: int
    reason: Optional[str] = None
    message: Optional[str] = None


class OrderOut(Order):
    id: str
    progress: int


def cart_to_client(session_id: str, cart: Cart, discount: int = 0) -> CartOut:
    items = [
        CartItemOut(
            product_id=line.product.id,
            name=line.product.name,
            image=line.product.image,
            price=line.product.price,
            size=line.size,
            color=line.color,
            quantity=line.quantity,
            line_total=line.line_total,
        )
        for line in cart
    ]
    return CartOut(session_id=session_id, items=items, **cart.totals(discount).model_dump())


def order_to_client(doc: dict[str, Any]) -> OrderOut:
    return OrderOut(**doc, progress=progress_percent(doc["status"]))


def coupon_to_client(doc: dict[str, Any]) -> dict[str, Any]:
    doc["state"] = coupon_state(Coupon(**doc))
    return doc


async def get_product_or_404(product_id: str) -> Product:
    try:
        doc = await database.get_document("product", product_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Product not found")
    return Product(**doc)


# -----------------------------
# Basic routes
# -----------------------------

@app.get("/")
async def read_root():
    return {"message": "Storefront backend is running"}


@app.get("/test")
async def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "collections": [],
    }
    try:
        db = await database.get_db()
        collections = await db.list_collection_names()
        response["collections"] = collections[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


SEED_PRODUCTS: list[dict] = [
    {"name": "Classic Black Tee", "price": 299, "original_price": 399, "category": "T-Shirts", "sizes": ["S", "M", "L", "XL"], "colors": ["Black", "White"], "stock": 120, "featured": True, "sku": "TEE-001", "image": "https://images.unsplash.com/photo-1521572163474-6864f9cf17ab?q=80&w=1200&auto=format&fit=crop"},
    {"name": "Leather Jacket", "price": 1299, "original_price": 1599, "category": "Jackets", "sizes": ["M", "L", "XL"], "colors": ["Brown", "Black"], "stock": 25, "trending": True, "sku": "JKT-002", "image": "https://images.unsplash.com/photo-1551028719-00167b16eac5?q=80&w=1200&auto=format&fit=crop"},
    {"name": "Oversized Hoodie", "price": 899, "category": "Hoodies", "sizes": ["S", "M", "L"], "colors": ["Grey", "Black"], "stock": 60, "featured": True, "trending": True, "sku": "HD-003", "image": "https://images.unsplash.com/photo-1556821840-3a63f95609a7?q=80&w=1200&auto=format&fit=crop"},
    {"name": "Slim Fit Jeans", "price": 999, "category": "Jeans", "sizes": ["30", "32", "34"], "colors": ["Blue"], "stock": 40, "sku": "JN-004", "image": "https://images.unsplash.com/photo-1542272604-787c3835535d?q=80&w=1200&auto=format&fit=crop"},
]


def seed_coupons(now: datetime) -> list[dict]:
    return [
        {"code": "WELCOME10", "discount_type": "percentage", "value": 10, "min_order_value": 500, "max_discount": 200, "usage_limit": 100, "expiry_date": now + timedelta(days=90), "description": "Welcome discount for new users"},
        {"code": "FLAT50", "discount_type": "fixed", "value": 50, "min_order_value": 300, "usage_limit": 200, "expiry_date": now + timedelta(days=30), "description": "Flat 50 off on orders above 300"},
    ]


@app.post("/seed")
async def seed():
    # Insert only into empty collections
    inserted = {"products": 0, "coupons": 0}
    if await database.count_documents("product") == 0:
        for p in SEED_PRODUCTS:
            await database.create_document("product", Product(**p).model_dump(exclude={"id"}))
            inserted["products"] += 1
    if await database.count_documents("coupon") == 0:
        for c in seed_coupons(datetime.now(timezone.utc)):
            await database.create_document("coupon", Coupon(**c).model_dump(exclude={"id", "created_at"}))
            inserted["coupons"] += 1
    return {"seeded": any(inserted.values()), **inserted}


# -----------------------------
# Catalog
# -----------------------------

@app.get("/categories")
async def list_categories():
    db = await database.get_db()
    cats = await db["product"].distinct("category")
    return sorted(c for c in cats if c)


@app.get("/products")
async def list_products(
    q: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
    trending: Optional[bool] = Query(None),
):
    filt: dict[str, Any] = {}
    if q:
        filt["name"] = {"$regex": q, "$options": "i"}
    if category:
        filt["category"] = category
    if featured is not None:
        filt["featured"] = featured
    if trending is not None:
        filt["trending"] = trending
    return await database.get_documents("product", filt, limit=200)


@app.get("/products/{product_id}")
async def get_product(product_id: str):
    return (await get_product_or_404(product_id)).model_dump()


# -----------------------------
# Cart
# -----------------------------

class CartLineRequest(BaseModel):
    session_id: str
    product_id: str
    size: str
    color: str


class AddToCartRequest(CartLineRequest):
    quantity: int = 1


class SetQuantityRequest(CartLineRequest):
    quantity: int


@app.get("/cart", response_model=CartOut)
async def get_cart(session_id: str):
    cart = await load_cart(session_id)
    return cart_to_client(session_id, cart)


@app.post("/cart/add", response_model=CartOut)
async def add_to_cart(payload: AddToCartRequest):
    product = await get_product_or_404(payload.product_id)
    if product.sizes and payload.size not in product.sizes:
        raise HTTPException(status_code=400, detail=f"Size {payload.size} not available")
    if product.colors and payload.color not in product.colors:
        raise HTTPException(status_code=400, detail=f"Color {payload.color} not available")
    cart = await load_cart(payload.session_id)
    cart.add(product, payload.size, payload.color, payload.quantity)
    await save_cart(payload.session_id, cart)
    return cart_to_client(payload.session_id, cart)


@app.post("/cart/update", response_model=CartOut)
async def update_cart_line(payload: SetQuantityRequest):
    cart = await load_cart(payload.session_id)
    cart.set_quantity(payload.product_id, payload.size, payload.color, payload.quantity)
    await save_cart(payload.session_id, cart)
    return cart_to_client(payload.session_id, cart)


@app.post("/cart/remove", response_model=CartOut)
async def remove_cart_line(payload: CartLineRequest):
    cart = await load_cart(payload.session_id)
    cart.remove(payload.product_id, payload.size, payload.color)
    await save_cart(payload.session_id, cart)
    return cart_to_client(payload.session_id, cart)


# -----------------------------
# Coupons and checkout
# -----------------------------

class DiscountCheck(BaseModel):
    code: str
    subtotal: int


@app.post("/discount", response_model=DiscountOut)
async def check_discount(payload: DiscountCheck):
    doc = await database.find_coupon(payload.code)
    if not doc:
        return DiscountOut(valid=False, code=payload.code.strip().upper(), discount=0,
                           reason="unknown", message="Invalid coupon code.")
    result = evaluate(Coupon(**doc), payload.subtotal)
    return DiscountOut(valid=result.applied, code=result.code, discount=result.discount,
                       reason=result.reason, message=result.message)


class CheckoutRequest(BaseModel):
    session_id: str
    user_id: str
    shipping_address: Address
    payment_method: str
    coupon_code: Optional[str] = None


async def ensure_not_blocked(user_id: str) -> None:
    if not ObjectId.is_valid(user_id):
        return
    db = await database.get_db()
    user = await db["user"].find_one({"_id": ObjectId(user_id)})
    if user and user.get("is_blocked"):
        raise HTTPException(status_code=403, detail="User is blocked")


async def place_order(payload: CheckoutRequest, cart: Cart, discount: int, coupon_code: Optional[str]) -> dict[str, Any]:
    totals = cart.totals(discount)
    order = Order(
        user_id=payload.user_id,
        items=[
            OrderItem(product_id=line.product.id, name=line.product.name, image=line.product.image,
                      size=line.size, color=line.color, price=line.product.price, quantity=line.quantity)
            for line in cart
        ],
        subtotal=totals.subtotal,
        shipping_fee=totals.shipping_fee,
        tax=totals.tax,
        discount=totals.discount,
        coupon_code=coupon_code,
        total=totals.total,
        shipping_address=payload.shipping_address,
        payment_method=payload.payment_method,
    )
    data = order.model_dump(exclude={"id", "created_at", "updated_at"})
    data["status"] = order.status.value
    return await database.create_document("order", data)


@app.post("/checkout", status_code=201, response_model=OrderOut)
async def checkout(payload: CheckoutRequest):
    await ensure_not_blocked(payload.user_id)
    cart = await load_cart(payload.session_id)
    if len(cart) == 0:
        raise HTTPException(status_code=400, detail="Cart is empty")

    discount = 0
    coupon_code = None
    if payload.coupon_code:
        doc = await database.find_coupon(payload.coupon_code)
        if not doc:
            raise CouponNotRedeemable(payload.coupon_code.strip().upper(), "unknown")
        result = evaluate(Coupon(**doc), cart.subtotal())
        result.raise_for_reason()
        await database.redeem_coupon(result.code)
        discount, coupon_code = result.discount, result.code

    try:
        saved = await place_order(payload, cart, discount, coupon_code)
    except Exception:
        if coupon_code:
            await database.release_coupon(coupon_code)
        raise
    await database.delete_cart(payload.session_id)
    logger.info("order %s placed by %s total=%d", saved["id"], payload.user_id, saved["total"])
    return order_to_client(saved)


@app.get("/orders", response_model=list[OrderOut])
async def my_orders(user_id: str):
    docs = await database.get_documents("order", {"user_id": user_id}, limit=200, sort=[("created_at", -1)])
    return [order_to_client(d) for d in docs]


# -----------------------------
# Admin: products
# -----------------------------

@app.post("/admin/products", status_code=201)
async def create_product(product: Product):
    return await database.create_document("product", product.model_dump(exclude={"id"}))


@app.patch("/admin/products/{product_id}")
async def update_product(product_id: str, patch: ProductUpdate):
    changes = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if v is not None}
    if not changes:
        return await database.get_document("product", product_id)
    return await database.update_document("product", product_id, changes)


@app.delete("/admin/products/{product_id}")
async def delete_product(product_id: str):
    await database.delete_document("product", product_id)
    return {"success": True}


# -----------------------------
# Admin: coupons
# -----------------------------

@app.get("/admin/coupons")
async def list_coupons(state: Optional[str] = Query(None, description="active|inactive|expired")):
    docs = await database.get_documents("coupon", limit=500, sort=[("created_at", -1)])
    if state:
        docs = [d for d in docs if matches_state(Coupon(**d), state)]
    return [coupon_to_client(d) for d in docs]


@app.post("/admin/coupons", status_code=201)
async def create_coupon(payload: CouponCreate):
    coupon = Coupon(**payload.model_dump(), used_count=0)
    if await database.find_coupon(coupon.code):
        raise HTTPException(status_code=400, detail=f"Coupon {coupon.code} already exists")
    saved = await database.create_document("coupon", coupon.model_dump(exclude={"id", "created_at"}))
    logger.info("coupon %s created", coupon.code)
    return coupon_to_client(saved)


@app.patch("/admin/coupons/{coupon_id}")
async def update_coupon(coupon_id: str, patch: CouponUpdate):
    if patch.code is not None:
        existing = await database.find_coupon(patch.code)
        if existing and existing["id"] != coupon_id:
            raise HTTPException(status_code=400, detail=f"Coupon {patch.code} already exists")
    return coupon_to_client(await database.update_coupon(coupon_id, patch))


@app.delete("/admin/coupons/{coupon_id}")
async def delete_coupon(coupon_id: str):
    await database.delete_document("coupon", coupon_id)
    return {"success": True}


# -----------------------------
# Admin: orders
# -----------------------------

class StatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


@app.get("/admin/orders", response_model=list[OrderOut])
async def admin_orders(status: Optional[OrderStatus] = Query(None)):
    filt = {"status": status.value} if status else {}
    docs = await database.get_documents("order", filt, limit=500, sort=[("created_at", -1)])
    return [order_to_client(d) for d in docs]


@app.patch("/admin/orders/{order_id}/status", response_model=OrderOut)
async def update_order_status(order_id: str, payload: StatusUpdate):
    updated = await database.update_order_status(order_id, payload.status, payload.tracking_number)
    return order_to_client(updated)


# -----------------------------
# Admin: users and dashboard
# -----------------------------

@app.get("/admin/users")
async def admin_users():
    return await database.get_documents("user", limit=500)


@app.post("/admin/users", status_code=201)
async def create_user(user: User):
    return await database.create_document("user", user.model_dump())


@app.post("/admin/users/{user_id}/toggle-block")
async def toggle_user_block(user_id: str):
    user = await database.get_document("user", user_id)
    return await database.update_document("user", user_id, {"is_blocked": not user.get("is_blocked", False)})


@app.get("/admin/stats")
async def admin_stats():
    db = await database.get_db()
    revenue = 0
    async for o in db["order"].find({"status": {"$ne": OrderStatus.CANCELLED.value}}):
        revenue += o.get("total", 0)
    return {
        "total_revenue": revenue,
        "total_orders": await database.count_documents("order"),
        "total_users": await database.count_documents("user"),
        "total_products": await database.count_documents("product"),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
