from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument

from storefront.config import settings
from storefront.coupons import EXPIRED, INACTIVE, apply_partial_update, as_utc
from storefront.errors import CouponNotRedeemable, NotFound, UsageLimitExceeded
from storefront.orders import check_transition
from storefront.schemas import Coupon, CouponUpdate, OrderStatus, StoredCartLine

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
    return _db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_client(doc: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if doc and "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


def object_id(kind: str, value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise NotFound(kind, value)
    return ObjectId(value)


async def create_document(collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
    db = await get_db()
    now = _utcnow()
    data_with_meta = {**data, "created_at": now, "updated_at": now}
    data_with_meta.pop("id", None)
    result = await db[collection_name].insert_one(data_with_meta)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    return to_client(inserted) or {}


async def get_documents(
    collection_name: str,
    filter_dict: dict[str, Any] | None = None,
    limit: int = 100,
    sort: Optional[list[tuple[str, int]]] = None,
) -> list[dict[str, Any]]:
    db = await get_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    docs = []
    async for d in cursor.limit(limit):
        docs.append(to_client(d))
    return docs


async def get_document(collection_name: str, doc_id: str) -> dict[str, Any]:
    db = await get_db()
    doc = await db[collection_name].find_one({"_id": object_id(collection_name, doc_id)})
    if not doc:
        raise NotFound(collection_name, doc_id)
    return to_client(doc)


async def update_document(collection_name: str, doc_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    """Apply ``$set`` and return the document as stored afterwards."""
    db = await get_db()
    updated = await db[collection_name].find_one_and_update(
        {"_id": object_id(collection_name, doc_id)},
        {"$set": {**changes, "updated_at": _utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound(collection_name, doc_id)
    return to_client(updated)


async def delete_document(collection_name: str, doc_id: str) -> None:
    db = await get_db()
    result = await db[collection_name].delete_one({"_id": object_id(collection_name, doc_id)})
    if result.deleted_count == 0:
        raise NotFound(collection_name, doc_id)


async def count_documents(collection_name: str, filter_dict: dict[str, Any] | None = None) -> int:
    db = await get_db()
    return await db[collection_name].count_documents(filter_dict or {})


# Products

async def get_products_by_ids(product_ids: list[str]) -> dict[str, dict[str, Any]]:
    ids = [ObjectId(i) for i in set(product_ids) if ObjectId.is_valid(i)]
    if not ids:
        return {}
    docs = await get_documents("product", {"_id": {"$in": ids}}, limit=len(ids))
    return {d["id"]: d for d in docs}


# Coupons

async def find_coupon(code: str) -> Optional[dict[str, Any]]:
    db = await get_db()
    return to_client(await db["coupon"].find_one({"code": code.strip().upper()}))


async def redeem_coupon(code: str) -> dict[str, Any]:
    """Record one use of ``code`` and return the updated coupon.

    The increment is a single conditional update: it only matches while the
    coupon is active, unexpired and ``used_count`` is below the
    ``usage_limit`` that was read, so concurrent checkouts can never push the
    count past the limit or spend a coupon an admin just disabled.
    """
    db = await get_db()
    code = code.strip().upper()
    while True:
        coupon = await db["coupon"].find_one({"code": code})
        if not coupon:
            raise NotFound("coupon", code)
        now = _utcnow()
        if now >= as_utc(coupon["expiry_date"]):
            raise CouponNotRedeemable(code, EXPIRED)
        if not coupon.get("is_active", True):
            raise CouponNotRedeemable(code, INACTIVE)
        limit = coupon["usage_limit"]
        if coupon["used_count"] >= limit:
            raise UsageLimitExceeded(code, limit)
        updated = await db["coupon"].find_one_and_update(
            {
                "_id": coupon["_id"],
                "is_active": True,
                "expiry_date": {"$gt": now},
                "usage_limit": limit,
                "used_count": {"$lt": limit},
            },
            {"$inc": {"used_count": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if updated:
            logger.info("coupon %s redeemed (%d/%d)", code, updated["used_count"], limit)
            return to_client(updated)
        logger.debug("coupon %s changed during redemption, retrying", code)


async def update_coupon(coupon_id: str, patch: CouponUpdate) -> dict[str, Any]:
    """Merge ``patch`` into the stored coupon and return it.

    The merged record is validated against the ``used_count`` that was read,
    and the write only matches while the stored count still fits under the
    new limit. A redemption landing in between forces a re-read, which then
    fails validation instead of storing ``used_count > usage_limit``.
    """
    db = await get_db()
    oid = object_id("coupon", coupon_id)
    while True:
        doc = await db["coupon"].find_one({"_id": oid})
        if not doc:
            raise NotFound("coupon", coupon_id)
        merged = apply_partial_update(Coupon(**to_client(doc)), patch)
        changes = merged.model_dump(exclude={"id", "created_at", "used_count"})
        changes["updated_at"] = _utcnow()
        updated = await db["coupon"].find_one_and_update(
            {"_id": oid, "used_count": {"$lte": merged.usage_limit}},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated:
            logger.info("coupon %s updated", merged.code)
            return to_client(updated)
        logger.debug("coupon %s changed during update, retrying", coupon_id)



async def release_coupon(code: str) -> None:
    """Give back a use taken by ``redeem_coupon`` when the order fails to save."""
    db = await get_db()
    await db["coupon"].update_one(
        {"code": code.strip().upper(), "used_count": {"$gt": 0}},
        {"$inc": {"used_count": -1}},
    )


# Orders

async def update_order_status(
    order_id: str,
    new_status: OrderStatus,
    tracking_number: Optional[str] = None,
) -> dict[str, Any]:
    """Move an order to ``new_status`` and return the stored order.

    The write is conditional on the status that was validated, so a
    concurrent admin change is re-checked instead of overwritten.
    """
    db = await get_db()
    oid = object_id("order", order_id)
    while True:
        order = await db["order"].find_one({"_id": oid})
        if not order:
            raise NotFound("order", order_id)
        current = order["status"]
        new_status = check_transition(current, new_status)
        changes: dict[str, Any] = {"status": new_status.value, "updated_at": _utcnow()}
        if tracking_number is not None:
            changes["tracking_number"] = tracking_number
        updated = await db["order"].find_one_and_update(
            {"_id": oid, "status": current},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated:
            logger.info("order %s: %s -> %s", order_id, current, new_status.value)
            return to_client(updated)


# Carts, one per session

async def get_cart_lines(session_id: str) -> list[StoredCartLine]:
    db = await get_db()
    cart = await db["cart"].find_one({"session_id": session_id})
    if not cart:
        return []
    return [StoredCartLine(**item) for item in cart.get("items", [])]


async def save_cart_lines(session_id: str, lines: list[StoredCartLine]) -> None:
    db = await get_db()
    await db["cart"].update_one(
        {"session_id": session_id},
        {"$set": {"items": [line.model_dump() for line in lines], "updated_at": _utcnow()}},
        upsert=True,
    )


async def delete_cart(session_id: str) -> None:
    db = await get_db()
    await db["cart"].delete_one({"session_id": session_id})
