"""Order placement, lookup and fulfillment flags."""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo import ReturnDocument

from database import Database, to_object_id
from errors import Forbidden, OrderNotFound, ValidationError
from schemas import Order as OrderSchema

logger = structlog.get_logger(__name__)

# Fulfillment flag -> timestamp stamped when the flag becomes true
FULFILLMENT_FIELDS = {"isPaid": "paidAt", "isDelivered": "deliveredAt"}


def _order_id(order_id: str) -> ObjectId:
    oid = to_object_id(order_id)
    if oid is None:
        raise OrderNotFound()
    return oid


def create_order(db: Database, user_id: ObjectId, data: Dict[str, Any]) -> Dict[str, Any]:
    """Store a snapshot of the purchased items for the user."""
    for item in data.get("orderItems", []):
        if to_object_id(item.get("product")) is None:
            raise ValidationError(
                "Invalid product reference",
                errors=[{"field": "orderItems.product", "message": "Invalid product id"}],
            )
    now = datetime.now(timezone.utc)
    order = OrderSchema(user=user_id, **data, createdAt=now, updatedAt=now)
    doc = order.model_dump(exclude_none=True)
    for item in doc["orderItems"]:
        item["product"] = ObjectId(item["product"])
    res = db["order"].insert_one(doc)
    logger.info("Order placed", user_id=str(user_id), order_id=str(res.inserted_id), total=order.totalPrice)
    return db["order"].find_one({"_id": res.inserted_id})


def list_orders(db: Database, user_id: ObjectId) -> List[Dict[str, Any]]:
    return list(db["order"].find({"user": user_id}))


def get_order(db: Database, user_id: ObjectId, order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": _order_id(order_id)})
    if not order:
        raise OrderNotFound()
    if order["user"] != user_id:
        raise Forbidden("Unauthorized")
    return order


def search_orders(db: Database, user_id: ObjectId, query: str) -> List[Dict[str, Any]]:
    if not query:
        raise ValidationError("Search query is required")
    pattern = {"$regex": re.escape(query), "$options": "i"}
    fields = [
        "orderItems.name",
        "paymentMethod",
        "shippingAddress.address",
        "shippingAddress.city",
        "shippingAddress.postalCode",
        "shippingAddress.country",
    ]
    return list(db["order"].find({"user": user_id, "$or": [{f: pattern} for f in fields]}))


def list_all_orders(db: Database) -> List[Dict[str, Any]]:
    """All orders with the owning user's name and email attached."""
    orders = list(db["order"].find())
    user_ids = list({o["user"] for o in orders})
    users = {
        u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})
    } if user_ids else {}
    for order in orders:
        order["user"] = users.get(order["user"], order["user"])
    return orders


def set_fulfillment(
    db: Database, order_id: str, is_paid: Optional[bool] = None, is_delivered: Optional[bool] = None
) -> Dict[str, Any]:
    """Apply the given fulfillment flags independently.

    A flag set to true stamps its timestamp; set to false removes it.
    A flag left as None is not touched.
    """
    oid = _order_id(order_id)
    now = datetime.now(timezone.utc)
    to_set: Dict[str, Any] = {}
    to_unset: Dict[str, str] = {}
    for flag, value in (("isPaid", is_paid), ("isDelivered", is_delivered)):
        if value is None:
            continue
        stamp = FULFILLMENT_FIELDS[flag]
        to_set[flag] = bool(value)
        if value:
            to_set[stamp] = now
        else:
            to_unset[stamp] = ""

    if not to_set:
        order = db["order"].find_one({"_id": oid})
    else:
        to_set["updatedAt"] = now
        update: Dict[str, Any] = {"$set": to_set}
        if to_unset:
            update["$unset"] = to_unset
        order = db["order"].find_one_and_update({"_id": oid}, update, return_document=ReturnDocument.AFTER)
    if not order:
        raise OrderNotFound()
    logger.info("Order fulfillment updated", order_id=order_id, is_paid=is_paid, is_delivered=is_delivered)
    return order
