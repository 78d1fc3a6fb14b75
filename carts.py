"""Cart operations.

A user owns at most one cart document, keyed by ``user`` (unique index).
Every mutation is a single atomic update on that document, so concurrent
requests for the same user cannot overwrite each other's changes.
"""

from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import Database, to_object_id
from errors import CartNotFound, Conflict, ItemNotFound, ProductNotFound, ValidationError
from schemas import Cart as CartSchema, CartItem

logger = structlog.get_logger(__name__)


def _check_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError(
            "Quantity must be a positive integer",
            errors=[{"field": "quantity", "message": "Quantity must be a positive integer"}],
        )
    return quantity


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    """Return the user's cart with each item's product document attached."""
    cart = db["cart"].find_one({"user": user_id})
    if not cart:
        raise CartNotFound()
    product_ids = [it["product"] for it in cart.get("items", [])]
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": product_ids}})} if product_ids else {}
    cart["items"] = [{**it, "product": products.get(it["product"])} for it in cart.get("items", [])]
    return cart


def add_item(db: Database, user_id: ObjectId, product_id: str, quantity: int, attempts: int = 5) -> Dict[str, Any]:
    """Add ``quantity`` of a product to the user's cart.

    An existing line for the product has its quantity increased; otherwise a
    new line is appended. The cart is created when the user has none.
    """
    quantity = _check_quantity(quantity)
    pid = to_object_id(product_id)
    if pid is None or not db["product"].find_one({"_id": pid}, {"_id": 1}):
        raise ProductNotFound()

    carts = db["cart"]
    for _ in range(attempts):
        now = _now()
        cart = carts.find_one_and_update(
            {"user": user_id, "items.product": pid},
            {"$inc": {"items.$.quantity": quantity}, "$set": {"updatedAt": now}},
            return_document=ReturnDocument.AFTER,
        )
        if cart:
            return cart

        line = CartItem(product=pid, quantity=quantity)
        item = line.model_dump()
        cart = carts.find_one_and_update(
            {"user": user_id, "items.product": {"$ne": pid}},
            {"$push": {"items": item}, "$set": {"updatedAt": now}},
            return_document=ReturnDocument.AFTER,
        )
        if cart:
            return cart

        if carts.find_one({"user": user_id}, {"_id": 1}):
            # The line appeared between the two updates; merge into it.
            continue

        doc = {"_id": ObjectId(), **CartSchema(user=user_id, items=[line], createdAt=now, updatedAt=now).model_dump()}
        try:
            carts.insert_one(doc)
        except DuplicateKeyError:
            # Another request created the cart first.
            continue
        db["user"].update_one({"_id": user_id}, {"$set": {"cart": doc["_id"]}})
        logger.info("Cart created", user_id=str(user_id), cart_id=str(doc["_id"]))
        return doc

    logger.warning("Cart update gave up after retries", user_id=str(user_id), attempts=attempts)
    raise Conflict()


def set_item_quantity(db: Database, user_id: ObjectId, product_id: str, quantity: int) -> Dict[str, Any]:
    """Replace the quantity of a line already in the cart."""
    quantity = _check_quantity(quantity)
    pid = to_object_id(product_id)
    cart = None
    if pid is not None:
        cart = db["cart"].find_one_and_update(
            {"user": user_id, "items.product": pid},
            {"$set": {"items.$.quantity": quantity, "updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
    if cart:
        return cart
    if not db["cart"].find_one({"user": user_id}, {"_id": 1}):
        raise CartNotFound()
    raise ItemNotFound()


def remove_item(db: Database, user_id: ObjectId, product_id: str) -> Dict[str, Any]:
    """Drop the line for a product. Removing an absent product is a no-op."""
    pid = to_object_id(product_id)
    if pid is None:
        cart = db["cart"].find_one({"user": user_id})
    else:
        cart = db["cart"].find_one_and_update(
            {"user": user_id},
            {"$pull": {"items": {"product": pid}}, "$set": {"updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
    if not cart:
        raise CartNotFound()
    return cart


def clear_cart(db: Database, user_id: ObjectId) -> None:
    cart = db["cart"].find_one_and_delete({"user": user_id})
    if not cart:
        raise CartNotFound()
    db["user"].update_one({"_id": user_id}, {"$set": {"cart": None}})
    logger.info("Cart cleared", user_id=str(user_id))
