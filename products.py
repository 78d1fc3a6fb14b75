"""Catalog reads, admin product management and product likes."""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List

from bson import ObjectId
from pymongo import ReturnDocument

from database import Database, to_object_id
from errors import ProductNotFound, ValidationError
from schemas import Product as ProductSchema


def _product_id(product_id: str) -> ObjectId:
    pid = to_object_id(product_id)
    if pid is None:
        raise ProductNotFound()
    return pid


def list_products(db: Database) -> List[Dict[str, Any]]:
    return list(db["product"].find())


def search_products(db: Database, query: str) -> List[Dict[str, Any]]:
    if not query:
        raise ValidationError("Search query is required")
    pattern = re.escape(query)
    return list(
        db["product"].find(
            {
                "$or": [
                    {"name": {"$regex": pattern, "$options": "i"}},
                    {"description": {"$regex": pattern, "$options": "i"}},
                ]
            }
        )
    )


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": _product_id(product_id)})
    if not product:
        raise ProductNotFound()
    return product


def create_product(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    product = ProductSchema(**data, createdAt=now, updatedAt=now)
    doc = product.model_dump()
    res = db["product"].insert_one(doc)
    return db["product"].find_one({"_id": res.inserted_id})


def update_product(db: Database, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    pid = _product_id(product_id)
    if not changes:
        raise ValidationError("No fields to update")
    changes = {**changes, "updatedAt": datetime.now(timezone.utc)}
    product = db["product"].find_one_and_update(
        {"_id": pid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not product:
        raise ProductNotFound()
    return product


def delete_product(db: Database, product_id: str) -> None:
    res = db["product"].delete_one({"_id": _product_id(product_id)})
    if res.deleted_count == 0:
        raise ProductNotFound()


def like_product(db: Database, user_id: ObjectId, product_id: str) -> List[ObjectId]:
    pid = get_product(db, product_id)["_id"]
    user = db["user"].find_one_and_update(
        {"_id": user_id, "likedProducts": {"$ne": pid}},
        {"$push": {"likedProducts": pid}},
        projection={"likedProducts": 1},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise ValidationError("Product already liked")
    return user["likedProducts"]


def unlike_product(db: Database, user_id: ObjectId, product_id: str) -> List[ObjectId]:
    pid = get_product(db, product_id)["_id"]
    user = db["user"].find_one_and_update(
        {"_id": user_id, "likedProducts": pid},
        {"$pull": {"likedProducts": pid}},
        projection={"likedProducts": 1},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise ValidationError("Product has not been liked")
    return user["likedProducts"]
