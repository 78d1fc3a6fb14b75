"""Administrative user management and store statistics."""

from datetime import datetime, timezone
from typing import Any, Dict, List

import structlog
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import normalize_email
from database import Database, to_object_id
from errors import DuplicateIdentity, UserNotFound, ValidationError

logger = structlog.get_logger(__name__)


def list_users(db: Database) -> List[Dict[str, Any]]:
    return list(db["user"].find({}, {"password": 0}))


def update_user(db: Database, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Update name, email or role of any user."""
    uid = to_object_id(user_id)
    if uid is None:
        raise UserNotFound()
    changes = {k: v for k, v in changes.items() if k in ("name", "email", "isAdmin") and v is not None}
    if not changes:
        raise ValidationError("No fields to update")
    if "email" in changes:
        changes["email"] = normalize_email(changes["email"])
        if db["user"].find_one({"email": changes["email"], "_id": {"$ne": uid}}, {"_id": 1}):
            raise DuplicateIdentity("Email already in use")
    changes["updatedAt"] = datetime.now(timezone.utc)
    try:
        user = db["user"].find_one_and_update(
            {"_id": uid},
            {"$set": changes},
            projection={"password": 0},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise DuplicateIdentity("Email already in use")
    if not user:
        raise UserNotFound()
    if "isAdmin" in changes:
        logger.info("User role changed", user_id=user_id, is_admin=changes["isAdmin"])
    return user


def delete_user(db: Database, user_id: str) -> None:
    uid = to_object_id(user_id)
    if uid is None or not db["user"].find_one_and_delete({"_id": uid}):
        raise UserNotFound()
    db["cart"].delete_many({"user": uid})
    logger.info("User removed by admin", user_id=user_id)


def dashboard(db: Database) -> Dict[str, Any]:
    revenue = list(
        db["order"].aggregate(
            [
                {"$match": {"isPaid": True}},
                {"$group": {"_id": None, "total": {"$sum": "$totalPrice"}}},
            ]
        )
    )
    return {
        "productCount": db["product"].count_documents({}),
        "userCount": db["user"].count_documents({}),
        "orderCount": db["order"].count_documents({}),
        "revenue": revenue[0]["total"] if revenue else 0,
    }
