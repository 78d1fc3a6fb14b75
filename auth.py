"""Account provisioning, login and profile operations."""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from email_validator import EmailNotValidError, validate_email
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings
from database import Database
from errors import DuplicateIdentity, InvalidCredentials, Unauthenticated, UserNotFound, ValidationError
from schemas import Cart as CartSchema, User as UserSchema

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@lru_cache(maxsize=None)
def _context_for(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def hash_password(password: str, rounds: int = 10) -> str:
    return _context_for(rounds).hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthenticated("Token is not valid")


def issue_token(user: Dict[str, Any], settings: Settings) -> str:
    return create_access_token({"sub": str(user["_id"]), "isAdmin": bool(user.get("isAdmin", False))}, settings)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _check_email(email: str, errors: list) -> None:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        errors.append({"field": "email", "message": "Invalid email address"})


def _validate_registration(name: str, email: str, password: str, avatar_url: Optional[str]) -> None:
    errors = []
    if not name or not name.strip():
        errors.append({"field": "name", "message": "Name is required"})
    _check_email(email, errors)
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        errors.append({"field": "password", "message": "Password must be at least 6 characters long"})
    if avatar_url is not None and not avatar_url.startswith(("http://", "https://", "/")):
        errors.append({"field": "avatarUrl", "message": "Invalid avatar URL"})
    if errors:
        raise ValidationError("Invalid registration", errors=errors)


def register(
    db: Database,
    settings: Settings,
    name: str,
    email: str,
    password: str,
    is_admin: bool = False,
    avatar_url: Optional[str] = None,
) -> Dict[str, str]:
    """Create a user together with its empty cart and return ``{userId, token}``.

    Both identifiers are allocated up front so the user is written with its
    cart reference already in place. If the cart write fails the user is
    deleted again, so callers never observe a user without a cart.
    """
    _validate_registration(name, email, password, avatar_url)
    email = normalize_email(email)

    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise DuplicateIdentity()

    now = datetime.now(timezone.utc)
    user_id, cart_id = ObjectId(), ObjectId()
    user = UserSchema(
        name=name.strip(),
        email=email,
        password=hash_password(password, settings.bcrypt_rounds),
        isAdmin=bool(is_admin),
        cart=cart_id,
        avatarUrl=avatar_url,
        createdAt=now,
        updatedAt=now,
    )
    user_doc = {"_id": user_id, **user.model_dump()}
    try:
        db["user"].insert_one(user_doc)
    except DuplicateKeyError:
        raise DuplicateIdentity()

    cart = CartSchema(user=user_id, createdAt=now, updatedAt=now)
    try:
        db["cart"].insert_one({"_id": cart_id, **cart.model_dump()})
    except PyMongoError:
        logger.error("Cart provisioning failed, removing user", user_id=str(user_id))
        db["user"].delete_one({"_id": user_id})
        raise

    logger.info("User registered", user_id=str(user_id), is_admin=user.isAdmin)
    return {"userId": str(user_id), "token": issue_token(user_doc, settings)}


def login(db: Database, settings: Settings, email: str, password: str) -> str:
    user = db["user"].find_one({"email": normalize_email(email)})
    if not user:
        # Burn the same hashing time as a real check
        pwd_context.dummy_verify()
        raise InvalidCredentials()
    if not verify_password(password, user.get("password", "")):
        raise InvalidCredentials()
    return issue_token(user, settings)


def get_profile(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": user_id}, {"password": 0})
    if not user:
        raise UserNotFound()
    if user.get("cart") is not None:
        user["cart"] = db["cart"].find_one({"_id": user["cart"]})
    return user


def update_profile(
    db: Database,
    settings: Settings,
    user_id: ObjectId,
    name: Optional[str] = None,
    email: Optional[str] = None,
    password: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Dict[str, Any]:
    errors = []
    if name is not None and not name.strip():
        errors.append({"field": "name", "message": "Name cannot be empty"})
    if email is not None:
        _check_email(email, errors)
    if password is not None and len(password) < MIN_PASSWORD_LENGTH:
        errors.append({"field": "password", "message": "Password must be at least 6 characters long"})
    if errors:
        raise ValidationError("Invalid profile update", errors=errors)

    changes: Dict[str, Any] = {}
    if name:
        changes["name"] = name.strip()
    if email:
        changes["email"] = normalize_email(email)
        other = db["user"].find_one({"email": changes["email"], "_id": {"$ne": user_id}}, {"_id": 1})
        if other:
            raise DuplicateIdentity("Email already in use")
    if password:
        changes["password"] = hash_password(password, settings.bcrypt_rounds)
    if avatar_url:
        changes["avatarUrl"] = avatar_url
    changes["updatedAt"] = datetime.now(timezone.utc)

    try:
        user = db["user"].find_one_and_update(
            {"_id": user_id},
            {"$set": changes},
            projection={"password": 0},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise DuplicateIdentity("Email already in use")
    if not user:
        raise UserNotFound()
    return user


def delete_account(db: Database, user_id: ObjectId) -> None:
    """Delete a user and the cart that belongs to it."""
    user = db["user"].find_one_and_delete({"_id": user_id})
    if not user:
        raise UserNotFound()
    db["cart"].delete_many({"user": user_id})
    logger.info("User deleted", user_id=str(user_id))
