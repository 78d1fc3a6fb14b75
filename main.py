import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, HttpUrl, StrictBool
from pymongo.errors import PyMongoError

import admin as admin_ops
import auth
import carts
import orders
import products
from config import Settings, load_settings
from database import Database, serialize_doc, to_object_id
from errors import Forbidden, InternalError, ShopError, Unauthenticated
from log_config import configure_logging
from schemas import OrderItem, PaymentResult, ShippingAddress

logger = structlog.get_logger(__name__)


# Auth models
class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    isAdmin: Optional[StrictBool] = None
    avatarUrl: Optional[HttpUrl] = None


class LoginInput(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class RegisterResponse(BaseModel):
    userId: str
    token: str


class TokenResponse(BaseModel):
    token: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    avatarUrl: Optional[HttpUrl] = None


# Cart models
class CartItemInput(BaseModel):
    productId: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class CartQuantityInput(BaseModel):
    quantity: int = Field(..., gt=0)


# Products
class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    countInStock: int = Field(..., ge=0)
    imageUrl: HttpUrl


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    countInStock: Optional[int] = Field(None, ge=0)
    imageUrl: Optional[HttpUrl] = None


# Orders
class OrderIn(BaseModel):
    orderItems: List[OrderItem] = Field(..., min_length=1)
    shippingAddress: ShippingAddress
    paymentMethod: str = Field(..., min_length=1)
    paymentResult: Optional[PaymentResult] = None
    taxPrice: float = Field(..., ge=0)
    shippingPrice: float = Field(..., ge=0)
    totalPrice: float = Field(..., ge=0)


class FulfillmentInput(BaseModel):
    isPaid: Optional[StrictBool] = None
    isDelivered: Optional[StrictBool] = None


class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    isAdmin: Optional[StrictBool] = None


# Dependencies

def get_db(request: Request) -> Database:
    return request.app.state.database


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _bearer_token(authorization: Optional[str], x_auth_token: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1]
    return x_auth_token or None


def _resolve_user(db: Database, settings: Settings, token: str) -> Dict[str, Any]:
    payload = auth.decode_token(token, settings)
    user_id = to_object_id(payload.get("sub"))
    if user_id is None:
        raise Unauthenticated("Token is not valid")
    # Role is read from the stored user, not from the token claims
    user = db["user"].find_one({"_id": user_id}, {"password": 0})
    if not user:
        raise Unauthenticated("User not found")
    return user


def get_current_user(
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    authorization: Optional[str] = Header(default=None),
    x_auth_token: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    token = _bearer_token(authorization, x_auth_token)
    if not token:
        raise Unauthenticated()
    return _resolve_user(db, settings, token)


def get_optional_user(
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    authorization: Optional[str] = Header(default=None),
    x_auth_token: Optional[str] = Header(default=None),
) -> Optional[Dict[str, Any]]:
    token = _bearer_token(authorization, x_auth_token)
    if not token:
        return None
    try:
        return _resolve_user(db, settings, token)
    except Unauthenticated:
        # Stale or invalid credentials count as anonymous here
        return None


def require_admin(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not current_user.get("isAdmin"):
        raise Forbidden("Admin resources access denied")
    return current_user


# Error handlers

async def shop_error_handler(request: Request, exc: ShopError):
    if getattr(exc, "errors", None):
        return JSONResponse(status_code=exc.status_code, content={"errors": exc.errors})
    return JSONResponse(status_code=exc.status_code, content={"msg": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return JSONResponse(status_code=400, content={"errors": errors})


async def server_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=exc)
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content={"msg": error.message})


@asynccontextmanager
async def lifespan(app: FastAPI):
    database: Database = app.state.database
    database.open()
    try:
        database.ensure_indexes()
    except PyMongoError as e:
        logger.warning("Could not ensure indexes", error=str(e))
    yield
    database.close()


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings)

    app = FastAPI(title="Shop API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database or Database(
        settings.database_url, settings.database_name, timeout_ms=settings.db_timeout_ms
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PyMongoError, server_error_handler)
    app.add_exception_handler(Exception, server_error_handler)

    app.include_router(router)
    return app


router = APIRouter()


# Routes
@router.get("/")
def read_root():
    return {"message": "Shop API"}


@router.get("/test")
def test_database(db: Database = Depends(get_db)):
    return {"backend": "Running", **db.ping()}


# Auth
@router.post("/api/auth/register", response_model=RegisterResponse)
def register(
    payload: RegisterInput,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    current_user: Optional[dict] = Depends(get_optional_user),
):
    if payload.isAdmin and not (current_user and current_user.get("isAdmin")):
        raise Forbidden("Only an admin can create admin accounts")
    result = auth.register(
        db,
        settings,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        is_admin=bool(payload.isAdmin),
        avatar_url=str(payload.avatarUrl) if payload.avatarUrl else None,
    )
    return RegisterResponse(**result)


@router.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginInput, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return TokenResponse(token=auth.login(db, settings, payload.email, payload.password))


@router.get("/api/auth/me")
def me(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(auth.get_profile(db, current_user["_id"]))


@router.put("/api/auth/me")
def update_me(
    data: ProfileUpdate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = auth.update_profile(
        db,
        settings,
        current_user["_id"],
        name=data.name,
        email=data.email,
        password=data.password,
        avatar_url=str(data.avatarUrl) if data.avatarUrl else None,
    )
    return serialize_doc(user)


@router.delete("/api/auth/profile")
def delete_profile(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    auth.delete_account(db, current_user["_id"])
    return {"msg": "User deleted successfully"}


# Products
@router.get("/api/products")
def list_products(db: Database = Depends(get_db)):
    return [serialize_doc(p) for p in products.list_products(db)]


@router.get("/api/products/search")
def search_products(query: Optional[str] = None, db: Database = Depends(get_db)):
    return [serialize_doc(p) for p in products.search_products(db, query or "")]


@router.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return serialize_doc(products.get_product(db, product_id))


@router.post("/api/products/like/{product_id}")
def like_product(product_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return [str(p) for p in products.like_product(db, current_user["_id"], product_id)]


@router.post("/api/products/unlike/{product_id}")
def unlike_product(product_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return [str(p) for p in products.unlike_product(db, current_user["_id"], product_id)]


# Cart
@router.get("/api/cart")
def get_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(carts.get_cart(db, current_user["_id"]))


@router.post("/api/cart")
def add_to_cart(
    item: CartItemInput,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    cart = carts.add_item(
        db, current_user["_id"], item.productId, item.quantity, attempts=settings.cart_write_attempts
    )
    return serialize_doc(cart)


@router.put("/api/cart/{product_id}")
def update_cart_item(
    product_id: str,
    data: CartQuantityInput,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return serialize_doc(carts.set_item_quantity(db, current_user["_id"], product_id, data.quantity))


@router.delete("/api/cart/{product_id}")
def remove_cart_item(product_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(carts.remove_item(db, current_user["_id"], product_id))


@router.delete("/api/cart")
def clear_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    carts.clear_cart(db, current_user["_id"])
    return {"msg": "Cart cleared"}


# Orders
@router.post("/api/orders", status_code=201)
def create_order(data: OrderIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(orders.create_order(db, current_user["_id"], data.model_dump()))


@router.get("/api/orders")
def list_orders(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return [serialize_doc(o) for o in orders.list_orders(db, current_user["_id"])]


@router.get("/api/orders/search")
def search_orders(
    query: Optional[str] = None, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)
):
    return [serialize_doc(o) for o in orders.search_orders(db, current_user["_id"], query or "")]


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(orders.get_order(db, current_user["_id"], order_id))


# Admin
@router.post("/api/admin/products", status_code=201)
def admin_create_product(data: ProductIn, _: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return serialize_doc(products.create_product(db, data.model_dump(mode="json")))


@router.put("/api/admin/products/{product_id}")
def admin_update_product(
    product_id: str, data: ProductUpdate, _: dict = Depends(require_admin), db: Database = Depends(get_db)
):
    changes = data.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    return serialize_doc(products.update_product(db, product_id, changes))


@router.delete("/api/admin/products/{product_id}")
def admin_delete_product(product_id: str, _: dict = Depends(require_admin), db: Database = Depends(get_db)):
    products.delete_product(db, product_id)
    return {"msg": "Product removed"}


@router.get("/api/admin/users")
def admin_list_users(_: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return [serialize_doc(u) for u in admin_ops.list_users(db)]


@router.put("/api/admin/users/{user_id}")
def admin_update_user(
    user_id: str, data: AdminUserUpdate, _: dict = Depends(require_admin), db: Database = Depends(get_db)
):
    return serialize_doc(admin_ops.update_user(db, user_id, data.model_dump(exclude_unset=True)))


@router.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, _: dict = Depends(require_admin), db: Database = Depends(get_db)):
    admin_ops.delete_user(db, user_id)
    return {"msg": "User removed"}


@router.get("/api/admin/orders")
def admin_list_orders(_: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return [serialize_doc(o) for o in orders.list_all_orders(db)]


@router.put("/api/admin/orders/{order_id}")
def admin_set_fulfillment(
    order_id: str, data: FulfillmentInput, _: dict = Depends(require_admin), db: Database = Depends(get_db)
):
    order = orders.set_fulfillment(db, order_id, is_paid=data.isPaid, is_delivered=data.isDelivered)
    return serialize_doc(order)


@router.get("/api/admin/dashboard")
def admin_dashboard(_: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return admin_ops.dashboard(db)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
