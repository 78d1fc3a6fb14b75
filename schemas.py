"""
Database Schemas

Pydantic models describing the documents stored in MongoDB.
Each top-level model maps to a collection named after the lowercase class name:
- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"

References between documents are stored as ObjectIds. Cart items and order
items are embedded sub-documents.
"""

from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class User(Document):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Lowercase email address, unique")
    password: str = Field(..., description="BCrypt password hash")
    isAdmin: bool = Field(False, description="Administrator role flag")
    cart: Optional[ObjectId] = Field(None, description="The user's cart")
    likedProducts: List[ObjectId] = Field(default_factory=list)
    avatarUrl: Optional[str] = None


class Product(Document):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    countInStock: int = Field(..., ge=0)
    imageUrl: str


class CartItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    product: ObjectId
    quantity: int = Field(..., ge=1)


class Cart(Document):
    user: ObjectId
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    name: str = Field(..., min_length=1)
    qty: int = Field(..., ge=1)
    image: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    product: str = Field(..., description="Product id at order time")


class ShippingAddress(BaseModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postalCode: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


class Order(Document):
    user: ObjectId
    orderItems: List[OrderItem]
    shippingAddress: ShippingAddress
    paymentMethod: str = Field(..., min_length=1)
    paymentResult: Optional[PaymentResult] = None
    taxPrice: float = Field(0.0, ge=0)
    shippingPrice: float = Field(0.0, ge=0)
    totalPrice: float = Field(0.0, ge=0)
    isPaid: bool = False
    isDelivered: bool = False
