"""
Database Schemas for the Storefront API

Each Pydantic model maps to a MongoDB collection (lowercased class name).
References to other documents are stored as ObjectId strings.

Collections:
- user
- category
- product
- cart
- order
- payment
- review
- address
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("Invalid ObjectId")
    return str(ObjectId(value))


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]


class OrderStatus(str, Enum):
    PENDING = "Pending"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    PAID = "Paid"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    first_name: str = Field(..., description="Given name")
    last_name: str = Field(..., description="Family name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    review: List[str] = Field(default_factory=list, description="Review ids")
    address: List[str] = Field(default_factory=list, description="Address ids")
    orders: List[str] = Field(default_factory=list, description="Order ids")
    reset_token_hash: Optional[str] = Field(None, description="SHA-256 of the pending reset token")
    reset_token_expires: Optional[datetime] = None


def full_name(user: dict) -> str:
    return f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "category"
    """
    name: str = Field(..., description="Unique category name")
    description: Optional[str] = Field(None, description="Category description")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., description="Product name")
    description: str = Field(..., description="Product description")
    price: float = Field(..., ge=0, description="Unit price")
    quantity: int = Field(0, ge=0, description="Units in stock")
    category: str = Field(..., description="Category id")
    image: Optional[str] = Field(None, description="Image URL")


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    """
    Carts collection schema
    Collection name: "cart"

    ``user_id`` is None for the shared guest cart.
    """
    user_id: Optional[str] = None
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    items: List[OrderItem]
    total_amount: float
    status: OrderStatus = OrderStatus.PENDING.value
    payment_id: Optional[str] = None


class Payment(BaseModel):
    """
    Payments collection schema
    Collection name: "payment"
    """
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    order_id: str
    amount: float
    payment_method: str = "card"
    status: PaymentStatus = PaymentStatus.PENDING.value


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "review"
    """
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: str = ""
    comment: str = ""


class Address(BaseModel):
    """
    Addresses collection schema
    Collection name: "address"
    """
    user_id: str
    address_line: str
    postal_code: str
    phone: str
