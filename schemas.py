"""
Database Schemas for the storefront

Each Pydantic model corresponds to one MongoDB collection (or a document
embedded in one). Collection name is the lowercase of the class name.
Request bodies live in ``request_schemas.py``; these describe what is stored.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CARD = "card"
    COD = "cod"


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: Optional[str] = Field(None, description="bcrypt hash, absent for OAuth-only accounts")
    google_id: Optional[str] = None
    profile_picture: str = ""
    role: Role = Role.USER
    is_active: bool = True
    is_email_verified: bool = False


class Product(BaseModel):
    name: str
    brand: str = ""
    description: str = ""
    price: float = Field(..., ge=0)
    category: str = "General"
    images: List[str] = []
    stock: int = Field(0, ge=0)


class Address(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    """Line item with the product's price captured at purchase time."""

    product: str
    name: str
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    status: OrderStatus
    note: str
    updated_at: datetime


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user: str
    customer_name: str
    customer_email: EmailStr
    items: List[OrderItem]
    shipping_address: Address
    payment_method: PaymentMethod
    payment_intent_id: Optional[str] = None
    subtotal: float
    shipping_cost: float = 0
    tax_price: float = 0
    discount_amount: float = 0
    total_amount: float
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PROCESSING
    status_history: List[StatusHistoryEntry] = []
    is_paid: bool = False
    paid_at: Optional[datetime] = None
