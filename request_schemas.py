"""Request bodies accepted by the API.

These are the boundary contract, validated before anything touches the
database. Unknown fields (a client-computed total, say) are ignored.
"""
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from schemas import Address, OrderStatus, PaymentMethod, Product


class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class GoogleUserInfo(BaseModel):
    sub: str = Field(..., min_length=1)
    email: EmailStr
    name: Optional[str] = None
    picture: Optional[str] = None


class GoogleAuthBody(BaseModel):
    access_token: str = Field(..., min_length=1)
    user_info: GoogleUserInfo


class ProductCreateBody(Product):
    pass


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)


class CartItem(BaseModel):
    product: str = Field(..., min_length=1, description="Product id")
    quantity: int = Field(..., ge=1)


class OrderCreateBody(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)
    shipping_address: Address
    payment_method: PaymentMethod = PaymentMethod.CARD
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    shipping_cost: float = Field(0, ge=0)
    tax_price: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)


class PaymentStatusBody(BaseModel):
    order_id: str
    payment_intent_id: str
    status: Optional[str] = None


class OrderStatusBody(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
