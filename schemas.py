"""
Database Schemas for the E-commerce Backend

Each Pydantic model corresponds to one collection.
Collection name is the lowercase of the class name ("order_item" for OrderItem).
"""
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, StrictInt


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    role: Literal["customer", "admin"] = "customer"


class Product(BaseModel):
    name: str
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, decimal_places=2)
    stock: int = Field(0, ge=0)
    image_url: Optional[str] = None
    is_active: bool = True


class Order(BaseModel):
    user_id: str
    total_amount: Decimal = Field(..., ge=0)
    status: str = "pending"
    payment_method: str = "manual_transfer"
    shipping_address: str


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(..., ge=0, description="Unit price at time of purchase")


# Request-scoped shapes, never persisted

class Caller(BaseModel):
    id: str
    email: Optional[str] = None
    role: str


class CartLine(BaseModel):
    product_id: str
    quantity: StrictInt


class CartRequest(BaseModel):
    items: List[CartLine] = []
    shipping_address: Optional[str] = None
    payment_method: Optional[str] = None


class OrderPlaced(BaseModel):
    order_id: str
    total: Decimal
