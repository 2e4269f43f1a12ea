"""
Database Schemas

Define your MongoDB collection schemas here using Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name.

References between documents (user_id, laptop_id, category_id, parent_id)
are stored as ObjectId strings.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

LaptopBrand = Literal[
    "Apple", "Dell", "HP", "Lenovo", "Asus", "Acer", "MSI", "Microsoft",
    "Razer", "Samsung", "LG", "Huawei", "Gigabyte", "Other",
]
LaptopType = Literal["Gaming", "Ultrabook", "Business", "2-in-1", "Workstation", "Chromebook", "Everyday"]
PaymentMethod = Literal["credit_card", "paypal", "bank_transfer", "cash_on_delivery"]
ShippingMethod = Literal["standard", "express", "next_day"]
Role = Literal["user", "admin"]


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class User(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field("user", description="Role: user | admin")


class WarrantyOption(BaseModel):
    id: str = "standard"
    name: str = "Standard Warranty"
    duration: Optional[str] = None
    price: float = Field(0, ge=0)
    coverage: Optional[str] = None


class ShippingOption(BaseModel):
    id: str
    name: str
    duration: Optional[str] = None
    price: float = Field(0, ge=0)


class Laptop(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str
    brand: LaptopBrand
    type: Optional[LaptopType] = None
    processor: Optional[str] = None
    ram: Optional[str] = None
    storage: Optional[str] = None
    graphics: Optional[str] = None
    display: Optional[str] = None
    resolution: Optional[str] = None
    battery: Optional[str] = None
    connectivity: Optional[str] = None
    ports: Optional[str] = None
    weight: Optional[str] = None
    dimensions: Optional[str] = None
    operating_system: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(10, ge=0)
    is_available: bool = Field(True, description="Always stock > 0")
    images: List[str] = Field(..., min_length=1)
    features: List[str] = Field(..., min_length=1)
    category_id: Optional[str] = None
    is_featured: bool = False
    warranty_options: List[WarrantyOption] = Field(default_factory=list)
    shipping_options: List[ShippingOption] = Field(default_factory=list)
    average_rating: float = Field(0, ge=0, le=5)
    num_reviews: int = Field(0, ge=0)


class Category(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    slug: str
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None
    is_active: bool = True
    featured: bool = False
    display_order: int = 0
    parent_id: Optional[str] = None


class OrderItem(BaseModel):
    """Line item snapshot, embedded in Order."""
    laptop_id: str
    name: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    warranty_option: Optional[WarrantyOption] = None


class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    order_items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_result: Optional[PaymentResult] = None
    shipping_method: ShippingMethod = "standard"
    subtotal: float = Field(..., ge=0)
    warranty_total: float = Field(0, ge=0)
    tax: float = Field(..., ge=0)
    shipping_cost: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None


class CartItem(BaseModel):
    id: str
    laptop_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Laptop price when added")
    warranty_option: WarrantyOption = Field(default_factory=WarrantyOption)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class Review(BaseModel):
    user_id: str
    laptop_id: str
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    is_verified_purchase: bool = False
    helpful_votes: int = Field(0, ge=0)
    is_approved: bool = True
