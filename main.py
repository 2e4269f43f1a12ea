import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, model_validator
from pymongo.errors import ConnectionFailure

import cart as carts
import catalog
import categories
import database
import inventory
import reviews
from auth import get_current_user, login_user, public_user, register_user, require_admin
from database import ensure_indexes, get_db
from errors import ValidationError, register_exception_handlers
from schemas import (
    LaptopBrand,
    LaptopType,
    PaymentMethod,
    PaymentResult,
    ShippingAddress,
    ShippingMethod,
    ShippingOption,
    WarrantyOption,
)

# Config
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ENVIRONMENT = os.getenv("ENVIRONMENT", os.getenv("NODE_ENV", "development"))
CLIENT_URLS = [u.strip() for u in os.getenv("CLIENT_URL", "http://localhost:5173").split(",") if u.strip()]
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "public", "uploads"))
UPLOAD_KINDS = ("laptops", "categories", "reviews", "users")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("techhaven")

for kind in UPLOAD_KINDS:
    os.makedirs(os.path.join(UPLOAD_DIR, kind), exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            ensure_indexes(database.db)
            logger.info("Connected to database %s", database.db.name)
        except ConnectionFailure as e:
            logger.error("Could not reach database %s: %s", database.db.name, e)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, API will answer 503")
    yield


app = FastAPI(title="TechHaven API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CLIENT_URLS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

register_exception_handlers(app)

app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# Routes
@app.get("/")
def read_root():
    return {
        "message": "Welcome to TechHaven API",
        "version": app.version,
        "routes": {
            "auth": "/api/auth",
            "laptops": "/api/laptops",
            "orders": "/api/orders",
            "categories": "/api/categories",
            "reviews": "/api/reviews",
            "cart": "/api/cart",
            "health": "/health",
        },
    }


@app.get("/health")
def health():
    response = {
        "status": "ok",
        "message": "TechHaven API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": ENVIRONMENT,
        "database": "disconnected",
    }
    try:
        if database.db is not None:
            database.db.list_collection_names()
            response["database"] = "connected"
    except Exception as e:
        response["database"] = f"error: {str(e)[:80]}"
    return response


# Update bodies
class PartialUpdate(BaseModel):
    """Body of a PUT: omitted fields are left alone, null is only accepted for
    the fields listed in ``nullable``."""
    nullable: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="after")
    def reject_nulls(self):
        nulls = sorted(f for f in self.model_fields_set if getattr(self, f) is None and f not in self.nullable)
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


# Auth models
class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


# Auth
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterInput, db=Depends(get_db)):
    result = register_user(db, payload.name, payload.email, payload.password)
    return {"success": True, "message": "User registered successfully", **result}


@app.post("/api/auth/login")
def login(payload: LoginInput, db=Depends(get_db)):
    result = login_user(db, payload.email, payload.password)
    return {"success": True, "message": "Login successful", **result}


@app.get("/api/auth/profile")
def profile(current_user: dict = Depends(get_current_user)):
    return {"success": True, "user": public_user(current_user)}


@app.get("/api/auth/test")
def test_token(current_user: dict = Depends(get_current_user)):
    return {"success": True, "message": "Token is valid", "user": public_user(current_user)}


@app.get("/api/auth/admin")
def admin_access(current_user: dict = Depends(require_admin)):
    return {"success": True, "message": "Admin access granted"}


# Laptops
class LaptopIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
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
    images: List[str] = Field(..., min_length=1)
    features: List[str] = Field(..., min_length=1)
    category_id: Optional[str] = None
    is_featured: bool = False
    warranty_options: List[WarrantyOption] = []
    shipping_options: List[ShippingOption] = []


class LaptopUpdate(PartialUpdate):
    nullable = frozenset({
        "type", "processor", "ram", "storage", "graphics", "display", "resolution", "battery", "connectivity",
        "ports", "weight", "dimensions", "operating_system", "color", "description", "discount_price", "category_id",
    })

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    brand: Optional[LaptopBrand] = None
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
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = Field(None, min_length=1)
    features: Optional[List[str]] = Field(None, min_length=1)
    category_id: Optional[str] = None
    is_featured: Optional[bool] = None
    warranty_options: Optional[List[WarrantyOption]] = None
    shipping_options: Optional[List[ShippingOption]] = None


@app.get("/api/laptops")
def list_laptops(request: Request, db=Depends(get_db)):
    return catalog.list_laptops(db, request.query_params)


@app.get("/api/laptops/featured")
def featured_laptops(limit: int = 8, db=Depends(get_db)):
    return catalog.featured_laptops(db, limit)


@app.get("/api/laptops/top-rated")
def top_rated_laptops(limit: int = 5, db=Depends(get_db)):
    return catalog.top_rated_laptops(db, limit)


@app.get("/api/laptops/category/{category_id}")
def laptops_by_category(category_id: str, db=Depends(get_db)):
    return catalog.laptops_by_category(db, category_id)


@app.get("/api/laptops/slug/{slug}")
def get_laptop_by_slug(slug: str, db=Depends(get_db)):
    return catalog.get_laptop_by_slug(db, slug)


@app.post("/api/laptops", status_code=201)
def create_laptop(data: LaptopIn, current_user: dict = Depends(require_admin), db=Depends(get_db)):
    return catalog.create_laptop(db, data.model_dump())


@app.get("/api/laptops/{laptop_id}")
def get_laptop(laptop_id: str, db=Depends(get_db)):
    return catalog.get_laptop(db, laptop_id)


@app.put("/api/laptops/{laptop_id}")
def update_laptop(laptop_id: str, data: LaptopUpdate, current_user: dict = Depends(require_admin),
                  db=Depends(get_db)):
    return catalog.update_laptop(db, laptop_id, data.model_dump(exclude_unset=True))


@app.delete("/api/laptops/{laptop_id}")
def delete_laptop(laptop_id: str, current_user: dict = Depends(require_admin), db=Depends(get_db)):
    catalog.delete_laptop(db, laptop_id)
    return {"success": True, "message": "Laptop removed successfully"}


@app.get("/api/laptops/{laptop_id}/related")
def related_laptops(laptop_id: str, limit: int = 4, db=Depends(get_db)):
    return catalog.related_laptops(db, laptop_id, limit)


# Reviews
class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    pros: List[str] = []
    cons: List[str] = []


class ReviewUpdate(PartialUpdate):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    comment: Optional[str] = Field(None, min_length=1, max_length=1000)
    pros: Optional[List[str]] = None
    cons: Optional[List[str]] = None


class ApprovalInput(BaseModel):
    is_approved: Optional[bool] = None


@app.get("/api/laptops/{laptop_id}/reviews")
def laptop_reviews(laptop_id: str, db=Depends(get_db)):
    return reviews.list_laptop_reviews(db, laptop_id)


@app.post("/api/laptops/{laptop_id}/reviews", status_code=201)
def add_review(laptop_id: str, data: ReviewIn, current_user: dict = Depends(get_current_user),
               db=Depends(get_db)):
    return reviews.create_review(db, current_user, laptop_id, data.model_dump())


@app.get("/api/reviews/user")
def my_reviews(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return reviews.list_user_reviews(db, current_user["id"])


@app.get("/api/reviews/{review_id}")
def get_review(review_id: str, db=Depends(get_db)):
    return reviews.get_review(db, review_id)


@app.put("/api/reviews/{review_id}")
def update_review(review_id: str, data: ReviewUpdate, current_user: dict = Depends(get_current_user),
                  db=Depends(get_db)):
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    return reviews.update_review(db, review_id, current_user, changes)


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    reviews.delete_review(db, review_id, current_user)
    return {"success": True, "message": "Review removed successfully"}


@app.put("/api/reviews/{review_id}/vote")
def vote_review(review_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return reviews.vote_helpful(db, review_id)


@app.put("/api/reviews/{review_id}/approve")
def approve_review(review_id: str, data: ApprovalInput, current_user: dict = Depends(require_admin),
                   db=Depends(get_db)):
    if data.is_approved is None:
        raise ValidationError("Please provide is_approved status")
    return reviews.set_approval(db, review_id, data.is_approved)


# Categories
class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None
    is_active: bool = True
    featured: bool = False
    display_order: int = 0
    parent_id: Optional[str] = None


class CategoryUpdate(PartialUpdate):
    nullable = frozenset({"description", "image", "parent_id"})

    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None
    is_active: Optional[bool] = None
    featured: Optional[bool] = None
    display_order: Optional[int] = None
    parent_id: Optional[str] = None


@app.get("/api/categories")
def list_categories(request: Request, db=Depends(get_db)):
    return categories.list_categories(db, request.query_params)


@app.get("/api/categories/tree")
def category_tree(db=Depends(get_db)):
    return categories.category_tree(db)


@app.get("/api/categories/featured")
def featured_categories(limit: int = 6, db=Depends(get_db)):
    return categories.featured_categories(db, limit)


@app.get("/api/categories/slug/{slug}")
def get_category_by_slug(slug: str, db=Depends(get_db)):
    return categories.get_category_by_slug(db, slug)


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, db=Depends(get_db)):
    return categories.get_category(db, category_id)


@app.post("/api/categories", status_code=201)
def create_category(data: CategoryIn, current_user: dict = Depends(require_admin), db=Depends(get_db)):
    return categories.create_category(db, data.model_dump())


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, data: CategoryUpdate, current_user: dict = Depends(require_admin),
                    db=Depends(get_db)):
    return categories.update_category(db, category_id, data.model_dump(exclude_unset=True))


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, current_user: dict = Depends(require_admin), db=Depends(get_db)):
    categories.delete_category(db, category_id)
    return {"success": True, "message": "Category removed successfully"}


# Cart
class CartItemIn(BaseModel):
    laptop_id: str
    quantity: int = Field(1, ge=1)
    warranty_option: Optional[WarrantyOption] = None


class UpdateCartItem(BaseModel):
    quantity: Optional[int] = Field(None, ge=1)
    warranty_option: Optional[WarrantyOption] = None


@app.get("/api/cart")
def get_cart(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return carts.get_cart(db, current_user["id"])


@app.post("/api/cart")
def add_to_cart(item: CartItemIn, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return carts.add_item(db, current_user["id"], item.laptop_id, item.quantity, item.warranty_option)


@app.put("/api/cart/{item_id}")
def update_cart_item(item_id: str, item: UpdateCartItem, current_user: dict = Depends(get_current_user),
                     db=Depends(get_db)):
    return carts.update_item(db, current_user["id"], item_id, item.quantity, item.warranty_option)


@app.delete("/api/cart/{item_id}")
def remove_cart_item(item_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return carts.remove_item(db, current_user["id"], item_id)


@app.delete("/api/cart")
def clear_cart(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    carts.clear_cart(db, current_user["id"])
    return {"message": "Cart cleared successfully", **carts.empty_cart(current_user["id"])}


# Orders
class OrderItemIn(BaseModel):
    laptop_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    warranty_option: Optional[WarrantyOption] = None


class OrderCreate(BaseModel):
    order_items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    shipping_method: ShippingMethod = "standard"
    tax: float = Field(0, ge=0)
    shipping_cost: float = Field(0, ge=0)
    subtotal: Optional[float] = Field(None, ge=0)
    total_price: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class StatusUpdate(BaseModel):
    status: Optional[str] = None


class ShippingUpdate(BaseModel):
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


@app.get("/api/orders")
def my_orders(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return inventory.list_user_orders(db, current_user["id"])


@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return inventory.create_order(db, current_user["id"], payload)


@app.get("/api/orders/admin")
def all_orders(request: Request, current_user: dict = Depends(require_admin), db=Depends(get_db)):
    return inventory.list_orders(db, request.query_params)


@app.get("/api/orders/count")
def order_count(current_user: dict = Depends(require_admin), db=Depends(get_db)):
    return {"count": inventory.order_count(db)}


@app.get("/api/orders/total-sales")
def total_sales(current_user: dict = Depends(require_admin), db=Depends(get_db)):
    return {"total_sales": inventory.total_sales(db)}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return inventory.get_order(db, order_id, current_user)


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, data: StatusUpdate, current_user: dict = Depends(require_admin),
                        db=Depends(get_db)):
    if not data.status:
        raise ValidationError("Please provide status")
    return inventory.update_order_status(db, order_id, data.status)


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    return inventory.cancel_order(db, order_id, current_user)


@app.put("/api/orders/{order_id}/pay")
def pay_order(order_id: str, data: PaymentResult, current_user: dict = Depends(require_admin),
              db=Depends(get_db)):
    payment: Dict[str, Any] = data.model_dump(exclude_none=True)
    return inventory.mark_paid(db, order_id, payment or None)


@app.put("/api/orders/{order_id}/shipping")
def update_shipping(order_id: str, data: ShippingUpdate, current_user: dict = Depends(require_admin),
                    db=Depends(get_db)):
    return inventory.update_shipping(db, order_id, data.tracking_number, data.estimated_delivery)


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, current_user: dict = Depends(require_admin), db=Depends(get_db)):
    inventory.delete_order(db, order_id)
    return {"success": True, "message": "Order removed"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
