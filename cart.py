import logging
from typing import Dict, List, Optional

from bson import ObjectId

from database import now, to_object_id
from errors import NotFound, ValidationError
from schemas import Cart, CartItem, WarrantyOption

logger = logging.getLogger(__name__)

LAPTOP_SUMMARY = {"name": 1, "brand": 1, "images": 1, "price": 1, "stock": 1}


def empty_cart(user_id: str) -> dict:
    return {"user_id": user_id, "items": [], "total_items": 0, "subtotal": 0}


def cart_totals(items: List[dict]) -> Dict[str, float]:
    total_items = sum(i["quantity"] for i in items)
    subtotal = sum(
        i["price"] * i["quantity"] + (i.get("warranty_option") or {}).get("price", 0) * i["quantity"]
        for i in items
    )
    return {"total_items": total_items, "subtotal": round(subtotal, 2)}


def _laptop_summaries(db, items: List[dict]) -> Dict[str, dict]:
    oids = [ObjectId(i["laptop_id"]) for i in items if ObjectId.is_valid(i["laptop_id"])]
    summaries = {}
    for laptop in db["laptop"].find({"_id": {"$in": oids}}, LAPTOP_SUMMARY):
        laptop_id = str(laptop.pop("_id"))
        laptop["id"] = laptop_id
        laptop["is_available"] = laptop["stock"] > 0
        summaries[laptop_id] = laptop
    return summaries


def reconcile(db, cart: dict) -> dict:
    """Drop lines for missing or unavailable laptops, clamp quantities to stock.

    The cleaned item list is persisted when anything changed. Returns the cart
    as served to the client, with laptop summaries and computed totals.
    """
    laptops = _laptop_summaries(db, cart.get("items", []))
    kept = []
    modified = False
    for item in cart.get("items", []):
        laptop = laptops.get(item["laptop_id"])
        if laptop is None or not laptop["is_available"]:
            modified = True
            continue
        if laptop["stock"] < item["quantity"]:
            item = {**item, "quantity": laptop["stock"]}
            modified = True
        kept.append(item)

    if modified:
        db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": kept, "updated_at": now()}})
        logger.info("Reconciled cart of user %s: %d -> %d items",
                    cart["user_id"], len(cart.get("items", [])), len(kept))

    return {
        "id": str(cart["_id"]),
        "user_id": cart["user_id"],
        "items": [{**i, "laptop": laptops[i["laptop_id"]]} for i in kept],
        **cart_totals(kept),
    }


def get_cart(db, user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return empty_cart(user_id)
    return reconcile(db, cart)


def _available_laptop(db, laptop_id: str) -> dict:
    laptop = db["laptop"].find_one({"_id": to_object_id(laptop_id, "laptop")})
    if not laptop:
        raise NotFound(f"Laptop not found with id of {laptop_id}")
    if laptop["stock"] <= 0:
        raise ValidationError("Laptop is not available")
    return laptop


def add_item(db, user_id: str, laptop_id: str, quantity: int = 1,
             warranty_option: Optional[WarrantyOption] = None) -> dict:
    laptop = _available_laptop(db, laptop_id)
    if laptop["stock"] < quantity:
        raise ValidationError(f"Insufficient stock. Available: {laptop['stock']}")
    warranty = (warranty_option or WarrantyOption()).model_dump()

    # one cart per user, created on first add
    db["cart"].update_one(
        {"user_id": user_id},
        {"$setOnInsert": {**Cart(user_id=user_id).model_dump(exclude={"user_id"}), "created_at": now()}},
        upsert=True,
    )
    cart = db["cart"].find_one({"user_id": user_id})

    items = cart.get("items", [])
    laptop_key = str(laptop["_id"])
    for it in items:
        if it["laptop_id"] == laptop_key:
            new_quantity = it["quantity"] + quantity
            if new_quantity > laptop["stock"]:
                raise ValidationError(f"Cannot add more units. Maximum available: {laptop['stock']}")
            it["quantity"] = new_quantity
            it["warranty_option"] = warranty
            break
    else:
        item = CartItem(
            id=str(ObjectId()),
            laptop_id=laptop_key,
            quantity=quantity,
            price=laptop["price"],
            warranty_option=warranty,
        )
        items.append(item.model_dump())

    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": now()}})
    return get_cart(db, user_id)


def _user_cart(db, user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise NotFound("Cart not found")
    return cart


def update_item(db, user_id: str, item_id: str, quantity: Optional[int] = None,
                warranty_option: Optional[WarrantyOption] = None) -> dict:
    cart = _user_cart(db, user_id)
    items = cart.get("items", [])
    item = next((i for i in items if i["id"] == item_id), None)
    if item is None:
        raise NotFound("Item not found in cart")

    laptop = db["laptop"].find_one({"_id": to_object_id(item["laptop_id"], "laptop")})
    if not laptop:
        raise NotFound("Laptop no longer exists")
    if laptop["stock"] <= 0:
        raise ValidationError("Laptop is not available")
    if quantity is not None and laptop["stock"] < quantity:
        raise ValidationError(f"Insufficient stock. Available: {laptop['stock']}")

    if quantity is not None:
        item["quantity"] = quantity
    if warranty_option is not None:
        item["warranty_option"] = warranty_option.model_dump()
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": now()}})
    return get_cart(db, user_id)


def remove_item(db, user_id: str, item_id: str) -> dict:
    cart = _user_cart(db, user_id)
    items = [i for i in cart.get("items", []) if i["id"] != item_id]
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": now()}})
    return get_cart(db, user_id)


def clear_cart(db, user_id: str) -> None:
    db["cart"].delete_one({"user_id": user_id})
