"""
Order lifecycle and inventory consistency.

Stock is only touched through single-document atomic updates:

* checkout reserves each line with ``stock -= qty WHERE stock >= qty AND
  price == snapshot price``; if any line fails, every reservation made so far
  is released before the error propagates, so an order is all-or-nothing;
* cancellation releases (restocks) every line.

Status changes go through transition_updates(), which knows every legal move,
and are written compare-and-set on the current status so that two racing
requests cannot both apply the restock of a cancellation.
"""
import logging
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument

from auth import is_owner_or_admin
from catalog import build_query, paginate
from database import create_document, get_documents, now, serialize_doc, to_object_id
from errors import (
    Forbidden,
    InsufficientStock,
    InvalidState,
    InvalidStatus,
    NotFound,
    PriceMismatch,
    ValidationError,
)
from schemas import Order, OrderItem, OrderStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}
CANCELLABLE = {OrderStatus.PENDING, OrderStatus.PROCESSING}

ORDER_FIELDS = {
    "status": str,
    "user_id": str,
    "payment_method": str,
    "shipping_method": str,
    "is_paid": bool,
    "is_delivered": bool,
    "total_price": float,
}

# (laptop ObjectId, quantity)
Reservation = Tuple[ObjectId, int]


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in OrderStatus)
        raise InvalidStatus(f"Status must be one of: {valid}")


def transition_updates(current: OrderStatus, target: OrderStatus, at) -> Dict:
    """Fields to $set when moving an order from current to target.

    Returns an empty dict for a no-op (target == current) and raises
    InvalidState for any move not in ALLOWED_TRANSITIONS.
    """
    if target == current:
        return {}
    if target not in ALLOWED_TRANSITIONS[current]:
        if target == OrderStatus.CANCELLED:
            raise InvalidState(f"Cannot cancel order in {current.value} status")
        raise InvalidState(f"Cannot change order status from {current.value} to {target.value}")
    updates = {"status": target.value, "updated_at": at}
    if target == OrderStatus.DELIVERED:
        updates["is_delivered"] = True
        updates["delivered_at"] = at
    return updates


# Stock

def release_stock(db, reservations: List[Reservation]) -> None:
    for oid, quantity in reservations:
        res = db["laptop"].update_one(
            {"_id": oid},
            {"$inc": {"stock": quantity}, "$set": {"is_available": True, "updated_at": now()}},
        )
        if res.matched_count == 0:
            logger.warning("Could not restock %s x%d: laptop no longer exists", oid, quantity)
        else:
            logger.info("Restocked laptop %s by %d", oid, quantity)


def _reservation_error(db, oid: ObjectId, quantity: int, price: float):
    laptop = db["laptop"].find_one({"_id": oid})
    if not laptop:
        return NotFound(f"Laptop not found with id of {oid}")
    if laptop["price"] != price:
        return PriceMismatch(f"Price mismatch for {laptop['name']}")
    return InsufficientStock(f"{laptop['name']} has insufficient stock. Available: {laptop['stock']}")


def reserve_stock(db, lines: List[Tuple[ObjectId, int, float]]) -> List[Reservation]:
    """Atomically decrement stock for every (laptop, quantity, price) line, or none."""
    reservations: List[Reservation] = []
    for oid, quantity, price in lines:
        laptop = db["laptop"].find_one_and_update(
            {"_id": oid, "stock": {"$gte": quantity}, "price": price},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if laptop is None:
            error = _reservation_error(db, oid, quantity, price)
            release_stock(db, reservations)
            logger.info("Checkout rejected for laptop %s: %s", oid, error.detail)
            raise error
        reservations.append((oid, quantity))
        if laptop["stock"] <= 0:
            db["laptop"].update_one({"_id": oid, "stock": {"$lte": 0}}, {"$set": {"is_available": False}})
        logger.info("Reserved %d of laptop %s, %d left", quantity, oid, laptop["stock"])
    return reservations


# Orders

def compute_totals(items: List[OrderItem], tax: float, shipping_cost: float) -> Dict[str, float]:
    subtotal = round(sum(i.price * i.quantity for i in items), 2)
    warranty_total = round(
        sum((i.warranty_option.price if i.warranty_option else 0) * i.quantity for i in items), 2
    )
    return {
        "subtotal": subtotal,
        "warranty_total": warranty_total,
        "tax": round(tax, 2),
        "shipping_cost": round(shipping_cost, 2),
        "total_price": round(subtotal + warranty_total + tax + shipping_cost, 2),
    }


def _check_client_totals(payload, totals: Dict[str, float]) -> None:
    for field in ("subtotal", "total_price"):
        sent = getattr(payload, field, None)
        if sent is not None and abs(sent - totals[field]) > 0.01:
            raise ValidationError(f"Order {field} {sent} does not match the computed {totals[field]}")


def _snapshot_items(db, payload) -> List[OrderItem]:
    """Validate every line against the catalog without touching stock."""
    items: List[OrderItem] = []
    requested: Dict[ObjectId, int] = {}
    for line in payload.order_items:
        oid = to_object_id(line.laptop_id, "laptop")
        laptop = db["laptop"].find_one({"_id": oid})
        if not laptop:
            raise NotFound(f"Laptop not found with id of {line.laptop_id}")
        if laptop["price"] != line.price:
            raise PriceMismatch(f"Price mismatch for {laptop['name']}")
        requested[oid] = requested.get(oid, 0) + line.quantity
        if laptop["stock"] < requested[oid]:
            raise InsufficientStock(f"{laptop['name']} has insufficient stock. Available: {laptop['stock']}")
        images = laptop.get("images") or []
        items.append(OrderItem(
            laptop_id=str(oid),
            name=laptop["name"],
            price=laptop["price"],
            image=images[0] if images else None,
            quantity=line.quantity,
            warranty_option=line.warranty_option,
        ))
    return items


def create_order(db, user_id: str, payload) -> dict:
    items = _snapshot_items(db, payload)
    totals = compute_totals(items, payload.tax, payload.shipping_cost)
    _check_client_totals(payload, totals)

    reservations = reserve_stock(db, [(ObjectId(i.laptop_id), i.quantity, i.price) for i in items])
    try:
        order = Order(
            user_id=user_id,
            order_items=items,
            shipping_address=payload.shipping_address,
            payment_method=payload.payment_method,
            shipping_method=payload.shipping_method,
            notes=payload.notes,
            **totals,
        )
        order_id = create_document(db, "order", order)
    except Exception:
        release_stock(db, reservations)
        raise

    db["cart"].delete_one({"user_id": user_id})
    logger.info("Order %s created for user %s (%d items, total %.2f)",
                order_id, user_id, len(items), totals["total_price"])
    return serialize_doc(db["order"].find_one({"_id": ObjectId(order_id)}))


def find_order(db, order_id: str) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id, "order")})
    if not order:
        raise NotFound(f"Order not found with id of {order_id}")
    return order


def get_order(db, order_id: str, user: dict) -> dict:
    order = find_order(db, order_id)
    if not is_owner_or_admin(user, order["user_id"]):
        raise Forbidden("Not authorized to access this order")
    return serialize_doc(order)


def apply_transition(db, order: dict, target: OrderStatus) -> dict:
    current = OrderStatus(order["status"])
    updates = transition_updates(current, target, now())
    if not updates:
        return serialize_doc(order)

    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": current.value},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidState("Order status was changed by another request, please retry")

    if target == OrderStatus.CANCELLED:
        release_stock(db, [(to_object_id(i["laptop_id"], "laptop"), i["quantity"]) for i in order["order_items"]])
    logger.info("Order %s moved from %s to %s", order["_id"], current.value, target.value)
    return serialize_doc(updated)


def update_order_status(db, order_id: str, new_status) -> dict:
    target = parse_status(new_status)
    return apply_transition(db, find_order(db, order_id), target)


def cancel_order(db, order_id: str, user: dict) -> dict:
    order = find_order(db, order_id)
    if not is_owner_or_admin(user, order["user_id"]):
        raise Forbidden("Not authorized to cancel this order")
    if OrderStatus(order["status"]) not in CANCELLABLE:
        raise InvalidState(f"Cannot cancel order in {order['status']} status")
    return apply_transition(db, order, OrderStatus.CANCELLED)


def mark_paid(db, order_id: str, payment_result: Optional[dict]) -> dict:
    order = find_order(db, order_id)
    if order["status"] == OrderStatus.CANCELLED.value:
        raise InvalidState("Cannot pay for a cancelled order")
    stamp = now()
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"]},
        {"$set": {"is_paid": True, "paid_at": stamp, "payment_result": payment_result, "updated_at": stamp}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Order %s marked as paid", order_id)
    return serialize_doc(updated)


def update_shipping(db, order_id: str, tracking_number: Optional[str] = None, estimated_delivery=None) -> dict:
    order = find_order(db, order_id)
    changes = {}
    if tracking_number:
        changes["tracking_number"] = tracking_number
    if estimated_delivery:
        changes["estimated_delivery"] = estimated_delivery
    if not changes:
        raise ValidationError("Provide a tracking number or an estimated delivery date")
    changes["updated_at"] = now()
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(updated)


def delete_order(db, order_id: str) -> None:
    res = db["order"].delete_one({"_id": to_object_id(order_id, "order")})
    if res.deleted_count == 0:
        raise NotFound(f"Order not found with id of {order_id}")
    logger.info("Deleted order %s", order_id)


def list_user_orders(db, user_id: str) -> List[dict]:
    return get_documents(db, "order", {"user_id": user_id}, sort=[("created_at", DESCENDING)])


def list_orders(db, params) -> dict:
    query = build_query(params, ORDER_FIELDS, default_limit=25)
    return paginate(db["order"], query)


def order_count(db) -> int:
    return db["order"].count_documents({})


def total_sales(db) -> float:
    result = list(db["order"].aggregate([
        {"$match": {"status": {"$ne": OrderStatus.CANCELLED.value}}},
        {"$group": {"_id": None, "total_sales": {"$sum": "$total_price"}}},
    ]))
    return round(result[0]["total_sales"], 2) if result else 0
