import logging
from typing import List

from pymongo import DESCENDING, ReturnDocument

from auth import is_owner_or_admin
from catalog import find_laptop
from database import create_document, get_documents, now, serialize_doc, to_object_id
from errors import Forbidden, NotFound
from schemas import OrderStatus, Review

logger = logging.getLogger(__name__)


def refresh_laptop_rating(db, laptop_id: str) -> None:
    """Recompute average_rating and num_reviews of a laptop from its reviews."""
    result = list(db["review"].aggregate([
        {"$match": {"laptop_id": laptop_id}},
        {"$group": {"_id": "$laptop_id", "average_rating": {"$avg": "$rating"}, "num_reviews": {"$sum": 1}}},
    ]))
    average = result[0]["average_rating"] if result else 0
    count = result[0]["num_reviews"] if result else 0
    db["laptop"].update_one(
        {"_id": to_object_id(laptop_id, "laptop")},
        {"$set": {"average_rating": average, "num_reviews": count}},
    )
    logger.info("Laptop %s rating is now %.2f over %d reviews", laptop_id, average, count)


def is_verified_purchase(db, user_id: str, laptop_id: str) -> bool:
    return db["order"].count_documents({
        "user_id": user_id,
        "order_items.laptop_id": laptop_id,
        "status": OrderStatus.DELIVERED.value,
    }) > 0


def _with_user_names(db, reviews: List[dict]) -> List[dict]:
    ids = {r["user_id"] for r in reviews}
    names = {
        str(u["_id"]): u["name"]
        for u in db["user"].find({"_id": {"$in": [to_object_id(i, "user") for i in ids]}}, {"name": 1})
    }
    for review in reviews:
        review["user"] = {"id": review["user_id"], "name": names.get(review["user_id"])}
    return reviews


def list_laptop_reviews(db, laptop_id: str) -> dict:
    to_object_id(laptop_id, "laptop")
    reviews = [serialize_doc(r) for r in db["review"].find({"laptop_id": laptop_id}).sort("created_at", DESCENDING)]
    return {"count": len(reviews), "data": _with_user_names(db, reviews)}


def list_user_reviews(db, user_id: str) -> dict:
    reviews = get_documents(db, "review", {"user_id": user_id}, sort=[("created_at", DESCENDING)])
    return {"count": len(reviews), "data": reviews}


def find_review(db, review_id: str) -> dict:
    review = db["review"].find_one({"_id": to_object_id(review_id, "review")})
    if not review:
        raise NotFound(f"Review not found with id of {review_id}")
    return review


def get_review(db, review_id: str) -> dict:
    return _with_user_names(db, [serialize_doc(find_review(db, review_id))])[0]


def create_review(db, user: dict, laptop_id: str, data: dict) -> dict:
    laptop = find_laptop(db, laptop_id)
    laptop_key = str(laptop["_id"])
    review = Review(
        **data,
        user_id=user["id"],
        laptop_id=laptop_key,
        is_verified_purchase=is_verified_purchase(db, user["id"], laptop_key),
    )
    # a second review by the same user fails on the unique index
    review_id = create_document(db, "review", review)
    refresh_laptop_rating(db, laptop_key)
    return get_review(db, review_id)


def _owned_review(db, review_id: str, user: dict, action: str) -> dict:
    review = find_review(db, review_id)
    if not is_owner_or_admin(user, review["user_id"]):
        raise Forbidden(f"Not authorized to {action} this review")
    return review


def update_review(db, review_id: str, user: dict, changes: dict) -> dict:
    review = _owned_review(db, review_id, user, "update")
    changes["updated_at"] = now()
    updated = db["review"].find_one_and_update(
        {"_id": review["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER,
    )
    if "rating" in changes:
        refresh_laptop_rating(db, review["laptop_id"])
    return serialize_doc(updated)


def delete_review(db, review_id: str, user: dict) -> None:
    review = _owned_review(db, review_id, user, "delete")
    db["review"].delete_one({"_id": review["_id"]})
    refresh_laptop_rating(db, review["laptop_id"])


def vote_helpful(db, review_id: str) -> dict:
    updated = db["review"].find_one_and_update(
        {"_id": to_object_id(review_id, "review")},
        {"$inc": {"helpful_votes": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound(f"Review not found with id of {review_id}")
    return serialize_doc(updated)


def set_approval(db, review_id: str, is_approved: bool) -> dict:
    updated = db["review"].find_one_and_update(
        {"_id": to_object_id(review_id, "review")},
        {"$set": {"is_approved": is_approved, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound(f"Review not found with id of {review_id}")
    return serialize_doc(updated)
