import logging
from typing import List, Optional

from pymongo import ASCENDING, ReturnDocument

from catalog import MAX_LIMIT, ListQuery, paginate, parse_sort, positive_int, slugify
from database import create_document, now, serialize_doc, to_object_id
from errors import NotFound, ValidationError
from schemas import Category

logger = logging.getLogger(__name__)

CATEGORY_SORT_FIELDS = ("name", "display_order", "created_at", "updated_at")


def find_category(db, category_id: str) -> dict:
    category = db["category"].find_one({"_id": to_object_id(category_id, "category")})
    if not category:
        raise NotFound(f"Category not found with id of {category_id}")
    return category


def subcategories(db, category_id: str) -> List[dict]:
    return [serialize_doc(c) for c in db["category"].find({"parent_id": category_id}).sort("name", ASCENDING)]


def with_subcategories(db, category: dict) -> dict:
    out = serialize_doc(category)
    out["subcategories"] = subcategories(db, out["id"])
    return out


def list_categories(db, params) -> dict:
    filt = {}
    parent = params.get("parent")
    if parent in ("null", "undefined"):
        filt["parent_id"] = None
    elif parent:
        filt["parent_id"] = parent
    if params.get("featured") == "true":
        filt["featured"] = True

    query = ListQuery(
        filter=filt,
        projection=None,
        sort=parse_sort(params.get("sort"), CATEGORY_SORT_FIELDS, "name"),
        page=positive_int(params.get("page"), 1),
        limit=min(positive_int(params.get("limit"), 100), MAX_LIMIT),
    )
    if params.get("populate") == "true":
        return paginate(db["category"], query, serializer=lambda doc: with_subcategories(db, doc))
    return paginate(db["category"], query)


def category_tree(db) -> List[dict]:
    return [with_subcategories(db, c) for c in db["category"].find({"parent_id": None}).sort("name", ASCENDING)]


def featured_categories(db, limit: int = 6) -> List[dict]:
    return [serialize_doc(c) for c in db["category"].find({"featured": True}).sort("name", ASCENDING).limit(limit)]


def get_category(db, category_id: str) -> dict:
    return with_subcategories(db, find_category(db, category_id))


def get_category_by_slug(db, slug: str) -> dict:
    category = db["category"].find_one({"slug": slug})
    if not category:
        raise NotFound(f"Category not found with slug of {slug}")
    return with_subcategories(db, category)


def _check_parent(db, parent_id: Optional[str], category_id: Optional[str] = None) -> None:
    if not parent_id:
        return
    if parent_id == category_id:
        raise ValidationError("Category cannot be its own parent")
    ancestor = find_category(db, parent_id)
    # walk up from the new parent, the category being moved must not appear
    seen = set()
    while ancestor.get("parent_id") and category_id:
        if ancestor["parent_id"] == category_id:
            raise ValidationError("Category cannot be moved under one of its own subcategories")
        if ancestor["parent_id"] in seen:
            break
        seen.add(ancestor["parent_id"])
        ancestor = db["category"].find_one({"_id": to_object_id(ancestor["parent_id"], "category")}) or {}


def create_category(db, data: dict) -> dict:
    _check_parent(db, data.get("parent_id"))
    category = Category(**{**data, "slug": slugify(data["name"])})
    category_id = create_document(db, "category", category)
    logger.info("Created category %s (%s)", category_id, category.name)
    return get_category(db, category_id)


def update_category(db, category_id: str, changes: dict) -> dict:
    find_category(db, category_id)
    if not changes:
        raise ValidationError("No fields to update")
    _check_parent(db, changes.get("parent_id"), category_id)
    if "name" in changes:
        changes["slug"] = slugify(changes["name"])
    changes["updated_at"] = now()
    updated = db["category"].find_one_and_update(
        {"_id": to_object_id(category_id, "category")}, {"$set": changes}, return_document=ReturnDocument.AFTER,
    )
    return with_subcategories(db, updated)


def delete_category(db, category_id: str) -> None:
    category = find_category(db, category_id)
    if db["category"].count_documents({"parent_id": category_id}) > 0:
        raise ValidationError("Cannot delete category with subcategories")
    db["category"].delete_one({"_id": category["_id"]})
    # laptops keep existing, just without a category
    db["laptop"].update_many({"category_id": category_id}, {"$set": {"category_id": None}})
    logger.info("Deleted category %s", category_id)
