"""
Catalog listing and laptop operations.

build_query() turns query-string parameters into a Mongo filter, projection,
sort and page window. Filters use either ``field=value`` or
``field[op]=value`` (op in gt, gte, lt, lte, in), e.g.::

    /api/laptops?brand=Dell&price[gte]=500&price[lte]=1500&sort=-price&page=2

Only whitelisted fields can be filtered and every value is coerced to the
field's type, so no raw operator from the query string reaches the database.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import create_document, now, serialize_doc, to_object_id
from errors import NotFound, ValidationError
from schemas import Laptop

logger = logging.getLogger(__name__)

MAX_LIMIT = 100
OPERATORS = ("gt", "gte", "lt", "lte", "in")
RESERVED_PARAMS = {"select", "sort", "page", "limit", "search", "min_price", "max_price"}

LAPTOP_FIELDS: Dict[str, type] = {
    "name": str,
    "slug": str,
    "brand": str,
    "type": str,
    "processor": str,
    "ram": str,
    "storage": str,
    "graphics": str,
    "operating_system": str,
    "color": str,
    "category_id": str,
    "price": float,
    "discount_price": float,
    "stock": int,
    "average_rating": float,
    "num_reviews": int,
    "is_available": bool,
    "is_featured": bool,
}
LAPTOP_SEARCH_FIELDS = ("name", "brand", "processor", "description")
SORTABLE_EXTRA = ("created_at", "updated_at")

_FILTER_KEY = re.compile(r"^(\w+)\[(%s)\]$" % "|".join(OPERATORS))


@dataclass
class ListQuery:
    filter: Dict[str, Any]
    projection: Optional[Dict[str, int]]
    sort: List[Tuple[str, int]]
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.strip().lower())
    return slug.strip("-") or "item"


def coerce(field: str, kind: type, value: str):
    if kind is bool:
        lowered = str(value).strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
        raise ValidationError(f"Invalid value for {field}: {value}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid value for {field}: {value}")


def positive_int(value, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


def parse_sort(value: Optional[str], allowed: Iterable[str], default: str) -> List[Tuple[str, int]]:
    allowed = set(allowed)
    sort = []
    for part in (value or "").split(","):
        part = part.strip()
        if not part:
            continue
        direction = DESCENDING if part.startswith("-") else ASCENDING
        field = part.lstrip("-+")
        if field in allowed:
            sort.append((field, direction))
    if not sort and default:
        return parse_sort(default, allowed | {default.lstrip("-")}, "")
    return sort


def _pairs(params) -> Iterable[Tuple[str, str]]:
    if hasattr(params, "multi_items"):
        return params.multi_items()
    return params.items()


def build_query(params: Mapping[str, str], fields: Dict[str, type], search_fields: Iterable[str] = (),
                default_limit: int = 12, default_sort: str = "-created_at",
                always_select: Iterable[str] = ()) -> ListQuery:
    conditions: Dict[str, Dict[str, Any]] = {}
    single: Dict[str, str] = {}

    for key, value in _pairs(params):
        single[key] = value
        if key in RESERVED_PARAMS:
            continue
        match = _FILTER_KEY.match(key)
        field, op = match.groups() if match else (key, "in")
        if field not in fields:
            continue
        ops = conditions.setdefault(field, {})
        if op == "in":
            # plain field=value and repeated keys (brand=Dell&brand=HP) collect into $in
            values = value.split(",") if match else [value]
            ops.setdefault("$in", []).extend(coerce(field, fields[field], v) for v in values if v.strip())
        else:
            ops["$" + op] = coerce(field, fields[field], value)

    if "price" in fields:
        if single.get("min_price") not in (None, ""):
            conditions.setdefault("price", {})["$gte"] = coerce("min_price", float, single["min_price"])
        if single.get("max_price") not in (None, ""):
            conditions.setdefault("price", {})["$lte"] = coerce("max_price", float, single["max_price"])

    filt: Dict[str, Any] = {}
    for field, ops in conditions.items():
        if list(ops) == ["$in"] and len(ops["$in"]) == 1:
            filt[field] = ops["$in"][0]
        elif ops:
            filt[field] = ops

    search = (single.get("search") or "").strip()
    if search and search_fields:
        pattern = re.escape(search)
        filt["$or"] = [{f: {"$regex": pattern, "$options": "i"}} for f in search_fields]

    projection = None
    if single.get("select"):
        selected = [f.strip() for f in single["select"].split(",") if f.strip()]
        projection = {f: 1 for f in list(selected) + list(always_select)}

    sort = parse_sort(single.get("sort"), list(fields) + list(SORTABLE_EXTRA), default_sort)
    page = positive_int(single.get("page"), 1)
    limit = min(positive_int(single.get("limit"), default_limit), MAX_LIMIT)
    return ListQuery(filter=filt, projection=projection, sort=sort, page=page, limit=limit)


def paginate(collection, query: ListQuery, serializer: Callable = serialize_doc,
             after_fetch: Optional[Callable[[list], Any]] = None) -> dict:
    total = collection.count_documents(query.filter)
    cursor = collection.find(query.filter, query.projection)
    if query.sort:
        cursor = cursor.sort(query.sort)
    docs = list(cursor.skip(query.skip).limit(query.limit))
    if after_fetch is not None:
        after_fetch(docs)

    pagination = {}
    if query.page * query.limit < total:
        pagination["next"] = {"page": query.page + 1, "limit": query.limit}
    if query.skip > 0:
        pagination["prev"] = {"page": query.page - 1, "limit": query.limit}

    return {
        "count": len(docs),
        "total": total,
        "pagination": pagination,
        "data": [serializer(d) for d in docs],
    }


# Laptops

def laptop_out(doc: dict) -> dict:
    laptop = serialize_doc(doc)
    if "stock" in laptop:
        laptop["is_available"] = laptop["stock"] > 0
    return laptop


def repair_availability(db, docs: List[dict]) -> int:
    """Persist is_available = stock > 0 for every fetched laptop that drifted."""
    repaired = 0
    for doc in docs:
        if "stock" not in doc:
            continue
        expected = doc["stock"] > 0
        if doc.get("is_available") != expected:
            db["laptop"].update_one({"_id": doc["_id"]}, {"$set": {"is_available": expected}})
            doc["is_available"] = expected
            repaired += 1
            logger.info("Repaired availability of laptop %s (stock=%s)", doc["_id"], doc["stock"])
    return repaired


def attach_categories(db, laptops: List[dict]) -> List[dict]:
    ids = {l.get("category_id") for l in laptops if l.get("category_id")}
    if not ids:
        return laptops
    oids = [to_object_id(i, "category") for i in ids]
    summaries = {
        str(c["_id"]): {"id": str(c["_id"]), "name": c["name"], "slug": c["slug"]}
        for c in db["category"].find({"_id": {"$in": oids}}, {"name": 1, "slug": 1})
    }
    for laptop in laptops:
        if laptop.get("category_id"):
            laptop["category"] = summaries.get(laptop["category_id"])
    return laptops


def list_laptops(db, params) -> dict:
    query = build_query(
        params,
        LAPTOP_FIELDS,
        search_fields=LAPTOP_SEARCH_FIELDS,
        default_limit=12,
        always_select=("stock", "is_available", "category_id"),
    )
    result = paginate(
        db["laptop"], query,
        serializer=laptop_out,
        after_fetch=lambda docs: repair_availability(db, docs),
    )
    attach_categories(db, result["data"])
    return result


def find_laptop(db, laptop_id: str) -> dict:
    laptop = db["laptop"].find_one({"_id": to_object_id(laptop_id, "laptop")})
    if not laptop:
        raise NotFound(f"Laptop not found with id of {laptop_id}")
    return laptop


def get_laptop(db, laptop_id: str) -> dict:
    return attach_categories(db, [laptop_out(find_laptop(db, laptop_id))])[0]


def get_laptop_by_slug(db, slug: str) -> dict:
    laptop = db["laptop"].find_one({"slug": slug})
    if not laptop:
        raise NotFound(f"Laptop not found with slug of {slug}")
    return attach_categories(db, [laptop_out(laptop)])[0]


def featured_laptops(db, limit: int = 8) -> List[dict]:
    docs = db["laptop"].find({"is_featured": True}).limit(limit)
    return attach_categories(db, [laptop_out(d) for d in docs])


def top_rated_laptops(db, limit: int = 5) -> List[dict]:
    docs = (
        db["laptop"]
        .find({"average_rating": {"$gt": 4}, "num_reviews": {"$gt": 0}})
        .sort("average_rating", DESCENDING)
        .limit(limit)
    )
    return attach_categories(db, [laptop_out(d) for d in docs])


def laptops_by_category(db, category_id: str) -> dict:
    to_object_id(category_id, "category")
    laptops = attach_categories(db, [laptop_out(d) for d in db["laptop"].find({"category_id": category_id})])
    return {"count": len(laptops), "data": laptops}


def related_laptops(db, laptop_id: str, limit: int = 4) -> List[dict]:
    laptop = find_laptop(db, laptop_id)
    similar = [{field: laptop[field]} for field in ("category_id", "brand", "type") if laptop.get(field)]
    if not similar:
        return []
    docs = db["laptop"].find({"_id": {"$ne": laptop["_id"]}, "$or": similar}).limit(limit)
    return attach_categories(db, [laptop_out(d) for d in docs])


def ensure_category_exists(db, category_id: Optional[str]) -> None:
    if category_id and not db["category"].find_one({"_id": to_object_id(category_id, "category")}):
        raise NotFound(f"Category not found with id of {category_id}")


def create_laptop(db, data: dict) -> dict:
    ensure_category_exists(db, data.get("category_id"))
    stock = data.get("stock", 10)
    laptop = Laptop(**{**data, "slug": slugify(data["name"]), "is_available": stock > 0})
    laptop_id = create_document(db, "laptop", laptop)
    logger.info("Created laptop %s (%s)", laptop_id, laptop.name)
    return get_laptop(db, laptop_id)


def update_laptop(db, laptop_id: str, changes: dict) -> dict:
    oid = to_object_id(laptop_id, "laptop")
    if not changes:
        raise ValidationError("No fields to update")
    ensure_category_exists(db, changes.get("category_id"))
    if "name" in changes:
        changes["slug"] = slugify(changes["name"])
    if "stock" in changes:
        changes["is_available"] = changes["stock"] > 0
    changes["updated_at"] = now()
    updated = db["laptop"].find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound(f"Laptop not found with id of {laptop_id}")
    return attach_categories(db, [laptop_out(updated)])[0]


def delete_laptop(db, laptop_id: str) -> None:
    res = db["laptop"].delete_one({"_id": to_object_id(laptop_id, "laptop")})
    if res.deleted_count == 0:
        raise NotFound(f"Laptop not found with id of {laptop_id}")
    logger.info("Deleted laptop %s", laptop_id)
