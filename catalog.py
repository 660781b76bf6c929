"""
Read-only catalog queries: product filtering, sorting, pagination and
category summaries.
"""
import math
import re
from typing import List, Optional, Tuple

from pymongo.database import Database

from database import to_object_id, serialize_doc
from errors import NotFound, invalid_field
from schemas import DIETARY_KEYS

SORT_OPTIONS = {
    "name": [("name", 1)],
    "price-low": [("price", 1)],
    "price-high": [("price", -1)],
    "rating": [("rating.average", -1), ("rating.count", -1)],
    "newest": [("created_at", -1)],
    "popular": [("is_featured", -1), ("rating.average", -1), ("sort_order", 1)],
}

SORT_LABELS = [
    {"key": "popular", "name": "Most Popular"},
    {"key": "price-low", "name": "Price: Low to High"},
    {"key": "price-high", "name": "Price: High to Low"},
    {"key": "rating", "name": "Highest Rated"},
    {"key": "newest", "name": "Newest First"},
    {"key": "name", "name": "Name"},
]

RELATED_LIMIT = 5


def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def build_product_filter(
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    weights: Optional[List[str]] = None,
    occasions: Optional[List[str]] = None,
    dietary: Optional[List[str]] = None,
    search: Optional[str] = None,
) -> dict:
    q: dict = {"is_active": True}
    if category:
        q["category"] = category
    if min_price is not None or max_price is not None:
        if min_price is not None and max_price is not None and min_price > max_price:
            raise invalid_field("min_price", "Min price cannot exceed max price")
        q["price"] = {}
        if min_price is not None:
            q["price"]["$gte"] = min_price
        if max_price is not None:
            q["price"]["$lte"] = max_price
    if weights:
        q["weight"] = {"$in": weights}
    if occasions:
        q["occasions"] = {"$in": occasions}
    for key in dietary or []:
        if key not in DIETARY_KEYS:
            raise invalid_field("dietary", f"Unknown dietary filter: {key}")
        q[f"dietary.{key}"] = True
    if search and search.strip():
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        q["$or"] = [
            {"name": pattern},
            {"description": pattern},
            {"seo.keywords": pattern},
            {"ingredients": pattern},
        ]
    return q


def build_pagination(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total": total,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def product_view(doc: dict) -> dict:
    out = serialize_doc(doc)
    price = doc.get("price", 0)
    original = doc.get("original_price")
    out["discount_percentage"] = (
        int(math.floor((original - price) / original * 100 + 0.5)) if original and original > price else 0
    )
    out["availability_status"] = availability_status(doc)
    return out


def availability_status(doc: dict) -> str:
    availability = doc.get("availability") or {}
    if not doc.get("is_active", True):
        return "inactive"
    if not availability.get("in_stock", False):
        return "out-of-stock"
    if availability.get("quantity", 0) == 0 and availability.get("pre_order_days"):
        return "pre-order"
    if availability.get("quantity", 0) > 0:
        return "in-stock"
    return "unavailable"


def query_products(db: Database, q: dict, sort: str, page: int, limit: int) -> Tuple[List[dict], int]:
    cursor = (
        db["product"].find(q)
        .sort(SORT_OPTIONS.get(sort, SORT_OPTIONS["popular"]))
        .skip((page - 1) * limit)
        .limit(limit)
    )
    products = [product_view(p) for p in cursor]
    return products, db["product"].count_documents(q)


def find_featured(db: Database, limit: int = 10) -> List[dict]:
    cursor = db["product"].find({"is_featured": True, "is_active": True}).sort(
        [("sort_order", 1), ("created_at", -1)]
    ).limit(limit)
    return [product_view(p) for p in cursor]


def related_products(db: Database, product: dict, limit: int = RELATED_LIMIT) -> List[dict]:
    cursor = db["product"].find(
        {"category": product["category"], "is_active": True, "_id": {"$ne": product["_id"]}},
        {"name": 1, "price": 1, "images": 1, "rating": 1, "category": 1, "seo.slug": 1},
    ).sort(SORT_OPTIONS["popular"]).limit(limit)
    return [serialize_doc(p) for p in cursor]


def get_product(db: Database, product_id: str) -> dict:
    doc = db["product"].find_one({"_id": to_object_id(product_id, "product_id")})
    if not doc:
        raise NotFound("Product not found")
    if not doc.get("is_active", True):
        raise NotFound("Product is not available")
    return doc


def get_product_by_slug(db: Database, slug: str) -> dict:
    doc = db["product"].find_one({"seo.slug": slug, "is_active": True})
    if not doc:
        raise NotFound("Product not found")
    return doc


def list_categories(db: Database) -> List[dict]:
    categories = db["category"].find({"is_active": True}).sort([("sort_order", 1), ("name", 1)])
    stats = {
        s["_id"]: s
        for s in db["product"].aggregate([
            {"$match": {"is_active": True}},
            {"$group": {
                "_id": "$category",
                "count": {"$sum": 1},
                "avg_price": {"$avg": "$price"},
                "min_price": {"$min": "$price"},
                "max_price": {"$max": "$price"},
            }},
        ])
    }
    out = []
    for c in categories:
        s = stats.get(c["_id"], {})
        out.append({
            "id": c["_id"],
            "name": c["name"],
            "description": c.get("description"),
            "image": c.get("image"),
            "is_active": c.get("is_active", True),
            "sort_order": c.get("sort_order", 0),
            "product_count": s.get("count", 0),
            "price_range": {
                "min": s.get("min_price") or 0,
                "max": s.get("max_price") or 0,
                "avg": int(math.floor((s.get("avg_price") or 0) + 0.5)),
            },
            "created_at": c.get("created_at"),
            "updated_at": c.get("updated_at"),
        })
    return out


def filter_options(db: Database) -> dict:
    active = {"is_active": True}
    occasions = sorted(db["product"].distinct("occasions", active))
    weights = sorted(db["product"].distinct("weight", active))

    prices = list(db["product"].aggregate([
        {"$match": active},
        {"$group": {"_id": None, "min_price": {"$min": "$price"}, "max_price": {"$max": "$price"}}},
    ]))
    price_range = (
        {"min_price": prices[0]["min_price"], "max_price": prices[0]["max_price"]}
        if prices else {"min_price": 0, "max_price": 1000}
    )

    counts = {key: 0 for key in DIETARY_KEYS}
    for p in db["product"].find(active, {"dietary": 1}):
        for key, flag in (p.get("dietary") or {}).items():
            if flag and key in counts:
                counts[key] += 1
    dietary = [
        {"key": key, "name": key.replace("_", " ").title(), "count": count}
        for key, count in counts.items() if count
    ]

    return {
        "occasions": occasions,
        "weights": weights,
        "price_range": price_range,
        "dietary": dietary,
        "sort_options": SORT_LABELS,
    }
