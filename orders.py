"""
Order lifecycle: checkout pricing, stock reservation, the status state
machine, cancellation, rating and loyalty reconciliation.

Status flow::

    pending -> confirmed -> preparing -> baking -> ready
            -> out-for-delivery -> delivered

Customers may cancel while an order is pending or confirmed. The admin
status update bypasses the transition guard. ``timeline`` maps each status
to the first time the order reached it.

There are no multi-document transactions here. Stock is reserved with a
conditional decrement per product and released again if a later step of
checkout fails; loyalty credit and debit are separate writes.
"""
import logging
import math
import random
import string
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple, get_args

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from catalog import build_pagination
from database import serialize_doc, to_object_id, utcnow
from errors import BusinessRuleViolation, NotFound
from schemas import (
    DeliveryDetails,
    DeliveryDetailsIn,
    Order,
    OrderCreateIn,
    OrderItem,
    OrderStatus,
    OrderSummary,
    RatingIn,
)
from users import adjust_loyalty_points

logger = logging.getLogger(__name__)

ORDER_STATUSES: Tuple[str, ...] = get_args(OrderStatus)
CANCELLABLE_STATUSES = ("pending", "confirmed")
TERMINAL_STATUSES = ("delivered", "cancelled")

FREE_DELIVERY_THRESHOLD = 999
DELIVERY_FEE = 49
TAX_RATE = Decimal("0.05")
RUPEES_PER_LOYALTY_POINT = 100
EXPRESS_DELIVERY_WINDOW = timedelta(hours=2)
STANDARD_DELIVERY_HOUR = 18
DEFAULT_CANCELLATION_REASON = "Cancelled by customer"
ORDER_ID_ATTEMPTS = 5

_BASE36 = string.digits + string.ascii_uppercase


# -----------------------------
# Pricing and scheduling
# -----------------------------

def round_half_up(value, places: str = "1"):
    rounded = Decimal(str(value)).quantize(Decimal(places), rounding=ROUND_HALF_UP)
    return int(rounded) if places == "1" else float(rounded)


def compute_summary(subtotal) -> OrderSummary:
    delivery_fee = 0 if subtotal >= FREE_DELIVERY_THRESHOLD else DELIVERY_FEE
    tax = round_half_up(Decimal(str(subtotal)) * TAX_RATE)
    return OrderSummary(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tax=tax,
        discount=0,
        total=subtotal + delivery_fee + tax,
    )


def loyalty_points_for(total) -> int:
    return int(math.floor(total / RUPEES_PER_LOYALTY_POINT))


def estimate_delivery(details: Optional[DeliveryDetailsIn], now: datetime) -> datetime:
    if details and details.type == "express":
        return now + EXPRESS_DELIVERY_WINDOW
    if details and details.type == "scheduled" and details.scheduled_date:
        return _naive_utc(details.scheduled_date)
    return (now + timedelta(days=1)).replace(hour=STANDARD_DELIVERY_HOUR, minute=0, second=0, microsecond=0)


def _base36(number: int) -> str:
    digits = []
    while True:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
        if number == 0:
            return "".join(reversed(digits))


def generate_order_id(prefix: str, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    suffix = "".join(random.choices(_BASE36, k=5))
    return f"{prefix}{_base36(millis)}{suffix}".upper()


# -----------------------------
# State machine
# -----------------------------

def apply_status(order: dict, status: str, now: datetime) -> dict:
    """Move ``order`` to ``status`` and stamp its timeline entry if unset."""
    if status not in ORDER_STATUSES:
        raise BusinessRuleViolation(f"Unknown order status: {status}")
    order["status"] = status
    timeline = order.setdefault("timeline", {})
    if not timeline.get(status):
        timeline[status] = now
        if status == "delivered":
            order.setdefault("delivery_details", {})["actual_delivery"] = now
    order["updated_at"] = now
    return order


def can_cancel(order: dict) -> bool:
    return order.get("status") in CANCELLABLE_STATUSES


def delivery_status(order: dict, now: Optional[datetime] = None) -> str:
    status = order.get("status")
    if status in TERMINAL_STATUSES:
        return status
    if status == "out-for-delivery":
        return "in-transit"
    estimated = (order.get("delivery_details") or {}).get("estimated_delivery")
    if estimated and (now or utcnow()) > estimated:
        return "delayed"
    return "on-time"


def order_view(order: dict) -> dict:
    out = serialize_doc(order)
    out["delivery_status"] = delivery_status(order)
    return out


# -----------------------------
# Stock
# -----------------------------

def _plan_lines(db: Database, payload: OrderCreateIn) -> List[Tuple[dict, OrderItem]]:
    """Check every requested line before anything is written.

    Lines for the same product draw on one shared stock count.
    """
    lines = []
    remaining = {}
    for item in payload.items:
        product_id = to_object_id(item.product_id, "product_id")
        product = db["product"].find_one({"_id": product_id})
        if not product or not product.get("is_active", True):
            raise BusinessRuleViolation(f"Product {item.product_id} not found or unavailable")

        availability = product.get("availability") or {}
        in_stock = availability.get("in_stock", False)
        stock = availability.get("quantity", 0)
        pre_order_days = availability.get("pre_order_days")
        if not in_stock and not pre_order_days:
            raise BusinessRuleViolation(f"Product {product['name']} is out of stock")

        available = remaining.setdefault(product["_id"], stock if in_stock else 0)
        if item.quantity > available and not pre_order_days:
            raise BusinessRuleViolation(f"Only {available} of {product['name']} left in stock")
        reserved = min(item.quantity, available)
        remaining[product["_id"]] = available - reserved

        price = product["price"]
        lines.append((product, OrderItem(
            product_id=str(product["_id"]),
            name=product["name"],
            price=price,
            quantity=item.quantity,
            weight=product.get("weight", ""),
            customization=item.customization,
            subtotal=price * item.quantity,
            reserved_quantity=reserved,
        )))
    return lines


def _reserve_stock(db: Database, product_id: ObjectId, quantity: int, now: datetime) -> bool:
    doc = db["product"].find_one_and_update(
        {"_id": product_id, "availability.quantity": {"$gte": quantity}},
        {"$inc": {"availability.quantity": -quantity}, "$set": {"updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        return False
    if doc["availability"]["quantity"] <= 0:
        db["product"].update_one({"_id": product_id}, {"$set": {"availability.in_stock": False}})
    return True


def _release_stock(db: Database, product_id: ObjectId, quantity: int, now: datetime) -> None:
    if quantity <= 0:
        return
    db["product"].update_one(
        {"_id": product_id},
        {"$inc": {"availability.quantity": quantity}, "$set": {"availability.in_stock": True, "updated_at": now}},
    )


def _release_all(db: Database, reserved: List[Tuple[ObjectId, int]], now: datetime) -> None:
    for product_id, quantity in reserved:
        _release_stock(db, product_id, quantity, now)


# -----------------------------
# Operations
# -----------------------------

def create_order(db: Database, user: dict, payload: OrderCreateIn, id_prefix: str, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    lines = _plan_lines(db, payload)

    subtotal = sum(item.subtotal for _, item in lines)
    summary = compute_summary(subtotal)
    points = loyalty_points_for(summary.total)
    details = payload.delivery_details

    order = Order(
        order_id=generate_order_id(id_prefix, now),
        user_id=str(user["_id"]),
        auth_uid=user["auth_uid"],
        items=[item for _, item in lines],
        delivery_address=payload.delivery_address,
        order_summary=summary,
        payment_method=payload.payment_method,
        delivery_details=DeliveryDetails(
            type=details.type if details else "standard",
            scheduled_date=details.scheduled_date if details else None,
            scheduled_time=details.scheduled_time if details else None,
            estimated_delivery=estimate_delivery(details, now),
            delivery_instructions=details.delivery_instructions if details else None,
        ),
        timeline={"pending": now},
        notes=payload.notes,
        loyalty_points_earned=points,
    )
    doc = order.model_dump()
    doc["user_id"] = user["_id"]
    for item in doc["items"]:
        item["product_id"] = ObjectId(item["product_id"])
    doc["created_at"] = now
    doc["updated_at"] = now

    reserved: List[Tuple[ObjectId, int]] = []
    try:
        for product, item in lines:
            if not item.reserved_quantity:
                continue
            if not _reserve_stock(db, product["_id"], item.reserved_quantity, now):
                raise BusinessRuleViolation(f"Product {product['name']} is out of stock")
            reserved.append((product["_id"], item.reserved_quantity))

        for attempt in range(ORDER_ID_ATTEMPTS):
            try:
                doc.pop("_id", None)
                result = db["order"].insert_one(doc)
                break
            except DuplicateKeyError:
                if attempt == ORDER_ID_ATTEMPTS - 1:
                    raise
                logger.warning("Order id %s already taken, regenerating", doc["order_id"])
                doc["order_id"] = generate_order_id(id_prefix)
    except (BusinessRuleViolation, PyMongoError):
        _release_all(db, reserved, now)
        raise

    doc["_id"] = result.inserted_id
    if points:
        adjust_loyalty_points(db, user["_id"], points)
    logger.info(
        "Order %s placed by user %s: total=%s points=%s",
        doc["order_id"], user["_id"], summary.total, points,
    )
    return doc


def _ref_filter(ref: str) -> dict:
    if ObjectId.is_valid(ref):
        return {"_id": ObjectId(ref)}
    return {"order_id": ref.strip().upper()}


def get_user_order(db: Database, user: dict, ref: str) -> dict:
    order = db["order"].find_one({**_ref_filter(ref), "user_id": user["_id"]})
    if not order:
        raise NotFound("Order not found")
    return order


def get_order(db: Database, ref: str) -> dict:
    order = db["order"].find_one(_ref_filter(ref))
    if not order:
        raise NotFound("Order not found")
    return order


def cancel_order(db: Database, user: dict, ref: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    order = get_user_order(db, user, ref)
    if not can_cancel(order):
        raise BusinessRuleViolation("Order cannot be cancelled at this stage")

    apply_status(order, "cancelled", now)
    order["cancellation_reason"] = (reason or "").strip() or DEFAULT_CANCELLATION_REASON
    result = db["order"].update_one(
        {"_id": order["_id"], "status": {"$in": list(CANCELLABLE_STATUSES)}},
        {"$set": {
            "status": order["status"],
            "timeline": order["timeline"],
            "cancellation_reason": order["cancellation_reason"],
            "updated_at": now,
        }},
    )
    if result.modified_count == 0:
        raise BusinessRuleViolation("Order cannot be cancelled at this stage")

    for item in order["items"]:
        _release_stock(db, item["product_id"], item.get("reserved_quantity", item["quantity"]), now)

    if order.get("loyalty_points_earned", 0) > 0:
        adjust_loyalty_points(db, order["user_id"], -order["loyalty_points_earned"])

    logger.info("Order %s cancelled: %s", order["order_id"], order["cancellation_reason"])
    return order


def rate_order(db: Database, user: dict, ref: str, body: RatingIn, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    order = get_user_order(db, user, ref)
    if order.get("status") != "delivered":
        raise BusinessRuleViolation("Can only rate delivered orders")
    if order.get("rating"):
        raise BusinessRuleViolation("Order already rated")

    rating = body.model_dump()
    rating["rated_at"] = now
    result = db["order"].update_one(
        {"_id": order["_id"], "rating": None},
        {"$set": {"rating": rating, "updated_at": now}},
    )
    if result.modified_count == 0:
        raise BusinessRuleViolation("Order already rated")
    order["rating"] = rating

    seen = set()
    for item in order["items"]:
        product_id = item["product_id"]
        if product_id in seen:
            continue
        seen.add(product_id)
        product = db["product"].find_one({"_id": product_id}, {"rating": 1})
        if not product:
            continue
        current = product.get("rating") or {}
        count = current.get("count", 0)
        average = current.get("average", 0)
        new_count = count + 1
        new_average = round_half_up((average * count + body.overall) / new_count, "0.1")
        db["product"].update_one(
            {"_id": product_id},
            {"$set": {"rating.average": new_average, "rating.count": new_count, "updated_at": now}},
        )

    logger.info("Order %s rated %s/5", order["order_id"], body.overall)
    return rating


def update_status(db: Database, ref: str, status: str, notes: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    order = get_order(db, ref)
    previous = order.get("status")
    apply_status(order, status, now)
    changes = {
        "status": order["status"],
        "timeline": order["timeline"],
        "updated_at": now,
    }
    if order.get("delivery_details", {}).get("actual_delivery"):
        changes["delivery_details.actual_delivery"] = order["delivery_details"]["actual_delivery"]
    if notes:
        order["notes"] = notes
        changes["notes"] = notes
    db["order"].update_one({"_id": order["_id"]}, {"$set": changes})
    logger.info("Order %s status %s -> %s", order["order_id"], previous, status)
    return order


# -----------------------------
# Listing
# -----------------------------

def populate_products(db: Database, orders: List[dict]) -> List[dict]:
    ids = {item["product_id"] for o in orders for item in o.get("items", [])}
    products = {
        p["_id"]: serialize_doc(p)
        for p in db["product"].find({"_id": {"$in": list(ids)}}, {"name": 1, "images": 1, "category": 1})
    }
    for o in orders:
        for item in o.get("items", []):
            item["product"] = products.get(item["product_id"])
    return orders


def populate_users(db: Database, orders: List[dict]) -> List[dict]:
    ids = {o["user_id"] for o in orders}
    users = {
        u["_id"]: serialize_doc(u)
        for u in db["user"].find({"_id": {"$in": list(ids)}}, {"name": 1, "phone": 1})
    }
    for o in orders:
        o["user"] = users.get(o["user_id"])
    return orders


def _page(db: Database, q: dict, page: int, limit: int) -> Tuple[List[dict], dict]:
    cursor = db["order"].find(q).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    orders = list(cursor)
    return orders, build_pagination(page, limit, db["order"].count_documents(q))


def list_user_orders(db: Database, user: dict, status: Optional[str] = None, page: int = 1, limit: int = 20):
    q = {"user_id": user["_id"]}
    if status:
        q["status"] = status
    orders, pagination = _page(db, q, page, limit)
    return [order_view(o) for o in populate_products(db, orders)], pagination


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _created_range(start: Optional[datetime], end: Optional[datetime]) -> dict:
    created = {}
    if start:
        created["$gte"] = _naive_utc(start)
    if end:
        created["$lte"] = _naive_utc(end)
    return created


def list_all_orders(
    db: Database,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
):
    q: dict = {}
    if status:
        q["status"] = status
    created = _created_range(start, end)
    if created:
        q["created_at"] = created
    orders, pagination = _page(db, q, page, limit)
    orders = populate_users(db, populate_products(db, orders))
    return [order_view(o) for o in orders], pagination


def order_stats(db: Database, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    match: dict = {}
    created = _created_range(start, end)
    if created:
        match["created_at"] = created

    totals = list(db["order"].aggregate([
        {"$match": match},
        {"$group": {
            "_id": None,
            "total_orders": {"$sum": 1},
            "total_revenue": {"$sum": "$order_summary.total"},
            "average_order_value": {"$avg": "$order_summary.total"},
        }},
    ]))
    breakdown = {
        row["_id"]: {"count": row["count"], "revenue": row["revenue"]}
        for row in db["order"].aggregate([
            {"$match": match},
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "revenue": {"$sum": "$order_summary.total"}}},
        ])
    }
    summary = totals[0] if totals else {"total_orders": 0, "total_revenue": 0, "average_order_value": 0}
    return {
        "total_orders": summary["total_orders"],
        "total_revenue": summary["total_revenue"],
        "average_order_value": round_half_up(summary["average_order_value"] or 0, "0.01"),
        "status_breakdown": breakdown,
    }
