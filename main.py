import logging
import os
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
import orders
import users
from auth import get_current_user, require_admin
from config import Settings, configure_logging, get_settings
from database import db as default_db, ensure_indexes, get_db, serialize_doc, utcnow
from errors import ERROR_STATUS_CODES, RequestValidationFailed, StorefrontError
from identity import FirebaseTokenVerifier, VerifiedIdentity, get_token_verifier
from schemas import (
    AddressIn,
    AddressUpdate,
    CategoryLiteral,
    OrderCreateIn,
    OrderStatus,
    ProfileUpdate,
    RatingIn,
)
from seed import seed_catalog

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    try:
        ensure_indexes(default_db)
    except PyMongoError as e:
        logger.warning("Could not ensure indexes at startup: %s", e)
    yield


app = FastAPI(title="Bakery Storefront API", lifespan=lifespan)


def _cors_origin_regex(origins) -> Optional[str]:
    # ".example.com" entries allow every subdomain of example.com
    domains = [re.escape(o.lstrip(".")) for o in origins if o.startswith(".")]
    if not domains:
        return None
    return r"https?://([a-z0-9-]+\.)*(" + "|".join(domains) + r")"


app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in settings.frontend_urls if not o.startswith(".")],
    allow_origin_regex=_cors_origin_regex(settings.frontend_urls),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        logger.info(
            "%s %s %s %.1fms",
            request.method, request.url.path, status_code, (time.perf_counter() - started) * 1000,
        )


def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


# -----------------------------
# Error envelope
# -----------------------------

def _error(status_code: int, message: str, errors=None) -> JSONResponse:
    content = {"success": False, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return _error(status_code, "Internal server error")
    errors = exc.errors if isinstance(exc, RequestValidationFailed) else None
    return _error(status_code, exc.message, errors)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return _error(400, "Validation failed", errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        return _error(404, f"Route {request.url.path} not found")
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# -----------------------------
# Health
# -----------------------------

@app.get("/")
def read_root():
    return {"name": "Bakery Storefront API", "status": "ok"}


@app.get("/health")
def health():
    return {
        "status": "OK",
        "message": "Bakery Storefront API is running",
        "timestamp": utcnow().isoformat() + "Z",
        "environment": os.getenv("ENVIRONMENT", "development"),
    }


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    resp = {
        "backend": "running",
        "database": "unavailable",
        "collections": {},
        "admins_configured": len(settings.admin_emails),
    }
    try:
        resp["collections"] = {
            name: db[name].estimated_document_count() for name in sorted(db.list_collection_names())
        }
        resp["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        resp["error"] = str(e)[:120]
    return resp


# -----------------------------
# Auth & profile
# -----------------------------

class VerifyTokenIn(BaseModel):
    id_token: str = Field(..., min_length=1, description="ID token issued by the identity provider")
    user_data: Optional[ProfileUpdate] = None


@app.post("/api/auth/verify-token")
def verify_token(
    body: VerifyTokenIn,
    db: Database = Depends(get_db),
    verifier: FirebaseTokenVerifier = Depends(get_token_verifier),
):
    identity = verifier.verify(body.id_token)
    user, is_new = users.find_or_create_user(db, identity, body.user_data)
    profile = users.user_profile(user)
    profile["is_new_user"] = is_new
    return ok(
        {"user": profile},
        "User created successfully" if is_new else "User authenticated successfully",
    )


@app.get("/api/auth/profile")
def get_profile(user: dict = Depends(get_current_user)):
    return ok({"user": users.user_profile(user)})


@app.put("/api/auth/profile")
def update_profile(body: ProfileUpdate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    updated = users.update_profile(db, user, body)
    return ok({"user": users.user_profile(updated)}, "Profile updated successfully")


@app.post("/api/auth/addresses", status_code=201)
def add_address(body: AddressIn, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    addresses = users.add_address(db, user, body)
    return ok({"addresses": addresses}, "Address added successfully")


@app.put("/api/auth/addresses/{address_id}")
def update_address(
    address_id: str,
    body: AddressUpdate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    addresses = users.update_address(db, user, address_id, body)
    return ok({"addresses": addresses}, "Address updated successfully")


@app.delete("/api/auth/addresses/{address_id}")
def delete_address(address_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    addresses = users.remove_address(db, user, address_id)
    return ok({"addresses": addresses}, "Address deleted successfully")


@app.get("/api/users/profile")
def user_profile(user: dict = Depends(get_current_user)):
    return ok({"user": users.user_profile(user)})


@app.get("/api/users/loyalty-points")
def loyalty_points(user: dict = Depends(get_current_user)):
    return ok({"loyalty_points": user.get("loyalty_points", 0)})


# -----------------------------
# Products & categories
# -----------------------------

SortKey = Literal["name", "price-low", "price-high", "rating", "newest", "popular"]


@app.get("/api/products")
def list_products(
    category: Optional[CategoryLiteral] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    weight: Optional[str] = Query(None, description="Comma-separated weights, e.g. 500g,1kg"),
    occasions: Optional[str] = Query(None, description="Comma-separated occasions"),
    dietary: Optional[str] = Query(None, description="Comma-separated dietary flags"),
    search: Optional[str] = None,
    sort: SortKey = "popular",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    db: Database = Depends(get_db),
):
    q = catalog.build_product_filter(
        category=category,
        min_price=min_price,
        max_price=max_price,
        weights=catalog.split_csv(weight),
        occasions=catalog.split_csv(occasions),
        dietary=catalog.split_csv(dietary),
        search=search,
    )
    products, total = catalog.query_products(db, q, sort, page, limit)
    return ok({
        "products": products,
        "pagination": catalog.build_pagination(page, limit, total),
        "filters": {
            "category": category,
            "price_range": {"min": min_price, "max": max_price},
            "weight": weight,
            "occasions": occasions,
            "dietary": dietary,
            "search": search,
            "sort": sort,
        },
    })


@app.get("/api/products/featured")
def featured_products(limit: int = Query(10, ge=1, le=20), db: Database = Depends(get_db)):
    return ok({"products": catalog.find_featured(db, limit)})


@app.get("/api/products/category/{category}")
def products_by_category(
    category: CategoryLiteral,
    sort: SortKey = "popular",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    db: Database = Depends(get_db),
):
    q = catalog.build_product_filter(category=category)
    products, total = catalog.query_products(db, q, sort, page, limit)
    return ok({
        "products": products,
        "category": category,
        "pagination": catalog.build_pagination(page, limit, total),
    })


@app.get("/api/products/slug/{slug}")
def get_product_by_slug(slug: str, db: Database = Depends(get_db)):
    if not re.match(r"^[a-z0-9-]+$", slug):
        raise RequestValidationFailed(errors=[{"field": "slug", "message": "Invalid slug format"}])
    product = catalog.get_product_by_slug(db, slug)
    return ok({
        "product": catalog.product_view(product),
        "related_products": catalog.related_products(db, product),
    })


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = catalog.get_product(db, product_id)
    return ok({
        "product": catalog.product_view(product),
        "related_products": catalog.related_products(db, product),
    })


@app.get("/api/categories")
def list_categories(db: Database = Depends(get_db)):
    categories = catalog.list_categories(db)
    return ok({"categories": categories, "total": len(categories)})


@app.get("/api/categories/filters")
def category_filters(db: Database = Depends(get_db)):
    return ok({"filters": catalog.filter_options(db)})


@app.post("/api/seed")
def seed_products(
    force: bool = False,
    admin: VerifiedIdentity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    logger.info("Catalog seed requested by %s (force=%s)", admin.email, force)
    return ok(seed_catalog(db, force=force))


# -----------------------------
# Orders
# -----------------------------

class CancelOrderIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class StatusUpdateIn(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=500)


@app.post("/api/orders", status_code=201)
def create_order(
    body: OrderCreateIn,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    order = orders.create_order(db, user, body, config.order_id_prefix)
    return ok({"order": orders.order_view(order)}, "Order created successfully")


@app.get("/api/orders")
def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    items, pagination = orders.list_user_orders(db, user, status, page, limit)
    return ok({"orders": items, "pagination": pagination})


@app.get("/api/orders/admin/all")
def list_all_orders(
    status: Optional[OrderStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    admin: VerifiedIdentity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    items, pagination = orders.list_all_orders(db, status, start_date, end_date, page, limit)
    return ok({"orders": items, "pagination": pagination})


@app.get("/api/orders/admin/stats")
def order_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    admin: VerifiedIdentity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok({"stats": orders.order_stats(db, start_date, end_date)})


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = orders.get_user_order(db, user, order_id)
    orders.populate_products(db, [order])
    return ok({"order": orders.order_view(order)})


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    body: Optional[CancelOrderIn] = None,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    order = orders.cancel_order(db, user, order_id, body.reason if body else None)
    return ok({
        "order": {
            "order_id": order["order_id"],
            "status": order["status"],
            "cancellation_reason": order["cancellation_reason"],
            "timeline": order["timeline"],
        },
    }, "Order cancelled successfully")


@app.put("/api/orders/{order_id}/rating")
def rate_order(
    order_id: str,
    body: RatingIn,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    rating = orders.rate_order(db, user, order_id, body)
    return ok({"rating": rating}, "Rating added successfully")


@app.put("/api/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    body: StatusUpdateIn,
    admin: VerifiedIdentity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    order = orders.update_status(db, order_id, body.status, body.notes)
    return ok({
        "order": serialize_doc({
            "order_id": order["order_id"],
            "status": order["status"],
            "timeline": order["timeline"],
            "notes": order.get("notes"),
        }),
    }, "Order status updated successfully")


if __name__ == "__main__":
    import uvicorn
    configure_logging(settings.log_level)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
