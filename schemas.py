"""
Database Schemas for the Bakery Storefront

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase of the class name.

- User -> "user"
- Product -> "product"
- Category -> "category"
- Order -> "order"
- Address -> embedded in User, copied into Order as the delivery address

Request payload models live at the bottom of the module.
"""
import re
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

# -----------------------
# Shared literals
# -----------------------

CategoryLiteral = Literal["cakes", "flowers", "personalized-gifts", "plants"]
AllergenLiteral = Literal["nuts", "dairy", "eggs", "gluten", "soy", "sesame", "shellfish"]
OccasionLiteral = Literal[
    "birthday", "anniversary", "wedding", "graduation", "valentine",
    "christmas", "diwali", "holi", "everyday",
]
AddressType = Literal["home", "work", "other"]
OrderStatus = Literal[
    "pending", "confirmed", "preparing", "baking", "ready",
    "out-for-delivery", "delivered", "cancelled",
]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["cod", "online", "wallet"]
DeliveryType = Literal["standard", "express", "scheduled"]
Language = Literal["en", "hi"]

DIETARY_KEYS = ("vegetarian", "vegan", "gluten_free", "sugar_free", "eggless")

_PHONE_RE = re.compile(r"^[6-9]\d{9}$")
_PINCODE_RE = re.compile(r"^\d{6}$")
_WEIGHT_RE = re.compile(r"^\d+(\.\d+)?\s*(kg|g|lbs|oz)$", re.IGNORECASE)
_SLUG_RE = re.compile(r"^[a-z0-9-]+$")


def normalize_phone(v: str) -> str:
    # Accept 9XXXXXXXXX or +91 9XXXXXXXXX, stored without the country code
    v = v.strip().replace(" ", "")
    if v.startswith("+91"):
        v = v[3:]
    if _PHONE_RE.match(v):
        return v
    raise ValueError("Phone must be a valid 10-digit Indian mobile number")


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9\s-]", "", name.lower())
    slug = re.sub(r"\s+", "-", slug.strip())
    return re.sub(r"-+", "-", slug)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


# -----------------------
# Catalog
# -----------------------

class ProductRating(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Dietary(BaseModel):
    vegetarian: bool = True
    vegan: bool = False
    gluten_free: bool = False
    sugar_free: bool = False
    eggless: bool = False


class Availability(BaseModel):
    in_stock: bool = True
    quantity: int = Field(0, ge=0)
    pre_order_days: Optional[int] = Field(None, ge=0, le=30, description="Lead time when sold as a pre-order")


class ProductCustomization(BaseModel):
    flavors: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    decorations: List[str] = Field(default_factory=list)


class Seo(BaseModel):
    slug: Optional[str] = None
    meta_title: Optional[str] = Field(None, max_length=60)
    meta_description: Optional[str] = Field(None, max_length=160)
    keywords: List[str] = Field(default_factory=list)

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.lower()
        if not _SLUG_RE.match(v):
            raise ValueError("Slug can only contain lowercase letters, numbers, and hyphens")
        return v


class Product(BaseModel):
    name: str = Field(..., max_length=200)
    description: str = Field(..., max_length=2000)
    category: CategoryLiteral
    subcategory: Optional[str] = None
    price: float = Field(..., ge=0, description="Price in rupees")
    original_price: Optional[float] = Field(None, ge=0)
    images: List[str] = Field(default_factory=list)
    rating: ProductRating = Field(default_factory=ProductRating)
    weight: str = Field(..., description="e.g. 1kg, 500g")
    servings: Optional[int] = Field(None, ge=1)
    ingredients: List[str] = Field(default_factory=list)
    allergens: List[AllergenLiteral] = Field(default_factory=list)
    dietary: Dietary = Field(default_factory=Dietary)
    occasions: List[OccasionLiteral] = Field(default_factory=list)
    availability: Availability = Field(default_factory=Availability)
    customization: ProductCustomization = Field(default_factory=ProductCustomization)
    seo: Seo = Field(default_factory=Seo)
    is_active: bool = True
    is_featured: bool = False
    sort_order: int = 0

    @field_validator("weight")
    @classmethod
    def validate_weight(cls, v: str) -> str:
        if not _WEIGHT_RE.match(v.strip()):
            raise ValueError("Please enter a valid weight format (e.g., 1kg, 500g)")
        return v.strip()

    @model_validator(mode="after")
    def fill_seo(self) -> "Product":
        if not self.seo.slug:
            self.seo.slug = slugify(self.name)
        if not self.seo.meta_title:
            self.seo.meta_title = _truncate(self.name, 60)
        if not self.seo.meta_description:
            self.seo.meta_description = _truncate(self.description, 160)
        return self


class Category(BaseModel):
    id: CategoryLiteral = Field(..., description="Category key, referenced by Product.category")
    name: str = Field(..., max_length=100)
    description: str = Field(..., max_length=500)
    image: str = Field(..., pattern=r"^https?://.+")
    is_active: bool = True
    sort_order: int = 0


# -----------------------
# Users
# -----------------------

class DeliveryAddress(BaseModel):
    name: str = Field(..., min_length=1, description="Recipient name")
    phone: str
    street: str = Field(..., min_length=1)
    house_number: str = Field(..., min_length=1)
    landmark: Optional[str] = None
    pincode: str
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)

    @field_validator("name", "street", "house_number", "city", "state")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field is required")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return normalize_phone(v)

    @field_validator("pincode")
    @classmethod
    def validate_pincode(cls, v: str) -> str:
        v = v.strip()
        if not _PINCODE_RE.match(v):
            raise ValueError("Please enter a valid 6-digit pincode")
        return v


class Address(DeliveryAddress):
    id: Optional[str] = Field(None, description="Address identifier")
    type: AddressType = "home"
    is_default: bool = False


class Preferences(BaseModel):
    notifications: bool = True
    marketing: bool = False
    language: Language = "en"


class User(BaseModel):
    auth_uid: str = Field(..., description="Subject id issued by the identity provider")
    phone: Optional[str] = Field(None, description="10-digit mobile, unique")
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    date_of_birth: Optional[date] = None
    addresses: List[Address] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)
    loyalty_points: int = Field(default=0, ge=0)
    is_active: bool = Field(default=True)
    last_login_at: Optional[datetime] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return normalize_phone(v) if v else None


# -----------------------
# Orders
# -----------------------

class ItemCustomization(BaseModel):
    flavor: Optional[str] = None
    size: Optional[str] = None
    decoration: Optional[str] = None
    special_instructions: Optional[str] = Field(None, max_length=500)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    weight: str
    customization: ItemCustomization = Field(default_factory=ItemCustomization)
    subtotal: float = Field(..., ge=0)
    reserved_quantity: int = Field(0, ge=0, description="Units taken from product stock")


class OrderSummary(BaseModel):
    subtotal: float = Field(..., ge=0)
    delivery_fee: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(..., ge=0)


class DeliveryDetails(BaseModel):
    type: DeliveryType = "standard"
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    estimated_delivery: datetime
    actual_delivery: Optional[datetime] = None
    delivery_instructions: Optional[str] = None


class OrderRating(BaseModel):
    overall: int = Field(..., ge=1, le=5)
    food: int = Field(..., ge=1, le=5)
    delivery: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
    rated_at: Optional[datetime] = None


class Order(BaseModel):
    order_id: str
    user_id: str
    auth_uid: str
    items: List[OrderItem] = Field(..., min_length=1)
    delivery_address: DeliveryAddress
    order_summary: OrderSummary
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_method: PaymentMethod
    delivery_details: DeliveryDetails
    timeline: dict = Field(default_factory=dict, description="status -> first time reached")
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rating: Optional[OrderRating] = None
    loyalty_points_earned: int = Field(0, ge=0)
    loyalty_points_used: int = Field(0, ge=0)


# -----------------------
# Request payloads
# -----------------------

class AddressIn(Address):
    pass


class AddressUpdate(BaseModel):
    type: Optional[AddressType] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    house_number: Optional[str] = None
    landmark: Optional[str] = None
    pincode: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    is_default: Optional[bool] = None

    @field_validator("name", "street", "house_number", "city", "state")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip() if v else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return normalize_phone(v) if v is not None else v

    @field_validator("pincode")
    @classmethod
    def validate_pincode(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _PINCODE_RE.match(v.strip()):
            raise ValueError("Please enter a valid 6-digit pincode")
        return v.strip() if v else v


class PreferencesUpdate(BaseModel):
    notifications: Optional[bool] = None
    marketing: Optional[bool] = None
    language: Optional[Language] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    preferences: Optional[PreferencesUpdate] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return normalize_phone(v) if v is not None else v


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    customization: ItemCustomization = Field(default_factory=ItemCustomization)


class DeliveryDetailsIn(BaseModel):
    type: DeliveryType = "standard"
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    delivery_instructions: Optional[str] = Field(None, max_length=500)


class OrderCreateIn(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1, description="Order must contain at least one item")
    delivery_address: DeliveryAddress
    payment_method: PaymentMethod
    delivery_details: Optional[DeliveryDetailsIn] = None
    notes: Optional[str] = Field(None, max_length=500)


class RatingIn(BaseModel):
    overall: int = Field(..., ge=1, le=5)
    food: int = Field(..., ge=1, le=5)
    delivery: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
