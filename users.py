"""
User accounts, profile updates, loyalty balance and the embedded address book.

The address book keeps exactly one default address whenever it is non-empty;
every write goes through ``normalize_default_address`` first.
"""
import logging
from datetime import date, datetime
from typing import List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import utcnow
from errors import BusinessRuleViolation, NotFound
from identity import VerifiedIdentity
from schemas import AddressIn, AddressUpdate, ProfileUpdate, User, normalize_phone

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "auth_uid", "phone", "name", "email", "date_of_birth",
    "addresses", "preferences", "loyalty_points", "last_login_at", "created_at",
)


# -----------------------------
# Address book
# -----------------------------

def normalize_default_address(addresses: List[dict]) -> List[dict]:
    """Keep only the first default; promote the first address if none is default."""
    seen_default = False
    for addr in addresses:
        if addr.get("is_default"):
            if seen_default:
                addr["is_default"] = False
            seen_default = True
    if addresses and not seen_default:
        addresses[0]["is_default"] = True
    return addresses


def apply_add_address(addresses: List[dict], address: dict) -> List[dict]:
    address = dict(address)
    address["id"] = str(ObjectId())
    if not addresses or address.get("is_default"):
        for addr in addresses:
            addr["is_default"] = False
        address["is_default"] = True
    else:
        address["is_default"] = False
    addresses.append(address)
    return normalize_default_address(addresses)


def apply_update_address(addresses: List[dict], address_id: str, changes: dict) -> List[dict]:
    target = next((a for a in addresses if a.get("id") == address_id), None)
    if target is None:
        raise NotFound("Address not found")
    if changes.get("is_default"):
        for addr in addresses:
            if addr is not target:
                addr["is_default"] = False
    target.update(changes)
    return normalize_default_address(addresses)


def apply_remove_address(addresses: List[dict], address_id: str) -> List[dict]:
    target = next((a for a in addresses if a.get("id") == address_id), None)
    if target is None:
        raise NotFound("Address not found")
    remaining = [a for a in addresses if a is not target]
    if target.get("is_default") and remaining:
        remaining[0]["is_default"] = True
    return normalize_default_address(remaining)


def _save_addresses(db: Database, user: dict, addresses: List[dict]) -> List[dict]:
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"addresses": addresses, "updated_at": utcnow()}},
    )
    user["addresses"] = addresses
    return addresses


def add_address(db: Database, user: dict, body: AddressIn) -> List[dict]:
    addresses = [dict(a) for a in user.get("addresses", [])]
    addresses = apply_add_address(addresses, body.model_dump(exclude={"id"}))
    return _save_addresses(db, user, addresses)


def update_address(db: Database, user: dict, address_id: str, body: AddressUpdate) -> List[dict]:
    addresses = [dict(a) for a in user.get("addresses", [])]
    addresses = apply_update_address(addresses, address_id, body.model_dump(exclude_unset=True, exclude_none=True))
    return _save_addresses(db, user, addresses)


def remove_address(db: Database, user: dict, address_id: str) -> List[dict]:
    addresses = [dict(a) for a in user.get("addresses", [])]
    addresses = apply_remove_address(addresses, address_id)
    return _save_addresses(db, user, addresses)


# -----------------------------
# Accounts
# -----------------------------

def _as_datetime(value):
    # BSON has no plain date type
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return value


def _phone_from_claim(phone_number: Optional[str]) -> Optional[str]:
    if not phone_number:
        return None
    try:
        return normalize_phone(phone_number)
    except ValueError:
        return phone_number.strip()


def _profile_changes(update: ProfileUpdate) -> dict:
    changes = {}
    data = update.model_dump(exclude_unset=True, exclude_none=True)
    prefs = data.pop("preferences", None) or {}
    for key, value in data.items():
        changes[key] = _as_datetime(value)
    for key, value in prefs.items():
        changes[f"preferences.{key}"] = value
    if "email" in changes:
        changes["email"] = changes["email"].lower()
    return changes


def get_user(db: Database, auth_uid: str) -> Optional[dict]:
    return db["user"].find_one({"auth_uid": auth_uid})


def find_or_create_user(
    db: Database,
    identity: VerifiedIdentity,
    user_data: Optional[ProfileUpdate] = None,
    require_phone_claim: bool = False,
) -> Tuple[Optional[dict], bool]:
    """Resolve the account for a verified identity, creating it on first sight.

    Returns (user, is_new). With ``require_phone_claim`` an identity without a
    phone claim and no existing account resolves to (None, False).
    """
    now = utcnow()
    changes = _profile_changes(user_data) if user_data else {}
    existing = get_user(db, identity.uid)
    if existing:
        changes["last_login_at"] = now
        return _update_user(db, existing["_id"], changes), False

    phone = _phone_from_claim(identity.phone_number) or changes.pop("phone", None)
    if not phone:
        if require_phone_claim:
            return None, False
        raise BusinessRuleViolation("A phone number is required to create an account")

    doc = User(auth_uid=identity.uid).model_dump(exclude={"phone", "email", "date_of_birth"})
    doc["phone"] = phone
    if identity.email:
        doc["email"] = identity.email.lower()
    doc["last_login_at"] = now
    doc["created_at"] = now
    doc["updated_at"] = now
    try:
        result = db["user"].insert_one(doc)
    except DuplicateKeyError:
        # a concurrent first login may have won the race
        existing = get_user(db, identity.uid)
        if existing:
            return existing, False
        raise BusinessRuleViolation("Phone number is already registered to another account")
    doc["_id"] = result.inserted_id
    logger.info("Created user %s for subject %s", doc["_id"], identity.uid)
    if changes:
        doc = _update_user(db, doc["_id"], changes)
    return doc, True


def _update_user(db: Database, user_id, changes: dict) -> dict:
    changes = dict(changes)
    changes["updated_at"] = utcnow()
    try:
        return db["user"].find_one_and_update(
            {"_id": user_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise BusinessRuleViolation("Phone number is already registered to another account")


def update_profile(db: Database, user: dict, update: ProfileUpdate) -> dict:
    return _update_user(db, user["_id"], _profile_changes(update))


def adjust_loyalty_points(db: Database, user_id, delta: int) -> int:
    """Add ``delta`` to the balance, never going below zero. Returns the new balance."""
    if delta >= 0:
        doc = db["user"].find_one_and_update(
            {"_id": user_id},
            {"$inc": {"loyalty_points": delta}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return doc["loyalty_points"] if doc else 0
    doc = db["user"].find_one({"_id": user_id})
    if not doc:
        return 0
    balance = max(0, doc.get("loyalty_points", 0) + delta)
    db["user"].update_one({"_id": user_id}, {"$set": {"loyalty_points": balance, "updated_at": utcnow()}})
    return balance


def user_profile(user: dict) -> dict:
    out = {key: user.get(key) for key in PROFILE_FIELDS if key in user}
    out["id"] = str(user["_id"])
    return out
