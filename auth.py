"""FastAPI dependencies for bearer authentication and the admin allow-list."""
import logging
from typing import Optional

from fastapi import Depends, Header
from pymongo.database import Database

from config import Settings, get_settings
from database import get_db
from errors import AuthenticationFailed, PermissionDenied
from identity import FirebaseTokenVerifier, VerifiedIdentity, get_token_verifier
from users import find_or_create_user

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationFailed("No token provided. Please include Bearer token in Authorization header.")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthenticationFailed("Invalid token format.")
    return token


def get_identity(
    authorization: Optional[str] = Header(None),
    verifier: FirebaseTokenVerifier = Depends(get_token_verifier),
) -> VerifiedIdentity:
    return verifier.verify(bearer_token(authorization))


def get_current_user(
    identity: VerifiedIdentity = Depends(get_identity),
    db: Database = Depends(get_db),
) -> dict:
    user, _ = find_or_create_user(db, identity, require_phone_claim=True)
    if not user:
        raise AuthenticationFailed("User account not found. Please complete registration.")
    return user


def require_admin(
    identity: VerifiedIdentity = Depends(get_identity),
    settings: Settings = Depends(get_settings),
) -> VerifiedIdentity:
    if not settings.is_admin_email(identity.email):
        logger.warning("Admin access denied for subject %s", identity.uid)
        raise PermissionDenied("Admin access required.")
    return identity
