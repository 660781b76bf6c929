"""
Bearer-token verification against Firebase Authentication.

Handlers depend on ``get_token_verifier``; the verifier only ever hands back
a ``VerifiedIdentity`` or raises ``AuthenticationFailed``.
"""
import json
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import firebase_admin
from firebase_admin import auth, credentials

from config import Settings, get_settings
from errors import AuthenticationFailed, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedIdentity:
    uid: str
    phone_number: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False


class FirebaseTokenVerifier:
    APP_NAME = "bakery-storefront"

    def __init__(self, settings: Settings):
        self.settings = settings
        self._app = None
        self._lock = threading.Lock()

    def _service_account(self) -> dict:
        s = self.settings
        if s.firebase_service_account_json:
            try:
                info = json.loads(s.firebase_service_account_json)
            except json.JSONDecodeError as e:
                raise ConfigurationError("FIREBASE_SERVICE_ACCOUNT_JSON is not valid JSON") from e
            if isinstance(info.get("private_key"), str):
                info["private_key"] = info["private_key"].replace("\\n", "\n")
            info.setdefault("project_id", s.firebase_project_id)
            return info

        missing = [
            name for name, value in (
                ("FIREBASE_PROJECT_ID", s.firebase_project_id),
                ("FIREBASE_CLIENT_EMAIL", s.firebase_client_email),
                ("FIREBASE_PRIVATE_KEY", s.firebase_private_key),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(f"Firebase credentials missing required env vars: {', '.join(missing)}")
        return {
            "type": "service_account",
            "project_id": s.firebase_project_id,
            "client_email": s.firebase_client_email,
            "private_key": s.firebase_private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        }

    def _get_app(self):
        with self._lock:
            if self._app is None:
                try:
                    self._app = firebase_admin.get_app(self.APP_NAME)
                except ValueError:
                    info = self._service_account()
                    if not info.get("project_id"):
                        raise ConfigurationError("Firebase service account must contain a project_id")
                    self._app = firebase_admin.initialize_app(
                        credentials.Certificate(info),
                        {"projectId": info["project_id"]},
                        name=self.APP_NAME,
                    )
                    logger.info("Firebase Admin SDK initialized for project %s", info["project_id"])
            return self._app

    def verify(self, id_token: str) -> VerifiedIdentity:
        app = self._get_app()
        try:
            claims = auth.verify_id_token(id_token, app=app)
        except auth.ExpiredIdTokenError:
            logger.warning("Rejected expired ID token")
            raise AuthenticationFailed("Token has expired")
        except (ValueError, auth.InvalidIdTokenError, auth.CertificateFetchError) as e:
            logger.warning("Token verification failed: %s", e)
            raise AuthenticationFailed("Invalid or expired token")
        return VerifiedIdentity(
            uid=claims["uid"],
            phone_number=claims.get("phone_number"),
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
        )


_verifier: Optional[FirebaseTokenVerifier] = None


def get_token_verifier() -> FirebaseTokenVerifier:
    global _verifier
    if _verifier is None:
        _verifier = FirebaseTokenVerifier(get_settings())
    return _verifier
