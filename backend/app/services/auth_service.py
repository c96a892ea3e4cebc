import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.config import settings
from app.database import get_or_create_workspace, get_store, migrate_legacy_workspace
from app.exceptions import AuthError, ConflictError, ValidationError
from app.models.user import sanitize_user
from app.utils.ids import create_id
from app.utils.security import create_session_token, get_password_hash, hash_token, verify_password
from app.utils.time import now_iso, parse_iso, to_iso

logger = logging.getLogger(__name__)

AUTH_COOKIE_NAME = "wa_crm_session"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8


def normalize_email(value) -> str:
    return str(value or "").strip().lower()


def session_max_age_seconds() -> int:
    return settings.AUTH_SESSION_DAYS * 24 * 60 * 60


def _session_expiry() -> str:
    return to_iso(datetime.now(timezone.utc) + timedelta(seconds=session_max_age_seconds()))


def _prune_expired_sessions(document: dict):
    now = datetime.now(timezone.utc)
    document["authSessions"] = [
        session
        for session in document["authSessions"]
        if (parse_iso(session.get("expiresAt")) or now) > now
    ]


def _create_session(document: dict, user_id: str) -> str:
    _prune_expired_sessions(document)
    token = create_session_token()
    document["authSessions"].append({
        "id": create_id("authsess"),
        "userId": user_id,
        "tokenHash": hash_token(token),
        "createdAt": now_iso(),
        "expiresAt": _session_expiry(),
    })
    return token


def _validate_registration(name: str, email: str, password: str):
    if not str(name or "").strip():
        raise ValidationError("Name is required.")

    if not EMAIL_PATTERN.match(normalize_email(email)):
        raise ValidationError("Valid email is required.")

    if len(str(password or "")) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")


def has_any_accounts() -> bool:
    return len(get_store().read()["users"]) > 0


def register_account(name: str, email: str, password: str) -> dict:
    """Create a user with its workspace and an open session. Returns {user, token}."""
    _validate_registration(name, email, password)
    normalized_email = normalize_email(email)

    with get_store().transaction() as document:
        if any(normalize_email(user.get("email")) == normalized_email for user in document["users"]):
            raise ConflictError("Account with this email already exists.")

        now = now_iso()
        user = {
            "id": create_id("user"),
            "name": str(name).strip(),
            "email": normalized_email,
            "passwordHash": get_password_hash(str(password)),
            "createdAt": now,
            "lastLoginAt": now,
        }

        migrate_legacy_workspace(document, user["id"])
        document["users"].append(user)
        get_or_create_workspace(document, user["id"])

        token = _create_session(document, user["id"])

    logger.info(f"Registered account {user['id']}")
    return {"user": sanitize_user(user), "token": token}


def login_account(email: str, password: str) -> dict:
    normalized_email = normalize_email(email)
    plain_password = str(password or "")
    if not normalized_email or not plain_password:
        raise ValidationError("Email and password are required.")

    with get_store().transaction() as document:
        user = next(
            (entry for entry in document["users"] if normalize_email(entry.get("email")) == normalized_email),
            None,
        )
        if user is None or not verify_password(plain_password, user.get("passwordHash")):
            raise AuthError("Invalid email or password.")

        user["lastLoginAt"] = now_iso()
        get_or_create_workspace(document, user["id"])
        token = _create_session(document, user["id"])

    return {"user": sanitize_user(user), "token": token}


def get_session_user_by_token(token) -> Optional[dict]:
    """Resolve a session cookie to {user, userId}; extends the session on success"""
    raw_token = str(token or "").strip()
    if not raw_token:
        return None

    token_hash = hash_token(raw_token)

    with get_store().transaction() as document:
        _prune_expired_sessions(document)
        session = next((entry for entry in document["authSessions"] if entry.get("tokenHash") == token_hash), None)
        if session is None:
            return None

        user = next((entry for entry in document["users"] if entry.get("id") == session.get("userId")), None)
        if user is None:
            document["authSessions"] = [entry for entry in document["authSessions"] if entry is not session]
            return None

        # sliding expiration
        session["expiresAt"] = _session_expiry()

    return {"user": sanitize_user(user), "userId": user["id"]}


def logout_session_by_token(token):
    raw_token = str(token or "").strip()
    if not raw_token:
        return

    token_hash = hash_token(raw_token)
    with get_store().transaction() as document:
        document["authSessions"] = [
            entry for entry in document["authSessions"] if entry.get("tokenHash") != token_hash
        ]
