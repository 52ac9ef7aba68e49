"""Authentication utilities: password hashing, session tokens and signed action tokens."""

import enum
import hashlib
import uuid
from datetime import UTC, datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from bspcp.core.config import Settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Members were historically hashed with 10 rounds, admins with 12.
MEMBER_BCRYPT_ROUNDS = 10
ADMIN_BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8


class TokenExpired(Exception):
    """The token signature is valid but its expiry has passed."""


class TokenInvalid(Exception):
    """The token is malformed, tampered with, or of the wrong type/purpose."""


class ActionPurpose(enum.StrEnum):
    PASSWORD_SETUP = "password_setup"
    PASSWORD_RESET = "password_reset"
    PAYMENT_UPLOAD = "payment_upload"
    ADMIN_PASSWORD_RESET = "admin_password_reset"


def hash_password(password: str, rounds: int = MEMBER_BCRYPT_ROUNDS) -> str:
    return pwd_context.handler().using(rounds=rounds).hash(password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def bcrypt_salt(hashed_password: str) -> str:
    """The 22-character salt embedded in a ``$2b$<rounds>$`` hash."""
    return hashed_password.split("$")[3][:22]


def token_fingerprint(token: str) -> str:
    """SHA-256 of the raw token, used to key admin sessions."""
    return hashlib.sha256(token.encode()).hexdigest()


def _encode(settings: Settings, payload: dict, lifetime: timedelta) -> str:
    payload = {**payload, "exp": datetime.now(UTC) + lifetime}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(settings: Settings, token: str) -> dict:
    """Decode and validate a JWT.

    Raises TokenExpired when only the expiry check fails, TokenInvalid otherwise.
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise TokenExpired("Token has expired") from None
    except JWTError:
        raise TokenInvalid("Invalid token") from None


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def create_member_token(settings: Settings, member_id: int, username: str, full_name: str) -> str:
    return _encode(
        settings,
        {"sub": str(member_id), "type": "member", "username": username, "fullName": full_name},
        timedelta(minutes=settings.member_token_expire_minutes),
    )


def create_admin_token(settings: Settings, admin_id: int, username: str, role: str) -> str:
    return _encode(
        settings,
        {"sub": str(admin_id), "type": "admin", "username": username, "role": role, "jti": uuid.uuid4().hex},
        timedelta(minutes=settings.admin_token_expire_minutes),
    )


# ---------------------------------------------------------------------------
# Signed action tokens (emailed links)
# ---------------------------------------------------------------------------


def _action_lifetime(settings: Settings, purpose: ActionPurpose) -> timedelta:
    if purpose == ActionPurpose.PASSWORD_SETUP:
        return timedelta(hours=settings.password_setup_expire_hours)
    if purpose == ActionPurpose.PAYMENT_UPLOAD:
        return timedelta(days=settings.payment_upload_expire_days)
    return timedelta(minutes=settings.password_reset_expire_minutes)


def create_action_token(settings: Settings, subject_id: int, purpose: ActionPurpose) -> str:
    return _encode(
        settings,
        {"sub": str(subject_id), "type": "action", "purpose": purpose.value, "jti": uuid.uuid4().hex},
        _action_lifetime(settings, purpose),
    )


def verify_action_token(settings: Settings, token: str, purpose: ActionPurpose) -> dict:
    """Decode an action token and check it was issued for ``purpose``.

    Returns {"subject_id": int, "jti": str, "exp": int}.
    """
    payload = decode_token(settings, token)
    if payload.get("type") != "action" or payload.get("purpose") != purpose.value:
        raise TokenInvalid("Invalid token purpose")
    try:
        return {"subject_id": int(payload["sub"]), "jti": payload["jti"], "exp": payload["exp"]}
    except (KeyError, ValueError):
        raise TokenInvalid("Malformed token") from None
