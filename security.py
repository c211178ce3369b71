from datetime import timedelta
from typing import Optional

import bcrypt
import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings
from database import serialize_doc, utcnow
from errors import Forbidden, Unauthenticated
from logging_config import get_logger
from schemas import Role

logger = get_logger(__name__)

TOKEN_COOKIE = "token"
bearer_scheme = HTTPBearer(auto_error=False)


# ----------------------- Passwords -----------------------
def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


# ----------------------- Tokens -----------------------
def create_token(user_id: str, role: str, settings: Settings, expires_in: Optional[timedelta] = None) -> str:
    now = utcnow()
    exp = now + (expires_in or timedelta(hours=settings.jwt_expires_hours))
    payload = {"sub": user_id, "role": role, "iat": now, "exp": exp}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Token is not valid", code="INVALID_TOKEN")


def public_user(doc: dict) -> dict:
    """Serialized user document without credentials."""
    user = serialize_doc(doc)
    user.pop("password_hash", None)
    return user


# ----------------------- Dependencies -----------------------
def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    settings: Settings = request.app.state.settings
    token = credentials.credentials if credentials else request.cookies.get(TOKEN_COOKIE)
    if not token:
        raise Unauthenticated("No token, authorization denied", code="NO_TOKEN")

    payload = decode_token(token, settings)
    try:
        user_id = ObjectId(payload["sub"])
    except (InvalidId, TypeError):
        raise Unauthenticated("Invalid token payload", code="INVALID_TOKEN")

    user = request.app.state.db["user"].find_one({"_id": user_id})
    if not user or not user.get("is_active", True):
        raise Unauthenticated("User not found", code="USER_NOT_FOUND")
    return public_user(user)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != Role.ADMIN.value:
        logger.info("admin_access_denied", user_id=user["id"], role=user.get("role"))
        raise Forbidden("Admin access required", code="ADMIN_REQUIRED")
    return user
