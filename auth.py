"""
Authentication: password hashing, bearer tokens and the account operations
built on them (signup, login, logout, password reset).
"""
import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from bson import ObjectId
from fastapi import Header
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
import database
from carts import hand_over_guest_cart
from errors import AuthenticationError, ConflictError, InternalError, ValidationError
from schemas import User as UserSchema, full_name

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def _secret() -> str:
    if not config.JWT_SECRET:
        logger.error("JWT_SECRET is not configured")
        raise InternalError()
    return config.JWT_SECRET


# Tokens
def create_token(user: dict) -> str:
    payload = {
        "sub": str(user["_id"]),
        "name": full_name(user),
        "jti": uuid.uuid4().hex,
        "exp": datetime.now(timezone.utc) + timedelta(days=config.TOKEN_TTL_DAYS),
    }
    return jwt.encode(payload, _secret(), algorithm=config.JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, _secret(), algorithms=[config.JWT_ALG])
    except JWTError:
        raise AuthenticationError("Invalid token")


def _bearer(authorization: str) -> str:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid Authorization header")
    return token.strip()


def _user_from_token(token: str) -> Tuple[dict, dict]:
    payload = decode_token(token)
    if database.collection("revoked_token").find_one({"jti": payload.get("jti")}):
        raise AuthenticationError("Token has been revoked")
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthenticationError("Invalid token user")
    user = database.collection("user").find_one({"_id": ObjectId(user_id)})
    if not user:
        raise AuthenticationError("Invalid token user")
    return user, payload


def get_token_claims(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise AuthenticationError("Missing Authorization header")
    return _user_from_token(_bearer(authorization))[1]


def get_current_user(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise AuthenticationError("Missing Authorization header")
    return _user_from_token(_bearer(authorization))[0]


def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[dict]:
    """Like get_current_user, but a request without a token is a guest."""
    if not authorization:
        return None
    return _user_from_token(_bearer(authorization))[0]


# Credential strategies
def password_strategy(email: str, password: str) -> Optional[dict]:
    user = database.collection("user").find_one({"email": email})
    if not user or not verify_password(password, user.get("password_hash", "")):
        return None
    return user


LoginStrategy = Callable[[str, str], Optional[dict]]
login_strategy: LoginStrategy = password_strategy


def authenticate(email: str, password: str, strategy: Optional[LoginStrategy] = None) -> Optional[dict]:
    return (strategy or login_strategy)(email, password)


# Account operations
def signup(first_name: str, last_name: str, email: str, password: str) -> dict:
    users = database.collection("user")
    if users.find_one({"email": email}):
        raise ConflictError("Email already exists")
    user = UserSchema(first_name=first_name, last_name=last_name, email=email, password_hash=hash_password(password))
    user_id = database.create_document("user", user)
    logger.info("User %s signed up", user_id)
    return users.find_one({"_id": ObjectId(user_id)})


def login(email: str, password: str) -> str:
    user = authenticate(email, password)
    if not user:
        raise AuthenticationError("Invalid email or password")
    token = create_token(user)
    hand_over_guest_cart(str(user["_id"]))
    logger.info("User %s logged in", user["_id"])
    return token


def logout(claims: dict) -> None:
    expires = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
    database.collection("revoked_token").update_one(
        {"jti": claims["jti"]},
        {"$setOnInsert": {"jti": claims["jti"], "user_id": claims.get("sub"), "expires_at": expires}},
        upsert=True,
    )
    logger.info("User %s logged out", claims.get("sub"))


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def start_password_reset(email: str) -> Optional[Tuple[dict, str]]:
    """Store a fresh reset token on the user and return (user, raw token).

    Returns None when no account uses ``email``.
    """
    users = database.collection("user")
    user = users.find_one({"email": email})
    if not user:
        logger.info("Password reset requested for unknown email")
        return None
    token = secrets.token_urlsafe(32)
    expires = datetime.now(timezone.utc) + timedelta(minutes=config.RESET_TOKEN_TTL_MINUTES)
    users.update_one(
        {"_id": user["_id"]},
        {"$set": {"reset_token_hash": _digest(token), "reset_token_expires": expires,
                  "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("Password reset requested for user %s", user["_id"])
    return user, token


def reset_link(token: str) -> str:
    return f"{config.FRONTEND_URL.rstrip('/')}/reset-password/{token}"


def complete_password_reset(token: str, new_password: str) -> None:
    users = database.collection("user")
    user = users.find_one({"reset_token_hash": _digest(token)})
    expires = user.get("reset_token_expires") if user else None
    if expires is not None and expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    if not user or expires is None or expires < datetime.now(timezone.utc):
        raise ValidationError("Password reset token is invalid or has expired")
    users.update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": datetime.now(timezone.utc)},
         "$unset": {"reset_token_hash": "", "reset_token_expires": ""}},
    )
    logger.info("Password reset completed for user %s", user["_id"])
