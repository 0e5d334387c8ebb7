# pestcontrol/core/security.py
# type: ignore
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import Response
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from pestcontrol.core.config import settings
from pestcontrol.core.errors import TokenExpired, TokenInvalid

# ***************************************************************
# 1. Password hashing
# ***************************************************************

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

_COMMON_PATTERNS = (
    re.compile(r"^(password|123456|qwerty|admin|letmein)$", re.IGNORECASE),
    re.compile(r"^(\w)\1{2,}$"),
    re.compile(r"^(012|123|234|345|456|567|678|789|890)+$"),
    re.compile(
        r"^(abc|bcd|cde|def|efg|fgh|ghi|hij|ijk|jkl|klm|lmn|mno|nop|opq|pqr|qrs|rst|stu|tuv|uvw|vwx|wxy|xyz)+$",
        re.IGNORECASE,
    ),
)

# no look-alikes (0/O, 1/l/I)
_TEMP_PASSWORD_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Checks a plain-text password against its hash."""
    if not plain_password or not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def validate_password_strength(password: Optional[str]) -> List[str]:
    """Returns the list of unmet requirements; empty means the password is acceptable."""
    if not password or not isinstance(password, str):
        return ["Password is required"]

    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must not exceed {MAX_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if any(pattern.match(password) for pattern in _COMMON_PATTERNS):
        errors.append("Password is too common or predictable")
    return errors


def generate_temp_password(length: int = 10) -> str:
    """Random password with at least one upper, one lower and one digit."""
    while True:
        candidate = "".join(secrets.choice(_TEMP_PASSWORD_ALPHABET) for _ in range(length))
        if not validate_password_strength(candidate):
            return candidate


# ***************************************************************
# 2. Session tokens (JWT)
# ***************************************************************

def issue_token(payload: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Signs a payload, embedding issuer, audience and expiry."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else settings.JWT_EXPIRES_IN)

    to_encode = {key: value for key, value in payload.items() if value is not None}
    to_encode.update({
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": now,
        "exp": expire,
    })
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """Decodes a token. Raises TokenExpired or TokenInvalid."""
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except ExpiredSignatureError as e:
        raise TokenExpired("Token expired") from e
    except (JWTError, TypeError, ValueError) as e:
        raise TokenInvalid("Invalid token") from e


# ***************************************************************
# 3. Cookie helpers
# ***************************************************************

def set_token_cookie(response: Response, token: str) -> None:
    max_age = settings.JWT_COOKIE_EXPIRES_IN_DAYS * 24 * 60 * 60
    response.set_cookie(
        key=settings.COOKIE_NAME,
        value=token,
        max_age=max_age,
        expires=max_age,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def clear_token_cookie(response: Response) -> None:
    """Overwrites the session cookie with an empty, already-expired one."""
    response.set_cookie(
        key=settings.COOKIE_NAME,
        value="",
        max_age=0,
        expires=datetime(1970, 1, 1, tzinfo=timezone.utc),
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )
