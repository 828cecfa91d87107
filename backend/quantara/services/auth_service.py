import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from bson import ObjectId
from fastapi import Depends, HTTPException, Request, status
import jwt
from jwt.exceptions import InvalidTokenError as JWTError

from quantara.config import settings
from quantara.database import get_db
from quantara.models.user import Role
from quantara.utils import utcnow

logger = logging.getLogger("quantara.auth")
ph = PasswordHasher()

ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return ph.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return ph.verify(hashed, password)
    except (VerificationError, InvalidHashError):
        return False


def create_access_token(user_id: str, role: str) -> str:
    expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": user_id,
        "role": role,
        "exp": expire,
        "type": "access",
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_jwt(token: str) -> dict:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_password_reset_token() -> tuple[str, str, datetime]:
    """Return (token for the mail link, sha256 to store, expiry)."""
    token = secrets.token_hex(32)
    expires_at = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    return token, hash_reset_token(token), expires_at


def _token_from_request(request: Request) -> Optional[str]:
    """Bearer header first, then the ``access_token`` cookie."""
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get("access_token")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request, db=Depends(get_db)) -> dict:
    """Dependency: the user behind the request's access token, else 401.

    Also stores the id on ``request.state`` for the access log.
    """
    token = _token_from_request(request)
    if not token:
        raise _unauthorized("Not authenticated.")

    try:
        claims = decode_jwt(token)
    except JWTError:
        raise _unauthorized("Invalid or expired token.")

    user_id = claims.get("sub")
    if claims.get("type") != "access" or not ObjectId.is_valid(user_id or ""):
        raise _unauthorized("Invalid or expired token.")

    user = await db.users.find_one({"_id": ObjectId(user_id)})
    if user is None:
        raise _unauthorized("User not found.")

    request.state.user_id = user_id
    return user


async def get_admin_user(request: Request, db=Depends(get_db)) -> dict:
    user = await get_current_user(request, db)
    if user.get("role") != Role.admin.value:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin access required.")
    return user
