"""
Follow Loop Engine - Authentication

The authenticated user is the person behind every participant; a loop
participant id is derived from the user id. Tokens carry the account role
so admin routes can be refused early, and a token whose role no longer
matches the account (promotion or demotion since login) is rejected.
"""
import os
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .models.db_models import UserDB, UserRole

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "follow-loop-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))

security = HTTPBearer()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def role_of(user: UserDB) -> UserRole:
    """Stored role; unknown values fall back to a plain user."""
    try:
        return UserRole(user.role)
    except ValueError:
        return UserRole.USER


def is_admin(user: UserDB) -> bool:
    return role_of(user) == UserRole.ADMIN


def create_access_token(user: UserDB) -> str:
    """Signed token for a user: sub, email and role claims."""
    expire = datetime.utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    claims = {
        "sub": user.id,
        "email": user.email,
        "role": role_of(user).value,
        "exp": expire,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Claims of a valid token; None for bad signatures, expiry or unknown roles."""
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if claims.get("sub") is None or claims.get("role") not in {r.value for r in UserRole}:
        return None
    return claims


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> UserDB:
    """Resolve the bearer token to a user whose role still matches the token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = decode_token(credentials.credentials)
    if claims is None:
        raise credentials_exception

    user = db.get(UserDB, claims["sub"])
    if user is None or role_of(user).value != claims["role"]:
        raise credentials_exception
    return user


async def require_admin(current_user: UserDB = Depends(get_current_user)) -> UserDB:
    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
