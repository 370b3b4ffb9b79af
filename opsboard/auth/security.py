import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

LEGACY_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    # Accounts imported from the old system carry bcrypt hashes; bcrypt only reads the first 72 bytes
    if hashed.startswith(LEGACY_BCRYPT_PREFIXES):
        try:
            return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, roles: Optional[List[str]] = None) -> str:
    return _create_token(user_id, settings.jwt_ttl_seconds, extra={"roles": roles or [], "type": "access"})


def create_refresh_token(user_id: str) -> str:
    return _create_token(user_id, settings.refresh_ttl_seconds, extra={"type": "refresh"})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def user_from_token(token: str, db: Session) -> User:
    payload = decode_token(token)
    if payload.get("type") == "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token cannot be used here")
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_uuid).first()
    # Disabled accounts are logged out on their next request
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
):
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_from_token(creds.credentials, db)


def is_admin(user: User) -> bool:
    return any((getattr(r, "name", None) or "").lower() == "admin" for r in user.roles)


def require_roles(*required_roles: str):
    def _dep(user: User = Depends(get_current_user)):
        role_names = {r.name for r in user.roles}
        if not set(required_roles).issubset(role_names):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep


def require_permissions(*required_permissions: str):
    """
    Require at least one of the specified permissions (OR logic).
    Admins always pass.
    """
    def _dep(user: User = Depends(get_current_user)):
        if is_admin(user):
            return user
        if not any(has_permission(user, perm) for perm in required_permissions):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep


def get_user_permission_map(user: User) -> dict:
    """Combined permission map from roles, then user overrides"""
    perm_map = {}
    for r in user.roles:
        if r.permissions:
            perm_map.update(r.permissions)
    if user.permissions_override:
        perm_map.update(user.permissions_override)
    return perm_map


def has_permission(user: User, perm: str) -> bool:
    if is_admin(user):
        return True
    perm_map = get_user_permission_map(user)

    # area:sub:action permissions also need the area's "area:access" grant
    if ":" in perm:
        area_access_key = f"{perm.split(':')[0]}:access"
        if perm != area_access_key and not perm_map.get(area_access_key):
            return False
    return bool(perm_map.get(perm))


def actor_name(user: Optional[User]) -> Optional[str]:
    """Name recorded in created_by/history fields."""
    if user is None:
        return None
    return user.display_name or user.employee_name or user.email or user.username
