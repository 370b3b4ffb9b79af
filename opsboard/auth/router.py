import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..models.models import User
from ..schemas.auth import (
    LoginRequest,
    RefreshRequest,
    TokenResponse,
    MeResponse,
    ChangePasswordRequest,
)
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    get_user_permission_map,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    identifier = req.identifier.strip()
    user = db.query(User).filter(
        (User.username == identifier) | (User.email == identifier.lower())
    ).first()
    if not user or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", identifier=identifier)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account disabled")
    access = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    refresh = create_refresh_token(str(user.id))
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("login_succeeded", user_id=str(user.id))
    return TokenResponse(access_token=access, refresh_token=refresh)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user = db.query(User).filter(User.id == _uuid(payload["sub"])).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    access = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    return TokenResponse(access_token=access, refresh_token=create_refresh_token(str(user.id)))


def _uuid(value):
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    perm_map = get_user_permission_map(user)
    granted = sorted([k for k, v in perm_map.items() if v])
    return MeResponse(
        id=str(user.id),
        username=user.username,
        email=user.email,
        display_name=user.display_name,
        employee_name=user.employee_name,
        roles=[r.name for r in user.roles],
        permissions=granted,
    )


@router.post("/change-password")
def change_password(req: ChangePasswordRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if not verify_password(req.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    user.password_hash = get_password_hash(req.new_password)
    db.commit()
    logger.info("password_changed", user_id=str(user.id))
    return {"status": "ok"}
