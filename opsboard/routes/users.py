import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_roles, get_password_hash
from ..models.models import User, Role
from ..schemas.users import UserCreate, UserUpdate, UserResponse
from ..services.change_feed import publish_change

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _roles_by_name(db: Session, names: List[str]) -> List[Role]:
    names = [n.strip() for n in names if n and n.strip()]
    roles = db.query(Role).filter(Role.name.in_(names)).all() if names else []
    missing = set(names) - {r.name for r in roles}
    if missing:
        raise HTTPException(status_code=400, detail=f"Unknown role(s): {', '.join(sorted(missing))}")
    return roles


@router.get("", response_model=List[UserResponse])
def list_users(
    q: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    query = db.query(User)
    if q:
        term = f"%{q.strip()}%"
        query = query.filter(or_(User.username.ilike(term), User.email.ilike(term), User.display_name.ilike(term)))
    if active is not None:
        query = query.filter(User.is_active == active)
    return query.order_by(User.username.asc()).all()


@router.post("", response_model=UserResponse, status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    email = payload.email.lower()
    if db.query(User).filter(or_(User.username == payload.username, User.email == email)).first():
        raise HTTPException(status_code=409, detail="Username or email already in use")
    user = User(
        username=payload.username.strip(),
        email=email,
        display_name=payload.display_name,
        employee_name=payload.employee_name,
        password_hash=get_password_hash(payload.password),
        is_active=True,
    )
    user.roles = _roles_by_name(db, payload.roles)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_created", user_id=str(user.id))
    publish_change("users", "created", user.id, jsonable_encoder(UserResponse.model_validate(user)))
    return user


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_roles("admin")),
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    data = payload.model_dump(exclude_unset=True)
    if "roles" in data:
        user.roles = _roles_by_name(db, data.pop("roles") or [])
    if data.get("is_active") is False and user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot disable your own account")
    for key, value in data.items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    logger.info("user_updated", user_id=str(user.id), fields=sorted(payload.model_fields_set))
    publish_change("users", "updated", user.id, jsonable_encoder(UserResponse.model_validate(user)))
    return user
