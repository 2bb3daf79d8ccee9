"""
Authentication routes: JWT access + refresh tokens.

Flow:
  1. Register → creates an investor or seller account, returns tokens
  2. Login → validates credentials, returns tokens
  3. Refresh → exchanges a refresh token for a new pair
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, REFRESH_TOKEN_EXPIRE_DAYS
from database import get_db
from models import User
from schemas import LoginRequest, ProfileUpdate, RefreshRequest, RegisterRequest, ok
from services import user_service

logger = logging.getLogger("notetrade.api")

router = APIRouter(prefix="/api/auth", tags=["auth"])


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_refresh_token(data: dict):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire, "type": "refresh"})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _token_pair(user: User) -> dict:
    token_data = {"sub": str(user.id), "role": user.role, "email": user.email}
    return {
        "access_token": create_access_token(token_data),
        "refresh_token": create_refresh_token(token_data),
        "token_type": "bearer",
        "user": user_service.user_to_dict(user),
    }


def _user_from_token(token: str, db: Session) -> User:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        if payload.get("type") != "access":
            raise HTTPException(status_code=401, detail="Invalid token type")
        user_id = payload.get("sub")
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Token expired or invalid")

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def get_current_user(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)) -> User:
    """Dependency to extract current user from JWT Bearer token."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _user_from_token(authorization.split(" ")[1], db)


def get_optional_user(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)) -> Optional[User]:
    """Like get_current_user, but anonymous requests pass through as None."""
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _user_from_token(authorization.split(" ")[1], db)


# ═══════════════════════════════════════════════
#  REGISTER / LOGIN
# ═══════════════════════════════════════════════

@router.post("/register", status_code=201)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    """Create an investor or seller account and sign it in."""
    user = user_service.register_user(
        db, email=data.email, password=data.password, first_name=data.first_name,
        last_name=data.last_name, role=data.role, phone=data.phone, company=data.company,
    )
    return ok(_token_pair(user), "Account created")


@router.post("/login")
def login(data: LoginRequest, db: Session = Depends(get_db)):
    user = user_service.authenticate(db, data.email, data.password)
    if not user:
        logger.warning("Failed login for %s", data.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return ok(_token_pair(user))


# ═══════════════════════════════════════════════
#  REFRESH TOKEN
# ═══════════════════════════════════════════════

@router.post("/refresh")
def refresh_token(data: RefreshRequest, db: Session = Depends(get_db)):
    """Get new access token using refresh token."""
    try:
        payload = jwt.decode(data.refresh_token, SECRET_KEY, algorithms=[ALGORITHM])
        if payload.get("type") != "refresh":
            raise HTTPException(status_code=401, detail="Invalid token type")
        user_id = payload.get("sub")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token")

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return ok(_token_pair(user))


# ═══════════════════════════════════════════════
#  CURRENT USER
# ═══════════════════════════════════════════════

@router.get("/me")
def get_me(user: User = Depends(get_current_user)):
    return ok(user_service.user_to_dict(user))


@router.patch("/me")
def update_me(data: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user = user_service.update_profile(db, user, data.model_dump(exclude_unset=True))
    return ok(user_service.user_to_dict(user), "Profile updated")
