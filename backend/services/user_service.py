"""
Account management: signup, credential checks, profile edits and
admin-side role/status changes. Users are never hard-deleted.
"""
import logging

import bcrypt
from sqlalchemy.orm import Session

from database import utcnow
from errors import NotFoundError, StateConflictError, ValidationError
from models import AccountStatus, User
from permissions import Role, SELF_SERVICE_ROLES

logger = logging.getLogger("notetrade.users")

PROFILE_FIELDS = ("first_name", "last_name", "phone", "company", "bio", "location")


def _hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "phone": user.phone,
        "company": user.company,
        "bio": user.bio,
        "location": user.location,
        "role": user.role,
        "status": user.status,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def public_user_dict(user: User) -> dict:
    """Counterparty view: no contact details beyond name and company."""
    if user is None:
        return None
    return {"id": user.id, "full_name": user.full_name, "company": user.company, "role": user.role}


def register_user(db: Session, email: str, password: str, first_name: str, last_name: str,
                  role: str = "investor", phone: str = None, company: str = None) -> User:
    if Role(role) not in SELF_SERVICE_ROLES:
        raise ValidationError("Only investor or seller accounts can be created at signup", field="role")
    if db.query(User).filter(User.email == email).first():
        raise StateConflictError("An account with this email already exists")

    user = User(
        email=email,
        password_hash=_hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        phone=phone,
        company=company,
        status=AccountStatus.ACTIVE.value,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s account %s", role, user.id)
    return user


def authenticate(db: Session, email: str, password: str) -> User | None:
    """Return the user for valid credentials on an active account, else None."""
    user = db.query(User).filter(User.email == email).first()
    if not user or not _verify_password(password, user.password_hash):
        return None
    if not user.is_active:
        return None
    user.last_login_at = utcnow()
    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def list_users(db: Session, role: str = None, status: str = None, skip: int = 0, limit: int = 50) -> list:
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if status:
        query = query.filter(User.status == status)
    return query.order_by(User.id).offset(skip).limit(limit).all()


def update_profile(db: Session, user: User, fields: dict) -> User:
    for key, value in fields.items():
        if key in PROFILE_FIELDS:
            setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


def admin_update_user(db: Session, user_id: int, admin: User, fields: dict) -> User | None:
    """Returns None when the user does not exist."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return None
    if user.id == admin.id and (fields.get("role") not in (None, user.role) or
                                fields.get("status") not in (None, AccountStatus.ACTIVE.value)):
        raise StateConflictError("Admins cannot change their own role or deactivate themselves")

    for key, value in fields.items():
        if key in PROFILE_FIELDS or key in ("role", "status"):
            setattr(user, key, value)
    db.commit()
    db.refresh(user)
    logger.info("Admin %s updated user %s: %s", admin.id, user.id, sorted(fields))
    return user


def deactivate_user(db: Session, user_id: int, admin: User) -> bool:
    """Soft delete. Returns False when the user does not exist."""
    user = admin_update_user(db, user_id, admin, {"status": AccountStatus.DEACTIVATED.value})
    return user is not None
