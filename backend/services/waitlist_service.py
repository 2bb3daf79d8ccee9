import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import StateConflictError
from models import WaitlistEntry
from schemas import WaitlistCreate

logger = logging.getLogger("notetrade.api")


def entry_to_dict(entry: WaitlistEntry) -> dict:
    return {
        "id": entry.id,
        "email": entry.email,
        "first_name": entry.first_name,
        "last_name": entry.last_name,
        "role": entry.role,
        "company": entry.company,
        "message": entry.message,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def join_waitlist(db: Session, data: WaitlistCreate) -> WaitlistEntry:
    email = data.email.lower()
    if db.query(WaitlistEntry).filter(WaitlistEntry.email == email).first():
        raise StateConflictError("This email is already on the waitlist")

    entry = WaitlistEntry(**data.model_dump(exclude={"email"}), email=email)
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise StateConflictError("This email is already on the waitlist")
    db.refresh(entry)
    logger.info("Waitlist signup %s (%s)", entry.id, entry.role)
    return entry


def waitlist_count(db: Session) -> int:
    return db.query(WaitlistEntry).count()


def list_entries(db: Session, skip: int = 0, limit: int = 100) -> list:
    return db.query(WaitlistEntry).order_by(WaitlistEntry.id.desc()).offset(skip).limit(limit).all()
