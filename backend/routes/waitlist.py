"""
Waitlist routes: pre-launch signups.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from models import User
from permissions import Capability, require_capability
from routes.auth import get_current_user
from schemas import WaitlistCreate, ok
from services import waitlist_service

router = APIRouter(prefix="/api/waitlist", tags=["waitlist"])


@router.post("", status_code=201)
def join_waitlist(data: WaitlistCreate, db: Session = Depends(get_db)):
    entry = waitlist_service.join_waitlist(db, data)
    return ok({"id": entry.id, "email": entry.email}, "You're on the list!")


@router.get("/count")
def waitlist_count(db: Session = Depends(get_db)):
    return ok({"count": waitlist_service.waitlist_count(db)})


@router.get("")
def list_waitlist(skip: int = Query(0, ge=0), limit: int = Query(100, ge=1, le=500),
                  db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_capability(current_user, Capability.MANAGE_USERS)
    entries = waitlist_service.list_entries(db, skip, limit)
    return ok([waitlist_service.entry_to_dict(e) for e in entries])
