"""
Investor preference routes: standing investment criteria.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config import SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT
from database import get_db
from models import User
from routes.auth import get_current_user
from schemas import PreferencesUpdate, ok
from services import listing_service, search_service

router = APIRouter(prefix="/api/preferences", tags=["preferences"])


@router.get("")
def get_preferences(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    prefs = search_service.get_preferences(db, current_user)
    return ok(search_service.preferences_to_dict(prefs) if prefs else None)


@router.put("")
def save_preferences(data: PreferencesUpdate, db: Session = Depends(get_db),
                     current_user: User = Depends(get_current_user)):
    prefs = search_service.upsert_preferences(db, current_user, data)
    return ok(search_service.preferences_to_dict(prefs), "Preferences saved")


@router.get("/matches")
def preference_matches(skip: int = Query(0, ge=0),
                       limit: int = Query(SEARCH_DEFAULT_LIMIT, ge=1, le=SEARCH_MAX_LIMIT),
                       db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Active listings that fit the caller's saved preferences."""
    items, total = search_service.preference_matches(db, current_user, skip, limit)
    return ok({
        "items": [listing_service.listing_to_dict(listing) for listing in items],
        "total": total,
    })
