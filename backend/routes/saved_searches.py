"""
Saved search routes: stored marketplace filters with new-listing alerts.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config import SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT
from database import get_db
from errors import NotFoundError
from models import User
from routes.auth import get_current_user
from schemas import SavedSearchCreate, SavedSearchUpdate, ok
from services import listing_service, search_service

router = APIRouter(prefix="/api/saved-searches", tags=["saved-searches"])


@router.get("")
def my_saved_searches(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    searches = search_service.list_saved_searches(db, current_user)
    return ok([search_service.saved_search_to_dict(s) for s in searches])


@router.post("", status_code=201)
def create_saved_search(data: SavedSearchCreate, db: Session = Depends(get_db),
                        current_user: User = Depends(get_current_user)):
    search = search_service.create_saved_search(db, current_user, data)
    return ok(search_service.saved_search_to_dict(search), "Search saved")


@router.get("/{search_id}")
def get_saved_search(search_id: int, db: Session = Depends(get_db),
                     current_user: User = Depends(get_current_user)):
    search = search_service.get_saved_search(db, search_id, current_user)
    return ok(search_service.saved_search_to_dict(search))


@router.patch("/{search_id}")
def update_saved_search(search_id: int, data: SavedSearchUpdate, db: Session = Depends(get_db),
                        current_user: User = Depends(get_current_user)):
    search = search_service.update_saved_search(db, search_id, current_user, data)
    if search is None:
        raise NotFoundError("Saved search not found")
    return ok(search_service.saved_search_to_dict(search), "Search updated")


@router.delete("/{search_id}")
def delete_saved_search(search_id: int, db: Session = Depends(get_db),
                        current_user: User = Depends(get_current_user)):
    if not search_service.delete_saved_search(db, search_id, current_user):
        raise NotFoundError("Saved search not found")
    return ok(message="Search deleted")


@router.post("/{search_id}/run")
def run_saved_search(search_id: int,
                     skip: int = Query(0, ge=0),
                     limit: int = Query(SEARCH_DEFAULT_LIMIT, ge=1, le=SEARCH_MAX_LIMIT),
                     db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    items, total = search_service.run_saved_search(db, search_id, current_user, skip, limit)
    return ok({
        "items": [listing_service.listing_to_dict(listing) for listing in items],
        "total": total,
        "skip": skip,
        "limit": limit,
    })
