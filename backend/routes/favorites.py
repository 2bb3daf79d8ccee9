"""
Favorite routes: investor watchlist of listings.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from errors import NotFoundError
from models import User
from routes.auth import get_current_user
from schemas import FavoriteCreate, ok
from services import favorite_service

router = APIRouter(prefix="/api/favorites", tags=["favorites"])


@router.get("")
def my_favorites(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    favorites = favorite_service.list_favorites(db, current_user)
    return ok([favorite_service.favorite_to_dict(f) for f in favorites])


@router.get("/{listing_id}")
def get_favorite(listing_id: int, db: Session = Depends(get_db),
                 current_user: User = Depends(get_current_user)):
    fav = favorite_service.get_favorite(db, current_user, listing_id)
    return ok(favorite_service.favorite_to_dict(fav))


@router.post("/{listing_id}")
def add_favorite(listing_id: int, data: Optional[FavoriteCreate] = None, db: Session = Depends(get_db),
                 current_user: User = Depends(get_current_user)):
    notes = data.notes if data else None
    fav, created = favorite_service.add_favorite(db, current_user, listing_id, notes)
    return ok(favorite_service.favorite_to_dict(fav), "Added to favorites" if created else "Already in favorites")


@router.delete("/{listing_id}")
def remove_favorite(listing_id: int, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    if not favorite_service.remove_favorite(db, current_user, listing_id):
        raise NotFoundError("Listing is not in your favorites")
    return ok(message="Removed from favorites")
