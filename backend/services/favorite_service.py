"""
Investor watchlist. Adding twice is a no-op; the listing's
favorite_count only moves on the first add and is never decremented.
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import NotFoundError
from models import FavoriteListing, User
from services import listing_service


def favorite_to_dict(fav: FavoriteListing) -> dict:
    listing = fav.listing
    return {
        "id": fav.id,
        "note_listing_id": fav.note_listing_id,
        "notes": fav.notes,
        "created_at": fav.created_at.isoformat() if fav.created_at else None,
        "listing": {
            "id": listing.id,
            "title": listing.title,
            "status": listing.status,
            "asking_price": listing.asking_price,
            "expected_yield": listing.expected_yield,
            "property_state": listing.property_state,
        } if listing else None,
    }


def add_favorite(db: Session, user: User, listing_id: int, notes: str = None) -> tuple[FavoriteListing, bool]:
    """Returns (favorite, created)."""
    listing = listing_service.get_listing(db, listing_id, viewer=user, count_view=False)

    existing = db.query(FavoriteListing).filter(
        FavoriteListing.user_id == user.id,
        FavoriteListing.note_listing_id == listing.id,
    ).first()
    if existing:
        return existing, False

    fav = FavoriteListing(user_id=user.id, note_listing_id=listing.id, notes=notes)
    db.add(fav)
    try:
        db.flush()
    except IntegrityError:
        # Lost a race with a concurrent add for the same pair
        db.rollback()
        existing = db.query(FavoriteListing).filter(
            FavoriteListing.user_id == user.id,
            FavoriteListing.note_listing_id == listing_id,
        ).one()
        return existing, False

    listing_service.bump_counter(db, listing.id, "favorite_count")
    db.commit()
    db.refresh(fav)
    return fav, True


def remove_favorite(db: Session, user: User, listing_id: int) -> bool:
    fav = db.query(FavoriteListing).filter(
        FavoriteListing.user_id == user.id,
        FavoriteListing.note_listing_id == listing_id,
    ).first()
    if not fav:
        return False
    db.delete(fav)
    db.commit()
    return True


def list_favorites(db: Session, user: User) -> list:
    return db.query(FavoriteListing).filter(FavoriteListing.user_id == user.id) \
        .order_by(FavoriteListing.id.desc()).all()


def get_favorite(db: Session, user: User, listing_id: int) -> FavoriteListing:
    fav = db.query(FavoriteListing).filter(
        FavoriteListing.user_id == user.id,
        FavoriteListing.note_listing_id == listing_id,
    ).first()
    if not fav:
        raise NotFoundError("Listing is not in your favorites")
    return fav
