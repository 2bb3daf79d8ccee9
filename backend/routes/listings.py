"""
Listing routes: public marketplace search, seller listing management.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config import SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT
from database import get_db
from errors import NotFoundError
from models import User
from routes.auth import get_current_user, get_optional_user
from schemas import ListingCreate, ListingCriteria, ListingUpdate, ok
from services import document_service, listing_service

router = APIRouter(prefix="/api/listings", tags=["listings"])


def search_criteria(
    note_types: List[str] = Query(default=[]),
    performance_statuses: List[str] = Query(default=[]),
    property_types: List[str] = Query(default=[]),
    property_states: List[str] = Query(default=[]),
    property_city: Optional[str] = None,
    min_asking_price: Optional[float] = None,
    max_asking_price: Optional[float] = None,
    min_expected_yield: Optional[float] = None,
    max_expected_yield: Optional[float] = None,
    min_interest_rate: Optional[float] = None,
    max_interest_rate: Optional[float] = None,
    max_loan_to_value: Optional[float] = None,
    is_secured: Optional[bool] = None,
    keyword: Optional[str] = None,
) -> ListingCriteria:
    """Collect the marketplace filters from the query string."""
    return ListingCriteria(
        note_types=note_types,
        performance_statuses=performance_statuses,
        property_types=property_types,
        property_states=property_states,
        property_city=property_city,
        min_asking_price=min_asking_price,
        max_asking_price=max_asking_price,
        min_expected_yield=min_expected_yield,
        max_expected_yield=max_expected_yield,
        min_interest_rate=min_interest_rate,
        max_interest_rate=max_interest_rate,
        max_loan_to_value=max_loan_to_value,
        is_secured=is_secured,
        keyword=keyword,
    )


# ═══════════════════════════════════════════════
#  BROWSE / SEARCH
# ═══════════════════════════════════════════════

@router.get("")
def browse_listings(
    criteria: ListingCriteria = Depends(search_criteria),
    status: Optional[str] = Query(None, pattern="^(active|sold)$"),
    sort_by: str = "created_at",  # created_at, asking_price, expected_yield, interest_rate, current_loan_amount, view_count
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(SEARCH_DEFAULT_LIMIT, ge=1, le=SEARCH_MAX_LIMIT),
    db: Session = Depends(get_db),
):
    """Public marketplace search. Featured listings sort first."""
    items, total = listing_service.search_listings(db, criteria, status, sort_by, sort_order, skip, limit)
    return ok({
        "items": [listing_service.listing_to_dict(listing) for listing in items],
        "total": total,
        "skip": skip,
        "limit": limit,
    })


@router.get("/mine")
def my_listings(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    listings = listing_service.get_seller_listings(db, current_user.id)
    return ok([listing_service.listing_to_dict(listing, include_review=True) for listing in listings])


@router.get("/{listing_id}")
def get_listing(listing_id: int, db: Session = Depends(get_db),
                current_user: Optional[User] = Depends(get_optional_user)):
    listing = listing_service.get_listing(db, listing_id, viewer=current_user)
    data = listing_service.listing_to_dict(
        listing, include_review=listing_service.is_owner_or_admin(listing, current_user))
    return ok(data)


@router.get("/{listing_id}/documents")
def listing_documents(listing_id: int, db: Session = Depends(get_db),
                      current_user: Optional[User] = Depends(get_optional_user)):
    """Documents visible to the caller: all for the seller and admins, public+verified otherwise."""
    docs = document_service.list_documents(db, listing_id, viewer=current_user)
    return ok([document_service.document_to_dict(d) for d in docs])


# ═══════════════════════════════════════════════
#  SELLER MANAGEMENT
# ═══════════════════════════════════════════════

@router.post("", status_code=201)
def create_listing(data: ListingCreate, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    listing = listing_service.create_listing(db, current_user, data)
    message = "Listing submitted for review" if listing.status == "pending" else "Draft saved"
    return ok(listing_service.listing_to_dict(listing, include_review=True), message)


@router.patch("/{listing_id}")
def update_listing(listing_id: int, data: ListingUpdate, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    listing = listing_service.update_listing(db, listing_id, current_user, data)
    if listing is None:
        raise NotFoundError("Listing not found")
    return ok(listing_service.listing_to_dict(listing, include_review=True), "Listing updated")


@router.delete("/{listing_id}")
def retire_listing(listing_id: int, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    """Soft delete: the listing is marked expired and leaves the marketplace."""
    if not listing_service.retire_listing(db, listing_id, current_user):
        raise NotFoundError("Listing not found")
    return ok(message="Listing removed from the marketplace")
