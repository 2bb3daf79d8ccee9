"""
Marketplace listing service.

Listings move through:
  draft ⇄ pending (awaiting review) → active → sold
                                   ↘ expired (retired by the seller)

`sold` is set only by transaction completion. The view/favorite/inquiry
counters are bumped with single UPDATE statements so concurrent readers
never lose increments.
"""
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from database import utcnow
from errors import NotFoundError, PermissionDeniedError, StateConflictError
from models import ListingStatus, NoteListing, User, VerificationStatus
from permissions import Capability, is_admin, require_capability
from schemas import ListingCriteria, ListingCreate, ListingUpdate

logger = logging.getLogger("notetrade.listings")

PUBLICLY_VISIBLE_STATUSES = (ListingStatus.ACTIVE.value, ListingStatus.SOLD.value)
SELLER_SETTABLE_STATUSES = (ListingStatus.DRAFT.value, ListingStatus.PENDING.value, ListingStatus.EXPIRED.value)
ADMIN_ONLY_FIELDS = ("featured", "admin_notes")
COUNTERS = ("view_count", "favorite_count", "inquiry_count")

SORT_COLUMNS = {
    "created_at": NoteListing.created_at,
    "asking_price": NoteListing.asking_price,
    "expected_yield": NoteListing.expected_yield,
    "interest_rate": NoteListing.interest_rate,
    "current_loan_amount": NoteListing.current_loan_amount,
    "view_count": NoteListing.view_count,
}


def _iso(value):
    return value.isoformat() if value else None


def listing_to_dict(listing: NoteListing, include_review: bool = False) -> dict:
    data = {
        "id": listing.id,
        "seller_id": listing.seller_id,
        "title": listing.title,
        "note_type": listing.note_type,
        "performance_status": listing.performance_status,
        "original_loan_amount": listing.original_loan_amount,
        "current_loan_amount": listing.current_loan_amount,
        "interest_rate": listing.interest_rate,
        "original_loan_term": listing.original_loan_term,
        "remaining_loan_term": listing.remaining_loan_term,
        "monthly_payment_amount": listing.monthly_payment_amount,
        "loan_origination_date": _iso(listing.loan_origination_date),
        "loan_maturity_date": _iso(listing.loan_maturity_date),
        "payment_history": listing.payment_history,
        "amortization_type": listing.amortization_type,
        "payment_frequency": listing.payment_frequency,
        "property_address": listing.property_address,
        "property_city": listing.property_city,
        "property_state": listing.property_state,
        "property_zip_code": listing.property_zip_code,
        "property_county": listing.property_county,
        "property_type": listing.property_type,
        "property_value": listing.property_value,
        "loan_to_value_ratio": listing.loan_to_value_ratio,
        "property_description": listing.property_description,
        "is_secured": listing.is_secured,
        "collateral_type": listing.collateral_type,
        "asking_price": listing.asking_price,
        "expected_yield": listing.expected_yield,
        "description": listing.description,
        "special_notes": listing.special_notes,
        "due_diligence_completed": listing.due_diligence_completed,
        "due_diligence_notes": listing.due_diligence_notes,
        "status": listing.status,
        "featured": listing.featured,
        "is_public": listing.is_public,
        "verification_status": listing.verification_status,
        "view_count": listing.view_count,
        "favorite_count": listing.favorite_count,
        "inquiry_count": listing.inquiry_count,
        "listed_at": _iso(listing.listed_at),
        "expires_at": _iso(listing.expires_at),
        "created_at": _iso(listing.created_at),
        "updated_at": _iso(listing.updated_at),
    }
    if include_review:
        data.update({
            "reviewed_by": listing.reviewed_by,
            "reviewed_at": _iso(listing.reviewed_at),
            "rejection_reason": listing.rejection_reason,
            "admin_notes": listing.admin_notes,
        })
    return data


def is_owner_or_admin(listing: NoteListing, user: User) -> bool:
    return user is not None and (listing.seller_id == user.id or is_admin(user))


def can_view(listing: NoteListing, viewer: User = None) -> bool:
    if listing.is_public and listing.status in PUBLICLY_VISIBLE_STATUSES:
        return True
    return is_owner_or_admin(listing, viewer)


def _get_or_404(db: Session, listing_id: int) -> NoteListing:
    listing = db.query(NoteListing).filter(NoteListing.id == listing_id).first()
    if not listing:
        raise NotFoundError("Listing not found")
    return listing


# ═══════════════════════════════════════════════
#  CREATE / READ
# ═══════════════════════════════════════════════

def create_listing(db: Session, seller: User, data: ListingCreate) -> NoteListing:
    require_capability(seller, Capability.LIST_NOTES, "Only seller accounts can list notes")

    listing = NoteListing(
        seller_id=seller.id,
        **data.model_dump(),
        verification_status=VerificationStatus.PENDING.value,
    )
    db.add(listing)
    db.commit()
    db.refresh(listing)
    logger.info("Listing %s created by seller %s (%s)", listing.id, seller.id, listing.status)
    return listing


def get_listing(db: Session, listing_id: int, viewer: User = None, count_view: bool = True) -> NoteListing:
    listing = _get_or_404(db, listing_id)
    if not can_view(listing, viewer):
        raise NotFoundError("Listing not found")

    if count_view and (viewer is None or viewer.id != listing.seller_id):
        bump_counter(db, listing.id, "view_count")
        db.commit()
        db.refresh(listing)
    return listing


def bump_counter(db: Session, listing_id: int, counter: str):
    """Atomic `counter = counter + 1`; caller commits."""
    column = getattr(NoteListing, counter)
    db.query(NoteListing).filter(NoteListing.id == listing_id).update(
        {column: column + 1}, synchronize_session=False
    )


def get_seller_listings(db: Session, seller_id: int) -> list:
    return db.query(NoteListing).filter(NoteListing.seller_id == seller_id) \
        .order_by(NoteListing.created_at.desc(), NoteListing.id.desc()).all()


def list_all_listings(db: Session, status: str = None, verification_status: str = None) -> list:
    query = db.query(NoteListing)
    if status:
        query = query.filter(NoteListing.status == status)
    if verification_status:
        query = query.filter(NoteListing.verification_status == verification_status)
    return query.order_by(NoteListing.id.desc()).all()


# ═══════════════════════════════════════════════
#  SEARCH
# ═══════════════════════════════════════════════

def apply_criteria(query, criteria: ListingCriteria):
    if criteria.note_types:
        query = query.filter(NoteListing.note_type.in_(criteria.note_types))
    if criteria.performance_statuses:
        query = query.filter(NoteListing.performance_status.in_(criteria.performance_statuses))
    if criteria.property_types:
        query = query.filter(NoteListing.property_type.in_(criteria.property_types))
    if criteria.property_states:
        query = query.filter(NoteListing.property_state.in_(criteria.property_states))
    if criteria.property_city:
        query = query.filter(NoteListing.property_city.ilike(criteria.property_city))
    if criteria.min_asking_price is not None:
        query = query.filter(NoteListing.asking_price >= criteria.min_asking_price)
    if criteria.max_asking_price is not None:
        query = query.filter(NoteListing.asking_price <= criteria.max_asking_price)
    if criteria.min_expected_yield is not None:
        query = query.filter(NoteListing.expected_yield >= criteria.min_expected_yield)
    if criteria.max_expected_yield is not None:
        query = query.filter(NoteListing.expected_yield <= criteria.max_expected_yield)
    if criteria.min_interest_rate is not None:
        query = query.filter(NoteListing.interest_rate >= criteria.min_interest_rate)
    if criteria.max_interest_rate is not None:
        query = query.filter(NoteListing.interest_rate <= criteria.max_interest_rate)
    if criteria.max_loan_to_value is not None:
        query = query.filter(NoteListing.loan_to_value_ratio <= criteria.max_loan_to_value)
    if criteria.is_secured is not None:
        query = query.filter(NoteListing.is_secured == criteria.is_secured)
    if criteria.keyword:
        pattern = f"%{criteria.keyword}%"
        query = query.filter(or_(
            NoteListing.title.ilike(pattern),
            NoteListing.description.ilike(pattern),
            NoteListing.property_address.ilike(pattern),
        ))
    return query


def criteria_matches(criteria: ListingCriteria, listing: NoteListing) -> bool:
    """In-memory twin of `apply_criteria`, used when a single listing goes live."""
    def within(value, low, high):
        if low is None and high is None:
            return True
        if value is None:
            return False
        return (low is None or value >= low) and (high is None or value <= high)

    if criteria.note_types and listing.note_type not in criteria.note_types:
        return False
    if criteria.performance_statuses and listing.performance_status not in criteria.performance_statuses:
        return False
    if criteria.property_types and listing.property_type not in criteria.property_types:
        return False
    if criteria.property_states and listing.property_state not in criteria.property_states:
        return False
    if criteria.property_city and listing.property_city.lower() != criteria.property_city.lower():
        return False
    if not within(listing.asking_price, criteria.min_asking_price, criteria.max_asking_price):
        return False
    if not within(listing.expected_yield, criteria.min_expected_yield, criteria.max_expected_yield):
        return False
    if not within(listing.interest_rate, criteria.min_interest_rate, criteria.max_interest_rate):
        return False
    if not within(listing.loan_to_value_ratio, None, criteria.max_loan_to_value):
        return False
    if criteria.is_secured is not None and bool(listing.is_secured) != criteria.is_secured:
        return False
    if criteria.keyword:
        needle = criteria.keyword.lower()
        haystack = " ".join(filter(None, [listing.title, listing.description, listing.property_address]))
        if needle not in haystack.lower():
            return False
    return True


def search_listings(db: Session, criteria: ListingCriteria, status: str = None,
                    sort_by: str = "created_at", sort_order: str = "desc",
                    skip: int = 0, limit: int = 20) -> tuple[list, int]:
    """Public marketplace search. Only public listings; status defaults to active."""
    query = db.query(NoteListing).filter(
        NoteListing.is_public == True,  # noqa: E712
        NoteListing.status == (status or ListingStatus.ACTIVE.value),
    )
    query = apply_criteria(query, criteria)
    total = query.count()

    column = SORT_COLUMNS.get(sort_by, NoteListing.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    items = query.order_by(NoteListing.featured.desc(), ordering, NoteListing.id.desc()) \
        .offset(skip).limit(limit).all()
    return items, total


# ═══════════════════════════════════════════════
#  UPDATE / RETIRE
# ═══════════════════════════════════════════════

def update_listing(db: Session, listing_id: int, user: User, data: ListingUpdate) -> NoteListing | None:
    """Returns None when the listing does not exist."""
    listing = db.query(NoteListing).filter(NoteListing.id == listing_id).first()
    if not listing:
        return None
    if not is_owner_or_admin(listing, user):
        raise PermissionDeniedError("You can only edit your own listings")

    fields = data.model_dump(exclude_unset=True)
    if not is_admin(user):
        blocked = [f for f in ADMIN_ONLY_FIELDS if f in fields]
        if blocked:
            raise PermissionDeniedError(f"Only admins can change: {', '.join(blocked)}")

    new_status = fields.get("status")
    if new_status is not None and new_status != listing.status:
        if listing.status == ListingStatus.SOLD.value:
            raise StateConflictError("A sold listing cannot change status")
        if new_status not in SELLER_SETTABLE_STATUSES:
            raise StateConflictError(f"Status '{new_status}' cannot be set directly")
        if new_status == ListingStatus.PENDING.value:
            listing.verification_status = VerificationStatus.PENDING.value
            listing.rejection_reason = None

    for key, value in fields.items():
        setattr(listing, key, value)
    db.commit()
    db.refresh(listing)
    return listing


def retire_listing(db: Session, listing_id: int, user: User) -> bool:
    """Soft delete via status. Returns False when the listing does not exist."""
    listing = db.query(NoteListing).filter(NoteListing.id == listing_id).first()
    if not listing:
        return False
    if not is_owner_or_admin(listing, user):
        raise PermissionDeniedError("You can only retire your own listings")
    if listing.status == ListingStatus.SOLD.value:
        raise StateConflictError("A sold listing cannot be retired")
    listing.status = ListingStatus.EXPIRED.value
    db.commit()
    logger.info("Listing %s retired by user %s", listing.id, user.id)
    return True


def mark_sold(db: Session, listing_id: int):
    """Called only from transaction completion; caller commits."""
    db.query(NoteListing).filter(NoteListing.id == listing_id).update(
        {NoteListing.status: ListingStatus.SOLD.value}, synchronize_session=False
    )


# ═══════════════════════════════════════════════
#  ADMIN REVIEW
# ═══════════════════════════════════════════════

def approve_listing(db: Session, listing_id: int, admin: User) -> NoteListing:
    require_capability(admin, Capability.REVIEW_LISTINGS)
    listing = _get_or_404(db, listing_id)
    if listing.status != ListingStatus.PENDING.value:
        raise StateConflictError("Only listings awaiting review can be approved")

    now = utcnow()
    listing.status = ListingStatus.ACTIVE.value
    listing.verification_status = VerificationStatus.VERIFIED.value
    listing.reviewed_by = admin.id
    listing.reviewed_at = now
    listing.listed_at = listing.listed_at or now
    listing.rejection_reason = None
    db.commit()
    db.refresh(listing)
    logger.info("Listing %s approved by admin %s", listing.id, admin.id)
    return listing


def reject_listing(db: Session, listing_id: int, admin: User, reason: str) -> NoteListing:
    require_capability(admin, Capability.REVIEW_LISTINGS)
    listing = _get_or_404(db, listing_id)
    if listing.status != ListingStatus.PENDING.value:
        raise StateConflictError("Only listings awaiting review can be rejected")

    listing.status = ListingStatus.DRAFT.value
    listing.verification_status = VerificationStatus.REJECTED.value
    listing.reviewed_by = admin.id
    listing.reviewed_at = utcnow()
    listing.rejection_reason = reason
    db.commit()
    db.refresh(listing)
    logger.info("Listing %s rejected by admin %s", listing.id, admin.id)
    return listing


def correct_counters(db: Session, listing_id: int, admin: User, counters: dict) -> NoteListing:
    """The only path that may lower a counter."""
    require_capability(admin, Capability.CORRECT_COUNTERS)
    listing = _get_or_404(db, listing_id)
    changes = {k: v for k, v in counters.items() if k in COUNTERS and v is not None}
    for key, value in changes.items():
        setattr(listing, key, value)
    db.commit()
    db.refresh(listing)
    logger.warning("Admin %s corrected counters on listing %s: %s", admin.id, listing.id, changes)
    return listing


def is_live(listing: NoteListing) -> bool:
    return listing.is_public and listing.status == ListingStatus.ACTIVE.value
