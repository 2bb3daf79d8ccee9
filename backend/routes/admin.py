"""
Admin routes: platform stats, listing review, user management.
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db, utcnow
from errors import NotFoundError
from models import Inquiry, ListingStatus, NoteListing, Transaction, TransactionStatus, User
from permissions import Capability, require_capability
from routes.auth import get_current_user
from schemas import AdminUserUpdate, CounterCorrection, ListingReject, ok
from services import inquiry_service, listing_service, search_service, transaction_service, user_service

logger = logging.getLogger("notetrade.api")

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ═══════════════════════════════════════════════
#  PLATFORM STATS
# ═══════════════════════════════════════════════

@router.get("/stats")
def platform_stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Platform-wide numbers for the admin dashboard."""
    require_capability(current_user, Capability.VIEW_PLATFORM_STATS)

    total_users = db.query(User).count()
    users_by_role = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())

    listings_by_status = {status.value: 0 for status in ListingStatus}
    listings_by_status.update(dict(
        db.query(NoteListing.status, func.count(NoteListing.id)).group_by(NoteListing.status).all()
    ))
    avg_rate = db.query(func.avg(NoteListing.interest_rate)).filter(
        NoteListing.status == ListingStatus.ACTIVE.value
    ).scalar()

    completed_volume = db.query(func.sum(Transaction.final_amount)).filter(
        Transaction.status == TransactionStatus.COMPLETED.value
    ).scalar() or 0

    since = utcnow() - timedelta(days=30)
    return ok({
        "users": {
            "total": total_users,
            "by_role": users_by_role,
            "new_last_30_days": db.query(User).filter(User.created_at >= since).count(),
        },
        "listings": {
            "total": sum(listings_by_status.values()),
            "by_status": listings_by_status,
            "average_interest_rate": round(avg_rate, 3) if avg_rate is not None else None,
            "new_last_30_days": db.query(NoteListing).filter(NoteListing.created_at >= since).count(),
        },
        "inquiries": {
            "total": db.query(Inquiry).count(),
            "new_last_30_days": db.query(Inquiry).filter(Inquiry.created_at >= since).count(),
        },
        "transactions": {
            "total": db.query(Transaction).count(),
            "completed": db.query(Transaction).filter(
                Transaction.status == TransactionStatus.COMPLETED.value).count(),
            "completed_volume": float(completed_volume),
            "opened_last_30_days": db.query(Transaction).filter(Transaction.created_at >= since).count(),
        },
    })


@router.get("/stats/inquiries")
def inquiry_stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_capability(current_user, Capability.VIEW_PLATFORM_STATS)
    return ok(inquiry_service.inquiry_stats(db))


@router.get("/stats/transactions")
def transaction_stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_capability(current_user, Capability.VIEW_PLATFORM_STATS)
    return ok(transaction_service.transaction_stats(db))


# ═══════════════════════════════════════════════
#  LISTING REVIEW
# ═══════════════════════════════════════════════

@router.get("/listings")
def all_listings(status: Optional[str] = None, verification_status: Optional[str] = None,
                 db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Every listing regardless of visibility; `status=pending` is the review queue."""
    require_capability(current_user, Capability.REVIEW_LISTINGS)
    listings = listing_service.list_all_listings(db, status, verification_status)
    return ok([listing_service.listing_to_dict(listing, include_review=True) for listing in listings])


@router.post("/listings/{listing_id}/approve")
def approve_listing(listing_id: int, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    listing = listing_service.approve_listing(db, listing_id, current_user)
    matched = search_service.process_listing_alerts(db, listing)
    data = listing_service.listing_to_dict(listing, include_review=True)
    data["alerts_sent"] = matched
    return ok(data, "Listing approved and published")


@router.post("/listings/{listing_id}/reject")
def reject_listing(listing_id: int, data: ListingReject, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    listing = listing_service.reject_listing(db, listing_id, current_user, data.rejection_reason)
    return ok(listing_service.listing_to_dict(listing, include_review=True), "Listing returned to the seller")


@router.post("/listings/{listing_id}/counters")
def correct_counters(listing_id: int, data: CounterCorrection, db: Session = Depends(get_db),
                     current_user: User = Depends(get_current_user)):
    listing = listing_service.correct_counters(db, listing_id, current_user, data.model_dump(exclude_unset=True))
    return ok(listing_service.listing_to_dict(listing, include_review=True), "Counters corrected")


# ═══════════════════════════════════════════════
#  TRANSACTIONS
# ═══════════════════════════════════════════════

@router.get("/transactions")
def all_transactions(status: Optional[str] = None, db: Session = Depends(get_db),
                     current_user: User = Depends(get_current_user)):
    require_capability(current_user, Capability.VIEW_ALL_RECORDS)
    transactions = transaction_service.list_all_transactions(db, status)
    return ok([transaction_service.transaction_to_dict(tx) for tx in transactions])


# ═══════════════════════════════════════════════
#  USER MANAGEMENT
# ═══════════════════════════════════════════════

@router.get("/users")
def list_users(role: Optional[str] = None, status: Optional[str] = None,
               skip: int = Query(0, ge=0), limit: int = Query(50, ge=1, le=500),
               db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_capability(current_user, Capability.MANAGE_USERS)
    users = user_service.list_users(db, role, status, skip, limit)
    return ok([user_service.user_to_dict(u) for u in users])


@router.get("/users/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_capability(current_user, Capability.MANAGE_USERS)
    return ok(user_service.user_to_dict(user_service.get_user(db, user_id)))


@router.patch("/users/{user_id}")
def update_user(user_id: int, data: AdminUserUpdate, db: Session = Depends(get_db),
                current_user: User = Depends(get_current_user)):
    """Change a user's profile, role or account status."""
    require_capability(current_user, Capability.MANAGE_USERS)
    user = user_service.admin_update_user(db, user_id, current_user, data.model_dump(exclude_unset=True))
    if user is None:
        raise NotFoundError("User not found")
    return ok(user_service.user_to_dict(user), "User updated")


@router.delete("/users/{user_id}")
def deactivate_user(user_id: int, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    """Soft delete: the account is deactivated, its records stay."""
    require_capability(current_user, Capability.MANAGE_USERS)
    if not user_service.deactivate_user(db, user_id, current_user):
        raise NotFoundError("User not found")
    logger.info("User %s deactivated by admin %s", user_id, current_user.id)
    return ok(message="User deactivated")
