"""
Saved searches, investor preferences and new-listing alerts.

Criteria are stored as JSON text and always rehydrated through
`ListingCriteria`, so stored searches obey the same validation as
ad-hoc queries.
"""
import json
import logging

from sqlalchemy.orm import Session

from database import utcnow
from errors import NotFoundError
from models import InvestorPreferences, NoteListing, SavedSearch, User
from schemas import ListingCriteria, PreferencesUpdate, SavedSearchCreate, SavedSearchUpdate
from services import listing_service, notification_service
from services.email_service import email_service

logger = logging.getLogger("notetrade.alerts")

PREFERENCE_LIST_FIELDS = ("note_types", "performance_statuses", "property_types", "property_states")
PREFERENCE_RANGE_FIELDS = (
    "min_asking_price", "max_asking_price", "min_expected_yield", "max_expected_yield",
    "min_interest_rate", "max_interest_rate", "max_loan_to_value",
)


def criteria_of(search: SavedSearch) -> ListingCriteria:
    return ListingCriteria(**json.loads(search.criteria or "{}"))


def saved_search_to_dict(search: SavedSearch) -> dict:
    return {
        "id": search.id,
        "user_id": search.user_id,
        "name": search.name,
        "criteria": criteria_of(search).model_dump(exclude_none=True),
        "is_active": search.is_active,
        "email_alerts": search.email_alerts,
        "last_run_at": search.last_run_at.isoformat() if search.last_run_at else None,
        "total_matches": search.total_matches,
        "created_at": search.created_at.isoformat() if search.created_at else None,
    }


# ═══════════════════════════════════════════════
#  SAVED SEARCHES
# ═══════════════════════════════════════════════

def create_saved_search(db: Session, user: User, data: SavedSearchCreate) -> SavedSearch:
    search = SavedSearch(
        user_id=user.id,
        name=data.name,
        criteria=data.criteria.model_dump_json(exclude_none=True),
        email_alerts=data.email_alerts,
    )
    db.add(search)
    db.commit()
    db.refresh(search)
    return search


def list_saved_searches(db: Session, user: User) -> list:
    return db.query(SavedSearch).filter(SavedSearch.user_id == user.id).order_by(SavedSearch.id).all()


def get_saved_search(db: Session, search_id: int, user: User) -> SavedSearch:
    search = db.query(SavedSearch).filter(SavedSearch.id == search_id, SavedSearch.user_id == user.id).first()
    if not search:
        raise NotFoundError("Saved search not found")
    return search


def update_saved_search(db: Session, search_id: int, user: User, data: SavedSearchUpdate) -> SavedSearch | None:
    """Returns None when the search does not exist (or is not the user's)."""
    search = db.query(SavedSearch).filter(SavedSearch.id == search_id, SavedSearch.user_id == user.id).first()
    if not search:
        return None
    fields = data.model_dump(exclude_unset=True, exclude={"criteria"})
    for key, value in fields.items():
        setattr(search, key, value)
    if data.criteria is not None:
        search.criteria = data.criteria.model_dump_json(exclude_none=True)
    db.commit()
    db.refresh(search)
    return search


def delete_saved_search(db: Session, search_id: int, user: User) -> bool:
    search = db.query(SavedSearch).filter(SavedSearch.id == search_id, SavedSearch.user_id == user.id).first()
    if not search:
        return False
    db.delete(search)
    db.commit()
    return True


def run_saved_search(db: Session, search_id: int, user: User, skip: int = 0, limit: int = 20) -> tuple[list, int]:
    search = get_saved_search(db, search_id, user)
    items, total = listing_service.search_listings(db, criteria_of(search), skip=skip, limit=limit)
    search.last_run_at = utcnow()
    search.total_matches = total
    db.commit()
    return items, total


# ═══════════════════════════════════════════════
#  NEW-LISTING ALERTS
# ═══════════════════════════════════════════════

def process_listing_alerts(db: Session, listing: NoteListing) -> int:
    """
    Notify every owner of an active saved search that matches a listing
    which has just gone live. Returns the number of searches matched.

    Delivery failures are logged; they never undo the approval that
    triggered the alerts.
    """
    if not listing_service.is_live(listing):
        return 0

    searches = db.query(SavedSearch).filter(
        SavedSearch.is_active == True,  # noqa: E712
        SavedSearch.email_alerts == True,  # noqa: E712
        SavedSearch.user_id != listing.seller_id,
    ).all()

    matched = []
    now = utcnow()
    for search in searches:
        try:
            if not listing_service.criteria_matches(criteria_of(search), listing):
                continue
        except ValueError as e:
            logger.warning("Saved search %s has unreadable criteria: %s", search.id, e)
            continue
        search.total_matches = (search.total_matches or 0) + 1
        search.last_run_at = now
        notification_service.notify(
            db, search.user_id,
            f"New match for '{search.name}'",
            f"'{listing.title}' is now listed at ${listing.asking_price:,.2f}.",
            "search_alert",
            f"/listings/{listing.id}",
        )
        matched.append(search)
    db.commit()

    for search in matched:
        owner = search.user
        if owner is None or not owner.is_active:
            continue
        sent = email_service.send_search_alert_email(
            owner.email, owner.first_name, search.name,
            listing.title, listing.asking_price, f"/listings/{listing.id}",
        )
        if not sent:
            logger.warning("Alert email for saved search %s was not delivered", search.id)

    if matched:
        logger.info("Listing %s matched %d saved search(es)", listing.id, len(matched))
    return len(matched)


# ═══════════════════════════════════════════════
#  INVESTOR PREFERENCES
# ═══════════════════════════════════════════════

def preferences_to_dict(prefs: InvestorPreferences) -> dict:
    data = {"user_id": prefs.user_id, "email_alerts": prefs.email_alerts}
    for field in PREFERENCE_LIST_FIELDS:
        data[field] = json.loads(getattr(prefs, field) or "[]")
    for field in PREFERENCE_RANGE_FIELDS:
        data[field] = getattr(prefs, field)
    data["updated_at"] = prefs.updated_at.isoformat() if prefs.updated_at else None
    return data


def get_preferences(db: Session, user: User) -> InvestorPreferences | None:
    return db.query(InvestorPreferences).filter(InvestorPreferences.user_id == user.id).first()


def upsert_preferences(db: Session, user: User, data: PreferencesUpdate) -> InvestorPreferences:
    prefs = get_preferences(db, user)
    if prefs is None:
        prefs = InvestorPreferences(user_id=user.id)
        db.add(prefs)

    criteria = data.to_criteria()
    for field in PREFERENCE_LIST_FIELDS:
        setattr(prefs, field, json.dumps(getattr(criteria, field) or []))
    for field in PREFERENCE_RANGE_FIELDS:
        setattr(prefs, field, getattr(criteria, field))
    prefs.email_alerts = data.email_alerts
    db.commit()
    db.refresh(prefs)
    return prefs


def preference_matches(db: Session, user: User, skip: int = 0, limit: int = 20) -> tuple[list, int]:
    prefs = get_preferences(db, user)
    if prefs is None:
        raise NotFoundError("No investment preferences saved yet")
    stored = preferences_to_dict(prefs)
    criteria = ListingCriteria(**{k: v for k, v in stored.items()
                                  if k in PREFERENCE_LIST_FIELDS + PREFERENCE_RANGE_FIELDS})
    return listing_service.search_listings(db, criteria, skip=skip, limit=limit)
