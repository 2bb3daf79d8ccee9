"""
Inquiry / offer negotiation.

Flow:
  1. Buyer creates an inquiry (optionally with an offer) → pending, awaiting seller
  2. The awaiting party responds:
       accept  → accepted; a transaction is opened in the same commit
       reject  → rejected (terminal)
       counter → countered; the other party is now awaiting and may respond again
  3. Buyer may withdraw while the inquiry is still open

Expiry is lazy: an open inquiry past `expires_at` reads as expired
everywhere and can no longer be answered.
"""
import logging
from datetime import timedelta

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import INQUIRY_EXPIRY_DAYS
from database import utcnow
from errors import NotFoundError, PermissionDeniedError, StateConflictError, ValidationError
from models import Inquiry, InquiryDecision, InquiryStatus, NoteListing, Party, Transaction, User
from permissions import Capability, has_capability, is_admin, require_capability
from schemas import InquiryCreate, InquiryRespond
from services import listing_service, notification_service, transaction_service
from services.user_service import public_user_dict

logger = logging.getLogger("notetrade.inquiries")

OPEN_STATUSES = (InquiryStatus.PENDING.value, InquiryStatus.COUNTERED.value)


# ═══════════════════════════════════════════════
#  EXPIRY / SERIALIZATION
# ═══════════════════════════════════════════════

def effective_status(inquiry: Inquiry, now=None) -> str:
    if inquiry.status in OPEN_STATUSES and inquiry.expires_at is not None:
        if (now or utcnow()) > inquiry.expires_at:
            return InquiryStatus.EXPIRED.value
    return inquiry.status


def inquiry_to_dict(inquiry: Inquiry, viewer: User = None) -> dict:
    listing = inquiry.listing
    data = {
        "id": inquiry.id,
        "note_listing_id": inquiry.note_listing_id,
        "buyer_id": inquiry.buyer_id,
        "message": inquiry.message,
        "offer_amount": inquiry.offer_amount,
        "counter_amount": inquiry.counter_amount,
        "current_amount": inquiry.agreed_amount,
        "awaiting_response_from": inquiry.awaiting_response_from,
        "status": effective_status(inquiry),
        "response_message": inquiry.response_message,
        "responded_at": inquiry.responded_at.isoformat() if inquiry.responded_at else None,
        "expires_at": inquiry.expires_at.isoformat() if inquiry.expires_at else None,
        "created_at": inquiry.created_at.isoformat() if inquiry.created_at else None,
        "transaction_id": inquiry.transaction.id if inquiry.transaction else None,
        "listing": {
            "id": listing.id,
            "title": listing.title,
            "asking_price": listing.asking_price,
            "seller_id": listing.seller_id,
        } if listing else None,
        "buyer": public_user_dict(inquiry.buyer),
    }
    # Contact details are for the seller and admins, not echoed to third parties
    if viewer is not None and (viewer.id in (inquiry.buyer_id, listing.seller_id) or is_admin(viewer)):
        data.update({
            "contact_name": inquiry.contact_name,
            "contact_email": inquiry.contact_email,
            "contact_phone": inquiry.contact_phone,
        })
    return data


def _can_see(inquiry: Inquiry, user: User) -> bool:
    return (user.id == inquiry.buyer_id
            or user.id == inquiry.listing.seller_id
            or has_capability(user, Capability.VIEW_ALL_RECORDS))


# ═══════════════════════════════════════════════
#  CREATE
# ═══════════════════════════════════════════════

def create_inquiry(db: Session, buyer: User, data: InquiryCreate) -> Inquiry:
    require_capability(buyer, Capability.SUBMIT_INQUIRIES, "Only investor accounts can submit inquiries")

    listing = db.query(NoteListing).filter(NoteListing.id == data.note_listing_id).first()
    if not listing:
        raise ValidationError(f"Listing {data.note_listing_id} does not exist", field="note_listing_id")
    if listing.seller_id == buyer.id:
        raise ValidationError("You cannot inquire on your own listing", field="note_listing_id")
    if not listing_service.is_live(listing):
        raise StateConflictError("This listing is not open for inquiries")

    inquiry = Inquiry(
        note_listing_id=listing.id,
        buyer_id=buyer.id,
        message=data.message,
        offer_amount=data.offer_amount,
        awaiting_response_from=Party.SELLER.value,
        status=InquiryStatus.PENDING.value,
        expires_at=utcnow() + timedelta(days=INQUIRY_EXPIRY_DAYS),
        contact_name=data.contact_name or buyer.full_name,
        contact_email=data.contact_email or buyer.email,
        contact_phone=data.contact_phone or buyer.phone,
    )
    db.add(inquiry)
    listing_service.bump_counter(db, listing.id, "inquiry_count")
    db.flush()

    offer = f" with an offer of ${data.offer_amount:,.2f}" if data.offer_amount else ""
    title = "New inquiry on your listing"
    message = f"{buyer.full_name} sent an inquiry on '{listing.title}'{offer}."
    notification_service.notify(db, listing.seller_id, title, message, "inquiry", f"/inquiries/{inquiry.id}")
    db.commit()
    db.refresh(inquiry)

    logger.info("Inquiry %s created by buyer %s on listing %s", inquiry.id, buyer.id, listing.id)
    notification_service.email_user(listing.seller, title, message, f"/inquiries/{inquiry.id}")
    return inquiry


# ═══════════════════════════════════════════════
#  RESPOND
# ═══════════════════════════════════════════════

def _responding_party(inquiry: Inquiry, responder: User) -> Party:
    """Work out which side the responder speaks for, or refuse."""
    awaiting = Party(inquiry.awaiting_response_from)
    if awaiting is Party.SELLER and (responder.id == inquiry.listing.seller_id or is_admin(responder)):
        return Party.SELLER
    if awaiting is Party.BUYER and responder.id == inquiry.buyer_id:
        return Party.BUYER
    if responder.id in (inquiry.buyer_id, inquiry.listing.seller_id):
        raise PermissionDeniedError(f"Waiting for the {awaiting.value} to respond")
    raise PermissionDeniedError("You are not a party to this inquiry")


def respond_to_inquiry(db: Session, inquiry_id: int, responder: User,
                       data: InquiryRespond) -> tuple[Inquiry, Transaction | None]:
    """
    Apply a decision to an open inquiry. Returns (inquiry, transaction);
    the transaction is only set for an accept.
    """
    inquiry = db.query(Inquiry).filter(Inquiry.id == inquiry_id).first()
    if not inquiry:
        raise NotFoundError("Inquiry not found")

    status = effective_status(inquiry)
    if status not in OPEN_STATUSES:
        logger.warning("Response to inquiry %s rejected: inquiry is %s", inquiry.id, status)
        raise StateConflictError(f"Inquiry is {status} and can no longer be answered")

    side = _responding_party(inquiry, responder)
    decision = InquiryDecision(data.decision)
    now = utcnow()
    transaction = None

    inquiry.response_message = data.response_message
    inquiry.responded_at = now

    if decision is InquiryDecision.COUNTER:
        inquiry.status = InquiryStatus.COUNTERED.value
        inquiry.counter_amount = data.counter_amount
        inquiry.awaiting_response_from = (Party.BUYER if side is Party.SELLER else Party.SELLER).value
        inquiry.expires_at = now + timedelta(days=INQUIRY_EXPIRY_DAYS)
        title = "Counter offer received"
        message = f"A counter offer of ${data.counter_amount:,.2f} was made on '{inquiry.listing.title}'."
    elif decision is InquiryDecision.REJECT:
        inquiry.status = InquiryStatus.REJECTED.value
        title = "Inquiry declined"
        message = f"The inquiry on '{inquiry.listing.title}' was declined."
    else:
        inquiry.status = InquiryStatus.ACCEPTED.value
        title = "Offer accepted"
        message = f"The offer on '{inquiry.listing.title}' was accepted. A transaction has been opened."

    recipient_id = inquiry.buyer_id if side is Party.SELLER else inquiry.listing.seller_id
    link = f"/inquiries/{inquiry.id}"

    try:
        if decision is InquiryDecision.ACCEPT:
            transaction = transaction_service.create_transaction(db, inquiry, responder)
            link = f"/transactions/{transaction.id}"
        notification_service.notify(db, recipient_id, title, message, "inquiry", link)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise StateConflictError("This inquiry already has a transaction")
    except Exception:
        db.rollback()
        raise

    db.refresh(inquiry)
    if transaction is not None:
        db.refresh(transaction)
    logger.info("Inquiry %s %s by %s (user %s)", inquiry.id, inquiry.status, side.value, responder.id)

    recipient = inquiry.buyer if side is Party.SELLER else inquiry.listing.seller
    notification_service.email_user(recipient, title, message, link)
    return inquiry, transaction


def withdraw_inquiry(db: Session, inquiry_id: int, buyer: User) -> Inquiry:
    inquiry = db.query(Inquiry).filter(Inquiry.id == inquiry_id).first()
    if not inquiry:
        raise NotFoundError("Inquiry not found")
    if inquiry.buyer_id != buyer.id:
        raise PermissionDeniedError("Only the buyer can withdraw an inquiry")
    status = effective_status(inquiry)
    if status not in OPEN_STATUSES:
        raise StateConflictError(f"Inquiry is {status} and cannot be withdrawn")

    inquiry.status = InquiryStatus.WITHDRAWN.value
    notification_service.notify(db, inquiry.listing.seller_id, "Inquiry withdrawn",
                                f"An inquiry on '{inquiry.listing.title}' was withdrawn.", "inquiry")
    db.commit()
    db.refresh(inquiry)
    return inquiry


def delete_inquiry(db: Session, inquiry_id: int, user: User) -> bool:
    """Returns False when the inquiry does not exist."""
    inquiry = db.query(Inquiry).filter(Inquiry.id == inquiry_id).first()
    if not inquiry:
        return False
    if inquiry.buyer_id != user.id and not is_admin(user):
        raise PermissionDeniedError("Only the buyer can delete an inquiry")
    if inquiry.transaction is not None:
        raise StateConflictError("An inquiry with a transaction cannot be deleted")
    db.delete(inquiry)
    db.commit()
    return True


# ═══════════════════════════════════════════════
#  READ
# ═══════════════════════════════════════════════

def get_inquiry(db: Session, inquiry_id: int, viewer: User) -> Inquiry:
    inquiry = db.query(Inquiry).filter(Inquiry.id == inquiry_id).first()
    if not inquiry or not _can_see(inquiry, viewer):
        raise NotFoundError("Inquiry not found")
    return inquiry


def inquiries_for_buyer(db: Session, buyer_id: int) -> list:
    return db.query(Inquiry).filter(Inquiry.buyer_id == buyer_id).order_by(Inquiry.id.desc()).all()


def inquiries_for_seller(db: Session, seller_id: int) -> list:
    return db.query(Inquiry).join(NoteListing, Inquiry.note_listing_id == NoteListing.id) \
        .filter(NoteListing.seller_id == seller_id).order_by(Inquiry.id.desc()).all()


def inquiries_for_listing(db: Session, listing_id: int, viewer: User) -> list:
    listing = db.query(NoteListing).filter(NoteListing.id == listing_id).first()
    if not listing:
        raise NotFoundError("Listing not found")
    if not listing_service.is_owner_or_admin(listing, viewer):
        raise PermissionDeniedError("Only the seller can view inquiries on this listing")
    return db.query(Inquiry).filter(Inquiry.note_listing_id == listing_id).order_by(Inquiry.id.desc()).all()


def inquiries_for_user(db: Session, user: User, role: str = None) -> list:
    if role == Party.BUYER.value:
        return inquiries_for_buyer(db, user.id)
    if role == Party.SELLER.value:
        return inquiries_for_seller(db, user.id)
    return db.query(Inquiry).join(NoteListing, Inquiry.note_listing_id == NoteListing.id) \
        .filter(or_(Inquiry.buyer_id == user.id, NoteListing.seller_id == user.id)) \
        .order_by(Inquiry.id.desc()).all()


# ═══════════════════════════════════════════════
#  STATS
# ═══════════════════════════════════════════════

def inquiry_stats(db: Session) -> dict:
    now = utcnow()
    by_status = {status.value: 0 for status in InquiryStatus}
    response_hours = []
    for inquiry in db.query(Inquiry).all():
        by_status[effective_status(inquiry, now)] += 1
        if inquiry.responded_at and inquiry.created_at:
            response_hours.append((inquiry.responded_at - inquiry.created_at).total_seconds() / 3600)

    week_ago = now - timedelta(days=7)
    recent = db.query(func.count(Inquiry.id)).filter(Inquiry.created_at >= week_ago).scalar()
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "average_response_hours": round(sum(response_hours) / len(response_hours), 2) if response_hours else None,
        "created_last_7_days": recent or 0,
    }
