"""
Inquiry routes: buyer offers, seller responses and counter offers.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from errors import NotFoundError
from models import User
from routes.auth import get_current_user
from schemas import InquiryCreate, InquiryRespond, ok
from services import inquiry_service, transaction_service

router = APIRouter(prefix="/api/inquiries", tags=["inquiries"])


@router.post("", status_code=201)
def create_inquiry(data: InquiryCreate, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    inquiry = inquiry_service.create_inquiry(db, current_user, data)
    return ok(inquiry_service.inquiry_to_dict(inquiry, current_user), "Inquiry sent to the seller")


@router.get("")
def my_inquiries(role: Optional[str] = Query(None, pattern="^(buyer|seller)$"),
                 db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Inquiries the caller sent (buyer), received (seller), or both."""
    inquiries = inquiry_service.inquiries_for_user(db, current_user, role)
    return ok([inquiry_service.inquiry_to_dict(i, current_user) for i in inquiries])


@router.get("/listing/{listing_id}")
def listing_inquiries(listing_id: int, db: Session = Depends(get_db),
                      current_user: User = Depends(get_current_user)):
    inquiries = inquiry_service.inquiries_for_listing(db, listing_id, current_user)
    return ok([inquiry_service.inquiry_to_dict(i, current_user) for i in inquiries])


@router.get("/{inquiry_id}")
def get_inquiry(inquiry_id: int, db: Session = Depends(get_db),
                current_user: User = Depends(get_current_user)):
    inquiry = inquiry_service.get_inquiry(db, inquiry_id, current_user)
    return ok(inquiry_service.inquiry_to_dict(inquiry, current_user))


@router.post("/{inquiry_id}/respond")
def respond_to_inquiry(inquiry_id: int, data: InquiryRespond, db: Session = Depends(get_db),
                       current_user: User = Depends(get_current_user)):
    """
    Accept, reject or counter. Accepting opens the transaction in the same
    commit and returns it alongside the inquiry.
    """
    inquiry, transaction = inquiry_service.respond_to_inquiry(db, inquiry_id, current_user, data)
    payload = {"inquiry": inquiry_service.inquiry_to_dict(inquiry, current_user), "transaction": None}
    if transaction is not None:
        payload["transaction"] = transaction_service.transaction_to_dict(transaction)
    return ok(payload, f"Inquiry {inquiry.status}")


@router.post("/{inquiry_id}/withdraw")
def withdraw_inquiry(inquiry_id: int, db: Session = Depends(get_db),
                     current_user: User = Depends(get_current_user)):
    inquiry = inquiry_service.withdraw_inquiry(db, inquiry_id, current_user)
    return ok(inquiry_service.inquiry_to_dict(inquiry, current_user), "Inquiry withdrawn")


@router.delete("/{inquiry_id}")
def delete_inquiry(inquiry_id: int, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    if not inquiry_service.delete_inquiry(db, inquiry_id, current_user):
        raise NotFoundError("Inquiry not found")
    return ok(message="Inquiry deleted")
