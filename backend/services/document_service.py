"""
Pre-sale due-diligence documents attached to a listing.

A viewer who is neither the listing's seller nor an admin sees a document
only once it is public AND verified; the filter lives in the query.
"""
import logging

from sqlalchemy.orm import Session

from database import utcnow
from errors import PermissionDeniedError, ValidationError
from models import Document, NoteListing, User, VerificationStatus
from permissions import Capability, require_capability
from schemas import DocumentCreate, DocumentUpdate
from services.listing_service import can_view, is_owner_or_admin

logger = logging.getLogger("notetrade.documents")


def document_to_dict(doc: Document) -> dict:
    return {
        "id": doc.id,
        "note_listing_id": doc.note_listing_id,
        "uploaded_by_user_id": doc.uploaded_by_user_id,
        "name": doc.name,
        "file_url": doc.file_url,
        "file_type": doc.file_type,
        "file_size": doc.file_size,
        "document_type": doc.document_type,
        "description": doc.description,
        "is_public": doc.is_public,
        "verification_status": doc.verification_status,
        "verified_by_user_id": doc.verified_by_user_id,
        "verified_at": doc.verified_at.isoformat() if doc.verified_at else None,
        "created_at": doc.created_at.isoformat() if doc.created_at else None,
    }


def create_document(db: Session, user: User, data: DocumentCreate) -> Document:
    listing = db.query(NoteListing).filter(NoteListing.id == data.note_listing_id).first()
    if not listing:
        raise ValidationError(f"Listing {data.note_listing_id} does not exist", field="note_listing_id")
    if not is_owner_or_admin(listing, user):
        raise PermissionDeniedError("Only the listing's seller can attach documents")

    doc = Document(uploaded_by_user_id=user.id, **data.model_dump())
    db.add(doc)
    db.commit()
    db.refresh(doc)
    logger.info("Document %s attached to listing %s", doc.id, listing.id)
    return doc


def list_documents(db: Session, listing_id: int, viewer: User = None) -> list:
    listing = db.query(NoteListing).filter(NoteListing.id == listing_id).first()
    if not listing or not can_view(listing, viewer):
        return []

    query = db.query(Document).filter(Document.note_listing_id == listing_id)
    if not is_owner_or_admin(listing, viewer):
        query = query.filter(
            Document.is_public == True,  # noqa: E712
            Document.verification_status == VerificationStatus.VERIFIED.value,
        )
    return query.order_by(Document.id).all()


def _get_owned(db: Session, document_id: int, user: User) -> Document | None:
    doc = db.query(Document).filter(Document.id == document_id).first()
    if not doc:
        return None
    if not is_owner_or_admin(doc.listing, user):
        raise PermissionDeniedError("You can only manage documents on your own listings")
    return doc


def update_document(db: Session, document_id: int, user: User, data: DocumentUpdate) -> Document | None:
    """Returns None when the document does not exist."""
    doc = _get_owned(db, document_id, user)
    if doc is None:
        return None
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(doc, key, value)
    db.commit()
    db.refresh(doc)
    return doc


def delete_document(db: Session, document_id: int, user: User) -> bool:
    """Returns False when the document does not exist."""
    doc = _get_owned(db, document_id, user)
    if doc is None:
        return False
    db.delete(doc)
    db.commit()
    logger.info("Document %s deleted by user %s", document_id, user.id)
    return True


def verify_document(db: Session, document_id: int, admin: User, verification_status: str) -> Document | None:
    require_capability(admin, Capability.VERIFY_DOCUMENTS)
    doc = db.query(Document).filter(Document.id == document_id).first()
    if not doc:
        return None
    doc.verification_status = verification_status
    doc.verified_by_user_id = admin.id
    doc.verified_at = utcnow()
    db.commit()
    db.refresh(doc)
    logger.info("Document %s marked %s by admin %s", doc.id, verification_status, admin.id)
    return doc
