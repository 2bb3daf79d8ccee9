"""
Document routes: due-diligence files attached to a listing.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from errors import NotFoundError
from models import User
from routes.auth import get_current_user
from schemas import DocumentCreate, DocumentUpdate, DocumentVerify, ok
from services import document_service

router = APIRouter(prefix="/api/documents", tags=["documents"])


@router.post("", status_code=201)
def create_document(data: DocumentCreate, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    doc = document_service.create_document(db, current_user, data)
    return ok(document_service.document_to_dict(doc), "Document attached")


@router.patch("/{document_id}")
def update_document(document_id: int, data: DocumentUpdate, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    doc = document_service.update_document(db, document_id, current_user, data)
    if doc is None:
        raise NotFoundError("Document not found")
    return ok(document_service.document_to_dict(doc), "Document updated")


@router.delete("/{document_id}")
def delete_document(document_id: int, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    if not document_service.delete_document(db, document_id, current_user):
        raise NotFoundError("Document not found")
    return ok(message="Document deleted")


@router.post("/{document_id}/verify")
def verify_document(document_id: int, data: DocumentVerify, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    """Admin marks a document verified or rejected."""
    doc = document_service.verify_document(db, document_id, current_user, data.verification_status)
    if doc is None:
        raise NotFoundError("Document not found")
    return ok(document_service.document_to_dict(doc), f"Document {doc.verification_status}")
