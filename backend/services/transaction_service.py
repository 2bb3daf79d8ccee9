"""
Transaction workflow: from accepted inquiry to completed sale.

State machine:
  negotiations → closing → completed
        ↘           ↘
         cancelled (from any non-terminal state; current_phase is frozen)

A transaction is the aggregate root for its tasks, files and timeline
events. Every state change writes a timeline event in the same commit.
Task completion is a compare-and-set on `status = 'pending'`, so a task
can only be completed once and only one "success" event is ever logged.
"""
import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from config import SECRET_KEY, SIGNED_URL_TTL_SECONDS
from database import utcnow
from errors import NotFoundError, PermissionDeniedError, StateConflictError, ValidationError
from models import (
    Inquiry, InquiryStatus, ListingStatus, NoteListing, Party, TaskStatus, TimelineEventType,
    Transaction, TransactionFile, TransactionStatus, TransactionTask, TransactionTimelineEvent, User,
)
from permissions import Capability, has_capability, is_admin, require_capability
from schemas import FileCreate, TaskCreate, TimelineEventCreate, TransactionUpdate
from services import listing_service, notification_service
from services.user_service import public_user_dict

logger = logging.getLogger("notetrade.transactions")

PHASE_ORDER = {
    TransactionStatus.NEGOTIATIONS.value: 0,
    TransactionStatus.CLOSING.value: 1,
    TransactionStatus.COMPLETED.value: 2,
}
OPEN_STATUSES = (TransactionStatus.NEGOTIATIONS.value, TransactionStatus.CLOSING.value)
RESOLVED_TASK_STATUSES = (TaskStatus.COMPLETE.value, TaskStatus.SKIPPED.value)

# ── Default closing checklist seeded on every new transaction ──
DEFAULT_CHECKLIST = [
    # (phase, task_identifier, assigned_to, is_required, description)
    ("negotiations", "review_collateral_file", "buyer", True,
     "Review the note, mortgage, title and payment history documents"),
    ("negotiations", "confirm_purchase_price", "seller", True,
     "Confirm the final purchase price and terms"),
    ("negotiations", "agree_closing_schedule", "platform", False,
     "Agree the cut-off and closing dates"),
    ("closing", "execute_purchase_agreement", "platform", True,
     "Execute the note purchase and sale agreement"),
    ("closing", "provide_vesting_information", "buyer", True,
     "Provide buyer vesting information for the assignment"),
    ("closing", "provide_wire_instructions", "seller", True,
     "Provide verified seller wire instructions"),
    ("closing", "fund_purchase", "buyer", True,
     "Fund the purchase price"),
    ("closing", "ship_original_collateral", "seller", True,
     "Ship the original note, allonge and assignment"),
    ("closing", "verify_collateral_receipt", "platform", True,
     "Verify receipt of the original collateral file"),
    ("closing", "send_servicing_transfer_notices", "seller", False,
     "Send servicing transfer notices to the borrower"),
]

EDITABLE_FIELDS = (
    "final_amount", "platform_fee", "cut_off_date", "closing_date", "contract_url",
    "notes", "buyer_vesting_info", "servicer_info", "collateral_tracking_number",
)


# ═══════════════════════════════════════════════
#  SERIALIZATION
# ═══════════════════════════════════════════════

def _iso(value):
    return value.isoformat() if value else None


def task_to_dict(task: TransactionTask) -> dict:
    return {
        "id": task.id,
        "transaction_id": task.transaction_id,
        "task_identifier": task.task_identifier,
        "description": task.description,
        "phase": task.phase,
        "assigned_to": task.assigned_to,
        "status": task.status,
        "is_required": task.is_required,
        "display_order": task.display_order,
        "completed_by_user_id": task.completed_by_user_id,
        "completed_at": _iso(task.completed_at),
    }


def file_to_dict(f: TransactionFile) -> dict:
    return {
        "id": f.id,
        "transaction_id": f.transaction_id,
        "task_id": f.task_id,
        "file_url": f.file_url,
        "file_name": f.file_name,
        "file_type": f.file_type,
        "file_size": f.file_size,
        "category": f.category,
        "description": f.description,
        "uploaded_by_user_id": f.uploaded_by_user_id,
        "is_public": f.is_public,
        "is_verified": f.is_verified,
        "verified_by_user_id": f.verified_by_user_id,
        "verified_at": _iso(f.verified_at),
        "created_at": _iso(f.created_at),
    }


def event_to_dict(e: TransactionTimelineEvent) -> dict:
    return {
        "id": e.id,
        "transaction_id": e.transaction_id,
        "event_description": e.event_description,
        "event_type": e.event_type,
        "event_data": json.loads(e.event_data) if e.event_data else None,
        "triggered_by_user_id": e.triggered_by_user_id,
        "related_task_id": e.related_task_id,
        "related_file_id": e.related_file_id,
        "event_timestamp": _iso(e.event_timestamp),
    }


def transaction_to_dict(tx: Transaction) -> dict:
    listing = tx.listing
    return {
        "id": tx.id,
        "inquiry_id": tx.inquiry_id,
        "note_listing_id": tx.note_listing_id,
        "buyer_id": tx.buyer_id,
        "seller_id": tx.seller_id,
        "final_amount": tx.final_amount,
        "platform_fee": tx.platform_fee,
        "status": tx.status,
        "current_phase": tx.current_phase,
        "cut_off_date": _iso(tx.cut_off_date),
        "closing_date": _iso(tx.closing_date),
        "contract_url": tx.contract_url,
        "notes": tx.notes,
        "buyer_vesting_info": tx.buyer_vesting_info,
        "servicer_info": tx.servicer_info,
        "collateral_tracking_number": tx.collateral_tracking_number,
        "cancellation_reason": tx.cancellation_reason,
        "cancelled_at": _iso(tx.cancelled_at),
        "completed_at": _iso(tx.completed_at),
        "created_at": _iso(tx.created_at),
        "updated_at": _iso(tx.updated_at),
        "listing": {
            "id": listing.id,
            "title": listing.title,
            "asking_price": listing.asking_price,
            "status": listing.status,
        } if listing else None,
        "buyer": public_user_dict(tx.buyer),
        "seller": public_user_dict(tx.seller),
    }


def ordered_tasks(tx: Transaction) -> list:
    return sorted(tx.tasks, key=lambda t: (PHASE_ORDER.get(t.phase, 9), t.display_order, t.id))


def transaction_detail(db: Session, tx: Transaction, viewer: User) -> dict:
    data = transaction_to_dict(tx)
    data["tasks"] = [task_to_dict(t) for t in ordered_tasks(tx)]
    data["files"] = [file_to_dict(f) for f in _visible_files_query(db, tx.id, viewer).all()]
    data["timeline"] = [event_to_dict(e) for e in tx.timeline_events]
    return data


# ═══════════════════════════════════════════════
#  ACCESS HELPERS
# ═══════════════════════════════════════════════

def party_of(tx: Transaction, user: User) -> Party | None:
    if user.id == tx.buyer_id:
        return Party.BUYER
    if user.id == tx.seller_id:
        return Party.SELLER
    return None


def _require_participant(tx: Transaction, user: User):
    if party_of(tx, user) is None and not has_capability(user, Capability.VIEW_ALL_RECORDS):
        raise PermissionDeniedError("You are not a party to this transaction")


def _require_open(tx: Transaction):
    if tx.is_terminal:
        raise StateConflictError(f"Transaction is {tx.status}; no further changes are allowed")


def _get_transaction(db: Session, transaction_id: int) -> Transaction:
    tx = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not tx:
        raise NotFoundError("Transaction not found")
    return tx


def _get_task(db: Session, task_id: int) -> TransactionTask:
    task = db.query(TransactionTask).filter(TransactionTask.id == task_id).first()
    if not task:
        raise NotFoundError("Task not found")
    return task


def _get_file(db: Session, file_id: int) -> TransactionFile:
    f = db.query(TransactionFile).filter(TransactionFile.id == file_id).first()
    if not f:
        raise NotFoundError("File not found")
    return f


def _check_task_actor(tx: Transaction, task: TransactionTask, user: User):
    if is_admin(user):
        return
    if task.assigned_to == Party.PLATFORM.value:
        require_capability(user, Capability.MANAGE_PLATFORM_TASKS, "Platform tasks are handled by NoteTrade staff")
        return
    party = party_of(tx, user)
    if party is None or party.value != task.assigned_to:
        raise PermissionDeniedError(f"This task is assigned to the {task.assigned_to}")


def _add_event(db: Session, tx: Transaction, description: str, event_type: TimelineEventType,
               user_id: int = None, data: dict = None, task_id: int = None,
               file_id: int = None) -> TransactionTimelineEvent:
    event = TransactionTimelineEvent(
        transaction_id=tx.id,
        event_description=description,
        event_type=event_type.value,
        event_data=json.dumps(data, default=str) if data else None,
        triggered_by_user_id=user_id,
        related_task_id=task_id,
        related_file_id=file_id,
    )
    db.add(event)
    return event


def _close_competing_inquiries(db: Session, tx: Transaction) -> int:
    """Decline every other still-open inquiry on a listing that has just sold; caller commits."""
    now = utcnow()
    closed = db.query(Inquiry).filter(
        Inquiry.note_listing_id == tx.note_listing_id,
        Inquiry.id != tx.inquiry_id,
        Inquiry.status.in_((InquiryStatus.PENDING.value, InquiryStatus.COUNTERED.value)),
        or_(Inquiry.expires_at.is_(None), Inquiry.expires_at > now),
    ).update({
        Inquiry.status: InquiryStatus.REJECTED.value,
        Inquiry.response_message: "This note has been sold",
        Inquiry.responded_at: now,
    }, synchronize_session=False)
    if closed:
        logger.info("Closed %s open inquiries on sold listing %s", closed, tx.note_listing_id)
    return closed


def _notify_counterparty(db: Session, tx: Transaction, actor: User, title: str, message: str) -> list:
    """Stage notifications for the parties other than the actor; returns the recipients."""
    recipients = [u for u in (tx.buyer, tx.seller) if u is not None and u.id != actor.id]
    for user in recipients:
        notification_service.notify(db, user.id, title, message, "transaction", f"/transactions/{tx.id}")
    return recipients


def _email(recipients: list, title: str, message: str, tx: Transaction):
    for user in recipients:
        notification_service.email_user(user, title, message, f"/transactions/{tx.id}")


# ═══════════════════════════════════════════════
#  CREATE
# ═══════════════════════════════════════════════

def create_transaction(db: Session, inquiry: Inquiry, actor: User) -> Transaction:
    """
    Open a transaction for an accepted inquiry and seed its checklist.

    Only flushes: the caller owns the commit, so the inquiry acceptance,
    the transaction, its tasks and the opening event land together or not at all.
    """
    if inquiry.status != InquiryStatus.ACCEPTED.value:
        raise StateConflictError("A transaction can only be opened from an accepted inquiry")
    if db.query(Transaction).filter(Transaction.inquiry_id == inquiry.id).first():
        raise StateConflictError("This inquiry already has a transaction")

    listing = inquiry.listing
    if inquiry.buyer_id == listing.seller_id:
        raise ValidationError("Buyer and seller must be different users", field="buyer_id")
    listing_status = db.query(NoteListing.status).filter(NoteListing.id == listing.id).scalar()
    if listing_status != ListingStatus.ACTIVE.value:
        raise StateConflictError(f"Listing is {listing_status} and can no longer be sold")
    open_tx = db.query(Transaction).filter(
        Transaction.note_listing_id == listing.id,
        Transaction.status.in_(OPEN_STATUSES),
    ).first()
    if open_tx:
        raise StateConflictError(f"Listing already has an open transaction (#{open_tx.id})")

    tx = Transaction(
        inquiry_id=inquiry.id,
        note_listing_id=listing.id,
        buyer_id=inquiry.buyer_id,
        seller_id=listing.seller_id,
        final_amount=inquiry.agreed_amount,
        status=TransactionStatus.NEGOTIATIONS.value,
        current_phase=TransactionStatus.NEGOTIATIONS.value,
    )
    db.add(tx)
    db.flush()

    for order, (phase, identifier, assigned_to, required, description) in enumerate(DEFAULT_CHECKLIST, 1):
        db.add(TransactionTask(
            transaction_id=tx.id,
            task_identifier=identifier,
            description=description,
            phase=phase,
            assigned_to=assigned_to,
            is_required=required,
            display_order=order,
        ))

    amount = f"${tx.final_amount:,.2f}" if tx.final_amount is not None else "an amount to be agreed"
    _add_event(db, tx, f"Transaction opened for {amount}", TimelineEventType.INFO, actor.id,
               data={"inquiry_id": inquiry.id, "final_amount": tx.final_amount})
    db.flush()
    logger.info("Transaction %s opened from inquiry %s (listing %s)", tx.id, inquiry.id, listing.id)
    return tx


def create_transaction_for_inquiry(db: Session, inquiry_id: int, actor: User) -> Transaction:
    inquiry = db.query(Inquiry).filter(Inquiry.id == inquiry_id).first()
    if not inquiry:
        raise ValidationError(f"Inquiry {inquiry_id} does not exist", field="inquiry_id")
    if actor.id not in (inquiry.buyer_id, inquiry.listing.seller_id) and not is_admin(actor):
        raise PermissionDeniedError("You are not a party to this inquiry")

    try:
        tx = create_transaction(db, inquiry, actor)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(tx)
    return tx


# ═══════════════════════════════════════════════
#  READ
# ═══════════════════════════════════════════════

def get_transaction(db: Session, transaction_id: int, viewer: User) -> Transaction:
    tx = _get_transaction(db, transaction_id)
    _require_participant(tx, viewer)
    return tx


def list_user_transactions(db: Session, user: User, role: str = None) -> list:
    query = db.query(Transaction)
    if role == Party.BUYER.value:
        query = query.filter(Transaction.buyer_id == user.id)
    elif role == Party.SELLER.value:
        query = query.filter(Transaction.seller_id == user.id)
    else:
        query = query.filter(or_(Transaction.buyer_id == user.id, Transaction.seller_id == user.id))
    return query.order_by(Transaction.id.desc()).all()


def list_all_transactions(db: Session, status: str = None) -> list:
    query = db.query(Transaction)
    if status:
        query = query.filter(Transaction.status == status)
    return query.order_by(Transaction.id.desc()).all()


def list_tasks(db: Session, transaction_id: int, viewer: User) -> list:
    tx = get_transaction(db, transaction_id, viewer)
    return ordered_tasks(tx)


def list_timeline(db: Session, transaction_id: int, viewer: User) -> list:
    tx = get_transaction(db, transaction_id, viewer)
    return list(tx.timeline_events)


# ═══════════════════════════════════════════════
#  PHASES
# ═══════════════════════════════════════════════

def outstanding_required_tasks(tx: Transaction) -> list:
    return [
        t for t in ordered_tasks(tx)
        if t.phase == tx.current_phase and t.is_required and t.status not in RESOLVED_TASK_STATUSES
    ]


def advance_phase(db: Session, transaction_id: int, actor: User) -> Transaction:
    tx = _get_transaction(db, transaction_id)
    _require_participant(tx, actor)
    _require_open(tx)

    outstanding = outstanding_required_tasks(tx)
    if outstanding:
        names = ", ".join(t.task_identifier for t in outstanding)
        logger.warning("Advance of transaction %s blocked by tasks: %s", tx.id, names)
        raise StateConflictError(f"Required {tx.current_phase} tasks are not finished: {names}")

    previous = tx.current_phase
    if previous == TransactionStatus.NEGOTIATIONS.value:
        tx.status = tx.current_phase = TransactionStatus.CLOSING.value
        _add_event(db, tx, "Negotiations finished; transaction moved to closing",
                   TimelineEventType.INFO, actor.id, data={"from": previous, "to": tx.current_phase})
        title, message = "Transaction moved to closing", f"Transaction #{tx.id} is now in the closing phase."
    else:
        if tx.final_amount is None:
            raise StateConflictError("A final amount must be set before the transaction can complete")
        tx.status = tx.current_phase = TransactionStatus.COMPLETED.value
        tx.completed_at = utcnow()
        listing_service.mark_sold(db, tx.note_listing_id)
        closed = _close_competing_inquiries(db, tx)
        _add_event(db, tx, f"Transaction completed for ${tx.final_amount:,.2f}",
                   TimelineEventType.SUCCESS, actor.id,
                   data={"from": previous, "to": tx.current_phase, "closed_inquiries": closed})
        title, message = "Transaction completed", f"Transaction #{tx.id} has closed. Congratulations!"

    recipients = _notify_counterparty(db, tx, actor, title, message)
    db.commit()
    db.refresh(tx)
    logger.info("Transaction %s advanced %s → %s by user %s", tx.id, previous, tx.current_phase, actor.id)
    _email(recipients, title, message, tx)
    return tx


def cancel_transaction(db: Session, transaction_id: int, actor: User, reason: str) -> Transaction:
    if not reason or not reason.strip():
        raise ValidationError("A cancellation reason is required", field="reason")
    tx = _get_transaction(db, transaction_id)
    _require_participant(tx, actor)
    _require_open(tx)

    tx.status = TransactionStatus.CANCELLED.value
    tx.cancelled_at = utcnow()
    tx.cancellation_reason = reason.strip()
    _add_event(db, tx, f"Transaction cancelled: {tx.cancellation_reason}", TimelineEventType.WARNING,
               actor.id, data={"phase": tx.current_phase})

    title = "Transaction cancelled"
    message = f"Transaction #{tx.id} was cancelled. Reason: {tx.cancellation_reason}"
    recipients = _notify_counterparty(db, tx, actor, title, message)
    db.commit()
    db.refresh(tx)
    logger.info("Transaction %s cancelled in %s by user %s", tx.id, tx.current_phase, actor.id)
    _email(recipients, title, message, tx)
    return tx


def update_transaction(db: Session, transaction_id: int, actor: User, data: TransactionUpdate) -> Transaction:
    tx = _get_transaction(db, transaction_id)
    _require_participant(tx, actor)
    _require_open(tx)

    changed = []
    for key, value in data.model_dump(exclude_unset=True).items():
        if key in EDITABLE_FIELDS and getattr(tx, key) != value:
            setattr(tx, key, value)
            changed.append(key)

    if changed:
        _add_event(db, tx, f"Transaction details updated: {', '.join(changed)}", TimelineEventType.INFO,
                   actor.id, data={"fields": changed})
        db.commit()
        db.refresh(tx)
    return tx


# ═══════════════════════════════════════════════
#  TASKS
# ═══════════════════════════════════════════════

def complete_task(db: Session, task_id: int, user: User) -> tuple[TransactionTask, bool]:
    """
    Mark a task complete and log it. Returns (task, changed).

    Completing an already-complete task is a no-op (changed=False) and
    never writes a second timeline event.
    """
    task = _get_task(db, task_id)
    tx = task.transaction
    _require_open(tx)
    _check_task_actor(tx, task, user)

    if task.status == TaskStatus.COMPLETE.value:
        return task, False
    if task.status != TaskStatus.PENDING.value:
        raise StateConflictError(f"Task is {task.status} and cannot be completed")

    now = utcnow()
    updated = db.query(TransactionTask).filter(
        TransactionTask.id == task.id,
        TransactionTask.status == TaskStatus.PENDING.value,
    ).update({
        TransactionTask.status: TaskStatus.COMPLETE.value,
        TransactionTask.completed_at: now,
        TransactionTask.completed_by_user_id: user.id,
    }, synchronize_session=False)

    if updated == 0:
        # Lost the race: someone else resolved the task since we read it.
        db.rollback()
        db.refresh(task)
        if task.status == TaskStatus.COMPLETE.value:
            return task, False
        raise StateConflictError(f"Task is {task.status} and cannot be completed")

    _add_event(db, tx, f"Task completed: {task.description}", TimelineEventType.SUCCESS, user.id,
               data={"task_identifier": task.task_identifier}, task_id=task.id)
    db.commit()
    db.refresh(task)
    logger.info("Task %s (%s) completed on transaction %s by user %s",
                task.id, task.task_identifier, tx.id, user.id)
    return task, True


def skip_task(db: Session, task_id: int, user: User) -> TransactionTask:
    """
    Waive a task. The assigned party may skip its own optional tasks;
    platform staff may waive any pending or failed task.
    """
    task = _get_task(db, task_id)
    tx = task.transaction
    _require_open(tx)

    staff = has_capability(user, Capability.MANAGE_PLATFORM_TASKS)
    if not staff:
        if task.is_required:
            raise PermissionDeniedError("Required tasks can only be waived by NoteTrade staff")
        _check_task_actor(tx, task, user)
    allowed_from = (TaskStatus.PENDING.value, TaskStatus.FAILED.value) if staff else (TaskStatus.PENDING.value,)

    updated = db.query(TransactionTask).filter(
        TransactionTask.id == task.id,
        TransactionTask.status.in_(allowed_from),
    ).update({TransactionTask.status: TaskStatus.SKIPPED.value}, synchronize_session=False)
    if updated == 0:
        db.rollback()
        db.refresh(task)
        raise StateConflictError(f"Task is {task.status} and cannot be skipped")

    _add_event(db, tx, f"Task skipped: {task.description}", TimelineEventType.WARNING, user.id,
               data={"task_identifier": task.task_identifier}, task_id=task.id)
    db.commit()
    db.refresh(task)
    return task


def fail_task(db: Session, task_id: int, user: User, reason: str = None) -> TransactionTask:
    require_capability(user, Capability.MANAGE_PLATFORM_TASKS)
    task = _get_task(db, task_id)
    tx = task.transaction
    _require_open(tx)

    updated = db.query(TransactionTask).filter(
        TransactionTask.id == task.id,
        TransactionTask.status == TaskStatus.PENDING.value,
    ).update({TransactionTask.status: TaskStatus.FAILED.value}, synchronize_session=False)
    if updated == 0:
        db.rollback()
        db.refresh(task)
        raise StateConflictError(f"Task is {task.status} and cannot be failed")

    description = f"Task failed: {task.description}"
    if reason:
        description += f" ({reason})"
    _add_event(db, tx, description, TimelineEventType.ERROR, user.id,
               data={"task_identifier": task.task_identifier, "reason": reason}, task_id=task.id)
    db.commit()
    db.refresh(task)
    return task


def add_task(db: Session, transaction_id: int, user: User, data: TaskCreate) -> TransactionTask:
    tx = _get_transaction(db, transaction_id)
    _require_participant(tx, user)
    _require_open(tx)
    if PHASE_ORDER[data.phase] < PHASE_ORDER[tx.current_phase]:
        raise StateConflictError(f"Cannot add a {data.phase} task once the transaction is in {tx.current_phase}")

    last_order = db.query(func.max(TransactionTask.display_order)) \
        .filter(TransactionTask.transaction_id == tx.id).scalar() or 0
    task = TransactionTask(
        transaction_id=tx.id,
        task_identifier=data.task_identifier,
        description=data.description,
        phase=data.phase,
        assigned_to=data.assigned_to,
        is_required=data.is_required,
        display_order=last_order + 1,
    )
    db.add(task)
    db.flush()
    _add_event(db, tx, f"Task added: {task.description}", TimelineEventType.INFO, user.id,
               data={"task_identifier": task.task_identifier, "phase": task.phase}, task_id=task.id)
    db.commit()
    db.refresh(task)
    return task


# ═══════════════════════════════════════════════
#  FILES
# ═══════════════════════════════════════════════

def _visible_files_query(db: Session, transaction_id: int, viewer: User):
    query = db.query(TransactionFile).filter(TransactionFile.transaction_id == transaction_id)
    if not has_capability(viewer, Capability.VIEW_ALL_RECORDS):
        query = query.filter(or_(
            TransactionFile.uploaded_by_user_id == viewer.id,
            TransactionFile.is_public == True,  # noqa: E712
        ))
    return query.order_by(TransactionFile.id)


def list_files(db: Session, transaction_id: int, viewer: User) -> list:
    get_transaction(db, transaction_id, viewer)
    return _visible_files_query(db, transaction_id, viewer).all()


def add_file(db: Session, transaction_id: int, user: User, data: FileCreate) -> TransactionFile:
    tx = _get_transaction(db, transaction_id)
    _require_participant(tx, user)
    if tx.status == TransactionStatus.CANCELLED.value:
        raise StateConflictError("Files cannot be added to a cancelled transaction")
    if data.task_id is not None:
        task = db.query(TransactionTask).filter(TransactionTask.id == data.task_id).first()
        if not task or task.transaction_id != tx.id:
            raise ValidationError("task_id does not belong to this transaction", field="task_id")

    f = TransactionFile(transaction_id=tx.id, uploaded_by_user_id=user.id, **data.model_dump())
    db.add(f)
    db.flush()
    _add_event(db, tx, f"File uploaded: {f.file_name}", TimelineEventType.INFO, user.id,
               data={"category": f.category, "is_public": f.is_public}, task_id=f.task_id, file_id=f.id)
    db.commit()
    db.refresh(f)
    return f


def release_file(db: Session, file_id: int, user: User) -> TransactionFile:
    f = _get_file(db, file_id)
    if f.uploaded_by_user_id != user.id and not is_admin(user):
        raise PermissionDeniedError("Only the uploader can release this file")
    if not f.is_public:
        f.is_public = True
        _add_event(db, f.transaction, f"File released to counterparty: {f.file_name}",
                   TimelineEventType.INFO, user.id, file_id=f.id)
        db.commit()
        db.refresh(f)
    return f


def verify_file(db: Session, file_id: int, admin: User) -> TransactionFile:
    require_capability(admin, Capability.VERIFY_DOCUMENTS)
    f = _get_file(db, file_id)
    if not f.is_verified:
        f.is_verified = True
        f.verified_by_user_id = admin.id
        f.verified_at = utcnow()
        _add_event(db, f.transaction, f"File verified: {f.file_name}", TimelineEventType.SUCCESS,
                   admin.id, file_id=f.id)
        db.commit()
        db.refresh(f)
    return f


def _sign(file_id: int, expires: int) -> str:
    return hmac.new(SECRET_KEY.encode("utf-8"), f"{file_id}:{expires}".encode("utf-8"),
                    hashlib.sha256).hexdigest()


def signed_file_url(db: Session, file_id: int, viewer: User) -> dict:
    f = _get_file(db, file_id)
    get_transaction(db, f.transaction_id, viewer)
    visible = _visible_files_query(db, f.transaction_id, viewer).filter(TransactionFile.id == f.id).first()
    if visible is None:
        raise NotFoundError("File not found")

    expires_at = datetime.now(timezone.utc) + timedelta(seconds=SIGNED_URL_TTL_SECONDS)
    expires = int(expires_at.timestamp())
    separator = "&" if "?" in f.file_url else "?"
    query = urlencode({"expires": expires, "signature": _sign(f.id, expires)})
    return {"url": f"{f.file_url}{separator}{query}", "expires_at": expires_at.isoformat()}


# ═══════════════════════════════════════════════
#  TIMELINE
# ═══════════════════════════════════════════════

def add_timeline_event(db: Session, transaction_id: int, user: User,
                       data: TimelineEventCreate) -> TransactionTimelineEvent:
    tx = _get_transaction(db, transaction_id)
    _require_participant(tx, user)
    if data.related_task_id is not None:
        task = db.query(TransactionTask).filter(TransactionTask.id == data.related_task_id).first()
        if not task or task.transaction_id != tx.id:
            raise ValidationError("related_task_id does not belong to this transaction", field="related_task_id")
    if data.related_file_id is not None:
        f = db.query(TransactionFile).filter(TransactionFile.id == data.related_file_id).first()
        if not f or f.transaction_id != tx.id:
            raise ValidationError("related_file_id does not belong to this transaction", field="related_file_id")

    event = _add_event(db, tx, data.event_description, TimelineEventType(data.event_type), user.id,
                       data=data.event_data, task_id=data.related_task_id, file_id=data.related_file_id)
    db.commit()
    db.refresh(event)
    return event


# ═══════════════════════════════════════════════
#  STATS
# ═══════════════════════════════════════════════

def transaction_stats(db: Session) -> dict:
    rows = db.query(Transaction.status, func.count(Transaction.id)).group_by(Transaction.status).all()
    by_status = {status.value: 0 for status in TransactionStatus}
    by_status.update({status: count for status, count in rows})
    completed_volume = db.query(func.coalesce(func.sum(Transaction.final_amount), 0.0)) \
        .filter(Transaction.status == TransactionStatus.COMPLETED.value).scalar()
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "completed_volume": float(completed_volume or 0),
    }
