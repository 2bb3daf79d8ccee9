"""
Transaction routes: closing workflow, checklist tasks, files and timeline.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from database import get_db
from models import User
from pdf_generator import generate_transaction_summary_pdf
from routes.auth import get_current_user
from schemas import (
    FileCreate, TaskCreate, TaskFail, TimelineEventCreate, TransactionCancel, TransactionCreate,
    TransactionUpdate, ok,
)
from services import transaction_service as txs

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


# ═══════════════════════════════════════════════
#  TRANSACTIONS
# ═══════════════════════════════════════════════

@router.post("", status_code=201)
def create_transaction(data: TransactionCreate, db: Session = Depends(get_db),
                       current_user: User = Depends(get_current_user)):
    """Open a transaction for an accepted inquiry that does not have one yet."""
    tx = txs.create_transaction_for_inquiry(db, data.inquiry_id, current_user)
    return ok(txs.transaction_detail(db, tx, current_user), "Transaction opened")


@router.get("/user")
def my_transactions(role: Optional[str] = Query(None, pattern="^(buyer|seller)$"),
                    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    transactions = txs.list_user_transactions(db, current_user, role)
    return ok([txs.transaction_to_dict(tx) for tx in transactions])


@router.get("/{transaction_id}")
def get_transaction(transaction_id: int, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    tx = txs.get_transaction(db, transaction_id, current_user)
    return ok(txs.transaction_detail(db, tx, current_user))


@router.post("/{transaction_id}")
def update_transaction(transaction_id: int, data: TransactionUpdate, db: Session = Depends(get_db),
                       current_user: User = Depends(get_current_user)):
    """Edit closing details (dates, vesting, servicer, final amount)."""
    tx = txs.update_transaction(db, transaction_id, current_user, data)
    return ok(txs.transaction_to_dict(tx), "Transaction updated")


@router.post("/{transaction_id}/advance")
def advance_phase(transaction_id: int, db: Session = Depends(get_db),
                  current_user: User = Depends(get_current_user)):
    tx = txs.advance_phase(db, transaction_id, current_user)
    return ok(txs.transaction_to_dict(tx), f"Transaction is now {tx.status}")


@router.post("/{transaction_id}/cancel")
def cancel_transaction(transaction_id: int, data: TransactionCancel, db: Session = Depends(get_db),
                       current_user: User = Depends(get_current_user)):
    tx = txs.cancel_transaction(db, transaction_id, current_user, data.reason)
    return ok(txs.transaction_to_dict(tx), "Transaction cancelled")


@router.get("/{transaction_id}/summary.pdf")
def transaction_summary_pdf(transaction_id: int, db: Session = Depends(get_db),
                            current_user: User = Depends(get_current_user)):
    """Closing summary of the deal: terms, checklist and timeline."""
    tx = txs.get_transaction(db, transaction_id, current_user)
    pdf_bytes = generate_transaction_summary_pdf(tx, txs.ordered_tasks(tx), tx.timeline_events)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f"inline; filename=transaction-{tx.id}-summary.pdf"},
    )


# ═══════════════════════════════════════════════
#  TASKS
# ═══════════════════════════════════════════════

@router.get("/{transaction_id}/tasks")
def list_tasks(transaction_id: int, db: Session = Depends(get_db),
               current_user: User = Depends(get_current_user)):
    tasks = txs.list_tasks(db, transaction_id, current_user)
    return ok([txs.task_to_dict(t) for t in tasks])


@router.post("/{transaction_id}/tasks", status_code=201)
def add_task(transaction_id: int, data: TaskCreate, db: Session = Depends(get_db),
             current_user: User = Depends(get_current_user)):
    task = txs.add_task(db, transaction_id, current_user, data)
    return ok(txs.task_to_dict(task), "Task added")


@router.post("/tasks/{task_id}/complete")
def complete_task(task_id: int, db: Session = Depends(get_db),
                  current_user: User = Depends(get_current_user)):
    task, changed = txs.complete_task(db, task_id, current_user)
    return ok(txs.task_to_dict(task), "Task completed" if changed else "Task was already complete")


@router.post("/tasks/{task_id}/skip")
def skip_task(task_id: int, db: Session = Depends(get_db),
              current_user: User = Depends(get_current_user)):
    task = txs.skip_task(db, task_id, current_user)
    return ok(txs.task_to_dict(task), "Task skipped")


@router.post("/tasks/{task_id}/fail")
def fail_task(task_id: int, data: TaskFail, db: Session = Depends(get_db),
              current_user: User = Depends(get_current_user)):
    task = txs.fail_task(db, task_id, current_user, data.reason)
    return ok(txs.task_to_dict(task), "Task marked failed")


# ═══════════════════════════════════════════════
#  FILES
# ═══════════════════════════════════════════════

@router.get("/{transaction_id}/files")
def list_files(transaction_id: int, db: Session = Depends(get_db),
               current_user: User = Depends(get_current_user)):
    files = txs.list_files(db, transaction_id, current_user)
    return ok([txs.file_to_dict(f) for f in files])


@router.post("/{transaction_id}/files", status_code=201)
def add_file(transaction_id: int, data: FileCreate, db: Session = Depends(get_db),
             current_user: User = Depends(get_current_user)):
    f = txs.add_file(db, transaction_id, current_user, data)
    return ok(txs.file_to_dict(f), "File uploaded")


@router.post("/files/{file_id}/release")
def release_file(file_id: int, db: Session = Depends(get_db),
                 current_user: User = Depends(get_current_user)):
    """Make a private file visible to the counterparty."""
    f = txs.release_file(db, file_id, current_user)
    return ok(txs.file_to_dict(f), "File released")


@router.post("/files/{file_id}/verify")
def verify_file(file_id: int, db: Session = Depends(get_db),
                current_user: User = Depends(get_current_user)):
    f = txs.verify_file(db, file_id, current_user)
    return ok(txs.file_to_dict(f), "File verified")


@router.get("/files/{file_id}/url")
def signed_file_url(file_id: int, db: Session = Depends(get_db),
                    current_user: User = Depends(get_current_user)):
    """Short-lived signed download link."""
    return ok(txs.signed_file_url(db, file_id, current_user))


# ═══════════════════════════════════════════════
#  TIMELINE
# ═══════════════════════════════════════════════

@router.get("/{transaction_id}/timeline")
def list_timeline(transaction_id: int, db: Session = Depends(get_db),
                  current_user: User = Depends(get_current_user)):
    events = txs.list_timeline(db, transaction_id, current_user)
    return ok([txs.event_to_dict(e) for e in events])


@router.post("/{transaction_id}/timeline", status_code=201)
def add_timeline_event(transaction_id: int, data: TimelineEventCreate, db: Session = Depends(get_db),
                       current_user: User = Depends(get_current_user)):
    event = txs.add_timeline_event(db, transaction_id, current_user, data)
    return ok(txs.event_to_dict(event), "Event recorded")
