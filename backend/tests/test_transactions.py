"""
Transaction Workflow Tests

Phase advancement, checklist tasks, cancellation, files and the
append-only timeline.
"""
import pytest

from errors import StateConflictError, ValidationError
from models import Inquiry, NoteListing, Transaction, TransactionTask, TransactionTimelineEvent
from schemas import InquiryRespond
from services import inquiry_service, transaction_service as txs


def task_named(db, tx_id, identifier):
    return db.query(TransactionTask).filter(
        TransactionTask.transaction_id == tx_id,
        TransactionTask.task_identifier == identifier,
    ).one()


def finish_required(db, tx, actor):
    """Complete every outstanding required task in the current phase."""
    db.expire_all()
    for task in txs.outstanding_required_tasks(tx):
        txs.complete_task(db, task.id, actor)


class TestPhases:

    def test_advance_blocked_by_required_tasks(self, client, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        r = client.post(f"/api/transactions/{tx.id}/advance", headers=auth_headers(buyer))
        assert r.status_code == 409
        assert "review_collateral_file" in r.json()["message"]

    def test_full_close_marks_listing_sold(self, client, db, buyer, seller, admin, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller, offer_amount=148000.0)

        finish_required(db, tx, admin)
        r = client.post(f"/api/transactions/{tx.id}/advance", headers=auth_headers(seller))
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "closing"

        db.expire_all()
        finish_required(db, tx, admin)
        r = client.post(f"/api/transactions/{tx.id}/advance", headers=auth_headers(buyer))
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["status"] == "completed"
        assert data["completed_at"] is not None

        db.expire_all()
        for listing in db.query(NoteListing).filter(NoteListing.status == "sold").all():
            assert db.query(Transaction).filter(
                Transaction.note_listing_id == listing.id, Transaction.status == "completed"
            ).count() == 1
        assert db.get(NoteListing, tx.note_listing_id).status == "sold"

        events = [e.event_type for e in db.get(Transaction, tx.id).timeline_events]
        assert events[-1] == "success"

        r = client.post(f"/api/transactions/{tx.id}/advance", headers=auth_headers(buyer))
        assert r.status_code == 409

    def test_optional_tasks_do_not_block(self, db, buyer, seller, admin, make_transaction):
        tx = make_transaction(buyer, seller)
        finish_required(db, tx, admin)
        optional = task_named(db, tx.id, "agree_closing_schedule")
        assert optional.status == "pending"
        assert txs.advance_phase(db, tx.id, buyer).status == "closing"

    def test_buyer_and_seller_must_differ(self, db, admin, make_listing):
        listing = make_listing(admin)
        inquiry = Inquiry(note_listing_id=listing.id, buyer_id=admin.id, message="self deal",
                          status="accepted", offer_amount=1000.0)
        db.add(inquiry)
        db.commit()
        with pytest.raises(ValidationError):
            txs.create_transaction_for_inquiry(db, inquiry.id, admin)
        assert db.query(Transaction).count() == 0


class TestTasks:

    def test_complete_task_logs_one_success_event(self, client, db, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        task = task_named(db, tx.id, "review_collateral_file")

        r = client.post(f"/api/transactions/tasks/{task.id}/complete", headers=auth_headers(buyer))
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "complete"
        assert r.json()["data"]["completed_by_user_id"] == buyer.id

        r = client.post(f"/api/transactions/tasks/{task.id}/complete", headers=auth_headers(buyer))
        assert r.status_code == 200
        assert r.json()["message"] == "Task was already complete"

        events = db.query(TransactionTimelineEvent).filter(
            TransactionTimelineEvent.related_task_id == task.id,
            TransactionTimelineEvent.event_type == "success",
        ).all()
        assert len(events) == 1

    def test_stale_session_cannot_complete_twice(self, session_factory, db, buyer, seller, make_transaction):
        tx = make_transaction(buyer, seller)
        task_id = task_named(db, tx.id, "review_collateral_file").id

        first, second = session_factory(), session_factory()
        try:
            stale = second.get(TransactionTask, task_id)
            assert stale.status == "pending"

            _, changed = txs.complete_task(first, task_id, buyer)
            assert changed is True

            task, changed = txs.complete_task(second, task_id, buyer)
            assert changed is False
            assert task.status == "complete"
        finally:
            first.close()
            second.close()

        count = db.query(TransactionTimelineEvent).filter(
            TransactionTimelineEvent.related_task_id == task_id,
            TransactionTimelineEvent.event_type == "success",
        ).count()
        assert count == 1

    def test_only_assigned_party_completes(self, client, db, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        buyer_task = task_named(db, tx.id, "review_collateral_file")
        platform_task = task_named(db, tx.id, "agree_closing_schedule")
        assert client.post(f"/api/transactions/tasks/{buyer_task.id}/complete",
                           headers=auth_headers(seller)).status_code == 403
        assert client.post(f"/api/transactions/tasks/{platform_task.id}/complete",
                           headers=auth_headers(buyer)).status_code == 403

    def test_required_task_skip_needs_staff(self, client, db, buyer, seller, admin, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        task = task_named(db, tx.id, "review_collateral_file")
        assert client.post(f"/api/transactions/tasks/{task.id}/skip", headers=auth_headers(buyer)).status_code == 403
        r = client.post(f"/api/transactions/tasks/{task.id}/skip", headers=auth_headers(admin))
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "skipped"

    def test_failed_task_can_be_waived_by_staff(self, client, db, buyer, seller, admin, auth_headers,
                                                make_transaction):
        tx = make_transaction(buyer, seller)
        task = task_named(db, tx.id, "confirm_purchase_price")
        r = client.post(f"/api/transactions/tasks/{task.id}/fail", json={"reason": "price disputed"},
                        headers=auth_headers(admin))
        assert r.json()["data"]["status"] == "failed"
        assert client.post(f"/api/transactions/tasks/{task.id}/complete",
                           headers=auth_headers(seller)).status_code == 409
        r = client.post(f"/api/transactions/tasks/{task.id}/skip", headers=auth_headers(admin))
        assert r.json()["data"]["status"] == "skipped"

    def test_add_task_to_current_phase(self, client, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        r = client.post(f"/api/transactions/{tx.id}/tasks", json={
            "task_identifier": "order_bpo",
            "description": "Order a broker price opinion",
            "phase": "negotiations",
            "assigned_to": "buyer",
            "is_required": False,
        }, headers=auth_headers(buyer))
        assert r.status_code == 201
        tasks = client.get(f"/api/transactions/{tx.id}/tasks", headers=auth_headers(buyer)).json()["data"]
        assert "order_bpo" in [t["task_identifier"] for t in tasks]


class TestCancellation:

    def test_cancel_freezes_phase_and_blocks_changes(self, client, db, buyer, seller, auth_headers,
                                                     make_transaction):
        tx = make_transaction(buyer, seller)
        task = task_named(db, tx.id, "review_collateral_file")

        r = client.post(f"/api/transactions/{tx.id}/cancel", json={"reason": "Title defect found"},
                        headers=auth_headers(buyer))
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["status"] == "cancelled"
        assert data["current_phase"] == "negotiations"
        assert data["cancellation_reason"] == "Title defect found"

        assert client.post(f"/api/transactions/{tx.id}/advance", headers=auth_headers(buyer)).status_code == 409
        assert client.post(f"/api/transactions/tasks/{task.id}/complete",
                           headers=auth_headers(buyer)).status_code == 409
        assert client.post(f"/api/transactions/{tx.id}", json={"notes": "late edit"},
                           headers=auth_headers(seller)).status_code == 409
        assert client.post(f"/api/transactions/{tx.id}/cancel", json={"reason": "again"},
                           headers=auth_headers(seller)).status_code == 409

    def test_cancelled_deal_frees_listing_for_a_new_one(self, db, make_user, buyer, seller, make_transaction,
                                                        make_inquiry):
        tx = make_transaction(buyer, seller)
        txs.cancel_transaction(db, tx.id, seller, "Buyer financing fell through")
        listing = db.get(NoteListing, tx.note_listing_id)
        assert listing.status == "active"

        inquiry = make_inquiry(make_user("investor"), listing, offer_amount=140000.0)
        _, second = inquiry_service.respond_to_inquiry(db, inquiry.id, seller, InquiryRespond(decision="accept"))
        assert second.status == "negotiations"


class TestListingAvailability:

    def test_countered_offer_cannot_buy_a_sold_note(self, client, db, make_user, buyer, seller, admin,
                                                    auth_headers, make_listing, make_inquiry):
        listing = make_listing(seller)
        first = make_inquiry(buyer, listing, offer_amount=150000.0)
        _, tx = inquiry_service.respond_to_inquiry(db, first.id, seller, InquiryRespond(decision="accept"))

        runner_up = make_user("investor")
        second = make_inquiry(runner_up, listing, offer_amount=140000.0)
        r = client.post(f"/api/inquiries/{second.id}/respond", json={"decision": "counter", "counter_amount": 145000},
                        headers=auth_headers(seller))
        assert r.json()["data"]["inquiry"]["status"] == "countered"

        finish_required(db, tx, admin)
        client.post(f"/api/transactions/{tx.id}/advance", headers=auth_headers(seller))
        finish_required(db, tx, admin)
        r = client.post(f"/api/transactions/{tx.id}/advance", headers=auth_headers(seller))
        assert r.json()["data"]["status"] == "completed"

        r = client.post(f"/api/inquiries/{second.id}/respond", json={"decision": "accept"},
                        headers=auth_headers(runner_up))
        assert r.status_code == 409

        db.expire_all()
        assert db.get(Inquiry, second.id).status == "rejected"
        assert db.get(NoteListing, listing.id).status == "sold"
        assert db.query(Transaction).filter(Transaction.note_listing_id == listing.id).count() == 1

    def test_retired_listing_cannot_be_sold(self, client, db, buyer, seller, auth_headers, make_listing,
                                            make_inquiry):
        listing = make_listing(seller)
        inquiry = make_inquiry(buyer, listing, offer_amount=90000.0)
        client.post(f"/api/inquiries/{inquiry.id}/respond", json={"decision": "counter", "counter_amount": 95000},
                    headers=auth_headers(seller))
        assert client.delete(f"/api/listings/{listing.id}", headers=auth_headers(seller)).status_code == 200

        r = client.post(f"/api/inquiries/{inquiry.id}/respond", json={"decision": "accept"},
                        headers=auth_headers(buyer))
        assert r.status_code == 409
        assert "expired" in r.json()["message"]

        db.expire_all()
        assert db.get(Inquiry, inquiry.id).status == "countered"
        assert db.query(Transaction).count() == 0

    def test_accepted_inquiry_on_sold_listing_opens_nothing(self, db, buyer, seller, make_listing):
        listing = make_listing(seller, status="sold")
        inquiry = Inquiry(note_listing_id=listing.id, buyer_id=buyer.id, message="late offer",
                          status="accepted", offer_amount=120000.0)
        db.add(inquiry)
        db.commit()
        with pytest.raises(StateConflictError):
            txs.create_transaction_for_inquiry(db, inquiry.id, seller)
        assert db.query(Transaction).count() == 0


class TestAccess:

    def test_non_participant_is_forbidden(self, client, make_user, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        stranger = make_user("investor")
        assert client.get(f"/api/transactions/{tx.id}", headers=auth_headers(stranger)).status_code == 403

    def test_admin_can_view_any(self, client, admin, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        r = client.get(f"/api/transactions/{tx.id}", headers=auth_headers(admin))
        assert r.status_code == 200
        assert len(r.json()["data"]["tasks"]) == len(txs.DEFAULT_CHECKLIST)

    def test_user_listing_by_role(self, client, buyer, seller, auth_headers, make_transaction):
        make_transaction(buyer, seller)
        as_buyer = client.get("/api/transactions/user", params={"role": "buyer"}, headers=auth_headers(buyer))
        as_seller = client.get("/api/transactions/user", params={"role": "seller"}, headers=auth_headers(buyer))
        assert len(as_buyer.json()["data"]) == 1
        assert as_seller.json()["data"] == []

    def test_update_details_records_event(self, client, db, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        r = client.post(f"/api/transactions/{tx.id}", json={"closing_date": "2026-12-15", "final_amount": 151000},
                        headers=auth_headers(seller))
        assert r.status_code == 200
        assert r.json()["data"]["closing_date"] == "2026-12-15"
        timeline = client.get(f"/api/transactions/{tx.id}/timeline", headers=auth_headers(buyer)).json()["data"]
        assert "final_amount" in timeline[-1]["event_data"]["fields"]

    def test_null_final_amount_keeps_agreed_price(self, client, db, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller, offer_amount=150000.0)
        r = client.post(f"/api/transactions/{tx.id}", json={"final_amount": None}, headers=auth_headers(seller))
        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "final_amount"
        db.expire_all()
        assert db.get(Transaction, tx.id).final_amount == 150000.0


class TestFiles:

    def test_private_file_hidden_until_released(self, client, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        r = client.post(f"/api/transactions/{tx.id}/files", json={
            "file_url": "https://files.example.com/wire.pdf",
            "file_name": "wire.pdf",
            "category": "wire",
        }, headers=auth_headers(seller))
        assert r.status_code == 201
        file_id = r.json()["data"]["id"]

        assert client.get(f"/api/transactions/{tx.id}/files", headers=auth_headers(buyer)).json()["data"] == []
        assert client.get(f"/api/transactions/files/{file_id}/url", headers=auth_headers(buyer)).status_code == 404

        client.post(f"/api/transactions/files/{file_id}/release", headers=auth_headers(seller))
        files = client.get(f"/api/transactions/{tx.id}/files", headers=auth_headers(buyer)).json()["data"]
        assert [f["id"] for f in files] == [file_id]

        signed = client.get(f"/api/transactions/files/{file_id}/url", headers=auth_headers(buyer)).json()["data"]
        assert signed["url"].startswith("https://files.example.com/wire.pdf?expires=")
        assert "signature=" in signed["url"]

    def test_file_task_must_belong_to_transaction(self, client, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        r = client.post(f"/api/transactions/{tx.id}/files", json={
            "file_url": "https://files.example.com/x.pdf", "file_name": "x.pdf", "task_id": 99999,
        }, headers=auth_headers(buyer))
        assert r.status_code == 400

    def test_only_admin_verifies_files(self, client, buyer, seller, admin, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        file_id = client.post(f"/api/transactions/{tx.id}/files", json={
            "file_url": "https://files.example.com/allonge.pdf", "file_name": "allonge.pdf",
            "category": "collateral", "is_public": True,
        }, headers=auth_headers(seller)).json()["data"]["id"]
        assert client.post(f"/api/transactions/files/{file_id}/verify",
                           headers=auth_headers(buyer)).status_code == 403
        r = client.post(f"/api/transactions/files/{file_id}/verify", headers=auth_headers(admin))
        assert r.json()["data"]["is_verified"] is True


class TestTimeline:

    def test_manual_event_and_pdf_summary(self, client, buyer, seller, auth_headers, make_transaction):
        tx = make_transaction(buyer, seller)
        r = client.post(f"/api/transactions/{tx.id}/timeline", json={
            "event_description": "Spoke with servicer about boarding",
            "event_type": "info",
        }, headers=auth_headers(buyer))
        assert r.status_code == 201

        r = client.get(f"/api/transactions/{tx.id}/summary.pdf", headers=auth_headers(seller))
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/pdf"
        assert r.content.startswith(b"%PDF")

    def test_events_are_immutable(self, db, buyer, seller, make_transaction):
        tx = make_transaction(buyer, seller)
        event = db.get(Transaction, tx.id).timeline_events[0]

        event.event_description = "rewritten history"
        with pytest.raises(RuntimeError):
            db.commit()
        db.rollback()

        db.delete(event)
        with pytest.raises(RuntimeError):
            db.commit()
        db.rollback()

    def test_advance_without_final_amount(self, db, buyer, seller, admin, make_transaction):
        tx = make_transaction(buyer, seller, offer_amount=None)
        assert tx.final_amount is None
        finish_required(db, tx, admin)
        txs.advance_phase(db, tx.id, buyer)
        finish_required(db, tx, admin)
        with pytest.raises(StateConflictError):
            txs.advance_phase(db, tx.id, buyer)
