"""
Document API Tests

Due-diligence documents on listings: ownership, verification and the
public+verified visibility gate.
"""
import pytest

from models import Document


@pytest.fixture
def doc_body():
    def _body(listing_id, **overrides):
        body = {
            "note_listing_id": listing_id,
            "name": "Recorded mortgage",
            "file_url": "https://files.example.com/mortgage.pdf",
            "file_type": "application/pdf",
            "file_size": 48213,
            "document_type": "mortgage",
        }
        body.update(overrides)
        return body

    return _body


class TestDocuments:

    def test_seller_attaches_document(self, client, seller, auth_headers, make_listing, doc_body):
        listing = make_listing(seller)
        r = client.post("/api/documents", json=doc_body(listing.id), headers=auth_headers(seller))
        assert r.status_code == 201
        data = r.json()["data"]
        assert data["verification_status"] == "pending"
        assert data["uploaded_by_user_id"] == seller.id

    def test_unknown_listing_is_a_validation_error(self, client, seller, auth_headers, doc_body):
        r = client.post("/api/documents", json=doc_body(4242), headers=auth_headers(seller))
        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "note_listing_id"

    def test_buyer_cannot_attach(self, client, seller, buyer, auth_headers, make_listing, doc_body):
        listing = make_listing(seller)
        r = client.post("/api/documents", json=doc_body(listing.id), headers=auth_headers(buyer))
        assert r.status_code == 403

    def test_unknown_document_type_rejected(self, client, seller, auth_headers, make_listing, doc_body):
        listing = make_listing(seller)
        r = client.post("/api/documents", json=doc_body(listing.id, document_type="selfie"),
                        headers=auth_headers(seller))
        assert r.status_code == 400

    def test_delete_missing_document_is_not_found(self, client, seller, auth_headers):
        r = client.delete("/api/documents/9999", headers=auth_headers(seller))
        assert r.status_code == 404
        assert r.json() == {"success": False, "message": "Document not found"}

    def test_delete_own_document(self, client, db, seller, auth_headers, make_listing, doc_body):
        listing = make_listing(seller)
        doc_id = client.post("/api/documents", json=doc_body(listing.id), headers=auth_headers(seller)).json()["data"]["id"]
        assert client.delete(f"/api/documents/{doc_id}", headers=auth_headers(seller)).status_code == 200
        assert db.query(Document).filter(Document.id == doc_id).first() is None


class TestDocumentVisibility:

    def test_public_documents_appear_only_once_verified(self, client, seller, buyer, admin, auth_headers,
                                                         make_listing, doc_body):
        listing = make_listing(seller)
        public = client.post("/api/documents", json=doc_body(listing.id, is_public=True),
                             headers=auth_headers(seller)).json()["data"]
        client.post("/api/documents", json=doc_body(listing.id, name="Private appraisal", is_public=False),
                    headers=auth_headers(seller))

        seen = client.get(f"/api/listings/{listing.id}/documents", headers=auth_headers(buyer)).json()["data"]
        assert seen == []

        r = client.post(f"/api/documents/{public['id']}/verify", json={"verification_status": "verified"},
                        headers=auth_headers(admin))
        assert r.status_code == 200

        seen = client.get(f"/api/listings/{listing.id}/documents", headers=auth_headers(buyer)).json()["data"]
        assert [d["id"] for d in seen] == [public["id"]]

        anonymous = client.get(f"/api/listings/{listing.id}/documents").json()["data"]
        assert [d["id"] for d in anonymous] == [public["id"]]

    def test_owner_sees_everything(self, client, seller, auth_headers, make_listing, doc_body):
        listing = make_listing(seller)
        client.post("/api/documents", json=doc_body(listing.id), headers=auth_headers(seller))
        client.post("/api/documents", json=doc_body(listing.id, is_public=True), headers=auth_headers(seller))
        seen = client.get(f"/api/listings/{listing.id}/documents", headers=auth_headers(seller)).json()["data"]
        assert len(seen) == 2

    def test_only_admins_verify(self, client, seller, auth_headers, make_listing, doc_body):
        listing = make_listing(seller)
        doc_id = client.post("/api/documents", json=doc_body(listing.id), headers=auth_headers(seller)).json()["data"]["id"]
        r = client.post(f"/api/documents/{doc_id}/verify", json={"verification_status": "verified"},
                        headers=auth_headers(seller))
        assert r.status_code == 403

    def test_null_name_is_rejected(self, client, seller, auth_headers, make_listing, doc_body):
        listing = make_listing(seller)
        doc_id = client.post("/api/documents", json=doc_body(listing.id), headers=auth_headers(seller)).json()["data"]["id"]
        r = client.patch(f"/api/documents/{doc_id}", json={"name": None}, headers=auth_headers(seller))
        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "name"

        r = client.patch(f"/api/documents/{doc_id}", json={"description": None}, headers=auth_headers(seller))
        assert r.status_code == 200
        assert r.json()["data"]["name"] == "Recorded mortgage"
