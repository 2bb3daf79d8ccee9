"""
Listing API Tests

Seller listing management, visibility rules and marketplace search.
"""
from models import NoteListing


class TestCreateListing:

    def test_create_then_fetch_preserves_every_field(self, client, seller, auth_headers, listing_payload):
        payload = listing_payload(
            title="Sub-performing 2nd in Phoenix",
            note_type="second_mortgage",
            performance_status="sub_performing",
            property_state="az",
            property_zip_code="85004-1234",
            amortization_type="balloon",
            description="Borrower resumed payments in March",
        )
        r = client.post("/api/listings", json=payload, headers=auth_headers(seller))
        assert r.status_code == 201
        created = r.json()["data"]
        assert created["status"] == "pending"
        assert created["verification_status"] == "pending"

        r = client.get(f"/api/listings/{created['id']}", headers=auth_headers(seller))
        assert r.status_code == 200
        fetched = r.json()["data"]
        for key, value in payload.items():
            expected = value.upper() if key == "property_state" else value
            assert fetched[key] == expected, key
        assert fetched["seller_id"] == seller.id

    def test_investor_cannot_list_notes(self, client, buyer, auth_headers, listing_payload):
        r = client.post("/api/listings", json=listing_payload(), headers=auth_headers(buyer))
        assert r.status_code == 403

    def test_invalid_zip_is_a_field_error(self, client, seller, auth_headers, listing_payload):
        r = client.post("/api/listings", json=listing_payload(property_zip_code="ABCDE"), headers=auth_headers(seller))
        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "property_zip_code"

    def test_maturity_must_follow_origination(self, client, seller, auth_headers, listing_payload):
        payload = listing_payload(loan_origination_date="2030-01-01", loan_maturity_date="2020-01-01")
        r = client.post("/api/listings", json=payload, headers=auth_headers(seller))
        assert r.status_code == 400


class TestVisibility:

    def test_pending_listing_hidden_from_public(self, client, seller, auth_headers, make_listing):
        listing = make_listing(seller, status="pending", verification_status="pending")
        assert client.get(f"/api/listings/{listing.id}").status_code == 404
        assert client.get(f"/api/listings/{listing.id}", headers=auth_headers(seller)).status_code == 200

    def test_anonymous_view_is_counted_but_owner_view_is_not(self, client, db, seller, auth_headers, make_listing):
        listing = make_listing(seller)
        client.get(f"/api/listings/{listing.id}", headers=auth_headers(seller))
        r = client.get(f"/api/listings/{listing.id}")
        assert r.json()["data"]["view_count"] == 1
        db.refresh(listing)
        assert listing.view_count == 1

    def test_review_fields_only_for_owner(self, client, seller, auth_headers, make_listing):
        listing = make_listing(seller, admin_notes="check title chain")
        public = client.get(f"/api/listings/{listing.id}").json()["data"]
        assert "admin_notes" not in public
        owner = client.get(f"/api/listings/{listing.id}", headers=auth_headers(seller)).json()["data"]
        assert owner["admin_notes"] == "check title chain"


class TestSearch:

    def test_filters_by_state_and_price(self, client, seller, make_listing):
        tx_cheap = make_listing(seller, property_state="TX", asking_price=90000.0)
        make_listing(seller, property_state="TX", asking_price=250000.0)
        make_listing(seller, property_state="FL", asking_price=80000.0)

        r = client.get("/api/listings", params={"property_states": ["TX"], "max_asking_price": 100000})
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["total"] == 1
        assert [item["id"] for item in data["items"]] == [tx_cheap.id]

    def test_only_active_public_listings_are_searchable(self, client, seller, make_listing):
        live = make_listing(seller)
        make_listing(seller, status="draft")
        make_listing(seller, is_public=False)
        data = client.get("/api/listings").json()["data"]
        assert [item["id"] for item in data["items"]] == [live.id]

    def test_featured_listings_sort_first(self, client, seller, make_listing):
        make_listing(seller, asking_price=100000.0)
        featured = make_listing(seller, asking_price=50000.0, featured=True)
        items = client.get("/api/listings", params={"sort_by": "asking_price", "sort_order": "desc"}).json()["data"]["items"]
        assert items[0]["id"] == featured.id

    def test_keyword_matches_title(self, client, seller, make_listing):
        match = make_listing(seller, title="Duplex note in Memphis")
        make_listing(seller, title="Condo note in Miami")
        items = client.get("/api/listings", params={"keyword": "duplex"}).json()["data"]["items"]
        assert [item["id"] for item in items] == [match.id]

    def test_inverted_range_is_rejected(self, client):
        r = client.get("/api/listings", params={"min_asking_price": 500, "max_asking_price": 100})
        assert r.status_code == 400


class TestUpdateAndRetire:

    def test_seller_cannot_feature_own_listing(self, client, seller, auth_headers, make_listing):
        listing = make_listing(seller)
        r = client.patch(f"/api/listings/{listing.id}", json={"featured": True}, headers=auth_headers(seller))
        assert r.status_code == 403

    def test_other_seller_cannot_edit(self, client, make_user, seller, auth_headers, make_listing):
        listing = make_listing(seller)
        intruder = make_user("seller")
        r = client.patch(f"/api/listings/{listing.id}", json={"asking_price": 1.0}, headers=auth_headers(intruder))
        assert r.status_code == 403

    def test_resubmitting_resets_review(self, client, seller, auth_headers, make_listing):
        listing = make_listing(seller, status="draft", verification_status="rejected", rejection_reason="blurry")
        r = client.patch(f"/api/listings/{listing.id}", json={"status": "pending"}, headers=auth_headers(seller))
        data = r.json()["data"]
        assert data["status"] == "pending"
        assert data["verification_status"] == "pending"
        assert data["rejection_reason"] is None

    def test_sold_listing_status_is_frozen(self, client, seller, auth_headers, make_listing):
        listing = make_listing(seller, status="sold")
        r = client.patch(f"/api/listings/{listing.id}", json={"status": "draft"}, headers=auth_headers(seller))
        assert r.status_code == 409

    def test_null_for_required_field_is_a_field_error(self, client, db, seller, auth_headers, make_listing):
        listing = make_listing(seller, title="Performing 1st in Tulsa")
        r = client.patch(f"/api/listings/{listing.id}", json={"title": None}, headers=auth_headers(seller))
        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "title"

        for body in ({"asking_price": None}, {"status": None}, {"is_public": None}):
            assert client.patch(f"/api/listings/{listing.id}", json=body,
                                headers=auth_headers(seller)).status_code == 400
        db.refresh(listing)
        assert listing.title == "Performing 1st in Tulsa"
        assert listing.status == "active"

    def test_null_clears_optional_field(self, client, seller, auth_headers, make_listing):
        listing = make_listing(seller, special_notes="Balloon in 2031")
        r = client.patch(f"/api/listings/{listing.id}", json={"special_notes": None}, headers=auth_headers(seller))
        assert r.status_code == 200
        assert r.json()["data"]["special_notes"] is None

    def test_retire_hides_listing(self, client, db, seller, auth_headers, make_listing):
        listing = make_listing(seller)
        r = client.delete(f"/api/listings/{listing.id}", headers=auth_headers(seller))
        assert r.status_code == 200
        db.refresh(listing)
        assert listing.status == "expired"
        assert client.get("/api/listings").json()["data"]["total"] == 0

    def test_retire_missing_listing(self, client, seller, auth_headers):
        r = client.delete("/api/listings/9999", headers=auth_headers(seller))
        assert r.status_code == 404
        assert r.json()["success"] is False

    def test_mine_lists_drafts_too(self, client, db, seller, auth_headers, make_listing):
        make_listing(seller)
        make_listing(seller, status="draft")
        data = client.get("/api/listings/mine", headers=auth_headers(seller)).json()["data"]
        assert len(data) == 2
        assert db.query(NoteListing).count() == 2
