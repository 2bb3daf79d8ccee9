"""
Favorites, saved searches, preferences and new-listing alerts.
"""
from models import Notification, SavedSearch


class TestFavorites:

    def test_adding_twice_counts_once(self, client, db, buyer, seller, auth_headers, make_listing):
        listing = make_listing(seller)
        first = client.post(f"/api/favorites/{listing.id}", json={"notes": "watch the LTV"},
                            headers=auth_headers(buyer))
        second = client.post(f"/api/favorites/{listing.id}", headers=auth_headers(buyer))
        assert first.json()["message"] == "Added to favorites"
        assert second.json()["message"] == "Already in favorites"
        assert first.json()["data"]["id"] == second.json()["data"]["id"]

        db.refresh(listing)
        assert listing.favorite_count == 1

    def test_removing_does_not_decrement(self, client, db, buyer, seller, auth_headers, make_listing):
        listing = make_listing(seller)
        client.post(f"/api/favorites/{listing.id}", headers=auth_headers(buyer))
        assert client.delete(f"/api/favorites/{listing.id}", headers=auth_headers(buyer)).status_code == 200
        assert client.delete(f"/api/favorites/{listing.id}", headers=auth_headers(buyer)).status_code == 404
        assert client.get(f"/api/favorites/{listing.id}", headers=auth_headers(buyer)).status_code == 404
        db.refresh(listing)
        assert listing.favorite_count == 1

    def test_cannot_favorite_hidden_listing(self, client, buyer, seller, auth_headers, make_listing):
        listing = make_listing(seller, status="pending", verification_status="pending")
        assert client.post(f"/api/favorites/{listing.id}", headers=auth_headers(buyer)).status_code == 404

    def test_list_favorites(self, client, buyer, seller, auth_headers, make_listing):
        listing = make_listing(seller)
        client.post(f"/api/favorites/{listing.id}", headers=auth_headers(buyer))
        data = client.get("/api/favorites", headers=auth_headers(buyer)).json()["data"]
        assert [f["listing"]["id"] for f in data] == [listing.id]


class TestSavedSearches:

    def test_crud_and_run(self, client, buyer, seller, auth_headers, make_listing):
        match = make_listing(seller, property_state="OH", asking_price=60000.0)
        make_listing(seller, property_state="OH", asking_price=400000.0)

        r = client.post("/api/saved-searches", json={
            "name": "Cheap Ohio paper",
            "criteria": {"property_states": ["oh"], "max_asking_price": 100000},
        }, headers=auth_headers(buyer))
        assert r.status_code == 201
        search = r.json()["data"]
        assert search["criteria"]["property_states"] == ["OH"]

        r = client.post(f"/api/saved-searches/{search['id']}/run", headers=auth_headers(buyer))
        data = r.json()["data"]
        assert data["total"] == 1
        assert data["items"][0]["id"] == match.id

        fetched = client.get(f"/api/saved-searches/{search['id']}", headers=auth_headers(buyer)).json()["data"]
        assert fetched["total_matches"] == 1
        assert fetched["last_run_at"] is not None

        r = client.patch(f"/api/saved-searches/{search['id']}", json={"email_alerts": False},
                         headers=auth_headers(buyer))
        assert r.json()["data"]["email_alerts"] is False
        assert r.json()["data"]["name"] == "Cheap Ohio paper"

        assert client.delete(f"/api/saved-searches/{search['id']}", headers=auth_headers(buyer)).status_code == 200
        assert client.get("/api/saved-searches", headers=auth_headers(buyer)).json()["data"] == []

    def test_other_users_search_is_not_found(self, client, make_user, buyer, auth_headers):
        search_id = client.post("/api/saved-searches", json={"name": "Mine"},
                                headers=auth_headers(buyer)).json()["data"]["id"]
        other = make_user("investor")
        assert client.get(f"/api/saved-searches/{search_id}", headers=auth_headers(other)).status_code == 404
        assert client.patch(f"/api/saved-searches/{search_id}", json={"name": "Stolen"},
                            headers=auth_headers(other)).status_code == 404

    def test_invalid_criteria_rejected(self, client, buyer, auth_headers):
        r = client.post("/api/saved-searches", json={
            "name": "Bad", "criteria": {"note_types": ["timeshare"]},
        }, headers=auth_headers(buyer))
        assert r.status_code == 400

    def test_null_name_rejected_on_update(self, client, buyer, auth_headers):
        search_id = client.post("/api/saved-searches", json={"name": "Keep me"},
                                headers=auth_headers(buyer)).json()["data"]["id"]
        r = client.patch(f"/api/saved-searches/{search_id}", json={"name": None}, headers=auth_headers(buyer))
        assert r.status_code == 400
        assert client.get(f"/api/saved-searches/{search_id}",
                          headers=auth_headers(buyer)).json()["data"]["name"] == "Keep me"


class TestListingAlerts:

    def test_approval_alerts_matching_searches(self, client, db, buyer, make_user, seller, admin,
                                               auth_headers, make_listing):
        listing = make_listing(seller, status="pending", verification_status="pending",
                               property_state="GA", asking_price=75000.0)
        client.post("/api/saved-searches", json={
            "name": "Georgia", "criteria": {"property_states": ["GA"]},
        }, headers=auth_headers(buyer))
        client.post("/api/saved-searches", json={
            "name": "Florida", "criteria": {"property_states": ["FL"]},
        }, headers=auth_headers(buyer))
        quiet = make_user("investor")
        client.post("/api/saved-searches", json={
            "name": "Georgia, no email", "criteria": {"property_states": ["GA"]}, "email_alerts": False,
        }, headers=auth_headers(quiet))

        r = client.post(f"/api/admin/listings/{listing.id}/approve", headers=auth_headers(admin))
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["status"] == "active"
        assert data["verification_status"] == "verified"
        assert data["alerts_sent"] == 1

        georgia = db.query(SavedSearch).filter(SavedSearch.name == "Georgia").one()
        assert georgia.total_matches == 1
        alerts = db.query(Notification).filter(Notification.notification_type == "search_alert").all()
        assert [n.user_id for n in alerts] == [buyer.id]

    def test_reject_returns_listing_to_draft(self, client, db, seller, admin, auth_headers, make_listing):
        listing = make_listing(seller, status="pending", verification_status="pending")
        r = client.post(f"/api/admin/listings/{listing.id}/reject", json={"rejection_reason": "Missing allonge"},
                        headers=auth_headers(admin))
        assert r.status_code == 200
        db.refresh(listing)
        assert listing.status == "draft"
        assert listing.verification_status == "rejected"
        assert listing.rejection_reason == "Missing allonge"

        r = client.post(f"/api/admin/listings/{listing.id}/approve", headers=auth_headers(admin))
        assert r.status_code == 409


class TestPreferences:

    def test_matches_require_saved_preferences(self, client, buyer, auth_headers):
        assert client.get("/api/preferences", headers=auth_headers(buyer)).json()["data"] is None
        assert client.get("/api/preferences/matches", headers=auth_headers(buyer)).status_code == 404

    def test_upsert_and_match(self, client, buyer, seller, auth_headers, make_listing):
        performing = make_listing(seller, performance_status="performing", expected_yield=11.0)
        make_listing(seller, performance_status="non_performing", expected_yield=18.0)

        r = client.put("/api/preferences", json={
            "performance_statuses": ["performing"],
            "min_expected_yield": 9,
            "property_states": ["tx"],
        }, headers=auth_headers(buyer))
        assert r.status_code == 200
        assert r.json()["data"]["property_states"] == ["TX"]

        r = client.put("/api/preferences", json={"performance_statuses": ["performing"], "email_alerts": False},
                       headers=auth_headers(buyer))
        prefs = r.json()["data"]
        assert prefs["property_states"] == []
        assert prefs["email_alerts"] is False

        matches = client.get("/api/preferences/matches", headers=auth_headers(buyer)).json()["data"]
        assert [item["id"] for item in matches["items"]] == [performing.id]
