"""
Pytest configuration file

Every test gets its own SQLite database file. The FastAPI app is driven
in-process through TestClient with `get_db` pointed at that database.
"""
import os

# Must be set before config.py is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GMAIL_TOKEN_FILE"] = os.path.join(os.path.dirname(__file__), "no-such-token.json")
os.environ.setdefault("SECRET_KEY", "notetrade-test-secret")

from datetime import date  # noqa: E402
from itertools import count  # noqa: E402

import bcrypt  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from database import Base, get_db  # noqa: E402
from main import app  # noqa: E402
from models import NoteListing, User  # noqa: E402
from routes.auth import create_access_token  # noqa: E402
from schemas import InquiryCreate, InquiryRespond  # noqa: E402
from services import inquiry_service  # noqa: E402

PASSWORD = "Secret#2024"
# Hashed once; bcrypt is deliberately slow
PASSWORD_HASH = bcrypt.hashpw(PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")

LISTING_DEFAULTS = dict(
    title="Performing 1st lien on Austin SFR",
    note_type="first_mortgage",
    performance_status="performing",
    original_loan_amount=200000.0,
    current_loan_amount=180000.0,
    interest_rate=7.5,
    original_loan_term=360,
    remaining_loan_term=300,
    monthly_payment_amount=1398.43,
    loan_origination_date=date(2019, 5, 1),
    loan_maturity_date=date(2049, 5, 1),
    property_address="12 Oak Street",
    property_city="Austin",
    property_state="TX",
    property_zip_code="78701",
    property_type="single_family",
    property_value=260000.0,
    loan_to_value_ratio=69.2,
    asking_price=150000.0,
    expected_yield=10.2,
    is_public=True,
    status="active",
    verification_status="verified",
)


@pytest.fixture
def listing_payload():
    """JSON body for POST /api/listings."""
    def _payload(**overrides):
        payload = {k: v for k, v in LISTING_DEFAULTS.items() if k not in ("status", "verification_status")}
        payload["loan_origination_date"] = payload["loan_origination_date"].isoformat()
        payload["loan_maturity_date"] = payload["loan_maturity_date"].isoformat()
        payload.update(overrides)
        return payload

    return _payload


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    seq = count(1)

    def _make(role="investor", email=None, **fields):
        n = next(seq)
        user = User(
            email=email or f"{role}{n}@example.com",
            password_hash=PASSWORD_HASH,
            first_name=fields.pop("first_name", role.title()),
            last_name=fields.pop("last_name", f"Number{n}"),
            role=role,
            status=fields.pop("status", "active"),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": str(user.id), "role": user.role, "email": user.email})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def seller(make_user):
    return make_user("seller")


@pytest.fixture
def buyer(make_user):
    return make_user("investor")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_listing(db):
    def _make(seller, **overrides):
        listing = NoteListing(seller_id=seller.id, **{**LISTING_DEFAULTS, **overrides})
        db.add(listing)
        db.commit()
        db.refresh(listing)
        return listing

    return _make


@pytest.fixture
def make_inquiry(db):
    def _make(buyer, listing, offer_amount=None, message="Interested in this note"):
        data = InquiryCreate(note_listing_id=listing.id, message=message, offer_amount=offer_amount)
        return inquiry_service.create_inquiry(db, buyer, data)

    return _make


@pytest.fixture
def make_transaction(db, make_listing, make_inquiry):
    """Accepted inquiry plus its freshly opened transaction."""
    def _make(buyer, seller, offer_amount=150000.0, **listing_overrides):
        listing = make_listing(seller, **listing_overrides)
        inquiry = make_inquiry(buyer, listing, offer_amount=offer_amount)
        _, tx = inquiry_service.respond_to_inquiry(db, inquiry.id, seller, InquiryRespond(decision="accept"))
        return tx

    return _make
