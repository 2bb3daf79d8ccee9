from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Text, Boolean, ForeignKey,
    UniqueConstraint, event,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base, utcnow


# ════════════════════════════════════════════════
#  STATUS VOCABULARIES
# ════════════════════════════════════════════════
class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class ListingStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"      # awaiting admin review
    SOLD = "sold"
    EXPIRED = "expired"
    DRAFT = "draft"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class InquiryStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


class InquiryDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


class Party(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    PLATFORM = "platform"


class TransactionStatus(str, Enum):
    NEGOTIATIONS = "negotiations"
    CLOSING = "closing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    SKIPPED = "skipped"
    FAILED = "failed"


class TimelineEventType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# ════════════════════════════════════════════════
#  USER / AUTH
# ════════════════════════════════════════════════
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(200), unique=True, nullable=False, index=True)
    password_hash = Column(String(200), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    company = Column(String(200), nullable=True)
    bio = Column(Text, nullable=True)
    location = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default="investor")  # investor, seller, admin
    status = Column(String(20), nullable=False, default="active")  # active, suspended, deactivated
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    notifications = relationship("Notification", back_populates="user")
    listings = relationship("NoteListing", back_populates="seller", foreign_keys="NoteListing.seller_id")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE.value


# ════════════════════════════════════════════════
#  NOTIFICATION
# ════════════════════════════════════════════════
class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(50), nullable=False)  # inquiry, transaction, listing, search_alert, system
    is_read = Column(Boolean, default=False)
    link = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="notifications")


# ════════════════════════════════════════════════
#  NOTE LISTING
# ════════════════════════════════════════════════
class NoteListing(Base):
    __tablename__ = "note_listings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    note_type = Column(String(30), nullable=False)  # first_mortgage, second_mortgage, deed_of_trust, land_contract, commercial, other
    performance_status = Column(String(30), nullable=False)  # performing, non_performing, sub_performing, reo

    # ── Loan Terms ──
    original_loan_amount = Column(Float, nullable=False)
    current_loan_amount = Column(Float, nullable=False)
    interest_rate = Column(Float, nullable=False)  # percent
    original_loan_term = Column(Integer, nullable=False)  # months
    remaining_loan_term = Column(Integer, nullable=False)  # months
    monthly_payment_amount = Column(Float, nullable=False)
    loan_origination_date = Column(Date, nullable=False)
    loan_maturity_date = Column(Date, nullable=False)
    payment_history = Column(Text, nullable=True)
    amortization_type = Column(String(30), nullable=True)  # fully_amortizing, interest_only, balloon
    payment_frequency = Column(String(20), default="monthly")

    # ── Property ──
    property_address = Column(String(255), nullable=False)
    property_city = Column(String(100), nullable=False)
    property_state = Column(String(2), nullable=False, index=True)
    property_zip_code = Column(String(10), nullable=False)
    property_county = Column(String(100), nullable=True)
    property_type = Column(String(30), nullable=False)  # single_family, multi_family, condo, townhouse, commercial, land, mobile_home
    property_value = Column(Float, nullable=False)
    loan_to_value_ratio = Column(Float, default=75.0)
    property_description = Column(Text, nullable=True)

    # ── Collateral ──
    is_secured = Column(Boolean, default=True)
    collateral_type = Column(String(100), nullable=True)

    # ── Pricing ──
    asking_price = Column(Float, nullable=False)
    expected_yield = Column(Float, nullable=True)

    # ── Marketing / Due Diligence ──
    description = Column(Text, nullable=True)
    special_notes = Column(Text, nullable=True)
    due_diligence_completed = Column(Boolean, default=False)
    due_diligence_notes = Column(Text, nullable=True)

    # ── Status / Review ──
    status = Column(String(20), nullable=False, default="pending")  # active, pending, sold, expired, draft
    featured = Column(Boolean, default=False)
    is_public = Column(Boolean, default=True)
    verification_status = Column(String(20), nullable=False, default="pending")  # pending, verified, rejected
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    # ── Counters (only ever incremented, except by admin correction) ──
    view_count = Column(Integer, nullable=False, default=0)
    favorite_count = Column(Integer, nullable=False, default=0)
    inquiry_count = Column(Integer, nullable=False, default=0)

    listed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    seller = relationship("User", back_populates="listings", foreign_keys=[seller_id])
    documents = relationship("Document", back_populates="listing")
    inquiries = relationship("Inquiry", back_populates="listing")


# ════════════════════════════════════════════════
#  DOCUMENT (pre-sale, per listing)
# ════════════════════════════════════════════════
class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    note_listing_id = Column(Integer, ForeignKey("note_listings.id"), nullable=False, index=True)
    uploaded_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(255), nullable=False)
    file_url = Column(String(1000), nullable=False)
    file_type = Column(String(100), nullable=True)
    file_size = Column(Integer, nullable=True)
    document_type = Column(String(30), nullable=False, default="other")  # note, mortgage, title_policy, appraisal, payment_history, assignment, allonge, other
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, default=False)
    verification_status = Column(String(20), nullable=False, default="pending")  # pending, verified, rejected
    verified_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    listing = relationship("NoteListing", back_populates="documents")


# ════════════════════════════════════════════════
#  INQUIRY / OFFER NEGOTIATION
# ════════════════════════════════════════════════
class Inquiry(Base):
    __tablename__ = "inquiries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    note_listing_id = Column(Integer, ForeignKey("note_listings.id"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    offer_amount = Column(Float, nullable=True)
    counter_amount = Column(Float, nullable=True)  # latest counter on the table
    awaiting_response_from = Column(String(10), nullable=False, default="seller")  # seller, buyer
    status = Column(String(20), nullable=False, default="pending")  # pending, accepted, rejected, countered, expired, withdrawn
    response_message = Column(Text, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    contact_name = Column(String(200), nullable=True)
    contact_email = Column(String(200), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    listing = relationship("NoteListing", back_populates="inquiries")
    buyer = relationship("User", foreign_keys=[buyer_id])
    transaction = relationship("Transaction", back_populates="inquiry", uselist=False)

    @property
    def agreed_amount(self):
        return self.counter_amount if self.counter_amount is not None else self.offer_amount


# ════════════════════════════════════════════════
#  TRANSACTION WORKFLOW
# ════════════════════════════════════════════════
class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    inquiry_id = Column(Integer, ForeignKey("inquiries.id"), nullable=False, unique=True)
    note_listing_id = Column(Integer, ForeignKey("note_listings.id"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    final_amount = Column(Float, nullable=True)
    platform_fee = Column(Float, nullable=True)
    status = Column(String(20), nullable=False, default="negotiations")  # negotiations, closing, completed, cancelled
    current_phase = Column(String(20), nullable=False, default="negotiations")  # negotiations, closing, completed

    # ── Closing details ──
    cut_off_date = Column(Date, nullable=True)
    closing_date = Column(Date, nullable=True)
    contract_url = Column(String(1000), nullable=True)
    notes = Column(Text, nullable=True)
    buyer_vesting_info = Column(Text, nullable=True)
    servicer_info = Column(Text, nullable=True)
    collateral_tracking_number = Column(String(100), nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    inquiry = relationship("Inquiry", back_populates="transaction")
    listing = relationship("NoteListing")
    buyer = relationship("User", foreign_keys=[buyer_id])
    seller = relationship("User", foreign_keys=[seller_id])
    tasks = relationship("TransactionTask", back_populates="transaction",
                         order_by="TransactionTask.display_order")
    files = relationship("TransactionFile", back_populates="transaction")
    timeline_events = relationship("TransactionTimelineEvent", back_populates="transaction",
                                   order_by="TransactionTimelineEvent.id")

    @property
    def is_terminal(self) -> bool:
        return self.status in (TransactionStatus.COMPLETED.value, TransactionStatus.CANCELLED.value)


class TransactionTask(Base):
    __tablename__ = "transaction_tasks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    task_identifier = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    phase = Column(String(20), nullable=False)  # negotiations, closing
    assigned_to = Column(String(10), nullable=False)  # buyer, seller, platform
    status = Column(String(20), nullable=False, default="pending")  # pending, complete, skipped, failed
    is_required = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    completed_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    transaction = relationship("Transaction", back_populates="tasks")


class TransactionFile(Base):
    __tablename__ = "transaction_files"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("transaction_tasks.id"), nullable=True)
    file_url = Column(String(1000), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(100), nullable=True)
    file_size = Column(Integer, nullable=True)
    category = Column(String(50), nullable=False, default="other")  # contract, collateral, vesting, wire, servicing, other
    description = Column(Text, nullable=True)
    uploaded_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_public = Column(Boolean, default=False)
    is_verified = Column(Boolean, default=False)
    verified_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    transaction = relationship("Transaction", back_populates="files")


class TransactionTimelineEvent(Base):
    __tablename__ = "transaction_timeline_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    event_description = Column(Text, nullable=False)
    event_type = Column(String(10), nullable=False, default="info")  # info, success, warning, error
    event_data = Column(Text, nullable=True)  # JSON string
    triggered_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    related_task_id = Column(Integer, ForeignKey("transaction_tasks.id"), nullable=True)
    related_file_id = Column(Integer, ForeignKey("transaction_files.id"), nullable=True)
    event_timestamp = Column(DateTime, nullable=False, default=utcnow)

    transaction = relationship("Transaction", back_populates="timeline_events")


@event.listens_for(TransactionTimelineEvent, "before_update")
@event.listens_for(TransactionTimelineEvent, "before_delete")
def _timeline_is_append_only(mapper, connection, target):
    raise RuntimeError(f"Timeline event {target.id} is immutable")


# ════════════════════════════════════════════════
#  INVESTOR PREFERENCES / SAVED SEARCHES / FAVORITES
# ════════════════════════════════════════════════
class InvestorPreferences(Base):
    __tablename__ = "investor_preferences"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    note_types = Column(Text, nullable=True)  # JSON list
    performance_statuses = Column(Text, nullable=True)  # JSON list
    property_types = Column(Text, nullable=True)  # JSON list
    property_states = Column(Text, nullable=True)  # JSON list
    min_asking_price = Column(Float, nullable=True)
    max_asking_price = Column(Float, nullable=True)
    min_expected_yield = Column(Float, nullable=True)
    max_expected_yield = Column(Float, nullable=True)
    min_interest_rate = Column(Float, nullable=True)
    max_interest_rate = Column(Float, nullable=True)
    max_loan_to_value = Column(Float, nullable=True)
    email_alerts = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class SavedSearch(Base):
    __tablename__ = "saved_searches"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    criteria = Column(Text, nullable=False)  # JSON of the listing criteria shape
    is_active = Column(Boolean, default=True)
    email_alerts = Column(Boolean, default=True)
    last_run_at = Column(DateTime, nullable=True)
    total_matches = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User")


class FavoriteListing(Base):
    __tablename__ = "favorite_listings"
    __table_args__ = (UniqueConstraint("user_id", "note_listing_id", name="uq_favorite_user_listing"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    note_listing_id = Column(Integer, ForeignKey("note_listings.id"), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    listing = relationship("NoteListing")


# ════════════════════════════════════════════════
#  WAITLIST
# ════════════════════════════════════════════════
class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(200), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False)  # investor, seller
    company = Column(String(200), nullable=True)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
