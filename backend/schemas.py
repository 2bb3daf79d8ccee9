from datetime import date, datetime
from typing import Any, List, Optional
import re

from pydantic import BaseModel, Field, field_validator, model_validator


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$"

NOTE_TYPES = ("first_mortgage", "second_mortgage", "deed_of_trust", "land_contract", "commercial", "other")
PERFORMANCE_STATUSES = ("performing", "non_performing", "sub_performing", "reo")
PROPERTY_TYPES = ("single_family", "multi_family", "condo", "townhouse", "commercial", "land", "mobile_home")
DOCUMENT_TYPES = ("note", "mortgage", "title_policy", "appraisal", "payment_history", "assignment", "allonge", "other")


def _check_email(v: str) -> str:
    if not re.match(EMAIL_PATTERN, v.strip()):
        raise ValueError("Invalid email format")
    return v.strip().lower()


def _not_null(v):
    if v is None:
        raise ValueError("may not be null; omit the field to leave it unchanged")
    return v


def _check_choices(values, choices, label):
    for value in values or []:
        if value not in choices:
            raise ValueError(f"Unknown {label} '{value}'. Expected one of: {', '.join(choices)}")
    return values


# ═══════════════════════════════════════════════
#  RESPONSE ENVELOPE
# ═══════════════════════════════════════════════

class ApiResponse(BaseModel):
    """Uniform JSON envelope returned by every endpoint."""
    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None


def ok(data: Any = None, message: str = None) -> ApiResponse:
    return ApiResponse(success=True, data=data, message=message)


# ═══════════════════════════════════════════════
#  AUTH / USERS
# ═══════════════════════════════════════════════

class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=5, max_length=200)
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: str = Field(default="investor", pattern="^(investor|seller)$")
    phone: Optional[str] = Field(None, max_length=20)
    company: Optional[str] = Field(None, max_length=200)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class RefreshRequest(BaseModel):
    refresh_token: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    company: Optional[str] = Field(None, max_length=200)
    bio: Optional[str] = None
    location: Optional[str] = Field(None, max_length=200)

    @field_validator("first_name", "last_name")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class AdminUserUpdate(ProfileUpdate):
    role: Optional[str] = Field(None, pattern="^(investor|seller|admin)$")
    status: Optional[str] = Field(None, pattern="^(active|suspended|deactivated)$")

    @field_validator("role", "status")
    @classmethod
    def reject_null_admin(cls, v):
        return _not_null(v)


# ═══════════════════════════════════════════════
#  LISTINGS
# ═══════════════════════════════════════════════

class ListingCriteria(BaseModel):
    """Filter shape shared by marketplace search, saved searches and investor preferences."""
    note_types: List[str] = Field(default_factory=list)
    performance_statuses: List[str] = Field(default_factory=list)
    property_types: List[str] = Field(default_factory=list)
    property_states: List[str] = Field(default_factory=list)
    property_city: Optional[str] = None
    min_asking_price: Optional[float] = Field(None, ge=0)
    max_asking_price: Optional[float] = Field(None, ge=0)
    min_expected_yield: Optional[float] = None
    max_expected_yield: Optional[float] = None
    min_interest_rate: Optional[float] = Field(None, ge=0)
    max_interest_rate: Optional[float] = Field(None, ge=0)
    max_loan_to_value: Optional[float] = Field(None, ge=0)
    is_secured: Optional[bool] = None
    keyword: Optional[str] = Field(None, max_length=200)

    @field_validator("note_types")
    @classmethod
    def validate_note_types(cls, v):
        return _check_choices(v, NOTE_TYPES, "note type")

    @field_validator("performance_statuses")
    @classmethod
    def validate_performance(cls, v):
        return _check_choices(v, PERFORMANCE_STATUSES, "performance status")

    @field_validator("property_types")
    @classmethod
    def validate_property_types(cls, v):
        return _check_choices(v, PROPERTY_TYPES, "property type")

    @field_validator("property_states")
    @classmethod
    def normalize_states(cls, v):
        return [s.upper() for s in v]

    @model_validator(mode="after")
    def check_ranges(self):
        pairs = [
            ("min_asking_price", "max_asking_price"),
            ("min_expected_yield", "max_expected_yield"),
            ("min_interest_rate", "max_interest_rate"),
        ]
        for low, high in pairs:
            lo, hi = getattr(self, low), getattr(self, high)
            if lo is not None and hi is not None and lo > hi:
                raise ValueError(f"{low} cannot be greater than {high}")
        return self


class ListingCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    note_type: str
    performance_status: str

    # ── Loan Terms ──
    original_loan_amount: float = Field(..., gt=0)
    current_loan_amount: float = Field(..., gt=0)
    interest_rate: float = Field(..., ge=0, le=100)
    original_loan_term: int = Field(..., gt=0)
    remaining_loan_term: int = Field(..., ge=0)
    monthly_payment_amount: float = Field(..., ge=0)
    loan_origination_date: date
    loan_maturity_date: date
    payment_history: Optional[str] = None
    amortization_type: Optional[str] = Field(None, pattern="^(fully_amortizing|interest_only|balloon)$")
    payment_frequency: str = Field(default="monthly", pattern="^(monthly|quarterly|semi_annual|annual)$")

    # ── Property ──
    property_address: str = Field(..., min_length=3, max_length=255)
    property_city: str = Field(..., min_length=2, max_length=100)
    property_state: str = Field(..., min_length=2, max_length=2)
    property_zip_code: str
    property_county: Optional[str] = None
    property_type: str
    property_value: float = Field(..., gt=0)
    loan_to_value_ratio: float = Field(default=75.0, ge=0, le=200)
    property_description: Optional[str] = None

    # ── Collateral / Pricing ──
    is_secured: bool = True
    collateral_type: Optional[str] = None
    asking_price: float = Field(..., gt=0)
    expected_yield: Optional[float] = None

    description: Optional[str] = None
    special_notes: Optional[str] = None
    due_diligence_completed: bool = False
    due_diligence_notes: Optional[str] = None
    is_public: bool = True
    status: str = Field(default="pending", pattern="^(pending|draft)$")
    expires_at: Optional[datetime] = None

    @field_validator("note_type")
    @classmethod
    def validate_note_type(cls, v: str) -> str:
        return _check_choices([v], NOTE_TYPES, "note type")[0]

    @field_validator("performance_status")
    @classmethod
    def validate_performance_status(cls, v: str) -> str:
        return _check_choices([v], PERFORMANCE_STATUSES, "performance status")[0]

    @field_validator("property_type")
    @classmethod
    def validate_property_type(cls, v: str) -> str:
        return _check_choices([v], PROPERTY_TYPES, "property type")[0]

    @field_validator("property_state")
    @classmethod
    def validate_state(cls, v: str) -> str:
        if not re.match(r"^[A-Za-z]{2}$", v):
            raise ValueError("State must be a two-letter code")
        return v.upper()

    @field_validator("property_zip_code")
    @classmethod
    def validate_zip(cls, v: str) -> str:
        if not re.match(r"^\d{5}(-\d{4})?$", v):
            raise ValueError("Invalid ZIP code. Expected: 12345 or 12345-6789")
        return v

    @model_validator(mode="after")
    def check_dates(self):
        if self.loan_maturity_date <= self.loan_origination_date:
            raise ValueError("loan_maturity_date must be after loan_origination_date")
        return self


class ListingUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=255)
    performance_status: Optional[str] = None
    current_loan_amount: Optional[float] = Field(None, gt=0)
    interest_rate: Optional[float] = Field(None, ge=0, le=100)
    remaining_loan_term: Optional[int] = Field(None, ge=0)
    monthly_payment_amount: Optional[float] = Field(None, ge=0)
    payment_history: Optional[str] = None
    property_value: Optional[float] = Field(None, gt=0)
    loan_to_value_ratio: Optional[float] = Field(None, ge=0, le=200)
    property_description: Optional[str] = None
    asking_price: Optional[float] = Field(None, gt=0)
    expected_yield: Optional[float] = None
    description: Optional[str] = None
    special_notes: Optional[str] = None
    due_diligence_completed: Optional[bool] = None
    due_diligence_notes: Optional[str] = None
    is_public: Optional[bool] = None
    status: Optional[str] = Field(None, pattern="^(draft|pending|expired)$")
    # Admin-only fields
    featured: Optional[bool] = None
    admin_notes: Optional[str] = None

    @field_validator(
        "title", "performance_status", "current_loan_amount", "interest_rate", "remaining_loan_term",
        "monthly_payment_amount", "property_value", "loan_to_value_ratio", "asking_price",
        "due_diligence_completed", "is_public", "status", "featured",
    )
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)

    @field_validator("performance_status")
    @classmethod
    def validate_performance_status(cls, v):
        if v is None:
            return v
        return _check_choices([v], PERFORMANCE_STATUSES, "performance status")[0]


class ListingReject(BaseModel):
    rejection_reason: str = Field(..., min_length=3)


class CounterCorrection(BaseModel):
    view_count: Optional[int] = Field(None, ge=0)
    favorite_count: Optional[int] = Field(None, ge=0)
    inquiry_count: Optional[int] = Field(None, ge=0)


# ═══════════════════════════════════════════════
#  DOCUMENTS
# ═══════════════════════════════════════════════

class DocumentCreate(BaseModel):
    note_listing_id: int
    name: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1, max_length=1000)
    file_type: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    document_type: str = "other"
    description: Optional[str] = None
    is_public: bool = False

    @field_validator("document_type")
    @classmethod
    def validate_document_type(cls, v: str) -> str:
        return _check_choices([v], DOCUMENT_TYPES, "document type")[0]


class DocumentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_public: Optional[bool] = None

    @field_validator("name", "is_public")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class DocumentVerify(BaseModel):
    verification_status: str = Field(..., pattern="^(verified|rejected)$")


# ═══════════════════════════════════════════════
#  INQUIRIES
# ═══════════════════════════════════════════════

class InquiryCreate(BaseModel):
    note_listing_id: int
    message: str = Field(..., min_length=1, max_length=5000)
    offer_amount: Optional[float] = Field(None, gt=0)
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_email: Optional[str] = Field(None, max_length=200)
    contact_phone: Optional[str] = Field(None, max_length=20)

    @field_validator("contact_email")
    @classmethod
    def validate_contact_email(cls, v):
        return _check_email(v) if v else v


class InquiryRespond(BaseModel):
    decision: str = Field(..., pattern="^(accept|reject|counter)$")
    response_message: Optional[str] = Field(None, max_length=5000)
    counter_amount: Optional[float] = None

    @model_validator(mode="after")
    def check_counter(self):
        if self.decision == "counter":
            if self.counter_amount is None:
                raise ValueError("counter_amount is required when countering")
            if self.counter_amount <= 0:
                raise ValueError("counter_amount must be greater than zero")
        return self


# ═══════════════════════════════════════════════
#  TRANSACTIONS
# ═══════════════════════════════════════════════

class TransactionCreate(BaseModel):
    inquiry_id: int


class TransactionUpdate(BaseModel):
    final_amount: Optional[float] = Field(None, gt=0)
    platform_fee: Optional[float] = Field(None, ge=0)
    cut_off_date: Optional[date] = None
    closing_date: Optional[date] = None
    contract_url: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = None
    buyer_vesting_info: Optional[str] = None
    servicer_info: Optional[str] = None
    collateral_tracking_number: Optional[str] = Field(None, max_length=100)

    @field_validator("final_amount")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class TransactionCancel(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class TaskFail(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class TaskCreate(BaseModel):
    task_identifier: str = Field(..., min_length=2, max_length=100, pattern=r"^[a-z0-9_]+$")
    description: str = Field(..., min_length=2)
    phase: str = Field(..., pattern="^(negotiations|closing)$")
    assigned_to: str = Field(..., pattern="^(buyer|seller|platform)$")
    is_required: bool = True


class FileCreate(BaseModel):
    file_url: str = Field(..., min_length=1, max_length=1000)
    file_name: str = Field(..., min_length=1, max_length=255)
    file_type: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    category: str = Field(default="other", pattern="^(contract|collateral|vesting|wire|servicing|other)$")
    description: Optional[str] = None
    task_id: Optional[int] = None
    is_public: bool = False


class TimelineEventCreate(BaseModel):
    event_description: str = Field(..., min_length=1, max_length=2000)
    event_type: str = Field(default="info", pattern="^(info|success|warning|error)$")
    event_data: Optional[dict] = None
    related_task_id: Optional[int] = None
    related_file_id: Optional[int] = None


# ═══════════════════════════════════════════════
#  FAVORITES / SAVED SEARCHES / PREFERENCES
# ═══════════════════════════════════════════════

class FavoriteCreate(BaseModel):
    notes: Optional[str] = None


class SavedSearchCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    criteria: ListingCriteria = Field(default_factory=ListingCriteria)
    email_alerts: bool = True


class SavedSearchUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    criteria: Optional[ListingCriteria] = None
    email_alerts: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("name", "email_alerts", "is_active")
    @classmethod
    def reject_null(cls, v):
        return _not_null(v)


class PreferencesUpdate(BaseModel):
    note_types: List[str] = Field(default_factory=list)
    performance_statuses: List[str] = Field(default_factory=list)
    property_types: List[str] = Field(default_factory=list)
    property_states: List[str] = Field(default_factory=list)
    min_asking_price: Optional[float] = Field(None, ge=0)
    max_asking_price: Optional[float] = Field(None, ge=0)
    min_expected_yield: Optional[float] = None
    max_expected_yield: Optional[float] = None
    min_interest_rate: Optional[float] = Field(None, ge=0)
    max_interest_rate: Optional[float] = Field(None, ge=0)
    max_loan_to_value: Optional[float] = Field(None, ge=0)
    email_alerts: bool = True

    def to_criteria(self) -> ListingCriteria:
        return ListingCriteria(**self.model_dump(exclude={"email_alerts"}))


# ═══════════════════════════════════════════════
#  WAITLIST
# ═══════════════════════════════════════════════

class WaitlistCreate(BaseModel):
    email: str = Field(..., min_length=5, max_length=200)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: str = Field(..., pattern="^(investor|seller)$")
    company: Optional[str] = Field(None, max_length=200)
    message: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)
