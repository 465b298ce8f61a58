from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


USERS = "users"
VENDORS = "vendors"
SERVICE_CATEGORIES = "service_categories"
OFFERS = "offers"
SERVICES = "services"
APPOINTMENTS = "appointments"


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CANCELLED_BY_CUSTOMER = "cancelled_by_customer"
    NO_SHOW = "no_show"


class Transaction(BaseModel):
    id: str
    amount: int = Field(..., gt=0)
    type: TransactionType
    description: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def signed_amount(self) -> int:
        return self.amount if self.type == TransactionType.CREDIT else -self.amount


class Wallet(BaseModel):
    coins: int = Field(default=0, ge=0)
    transactions: list[Transaction] = Field(default_factory=list)

    def ledger_total(self) -> int:
        return sum(t.signed_amount for t in self.transactions)


class UserAccount(BaseModel):
    id: str
    email: str
    role: UserRole = UserRole.CUSTOMER
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    license_plate: Optional[str] = None
    created_at: datetime
    referral_code: str
    referral_count: int = 0
    used_referral_code: Optional[str] = None
    wallet: Wallet = Field(default_factory=Wallet)

    model_config = ConfigDict(from_attributes=True)


class CreateUserRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="Id issued by the identity provider")
    email: str
    role: UserRole = UserRole.CUSTOMER
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    license_plate: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "k2Jd8aQ0tYhXv1",
            "email": "driver@example.com",
            "role": "customer",
            "first_name": "Aino",
            "license_plate": "ABC-123"
        }
    })


class WalletEntryRequest(BaseModel):
    amount: int = Field(..., gt=0)
    description: str = Field(..., min_length=1)


class ApplyReferralRequest(BaseModel):
    code: str = Field(..., min_length=1)


class ReferralResult(BaseModel):
    referrer_id: str
    referred_id: str
    code: str
    referrer_transaction: Transaction
    referred_transaction: Transaction
    message: str


class WalletHistoryResponse(BaseModel):
    user_id: str
    transactions: list[Transaction]
    total_count: int
    current_balance: int


class WalletAudit(BaseModel):
    user_id: str
    balance: int
    ledger_total: int
    transaction_count: int
    consistent: bool


class DayHours(BaseModel):
    open: str = "09:00"
    close: str = "17:00"


def _closed() -> DayHours:
    return DayHours(open="closed", close="closed")


class OperatingHours(BaseModel):
    monday: DayHours = Field(default_factory=DayHours)
    tuesday: DayHours = Field(default_factory=DayHours)
    wednesday: DayHours = Field(default_factory=DayHours)
    thursday: DayHours = Field(default_factory=DayHours)
    friday: DayHours = Field(default_factory=DayHours)
    saturday: DayHours = Field(default_factory=_closed)
    sunday: DayHours = Field(default_factory=_closed)


class Vendor(BaseModel):
    id: str
    user_id: str
    business_name: str = ""
    description: Optional[str] = None
    address: str = ""
    business_id: Optional[str] = None
    city: str = ""
    postal_code: str = ""
    phone: str = ""
    email: Optional[str] = None
    website: Optional[str] = None
    services: list[str] = Field(default_factory=list)
    rating: float = 0.0
    rating_count: int = 0
    verified: bool = False
    operating_hours: OperatingHours = Field(default_factory=OperatingHours)
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CreateVendorRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    business_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    address: str = ""
    business_id: Optional[str] = Field(default=None, description="Business registration id")
    city: str = ""
    postal_code: str = ""
    phone: str = ""
    email: Optional[str] = None
    website: Optional[str] = None
    operating_hours: Optional[OperatingHours] = None


class VerifyVendorRequest(BaseModel):
    verified: bool = True


class ServiceCategory(BaseModel):
    id: str
    vendor_id: str
    name: str
    description: str = ""
    icon: str = ""
    order: int = 0
    default_key: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UpdateCategoryRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    icon: Optional[str] = None
    order: Optional[int] = None


class Service(BaseModel):
    id: str
    vendor_id: str
    category_id: Optional[str] = None
    name: str
    description: str = ""
    price: Decimal = Field(..., ge=0)
    duration: int = Field(..., gt=0, description="Minutes")
    available: bool = True
    coin_reward: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CreateServiceRequest(BaseModel):
    vendor_id: str = Field(..., min_length=1)
    category_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: str = ""
    price: Decimal = Field(..., ge=0)
    duration: int = Field(..., gt=0)
    available: bool = True
    coin_reward: int = Field(default=0, ge=0)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "vendor_id": "3f0c1b2a9d8e4f6a",
            "name": "Premium wash",
            "price": 49.90,
            "duration": 60,
            "coin_reward": 5
        }
    })


class UpdateServiceRequest(BaseModel):
    category_id: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    duration: Optional[int] = Field(default=None, gt=0)
    available: Optional[bool] = None
    coin_reward: Optional[int] = Field(default=None, ge=0)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive datetimes are taken to be UTC so stored dates stay comparable
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Offer(BaseModel):
    id: str
    vendor_id: str
    service_id: str
    title: str
    description: str = ""
    discount_percentage: int = Field(..., gt=0, le=100)
    start_date: datetime
    end_date: datetime
    active: bool = True
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateOfferRequest(BaseModel):
    vendor_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    discount_percentage: int = Field(..., gt=0, le=100)
    start_date: datetime
    end_date: datetime
    active: bool = True

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc_dates(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _date_range(self) -> "CreateOfferRequest":
        if self.end_date < self.start_date:
            raise ValueError("Offer must not end before it starts")
        return self


class UpdateOfferRequest(BaseModel):
    service_id: Optional[str] = None
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    discount_percentage: Optional[int] = Field(default=None, gt=0, le=100)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: Optional[bool] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class Feedback(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    created_at: datetime


class FeedbackRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class Appointment(BaseModel):
    id: str
    customer_id: str
    vendor_id: str
    service_id: str
    date: datetime
    status: AppointmentStatus
    total_price: Decimal
    coins_used: int = Field(default=0, ge=0)
    notes: Optional[str] = None
    feedback: Optional[Feedback] = None
    reward_credited: bool = False
    coins_rewarded: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateAppointmentRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    vendor_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    date: datetime
    notes: Optional[str] = None
    coins_to_use: int = Field(default=0, ge=0)
    status: AppointmentStatus = AppointmentStatus.CONFIRMED

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("status")
    @classmethod
    def _initial_status(cls, value: AppointmentStatus) -> AppointmentStatus:
        if value not in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED):
            raise ValueError("New appointments start as pending or confirmed")
        return value


class UpdateAppointmentRequest(BaseModel):
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None
    date: Optional[datetime] = None

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class CompletionRewardResponse(BaseModel):
    appointment: Appointment
    transaction: Optional[Transaction] = None
    message: str
