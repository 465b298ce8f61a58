from typing import Optional

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from .appointments import AppointmentService
from .errors import (
    CodeAlreadyUsedError,
    ConcurrencyConflictError,
    FeedbackNotAllowedError,
    InsufficientFundsError,
    InvalidEntryError,
    InvalidReferralCodeError,
    InvalidStateTransitionError,
    LedgerServiceError,
    NotFoundError,
    SelfReferralError,
    UserAlreadyExistsError,
)
from .logging_config import setup_logging
from .models import (
    ApplyReferralRequest,
    Appointment,
    CompletionRewardResponse,
    CreateAppointmentRequest,
    CreateOfferRequest,
    CreateServiceRequest,
    CreateUserRequest,
    CreateVendorRequest,
    FeedbackRequest,
    Offer,
    ReferralResult,
    Service,
    ServiceCategory,
    Transaction,
    UpdateAppointmentRequest,
    UpdateCategoryRequest,
    UpdateOfferRequest,
    UpdateServiceRequest,
    UserAccount,
    Vendor,
    VerifyVendorRequest,
    Wallet,
    WalletAudit,
    WalletEntryRequest,
    WalletHistoryResponse,
)
from .service import LedgerService
from .settings import Settings, settings
from .store import InMemoryDocumentStore
from .vendors import VendorService


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _conflict(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


def _bad_request(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _busy(e: LedgerServiceError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


def create_app(store: Optional[InMemoryDocumentStore] = None, config: Optional[Settings] = None) -> FastAPI:
    config = config or settings
    store = store or InMemoryDocumentStore()

    ledger_service = LedgerService(store, config)
    vendor_service = VendorService(store, config)
    appointment_service = AppointmentService(ledger_service)

    app = FastAPI(
        title="Coin Ledger API",
        description="Loyalty coin wallets, referrals and appointment rewards for the car wash marketplace",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": config.app_name}

    @app.post("/users", response_model=UserAccount, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def create_user(request: CreateUserRequest) -> UserAccount:
        try:
            return ledger_service.create_user(request)
        except UserAlreadyExistsError as e:
            raise _conflict(e)
        except LedgerServiceError as e:
            # Retry budget or referral code space exhausted
            raise _busy(e)

    @app.get("/users/{user_id}", response_model=UserAccount, tags=["Users"])
    def get_user(user_id: str) -> UserAccount:
        try:
            return ledger_service.get_user(user_id)
        except NotFoundError as e:
            raise _not_found(e)

    @app.get("/users/{user_id}/wallet", response_model=Wallet, tags=["Wallet"])
    def get_wallet(user_id: str) -> Wallet:
        try:
            return ledger_service.get_wallet(user_id)
        except NotFoundError as e:
            raise _not_found(e)

    @app.get("/users/{user_id}/wallet/history", response_model=WalletHistoryResponse, tags=["Wallet"])
    def get_wallet_history(
        user_id: str,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
    ) -> WalletHistoryResponse:
        try:
            return ledger_service.get_wallet_history(user_id, limit, offset)
        except NotFoundError as e:
            raise _not_found(e)

    @app.get("/users/{user_id}/wallet/audit", response_model=WalletAudit, tags=["Wallet"])
    def audit_wallet(user_id: str) -> WalletAudit:
        try:
            return ledger_service.reconcile(user_id)
        except NotFoundError as e:
            raise _not_found(e)

    @app.post("/users/{user_id}/wallet/credit", response_model=Transaction, status_code=status.HTTP_201_CREATED, tags=["Wallet"])
    def credit_wallet(user_id: str, request: WalletEntryRequest) -> Transaction:
        try:
            return ledger_service.credit(user_id, request.amount, request.description)
        except NotFoundError as e:
            raise _not_found(e)
        except InvalidEntryError as e:
            raise _bad_request(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.post("/users/{user_id}/wallet/debit", response_model=Transaction, status_code=status.HTTP_201_CREATED, tags=["Wallet"])
    def debit_wallet(user_id: str, request: WalletEntryRequest) -> Transaction:
        try:
            return ledger_service.debit(user_id, request.amount, request.description)
        except NotFoundError as e:
            raise _not_found(e)
        except InsufficientFundsError as e:
            raise _conflict(e)
        except InvalidEntryError as e:
            raise _bad_request(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.post("/users/{user_id}/referral", response_model=ReferralResult, tags=["Referrals"])
    def apply_referral(user_id: str, request: ApplyReferralRequest) -> ReferralResult:
        try:
            return ledger_service.apply_referral_code(user_id, request.code)
        except NotFoundError as e:
            raise _not_found(e)
        except CodeAlreadyUsedError as e:
            raise _conflict(e)
        except (InvalidReferralCodeError, SelfReferralError) as e:
            raise _bad_request(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.get("/users/{user_id}/appointments", response_model=list[Appointment], tags=["Appointments"])
    def list_customer_appointments(user_id: str) -> list[Appointment]:
        return appointment_service.list_customer_appointments(user_id)

    @app.post("/vendors", response_model=Vendor, status_code=status.HTTP_201_CREATED, tags=["Vendors"])
    def create_vendor(request: CreateVendorRequest) -> Vendor:
        try:
            return vendor_service.create_vendor(request)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.get("/vendors/{vendor_id}", response_model=Vendor, tags=["Vendors"])
    def get_vendor(vendor_id: str) -> Vendor:
        try:
            return vendor_service.get_vendor(vendor_id)
        except NotFoundError as e:
            raise _not_found(e)

    @app.post("/vendors/{vendor_id}/verify", response_model=Vendor, tags=["Vendors"])
    def verify_vendor(vendor_id: str, request: VerifyVendorRequest) -> Vendor:
        try:
            return vendor_service.verify_vendor(vendor_id, request.verified)
        except NotFoundError as e:
            raise _not_found(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.get("/vendors/{vendor_id}/categories", response_model=list[ServiceCategory], tags=["Vendors"])
    def list_categories(vendor_id: str) -> list[ServiceCategory]:
        return vendor_service.list_categories(vendor_id)

    @app.get("/vendors/{vendor_id}/services", response_model=list[Service], tags=["Vendors"])
    def list_vendor_services(vendor_id: str) -> list[Service]:
        return vendor_service.list_vendor_services(vendor_id)

    @app.get("/vendors/{vendor_id}/appointments", response_model=list[Appointment], tags=["Vendors"])
    def list_vendor_appointments(vendor_id: str) -> list[Appointment]:
        return appointment_service.list_vendor_appointments(vendor_id)

    @app.get("/vendors/{vendor_id}/offers", response_model=list[Offer], tags=["Offers"])
    def list_vendor_offers(vendor_id: str) -> list[Offer]:
        return vendor_service.list_vendor_offers(vendor_id)

    @app.patch("/categories/{category_id}", response_model=ServiceCategory, tags=["Vendors"])
    def update_category(category_id: str, request: UpdateCategoryRequest) -> ServiceCategory:
        try:
            return vendor_service.update_category(category_id, request)
        except NotFoundError as e:
            raise _not_found(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.post("/services", response_model=Service, status_code=status.HTTP_201_CREATED, tags=["Services"])
    def create_service(request: CreateServiceRequest) -> Service:
        try:
            return vendor_service.create_service(request)
        except NotFoundError as e:
            raise _not_found(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.get("/services/{service_id}", response_model=Service, tags=["Services"])
    def get_service(service_id: str) -> Service:
        try:
            return vendor_service.get_service(service_id)
        except NotFoundError as e:
            raise _not_found(e)

    @app.patch("/services/{service_id}", response_model=Service, tags=["Services"])
    def update_service(service_id: str, request: UpdateServiceRequest) -> Service:
        try:
            return vendor_service.update_service(service_id, request)
        except NotFoundError as e:
            raise _not_found(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.post("/offers", response_model=Offer, status_code=status.HTTP_201_CREATED, tags=["Offers"])
    def create_offer(request: CreateOfferRequest) -> Offer:
        try:
            return vendor_service.create_offer(request)
        except NotFoundError as e:
            raise _not_found(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.get("/offers/{offer_id}", response_model=Offer, tags=["Offers"])
    def get_offer(offer_id: str) -> Offer:
        try:
            return vendor_service.get_offer(offer_id)
        except NotFoundError as e:
            raise _not_found(e)

    @app.patch("/offers/{offer_id}", response_model=Offer, tags=["Offers"])
    def update_offer(offer_id: str, request: UpdateOfferRequest) -> Offer:
        try:
            return vendor_service.update_offer(offer_id, request)
        except NotFoundError as e:
            raise _not_found(e)
        except InvalidEntryError as e:
            raise _bad_request(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.post("/appointments", response_model=Appointment, status_code=status.HTTP_201_CREATED, tags=["Appointments"])
    def create_appointment(request: CreateAppointmentRequest) -> Appointment:
        try:
            return appointment_service.create_appointment(request)
        except NotFoundError as e:
            raise _not_found(e)
        except InsufficientFundsError as e:
            raise _conflict(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.get("/appointments/{appointment_id}", response_model=Appointment, tags=["Appointments"])
    def get_appointment(appointment_id: str) -> Appointment:
        try:
            return appointment_service.get_appointment(appointment_id)
        except NotFoundError as e:
            raise _not_found(e)

    @app.patch("/appointments/{appointment_id}", response_model=Appointment, tags=["Appointments"])
    def update_appointment(appointment_id: str, request: UpdateAppointmentRequest) -> Appointment:
        try:
            return appointment_service.update_appointment(appointment_id, request)
        except NotFoundError as e:
            raise _not_found(e)
        except InvalidStateTransitionError as e:
            raise _bad_request(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.post("/appointments/{appointment_id}/complete-reward", response_model=CompletionRewardResponse, tags=["Appointments"])
    def credit_for_completion(appointment_id: str) -> CompletionRewardResponse:
        try:
            return appointment_service.complete_reward(appointment_id)
        except NotFoundError as e:
            raise _not_found(e)
        except InvalidStateTransitionError as e:
            raise _bad_request(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    @app.post("/appointments/{appointment_id}/feedback", response_model=Appointment, tags=["Appointments"])
    def add_feedback(appointment_id: str, request: FeedbackRequest) -> Appointment:
        try:
            return appointment_service.add_feedback(appointment_id, request)
        except NotFoundError as e:
            raise _not_found(e)
        except FeedbackNotAllowedError as e:
            raise _conflict(e)
        except ConcurrencyConflictError as e:
            raise _busy(e)

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
