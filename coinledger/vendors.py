from datetime import datetime, timezone
from typing import Optional

from .errors import InvalidEntryError, NotFoundError
from .logging_config import get_logger
from .models import (
    OFFERS,
    SERVICE_CATEGORIES,
    SERVICES,
    VENDORS,
    CreateOfferRequest,
    CreateServiceRequest,
    CreateVendorRequest,
    Offer,
    Service,
    ServiceCategory,
    UpdateCategoryRequest,
    UpdateOfferRequest,
    UpdateServiceRequest,
    Vendor,
)
from .retry import run_transaction
from .settings import Settings, settings
from .store import InMemoryDocumentStore, StoreTransaction

logger = get_logger(__name__)


DEFAULT_CATEGORIES = [
    {"default_key": "basic", "name": "Basic wash", "description": "Basic and express washes", "icon": "car", "order": 1},
    {"default_key": "interior", "name": "Interior cleaning", "description": "Cleaning of the car interior", "icon": "armchair", "order": 2},
    {"default_key": "premium", "name": "Premium", "description": "Premium washes and treatments", "icon": "star", "order": 3},
    {"default_key": "special", "name": "Special services", "description": "Special treatments and extras", "icon": "sparkles", "order": 4},
]


def stage_default_categories(txn: StoreTransaction, vendor_id: str, now: datetime) -> list[ServiceCategory]:
    """Stage any default category the vendor does not have yet.

    Categories are matched by their default key, or by name for categories
    stored without one, so calling this again for the same vendor creates
    nothing even after a default category was renamed.
    """
    docs = txn.find(SERVICE_CATEGORIES, "vendor_id", vendor_id)
    existing_keys = {doc.get("default_key") for doc in docs}
    existing_names = {doc["name"] for doc in docs}
    created = []
    for category in DEFAULT_CATEGORIES:
        if category["default_key"] in existing_keys or category["name"] in existing_names:
            continue
        record = ServiceCategory(
            id=InMemoryDocumentStore.new_id(),
            vendor_id=vendor_id,
            created_at=now,
            **category,
        )
        txn.set(SERVICE_CATEGORIES, record.id, record.model_dump())
        created.append(record)
    return created


def stage_vendor_profile(
    txn: StoreTransaction,
    user_id: str,
    now: datetime,
    details: Optional[dict] = None,
) -> Vendor:
    """Create the vendor profile for `user_id`, or fill in the existing one."""
    details = {k: v for k, v in (details or {}).items() if v is not None}
    existing = txn.find_one(VENDORS, "user_id", user_id)

    if existing:
        vendor = Vendor(**{**existing, **details, "updated_at": now})
    else:
        vendor = Vendor(
            id=InMemoryDocumentStore.new_id(),
            user_id=user_id,
            created_at=now,
            updated_at=now,
            **details,
        )
    txn.set(VENDORS, vendor.id, vendor.model_dump())
    stage_default_categories(txn, vendor.id, now)
    return vendor


class VendorService:
    def __init__(self, store: Optional[InMemoryDocumentStore] = None, config: Optional[Settings] = None):
        self.store = store or InMemoryDocumentStore()
        self.config = config or settings

    def create_vendor(self, request: CreateVendorRequest) -> Vendor:
        now = datetime.now(timezone.utc)
        details = request.model_dump(exclude={"user_id"})
        vendor = run_transaction(
            self.store,
            lambda txn: stage_vendor_profile(txn, request.user_id, now, details),
            self.config,
        )
        logger.info("vendor_saved", vendor_id=vendor.id, user_id=vendor.user_id)
        return vendor

    def get_vendor(self, id_or_user_id: str) -> Vendor:
        matches = self.store.find(VENDORS, "user_id", id_or_user_id)
        if matches:
            return Vendor(**matches[0])
        vendor_data = self.store.get(VENDORS, id_or_user_id)
        if not vendor_data:
            raise NotFoundError(f"Vendor {id_or_user_id} not found")
        return Vendor(**vendor_data)

    def verify_vendor(self, vendor_id: str, verified: bool = True) -> Vendor:
        def work(txn: StoreTransaction) -> Vendor:
            if txn.get(VENDORS, vendor_id) is None:
                raise NotFoundError(f"Vendor {vendor_id} not found")
            data = txn.update(VENDORS, vendor_id, {
                "verified": verified,
                "updated_at": datetime.now(timezone.utc),
            })
            return Vendor(**data)

        vendor = run_transaction(self.store, work, self.config)
        logger.info("vendor_verification_changed", vendor_id=vendor_id, verified=verified)
        return vendor

    def ensure_default_categories(self, vendor_id: str) -> list[ServiceCategory]:
        def work(txn: StoreTransaction) -> list[ServiceCategory]:
            if txn.get(VENDORS, vendor_id) is None:
                raise NotFoundError(f"Vendor {vendor_id} not found")
            return stage_default_categories(txn, vendor_id, datetime.now(timezone.utc))

        created = run_transaction(self.store, work, self.config)
        if created:
            logger.info("default_categories_created", vendor_id=vendor_id, count=len(created))
        return self.list_categories(vendor_id)

    def list_categories(self, vendor_id: str) -> list[ServiceCategory]:
        categories = [ServiceCategory(**c) for c in self.store.find(SERVICE_CATEGORIES, "vendor_id", vendor_id)]
        categories.sort(key=lambda c: c.order)
        return categories

    def create_service(self, request: CreateServiceRequest) -> Service:
        def work(txn: StoreTransaction) -> Service:
            vendor_data = txn.get(VENDORS, request.vendor_id)
            if vendor_data is None:
                raise NotFoundError(f"Vendor {request.vendor_id} not found")
            if request.category_id:
                _require_category(txn, request.category_id, request.vendor_id)

            now = datetime.now(timezone.utc)
            service = Service(id=InMemoryDocumentStore.new_id(), created_at=now, updated_at=now, **request.model_dump())
            txn.set(SERVICES, service.id, service.model_dump())
            txn.update(VENDORS, request.vendor_id, {
                "services": vendor_data.get("services", []) + [service.id],
                "updated_at": now,
            })
            return service

        service = run_transaction(self.store, work, self.config)
        logger.info("service_created", service_id=service.id, vendor_id=service.vendor_id, coin_reward=service.coin_reward)
        return service

    def get_service(self, service_id: str) -> Service:
        service_data = self.store.get(SERVICES, service_id)
        if not service_data:
            raise NotFoundError(f"Service {service_id} not found")
        return Service(**service_data)

    def list_vendor_services(self, vendor_id: str) -> list[Service]:
        return [Service(**s) for s in self.store.find(SERVICES, "vendor_id", vendor_id)]

    def update_service(self, service_id: str, request: UpdateServiceRequest) -> Service:
        """Apply a partial update to a service.

        A new `coin_reward` only affects completions recorded afterwards;
        rewards already credited stay as they were.
        """
        changes = request.model_dump(exclude_none=True)

        def work(txn: StoreTransaction) -> Service:
            service_data = txn.get(SERVICES, service_id)
            if service_data is None:
                raise NotFoundError(f"Service {service_id} not found")
            category_id = changes.get("category_id")
            if category_id:
                _require_category(txn, category_id, service_data["vendor_id"])
            data = txn.update(SERVICES, service_id, {**changes, "updated_at": datetime.now(timezone.utc)})
            return Service(**data)

        service = run_transaction(self.store, work, self.config)
        logger.info("service_updated", service_id=service_id, fields=sorted(changes))
        return service

    def update_category(self, category_id: str, request: UpdateCategoryRequest) -> ServiceCategory:
        changes = request.model_dump(exclude_none=True)

        def work(txn: StoreTransaction) -> ServiceCategory:
            if txn.get(SERVICE_CATEGORIES, category_id) is None:
                raise NotFoundError(f"Category {category_id} not found")
            data = txn.update(SERVICE_CATEGORIES, category_id, {**changes, "updated_at": datetime.now(timezone.utc)})
            return ServiceCategory(**data)

        category = run_transaction(self.store, work, self.config)
        logger.info("category_updated", category_id=category_id, fields=sorted(changes))
        return category

    def create_offer(self, request: CreateOfferRequest) -> Offer:
        def work(txn: StoreTransaction) -> Offer:
            if txn.get(VENDORS, request.vendor_id) is None:
                raise NotFoundError(f"Vendor {request.vendor_id} not found")
            _require_vendor_service(txn, request.service_id, request.vendor_id)

            now = datetime.now(timezone.utc)
            offer = Offer(id=InMemoryDocumentStore.new_id(), created_at=now, updated_at=now, **request.model_dump())
            txn.set(OFFERS, offer.id, offer.model_dump())
            return offer

        offer = run_transaction(self.store, work, self.config)
        logger.info(
            "offer_created",
            offer_id=offer.id,
            vendor_id=offer.vendor_id,
            discount_percentage=offer.discount_percentage,
        )
        return offer

    def update_offer(self, offer_id: str, request: UpdateOfferRequest) -> Offer:
        changes = request.model_dump(exclude_none=True)

        def work(txn: StoreTransaction) -> Offer:
            offer_data = txn.get(OFFERS, offer_id)
            if offer_data is None:
                raise NotFoundError(f"Offer {offer_id} not found")
            if "service_id" in changes:
                _require_vendor_service(txn, changes["service_id"], offer_data["vendor_id"])
            merged = {**offer_data, **changes}
            if merged["end_date"] < merged["start_date"]:
                raise InvalidEntryError("Offer must not end before it starts")
            data = txn.update(OFFERS, offer_id, {**changes, "updated_at": datetime.now(timezone.utc)})
            return Offer(**data)

        offer = run_transaction(self.store, work, self.config)
        logger.info("offer_updated", offer_id=offer_id, fields=sorted(changes))
        return offer

    def get_offer(self, offer_id: str) -> Offer:
        offer_data = self.store.get(OFFERS, offer_id)
        if not offer_data:
            raise NotFoundError(f"Offer {offer_id} not found")
        return Offer(**offer_data)

    def list_vendor_offers(self, vendor_id: str) -> list[Offer]:
        offers = [Offer(**o) for o in self.store.find(OFFERS, "vendor_id", vendor_id)]
        offers.sort(key=lambda o: o.start_date, reverse=True)
        return offers


def _require_category(txn: StoreTransaction, category_id: str, vendor_id: str) -> None:
    category_data = txn.get(SERVICE_CATEGORIES, category_id)
    if category_data is None or category_data["vendor_id"] != vendor_id:
        raise NotFoundError(f"Category {category_id} not found for vendor {vendor_id}")


def _require_vendor_service(txn: StoreTransaction, service_id: str, vendor_id: str) -> None:
    service_data = txn.get(SERVICES, service_id)
    if service_data is None or service_data["vendor_id"] != vendor_id:
        raise NotFoundError(f"Service {service_id} not found for vendor {vendor_id}")
