"""
Appointments and the coin effects tied to them.

Booking with coins debits the customer in the same store transaction that
writes the appointment. Moving an appointment into `completed` credits the
service's coin reward in the same transaction as the status change, once per
appointment.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .errors import FeedbackNotAllowedError, InvalidStateTransitionError, NotFoundError
from .logging_config import get_logger
from .models import (
    APPOINTMENTS,
    SERVICES,
    USERS,
    VENDORS,
    Appointment,
    AppointmentStatus,
    CompletionRewardResponse,
    CreateAppointmentRequest,
    Feedback,
    FeedbackRequest,
    Service,
    Transaction,
    UpdateAppointmentRequest,
)
from .service import LedgerService
from .store import InMemoryDocumentStore, StoreTransaction

logger = get_logger(__name__)

BOOKING_DISCOUNT_DESCRIPTION = "Coins used for discount"
COMPLETION_REWARD_DESCRIPTION = "Coins from service: {service_name}"


class RewardAction(str, Enum):
    CREDIT_SERVICE_REWARD = "credit_service_reward"


_TERMINAL = frozenset()
_ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset] = {
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.CANCELLED_BY_CUSTOMER,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.CANCELLED_BY_CUSTOMER,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.COMPLETED: _TERMINAL,
    AppointmentStatus.CANCELLED: _TERMINAL,
    AppointmentStatus.CANCELLED_BY_CUSTOMER: _TERMINAL,
    AppointmentStatus.NO_SHOW: _TERMINAL,
}


def can_transition(old_status: AppointmentStatus, new_status: AppointmentStatus) -> bool:
    # Saving the same status again (e.g. editing notes) is always fine
    return old_status == new_status or new_status in _ALLOWED_TRANSITIONS[old_status]


def completion_reward_action(
    old_status: AppointmentStatus, new_status: AppointmentStatus
) -> Optional[RewardAction]:
    if new_status == AppointmentStatus.COMPLETED and old_status != AppointmentStatus.COMPLETED:
        return RewardAction.CREDIT_SERVICE_REWARD
    return None


class AppointmentService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.store = ledger.store

    def create_appointment(self, request: CreateAppointmentRequest) -> Appointment:
        def work(txn: StoreTransaction) -> Appointment:
            if txn.get(USERS, request.customer_id) is None:
                raise NotFoundError(f"User {request.customer_id} not found")
            if txn.get(VENDORS, request.vendor_id) is None:
                raise NotFoundError(f"Vendor {request.vendor_id} not found")
            service_data = txn.get(SERVICES, request.service_id)
            if not service_data or service_data["vendor_id"] != request.vendor_id:
                raise NotFoundError(f"Service {request.service_id} not found for vendor {request.vendor_id}")

            if request.coins_to_use > 0:
                self.ledger.apply_entry(
                    txn, request.customer_id, -request.coins_to_use, BOOKING_DISCOUNT_DESCRIPTION
                )

            now = datetime.now(timezone.utc)
            appointment = Appointment(
                id=InMemoryDocumentStore.new_id(),
                customer_id=request.customer_id,
                vendor_id=request.vendor_id,
                service_id=request.service_id,
                date=request.date,
                status=request.status,
                total_price=Service(**service_data).price,
                coins_used=request.coins_to_use,
                notes=request.notes,
                created_at=now,
                updated_at=now,
            )
            txn.set(APPOINTMENTS, appointment.id, appointment.model_dump())
            return appointment

        appointment = self.ledger.run_transaction(work)
        logger.info(
            "appointment_created",
            appointment_id=appointment.id,
            customer_id=appointment.customer_id,
            coins_used=appointment.coins_used,
        )
        return appointment

    def get_appointment(self, appointment_id: str) -> Appointment:
        appointment_data = self.store.get(APPOINTMENTS, appointment_id)
        if not appointment_data:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return Appointment(**appointment_data)

    def list_customer_appointments(self, customer_id: str) -> list[Appointment]:
        return self._list("customer_id", customer_id)

    def list_vendor_appointments(self, vendor_id: str) -> list[Appointment]:
        return self._list("vendor_id", vendor_id)

    def update_appointment(self, appointment_id: str, request: UpdateAppointmentRequest) -> Appointment:
        def work(txn: StoreTransaction) -> tuple[Appointment, Optional[Transaction]]:
            appointment_data = txn.get(APPOINTMENTS, appointment_id)
            if not appointment_data:
                raise NotFoundError(f"Appointment {appointment_id} not found")

            old_status = AppointmentStatus(appointment_data["status"])
            new_status = request.status or old_status
            if not can_transition(old_status, new_status):
                raise InvalidStateTransitionError(
                    f"Cannot move appointment from {old_status.value} to {new_status.value}"
                )

            changes = request.model_dump(exclude_none=True)
            entry = None
            action = completion_reward_action(old_status, new_status)
            if action == RewardAction.CREDIT_SERVICE_REWARD and not appointment_data.get("reward_credited"):
                entry = self._grant_completion_reward(txn, appointment_data)
                changes.update(reward_credited=True, coins_rewarded=entry.amount if entry else 0)

            changes["updated_at"] = datetime.now(timezone.utc)
            return Appointment(**txn.update(APPOINTMENTS, appointment_id, changes)), entry

        appointment, entry = self.ledger.run_transaction(work)
        logger.info("appointment_updated", appointment_id=appointment_id, status=appointment.status.value)
        if entry:
            logger.info(
                "completion_reward_credited",
                appointment_id=appointment_id,
                customer_id=appointment.customer_id,
                amount=entry.amount,
            )
        return appointment

    def credit_for_completion(self, appointment_id: str) -> Optional[Transaction]:
        """Credit the service's coin reward for a completed appointment.

        Returns the new transaction, or None when the reward was already
        granted or the service carries no reward.
        """
        return self.complete_reward(appointment_id).transaction

    def complete_reward(self, appointment_id: str) -> CompletionRewardResponse:
        def work(txn: StoreTransaction) -> CompletionRewardResponse:
            appointment_data = txn.get(APPOINTMENTS, appointment_id)
            if not appointment_data:
                raise NotFoundError(f"Appointment {appointment_id} not found")
            status = AppointmentStatus(appointment_data["status"])
            if status != AppointmentStatus.COMPLETED:
                raise InvalidStateTransitionError(
                    f"Appointment {appointment_id} is {status.value}, not completed"
                )
            if appointment_data.get("reward_credited"):
                return CompletionRewardResponse(
                    appointment=Appointment(**appointment_data),
                    message="Reward already credited",
                )

            entry = self._grant_completion_reward(txn, appointment_data)
            updated = txn.update(APPOINTMENTS, appointment_id, {
                "reward_credited": True,
                "coins_rewarded": entry.amount if entry else 0,
                "updated_at": datetime.now(timezone.utc),
            })
            return CompletionRewardResponse(
                appointment=Appointment(**updated),
                transaction=entry,
                message="Reward credited" if entry else "Service has no coin reward",
            )

        response = self.ledger.run_transaction(work)
        if response.transaction:
            logger.info(
                "completion_reward_credited",
                appointment_id=appointment_id,
                customer_id=response.appointment.customer_id,
                amount=response.transaction.amount,
            )
        return response

    def add_feedback(self, appointment_id: str, request: FeedbackRequest) -> Appointment:
        def work(txn: StoreTransaction) -> Appointment:
            appointment_data = txn.get(APPOINTMENTS, appointment_id)
            if not appointment_data:
                raise NotFoundError(f"Appointment {appointment_id} not found")
            if AppointmentStatus(appointment_data["status"]) != AppointmentStatus.COMPLETED:
                raise FeedbackNotAllowedError("Feedback can only be left for completed appointments")
            if appointment_data.get("feedback"):
                raise FeedbackNotAllowedError(f"Appointment {appointment_id} already has feedback")

            vendor_id = appointment_data["vendor_id"]
            vendor_data = txn.get(VENDORS, vendor_id)
            if not vendor_data:
                raise NotFoundError(f"Vendor {vendor_id} not found")

            now = datetime.now(timezone.utc)
            count = vendor_data.get("rating_count", 0)
            rating = (vendor_data.get("rating", 0.0) * count + request.rating) / (count + 1)
            txn.update(VENDORS, vendor_id, {
                "rating": round(rating, 1),
                "rating_count": count + 1,
                "updated_at": now,
            })

            feedback = Feedback(rating=request.rating, comment=request.comment, created_at=now)
            return Appointment(**txn.update(APPOINTMENTS, appointment_id, {
                "feedback": feedback.model_dump(),
                "updated_at": now,
            }))

        appointment = self.ledger.run_transaction(work)
        logger.info("feedback_added", appointment_id=appointment_id, rating=request.rating)
        return appointment

    def _grant_completion_reward(self, txn: StoreTransaction, appointment_data: dict) -> Optional[Transaction]:
        service_data = txn.get(SERVICES, appointment_data["service_id"])
        if not service_data:
            raise NotFoundError(f"Service {appointment_data['service_id']} not found")

        service = Service(**service_data)
        if service.coin_reward <= 0:
            return None
        return self.ledger.apply_entry(
            txn,
            appointment_data["customer_id"],
            service.coin_reward,
            COMPLETION_REWARD_DESCRIPTION.format(service_name=service.name),
        )

    def _list(self, field: str, value: str) -> list[Appointment]:
        appointments = [Appointment(**a) for a in self.store.find(APPOINTMENTS, field, value)]
        appointments.sort(key=lambda a: a.date, reverse=True)
        return appointments
