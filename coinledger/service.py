import secrets
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar
from uuid import uuid4

from .errors import (
    CodeAlreadyUsedError,
    InsufficientFundsError,
    InvalidEntryError,
    InvalidReferralCodeError,
    LedgerServiceError,
    NotFoundError,
    SelfReferralError,
    UserAlreadyExistsError,
)
from .logging_config import get_logger
from .models import (
    USERS,
    CreateUserRequest,
    ReferralResult,
    Transaction,
    TransactionType,
    UserAccount,
    UserRole,
    Wallet,
    WalletAudit,
    WalletHistoryResponse,
)
from .retry import run_transaction
from .settings import Settings, settings
from .store import InMemoryDocumentStore, StoreTransaction
from .vendors import stage_vendor_profile

T = TypeVar("T")

logger = get_logger(__name__)

WELCOME_BONUS_DESCRIPTION = "Welcome bonus for new member"
REFERRER_REWARD_DESCRIPTION = "Referral reward"
REFERRED_BONUS_DESCRIPTION = "Referral signup bonus"

# Uppercase letters and digits without the easily confused 0, O, 1 and I
REFERRAL_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_referral_code(length: int = 8) -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))


def _validate_entry(amount: int, description: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidEntryError(f"Amount must be a positive integer, got {amount!r}")
    if not description or not description.strip():
        raise InvalidEntryError("Description must not be empty")


class LedgerService:
    def __init__(self, store: Optional[InMemoryDocumentStore] = None, config: Optional[Settings] = None):
        self.store = store or InMemoryDocumentStore()
        self.config = config or settings

    def run_transaction(self, work: Callable[[StoreTransaction], T]) -> T:
        return run_transaction(self.store, work, self.config)

    def apply_entry(self, txn: StoreTransaction, user_id: str, signed_amount: int, description: str) -> Transaction:
        """Append one transaction to the user's wallet and move the balance with it.

        This is the only place a balance changes. It must run inside an open
        store transaction so the balance read here is the one the commit is
        validated against.
        """
        _validate_entry(abs(signed_amount), description)

        user_data = txn.get(USERS, user_id)
        if not user_data:
            raise NotFoundError(f"User {user_id} not found")

        wallet = Wallet(**user_data.get("wallet", {}))
        new_balance = wallet.coins + signed_amount
        if new_balance < 0:
            raise InsufficientFundsError(user_id, -signed_amount, wallet.coins)

        entry = Transaction(
            id=uuid4().hex,
            amount=abs(signed_amount),
            type=TransactionType.CREDIT if signed_amount > 0 else TransactionType.DEBIT,
            description=description.strip(),
            timestamp=datetime.now(timezone.utc),
        )
        wallet.coins = new_balance
        wallet.transactions.append(entry)
        txn.update(USERS, user_id, {"wallet": wallet.model_dump()})
        return entry

    def credit(self, user_id: str, amount: int, description: str) -> Transaction:
        _validate_entry(amount, description)
        entry = self.run_transaction(lambda txn: self.apply_entry(txn, user_id, amount, description))
        logger.info("wallet_credited", user_id=user_id, amount=amount, transaction_id=entry.id)
        return entry

    def debit(self, user_id: str, amount: int, description: str) -> Transaction:
        _validate_entry(amount, description)
        try:
            entry = self.run_transaction(lambda txn: self.apply_entry(txn, user_id, -amount, description))
        except InsufficientFundsError as e:
            logger.warning("wallet_debit_rejected", user_id=user_id, requested=e.requested, available=e.available)
            raise
        logger.info("wallet_debited", user_id=user_id, amount=amount, transaction_id=entry.id)
        return entry

    def get_user(self, user_id: str) -> UserAccount:
        user_data = self.store.get(USERS, user_id)
        if not user_data:
            raise NotFoundError(f"User {user_id} not found")
        return UserAccount(**user_data)

    def get_wallet(self, user_id: str) -> Wallet:
        return self.get_user(user_id).wallet

    def get_wallet_history(self, user_id: str, limit: int = 50, offset: int = 0) -> WalletHistoryResponse:
        wallet = self.get_wallet(user_id)
        newest_first = list(reversed(wallet.transactions))
        return WalletHistoryResponse(
            user_id=user_id,
            transactions=newest_first[offset:offset + limit],
            total_count=len(newest_first),
            current_balance=wallet.coins,
        )

    def reconcile(self, user_id: str) -> WalletAudit:
        wallet = self.get_wallet(user_id)
        ledger_total = wallet.ledger_total()
        audit = WalletAudit(
            user_id=user_id,
            balance=wallet.coins,
            ledger_total=ledger_total,
            transaction_count=len(wallet.transactions),
            consistent=wallet.coins == ledger_total,
        )
        if not audit.consistent:
            logger.error("wallet_balance_drift", user_id=user_id, balance=wallet.coins, ledger_total=ledger_total)
        return audit

    def create_user(self, request: CreateUserRequest) -> UserAccount:
        def work(txn: StoreTransaction) -> UserAccount:
            if txn.get(USERS, request.user_id) is not None:
                raise UserAlreadyExistsError(f"User {request.user_id} already exists")

            now = datetime.now(timezone.utc)
            wallet = Wallet()
            if request.role != UserRole.VENDOR and self.config.welcome_bonus_coins > 0:
                wallet = Wallet(
                    coins=self.config.welcome_bonus_coins,
                    transactions=[Transaction(
                        id=uuid4().hex,
                        amount=self.config.welcome_bonus_coins,
                        type=TransactionType.CREDIT,
                        description=WELCOME_BONUS_DESCRIPTION,
                        timestamp=now,
                    )],
                )

            user = UserAccount(
                id=request.user_id,
                email=request.email,
                role=request.role,
                first_name=request.first_name,
                last_name=request.last_name,
                phone=request.phone,
                license_plate=request.license_plate,
                created_at=now,
                referral_code=self._unique_referral_code(txn),
                wallet=wallet,
            )
            txn.set(USERS, user.id, user.model_dump())

            if user.role == UserRole.VENDOR:
                stage_vendor_profile(txn, user.id, now, {"email": user.email})
            return user

        user = self.run_transaction(work)
        logger.info("user_created", user_id=user.id, role=user.role.value, coins=user.wallet.coins)
        return user

    def apply_referral_code(self, user_id: str, code: str) -> ReferralResult:
        normalized = (code or "").strip().upper()
        if not normalized:
            raise InvalidReferralCodeError("Referral code is empty")

        def work(txn: StoreTransaction) -> ReferralResult:
            user_data = txn.get(USERS, user_id)
            if not user_data:
                raise NotFoundError(f"User {user_id} not found")

            referrer_data = txn.find_one(USERS, "referral_code", normalized)
            if not referrer_data:
                raise InvalidReferralCodeError(f"Invalid referral code {normalized}")
            referrer_id = referrer_data["id"]
            if referrer_id == user_id:
                raise SelfReferralError("You cannot use your own referral code")
            if user_data.get("used_referral_code"):
                raise CodeAlreadyUsedError(f"User {user_id} has already used a referral code")

            referrer_entry = self.apply_entry(
                txn, referrer_id, self.config.referrer_bonus_coins, REFERRER_REWARD_DESCRIPTION
            )
            referred_entry = self.apply_entry(
                txn, user_id, self.config.referred_bonus_coins, REFERRED_BONUS_DESCRIPTION
            )
            referrer_data = txn.get(USERS, referrer_id)
            txn.update(USERS, referrer_id, {"referral_count": referrer_data.get("referral_count", 0) + 1})
            txn.update(USERS, user_id, {"used_referral_code": normalized})

            return ReferralResult(
                referrer_id=referrer_id,
                referred_id=user_id,
                code=normalized,
                referrer_transaction=referrer_entry,
                referred_transaction=referred_entry,
                message="Referral code applied successfully",
            )

        try:
            result = self.run_transaction(work)
        except LedgerServiceError as e:
            logger.info("referral_rejected", user_id=user_id, code=normalized, reason=type(e).__name__)
            raise
        logger.info("referral_applied", referrer_id=result.referrer_id, referred_id=user_id, code=normalized)
        return result

    def _unique_referral_code(self, txn: StoreTransaction) -> str:
        for _ in range(10):
            code = generate_referral_code(self.config.referral_code_length)
            if txn.find_one(USERS, "referral_code", code) is None:
                return code
        raise LedgerServiceError("Could not generate a unique referral code")
