"""
Unit Tests for the Wallet Ledger

Tests cover:
1. New-user wallet bootstrap
2. Credit and debit flows
3. Balance / transaction log invariant
4. Concurrent debit safety
5. Retry budget for store conflicts
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from coinledger.errors import (
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidEntryError,
    NotFoundError,
    UserAlreadyExistsError,
)
from coinledger.models import CreateUserRequest, TransactionType, UserRole, VENDORS
from coinledger.service import (
    REFERRAL_CODE_ALPHABET,
    WELCOME_BONUS_DESCRIPTION,
    LedgerService,
)
from coinledger.settings import Settings
from coinledger.store import InMemoryDocumentStore, TransactionConflictError


# Test constants
CUSTOMER_ID = "customer-1"
VENDOR_USER_ID = "vendor-user-1"


def _service(**overrides) -> LedgerService:
    config = Settings(transaction_retry_max_wait_seconds=0, **overrides)
    return LedgerService(InMemoryDocumentStore(), config)


def _customer(service: LedgerService, user_id: str = CUSTOMER_ID):
    return service.create_user(CreateUserRequest(user_id=user_id, email=f"{user_id}@example.com"))


class TestWalletBootstrap:
    """Tests for wallet creation at signup."""

    def test_customer_gets_welcome_bonus(self):
        """Test that a new customer starts with one 10 coin credit."""
        service = _service()

        user = _customer(service)

        assert user.wallet.coins == 10
        assert len(user.wallet.transactions) == 1
        welcome = user.wallet.transactions[0]
        assert welcome.amount == 10
        assert welcome.type == TransactionType.CREDIT
        assert welcome.description == WELCOME_BONUS_DESCRIPTION

    def test_vendor_wallet_starts_empty(self):
        """Test that a vendor signup gets no welcome bonus."""
        service = _service()

        user = service.create_user(CreateUserRequest(
            user_id=VENDOR_USER_ID, email="shop@example.com", role=UserRole.VENDOR
        ))

        assert user.wallet.coins == 0
        assert user.wallet.transactions == []

    def test_vendor_signup_creates_vendor_profile(self):
        """Test that a vendor signup also stores a vendor profile."""
        service = _service()

        service.create_user(CreateUserRequest(
            user_id=VENDOR_USER_ID, email="shop@example.com", role=UserRole.VENDOR
        ))

        vendors = service.store.find(VENDORS, "user_id", VENDOR_USER_ID)
        assert len(vendors) == 1
        assert vendors[0]["verified"] is False
        assert vendors[0]["email"] == "shop@example.com"

    def test_referral_code_format(self):
        """Test that every user gets an 8 character code from the code alphabet."""
        service = _service()

        codes = {_customer(service, f"user-{i}").referral_code for i in range(20)}

        assert len(codes) == 20
        for code in codes:
            assert len(code) == 8
            assert set(code) <= set(REFERRAL_CODE_ALPHABET)

    def test_existing_user_not_bootstrapped_again(self):
        """Test that creating the same user twice fails and keeps one bonus."""
        service = _service()
        _customer(service)

        with pytest.raises(UserAlreadyExistsError):
            _customer(service)

        assert service.get_wallet(CUSTOMER_ID).coins == 10


class TestCreditDebitFlow:
    """Tests for the credit and debit operations."""

    def test_credit_appends_transaction(self):
        """Test that a credit adds coins and one log entry."""
        service = _service()
        _customer(service)

        entry = service.credit(CUSTOMER_ID, 7, "Promotion bonus")

        wallet = service.get_wallet(CUSTOMER_ID)
        assert wallet.coins == 17
        assert wallet.transactions[-1].id == entry.id
        assert entry.type == TransactionType.CREDIT
        assert entry.amount == 7

    def test_debit_reduces_balance(self):
        """Test that a debit removes coins and logs a debit entry."""
        service = _service()
        _customer(service)

        entry = service.debit(CUSTOMER_ID, 4, "Manual adjustment")

        wallet = service.get_wallet(CUSTOMER_ID)
        assert wallet.coins == 6
        assert entry.type == TransactionType.DEBIT
        assert entry.amount == 4

    def test_debit_whole_balance(self):
        """Test that a debit may bring the balance to exactly zero."""
        service = _service()
        _customer(service)

        service.debit(CUSTOMER_ID, 10, "Spend everything")

        assert service.get_wallet(CUSTOMER_ID).coins == 0

    def test_overdraw_rejected_without_log_entry(self):
        """Test that an overdrawing debit fails before anything is written."""
        service = _service()
        _customer(service)

        with pytest.raises(InsufficientFundsError) as exc_info:
            service.debit(CUSTOMER_ID, 11, "Too much")

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        wallet = service.get_wallet(CUSTOMER_ID)
        assert wallet.coins == 10
        assert len(wallet.transactions) == 1

    @pytest.mark.parametrize("amount", [0, -5, 2.5, True])
    def test_invalid_amount_rejected(self, amount):
        """Test that non-positive or non-integer amounts are rejected."""
        service = _service()
        _customer(service)

        with pytest.raises(InvalidEntryError):
            service.credit(CUSTOMER_ID, amount, "Bad amount")

    def test_blank_description_rejected(self):
        """Test that an empty description is rejected."""
        service = _service()
        _customer(service)

        with pytest.raises(InvalidEntryError):
            service.debit(CUSTOMER_ID, 1, "   ")

    def test_unknown_user(self):
        """Test that crediting a missing user fails with NotFoundError."""
        service = _service()

        with pytest.raises(NotFoundError):
            service.credit("nobody", 5, "Ghost")


class TestBalanceInvariant:
    """Tests that the balance always matches the transaction log."""

    def test_balance_matches_log_after_mixed_operations(self):
        """Test the invariant across a sequence of credits and debits."""
        service = _service()
        _customer(service)

        for amount in (5, 3, 12):
            service.credit(CUSTOMER_ID, amount, "Credit")
        for amount in (4, 20, 50):
            try:
                service.debit(CUSTOMER_ID, amount, "Debit")
            except InsufficientFundsError:
                pass

        audit = service.reconcile(CUSTOMER_ID)
        # 10 + 5 + 3 + 12 - 4 - 20 = 6, the 50 debit is rejected
        assert audit.balance == 6
        assert audit.ledger_total == 6
        assert audit.consistent is True
        assert audit.transaction_count == 6

    def test_history_newest_first(self):
        """Test history ordering and pagination."""
        service = _service()
        _customer(service)
        service.credit(CUSTOMER_ID, 1, "first")
        service.credit(CUSTOMER_ID, 2, "second")

        history = service.get_wallet_history(CUSTOMER_ID, limit=2)

        assert history.total_count == 3
        assert history.current_balance == 13
        assert [t.description for t in history.transactions] == ["second", "first"]


class TestConcurrentDebits:
    """Tests for debits racing on the same wallet."""

    def test_two_debits_of_eight_against_ten(self):
        """Test that exactly one of two racing debits succeeds."""
        service = _service()
        _customer(service)
        barrier = threading.Barrier(2)

        def spend():
            barrier.wait()
            try:
                service.debit(CUSTOMER_ID, 8, "Racing debit")
                return "ok"
            except InsufficientFundsError:
                return "insufficient"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = sorted(pool.map(lambda _: spend(), range(2)))

        assert results == ["insufficient", "ok"]
        audit = service.reconcile(CUSTOMER_ID)
        assert audit.balance == 2
        assert audit.consistent is True

    def test_many_small_debits_never_overdraw(self):
        """Test that twenty racing one-coin debits drain exactly ten coins."""
        service = _service(transaction_max_attempts=50)
        _customer(service)
        barrier = threading.Barrier(20)

        def spend():
            barrier.wait()
            try:
                service.debit(CUSTOMER_ID, 1, "Racing debit")
                return True
            except InsufficientFundsError:
                return False

        with ThreadPoolExecutor(max_workers=20) as pool:
            results = list(pool.map(lambda _: spend(), range(20)))

        assert results.count(True) == 10
        audit = service.reconcile(CUSTOMER_ID)
        assert audit.balance == 0
        assert audit.consistent is True


class _AlwaysConflictingStore(InMemoryDocumentStore):
    def __init__(self):
        super().__init__()
        self.fail_commits = False
        self.commit_attempts = 0

    def _commit(self, txn):
        if self.fail_commits:
            self.commit_attempts += 1
            raise TransactionConflictError("simulated conflict")
        super()._commit(txn)


class TestRetryBudget:
    """Tests for retrying store conflicts."""

    def test_conflicts_exhaust_into_concurrency_error(self):
        """Test that persistent conflicts surface as ConcurrencyConflictError."""
        store = _AlwaysConflictingStore()
        service = LedgerService(store, Settings(transaction_max_attempts=3, transaction_retry_max_wait_seconds=0))
        _customer(service)
        store.fail_commits = True

        with pytest.raises(ConcurrencyConflictError):
            service.credit(CUSTOMER_ID, 5, "Never lands")

        assert store.commit_attempts == 3
        assert service.get_wallet(CUSTOMER_ID).coins == 10

    def test_business_errors_not_retried(self):
        """Test that InsufficientFundsError is raised on the first attempt."""
        store = _AlwaysConflictingStore()
        service = LedgerService(store, Settings(transaction_max_attempts=3, transaction_retry_max_wait_seconds=0))
        _customer(service)
        store.fail_commits = True

        with pytest.raises(InsufficientFundsError):
            service.debit(CUSTOMER_ID, 99, "Too much")

        assert store.commit_attempts == 0


class TestConfiguredAmounts:
    """Tests for coin amounts read from settings."""

    def test_zero_welcome_bonus(self):
        """Test that a disabled welcome bonus leaves an empty wallet."""
        service = _service(welcome_bonus_coins=0)

        user = _customer(service)

        assert user.wallet.coins == 0
        assert user.wallet.transactions == []

    def test_environment_override(self, monkeypatch):
        """Test that COINLEDGER_ variables override defaults."""
        monkeypatch.setenv("COINLEDGER_REFERRER_BONUS_COINS", "50")
        monkeypatch.setenv("COINLEDGER_TRANSACTION_MAX_ATTEMPTS", "2")

        config = Settings()

        assert config.referrer_bonus_coins == 50
        assert config.transaction_max_attempts == 2
        assert config.referred_bonus_coins == 15
