"""
Loyalty Coin Ledger for the Car Wash Marketplace

This package provides:
- Per-user coin wallets with an append-only transaction log
- Credit and debit flows that never overdraw a wallet
- Referral codes with one-time bonuses for both parties
- Welcome bonus on customer signup
- Coin rewards on appointment completion, granted once
- Coin-funded booking discounts
- Vendor catalog: categories, services and time-boxed offers
"""

from .models import (
    AppointmentStatus,
    Transaction,
    TransactionType,
    UserAccount,
    Wallet,
)
from .service import LedgerService
from .appointments import AppointmentService, RewardAction, completion_reward_action
from .vendors import VendorService
from .store import InMemoryDocumentStore

__all__ = [
    "AppointmentStatus",
    "Transaction",
    "TransactionType",
    "UserAccount",
    "Wallet",
    "LedgerService",
    "AppointmentService",
    "RewardAction",
    "completion_reward_action",
    "VendorService",
    "InMemoryDocumentStore",
]
