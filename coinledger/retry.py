"""Run a unit of work inside a store transaction, retrying on conflicts."""

from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .errors import ConcurrencyConflictError
from .logging_config import get_logger
from .settings import Settings, settings
from .store import InMemoryDocumentStore, StoreTransaction, TransactionConflictError

T = TypeVar("T")

logger = get_logger(__name__)


def _log_conflict(retry_state: RetryCallState) -> None:
    logger.debug("transaction_conflict_retry", attempt=retry_state.attempt_number)


def _attempt(store: InMemoryDocumentStore, work: Callable[[StoreTransaction], T]) -> T:
    with store.transaction() as txn:
        return work(txn)


def run_transaction(
    store: InMemoryDocumentStore,
    work: Callable[[StoreTransaction], T],
    config: Settings = settings,
) -> T:
    """Apply `work` atomically.

    Only TransactionConflictError is retried; any other exception raised by
    `work` aborts the transaction and propagates unchanged.
    """
    retrying = Retrying(
        stop=stop_after_attempt(config.transaction_max_attempts),
        wait=wait_random_exponential(multiplier=0.005, max=config.transaction_retry_max_wait_seconds),
        retry=retry_if_exception_type(TransactionConflictError),
        before_sleep=_log_conflict,
        reraise=True,
    )
    try:
        return retrying(_attempt, store, work)
    except TransactionConflictError as e:
        logger.error("transaction_retries_exhausted", attempts=config.transaction_max_attempts)
        raise ConcurrencyConflictError("Too many concurrent updates, please try again") from e
