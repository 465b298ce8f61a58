class LedgerServiceError(Exception):
    pass


class NotFoundError(LedgerServiceError):
    pass


class InvalidEntryError(LedgerServiceError):
    pass


class InsufficientFundsError(LedgerServiceError):
    def __init__(self, user_id: str, requested: int, available: int):
        self.user_id = user_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient coins for user {user_id}: requested {requested}, available {available}"
        )


class InvalidReferralCodeError(LedgerServiceError):
    pass


class SelfReferralError(LedgerServiceError):
    pass


class CodeAlreadyUsedError(LedgerServiceError):
    pass


class UserAlreadyExistsError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class FeedbackNotAllowedError(LedgerServiceError):
    pass


class ConcurrencyConflictError(LedgerServiceError):
    """Raised once the store transaction retry budget is exhausted.

    Safe for the caller to retry: nothing from the failed attempts was written.
    """
