"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "DOMAIN_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(DomainException):
    """Malformed input: bad band ranges, negative amounts, missing reason"""

    code = "VALIDATION"


class NotFoundError(DomainException):
    """Unknown rule, plan, investment, withdrawal, payout or wallet"""

    code = "NOT_FOUND"


class ConflictError(DomainException):
    """Operation clashes with current state (overlap, duplicate, bad transition)"""

    code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """State machine has no edge for the requested event"""

    code = "INVALID_TRANSITION"


class InsufficientFundsError(DomainException):
    """Wallet invariant 0 <= locked <= balance would be violated"""

    code = "INSUFFICIENT_FUNDS"


class InsufficientLockedError(InsufficientFundsError):
    """Not enough locked funds to unlock or consume"""

    code = "INSUFFICIENT_LOCKED"


class OutOfRangeMonth(DomainException):
    """No rate band covers the requested month"""

    code = "OUT_OF_RANGE_MONTH"


class ExternalRailError(DomainException):
    """Payment rail returned an error or is unavailable"""

    code = "EXTERNAL_RAIL"
