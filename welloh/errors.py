"""Error taxonomy shared by the domain, storage and service layers."""


class WellohError(Exception):
    """Base class for recoverable application errors.

    ``message`` is safe to show to the end user.
    """

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WellohError):
    """Bad user input (non-numeric share count, unknown condition, ...)."""

    kind = "validation_error"


class InsufficientFunds(WellohError):
    kind = "insufficient_funds"


class InsufficientShares(WellohError):
    kind = "insufficient_shares"


class AuthenticationRequired(WellohError):
    kind = "authentication_required"


class AccessDenied(WellohError):
    kind = "access_denied"


class LookupFailure(WellohError):
    """Price or analysis service failed; retryable by the user."""

    kind = "lookup_failure"


class RateLimited(LookupFailure):
    """Upstream quota exhausted. Distinct so the UI can tell users to wait."""

    kind = "rate_limited"


class StoreError(WellohError):
    """Account store failed; cached session state is left untouched."""

    kind = "store_error"
