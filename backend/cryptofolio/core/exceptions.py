"""
Error taxonomy for portfolio operations.

Each error carries the HTTP status the API layer reports it with.
"""


class CryptofolioError(Exception):
    """Base class for domain errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(CryptofolioError):
    """Portfolio or holding does not exist or is not owned by the caller."""

    status_code = 404


class InvalidInputError(CryptofolioError):
    """Quantity or price failed validation. Raised before any mutation."""

    status_code = 400


class ConflictError(CryptofolioError):
    """A holding changed between read and write (optimistic check failed)."""

    status_code = 409


class UpstreamUnavailableError(CryptofolioError):
    """Price source failed or timed out. Absorbed by callers via fallback prices."""

    status_code = 503


class PersistenceError(CryptofolioError):
    """Store read/write failed. The operation was rolled back."""

    status_code = 500
