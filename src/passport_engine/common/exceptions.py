"""Passport-Engine exception hierarchy.

Services raise these; the HTTP layer maps ``code`` to a status in one place
(``passport_engine.app``). ``retryable`` tells a caller whether repeating the
same call can succeed once the stated window or condition changes.
"""


class PassportError(Exception):
    """Base exception for all Passport errors."""

    def __init__(self, message: str = "", code: str = "passport_error", retryable: bool = False):
        self.message = message
        self.code = code
        self.retryable = retryable
        super().__init__(message)


class RateLimitExceededError(PassportError):
    """Raised when a per-identity request window is exhausted."""

    def __init__(self, message: str = "Too many requests. Please try again later."):
        super().__init__(message, code="rate_limit_exceeded", retryable=True)


class InvalidOrExpiredOtpError(PassportError):
    """Raised for any one-time code failure. The message never says why."""

    def __init__(self, message: str = "Invalid or expired code"):
        super().__init__(message, code="invalid_otp")


class UnauthorizedError(PassportError):
    """Raised when a session or token is invalid, expired or revoked."""

    def __init__(self, message: str = "Invalid or expired session"):
        super().__init__(message, code="unauthorized")


class ForbiddenError(PassportError):
    """Raised when an authenticated caller is not entitled to the action."""

    def __init__(self, message: str = "Not permitted"):
        super().__init__(message, code="forbidden")


class NotFoundError(PassportError):
    """Raised when an identity or record reference does not resolve."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="not_found")


class SelfVerificationError(PassportError):
    """Raised when a user tries to verify a transaction with themselves."""

    def __init__(self, message: str = "Cannot verify a transaction with yourself"):
        super().__init__(message, code="self_verification")


class SelfReportError(PassportError):
    """Raised when a user tries to report themselves."""

    def __init__(self, message: str = "Cannot report yourself"):
        super().__init__(message, code="self_report")


class ValidationError(PassportError):
    """Raised for malformed input. Nothing is written before this is raised."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, code="validation_error")


class InvalidStateError(PassportError):
    """Raised when an operation is not valid for the current lifecycle state."""

    def __init__(self, message: str = "Operation not valid in current state"):
        super().__init__(message, code="invalid_state")


class DuplicateEvidenceError(PassportError):
    """Raised when evidence with the same content hash already exists."""

    def __init__(self, message: str = "This evidence has already been submitted"):
        super().__init__(message, code="duplicate_evidence")


class FraudDetectedError(PassportError):
    """Soft fraud outcome.

    Never raised to block a caller; it is reported as a warning alongside the
    result of the action that triggered it.
    """

    def __init__(self, message: str = "Fraud indicators detected"):
        super().__init__(message, code="fraud_detected")


class DeliveryFailedError(PassportError):
    """Raised when an outbound message could not be delivered."""

    def __init__(self, message: str = "Could not deliver message. Please try again."):
        super().__init__(message, code="delivery_failed", retryable=True)
