"""
Custom exceptions for loyalcard business logic.

Each exception carries a stable ``code`` a client can branch on and the HTTP
status the API layer answers with. Messages are safe to show to callers;
internal detail belongs in the server log only.
"""


class LoyaltyError(Exception):
    """Base exception for all loyalcard business logic errors."""

    status_code = 500

    def __init__(self, message: str, code: str = "LOYALTY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(LoyaltyError):
    """Invalid input data."""

    status_code = 400

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class NotFoundError(LoyaltyError):
    """Resource not found."""

    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with ID {identifier} not found"
        code = resource.upper().replace(' ', '_')
        super().__init__(message, f"{code}_NOT_FOUND")


class AlreadyTerminalError(LoyaltyError):
    """
    Approval request was already resolved with a different decision.

    Not a failure of the ledger: ``outcome`` holds the result produced when the
    request was first resolved.
    """

    status_code = 409

    def __init__(self, request_id: str, status: str, outcome=None):
        self.request_id = request_id
        self.status = status
        self.outcome = outcome
        message = f"Approval request {request_id} is already {status.lower()}"
        super().__init__(message, "ALREADY_TERMINAL")


class NotEnrolledError(LoyaltyError):
    """Points award attempted without an active enrollment."""

    status_code = 404

    def __init__(self, customer_id=None, program_id=None):
        self.customer_id = customer_id
        self.program_id = program_id
        message = "Customer is not enrolled in this program"
        if customer_id is not None and program_id is not None:
            message = f"Customer {customer_id} is not enrolled in program {program_id}"
        super().__init__(message, "NOT_ENROLLED")


class SignatureInvalidError(LoyaltyError):
    """QR payload failed integrity verification (tampered or malformed)."""

    status_code = 401

    def __init__(self, message: str = "QR code signature is invalid"):
        super().__init__(message, "SIGNATURE_INVALID")


class SignatureExpiredError(LoyaltyError):
    """QR payload is authentic but older than the validity period."""

    status_code = 410

    def __init__(self, age_seconds: int = None):
        self.age_seconds = age_seconds
        super().__init__("QR code has expired, please rescan a fresh code", "SIGNATURE_EXPIRED")


class RateLimitExceededError(LoyaltyError):
    """Scanning actor exceeded the award rate limit."""

    status_code = 429

    def __init__(self, actor: str, limit: int, retry_after: int):
        self.actor = actor
        self.limit = limit
        self.retry_after = retry_after
        message = f"Rate limit exceeded ({limit} per window). Retry in {retry_after}s"
        super().__init__(message, "RATE_LIMIT_EXCEEDED")


class TransactionError(LoyaltyError):
    """Transaction retries exhausted."""

    status_code = 500

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} failed after {attempts} attempts", "TRANSACTION_FAILED")


class UnknownError(LoyaltyError):
    """Unexpected failure; details are logged server side only."""

    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(message, "UNKNOWN_ERROR")


class AuthorizationError(LoyaltyError):
    """Caller not authorized for this operation."""

    status_code = 403

    def __init__(self, message: str = "Not authorized for this operation"):
        super().__init__(message, "AUTHORIZATION_ERROR")


class DuplicateError(LoyaltyError):
    """Resource already exists."""

    status_code = 409

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} already exists"
        if identifier:
            message = f"{resource} with {identifier} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")
