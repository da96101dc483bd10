"""
Utility modules for loyalcard.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    bad_request,
    unauthorized,
    internal_error
)
from .exceptions import (
    LoyaltyError,
    ValidationError,
    NotFoundError,
    AlreadyTerminalError,
    NotEnrolledError,
    SignatureInvalidError,
    SignatureExpiredError,
    RateLimitExceededError,
    TransactionError,
    UnknownError,
    AuthorizationError,
    DuplicateError
)
from .transactions import run_in_transaction
