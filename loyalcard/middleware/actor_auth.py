"""
Actor identification middleware.

Authentication happens upstream; the gateway forwards the authenticated
identity in headers:

- X-Account-ID: the signed-in account (customer or business staff)
- X-Business-ID: the business the caller acts for

The decorators parse these into ``g.account_id`` / ``g.business_id`` and
answer 401 when they are missing or malformed.
"""
from functools import wraps
from typing import Optional

from flask import g, request

from ..extensions import db
from ..models import Business
from ..utils.errors import unauthorized

ACCOUNT_HEADER = 'X-Account-ID'
BUSINESS_HEADER = 'X-Business-ID'


def _header_id(name: str) -> Optional[int]:
    value = request.headers.get(name, '').strip()
    if not value.isdigit():
        return None
    value = int(value)
    return value if value > 0 else None


def require_account(f):
    """
    Require an authenticated account.

    Usage:
        @require_account
        def my_endpoint():
            account_id = g.account_id
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        account_id = _header_id(ACCOUNT_HEADER)
        if account_id is None:
            return unauthorized(f'Missing or invalid {ACCOUNT_HEADER} header')

        g.account_id = account_id
        return f(*args, **kwargs)

    return decorated_function


def require_business(f):
    """
    Require a caller acting for a known business.

    Sets g.business_id and g.business. g.account_id is the X-Account-ID of the
    staff member when sent, otherwise the business id.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        business_id = _header_id(BUSINESS_HEADER)
        if business_id is None:
            return unauthorized(f'Missing or invalid {BUSINESS_HEADER} header')

        business = db.session.get(Business, business_id)
        if business is None:
            return unauthorized('Unknown business')

        g.business_id = business.id
        g.business = business
        g.account_id = _header_id(ACCOUNT_HEADER) or business.id
        return f(*args, **kwargs)

    return decorated_function
