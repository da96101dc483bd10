"""
Middleware package for loyalcard.
"""
from .actor_auth import require_account, require_business

__all__ = [
    'require_account',
    'require_business',
]
