"""
Database models for the loyalcard ledger.
Customers, programs, enrollments, cards, audit entries and notifications.
"""
from .account import (
    Account,
    AccountType,
    Customer,
    Business,
    CustomerBusinessRelationship,
    RelationshipStatus,
)
from .program import LoyaltyProgram
from .enrollment import (
    Enrollment,
    EnrollmentStatus,
    LoyaltyCard,
    CardTier,
    CardActivity,
    ActivityType,
    ImmutableAuditEntryError,
)
from .notification import (
    Notification,
    NotificationKind,
    Recipient,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalRequestType,
)

__all__ = [
    # Identities
    'Account',
    'AccountType',
    'Customer',
    'Business',
    'CustomerBusinessRelationship',
    'RelationshipStatus',
    # Programs
    'LoyaltyProgram',
    # Enrollment & cards
    'Enrollment',
    'EnrollmentStatus',
    'LoyaltyCard',
    'CardTier',
    'CardActivity',
    'ActivityType',
    'ImmutableAuditEntryError',
    # Notifications & approvals
    'Notification',
    'NotificationKind',
    'Recipient',
    'ApprovalRequest',
    'ApprovalStatus',
    'ApprovalRequestType',
]
