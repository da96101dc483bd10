"""
Business logic services for loyalcard.
"""
from .signature_service import SignatureService
from .notification_service import NotificationService
from .enrollment_service import EnrollmentService
from .points_service import PointsService

__all__ = [
    'SignatureService',
    'NotificationService',
    'EnrollmentService',
    'PointsService'
]
