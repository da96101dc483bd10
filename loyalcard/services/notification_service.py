"""
Notification Service for loyalcard.

Single write path for Notification rows. Every notification kind has its own
payload dataclass and its own title/message template, so the dedup key and the
rendered text are fixed per kind instead of being assembled ad hoc by callers.

DEDUPLICATION:
Before inserting, look for a notification with the same kind and subject
(customer, business, program) created within NOTIFICATION_DEDUP_SECONDS. If
one exists and has not been actioned, return its id instead of inserting.
Only the notification is merged; the ledger change that triggered it has
already been applied by the caller.

Kinds and recipients:
- ENROLLMENT_REQUEST   -> customer (requires action)
- ENROLLMENT_ACCEPTED  -> business
- ENROLLMENT_REJECTED  -> business
- ENROLLMENT_DECLINED  -> customer (confirmation of their decline)
- CARD_READY           -> customer
- POINTS_AWARDED       -> customer
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import ClassVar, Dict, Optional, Type

from flask import current_app

from ..extensions import db
from ..models import Notification, NotificationKind, Recipient
from ..utils.exceptions import AuthorizationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# ==================== Subjects & payloads ====================

@dataclass(frozen=True)
class NotificationSubject:
    """The (customer, business, program) triple a notification is about."""
    customer_id: int
    business_id: int
    program_id: int


@dataclass(frozen=True)
class NotificationPayload:
    """Base for per-kind payloads."""
    kind: ClassVar[NotificationKind]
    recipient: ClassVar[Recipient]
    requires_action: ClassVar[bool] = False
    title_template: ClassVar[str]
    message_template: ClassVar[str]

    def render(self) -> Dict[str, str]:
        values = self.template_values()
        return {
            'title': self.title_template.format(**values),
            'message': self.message_template.format(**values),
        }

    def template_values(self) -> Dict[str, object]:
        return asdict(self)

    def reference_id(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class EnrollmentRequestPayload(NotificationPayload):
    kind: ClassVar[NotificationKind] = NotificationKind.ENROLLMENT_REQUEST
    recipient: ClassVar[Recipient] = Recipient.CUSTOMER
    requires_action: ClassVar[bool] = True
    title_template: ClassVar[str] = 'Program Enrollment Request'
    message_template: ClassVar[str] = '{business_name} would like to enroll you in {program_name}. {note}'

    business_name: str
    program_name: str
    approval_request_id: str
    note: str = ''

    def render(self) -> Dict[str, str]:
        rendered = super().render()
        rendered['message'] = rendered['message'].strip()
        return rendered

    def reference_id(self) -> Optional[str]:
        return self.approval_request_id


@dataclass(frozen=True)
class EnrollmentOutcomePayload(NotificationPayload):
    """Business-facing answer to an invitation; accept and decline are separate kinds."""
    recipient: ClassVar[Recipient] = Recipient.BUSINESS

    customer_name: str
    program_name: str
    approval_request_id: str

    def reference_id(self) -> Optional[str]:
        return self.approval_request_id


@dataclass(frozen=True)
class EnrollmentAcceptedPayload(EnrollmentOutcomePayload):
    kind: ClassVar[NotificationKind] = NotificationKind.ENROLLMENT_ACCEPTED
    title_template: ClassVar[str] = 'Customer Joined Program'
    message_template: ClassVar[str] = '{customer_name} has joined your {program_name}.'


@dataclass(frozen=True)
class EnrollmentRejectedPayload(EnrollmentOutcomePayload):
    kind: ClassVar[NotificationKind] = NotificationKind.ENROLLMENT_REJECTED
    title_template: ClassVar[str] = 'Enrollment Declined'
    message_template: ClassVar[str] = '{customer_name} has declined to join your {program_name}.'


@dataclass(frozen=True)
class EnrollmentDeclinedPayload(NotificationPayload):
    """Confirmation to the customer that their decline was recorded."""
    kind: ClassVar[NotificationKind] = NotificationKind.ENROLLMENT_DECLINED
    recipient: ClassVar[Recipient] = Recipient.CUSTOMER
    title_template: ClassVar[str] = 'Enrollment Declined'
    message_template: ClassVar[str] = 'You declined to join {program_name} by {business_name}.'

    program_name: str
    business_name: str
    approval_request_id: str

    def reference_id(self) -> Optional[str]:
        return self.approval_request_id


@dataclass(frozen=True)
class CardReadyPayload(NotificationPayload):
    kind: ClassVar[NotificationKind] = NotificationKind.CARD_READY
    recipient: ClassVar[Recipient] = Recipient.CUSTOMER
    title_template: ClassVar[str] = 'Your {program_name} card is ready'
    message_template: ClassVar[str] = 'Welcome to {program_name} by {business_name}! Your card number is {card_number}.'

    card_id: int
    card_number: str
    program_name: str
    business_name: str

    def reference_id(self) -> Optional[str]:
        return str(self.card_id)


@dataclass(frozen=True)
class PointsAwardedPayload(NotificationPayload):
    kind: ClassVar[NotificationKind] = NotificationKind.POINTS_AWARDED
    recipient: ClassVar[Recipient] = Recipient.CUSTOMER
    title_template: ClassVar[str] = 'Points Added'
    message_template: ClassVar[str] = 'You earned {points} points in {program_name}. New balance: {new_balance}.'

    card_id: int
    points: int
    new_balance: int
    program_name: str
    source: str

    def reference_id(self) -> Optional[str]:
        return str(self.card_id)


PAYLOAD_TYPES: Dict[NotificationKind, Type[NotificationPayload]] = {
    payload_type.kind: payload_type
    for payload_type in (
        EnrollmentRequestPayload,
        EnrollmentAcceptedPayload,
        EnrollmentRejectedPayload,
        EnrollmentDeclinedPayload,
        CardReadyPayload,
        PointsAwardedPayload,
    )
}


# ==================== Service ====================

class NotificationService:
    """
    Deduplicating writer for notifications plus recipient-scoped reads.

    Writes use the caller's session and never commit: the caller's transaction
    decides whether the row is kept.
    """

    def __init__(self, dedup_seconds: int = None):
        if dedup_seconds is None:
            dedup_seconds = current_app.config.get('NOTIFICATION_DEDUP_SECONDS', 60)
        self.dedup_window = timedelta(seconds=dedup_seconds)

    def emit_or_merge(
        self,
        kind: NotificationKind,
        subject: NotificationSubject,
        payload: NotificationPayload
    ) -> str:
        """
        Emit a notification unless an unactioned one for the same kind and
        subject was created within the dedup window.

        Returns:
            Id of the new or existing notification
        """
        kind = NotificationKind(kind)
        expected_type = PAYLOAD_TYPES[kind]
        if not isinstance(payload, expected_type):
            raise ValidationError(
                f'{kind.value} notifications require a {expected_type.__name__}', field='payload'
            )

        existing = self.find_recent(kind, subject)
        if existing is not None and not existing.action_taken:
            logger.info(
                f"Notification merged: {kind.value} for customer {subject.customer_id}, "
                f"business {subject.business_id}, program {subject.program_id} -> {existing.id}"
            )
            return existing.id

        rendered = payload.render()
        notification = Notification(
            kind=kind.value,
            recipient=payload.recipient.value,
            customer_id=subject.customer_id,
            business_id=subject.business_id,
            program_id=subject.program_id,
            title=rendered['title'],
            message=rendered['message'],
            payload=asdict(payload),
            requires_action=payload.requires_action,
            reference_id=payload.reference_id(),
            created_at=datetime.utcnow()
        )
        db.session.add(notification)
        db.session.flush()

        logger.info(f"Notification created: {kind.value} {notification.id} -> {notification.recipient}")
        return notification.id

    def emit_best_effort(
        self,
        kind: NotificationKind,
        subject: NotificationSubject,
        payload: NotificationPayload
    ) -> Optional[str]:
        """
        ``emit_or_merge`` inside a SAVEPOINT.

        A failure rolls back only the notification and is logged; the ledger
        changes already made in the enclosing transaction are kept.
        """
        try:
            with db.session.begin_nested():
                return self.emit_or_merge(kind, subject, payload)
        except Exception as e:
            # Delivery rows can be re-emitted later; the ledger mutation must stand
            logger.exception(
                f"Notification {NotificationKind(kind).value} not emitted for customer {subject.customer_id}, "
                f"program {subject.program_id}: {e}"
            )
            return None

    def find_recent(self, kind: NotificationKind, subject: NotificationSubject) -> Optional[Notification]:
        """Newest notification of this kind and subject inside the dedup window."""
        since = datetime.utcnow() - self.dedup_window
        return Notification.query.filter(
            Notification.kind == NotificationKind(kind).value,
            Notification.customer_id == subject.customer_id,
            Notification.business_id == subject.business_id,
            Notification.program_id == subject.program_id,
            Notification.created_at >= since
        ).order_by(Notification.created_at.desc()).first()

    def mark_actioned(self, notification_id: str) -> bool:
        """Flag a notification as actioned and read (does not commit)."""
        if not notification_id:
            return False
        notification = db.session.get(Notification, notification_id)
        if notification is None:
            return False
        if not notification.action_taken:
            notification.action_taken = True
            notification.actioned_at = datetime.utcnow()
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
        return True

    # ==================== Recipient reads ====================

    def list_for_account(self, account_id: int, unread_only: bool = False, limit: int = 50):
        """Notifications addressed to an account (customer or business), newest first."""
        query = Notification.query.filter(
            db.or_(
                db.and_(Notification.recipient == Recipient.CUSTOMER.value,
                        Notification.customer_id == account_id),
                db.and_(Notification.recipient == Recipient.BUSINESS.value,
                        Notification.business_id == account_id),
            )
        )
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return query.order_by(Notification.created_at.desc()).limit(limit).all()

    def get_for_account(self, notification_id: str, account_id: int) -> Notification:
        notification = db.session.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError('Notification', notification_id)
        if notification.recipient_account_id != account_id:
            raise AuthorizationError('Notification belongs to another account')
        return notification

    def mark_read(self, notification_id: str, account_id: int) -> Notification:
        notification = self.get_for_account(notification_id, account_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
        db.session.commit()
        return notification

    def delete(self, notification_id: str, account_id: int) -> None:
        notification = self.get_for_account(notification_id, account_id)
        if notification.requires_action and not notification.action_taken:
            raise ValidationError('Notifications awaiting a response cannot be deleted')
        db.session.delete(notification)
        db.session.commit()
