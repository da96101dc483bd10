"""
Notification and approval request models.
"""
import uuid
from datetime import datetime
from enum import Enum
from ..extensions import db


class NotificationKind(str, Enum):
    """Notification kinds; each has its own payload shape (see notification_service)."""
    ENROLLMENT_REQUEST = 'ENROLLMENT_REQUEST'
    ENROLLMENT_ACCEPTED = 'ENROLLMENT_ACCEPTED'
    ENROLLMENT_REJECTED = 'ENROLLMENT_REJECTED'
    ENROLLMENT_DECLINED = 'ENROLLMENT_DECLINED'
    CARD_READY = 'CARD_READY'
    POINTS_AWARDED = 'POINTS_AWARDED'


class Recipient(str, Enum):
    CUSTOMER = 'customer'
    BUSINESS = 'business'


class ApprovalStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'


class ApprovalRequestType(str, Enum):
    ENROLLMENT = 'ENROLLMENT'


def _new_uuid() -> str:
    return str(uuid.uuid4())


class Notification(db.Model):
    """
    Message to a customer or business.

    Rows are written only through the notification deduplicator; the delivery
    subsystem reads them and pushes email/SMS/real-time updates.
    """
    __tablename__ = 'notifications'

    id = db.Column(db.String(36), primary_key=True, default=_new_uuid)
    kind = db.Column(db.String(40), nullable=False)
    recipient = db.Column(db.String(20), nullable=False)  # customer, business

    # Subject ids (the dedup key together with kind)
    customer_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    business_id = db.Column(db.Integer, db.ForeignKey('businesses.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)

    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.String(1000), nullable=False)
    payload = db.Column(db.JSON, default=dict)

    requires_action = db.Column(db.Boolean, nullable=False, default=False)
    action_taken = db.Column(db.Boolean, nullable=False, default=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    reference_id = db.Column(db.String(100))  # approval request id, card id, ...

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    read_at = db.Column(db.DateTime)
    actioned_at = db.Column(db.DateTime)

    __table_args__ = (
        db.Index('ix_notifications_dedup', 'kind', 'customer_id', 'business_id', 'program_id', 'created_at'),
    )

    def __repr__(self):
        return f'<Notification {self.id} {self.kind} -> {self.recipient}>'

    @property
    def recipient_account_id(self) -> int:
        return self.customer_id if self.recipient == Recipient.CUSTOMER.value else self.business_id

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'recipient': self.recipient,
            'customer_id': self.customer_id,
            'business_id': self.business_id,
            'program_id': self.program_id,
            'title': self.title,
            'message': self.message,
            'payload': self.payload or {},
            'requires_action': self.requires_action,
            'action_taken': self.action_taken,
            'is_read': self.is_read,
            'reference_id': self.reference_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'read_at': self.read_at.isoformat() if self.read_at else None
        }


class ApprovalRequest(db.Model):
    """
    A decision the customer must make before enrollment activates.

    Status moves exactly once from PENDING to APPROVED or REJECTED. The card
    produced by an approval is stored on the row so re-processing returns it.
    """
    __tablename__ = 'approval_requests'

    id = db.Column(db.String(36), primary_key=True, default=_new_uuid)
    request_type = db.Column(db.String(30), nullable=False, default=ApprovalRequestType.ENROLLMENT.value)
    status = db.Column(db.String(20), nullable=False, default=ApprovalStatus.PENDING.value)

    customer_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    business_id = db.Column(db.Integer, db.ForeignKey('businesses.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)
    notification_id = db.Column(db.String(36), db.ForeignKey('notifications.id', ondelete='SET NULL'))

    # Outcome of an approval
    card_id = db.Column(db.Integer, db.ForeignKey('loyalty_cards.id'))

    data = db.Column(db.JSON, default=dict)
    requested_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    responded_at = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime)

    program = db.relationship('LoyaltyProgram')
    notification = db.relationship('Notification')
    card = db.relationship('LoyaltyCard')

    __table_args__ = (
        db.Index('ix_approval_requests_customer_program_status', 'customer_id', 'program_id', 'status'),
        # At most one open request per customer and program
        db.Index(
            'uq_approval_requests_one_pending', 'customer_id', 'program_id',
            unique=True,
            postgresql_where=db.text("status = 'PENDING'"),
            sqlite_where=db.text("status = 'PENDING'")
        ),
    )

    def __repr__(self):
        return f'<ApprovalRequest {self.id} {self.request_type} {self.status}>'

    @property
    def is_terminal(self) -> bool:
        return self.status != ApprovalStatus.PENDING.value

    def to_dict(self):
        return {
            'id': self.id,
            'request_type': self.request_type,
            'status': self.status,
            'customer_id': self.customer_id,
            'business_id': self.business_id,
            'program_id': self.program_id,
            'notification_id': self.notification_id,
            'card_id': self.card_id,
            'requested_at': self.requested_at.isoformat() if self.requested_at else None,
            'responded_at': self.responded_at.isoformat() if self.responded_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None
        }
