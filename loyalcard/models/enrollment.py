"""
Enrollment, loyalty card and card activity (audit) models.

BALANCE BOOKKEEPING:
- LoyaltyCard.points is the single source of truth for a customer's balance
  in a program. It is the only column ever incremented.
- Enrollment.current_points is a denormalized read copy. It is always SET equal
  to the card balance inside the same transaction, never incremented.
- CardActivity rows are the append-only audit trail of every change.
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import event
from ..extensions import db


class EnrollmentStatus(str, Enum):
    PENDING = 'PENDING'
    ACTIVE = 'ACTIVE'
    DECLINED = 'DECLINED'


class CardTier(str, Enum):
    STANDARD = 'STANDARD'
    SILVER = 'SILVER'
    GOLD = 'GOLD'
    PLATINUM = 'PLATINUM'

    @classmethod
    def for_points(cls, points: int) -> 'CardTier':
        """Highest tier whose threshold the balance has reached."""
        for tier, required in TIER_THRESHOLDS:
            if points >= required:
                return tier
        return cls.STANDARD


# Minimum balance per tier, highest first
TIER_THRESHOLDS = (
    (CardTier.PLATINUM, 5000),
    (CardTier.GOLD, 2500),
    (CardTier.SILVER, 1000),
    (CardTier.STANDARD, 0),
)


class ActivityType(str, Enum):
    EARN_POINTS = 'EARN_POINTS'
    TIER_CHANGE = 'TIER_CHANGE'


class Enrollment(db.Model):
    """One customer's participation in one program (at most one row per pair)."""
    __tablename__ = 'program_enrollments'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)
    business_id = db.Column(db.Integer, db.ForeignKey('businesses.id'), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=EnrollmentStatus.PENDING.value)
    current_points = db.Column(db.Integer, nullable=False, default=0)  # mirror of LoyaltyCard.points

    enrolled_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_activity_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    program = db.relationship('LoyaltyProgram')

    __table_args__ = (
        db.UniqueConstraint('customer_id', 'program_id', name='uq_enrollment_customer_program'),
    )

    def __repr__(self):
        return f'<Enrollment {self.id}: customer {self.customer_id} in program {self.program_id} ({self.status})>'

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'program_id': self.program_id,
            'business_id': self.business_id,
            'status': self.status,
            'current_points': self.current_points,
            'enrolled_at': self.enrolled_at.isoformat() if self.enrolled_at else None,
            'last_activity_at': self.last_activity_at.isoformat() if self.last_activity_at else None
        }


class LoyaltyCard(db.Model):
    """
    Customer-facing card for an active enrollment.

    An ACTIVE enrollment has exactly one active card for the same
    (customer, program); a DECLINED enrollment has none.
    """
    __tablename__ = 'loyalty_cards'

    id = db.Column(db.Integer, primary_key=True)
    card_number = db.Column(db.String(40), nullable=False, unique=True)  # GC-YYMMDD-HHMMSS-NNNN

    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)
    business_id = db.Column(db.Integer, db.ForeignKey('businesses.id'), nullable=False)

    points = db.Column(db.Integer, nullable=False, default=0)
    tier = db.Column(db.String(20), nullable=False, default=CardTier.STANDARD.value)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    program = db.relationship('LoyaltyProgram')
    activities = db.relationship('CardActivity', backref='card', lazy='dynamic')

    __table_args__ = (
        db.UniqueConstraint('customer_id', 'program_id', name='uq_card_customer_program'),
    )

    def __repr__(self):
        return f'<LoyaltyCard {self.card_number}: {self.points} pts>'

    def to_dict(self):
        return {
            'id': self.id,
            'card_number': self.card_number,
            'customer_id': self.customer_id,
            'program_id': self.program_id,
            'business_id': self.business_id,
            'points': self.points,
            'tier': self.tier,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class CardActivity(db.Model):
    """
    Append-only audit entry for one point award or tier change on a card.

    ``idempotency_key`` carries the caller's transaction reference on award rows;
    its unique constraint is the backstop that stops a replayed award from
    applying twice. Tier-change rows have no key.
    """
    __tablename__ = 'card_activities'

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey('loyalty_cards.id'), nullable=False)

    activity_type = db.Column(db.String(30), nullable=False)
    points = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500))
    source = db.Column(db.String(50), nullable=False)  # QR_SCAN, MANUAL, ...
    idempotency_key = db.Column(db.String(100), unique=True)  # NULL on TIER_CHANGE rows
    created_by = db.Column(db.String(100))  # scanning actor

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_card_activities_card_created', 'card_id', 'created_at'),
    )

    def __repr__(self):
        return f'<CardActivity {self.id}: {self.points:+d} pts on card {self.card_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'card_id': self.card_id,
            'activity_type': self.activity_type,
            'points': self.points,
            'balance_after': self.balance_after,
            'description': self.description,
            'source': self.source,
            'reference_id': self.idempotency_key,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class ImmutableAuditEntryError(Exception):
    pass


@event.listens_for(CardActivity, 'before_update')
def _reject_activity_update(mapper, connection, target):
    raise ImmutableAuditEntryError(f'Card activity {target.id} is append-only')


@event.listens_for(CardActivity, 'before_delete')
def _reject_activity_delete(mapper, connection, target):
    raise ImmutableAuditEntryError(f'Card activity {target.id} is append-only')
