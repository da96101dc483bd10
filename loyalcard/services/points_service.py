"""
Points Service for loyalcard.

Applies point awards from QR scans and manual entry.

ARCHITECTURE:
- LoyaltyCard.points is the single source of truth for a balance and the only
  column that is ever incremented (atomic UPDATE ... SET points = points + n)
- Enrollment.current_points is a read copy, SET to the card balance in the
  same transaction
- Every award writes one CardActivity audit row keyed by the caller's
  idempotency key; a replayed key returns the balance recorded on that row

AWARD PIPELINE:
1. Validate input
2. Rate limit per scanning business
3. Verify the QR token when the card is referenced by one (an expired token is
   still accepted for a key that was already applied, so retries replay)
4. In one transaction: idempotency check, card resolution (provisioning a
   card for an ACTIVE enrollment that has none), increment, audit row, mirror,
   tier recalculation (TIER_CHANGE audit row when the tier moves)
5. After commit: points-awarded notification (deduplicated, best effort)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import (
    ActivityType,
    CardActivity,
    CardTier,
    Enrollment,
    EnrollmentStatus,
    LoyaltyCard,
    LoyaltyProgram,
    NotificationKind,
)
from ..utils.exceptions import (
    AuthorizationError,
    DuplicateError,
    NotEnrolledError,
    NotFoundError,
    SignatureInvalidError,
    ValidationError,
)
from ..utils.transactions import run_in_transaction
from .enrollment_service import EnrollmentService
from .notification_service import NotificationService, NotificationSubject, PointsAwardedPayload
from .rate_limiter import FixedWindowRateLimiter, get_award_rate_limiter
from .signature_service import QR_TYPE_LOYALTY_CARD, SignatureService, get_signature_service

logger = logging.getLogger(__name__)


# ==================== Configuration ====================

MAX_POINTS_PER_AWARD = 10000
MAX_IDEMPOTENCY_KEY_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500


class PointsSource(str, Enum):
    QR_SCAN = 'QR_SCAN'
    MANUAL = 'MANUAL'


@dataclass(frozen=True)
class CardRef:
    """
    How an award identifies its card: by card number, by (customer, program)
    or by a signed QR token. Exactly one form is set.
    """
    card_number: Optional[str] = None
    customer_id: Optional[int] = None
    program_id: Optional[int] = None
    qr_token: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> 'CardRef':
        if not isinstance(data, dict) or not data:
            raise ValidationError('cardRef must be an object', field='cardRef')

        if data.get('qrToken'):
            if not isinstance(data['qrToken'], str):
                raise ValidationError('qrToken must be a string', field='cardRef')
            return cls(qr_token=data['qrToken'])

        if data.get('cardNumber'):
            if not isinstance(data['cardNumber'], str):
                raise ValidationError('cardNumber must be a string', field='cardRef')
            return cls(card_number=data['cardNumber'].strip())

        customer_id = data.get('customerId')
        program_id = data.get('programId')
        if _is_id(customer_id) and _is_id(program_id):
            return cls(customer_id=customer_id, program_id=program_id)

        raise ValidationError(
            'cardRef needs cardNumber, qrToken, or customerId with programId',
            field='cardRef'
        )

    @classmethod
    def from_qr_payload(cls, payload: Dict[str, Any]) -> 'CardRef':
        """Card reference carried inside a verified loyalty-card QR payload."""
        if payload.get('type') != QR_TYPE_LOYALTY_CARD:
            raise SignatureInvalidError('QR code is not a loyalty card')
        if payload.get('cardNumber'):
            return cls(card_number=str(payload['cardNumber']))
        if _is_id(payload.get('customerId')) and _is_id(payload.get('programId')):
            return cls(customer_id=payload['customerId'], program_id=payload['programId'])
        raise SignatureInvalidError('QR code does not identify a card')


def _is_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class AwardResult:
    card_id: int
    card_number: str
    points: int
    new_balance: int
    idempotency_key: str
    replayed: bool = False
    provisioned_card: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'newBalance': self.new_balance,
            'cardId': self.card_id,
            'cardNumber': self.card_number,
            'points': self.points,
            'replayed': self.replayed,
        }


class PointsService:
    """
    Point awards against loyalty cards.

    Usage:
        service = PointsService()
        result = service.award_points(
            CardRef(card_number='GC-250101-120000-0042'),
            points=25,
            source='QR_SCAN',
            idempotency_key='tx-1',
            actor_business_id=3
        )
        result.new_balance
    """

    def __init__(
        self,
        notifications: NotificationService = None,
        enrollments: EnrollmentService = None,
        signatures: SignatureService = None,
        rate_limiter: FixedWindowRateLimiter = None
    ):
        self.notifications = notifications or NotificationService()
        self.enrollments = enrollments or EnrollmentService(self.notifications)
        self.signatures = signatures or get_signature_service()
        self.rate_limiter = rate_limiter or get_award_rate_limiter()

    # ==================== Awards ====================

    def award_points(
        self,
        card_ref: CardRef,
        points: int,
        source: str,
        idempotency_key: str,
        actor_business_id: int,
        description: str = None
    ) -> AwardResult:
        """
        Add ``points`` to a card exactly once per idempotency key.

        Args:
            card_ref: Card to credit
            points: Positive number of points
            source: PointsSource value
            idempotency_key: Caller's transaction reference
            actor_business_id: Scanning business; must own the card's program
            description: Optional note stored on the audit row

        Returns:
            AwardResult; ``replayed`` is True when the key was already applied

        Raises:
            ValidationError, RateLimitExceededError, SignatureInvalidError,
            SignatureExpiredError, NotFoundError, AuthorizationError,
            NotEnrolledError, DuplicateError, TransactionError
        """
        source = self._validate_award(points, source, idempotency_key, description)

        actor = f'business:{actor_business_id}'
        self.rate_limiter.hit(actor)

        if card_ref.qr_token:
            card_ref = self._card_ref_from_token(card_ref.qr_token, idempotency_key)

        def work():
            prior = self._find_prior_award(idempotency_key)
            if prior is not None:
                return self._replay(prior, card_ref, actor_business_id)

            card, provisioned = self._resolve_card(card_ref, actor_business_id)
            now = datetime.utcnow()

            db.session.execute(
                update(LoyaltyCard)
                .where(LoyaltyCard.id == card.id)
                .values(points=LoyaltyCard.points + points, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.session.refresh(card)

            db.session.add(CardActivity(
                card_id=card.id,
                activity_type=ActivityType.EARN_POINTS.value,
                points=points,
                balance_after=card.points,
                description=description or f'Earned {points} points ({source.value})',
                source=source.value,
                idempotency_key=idempotency_key,
                created_by=actor,
                created_at=now
            ))

            enrollment = Enrollment.query.filter_by(
                customer_id=card.customer_id,
                program_id=card.program_id
            ).first()
            enrollment.current_points = card.points
            enrollment.last_activity_at = now
            self._update_tier(card, source, actor, now)
            db.session.flush()

            return AwardResult(
                card_id=card.id,
                card_number=card.card_number,
                points=points,
                new_balance=card.points,
                idempotency_key=idempotency_key,
                provisioned_card=provisioned
            )

        result = run_in_transaction(work, 'award_points')

        if result.replayed:
            logger.info(f"Award {idempotency_key} replayed: card {result.card_number} balance {result.new_balance}")
            return result

        logger.info(
            f"Awarded {points} points to card {result.card_number} "
            f"(balance {result.new_balance}, key {idempotency_key}, by {actor})"
        )
        self._notify_awarded(result, source)
        return result

    def _validate_award(self, points, source, idempotency_key, description) -> PointsSource:
        if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
            raise ValidationError('points must be a positive integer', field='points')
        if points > MAX_POINTS_PER_AWARD:
            raise ValidationError(
                f'points cannot exceed {MAX_POINTS_PER_AWARD} per award', field='points'
            )

        try:
            source = PointsSource(source)
        except ValueError:
            allowed = ', '.join(s.value for s in PointsSource)
            raise ValidationError(f'source must be one of: {allowed}', field='source')

        if not isinstance(idempotency_key, str) or not idempotency_key.strip():
            raise ValidationError('idempotencyKey is required', field='idempotencyKey')
        if len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError(
                f'idempotencyKey cannot exceed {MAX_IDEMPOTENCY_KEY_LENGTH} characters',
                field='idempotencyKey'
            )

        if description is not None and (
            not isinstance(description, str) or len(description) > MAX_DESCRIPTION_LENGTH
        ):
            raise ValidationError(
                f'description must be a string of at most {MAX_DESCRIPTION_LENGTH} characters',
                field='description'
            )
        return source

    def _find_prior_award(self, idempotency_key: str) -> Optional[CardActivity]:
        return CardActivity.query.filter_by(idempotency_key=idempotency_key).first()

    def _card_ref_from_token(self, token: str, idempotency_key: str) -> CardRef:
        """
        Card reference from a signed QR token.

        A scanner retrying an award that was already applied gets the original
        result even after the token has expired; the signature is still checked.
        """
        already_applied = self._find_prior_award(idempotency_key) is not None
        payload = self.signatures.verify(token, allow_expired=already_applied)
        return CardRef.from_qr_payload(payload)

    def _update_tier(self, card: LoyaltyCard, source: PointsSource, actor: str, now: datetime) -> bool:
        """Move the card to the tier its new balance qualifies for, with an audit row."""
        tier = CardTier.for_points(card.points)
        if tier.value == card.tier:
            return False

        previous = card.tier
        card.tier = tier.value
        db.session.add(CardActivity(
            card_id=card.id,
            activity_type=ActivityType.TIER_CHANGE.value,
            points=0,
            balance_after=card.points,
            description=f'Upgraded to {tier.value} tier',
            source=source.value,
            created_by=actor,
            created_at=now
        ))
        logger.info(f"Card {card.card_number} tier {previous} -> {tier.value} at {card.points} points")
        return True

    def _replay(self, prior: CardActivity, card_ref: CardRef, actor_business_id: int) -> AwardResult:
        card = prior.card
        if card.business_id != actor_business_id:
            raise AuthorizationError('Card belongs to another business')

        mismatched = (
            (card_ref.card_number and card_ref.card_number != card.card_number)
            or (card_ref.customer_id and (card_ref.customer_id, card_ref.program_id)
                != (card.customer_id, card.program_id))
        )
        if mismatched:
            logger.warning(
                f"Idempotency key {prior.idempotency_key} reused for a different card "
                f"(applied to {card.card_number})"
            )
            raise DuplicateError('Award', f'idempotency key {prior.idempotency_key}')

        return AwardResult(
            card_id=card.id,
            card_number=card.card_number,
            points=prior.points,
            new_balance=prior.balance_after,
            idempotency_key=prior.idempotency_key,
            replayed=True
        )

    def _resolve_card(self, card_ref: CardRef, actor_business_id: int):
        """
        Card to credit, provisioning one for an ACTIVE enrollment without a card.

        Returns:
            (card, provisioned)
        """
        if card_ref.card_number:
            card = LoyaltyCard.query.filter_by(card_number=card_ref.card_number).first()
            if card is None:
                raise NotFoundError('Card', card_ref.card_number)
            customer_id, program = card.customer_id, card.program
        else:
            program = db.session.get(LoyaltyProgram, card_ref.program_id)
            if program is None:
                raise NotFoundError('Program', card_ref.program_id)
            customer_id = card_ref.customer_id
            card = LoyaltyCard.query.filter_by(customer_id=customer_id, program_id=program.id).first()

        if program.business_id != actor_business_id:
            raise AuthorizationError('Program belongs to another business')

        enrollment = Enrollment.query.filter_by(customer_id=customer_id, program_id=program.id).first()
        if enrollment is None or enrollment.status != EnrollmentStatus.ACTIVE.value:
            raise NotEnrolledError(customer_id, program.id)

        if card is not None and card.is_active:
            return card, False

        card, created = self.enrollments.provision_card_for_enrollment(enrollment)
        logger.warning(
            f"Enrollment {enrollment.id} had no active card; "
            f"{'issued' if created else 'reactivated'} {card.card_number} during award"
        )
        return card, True

    def _notify_awarded(self, result: AwardResult, source: PointsSource):
        card = db.session.get(LoyaltyCard, result.card_id)
        self.notifications.emit_best_effort(
            NotificationKind.POINTS_AWARDED,
            NotificationSubject(card.customer_id, card.business_id, card.program_id),
            PointsAwardedPayload(
                card_id=card.id,
                points=result.points,
                new_balance=result.new_balance,
                program_name=card.program.name,
                source=source.value
            )
        )
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Points notification for card {card.card_number} not saved: {e}")

    # ==================== Reads ====================

    def card_history(self, card_id: int, account_id: int, page: int = 1, per_page: int = 20) -> Dict[str, Any]:
        """Audit entries for a card, newest first. Visible to the card owner and the program's business."""
        card = db.session.get(LoyaltyCard, card_id)
        if card is None:
            raise NotFoundError('Card', card_id)
        if account_id not in (card.customer_id, card.business_id):
            raise AuthorizationError('Card belongs to another account')

        per_page = max(1, min(per_page, 100))
        pagination = CardActivity.query.filter_by(card_id=card.id).order_by(
            CardActivity.created_at.desc(),
            CardActivity.id.desc()
        ).paginate(page=page, per_page=per_page, error_out=False)

        return {
            'card': card.to_dict(),
            'balance': card.points,
            'activities': [a.to_dict() for a in pagination.items],
            'total': pagination.total,
            'page': page,
            'pages': pagination.pages,
        }

    # ==================== Maintenance ====================

    def find_mirror_drift(self):
        """(enrollment, card) pairs whose mirrored balance differs from the card."""
        return db.session.query(Enrollment, LoyaltyCard).join(
            LoyaltyCard,
            db.and_(
                LoyaltyCard.customer_id == Enrollment.customer_id,
                LoyaltyCard.program_id == Enrollment.program_id
            )
        ).filter(Enrollment.current_points != LoyaltyCard.points).order_by(Enrollment.id).all()

    def reconcile_enrollment_mirrors(self, dry_run: bool = False) -> Dict[str, Any]:
        """Reset Enrollment.current_points to the card balance wherever they differ."""
        drift = self.find_mirror_drift()
        results = {
            'checked': len(drift),
            'fixed': 0,
            'dry_run': dry_run,
            'enrollments': [],
        }

        for enrollment, card in drift:
            results['enrollments'].append({
                'enrollment_id': enrollment.id,
                'card_number': card.card_number,
                'mirrored': enrollment.current_points,
                'balance': card.points,
            })
            logger.info(
                f"{'[dry-run] ' if dry_run else ''}Enrollment {enrollment.id} mirror "
                f"{enrollment.current_points} != card {card.card_number} balance {card.points}"
            )

        if dry_run or not drift:
            return results

        def work():
            for enrollment, card in drift:
                enrollment.current_points = card.points
            return len(drift)

        results['fixed'] = run_in_transaction(work, 'reconcile_enrollment_mirrors')
        logger.info(f"Balance mirrors reconciled: {results['fixed']} enrollments")
        return results
