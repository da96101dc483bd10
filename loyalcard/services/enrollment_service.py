"""
Enrollment Service for loyalcard.

Turns a business's enrollment invitation and the customer's answer into
enrollment and card state.

FLOW:
1. Business calls request_enrollment -> ApprovalRequest (PENDING) plus an
   ENROLLMENT_REQUEST notification for the customer
2. Customer answers -> resolve_approval(request_id, decision)
3. APPROVE: customer row, relationship, enrollment and card are written in one
   transaction. DECLINE: the DECLINED relationship is recorded and the business
   and the customer are notified.

ATOMICITY:
The PENDING -> terminal transition is a single conditional UPDATE. Whoever
changes the row owns the provisioning; every other caller reads the row back
and returns the outcome stored on it. Unique constraints on enrollments and
cards are the backstop when two transactions still race; run_in_transaction
retries and the lookup-before-insert finds the winner's rows.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import (
    Account,
    ApprovalRequest,
    ApprovalRequestType,
    ApprovalStatus,
    Customer,
    CustomerBusinessRelationship,
    Enrollment,
    EnrollmentStatus,
    LoyaltyCard,
    LoyaltyProgram,
    NotificationKind,
    RelationshipStatus,
)
from ..utils.exceptions import (
    AlreadyTerminalError,
    AuthorizationError,
    DuplicateError,
    NotFoundError,
    TransactionError,
    ValidationError,
)
from ..utils.transactions import run_in_transaction
from .notification_service import (
    CardReadyPayload,
    EnrollmentAcceptedPayload,
    EnrollmentDeclinedPayload,
    EnrollmentRejectedPayload,
    EnrollmentRequestPayload,
    NotificationService,
    NotificationSubject,
)

logger = logging.getLogger(__name__)

CARD_NUMBER_PREFIX = 'GC'
CARD_NUMBER_ATTEMPTS = 10


class Decision(str, Enum):
    APPROVE = 'APPROVE'
    DECLINE = 'DECLINE'

    @property
    def target_status(self) -> str:
        if self is Decision.APPROVE:
            return ApprovalStatus.APPROVED.value
        return ApprovalStatus.REJECTED.value

    @classmethod
    def from_approved(cls, approved: bool) -> 'Decision':
        return cls.APPROVE if approved else cls.DECLINE


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of resolving an approval request."""
    request_id: str
    status: str
    card_id: Optional[int] = None
    card_number: Optional[str] = None
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'requestId': self.request_id,
            'status': self.status,
            'cardId': self.card_id,
            'cardNumber': self.card_number,
            'replayed': self.replayed,
        }


def generate_card_number(now: datetime = None) -> str:
    """
    Unused card number in the form GC-YYMMDD-HHMMSS-NNNN.

    Must be called inside the transaction that inserts the card; the unique
    constraint on card_number still guards against a concurrent insert.
    """
    now = now or datetime.utcnow()
    for _ in range(CARD_NUMBER_ATTEMPTS):
        candidate = f"{CARD_NUMBER_PREFIX}-{now:%y%m%d-%H%M%S}-{secrets.randbelow(10000):04d}"
        taken = db.session.query(LoyaltyCard.id).filter_by(card_number=candidate).first()
        if taken is None:
            return candidate
        logger.debug(f"Card number collision on {candidate}, retrying")
    raise TransactionError('Card number generation', CARD_NUMBER_ATTEMPTS)


class EnrollmentService:
    """
    Enrollment requests, approval resolution and card provisioning.

    Usage:
        service = EnrollmentService()
        request, created = service.request_enrollment(business_id=3, customer_id=9, program_id=4)
        outcome = service.resolve_approval(request.id, Decision.APPROVE)
    """

    def __init__(self, notifications: NotificationService = None):
        self.notifications = notifications or NotificationService()

    # ==================== Enrollment requests ====================

    def request_enrollment(
        self,
        business_id: int,
        customer_id: int,
        program_id: int,
        note: str = ''
    ) -> Tuple[ApprovalRequest, bool]:
        """
        Invite a customer into a program.

        Returns:
            (approval_request, created). ``created`` is False when a PENDING
            request for the same customer and program already existed.

        Raises:
            NotFoundError: Unknown program or customer account
            AuthorizationError: Program belongs to another business
            ValidationError: Program is inactive
            DuplicateError: Customer is already ACTIVE in the program
        """
        program = db.session.get(LoyaltyProgram, program_id)
        if program is None:
            raise NotFoundError('Program', program_id)
        if program.business_id != business_id:
            raise AuthorizationError('Program belongs to another business')
        if not program.is_active:
            raise ValidationError('Program is not accepting enrollments', field='program_id')

        account = db.session.get(Account, customer_id)
        if account is None:
            raise NotFoundError('Customer account', customer_id)

        ttl_days = current_app.config.get('APPROVAL_REQUEST_TTL_DAYS', 7)

        def work():
            # A concurrent insert that wins trips uq_approval_requests_one_pending;
            # the retry lands here and returns the winner's request
            pending = self.find_pending_request(customer_id, program_id)
            if pending is not None:
                return pending, False

            active = Enrollment.query.filter_by(
                customer_id=customer_id,
                program_id=program_id,
                status=EnrollmentStatus.ACTIVE.value
            ).first()
            if active is not None:
                raise DuplicateError('Enrollment', f'customer {customer_id} in program {program_id}')

            now = datetime.utcnow()
            approval = ApprovalRequest(
                request_type=ApprovalRequestType.ENROLLMENT.value,
                status=ApprovalStatus.PENDING.value,
                customer_id=customer_id,
                business_id=business_id,
                program_id=program_id,
                data={'note': note} if note else {},
                requested_at=now,
                expires_at=now + timedelta(days=ttl_days)
            )
            db.session.add(approval)
            db.session.flush()

            approval.notification_id = self.notifications.emit_or_merge(
                NotificationKind.ENROLLMENT_REQUEST,
                NotificationSubject(customer_id, business_id, program_id),
                EnrollmentRequestPayload(
                    business_name=program.business.name,
                    program_name=program.name,
                    approval_request_id=approval.id,
                    note=note or ''
                )
            )
            return approval, True

        approval, created = run_in_transaction(work, 'request_enrollment')
        if created:
            logger.info(
                f"Enrollment requested: {approval.id} business={business_id} "
                f"customer={customer_id} program={program_id}"
            )
        return approval, created

    def find_pending_request(self, customer_id: int, program_id: int) -> Optional[ApprovalRequest]:
        return ApprovalRequest.query.filter_by(
            customer_id=customer_id,
            program_id=program_id,
            status=ApprovalStatus.PENDING.value
        ).first()

    def get_request(self, request_id: str, account_id: int) -> ApprovalRequest:
        """Approval request visible to its customer or its business."""
        approval = db.session.get(ApprovalRequest, request_id)
        if approval is None:
            raise NotFoundError('Approval request', request_id)
        if account_id not in (approval.customer_id, approval.business_id):
            raise AuthorizationError('Approval request belongs to another account')
        return approval

    # ==================== Approval resolution ====================

    def resolve_approval(self, request_id: str, decision) -> ApprovalOutcome:
        """
        Apply the customer's decision to a PENDING approval request.

        Calling again with the same decision returns the first outcome with
        ``replayed=True`` and writes nothing.

        Raises:
            ValidationError: Unknown decision
            NotFoundError: No such approval request
            AlreadyTerminalError: Already resolved with the other decision
                (``outcome`` carries the existing result)
        """
        try:
            decision = Decision(decision)
        except ValueError:
            raise ValidationError(f'Unknown decision: {decision}', field='decision')

        def work():
            result = db.session.execute(
                update(ApprovalRequest)
                .where(
                    ApprovalRequest.id == request_id,
                    ApprovalRequest.status == ApprovalStatus.PENDING.value
                )
                .values(status=decision.target_status, responded_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            approval = db.session.get(ApprovalRequest, request_id, populate_existing=True)
            if approval is None:
                raise NotFoundError('Approval request', request_id)

            if result.rowcount == 0:
                return self._existing_outcome(approval, decision)

            return self._provision(approval, decision)

        outcome = run_in_transaction(work, 'resolve_approval')
        if not outcome.replayed:
            logger.info(
                f"Approval {request_id} resolved: {outcome.status} card={outcome.card_id}"
            )
        return outcome

    def _existing_outcome(self, approval: ApprovalRequest, decision: Decision) -> ApprovalOutcome:
        outcome = ApprovalOutcome(
            request_id=approval.id,
            status=approval.status,
            card_id=approval.card_id,
            card_number=approval.card.card_number if approval.card else None,
            replayed=True
        )
        if approval.status != decision.target_status:
            logger.warning(
                f"Approval {approval.id} is {approval.status}; refusing {decision.value}"
            )
            raise AlreadyTerminalError(approval.id, approval.status, outcome)
        return outcome

    def _provision(self, approval: ApprovalRequest, decision: Decision) -> ApprovalOutcome:
        """Write the decision's effects. Runs inside the caller's transaction."""
        program = approval.program
        subject = NotificationSubject(approval.customer_id, approval.business_id, approval.program_id)

        self.notifications.mark_actioned(approval.notification_id)

        # Customer first: relationship, enrollment and card all reference it
        customer = self.ensure_customer(approval.customer_id)

        if decision is Decision.DECLINE:
            self.upsert_relationship(customer.id, approval.business_id, RelationshipStatus.DECLINED)
            self._notify_declined(approval, customer, program, subject)
            return ApprovalOutcome(request_id=approval.id, status=approval.status)

        self.notifications.emit_best_effort(
            NotificationKind.ENROLLMENT_ACCEPTED,
            subject,
            EnrollmentAcceptedPayload(
                customer_name=customer.name,
                program_name=program.name,
                approval_request_id=approval.id
            )
        )

        self.upsert_relationship(customer.id, approval.business_id, RelationshipStatus.ACTIVE)
        enrollment = self.activate_enrollment(customer.id, program)
        card, _ = self.ensure_card(customer.id, program)
        enrollment.current_points = card.points

        approval.card_id = card.id
        db.session.flush()

        self._notify_card_ready(card, program, subject)

        return ApprovalOutcome(
            request_id=approval.id,
            status=approval.status,
            card_id=card.id,
            card_number=card.card_number
        )

    # ==================== Provisioning steps ====================

    def ensure_customer(self, account_id: int) -> Customer:
        """Customer row for an account, materialized from the account when missing."""
        customer = db.session.get(Customer, account_id)
        if customer is not None:
            return customer

        account = db.session.get(Account, account_id)
        if account is None:
            raise NotFoundError('Customer account', account_id)

        customer = Customer(id=account.id, name=account.name, email=account.email)
        db.session.add(customer)
        db.session.flush()
        logger.info(f"Customer {account_id} materialized from account")
        return customer

    def upsert_relationship(
        self,
        customer_id: int,
        business_id: int,
        status: RelationshipStatus
    ) -> CustomerBusinessRelationship:
        relationship = CustomerBusinessRelationship.query.filter_by(
            customer_id=customer_id,
            business_id=business_id
        ).first()
        if relationship is None:
            relationship = CustomerBusinessRelationship(
                customer_id=customer_id,
                business_id=business_id,
                status=status.value
            )
            db.session.add(relationship)
        elif relationship.status != status.value:
            relationship.status = status.value
        db.session.flush()
        return relationship

    def activate_enrollment(self, customer_id: int, program: LoyaltyProgram) -> Enrollment:
        """Set the (customer, program) enrollment ACTIVE, inserting it with zero points if absent."""
        enrollment = Enrollment.query.filter_by(
            customer_id=customer_id,
            program_id=program.id
        ).first()
        now = datetime.utcnow()

        if enrollment is None:
            enrollment = Enrollment(
                customer_id=customer_id,
                program_id=program.id,
                business_id=program.business_id,
                status=EnrollmentStatus.ACTIVE.value,
                current_points=0,
                enrolled_at=now,
                last_activity_at=now
            )
            db.session.add(enrollment)
        elif enrollment.status != EnrollmentStatus.ACTIVE.value:
            enrollment.status = EnrollmentStatus.ACTIVE.value
            enrollment.enrolled_at = now

        db.session.flush()
        return enrollment

    def ensure_card(self, customer_id: int, program: LoyaltyProgram) -> Tuple[LoyaltyCard, bool]:
        """
        Card for (customer, program), reusing or reactivating an existing one.

        Returns:
            (card, created)
        """
        card = LoyaltyCard.query.filter_by(
            customer_id=customer_id,
            program_id=program.id
        ).first()
        if card is not None:
            if not card.is_active:
                card.is_active = True
                db.session.flush()
                logger.info(f"Card {card.card_number} reactivated for customer {customer_id}")
            return card, False

        card = LoyaltyCard(
            card_number=generate_card_number(),
            customer_id=customer_id,
            program_id=program.id,
            business_id=program.business_id,
            points=0,
            is_active=True
        )
        db.session.add(card)
        db.session.flush()
        logger.info(f"Card {card.card_number} issued: customer={customer_id} program={program.id}")
        return card, True

    def _notify_declined(
        self,
        approval: ApprovalRequest,
        customer: Customer,
        program: LoyaltyProgram,
        subject: NotificationSubject
    ):
        """Tell the business, and confirm to the customer, that the invitation was declined."""
        self.notifications.emit_best_effort(
            NotificationKind.ENROLLMENT_REJECTED,
            subject,
            EnrollmentRejectedPayload(
                customer_name=customer.name,
                program_name=program.name,
                approval_request_id=approval.id
            )
        )
        self.notifications.emit_best_effort(
            NotificationKind.ENROLLMENT_DECLINED,
            subject,
            EnrollmentDeclinedPayload(
                program_name=program.name,
                business_name=program.business.name,
                approval_request_id=approval.id
            )
        )

    def _notify_card_ready(self, card: LoyaltyCard, program: LoyaltyProgram, subject: NotificationSubject):
        self.notifications.emit_best_effort(
            NotificationKind.CARD_READY,
            subject,
            CardReadyPayload(
                card_id=card.id,
                card_number=card.card_number,
                program_name=program.name,
                business_name=program.business.name
            )
        )

    def provision_card_for_enrollment(self, enrollment: Enrollment) -> Tuple[LoyaltyCard, bool]:
        """
        Card step for an ACTIVE enrollment found without one.

        Used by point awards and the repair command. Runs inside the caller's
        transaction.
        """
        program = enrollment.program
        card, created = self.ensure_card(enrollment.customer_id, program)
        enrollment.current_points = card.points
        if created:
            self._notify_card_ready(
                card,
                program,
                NotificationSubject(enrollment.customer_id, program.business_id, program.id)
            )
        return card, created

    # ==================== Maintenance ====================

    def find_cardless_enrollments(self):
        """ACTIVE enrollments with no card for the same customer and program."""
        return Enrollment.query.outerjoin(
            LoyaltyCard,
            db.and_(
                LoyaltyCard.customer_id == Enrollment.customer_id,
                LoyaltyCard.program_id == Enrollment.program_id
            )
        ).filter(
            Enrollment.status == EnrollmentStatus.ACTIVE.value,
            LoyaltyCard.id.is_(None)
        ).order_by(Enrollment.id).all()

    def repair_cardless_enrollments(self, dry_run: bool = False) -> Dict[str, Any]:
        """
        Provision cards for ACTIVE enrollments that never got one.

        Each enrollment is repaired in its own transaction; a failure is logged
        and counted and the batch continues.
        """
        enrollments = self.find_cardless_enrollments()
        results = {
            'checked': len(enrollments),
            'repaired': 0,
            'failed': 0,
            'dry_run': dry_run,
            'cards': [],
        }

        for enrollment in enrollments:
            if dry_run:
                logger.info(
                    f"[dry-run] Enrollment {enrollment.id} (customer {enrollment.customer_id}, "
                    f"program {enrollment.program_id}) has no card"
                )
                continue

            enrollment_id = enrollment.id

            def work(enrollment_id=enrollment_id):
                target = db.session.get(Enrollment, enrollment_id)
                card, _ = self.provision_card_for_enrollment(target)
                return card.id, card.card_number

            try:
                card_id, card_number = run_in_transaction(work, 'repair_enrollment_card')
            except Exception as e:
                results['failed'] += 1
                logger.error(f"Card repair failed for enrollment {enrollment_id}: {e}")
                continue

            results['repaired'] += 1
            results['cards'].append({'enrollment_id': enrollment_id, 'card_id': card_id,
                                     'card_number': card_number})

        logger.info(
            f"Card repair: checked={results['checked']} repaired={results['repaired']} "
            f"failed={results['failed']} dry_run={dry_run}"
        )
        return results
