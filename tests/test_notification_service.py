"""
Tests for the Notification Service (deduplicating emitter and recipient reads).
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

from loyalcard.extensions import db
from loyalcard.models import Notification, NotificationKind, Recipient
from loyalcard.services.notification_service import (
    CardReadyPayload,
    EnrollmentAcceptedPayload,
    EnrollmentDeclinedPayload,
    EnrollmentRejectedPayload,
    EnrollmentRequestPayload,
    NotificationService,
    NotificationSubject,
    PointsAwardedPayload,
)
from loyalcard.utils.exceptions import AuthorizationError, NotFoundError, ValidationError


@pytest.fixture
def subject(sample_business, sample_customer, sample_program):
    return NotificationSubject(sample_customer.id, sample_business.id, sample_program.id)


def points_payload(points=10, balance=10):
    return PointsAwardedPayload(
        card_id=1, points=points, new_balance=balance, program_name='Coffee Club', source='QR_SCAN'
    )


class TestPayloads:
    """Each kind renders its own title and message."""

    def test_enrollment_request_requires_action(self):
        payload = EnrollmentRequestPayload(
            business_name='Corner Coffee', program_name='Coffee Club', approval_request_id='req-1'
        )
        rendered = payload.render()

        assert payload.requires_action is True
        assert payload.recipient == Recipient.CUSTOMER
        assert rendered['title'] == 'Program Enrollment Request'
        assert rendered['message'] == 'Corner Coffee would like to enroll you in Coffee Club.'
        assert payload.reference_id() == 'req-1'

    def test_accept_and_reject_are_separate_kinds(self):
        accepted = EnrollmentAcceptedPayload('Sam', 'Coffee Club', 'req-1')
        rejected = EnrollmentRejectedPayload('Sam', 'Coffee Club', 'req-1')

        assert accepted.kind == NotificationKind.ENROLLMENT_ACCEPTED
        assert rejected.kind == NotificationKind.ENROLLMENT_REJECTED
        assert accepted.recipient == rejected.recipient == Recipient.BUSINESS
        assert accepted.render()['message'] == 'Sam has joined your Coffee Club.'
        assert rejected.render()['title'] == 'Enrollment Declined'
        assert rejected.render()['message'] == 'Sam has declined to join your Coffee Club.'

    def test_decline_confirmation_goes_to_customer(self):
        payload = EnrollmentDeclinedPayload('Coffee Club', 'Corner Coffee', 'req-1')

        assert payload.recipient == Recipient.CUSTOMER
        assert payload.requires_action is False
        assert payload.render()['message'] == 'You declined to join Coffee Club by Corner Coffee.'
        assert payload.reference_id() == 'req-1'

    def test_card_ready_mentions_card_number(self):
        rendered = CardReadyPayload(3, 'GC-250101-120000-0042', 'Coffee Club', 'Corner Coffee').render()
        assert 'GC-250101-120000-0042' in rendered['message']


class TestEmitOrMerge:
    """Tests for NotificationService.emit_or_merge."""

    def test_emits_new_notification(self, app, subject):
        with app.app_context():
            service = NotificationService()
            notification_id = service.emit_or_merge(
                NotificationKind.POINTS_AWARDED, subject, points_payload()
            )
            db.session.commit()

            notification = db.session.get(Notification, notification_id)
            assert notification.kind == NotificationKind.POINTS_AWARDED.value
            assert notification.recipient == Recipient.CUSTOMER.value
            assert notification.payload['new_balance'] == 10
            assert notification.title == 'Points Added'

    def test_merges_inside_window(self, app, subject):
        with app.app_context():
            service = NotificationService()
            first = service.emit_or_merge(NotificationKind.POINTS_AWARDED, subject, points_payload(10, 10))
            second = service.emit_or_merge(NotificationKind.POINTS_AWARDED, subject, points_payload(5, 15))
            db.session.commit()

            assert first == second
            assert Notification.query.count() == 1

    def test_does_not_merge_outside_window(self, app, subject):
        with app.app_context():
            service = NotificationService()
            first = service.emit_or_merge(NotificationKind.POINTS_AWARDED, subject, points_payload())
            old = db.session.get(Notification, first)
            old.created_at = datetime.utcnow() - timedelta(seconds=61)
            db.session.commit()

            second = service.emit_or_merge(NotificationKind.POINTS_AWARDED, subject, points_payload())
            db.session.commit()

            assert first != second
            assert Notification.query.count() == 2

    def test_does_not_merge_actioned(self, app, subject):
        with app.app_context():
            service = NotificationService()
            payload = EnrollmentRequestPayload('Corner Coffee', 'Coffee Club', 'req-1')
            first = service.emit_or_merge(NotificationKind.ENROLLMENT_REQUEST, subject, payload)
            service.mark_actioned(first)
            second = service.emit_or_merge(NotificationKind.ENROLLMENT_REQUEST, subject, payload)
            db.session.commit()

            assert first != second

    def test_different_kinds_do_not_merge(self, app, subject):
        with app.app_context():
            service = NotificationService()
            first = service.emit_or_merge(NotificationKind.POINTS_AWARDED, subject, points_payload())
            second = service.emit_or_merge(
                NotificationKind.CARD_READY, subject,
                CardReadyPayload(1, 'GC-250101-120000-0042', 'Coffee Club', 'Corner Coffee')
            )
            db.session.commit()

            assert first != second

    def test_accepted_does_not_merge_into_rejected(self, app, subject):
        with app.app_context():
            service = NotificationService()
            rejected = service.emit_or_merge(
                NotificationKind.ENROLLMENT_REJECTED, subject,
                EnrollmentRejectedPayload('Sam', 'Coffee Club', 'req-1')
            )
            accepted = service.emit_or_merge(
                NotificationKind.ENROLLMENT_ACCEPTED, subject,
                EnrollmentAcceptedPayload('Sam', 'Coffee Club', 'req-2')
            )
            db.session.commit()

            assert rejected != accepted
            assert db.session.get(Notification, accepted).title == 'Customer Joined Program'

    def test_mark_actioned_also_marks_read(self, app, subject):
        with app.app_context():
            service = NotificationService()
            payload = EnrollmentRequestPayload('Corner Coffee', 'Coffee Club', 'req-1')
            notification_id = service.emit_or_merge(NotificationKind.ENROLLMENT_REQUEST, subject, payload)

            assert service.mark_actioned(notification_id) is True
            db.session.commit()

            notification = db.session.get(Notification, notification_id)
            assert notification.action_taken is True
            assert notification.actioned_at is not None
            assert notification.is_read is True
            assert notification.read_at is not None

    def test_mark_actioned_unknown_id(self, app):
        with app.app_context():
            assert NotificationService().mark_actioned('missing') is False
            assert NotificationService().mark_actioned(None) is False

    def test_different_subjects_do_not_merge(self, app, subject, sample_customer_account):
        with app.app_context():
            service = NotificationService()
            other = NotificationSubject(sample_customer_account.id, subject.business_id, subject.program_id)
            first = service.emit_or_merge(NotificationKind.POINTS_AWARDED, subject, points_payload())
            second = service.emit_or_merge(NotificationKind.POINTS_AWARDED, other, points_payload())
            db.session.commit()

            assert first != second

    def test_wrong_payload_type_rejected(self, app, subject):
        with app.app_context():
            with pytest.raises(ValidationError):
                NotificationService().emit_or_merge(NotificationKind.CARD_READY, subject, points_payload())

    def test_dedup_window_from_config(self, app):
        with app.app_context():
            app.config['NOTIFICATION_DEDUP_SECONDS'] = 5
            assert NotificationService().dedup_window == timedelta(seconds=5)


class TestEmitBestEffort:
    """Failures inside the savepoint never reach the caller."""

    def test_failure_is_swallowed_and_logged(self, app, subject):
        with app.app_context():
            service = NotificationService()
            with patch.object(service, 'emit_or_merge', side_effect=RuntimeError('boom')):
                result = service.emit_best_effort(NotificationKind.POINTS_AWARDED, subject, points_payload())

            assert result is None

    def test_success_returns_id(self, app, subject):
        with app.app_context():
            service = NotificationService()
            result = service.emit_best_effort(NotificationKind.POINTS_AWARDED, subject, points_payload())
            db.session.commit()

            assert db.session.get(Notification, result) is not None


class TestRecipientAccess:
    """List, read and delete are limited to the recipient."""

    def _emit(self, subject, kind=NotificationKind.POINTS_AWARDED, payload=None):
        notification_id = NotificationService().emit_or_merge(kind, subject, payload or points_payload())
        db.session.commit()
        return notification_id

    def test_list_for_customer(self, app, subject):
        with app.app_context():
            self._emit(subject)
            service = NotificationService()

            assert len(service.list_for_account(subject.customer_id)) == 1
            # POINTS_AWARDED goes to the customer, not the business
            assert service.list_for_account(subject.business_id) == []

    def test_list_unread_only(self, app, subject):
        with app.app_context():
            notification_id = self._emit(subject)
            service = NotificationService()
            service.mark_read(notification_id, subject.customer_id)

            assert service.list_for_account(subject.customer_id, unread_only=True) == []
            assert len(service.list_for_account(subject.customer_id)) == 1

    def test_mark_read_sets_timestamp(self, app, subject):
        with app.app_context():
            notification_id = self._emit(subject)
            notification = NotificationService().mark_read(notification_id, subject.customer_id)

            assert notification.is_read is True
            assert notification.read_at is not None

    def test_other_account_cannot_read(self, app, subject):
        with app.app_context():
            notification_id = self._emit(subject)

            with pytest.raises(AuthorizationError):
                NotificationService().mark_read(notification_id, subject.business_id)

    def test_unknown_notification(self, app, subject):
        with app.app_context():
            with pytest.raises(NotFoundError):
                NotificationService().mark_read('does-not-exist', subject.customer_id)

    def test_delete(self, app, subject):
        with app.app_context():
            notification_id = self._emit(subject)
            NotificationService().delete(notification_id, subject.customer_id)

            assert db.session.get(Notification, notification_id) is None

    def test_pending_request_cannot_be_deleted(self, app, subject):
        with app.app_context():
            notification_id = self._emit(
                subject,
                NotificationKind.ENROLLMENT_REQUEST,
                EnrollmentRequestPayload('Corner Coffee', 'Coffee Club', 'req-1')
            )

            with pytest.raises(ValidationError):
                NotificationService().delete(notification_id, subject.customer_id)
