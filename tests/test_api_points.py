"""
Tests for the points API.
"""
from unittest.mock import patch

import pytest

from loyalcard.extensions import db
from loyalcard.models import CardActivity, LoyaltyCard
from loyalcard.services.rate_limiter import CacheCounterStore, FixedWindowRateLimiter
from loyalcard.services.signature_service import SignatureService


def _award_body(card_ref, points=10, key='pos-1001', source='MANUAL', **extra):
    body = {
        'cardRef': card_ref,
        'points': points,
        'source': source,
        'idempotencyKey': key
    }
    body.update(extra)
    return body


def _signer(app):
    with app.app_context():
        return SignatureService.from_config()


class TestAwardPoints:

    def test_award_by_card_number(self, app, client, business_headers, enrolled_card):
        response = client.post('/api/points/award', headers=business_headers,
                               json=_award_body({'cardNumber': enrolled_card['card_number']}, points=25))

        assert response.status_code == 200
        data = response.get_json()
        assert data == {
            'newBalance': 25,
            'cardId': enrolled_card['card_id'],
            'cardNumber': enrolled_card['card_number'],
            'points': 25,
            'replayed': False
        }

    def test_award_by_customer_and_program(self, client, business_headers, enrolled_card):
        response = client.post('/api/points/award', headers=business_headers, json=_award_body({
            'customerId': enrolled_card['customer_id'],
            'programId': enrolled_card['program_id']
        }))

        assert response.status_code == 200
        assert response.get_json()['cardId'] == enrolled_card['card_id']

    def test_award_by_qr_token(self, app, client, business_headers, enrolled_card):
        with app.app_context():
            card = db.session.get(LoyaltyCard, enrolled_card['card_id'])
            token = SignatureService.from_config().sign({
                'type': 'loyaltyCard',
                'cardNumber': card.card_number
            })

        response = client.post('/api/points/award', headers=business_headers,
                               json=_award_body({'qrToken': token}, points=3, source='QR_SCAN'))

        assert response.status_code == 200
        assert response.get_json()['newBalance'] == 3

    def test_replay_returns_first_result(self, app, client, business_headers, enrolled_card):
        body = _award_body({'cardNumber': enrolled_card['card_number']}, points=40)
        first = client.post('/api/points/award', headers=business_headers, json=body)
        second = client.post('/api/points/award', headers=business_headers, json=body)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.get_json()['newBalance'] == 40
        assert second.get_json()['replayed'] is True

        with app.app_context():
            assert CardActivity.query.filter_by(idempotency_key='pos-1001').count() == 1
            assert db.session.get(LoyaltyCard, enrolled_card['card_id']).points == 40

    @pytest.mark.parametrize('points', [0, -5, 'ten', None, True, 10001])
    def test_invalid_points(self, client, business_headers, enrolled_card, points):
        response = client.post('/api/points/award', headers=business_headers,
                               json=_award_body({'cardNumber': enrolled_card['card_number']}, points=points))

        assert response.status_code == 400
        assert response.get_json()['error']['field'] == 'points'

    def test_invalid_source(self, client, business_headers, enrolled_card):
        response = client.post('/api/points/award', headers=business_headers,
                               json=_award_body({'cardNumber': enrolled_card['card_number']}, source='GIFT'))

        assert response.status_code == 400
        assert response.get_json()['error']['field'] == 'source'

    def test_missing_idempotency_key(self, client, business_headers, enrolled_card):
        response = client.post('/api/points/award', headers=business_headers,
                               json=_award_body({'cardNumber': enrolled_card['card_number']}, key=''))

        assert response.status_code == 400
        assert response.get_json()['error']['field'] == 'idempotencyKey'

    def test_missing_card_ref(self, client, business_headers):
        response = client.post('/api/points/award', headers=business_headers, json={'points': 5})

        assert response.status_code == 400
        assert response.get_json()['error']['field'] == 'cardRef'

    def test_unknown_card(self, client, business_headers, enrolled_card):
        response = client.post('/api/points/award', headers=business_headers,
                               json=_award_body({'cardNumber': 'GC-000000-000000-0000'}))

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'CARD_NOT_FOUND'

    def test_not_enrolled(self, client, business_headers, sample_customer, sample_program):
        response = client.post('/api/points/award', headers=business_headers, json=_award_body({
            'customerId': sample_customer.id,
            'programId': sample_program.id
        }))

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'NOT_ENROLLED'

    def test_other_business_cannot_award(self, client, other_business, enrolled_card):
        response = client.post('/api/points/award', headers={'X-Business-ID': str(other_business.id)},
                               json=_award_body({'cardNumber': enrolled_card['card_number']}))

        assert response.status_code == 403

    def test_tampered_qr_token(self, app, client, business_headers, enrolled_card):
        token = _signer(app).sign({'type': 'loyaltyCard', 'cardNumber': enrolled_card['card_number']})
        payload, digest, timestamp = token.split('.')
        tampered = f'{payload}.{"0" * len(digest)}.{timestamp}'

        response = client.post('/api/points/award', headers=business_headers,
                               json=_award_body({'qrToken': tampered}, source='QR_SCAN'))

        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'SIGNATURE_INVALID'

    def test_expired_qr_token(self, app, client, business_headers, enrolled_card):
        signed_at = 1_600_000_000
        token = _signer(app).sign(
            {'type': 'loyaltyCard', 'cardNumber': enrolled_card['card_number']},
            timestamp=signed_at
        )

        response = client.post('/api/points/award', headers=business_headers,
                               json=_award_body({'qrToken': token}, source='QR_SCAN'))

        assert response.status_code == 410
        assert response.get_json()['error']['code'] == 'SIGNATURE_EXPIRED'

    def test_expired_qr_token_retry_of_applied_award(self, app, client, business_headers, enrolled_card):
        signer = _signer(app)
        card_payload = {'type': 'loyaltyCard', 'cardNumber': enrolled_card['card_number']}
        fresh = signer.sign(card_payload)
        expired = signer.sign(card_payload, timestamp=1_600_000_000)

        first = client.post('/api/points/award', headers=business_headers,
                            json=_award_body({'qrToken': fresh}, points=25, source='QR_SCAN'))
        retry = client.post('/api/points/award', headers=business_headers,
                            json=_award_body({'qrToken': expired}, points=25, source='QR_SCAN'))

        assert first.status_code == 200
        assert retry.status_code == 200
        assert retry.get_json()['replayed'] is True
        assert retry.get_json()['newBalance'] == 25

    def test_rate_limited(self, app, client, business_headers, enrolled_card):
        with app.app_context():
            limiter = FixedWindowRateLimiter(CacheCounterStore(), limit=2, window_seconds=60,
                                             clock=lambda: 1230.0)

        ref = {'cardNumber': enrolled_card['card_number']}
        with patch('loyalcard.services.points_service.get_award_rate_limiter', return_value=limiter):
            for i in range(2):
                response = client.post('/api/points/award', headers=business_headers,
                                       json=_award_body(ref, points=1, key=f'burst-{i}'))
                assert response.status_code == 200

            response = client.post('/api/points/award', headers=business_headers,
                                   json=_award_body(ref, points=1, key='burst-2'))

        assert response.status_code == 429
        assert response.headers['Retry-After'] == '30'
        assert response.get_json()['error']['code'] == 'RATE_LIMIT_EXCEEDED'

    def test_requires_business(self, client, enrolled_card):
        response = client.post('/api/points/award',
                               json=_award_body({'cardNumber': enrolled_card['card_number']}))
        assert response.status_code == 401


class TestCardHistory:

    def test_owner_sees_history(self, client, business_headers, customer_headers, enrolled_card):
        for i, points in enumerate([5, 7]):
            client.post('/api/points/award', headers=business_headers,
                        json=_award_body({'cardNumber': enrolled_card['card_number']}, points=points, key=f'h-{i}'))

        response = client.get(f"/api/points/cards/{enrolled_card['card_id']}/history", headers=customer_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['balance'] == 12
        assert data['total'] == 2
        assert [a['points'] for a in data['activities']] == [7, 5]

    def test_business_sees_history(self, client, sample_business, enrolled_card):
        response = client.get(f"/api/points/cards/{enrolled_card['card_id']}/history",
                              headers={'X-Account-ID': str(sample_business.id)})
        assert response.status_code == 200

    def test_stranger_forbidden(self, client, sample_customer, enrolled_card):
        response = client.get(f"/api/points/cards/{enrolled_card['card_id']}/history",
                              headers={'X-Account-ID': str(sample_customer.id)})
        assert response.status_code == 403

    def test_unknown_card(self, client, customer_headers):
        response = client.get('/api/points/cards/9999/history', headers=customer_headers)
        assert response.status_code == 404
