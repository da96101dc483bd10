"""
Tests for the QR code API.
"""
from loyalcard.extensions import db
from loyalcard.models import LoyaltyCard
from loyalcard.services.signature_service import SignatureService


class TestValidateToken:

    def test_valid_token(self, app, client):
        with app.app_context():
            token = SignatureService.from_config().sign({'type': 'loyaltyCard', 'cardId': 7})

        response = client.post('/api/qr/validate', json={'token': token})

        assert response.status_code == 200
        data = response.get_json()
        assert data['valid'] is True
        assert data['payload'] == {'type': 'loyaltyCard', 'cardId': 7}

    def test_token_signed_with_previous_key(self, app, client):
        with app.app_context():
            old = SignatureService(secret=app.config['QR_PREVIOUS_SECRET_KEYS'][0], validity_seconds=86400)
            token = old.sign({'type': 'loyaltyCard', 'cardId': 7})

        response = client.post('/api/qr/validate', json={'token': token})
        assert response.status_code == 200

    def test_unknown_key_rejected(self, client):
        token = SignatureService(secret='someone-elses-key', validity_seconds=86400).sign({'type': 'loyaltyCard', 'cardId': 7})

        response = client.post('/api/qr/validate', json={'token': token})

        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'SIGNATURE_INVALID'

    def test_malformed_token(self, client):
        response = client.post('/api/qr/validate', json={'token': 'not-a-token'})
        assert response.status_code == 401

    def test_expired_token(self, app, client):
        with app.app_context():
            token = SignatureService.from_config().sign({'type': 'loyaltyCard', 'cardId': 7},
                                                        timestamp=1_600_000_000)

        response = client.post('/api/qr/validate', json={'token': token})

        assert response.status_code == 410
        assert response.get_json()['error']['code'] == 'SIGNATURE_EXPIRED'

    def test_missing_token(self, client):
        response = client.post('/api/qr/validate', json={})

        assert response.status_code == 400
        assert response.get_json()['error']['field'] == 'token'


class TestCardToken:

    def test_owner_gets_verifiable_token(self, app, client, customer_headers, enrolled_card):
        response = client.get(f"/api/qr/cards/{enrolled_card['card_id']}", headers=customer_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['cardNumber'] == enrolled_card['card_number']

        with app.app_context():
            payload = SignatureService.from_config().verify(data['token'])
        assert payload['type'] == 'loyaltyCard'
        assert payload['cardId'] == enrolled_card['card_id']
        assert payload['programId'] == enrolled_card['program_id']

    def test_other_account_forbidden(self, client, sample_customer, enrolled_card):
        response = client.get(f"/api/qr/cards/{enrolled_card['card_id']}",
                              headers={'X-Account-ID': str(sample_customer.id)})
        assert response.status_code == 403

    def test_inactive_card(self, app, client, customer_headers, enrolled_card):
        with app.app_context():
            db.session.get(LoyaltyCard, enrolled_card['card_id']).is_active = False
            db.session.commit()

        response = client.get(f"/api/qr/cards/{enrolled_card['card_id']}", headers=customer_headers)
        assert response.status_code == 400

    def test_unknown_card(self, client, customer_headers):
        response = client.get('/api/qr/cards/9999', headers=customer_headers)
        assert response.status_code == 404

    def test_requires_account(self, client, enrolled_card):
        response = client.get(f"/api/qr/cards/{enrolled_card['card_id']}")
        assert response.status_code == 401
