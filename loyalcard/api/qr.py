"""
QR code API endpoints.

Handles:
- Validation of scanned QR tokens
- Issuing signed loyalty-card tokens to card owners
"""
from flask import Blueprint, g, jsonify, request

from ..extensions import db
from ..middleware.actor_auth import require_account
from ..models import LoyaltyCard
from ..services.signature_service import get_signature_service, loyalty_card_payload
from ..utils.errors import bad_request
from ..utils.exceptions import AuthorizationError, NotFoundError, ValidationError

qr_bp = Blueprint('qr', __name__)


@qr_bp.route('/validate', methods=['POST'])
def validate_token():
    """
    Verify a scanned token.

    Request body:
        token: Signed QR token

    Returns:
        200 {valid: true, payload}; 401 tampered or malformed; 410 expired
    """
    data = request.get_json(silent=True) or {}
    token = data.get('token')
    if not token or not isinstance(token, str):
        return bad_request('token is required', field='token')

    payload = get_signature_service().verify(token)
    return jsonify({'valid': True, 'payload': payload})


@qr_bp.route('/cards/<int:card_id>', methods=['GET'])
@require_account
def card_token(card_id):
    """Freshly signed QR token for the caller's own card."""
    card = db.session.get(LoyaltyCard, card_id)
    if card is None:
        raise NotFoundError('Card', card_id)
    if card.customer_id != g.account_id:
        raise AuthorizationError('Card belongs to another account')
    if not card.is_active:
        raise ValidationError('Card is not active', field='card_id')

    token = get_signature_service().sign(loyalty_card_payload(card))
    return jsonify({'token': token, 'cardNumber': card.card_number})
