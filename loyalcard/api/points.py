"""
Points API endpoints for loyalcard.

Handles:
- Point awards from QR scans and manual entry (business)
- Card activity history (card owner or program business)
"""
from flask import Blueprint, g, jsonify, request

from ..middleware.actor_auth import require_account, require_business
from ..services.points_service import CardRef, PointsService

points_bp = Blueprint('points', __name__)


@points_bp.route('/award', methods=['POST'])
@require_business
def award_points():
    """
    Award points to a card.

    Request body:
        cardRef: {"cardNumber": str} | {"customerId": int, "programId": int} | {"qrToken": str}
        points: Positive integer
        source: QR_SCAN or MANUAL
        idempotencyKey: Caller's transaction reference; replays return the first result
        description: Optional note

    Returns:
        {newBalance, cardId, cardNumber, points, replayed}
    """
    data = request.get_json(silent=True) or {}

    result = PointsService().award_points(
        card_ref=CardRef.from_dict(data.get('cardRef')),
        points=data.get('points'),
        source=data.get('source'),
        idempotency_key=data.get('idempotencyKey'),
        actor_business_id=g.business_id,
        description=data.get('description')
    )

    return jsonify(result.to_dict())


@points_bp.route('/cards/<int:card_id>/history', methods=['GET'])
@require_account
def card_history(card_id):
    """
    Card activity, newest first.

    Query params:
        page: Page number (default 1)
        per_page: Items per page (default 20, max 100)
    """
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', 20, type=int)

    history = PointsService().card_history(card_id, g.account_id, page=page, per_page=per_page)
    return jsonify(history)
