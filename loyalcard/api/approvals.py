"""
Enrollment approval API endpoints.

Handles:
- Business-initiated enrollment requests
- Approval request lookup
- Customer responses (accept / decline), which provision the enrollment and card
"""
from flask import Blueprint, g, jsonify, request

from ..middleware.actor_auth import require_account, require_business
from ..services.enrollment_service import Decision, EnrollmentService
from ..utils.errors import bad_request, error_response
from ..utils.exceptions import AlreadyTerminalError, AuthorizationError

approvals_bp = Blueprint('approvals', __name__)


@approvals_bp.route('', methods=['POST'])
@require_business
def create_enrollment_request():
    """
    Invite a customer into one of the caller's programs.

    Request body:
        customerId: Customer account id
        programId: Program id
        message: Optional note shown to the customer

    Returns:
        201 with the new approval request, or 200 with the already pending one
    """
    data = request.get_json(silent=True) or {}

    customer_id = data.get('customerId')
    program_id = data.get('programId')
    for field, value in (('customerId', customer_id), ('programId', program_id)):
        if not isinstance(value, int) or isinstance(value, bool):
            return bad_request(f'{field} is required and must be an integer', field=field)

    message = data.get('message') or ''
    if not isinstance(message, str):
        return bad_request('message must be a string', field='message')

    approval, created = EnrollmentService().request_enrollment(
        business_id=g.business_id,
        customer_id=customer_id,
        program_id=program_id,
        note=message.strip()
    )

    return jsonify({
        'success': True,
        'created': created,
        'request': approval.to_dict()
    }), 201 if created else 200


@approvals_bp.route('/<request_id>', methods=['GET'])
@require_account
def get_enrollment_request(request_id):
    """Approval request state, visible to its customer and its business."""
    approval = EnrollmentService().get_request(request_id, g.account_id)
    return jsonify(approval.to_dict())


@approvals_bp.route('/<request_id>/respond', methods=['POST'])
@require_account
def respond_to_request(request_id):
    """
    Customer accepts or declines an enrollment request.

    Request body:
        approved: bool

    Responding again with the same answer returns the original result with
    ``replayed: true``. A different answer to a resolved request is a 409.
    """
    data = request.get_json(silent=True) or {}
    approved = data.get('approved')
    if not isinstance(approved, bool):
        return bad_request('approved must be true or false', field='approved')

    service = EnrollmentService()
    approval = service.get_request(request_id, g.account_id)
    if approval.customer_id != g.account_id:
        raise AuthorizationError('Only the invited customer can respond')

    try:
        outcome = service.resolve_approval(request_id, Decision.from_approved(approved))
    except AlreadyTerminalError as e:
        response, status = error_response(e.message, e.code, e.status_code, log_error=True)
        body = response.get_json()
        body['outcome'] = e.outcome.to_dict() if e.outcome else None
        return jsonify(body), status

    return jsonify(outcome.to_dict())
