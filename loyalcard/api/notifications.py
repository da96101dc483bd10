"""
Notification API endpoints.

Recipients list, mark read and delete their own notifications. Creation only
happens inside the services through the deduplicator.
"""
from flask import Blueprint, g, jsonify, request

from ..middleware.actor_auth import require_account
from ..services.notification_service import NotificationService

notifications_bp = Blueprint('notifications', __name__)


@notifications_bp.route('', methods=['GET'])
@require_account
def list_notifications():
    """
    Notifications for the caller, newest first.

    Query params:
        unread_only: true to hide read notifications
        limit: Max items (default 50, max 200)
    """
    unread_only = request.args.get('unread_only', 'false').lower() in ('1', 'true', 'yes')
    limit = max(1, min(request.args.get('limit', 50, type=int), 200))

    notifications = NotificationService().list_for_account(
        g.account_id, unread_only=unread_only, limit=limit
    )
    return jsonify({
        'notifications': [n.to_dict() for n in notifications],
        'count': len(notifications)
    })


@notifications_bp.route('/<notification_id>/read', methods=['POST'])
@require_account
def mark_read(notification_id):
    notification = NotificationService().mark_read(notification_id, g.account_id)
    return jsonify(notification.to_dict())


@notifications_bp.route('/<notification_id>', methods=['DELETE'])
@require_account
def delete_notification(notification_id):
    NotificationService().delete(notification_id, g.account_id)
    return jsonify({'success': True, 'deleted': notification_id})
