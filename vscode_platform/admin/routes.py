import logging
from datetime import timedelta
from functools import wraps
from flask import Blueprint, g, jsonify
from vscode_platform.admin.models import AuditLog
from vscode_platform.auth.decorators import admin_required, token_required
from vscode_platform.config import app_config
from vscode_platform.errors import NotFoundError, ValidationError
from vscode_platform.k8s.service import kubernetes_service
from vscode_platform.rate_limit import admin_limit
from vscode_platform.storage.dynamodb import dynamodb_service
from vscode_platform.user.service import user_service
from vscode_platform.utils.quantities import percentage
from vscode_platform.utils.timestamps import parse_iso, utc_now, utc_now_iso
from vscode_platform.validation import (
    AddUserToGroupRequest, AuditLogQuery, UpdateSystemSettingsRequest, UpdateUserRequest, UserQuery,
    validate_body, validate_query,
)
from vscode_platform.workspace.models import WorkspaceStatus

logger = logging.getLogger(__name__)
admin_bp = Blueprint('admin', __name__)

ACTIVE_USER_DAYS = 7


def admin_route(f):
    """Authenticated admin endpoint with the admin rate limit"""
    return token_required(admin_required(admin_limit(f)))


def record_audit(current_user, action, resource, success, details=None, error=None):
    dynamodb_service.create_audit_log(AuditLog(
        user_id=current_user.id,
        username=current_user.username,
        action=action,
        resource=resource,
        success=success,
        details=details,
        error=error,
    ))


def audited(action, resource='settings'):
    """Write an audit log entry for the wrapped admin action, whether it succeeds or fails.

    Views put extra success details on ``g.audit_details``.
    """
    def decorator(f):
        @wraps(f)
        def decorated(current_user, *args, **kwargs):
            target = f"user:{kwargs['user_id']}" if 'user_id' in kwargs else resource
            g.audit_details = None
            try:
                response = f(current_user, *args, **kwargs)
            except Exception as e:
                record_audit(current_user, action, target, False, details={'error': str(e)}, error=str(e))
                raise
            record_audit(current_user, action, target, True, details=g.audit_details)
            return response
        return decorated
    return decorator


def _require_user(user_id):
    user = user_service.get_user_by_id(user_id)
    if user is None:
        raise NotFoundError('User not found')
    return user


def _matches(user, term):
    term = term.lower()
    return any(term in (value or '').lower() for value in (user.name, user.username, user.email))


# Users

@admin_bp.route('/users', methods=['GET'])
@admin_route
def list_users(current_user):
    query = validate_query(UserQuery)
    users, next_token = user_service.list_users(query.limit, query.next_token)
    if query.search:
        users = [u for u in users if _matches(u, query.search)]

    return jsonify({
        'items': [u.to_dict() for u in users],
        'next_token': next_token,
        'has_more': bool(next_token),
        'total': len(users),
    })


@admin_bp.route('/users/<user_id>', methods=['GET'])
@admin_route
def get_user(current_user, user_id):
    user = _require_user(user_id)
    workspaces = dynamodb_service.get_user_workspaces(user_id)

    group_details = []
    for group_id in user.groups:
        try:
            group = dynamodb_service.get_group(group_id)
        except Exception as e:
            logger.warning(f"Failed to get group {group_id}: {e}")
            continue
        if group is not None:
            group_details.append(group.to_dict())

    result = user.to_dict()
    result['workspaces_count'] = len(workspaces)
    result['group_details'] = group_details
    return jsonify(result)


@admin_bp.route('/users/<user_id>', methods=['PATCH'])
@admin_route
@audited('update_user')
def update_user(current_user, user_id):
    body = validate_body(UpdateUserRequest)
    _require_user(user_id)
    updates = body.model_dump(exclude_none=True)

    user = user_service.update_user(user_id, updates)
    g.audit_details = {'updates': updates}
    logger.info(f"User {user_id} updated by admin {current_user.id}")
    return jsonify(user.to_dict())


@admin_bp.route('/users/<user_id>', methods=['DELETE'])
@admin_route
@audited('delete_user')
def delete_user(current_user, user_id):
    user = _require_user(user_id)

    workspaces = dynamodb_service.get_user_workspaces(user_id)
    if workspaces:
        logger.warning(f"Deleting user {user_id} with {len(workspaces)} remaining workspaces")

    user_service.delete_user(user_id)
    g.audit_details = {'deleted_user': user.email}
    logger.info(f"User {user_id} deleted by admin {current_user.id}")
    return '', 204


@admin_bp.route('/users/<user_id>/promote', methods=['POST'])
@admin_route
@audited('promote_user_to_admin')
def promote_user(current_user, user_id):
    user = _require_user(user_id)
    if user.is_admin:
        return jsonify({'message': 'User is already an admin'})

    updated = user_service.set_user_admin(user_id, True)
    g.audit_details = {'promoted_user': user.email}
    logger.info(f"User {user_id} promoted to admin by {current_user.id}")
    return jsonify(updated.to_dict())


@admin_bp.route('/users/<user_id>/demote', methods=['POST'])
@admin_route
@audited('demote_admin_user')
def demote_user(current_user, user_id):
    user = _require_user(user_id)
    if not user.is_admin:
        return jsonify({'message': 'User is not an admin'})
    if user_id == current_user.id:
        raise ValidationError('Cannot demote yourself', code='SELF_DEMOTION_NOT_ALLOWED')

    updated = user_service.set_user_admin(user_id, False)
    g.audit_details = {'demoted_user': user.email}
    logger.info(f"Admin {user_id} demoted by {current_user.id}")
    return jsonify(updated.to_dict())


@admin_bp.route('/users/<user_id>/groups', methods=['POST'])
@admin_route
@audited('add_user_to_group')
def add_user_to_group(current_user, user_id):
    body = validate_body(AddUserToGroupRequest)
    _require_user(user_id)

    group = dynamodb_service.get_group(body.group_id)
    if group is None:
        raise NotFoundError('Group not found')

    updated = user_service.add_user_to_group(user_id, group.id)
    g.audit_details = {'group_id': group.id, 'group_name': group.name}
    logger.info(f"User {user_id} added to group {group.id} by admin {current_user.id}")
    return jsonify(updated.to_dict())


@admin_bp.route('/users/<user_id>/groups/<group_id>', methods=['DELETE'])
@admin_route
@audited('remove_user_from_group')
def remove_user_from_group(current_user, user_id, group_id):
    _require_user(user_id)
    updated = user_service.remove_user_from_group(user_id, group_id)
    g.audit_details = {'group_id': group_id}
    logger.info(f"User {user_id} removed from group {group_id} by admin {current_user.id}")
    return jsonify(updated.to_dict())


# Audit logs and platform state

@admin_bp.route('/audit-logs', methods=['GET'])
@admin_route
def get_audit_logs(current_user):
    query = validate_query(AuditLogQuery)
    logs, next_token = dynamodb_service.get_audit_logs(
        start_date=query.start_date,
        end_date=query.end_date,
        user_id=query.user_id,
        action=query.action,
        limit=query.limit,
        next_token=query.next_token,
    )
    return jsonify({
        'items': [log.to_dict() for log in logs],
        'next_token': next_token,
        'has_more': bool(next_token),
    })


@admin_bp.route('/stats', methods=['GET'])
@admin_route
def get_stats(current_user):
    """Platform-wide counts and recent activity"""
    users = dynamodb_service.list_all_users()
    groups = dynamodb_service.list_groups()
    workspaces = dynamodb_service.list_workspaces()
    running = sum(1 for w in workspaces if w.status == WorkspaceStatus.RUNNING)

    cutoff = utc_now() - timedelta(days=ACTIVE_USER_DAYS)
    active_users = 0
    for user in users:
        last_login = parse_iso(user.last_login_at)
        if last_login is not None and last_login >= cutoff:
            active_users += 1

    return jsonify({
        'platform': {
            'total_users': len(users),
            'admin_users': sum(1 for u in users if u.is_admin),
            'total_groups': len(groups),
            'total_workspaces': len(workspaces),
            'running_workspaces': running,
        },
        'activity': {
            'active_users_last_7_days': active_users,
            'workspace_utilization': percentage(running, len(workspaces)),
        },
        'timestamp': utc_now_iso(),
    })


@admin_bp.route('/health', methods=['GET'])
@admin_route
def get_health(current_user):
    database = dynamodb_service.health_check()
    kubernetes = kubernetes_service.health_check()
    healthy = database and kubernetes

    return jsonify({
        'status': 'healthy' if healthy else 'unhealthy',
        'database': database,
        'kubernetes': kubernetes,
        'timestamp': utc_now_iso(),
        'version': app_config.VERSION,
    }), 200 if healthy else 503


@admin_bp.route('/settings', methods=['GET'])
@admin_route
def get_settings(current_user):
    return jsonify(dynamodb_service.get_system_settings().to_dict())


@admin_bp.route('/settings', methods=['PATCH'])
@admin_route
@audited('update_system_settings')
def update_settings(current_user):
    body = validate_body(UpdateSystemSettingsRequest)
    updates = body.model_dump(exclude_none=True)
    settings = dynamodb_service.update_system_settings(updates, current_user.id)
    g.audit_details = {'updates': updates}
    return jsonify(settings.to_dict())
