import logging
from functools import wraps
from flask import request
from vscode_platform.auth import tokens
from vscode_platform.errors import AuthenticationError, AuthorizationError
from vscode_platform.user.service import user_service

logger = logging.getLogger(__name__)


def token_required(f):
    """Authenticate the bearer token and pass the User as the first argument"""
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            raise AuthenticationError('Authentication token required')

        token = auth_header[len('Bearer '):].strip()
        if not token:
            raise AuthenticationError('Authentication token required')

        claims = tokens.verify_token(token)
        current_user = user_service.get_or_create_user(claims)
        logger.debug(f"Token validated for user: {current_user.username}")

        return f(current_user, *args, **kwargs)

    return decorated


def admin_required(f):
    """Decorator to require admin privileges"""
    @wraps(f)
    def decorated_function(current_user, *args, **kwargs):
        if not current_user.is_admin:
            raise AuthorizationError('Admin privileges required')
        return f(current_user, *args, **kwargs)

    return decorated_function


def group_membership_required(f):
    """Require membership of the group named in the URL or JSON body"""
    @wraps(f)
    def decorated_function(current_user, *args, **kwargs):
        group_id = kwargs.get('group_id')
        if not group_id:
            body = request.get_json(silent=True)
            if isinstance(body, dict):
                group_id = body.get('group_id')

        if not group_id:
            raise AuthorizationError('Group ID required')

        if not current_user.can_access_group(group_id):
            raise AuthorizationError('Insufficient group permissions')

        return f(current_user, *args, **kwargs)

    return decorated_function
