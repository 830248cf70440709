import logging
from flask import Blueprint, jsonify
from vscode_platform.auth.decorators import token_required
from vscode_platform.config import app_config
from vscode_platform.errors import ValidationError
from vscode_platform.user.service import user_service
from vscode_platform.validation import ChangePasswordRequest, UpdateProfileRequest, validate_body

logger = logging.getLogger(__name__)
auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/login', methods=['POST'])
def login():
    """Sign-in itself happens at the identity provider"""
    return jsonify({
        'success': True,
        'message': 'Login handled by auth provider'
    })


@auth_bp.route('/logout', methods=['POST'])
def logout():
    # Tokens are stateless, the client discards them
    return jsonify({
        'success': True,
        'message': 'Logged out successfully'
    })


@auth_bp.route('/me', methods=['GET'])
@token_required
def get_current_user(current_user):
    return jsonify({
        'success': True,
        'user': current_user.to_dict()
    })


@auth_bp.route('/profile', methods=['PATCH'])
@token_required
def update_profile(current_user):
    body = validate_body(UpdateProfileRequest)
    updates = body.model_dump(exclude_none=True)

    if 'email' in updates and updates['email'] != current_user.email:
        existing = user_service.get_user_by_email(updates['email'])
        if existing is not None and existing.id != current_user.id:
            raise ValidationError('Email address is already in use')

    user = user_service.update_user(current_user.id, updates) if updates else current_user
    logger.info(f"User profile updated: {user.id}")

    return jsonify({
        'success': True,
        'user': user.to_dict()
    })


@auth_bp.route('/change-password', methods=['POST'])
@token_required
def change_password(current_user):
    validate_body(ChangePasswordRequest)
    logger.info(f"Password change requested for user: {current_user.id}")

    provider_url = None
    if app_config.COGNITO_DOMAIN:
        provider_url = (f"https://{app_config.COGNITO_DOMAIN}/forgotPassword"
                        f"?client_id={app_config.COGNITO_CLIENT_ID}")

    return jsonify({
        'success': True,
        'message': 'For OAuth authentication, please use your authentication provider to change your password.',
        'provider_url': provider_url
    })
