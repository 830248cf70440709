import logging
from flask import Blueprint, jsonify
from vscode_platform.auth.decorators import admin_required, group_membership_required, token_required
from vscode_platform.group.service import group_service
from vscode_platform.rate_limit import create_group_limit
from vscode_platform.validation import (
    AddGroupMemberRequest, CreateGroupRequest, UpdateGroupMemberRequest, UpdateGroupRequest,
    validate_body,
)

logger = logging.getLogger(__name__)
group_bp = Blueprint('groups', __name__)


@group_bp.route('', methods=['GET'])
@token_required
def list_groups(current_user):
    groups = group_service.list_groups_for(current_user)
    return jsonify([group.to_dict() for group in groups])


@group_bp.route('', methods=['POST'])
@token_required
@admin_required
@create_group_limit
def create_group(current_user):
    """Create a group and its Kubernetes namespace"""
    body = validate_body(CreateGroupRequest)
    group = group_service.create_group(
        current_user,
        name=body.name,
        display_name=body.display_name,
        namespace=body.namespace,
        description=body.description,
        resource_quota=body.resource_quota.model_dump() if body.resource_quota else None,
    )
    return jsonify(group.to_dict()), 201


@group_bp.route('/<group_id>', methods=['GET'])
@token_required
@group_membership_required
def get_group(current_user, group_id):
    return jsonify(group_service.get_group_with_usage(group_id))


@group_bp.route('/<group_id>', methods=['PATCH'])
@token_required
@admin_required
def update_group(current_user, group_id):
    body = validate_body(UpdateGroupRequest)
    updates = body.model_dump(exclude_unset=True)
    if body.resource_quota is not None:
        updates['resource_quota'] = body.resource_quota.model_dump(exclude_none=True)
    group = group_service.update_group(group_id, updates)
    return jsonify(group.to_dict())


@group_bp.route('/<group_id>', methods=['DELETE'])
@token_required
@admin_required
def delete_group(current_user, group_id):
    group_service.delete_group(group_id)
    return '', 204


@group_bp.route('/<group_id>/members', methods=['GET'])
@token_required
@group_membership_required
def list_members(current_user, group_id):
    return jsonify(group_service.list_members(group_id))


@group_bp.route('/<group_id>/members', methods=['POST'])
@token_required
@admin_required
def add_member(current_user, group_id):
    body = validate_body(AddGroupMemberRequest)
    group_service.add_member(group_id, body.user_id, body.role)
    return jsonify({'message': 'User added to group successfully'})


@group_bp.route('/<group_id>/members/<user_id>', methods=['PATCH'])
@token_required
@admin_required
def update_member(current_user, group_id, user_id):
    body = validate_body(UpdateGroupMemberRequest)
    user = group_service.update_member_role(group_id, user_id, body.role)
    return jsonify(user.to_dict())


@group_bp.route('/<group_id>/members/<user_id>', methods=['DELETE'])
@token_required
@admin_required
def remove_member(current_user, group_id, user_id):
    group_service.remove_member(group_id, user_id)
    return '', 204


@group_bp.route('/<group_id>/usage', methods=['GET'])
@token_required
@group_membership_required
def get_usage(current_user, group_id):
    return jsonify(group_service.get_usage(group_id))
