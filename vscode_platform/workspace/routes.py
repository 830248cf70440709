import logging
from flask import Blueprint, Response, jsonify
from vscode_platform.auth.decorators import token_required
from vscode_platform.rate_limit import (
    create_workspace_limit, delete_workspace_limit, workspace_action_limit
)
from vscode_platform.validation import (
    CreateWorkspaceRequest, UpdateWorkspaceRequest, WorkspaceActionRequest, WorkspaceDetailQuery,
    WorkspaceLogsQuery, WorkspaceQuery, validate_body, validate_query,
)
from vscode_platform.workspace.service import workspace_service
from vscode_platform.workspace.tiers import list_tiers

logger = logging.getLogger(__name__)
workspace_bp = Blueprint('workspaces', __name__)


@workspace_bp.route('', methods=['GET'])
@token_required
def list_workspaces(current_user):
    """List the workspaces visible to the current user"""
    query = validate_query(WorkspaceQuery)
    workspaces = workspace_service.list_workspaces_for(
        current_user,
        group_id=query.group_id,
        status=query.status,
        limit=query.limit,
        offset=query.offset,
    )
    return jsonify([w.to_dict() for w in workspaces])


@workspace_bp.route('/tiers', methods=['GET'])
@token_required
def get_tiers(current_user):
    return jsonify(list_tiers())


@workspace_bp.route('', methods=['POST'])
@token_required
@create_workspace_limit
def create_workspace(current_user):
    """Create a new workspace"""
    body = validate_body(CreateWorkspaceRequest)
    workspace = workspace_service.create_workspace(
        current_user,
        name=body.name,
        group_id=body.group_id,
        description=body.description,
        image=body.image,
        resources=body.resources.model_dump() if body.resources else None,
        tier=body.tier,
    )
    return jsonify(workspace.to_dict()), 201


@workspace_bp.route('/<workspace_id>', methods=['GET'])
@token_required
def get_workspace(current_user, workspace_id):
    query = validate_query(WorkspaceDetailQuery)
    return jsonify(workspace_service.get_workspace_detail(
        current_user, workspace_id, include_password=query.include_password
    ))


@workspace_bp.route('/<workspace_id>', methods=['PATCH'])
@token_required
def update_workspace(current_user, workspace_id):
    body = validate_body(UpdateWorkspaceRequest)
    updates = body.model_dump(exclude_unset=True)
    if body.resources is not None:
        updates['resources'] = body.resources.model_dump(exclude_none=True)
    workspace = workspace_service.update_workspace(current_user, workspace_id, updates)
    return jsonify(workspace.to_dict())


@workspace_bp.route('/<workspace_id>', methods=['DELETE'])
@token_required
@delete_workspace_limit
def delete_workspace(current_user, workspace_id):
    workspace_service.delete_workspace(current_user, workspace_id)
    return '', 204


@workspace_bp.route('/<workspace_id>/actions', methods=['POST'])
@token_required
@workspace_action_limit
def workspace_action(current_user, workspace_id):
    """Start, stop or restart a workspace"""
    body = validate_body(WorkspaceActionRequest)
    workspace = workspace_service.perform_action(current_user, workspace_id, body.type)
    return jsonify(workspace.to_dict())


@workspace_bp.route('/<workspace_id>/metrics', methods=['GET'])
@token_required
def get_metrics(current_user, workspace_id):
    return jsonify(workspace_service.get_metrics(current_user, workspace_id))


@workspace_bp.route('/<workspace_id>/logs', methods=['GET'])
@token_required
def get_logs(current_user, workspace_id):
    query = validate_query(WorkspaceLogsQuery)
    logs = workspace_service.get_logs(current_user, workspace_id, query.lines)
    return Response(logs, mimetype='text/plain')


@workspace_bp.route('/<workspace_id>/status', methods=['GET'])
@token_required
def get_status(current_user, workspace_id):
    return jsonify(workspace_service.get_component_status(current_user, workspace_id))


@workspace_bp.route('/<workspace_id>/cost', methods=['GET'])
@token_required
def get_cost(current_user, workspace_id):
    return jsonify(workspace_service.get_cost(current_user, workspace_id))
