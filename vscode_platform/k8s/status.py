"""Mapping between Deployment state and the workspace state machine."""

from vscode_platform.errors import ConflictError
from vscode_platform.workspace.models import WorkspaceAction, WorkspaceStatus


def _condition(conditions, condition_type):
    for condition in conditions or []:
        if _get(condition, 'type') == condition_type:
            return condition
    return None


def _get(obj, attr):
    if isinstance(obj, dict):
        return obj.get(attr)
    return getattr(obj, attr, None)


def status_from_deployment(spec_replicas, ready_replicas, conditions=None):
    """Derive a WorkspaceStatus from a deployment's replica counts and conditions"""
    spec_replicas = spec_replicas or 0
    ready_replicas = ready_replicas or 0

    if spec_replicas == 0:
        if ready_replicas > 0:
            return WorkspaceStatus.STOPPING
        return WorkspaceStatus.STOPPED

    progressing = _condition(conditions, 'Progressing')
    if progressing is not None and _get(progressing, 'status') == 'False' \
            and _get(progressing, 'reason') == 'ProgressDeadlineExceeded':
        return WorkspaceStatus.ERROR

    replica_failure = _condition(conditions, 'ReplicaFailure')
    if replica_failure is not None and _get(replica_failure, 'status') == 'True':
        return WorkspaceStatus.ERROR

    if ready_replicas == 0 or ready_replicas < spec_replicas:
        return WorkspaceStatus.STARTING
    return WorkspaceStatus.RUNNING


def check_action_allowed(action, current_status):
    """Raise ConflictError when an action makes no sense in the current state"""
    action = WorkspaceAction(action)
    current_status = WorkspaceStatus(current_status)
    if action == WorkspaceAction.START and current_status == WorkspaceStatus.RUNNING:
        raise ConflictError('Workspace is already running')
    if action == WorkspaceAction.STOP and current_status == WorkspaceStatus.STOPPED:
        raise ConflictError('Workspace is already stopped')


def transition_for(action):
    """Return (status, replicas) recorded immediately after an action is issued"""
    action = WorkspaceAction(action)
    if action == WorkspaceAction.STOP:
        return WorkspaceStatus.STOPPING, 0
    return WorkspaceStatus.STARTING, 1
