import logging
from flask import Blueprint, jsonify
from vscode_platform.auth.decorators import token_required
from vscode_platform.k8s.service import kubernetes_service
from vscode_platform.storage.dynamodb import dynamodb_service
from vscode_platform.utils.quantities import (
    format_cpu, format_memory, parse_cpu, parse_memory, percentage
)
from vscode_platform.workspace.models import WorkspaceStatus

logger = logging.getLogger(__name__)
dashboard_bp = Blueprint('dashboard', __name__)

_PARSERS = {
    'cpu': (parse_cpu, format_cpu),
    'memory': (parse_memory, format_memory),
    'storage': (parse_memory, format_memory),
}


def aggregate_usage(usages):
    """Sum namespace usage dicts and recompute percentages over the totals"""
    sums = {key: {'used': 0.0, 'total': 0.0} for key in _PARSERS}
    pods = {'used': 0, 'total': 0}

    for usage in usages:
        for key, (parse, _) in _PARSERS.items():
            sums[key]['used'] += parse(usage[key]['used'])
            sums[key]['total'] += parse(usage[key]['total'])
        pods['used'] += int(usage['pods']['used'])
        pods['total'] += int(usage['pods']['total'])

    result = {}
    for key, (_, fmt) in _PARSERS.items():
        used, total = sums[key]['used'], sums[key]['total']
        result[key] = {
            'used': fmt(used),
            'total': fmt(total),
            'percentage': percentage(used, total),
        }
    result['pods'] = {
        'used': pods['used'],
        'total': pods['total'],
        'percentage': percentage(pods['used'], pods['total']),
    }
    return result


@dashboard_bp.route('/stats', methods=['GET'])
@token_required
def get_stats(current_user):
    """Workspace counts and resource usage across the user's groups"""
    workspaces = dynamodb_service.get_user_workspaces(current_user.id)
    running = [w for w in workspaces if w.status == WorkspaceStatus.RUNNING]

    usages = []
    for group_id in current_user.groups:
        try:
            group = dynamodb_service.get_group(group_id)
            if group is None:
                continue
            usages.append(kubernetes_service.get_namespace_metrics(group.namespace))
        except Exception as e:
            logger.warning(f"Failed to get metrics for group {group_id}: {e}")

    return jsonify({
        'total_workspaces': len(workspaces),
        'running_workspaces': len(running),
        'total_groups': len(current_user.groups),
        'resource_usage': aggregate_usage(usages),
    })
