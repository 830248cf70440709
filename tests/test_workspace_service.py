"""
Unit tests for WorkspaceService.

Tests cover:
- Access control (owner, group member, admin, everyone else gets 404)
- Creation order of Kubernetes objects and rollback on failure
- Start/stop/restart actions and the status refresh loop
- Status reconciliation, logs and component status
"""

from types import SimpleNamespace
from unittest.mock import call, patch

import pytest

from conftest import make_group, make_user, make_workspace
from vscode_platform.admin.models import SystemSettings
from vscode_platform.errors import ConflictError, KubernetesError, NotFoundError, ValidationError
from vscode_platform.workspace.models import WorkspaceResources, WorkspaceStatus
from vscode_platform.workspace.service import WorkspaceService


def _config(**overrides):
    values = {
        'WORKSPACE_DOMAIN': 'ws.example.com',
        'WORKSPACE_STORAGE_CLASS': 'gp3',
        'DEFAULT_WORKSPACE_IMAGE': 'codercom/code-server:latest',
        'STATUS_REFRESH_ATTEMPTS': 0,
        'STATUS_REFRESH_DELAY_SECONDS': 0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def service(mock_db, mock_k8s):
    mock_db.create_workspace.side_effect = lambda workspace: workspace
    mock_db.get_system_settings.return_value = SystemSettings(default_workspace_image='custom/code-server:4')
    return WorkspaceService(db=mock_db, k8s=mock_k8s, config=_config())


@pytest.mark.unit
class TestAccess:

    def test_owner_can_access(self, service, mock_db):
        mock_db.get_workspace.return_value = make_workspace(group_id='grp_other')
        owner = make_user()

        assert service.get_accessible_workspace(owner, 'ws_abc').id == 'ws_abc'

    def test_group_member_can_access(self, service, mock_db):
        mock_db.get_workspace.return_value = make_workspace(user_id='usr_other')
        member = make_user(groups=['grp_1'])

        assert service.get_accessible_workspace(member, 'ws_abc').id == 'ws_abc'

    def test_admin_can_access(self, service, mock_db, admin_user):
        mock_db.get_workspace.return_value = make_workspace(user_id='usr_other')

        assert service.get_accessible_workspace(admin_user, 'ws_abc').id == 'ws_abc'

    def test_outsider_gets_not_found(self, service, mock_db):
        mock_db.get_workspace.return_value = make_workspace(user_id='usr_other')
        outsider = make_user(user_id='usr_3', groups=['grp_9'])

        with pytest.raises(NotFoundError, match='Workspace not found'):
            service.get_accessible_workspace(outsider, 'ws_abc')

    def test_missing_workspace(self, service, mock_db, user):
        mock_db.get_workspace.return_value = None

        with pytest.raises(NotFoundError):
            service.get_accessible_workspace(user, 'ws_missing')


@pytest.mark.unit
class TestCreateWorkspace:

    def test_creates_objects_in_order(self, service, mock_db, mock_k8s, user):
        mock_db.get_group.return_value = make_group()

        service.create_workspace(user, 'My Workspace', 'grp_1', tier='single-user')

        workspace = mock_db.create_workspace.call_args[0][0]
        assert workspace.status == WorkspaceStatus.PENDING
        assert workspace.namespace == 'group-team'
        assert workspace.image == 'custom/code-server:4'
        assert workspace.resources == WorkspaceResources(cpu='1', memory='2Gi', storage='20Gi')
        assert workspace.url == f"https://{workspace.k8s_name}.group-team.ws.example.com"

        names = [c[0] for c in mock_k8s.method_calls]
        assert names == ['create_workspace_secret', 'create_pvc', 'create_deployment',
                         'create_service', 'create_ingress']
        mock_k8s.create_pvc.assert_called_once_with('group-team', workspace.k8s_name, '20Gi', 'gp3')
        labels = mock_k8s.create_deployment.call_args[1]['labels']
        assert labels['vscode-platform/workspace-id'] == workspace.id
        assert labels['vscode-platform/owner'] == 'alice'
        assert mock_k8s.create_deployment.call_args[1]['replicas'] == 0

        mock_db.update_workspace.assert_called_once_with(workspace.id, {'status': WorkspaceStatus.STOPPED})

    def test_explicit_image_and_resources(self, service, mock_db, user):
        mock_db.get_group.return_value = make_group()

        service.create_workspace(user, 'ws', 'grp_1', image='my/image:1',
                                 resources={'cpu': '4', 'memory': '8Gi', 'storage': '50Gi'})

        workspace = mock_db.create_workspace.call_args[0][0]
        assert workspace.image == 'my/image:1'
        assert workspace.resources == WorkspaceResources(cpu='4', memory='8Gi', storage='50Gi')

    def test_default_tier_resources(self, service, mock_db, user):
        mock_db.get_group.return_value = make_group()

        service.create_workspace(user, 'ws', 'grp_1')

        assert mock_db.create_workspace.call_args[0][0].resources == WorkspaceResources()

    def test_settings_failure_falls_back_to_default_image(self, service, mock_db, user):
        mock_db.get_group.return_value = make_group()
        mock_db.get_system_settings.side_effect = Exception('table unavailable')

        service.create_workspace(user, 'ws', 'grp_1')

        assert mock_db.create_workspace.call_args[0][0].image == 'codercom/code-server:latest'

    def test_non_member_cannot_create(self, service, mock_db):
        outsider = make_user(groups=[])

        with pytest.raises(NotFoundError, match='Group not found'):
            service.create_workspace(outsider, 'ws', 'grp_1')
        mock_db.create_workspace.assert_not_called()

    def test_unknown_tier(self, service, mock_db, user):
        mock_db.get_group.return_value = make_group()

        with pytest.raises(ValidationError):
            service.create_workspace(user, 'ws', 'grp_1', tier='huge')

    def test_failure_rolls_back_in_reverse_order(self, service, mock_db, mock_k8s, user):
        mock_db.get_group.return_value = make_group()
        mock_k8s.create_service.side_effect = KubernetesError('service rejected')

        with pytest.raises(KubernetesError):
            service.create_workspace(user, 'ws', 'grp_1')

        workspace = mock_db.create_workspace.call_args[0][0]
        deletes = [c for c in mock_k8s.method_calls if c[0].startswith('delete_')]
        assert deletes == [
            call.delete_deployment('group-team', workspace.k8s_name),
            call.delete_pvc('group-team', workspace.k8s_name),
            call.delete_secret('group-team', workspace.k8s_name),
        ]
        mock_db.delete_workspace.assert_called_once_with(workspace.id)
        mock_db.update_workspace.assert_not_called()

    def test_rollback_survives_cleanup_errors(self, service, mock_db, mock_k8s, user):
        mock_db.get_group.return_value = make_group()
        mock_k8s.create_ingress.side_effect = KubernetesError('ingress rejected')
        mock_k8s.delete_service.side_effect = KubernetesError('forbidden')

        with pytest.raises(KubernetesError, match='ingress rejected'):
            service.create_workspace(user, 'ws', 'grp_1')

        mock_k8s.delete_secret.assert_called_once()
        mock_db.delete_workspace.assert_called_once()


@pytest.mark.unit
class TestActions:

    def test_start_scales_up(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace(status=WorkspaceStatus.STOPPED)

        service.perform_action(user, 'ws_abc', 'start')

        updates = mock_db.update_workspace.call_args[0][1]
        assert updates['status'] == WorkspaceStatus.STARTING
        assert updates['replicas'] == 1
        assert updates['last_accessed_at']
        mock_k8s.scale_deployment.assert_called_once_with('group-team', 'workspace-abc', 1)
        mock_k8s.restart_deployment.assert_not_called()

    def test_stop_scales_down(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace(status=WorkspaceStatus.RUNNING)

        service.perform_action(user, 'ws_abc', 'stop')

        assert mock_db.update_workspace.call_args[0][1]['status'] == WorkspaceStatus.STOPPING
        mock_k8s.scale_deployment.assert_called_once_with('group-team', 'workspace-abc', 0)

    def test_restart_scales_up_and_rolls_pods(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace(status=WorkspaceStatus.RUNNING)

        service.perform_action(user, 'ws_abc', 'restart')

        mock_k8s.scale_deployment.assert_called_once_with('group-team', 'workspace-abc', 1)
        mock_k8s.restart_deployment.assert_called_once_with('group-team', 'workspace-abc')

    def test_start_running_workspace_conflicts(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace(status=WorkspaceStatus.RUNNING)

        with pytest.raises(ConflictError):
            service.perform_action(user, 'ws_abc', 'start')
        mock_k8s.scale_deployment.assert_not_called()

    def test_failed_scale_leaves_record_untouched(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace(status=WorkspaceStatus.STOPPED)
        mock_k8s.scale_deployment.side_effect = NotFoundError('Deployment not found')

        with pytest.raises(NotFoundError):
            service.perform_action(user, 'ws_abc', 'start')
        mock_db.update_workspace.assert_not_called()

    def test_failed_restart_leaves_record_untouched(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace(status=WorkspaceStatus.RUNNING)
        mock_k8s.restart_deployment.side_effect = KubernetesError('patch rejected')

        with pytest.raises(KubernetesError):
            service.perform_action(user, 'ws_abc', 'restart')
        mock_db.update_workspace.assert_not_called()

    def test_actions_schedule_refresh(self, service, mock_db, user):
        mock_db.get_workspace.return_value = make_workspace(status=WorkspaceStatus.STOPPED)

        with patch.object(service, 'schedule_status_refresh') as schedule:
            service.perform_action(user, 'ws_abc', 'start')

        schedule.assert_called_once()

    def test_create_does_not_schedule_refresh(self, service, mock_db, user):
        mock_db.get_group.return_value = make_group()

        with patch.object(service, 'schedule_status_refresh') as schedule:
            service.create_workspace(user, name='My Workspace', group_id='grp_1')

        schedule.assert_not_called()
        assert mock_db.update_workspace.call_args[0][1] == {'status': WorkspaceStatus.STOPPED}

    def test_no_refresh_thread_when_disabled(self, service, user):
        assert service.schedule_status_refresh(make_workspace()) is None

    def test_refresh_thread_is_started(self, mock_db, mock_k8s):
        service = WorkspaceService(db=mock_db, k8s=mock_k8s, config=_config(STATUS_REFRESH_ATTEMPTS=3))

        with patch('vscode_platform.workspace.service.threading.Thread') as thread_cls:
            thread = service.schedule_status_refresh(make_workspace())

        thread_cls.assert_called_once()
        assert thread_cls.call_args[1]['daemon'] is True
        thread.start.assert_called_once()

    def test_refresh_status_stops_at_stable_state(self, mock_db, mock_k8s):
        service = WorkspaceService(db=mock_db, k8s=mock_k8s, config=_config(STATUS_REFRESH_ATTEMPTS=5))
        mock_k8s.get_deployment_status.side_effect = [
            WorkspaceStatus.STARTING, WorkspaceStatus.RUNNING, WorkspaceStatus.RUNNING,
        ]

        final = service.refresh_status('ws_abc', 'group-team', 'workspace-abc')

        assert final == WorkspaceStatus.RUNNING
        assert mock_k8s.get_deployment_status.call_count == 2
        assert mock_db.update_workspace.call_args_list == [
            call('ws_abc', {'status': WorkspaceStatus.STARTING}),
            call('ws_abc', {'status': WorkspaceStatus.RUNNING}),
        ]

    def test_refresh_status_returns_after_shutdown(self, mock_db, mock_k8s):
        service = WorkspaceService(db=mock_db, k8s=mock_k8s, config=_config(STATUS_REFRESH_ATTEMPTS=5))
        service.shutdown()

        assert service.refresh_status('ws_abc', 'group-team', 'workspace-abc') is None
        mock_k8s.get_deployment_status.assert_not_called()


@pytest.mark.unit
class TestQueries:

    def test_reconcile_stores_changed_status(self, service, mock_db, mock_k8s):
        workspace = make_workspace(status=WorkspaceStatus.STARTING)
        mock_k8s.get_deployment_status.return_value = WorkspaceStatus.RUNNING

        service.reconcile_status(workspace)

        mock_db.update_workspace.assert_called_once_with('ws_abc', {'status': WorkspaceStatus.RUNNING})

    def test_reconcile_keeps_record_when_cluster_unreachable(self, service, mock_db, mock_k8s):
        workspace = make_workspace(status=WorkspaceStatus.RUNNING)
        mock_k8s.get_deployment_status.side_effect = KubernetesError('unreachable')

        assert service.reconcile_status(workspace) is workspace
        mock_db.update_workspace.assert_not_called()

    def test_list_merges_own_and_group_workspaces(self, service, mock_db, mock_k8s):
        member = make_user(groups=['grp_1'])
        own = make_workspace('ws_1')
        shared = make_workspace('ws_2', user_id='usr_other')
        mock_db.get_user_workspaces.return_value = [own]
        mock_db.get_group_workspaces.return_value = [own, shared]
        mock_k8s.get_deployment_status.return_value = WorkspaceStatus.STOPPED

        workspaces = service.list_workspaces_for(member)

        assert [w.id for w in workspaces] == ['ws_1', 'ws_2']

    def test_list_filters_by_status_and_paginates(self, service, mock_db, mock_k8s):
        member = make_user(groups=[])
        mock_db.get_user_workspaces.return_value = [
            make_workspace('ws_1', status=WorkspaceStatus.RUNNING),
            make_workspace('ws_2', status=WorkspaceStatus.STOPPED),
            make_workspace('ws_3', status=WorkspaceStatus.RUNNING),
        ]
        mock_k8s.get_deployment_status.return_value = WorkspaceStatus.RUNNING

        workspaces = service.list_workspaces_for(member, status='running', limit=1, offset=1)

        assert [w.id for w in workspaces] == ['ws_3']

    def test_list_for_foreign_group(self, service):
        with pytest.raises(NotFoundError):
            service.list_workspaces_for(make_user(groups=[]), group_id='grp_1')

    def test_password_is_only_shown_to_owner(self, service, mock_db, mock_k8s):
        mock_db.get_workspace.return_value = make_workspace(user_id='usr_other')
        mock_k8s.get_deployment_status.return_value = WorkspaceStatus.STOPPED
        member = make_user(groups=['grp_1'])

        detail = service.get_workspace_detail(member, 'ws_abc', include_password=True)

        assert detail['password'] == '********'

    def test_owner_can_read_password(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace()
        mock_k8s.get_deployment_status.return_value = WorkspaceStatus.STOPPED
        mock_k8s.get_namespace_metrics.return_value = {'pods': {'used': 0}}

        detail = service.get_workspace_detail(user, 'ws_abc', include_password=True)

        assert detail['password'] == 's3cret'
        assert detail['usage'] == {'pods': {'used': 0}}
        mock_k8s.get_namespace_metrics.assert_called_once_with('group-team', label_selector='app=workspace-abc')

    def test_logs_without_pods(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace()
        mock_k8s.list_pods.return_value = []

        assert service.get_logs(user, 'ws_abc') == 'No pods found for workspace'

    def test_logs_from_first_pod(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace()
        mock_k8s.list_pods.return_value = [{'name': 'workspace-abc-1'}]
        mock_k8s.get_pod_logs.return_value = 'hello'

        assert service.get_logs(user, 'ws_abc', lines=50) == 'hello'
        mock_k8s.get_pod_logs.assert_called_once_with('group-team', 'workspace-abc-1', 50)

    def test_component_status(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace()
        mock_k8s.get_workspace_components.return_value = [{'healthy': True}, {'healthy': False}]

        status = service.get_component_status(user, 'ws_abc')

        assert status['status'] == 'stopped'
        assert status['healthy'] is False

    def test_delete_removes_objects_and_record(self, service, mock_db, mock_k8s, user):
        mock_db.get_workspace.return_value = make_workspace()
        mock_k8s.delete_ingress.side_effect = KubernetesError('gone wrong')

        service.delete_workspace(user, 'ws_abc')

        mock_k8s.delete_secret.assert_called_once_with('group-team', 'workspace-abc')
        mock_db.delete_workspace.assert_called_once_with('ws_abc')

    def test_update_merges_resources(self, service, mock_db, user):
        mock_db.get_workspace.return_value = make_workspace()

        service.update_workspace(user, 'ws_abc', {'resources': {'cpu': '4'}, 'name': 'Renamed'})

        updates = mock_db.update_workspace.call_args[0][1]
        assert updates['resources'] == WorkspaceResources(cpu='4')
        assert updates['name'] == 'Renamed'


@pytest.mark.unit
def test_cost_uses_status_usage_factor(service, mock_db, user):
    mock_db.get_workspace.return_value = make_workspace(status=WorkspaceStatus.STOPPED)

    cost = service.get_cost(user, 'ws_abc')

    assert cost['usage_factor'] == 0.0
    assert cost['actual_monthly_cost'] == 0.0
    assert cost['total_monthly_cost'] > 0
