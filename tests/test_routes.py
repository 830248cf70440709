"""
Flask route tests for auth, workspaces, groups, dashboard and health endpoints.
"""

from unittest.mock import MagicMock

import pytest

from conftest import api_exception, make_group, make_user, make_workspace
from vscode_platform.config import app_config
from vscode_platform.dashboard.routes import aggregate_usage
from vscode_platform.errors import AuthenticationError, NotFoundError
from vscode_platform.rate_limit import limiter
from vscode_platform.workspace.tiers import ResourceTier


@pytest.fixture
def workspaces(monkeypatch):
    service = MagicMock()
    monkeypatch.setattr('vscode_platform.workspace.routes.workspace_service', service)
    return service


@pytest.fixture
def groups(monkeypatch):
    service = MagicMock()
    monkeypatch.setattr('vscode_platform.group.routes.group_service', service)
    return service


@pytest.mark.unit
class TestAppErrors:

    def test_root_info(self, client):
        response = client.get('/')
        assert response.status_code == 200
        assert response.get_json()['endpoints']['workspaces'] == '/api/workspaces'

    def test_unknown_route(self, client):
        response = client.get('/api/nope')
        assert response.status_code == 404
        assert response.get_json() == {'message': 'Route GET /api/nope not found', 'code': 'NOT_FOUND'}

    def test_missing_token(self, client):
        response = client.get('/api/workspaces')
        assert response.status_code == 401
        assert response.get_json()['code'] == 'AUTHENTICATION_ERROR'

    def test_invalid_token(self, client, monkeypatch):
        def reject(token):
            raise AuthenticationError('Invalid token')
        monkeypatch.setattr('vscode_platform.auth.tokens.verify_token', reject)

        response = client.get('/api/workspaces', headers={'Authorization': 'Bearer bogus'})

        assert response.status_code == 401
        assert response.get_json() == {'message': 'Invalid token', 'code': 'AUTHENTICATION_ERROR'}

    def test_kubernetes_errors_are_masked(self, client, login, user, workspaces):
        workspaces.get_metrics.side_effect = api_exception(500, 'boom')

        response = client.get('/api/workspaces/ws_abc/metrics', headers=login(user))

        assert response.status_code == 500
        assert response.get_json() == {'message': 'Kubernetes operation failed', 'code': 'KUBERNETES_ERROR'}

    def test_unhandled_errors_hide_details(self, client, login, user, workspaces):
        workspaces.get_cost.side_effect = RuntimeError('secret internals')

        response = client.get('/api/workspaces/ws_abc/cost', headers=login(user))

        assert response.status_code == 500
        assert response.get_json() == {'message': 'Internal server error', 'code': 'INTERNAL_ERROR'}


@pytest.mark.unit
class TestAuthRoutes:

    def test_me(self, client, login, user):
        response = client.get('/api/auth/me', headers=login(user))
        assert response.get_json()['user']['email'] == 'alice@example.com'

    def test_profile_email_taken(self, client, login, user, monkeypatch):
        users = MagicMock()
        users.get_user_by_email.return_value = make_user(user_id='usr_other', email='taken@example.com')
        monkeypatch.setattr('vscode_platform.auth.routes.user_service', users)

        response = client.patch('/api/auth/profile', json={'email': 'taken@example.com'}, headers=login(user))

        assert response.status_code == 400
        users.update_user.assert_not_called()

    def test_logout_is_stateless(self, client):
        assert client.post('/api/auth/logout').get_json()['success'] is True


@pytest.mark.unit
class TestWorkspaceRoutes:

    def test_list_passes_query(self, client, login, user, workspaces):
        workspaces.list_workspaces_for.return_value = [make_workspace()]

        response = client.get('/api/workspaces?limit=5&status=running', headers=login(user))

        assert response.status_code == 200
        body = response.get_json()
        assert body[0]['id'] == 'ws_abc'
        assert body[0]['password'] == '********'
        kwargs = workspaces.list_workspaces_for.call_args[1]
        assert kwargs['limit'] == 5
        assert kwargs['status'] == 'running'

    def test_list_rejects_bad_query(self, client, login, user, workspaces):
        response = client.get('/api/workspaces?limit=0', headers=login(user))

        assert response.status_code == 400
        assert response.get_json()['message'] == 'Query validation failed'
        workspaces.list_workspaces_for.assert_not_called()

    def test_create(self, client, login, user, workspaces):
        workspaces.create_workspace.return_value = make_workspace()

        response = client.post('/api/workspaces', headers=login(user),
                               json={'name': 'My Workspace', 'group_id': 'grp_1', 'tier': 'single-user'})

        assert response.status_code == 201
        kwargs = workspaces.create_workspace.call_args[1]
        assert kwargs['group_id'] == 'grp_1'
        assert kwargs['tier'] == ResourceTier.SINGLE_USER
        assert kwargs['resources'] is None

    def test_create_validation_details(self, client, login, user, workspaces):
        response = client.post('/api/workspaces', json={'name': 'ok'}, headers=login(user))

        assert response.status_code == 400
        body = response.get_json()
        assert body['code'] == 'VALIDATION_ERROR'
        assert [f['field'] for f in body['details']['fields']] == ['group_id']

    def test_non_object_body(self, client, login, user, workspaces):
        response = client.post('/api/workspaces', json=['a'], headers=login(user))
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Request body must be a JSON object'

    def test_get_missing_workspace(self, client, login, user, workspaces):
        workspaces.get_workspace_detail.side_effect = NotFoundError('Workspace not found')

        response = client.get('/api/workspaces/ws_missing', headers=login(user))

        assert response.status_code == 404
        assert response.get_json() == {'message': 'Workspace not found', 'code': 'NOT_FOUND'}

    def test_get_with_password(self, client, login, user, workspaces):
        workspaces.get_workspace_detail.return_value = {'id': 'ws_abc'}

        client.get('/api/workspaces/ws_abc?include_password=true', headers=login(user))

        workspaces.get_workspace_detail.assert_called_once_with(user, 'ws_abc', include_password=True)

    def test_update_resources(self, client, login, user, workspaces):
        workspaces.update_workspace.return_value = make_workspace()

        client.patch('/api/workspaces/ws_abc', json={'resources': {'cpu': '4'}}, headers=login(user))

        workspaces.update_workspace.assert_called_once_with(user, 'ws_abc', {'resources': {'cpu': '4'}})

    def test_update_rejects_invalid_quantity(self, client, login, user, workspaces):
        response = client.patch('/api/workspaces/ws_abc', json={'resources': {'memory': 'lots'}},
                                headers=login(user))

        assert response.status_code == 400
        workspaces.update_workspace.assert_not_called()

    def test_delete(self, client, login, user, workspaces):
        response = client.delete('/api/workspaces/ws_abc', headers=login(user))

        assert response.status_code == 204
        workspaces.delete_workspace.assert_called_once_with(user, 'ws_abc')

    def test_unknown_action(self, client, login, user, workspaces):
        response = client.post('/api/workspaces/ws_abc/actions', json={'type': 'pause'}, headers=login(user))

        assert response.status_code == 400
        workspaces.perform_action.assert_not_called()

    def test_logs_are_plain_text(self, client, login, user, workspaces):
        workspaces.get_logs.return_value = 'line one\nline two'

        response = client.get('/api/workspaces/ws_abc/logs?lines=50', headers=login(user))

        assert response.mimetype == 'text/plain'
        assert response.get_data(as_text=True) == 'line one\nline two'
        workspaces.get_logs.assert_called_once_with(user, 'ws_abc', 50)

    def test_tiers(self, client, login, user):
        response = client.get('/api/workspaces/tiers', headers=login(user))
        assert len(response.get_json()) == 3


@pytest.mark.unit
class TestRateLimiting:

    @pytest.fixture(autouse=True)
    def enabled(self, monkeypatch):
        monkeypatch.setattr(app_config, 'RATE_LIMIT_ENABLED', True)
        limiter.reset()
        yield
        limiter.reset()

    def test_workspace_actions_are_limited(self, client, login, user, workspaces):
        workspaces.perform_action.return_value = make_workspace()
        headers = login(user)

        for _ in range(20):
            response = client.post('/api/workspaces/ws_abc/actions', json={'type': 'start'}, headers=headers)
            assert response.status_code == 200

        response = client.post('/api/workspaces/ws_abc/actions', json={'type': 'start'}, headers=headers)

        assert response.status_code == 429
        assert response.get_json()['code'] == 'RATE_LIMIT_EXCEEDED'
        assert int(response.headers['Retry-After']) > 0

    def test_admins_skip_workspace_limits(self, client, login, admin_user, workspaces):
        workspaces.perform_action.return_value = make_workspace()
        headers = login(admin_user)

        for _ in range(21):
            response = client.post('/api/workspaces/ws_abc/actions', json={'type': 'stop'}, headers=headers)
        assert response.status_code == 200


@pytest.mark.unit
class TestGroupRoutes:

    def test_create_requires_admin(self, client, login, user, groups):
        response = client.post('/api/groups', headers=login(user),
                               json={'name': 'team', 'display_name': 'Team', 'namespace': 'group-team'})

        assert response.status_code == 403
        assert response.get_json()['message'] == 'Admin privileges required'
        groups.create_group.assert_not_called()

    def test_create(self, client, login, admin_user, groups):
        groups.create_group.return_value = make_group()

        response = client.post('/api/groups', headers=login(admin_user),
                               json={'name': 'team', 'display_name': 'Team', 'namespace': 'group-team'})

        assert response.status_code == 201
        assert groups.create_group.call_args[1]['resource_quota'] is None

    def test_get_requires_membership(self, client, login, user, groups):
        response = client.get('/api/groups/grp_other', headers=login(user))

        assert response.status_code == 403
        groups.get_group_with_usage.assert_not_called()

    def test_member_can_read_group(self, client, login, user, groups):
        groups.get_group_with_usage.return_value = {'id': 'grp_1'}

        response = client.get('/api/groups/grp_1', headers=login(user))

        assert response.get_json() == {'id': 'grp_1'}

    def test_quota_update_drops_unset_fields(self, client, login, admin_user, groups):
        groups.update_group.return_value = make_group()

        client.patch('/api/groups/grp_1', json={'resource_quota': {'cpu': '16'}}, headers=login(admin_user))

        groups.update_group.assert_called_once_with('grp_1', {'resource_quota': {'cpu': '16'}})


def _usage(cpu_used, cpu_total, memory_used, memory_total, pods_used, pods_total):
    return {
        'cpu': {'used': cpu_used, 'total': cpu_total},
        'memory': {'used': memory_used, 'total': memory_total},
        'storage': {'used': '0', 'total': '10Gi'},
        'pods': {'used': pods_used, 'total': pods_total},
    }


@pytest.mark.unit
class TestDashboard:

    def test_aggregate_usage(self):
        result = aggregate_usage([
            _usage('500m', '2', '1Gi', '4Gi', 1, 10),
            _usage('1', '2', '1Gi', '4Gi', 2, 10),
        ])

        assert result['cpu'] == {'used': '1.5', 'total': '4', 'percentage': 37.5}
        assert result['memory'] == {'used': '2.0Gi', 'total': '8.0Gi', 'percentage': 25.0}
        assert result['pods'] == {'used': 3, 'total': 20, 'percentage': 15.0}

    def test_aggregate_nothing(self):
        assert aggregate_usage([])['pods']['percentage'] == 0.0

    def test_stats_skip_failing_groups(self, client, login, monkeypatch):
        from vscode_platform.workspace.models import WorkspaceStatus

        db = MagicMock()
        db.get_user_workspaces.return_value = [make_workspace(status=WorkspaceStatus.RUNNING), make_workspace()]
        db.get_group.side_effect = lambda group_id: make_group(group_id)
        k8s = MagicMock()
        k8s.get_namespace_metrics.side_effect = [_usage('1', '2', '1Gi', '2Gi', 1, 4), api_exception(403)]
        monkeypatch.setattr('vscode_platform.dashboard.routes.dynamodb_service', db)
        monkeypatch.setattr('vscode_platform.dashboard.routes.kubernetes_service', k8s)

        response = client.get('/api/dashboard/stats', headers=login(make_user(groups=['grp_1', 'grp_2'])))

        body = response.get_json()
        assert body['total_workspaces'] == 2
        assert body['running_workspaces'] == 1
        assert body['total_groups'] == 2
        assert body['resource_usage']['cpu']['percentage'] == 50.0


@pytest.mark.unit
class TestHealth:

    @pytest.fixture
    def deps(self, monkeypatch):
        db, k8s = MagicMock(), MagicMock()
        db.health_check.return_value = True
        k8s.health_check.return_value = True
        k8s.list_namespaces.return_value = ['default', 'group-team']
        monkeypatch.setattr('vscode_platform.health.routes.dynamodb_service', db)
        monkeypatch.setattr('vscode_platform.health.routes.kubernetes_service', k8s)
        return db, k8s

    def test_healthy(self, client, deps):
        response = client.get('/api/health')

        assert response.status_code == 200
        body = response.get_json()
        assert body['status'] == 'healthy'
        assert body['environment'] == 'test'

    def test_unhealthy_database(self, client, deps):
        deps[0].health_check.return_value = False

        response = client.get('/api/health')

        assert response.status_code == 503
        assert response.get_json()['dependencies']['database'] == 'unhealthy'

    def test_detailed(self, client, deps):
        body = client.get('/api/health/detailed').get_json()
        assert body['dependencies']['kubernetes']['namespaces_count'] == 2

    def test_detailed_kubernetes_failure(self, client, deps):
        deps[1].list_namespaces.side_effect = RuntimeError('unreachable')

        response = client.get('/api/health/detailed')

        assert response.status_code == 503
        assert response.get_json()['dependencies']['kubernetes']['status'] == 'unhealthy'

    def test_live_and_ready(self, client, deps):
        assert client.get('/api/health/live').get_json()['status'] == 'alive'
        deps[1].health_check.return_value = False
        assert client.get('/api/health/ready').status_code == 503
