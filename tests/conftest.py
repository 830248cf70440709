#
# PyTest global setup and fixture file
#
import os
from unittest.mock import MagicMock

import pytest

# Test configuration must be in place before vscode_platform is imported
os.environ['APP_ENV'] = 'test'
os.environ['RATE_LIMIT_ENABLED'] = 'false'
os.environ['STATUS_REFRESH_ATTEMPTS'] = '0'
os.environ['AWS_REGION'] = 'us-east-1'
os.environ['AWS_COGNITO_USER_POOL_ID'] = 'us-east-1_testpool'
os.environ['AWS_COGNITO_CLIENT_ID'] = 'test-client-id'
os.environ['GOOGLE_CLIENT_ID'] = 'google-client-id'
os.environ['DYNAMODB_TABLE_NAME'] = 'vscode-platform-test'
os.environ['WORKSPACE_DOMAIN'] = 'ws.example.com'
os.environ.pop('CLUSTER_INSTANCE_TYPE', None)

from kubernetes.client.rest import ApiException  # noqa: E402

from vscode_platform.group.models import Group, ResourceQuota  # noqa: E402
from vscode_platform.user.models import GroupMembership, GroupRole, User  # noqa: E402
from vscode_platform.workspace.models import Workspace, WorkspaceResources, WorkspaceStatus  # noqa: E402


def api_exception(status, reason='error'):
    return ApiException(status=status, reason=reason)


def make_user(user_id='usr_1', email='alice@example.com', groups=None, is_admin=False, roles=None):
    groups = list(groups or [])
    roles = roles or {}
    return User(
        id=user_id,
        username=email.split('@')[0],
        email=email,
        name='Alice',
        groups=groups,
        group_memberships=[GroupMembership(g, roles.get(g, GroupRole.MEMBER)) for g in groups],
        is_admin=is_admin,
    )


def make_group(group_id='grp_1', namespace='group-team'):
    return Group(
        id=group_id,
        name='team',
        display_name='Team',
        namespace=namespace,
        resource_quota=ResourceQuota(),
    )


def make_workspace(workspace_id='ws_abc', user_id='usr_1', group_id='grp_1',
                   status=WorkspaceStatus.STOPPED):
    return Workspace(
        id=workspace_id,
        name='My Workspace',
        group_id=group_id,
        group_name='Team',
        user_id=user_id,
        namespace='group-team',
        k8s_name='workspace-abc',
        image='codercom/code-server:latest',
        password='s3cret',
        status=status,
        url='https://workspace-abc.group-team.ws.example.com',
        resources=WorkspaceResources(),
    )


@pytest.fixture
def user():
    return make_user(groups=['grp_1'])


@pytest.fixture
def admin_user():
    return make_user(user_id='usr_admin', email='root@example.com', is_admin=True)


@pytest.fixture
def mock_db():
    return MagicMock()


@pytest.fixture
def mock_k8s():
    return MagicMock()


@pytest.fixture
def app():
    from vscode_platform import create_app

    app = create_app()
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(monkeypatch):
    """Make every bearer token resolve to the given user"""
    def _login(current_user):
        users = MagicMock()
        users.get_or_create_user.return_value = current_user
        monkeypatch.setattr('vscode_platform.auth.tokens.verify_token', lambda token: {'sub': current_user.id})
        monkeypatch.setattr('vscode_platform.auth.decorators.user_service', users)
        return {'Authorization': 'Bearer test-token'}
    return _login
