import logging
import threading
from vscode_platform.config import app_config
from vscode_platform.errors import NotFoundError
from vscode_platform.k8s.service import kubernetes_service
from vscode_platform.k8s.status import check_action_allowed, transition_for
from vscode_platform.storage.dynamodb import dynamodb_service
from vscode_platform.utils.generators import generate_workspace_identifiers, sanitize_k8s_label
from vscode_platform.utils.timestamps import utc_now_iso
from vscode_platform.workspace import cost
from vscode_platform.workspace.models import (
    TRANSITIONAL_STATUSES, Workspace, WorkspaceAction, WorkspaceResources, WorkspaceStatus
)
from vscode_platform.workspace.tiers import DEFAULT_TIER, get_resources_for_tier

logger = logging.getLogger(__name__)


class WorkspaceService:
    """Service class for workspace operations"""

    def __init__(self, db=None, k8s=None, config=None):
        self.db = db or dynamodb_service
        self.k8s = k8s or kubernetes_service
        self.config = config or app_config
        self._shutdown = threading.Event()

    # Access

    def get_accessible_workspace(self, user, workspace_id) -> Workspace:
        """Owner, group members and admins may see a workspace; everyone else gets 404"""
        workspace = self.db.get_workspace(workspace_id)
        if workspace is None:
            raise NotFoundError('Workspace not found')
        if workspace.user_id != user.id and not user.can_access_group(workspace.group_id):
            raise NotFoundError('Workspace not found')
        return workspace

    def reconcile_status(self, workspace) -> Workspace:
        """Bring the stored status in line with the deployment; failures keep the stored record"""
        try:
            k8s_status = self.k8s.get_deployment_status(workspace.namespace, workspace.k8s_name)
        except Exception as e:
            logger.warning(f"Failed to get Kubernetes status for workspace {workspace.id}: {e}")
            return workspace

        if k8s_status == workspace.status:
            return workspace

        try:
            return self.db.update_workspace(workspace.id, {'status': k8s_status})
        except Exception as e:
            logger.warning(f"Failed to store status for workspace {workspace.id}: {e}")
            workspace.status = k8s_status
            return workspace

    # Queries

    def list_workspaces_for(self, user, group_id=None, status=None, limit=20, offset=0):
        if group_id:
            if not user.can_access_group(group_id):
                raise NotFoundError('Group not found')
            workspaces = self.db.get_group_workspaces(group_id)
        else:
            workspaces = list(self.db.get_user_workspaces(user.id))
            for member_group_id in user.groups:
                workspaces.extend(self.db.get_group_workspaces(member_group_id))
            workspaces = self._unique(workspaces)

        if status:
            status = WorkspaceStatus(status)
            workspaces = [w for w in workspaces if w.status == status]

        page = workspaces[offset:offset + limit]
        return [self.reconcile_status(w) for w in page]

    @staticmethod
    def _unique(workspaces):
        seen = set()
        result = []
        for workspace in workspaces:
            if workspace.id in seen:
                continue
            seen.add(workspace.id)
            result.append(workspace)
        return result

    def get_workspace_detail(self, user, workspace_id, include_password=False):
        workspace = self.reconcile_status(self.get_accessible_workspace(user, workspace_id))
        try:
            workspace.usage = self.k8s.get_namespace_metrics(
                workspace.namespace, label_selector=f"app={workspace.k8s_name}"
            )
        except Exception as e:
            logger.warning(f"Failed to get usage for workspace {workspace_id}: {e}")

        # Only the owner may read the password back
        return workspace.to_dict(include_password=include_password and workspace.user_id == user.id)

    # Lifecycle

    def _resolve_image(self, image):
        if image:
            return image
        try:
            return self.db.get_system_settings().default_workspace_image
        except Exception as e:
            logger.warning(f"Failed to read system settings, using default image: {e}")
            return self.config.DEFAULT_WORKSPACE_IMAGE

    @staticmethod
    def _resolve_resources(resources, tier):
        if resources:
            return WorkspaceResources.from_dict(resources)
        return get_resources_for_tier(tier or DEFAULT_TIER)

    def create_workspace(self, user, name, group_id, description=None, image=None,
                         resources=None, tier=None):
        """Create the workspace record and its Kubernetes objects, rolling back on failure"""
        if not user.can_access_group(group_id):
            raise NotFoundError('Group not found')

        group = self.db.get_group(group_id)
        if group is None:
            raise NotFoundError('Group not found')

        ids = generate_workspace_identifiers(group.namespace, self.config.WORKSPACE_DOMAIN)
        namespace = ids['namespace']
        k8s_name = ids['k8s_name']
        workspace_resources = self._resolve_resources(resources, tier)

        workspace = self.db.create_workspace(Workspace(
            id=ids['workspace_id'],
            name=name,
            description=description,
            group_id=group.id,
            group_name=group.display_name,
            user_id=user.id,
            namespace=namespace,
            k8s_name=k8s_name,
            image=self._resolve_image(image),
            password=ids['password'],
            status=WorkspaceStatus.PENDING,
            url=ids['url'],
            resources=workspace_resources,
            replicas=0,
        ))

        created = []
        try:
            self.k8s.create_workspace_secret(namespace, k8s_name, workspace.password)
            created.append(('secret', self.k8s.delete_secret))
            self.k8s.create_pvc(namespace, k8s_name, workspace_resources.storage,
                                self.config.WORKSPACE_STORAGE_CLASS)
            created.append(('pvc', self.k8s.delete_pvc))
            self.k8s.create_deployment(namespace, k8s_name, workspace.image, workspace_resources,
                                       labels={
                                           'vscode-platform/workspace-id': workspace.id,
                                           'vscode-platform/owner': sanitize_k8s_label(user.username),
                                       },
                                       replicas=0)
            created.append(('deployment', self.k8s.delete_deployment))
            self.k8s.create_service(namespace, k8s_name)
            created.append(('service', self.k8s.delete_service))
            self.k8s.create_ingress(namespace, k8s_name, ids['fqdn'])
            created.append(('ingress', self.k8s.delete_ingress))
        except Exception as e:
            logger.error(f"Failed to create Kubernetes resources for workspace {workspace.id}: {e}")
            self._rollback(workspace, created)
            raise

        workspace = self.db.update_workspace(workspace.id, {'status': WorkspaceStatus.STOPPED})
        logger.info(f"Workspace created: {workspace.id} for user {user.id}")
        return workspace

    def _rollback(self, workspace, created):
        for kind, delete in reversed(created):
            try:
                delete(workspace.namespace, workspace.k8s_name)
            except Exception as e:
                logger.warning(f"Failed to clean up {kind} for workspace {workspace.id}: {e}")
        self.db.delete_workspace(workspace.id)

    def update_workspace(self, user, workspace_id, updates):
        workspace = self.get_accessible_workspace(user, workspace_id)
        updates = dict(updates)
        if updates.get('resources'):
            updates['resources'] = workspace.resources.merged(updates['resources'])

        updated = self.db.update_workspace(workspace_id, updates)
        logger.info(f"Workspace updated: {workspace_id} by user {user.id}")
        return updated

    def delete_workspace(self, user, workspace_id):
        workspace = self.get_accessible_workspace(user, workspace_id)

        for kind, delete in (
            ('ingress', self.k8s.delete_ingress),
            ('service', self.k8s.delete_service),
            ('deployment', self.k8s.delete_deployment),
            ('pvc', self.k8s.delete_pvc),
            ('secret', self.k8s.delete_secret),
        ):
            try:
                delete(workspace.namespace, workspace.k8s_name)
            except Exception as e:
                logger.warning(f"Failed to delete {kind} for workspace {workspace_id}: {e}")

        self.db.delete_workspace(workspace_id)
        logger.info(f"Workspace deleted: {workspace_id} by user {user.id}")

    def perform_action(self, user, workspace_id, action):
        """Start, stop or restart a workspace and schedule a status refresh"""
        action = WorkspaceAction(action)
        workspace = self.get_accessible_workspace(user, workspace_id)
        check_action_allowed(action, workspace.status)

        # The record only moves once the cluster has accepted the change
        new_status, replicas = transition_for(action)
        self.k8s.scale_deployment(workspace.namespace, workspace.k8s_name, replicas)
        if action == WorkspaceAction.RESTART:
            self.k8s.restart_deployment(workspace.namespace, workspace.k8s_name)

        self.db.update_workspace(workspace_id, {
            'status': new_status,
            'replicas': replicas,
            'last_accessed_at': utc_now_iso(),
        })

        self.schedule_status_refresh(workspace)

        logger.info(f"Workspace action {action.value} performed on {workspace_id} by user {user.id}")
        return self.db.get_workspace(workspace_id)

    def schedule_status_refresh(self, workspace):
        if self.config.STATUS_REFRESH_ATTEMPTS <= 0:
            return None
        thread = threading.Thread(
            target=self.refresh_status,
            args=(workspace.id, workspace.namespace, workspace.k8s_name),
            name=f"status-refresh-{workspace.id}",
            daemon=True,
        )
        thread.start()
        return thread

    def refresh_status(self, workspace_id, namespace, k8s_name):
        """Poll the deployment until it leaves a transitional state, storing each change"""
        last_status = None
        for _ in range(self.config.STATUS_REFRESH_ATTEMPTS):
            if self._shutdown.wait(self.config.STATUS_REFRESH_DELAY_SECONDS):
                return last_status
            try:
                status = self.k8s.get_deployment_status(namespace, k8s_name)
                if status != last_status:
                    self.db.update_workspace(workspace_id, {'status': status})
                    last_status = status
            except Exception as e:
                logger.warning(f"Failed to update final status for workspace {workspace_id}: {e}")
                continue
            if status not in TRANSITIONAL_STATUSES:
                return status
        return last_status

    def shutdown(self):
        self._shutdown.set()

    # Observability

    def get_metrics(self, user, workspace_id):
        workspace = self.get_accessible_workspace(user, workspace_id)
        return self.k8s.get_namespace_metrics(workspace.namespace, label_selector=f"app={workspace.k8s_name}")

    def get_logs(self, user, workspace_id, lines=100):
        workspace = self.get_accessible_workspace(user, workspace_id)
        pods = self.k8s.list_pods(workspace.namespace, label_selector=f"app={workspace.k8s_name}")
        if not pods:
            return 'No pods found for workspace'
        return self.k8s.get_pod_logs(workspace.namespace, pods[0]['name'], lines)

    def get_component_status(self, user, workspace_id):
        workspace = self.get_accessible_workspace(user, workspace_id)
        components = self.k8s.get_workspace_components(workspace.namespace, workspace.k8s_name)
        return {
            'workspace_id': workspace.id,
            'status': WorkspaceStatus(workspace.status).value,
            'healthy': all(c['healthy'] for c in components),
            'components': components,
        }

    def get_cost(self, user, workspace_id):
        workspace = self.get_accessible_workspace(user, workspace_id)
        return cost.calculate_workspace_cost_with_usage(workspace)


# Global service instance
workspace_service = WorkspaceService()
