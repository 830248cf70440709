import time
import logging
from kubernetes import client
from vscode_platform.config import app_config, create_kubernetes_clients
from vscode_platform.errors import KubernetesError, NotFoundError
from vscode_platform.group.models import ResourceQuota
from vscode_platform.k8s import resources
from vscode_platform.k8s.status import status_from_deployment
from vscode_platform.utils.quantities import (
    format_cpu, format_memory, parse_cpu, parse_memory, percentage
)
from vscode_platform.utils.timestamps import utc_now
from vscode_platform.workspace.models import WorkspaceStatus

logger = logging.getLogger(__name__)

NAMESPACE_TIMEOUT_SECONDS = 30
NAMESPACE_POLL_INTERVAL_SECONDS = 1
QUOTA_MAX_RETRIES = 5
QUOTA_RETRY_DELAY_SECONDS = 2


def _k8s_error(message, error):
    return KubernetesError(message, details={'status': error.status, 'reason': error.reason})


def calculate_age(creation_timestamp, now=None):
    """Age of an object as Nd, Nh or Nm"""
    if not creation_timestamp:
        return "Unknown"
    now = now or utc_now()
    minutes = int((now - creation_timestamp).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d"
    if hours > 0:
        return f"{hours}h"
    return f"{minutes}m"


def _component(name, component_type, healthy, status, reason, details=None):
    return {
        'name': name,
        'type': component_type,
        'healthy': healthy,
        'status': status,
        'reason': reason,
        'details': details or {},
    }


class KubernetesService:
    """Service class for the Kubernetes objects backing groups and workspaces"""

    def __init__(self, core_v1=None, apps_v1=None, networking_v1=None, custom_objects=None):
        self._clients = None
        if core_v1 is not None:
            self._clients = {
                'core_v1': core_v1,
                'apps_v1': apps_v1,
                'networking_v1': networking_v1,
                'custom_objects': custom_objects,
            }

    def _client(self, name):
        if self._clients is None:
            self._clients = create_kubernetes_clients()
        return self._clients[name]

    @property
    def core_v1(self):
        return self._client('core_v1')

    @property
    def apps_v1(self):
        return self._client('apps_v1')

    @property
    def networking_v1(self):
        return self._client('networking_v1')

    @property
    def custom_objects(self):
        return self._client('custom_objects')

    # Namespace operations

    def create_namespace(self, name, labels=None):
        """Create a namespace and wait until it is Active"""
        try:
            self.core_v1.create_namespace(resources.build_namespace(name, labels))
            logger.info(f"Created namespace: {name}")
        except client.rest.ApiException as e:
            if e.status != 409:
                raise _k8s_error(f"Failed to create namespace {name}", e)
            logger.info(f"Namespace {name} already exists")

        self._wait_for_namespace(name)

    def _wait_for_namespace(self, name, timeout=NAMESPACE_TIMEOUT_SECONDS):
        deadline = time.monotonic() + timeout
        while True:
            try:
                namespace = self.core_v1.read_namespace(name)
                if namespace.status and namespace.status.phase == "Active":
                    logger.info(f"Namespace {name} is active")
                    return
            except client.rest.ApiException as e:
                if e.status != 404:
                    raise _k8s_error(f"Failed to read namespace {name}", e)

            if time.monotonic() >= deadline:
                raise KubernetesError(f"Namespace {name} did not become active within {timeout} seconds")
            time.sleep(NAMESPACE_POLL_INTERVAL_SECONDS)

    def delete_namespace(self, name):
        try:
            self.core_v1.delete_namespace(name)
            logger.info(f"Deleted namespace: {name}")
        except client.rest.ApiException as e:
            if e.status == 404:
                logger.info(f"Namespace {name} already gone")
                return
            raise _k8s_error(f"Failed to delete namespace {name}", e)

    def namespace_exists(self, name):
        try:
            self.core_v1.read_namespace(name)
            return True
        except client.rest.ApiException as e:
            if e.status == 404:
                return False
            raise _k8s_error(f"Failed to read namespace {name}", e)

    def list_namespaces(self, label_selector=None):
        try:
            if label_selector:
                result = self.core_v1.list_namespace(label_selector=label_selector)
            else:
                result = self.core_v1.list_namespace()
        except client.rest.ApiException as e:
            raise _k8s_error("Failed to list namespaces", e)
        return [ns.metadata.name for ns in result.items]

    # Resource quota operations

    def create_resource_quota(self, namespace, quota):
        """Create the namespace quota, replacing an existing one"""
        body = resources.build_resource_quota(namespace, quota)
        quota_name = body.metadata.name

        for attempt in range(1, QUOTA_MAX_RETRIES + 1):
            try:
                self.core_v1.create_namespaced_resource_quota(namespace, body)
                logger.info(f"Created resource quota for namespace: {namespace}")
                return
            except client.rest.ApiException as e:
                if e.status == 404 and attempt < QUOTA_MAX_RETRIES:
                    logger.warning(f"Namespace {namespace} not ready yet, retrying in "
                                   f"{QUOTA_RETRY_DELAY_SECONDS}s (attempt {attempt}/{QUOTA_MAX_RETRIES})")
                    time.sleep(QUOTA_RETRY_DELAY_SECONDS)
                    continue
                if e.status == 409:
                    self._replace_resource_quota(namespace, quota_name, body)
                    return
                raise _k8s_error(f"Failed to create resource quota for {namespace}", e)

    def _replace_resource_quota(self, namespace, quota_name, body):
        try:
            self.core_v1.replace_namespaced_resource_quota(quota_name, namespace, body)
            logger.info(f"Replaced resource quota for namespace: {namespace}")
        except client.rest.ApiException as e:
            raise _k8s_error(f"Failed to update resource quota for {namespace}", e)

    def _read_resource_quota(self, namespace):
        try:
            return self.core_v1.read_namespaced_resource_quota(f"{namespace}-quota", namespace)
        except client.rest.ApiException as e:
            if e.status == 404:
                return None
            raise _k8s_error(f"Failed to read resource quota for {namespace}", e)

    def get_resource_quota(self, namespace):
        """Return the namespace quota as a ResourceQuota, or None"""
        return self._quota_from_object(self._read_resource_quota(namespace))

    @staticmethod
    def _quota_from_object(quota):
        if quota is None or not quota.spec or not quota.spec.hard:
            return None
        hard = quota.spec.hard
        defaults = ResourceQuota()
        return ResourceQuota(
            cpu=hard.get("limits.cpu") or hard.get("requests.cpu") or defaults.cpu,
            memory=hard.get("limits.memory") or hard.get("requests.memory") or defaults.memory,
            storage=hard.get("requests.storage") or defaults.storage,
            pods=int(hard.get("pods") or defaults.pods),
        )

    # Pod operations

    def list_pods(self, namespace, label_selector=None):
        try:
            if label_selector:
                pods = self.core_v1.list_namespaced_pod(namespace, label_selector=label_selector)
            else:
                pods = self.core_v1.list_namespaced_pod(namespace)
        except client.rest.ApiException as e:
            raise _k8s_error(f"Failed to list pods in namespace {namespace}", e)

        result = []
        for pod in pods.items:
            status = pod.status
            conditions = (status.conditions if status else None) or []
            container_statuses = (status.container_statuses if status else None) or []
            result.append({
                'name': pod.metadata.name,
                'status': (status.phase if status else None) or "Unknown",
                'ready': any(c.type == "Ready" and c.status == "True" for c in conditions),
                'restarts': container_statuses[0].restart_count if container_statuses else 0,
                'age': calculate_age(pod.metadata.creation_timestamp),
            })
        return result

    def get_pod_logs(self, namespace, pod_name, lines=100):
        try:
            return self.core_v1.read_namespaced_pod_log(
                name=pod_name,
                namespace=namespace,
                tail_lines=lines
            )
        except client.rest.ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"Pod {pod_name} not found in namespace {namespace}")
            raise _k8s_error(f"Failed to get logs for pod {pod_name}", e)

    # Secret operations

    def create_workspace_secret(self, namespace, name, password):
        try:
            self.core_v1.create_namespaced_secret(
                namespace, resources.build_workspace_secret(namespace, name, password)
            )
            logger.info(f"Created secret for {name} in namespace {namespace}")
        except client.rest.ApiException as e:
            raise _k8s_error(f"Failed to create secret for {name}", e)

    def delete_secret(self, namespace, name):
        try:
            self.core_v1.delete_namespaced_secret(resources.secret_name(name), namespace)
            logger.info(f"Deleted secret for {name} in namespace {namespace}")
        except client.rest.ApiException as e:
            if e.status != 404:
                raise _k8s_error(f"Failed to delete secret for {name}", e)

    # PVC operations

    def create_pvc(self, namespace, name, size, storage_class=None):
        storage_class = storage_class or app_config.WORKSPACE_STORAGE_CLASS
        try:
            self.core_v1.create_namespaced_persistent_volume_claim(
                namespace, resources.build_pvc(namespace, name, size, storage_class)
            )
            logger.info(f"Created PVC {resources.pvc_name(name)} in namespace {namespace}")
        except client.rest.ApiException as e:
            raise _k8s_error(f"Failed to create PVC for {name}", e)

    def delete_pvc(self, namespace, name):
        try:
            self.core_v1.delete_namespaced_persistent_volume_claim(resources.pvc_name(name), namespace)
            logger.info(f"Deleted PVC {resources.pvc_name(name)} in namespace {namespace}")
        except client.rest.ApiException as e:
            if e.status != 404:
                raise _k8s_error(f"Failed to delete PVC for {name}", e)

    # Deployment operations

    def create_deployment(self, namespace, name, image, workspace_resources, labels=None, replicas=0):
        try:
            self.apps_v1.create_namespaced_deployment(
                namespace,
                resources.build_deployment(namespace, name, image, workspace_resources, labels, replicas)
            )
            logger.info(f"Created deployment {name} in namespace {namespace}")
        except client.rest.ApiException as e:
            raise _k8s_error(f"Failed to create deployment {name}", e)

    def scale_deployment(self, namespace, name, replicas):
        try:
            self.apps_v1.patch_namespaced_deployment_scale(
                name=name,
                namespace=namespace,
                body={"spec": {"replicas": replicas}}
            )
            logger.info(f"Scaled deployment {name} in namespace {namespace} to {replicas}")
        except client.rest.ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"Deployment {name} not found in namespace {namespace}")
            raise _k8s_error(f"Failed to scale deployment {name}", e)

    def restart_deployment(self, namespace, name):
        """Roll the deployment's pods by bumping the restartedAt annotation"""
        try:
            self.apps_v1.patch_namespaced_deployment(
                name=name,
                namespace=namespace,
                body=resources.restart_patch()
            )
            logger.info(f"Restarted deployment {name} in namespace {namespace}")
        except client.rest.ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"Deployment {name} not found in namespace {namespace}")
            raise _k8s_error(f"Failed to restart deployment {name}", e)

    def delete_deployment(self, namespace, name):
        try:
            self.apps_v1.delete_namespaced_deployment(name, namespace)
            logger.info(f"Deleted deployment {name} in namespace {namespace}")
        except client.rest.ApiException as e:
            if e.status != 404:
                raise _k8s_error(f"Failed to delete deployment {name}", e)

    def get_deployment_status(self, namespace, name):
        try:
            deployment = self.apps_v1.read_namespaced_deployment(name, namespace)
        except client.rest.ApiException as e:
            if e.status == 404:
                return WorkspaceStatus.STOPPED
            raise _k8s_error(f"Failed to get deployment status for {name}", e)

        status = deployment.status
        return status_from_deployment(
            deployment.spec.replicas if deployment.spec else 0,
            status.ready_replicas if status else 0,
            status.conditions if status else None,
        )

    # Service operations

    def create_service(self, namespace, name, labels=None):
        try:
            self.core_v1.create_namespaced_service(
                namespace, resources.build_service(namespace, name, labels)
            )
            logger.info(f"Created service {name} in namespace {namespace}")
        except client.rest.ApiException as e:
            raise _k8s_error(f"Failed to create service {name}", e)

    def delete_service(self, namespace, name):
        try:
            self.core_v1.delete_namespaced_service(name, namespace)
            logger.info(f"Deleted service {name} in namespace {namespace}")
        except client.rest.ApiException as e:
            if e.status != 404:
                raise _k8s_error(f"Failed to delete service {name}", e)

    # Ingress operations

    def create_ingress(self, namespace, name, host):
        try:
            self.networking_v1.create_namespaced_ingress(
                namespace, resources.build_ingress(namespace, name, host)
            )
            logger.info(f"Created ingress {name} for {host}")
        except client.rest.ApiException as e:
            raise _k8s_error(f"Failed to create ingress {name}", e)

    def delete_ingress(self, namespace, name):
        try:
            self.networking_v1.delete_namespaced_ingress(name, namespace)
            logger.info(f"Deleted ingress {name} in namespace {namespace}")
        except client.rest.ApiException as e:
            if e.status != 404:
                raise _k8s_error(f"Failed to delete ingress {name}", e)

    # Metrics

    def get_namespace_metrics(self, namespace, label_selector=None):
        """Pod usage from metrics.k8s.io against the namespace quota"""
        quota = ResourceQuota()
        storage_used = 0.0
        try:
            quota_object = self._read_resource_quota(namespace)
            if quota_object is not None:
                quota = self._quota_from_object(quota_object) or quota
                used = (quota_object.status.used if quota_object.status else None) or {}
                storage_used = parse_memory(used.get("requests.storage"))
        except KubernetesError as e:
            logger.warning(f"Failed to read quota for namespace {namespace}: {e}")

        try:
            kwargs = {'label_selector': label_selector} if label_selector else {}
            pod_metrics = self.custom_objects.list_namespaced_custom_object(
                group="metrics.k8s.io",
                version="v1beta1",
                namespace=namespace,
                plural="pods",
                **kwargs
            )
        except client.rest.ApiException as e:
            logger.warning(f"Failed to get metrics for namespace {namespace}: {e.status} {e.reason}")
            return self._usage(quota, 0.0, 0.0, storage_used, 0)

        total_cpu = 0.0
        total_memory = 0.0
        items = pod_metrics.get('items', [])
        for pod in items:
            for container in pod.get('containers', []):
                usage = container.get('usage', {})
                total_cpu += parse_cpu(usage.get('cpu'))
                total_memory += parse_memory(usage.get('memory'))

        return self._usage(quota, total_cpu, total_memory, storage_used, len(items))

    @staticmethod
    def _usage(quota, cpu, memory, storage, pods):
        return {
            'cpu': {
                'used': format_cpu(cpu),
                'total': quota.cpu,
                'percentage': percentage(cpu, parse_cpu(quota.cpu)),
            },
            'memory': {
                'used': format_memory(memory),
                'total': quota.memory,
                'percentage': percentage(memory, parse_memory(quota.memory)),
            },
            'storage': {
                'used': format_memory(storage),
                'total': quota.storage,
                'percentage': percentage(storage, parse_memory(quota.storage)),
            },
            'pods': {
                'used': pods,
                'total': quota.pods,
                'percentage': percentage(pods, quota.pods),
            },
        }

    # Component health

    def get_workspace_components(self, namespace, name):
        """Health of each Kubernetes object behind a workspace"""
        return [
            self._deployment_component(namespace, name),
            self._service_component(namespace, name),
            self._pvc_component(namespace, name),
        ] + self._pod_components(namespace, name)

    def _deployment_component(self, namespace, name):
        try:
            deployment = self.apps_v1.read_namespaced_deployment(name, namespace)
        except client.rest.ApiException as e:
            if e.status == 404:
                return _component(name, 'deployment', False, 'NotFound', 'Deployment does not exist')
            raise _k8s_error(f"Failed to read deployment {name}", e)

        desired = deployment.spec.replicas or 0
        ready = (deployment.status.ready_replicas if deployment.status else 0) or 0
        status = status_from_deployment(desired, ready, deployment.status.conditions if deployment.status else None)
        healthy = status in (WorkspaceStatus.RUNNING, WorkspaceStatus.STOPPED)
        return _component(
            name, 'deployment', healthy, status.value,
            f"{ready}/{desired} replicas ready",
            {'desired_replicas': desired, 'ready_replicas': ready},
        )

    def _service_component(self, namespace, name):
        try:
            service = self.core_v1.read_namespaced_service(name, namespace)
        except client.rest.ApiException as e:
            if e.status == 404:
                return _component(name, 'service', False, 'NotFound', 'Service does not exist')
            raise _k8s_error(f"Failed to read service {name}", e)

        return _component(
            name, 'service', True, 'Active', 'Service exists',
            {'cluster_ip': service.spec.cluster_ip, 'type': service.spec.type},
        )

    def _pvc_component(self, namespace, name):
        claim_name = resources.pvc_name(name)
        try:
            pvc = self.core_v1.read_namespaced_persistent_volume_claim(claim_name, namespace)
        except client.rest.ApiException as e:
            if e.status == 404:
                return _component(claim_name, 'pvc', False, 'NotFound', 'PVC does not exist')
            raise _k8s_error(f"Failed to read PVC {claim_name}", e)

        phase = (pvc.status.phase if pvc.status else None) or "Unknown"
        capacity = (pvc.status.capacity if pvc.status else None) or {}
        return _component(
            claim_name, 'pvc', phase == "Bound", phase,
            f"PVC is {phase}",
            {'capacity': capacity.get('storage')},
        )

    def _pod_components(self, namespace, name):
        components = []
        for pod in self.list_pods(namespace, label_selector=f"app={name}"):
            healthy = pod['status'] == "Running" and pod['ready']
            reason = "Pod is ready" if healthy else f"Pod is {pod['status']}"
            components.append(_component(
                pod['name'], 'pod', healthy, pod['status'], reason,
                {'restarts': pod['restarts'], 'age': pod['age'], 'ready': pod['ready']},
            ))
        return components

    # Health

    def health_check(self):
        try:
            self.core_v1.list_namespace(limit=1)
            return True
        except Exception as e:
            logger.error(f"Kubernetes health check failed: {e}")
            return False


# Global service instance
kubernetes_service = KubernetesService()
