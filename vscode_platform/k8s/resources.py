import time
from kubernetes import client
from vscode_platform.config import app_config

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "vscode-platform"
CODE_SERVER_PORT = 8080
SERVICE_PORT = 80
PASSWORD_KEY = "password"


def pvc_name(name):
    return f"{name}-pvc"


def secret_name(name):
    return f"{name}-secret"


def _labels(name, labels=None):
    result = {"app": name, MANAGED_BY_LABEL: MANAGED_BY}
    result.update(labels or {})
    return result


def build_namespace(name, labels=None):
    """Namespace for a group"""
    ns_labels = {MANAGED_BY_LABEL: MANAGED_BY}
    ns_labels.update(labels or {})
    return client.V1Namespace(
        metadata=client.V1ObjectMeta(name=name, labels=ns_labels)
    )


def build_resource_quota(namespace, quota):
    """ResourceQuota capping cpu, memory, storage and pod count for a namespace"""
    return client.V1ResourceQuota(
        metadata=client.V1ObjectMeta(
            name=f"{namespace}-quota",
            namespace=namespace,
            labels={MANAGED_BY_LABEL: MANAGED_BY}
        ),
        spec=client.V1ResourceQuotaSpec(
            # Every workspace mounts exactly one PVC, so claims share the pod cap
            hard={
                "requests.cpu": str(quota.cpu),
                "requests.memory": str(quota.memory),
                "limits.cpu": str(quota.cpu),
                "limits.memory": str(quota.memory),
                "requests.storage": str(quota.storage),
                "persistentvolumeclaims": str(quota.pods),
                "pods": str(quota.pods),
            }
        )
    )


def build_workspace_secret(namespace, name, password):
    """Secret holding the code-server password"""
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=secret_name(name),
            namespace=namespace,
            labels=_labels(name)
        ),
        string_data={PASSWORD_KEY: password}
    )


def build_pvc(namespace, name, size, storage_class):
    """PVC for the workspace home directory"""
    return client.V1PersistentVolumeClaim(
        metadata=client.V1ObjectMeta(
            name=pvc_name(name),
            namespace=namespace,
            labels=_labels(name)
        ),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            resources=client.V1VolumeResourceRequirements(
                requests={"storage": size}
            ),
            storage_class_name=storage_class
        )
    )


def _code_server_container(name, image, resources):
    return client.V1Container(
        name="code-server",
        image=image,
        ports=[client.V1ContainerPort(container_port=CODE_SERVER_PORT, name="http")],
        env=[
            client.V1EnvVar(
                name="PASSWORD",
                value_from=client.V1EnvVarSource(
                    secret_key_ref=client.V1SecretKeySelector(
                        name=secret_name(name),
                        key=PASSWORD_KEY
                    )
                )
            ),
        ],
        # CPU has no limit; memory request equals limit
        resources=client.V1ResourceRequirements(
            requests={
                "cpu": resources.cpu,
                "memory": resources.memory
            },
            limits={
                "memory": resources.memory
            }
        ),
        volume_mounts=[
            client.V1VolumeMount(name="workspace-storage", mount_path="/home/coder")
        ],
        readiness_probe=client.V1Probe(
            http_get=client.V1HTTPGetAction(path="/healthz", port=CODE_SERVER_PORT),
            initial_delay_seconds=10,
            period_seconds=10
        )
    )


def build_deployment(namespace, name, image, resources, labels=None, replicas=0):
    """Deployment running a single code-server container"""
    all_labels = _labels(name, labels)
    return client.V1Deployment(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=all_labels
        ),
        spec=client.V1DeploymentSpec(
            replicas=replicas,
            selector=client.V1LabelSelector(
                match_labels={"app": name}
            ),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=all_labels),
                spec=client.V1PodSpec(
                    containers=[_code_server_container(name, image, resources)],
                    volumes=[
                        client.V1Volume(
                            name="workspace-storage",
                            persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                                claim_name=pvc_name(name)
                            )
                        )
                    ]
                )
            )
        )
    )


def restart_patch():
    """Patch body that makes the deployment controller roll its pods"""
    return {
        "spec": {
            "template": {
                "metadata": {
                    "annotations": {
                        "kubectl.kubernetes.io/restartedAt": str(int(time.time()))
                    }
                }
            }
        }
    }


def build_service(namespace, name, labels=None):
    """ClusterIP service in front of code-server"""
    return client.V1Service(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=_labels(name, labels)
        ),
        spec=client.V1ServiceSpec(
            type="ClusterIP",
            selector={"app": name},
            ports=[
                client.V1ServicePort(
                    name="http",
                    port=SERVICE_PORT,
                    target_port=CODE_SERVER_PORT
                )
            ]
        )
    )


def build_ingress(namespace, name, host):
    """Ingress exposing the workspace on its own host name"""
    return client.V1Ingress(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=_labels(name),
            annotations={
                "nginx.ingress.kubernetes.io/proxy-read-timeout": "3600",
                "nginx.ingress.kubernetes.io/proxy-send-timeout": "3600"
            }
        ),
        spec=client.V1IngressSpec(
            ingress_class_name=app_config.WORKSPACE_INGRESS_CLASS,
            tls=[
                client.V1IngressTLS(
                    hosts=[host],
                    secret_name=app_config.WORKSPACE_TLS_SECRET
                )
            ],
            rules=[
                client.V1IngressRule(
                    host=host,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[
                            client.V1HTTPIngressPath(
                                path="/",
                                path_type="Prefix",
                                backend=client.V1IngressBackend(
                                    service=client.V1IngressServiceBackend(
                                        name=name,
                                        port=client.V1ServiceBackendPort(
                                            number=SERVICE_PORT
                                        )
                                    )
                                )
                            )
                        ]
                    )
                )
            ]
        )
    )
