import os
import logging
from kubernetes import client, config

logger = logging.getLogger(__name__)


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {value!r}, using {default}")
        return default


def _env_float(name, default):
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid number for {name}: {value!r}, using {default}")
        return default


class Config:
    def __init__(self):
        # Server
        self.PORT = _env_int("PORT", 3001)
        self.APP_ENV = os.environ.get("APP_ENV", "development")
        self.LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
        self.VERSION = os.environ.get("APP_VERSION", "1.0.0")
        self.CORS_ORIGINS = self._load_cors_origins()

        # AWS / identity providers
        self.AWS_REGION = os.environ.get("AWS_REGION", "us-west-2")
        self.COGNITO_USER_POOL_ID = os.environ.get("AWS_COGNITO_USER_POOL_ID", "")
        self.COGNITO_CLIENT_ID = os.environ.get("AWS_COGNITO_CLIENT_ID", "")
        self.COGNITO_DOMAIN = os.environ.get("AWS_COGNITO_DOMAIN", "")
        self.GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
        self.ADMIN_COGNITO_GROUP = os.environ.get("ADMIN_COGNITO_GROUP", "platform-admins")

        # DynamoDB
        self.DYNAMODB_REGION = os.environ.get("DYNAMODB_REGION", self.AWS_REGION)
        self.DYNAMODB_TABLE_PREFIX = os.environ.get("DYNAMODB_TABLE_PREFIX", "vscode-platform")
        self.DYNAMODB_TABLE_NAME = (os.environ.get("DYNAMODB_TABLE_NAME")
                                    or f"{self.DYNAMODB_TABLE_PREFIX}-main")
        self.DYNAMODB_ENDPOINT = os.environ.get("DYNAMODB_ENDPOINT") or None

        # Kubernetes
        self.NAMESPACE_PREFIX = os.environ.get("KUBERNETES_NAMESPACE_PREFIX", "group-")
        self.WORKSPACE_DOMAIN = os.environ.get("WORKSPACE_DOMAIN", "workspaces.example.com")
        self.WORKSPACE_STORAGE_CLASS = os.environ.get("WORKSPACE_STORAGE_CLASS", "gp3")
        self.WORKSPACE_INGRESS_CLASS = os.environ.get("WORKSPACE_INGRESS_CLASS", "nginx")
        self.WORKSPACE_TLS_SECRET = os.environ.get("WORKSPACE_TLS_SECRET", "workspace-domain-wildcard-tls")
        self.DEFAULT_WORKSPACE_IMAGE = os.environ.get("DEFAULT_WORKSPACE_IMAGE", "codercom/code-server:latest")
        self.STATUS_REFRESH_DELAY_SECONDS = _env_float("STATUS_REFRESH_DELAY_SECONDS", 5.0)
        self.STATUS_REFRESH_ATTEMPTS = _env_int("STATUS_REFRESH_ATTEMPTS", 12)

        # Rate limiting
        self.RATE_LIMIT_WINDOW_SECONDS = _env_int("RATE_LIMIT_WINDOW_SECONDS", 60)
        self.RATE_LIMIT_MAX_REQUESTS = _env_int("RATE_LIMIT_MAX_REQUESTS", 100)
        self.RATE_LIMIT_WORKSPACE_MAX = _env_int("RATE_LIMIT_WORKSPACE_MAX", 10)
        self.RATE_LIMIT_ENABLED = os.environ.get("RATE_LIMIT_ENABLED", "true").lower() == "true"

        # Cost estimation
        self.CLUSTER_INSTANCE_TYPE = os.environ.get("CLUSTER_INSTANCE_TYPE") or None
        self.PRICING_CPU_CORE_PER_MONTH = _env_float("PRICING_CPU_CORE_PER_MONTH", None)
        self.PRICING_MEMORY_GIB_PER_MONTH = _env_float("PRICING_MEMORY_GIB_PER_MONTH", None)
        self.PRICING_STORAGE_GIB_PER_MONTH = _env_float("PRICING_STORAGE_GIB_PER_MONTH", None)
        self.PRICING_CLUSTER_OVERHEAD_RATE = _env_float("PRICING_CLUSTER_OVERHEAD_RATE", None)
        self.PRICING_NETWORK_OVERHEAD_RATE = _env_float("PRICING_NETWORK_OVERHEAD_RATE", None)

    @property
    def is_development(self):
        return self.APP_ENV == "development"

    @property
    def is_production(self):
        return self.APP_ENV == "production"

    @property
    def is_testing(self):
        return self.APP_ENV == "test"

    def _load_cors_origins(self):
        origins = os.environ.get("CORS_ORIGINS")
        if origins:
            return [origin.strip() for origin in origins.split(",") if origin.strip()]
        return ["http://localhost:3000", "http://localhost:5173"]


def load_kubernetes_config():
    """Load Kubernetes client configuration"""
    try:
        # Load in-cluster config
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.config_exception.ConfigException:
        # Load kubeconfig for local development
        config.load_kube_config()
        logger.info("Loaded kubeconfig for local development")


def create_kubernetes_clients():
    """Initialize the Kubernetes API clients used by the platform"""
    load_kubernetes_config()
    return {
        'core_v1': client.CoreV1Api(),
        'apps_v1': client.AppsV1Api(),
        'networking_v1': client.NetworkingV1Api(),
        'custom_objects': client.CustomObjectsApi(),
    }


# Global config instance
app_config = Config()
