import re
import uuid
import string
import secrets


def _hex_id():
    return uuid.uuid4().hex


def generate_user_id():
    return f"usr_{_hex_id()}"


def generate_group_id():
    return f"grp_{_hex_id()}"


def generate_audit_log_id():
    return f"log_{_hex_id()[:16]}"


def random_password(length=16):
    """Generate a random password for code-server"""
    chars = string.ascii_letters + string.digits
    return ''.join(secrets.choice(chars) for _ in range(length))


def workspace_k8s_name(workspace_id):
    """Kubernetes object name for a workspace id (ws_<hex> -> workspace-<hex>)"""
    suffix = workspace_id[3:] if workspace_id.startswith("ws_") else workspace_id
    return f"workspace-{suffix}".lower()


def generate_workspace_identifiers(namespace, workspace_domain):
    """Generate unique identifiers for the workspace"""
    workspace_id = f"ws_{_hex_id()}"
    k8s_name = workspace_k8s_name(workspace_id)
    fqdn = f"{k8s_name}.{namespace}.{workspace_domain}"

    return {
        'workspace_id': workspace_id,
        'k8s_name': k8s_name,
        'namespace': namespace,
        'fqdn': fqdn,
        'url': f"https://{fqdn}",
        'password': random_password(),
    }


def sanitize_k8s_label(value: str) -> str:
    """
    Sanitize a value to be valid for Kubernetes labels.

    Kubernetes labels must:
    - consist of alphanumeric characters, '-', '_' or '.'
    - start and end with an alphanumeric character
    - be no more than 63 characters
    """
    sanitized = re.sub(r'[^A-Za-z0-9._-]', '-', value)
    sanitized = re.sub(r'-+', '-', sanitized)
    sanitized = sanitized[:63]
    sanitized = re.sub(r'^[^A-Za-z0-9]+', '', sanitized)
    sanitized = re.sub(r'[^A-Za-z0-9]+$', '', sanitized)

    if not sanitized:
        sanitized = "default"

    return sanitized
