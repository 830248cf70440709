from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from vscode_platform.utils.timestamps import utc_now_iso


class WorkspaceStatus(str, Enum):
    PENDING = 'pending'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'
    STOPPED = 'stopped'
    ERROR = 'error'


TRANSITIONAL_STATUSES = (WorkspaceStatus.PENDING, WorkspaceStatus.STARTING, WorkspaceStatus.STOPPING)


class WorkspaceAction(str, Enum):
    START = 'start'
    STOP = 'stop'
    RESTART = 'restart'


@dataclass
class WorkspaceResources:
    cpu: str = "2"
    memory: str = "4Gi"
    storage: str = "20Gi"

    def to_dict(self):
        return {'cpu': self.cpu, 'memory': self.memory, 'storage': self.storage}

    def merged(self, updates):
        data = self.to_dict()
        data.update({k: v for k, v in (updates or {}).items() if v is not None})
        return WorkspaceResources.from_dict(data)

    @classmethod
    def from_dict(cls, data):
        if not data:
            return cls()
        defaults = cls()
        return cls(
            cpu=str(data.get('cpu', defaults.cpu)),
            memory=str(data.get('memory', defaults.memory)),
            storage=str(data.get('storage', defaults.storage)),
        )


@dataclass
class Workspace:
    """Per-user code-server instance"""
    id: str
    name: str
    group_id: str
    group_name: str
    user_id: str
    namespace: str
    k8s_name: str
    image: str
    password: str
    description: Optional[str] = None
    status: WorkspaceStatus = WorkspaceStatus.PENDING
    url: Optional[str] = None
    resources: WorkspaceResources = field(default_factory=WorkspaceResources)
    replicas: int = 0
    usage: Optional[Dict] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    last_accessed_at: Optional[str] = None

    def to_dict(self, include_password=False):
        """Convert to dict; the password is masked unless explicitly requested"""
        result = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'group_id': self.group_id,
            'group_name': self.group_name,
            'user_id': self.user_id,
            'namespace': self.namespace,
            'k8s_name': self.k8s_name,
            'status': WorkspaceStatus(self.status).value,
            'url': self.url,
            'image': self.image,
            'replicas': int(self.replicas),
            'resources': self.resources.to_dict(),
            'usage': self.usage,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'last_accessed_at': self.last_accessed_at,
            'password': self.password if include_password else "********",
        }
        return result

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            name=data['name'],
            description=data.get('description'),
            group_id=data['group_id'],
            group_name=data.get('group_name', ''),
            user_id=data['user_id'],
            namespace=data['namespace'],
            k8s_name=data['k8s_name'],
            image=data['image'],
            password=data.get('password', ''),
            status=WorkspaceStatus(data.get('status', WorkspaceStatus.PENDING.value)),
            url=data.get('url'),
            resources=WorkspaceResources.from_dict(data.get('resources')),
            replicas=int(data.get('replicas', 0)),
            usage=data.get('usage'),
            created_at=data.get('created_at') or utc_now_iso(),
            updated_at=data.get('updated_at') or utc_now_iso(),
            last_accessed_at=data.get('last_accessed_at'),
        )
