from dataclasses import dataclass, field
from typing import Optional

from vscode_platform.utils.timestamps import utc_now_iso


@dataclass
class ResourceQuota:
    """Hard limits applied to a group namespace"""
    cpu: str = "50"
    memory: str = "100Gi"
    storage: str = "500Gi"
    pods: int = 100

    def to_dict(self):
        return {
            'cpu': self.cpu,
            'memory': self.memory,
            'storage': self.storage,
            'pods': int(self.pods),
        }

    def merged(self, updates):
        """Return a copy with the given non-empty fields replaced"""
        data = self.to_dict()
        data.update({k: v for k, v in (updates or {}).items() if v is not None})
        return ResourceQuota.from_dict(data)

    @classmethod
    def from_dict(cls, data):
        if not data:
            return cls()
        defaults = cls()
        return cls(
            cpu=str(data.get('cpu', defaults.cpu)),
            memory=str(data.get('memory', defaults.memory)),
            storage=str(data.get('storage', defaults.storage)),
            pods=int(data.get('pods', defaults.pods)),
        )


@dataclass
class Group:
    """Tenant unit mapped 1:1 to a Kubernetes namespace"""
    id: str
    name: str
    display_name: str
    namespace: str
    description: Optional[str] = None
    member_count: int = 0
    resource_quota: ResourceQuota = field(default_factory=ResourceQuota)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'display_name': self.display_name,
            'namespace': self.namespace,
            'description': self.description,
            'member_count': int(self.member_count),
            'resource_quota': self.resource_quota.to_dict(),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            name=data['name'],
            display_name=data.get('display_name') or data['name'],
            namespace=data['namespace'],
            description=data.get('description'),
            member_count=int(data.get('member_count', 0)),
            resource_quota=ResourceQuota.from_dict(data.get('resource_quota')),
            created_at=data.get('created_at') or utc_now_iso(),
            updated_at=data.get('updated_at'),
        )
