from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from vscode_platform.utils.generators import generate_audit_log_id
from vscode_platform.utils.timestamps import utc_now_iso


@dataclass
class AuditLog:
    """Record of an administrative action"""
    user_id: str
    username: str
    action: str
    resource: str
    success: bool
    details: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    id: str = field(default_factory=generate_audit_log_id)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'username': self.username,
            'action': self.action,
            'resource': self.resource,
            'details': self.details,
            'timestamp': self.timestamp,
            'success': self.success,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            user_id=data.get('user_id', ''),
            username=data.get('username', ''),
            action=data.get('action', ''),
            resource=data.get('resource', ''),
            details=data.get('details'),
            timestamp=data.get('timestamp', ''),
            success=bool(data.get('success', False)),
            error=data.get('error'),
        )


@dataclass
class SystemSettings:
    default_workspace_image: str
    updated_at: Optional[str] = None
    updated_by: Optional[str] = None

    def to_dict(self):
        return {
            'default_workspace_image': self.default_workspace_image,
            'updated_at': self.updated_at,
            'updated_by': self.updated_by,
        }
