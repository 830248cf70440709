from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from vscode_platform.utils.timestamps import utc_now_iso


class GroupRole(str, Enum):
    ADMIN = 'admin'
    MEMBER = 'member'


@dataclass
class GroupMembership:
    group_id: str
    role: GroupRole = GroupRole.MEMBER

    def to_dict(self):
        return {'group_id': self.group_id, 'role': GroupRole(self.role).value}

    @classmethod
    def from_dict(cls, data):
        return cls(group_id=data['group_id'], role=GroupRole(data.get('role', GroupRole.MEMBER.value)))


@dataclass
class User:
    """Platform user, created on first login from the identity provider claims"""
    id: str
    username: str
    email: str
    name: Optional[str] = None
    groups: List[str] = field(default_factory=list)  # Legacy list of group ids
    group_memberships: List[GroupMembership] = field(default_factory=list)
    is_admin: bool = False
    created_at: str = field(default_factory=utc_now_iso)
    last_login_at: Optional[str] = None

    def is_member_of(self, group_id: str) -> bool:
        return group_id in self.groups

    def membership_for(self, group_id: str) -> Optional[GroupMembership]:
        for membership in self.group_memberships:
            if membership.group_id == group_id:
                return membership
        return None

    def can_access_group(self, group_id: str) -> bool:
        return self.is_admin or self.is_member_of(group_id)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'name': self.name,
            'groups': list(self.groups),
            'group_memberships': [m.to_dict() for m in self.group_memberships],
            'is_admin': self.is_admin,
            'created_at': self.created_at,
            'last_login_at': self.last_login_at,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            username=data.get('username') or data['email'].split('@')[0],
            email=data['email'],
            name=data.get('name'),
            groups=list(data.get('groups') or []),
            group_memberships=[GroupMembership.from_dict(m) for m in data.get('group_memberships') or []],
            is_admin=bool(data.get('is_admin', False)),
            created_at=data.get('created_at') or utc_now_iso(),
            last_login_at=data.get('last_login_at'),
        )
