import logging
from typing import List, Optional

from vscode_platform.config import app_config
from vscode_platform.errors import ConflictError, DatabaseError, NotFoundError, ValidationError
from vscode_platform.storage.dynamodb import dynamodb_service
from vscode_platform.user.models import GroupMembership, GroupRole, User
from vscode_platform.utils.generators import generate_user_id
from vscode_platform.utils.timestamps import utc_now_iso

logger = logging.getLogger(__name__)


class UserService:
    """Service for managing platform users and their group memberships"""

    def __init__(self, db=None):
        self.db = db or dynamodb_service

    def get_or_create_user(self, claims) -> User:
        """Resolve the user for verified token claims, creating it on first login"""
        email = claims['email']
        # Admin status comes from identity provider groups, application groups never do
        is_admin = app_config.ADMIN_COGNITO_GROUP in (claims.get('groups') or [])

        user = self.db.get_user_by_email(email)
        if user is None:
            new_user = User(
                id=generate_user_id(),
                username=email.split('@')[0],
                email=email,
                name=claims.get('name'),
                is_admin=is_admin,
            )
            try:
                user = self.db.create_user(new_user)
                logger.info(f"New user created: {email} (admin: {is_admin})")
            except ConflictError:
                logger.info(f"User creation race detected for {email}, fetching existing user")
                user = self.db.get_user_by_email(email)
                if user is None:
                    raise DatabaseError(f"Failed to fetch user after creation race: {email}")

        updates = {
            'last_login_at': utc_now_iso(),
            'is_admin': is_admin,
        }
        if claims.get('name'):
            updates['name'] = claims['name']

        return self.db.update_user(user.id, updates)

    def get_user_by_id(self, user_id) -> Optional[User]:
        return self.db.get_user(user_id)

    def get_user_by_email(self, email) -> Optional[User]:
        return self.db.get_user_by_email(email)

    def update_user(self, user_id, updates) -> User:
        return self.db.update_user(user_id, updates)

    def delete_user(self, user_id):
        self.db.delete_user(user_id)

    def list_users(self, limit=20, next_token=None):
        return self.db.list_users(limit, next_token)

    def _require_user(self, user_id) -> User:
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def add_user_to_group(self, user_id, group_id, role=GroupRole.MEMBER) -> User:
        """Add a membership; existing memberships only get their role updated"""
        role = GroupRole(role)
        user = self._require_user(user_id)

        existing = user.membership_for(group_id)
        if existing is not None:
            if existing.role != role:
                memberships = [
                    GroupMembership(m.group_id, role) if m.group_id == group_id else m
                    for m in user.group_memberships
                ]
                return self.db.update_user(user_id, {'group_memberships': memberships})
            return user

        memberships = user.group_memberships + [GroupMembership(group_id, role)]
        groups = user.groups if group_id in user.groups else user.groups + [group_id]
        return self.db.update_user(user_id, {
            'groups': groups,
            'group_memberships': memberships,
        })

    def remove_user_from_group(self, user_id, group_id) -> User:
        user = self._require_user(user_id)
        return self.db.update_user(user_id, {
            'groups': [g for g in user.groups if g != group_id],
            'group_memberships': [m for m in user.group_memberships if m.group_id != group_id],
        })

    def set_user_group_role(self, user_id, group_id, role) -> User:
        role = GroupRole(role)
        user = self._require_user(user_id)
        if user.membership_for(group_id) is None and not user.is_member_of(group_id):
            raise ValidationError('User is not a member of this group')

        memberships = [m for m in user.group_memberships if m.group_id != group_id]
        memberships.append(GroupMembership(group_id, role))
        return self.db.update_user(user_id, {'group_memberships': memberships})

    def get_user_group_role(self, user_id, group_id) -> Optional[GroupRole]:
        user = self.db.get_user(user_id)
        if user is None:
            return None
        membership = user.membership_for(group_id)
        return membership.role if membership else None

    def get_user_groups(self, user_id) -> List[str]:
        user = self.db.get_user(user_id)
        return list(user.groups) if user else []

    def set_user_admin(self, user_id, is_admin) -> User:
        return self.db.update_user(user_id, {'is_admin': bool(is_admin)})


# Global service instance
user_service = UserService()
