import logging
from vscode_platform.errors import ConflictError, NotFoundError
from vscode_platform.group.models import Group, ResourceQuota
from vscode_platform.k8s.service import kubernetes_service
from vscode_platform.storage.dynamodb import dynamodb_service
from vscode_platform.user.models import GroupRole
from vscode_platform.user.service import user_service
from vscode_platform.utils.generators import generate_group_id

logger = logging.getLogger(__name__)


class GroupService:
    """Service class for group operations"""

    def __init__(self, db=None, k8s=None, users=None):
        self.db = db or dynamodb_service
        self.k8s = k8s or kubernetes_service
        self.users = users or user_service

    def get_group(self, group_id) -> Group:
        group = self.db.get_group(group_id)
        if group is None:
            raise NotFoundError('Group not found')
        return group

    def list_groups_for(self, user):
        """All groups for admins, otherwise the groups the user belongs to"""
        if user.is_admin:
            return self.db.list_groups()

        groups = []
        for group_id in user.groups:
            group = self.db.get_group(group_id)
            if group is None:
                logger.warning(f"Group {group_id} of user {user.id} no longer exists")
                continue
            groups.append(group)
        return groups

    def create_group(self, creator, name, display_name, namespace, description=None, resource_quota=None):
        """Create the group record, its namespace and quota, and add the creator as admin"""
        if self.k8s.namespace_exists(namespace):
            raise ConflictError('Namespace already exists')

        quota = ResourceQuota.from_dict(resource_quota)
        group = self.db.create_group(Group(
            id=generate_group_id(),
            name=name,
            display_name=display_name,
            namespace=namespace,
            description=description,
            resource_quota=quota,
        ))

        try:
            self.k8s.create_namespace(namespace, {
                'vscode-platform/group-id': group.id,
                'vscode-platform/group-name': name,
            })
            self.k8s.create_resource_quota(namespace, quota)
        except Exception as e:
            logger.error(f"Failed to provision namespace {namespace} for group {group.id}: {e}")
            self._rollback_group(group)
            raise

        self.users.add_user_to_group(creator.id, group.id, GroupRole.ADMIN)
        group = self.db.update_group(group.id, {'member_count': 1})

        logger.info(f"Group created: {group.id} with namespace {namespace}, creator {creator.email} added as admin")
        return group

    def _rollback_group(self, group):
        try:
            self.k8s.delete_namespace(group.namespace)
        except Exception as e:
            logger.warning(f"Failed to clean up namespace {group.namespace}: {e}")
        self.db.delete_group(group.id)

    def get_group_with_usage(self, group_id):
        group = self.get_group(group_id)
        result = group.to_dict()
        try:
            result['current_usage'] = self.k8s.get_namespace_metrics(group.namespace)
        except Exception as e:
            logger.warning(f"Failed to get metrics for group {group_id}: {e}")
        return result

    def update_group(self, group_id, updates):
        group = self.get_group(group_id)
        updates = dict(updates)

        if updates.get('resource_quota'):
            quota = group.resource_quota.merged(updates['resource_quota'])
            self.k8s.create_resource_quota(group.namespace, quota)
            updates['resource_quota'] = quota

        updated = self.db.update_group(group_id, updates)
        logger.info(f"Group updated: {group_id}")
        return updated

    def delete_group(self, group_id):
        group = self.get_group(group_id)

        if self.db.get_group_workspaces(group_id):
            raise ConflictError('Cannot delete group with active workspaces')

        for user in self._members(group_id):
            self.users.remove_user_from_group(user.id, group_id)

        try:
            self.k8s.delete_namespace(group.namespace)
        except Exception as e:
            logger.warning(f"Failed to delete namespace {group.namespace}: {e}")

        self.db.delete_group(group_id)
        logger.info(f"Group deleted: {group_id}")

    def _members(self, group_id):
        return [user for user in self.db.list_all_users() if user.is_member_of(group_id)]

    def list_members(self, group_id):
        self.get_group(group_id)
        members = []
        for user in self._members(group_id):
            membership = user.membership_for(group_id)
            data = user.to_dict()
            data['role'] = (membership.role if membership else GroupRole.MEMBER).value
            members.append(data)
        return members

    def _recount_members(self, group_id):
        member_count = len(self._members(group_id))
        self.db.update_group(group_id, {'member_count': member_count})
        return member_count

    def add_member(self, group_id, user_id, role=GroupRole.MEMBER):
        self.get_group(group_id)
        if self.users.get_user_by_id(user_id) is None:
            raise NotFoundError('User not found')

        self.users.add_user_to_group(user_id, group_id, role)
        self._recount_members(group_id)
        logger.info(f"User {user_id} added to group {group_id} with role {GroupRole(role).value}")

    def remove_member(self, group_id, user_id):
        self.get_group(group_id)
        if self.users.get_user_by_id(user_id) is None:
            raise NotFoundError('User not found')

        self.users.remove_user_from_group(user_id, group_id)
        self._recount_members(group_id)
        logger.info(f"User {user_id} removed from group {group_id}")

    def update_member_role(self, group_id, user_id, role):
        self.get_group(group_id)
        if self.users.get_user_by_id(user_id) is None:
            raise NotFoundError('User not found')

        user = self.users.set_user_group_role(user_id, group_id, role)
        logger.info(f"User {user_id} role in group {group_id} set to {GroupRole(role).value}")
        return user

    def get_usage(self, group_id):
        group = self.get_group(group_id)
        return self.k8s.get_namespace_metrics(group.namespace)


# Global service instance
group_service = GroupService()
