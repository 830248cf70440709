"""Single-table DynamoDB access layer.

Users, groups, workspaces, audit logs and system settings share one table
keyed by ``PK``/``SK`` with prefixed identifiers (``USER#<id>``,
``GROUP#<id>`` ...). ``GSI1`` is used for listing users and groups and for
looking up the workspaces owned by a user.
"""

import base64
import json
import logging
from decimal import Decimal
from enum import Enum

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from vscode_platform.admin.models import AuditLog, SystemSettings
from vscode_platform.config import app_config
from vscode_platform.errors import ConflictError, DatabaseError, NotFoundError, ValidationError
from vscode_platform.group.models import Group
from vscode_platform.user.models import User
from vscode_platform.utils.timestamps import utc_now_iso
from vscode_platform.workspace.models import Workspace

logger = logging.getLogger(__name__)

KEY_ATTRIBUTES = ('PK', 'SK', 'GSI1PK', 'GSI1SK', 'EntityType')
SETTINGS_KEY = 'SETTINGS#system'


def to_dynamo(value):
    """Convert a value into something boto3 can serialize"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    if hasattr(value, 'to_dict'):
        return to_dynamo(value.to_dict())
    return value


def from_dynamo(value):
    """Convert Decimals returned by boto3 back to int/float"""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


def _strip_keys(item):
    return {k: v for k, v in from_dynamo(item).items() if k not in KEY_ATTRIBUTES}


def encode_token(last_evaluated_key):
    if not last_evaluated_key:
        return None
    raw = json.dumps(from_dynamo(last_evaluated_key)).encode('utf-8')
    return base64.b64encode(raw).decode('utf-8')


def decode_token(token):
    try:
        key = json.loads(base64.b64decode(token.encode('utf-8')).decode('utf-8'))
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid pagination token: {e}")
    if not isinstance(key, dict):
        raise ValidationError('Invalid pagination token')
    return key


def _error_code(error):
    return error.response.get('Error', {}).get('Code', '')


class DynamoDBService:
    """Service class for the platform table"""

    def __init__(self, table=None):
        self._table = table
        self.table_name = app_config.DYNAMODB_TABLE_NAME

    @property
    def table(self):
        if self._table is None:
            resource_kwargs = {'region_name': app_config.DYNAMODB_REGION}
            if app_config.DYNAMODB_ENDPOINT:
                resource_kwargs['endpoint_url'] = app_config.DYNAMODB_ENDPOINT
                logger.info(f"Using custom DynamoDB endpoint: {app_config.DYNAMODB_ENDPOINT}")
            dynamodb = boto3.resource('dynamodb', **resource_kwargs)
            self._table = dynamodb.Table(self.table_name)
            logger.info(f"DynamoDB service bound to table: {self.table_name} "
                        f"(region={app_config.DYNAMODB_REGION})")
        return self._table

    # Generic helpers

    def _get(self, pk, sk=None):
        result = self.table.get_item(Key={'PK': pk, 'SK': sk or pk})
        item = result.get('Item')
        if not item:
            return None
        return _strip_keys(item)

    def _put_new(self, item, conflict_message):
        try:
            self.table.put_item(Item=to_dynamo(item), ConditionExpression='attribute_not_exists(PK)')
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise ConflictError(conflict_message)
            raise

    def _update(self, pk, updates, not_found_message):
        names = {}
        values = {}
        assignments = []
        for key, value in updates.items():
            if key == 'id' or key in KEY_ATTRIBUTES or value is None:
                continue
            names[f"#{key}"] = key
            values[f":{key}"] = to_dynamo(value)
            assignments.append(f"#{key} = :{key}")

        if not assignments:
            current = self._get(pk)
            if current is None:
                raise NotFoundError(not_found_message)
            return current

        try:
            result = self.table.update_item(
                Key={'PK': pk, 'SK': pk},
                UpdateExpression="SET " + ", ".join(assignments),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression='attribute_exists(PK)',
                ReturnValues='ALL_NEW',
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise NotFoundError(not_found_message)
            raise
        return _strip_keys(result.get('Attributes', {}))

    def _delete(self, pk):
        self.table.delete_item(Key={'PK': pk, 'SK': pk})

    def _query_all(self, **kwargs):
        items = []
        while True:
            result = self.table.query(**kwargs)
            items.extend(result.get('Items', []))
            last_key = result.get('LastEvaluatedKey')
            if not last_key:
                return items
            kwargs['ExclusiveStartKey'] = last_key

    def _scan_all(self, **kwargs):
        items = []
        while True:
            result = self.table.scan(**kwargs)
            items.extend(result.get('Items', []))
            last_key = result.get('LastEvaluatedKey')
            if not last_key:
                return items
            kwargs['ExclusiveStartKey'] = last_key

    # User operations

    def create_user(self, user: User) -> User:
        """Create a user together with the lock item that keeps emails unique"""
        email_key = f"EMAIL_LOCK#{user.email}"
        try:
            self._put_new({
                'PK': email_key,
                'SK': email_key,
                'EntityType': 'EMAIL_LOCK',
                'user_id': user.id,
                'email': user.email,
                'created_at': utc_now_iso(),
            }, 'User already exists')

            try:
                self._put_new({
                    'PK': f"USER#{user.id}",
                    'SK': f"USER#{user.id}",
                    'EntityType': 'USER',
                    'GSI1PK': 'USER',
                    'GSI1SK': user.id,
                    **user.to_dict(),
                }, 'User already exists')
            except Exception:
                self._delete(email_key)
                raise

            logger.info(f"User created: {user.id}")
            return user
        except ConflictError:
            raise
        except ClientError as e:
            raise DatabaseError('Failed to create user', details={'reason': _error_code(e)})

    def get_user(self, user_id):
        try:
            item = self._get(f"USER#{user_id}")
        except ClientError as e:
            raise DatabaseError(f"Failed to get user {user_id}", details={'reason': _error_code(e)})
        return User.from_dict(item) if item else None

    def get_user_by_email(self, email):
        try:
            lock = self._get(f"EMAIL_LOCK#{email}")
        except ClientError as e:
            raise DatabaseError(f"Failed to get user by email {email}", details={'reason': _error_code(e)})
        if not lock:
            return None
        return self.get_user(lock['user_id'])

    def update_user(self, user_id, updates) -> User:
        new_email = updates.get('email')
        old_email = None
        try:
            if new_email:
                current = self.get_user(user_id)
                if current is None:
                    raise NotFoundError(f"User {user_id} not found")
                if current.email != new_email:
                    old_email = current.email
                    self._put_new({
                        'PK': f"EMAIL_LOCK#{new_email}",
                        'SK': f"EMAIL_LOCK#{new_email}",
                        'EntityType': 'EMAIL_LOCK',
                        'user_id': user_id,
                        'email': new_email,
                        'created_at': utc_now_iso(),
                    }, f"Email {new_email} is already in use")

            try:
                item = self._update(f"USER#{user_id}", updates, f"User {user_id} not found")
            except Exception:
                if old_email:
                    self._delete(f"EMAIL_LOCK#{new_email}")
                raise

            if old_email:
                self._delete(f"EMAIL_LOCK#{old_email}")

            logger.info(f"User updated: {user_id}")
            return User.from_dict(item)
        except ClientError as e:
            raise DatabaseError(f"Failed to update user {user_id}", details={'reason': _error_code(e)})

    def delete_user(self, user_id):
        try:
            user = self.get_user(user_id)
            self._delete(f"USER#{user_id}")
            if user:
                self._delete(f"EMAIL_LOCK#{user.email}")
            logger.info(f"User deleted: {user_id}")
        except ClientError as e:
            raise DatabaseError(f"Failed to delete user {user_id}", details={'reason': _error_code(e)})

    def list_users(self, limit=20, next_token=None):
        """List one page of users; returns (users, next_token)"""
        params = {
            'IndexName': 'GSI1',
            'KeyConditionExpression': Key('GSI1PK').eq('USER'),
            'Limit': limit,
        }
        if next_token:
            params['ExclusiveStartKey'] = decode_token(next_token)
        try:
            result = self.table.query(**params)
        except ClientError as e:
            raise DatabaseError('Failed to list users', details={'reason': _error_code(e)})

        users = [User.from_dict(_strip_keys(item)) for item in result.get('Items', [])]
        return users, encode_token(result.get('LastEvaluatedKey'))

    def list_all_users(self):
        try:
            items = self._query_all(IndexName='GSI1', KeyConditionExpression=Key('GSI1PK').eq('USER'))
        except ClientError as e:
            raise DatabaseError('Failed to list users', details={'reason': _error_code(e)})
        return [User.from_dict(_strip_keys(item)) for item in items]

    # Group operations

    def create_group(self, group: Group) -> Group:
        try:
            self._put_new({
                'PK': f"GROUP#{group.id}",
                'SK': f"GROUP#{group.id}",
                'EntityType': 'GROUP',
                'GSI1PK': 'GROUP',
                'GSI1SK': group.id,
                **group.to_dict(),
            }, 'Group already exists')
        except ClientError as e:
            raise DatabaseError('Failed to create group', details={'reason': _error_code(e)})
        logger.info(f"Group created: {group.id}")
        return group

    def get_group(self, group_id):
        try:
            item = self._get(f"GROUP#{group_id}")
        except ClientError as e:
            raise DatabaseError(f"Failed to get group {group_id}", details={'reason': _error_code(e)})
        return Group.from_dict(item) if item else None

    def update_group(self, group_id, updates) -> Group:
        updates = dict(updates)
        updates['updated_at'] = utc_now_iso()
        try:
            item = self._update(f"GROUP#{group_id}", updates, f"Group {group_id} not found")
        except ClientError as e:
            raise DatabaseError(f"Failed to update group {group_id}", details={'reason': _error_code(e)})
        logger.info(f"Group updated: {group_id}")
        return Group.from_dict(item)

    def delete_group(self, group_id):
        try:
            self._delete(f"GROUP#{group_id}")
        except ClientError as e:
            raise DatabaseError(f"Failed to delete group {group_id}", details={'reason': _error_code(e)})
        logger.info(f"Group deleted: {group_id}")

    def list_groups(self):
        try:
            items = self._query_all(IndexName='GSI1', KeyConditionExpression=Key('GSI1PK').eq('GROUP'))
        except ClientError as e:
            raise DatabaseError('Failed to list groups', details={'reason': _error_code(e)})
        return [Group.from_dict(_strip_keys(item)) for item in items]

    def get_user_groups(self, user_id):
        user = self.get_user(user_id)
        if not user or not user.groups:
            return []
        groups = [self.get_group(group_id) for group_id in user.groups]
        # Groups may have been deleted since the user joined them
        return [g for g in groups if g is not None]

    # Workspace operations

    def create_workspace(self, workspace: Workspace) -> Workspace:
        try:
            self._put_new({
                'PK': f"WORKSPACE#{workspace.id}",
                'SK': f"WORKSPACE#{workspace.id}",
                'EntityType': 'WORKSPACE',
                'GSI1PK': f"USER#{workspace.user_id}",
                'GSI1SK': f"WORKSPACE#{workspace.id}",
                **workspace.to_dict(include_password=True),
            }, 'Workspace already exists')
        except ClientError as e:
            raise DatabaseError('Failed to create workspace', details={'reason': _error_code(e)})
        logger.info(f"Workspace created: {workspace.id}")
        return workspace

    def get_workspace(self, workspace_id):
        try:
            item = self._get(f"WORKSPACE#{workspace_id}")
        except ClientError as e:
            raise DatabaseError(f"Failed to get workspace {workspace_id}", details={'reason': _error_code(e)})
        return Workspace.from_dict(item) if item else None

    def update_workspace(self, workspace_id, updates) -> Workspace:
        updates = dict(updates)
        # Always update the updated_at timestamp
        updates['updated_at'] = utc_now_iso()
        try:
            item = self._update(f"WORKSPACE#{workspace_id}", updates, f"Workspace {workspace_id} not found")
        except ClientError as e:
            raise DatabaseError(f"Failed to update workspace {workspace_id}", details={'reason': _error_code(e)})
        logger.info(f"Workspace updated: {workspace_id}")
        return Workspace.from_dict(item)

    def delete_workspace(self, workspace_id):
        try:
            self._delete(f"WORKSPACE#{workspace_id}")
        except ClientError as e:
            raise DatabaseError(f"Failed to delete workspace {workspace_id}", details={'reason': _error_code(e)})
        logger.info(f"Workspace deleted: {workspace_id}")

    def get_user_workspaces(self, user_id):
        try:
            items = self._query_all(
                IndexName='GSI1',
                KeyConditionExpression=Key('GSI1PK').eq(f"USER#{user_id}") & Key('GSI1SK').begins_with('WORKSPACE#'),
            )
        except ClientError as e:
            raise DatabaseError(f"Failed to get workspaces for user {user_id}", details={'reason': _error_code(e)})
        return [Workspace.from_dict(_strip_keys(item)) for item in items]

    def get_group_workspaces(self, group_id):
        try:
            items = self._scan_all(
                FilterExpression=Attr('EntityType').eq('WORKSPACE') & Attr('group_id').eq(group_id),
            )
        except ClientError as e:
            raise DatabaseError(f"Failed to get workspaces for group {group_id}", details={'reason': _error_code(e)})
        return [Workspace.from_dict(_strip_keys(item)) for item in items]

    def list_workspaces(self):
        try:
            items = self._scan_all(FilterExpression=Attr('EntityType').eq('WORKSPACE'))
        except ClientError as e:
            raise DatabaseError('Failed to list workspaces', details={'reason': _error_code(e)})
        return [Workspace.from_dict(_strip_keys(item)) for item in items]

    # Audit log operations

    def create_audit_log(self, audit_log: AuditLog):
        """Store an audit log entry; failures are logged, never raised"""
        try:
            self.table.put_item(Item=to_dynamo({
                'PK': f"AUDIT#{audit_log.timestamp[:10]}",
                'SK': f"{audit_log.timestamp}#{audit_log.id}",
                'EntityType': 'AUDIT_LOG',
                **audit_log.to_dict(),
            }))
            return audit_log
        except Exception as e:
            logger.error(f"Failed to create audit log: {e}")
            return None

    def get_audit_logs(self, start_date=None, end_date=None, user_id=None, action=None,
                       limit=20, next_token=None):
        """Scan one page of audit logs; returns (logs, next_token)"""
        condition = Attr('EntityType').eq('AUDIT_LOG')
        if start_date:
            condition = condition & Attr('timestamp').gte(start_date.isoformat())
        if end_date:
            condition = condition & Attr('timestamp').lte(end_date.isoformat())
        if user_id:
            condition = condition & Attr('user_id').eq(user_id)
        if action:
            condition = condition & Attr('action').eq(action)

        params = {'FilterExpression': condition, 'Limit': limit}
        if next_token:
            params['ExclusiveStartKey'] = decode_token(next_token)
        try:
            result = self.table.scan(**params)
        except ClientError as e:
            raise DatabaseError('Failed to get audit logs', details={'reason': _error_code(e)})

        logs = [AuditLog.from_dict(_strip_keys(item)) for item in result.get('Items', [])]
        logs.sort(key=lambda log: log.timestamp, reverse=True)
        return logs, encode_token(result.get('LastEvaluatedKey'))

    # System settings

    def get_system_settings(self):
        try:
            item = self._get(SETTINGS_KEY)
        except ClientError as e:
            raise DatabaseError('Failed to get system settings', details={'reason': _error_code(e)})
        if not item:
            return SystemSettings(default_workspace_image=app_config.DEFAULT_WORKSPACE_IMAGE)
        return SystemSettings(
            default_workspace_image=item.get('default_workspace_image') or app_config.DEFAULT_WORKSPACE_IMAGE,
            updated_at=item.get('updated_at'),
            updated_by=item.get('updated_by'),
        )

    def update_system_settings(self, updates, updated_by):
        settings = self.get_system_settings()
        if updates.get('default_workspace_image'):
            settings.default_workspace_image = updates['default_workspace_image']
        settings.updated_at = utc_now_iso()
        settings.updated_by = updated_by
        try:
            self.table.put_item(Item=to_dynamo({
                'PK': SETTINGS_KEY,
                'SK': SETTINGS_KEY,
                'EntityType': 'SETTINGS',
                **settings.to_dict(),
            }))
        except ClientError as e:
            raise DatabaseError('Failed to update system settings', details={'reason': _error_code(e)})
        logger.info(f"System settings updated by {updated_by}")
        return settings

    # Health check

    def health_check(self):
        try:
            self.table.meta.client.describe_table(TableName=self.table_name)
            return True
        except Exception as e:
            logger.error(f"DynamoDB health check failed: {e}")
            return False


# Global service instance
dynamodb_service = DynamoDBService()
