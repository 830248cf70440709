"""Request schemas and the helpers that apply them to Flask requests."""

import re
from datetime import datetime
from typing import List, Optional

from flask import request
from pydantic import (
    BaseModel, ConfigDict, EmailStr, Field, model_validator,
    ValidationError as PydanticValidationError,
)

from vscode_platform.config import app_config
from vscode_platform.errors import ValidationError
from vscode_platform.user.models import GroupRole
from vscode_platform.workspace.models import WorkspaceAction, WorkspaceStatus
from vscode_platform.workspace.tiers import ResourceTier

K8S_NAME_PATTERN = r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$'
NAMESPACE_PATTERN = rf'^{re.escape(app_config.NAMESPACE_PREFIX)}[a-z0-9]([-a-z0-9]*[a-z0-9])?$'
WORKSPACE_NAME_PATTERN = r'^[a-zA-Z0-9]([a-zA-Z0-9\- ])*[a-zA-Z0-9]$'
IMAGE_PATTERN = r'^[a-zA-Z0-9\-./:]+$'
CPU_QUANTITY_PATTERN = r'^[0-9]+(\.[0-9]+)?m?$'
BYTES_QUANTITY_PATTERN = r'^[0-9]+(\.[0-9]+)?([eE][0-9]+|Ki|Mi|Gi|Ti|k|M|G|T)?$'


class Schema(BaseModel):
    """Base schema; unknown keys are dropped"""
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)


class PartialSchema(Schema):
    """Schema for partial updates, at least one field is required"""

    @model_validator(mode='after')
    def require_one_field(self):
        if not self.model_dump(exclude_unset=True):
            raise ValueError('At least one field must be provided')
        return self


# Auth

class UpdateProfileRequest(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None


class ChangePasswordRequest(Schema):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)


# Groups

class ResourceQuotaSchema(Schema):
    cpu: str = Field(pattern=CPU_QUANTITY_PATTERN)
    memory: str = Field(pattern=BYTES_QUANTITY_PATTERN)
    storage: str = Field(pattern=BYTES_QUANTITY_PATTERN)
    pods: int = Field(ge=1)


class ResourceQuotaUpdateSchema(Schema):
    cpu: Optional[str] = Field(default=None, pattern=CPU_QUANTITY_PATTERN)
    memory: Optional[str] = Field(default=None, pattern=BYTES_QUANTITY_PATTERN)
    storage: Optional[str] = Field(default=None, pattern=BYTES_QUANTITY_PATTERN)
    pods: Optional[int] = Field(default=None, ge=1)


class CreateGroupRequest(Schema):
    name: str = Field(min_length=1, max_length=63, pattern=K8S_NAME_PATTERN)
    display_name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    namespace: str = Field(max_length=63, pattern=NAMESPACE_PATTERN)
    resource_quota: Optional[ResourceQuotaSchema] = None


class UpdateGroupRequest(PartialSchema):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    resource_quota: Optional[ResourceQuotaUpdateSchema] = None


class AddGroupMemberRequest(Schema):
    user_id: str = Field(min_length=1)
    role: GroupRole = GroupRole.MEMBER


class UpdateGroupMemberRequest(Schema):
    role: GroupRole


# Workspaces

class WorkspaceResourcesSchema(Schema):
    cpu: str = Field(pattern=CPU_QUANTITY_PATTERN)
    memory: str = Field(pattern=BYTES_QUANTITY_PATTERN)
    storage: str = Field(pattern=BYTES_QUANTITY_PATTERN)


class WorkspaceResourcesUpdateSchema(Schema):
    cpu: Optional[str] = Field(default=None, pattern=CPU_QUANTITY_PATTERN)
    memory: Optional[str] = Field(default=None, pattern=BYTES_QUANTITY_PATTERN)
    storage: Optional[str] = Field(default=None, pattern=BYTES_QUANTITY_PATTERN)


class CreateWorkspaceRequest(Schema):
    name: str = Field(min_length=1, max_length=63, pattern=WORKSPACE_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)
    group_id: str = Field(min_length=1)
    image: Optional[str] = Field(default=None, min_length=1, max_length=255, pattern=IMAGE_PATTERN)
    resources: Optional[WorkspaceResourcesSchema] = None
    tier: Optional[ResourceTier] = None


class UpdateWorkspaceRequest(PartialSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=63, pattern=WORKSPACE_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)
    resources: Optional[WorkspaceResourcesUpdateSchema] = None


class WorkspaceActionRequest(Schema):
    type: WorkspaceAction


class WorkspaceQuery(Schema):
    group_id: Optional[str] = None
    status: Optional[WorkspaceStatus] = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class WorkspaceDetailQuery(Schema):
    include_password: bool = False


class WorkspaceLogsQuery(Schema):
    lines: int = Field(default=100, ge=1, le=1000)


# Admin

class UserQuery(Schema):
    limit: int = Field(default=20, ge=1, le=100)
    next_token: Optional[str] = None
    search: Optional[str] = Field(default=None, min_length=1, max_length=100)


class UpdateUserRequest(PartialSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_admin: Optional[bool] = None
    groups: Optional[List[str]] = None


class AddUserToGroupRequest(Schema):
    group_id: str = Field(min_length=1)


class AuditLogQuery(Schema):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    user_id: Optional[str] = None
    action: Optional[str] = None
    next_token: Optional[str] = None
    limit: int = Field(default=20, ge=1, le=100)


class UpdateSystemSettingsRequest(PartialSchema):
    default_workspace_image: Optional[str] = Field(
        default=None, min_length=1, max_length=255, pattern=IMAGE_PATTERN
    )


def _field_errors(error):
    return [
        {
            'field': '.'.join(str(part) for part in err['loc']),
            'message': err['msg'],
        }
        for err in error.errors()
    ]


def parse(schema, data, message='Validation failed'):
    """Validate a mapping against a schema, raising ValidationError on failure"""
    try:
        return schema.model_validate(data if data is not None else {})
    except PydanticValidationError as e:
        raise ValidationError(message, details={'fields': _field_errors(e)})


def validate_body(schema):
    data = request.get_json(silent=True)
    if data is not None and not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return parse(schema, data)


def validate_query(schema):
    return parse(schema, request.args.to_dict(), 'Query validation failed')
