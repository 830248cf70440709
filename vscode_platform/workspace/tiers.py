from enum import Enum

from vscode_platform.errors import ValidationError
from vscode_platform.workspace.models import WorkspaceResources


class ResourceTier(str, Enum):
    SINGLE_USER = 'single-user'
    SMALL_TEAM = 'small-team'
    ENTERPRISE = 'enterprise'


DEFAULT_TIER = ResourceTier.SMALL_TEAM

# CPU is request-only; memory limit equals the request
RESOURCE_TIER_CONFIGS = {
    ResourceTier.SINGLE_USER: {'cpu': '1', 'memory': '2Gi', 'storage': '20Gi'},
    ResourceTier.SMALL_TEAM: {'cpu': '2', 'memory': '4Gi', 'storage': '20Gi'},
    # Placeholder until custom sizing exists
    ResourceTier.ENTERPRISE: {'cpu': '2', 'memory': '4Gi', 'storage': '20Gi'},
}

TIER_DESCRIPTIONS = {
    ResourceTier.SINGLE_USER: {
        'name': 'Single User',
        'description': 'Perfect for individual developers',
        'users': '1 concurrent user',
    },
    ResourceTier.SMALL_TEAM: {
        'name': 'Small Team',
        'description': 'For small collaborative teams',
        'users': '2-4 concurrent users',
    },
    ResourceTier.ENTERPRISE: {
        'name': 'Enterprise',
        'description': 'For larger teams - contact us for custom pricing',
        'users': '5+ concurrent users',
    },
}


def get_resources_for_tier(tier):
    """Return a fresh WorkspaceResources for the given tier"""
    try:
        tier = ResourceTier(tier)
    except ValueError:
        raise ValidationError(f"Unknown resource tier: {tier}")
    return WorkspaceResources.from_dict(dict(RESOURCE_TIER_CONFIGS[tier]))


def list_tiers():
    return [
        {
            'tier': tier.value,
            **TIER_DESCRIPTIONS[tier],
            'resources': dict(RESOURCE_TIER_CONFIGS[tier]),
            'default': tier == DEFAULT_TIER,
        }
        for tier in ResourceTier
    ]
