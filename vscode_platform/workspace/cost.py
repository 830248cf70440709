"""Monthly cost estimates for workspaces.

Per-unit prices are derived from an EC2 instance type: the instance's
monthly on-demand price (730 hours) split evenly over its vCPUs and over its
memory. Cluster management and networking are charged as a percentage of
the direct compute cost.
"""

import logging
from dataclasses import asdict, dataclass, replace
from typing import Optional

from vscode_platform.config import app_config
from vscode_platform.utils.quantities import parse_cpu, parse_memory
from vscode_platform.workspace.models import WorkspaceStatus

logger = logging.getLogger(__name__)

HOURS_PER_MONTH = 730
GIB = 1024 ** 3
DEFAULT_INSTANCE_TYPE = 't3a.xlarge'
FALLBACK_CPU_CORE_PER_MONTH = 30.00
FALLBACK_MEMORY_GIB_PER_MONTH = 4.00


@dataclass
class InstancePricing:
    instance_type: str
    hourly_rate: float
    vcpus: int
    memory_gib: int

    def to_dict(self):
        return asdict(self)


# Approximate us-east-1 on-demand rates
EC2_INSTANCE_PRICING = {p.instance_type: p for p in [
    InstancePricing('t3.medium', 0.0416, 2, 4),
    InstancePricing('t3.large', 0.0832, 2, 8),
    InstancePricing('t3.xlarge', 0.1664, 4, 16),
    InstancePricing('t3.2xlarge', 0.3328, 8, 32),
    InstancePricing('t3a.medium', 0.0374, 2, 4),
    InstancePricing('t3a.large', 0.0749, 2, 8),
    InstancePricing('t3a.xlarge', 0.1498, 4, 16),
    InstancePricing('t3a.2xlarge', 0.2995, 8, 32),
    InstancePricing('m5.large', 0.096, 2, 8),
    InstancePricing('m5.xlarge', 0.192, 4, 16),
    InstancePricing('m5.2xlarge', 0.384, 8, 32),
    InstancePricing('m5.4xlarge', 0.768, 16, 64),
    InstancePricing('m5a.large', 0.086, 2, 8),
    InstancePricing('m5a.xlarge', 0.172, 4, 16),
    InstancePricing('m5a.2xlarge', 0.344, 8, 32),
    InstancePricing('m5a.4xlarge', 0.688, 16, 64),
    InstancePricing('c5.large', 0.085, 2, 4),
    InstancePricing('c5.xlarge', 0.17, 4, 8),
    InstancePricing('c5.2xlarge', 0.34, 8, 16),
    InstancePricing('c5.4xlarge', 0.68, 16, 32),
    InstancePricing('r5.large', 0.126, 2, 16),
    InstancePricing('r5.xlarge', 0.252, 4, 32),
    InstancePricing('r5.2xlarge', 0.504, 8, 64),
    InstancePricing('r5.4xlarge', 1.008, 16, 128),
]}


@dataclass
class PricingConfig:
    cpu_core_per_month: float
    memory_gib_per_month: float
    storage_gib_per_month: float = 0.10
    cluster_overhead_rate: float = 0.20
    network_overhead_rate: float = 0.10
    instance_type: Optional[str] = None
    derived_from_instance: bool = False

    def to_dict(self):
        return asdict(self)


def calculate_pricing_from_instance(instance_type):
    """Return (cpu_core_per_month, memory_gib_per_month) for an instance type"""
    pricing = EC2_INSTANCE_PRICING.get(instance_type.lower())
    if pricing is None:
        logger.warning(f"Unknown instance type: {instance_type}, using default pricing")
        return FALLBACK_CPU_CORE_PER_MONTH, FALLBACK_MEMORY_GIB_PER_MONTH

    monthly_cost = pricing.hourly_rate * HOURS_PER_MONTH
    return monthly_cost / pricing.vcpus, monthly_cost / pricing.memory_gib


def get_default_pricing():
    cpu, memory = calculate_pricing_from_instance(DEFAULT_INSTANCE_TYPE)
    return PricingConfig(
        cpu_core_per_month=cpu,
        memory_gib_per_month=memory,
        instance_type=DEFAULT_INSTANCE_TYPE,
        derived_from_instance=True,
    )


def _override(value, default):
    return default if value is None else value


def load_pricing_config(instance_type=None, config=None):
    """Pricing from an instance type, explicit PRICING_* settings, or the default"""
    config = config or app_config
    instance_type = instance_type or config.CLUSTER_INSTANCE_TYPE
    default = get_default_pricing()

    shared = {
        'storage_gib_per_month': _override(config.PRICING_STORAGE_GIB_PER_MONTH, default.storage_gib_per_month),
        'cluster_overhead_rate': _override(config.PRICING_CLUSTER_OVERHEAD_RATE, default.cluster_overhead_rate),
        'network_overhead_rate': _override(config.PRICING_NETWORK_OVERHEAD_RATE, default.network_overhead_rate),
    }

    if instance_type:
        cpu, memory = calculate_pricing_from_instance(instance_type)
        return PricingConfig(cpu, memory, instance_type=instance_type, derived_from_instance=True, **shared)

    if config.PRICING_CPU_CORE_PER_MONTH is not None or config.PRICING_MEMORY_GIB_PER_MONTH is not None:
        return PricingConfig(
            _override(config.PRICING_CPU_CORE_PER_MONTH, default.cpu_core_per_month),
            _override(config.PRICING_MEMORY_GIB_PER_MONTH, default.memory_gib_per_month),
            derived_from_instance=False,
            **shared
        )

    return replace(default, **shared)


def parse_resource_value(value, unit):
    """Parse a resource quantity to cores (cpu) or GiB (memory, storage)"""
    if unit == 'cpu':
        return parse_cpu(value)
    if unit in ('memory', 'storage'):
        return parse_memory(value) / GIB
    return 0.0


def calculate_workspace_cost(workspace, pricing=None, usage_factor=1.0):
    """Monthly cost breakdown for a workspace's requested resources"""
    pricing = pricing or load_pricing_config()
    resources = workspace.resources

    cpu_cores = parse_resource_value(resources.cpu, 'cpu')
    memory_gib = parse_resource_value(resources.memory, 'memory')
    storage_gib = parse_resource_value(resources.storage, 'storage')

    cpu_cost = cpu_cores * pricing.cpu_core_per_month
    memory_cost = memory_gib * pricing.memory_gib_per_month
    storage_cost = storage_gib * pricing.storage_gib_per_month
    total_compute = cpu_cost + memory_cost + storage_cost

    cluster_overhead = total_compute * pricing.cluster_overhead_rate
    network_overhead = total_compute * pricing.network_overhead_rate
    total_overhead = cluster_overhead + network_overhead

    total_monthly = total_compute + total_overhead

    return {
        'workspace_id': workspace.id,
        'workspace_name': workspace.name,
        'compute_costs': {
            'cpu': {'cores': cpu_cores, 'cost_per_month': cpu_cost},
            'memory': {'gibibytes': memory_gib, 'cost_per_month': memory_cost},
            'storage': {'gibibytes': storage_gib, 'cost_per_month': storage_cost},
            'total_compute_cost': total_compute,
        },
        'overhead_costs': {
            'cluster_management': {
                'description': 'Control plane, monitoring, logging, and cluster operations',
                'cost_per_month': cluster_overhead,
            },
            'networking': {
                'description': 'Ingress controller, load balancer, and network egress',
                'cost_per_month': network_overhead,
            },
            'total_overhead_cost': total_overhead,
        },
        'total_monthly_cost': total_monthly,
        'usage_factor': usage_factor,
        'actual_monthly_cost': total_monthly * usage_factor,
        'pricing_config': pricing.to_dict(),
    }


def estimate_usage_factor(workspace):
    status = WorkspaceStatus(workspace.status)
    if status == WorkspaceStatus.RUNNING:
        return 0.75
    if status == WorkspaceStatus.STOPPED:
        return 0.0
    return 0.1


def calculate_workspace_cost_with_usage(workspace, pricing=None):
    return calculate_workspace_cost(workspace, pricing, estimate_usage_factor(workspace))


def get_supported_instance_types():
    return [pricing.to_dict() for pricing in EC2_INSTANCE_PRICING.values()]
