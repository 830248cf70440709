"""Helpers for Kubernetes resource quantity strings."""

_BINARY_UNITS = {
    'Ki': 1024,
    'Mi': 1024 ** 2,
    'Gi': 1024 ** 3,
    'Ti': 1024 ** 4,
}

_DECIMAL_UNITS = {
    'k': 1000,
    'M': 1000 ** 2,
    'G': 1000 ** 3,
    'T': 1000 ** 4,
}


def parse_cpu(cpu_str):
    """Parse a CPU quantity ('250m', '2', '1500000n') to cores"""
    if cpu_str is None:
        return 0.0
    cpu_str = str(cpu_str).strip()
    if not cpu_str:
        return 0.0

    if cpu_str.endswith('n'):
        return float(cpu_str[:-1]) / 1_000_000_000
    if cpu_str.endswith('u'):
        return float(cpu_str[:-1]) / 1_000_000
    if cpu_str.endswith('m'):
        return float(cpu_str[:-1]) / 1000
    return float(cpu_str)


def parse_memory(memory_str):
    """Parse Kubernetes memory string (e.g., '7901Mi', '8Gi') to bytes"""
    if memory_str is None:
        return 0.0
    memory_str = str(memory_str).strip()
    if not memory_str:
        return 0.0

    for unit, multiplier in _BINARY_UNITS.items():
        if memory_str.endswith(unit):
            return float(memory_str[:-len(unit)]) * multiplier
    for unit, multiplier in _DECIMAL_UNITS.items():
        if memory_str.endswith(unit):
            return float(memory_str[:-len(unit)]) * multiplier
    # Assume bytes
    return float(memory_str)


def format_memory(num_bytes):
    """Format bytes as the largest binary unit with one decimal"""
    for name in ('Gi', 'Mi', 'Ki'):
        size = _BINARY_UNITS[name]
        if num_bytes >= size:
            return f"{num_bytes / size:.1f}{name}"
    return f"{int(num_bytes)}"


def format_cpu(cores):
    """Format a number of cores without trailing zeros"""
    return f"{round(cores, 3):g}"


def percentage(used, total):
    if not total:
        return 0.0
    return round(used / total * 100, 2)
