"""Relative inference throughput: base multiplier times independent penalties."""

from collections.abc import Iterable

from .models import (
    ChipType,
    HostConfig,
    InferenceSoftware,
    ModelSpec,
    OperatingSystem,
    PerformanceBreakdown,
    StorageType,
)

UNIFIED_MEMORY_MULTIPLIER = 1.2

SOFTWARE_FACTORS = {
    InferenceSoftware.VLLM: 1.2,  # optimized kernels
    InferenceSoftware.LMSTUDIO: 0.95,  # GUI overhead
}
WINDOWS_GPU_FACTOR = 0.9  # WDDM overhead

STORAGE_SPEED = {
    StorageType.HDD: 0.1,
    StorageType.SATA: 0.5,
    StorageType.NVME_GEN3: 0.8,
    StorageType.NVME_GEN4: 1.0,
    StorageType.NVME_GEN5: 1.3,
    StorageType.MICRO_SD: 0.05,
}

# (upper bound of overflow ratio, penalty); checked in order
VRAM_PENALTY_STEPS = [(1.3, 0.5), (1.8, 0.2), (2.5, 0.1)]
VRAM_PENALTY_FLOOR = 0.05  # worse than CPU-only
RAM_PENALTY_STEPS = [(1.2, 1.0), (1.5, 0.5), (2.0, 0.1)]
RAM_PENALTY_FLOOR = 0.01  # swapping to disk

CONTEXT_PENALTY_FLOOR = 0.15
DEFAULT_CONTEXT = 2048


def cpu_multiplier(host: HostConfig) -> float:
    """
    Throughput multiplier for CPU-only inference.

    Thread efficiency peaks at ~1.5 threads per core; the base constant
    depends on architecture and core count.
    """
    optimal_threads = host.cpu_cores * 1.5
    thread_efficiency = min(1.0, optimal_threads / max(1, host.cpu_threads))

    base = 0.1
    if host.chip_type == ChipType.ARM64 and host.operating_system != OperatingSystem.MACOS:
        base = 0.02  # Raspberry Pi / generic ARM
    elif host.chip_type in (ChipType.INTEL, ChipType.AMD):
        if host.cpu_cores >= 16:
            base = 0.2
        elif host.cpu_cores >= 12:
            base = 0.15

    return max(0.01, base * thread_efficiency)


def device_scaling(num_devices: int) -> float:
    """Discrete multi-device scaling with diminishing returns."""
    if num_devices <= 1:
        return 1.0
    if num_devices == 2:
        return 1.8
    return 1.7 + (num_devices - 2) * 0.3


def base_multiplier(num_devices: int, host: HostConfig, total_vram_gb: float) -> float:
    """
    Hardware-class multiplier with software and OS adjustments folded in.

    Args:
        num_devices: Number of accelerators
        host: Host configuration
        total_vram_gb: Total accelerator memory; 0 selects the CPU-only path

    Returns:
        Multiplier relative to a single discrete GPU (1.0)
    """
    if total_vram_gb <= 0:
        return cpu_multiplier(host)

    if host.unified_memory:
        multiplier = UNIFIED_MEMORY_MULTIPLIER if host.operating_system == OperatingSystem.MACOS else 1.0
    else:
        multiplier = device_scaling(num_devices)

    multiplier *= SOFTWARE_FACTORS.get(host.inference_software, 1.0)
    if host.operating_system == OperatingSystem.WINDOWS:
        multiplier *= WINDOWS_GPU_FACTOR
    return multiplier


def _stepped_penalty(used: float, available: float, steps: list[tuple[float, float]], floor: float) -> float:
    if used <= available:
        return 1.0
    if available <= 0:
        return floor
    ratio = used / available
    for upper, penalty in steps:
        if ratio < upper:
            return penalty
    return floor


def vram_overflow_penalty(used_gb: float, available_gb: float) -> float:
    """
    Penalty for spilling past accelerator memory (PCIe transfer bound).

    ratio <= 1.0: 1.0, < 1.3: 0.5, < 1.8: 0.2, < 2.5: 0.1, else 0.05.
    No accelerator memory means no VRAM to overflow.
    """
    if available_gb <= 0:
        return 1.0
    return _stepped_penalty(used_gb, available_gb, VRAM_PENALTY_STEPS, VRAM_PENALTY_FLOOR)


def ram_overflow_penalty(used_gb: float, available_gb: float) -> float:
    """
    Penalty for exceeding host RAM (disk swap).

    ratio <= 1.2: 1.0 (tolerated), < 1.5: 0.5, < 2.0: 0.1, else 0.01.
    """
    return _stepped_penalty(used_gb, available_gb, RAM_PENALTY_STEPS, RAM_PENALTY_FLOOR)


def context_penalty(models: Iterable[ModelSpec]) -> float:
    """
    Attention slowdown from the longest context across *models*.

    Formula: max(0.15, 1 / (1 + (context / 10000)^1.2))
    """
    contexts = [m.context_length or DEFAULT_CONTEXT for m in models]
    if not contexts:
        return 1.0
    max_context = max(contexts)
    penalty = 1.0 / (1.0 + (max_context / 10000) ** 1.2)
    return max(CONTEXT_PENALTY_FLOOR, penalty)


def offload_speed_factor(host: HostConfig) -> float:
    """Host RAM / storage speed relative to DDR4-3200 on NVMe Gen4."""
    if not host.detailed_specs:
        return 1.0
    ram_factor = (host.ram_speed_mts / 3200) * min(1.2, 16 / host.ram_cl_rating)
    return ram_factor * STORAGE_SPEED.get(host.storage_type, 1.0)


def estimate_performance(
    models: Iterable[ModelSpec],
    host: HostConfig,
    num_devices: int,
    vram_used_gb: float,
    vram_available_gb: float,
    ram_used_gb: float,
) -> PerformanceBreakdown:
    """Compose the base multiplier and the three penalties."""
    return PerformanceBreakdown(
        base_multiplier=base_multiplier(num_devices, host, vram_available_gb),
        vram_penalty=vram_overflow_penalty(vram_used_gb, vram_available_gb),
        ram_penalty=ram_overflow_penalty(ram_used_gb, host.system_ram_gb),
        context_penalty=context_penalty(models),
        offload_speed=offload_speed_factor(host),
    )
