"""Capacity-aware placement of transformer layers across accelerators."""

import logging
import math
from collections.abc import Iterable, Sequence

from .models import DeviceSpec, DeviceUsage, ExecutionMode, ModelSpec
from .sizing import layer_footprint

logger = logging.getLogger(__name__)

# Reserved on every device for display / driver overhead
RESERVED_PER_DEVICE_GB = 0.5


def order_devices(devices: Iterable[DeviceSpec]) -> list[DeviceSpec]:
    """Devices in allocation priority order (stable on equal positions)."""
    return sorted(devices, key=lambda d: d.position)


def usable_capacity(device: DeviceSpec) -> float:
    """Capacity left on *device* after the fixed reserve."""
    return max(0.0, device.vram_gb - RESERVED_PER_DEVICE_GB)


def total_usable_capacity(devices: Iterable[DeviceSpec]) -> float:
    return sum(usable_capacity(d) for d in devices)


def layers_fitting(capacity_gb: float, layer_gb: float, limit: int) -> int:
    """Whole layers of *layer_gb* that fit in *capacity_gb*, capped at *limit*."""
    if layer_gb <= 0:
        return limit
    return min(limit, math.floor(capacity_gb / layer_gb))


def count_fitting_layers(devices: Sequence[DeviceSpec], layer_gb: float, num_layers: int) -> int:
    """
    Total layers that fit across *devices* when each is packed independently.

    Every device contributes floor(usable / layer_gb); the sum is capped at
    *num_layers*.
    """
    total = 0
    for device in order_devices(devices):
        total += layers_fitting(usable_capacity(device), layer_gb, num_layers)
        if total >= num_layers:
            return num_layers
    return total


def allocate_layers(model: ModelSpec, devices: Sequence[DeviceSpec], strict_fit: bool) -> ModelSpec:
    """
    Normalize the GPU/CPU layer split of *model* for its execution mode.

    - gpuOnly: every layer on GPU, unconditionally. An infeasible placement is
      left as-is so the overflow shows up in the result.
    - cpuOnly: every layer on the host.
    - hybrid with strict fit: as many layers as fit on the devices, the rest
      on the host. Host memory is not checked here.
    - hybrid otherwise: keep the requested split, or 50/50 when none was set.

    Returns:
        A new ModelSpec snapshot with gpu_layers + cpu_layers == num_layers
    """
    num_layers = model.num_layers

    if model.mode == ExecutionMode.GPU_ONLY:
        gpu_layers = num_layers
    elif model.mode == ExecutionMode.CPU_ONLY:
        gpu_layers = 0
    elif strict_fit:
        layer_gb = layer_footprint(model).total_gb
        gpu_layers = count_fitting_layers(devices, layer_gb, num_layers)
    elif not model.gpu_layers and not model.cpu_layers:
        gpu_layers = num_layers // 2
    else:
        gpu_layers = min(max(model.gpu_layers or 0, 0), num_layers)

    cpu_layers = num_layers - gpu_layers
    if (gpu_layers, cpu_layers) != (model.gpu_layers, model.cpu_layers):
        logger.debug(
            "%s: %s split -> %d GPU / %d CPU layers",
            model.name, model.mode.value, gpu_layers, cpu_layers,
        )
    return model.model_copy(update={"gpu_layers": gpu_layers, "cpu_layers": cpu_layers})


def calc_device_usage(
    models: Iterable[ModelSpec],
    devices: Sequence[DeviceSpec],
) -> tuple[list[DeviceUsage], int]:
    """
    First-fit breakdown of every model's GPU layers over the devices.

    Models are packed one after another; each walks the devices in priority
    order and fills the residual capacity (minus the reserve) before moving
    on. Not globally optimal, but deterministic.

    Returns:
        Per-device usage records (in priority order) and the number of
        requested GPU layers that found no room
    """
    ordered = order_devices(devices)
    usage = [DeviceUsage(id=d.id, name=d.name, vram_gb=d.vram_gb) for d in ordered]
    unplaced = 0

    for model in models:
        footprint = layer_footprint(model)
        layer_gb = footprint.total_gb
        remaining = model.gpu_layers or 0

        for record in usage:
            if remaining <= 0:
                break
            available = max(0.0, record.vram_gb - record.used_gb - RESERVED_PER_DEVICE_GB)
            placed = layers_fitting(available, layer_gb, remaining)
            if placed <= 0:
                continue
            record.layers += placed
            record.weights_gb += placed * footprint.weights_gb
            record.kv_cache_gb += placed * footprint.kv_cache_gb
            record.activations_gb += placed * footprint.activations_gb
            record.used_gb += placed * layer_gb
            remaining -= placed

        if remaining > 0:
            logger.info("%s: %d GPU layers do not fit on any device", model.name, remaining)
            unplaced += remaining

    return usage, unplaced
