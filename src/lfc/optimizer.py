"""Strict-fit downgrade search and configuration recommendations."""

import logging
from collections.abc import Sequence
from typing import Optional

from .models import (
    ChipType,
    DeviceSpec,
    ExecutionMode,
    GpuBackend,
    HostConfig,
    ModelSpec,
    OperatingSystem,
    Precision,
    SolverOutcome,
    TuningPreset,
)
from .planner import allocate_layers, total_usable_capacity
from .sizing import bits_per_weight, model_total_gb

logger = logging.getLogger(__name__)

MAX_FIT_ATTEMPTS = 10

# Share of host RAM usable for model layers (20% kept for the OS)
HOST_RAM_USABLE_FRACTION = 0.8

CONTEXT_LADDER = [131072, 65536, 32768, 16384, 8192, 4096, 2048]
MIN_CONTEXT = CONTEXT_LADDER[-1]

PRECISION_LADDER = [
    Precision.FP32.value,
    Precision.FP16.value,
    Precision.Q8_0.value,
    Precision.Q6_K.value,
    Precision.Q5_K_M.value,
    Precision.Q4_K_M.value,
    Precision.Q4_0.value,
]
FLOOR_PRECISION = PRECISION_LADDER[-1]


def capacity_limit(model: ModelSpec, devices: Sequence[DeviceSpec], host_ram_gb: float) -> float:
    """
    Memory available to *model* under its execution mode, in GB.

    - gpuOnly: usable device capacity
    - cpuOnly: 80% of host RAM
    - hybrid: both combined
    """
    host_limit = HOST_RAM_USABLE_FRACTION * host_ram_gb
    if model.mode == ExecutionMode.GPU_ONLY:
        return total_usable_capacity(devices)
    if model.mode == ExecutionMode.CPU_ONLY:
        return host_limit
    return total_usable_capacity(devices) + host_limit


def step_down_context(context_length: int) -> int:
    """Next rung below *context_length* on the context ladder."""
    for rung in CONTEXT_LADDER:
        if rung < context_length:
            return rung
    return context_length


def step_down_precision(precision: str) -> Optional[str]:
    """
    Next cheaper precision, or None when no cheaper level exists.

    Keys on the ladder move one rung down. Anything else (bf16, int8, the
    sub-4-bit quants, unknown keys) takes the default branch: jump to the
    floor rung if that actually saves memory.
    """
    if precision in PRECISION_LADDER:
        index = PRECISION_LADDER.index(precision)
        if index + 1 < len(PRECISION_LADDER):
            return PRECISION_LADDER[index + 1]
        return None
    # default branch
    if bits_per_weight(precision) > bits_per_weight(FLOOR_PRECISION):
        return FLOOR_PRECISION
    return None


def _downgrade(model: ModelSpec) -> tuple[Optional[ModelSpec], str]:
    """Apply exactly one downgrade, in priority order."""
    if model.context_length > MIN_CONTEXT:
        context = step_down_context(model.context_length)
        return (
            model.model_copy(update={"context_length": context}),
            f"context {model.context_length} -> {context}",
        )

    precision = step_down_precision(model.precision)
    if precision is not None:
        return (
            model.model_copy(update={"precision": precision}),
            f"precision {model.precision} -> {precision}",
        )

    if model.mode == ExecutionMode.GPU_ONLY:
        return (
            model.model_copy(update={"mode": ExecutionMode.HYBRID}),
            "mode gpuOnly -> hybrid",
        )

    return None, ""


def fits_within(model: ModelSpec, devices: Sequence[DeviceSpec], host_ram_gb: float) -> bool:
    return model_total_gb(model) <= capacity_limit(model, devices, host_ram_gb)


def fit_model(
    model: ModelSpec,
    devices: Sequence[DeviceSpec],
    host_ram_gb: float,
    max_attempts: int = MAX_FIT_ATTEMPTS,
) -> SolverOutcome:
    """
    Degrade *model* until it fits the available memory.

    Each attempt checks the footprint against the mode's limit and, if it
    does not fit, applies one mutation: shorter context, then cheaper
    precision, then gpuOnly -> hybrid. The search stops when the model fits,
    when nothing is left to downgrade, or after *max_attempts*.

    The final model is always re-planned with strict fit, so the returned
    layer split is capacity-aware (except for gpuOnly, which keeps all
    layers on GPU).

    Args:
        model: Model configuration to fit
        devices: Accelerators in priority order
        host_ram_gb: Host memory size
        max_attempts: Bound on check/mutate iterations

    Returns:
        SolverOutcome with the final model, fit flag and applied adjustments
    """
    current = model
    adjustments: list[str] = []
    attempts = 0
    exhausted = False
    fits = False

    while attempts < max_attempts:
        attempts += 1
        if fits_within(current, devices, host_ram_gb):
            fits = True
            break
        downgraded, description = _downgrade(current)
        if downgraded is None:
            exhausted = True
            break
        logger.debug("%s: attempt %d, %s", model.name, attempts, description)
        adjustments.append(description)
        current = downgraded
    else:
        fits = fits_within(current, devices, host_ram_gb)
        exhausted = not fits

    if not fits:
        logger.info(
            "%s does not fit after %d attempts (%.1f GB needed, %.1f GB available)",
            model.name,
            attempts,
            model_total_gb(current),
            capacity_limit(current, devices, host_ram_gb),
        )

    return SolverOutcome(
        model=allocate_layers(current, devices, strict_fit=True),
        fits=fits,
        adjustments=adjustments,
        attempts=attempts,
        exhausted=exhausted,
    )


def apply_preset(model: ModelSpec, preset: TuningPreset, has_gpu: bool = True) -> ModelSpec:
    """
    Apply a speed / balance / context preset to *model*.

    Without a GPU the presets only trade precision against context and force
    cpuOnly mode. The layer split is reset so the caller's next recompute
    plans it from scratch.
    """
    if not has_gpu:
        settings = {
            TuningPreset.SPEED: (Precision.Q4_0, 2048),
            TuningPreset.BALANCE: (Precision.Q4_K_M, 4096),
            TuningPreset.CONTEXT: (Precision.Q3_K_M, 8192),  # save RAM for context
        }
        precision, context = settings[preset]
        mode = ExecutionMode.CPU_ONLY
    else:
        settings = {
            TuningPreset.SPEED: (ExecutionMode.GPU_ONLY, Precision.Q4_K_M, 2048),
            TuningPreset.BALANCE: (ExecutionMode.HYBRID, Precision.Q5_K_M, 4096),
            TuningPreset.CONTEXT: (ExecutionMode.HYBRID, Precision.Q3_K_M, 16384),
        }
        mode, precision, context = settings[preset]

    return model.model_copy(
        update={
            "mode": mode,
            "precision": precision.value,
            "context_length": context,
            "gpu_layers": None,
            "cpu_layers": None,
        }
    )


def recommend_gpu_backend(host: HostConfig, backend: GpuBackend = GpuBackend.AUTO) -> str:
    """
    Advice on a llama.cpp GPU backend for the given host.

    Args:
        host: Host configuration (OS and chip type matter)
        backend: Selected backend

    Returns:
        Human-readable recommendation
    """
    os_ = host.operating_system
    chip = host.chip_type
    apple_silicon = chip == ChipType.APPLE_SILICON
    intel_mac = os_ == OperatingSystem.MACOS and chip == ChipType.INTEL

    if backend == GpuBackend.AUTO:
        if os_ == OperatingSystem.MACOS and apple_silicon:
            return "Will use Metal (optimal for Apple Silicon)"
        if intel_mac:
            return "Will likely use CPU or Vulkan (if AMD eGPU)"
        if os_ == OperatingSystem.LINUX:
            return "Will detect CUDA/ROCm/Vulkan"
        return "Will auto-detect best backend"
    if backend == GpuBackend.CUDA:
        return "NVIDIA GPUs on Linux/Windows. ~10% faster than Vulkan."
    if backend == GpuBackend.METAL:
        if apple_silicon:
            return "Optimal for M1/M2/M3/M4 chips"
        if intel_mac:
            return "Poor performance on Intel Macs. Use Vulkan."
        return "macOS only"
    if backend == GpuBackend.VULKAN:
        if intel_mac:
            return "Best for Intel Mac with AMD eGPU"
        return "Works on NVIDIA/AMD/Intel GPUs. Universal compatibility."
    if backend == GpuBackend.ROCM:
        return "AMD GPUs on Linux. Optimal for RDNA3 (RX 7000)."
    return "Intel GPUs. Requires Intel oneAPI toolkit."
