"""Estimation engine: recompute layer splits and fold results into totals."""

import logging
from collections.abc import Sequence
from typing import Optional

from .backend import load_backend
from .config import get_settings
from .models import (
    CalculationResult,
    DeviceSpec,
    ExecutionMode,
    HostConfig,
    LayerFootprint,
    ModelResult,
    ModelSpec,
    OperatingSystem,
    Precision,
    SolverOutcome,
    SweepPoint,
)
from .optimizer import CONTEXT_LADDER, PRECISION_LADDER, capacity_limit, fit_model, fits_within
from .performance import estimate_performance
from .planner import allocate_layers, calc_device_usage
from .quality import quality_score
from .sizing import layer_footprint

logger = logging.getLogger(__name__)

# Share of the host overhead that lands in system RAM
OVERHEAD_RAM_SHARE = 0.8


def memory_overhead_gb(operating_system: OperatingSystem, system_ram_gb: float) -> float:
    """
    Host memory taken by the OS and runtime.

    - Windows: 2.5 + 5% of RAM
    - macOS: 3.0 + 2% of RAM (unified memory management)
    - Linux: 0.8 + 1% of RAM
    """
    if operating_system == OperatingSystem.WINDOWS:
        return 2.5 + system_ram_gb * 0.05
    if operating_system == OperatingSystem.MACOS:
        return 3.0 + system_ram_gb * 0.02
    return 0.8 + system_ram_gb * 0.01


def has_accelerators(devices: Sequence[DeviceSpec]) -> bool:
    return any(d.vram_gb > 0 for d in devices)


def recompute_models(
    models: Sequence[ModelSpec],
    devices: Sequence[DeviceSpec],
    host: HostConfig,
    strict_fit: bool,
    max_attempts: Optional[int] = None,
) -> list[SolverOutcome]:
    """
    Re-plan every model after an edit to the models, devices or strict-fit toggle.

    Without accelerators every model is forced to cpuOnly. With strict fit
    each model goes through the downgrade search; otherwise the layer split
    is only normalized for its mode.

    Returns:
        One SolverOutcome per model, in input order
    """
    attempts = max_attempts or get_settings().max_fit_attempts
    gpu_available = has_accelerators(devices)
    outcomes = []

    for model in models:
        if not gpu_available and model.mode != ExecutionMode.CPU_ONLY:
            model = model.model_copy(update={"mode": ExecutionMode.CPU_ONLY})

        if strict_fit:
            outcomes.append(fit_model(model, devices, host.system_ram_gb, max_attempts=attempts))
        else:
            planned = allocate_layers(model, devices, strict_fit=False)
            outcomes.append(
                SolverOutcome(model=planned, fits=fits_within(planned, devices, host.system_ram_gb))
            )

    return outcomes


def compute_footprints(models: Sequence[ModelSpec], vectorized: Optional[bool] = None) -> list[LayerFootprint]:
    """Per-layer footprints, through the numpy backend when enabled and available."""
    if vectorized is None:
        vectorized = get_settings().use_vectorized_backend
    if vectorized:
        backend = load_backend()
        if backend is not None:
            return backend.layer_footprints(models)
    return [layer_footprint(m) for m in models]


def estimate(
    models: Sequence[ModelSpec],
    devices: Sequence[DeviceSpec],
    host: HostConfig,
    strict_fit: Optional[bool] = None,
    vectorized: Optional[bool] = None,
) -> CalculationResult:
    """
    Estimate memory and relative throughput for *models* on the inventory.

    Args:
        models: Model configurations (any layer split; it is re-planned)
        devices: Accelerators in priority order
        host: Host configuration
        strict_fit: Downgrade models until they fit (settings default)
        vectorized: Use the numpy backend for footprints (settings default)

    Returns:
        Complete calculation result
    """
    if strict_fit is None:
        strict_fit = get_settings().strict_fit

    warnings: list[str] = []
    notes: list[str] = []

    outcomes = recompute_models(models, devices, host, strict_fit)
    planned = [o.model for o in outcomes]
    footprints = compute_footprints(planned, vectorized)

    results = []
    for outcome, footprint in zip(outcomes, footprints):
        model = outcome.model
        gpu_layers = model.gpu_layers or 0
        cpu_layers = model.cpu_layers or 0
        results.append(
            ModelResult(
                model=model,
                footprint=footprint,
                gpu_weights_gb=footprint.weights_gb * gpu_layers,
                cpu_weights_gb=footprint.weights_gb * cpu_layers,
                kv_cache_gb=footprint.kv_cache_gb * gpu_layers,
                activations_gb=footprint.activations_gb * gpu_layers,
                required_vram_gb=footprint.total_gb * gpu_layers,
                fits=outcome.fits,
                adjustments=outcome.adjustments,
                quality_score=quality_score(model),
            )
        )
        if outcome.adjustments:
            notes.append(f"{model.name}: {', '.join(outcome.adjustments)}")
        if strict_fit and not outcome.fits:
            warnings.append(f"{model.name} does not fit even after all downgrades")

    gpu_weights = sum(r.gpu_weights_gb for r in results)
    cpu_weights = sum(r.cpu_weights_gb for r in results)
    kv_cache = sum(r.kv_cache_gb for r in results)
    activations = sum(r.activations_gb for r in results)

    overhead = memory_overhead_gb(host.operating_system, host.system_ram_gb)
    total_ram = cpu_weights + overhead * OVERHEAD_RAM_SHARE

    device_usage, unplaced = calc_device_usage(planned, devices)
    gpu_available = has_accelerators(devices)
    vram_used = sum(r.required_vram_gb for r in results) if gpu_available else 0.0
    vram_available = sum(d.vram_gb for d in devices) if gpu_available else 0.0

    vram_over = max(0.0, vram_used - vram_available)
    ram_over = max(0.0, total_ram - host.system_ram_gb)
    if vram_over > 0:
        warnings.append(
            f"GPU layers need {vram_used:.1f} GB but only {vram_available:.1f} GB of VRAM "
            f"is available ({vram_over:.1f} GB over)"
        )
    elif unplaced:
        warnings.append(f"{unplaced} GPU layers do not fit on any single device")
    if ram_over > 0:
        warnings.append(
            f"RAM usage ({total_ram:.1f} GB) exceeds system memory ({host.system_ram_gb:.0f} GB)"
        )

    performance = estimate_performance(
        planned,
        host,
        num_devices=sum(1 for d in devices if d.vram_gb > 0),
        vram_used_gb=vram_used,
        vram_available_gb=vram_available,
        ram_used_gb=total_ram,
    )
    logger.debug("Performance breakdown: %s", performance)

    return CalculationResult(
        models=results,
        gpu_weights_gb=gpu_weights,
        cpu_weights_gb=cpu_weights,
        kv_cache_gb=kv_cache,
        activations_gb=activations,
        overhead_gb=overhead,
        total_ram_usage_gb=total_ram,
        total_vram_used_gb=vram_used,
        total_vram_available_gb=vram_available,
        vram_overcapacity_gb=vram_over,
        ram_overcapacity_gb=ram_over,
        unplaced_gpu_layers=unplaced,
        device_usage=device_usage,
        performance=performance,
        warnings=warnings,
        notes=notes,
    )


def sweep_configurations(
    model: ModelSpec,
    devices: Sequence[DeviceSpec],
    host: HostConfig,
    precisions: Optional[Sequence[str]] = None,
    contexts: Optional[Sequence[int]] = None,
    vectorized: Optional[bool] = None,
) -> list[SweepPoint]:
    """
    Footprint and fit verdict for every precision x context combination.

    Args:
        model: Base configuration; only precision and context vary
        devices: Accelerators
        host: Host configuration
        precisions: Precision keys (default: the downgrade ladder plus sub-4-bit levels)
        contexts: Context lengths (default: the context ladder, ascending)
        vectorized: Use the numpy backend (settings default)

    Returns:
        Points ordered by precision, then context
    """
    if precisions is None:
        precisions = [*PRECISION_LADDER, Precision.Q3_K_M.value, Precision.Q2_K.value]
    if contexts is None:
        contexts = sorted(CONTEXT_LADDER)

    # model_validate, not model_copy: precision keys must go through normalization
    base = model.model_dump()
    variants = [
        ModelSpec.model_validate({**base, "precision": p, "context_length": c})
        for p in precisions
        for c in contexts
    ]
    footprints = compute_footprints(variants, vectorized)

    points = []
    for variant, footprint in zip(variants, footprints):
        total = footprint.total_gb * variant.num_layers
        limit = capacity_limit(variant, devices, host.system_ram_gb)
        points.append(
            SweepPoint(
                precision=variant.precision,
                context_length=variant.context_length,
                total_gb=total,
                limit_gb=limit,
                fits=total <= limit,
            )
        )
    return points


def format_gb(value: float) -> str:
    """Format a GB amount to a human-readable string."""
    if value >= 1024:
        return f"{value / 1024:.2f} TB"
    if value >= 1:
        return f"{value:.2f} GB"
    return f"{value * 1024:.1f} MB"


def format_multiplier(value: float) -> str:
    return f"{value:.2f}x"
