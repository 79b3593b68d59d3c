"""LFC - LLM Fit Calculator for local inference memory and throughput planning."""

from .engine import (
    estimate,
    format_gb,
    format_multiplier,
    memory_overhead_gb,
    recompute_models,
    sweep_configurations,
)
from .errors import LFCError, ScenarioError
from .loader import (
    get_hardware,
    get_preset,
    list_hardware_names,
    list_preset_names,
    load_hardware,
    load_presets,
    load_scenario,
)
from .models import (
    CalculationResult,
    DeviceSpec,
    ExecutionMode,
    HostConfig,
    LayerFootprint,
    ModelSpec,
    PerformanceBreakdown,
    Precision,
    SolverOutcome,
)
from .optimizer import apply_preset, fit_model, recommend_gpu_backend
from .performance import estimate_performance
from .planner import allocate_layers, calc_device_usage
from .sizing import layer_footprint, model_total_gb

__version__ = "0.1.0"

__all__ = [
    # Engine
    "estimate",
    "recompute_models",
    "sweep_configurations",
    "memory_overhead_gb",
    "format_gb",
    "format_multiplier",
    # Sizing / planning / solving
    "layer_footprint",
    "model_total_gb",
    "allocate_layers",
    "calc_device_usage",
    "fit_model",
    "apply_preset",
    "recommend_gpu_backend",
    "estimate_performance",
    # Loader
    "load_hardware",
    "load_presets",
    "load_scenario",
    "get_hardware",
    "get_preset",
    "list_hardware_names",
    "list_preset_names",
    # Models
    "ModelSpec",
    "DeviceSpec",
    "HostConfig",
    "ExecutionMode",
    "Precision",
    "LayerFootprint",
    "PerformanceBreakdown",
    "SolverOutcome",
    "CalculationResult",
    # Errors
    "LFCError",
    "ScenarioError",
]
