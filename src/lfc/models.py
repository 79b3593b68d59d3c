"""Pydantic data models for LFC."""

import math
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, computed_field, field_validator


class Precision(str, Enum):
    """Weight / KV-cache encodings."""

    FP32 = "fp32"
    FP16 = "fp16"
    BF16 = "bf16"
    Q8_0 = "q8_0"  # GGUF approximations
    Q6_K = "q6_k"
    Q5_K_M = "q5_k_m"
    Q4_K_M = "q4_k_m"
    Q4_0 = "q4_0"
    Q3_K_M = "q3_k_m"
    Q2_K = "q2_k"
    INT8 = "int8"
    INT4 = "int4"


PRECISION_BITS: dict[str, float] = {
    Precision.FP32.value: 32,
    Precision.FP16.value: 16,
    Precision.BF16.value: 16,
    Precision.Q8_0.value: 8.5,
    Precision.Q6_K.value: 6.6,
    Precision.Q5_K_M.value: 5.7,
    Precision.Q4_K_M.value: 4.8,
    Precision.Q4_0.value: 4.5,
    Precision.Q3_K_M.value: 3.9,
    Precision.Q2_K.value: 2.6,
    Precision.INT8.value: 8,
    Precision.INT4.value: 4,
}


class ExecutionMode(str, Enum):
    """Where a model's layers are allowed to live."""

    GPU_ONLY = "gpuOnly"
    HYBRID = "hybrid"
    CPU_ONLY = "cpuOnly"


class OperatingSystem(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"
    MACOS = "macos"


class ChipType(str, Enum):
    """Host processor / memory architecture class."""

    GPU = "gpu"  # discrete accelerator(s) on an unspecified host
    APPLE_SILICON = "appleSilicon"  # unified memory
    INTEL = "intel"
    AMD = "amd"
    ARM64 = "arm64"
    CPU = "cpu"


class InferenceSoftware(str, Enum):
    OLLAMA = "ollama"
    LLAMACPP = "llamacpp"
    LMSTUDIO = "lmstudio"
    VLLM = "vllm"


class StorageType(str, Enum):
    HDD = "HDD"
    SATA = "SATA"
    NVME_GEN3 = "NVMeGen3"
    NVME_GEN4 = "NVMeGen4"
    NVME_GEN5 = "NVMeGen5"
    MICRO_SD = "MicroSD"


class GpuBackend(str, Enum):
    """llama.cpp GPU backends."""

    AUTO = "auto"
    CUDA = "cuda"
    METAL = "metal"
    VULKAN = "vulkan"
    ROCM = "rocm"
    SYCL = "sycl"


class TuningPreset(str, Enum):
    SPEED = "speed"
    BALANCE = "balance"
    CONTEXT = "context"


def parse_number(value: Any, fallback: float) -> float:
    """Coerce *value* to a finite float, or return *fallback*."""
    if isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def _coerce_enum(enum_cls: type[Enum], value: Any, fallback: Enum) -> Enum:
    try:
        return enum_cls(value)
    except ValueError:
        return fallback


# Fallbacks for invalid or missing numeric fields, with their lower bounds.
# num_layers / hidden_size accept 0 (handled by the sizing guards).
MODEL_NUMERIC_DEFAULTS: dict[str, tuple[Union[int, float], Union[int, float]]] = {
    "params_billion": (7.0, 0),
    "context_length": (4096, 1),
    "batch_size": (1, 1),
    "hidden_size": (4096, 0),
    "num_layers": (32, 0),
}


class ModelSpec(BaseModel):
    """One model configuration under evaluation.

    Snapshots are frozen: every edit produces a new instance through
    ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True)

    id: Union[int, str] = 1
    name: str = "Model 1"
    params_billion: float = Field(default=7.0, description="Total parameters in billions")
    precision: str = Field(default=Precision.Q4_K_M.value, description="Weight precision key")
    kv_cache_precision: str = Field(default=Precision.FP16.value, description="KV cache precision key")
    context_length: int = Field(default=4096, description="Context window in tokens")
    batch_size: int = 1
    hidden_size: int = 4096
    num_layers: int = 32
    mode: ExecutionMode = ExecutionMode.HYBRID
    gpu_layers: Optional[int] = Field(default=None, description="Layers assigned to accelerators")
    cpu_layers: Optional[int] = Field(default=None, description="Layers assigned to host memory")
    flash_attention: bool = False
    gpu_backend: GpuBackend = GpuBackend.AUTO

    @field_validator(*MODEL_NUMERIC_DEFAULTS, mode="before")
    @classmethod
    def _numeric_fallback(cls, value: Any, info: ValidationInfo) -> Union[int, float]:
        default, minimum = MODEL_NUMERIC_DEFAULTS[info.field_name]
        number = parse_number(value, default)
        if number < minimum:
            return default
        return type(default)(number)

    @field_validator("gpu_layers", "cpu_layers", mode="before")
    @classmethod
    def _layer_count(cls, value: Any) -> Optional[int]:
        if value is None:
            return None
        number = parse_number(value, -1)
        return int(number) if number >= 0 else None

    @field_validator("precision", "kv_cache_precision", mode="before")
    @classmethod
    def _precision_key(cls, value: Any) -> str:
        if isinstance(value, Precision):
            return value.value
        return str(value).strip().lower() if value is not None else ""

    @field_validator("mode", mode="before")
    @classmethod
    def _mode(cls, value: Any) -> ExecutionMode:
        return _coerce_enum(ExecutionMode, value, ExecutionMode.HYBRID)

    @field_validator("gpu_backend", mode="before")
    @classmethod
    def _gpu_backend(cls, value: Any) -> GpuBackend:
        return _coerce_enum(GpuBackend, value, GpuBackend.AUTO)


class DeviceSpec(BaseModel):
    """An accelerator. Lower ``position`` is filled first."""

    model_config = ConfigDict(frozen=True)

    id: Union[int, str]
    name: str = "GPU"
    vram_gb: float = Field(default=24.0, description="Usable capacity in GB")
    position: int = 0

    @field_validator("vram_gb", mode="before")
    @classmethod
    def _vram(cls, value: Any) -> float:
        number = parse_number(value, 24.0)
        return number if number >= 0 else 0.0

    @field_validator("position", mode="before")
    @classmethod
    def _position(cls, value: Any) -> int:
        return int(parse_number(value, 0))


class HostConfig(BaseModel):
    """Host system description. Never affects capacity feasibility."""

    model_config = ConfigDict(frozen=True)

    operating_system: OperatingSystem = OperatingSystem.LINUX
    chip_type: ChipType = ChipType.GPU
    system_ram_gb: float = 32.0
    ram_speed_mts: float = 5600.0
    ram_cl_rating: float = 36.0
    storage_type: StorageType = StorageType.NVME_GEN4
    cpu_cores: int = 16
    cpu_threads: int = 32
    inference_software: InferenceSoftware = InferenceSoftware.OLLAMA
    detailed_specs: bool = Field(default=False, description="Apply RAM timing and storage to offload speed")

    @field_validator("system_ram_gb", "ram_speed_mts", "ram_cl_rating", mode="before")
    @classmethod
    def _positive_float(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        number = parse_number(value, default)
        return number if number > 0 else default

    @field_validator("cpu_cores", "cpu_threads", mode="before")
    @classmethod
    def _positive_int(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        number = parse_number(value, default)
        return int(number) if number >= 1 else default

    @field_validator("operating_system", mode="before")
    @classmethod
    def _os(cls, value: Any) -> OperatingSystem:
        return _coerce_enum(OperatingSystem, value, OperatingSystem.LINUX)

    @field_validator("chip_type", mode="before")
    @classmethod
    def _chip(cls, value: Any) -> ChipType:
        return _coerce_enum(ChipType, value, ChipType.GPU)

    @field_validator("storage_type", mode="before")
    @classmethod
    def _storage(cls, value: Any) -> StorageType:
        return _coerce_enum(StorageType, value, StorageType.NVME_GEN4)

    @field_validator("inference_software", mode="before")
    @classmethod
    def _software(cls, value: Any) -> InferenceSoftware:
        return _coerce_enum(InferenceSoftware, value, InferenceSoftware.OLLAMA)

    @property
    def unified_memory(self) -> bool:
        """Accelerator and host share one pool."""
        return self.chip_type == ChipType.APPLE_SILICON


class LayerFootprint(BaseModel):
    """Per-layer memory cost in GB."""

    weights_gb: float
    kv_cache_gb: float
    activations_gb: float

    @computed_field
    @property
    def total_gb(self) -> float:
        return self.weights_gb + self.kv_cache_gb + self.activations_gb


class DeviceUsage(BaseModel):
    """Per-device first-fit usage, summed over all models."""

    id: Union[int, str]
    name: str
    vram_gb: float
    used_gb: float = 0
    layers: int = 0
    weights_gb: float = 0
    kv_cache_gb: float = 0
    activations_gb: float = 0


class PerformanceBreakdown(BaseModel):
    """Relative throughput, decomposed into independent factors."""

    base_multiplier: float
    vram_penalty: float = Field(ge=0, le=1)
    ram_penalty: float = Field(ge=0, le=1)
    context_penalty: float = Field(ge=0, le=1)
    offload_speed: float = Field(default=1.0, description="Host offload speed factor (informational)")

    @computed_field
    @property
    def composite(self) -> float:
        """base x VRAM penalty x RAM penalty x context penalty."""
        return self.base_multiplier * self.vram_penalty * self.ram_penalty * self.context_penalty


class SolverOutcome(BaseModel):
    """Result of the strict-fit downgrade search for one model."""

    model: ModelSpec
    fits: bool
    adjustments: list[str] = Field(default_factory=list)
    attempts: int = 0
    exhausted: bool = False


class ModelResult(BaseModel):
    """Per-model memory figures in GB."""

    model: ModelSpec
    footprint: LayerFootprint
    gpu_weights_gb: float
    cpu_weights_gb: float
    kv_cache_gb: float
    activations_gb: float
    required_vram_gb: float = Field(description="Footprint of all GPU layers")
    fits: bool = True
    adjustments: list[str] = Field(default_factory=list)
    quality_score: float = 100.0


class SweepPoint(BaseModel):
    """Footprint of one precision x context combination."""

    precision: str
    context_length: int
    total_gb: float
    limit_gb: float
    fits: bool


class CalculationResult(BaseModel):
    """Complete estimation result, derived from (models, devices, host)."""

    models: list[ModelResult]

    # Aggregate memory (GB)
    gpu_weights_gb: float
    cpu_weights_gb: float
    kv_cache_gb: float
    activations_gb: float
    overhead_gb: float
    total_ram_usage_gb: float
    total_vram_used_gb: float
    total_vram_available_gb: float

    # Overcapacity deltas (used - available, floored at 0)
    vram_overcapacity_gb: float = 0
    ram_overcapacity_gb: float = 0
    unplaced_gpu_layers: int = 0

    device_usage: list[DeviceUsage] = Field(default_factory=list)
    performance: PerformanceBreakdown

    # Warnings and notes
    warnings: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def fits(self) -> bool:
        return self.vram_overcapacity_gb == 0 and all(r.fits for r in self.models)
