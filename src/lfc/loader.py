"""Data loaders for hardware presets, model presets and scenario files."""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .config import get_settings
from .errors import ScenarioError
from .models import (
    ChipType,
    DeviceSpec,
    HostConfig,
    ModelSpec,
    OperatingSystem,
    StorageType,
)

logger = logging.getLogger(__name__)


class HardwarePreset(BaseModel):
    """A named hardware inventory: identical accelerators plus a host."""

    name: str
    vendor: str
    vram_gb: float = 0
    gpu_count: int = Field(default=1, ge=0)
    system_ram_gb: float
    operating_system: OperatingSystem = OperatingSystem.LINUX
    chip_type: ChipType = ChipType.GPU
    ram_type: str = "DDR5"
    ram_speed_mts: float = 5600
    ram_cl_rating: float = 36
    storage_type: StorageType = StorageType.NVME_GEN4
    cpu_cores: int = 16
    cpu_threads: int = 32

    def to_devices(self) -> list[DeviceSpec]:
        """One DeviceSpec per accelerator; empty for CPU-only presets."""
        if self.vram_gb <= 0:
            return []
        devices = []
        for i in range(self.gpu_count):
            name = self.name if self.gpu_count == 1 else f"{self.name} #{i + 1}"
            devices.append(DeviceSpec(id=i, name=name, vram_gb=self.vram_gb, position=i))
        return devices

    def to_host(self, **overrides) -> HostConfig:
        values = {
            "operating_system": self.operating_system,
            "chip_type": self.chip_type,
            "system_ram_gb": self.system_ram_gb,
            "ram_speed_mts": self.ram_speed_mts,
            "ram_cl_rating": self.ram_cl_rating,
            "storage_type": self.storage_type,
            "cpu_cores": self.cpu_cores,
            "cpu_threads": self.cpu_threads,
        }
        values.update(overrides)
        return HostConfig(**values)


class ModelPreset(BaseModel):
    """Model architecture preset."""

    name: str
    family: str
    params_billion: float
    num_layers: int
    hidden_size: int
    is_moe: bool = False

    def to_model_spec(self, **overrides) -> ModelSpec:
        values = {
            "name": self.name,
            "params_billion": self.params_billion,
            "num_layers": self.num_layers,
            "hidden_size": self.hidden_size,
        }
        values.update(overrides)
        return ModelSpec(**values)


class Scenario(BaseModel):
    """A saved (models, devices, host, strict_fit) snapshot."""

    models: list[ModelSpec] = Field(default_factory=lambda: [ModelSpec()])
    devices: list[DeviceSpec] = Field(default_factory=list)
    host: HostConfig = Field(default_factory=HostConfig)
    strict_fit: bool = False


def _get_data_dir() -> Path:
    """Get the data directory path."""
    configured = get_settings().data_dir
    if configured:
        return Path(configured)

    # Try the project data directory first
    package_data = Path(__file__).parent.parent.parent / "data"
    if package_data.exists():
        return package_data

    # Fall back to current working directory
    cwd_data = Path.cwd() / "data"
    if cwd_data.exists():
        return cwd_data

    raise FileNotFoundError(
        "Data directory not found. Expected at project/data or ./data"
    )


@lru_cache(maxsize=1)
def load_hardware() -> list[HardwarePreset]:
    """Load all hardware presets from hardware.json."""
    hardware_file = _get_data_dir() / "hardware.json"

    with open(hardware_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    presets = [HardwarePreset(**hw) for hw in data["hardware"]]
    logger.debug("Loaded %d hardware presets from %s", len(presets), hardware_file)
    return presets


@lru_cache(maxsize=1)
def load_presets() -> list[ModelPreset]:
    """Load all model presets from presets.json."""
    presets_file = _get_data_dir() / "presets.json"

    with open(presets_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    presets = [ModelPreset(**preset) for preset in data["presets"]]
    logger.debug("Loaded %d model presets from %s", len(presets), presets_file)
    return presets


def get_hardware(name: str) -> Optional[HardwarePreset]:
    """Get hardware preset by name (case-insensitive)."""
    name_lower = name.lower()
    for hw in load_hardware():
        if hw.name.lower() == name_lower:
            return hw
    return None


def get_preset(name: str) -> Optional[ModelPreset]:
    """Get model preset by name (case-insensitive)."""
    name_lower = name.lower()
    for preset in load_presets():
        if preset.name.lower() == name_lower:
            return preset
    return None


def list_hardware_names() -> list[str]:
    """List all available hardware preset names."""
    return [hw.name for hw in load_hardware()]


def list_preset_names() -> list[str]:
    """List all available model preset names."""
    return [preset.name for preset in load_presets()]


def load_scenario(path: Union[str, Path]) -> Scenario:
    """
    Load a saved scenario from a JSON file.

    The schema is not versioned: numeric fields that are missing or invalid
    fall back to their defaults instead of failing.

    Raises:
        ScenarioError: if the file is missing or unreadable, is not JSON, or
            does not have the scenario structure
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ScenarioError(str(path), "file not found") from e
    except OSError as e:
        raise ScenarioError(str(path), f"cannot read file ({e.strerror or e})") from e
    except UnicodeDecodeError as e:
        raise ScenarioError(str(path), "file is not UTF-8 text") from e
    except json.JSONDecodeError as e:
        raise ScenarioError(str(path), f"invalid JSON ({e.msg} at line {e.lineno})") from e

    if not isinstance(data, dict):
        raise ScenarioError(str(path), "top level must be an object")

    devices = data.get("devices")
    if isinstance(devices, list):
        for position, device in enumerate(devices):
            if isinstance(device, dict):
                device.setdefault("id", position)
                device.setdefault("position", position)

    try:
        return Scenario.model_validate(data)
    except ValidationError as e:
        raise ScenarioError(str(path), str(e)) from e
