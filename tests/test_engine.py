"""Unit tests for the estimation engine."""

import os
import subprocess
import sys
from pathlib import Path

import pytest

from lfc import (
    DeviceSpec,
    ExecutionMode,
    HostConfig,
    ModelSpec,
    estimate,
    format_gb,
    format_multiplier,
    layer_footprint,
    memory_overhead_gb,
    model_total_gb,
    recompute_models,
    sweep_configurations,
)
from lfc.backend import load_backend
from lfc.engine import compute_footprints, has_accelerators
from lfc.models import ChipType, OperatingSystem


def gpus(*vram):
    return [DeviceSpec(id=i, vram_gb=gb, position=i) for i, gb in enumerate(vram)]


class TestMemoryOverhead:
    """Tests for memory_overhead_gb."""

    def test_linux(self):
        assert memory_overhead_gb(OperatingSystem.LINUX, 32) == pytest.approx(1.12)

    def test_windows(self):
        assert memory_overhead_gb(OperatingSystem.WINDOWS, 32) == pytest.approx(4.1)

    def test_macos(self):
        assert memory_overhead_gb(OperatingSystem.MACOS, 64) == pytest.approx(4.28)


class TestRecomputeModels:
    """Tests for recompute_models."""

    def test_no_accelerators_forces_cpu_only(self):
        for devices in ([], gpus(0)):
            (outcome,) = recompute_models([ModelSpec(mode=ExecutionMode.GPU_ONLY)], devices, HostConfig(), False)
            assert outcome.model.mode == ExecutionMode.CPU_ONLY
            assert outcome.model.gpu_layers == 0

    def test_non_strict_normalizes_only(self):
        (outcome,) = recompute_models([ModelSpec(gpu_layers=10)], gpus(24), HostConfig(), False)
        assert (outcome.model.gpu_layers, outcome.model.cpu_layers) == (10, 22)
        assert outcome.adjustments == []

    def test_strict_runs_solver(self):
        model = ModelSpec(params_billion=8, precision="fp16", context_length=32768, mode=ExecutionMode.GPU_ONLY)
        (outcome,) = recompute_models([model], gpus(12), HostConfig(), True)
        assert outcome.fits
        assert outcome.model.precision == "q8_0"

    def test_has_accelerators(self):
        assert has_accelerators(gpus(24))
        assert not has_accelerators(gpus(0, 0))
        assert not has_accelerators([])


class TestEstimate:
    """Tests for estimate."""

    def test_default_hybrid_totals(self):
        """7B q4_k_m split 16/16 on a 24 GB card with 32 GB of RAM."""
        model = ModelSpec()
        host = HostConfig()
        result = estimate([model], gpus(24), host, strict_fit=False)
        footprint = layer_footprint(model)

        assert result.models[0].model.gpu_layers == 16
        assert result.gpu_weights_gb == pytest.approx(16 * footprint.weights_gb)
        assert result.cpu_weights_gb == pytest.approx(16 * footprint.weights_gb)
        assert result.kv_cache_gb == pytest.approx(16 * footprint.kv_cache_gb)
        assert result.activations_gb == pytest.approx(16 * footprint.activations_gb)
        assert result.overhead_gb == pytest.approx(1.12)
        assert result.total_ram_usage_gb == pytest.approx(16 * footprint.weights_gb + 0.8 * 1.12)
        assert result.total_vram_used_gb == pytest.approx(16 * footprint.total_gb)
        assert result.total_vram_available_gb == 24
        assert result.fits
        assert result.warnings == []

    def test_deterministic(self):
        models = [ModelSpec(), ModelSpec(id=2, name="Model 2", params_billion=13, context_length=8192)]
        first = estimate(models, gpus(24, 12), HostConfig(), strict_fit=True)
        second = estimate(models, gpus(24, 12), HostConfig(), strict_fit=True)
        assert first == second

    def test_vram_overcapacity_is_reported(self):
        model = ModelSpec(params_billion=70, precision="fp16", mode=ExecutionMode.GPU_ONLY)
        result = estimate([model], gpus(24), HostConfig(), strict_fit=False)

        assert result.vram_overcapacity_gb == pytest.approx(result.total_vram_used_gb - 24)
        assert result.vram_overcapacity_gb > 0
        assert not result.fits
        assert result.performance.vram_penalty == 0.05
        assert result.unplaced_gpu_layers > 0
        assert any("VRAM" in w for w in result.warnings)

    def test_ram_overcapacity_is_reported(self):
        model = ModelSpec(params_billion=70, precision="fp16", mode=ExecutionMode.CPU_ONLY)
        result = estimate([model], [], HostConfig(system_ram_gb=32), strict_fit=False)

        assert result.ram_overcapacity_gb == pytest.approx(result.total_ram_usage_gb - 32)
        assert result.performance.ram_penalty < 1.0
        assert any("RAM usage" in w for w in result.warnings)

    def test_cpu_only_host(self):
        host = HostConfig(chip_type=ChipType.AMD, cpu_cores=8, cpu_threads=16)
        result = estimate([ModelSpec()], [], host, strict_fit=False)
        footprint = layer_footprint(ModelSpec())

        assert result.models[0].model.mode == ExecutionMode.CPU_ONLY
        assert result.total_vram_available_gb == 0
        assert result.total_vram_used_gb == 0
        assert result.cpu_weights_gb == pytest.approx(32 * footprint.weights_gb)
        assert result.performance.base_multiplier == pytest.approx(0.1 * 0.75)
        assert result.performance.vram_penalty == 1.0

    def test_strict_fit_notes_and_warnings(self):
        model = ModelSpec(name="Huge", params_billion=405, precision="fp16")
        result = estimate([model], gpus(8), HostConfig(system_ram_gb=16), strict_fit=True)

        assert not result.models[0].fits
        assert not result.fits
        assert result.models[0].adjustments
        assert any(n.startswith("Huge:") for n in result.notes)
        assert any("does not fit even after all downgrades" in w for w in result.warnings)

    def test_strict_fit_success(self):
        model = ModelSpec(params_billion=8, precision="fp16", context_length=32768, mode=ExecutionMode.GPU_ONLY)
        result = estimate([model], gpus(12), HostConfig(), strict_fit=True)

        assert result.fits
        assert result.models[0].model.precision == "q8_0"
        assert result.total_vram_used_gb <= 12

    def test_device_usage_is_merged(self):
        models = [ModelSpec(gpu_layers=8, cpu_layers=24), ModelSpec(id=2, gpu_layers=8, cpu_layers=24)]
        result = estimate(models, gpus(24), HostConfig(), strict_fit=False)
        assert result.device_usage[0].layers == 16

    def test_quality_score_is_attached(self):
        result = estimate([ModelSpec()], gpus(24), HostConfig(), strict_fit=False)
        assert result.models[0].quality_score == 92.0

    def test_vectorized_matches_python(self):
        models = [ModelSpec(), ModelSpec(params_billion=70, precision="fp16", context_length=32768)]
        scalar = estimate(models, gpus(24, 8), HostConfig(), strict_fit=True, vectorized=False)
        vectorized = estimate(models, gpus(24, 8), HostConfig(), strict_fit=True, vectorized=True)
        assert scalar == vectorized


class TestComputeFootprints:
    """The numpy backend matches the scalar formulas exactly."""

    def test_identical_results(self):
        models = [
            ModelSpec(),
            ModelSpec(params_billion=405, precision="fp32", context_length=131072, batch_size=4),
            ModelSpec(precision="mystery", kv_cache_precision="int8", hidden_size=5120, num_layers=48),
            ModelSpec(num_layers=0, hidden_size=0),
        ]
        assert compute_footprints(models, vectorized=True) == compute_footprints(models, vectorized=False)

    def test_empty(self):
        assert compute_footprints([], vectorized=True) == []


class TestBackendWithoutNumpy:
    """Without numpy the vectorized request falls back to the scalar path."""

    def test_load_backend_returns_none(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "numpy", None)
        load_backend.cache_clear()
        try:
            assert load_backend() is None
            models = [ModelSpec(), ModelSpec(params_billion=70, precision="fp16", num_layers=80, hidden_size=8192)]
            assert compute_footprints(models, vectorized=True) == [layer_footprint(m) for m in models]
        finally:
            load_backend.cache_clear()

    def test_package_imports_without_numpy(self):
        src = Path(__file__).resolve().parents[1] / "src"
        code = (
            "import sys; sys.modules['numpy'] = None\n"
            "from lfc import DeviceSpec, HostConfig, ModelSpec, estimate\n"
            "result = estimate([ModelSpec()], [DeviceSpec(id=0)], HostConfig(), vectorized=True)\n"
            "assert result.fits\n"
        )
        env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [str(src), os.environ.get("PYTHONPATH")]))}
        completed = subprocess.run([sys.executable, "-c", code], env=env, capture_output=True, text=True)
        assert completed.returncode == 0, completed.stderr


class TestSweepConfigurations:
    """Tests for sweep_configurations."""

    def test_default_grid(self):
        points = sweep_configurations(ModelSpec(), gpus(24), HostConfig(), vectorized=False)
        assert len(points) == 9 * 7
        assert points[0].precision == "fp32"
        assert points[0].context_length == 2048

    def test_fit_verdict_matches_limit(self):
        for point in sweep_configurations(ModelSpec(params_billion=70), gpus(24), HostConfig(), vectorized=False):
            assert point.fits == (point.total_gb <= point.limit_gb)

    def test_footprint_grows_with_context(self):
        points = sweep_configurations(ModelSpec(), gpus(24), HostConfig(), precisions=["q4_k_m"], vectorized=False)
        totals = [p.total_gb for p in points]
        assert totals == sorted(totals)

    def test_backends_agree(self):
        model = ModelSpec(params_billion=32, num_layers=64, hidden_size=5120)
        scalar = sweep_configurations(model, gpus(24), HostConfig(), vectorized=False)
        vectorized = sweep_configurations(model, gpus(24), HostConfig(), vectorized=True)
        assert scalar == vectorized

    def test_precision_keys_are_normalized(self):
        """Uppercase keys are sized like their lowercase form."""
        for vectorized in (False, True):
            points = sweep_configurations(
                ModelSpec(), gpus(24), HostConfig(), precisions=[" Q4_K_M"], contexts=[4096], vectorized=vectorized
            )
            assert points[0].precision == "q4_k_m"
            assert points[0].total_gb == pytest.approx(model_total_gb(ModelSpec(precision="q4_k_m")))


class TestFormatFunctions:
    """Tests for formatting helpers."""

    def test_format_gb(self):
        assert format_gb(2048) == "2.00 TB"
        assert format_gb(1.5) == "1.50 GB"
        assert format_gb(0.5) == "512.0 MB"

    def test_format_multiplier(self):
        assert format_multiplier(1.234) == "1.23x"
