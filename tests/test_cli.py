"""Tests for the command line interface."""

import json

from typer.testing import CliRunner

from lfc.cli import app, parse_billion
from lfc.config import Settings

runner = CliRunner()


class TestParseBillion:
    """Tests for parse_billion."""

    def test_suffix(self):
        assert parse_billion("70B") == 70.0
        assert parse_billion(" 7b ") == 7.0

    def test_plain_number(self):
        assert parse_billion("3.8") == 3.8


class TestCatalogCommands:
    """Tests for the hardware / model subcommands."""

    def test_hardware_list(self):
        result = runner.invoke(app, ["hardware", "list"])
        assert result.exit_code == 0
        assert "RTX-4090" in result.output

    def test_hardware_show(self):
        result = runner.invoke(app, ["hardware", "show", "rtx-3090"])
        assert result.exit_code == 0
        assert "DDR4" in result.output

    def test_hardware_show_unknown(self):
        result = runner.invoke(app, ["hardware", "show", "Voodoo-2"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_model_list(self):
        result = runner.invoke(app, ["model", "list"])
        assert result.exit_code == 0
        assert "Llama" in result.output

    def test_model_show_unknown(self):
        result = runner.invoke(app, ["model", "show", "GPT-9"])
        assert result.exit_code == 1


class TestEstimateCommand:
    """Tests for lfc estimate."""

    def test_json_output(self):
        result = runner.invoke(app, ["estimate", "--params", "7B", "--vram", "24", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["fits"] is True
        assert data["models"][0]["model"]["gpu_layers"] == 16
        assert data["total_vram_available_gb"] == 24

    def test_multiple_devices(self):
        result = runner.invoke(app, ["estimate", "--vram", "24", "--vram", "12", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["total_vram_available_gb"] == 36
        assert len(data["device_usage"]) == 2

    def test_strict_downgrades(self):
        result = runner.invoke(
            app,
            ["estimate", "-p", "8B", "-q", "fp16", "-c", "32768", "-m", "gpuOnly", "--vram", "12", "--strict", "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["models"][0]["model"]["precision"] == "q8_0"
        assert data["fits"] is True

    def test_report_with_presets(self):
        result = runner.invoke(app, ["estimate", "--hardware", "RTX-4090", "--preset", "Llama-3-8B"])
        assert result.exit_code == 0
        assert "Composite" in result.output

    def test_tuning_preset(self):
        result = runner.invoke(app, ["estimate", "--vram", "24", "--tuning", "speed", "--json"])
        assert result.exit_code == 0
        model = json.loads(result.output)["models"][0]["model"]
        assert model["mode"] == "gpuOnly"
        assert model["context_length"] == 2048

    def test_unknown_hardware(self):
        result = runner.invoke(app, ["estimate", "--hardware", "Voodoo-2"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_scenario_file(self, tmp_path):
        path = tmp_path / "scenario.json"
        path.write_text(json.dumps({"models": [{"name": "From file"}], "devices": [{"vram_gb": 16}]}))
        result = runner.invoke(app, ["estimate", "--scenario", str(path), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["models"][0]["model"]["name"] == "From file"
        assert data["total_vram_available_gb"] == 16

    def test_missing_scenario(self, tmp_path):
        result = runner.invoke(app, ["estimate", "--scenario", str(tmp_path / "nope.json")])
        assert result.exit_code == 1
        assert "Cannot load scenario" in result.output


class TestCheckCommand:
    """Tests for lfc check."""

    def test_pass(self):
        result = runner.invoke(app, ["check", "--params", "7B", "--vram", "24"])
        assert result.exit_code == 0
        assert "PASS" in result.output

    def test_fail(self):
        result = runner.invoke(app, ["check", "-p", "70B", "-q", "fp16", "-m", "gpuOnly", "--vram", "24"])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_cpu_only_preset(self):
        result = runner.invoke(app, ["check", "--hardware", "Ryzen-9", "--preset", "Llama-3-8B"])
        assert result.exit_code == 0


class TestSweepCommand:
    """Tests for lfc sweep."""

    def test_sweep_table(self):
        result = runner.invoke(app, ["sweep", "-p", "7B", "--vram", "24", "-q", "q4_k_m", "-q", "fp16", "-c", "4096"])
        assert result.exit_code == 0
        assert "q4_k_m" in result.output
        assert "fp16" in result.output

    def test_uppercase_precision_key(self):
        result = runner.invoke(app, ["sweep", "-p", "7B", "--vram", "24", "-q", "Q4_K_M", "-c", "4096"])
        assert result.exit_code == 0
        assert "q4_k_m" in result.output
        assert "Q4_K_M" not in result.output

    def test_vectorized_sweep(self):
        result = runner.invoke(app, ["sweep", "--vectorized"])
        assert result.exit_code == 0


class TestVerbose:
    """Tests for the global --verbose flag."""

    def test_verbose_runs(self):
        result = runner.invoke(app, ["--verbose", "hardware", "list"])
        assert result.exit_code == 0


class TestStrictOption:
    """--strict/--no-strict override the LFC_STRICT_FIT default."""

    ARGS = ["estimate", "-p", "8B", "-q", "fp16", "-c", "32768", "-m", "gpuOnly", "--vram", "12", "--json"]

    def test_setting_default_applies(self, monkeypatch):
        monkeypatch.setattr("lfc.engine.get_settings", lambda: Settings(strict_fit=True))
        result = runner.invoke(app, self.ARGS)
        assert result.exit_code == 0
        assert json.loads(result.output)["models"][0]["model"]["precision"] == "q8_0"

    def test_no_strict_overrides_setting(self, monkeypatch):
        monkeypatch.setattr("lfc.engine.get_settings", lambda: Settings(strict_fit=True))
        result = runner.invoke(app, [*self.ARGS, "--no-strict"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["models"][0]["model"]["precision"] == "fp16"
        assert data["fits"] is False

    def test_no_strict_overrides_scenario(self, tmp_path):
        path = tmp_path / "scenario.json"
        path.write_text(json.dumps({
            "models": [{"params_billion": 8, "precision": "fp16", "context_length": 32768, "mode": "gpuOnly"}],
            "devices": [{"vram_gb": 12}],
            "strict_fit": True,
        }))
        strict = json.loads(runner.invoke(app, ["estimate", "--scenario", str(path), "--json"]).output)
        relaxed = json.loads(runner.invoke(app, ["estimate", "--scenario", str(path), "--no-strict", "--json"]).output)
        assert strict["models"][0]["model"]["precision"] == "q8_0"
        assert relaxed["models"][0]["model"]["precision"] == "fp16"
