"""CLI interface for LFC."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import configure_logging
from .engine import estimate, format_gb, format_multiplier, has_accelerators, sweep_configurations
from .errors import ScenarioError
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
    ChipType,
    DeviceSpec,
    ExecutionMode,
    HostConfig,
    InferenceSoftware,
    ModelSpec,
    OperatingSystem,
    TuningPreset,
)
from .optimizer import apply_preset, recommend_gpu_backend
from .quality import perplexity_increase, quality_tier

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="lfc",
    help="LLM Fit Calculator - will this model fit on this hardware, and how fast?",
    no_args_is_help=True,
)
console = Console()

hardware_app = typer.Typer(help="Hardware preset commands")
model_app = typer.Typer(help="Model preset commands")
app.add_typer(hardware_app, name="hardware")
app.add_typer(model_app, name="model")


# Options shared by estimate / check / sweep
ParamsOpt = Annotated[Optional[str], typer.Option("--params", "-p", help="Model parameters (e.g., 70B)")]
PresetOpt = Annotated[Optional[str], typer.Option("--preset", help="Use a model preset")]
PrecisionOpt = Annotated[str, typer.Option("--precision", "-q", help="Weight precision (e.g., q4_k_m, fp16)")]
KvPrecisionOpt = Annotated[str, typer.Option("--kv-precision", help="KV cache precision")]
ContextOpt = Annotated[int, typer.Option("--context", "-c", help="Context length in tokens")]
BatchOpt = Annotated[int, typer.Option("--batch", "-b", help="Batch size")]
LayersOpt = Annotated[Optional[int], typer.Option("--layers", help="Number of transformer layers")]
HiddenOpt = Annotated[Optional[int], typer.Option("--hidden", help="Hidden size")]
ModeOpt = Annotated[ExecutionMode, typer.Option("--mode", "-m", help="Execution mode")]
GpuLayersOpt = Annotated[Optional[int], typer.Option("--gpu-layers", help="Layers on GPU (hybrid mode)")]
HardwareOpt = Annotated[Optional[str], typer.Option("--hardware", "-H", help="Use a hardware preset")]
VramOpt = Annotated[Optional[list[float]], typer.Option("--vram", help="VRAM of a device in GB (repeatable)")]
RamOpt = Annotated[Optional[float], typer.Option("--ram", help="System RAM in GB")]
OsOpt = Annotated[Optional[OperatingSystem], typer.Option("--os", help="Operating system")]
ChipOpt = Annotated[Optional[ChipType], typer.Option("--chip", help="Chip type")]
SoftwareOpt = Annotated[Optional[InferenceSoftware], typer.Option("--software", help="Inference software")]
TuningOpt = Annotated[Optional[TuningPreset], typer.Option("--tuning", help="Apply a tuning preset")]
StrictOpt = Annotated[
    Optional[bool],
    typer.Option("--strict/--no-strict", help="Downgrade until the model fits (default: scenario, then LFC_STRICT_FIT)"),
]


def parse_billion(value: str) -> float:
    """Parse a value with optional B suffix (e.g., '70B' -> 70.0)."""
    value = value.strip().upper()
    if value.endswith("B"):
        return float(value[:-1])
    return float(value)


def build_inputs(
    params: Optional[str],
    preset: Optional[str],
    precision: str,
    kv_precision: str,
    context: int,
    batch_size: int,
    layers: Optional[int],
    hidden: Optional[int],
    mode: ExecutionMode,
    gpu_layers: Optional[int],
    hardware: Optional[str],
    vram: Optional[list[float]],
    ram: Optional[float],
    os_: Optional[OperatingSystem],
    chip: Optional[ChipType],
    software: Optional[InferenceSoftware],
    tuning: Optional[TuningPreset],
) -> tuple[ModelSpec, list[DeviceSpec], HostConfig]:
    """Turn command line options into core inputs, exiting on unknown presets."""
    host_overrides = {}
    if ram is not None:
        host_overrides["system_ram_gb"] = ram
    if os_ is not None:
        host_overrides["operating_system"] = os_
    if chip is not None:
        host_overrides["chip_type"] = chip
    if software is not None:
        host_overrides["inference_software"] = software

    if hardware:
        hw = get_hardware(hardware)
        if hw is None:
            console.print(f"[red]Hardware '{hardware}' not found.[/red]")
            console.print(f"Available: {', '.join(list_hardware_names())}")
            raise typer.Exit(1)
        devices = hw.to_devices()
        host = hw.to_host(**host_overrides)
    else:
        devices = [DeviceSpec(id=0)]
        host = HostConfig(**host_overrides)

    if vram:
        devices = [
            DeviceSpec(id=i, name=f"GPU {i + 1}", vram_gb=gb, position=i)
            for i, gb in enumerate(vram)
        ]

    model_values = {
        "precision": precision,
        "kv_cache_precision": kv_precision,
        "context_length": context,
        "batch_size": batch_size,
        "mode": mode,
        "gpu_layers": gpu_layers,
    }
    if params:
        model_values["params_billion"] = parse_billion(params)
    if layers is not None:
        model_values["num_layers"] = layers
    if hidden is not None:
        model_values["hidden_size"] = hidden

    if preset:
        model_preset = get_preset(preset)
        if model_preset is None:
            console.print(f"[red]Model preset '{preset}' not found.[/red]")
            console.print(f"Available: {', '.join(list_preset_names())}")
            raise typer.Exit(1)
        model = model_preset.to_model_spec(**model_values)
    else:
        model = ModelSpec(name=f"{params or '7B'} model", **model_values)

    if tuning is not None:
        model = apply_preset(model, tuning, has_gpu=has_accelerators(devices))

    logger.debug("Inputs: model=%s devices=%s host=%s", model, devices, host)
    return model, devices, host


def read_scenario(path: Path) -> tuple[list[ModelSpec], list[DeviceSpec], HostConfig, bool]:
    try:
        scenario = load_scenario(path)
    except ScenarioError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    return scenario.models, scenario.devices, scenario.host, scenario.strict_fit


def fits_overall(result: CalculationResult) -> bool:
    return result.fits and result.ram_overcapacity_gb == 0


def print_full_report(result: CalculationResult, host: HostConfig) -> None:
    """Print the full fit / performance report."""
    console.print()
    console.print(Panel("[bold cyan]LLM Fit Calculator Report[/bold cyan]", border_style="blue"))

    for model_result in result.models:
        model = model_result.model
        tier = quality_tier(model_result.quality_score)

        model_table = Table(title=model.name, show_header=False, box=None, padding=(0, 2))
        model_table.add_column("Property", style="dim")
        model_table.add_column("Value", style="white")
        model_table.add_row("Parameters", f"{model.params_billion:g}B")
        model_table.add_row("Precision", f"{model.precision} (KV: {model.kv_cache_precision})")
        model_table.add_row("Context", f"{model.context_length:,} tokens")
        model_table.add_row("Mode", model.mode.value)
        model_table.add_row("Layers", f"{model.gpu_layers} GPU / {model.cpu_layers} CPU")
        model_table.add_row("Per Layer", format_gb(model_result.footprint.total_gb))
        model_table.add_row("Quality", f"{model_result.quality_score:.1f} ({tier.tier})")
        model_table.add_row("Perplexity", f"+{perplexity_increase(model):.1f}%")
        console.print(model_table)
        console.print()

    memory_table = Table(title="[Memory]", show_header=False, box=None, padding=(0, 2))
    memory_table.add_column("Property", style="dim")
    memory_table.add_column("Value", style="green")
    memory_table.add_row("GPU Weights", format_gb(result.gpu_weights_gb))
    memory_table.add_row("CPU Weights", format_gb(result.cpu_weights_gb))
    memory_table.add_row("KV Cache", format_gb(result.kv_cache_gb))
    memory_table.add_row("Activations", format_gb(result.activations_gb))
    memory_table.add_row("OS Overhead", format_gb(result.overhead_gb))
    memory_table.add_row("-" * 20, "-" * 10)
    memory_table.add_row(
        "VRAM",
        f"{result.total_vram_used_gb:.1f} GB / {result.total_vram_available_gb:.1f} GB",
    )
    memory_table.add_row("RAM", f"{result.total_ram_usage_gb:.1f} GB / {host.system_ram_gb:.0f} GB")
    status = "[green](Fits)[/green]" if fits_overall(result) else "[red](Does not fit)[/red]"
    memory_table.add_row("Status", status)
    console.print(memory_table)
    console.print()

    if result.device_usage:
        device_table = Table(title="[Devices]")
        device_table.add_column("Device", style="cyan")
        device_table.add_column("Layers", justify="right")
        device_table.add_column("Used", justify="right")
        device_table.add_column("VRAM", justify="right")
        for usage in result.device_usage:
            device_table.add_row(usage.name, str(usage.layers), format_gb(usage.used_gb), f"{usage.vram_gb:g} GB")
        console.print(device_table)
        console.print()

    perf = result.performance
    perf_table = Table(title="[Performance]", show_header=False, box=None, padding=(0, 2))
    perf_table.add_column("Property", style="dim")
    perf_table.add_column("Value", style="cyan")
    perf_table.add_row("Base", format_multiplier(perf.base_multiplier))
    perf_table.add_row("VRAM Penalty", format_multiplier(perf.vram_penalty))
    perf_table.add_row("RAM Penalty", format_multiplier(perf.ram_penalty))
    perf_table.add_row("Context Penalty", format_multiplier(perf.context_penalty))
    if host.detailed_specs:
        perf_table.add_row("Offload Speed", format_multiplier(perf.offload_speed))
    perf_table.add_row("Composite", f"[bold]{format_multiplier(perf.composite)}[/bold]")
    backend = result.models[0].model.gpu_backend if result.models else None
    if backend is not None and result.total_vram_available_gb > 0:
        perf_table.add_row("GPU Backend", recommend_gpu_backend(host, backend))
    console.print(perf_table)
    console.print()

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    for note in result.notes:
        console.print(f"[dim]Note:[/dim] {note}")


@hardware_app.command("list")
def hardware_list():
    """List all available hardware presets."""
    table = Table(title="Available Hardware")
    table.add_column("Name", style="cyan")
    table.add_column("Vendor", style="green")
    table.add_column("VRAM", justify="right")
    table.add_column("GPUs", justify="right")
    table.add_column("RAM", justify="right")
    table.add_column("OS")

    for hw in load_hardware():
        vram = f"{hw.vram_gb:g} GB" if hw.vram_gb > 0 else "-"
        table.add_row(
            hw.name,
            hw.vendor,
            vram,
            str(hw.gpu_count),
            f"{hw.system_ram_gb:g} GB",
            hw.operating_system.value,
        )

    console.print(table)


@hardware_app.command("show")
def hardware_show(name: str):
    """Show details of a specific hardware preset."""
    hw = get_hardware(name)
    if hw is None:
        console.print(f"[red]Hardware '{name}' not found.[/red]")
        console.print(f"Available: {', '.join(list_hardware_names())}")
        raise typer.Exit(1)

    table = Table(title=f"Hardware: {hw.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Vendor", hw.vendor)
    table.add_row("VRAM", f"{hw.vram_gb:g} GB x {hw.gpu_count}" if hw.vram_gb > 0 else "None (CPU only)")
    table.add_row("System RAM", f"{hw.system_ram_gb:g} GB {hw.ram_type}-{hw.ram_speed_mts:g} CL{hw.ram_cl_rating:g}")
    table.add_row("OS", hw.operating_system.value)
    table.add_row("Chip", hw.chip_type.value)
    table.add_row("CPU", f"{hw.cpu_cores} cores / {hw.cpu_threads} threads")
    table.add_row("Storage", hw.storage_type.value)

    console.print(table)


@model_app.command("list")
def model_list():
    """List all available model presets."""
    table = Table(title="Available Model Presets")
    table.add_column("Name", style="cyan")
    table.add_column("Family", style="green")
    table.add_column("Parameters", justify="right")
    table.add_column("Hidden Size", justify="right")
    table.add_column("Layers", justify="right")
    table.add_column("MoE", justify="center")

    for preset in load_presets():
        table.add_row(
            preset.name,
            preset.family,
            f"{preset.params_billion:g}B",
            str(preset.hidden_size),
            str(preset.num_layers),
            "yes" if preset.is_moe else "-",
        )

    console.print(table)


@model_app.command("show")
def model_show(name: str):
    """Show details of a specific model preset."""
    preset = get_preset(name)
    if preset is None:
        console.print(f"[red]Model preset '{name}' not found.[/red]")
        console.print(f"Available: {', '.join(list_preset_names())}")
        raise typer.Exit(1)

    table = Table(title=f"Model: {preset.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Family", preset.family)
    table.add_row("Total Parameters", f"{preset.params_billion:g}B")
    table.add_row("Hidden Size", str(preset.hidden_size))
    table.add_row("Layers", str(preset.num_layers))
    table.add_row("MoE", "yes" if preset.is_moe else "no")

    console.print(table)


@app.command("estimate")
def estimate_cmd(
    params: ParamsOpt = None,
    preset: PresetOpt = None,
    precision: PrecisionOpt = "q4_k_m",
    kv_precision: KvPrecisionOpt = "fp16",
    context: ContextOpt = 4096,
    batch_size: BatchOpt = 1,
    layers: LayersOpt = None,
    hidden: HiddenOpt = None,
    mode: ModeOpt = ExecutionMode.HYBRID,
    gpu_layers: GpuLayersOpt = None,
    hardware: HardwareOpt = None,
    vram: VramOpt = None,
    ram: RamOpt = None,
    os_: OsOpt = None,
    chip: ChipOpt = None,
    software: SoftwareOpt = None,
    tuning: TuningOpt = None,
    strict: StrictOpt = None,
    scenario: Annotated[Optional[Path], typer.Option("--scenario", help="Load a saved scenario (JSON)")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """Estimate memory usage and relative throughput."""
    if scenario is not None:
        models, devices, host, scenario_strict = read_scenario(scenario)
        if strict is None and scenario_strict:
            strict = True
    else:
        model, devices, host = build_inputs(
            params, preset, precision, kv_precision, context, batch_size, layers, hidden,
            mode, gpu_layers, hardware, vram, ram, os_, chip, software, tuning,
        )
        models = [model]

    result = estimate(models, devices, host, strict_fit=strict)

    if json_output:
        typer.echo(result.model_dump_json(indent=2))
        return

    print_full_report(result, host)


@app.command("check")
def check(
    params: ParamsOpt = None,
    preset: PresetOpt = None,
    precision: PrecisionOpt = "q4_k_m",
    kv_precision: KvPrecisionOpt = "fp16",
    context: ContextOpt = 4096,
    batch_size: BatchOpt = 1,
    layers: LayersOpt = None,
    hidden: HiddenOpt = None,
    mode: ModeOpt = ExecutionMode.HYBRID,
    gpu_layers: GpuLayersOpt = None,
    hardware: HardwareOpt = None,
    vram: VramOpt = None,
    ram: RamOpt = None,
    strict: StrictOpt = None,
    scenario: Annotated[Optional[Path], typer.Option("--scenario", help="Load a saved scenario (JSON)")] = None,
):
    """Check if a configuration fits (for CI/CD)."""
    if scenario is not None:
        models, devices, host, scenario_strict = read_scenario(scenario)
        if strict is None and scenario_strict:
            strict = True
    else:
        model, devices, host = build_inputs(
            params, preset, precision, kv_precision, context, batch_size, layers, hidden,
            mode, gpu_layers, hardware, vram, ram, None, None, None, None,
        )
        models = [model]

    result = estimate(models, devices, host, strict_fit=strict)

    for warning in result.warnings:
        console.print(f"[yellow]WARNING[/yellow]: {warning}")

    if not fits_overall(result):
        console.print(
            f"[red]FAIL[/red]: VRAM {result.total_vram_used_gb:.1f}/{result.total_vram_available_gb:.1f} GB, "
            f"RAM {result.total_ram_usage_gb:.1f}/{host.system_ram_gb:.0f} GB"
        )
        raise typer.Exit(1)

    console.print(
        f"[green]PASS[/green]: VRAM {result.total_vram_used_gb:.1f}/{result.total_vram_available_gb:.1f} GB, "
        f"RAM {result.total_ram_usage_gb:.1f}/{host.system_ram_gb:.0f} GB, "
        f"speed {format_multiplier(result.performance.composite)}"
    )


@app.command("sweep")
def sweep(
    params: ParamsOpt = None,
    preset: PresetOpt = None,
    kv_precision: KvPrecisionOpt = "fp16",
    batch_size: BatchOpt = 1,
    layers: LayersOpt = None,
    hidden: HiddenOpt = None,
    mode: ModeOpt = ExecutionMode.HYBRID,
    hardware: HardwareOpt = None,
    vram: VramOpt = None,
    ram: RamOpt = None,
    precisions: Annotated[
        Optional[list[str]], typer.Option("--precision", "-q", help="Precision to include (repeatable)")
    ] = None,
    contexts: Annotated[
        Optional[list[int]], typer.Option("--context", "-c", help="Context length to include (repeatable)")
    ] = None,
    vectorized: Annotated[bool, typer.Option("--vectorized", help="Use the numpy backend")] = False,
):
    """Show total footprint for every precision x context combination."""
    model, devices, host = build_inputs(
        params, preset, "q4_k_m", kv_precision, 4096, batch_size, layers, hidden,
        mode, None, hardware, vram, ram, None, None, None, None,
    )
    if not has_accelerators(devices):
        model = model.model_copy(update={"mode": ExecutionMode.CPU_ONLY})

    points = sweep_configurations(model, devices, host, precisions or None, contexts or None, vectorized or None)
    context_values = sorted({p.context_length for p in points})

    table = Table(title=f"{model.name} ({model.mode.value}, limit {format_gb(points[0].limit_gb)})")
    table.add_column("Precision", style="cyan")
    for value in context_values:
        table.add_column(f"{value // 1024}K" if value >= 1024 else str(value), justify="right")

    rows: dict[str, dict[int, str]] = {}
    for point in points:
        style = "green" if point.fits else "red"
        rows.setdefault(point.precision, {})[point.context_length] = (
            f"[{style}]{point.total_gb:.1f}[/{style}]"
        )
    for precision_key, cells in rows.items():
        table.add_row(precision_key, *(cells[c] for c in context_values))

    console.print(table)


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
):
    """LFC - LLM Fit Calculator for local inference planning."""
    configure_logging("DEBUG" if verbose else None)


if __name__ == "__main__":
    app()
