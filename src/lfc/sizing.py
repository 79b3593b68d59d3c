"""Per-layer memory cost formulas for transformer inference."""

from .models import PRECISION_BITS, LayerFootprint, ModelSpec

GIB = 1024**3

# Unrecognized precision keys resolve to these rather than a guessed rung.
DEFAULT_WEIGHT_BITS = 4.0
DEFAULT_KV_BITS = 16.0

# fp32 scratch (4 bytes) times an empirical factor for attention/MLP buffers
ACTIVATION_BYTES = 4
ACTIVATION_OVERHEAD_FACTOR = 4


def bits_per_weight(precision: str, default: float = DEFAULT_WEIGHT_BITS) -> float:
    """Resolve a precision key to bits per weight, falling back to *default*."""
    return PRECISION_BITS.get(precision, default)


def calc_weight_gb_per_layer(params_billion: float, bits: float, num_layers: int) -> float:
    """
    Weight memory of one transformer layer.

    Formula: (P * 1e9 * bits / 8) / layers / 1024^3

    Args:
        params_billion: Total parameters in billions
        bits: Bits per weight for the chosen precision
        num_layers: Number of transformer layers

    Returns:
        GB per layer (0 when the model has no layers)
    """
    if num_layers <= 0:
        return 0.0
    return (params_billion * 1e9 * bits / 8) / num_layers / GIB


def calc_kv_cache_gb_per_layer(
    context_length: int,
    hidden_size: int,
    batch_size: int,
    kv_bits: float,
) -> float:
    """
    KV cache memory of one layer.

    Formula: 2 (K and V) * context * hidden * batch * kv_bits / 8 / 1024^3
    """
    if hidden_size <= 0:
        return 0.0
    return (2 * context_length * hidden_size * batch_size * kv_bits / 8) / GIB


def calc_activation_gb_per_layer(batch_size: int, hidden_size: int) -> float:
    """Activation scratch memory of one layer: batch * hidden * 4 bytes * 4."""
    if hidden_size <= 0:
        return 0.0
    return (batch_size * hidden_size * ACTIVATION_BYTES * ACTIVATION_OVERHEAD_FACTOR) / GIB


def layer_footprint(model: ModelSpec) -> LayerFootprint:
    """Weights + KV cache + activations for one layer of *model*."""
    return LayerFootprint(
        weights_gb=calc_weight_gb_per_layer(
            model.params_billion,
            bits_per_weight(model.precision),
            model.num_layers,
        ),
        kv_cache_gb=calc_kv_cache_gb_per_layer(
            model.context_length,
            model.hidden_size,
            model.batch_size,
            bits_per_weight(model.kv_cache_precision, DEFAULT_KV_BITS),
        ),
        activations_gb=calc_activation_gb_per_layer(model.batch_size, model.hidden_size),
    )


def model_total_gb(model: ModelSpec) -> float:
    """Footprint of every layer of *model*, regardless of placement."""
    return layer_footprint(model).total_gb * model.num_layers
