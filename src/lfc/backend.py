"""Vectorized (numpy) evaluation of the sizing formulas.

Used for sweeps over many configurations. Each array expression follows the
same operation order as :mod:`lfc.sizing`, so float64 results are identical
to the scalar path.

numpy is imported by :func:`load_backend`, not at module import, so the rest
of the package works without it.
"""

import logging
from collections.abc import Sequence
from functools import lru_cache
from typing import TYPE_CHECKING, Optional

from .models import LayerFootprint, ModelSpec
from .sizing import (
    ACTIVATION_BYTES,
    ACTIVATION_OVERHEAD_FACTOR,
    DEFAULT_KV_BITS,
    GIB,
    bits_per_weight,
)

if TYPE_CHECKING:
    import numpy as np

logger = logging.getLogger(__name__)


class VectorizedBackend:
    """Batch footprint calculator over arrays of model configurations."""

    name = "numpy"

    def __init__(self, np_module):
        self.np = np_module

    def weight_gb_per_layer(
        self, params_billion: "np.ndarray", bits: "np.ndarray", num_layers: "np.ndarray"
    ) -> "np.ndarray":
        numerator = params_billion * 1e9 * bits / 8
        per_layer = self.np.divide(numerator, num_layers, out=self.np.zeros_like(numerator), where=num_layers > 0)
        return per_layer / GIB

    def kv_cache_gb_per_layer(
        self,
        context_length: "np.ndarray",
        hidden_size: "np.ndarray",
        batch_size: "np.ndarray",
        kv_bits: "np.ndarray",
    ) -> "np.ndarray":
        kv = (2 * context_length * hidden_size * batch_size * kv_bits / 8) / GIB
        return self.np.where(hidden_size > 0, kv, 0.0)

    def activation_gb_per_layer(self, batch_size: "np.ndarray", hidden_size: "np.ndarray") -> "np.ndarray":
        act = (batch_size * hidden_size * ACTIVATION_BYTES * ACTIVATION_OVERHEAD_FACTOR) / GIB
        return self.np.where(hidden_size > 0, act, 0.0)

    def layer_footprints(self, models: Sequence[ModelSpec]) -> list[LayerFootprint]:
        """Footprint of one layer for each of *models*."""
        if not models:
            return []

        def column(values) -> "np.ndarray":
            return self.np.asarray(list(values), dtype=self.np.float64)

        params = column(m.params_billion for m in models)
        layers = column(m.num_layers for m in models)
        hidden = column(m.hidden_size for m in models)
        batch = column(m.batch_size for m in models)
        context = column(m.context_length for m in models)
        bits = column(bits_per_weight(m.precision) for m in models)
        kv_bits = column(bits_per_weight(m.kv_cache_precision, DEFAULT_KV_BITS) for m in models)

        weights = self.weight_gb_per_layer(params, bits, layers)
        kv = self.kv_cache_gb_per_layer(context, hidden, batch, kv_bits)
        act = self.activation_gb_per_layer(batch, hidden)

        return [
            LayerFootprint(weights_gb=float(w), kv_cache_gb=float(k), activations_gb=float(a))
            for w, k, a in zip(weights, kv, act)
        ]


@lru_cache(maxsize=1)
def load_backend() -> Optional[VectorizedBackend]:
    """
    Create the vectorized backend once and reuse it.

    Returns:
        The backend, or None when numpy cannot be imported
    """
    try:
        import numpy as np
    except ImportError as e:
        logger.warning("numpy is not available (%s); using the pure-Python sizing path", e)
        return None

    logger.debug("Vectorized backend loaded (numpy %s)", np.__version__)
    return VectorizedBackend(np)
