"""Output quality estimates for a precision / context choice."""

from pydantic import BaseModel

from .models import ModelSpec, Precision

# Approximate quality loss (score points) per weight precision
QUANTIZATION_PENALTY = {
    Precision.FP32.value: 0,
    Precision.FP16.value: 0,
    Precision.BF16.value: 0.5,
    Precision.Q8_0.value: 1,
    Precision.INT8.value: 1,
    Precision.Q6_K.value: 3,
    Precision.Q5_K_M.value: 5,
    Precision.Q4_K_M.value: 8,
    Precision.Q4_0.value: 10,
    Precision.INT4.value: 10,
    Precision.Q3_K_M.value: 18,
    Precision.Q2_K.value: 35,
}
DEFAULT_QUANTIZATION_PENALTY = 10

# Perplexity increase (%) relative to fp16
PERPLEXITY_INCREASE = {
    Precision.FP32.value: 0,
    Precision.FP16.value: 0,
    Precision.BF16.value: 0.2,
    Precision.Q8_0.value: 0.5,
    Precision.INT8.value: 0.8,
    Precision.Q6_K.value: 2.5,
    Precision.Q5_K_M.value: 4.5,
    Precision.Q4_K_M.value: 8.0,
    Precision.Q4_0.value: 10.0,
    Precision.INT4.value: 10.0,
    Precision.Q3_K_M.value: 18.0,
    Precision.Q2_K.value: 38.0,
}
DEFAULT_PERPLEXITY_INCREASE = 10.0


class QualityTier(BaseModel):
    tier: str
    description: str


QUALITY_TIERS = [
    (98, "Perfect", "Near-zero quality loss"),
    (95, "Excellent", "Imperceptible quality loss"),
    (90, "Very Good", "Minimal quality loss (<5%)"),
    (85, "Good", "Minor quality loss (5-10%)"),
    (75, "Acceptable", "Noticeable loss (10-20%)"),
    (60, "Fair", "Moderate loss (20-35%)"),
]


def quality_score(model: ModelSpec) -> float:
    """
    Score a configuration from 0 to 100 (100 = no quality loss).

    Deducts for weight quantization, an int8 KV cache, flash attention and
    very long contexts.
    """
    score = 100.0
    score -= QUANTIZATION_PENALTY.get(model.precision, DEFAULT_QUANTIZATION_PENALTY)

    if model.kv_cache_precision == Precision.INT8.value:
        score -= 2
    if model.flash_attention:
        score -= 0.5

    if model.context_length > 64000:
        score -= 5
    elif model.context_length > 32000:
        score -= 2

    return max(0.0, min(100.0, score))


def quality_tier(score: float) -> QualityTier:
    for threshold, tier, description in QUALITY_TIERS:
        if score >= threshold:
            return QualityTier(tier=tier, description=description)
    return QualityTier(tier="Poor", description="Significant quality degradation (>35%)")


def perplexity_increase(model: ModelSpec) -> float:
    """Estimated perplexity increase in percent (lower is better)."""
    increase = PERPLEXITY_INCREASE.get(model.precision, DEFAULT_PERPLEXITY_INCREASE)
    if model.kv_cache_precision == Precision.INT8.value:
        increase += 0.5
    return increase
