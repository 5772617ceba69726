"""Token cost estimation for content-service calls."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


# Sonnet-class list price; used when neither an override nor the table matches.
DEFAULT_PRICING = ModelPricing(input_per_1m=3.0, output_per_1m=15.0)

# List prices keyed by model name prefix; dated snapshots match their family.
MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-opus-4-5": ModelPricing(input_per_1m=5.0, output_per_1m=25.0),
    "claude-opus-4": ModelPricing(input_per_1m=15.0, output_per_1m=75.0),
    "claude-sonnet-4": ModelPricing(input_per_1m=3.0, output_per_1m=15.0),
    "claude-3-7-sonnet": ModelPricing(input_per_1m=3.0, output_per_1m=15.0),
    "claude-haiku-4-5": ModelPricing(input_per_1m=1.0, output_per_1m=5.0),
    "claude-3-5-haiku": ModelPricing(input_per_1m=0.8, output_per_1m=4.0),
    "claude-3-haiku": ModelPricing(input_per_1m=0.25, output_per_1m=1.25),
}


def estimate_cost_cents(*, model: str, input_tokens: int, output_tokens: int) -> int:
    """Cost of one call in whole cents, rounded up so spend is never under-counted."""

    pricing = lookup_pricing(model=model)
    dollars = (max(0, input_tokens) / 1_000_000) * pricing.input_per_1m + (
        max(0, output_tokens) / 1_000_000
    ) * pricing.output_per_1m
    return math.ceil(round(dollars * 100, 6))


def lookup_pricing(*, model: str) -> ModelPricing:
    """Resolve rates: exact env override, then the built-in table, then the env wildcard."""

    name = model.strip()
    mapping = _parse_pricing_mapping(os.getenv("PITCH_AUTOPILOT_MODEL_PRICING", ""))
    direct = mapping.get(name)
    if direct is not None:
        return direct
    known = _table_pricing(name)
    if known is not None:
        return known
    wildcard = mapping.get("*")
    if wildcard is not None:
        return wildcard
    return DEFAULT_PRICING


def _table_pricing(model: str) -> ModelPricing | None:
    matches = [prefix for prefix in MODEL_PRICING if model.startswith(prefix)]
    if not matches:
        return None
    return MODEL_PRICING[max(matches, key=len)]


def _parse_pricing_mapping(raw: str) -> dict[str, ModelPricing]:
    """Parse `PITCH_AUTOPILOT_MODEL_PRICING` mapping.

    Format:
    - `model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` as model name sets the fallback rate
    """

    parsed: dict[str, ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        model, sep, prices = value.partition(":")
        input_price, sep2, output_price = prices.partition(":")
        if not sep or not sep2:
            continue
        try:
            parsed[model.strip()] = ModelPricing(
                input_per_1m=float(input_price),
                output_per_1m=float(output_price),
            )
        except ValueError:
            continue
    return parsed
