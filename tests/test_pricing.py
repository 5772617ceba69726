from __future__ import annotations

import allure
import pytest

from pitch_autopilot.orchestrator.pricing import (
    DEFAULT_PRICING,
    MODEL_PRICING,
    estimate_cost_cents,
    lookup_pricing,
)

pytestmark = [
    allure.epic("Spend Governance"),
    allure.feature("Cost Ledger"),
]


def test_estimate_cost_cents_uses_default_rates(monkeypatch) -> None:
    monkeypatch.delenv("PITCH_AUTOPILOT_MODEL_PRICING", raising=False)
    cost = estimate_cost_cents(
        model="claude-anything",
        input_tokens=1_000_000,
        output_tokens=100_000,
    )
    # $3.00 input + $1.50 output
    assert cost == 450


def test_estimate_cost_cents_rounds_up_to_whole_cents(monkeypatch) -> None:
    monkeypatch.delenv("PITCH_AUTOPILOT_MODEL_PRICING", raising=False)
    assert estimate_cost_cents(model="m", input_tokens=1, output_tokens=0) == 1
    assert estimate_cost_cents(model="m", input_tokens=1_000, output_tokens=500) == 2
    assert estimate_cost_cents(model="m", input_tokens=0, output_tokens=0) == 0


def test_estimate_cost_cents_ignores_negative_token_counts(monkeypatch) -> None:
    monkeypatch.delenv("PITCH_AUTOPILOT_MODEL_PRICING", raising=False)
    assert estimate_cost_cents(model="m", input_tokens=-50, output_tokens=-10) == 0


def test_pricing_override_and_wildcard(monkeypatch) -> None:
    monkeypatch.setenv(
        "PITCH_AUTOPILOT_MODEL_PRICING",
        "claude-cheap:1.0:2.0,*:10.0:20.0",
    )
    assert estimate_cost_cents(model="claude-cheap", input_tokens=1_000_000, output_tokens=0) == 100
    assert estimate_cost_cents(model="other", input_tokens=1_000_000, output_tokens=0) == 1_000


def test_pricing_skips_malformed_entries(monkeypatch) -> None:
    monkeypatch.setenv(
        "PITCH_AUTOPILOT_MODEL_PRICING",
        "broken,claude-x:abc:1.0,claude-y:2.0:4.0",
    )
    assert lookup_pricing(model="claude-x") == DEFAULT_PRICING
    assert lookup_pricing(model="claude-y").input_per_1m == 2.0


@pytest.mark.parametrize(
    ("model", "expected_cents"),
    [
        # 1M input + 1M output at each family's list price
        ("claude-opus-4-1-20250805", 9_000),
        ("claude-opus-4-5-20251101", 3_000),
        ("claude-sonnet-4-5-20250929", 1_800),
        ("claude-haiku-4-5-20251001", 600),
        ("claude-3-5-haiku-20241022", 480),
        ("claude-test", 1_800),
    ],
)
def test_known_models_use_table_rates(monkeypatch, model: str, expected_cents: int) -> None:
    monkeypatch.delenv("PITCH_AUTOPILOT_MODEL_PRICING", raising=False)

    cost = estimate_cost_cents(model=model, input_tokens=1_000_000, output_tokens=1_000_000)

    assert cost == expected_cents


def test_exact_override_beats_table_and_table_beats_wildcard(monkeypatch) -> None:
    monkeypatch.setenv(
        "PITCH_AUTOPILOT_MODEL_PRICING",
        "claude-haiku-4-5:2.0:8.0,*:10.0:20.0",
    )

    assert lookup_pricing(model="claude-haiku-4-5").input_per_1m == 2.0
    assert lookup_pricing(model="claude-3-5-haiku-20241022") == MODEL_PRICING["claude-3-5-haiku"]
    assert lookup_pricing(model="claude-test").input_per_1m == 10.0
