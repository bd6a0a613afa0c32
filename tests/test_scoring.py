from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone

import pytest

from app.schemas import TelemetrySample
from services.errors import ScoringError
from services.scoring import (
    AbsentScorer,
    CallableScorer,
    LinearPowerModel,
    extract_features,
    load_scorer,
)


def test_extract_features_uses_fixed_order() -> None:
    sample = TelemetrySample(
        id="s",
        recorded_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        temperature=30.0,
        humidity=40.0,
        dust_density=12.0,
        light_percent=75.0,
        power=10.0,
    )

    assert extract_features(sample) == [30.0, 40.0, 12.0, 75.0]


def test_extract_features_requires_every_feature() -> None:
    sample = TelemetrySample(id="s", recorded_at=datetime(2024, 1, 1, tzinfo=timezone.utc), temperature=30.0)

    with pytest.raises(ScoringError):
        extract_features(sample)


def test_linear_model_scores_features() -> None:
    model = LinearPowerModel(intercept=1.0, coefficients=(0.0, 0.0, -0.1, 0.2))

    assert model([25.0, 50.0, 10.0, 50.0]) == pytest.approx(10.0)


def test_load_scorer_without_path_is_absent() -> None:
    scorer = load_scorer(None)

    assert isinstance(scorer, AbsentScorer)
    assert scorer.available is False
    with pytest.raises(ScoringError):
        asyncio.run(scorer.predict([1.0, 2.0, 3.0, 4.0]))


def test_load_scorer_reads_model_file(tmp_path) -> None:
    path = tmp_path / "model.json"
    path.write_text(json.dumps({"intercept": 2.0, "coefficients": [0, 0, 0, 0.1]}))

    scorer = load_scorer(str(path), timeout=1.0)

    assert scorer.available is True
    assert asyncio.run(scorer.predict([20.0, 30.0, 5.0, 80.0])) == pytest.approx(10.0)


def test_load_scorer_with_bad_model_degrades(tmp_path) -> None:
    path = tmp_path / "model.json"
    path.write_text(json.dumps({"intercept": 2.0, "coefficients": [1.0]}))

    assert isinstance(load_scorer(str(path)), AbsentScorer)
    assert isinstance(load_scorer(str(tmp_path / "missing.json")), AbsentScorer)


def test_callable_scorer_wraps_failures() -> None:
    def explode(features):
        raise RuntimeError("boom")

    with pytest.raises(ScoringError):
        asyncio.run(CallableScorer(explode).predict([1.0]))
    with pytest.raises(ScoringError):
        asyncio.run(CallableScorer(lambda features: float("nan")).predict([1.0]))
    with pytest.raises(ScoringError):
        asyncio.run(CallableScorer(lambda features: "high").predict([1.0]))


def test_callable_scorer_times_out() -> None:
    def slow(features):
        time.sleep(0.5)
        return 1.0

    with pytest.raises(ScoringError):
        asyncio.run(CallableScorer(slow, timeout=0.05).predict([1.0]))
