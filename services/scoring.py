"""Optional expected-power scoring used by the efficiency-drop rule."""

from __future__ import annotations

import asyncio
import json
import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from app.schemas import TelemetrySample
from services.errors import ScoringError

logger = logging.getLogger(__name__)

# Order of the feature vector handed to score functions.
FEATURE_ORDER: Tuple[str, ...] = ("temperature", "humidity", "dust_density", "light_percent")

ScoreFunction = Callable[[List[float]], float]


def extract_features(sample: TelemetrySample) -> List[float]:
    features: List[float] = []
    for name in FEATURE_ORDER:
        value = getattr(sample, name)
        if value is None:
            raise ScoringError(f"Sample {sample.id} has no {name}; cannot score.")
        features.append(float(value))
    return features


class Scorer:
    """Capability interface; ``available`` is fixed for the scorer's lifetime."""

    available: bool = False

    async def predict(self, features: Sequence[float]) -> float:
        raise ScoringError("No scorer configured.")


class AbsentScorer(Scorer):
    available = False


class CallableScorer(Scorer):
    """Runs a synchronous score function on a worker thread with a timeout."""

    available = True

    def __init__(
        self,
        score: ScoreFunction,
        timeout: float = 2.0,
        executor: Optional[Executor] = None,
    ) -> None:
        self._score = score
        self.timeout = timeout
        self.executor = executor

    async def predict(self, features: Sequence[float]) -> float:
        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(self.executor, self._score, list(features)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ScoringError(f"Scorer did not answer within {self.timeout}s.") from exc
        except ScoringError:
            raise
        except Exception as exc:  # noqa: BLE001 - any scorer failure means "no prediction"
            raise ScoringError(f"Scorer failed: {exc}") from exc

        try:
            prediction = float(result)
        except (TypeError, ValueError) as exc:
            raise ScoringError(f"Scorer returned a non-numeric value: {result!r}") from exc
        if not math.isfinite(prediction):
            raise ScoringError("Scorer returned a non-finite prediction.")
        return prediction


@dataclass(frozen=True)
class LinearPowerModel:
    """Expected power as ``intercept + sum(coefficients * features)``."""

    intercept: float
    coefficients: Tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.coefficients) != len(FEATURE_ORDER):
            raise ValueError(
                f"Expected {len(FEATURE_ORDER)} coefficients, got {len(self.coefficients)}."
            )

    def __call__(self, features: List[float]) -> float:
        return self.intercept + sum(c * f for c, f in zip(self.coefficients, features))

    @classmethod
    def from_file(cls, path: Path) -> "LinearPowerModel":
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            intercept=float(data["intercept"]),
            coefficients=tuple(float(value) for value in data["coefficients"]),
        )


def load_scorer(
    model_path: Optional[str],
    timeout: float = 2.0,
    executor: Optional[Executor] = None,
) -> Scorer:
    """Pick the scorer variant once at startup."""
    if not model_path:
        return AbsentScorer()
    try:
        model = LinearPowerModel.from_file(Path(model_path))
    except (OSError, ValueError, KeyError, TypeError) as exc:
        logger.warning(
            "Power model %s could not be loaded; efficiency alerts disabled",
            model_path,
            extra={"reason": str(exc)},
        )
        return AbsentScorer()
    logger.info("Loaded power model from %s", model_path)
    return CallableScorer(model, timeout=timeout, executor=executor)
