"""Threshold and model-based alert evaluation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple, Union

from app.schemas import AlertCandidate, AlertKind, AlertSeverity, TelemetrySample
from services.cooldown import CooldownRegistry
from services.errors import ScoringError
from services.humanize import FallbackHumanizer, fallback_message
from services.scoring import AbsentScorer, Scorer, extract_features
from settings import Settings

logger = logging.getLogger(__name__)

Context = Dict[str, Union[float, str]]


@dataclass(frozen=True)
class AlertThresholds:
    dust: float = 100.0
    low_power: float = 5.0
    daylight: float = 40.0
    overheat: float = 60.0
    efficiency_drop_abs: float = 2.0
    efficiency_drop_pct: float = 25.0
    critical_factor: float = 1.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertThresholds":
        return cls(
            dust=settings.dust_threshold,
            low_power=settings.low_power_threshold,
            daylight=settings.daylight_threshold,
            overheat=settings.overheat_threshold,
            efficiency_drop_abs=settings.efficiency_drop_abs_threshold,
            efficiency_drop_pct=settings.efficiency_drop_pct_threshold,
            critical_factor=settings.critical_factor,
        )


@dataclass(frozen=True)
class Finding:
    """A rule that fired, before admission and message formatting."""

    kind: AlertKind
    severity: AlertSeverity
    context: Context = field(default_factory=dict)


class Rule(Protocol):
    kind: AlertKind

    async def evaluate(self, sample: TelemetrySample) -> Optional[Finding]: ...


def _severity(critical: bool) -> AlertSeverity:
    return AlertSeverity.CRITICAL if critical else AlertSeverity.WARNING


class DustRule:
    kind = AlertKind.DUST

    def __init__(self, thresholds: AlertThresholds) -> None:
        self.threshold = thresholds.dust
        self.critical_factor = thresholds.critical_factor

    async def evaluate(self, sample: TelemetrySample) -> Optional[Finding]:
        density = sample.dust_density
        if density is None or density <= self.threshold:
            return None
        return Finding(
            kind=self.kind,
            severity=_severity(density > self.threshold * self.critical_factor),
            context={"dustDensity": density, "threshold": self.threshold},
        )


class LowPowerRule:
    """Daylight is present but the panel produces abnormally little power."""

    kind = AlertKind.LOW_POWER

    def __init__(self, thresholds: AlertThresholds) -> None:
        self.threshold = thresholds.low_power
        self.daylight = thresholds.daylight
        self.critical_factor = thresholds.critical_factor

    async def evaluate(self, sample: TelemetrySample) -> Optional[Finding]:
        power = sample.power
        light = sample.light_percent
        if power is None or light is None:
            return None
        if power >= self.threshold or light <= self.daylight:
            return None
        return Finding(
            kind=self.kind,
            severity=_severity(power < self.threshold / self.critical_factor),
            context={"power": power, "lightPercent": light, "threshold": self.threshold},
        )


class OverheatRule:
    kind = AlertKind.OVERHEAT

    def __init__(self, thresholds: AlertThresholds) -> None:
        self.threshold = thresholds.overheat
        self.critical_factor = thresholds.critical_factor

    async def evaluate(self, sample: TelemetrySample) -> Optional[Finding]:
        temperature = sample.temperature
        if temperature is None or temperature <= self.threshold:
            return None
        critical = self.threshold > 0 and temperature > self.threshold * self.critical_factor
        return Finding(
            kind=self.kind,
            severity=_severity(critical),
            context={"temperature": temperature, "threshold": self.threshold},
        )


class EfficiencyDropRule:
    """Compares measured power against the scorer's expected power."""

    kind = AlertKind.EFFICIENCY_DROP

    def __init__(self, thresholds: AlertThresholds, scorer: Scorer) -> None:
        self.abs_threshold = thresholds.efficiency_drop_abs
        self.pct_threshold = thresholds.efficiency_drop_pct
        self.critical_factor = thresholds.critical_factor
        self.scorer = scorer

    async def evaluate(self, sample: TelemetrySample) -> Optional[Finding]:
        if sample.power is None:
            return None
        try:
            predicted = await self.scorer.predict(extract_features(sample))
        except ScoringError as exc:
            logger.debug(
                "No power prediction for sample",
                extra={"sample_id": sample.id, "reason": str(exc)},
            )
            return None

        if predicted <= 0:
            return None
        drop = predicted - sample.power
        drop_pct = drop / predicted * 100.0
        if drop <= self.abs_threshold or drop_pct <= self.pct_threshold:
            return None
        return Finding(
            kind=self.kind,
            severity=_severity(drop_pct > self.pct_threshold * self.critical_factor),
            context={
                "power": sample.power,
                "predictedPower": round(predicted, 3),
                "dropPercent": round(drop_pct, 1),
            },
        )


def build_rules(thresholds: AlertThresholds, scorer: Scorer) -> Tuple[Rule, ...]:
    rules: List[Rule] = [DustRule(thresholds), LowPowerRule(thresholds), OverheatRule(thresholds)]
    if scorer.available:
        rules.append(EfficiencyDropRule(thresholds, scorer))
    return tuple(rules)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertEngine:
    """Evaluates every rule for a sample and returns the admitted alerts."""

    def __init__(
        self,
        thresholds: AlertThresholds,
        cooldowns: CooldownRegistry,
        scorer: Optional[Scorer] = None,
        humanizer: Optional[FallbackHumanizer] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.thresholds = thresholds
        self.cooldowns = cooldowns
        self.scorer = scorer or AbsentScorer()
        self.humanizer = humanizer or FallbackHumanizer()
        self.rules = build_rules(thresholds, self.scorer)
        self._clock = clock

    async def evaluate(self, sample: TelemetrySample) -> List[AlertCandidate]:
        admitted: List[AlertCandidate] = []
        for rule in self.rules:
            finding = await rule.evaluate(sample)
            if finding is None:
                continue

            now = self._clock()
            if not self.cooldowns.admit(finding.kind, now):
                logger.debug(
                    "Alert suppressed by cooldown",
                    extra={"sample_id": sample.id, "alert_kind": finding.kind.value},
                )
                continue

            try:
                message = await self.humanizer.humanize(finding.kind, finding.context)
            except Exception:  # noqa: BLE001 - an admitted alert is always emitted
                logger.exception(
                    "Humanizer failed; using template text",
                    extra={"sample_id": sample.id, "alert_kind": finding.kind.value},
                )
                message = fallback_message(finding.kind, finding.context)
            candidate = AlertCandidate(
                kind=finding.kind,
                severity=finding.severity,
                message=message,
                context=finding.context,
                generated_at=now,
            )
            logger.info(
                "Alert raised: %s",
                message,
                extra={
                    "sample_id": sample.id,
                    "alert_kind": finding.kind.value,
                    "severity": finding.severity.value,
                },
            )
            admitted.append(candidate)
        return admitted
