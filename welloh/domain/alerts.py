"""Pure evaluation of one-shot metric alerts against an analysis."""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from .models import Alert, AlertCondition
from .parsing import parse_metric_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggeredAlert:
    alert: Alert
    display_value: str
    value: float

    def to_dict(self):
        data = self.alert.to_dict()
        data["triggered_value"] = self.display_value
        return data


@dataclass
class AlertEvaluation:
    triggered: List[TriggeredAlert] = field(default_factory=list)
    remaining: List[Alert] = field(default_factory=list)


def _metric_field(metric: Any, name: str) -> Optional[Any]:
    if isinstance(metric, dict):
        return metric.get(name)
    return getattr(metric, name, None)


def condition_met(condition: AlertCondition, value: float, threshold: float) -> bool:
    if condition == AlertCondition.GT:
        return value > threshold
    if condition == AlertCondition.LT:
        return value < threshold
    return False


def evaluate(alerts: Iterable[Alert], metrics: Iterable[Any]) -> AlertEvaluation:
    """
    Check active alerts against analysis metrics.

    Metrics are objects or dicts with ``label`` and ``value`` (display string).
    Each alert fires at most once and is excluded from ``remaining``;
    metrics whose value is not numeric are skipped.
    """
    active = list(alerts)
    fired_ids = set()
    triggered: List[TriggeredAlert] = []

    for metric in metrics:
        label = _metric_field(metric, "label")
        display = _metric_field(metric, "value")
        value = parse_metric_value(display)
        if value is None:
            continue

        for alert in active:
            if alert.id in fired_ids or alert.metric_label != label:
                continue
            if condition_met(alert.condition, value, alert.threshold):
                fired_ids.add(alert.id)
                triggered.append(TriggeredAlert(alert=alert, display_value=str(display), value=value))
                logger.info(
                    "Alert %s fired: %s %s %s (value %s)",
                    alert.id, label, alert.condition.value, alert.threshold, display,
                )

    remaining = [a for a in active if a.id not in fired_ids]
    return AlertEvaluation(triggered=triggered, remaining=remaining)
