"""Tests for metric alert evaluation."""

import pytest

from welloh.domain.alerts import evaluate
from welloh.domain.models import Alert, AlertCondition
from welloh.domain.parsing import parse_metric_value


def alert(alert_id, label, condition, threshold):
    return Alert(id=alert_id, metric_label=label, condition=AlertCondition(condition), threshold=threshold)


class TestParseMetricValue:
    @pytest.mark.parametrize(
        "display,expected",
        [
            ("25.3", 25.3),
            ("2.5T USD", 2.5),
            ("+12%", 12.0),
            ("-3.2%", -3.2),
            ("1,234.5", 1234.5),
            (42, 42.0),
        ],
    )
    def test_numeric(self, display, expected):
        assert parse_metric_value(display) == pytest.approx(expected)

    @pytest.mark.parametrize("display", ["N/A", "", None, "--", "."])
    def test_non_numeric(self, display):
        assert parse_metric_value(display) is None


class TestEvaluate:
    def test_gt_triggers(self):
        result = evaluate([alert("a1", "P/E Ratio", "gt", 20)], [{"label": "P/E Ratio", "value": "25.3"}])
        assert [t.alert.id for t in result.triggered] == ["a1"]
        assert result.triggered[0].display_value == "25.3"
        assert result.remaining == []

    def test_lt_triggers(self):
        result = evaluate([alert("a1", "Dividend", "lt", 2)], [{"label": "Dividend", "value": "1.5%"}])
        assert len(result.triggered) == 1

    def test_threshold_is_strict(self):
        result = evaluate([alert("a1", "P/E Ratio", "gt", 25.3)], [{"label": "P/E Ratio", "value": "25.3"}])
        assert result.triggered == []
        assert [a.id for a in result.remaining] == ["a1"]

    def test_label_must_match(self):
        result = evaluate([alert("a1", "Beta", "gt", 0)], [{"label": "P/E Ratio", "value": "25"}])
        assert result.triggered == []

    def test_non_numeric_value_skipped(self):
        result = evaluate([alert("a1", "P/E Ratio", "gt", 0)], [{"label": "P/E Ratio", "value": "N/A"}])
        assert result.triggered == []
        assert len(result.remaining) == 1

    def test_alert_fires_once_for_duplicate_metrics(self):
        metrics = [{"label": "Beta", "value": "2"}, {"label": "Beta", "value": "3"}]
        result = evaluate([alert("a1", "Beta", "gt", 1)], metrics)
        assert len(result.triggered) == 1
        assert result.triggered[0].display_value == "2"

    def test_mixed_alerts(self):
        alerts = [
            alert("a1", "P/E Ratio", "gt", 20),
            alert("a2", "P/E Ratio", "lt", 10),
            alert("a3", "Market Cap", "gt", 1),
        ]
        metrics = [
            {"label": "P/E Ratio", "value": "25.3"},
            {"label": "Market Cap", "value": "2.5T USD"},
        ]
        result = evaluate(alerts, metrics)
        assert sorted(t.alert.id for t in result.triggered) == ["a1", "a3"]
        assert [a.id for a in result.remaining] == ["a2"]

    def test_accepts_metric_objects(self):
        class Metric:
            label = "Beta"
            value = "1.8"

        result = evaluate([alert("a1", "Beta", "gt", 1.5)], [Metric()])
        assert len(result.triggered) == 1
        assert result.triggered[0].to_dict()["triggered_value"] == "1.8"
