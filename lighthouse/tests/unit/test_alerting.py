from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from lighthouse.services.monitoring.alerting import (
    AlertType,
    is_status_up,
    should_trigger_alert,
)


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("status", "expected"),
    [(None, True), (200, True), (204, True), (299, True), (0, False), (301, False), (404, False), (503, False)],
)
def test_is_status_up(status: int | None, expected: bool) -> None:
    assert is_status_up(status) is expected


def test_first_probe_failing_fires_down() -> None:
    decision = should_trigger_alert(None, 500, None, now=NOW)
    assert decision.fire is True
    assert decision.alert_type is AlertType.DOWN


def test_first_probe_succeeding_is_silent() -> None:
    assert should_trigger_alert(None, 200, None, now=NOW).fire is False


def test_transitions() -> None:
    assert should_trigger_alert(200, 500, None, now=NOW).alert_type is AlertType.DOWN
    assert should_trigger_alert(500, 200, None, now=NOW).alert_type is AlertType.RECOVERY
    assert should_trigger_alert(200, 0, None, now=NOW).alert_type is AlertType.DOWN
    assert should_trigger_alert(500, 503, None, now=NOW).fire is False
    assert should_trigger_alert(200, 201, None, now=NOW).fire is False


def test_suppression_window() -> None:
    recent = NOW - timedelta(minutes=5)
    suppressed = should_trigger_alert(200, 500, recent, now=NOW)
    assert suppressed.fire is False
    assert suppressed.suppressed is True

    elapsed = NOW - timedelta(minutes=15)
    fired = should_trigger_alert(200, 500, elapsed, now=NOW)
    assert fired.fire is True
    assert fired.alert_type is AlertType.DOWN


def test_no_transition_is_not_reported_as_suppressed() -> None:
    decision = should_trigger_alert(500, 500, NOW - timedelta(minutes=1), now=NOW)
    assert decision.fire is False
    assert decision.suppressed is False


def test_custom_suppression_window() -> None:
    last = NOW - timedelta(minutes=2)
    decision = should_trigger_alert(500, 200, last, now=NOW, suppression_window=timedelta(minutes=1))
    assert decision.alert_type is AlertType.RECOVERY
