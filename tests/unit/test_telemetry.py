import logging

from loadwise.telemetry import (
    ResolutionEvent,
    get_telemetry_sink,
    log_resolution_event,
    queue_resolution_event,
)


def _event():
    return ResolutionEvent(
        exercise_id="ex-1", gym_id="gym-1", implement="barbell", source="gym",
        desired_kg=61.0, resolved_kg=60.0, residual_kg=1.0,
    )


def test_sink_defaults_to_log(monkeypatch):
    monkeypatch.delenv("LOADWISE_TELEMETRY", raising=False)
    assert get_telemetry_sink() is log_resolution_event

def test_sink_from_environment(monkeypatch):
    monkeypatch.setenv("LOADWISE_TELEMETRY", "queue")
    assert get_telemetry_sink() is queue_resolution_event
    monkeypatch.setenv("LOADWISE_TELEMETRY", " OFF ")
    assert get_telemetry_sink() is None

def test_explicit_mode_wins_over_environment(monkeypatch):
    monkeypatch.setenv("LOADWISE_TELEMETRY", "off")
    assert get_telemetry_sink("log") is log_resolution_event

def test_unknown_mode_falls_back_to_log(caplog):
    with caplog.at_level(logging.WARNING, logger="loadwise.telemetry"):
        assert get_telemetry_sink("kafka") is log_resolution_event
    assert "Unknown telemetry mode 'kafka'" in caplog.text

def test_log_sink_writes_one_line(caplog):
    with caplog.at_level(logging.INFO, logger="loadwise.telemetry"):
        log_resolution_event(_event())
    assert len(caplog.records) == 1
    assert "ex-1: 61.0kg -> 60.0kg" in caplog.text
    assert "source=gym" in caplog.text

def test_event_serializes_timestamp():
    data = _event().to_dict()
    assert data["resolved_kg"] == 60.0
    assert isinstance(data["created_at"], str)
    assert data["created_at"].endswith("+00:00")
