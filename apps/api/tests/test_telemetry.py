from app.core import telemetry
from app.core.config import settings


def test_parse_headers():
    assert telemetry._parse_headers("") == {}
    assert telemetry._parse_headers("a=1, b = two ,broken") == {"a": "1", "b": "two"}


def test_signal_endpoint():
    assert telemetry._signal_endpoint("http://collector:4318", "traces") == "http://collector:4318/v1/traces"
    assert (
        telemetry._signal_endpoint("http://collector:4318/v1/traces", "metrics")
        == "http://collector:4318/v1/metrics"
    )


def test_configure_telemetry_disabled(monkeypatch):
    monkeypatch.setattr(settings, "OTEL_ENABLED", False)

    assert telemetry.configure_telemetry(object(), object()) is False
