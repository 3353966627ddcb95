"""Tests for structured logging helpers."""

from app.core.structured_logging import build_log_context


def test_build_log_context_includes_only_provided_fields():
    context = build_log_context(
        correlation_id="run-1",
        trigger="manual",
        appid="A1",
        page=2,
        route="/licenses/sync",
        method="POST",
    )

    assert context == {
        "correlation_id": "run-1",
        "trigger": "manual",
        "appid": "A1",
        "page": 2,
        "route": "/licenses/sync",
        "method": "POST",
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(
        correlation_id="",
        run_id=None,
        appid="A1",
    )

    assert context == {"appid": "A1"}


def test_build_log_context_keeps_page_zero():
    assert build_log_context(page=0) == {"page": 0}
