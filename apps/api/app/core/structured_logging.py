"""Structured logging helpers.

Only identifiers go into the context; record payloads (business names,
emails, notes) are never logged.
"""

from typing import Any


def build_log_context(
    *,
    correlation_id: str | None = None,
    run_id: str | None = None,
    trigger: str | None = None,
    appid: str | None = None,
    page: int | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict for ``logger.x(..., extra=...)``."""
    context: dict[str, Any] = {}
    if correlation_id:
        context["correlation_id"] = correlation_id
    if run_id:
        context["run_id"] = run_id
    if trigger:
        context["trigger"] = trigger
    if appid:
        context["appid"] = appid
    if page is not None:
        context["page"] = page
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
