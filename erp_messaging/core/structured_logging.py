"""Structured logging helpers (message bodies are never included)."""

import uuid
from typing import Any


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def build_log_context(
    *,
    empid: str | None = None,
    company_id: int | None = None,
    correlation_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a body-free log context dict."""
    context: dict[str, Any] = {}
    if empid:
        context["empid"] = empid
    if company_id:
        context["company_id"] = company_id
    if correlation_id:
        context["correlation_id"] = correlation_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
