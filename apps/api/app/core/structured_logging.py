"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    org_id: int | str | None = None,
    org_member_id: int | str | None = None,
    convo_public_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict suitable for ``extra=``.

    Only identifiers are accepted; message bodies and email addresses never
    belong in log records.
    """
    context: dict[str, Any] = {}
    if org_id is not None:
        context["org_id"] = org_id
    if org_member_id is not None:
        context["org_member_id"] = org_member_id
    if convo_public_id:
        context["convo_public_id"] = convo_public_id
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
