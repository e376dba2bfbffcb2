"""Structured event helpers shared across the toolkit."""

from __future__ import annotations

import dataclasses
import enum
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("academy_console.events")

_MAX_VALUE_LENGTH = 200


def _shorten(text: str) -> Optional[str]:
    text = text.strip()
    if not text:
        return None
    if len(text) <= _MAX_VALUE_LENGTH:
        return text
    return text[:_MAX_VALUE_LENGTH] + "…"


def sanitize_context_value(value: Any) -> Any:
    """Return a log-friendly representation for *value*.

    Numbers and booleans pass through (floats rounded to 4 places), enums
    collapse to their value, dates and paths become strings, dataclasses and
    mappings are cleaned recursively, and sequences are joined.
    """

    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, enum.Enum):
        return sanitize_context_value(value.value)
    if isinstance(value, float):
        return round(value, 4)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    if isinstance(value, dict):
        return normalize_context(value)
    if isinstance(value, (list, tuple, set)):
        return _shorten(", ".join(str(item) for item in value))
    return _shorten(str(value))


def normalize_context(values: Optional[Dict[Any, Any]]) -> Dict[str, Any]:
    """Drop empty keys and values and sanitise the rest."""

    cleaned: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        if key is None or key == "":
            continue
        value = sanitize_context_value(raw_value)
        if value not in (None, ""):
            cleaned[str(key)] = value
    return cleaned


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log ``message`` tagged with ``event_type`` and flattened details."""

    base_message = str(message).strip()
    normalised_context = normalize_context(context)
    normalised_payload = normalize_context(payload)
    combined_details = {**normalised_context, **normalised_payload}
    if duration_ms is not None:
        combined_details["duration_ms"] = round(float(duration_ms), 3)
    details_text = ", ".join(f"{key}={value}" for key, value in combined_details.items())
    display_message = f"[{event_type}] {base_message}" if event_type else base_message
    log_message = f"{display_message} ({details_text})" if details_text else display_message
    extra: Dict[str, Any] = {
        "event_name": base_message,
        "event_type": event_type or "",
    }
    if normalised_context:
        extra["event_context"] = normalised_context
    if normalised_payload:
        extra["event_payload"] = normalised_payload
    logger.log(level, log_message, extra=extra)


def emit_db_event(
    action: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
) -> None:
    """Emit a structured database event."""

    emit_structured_event(
        "DB_QUERY",
        action,
        payload=payload,
        duration_ms=duration_ms,
        level=level,
    )


def emit_pricing_event(
    step: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.DEBUG,
) -> None:
    """Emit an event describing one step of a line-item recomputation."""

    emit_structured_event("PRICING", step, payload=payload, context=context, level=level)


def emit_wiki_event(
    operation: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.INFO,
) -> None:
    """Emit an event describing a wiki tree mutation."""

    emit_structured_event("WIKI_MOVE", operation, payload=payload, context=context, level=level)


def repository_event_emitter(event_type: str, message: str, **kwargs: Any) -> None:
    """Adapter matching the repository's ``configure_event_emitter`` contract."""

    if event_type == "DB_QUERY":
        emit_db_event(message, payload=kwargs.get("payload"), duration_ms=kwargs.get("duration_ms"))
    else:
        emit_structured_event(event_type, message, payload=kwargs.get("payload"))


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "emit_db_event",
    "emit_pricing_event",
    "emit_structured_event",
    "emit_wiki_event",
    "normalize_context",
    "repository_event_emitter",
    "sanitize_context_value",
]
