"""Humanized typing-duration heuristics."""

from __future__ import annotations

from wahook.config.defaults import (
    COMPLEXITY_MULTIPLIERS,
    DEFAULT_PRESENCE,
    MESSAGE_TYPE_ADJUSTMENTS,
    URGENCY_MULTIPLIERS,
)
from wahook.core.models import TypingContext

ERROR_MESSAGE_TYPE = "error"


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def compute_typing_duration(
    text: str,
    context: TypingContext | None = None,
    *,
    floor_ms: int = int(DEFAULT_PRESENCE["floor_ms"]),
    ms_per_char: int = int(DEFAULT_PRESENCE["ms_per_char"]),
    min_ms: int = int(DEFAULT_PRESENCE["min_ms"]),
    max_ms: int = int(DEFAULT_PRESENCE["max_ms"]),
) -> int:
    """Return how long (ms) a human would plausibly type ``text``.

    Base is ``max(floor_ms, len(text) * ms_per_char)``, then adjusted by the
    message type, complexity and urgency hints, then clamped to
    ``[min_ms, max_ms]``. An ``error`` message type always yields ``min_ms``.
    Unknown hint values leave the duration unchanged.
    """
    context = context or TypingContext()
    message_type = _norm(context.message_type)
    if message_type == ERROR_MESSAGE_TYPE:
        return min_ms

    duration = float(max(floor_ms, len(text or "") * ms_per_char))

    multiplier, additive = MESSAGE_TYPE_ADJUSTMENTS.get(message_type, (1.0, 0))
    duration = duration * multiplier + additive
    duration *= COMPLEXITY_MULTIPLIERS.get(_norm(context.complexity), 1.0)
    duration *= URGENCY_MULTIPLIERS.get(_norm(context.urgency), 1.0)

    return max(min_ms, min(max_ms, int(round(duration))))
