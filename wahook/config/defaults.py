"""Centralized defaults for generated config files and timing heuristics."""

from __future__ import annotations

from typing import Any

DEFAULT_PRESENCE: dict[str, Any] = {
    "min_ms": 800,
    "max_ms": 6000,
    "floor_ms": 1000,
    "ms_per_char": 40,
    "default_typing_ms": 2000,
    "default_presence_ms": 3000,
    "max_message_delay_ms": 10000,
}

# messageType -> (multiplier, additive ms). "error" short-circuits to min_ms.
MESSAGE_TYPE_ADJUSTMENTS: dict[str, tuple[float, int]] = {
    "search": (1.0, 1500),
    "research": (1.0, 1500),
    "quick_response": (0.6, 0),
    "confirmation": (0.6, 0),
    "complex_analysis": (1.4, 0),
    "detailed_explanation": (1.4, 0),
}

COMPLEXITY_MULTIPLIERS: dict[str, float] = {
    "low": 1.0,
    "medium": 1.2,
    "high": 1.5,
}

URGENCY_MULTIPLIERS: dict[str, float] = {
    "low": 1.3,
    "normal": 1.0,
    "high": 0.7,
}

DEFAULT_SESSION: dict[str, Any] = {
    "auth_dir": "~/.wahook/session",
    "max_auth_attempts": 5,
    "reset_delay_ms": 5000,
    "reconnect_delay_ms": 10000,
}

DEFAULT_WEBHOOK: dict[str, Any] = {
    "timeout_s": 15.0,
    "min_timeout_s": 10.0,
    "max_timeout_s": 30.0,
    "secret_header": "x-webhook-secret",
    "confirmation_timeout_s": 30,
}

DEFAULT_BULK: dict[str, Any] = {
    "delay_between_ms": 3000,
    "typing_ms": 2000,
    "max_messages": 50,
}
