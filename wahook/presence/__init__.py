"""Presence simulation: typing-duration heuristics and auto-clear scheduling."""

from wahook.presence.scheduler import PresenceScheduler
from wahook.presence.timing import compute_typing_duration

__all__ = ["PresenceScheduler", "compute_typing_duration"]
