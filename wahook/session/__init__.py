"""Session lifecycle management."""

from wahook.session.controller import SessionController, SessionEvent, SessionEventType

__all__ = ["SessionController", "SessionEvent", "SessionEventType"]
