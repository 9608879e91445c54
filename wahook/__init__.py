"""wahook - webhook gateway for a WhatsApp account behind a browser bridge."""

__version__ = "0.1.0"
__logo__ = "📨"
