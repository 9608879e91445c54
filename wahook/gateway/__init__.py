"""Gateway facade."""

from wahook.gateway.facade import Gateway

__all__ = ["Gateway"]
