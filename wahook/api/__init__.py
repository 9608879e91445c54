"""Inbound HTTP API."""
