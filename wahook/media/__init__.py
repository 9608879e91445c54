"""Outbound media resolution."""
