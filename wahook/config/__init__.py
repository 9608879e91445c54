"""Configuration module for wahook."""

from wahook.config.loader import get_config_path, load_config
from wahook.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
