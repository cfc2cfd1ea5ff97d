"""Configuration module."""

from myamori.core.config.loader import load_config
from myamori.core.config.schema import Config

__all__ = ["Config", "load_config"]
