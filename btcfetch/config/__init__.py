"""Configuration module for btcfetch."""

from btcfetch.config.loader import load_config, get_config_path, save_config
from btcfetch.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path", "save_config"]
