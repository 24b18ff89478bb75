"""Configuration module for personaforge."""

from personaforge.config.loader import get_config_path, load_config, save_config
from personaforge.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
