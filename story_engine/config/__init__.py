"""Configuration loading and schema."""

from story_engine.config.loader import load_config
from story_engine.config.schema import AppConfig, AppConfigRoot

__all__ = ["AppConfig", "AppConfigRoot", "load_config"]
