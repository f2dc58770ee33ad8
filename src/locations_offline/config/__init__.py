from __future__ import annotations

from locations_offline.config.loader import YamlConfigLoader
from locations_offline.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
