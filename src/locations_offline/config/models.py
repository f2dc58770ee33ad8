from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict


class AppSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "locations-offline"


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    rotation: FileRotationSettings


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str
    file: FileLoggingSettings


class ServerSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "127.0.0.1"
    port: int = 8080
    upstream_base_url: str
    # Control endpoints (messages, websocket, manual sync) live under this path.
    control_prefix: str = "/__agent"


class NetworkSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: float = 30.0
    connectivity_probe_path: str = "/api/health"
    probe_interval_seconds: float = 15.0


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    root_dir: str = "data/cache"
    version: str = "v1.0.0"
    static_assets: Sequence[str] = ()
    # Static asset entries containing this marker are never pre-cached.
    placeholder_marker: str = "YOUR_API_KEY"


class RoutingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    api_prefix: str = "/api/"
    photo_upload_path: str = "/api/photos/upload"
    static_path_segments: Sequence[str] = ("/css/", "/js/modules/", "/js/utils/")
    photo_path_segments: Sequence[str] = ("/photos/", "/uploads/")
    # API collections that get an empty-but-well-formed payload when offline.
    offline_collections: Sequence[str] = ("locations", "photos")


class QueueSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    dir: str = "data/upload-queue"
    sync_tag: str = "photo-upload-sync"
    # 0 disables the dead-letter limit.
    max_attempts: int = 10


class AppConfig(BaseModel):
    """
    Effective runtime configuration after applying all precedence rules.

    Precedence, lowest first: YAML file, then APP__ environment overrides.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    app: AppSettings = AppSettings()
    logging: LoggingSettings
    server: ServerSettings
    network: NetworkSettings = NetworkSettings()
    cache: CacheSettings = CacheSettings()
    routing: RoutingSettings = RoutingSettings()
    queue: QueueSettings = QueueSettings()


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "APP__"
    dotenv_path: Optional[str] = "data/.env"
