"""
Configuration loader for lexisync.

This module provides configuration management with:
- Multiple configuration sources (JSON/YAML/TOML files, env vars, dicts)
- Schema validation
- Type coercion
- Configuration merging by priority
- Hot reloading
"""

import os
import json
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union, Callable
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict
from watchdog.observers import Observer
from watchdog.events import FileSystemEvent, FileSystemEventHandler
import asyncio

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("lexisync.config")


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ApiConfig(BaseModel):
    """Remote translation service configuration."""
    base_url: str = "https://api.lexisync.dev/api/v1"
    website_url: str = "https://lexisync.dev"
    timeout: float = 30.0
    user_agent: str = "lexisync/0.1"
    max_upload_bytes: int = 100 * 1024 * 1024  # 100MB

    @field_validator('base_url', 'website_url')
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


class SyncSettings(BaseModel):
    """Synchronization policy."""
    check_update_on_start: bool = True
    auto_download: bool = False
    notify_updates: bool = True
    merge_strategy: str = "ask"
    ignored_lineages: List[str] = Field(default_factory=list)

    @field_validator('merge_strategy')
    @classmethod
    def validate_strategy(cls, v):
        if v not in ("ask", "keep_local", "take_remote"):
            raise ValueError(f"Invalid merge strategy: {v}")
        return v


class ProjectConfig(BaseModel):
    """Metadata sent with uploads."""
    game_name: Optional[str] = None
    steam_id: Optional[str] = None
    source_language: str = "en"
    target_language: str = "fr"
    type: str = "ai"
    status: str = "in_progress"
    notes: Optional[str] = None


class LiveUpdateConfig(BaseModel):
    """Live update channel configuration."""
    enabled: bool = True
    base_delay: float = 3.0
    max_delay: float = 30.0
    heartbeat_timeout: float = 60.0

    @field_validator('base_delay', 'max_delay', 'heartbeat_timeout')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v


class StorageConfig(BaseModel):
    """Local storage configuration."""
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".lexisync")
    map_file: str = "translations.json"

    @field_validator('data_dir')
    @classmethod
    def validate_path(cls, v):
        return Path(v).expanduser().absolute()

    @property
    def map_path(self) -> Path:
        return self.data_dir / self.map_file

    @property
    def token_path(self) -> Path:
        return self.data_dir / "token"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".lexisync" / "logs")
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class LexisyncConfig(BaseModel):
    """Main lexisync configuration."""
    app_name: str = "lexisync"
    debug: bool = False

    api: ApiConfig = Field(default_factory=ApiConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    live: LiveUpdateConfig = Field(default_factory=LiveUpdateConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    enable_hot_reload: bool = False

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )


class ConfigLoader:
    """Configuration loader with multiple source support."""

    ENV_PREFIX = "LEXISYNC_"

    def __init__(self):
        self._sources: List[ConfigSource] = []
        self._config: Optional[LexisyncConfig] = None
        self._observers: List[Observer] = []
        self._callbacks: List[Callable[[LexisyncConfig], None]] = []
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        # Lowest priority first so later merges override
        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    async def load(self) -> LexisyncConfig:
        """
        Load configuration from all sources.

        Returns:
            Merged configuration
        """
        async with self._lock:
            config = self._build()

            if config.enable_hot_reload and not self._observers:
                self._loop = asyncio.get_running_loop()
                self._setup_hot_reload()

            return config

    def load_sync(self) -> LexisyncConfig:
        """Load configuration without an event loop (no hot reload)."""
        return self._build()

    def _build(self) -> LexisyncConfig:
        merged_data: Dict[str, Any] = {}

        for source in self._sources:
            try:
                data = self._load_source(source)
            except (OSError, ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
                logger.error(
                    "failed_to_load_source",
                    source=str(source.path or "dict"),
                    error=str(e)
                )
                raise ConfigurationError(
                    f"Failed to load {source.path or 'dict source'}: {e}", cause=e
                ) from e
            merged_data = self._deep_merge(merged_data, data)

        merged_data = self._deep_merge(merged_data, self._load_env_vars())

        try:
            self._config = LexisyncConfig(**merged_data)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field = ".".join(str(x) for x in error["loc"])
                errors.append(f"{field}: {error['msg']}")

            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}"
            ) from e

        logger.info("configuration_loaded", sources=len(self._sources))
        return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text(encoding="utf-8")

        if source.source_type == "json":
            return json.loads(content)
        elif source.source_type == "yaml":
            return yaml.safe_load(content) or {}
        elif source.source_type == "toml":
            return toml.loads(content)
        raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _load_env_vars(self) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        ``LEXISYNC_SYNC__AUTO_DOWNLOAD=true`` maps to ``sync.auto_download``;
        a double underscore separates nesting levels.
        """
        result: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue

            parts = key[len(self.ENV_PREFIX):].lower().split("__")
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if "," in value:
            return [v.strip() for v in value.split(",")]

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _setup_hot_reload(self) -> None:
        for source in self._sources:
            if source.path and source.path.exists():
                observer = Observer()
                handler = ConfigFileHandler(self, source.path)
                observer.schedule(handler, str(source.path.parent), recursive=False)
                observer.start()
                self._observers.append(observer)

                logger.info("hot_reload_enabled", path=str(source.path))

    def register_callback(self, callback: Callable[[LexisyncConfig], None]) -> None:
        """Register configuration change callback."""
        self._callbacks.append(callback)

    async def _reload(self) -> None:
        logger.info("reloading_configuration")

        old_config = self._config
        try:
            async with self._lock:
                new_config = self._build()
        except ConfigurationError as e:
            logger.error("reload_failed", error=str(e))
            return

        if old_config == new_config:
            return

        for callback in self._callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(new_config)
                else:
                    callback(new_config)
            except Exception as e:
                logger.error(
                    "callback_error",
                    callback=getattr(callback, "__name__", repr(callback)),
                    error=str(e)
                )

    def schedule_reload(self) -> None:
        """Schedule a reload on the loader's event loop. Safe from any thread."""
        if self._loop is None or self._loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self._reload(), self._loop)

    def get_config(self) -> LexisyncConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config

    def shutdown(self) -> None:
        """Stop file watchers."""
        for observer in self._observers:
            observer.stop()
            observer.join()
        self._observers.clear()


class ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for configuration files."""

    def __init__(self, loader: ConfigLoader, path: Path):
        self.loader = loader
        self.path = path.resolve()

    def _matches(self, path: str) -> bool:
        return Path(path).resolve() == self.path

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            logger.info("config_file_modified", path=event.src_path)
            # watchdog calls us from its own thread
            self.loader.schedule_reload()

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors that save through a temporary file and rename
        if not event.is_directory and self._matches(event.dest_path):
            logger.info("config_file_replaced", path=event.dest_path)
            self.loader.schedule_reload()


def default_config_paths() -> List[Path]:
    """Standard configuration locations, lowest priority first."""
    return [
        Path.home() / ".lexisync" / "config.yaml",
        Path.home() / ".lexisync" / "config.json",
        Path.home() / ".lexisync" / "config.toml",
        Path("./lexisync.yaml"),
        Path("./lexisync.json"),
    ]


def build_loader(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None
) -> ConfigLoader:
    """
    Create a loader with the standard locations plus user-specified sources.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge with highest priority
    """
    loader = ConfigLoader()

    for path in default_config_paths():
        if path.exists():
            loader.add_source(path, priority=10)

    for i, path in enumerate(config_paths or []):
        loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return loader


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None
) -> LexisyncConfig:
    """Load configuration from standard locations."""
    return build_loader(config_paths, extra_config).load_sync()


__all__ = [
    'LexisyncConfig',
    'ApiConfig',
    'SyncSettings',
    'ProjectConfig',
    'LiveUpdateConfig',
    'StorageConfig',
    'LoggingConfig',
    'ConfigLoader',
    'build_loader',
    'load_config',
    'default_config_paths',
]
