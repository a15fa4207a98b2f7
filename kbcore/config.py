"""Configuration management for kbcore."""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import pydantic
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

from .errors import ConfigurationError


class StorageConfig(BaseModel):
    """Document store configuration."""

    backend: str = "json"
    path: str = "kbcore_data.json"
    retry_attempts: int = Field(default=3, ge=1)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("json", "memory"):
            raise ValueError(f"Unknown storage backend: {v}")
        return v


class EnrichmentConfig(BaseModel):
    """External knowledge lookup configuration."""

    enabled: bool = False
    base_url: str = "https://www.wikidata.org/w/api.php"
    language: str = "en"
    timeout: float = Field(default=10.0, gt=0)
    user_agent: str = "kbcore/0.1 (entity enrichment)"
    cache_size: int = Field(default=1000, ge=0)


class AnalysisConfig(BaseModel):
    """Cross-reference analysis configuration."""

    default_top_k: int = Field(default=10, ge=1)
    cache_ttl: int = Field(default=3600, ge=0)
    cache_max_size: int = Field(default=1000, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}")
        return v


class Config(BaseModel):
    """Complete configuration model."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Manages configuration loading and validation."""

    DEFAULT_CONFIG = {
        "storage": {
            "backend": "json",
            "path": "kbcore_data.json",
            "retry_attempts": 3,
        },
        "enrichment": {
            "enabled": False,
            "base_url": "https://www.wikidata.org/w/api.php",
            "language": "en",
            "timeout": 10.0,
        },
        "analysis": {
            "default_top_k": 10,
            "cache_ttl": 3600,
            "cache_max_size": 1000,
        },
        "logging": {
            "level": "INFO",
            "format": "json",
        },
    }

    # env var -> (section, key, parser)
    ENV_OVERRIDES = {
        "KBCORE_STORAGE_BACKEND": ("storage", "backend", str),
        "KBCORE_STORAGE_PATH": ("storage", "path", str),
        "KBCORE_ENRICHMENT_ENABLED": ("enrichment", "enabled", "bool"),
        "KBCORE_ENRICHMENT_TIMEOUT": ("enrichment", "timeout", float),
        "KBCORE_ENRICHMENT_LANGUAGE": ("enrichment", "language", str),
        "KBCORE_ANALYSIS_CACHE_TTL": ("analysis", "cache_ttl", int),
        "KBCORE_ANALYSIS_TOP_K": ("analysis", "default_top_k", int),
        "KBCORE_LOG_LEVEL": ("logging", "level", str),
        "KBCORE_LOG_FORMAT": ("logging", "format", str),
        "KBCORE_LOG_FILE": ("logging", "file", str),
    }

    def __init__(self, config_path: Optional[str] = None, load_env_file: bool = True):
        """Initialize config manager.

        Args:
            config_path: Path to a JSON config file. If None, uses defaults + env vars
            load_env_file: Whether to read a .env file before applying env overrides
        """
        self.config_path = Path(config_path) if config_path else None
        self.load_env_file = load_env_file
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from defaults, file and environment.

        Raises:
            ConfigurationError: If the file is unreadable or a value is invalid
        """
        if self._config:
            return self._config

        config_dict = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path:
            if not self.config_path.exists():
                raise ConfigurationError(
                    f"Config file not found: {self.config_path}",
                    config_key="config_path",
                )
            try:
                with open(self.config_path, "r") as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Invalid JSON in config file {self.config_path}: {e}",
                    config_key="config_path",
                ) from e
            config_dict = self._deep_merge(config_dict, file_config)

        if self.load_env_file:
            load_dotenv(find_dotenv(usecwd=True))

        config_dict = self._apply_env_overrides(config_dict)

        try:
            self._config = Config(**config_dict)
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(part) for part in first["loc"])
            raise ConfigurationError(
                f"Invalid configuration value for {key}: {first['msg']}",
                config_key=key,
            ) from e

        return self._config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply KBCORE_* environment variable overrides."""
        for env_key, (section, key, parser) in self.ENV_OVERRIDES.items():
            raw = os.getenv(env_key)
            if raw is None or raw == "":
                continue

            if parser == "bool":
                value: Any = raw.lower() in ("true", "1", "yes")
            else:
                try:
                    value = parser(raw)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Invalid value for {env_key}: {raw!r}",
                        config_key=f"{section}.{key}",
                    ) from e

            config.setdefault(section, {})[key] = value

        return config

    def save_template(self, path: str) -> None:
        """Save a configuration template file."""
        with open(path, "w") as f:
            json.dump(Config().model_dump(), f, indent=2)

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            self._config = self.load()
        return self._config
