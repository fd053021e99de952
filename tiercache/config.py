"""Configuration management using Pydantic BaseSettings.

Settings can be passed as keyword arguments, read from ``CACHE_*``
environment variables (or a ``.env`` file), or translated from a flat
properties mapping that uses the dotted ``cache.*`` keys.
"""
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tiercache.errors import ConfigurationError


class ExpirationPolicy(str, Enum):
    """Global expiration policy applied by the tiered cache."""

    TIME_TO_LIVE = "time-to-live"
    TIME_TO_IDLE = "time-to-idle"
    NO_EXPIRY = "no_expiry"


class WriteTarget(str, Enum):
    """Tier that receives new entries when both tiers are enabled."""

    TOP = "top"
    BOTTOM = "bottom"


# Dotted property names and the settings fields they populate.
PROPERTY_FIELDS: Dict[str, str] = {
    "cache.tiers.memory": "memory_tier",
    "cache.tiers.filesystem": "filesystem_tier",
    "cache.size.in.memory.entries": "memory_entries",
    "cache.size.filesystem.bytes": "filesystem_bytes",
    "cache.filesystem.storage.path": "storage_path",
    "cache.expiration.policy": "expiration_policy",
    "cache.expiration.millis": "expiration_millis",
    "cache.tiers.put.to": "put_to",
}

_SWITCH_VALUES = {
    "enable": True,
    "enabled": True,
    "disable": False,
    "disabled": False,
}


class CacheConfig(BaseSettings):
    """Tiered cache settings."""

    memory_tier: bool = Field(True, description="Enable the in-memory tier (disabled when absent from a properties mapping)")
    filesystem_tier: bool = Field(False, description="Enable the filesystem tier")
    memory_entries: Optional[int] = Field(None, gt=0, description="Memory tier capacity in entries")
    filesystem_bytes: Optional[int] = Field(None, gt=0, description="Filesystem tier capacity in bytes")
    storage_path: Optional[Path] = Field(None, description="Existing directory for filesystem artifacts")
    expiration_policy: ExpirationPolicy = Field(ExpirationPolicy.NO_EXPIRY, description="Global expiration policy")
    expiration_millis: Optional[int] = Field(None, ge=0, description="TTL/TTI duration in milliseconds")
    put_to: WriteTarget = Field(WriteTarget.TOP, description="Write target when both tiers are enabled")

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("memory_tier", "filesystem_tier", mode="before")
    @classmethod
    def parse_tier_switch(cls, v):
        if isinstance(v, str):
            return _SWITCH_VALUES.get(v.strip().lower(), v)
        return v

    @field_validator("expiration_policy", "put_to", mode="before")
    @classmethod
    def normalize_choice(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def validate_tiers(self):
        if not self.memory_tier and not self.filesystem_tier:
            raise ValueError("At least one caching tier should be enabled!")

        if self.memory_tier and self.memory_entries is None:
            raise ValueError("cache.size.in.memory.entries is required when the memory tier is enabled")

        if self.filesystem_tier:
            if self.filesystem_bytes is None:
                raise ValueError("cache.size.filesystem.bytes is required when the filesystem tier is enabled")
            if self.storage_path is None:
                raise ValueError("Storage path can't be null!")
            if not self.storage_path.is_dir():
                raise ValueError(f"Cache storage path {self.storage_path} is not a directory!")

        if self.expires and self.expiration_millis is None:
            raise ValueError(
                f"cache.expiration.millis is required by the {self.expiration_policy.value} policy"
            )
        return self

    @property
    def expires(self) -> bool:
        """Whether new entries get a deadline from the global policy."""
        return self.expiration_policy in (
            ExpirationPolicy.TIME_TO_LIVE,
            ExpirationPolicy.TIME_TO_IDLE,
        )

    @classmethod
    def load(cls, **values: Any) -> "CacheConfig":
        """Build settings, reporting validation failures as ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(_describe_errors(e)) from e

    @classmethod
    def from_properties(cls, props: Mapping[str, Any]) -> "CacheConfig":
        """Build settings from a flat mapping of ``cache.*`` properties.

        Unknown keys are ignored and blank values count as unset. An absent
        tier switch disables that tier. The environment and ``.env`` are not
        consulted, so the mapping fully describes the cache.
        """
        values = {}
        for prop, value in props.items():
            field = PROPERTY_FIELDS.get(prop)
            if field is None or value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            values[field] = value.strip() if isinstance(value, str) else value
        values.setdefault("memory_tier", False)
        values.setdefault("filesystem_tier", False)
        try:
            return _PropertiesConfig(**values)
        except ValidationError as e:
            raise ConfigurationError(_describe_errors(e)) from e

    def log_configuration(self) -> None:
        """Log the active cache configuration."""
        from tiercache.utils.logger import log_info

        log_info(
            "Cache configuration loaded",
            memory_tier=self.memory_tier,
            filesystem_tier=self.filesystem_tier,
            memory_entries=self.memory_entries,
            filesystem_bytes=self.filesystem_bytes,
            storage_path=str(self.storage_path) if self.storage_path else None,
            expiration_policy=self.expiration_policy.value,
            expiration_millis=self.expiration_millis,
            put_to=self.put_to.value,
        )


class _PropertiesConfig(CacheConfig):
    """CacheConfig fed only by its keyword arguments."""

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        return (init_settings,)


def _describe_errors(error: ValidationError) -> str:
    messages = []
    for err in error.errors():
        msg = err["msg"]
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(messages)
