"""
ZKPIP Configuration System

Configuration with YAML files, environment variables and validation.

Configuration Sources (in order of precedence):
    1. Environment variables (ZKPIP_*)
    2. Runtime overrides / config file (zkpip.yaml)
    3. Default values

A `ConfigManager` is an ordinary value: build one per process (or per test)
and pass it to the components that need it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from zkpip.core import PACKAGE_ROOT, load_yaml
from zkpip.errors import ConfigError, ConfigValidationError

T = TypeVar("T")

_TRUTHY = ("true", "1", "yes", "on")


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        # Check environment variable first
        if self.env_var and self.env_var in os.environ:
            env_value = os.environ[self.env_var]
            try:
                value = self._coerce(env_value)
            except ValueError as ex:
                raise ConfigValidationError(f"Invalid value for {self.env_var}: {env_value!r}") from ex
            if not self._accepts(value):
                raise ConfigValidationError(f"Invalid value for {self.env_var}: {env_value!r}")
            return value

        # Return set value or default
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if not self._accepts(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")
        self._value = value

    def _accepts(self, value: Any) -> bool:
        if self.validator is None:
            return True
        try:
            return bool(self.validator(value))
        except (TypeError, ValueError):
            return False

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.strip().lower() in _TRUTHY  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        else:
            return value  # type: ignore


@dataclass
class RuntimeConfig:
    """Process-level behaviour."""
    hard_exit: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="ZKPIP_HARD_EXIT",
        description="Call sys.exit on failure instead of returning the exit code",
    ))


@dataclass
class SchemasConfig:
    """Configuration for the schema registry."""
    schemas_dir: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=str(PACKAGE_ROOT / "schemas"),
        env_var="ZKPIP_SCHEMAS_DIR",
        description="Root directory holding *.schema.json documents",
        validator=lambda x: bool(str(x).strip()),
    ))


@dataclass
class KeystoreConfig:
    """Configuration for the Ed25519 keystore."""
    store_dir: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=str(Path.home() / ".zkpip" / "keys"),
        env_var="ZKPIP_KEYSTORE_DIR",
        description="Keystore root directory",
        validator=lambda x: bool(str(x).strip()),
    ))
    key_id_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=16,
        env_var="ZKPIP_KEY_ID_LENGTH",
        description="Length of the base32 keyId derived from the public key",
        validator=lambda x: 8 <= x <= 52,
    ))


@dataclass
class VectorsConfig:
    """Configuration for the vector store and remote pulls."""
    store_dir: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=str(Path.home() / ".zkpip" / "vectors"),
        env_var="ZKPIP_VECTOR_STORE_DIR",
        description="Local content-addressed vector store",
        validator=lambda x: bool(str(x).strip()),
    ))
    allow_http: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="ZKPIP_ALLOW_HTTP",
        description="Permit plain http:// sources for vector pulls",
    ))
    fetch_timeout_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=30,
        env_var="ZKPIP_FETCH_TIMEOUT",
        description="Timeout for a single remote fetch in seconds",
        validator=lambda x: x > 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="warning",
        env_var="ZKPIP_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="text",
        env_var="ZKPIP_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class ZkpipConfig:
    """
    Root configuration for ZKPIP.

    Aggregates all component configurations.
    """
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    schemas: SchemasConfig = field(default_factory=SchemasConfig)
    keystore: KeystoreConfig = field(default_factory=KeystoreConfig)
    vectors: VectorsConfig = field(default_factory=VectorsConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.
    """

    DEFAULT_PATHS = (Path("zkpip.yaml"), Path(".zkpip") / "config.yaml")

    def __init__(self, config: Optional[ZkpipConfig] = None):
        self._config = config or ZkpipConfig()
        self._config_paths: List[Path] = []

    @property
    def config(self) -> ZkpipConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            data = load_yaml(path)
        except yaml.YAMLError as ex:
            raise ConfigError(f"Configuration file is not valid YAML: {path}: {ex}") from ex

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file must hold a mapping: {path}")
        self._apply_dict(data)
        self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        for path in self.DEFAULT_PATHS:
            if path.exists():
                self.load_from_file(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")
                else:
                    raise ConfigError(f"Invalid config section: {prefix}{key}")

        apply_to_config(self._config, data, "")

    def _lookup(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: manager.set("keystore.key_id_length", 20)
        """
        attr = self._lookup(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: manager.get("schemas.schemas_dir")
        """
        obj = self._lookup(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    obj.get()
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors
