"""
Linkdrop Configuration System

Campaign parameters and logging settings from YAML files, environment
variables and runtime overrides.

Configuration Sources (in order of precedence):
    1. Environment variables (LINKDROP_*)
    2. Runtime overrides (ConfigManager.set)
    3. Project config file (./linkdrop.yaml)
    4. User config file (~/.linkdrop/config.yaml)
    5. Default values

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from linkdrop.hardening import Validators

if TYPE_CHECKING:
    from linkdrop.campaign import CampaignConfig

T = TypeVar("T")

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")
LOG_FORMATS = ("json", "text")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration value rejected by its validator."""
    pass


def _is_amount(value: Any) -> bool:
    return Validators.validate_amount(value).is_valid


def _is_optional_address(value: Any) -> bool:
    return value == "" or Validators.validate_address(value, allow_zero=False).is_valid


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    secret: bool = False  # Don't display if True
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            value = self._coerce(os.environ[self.env_var])
            if self.validator and not self.validator(value):
                raise ConfigValidationError(f"Invalid value for {self.env_var}: {value!r}")
            return value
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value!r}")

        old_value = self._value
        self._value = value
        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            try:
                return int(value)  # type: ignore
            except ValueError:
                raise ConfigValidationError(
                    f"Invalid value for {self.env_var}: {value!r} is not an integer"
                ) from None
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class CampaignSettings:
    """Parameters of the campaign a deployment or relay works against."""
    token_address: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="LINKDROP_TOKEN_ADDRESS",
        description="Address of the value ledger the campaign pays from",
        validator=_is_optional_address,
    ))
    claim_amount: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10,
        env_var="LINKDROP_CLAIM_AMOUNT",
        description="Token units paid per claim (receiver + referral)",
        validator=_is_amount,
    ))
    referral_amount: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="LINKDROP_REFERRAL_AMOUNT",
        description="Share of the claim amount paid to the referral",
        validator=_is_amount,
    ))
    claim_amount_native: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="LINKDROP_CLAIM_AMOUNT_NATIVE",
        description="Native-currency rebate paid to the relay per claim (wei)",
        validator=_is_amount,
    ))
    verification_address: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="LINKDROP_VERIFICATION_ADDRESS",
        description="Address of the key that signs link keys",
        validator=_is_optional_address,
    ))

    def to_campaign_config(self, issuer_address: str) -> "CampaignConfig":
        """Build the immutable campaign configuration for ``issuer_address``."""
        from linkdrop.campaign import CampaignConfig

        return CampaignConfig(
            token_address=self.token_address.get(),
            verification_address=self.verification_address.get(),
            issuer_address=issuer_address,
            claim_amount=self.claim_amount.get(),
            referral_amount=self.referral_amount.get(),
            claim_amount_native=self.claim_amount_native.get(),
        )


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="LINKDROP_LOG_LEVEL",
        description="Log level (debug, info, warning, error, critical)",
        validator=lambda x: x in LOG_LEVELS,
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="LINKDROP_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in LOG_FORMATS,
    ))


@dataclass
class LinkdropConfig:
    """Root configuration."""
    campaign: CampaignSettings = field(default_factory=CampaignSettings)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return "***" if obj.secret else obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = LinkdropConfig()
        self._config_paths: List[Path] = []
        self._overrides: Dict[str, Any] = {}
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton; the next ConfigManager() starts from defaults."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> LinkdropConfig:
        return self._config

    @property
    def loaded_paths(self) -> List[Path]:
        return list(self._config_paths)

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file must be a mapping: {path}")
        self._apply_dict(data)
        self._config_paths.append(path)

        # Runtime overrides outrank files
        for key, value in self._overrides.items():
            self._value_at(key).set(value)

    def load_defaults(self, project_dir: Optional[Path] = None) -> None:
        """Load the user file, then the project file, where they exist."""
        default_paths = [
            Path.home() / ".linkdrop" / "config.yaml",
            (project_dir or Path.cwd()) / "linkdrop.yaml",
        ]
        for path in default_paths:
            if path.exists():
                self.load_from_file(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")

        apply_to_config(self._config, data, "")

    def _value_at(self, path: str) -> ConfigValue:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        if not isinstance(obj, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("campaign.claim_amount", 25)
        """
        self._value_at(path).set(value)
        self._overrides[path] = value

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("campaign.claim_amount")
        """
        return self._value_at(path).get()

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value!r}")
                except (ValueError, ConfigError) as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)

        if not errors:
            campaign = self._config.campaign
            if campaign.referral_amount.get() > campaign.claim_amount.get():
                errors.append("campaign.referral_amount: exceeds campaign.claim_amount")
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = obj.default
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> LinkdropConfig:
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
