"""
Resilience configuration from config.yaml and environment variables.

Configuration priority (highest to lowest):
1. Environment variables
2. config.yaml file (under the 'resilience:' key)
3. Dataclass defaults

Example config.yaml:

    resilience:
      retry:
        max_attempts: 4
        base_delay: 0.2
        max_delay: 5.0
      breaker:
        failure_threshold: 5
        reset_timeout: 30
      breakers:
        billing-api:
          failure_threshold: 3
          reset_timeout: 60
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from callguard.errors import ConfigurationError
from callguard.resilience.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from callguard.resilience.clock import Clock
from callguard.resilience.retry import RetryPolicy

# Default config path: config.yaml in the working directory
DEFAULT_CONFIG_PATH = Path("config.yaml")

CONFIG_PATH_ENV = "CALLGUARD_CONFIG"


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _section(value: Any, name: str) -> Dict[str, Any]:
    """Return a config section as a dict; an empty or missing section is {}."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(
            f"'{name}' config must be a mapping, got {type(value).__name__}"
        )
    return value


def _known_fields(cls: type, data: Dict[str, Any], section: str) -> Dict[str, Any]:
    data = _section(data, section)
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in '{section}' config: {sorted(map(str, unknown))}"
        )
    return dict(data)


@dataclass
class RetrySettings:
    """Retry policy settings. Delays in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetrySettings":
        return cls(**_known_fields(cls, data, "retry"))

    @classmethod
    def from_env(cls, base: Optional["RetrySettings"] = None) -> "RetrySettings":
        """Overlay environment variables onto base (or defaults).

        Optional environment variables:
            CALLGUARD_RETRY_MAX_ATTEMPTS
            CALLGUARD_RETRY_BASE_DELAY
            CALLGUARD_RETRY_MAX_DELAY
        """
        base = base or cls()
        return cls(
            max_attempts=int(os.getenv("CALLGUARD_RETRY_MAX_ATTEMPTS", base.max_attempts)),
            base_delay=float(os.getenv("CALLGUARD_RETRY_BASE_DELAY", base.base_delay)),
            max_delay=float(os.getenv("CALLGUARD_RETRY_MAX_DELAY", base.max_delay)),
        )

    def to_policy(self) -> RetryPolicy:
        """Build a RetryPolicy with the default retryability predicate."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


@dataclass
class BreakerSettings:
    """Circuit breaker settings. Timeout in seconds."""

    failure_threshold: int = 5
    reset_timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], section: str = "breaker") -> "BreakerSettings":
        return cls(**_known_fields(cls, data, section))

    @classmethod
    def from_env(cls, base: Optional["BreakerSettings"] = None) -> "BreakerSettings":
        """Overlay environment variables onto base (or defaults).

        Optional environment variables:
            CALLGUARD_BREAKER_FAILURE_THRESHOLD
            CALLGUARD_BREAKER_RESET_TIMEOUT
        """
        base = base or cls()
        return cls(
            failure_threshold=int(
                os.getenv("CALLGUARD_BREAKER_FAILURE_THRESHOLD", base.failure_threshold)
            ),
            reset_timeout=float(
                os.getenv("CALLGUARD_BREAKER_RESET_TIMEOUT", base.reset_timeout)
            ),
        )

    def to_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
        )


@dataclass
class ResilienceSettings:
    """Complete resilience configuration.

    Load with ResilienceSettings.load_config().
    Per-breaker overrides are merged over the shared breaker defaults,
    after environment variables have been applied to those defaults.
    """

    retry: RetrySettings = field(default_factory=RetrySettings)
    breaker: BreakerSettings = field(default_factory=BreakerSettings)
    breakers: Dict[str, BreakerSettings] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], apply_env: bool = False) -> "ResilienceSettings":
        """Build settings from the mapping under the 'resilience:' key.

        With apply_env, CALLGUARD_* variables override the file values for
        the shared sections, and named breakers inherit the result unless
        they set a field themselves.
        """
        data = _section(data, "resilience")
        unknown = set(data) - {"retry", "breaker", "breakers"}
        if unknown:
            raise ConfigurationError(
                f"Unknown keys in 'resilience' config: {sorted(map(str, unknown))}"
            )

        retry = RetrySettings.from_dict(_section(data.get("retry"), "retry"))
        breaker = BreakerSettings.from_dict(_section(data.get("breaker"), "breaker"))
        if apply_env:
            try:
                retry = RetrySettings.from_env(retry)
                breaker = BreakerSettings.from_env(breaker)
            except (TypeError, ValueError) as e:
                raise ConfigurationError("Invalid resilience setting", cause=e) from e

        breakers = {}
        for name, overrides in _section(data.get("breakers"), "breakers").items():
            section = f"breakers.{name}"
            breakers[str(name)] = BreakerSettings.from_dict(
                _deep_merge(asdict(breaker), _section(overrides, section)),
                section=section,
            )

        return cls(retry=retry, breaker=breaker, breakers=breakers)

    @classmethod
    def load_config(cls, config_path: Optional[Path] = None) -> "ResilienceSettings":
        """Load settings from config.yaml and environment variables.

        The file path comes from config_path, then CALLGUARD_CONFIG, then
        ./config.yaml. A missing file means defaults plus environment.

        Raises:
            ConfigurationError: Malformed file or invalid values
        """
        config_path = config_path or Path(
            os.getenv(CONFIG_PATH_ENV, str(DEFAULT_CONFIG_PATH))
        )

        section: Optional[Dict[str, Any]] = None
        if config_path.exists():
            with open(config_path, "r") as f:
                try:
                    yaml_data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(
                        f"Invalid YAML in {config_path}", cause=e
                    ) from e
            if not isinstance(yaml_data, dict):
                raise ConfigurationError(f"Expected a mapping in {config_path}")
            section = yaml_data.get("resilience")

        settings = cls.from_dict(section, apply_env=True)
        settings.validate()
        return settings

    def validate(self) -> None:
        """Fail fast on values RetryPolicy/CircuitBreakerConfig would reject."""
        self.retry.to_policy()
        self.breaker.to_config()
        for overrides in self.breakers.values():
            overrides.to_config()

    def breaker_config(self, name: str) -> CircuitBreakerConfig:
        """Config for a named breaker, falling back to shared defaults."""
        return self.breakers.get(name, self.breaker).to_config()

    def build_registry(self, clock: Optional[Clock] = None, **kwargs: Any) -> CircuitBreakerRegistry:
        """Registry pre-populated with every breaker named in config."""
        registry = CircuitBreakerRegistry(self.breaker.to_config(), clock=clock, **kwargs)
        for name in self.breakers:
            registry.get(name, self.breaker_config(name))
        return registry
