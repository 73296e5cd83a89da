"""
Global configuration for the veniceai SDK.

This module provides a simple configuration system following Convention over Configuration (CoC).
Users can optionally call VENICE.configure() at application startup to customize defaults.
If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. ClientOptions passed to VeniceClient
2. Values set via VENICE.configure()
3. Environment variables (VENICE_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from veniceai import VENICE
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> timeout = VENICE.config.client.request_timeout
    >>>
    >>> # Custom configuration
    >>> VENICE.configure(
    ...     client={"api_key": "sk-..."},
    ...     retry={"max_retries": 5},
    ...     admission={"max_concurrent": 2, "requests_per_minute": 20},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from functools import wraps
from typing import Any, ClassVar, Self

# Strings accepted for "no limit" in fields that allow None
_UNLIMITED_VALUES = ("none", "null", "unlimited")

# Config sections tracked by VeniceConfigTracker and shown by explain()
_SECTIONS = ("client", "retry", "admission")


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


def _optional_float(raw_value: str) -> float | None:
    """Parse a float, mapping "none"/"null"/"unlimited" to None."""
    if raw_value.strip().lower() in _UNLIMITED_VALUES:
        return None
    return float(raw_value)


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("VENICE_RETRY_MAX_RETRIES", type_hint=int)
        3
        >>> EnvVars.get("VENICE_BASE_URL")
        'https://api.venice.ai/api/v1'
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:  # None or empty string
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return lambda v: v.lower() in ("true", "1", "yes")
        return str


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Provides `.with_overrides()` method for creating new instances
    with partial field updates. Uses strict validation to catch
    typos and invalid field names early.

    Subclasses list fields that legitimately accept None in ``NULLABLE_FIELDS``.

    Example:
        >>> config = RetryConfig()
        >>> custom = config.with_overrides({"max_retries": 5})
        >>> custom.max_retries
        5
    """

    NULLABLE_FIELDS: ClassVar[frozenset[str]] = frozenset()

    def with_overrides(
        self,
        overrides: dict[str, Any],
        allow_none_fields: set[str] | None = None,
    ) -> Self:
        """
        Return a new instance with specified fields overridden.

        Args:
            overrides: Dict of field names to new values.
                       Only existing fields are allowed.
            allow_none_fields: Extra field names that accept None as a valid value.
                       By default, None values are filtered out except for
                       the class's NULLABLE_FIELDS.

        Returns:
            New instance with updated values.

        Raises:
            ValueError: If overrides contains unknown field names.

        Example:
            >>> AdmissionConfig().with_overrides({"max_wait_time": "unlimited"})
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        allow_none = set(self.NULLABLE_FIELDS) | (allow_none_fields or set())
        processed = dict(overrides)
        for name in allow_none & processed.keys():
            value = processed[name]
            if isinstance(value, str) and value.lower() in _UNLIMITED_VALUES:
                processed[name] = None

        filtered = {k: v for k, v in processed.items() if v is not None or k in allow_none}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Reads env vars declared in field metadata and applies them as overrides.
        Nullable fields are parsed with a converter that understands "unlimited".

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if not env_var or not os.environ.get(env_var):
                continue
            value = EnvVars.get(
                var_name=env_var,
                type_hint=f.type,
                converter=f.metadata.get("converter"),
            )
            if value is not None or f.name in self.NULLABLE_FIELDS:
                overrides[f.name] = value
        return self.with_overrides(overrides)


def _is_http_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class SdkConfig:
    """
    SDK metadata (read-only, not configurable).

    Attributes:
        version: The installed SDK version.

    Example:
        >>> from veniceai import VENICE
        >>> VENICE.config.sdk.version
        '0.1.0'
    """

    version: str

    @classmethod
    def detect(cls) -> SdkConfig:
        """Detect SDK metadata from the runtime environment."""
        from veniceai import __version__

        return cls(version=__version__)


@dataclass(frozen=True)
class ClientConfig(OverridableConfig):
    """
    Connection settings for VeniceClient.

    Attributes:
        api_key: Venice AI API key, sent as a bearer token.
            Env var: VENICE_API_KEY

        base_url: Base URL for the Venice AI API.
            Env var: VENICE_BASE_URL

        request_timeout: HTTP request timeout in seconds. For streams this
            bounds the connection and the wait between two chunks.
            Env var: VENICE_REQUEST_TIMEOUT

    Example:
        >>> from veniceai import VENICE
        >>> VENICE.config.client.base_url
        'https://api.venice.ai/api/v1'
    """

    api_key: str | None = field(default=None, metadata={"env": "VENICE_API_KEY"})
    base_url: str = field(default="https://api.venice.ai/api/v1", metadata={"env": "VENICE_BASE_URL"})
    request_timeout: float = field(default=60.0, metadata={"env": "VENICE_REQUEST_TIMEOUT"})

    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def validate(self) -> Self:
        """Validate client configuration fields."""
        if self.api_key is not None and self.api_key == "":
            raise ConfigValidationError(
                "api_key", self.api_key,
                "Must not be empty string.", section="client"
            )
        if not self.base_url or not _is_http_url(self.base_url):
            raise ConfigValidationError(
                "base_url", self.base_url,
                "Must start with 'http://' or 'https://'.", section="client"
            )
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="client"
            )
        return self


@dataclass(frozen=True)
class RetryConfig(OverridableConfig):
    """
    Retry and backoff settings.

    Attributes:
        max_retries: Maximum number of retries for a failed call.
            Use 0 to disable retries (single attempt only).
            Use 3 for 4 total attempts (1 original + 3 retries).
            Env var: VENICE_RETRY_MAX_RETRIES

        initial_delay: Delay in seconds before the first retry.
            Env var: VENICE_RETRY_INITIAL_DELAY

        max_delay: Upper bound in seconds for any backoff delay.
            Env var: VENICE_RETRY_MAX_DELAY

        backoff_multiplier: Growth factor between consecutive delays.
            Example: 0.1s initial delay and multiplier 2 wait 0.1s, 0.2s, 0.4s...
            Env var: VENICE_RETRY_BACKOFF_MULTIPLIER

        use_jitter: Randomize each delay uniformly in [0, delay].
            Env var: VENICE_RETRY_USE_JITTER
    """

    max_retries: int = field(default=3, metadata={"env": "VENICE_RETRY_MAX_RETRIES"})
    initial_delay: float = field(default=0.1, metadata={"env": "VENICE_RETRY_INITIAL_DELAY"})
    max_delay: float = field(default=10.0, metadata={"env": "VENICE_RETRY_MAX_DELAY"})
    backoff_multiplier: float = field(default=2.0, metadata={"env": "VENICE_RETRY_BACKOFF_MULTIPLIER"})
    use_jitter: bool = field(default=True, metadata={"env": "VENICE_RETRY_USE_JITTER"})

    def validate(self) -> Self:
        """Validate retry configuration fields."""
        if self.max_retries < 0:
            raise ConfigValidationError(
                "max_retries", self.max_retries,
                "Must be >= 0.", section="retry"
            )
        if self.initial_delay <= 0:
            raise ConfigValidationError(
                "initial_delay", self.initial_delay,
                "Must be greater than 0.", section="retry"
            )
        if self.max_delay < self.initial_delay:
            raise ConfigValidationError(
                "max_delay", self.max_delay,
                f"Must be >= initial_delay ({self.initial_delay}).", section="retry"
            )
        if self.backoff_multiplier <= 1:
            raise ConfigValidationError(
                "backoff_multiplier", self.backoff_multiplier,
                "Must be greater than 1.", section="retry"
            )
        return self


@dataclass(frozen=True)
class AdmissionConfig(OverridableConfig):
    """
    Client-side admission control settings.

    Attributes:
        max_concurrent: Maximum number of requests in flight at once.
            Streams count until their last message is consumed.
            Env var: VENICE_ADMISSION_MAX_CONCURRENT

        requests_per_minute: Maximum requests started per time window.
            Env var: VENICE_ADMISSION_REQUESTS_PER_MINUTE

        time_window: Length in seconds of the rolling window.
            Env var: VENICE_ADMISSION_TIME_WINDOW

        max_wait_time: Maximum seconds to wait for admission before raising
            AdmissionTimeoutError. None means wait indefinitely.
            Env var: VENICE_ADMISSION_MAX_WAIT_TIME ("unlimited" for None)

    Example:
        >>> VENICE.configure(admission={"max_concurrent": 2, "max_wait_time": 30})
    """

    NULLABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({"max_wait_time"})

    max_concurrent: int = field(default=5, metadata={"env": "VENICE_ADMISSION_MAX_CONCURRENT"})
    requests_per_minute: int = field(default=60, metadata={"env": "VENICE_ADMISSION_REQUESTS_PER_MINUTE"})
    time_window: float = field(default=60.0, metadata={"env": "VENICE_ADMISSION_TIME_WINDOW"})
    max_wait_time: float | None = field(
        default=None,
        metadata={"env": "VENICE_ADMISSION_MAX_WAIT_TIME", "converter": _optional_float},
    )

    def validate(self) -> Self:
        """Validate admission configuration fields."""
        if self.max_concurrent <= 0:
            raise ConfigValidationError(
                "max_concurrent", self.max_concurrent,
                "Must be greater than 0.", section="admission"
            )
        if self.requests_per_minute <= 0:
            raise ConfigValidationError(
                "requests_per_minute", self.requests_per_minute,
                "Must be greater than 0.", section="admission"
            )
        if self.time_window <= 0:
            raise ConfigValidationError(
                "time_window", self.time_window,
                "Must be greater than 0.", section="admission"
            )
        if self.max_wait_time is not None and self.max_wait_time <= 0:
            raise ConfigValidationError(
                "max_wait_time", self.max_wait_time,
                "Must be greater than 0 (or None for unlimited).", section="admission"
            )
        return self


@dataclass(frozen=True)
class ConfigEntry:
    """
    A configuration field with its resolved value and source.

    Attributes:
        name: The field name (e.g., "request_timeout").
        value: The resolved value.
        source: Where the value came from:
            - "default": Hardcoded default value
            - "env:VAR_NAME": Environment variable
            - "user": Set via VENICE.configure()

    Example:
        >>> ConfigEntry("api_key", "sk-1234567890abcdef", "user").formatted_value
        'sk-1********cdef'
    """

    name: str
    value: Any
    source: str

    @property
    def formatted_value(self) -> str:
        """
        Return value formatted for display.

        Masks the API key showing only first and last 4 characters, and
        truncates long strings.
        """
        if self.name == "api_key" and self.value is not None:
            secret = str(self.value)
            if len(secret) >= 12:
                return f"{secret[:4]}********{secret[-4:]}"
            if len(secret) >= 3:
                visible = max(1, len(secret) // 3)
                return f"********{secret[-visible:]}"
            return "********"

        if self.value is None:
            return "None"

        str_value = str(self.value)
        max_length = 50
        if len(str_value) > max_length:
            return str_value[: max_length - 3] + "..."

        return str_value


@dataclass(frozen=True)
class VeniceConfigTracker:
    """
    Tracks the source of config field values.

    Attributes:
        sources: Dict tracking source of each field value.
            Structure: {"section": {"field": "source"}}
    """

    sources: dict[str, dict[str, str]] = field(default_factory=dict)

    @staticmethod
    def track_changes(
        source_type: str,
    ) -> Callable[[Callable[..., VeniceConfig]], Callable[..., VeniceConfig]]:
        """
        Decorator that records which fields the decorated method touched.

        Args:
            source_type: Source label for tracking ("env" or "user").
        """

        def decorator(
            method: Callable[..., VeniceConfig],
        ) -> Callable[..., VeniceConfig]:
            @wraps(method)
            def wrapper(self: VeniceConfig, *args: Any, **kwargs: Any) -> VeniceConfig:
                new_config = method(self, *args, **kwargs)
                new_tracker = self._tracker.with_changes_tracked(
                    new_config, source_type, overrides=kwargs
                )
                return replace(new_config, _tracker=new_tracker)

            return wrapper

        return decorator

    def with_changes_tracked(
        self,
        new_config: VeniceConfig,
        source_type: str,
        overrides: dict[str, Any] | None = None,
    ) -> VeniceConfigTracker:
        """
        Return a new tracker with the fields touched by ``source_type`` recorded.

        A field counts as touched when the source provided it, even if the
        value equals the previous one.
        """
        new_sources = {section: dict(flds) for section, flds in self.sources.items()}

        for section_name in _SECTIONS:
            section_config = getattr(new_config, section_name)
            section_sources = new_sources.setdefault(section_name, {})
            for f in fields(section_config):
                if source_type == "env":
                    # Consistent with EnvVars.get which treats empty as unset
                    env_var = f.metadata.get("env")
                    if env_var and os.environ.get(env_var):
                        section_sources[f.name] = f"env:{env_var}"
                elif source_type == "user" and overrides:
                    if f.name in (overrides.get(section_name) or {}):
                        section_sources[f.name] = "user"

        return VeniceConfigTracker(sources={k: v for k, v in new_sources.items() if v})


@dataclass(frozen=True)
class VeniceConfig:
    """
    Global configuration for the veniceai SDK.

    Aggregates all configuration sections: sdk, client, retry and admission.
    Access via the global `VENICE.config` property.

    Example:
        >>> from veniceai import VENICE
        >>> VENICE.config.retry.max_retries
        3
        >>> VENICE.config.admission.requests_per_minute
        60
    """

    sdk: SdkConfig = field(default_factory=SdkConfig.detect)
    client: ClientConfig = field(default_factory=ClientConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    _tracker: VeniceConfigTracker = field(default_factory=VeniceConfigTracker, repr=False)

    @VeniceConfigTracker.track_changes("env")
    def with_env_vars(self) -> VeniceConfig:
        """
        Return a new config with VENICE_* environment variables applied on top.

        Example:
            >>> config = VeniceConfig().with_env_vars()
        """
        return VeniceConfig(
            sdk=self.sdk,
            client=self.client.with_env_vars(),
            retry=self.retry.with_env_vars(),
            admission=self.admission.with_env_vars(),
        )

    @VeniceConfigTracker.track_changes("user")
    def with_section_overrides(
        self,
        *,
        client: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        admission: dict[str, Any] | None = None,
    ) -> VeniceConfig:
        """
        Return a new config with overrides applied to nested sections.

        Each section dict is merged with the existing section config,
        only overriding the specified fields.

        Example:
            >>> custom = VeniceConfig().with_section_overrides(
            ...     retry={"max_retries": 5},
            ...     admission={"max_concurrent": 2},
            ... )
        """
        return VeniceConfig(
            sdk=self.sdk,
            client=self.client.with_overrides(client or {}),
            retry=self.retry.with_overrides(retry or {}),
            admission=self.admission.with_overrides(admission or {}),
        )

    def explain_data(self) -> dict[str, list[ConfigEntry]]:
        """
        Return config data structured for explain output.

        Returns:
            Dict mapping section names to list of ConfigEntry objects.
        """
        result: dict[str, list[ConfigEntry]] = {}

        # SDK section (read-only, not tracked)
        result["sdk"] = [
            ConfigEntry(name=f.name, value=getattr(self.sdk, f.name), source="-")
            for f in fields(self.sdk)
        ]

        for section_name in _SECTIONS:
            section_config = getattr(self, section_name)
            section_sources = self._tracker.sources.get(section_name, {})
            result[section_name] = [
                ConfigEntry(
                    name=f.name,
                    value=getattr(section_config, f.name),
                    source=section_sources.get(f.name, "default"),
                )
                for f in fields(section_config)
            ]

        return result


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _VENICE:
    """
    Singleton for SDK configuration.

    Use `VENICE.configure()` to customize settings and `VENICE.config`
    to access current configuration.

    Example:
        >>> from veniceai import VENICE
        >>> VENICE.configure(client={"api_key": "..."})
        >>> print(VENICE.config.client.request_timeout)
    """

    def __init__(self) -> None:
        """Initialize with defaults and environment variables."""
        self._config: VeniceConfig = VeniceConfig().with_env_vars()

    def configure(
        self,
        *,
        client: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        admission: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> VeniceConfig:
        """
        Configure SDK settings.

        Call at application startup to customize defaults. Updates the
        internal configuration and returns the configured instance.

        Args:
            client: Client config overrides (api_key, base_url, request_timeout).
            retry: Retry config overrides (max_retries, delays, multiplier, jitter).
            admission: Admission config overrides (concurrency, rate, max_wait_time).
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured VeniceConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.

        Precedence:
            VENICE.configure() > ENV vars > defaults
        """
        base = VeniceConfig()
        if allow_env_override:
            base = base.with_env_vars()

        # configure() always wins
        self._config = base.with_section_overrides(
            client=client,
            retry=retry,
            admission=admission,
        )

        return self.validate()

    @property
    def config(self) -> VeniceConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> VeniceConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        self._config = VeniceConfig().with_env_vars()
        return self.validate()

    def validate(self) -> VeniceConfig:
        """
        Validate current configuration.

        Called automatically on module load and after configure().

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        self._config.client.validate()
        self._config.retry.validate()
        self._config.admission.validate()
        return self._config

    def explain(
        self,
        output: Callable[[str], None] = print,
    ) -> None:
        """
        Print current configuration with sources.

        Shows each config value and where it came from ("default",
        "env:VAR_NAME" or "user").

        Args:
            output: Callable to output each line. Defaults to print.
                    Can be used with logging: `VENICE.explain(logger.info)`

        Example:
            >>> VENICE.explain()
            Venice Configuration:
            ====================
            [client]
              base_url ............ https://api.venice.ai/api/v1   default
            ...
        """
        name_width = 25
        value_width = 50
        total_width = 2 + name_width + 2 + (value_width + 2) + 1 + 8

        output("Venice Configuration:")
        output("=" * total_width)

        output(f"  {'Field':<{name_width}} │ {'Value':<{value_width}} │ Source")
        output(f"--{'-' * name_width}-+{'-' * (value_width + 2)}+--------")

        for section_name, entries in self._config.explain_data().items():
            output(f"[{section_name}]")
            for entry in entries:
                dots = "." * (name_width - len(entry.name))
                value_padded = entry.formatted_value.ljust(value_width)
                marker = "✎" if entry.source not in ("default", "-") else " "
                output(f"  {entry.name} {dots} {value_padded} {marker} {entry.source}")

        output("=" * total_width)

    def __repr__(self) -> str:
        return f"VENICE(config={self._config!r})"


# Global singleton instance - always reflects current configuration
VENICE: _VENICE = _VENICE()
VENICE.validate()  # Validate defaults + env vars on module load
