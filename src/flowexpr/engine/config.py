"""Engine configuration models and loader.

Configuration file location priority:
1. Explicit path passed to load_engine_config
2. FLOWEXPR_CONFIG environment variable
3. Standard location: ~/.flowexpr/config.yml
4. Built-in defaults (if no config file found)

Keys are accepted in snake_case or camelCase.

Example config file:
```yaml
security:
  timeout: 2000
  maxMemory: 5242880
  allowedGlobals: [Math, JSON, String, Number, DateTime]
  blockedPatterns:
    - name: fetch
      pattern: "\\bfetch\\b"
cache:
  maxSize: 500
  ttl: 60000
output:
  format: string
validation:
  layers: [syntax, semantic, security, performance]
  maxErrors: 20
```
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

# ===========================================================================
# Defaults
# ===========================================================================

DEFAULT_ALLOWED_GLOBALS: frozenset[str] = frozenset(
    {
        "Math",
        "String",
        "Number",
        "Boolean",
        "Array",
        "Object",
        "Date",
        "JSON",
        "parseInt",
        "parseFloat",
        "isNaN",
        "isFinite",
    }
)

# Ordered: the first matching rule names the failure.
DEFAULT_BLOCKED_PATTERNS: tuple[tuple[str, str], ...] = (
    ("eval", r"\beval\b"),
    ("Function", r"\bFunction\b"),
    ("setTimeout", r"\bsetTimeout\b"),
    ("setInterval", r"\bsetInterval\b"),
    ("setImmediate", r"\bsetImmediate\b"),
    ("require", r"\brequire\b"),
    ("import", r"\bimport\b"),
    ("process", r"\bprocess\b"),
    ("global", r"\bglobal\b"),
    ("window", r"\bwindow\b"),
    ("document", r"\bdocument\b"),
    ("constructor", r"\.constructor\b"),
    ("__proto__", r"\.__proto__\b"),
    ("prototype", r"\.prototype\b"),
    ("alert", r"\balert\b"),
    ("confirm", r"\bconfirm\b"),
    ("prompt", r"\bprompt\b"),
)

VALIDATION_LAYERS = ("syntax", "semantic", "security", "performance", "business")


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


# ===========================================================================
# Configuration Models
# ===========================================================================


class BlockedPattern(_ConfigModel):
    """Named regular expression matched against raw expression text."""

    name: str = Field(min_length=1)
    pattern: str = Field(min_length=1)

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid blocked pattern regex {v!r}: {e}") from e
        return v


class SecurityConfig(_ConfigModel):
    """Sandbox limits. Immutable for the lifetime of an engine."""

    timeout: float = Field(default=5000, gt=0, description="Wall-clock budget in milliseconds")
    max_memory: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Approximate ceiling for a single produced value, in bytes",
    )
    max_call_stack_size: int = Field(default=100, ge=1, le=10000)
    allowed_globals: frozenset[str] = Field(default=DEFAULT_ALLOWED_GLOBALS)
    allowed_methods: frozenset[str] = Field(
        default=frozenset(),
        description="When non-empty, only these extension methods may be called",
    )
    blocked_patterns: tuple[BlockedPattern, ...] = Field(
        default=tuple(BlockedPattern(name=n, pattern=p) for n, p in DEFAULT_BLOCKED_PATTERNS)
    )
    allow_function_constructor: bool = False
    strict_grammar: bool = Field(
        default=False,
        description="Reject host-supplied extra globals; only allowedGlobals and $-bindings resolve",
    )

    @field_validator("blocked_patterns", mode="before")
    @classmethod
    def coerce_patterns(cls, v: Any) -> Any:
        # Bare strings are accepted; the pattern doubles as the rule name.
        if isinstance(v, (list, tuple)):
            return tuple({"name": p, "pattern": p} if isinstance(p, str) else p for p in v)
        return v


class CacheConfig(_ConfigModel):
    enabled: bool = True
    max_size: int = Field(default=1000, ge=1)
    ttl: float = Field(default=5 * 60 * 1000, gt=0, description="Entry lifetime in milliseconds")
    dependency_slicing: bool = Field(
        default=False,
        description="Fingerprint only the context roots an expression references",
    )


class DebugConfig(_ConfigModel):
    enabled: bool = False
    trace_execution: bool = False
    log_performance: bool = False


class OutputConfig(_ConfigModel):
    format: Literal["string", "ast"] = "string"
    include_metadata: bool = False


class PerformanceThresholds(_ConfigModel):
    max_length: int = Field(default=5000, ge=1)
    max_depth: int = Field(default=10, ge=1)
    max_complexity: int = Field(default=100, ge=1)
    max_function_calls: int = Field(default=20, ge=1)


class ValidationConfig(_ConfigModel):
    layers: tuple[str, ...] = VALIDATION_LAYERS
    strict: bool = Field(
        default=False,
        description="Run every enabled layer even after a layer reports errors",
    )
    max_errors: int = Field(default=50, ge=1)
    performance_thresholds: PerformanceThresholds = Field(default_factory=PerformanceThresholds)

    @field_validator("layers")
    @classmethod
    def validate_layers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [layer for layer in v if layer not in VALIDATION_LAYERS]
        if unknown:
            raise ValueError(
                f"Unknown validation layers: {unknown}. Valid layers: {list(VALIDATION_LAYERS)}"
            )
        # Layer order is fixed regardless of how the config lists them
        return tuple(layer for layer in VALIDATION_LAYERS if layer in v)


class EngineConfig(_ConfigModel):
    """Complete engine configuration."""

    security: SecurityConfig = Field(default_factory=SecurityConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    debug: DebugConfig = Field(default_factory=DebugConfig)
    libraries: dict[str, bool] = Field(
        default_factory=lambda: {"datetime": True, "jmespath": True}
    )
    output: OutputConfig = Field(default_factory=OutputConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)

    @field_validator("libraries", mode="before")
    @classmethod
    def merge_library_defaults(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        merged = {"datetime": True, "jmespath": True}
        for name, enabled in v.items():
            # "luxon" is accepted as an alias of "datetime"
            merged["datetime" if name == "luxon" else name] = enabled
        return merged

    def library_enabled(self, name: str) -> bool:
        return bool(self.libraries.get(name, False))


# ===========================================================================
# Loader
# ===========================================================================


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """Resolve the config file location (see module docstring for priority)."""
    if explicit_path:
        return Path(explicit_path).expanduser()

    env_path = os.getenv("FLOWEXPR_CONFIG")
    if env_path:
        return Path(env_path).expanduser()

    standard = Path.home() / ".flowexpr" / "config.yml"
    if standard.exists():
        return standard
    return None


def load_engine_config(path: str | Path | None = None) -> EngineConfig:
    """Load engine configuration from YAML, falling back to defaults.

    Raises:
        FileNotFoundError: If an explicitly requested file does not exist
        pydantic.ValidationError: If the file content is invalid
    """
    config_path = get_config_path(path)
    if config_path is None:
        logger.debug("No engine config file found, using defaults")
        return EngineConfig()

    if not config_path.exists():
        raise FileNotFoundError(f"Engine config file not found: {config_path}")

    with config_path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Engine config must be a mapping, got {type(data).__name__}")

    config = EngineConfig.model_validate(data)
    logger.info(f"Loaded engine config from {config_path}")
    return config
