"""
Task Router - Routing Configuration

Validates a raw routing config mapping against ``ROUTING_CONFIG_SCHEMA``,
applies environment variable overlays and merges the result over the
defaults.

Environment variable overlays:
    TASK_ROUTER__ENABLED=true
    TASK_ROUTER__STRATEGY=cost-optimized
    TASK_ROUTER__MAX_FALLBACKS=2
"""

from __future__ import annotations

import copy
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import jsonschema

from task_router.scorer import DEFAULT_SCORING_WEIGHTS, normalize_weights
from task_router.types import (
    Complexity,
    FallbackBehavior,
    RoutingStrategy,
    ScoringWeights,
    TaskClassification,
    TaskType,
)

logger = logging.getLogger("task-router.config")

ENV_PREFIX = "TASK_ROUTER__"
DEFAULT_MAX_FALLBACKS = 3


class ConfigValidationError(Exception):
    """Raised when a routing config fails schema validation."""
    pass


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

ROUTING_CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "task-router routing config",
    "type": "object",
    "properties": {
        "enabled": {"type": "boolean"},
        "strategy": {"enum": [s.value for s in RoutingStrategy]},
        "prefer_local": {"type": "boolean"},
        "local_providers": _STRING_LIST,
        "cloud_providers": _STRING_LIST,
        "task_rules": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["task_type"],
                "properties": {
                    "task_type": {"enum": [t.value for t in TaskType]},
                    "complexity": {"enum": [c.value for c in Complexity]},
                    "preferred_providers": _STRING_LIST,
                    "preferred_models": _STRING_LIST,
                    "exclude_providers": _STRING_LIST,
                    "min_context_window": {"type": "integer", "minimum": 1},
                    "require_reasoning": {"type": "boolean"},
                },
                "additionalProperties": False,
            },
        },
        "weights": {
            "type": "object",
            "properties": {
                "capability": {"type": "number"},
                "cost": {"type": "number"},
                "performance": {"type": "number"},
                "availability": {"type": "number"},
            },
            "additionalProperties": False,
        },
        "fallback_behavior": {"enum": [f.value for f in FallbackBehavior]},
        "max_fallbacks": {"type": "integer", "minimum": 0},
        "health": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "timeout_ms": {"type": "integer", "minimum": 1},
                "endpoint": {"type": "string", "minLength": 1},
            },
            "additionalProperties": False,
        },
    },
}


# ---------------------------------------------------------------------------
# Config records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaskRule:
    """Per-task-type provider and capability constraints."""
    task_type: TaskType
    complexity: Optional[Complexity] = None
    preferred_providers: Tuple[str, ...] = ()
    preferred_models: Tuple[str, ...] = ()
    exclude_providers: Tuple[str, ...] = ()
    min_context_window: Optional[int] = None
    require_reasoning: Optional[bool] = None

    def matches(self, task: TaskClassification) -> bool:
        if task.type != self.task_type:
            return False
        return self.complexity is None or task.complexity == self.complexity

    @classmethod
    def from_dict(cls, raw: Mapping) -> "TaskRule":
        complexity = raw.get("complexity")
        return cls(
            task_type=TaskType(raw["task_type"]),
            complexity=Complexity(complexity) if complexity else None,
            preferred_providers=tuple(raw.get("preferred_providers") or ()),
            preferred_models=tuple(raw.get("preferred_models") or ()),
            exclude_providers=tuple(raw.get("exclude_providers") or ()),
            min_context_window=raw.get("min_context_window"),
            require_reasoning=raw.get("require_reasoning"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "task_type": self.task_type.value,
            "preferred_providers": list(self.preferred_providers),
            "preferred_models": list(self.preferred_models),
            "exclude_providers": list(self.exclude_providers),
        }
        if self.complexity is not None:
            d["complexity"] = self.complexity.value
        if self.min_context_window is not None:
            d["min_context_window"] = self.min_context_window
        if self.require_reasoning is not None:
            d["require_reasoning"] = self.require_reasoning
        return d


@dataclass(frozen=True)
class HealthCheckConfig:
    """Optional probe of a local model runtime."""
    enabled: bool = False
    timeout_ms: int = 2000
    endpoint: str = "http://127.0.0.1:11434"

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "timeout_ms": self.timeout_ms,
            "endpoint": self.endpoint,
        }


@dataclass(frozen=True)
class RoutingConfig:
    enabled: bool = False
    strategy: RoutingStrategy = RoutingStrategy.BALANCED
    prefer_local: bool = True
    local_providers: Tuple[str, ...] = ("ollama",)
    cloud_providers: Tuple[str, ...] = ("anthropic", "openai", "google")
    task_rules: Tuple[TaskRule, ...] = ()
    weights: ScoringWeights = DEFAULT_SCORING_WEIGHTS
    fallback_behavior: FallbackBehavior = FallbackBehavior.DEFAULT_MODEL
    max_fallbacks: int = DEFAULT_MAX_FALLBACKS
    health: HealthCheckConfig = field(default_factory=HealthCheckConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "strategy": self.strategy.value,
            "prefer_local": self.prefer_local,
            "local_providers": list(self.local_providers),
            "cloud_providers": list(self.cloud_providers),
            "task_rules": [r.to_dict() for r in self.task_rules],
            "weights": self.weights.to_dict(),
            "fallback_behavior": self.fallback_behavior.value,
            "max_fallbacks": self.max_fallbacks,
            "health": self.health.to_dict(),
        }


# ---------------------------------------------------------------------------
# Validation, overlays, merge
# ---------------------------------------------------------------------------

def validate_routing_config(raw: Mapping) -> None:
    """Raise ConfigValidationError if *raw* violates the schema."""
    try:
        jsonschema.validate(instance=dict(raw), schema=ROUTING_CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise ConfigValidationError(
            f"Routing config validation failed at '{path}': {e.message}"
        ) from e


_ENUM_OVERLAYS = (RoutingStrategy, FallbackBehavior)

_OVERLAY_KEYS: Dict[str, Any] = {
    "enabled": RoutingConfig.enabled,
    "strategy": RoutingConfig.strategy,
    "prefer_local": RoutingConfig.prefer_local,
    "fallback_behavior": RoutingConfig.fallback_behavior,
    "max_fallbacks": RoutingConfig.max_fallbacks,
}


def _coerce_overlay(default: Any, value: str) -> Any:
    if isinstance(default, bool):
        return value.strip().lower() in ("1", "true", "yes")
    if isinstance(default, _ENUM_OVERLAYS):
        return type(default)(value.strip()).value
    if isinstance(default, int):
        coerced = int(value)
        if coerced < 0:
            raise ValueError(f"must be >= 0, got {coerced}")
        return coerced
    return value


def apply_env_overlays(config: Dict[str, Any], environ: Optional[Mapping] = None) -> Dict[str, Any]:
    """
    Apply ``TASK_ROUTER__<KEY>`` variables to scalar top-level keys.

    Values are coerced by the default value's type; values that fail
    coercion are logged and ignored.
    """
    environ = os.environ if environ is None else environ
    for env_key, env_val in environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        key = env_key[len(ENV_PREFIX):].lower()
        if key not in _OVERLAY_KEYS:
            logger.debug("Env overlay %s: '%s' is not an overlayable key, skipping", env_key, key)
            continue
        try:
            config[key] = _coerce_overlay(_OVERLAY_KEYS[key], env_val)
            logger.info("Env overlay applied: %s = %r", key, config[key])
        except (ValueError, TypeError) as e:
            logger.warning("Env overlay %s: type coercion failed: %s", env_key, e)
    return config


def _merge_weights(raw: Optional[Mapping]) -> ScoringWeights:
    if not raw:
        return DEFAULT_SCORING_WEIGHTS
    base = DEFAULT_SCORING_WEIGHTS
    return normalize_weights(ScoringWeights(
        capability=raw.get("capability", base.capability),
        cost=raw.get("cost", base.cost),
        performance=raw.get("performance", base.performance),
        availability=raw.get("availability", base.availability),
    ))


def merge_routing_config(raw: Optional[Mapping]) -> RoutingConfig:
    """Fill absent fields of *raw* with defaults.  No schema validation."""
    if not raw:
        return RoutingConfig()
    defaults = RoutingConfig()

    health_raw = raw.get("health") or {}
    health = HealthCheckConfig(
        enabled=bool(health_raw.get("enabled", defaults.health.enabled)),
        timeout_ms=int(health_raw.get("timeout_ms", defaults.health.timeout_ms)),
        endpoint=str(health_raw.get("endpoint", defaults.health.endpoint)),
    )

    local = raw.get("local_providers")
    cloud = raw.get("cloud_providers")
    return RoutingConfig(
        enabled=bool(raw.get("enabled", defaults.enabled)),
        strategy=RoutingStrategy(raw.get("strategy", defaults.strategy)),
        prefer_local=bool(raw.get("prefer_local", defaults.prefer_local)),
        local_providers=tuple(local) if local is not None else defaults.local_providers,
        cloud_providers=tuple(cloud) if cloud is not None else defaults.cloud_providers,
        task_rules=tuple(TaskRule.from_dict(r) for r in raw.get("task_rules") or ()),
        weights=_merge_weights(raw.get("weights")),
        fallback_behavior=FallbackBehavior(raw.get("fallback_behavior", defaults.fallback_behavior)),
        max_fallbacks=int(raw.get("max_fallbacks", defaults.max_fallbacks)),
        health=health,
    )


def load_routing_config(
    raw: Optional[Mapping] = None,
    apply_env: bool = True,
    environ: Optional[Mapping] = None,
) -> RoutingConfig:
    """Validate *raw*, apply env overlays, merge over defaults."""
    data: Dict[str, Any] = copy.deepcopy(dict(raw)) if raw else {}
    validate_routing_config(data)
    if apply_env:
        data = apply_env_overlays(data, environ)
    config = merge_routing_config(data)
    logger.debug("Routing config loaded: enabled=%s strategy=%s rules=%d",
                 config.enabled, config.strategy.value, len(config.task_rules))
    return config
