"""
Task Router - Core Types

Value types shared by the classifier, scorer, catalog and router.
Every record is immutable; closed vocabularies are string enums so they
serialise to their wire value unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

class TaskType(str, Enum):
    """Task categories.  Declaration order is the classifier tie order."""
    CODING    = "coding"
    REASONING = "reasoning"
    CHAT      = "chat"
    VISION    = "vision"
    ANALYSIS  = "analysis"
    GENERAL   = "general"


class Complexity(str, Enum):
    SIMPLE   = "simple"
    MODERATE = "moderate"
    COMPLEX  = "complex"

    @property
    def level(self) -> int:
        return _COMPLEXITY_LEVELS[self]


_COMPLEXITY_LEVELS = {
    Complexity.SIMPLE: 1,
    Complexity.MODERATE: 2,
    Complexity.COMPLEX: 3,
}


class CostTier(str, Enum):
    FREE   = "free"
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"


class RoutingStrategy(str, Enum):
    COST_OPTIMIZED        = "cost-optimized"
    PERFORMANCE_OPTIMIZED = "performance-optimized"
    BALANCED              = "balanced"


class FallbackBehavior(str, Enum):
    MANUAL_SELECTION = "manual-selection"
    DEFAULT_MODEL    = "default-model"


class ProviderPreference(str, Enum):
    LOCAL = "local"
    CLOUD = "cloud"
    NONE  = "none"


class InputModality(str, Enum):
    TEXT  = "text"
    IMAGE = "image"


# ---------------------------------------------------------------------------
# Task classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaskClassification:
    """Result of classifying one prompt."""
    type: TaskType
    complexity: Complexity
    requires_vision: bool
    requires_reasoning: bool
    confidence: float
    estimated_context_tokens: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "complexity": self.complexity.value,
            "requires_vision": self.requires_vision,
            "requires_reasoning": self.requires_reasoning,
            "confidence": round(self.confidence, 4),
            "estimated_context_tokens": self.estimated_context_tokens,
        }


@dataclass(frozen=True)
class ClassificationHints:
    """Caller-supplied overrides for the classifier."""
    task_type: Optional[TaskType] = None
    complexity: Optional[Complexity] = None
    requires_vision: Optional[bool] = None
    requires_reasoning: Optional[bool] = None
    estimated_context_tokens: Optional[int] = None


# ---------------------------------------------------------------------------
# Backend description
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CapabilityProfile:
    """Normalised declaration of what a backend can handle."""
    task_types: FrozenSet[TaskType]
    max_complexity: Complexity
    supports_vision: bool
    supports_reasoning: bool
    context_window: int
    cost_tier: CostTier

    def __post_init__(self) -> None:
        if self.context_window <= 0:
            raise ValueError(f"context_window must be > 0, got {self.context_window}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_types": [t.value for t in TaskType if t in self.task_types],
            "max_complexity": self.max_complexity.value,
            "supports_vision": self.supports_vision,
            "supports_reasoning": self.supports_reasoning,
            "context_window": self.context_window,
            "cost_tier": self.cost_tier.value,
        }


@dataclass(frozen=True)
class CostFigures:
    """Declared per-token prices.  Missing figures count as zero."""
    input: Optional[float] = None
    output: Optional[float] = None
    cache_read: Optional[float] = None
    cache_write: Optional[float] = None

    def total(self) -> float:
        return sum(v for v in (self.input, self.output, self.cache_read, self.cache_write)
                   if v is not None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": self.input,
            "output": self.output,
            "cache_read": self.cache_read,
            "cache_write": self.cache_write,
        }


@dataclass(frozen=True)
class CatalogEntry:
    """
    One available backend.

    Identity is ``(provider_id, id)`` compared case-insensitively.
    """
    id: str
    display_name: str
    provider_id: str
    context_window: Optional[int] = None
    reasoning: Optional[bool] = None
    supported_inputs: Optional[FrozenSet[InputModality]] = None
    cost: Optional[CostFigures] = None
    capabilities: Optional[CapabilityProfile] = None

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.provider_id.strip().lower(), self.id.strip().lower())

    @property
    def ref(self) -> str:
        return f"{self.provider_id}/{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "provider_id": self.provider_id,
            "context_window": self.context_window,
            "reasoning": self.reasoning,
            "supported_inputs": (sorted(m.value for m in self.supported_inputs)
                                 if self.supported_inputs is not None else None),
            "cost": self.cost.to_dict() if self.cost else None,
            "capabilities": self.capabilities.to_dict() if self.capabilities else None,
        }


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScoringWeights:
    capability: float = 0.4
    cost: float = 0.3
    performance: float = 0.2
    availability: float = 0.1

    def total(self) -> float:
        return self.capability + self.cost + self.performance + self.availability

    def to_dict(self) -> Dict[str, float]:
        return {
            "capability": self.capability,
            "cost": self.cost,
            "performance": self.performance,
            "availability": self.availability,
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    capability: float
    cost: float
    performance: float
    availability: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "capability": round(self.capability, 4),
            "cost": round(self.cost, 4),
            "performance": round(self.performance, 4),
            "availability": round(self.availability, 4),
        }


@dataclass(frozen=True)
class ModelScore:
    provider_id: str
    model_id: str
    breakdown: ScoreBreakdown
    total_score: float
    explanation: str = ""

    @property
    def ref(self) -> str:
        return f"{self.provider_id}/{self.model_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider_id,
            "model": self.model_id,
            "total_score": round(self.total_score, 4),
            "breakdown": self.breakdown.to_dict(),
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class ModelRef:
    """A ``provider/model`` reference handed back to callers."""
    provider: str
    model: str

    @property
    def key(self) -> str:
        return f"{self.provider}/{self.model}".lower()

    def __str__(self) -> str:
        return f"{self.provider}/{self.model}"

    def to_dict(self) -> Dict[str, str]:
        return {"provider": self.provider, "model": self.model}


@dataclass(frozen=True)
class BestModelResult:
    """Top-ranked score plus the classification and full ranking behind it."""
    score: ModelScore
    task: TaskClassification
    all_ranked: Tuple[ModelScore, ...] = field(default_factory=tuple)
