"""
Task Router - Model Scorer

Scores a catalog entry against a task classification along four
dimensions (capability, cost, performance, availability) and combines
them with normalised weights.  Ranking is deterministic: totals within
``SCORE_EPSILON`` tie and are broken by cost, then performance.
"""

from __future__ import annotations

import functools
import logging
import math
from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, List, Optional, Sequence

from task_router.capabilities import resolve_capabilities
from task_router.classifier import classify_task
from task_router.types import (
    BestModelResult,
    CapabilityProfile,
    CatalogEntry,
    ClassificationHints,
    Complexity,
    CostTier,
    ModelScore,
    ScoreBreakdown,
    ScoringWeights,
    TaskClassification,
)

logger = logging.getLogger("task-router.scorer")

DEFAULT_SCORING_WEIGHTS = ScoringWeights(
    capability=0.4,
    cost=0.3,
    performance=0.2,
    availability=0.1,
)

SCORE_EPSILON = 0.001

COST_TIER_SCORES = {
    CostTier.FREE: 1.0,
    CostTier.LOW: 0.7,
    CostTier.MEDIUM: 0.4,
    CostTier.HIGH: 0.2,
}

# Capability sub-factor weights (sum to 1.0)
_W_TASK_TYPE = 0.3
_W_COMPLEXITY = 0.25
_W_VISION = 0.2
_W_REASONING = 0.15
_W_CONTEXT = 0.1

HealthLookup = Callable[[str], Optional[float]]


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------

def _clean_weight(value: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(v) or math.isinf(v) or v < 0:
        return 0.0
    return v


def normalize_weights(weights: Optional[ScoringWeights]) -> ScoringWeights:
    """
    Rescale *weights* to sum to 1.0.

    Negative or non-finite components count as zero; a zero sum yields
    ``DEFAULT_SCORING_WEIGHTS``.
    """
    if weights is None:
        return DEFAULT_SCORING_WEIGHTS
    cap = _clean_weight(weights.capability)
    cost = _clean_weight(weights.cost)
    perf = _clean_weight(weights.performance)
    avail = _clean_weight(weights.availability)
    total = cap + cost + perf + avail
    if total == 0:
        return DEFAULT_SCORING_WEIGHTS
    return ScoringWeights(
        capability=cap / total,
        cost=cost / total,
        performance=perf / total,
        availability=avail / total,
    )


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------

def _profile(entry: CatalogEntry) -> CapabilityProfile:
    return resolve_capabilities(entry)


def score_capability_match(entry: CatalogEntry, task: TaskClassification) -> float:
    caps = _profile(entry)
    score = 0.0

    if task.type in caps.task_types:
        score += _W_TASK_TYPE

    model_level = caps.max_complexity.level
    task_level = Complexity(task.complexity).level
    if model_level >= task_level:
        score += _W_COMPLEXITY
    else:
        score += _W_COMPLEXITY * (model_level / task_level)

    if not task.requires_vision or caps.supports_vision:
        score += _W_VISION

    if not task.requires_reasoning:
        score += _W_REASONING
    else:
        score += _W_REASONING if caps.supports_reasoning else 0.05

    estimate = task.estimated_context_tokens
    if estimate is not None and estimate > 0:
        ratio = caps.context_window / estimate
        score += _W_CONTEXT if ratio >= 1 else _W_CONTEXT * ratio
    else:
        score += _W_CONTEXT

    return min(max(score, 0.0), 1.0)


def score_cost_efficiency(entry: CatalogEntry) -> float:
    return COST_TIER_SCORES.get(_profile(entry).cost_tier, 0.4)


def score_performance(entry: CatalogEntry, task: TaskClassification) -> float:
    caps = _profile(entry)
    window = caps.context_window
    if window >= 200_000:
        score = 0.6
    elif window >= 128_000:
        score = 0.5
    elif window >= 32_000:
        score = 0.4
    elif window >= 8_000:
        score = 0.2
    else:
        score = 0.1

    if task.requires_reasoning or task.complexity == Complexity.COMPLEX:
        score += 0.4 if caps.supports_reasoning else 0.1
    else:
        score += 0.3

    return min(score, 1.0)


def score_availability(entry: CatalogEntry, provider_health: Optional[float] = None) -> float:
    if provider_health is None:
        return 1.0
    try:
        health = float(provider_health)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(health):
        return 1.0
    return max(0.0, min(1.0, health))


# ---------------------------------------------------------------------------
# Combined score
# ---------------------------------------------------------------------------

def _pct(value: float) -> int:
    return int(Decimal(str(value * 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def explain_score(score: ModelScore, task_type: str) -> str:
    b = score.breakdown
    task_label = getattr(task_type, "value", task_type)
    return (
        f"Selected {score.provider_id}/{score.model_id} for {task_label} task: "
        f"{_pct(b.capability)}% capability match, {_pct(b.cost)}% cost efficiency, "
        f"{_pct(b.performance)}% performance, {_pct(b.availability)}% availability"
    )


def score_model(
    entry: CatalogEntry,
    task: TaskClassification,
    weights: Optional[ScoringWeights] = None,
    provider_health: Optional[float] = None,
) -> ModelScore:
    w = normalize_weights(weights)
    breakdown = ScoreBreakdown(
        capability=score_capability_match(entry, task),
        cost=score_cost_efficiency(entry),
        performance=score_performance(entry, task),
        availability=score_availability(entry, provider_health),
    )
    total = (
        breakdown.capability * w.capability
        + breakdown.cost * w.cost
        + breakdown.performance * w.performance
        + breakdown.availability * w.availability
    )
    total = min(max(total, 0.0), 1.0)
    score = ModelScore(
        provider_id=entry.provider_id,
        model_id=entry.id,
        breakdown=breakdown,
        total_score=total,
    )
    return replace(score, explanation=explain_score(score, task.type))


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def compare_scores(a: ModelScore, b: ModelScore) -> int:
    """Best-first comparator: total (epsilon tie), then cost, then performance."""
    if abs(a.total_score - b.total_score) > SCORE_EPSILON:
        return -1 if a.total_score > b.total_score else 1
    if a.breakdown.cost != b.breakdown.cost:
        return -1 if a.breakdown.cost > b.breakdown.cost else 1
    if a.breakdown.performance != b.breakdown.performance:
        return -1 if a.breakdown.performance > b.breakdown.performance else 1
    return 0


def sort_scores(scores: Iterable[ModelScore]) -> List[ModelScore]:
    return sorted(scores, key=functools.cmp_to_key(compare_scores))


def rank_models(
    entries: Sequence[CatalogEntry],
    task: TaskClassification,
    weights: Optional[ScoringWeights] = None,
    health: Optional[HealthLookup] = None,
) -> List[ModelScore]:
    """Score every entry and return them best-first."""
    if not entries:
        logger.warning("rank: empty model catalog provided")
        return []
    w = normalize_weights(weights)
    scores = []
    for entry in entries:
        provider_health = health(entry.provider_id) if health is not None else None
        scores.append(score_model(entry, task, w, provider_health))
    return sort_scores(scores)


# ---------------------------------------------------------------------------
# Hard filtering
# ---------------------------------------------------------------------------

def filter_models_by_capabilities(
    entries: Iterable[CatalogEntry],
    requires_vision: bool = False,
    requires_reasoning: bool = False,
    min_context_window: Optional[int] = None,
    allowed_providers: Optional[Iterable[str]] = None,
) -> List[CatalogEntry]:
    allowed = {p.strip().lower() for p in allowed_providers} if allowed_providers else set()
    kept: List[CatalogEntry] = []
    for entry in entries:
        caps = _profile(entry)
        if requires_vision and not caps.supports_vision:
            continue
        if requires_reasoning and not caps.supports_reasoning:
            continue
        if min_context_window is not None and caps.context_window < min_context_window:
            continue
        if allowed and entry.provider_id.strip().lower() not in allowed:
            continue
        kept.append(entry)
    return kept


def select_best_model_for_task(
    catalog: Sequence[CatalogEntry],
    prompt: str,
    has_images: bool,
    hints: Optional[ClassificationHints] = None,
    weights: Optional[ScoringWeights] = None,
) -> Optional[BestModelResult]:
    """Classify, hard-filter, rank; None when the catalog is empty."""
    if not catalog:
        logger.warning("select: empty model catalog, cannot select model")
        return None

    task = classify_task(prompt, has_images, hints)
    filtered = filter_models_by_capabilities(
        catalog,
        requires_vision=task.requires_vision,
        requires_reasoning=task.requires_reasoning,
    )
    ranked = rank_models(filtered or list(catalog), task, weights)
    if not ranked:
        return None
    return BestModelResult(score=ranked[0], task=task, all_ranked=tuple(ranked))
