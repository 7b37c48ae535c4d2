"""
Task Router - Task-Based Router

Turns a prompt into a routing decision:

    override -> enabled check -> classify -> allowed-provider filter
    -> task rules -> strategy weights -> rank -> provider preference
    -> primary + fallbacks

Every stage that filters the catalog reverts to the broader set when it
would leave nothing.  Unexpected errors inside the pipeline are logged and
turned into a ``None`` result; callers handle that via
``fallback_behavior``.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from task_router.catalog import ModelCatalog
from task_router.classifier import classify_task
from task_router.config import RoutingConfig, TaskRule
from task_router.metrics import NoopRoutingMetrics, RoutingMetrics
from task_router.scorer import (
    compare_scores,
    filter_models_by_capabilities,
    normalize_weights,
    rank_models,
)
from task_router.types import (
    CatalogEntry,
    ClassificationHints,
    Complexity,
    FallbackBehavior,
    ModelRef,
    ModelScore,
    ProviderPreference,
    RoutingStrategy,
    ScoreBreakdown,
    ScoringWeights,
    TaskClassification,
)

logger = logging.getLogger("task-router.router")

DEFAULT_PROVIDER = "anthropic"
DEFAULT_MODEL_REF = ModelRef(provider=DEFAULT_PROVIDER, model="claude-sonnet-4-20250514")
PREFERENCE_BOOST = 1.1

Availability = Callable[[str], Optional[float]]
CooldownFilter = Callable[[str, List[str]], Iterable[str]]
DefaultModel = Callable[[], ModelRef]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RoutingDecision:
    """Why the primary was chosen."""
    selected_score: ModelScore
    task_classification: TaskClassification
    ranked_scores: Tuple[ModelScore, ...]
    reasoning: str
    strategy: RoutingStrategy
    provider_preference: ProviderPreference = ProviderPreference.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": self.selected_score.to_dict(),
            "task": self.task_classification.to_dict(),
            "ranked": [s.to_dict() for s in self.ranked_scores],
            "reasoning": self.reasoning,
            "strategy": self.strategy.value,
            "provider_preference": self.provider_preference.value,
        }


@dataclass(frozen=True)
class RoutingResult:
    primary: ModelRef
    fallbacks: Tuple[ModelRef, ...]
    decision: RoutingDecision

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary": self.primary.to_dict(),
            "fallbacks": [str(f) for f in self.fallbacks],
            "decision": self.decision.to_dict(),
        }


@dataclass(frozen=True)
class RouteModelResult:
    """
    Outcome of ``route_model_for_task``.

    Either a concrete ``provider``/``model`` (with optional fallbacks and
    decision) or the manual-selection sentinel, which carries neither.
    """
    provider: Optional[str] = None
    model: Optional[str] = None
    fallbacks: Tuple[str, ...] = field(default_factory=tuple)
    decision: Optional[RoutingDecision] = None
    manual_selection_required: bool = False

    @classmethod
    def manual_selection(cls) -> "RouteModelResult":
        return cls(manual_selection_required=True)

    def to_dict(self) -> Dict[str, Any]:
        if self.manual_selection_required:
            return {"manual_selection_required": True}
        return {
            "provider": self.provider,
            "model": self.model,
            "fallbacks": list(self.fallbacks),
            "decision": self.decision.to_dict() if self.decision else None,
            "manual_selection_required": False,
        }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def parse_model_ref(text: str, default_provider: str = DEFAULT_PROVIDER) -> ModelRef:
    """
    Parse ``provider/model`` or a bare ``model``.

    Raises ValueError when no model name is present.
    """
    trimmed = (text or "").strip()
    provider, sep, model = trimmed.partition("/")
    if not sep:
        provider, model = default_provider, trimmed
    provider = provider.strip() or default_provider
    model = model.strip()
    if not model:
        raise ValueError(f"model reference {text!r} has no model name")
    return ModelRef(provider=provider, model=model)


def strategy_weights(strategy: RoutingStrategy, base: ScoringWeights) -> ScoringWeights:
    """Re-weight *base* for *strategy*; the result is always normalised."""
    strategy = RoutingStrategy(strategy)
    if strategy is RoutingStrategy.COST_OPTIMIZED:
        return normalize_weights(ScoringWeights(
            capability=base.capability * 0.8,
            cost=0.5,
            performance=0.1,
            availability=base.availability,
        ))
    if strategy is RoutingStrategy.PERFORMANCE_OPTIMIZED:
        return normalize_weights(ScoringWeights(
            capability=base.capability * 0.8,
            cost=0.1,
            performance=0.5,
            availability=base.availability,
        ))
    return normalize_weights(base)


def generate_fallback_list(
    ranked: Sequence[ModelScore],
    primary: ModelRef,
    max_fallbacks: int = 3,
) -> List[ModelRef]:
    """Up to *max_fallbacks* ranked entries other than *primary*, in rank order."""
    fallbacks: List[ModelRef] = []
    for score in ranked:
        if len(fallbacks) >= max_fallbacks:
            break
        ref = ModelRef(provider=score.provider_id, model=score.model_id)
        if ref.key == primary.key:
            continue
        fallbacks.append(ref)
    return fallbacks


def should_use_routing(config: RoutingConfig, override_model: Optional[str] = None) -> bool:
    if override_model and override_model.strip():
        return True
    return bool(config.enabled)


def _lower_set(values: Iterable[str]) -> set:
    return {v.strip().lower() for v in values if v and v.strip()}


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class TaskBasedRouter:
    """
    Selects a primary model and fallbacks for a prompt.

    Parameters
    ----------
    config : RoutingConfig
    catalog_entries : sequence of CatalogEntry
    metrics : RoutingMetrics, optional
        Defaults to a NoopRoutingMetrics.
    availability : callable, optional
        ``provider_id -> float | None`` in [0, 1].  Exceptions count as 0.0.
    default_provider : str
        Provider assumed for a bare override model name.
    """

    def __init__(
        self,
        config: RoutingConfig,
        catalog_entries: Sequence[CatalogEntry],
        *,
        metrics: Optional[RoutingMetrics] = None,
        availability: Optional[Availability] = None,
        default_provider: str = DEFAULT_PROVIDER,
    ):
        self.config = config
        self._catalog: List[CatalogEntry] = list(catalog_entries)
        self.metrics = metrics if metrics is not None else NoopRoutingMetrics()
        self._availability = availability
        self.default_provider = default_provider

    # ---- public API -------------------------------------------------------

    def select_for_task(
        self,
        prompt: str,
        has_images: bool = False,
        hints: Optional[ClassificationHints] = None,
        override_model: Optional[str] = None,
        allowed_providers: Optional[Iterable[str]] = None,
    ) -> Optional[RoutingResult]:
        if override_model and override_model.strip():
            try:
                return self._override(override_model, prompt, has_images, hints)
            except ValueError as e:
                logger.warning("route: ignoring invalid override %r: %s", override_model, e)

        if not self.config.enabled:
            logger.debug("route: task-based routing is disabled")
            return None

        try:
            return self._route(prompt, has_images, hints, allowed_providers)
        except Exception as e:
            logger.error("route: routing error, falling back to default selection: %s",
                         e, exc_info=True)
            self.metrics.record_error(str(e))
            return None

    # ---- override ---------------------------------------------------------

    def _override(
        self,
        override_model: str,
        prompt: str,
        has_images: bool,
        hints: Optional[ClassificationHints],
    ) -> RoutingResult:
        primary = parse_model_ref(override_model, self.default_provider)
        logger.info("route: manual model override %s", primary)
        task = classify_task(prompt, has_images, hints)
        selected = ModelScore(
            provider_id=primary.provider,
            model_id=primary.model,
            breakdown=ScoreBreakdown(capability=1.0, cost=1.0, performance=1.0, availability=1.0),
            total_score=1.0,
            explanation=f"Manual override: {primary}",
        )
        decision = RoutingDecision(
            selected_score=selected,
            task_classification=task,
            ranked_scores=(),
            reasoning=f"Manual model override: {primary}",
            strategy=self.config.strategy,
        )
        self.metrics.record_override(primary.provider, primary.model)
        return RoutingResult(primary=primary, fallbacks=(), decision=decision)

    # ---- pipeline ---------------------------------------------------------

    def _route(
        self,
        prompt: str,
        has_images: bool,
        hints: Optional[ClassificationHints],
        allowed_providers: Optional[Iterable[str]],
    ) -> Optional[RoutingResult]:
        task = classify_task(prompt, has_images, hints)
        self.metrics.record_task_type(task.type)

        candidates = self._catalog
        allowed = list(allowed_providers or [])
        if allowed:
            candidates = filter_models_by_capabilities(self._catalog, allowed_providers=allowed)
            if not candidates:
                logger.warning("route: no models match allowed providers %s, using full catalog",
                               allowed)
                candidates = self._catalog

        candidates = self._apply_task_rules(candidates, task)

        weights = strategy_weights(self.config.strategy, self.config.weights)
        ranked = rank_models(candidates, task, weights, health=self._provider_availability)
        if not ranked:
            logger.warning("route: no models could be ranked, routing failed")
            return None

        ranked, preference = self._apply_provider_preference(ranked, task)
        selected = ranked[0]
        primary = ModelRef(provider=selected.provider_id, model=selected.model_id)
        fallbacks = generate_fallback_list(ranked, primary, self.config.max_fallbacks)

        decision = RoutingDecision(
            selected_score=selected,
            task_classification=task,
            ranked_scores=tuple(ranked),
            reasoning=(f"Task-based routing: {selected.explanation} | "
                       f"Strategy: {self.config.strategy.value} | "
                       f"Provider preference: {preference.value}"),
            strategy=self.config.strategy,
            provider_preference=preference,
        )

        logger.info("route: selected %s for %s/%s task (score=%.3f strategy=%s preference=%s)",
                    primary, task.type.value, task.complexity.value, selected.total_score,
                    self.config.strategy.value, preference.value)
        logger.debug("route: ranking %s, %d fallbacks",
                     [(s.ref, round(s.total_score, 4)) for s in ranked], len(fallbacks))

        self.metrics.record_decision(decision)
        return RoutingResult(primary=primary, fallbacks=tuple(fallbacks), decision=decision)

    def _provider_availability(self, provider_id: str) -> Optional[float]:
        if self._availability is None:
            return None
        try:
            return self._availability(provider_id)
        except Exception as e:
            logger.warning("route: availability check for %s failed, treating as unavailable: %s",
                           provider_id, e)
            return 0.0

    def _apply_task_rules(
        self,
        candidates: List[CatalogEntry],
        task: TaskClassification,
    ) -> List[CatalogEntry]:
        rules = [r for r in self.config.task_rules if r.matches(task)]
        if not rules:
            return candidates

        filtered = candidates
        for rule in rules:
            filtered = self._apply_rule(rule, filtered, task)

        if not filtered:
            logger.warning("route: task rules left no models for %s task, using full catalog",
                           task.type.value)
            return self._catalog
        return filtered

    @staticmethod
    def _apply_rule(
        rule: TaskRule,
        entries: List[CatalogEntry],
        task: TaskClassification,
    ) -> List[CatalogEntry]:
        excluded = _lower_set(rule.exclude_providers)
        if excluded:
            entries = [e for e in entries if e.provider_id.strip().lower() not in excluded]

        preferred = _lower_set(rule.preferred_providers)
        if preferred:
            narrowed = [e for e in entries if e.provider_id.strip().lower() in preferred]
            if narrowed:
                entries = narrowed

        preferred_models = _lower_set(rule.preferred_models)
        if preferred_models:
            narrowed = [e for e in entries if e.ref.lower() in preferred_models]
            if narrowed:
                entries = narrowed

        requires_reasoning = (rule.require_reasoning
                              if rule.require_reasoning is not None
                              else task.requires_reasoning)
        return filter_models_by_capabilities(
            entries,
            requires_vision=task.requires_vision,
            requires_reasoning=requires_reasoning,
            min_context_window=rule.min_context_window,
        )

    def _apply_provider_preference(
        self,
        ranked: List[ModelScore],
        task: TaskClassification,
    ) -> Tuple[List[ModelScore], ProviderPreference]:
        local = _lower_set(self.config.local_providers)
        cloud = _lower_set(self.config.cloud_providers)

        prefers_cloud = task.complexity == Complexity.COMPLEX or task.requires_reasoning
        prefers_local = (self.config.prefer_local
                         and task.complexity == Complexity.SIMPLE
                         and not prefers_cloud)

        if prefers_cloud and cloud:
            preference, boosted_set = ProviderPreference.CLOUD, cloud
        elif prefers_local and local:
            preference, boosted_set = ProviderPreference.LOCAL, local
        else:
            return ranked, ProviderPreference.NONE

        boosted = [
            replace(s, total_score=min(s.total_score * PREFERENCE_BOOST, 1.0))
            if s.provider_id.strip().lower() in boosted_set else s
            for s in ranked
        ]
        return sorted(boosted, key=functools.cmp_to_key(compare_scores)), preference


def create_router_from_config(
    config: RoutingConfig,
    catalog_entries: Sequence[CatalogEntry],
    **kwargs: Any,
) -> Optional[TaskBasedRouter]:
    """A router for *config*, or None when routing is disabled."""
    if not config.enabled:
        return None
    return TaskBasedRouter(config, catalog_entries, **kwargs)


# ---------------------------------------------------------------------------
# High-level entry point
# ---------------------------------------------------------------------------

def _filter_fallbacks_by_cooldown(
    fallbacks: Sequence[ModelRef],
    cooldown_filter: CooldownFilter,
) -> List[ModelRef]:
    """Ask the cooldown collaborator per provider; keep rank order."""
    by_provider: Dict[str, List[str]] = {}
    for ref in fallbacks:
        by_provider.setdefault(ref.provider, []).append(str(ref))

    try:
        kept = set()
        for provider, refs in by_provider.items():
            kept.update(r.lower() for r in cooldown_filter(provider, list(refs)))
    except Exception as e:
        logger.warning("route: cooldown filter unavailable, keeping all fallbacks: %s", e)
        return list(fallbacks)

    return [ref for ref in fallbacks if ref.key in kept]


async def route_model_for_task(
    config: RoutingConfig,
    catalog: ModelCatalog,
    prompt: str,
    has_images: bool = False,
    *,
    hints: Optional[ClassificationHints] = None,
    override_model: Optional[str] = None,
    allowed_providers: Optional[Iterable[str]] = None,
    default_model: Optional[DefaultModel] = None,
    cooldown_filter: Optional[CooldownFilter] = None,
    metrics: Optional[RoutingMetrics] = None,
    availability: Optional[Availability] = None,
    load_timeout: Optional[float] = None,
    default_provider: str = DEFAULT_PROVIDER,
) -> RouteModelResult:
    """
    Route one request end to end.

    An override never touches the catalog.  Otherwise the catalog is
    loaded and routed; when routing is disabled or yields nothing,
    ``config.fallback_behavior`` decides between the manual-selection
    sentinel and the default model.
    """
    metrics = metrics if metrics is not None else NoopRoutingMetrics()
    router_kwargs = dict(metrics=metrics, availability=availability,
                         default_provider=default_provider)

    if override_model and override_model.strip():
        result = TaskBasedRouter(config, [], **router_kwargs).select_for_task(
            prompt, has_images, hints, override_model=override_model,
        )
        if result is not None:
            return RouteModelResult(
                provider=result.primary.provider,
                model=result.primary.model,
                decision=result.decision,
            )

    if config.enabled:
        entries = await catalog.load(timeout=load_timeout)
        router = TaskBasedRouter(config, entries, **router_kwargs)
        result = router.select_for_task(
            prompt, has_images, hints, allowed_providers=allowed_providers,
        )
        if result is not None:
            fallbacks = list(result.fallbacks)
            if fallbacks and cooldown_filter is not None:
                fallbacks = _filter_fallbacks_by_cooldown(fallbacks, cooldown_filter)
            return RouteModelResult(
                provider=result.primary.provider,
                model=result.primary.model,
                fallbacks=tuple(str(f) for f in fallbacks),
                decision=result.decision,
            )

    if config.fallback_behavior is FallbackBehavior.MANUAL_SELECTION:
        logger.warning("route: routing produced no decision, manual selection required")
        return RouteModelResult.manual_selection()

    ref = default_model() if default_model is not None else DEFAULT_MODEL_REF
    logger.debug("route: using default model %s (routing disabled or failed)", ref)
    metrics.record_fallback(ref.provider, ref.model)
    return RouteModelResult(provider=ref.provider, model=ref.model)
