"""
Task Router - Routing Metrics

Thread-safe in-process counters for routing decisions plus an optional
``on_metric`` observer that sees every recorded event.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from task_router.types import TaskType

if TYPE_CHECKING:
    from task_router.router import RoutingDecision

logger = logging.getLogger("task-router.metrics")

EVENT_DECISION = "routing.decision"
EVENT_TASK_CLASSIFIED = "routing.task_classified"
EVENT_MODEL_SELECTED = "routing.model_selected"
EVENT_FALLBACK_USED = "routing.fallback_used"
EVENT_OVERRIDE_USED = "routing.override_used"
EVENT_ERROR = "routing.error"


@dataclass(frozen=True)
class MetricEvent:
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RoutingMetricsSnapshot:
    """Point-in-time copy of the counters; ``snapshot_at`` is epoch seconds."""
    total_decisions: int = 0
    decisions_by_task_type: Dict[str, int] = field(default_factory=dict)
    decisions_by_strategy: Dict[str, int] = field(default_factory=dict)
    selections_by_provider: Dict[str, int] = field(default_factory=dict)
    model_selections: Dict[str, Dict[str, float]] = field(default_factory=dict)
    fallbacks_used: int = 0
    overrides_used: int = 0
    errors: int = 0
    snapshot_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_decisions": self.total_decisions,
            "decisions_by_task_type": dict(self.decisions_by_task_type),
            "decisions_by_strategy": dict(self.decisions_by_strategy),
            "selections_by_provider": dict(self.selections_by_provider),
            "model_selections": {k: dict(v) for k, v in self.model_selections.items()},
            "fallbacks_used": self.fallbacks_used,
            "overrides_used": self.overrides_used,
            "errors": self.errors,
            "snapshot_at": self.snapshot_at,
        }


class RoutingMetrics:
    """
    Counters for routing activity.

    Parameters
    ----------
    on_metric : callable, optional
        Receives a MetricEvent for every record call.  Exceptions it raises
        are logged and do not affect the counters.
    """

    def __init__(self, on_metric: Optional[Callable[[MetricEvent], None]] = None):
        self._on_metric = on_metric
        self._lock = threading.Lock()
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._total_decisions = 0
        self._by_task_type: Dict[str, int] = {}
        self._by_strategy: Dict[str, int] = {}
        self._by_provider: Dict[str, int] = {}
        # "provider/model" -> [count, score_sum]
        self._model_selections: Dict[str, list] = {}
        self._fallbacks = 0
        self._overrides = 0
        self._errors = 0

    # ---- internal helpers -------------------------------------------------

    def _emit(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        if self._on_metric is None:
            return
        try:
            self._on_metric(MetricEvent(name=name, value=value, tags=dict(tags or {})))
        except Exception as e:
            logger.warning("metrics: on_metric callback failed for %s: %s", name, e)

    def _count_selection_locked(self, provider: str, model: str, score: float) -> None:
        self._by_provider[provider] = self._by_provider.get(provider, 0) + 1
        bucket = self._model_selections.setdefault(f"{provider}/{model}", [0, 0.0])
        bucket[0] += 1
        bucket[1] += score

    # ---- recorders --------------------------------------------------------

    def record_decision(self, decision: "RoutingDecision") -> None:
        task_type = decision.task_classification.type.value
        strategy = decision.strategy.value
        selected = decision.selected_score
        with self._lock:
            self._total_decisions += 1
            self._by_task_type[task_type] = self._by_task_type.get(task_type, 0) + 1
            self._by_strategy[strategy] = self._by_strategy.get(strategy, 0) + 1
            self._count_selection_locked(selected.provider_id, selected.model_id,
                                         selected.total_score)
        self._emit(EVENT_DECISION, 1, {
            "task_type": task_type,
            "strategy": strategy,
            "provider": selected.provider_id,
            "model": selected.model_id,
        })
        self._emit(EVENT_MODEL_SELECTED, selected.total_score, {
            "provider": selected.provider_id,
            "model": selected.model_id,
        })

    def record_task_type(self, task_type: TaskType) -> None:
        self._emit(EVENT_TASK_CLASSIFIED, 1, {"task_type": TaskType(task_type).value})

    def record_model_selection(self, provider: str, model: str, score: float) -> None:
        with self._lock:
            self._count_selection_locked(provider, model, score)
        self._emit(EVENT_MODEL_SELECTED, score, {"provider": provider, "model": model})

    def record_fallback(self, provider: str, model: str) -> None:
        with self._lock:
            self._fallbacks += 1
        self._emit(EVENT_FALLBACK_USED, 1, {"provider": provider, "model": model})

    def record_override(self, provider: str, model: str) -> None:
        with self._lock:
            self._overrides += 1
        self._emit(EVENT_OVERRIDE_USED, 1, {"provider": provider, "model": model})

    def record_error(self, message: str) -> None:
        with self._lock:
            self._errors += 1
        self._emit(EVENT_ERROR, 1, {"error": str(message)})

    # ---- queries ----------------------------------------------------------

    def get_snapshot(self) -> RoutingMetricsSnapshot:
        with self._lock:
            return RoutingMetricsSnapshot(
                total_decisions=self._total_decisions,
                decisions_by_task_type=dict(self._by_task_type),
                decisions_by_strategy=dict(self._by_strategy),
                selections_by_provider=dict(self._by_provider),
                model_selections={
                    key: {"count": count, "avg_score": total / count if count else 0.0}
                    for key, (count, total) in self._model_selections.items()
                },
                fallbacks_used=self._fallbacks,
                overrides_used=self._overrides,
                errors=self._errors,
                snapshot_at=time.time(),
            )

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()


class NoopRoutingMetrics(RoutingMetrics):
    """Discards every record; snapshots are always zero."""

    def __init__(self):
        super().__init__(on_metric=None)

    def record_decision(self, decision: "RoutingDecision") -> None:
        pass

    def record_task_type(self, task_type: TaskType) -> None:
        pass

    def record_model_selection(self, provider: str, model: str, score: float) -> None:
        pass

    def record_fallback(self, provider: str, model: str) -> None:
        pass

    def record_override(self, provider: str, model: str) -> None:
        pass

    def record_error(self, message: str) -> None:
        pass


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_global_metrics: Optional[RoutingMetrics] = None
_global_lock = threading.Lock()


def get_global_routing_metrics() -> RoutingMetrics:
    global _global_metrics
    with _global_lock:
        if _global_metrics is None:
            _global_metrics = RoutingMetrics()
        return _global_metrics


def reset_global_routing_metrics() -> None:
    global _global_metrics
    with _global_lock:
        _global_metrics = None
