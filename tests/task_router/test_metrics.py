"""Pytest suite for routing metrics."""

import sys
import threading
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from conftest import cloud_reasoner, local_coder
from task_router.config import RoutingConfig
from task_router.metrics import (
    EVENT_DECISION,
    EVENT_ERROR,
    EVENT_FALLBACK_USED,
    EVENT_MODEL_SELECTED,
    EVENT_OVERRIDE_USED,
    EVENT_TASK_CLASSIFIED,
    NoopRoutingMetrics,
    RoutingMetrics,
    get_global_routing_metrics,
    reset_global_routing_metrics,
)
from task_router.router import TaskBasedRouter
from task_router.types import TaskType


def _decision():
    router = TaskBasedRouter(RoutingConfig(enabled=True), [local_coder(), cloud_reasoner()])
    return router.select_for_task("Debug this function").decision


def test_rt1_record_decision_counts_everything():
    m = RoutingMetrics()
    decision = _decision()
    m.record_decision(decision)
    m.record_decision(decision)
    snap = m.get_snapshot()
    assert snap.total_decisions == 2
    assert snap.decisions_by_task_type == {"coding": 2}
    assert snap.decisions_by_strategy == {"balanced": 2}
    assert snap.selections_by_provider == {"ollama": 2}
    key = "ollama/qwen2.5-coder:7b"
    assert snap.model_selections[key]["count"] == 2
    assert abs(snap.model_selections[key]["avg_score"] - decision.selected_score.total_score) < 1e-9


def test_rt2_model_selection_average():
    m = RoutingMetrics()
    m.record_model_selection("openai", "gpt-4o", 0.8)
    m.record_model_selection("openai", "gpt-4o", 0.6)
    snap = m.get_snapshot()
    assert snap.model_selections["openai/gpt-4o"]["count"] == 2
    assert abs(snap.model_selections["openai/gpt-4o"]["avg_score"] - 0.7) < 1e-9
    assert snap.total_decisions == 0


def test_rt3_simple_counters():
    m = RoutingMetrics()
    m.record_fallback("anthropic", "claude")
    m.record_override("openai", "gpt-4o")
    m.record_error("boom")
    m.record_task_type(TaskType.CHAT)
    snap = m.get_snapshot()
    assert (snap.fallbacks_used, snap.overrides_used, snap.errors) == (1, 1, 1)
    assert snap.total_decisions == 0
    assert snap.snapshot_at > 0


def test_rt4_on_metric_sees_every_event():
    events = []
    m = RoutingMetrics(on_metric=events.append)
    m.record_decision(_decision())
    m.record_task_type(TaskType.CODING)
    m.record_fallback("a", "b")
    m.record_override("a", "b")
    m.record_error("e")
    names = [e.name for e in events]
    assert names == [EVENT_DECISION, EVENT_MODEL_SELECTED, EVENT_TASK_CLASSIFIED,
                     EVENT_FALLBACK_USED, EVENT_OVERRIDE_USED, EVENT_ERROR]
    assert events[0].tags["task_type"] == "coding"


def test_rt5_callback_errors_do_not_change_counters():
    def broken(event):
        raise RuntimeError("sink down")

    m = RoutingMetrics(on_metric=broken)
    m.record_fallback("a", "b")
    m.record_error("e")
    snap = m.get_snapshot()
    assert snap.fallbacks_used == 1
    assert snap.errors == 1


def test_rt6_reset():
    m = RoutingMetrics()
    m.record_decision(_decision())
    m.reset()
    snap = m.get_snapshot()
    assert snap.total_decisions == 0
    assert snap.model_selections == {}


def test_rt7_noop_always_zero():
    m = NoopRoutingMetrics()
    m.record_decision(_decision())
    m.record_fallback("a", "b")
    m.record_override("a", "b")
    m.record_error("e")
    snap = m.get_snapshot()
    assert snap.total_decisions == 0
    assert snap.fallbacks_used == snap.overrides_used == snap.errors == 0


def test_rt8_no_lost_updates_under_threads():
    m = RoutingMetrics()

    def worker():
        for _ in range(1000):
            m.record_fallback("p", "m")
            m.record_model_selection("p", "m", 0.5)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    snap = m.get_snapshot()
    assert snap.fallbacks_used == 8000
    assert snap.model_selections["p/m"]["count"] == 8000
    assert snap.selections_by_provider["p"] == 8000


def test_rt9_global_accessor():
    first = get_global_routing_metrics()
    assert get_global_routing_metrics() is first
    reset_global_routing_metrics()
    assert get_global_routing_metrics() is not first


def test_rt10_snapshot_to_dict():
    m = RoutingMetrics()
    m.record_model_selection("openai", "gpt-4o", 0.5)
    data = m.get_snapshot().to_dict()
    assert data["model_selections"]["openai/gpt-4o"]["count"] == 1
    assert set(data) >= {"total_decisions", "fallbacks_used", "overrides_used", "errors", "snapshot_at"}
