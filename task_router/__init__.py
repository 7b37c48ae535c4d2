"""
Task Router

Task-based model routing: classify a prompt, score the available model
backends against it, and pick a primary with ordered fallbacks.
"""

__version__ = "1.0.0"

from task_router.catalog import CatalogState, ModelCatalog, find_model_in_catalog
from task_router.classifier import classify_task
from task_router.capabilities import resolve_capabilities
from task_router.config import (
    ConfigValidationError,
    RoutingConfig,
    TaskRule,
    load_routing_config,
    merge_routing_config,
)
from task_router.metrics import (
    NoopRoutingMetrics,
    RoutingMetrics,
    get_global_routing_metrics,
    reset_global_routing_metrics,
)
from task_router.router import (
    RouteModelResult,
    RoutingDecision,
    RoutingResult,
    TaskBasedRouter,
    create_router_from_config,
    route_model_for_task,
)
from task_router.scorer import rank_models, score_model, select_best_model_for_task
from task_router.types import (
    CatalogEntry,
    ClassificationHints,
    ModelRef,
    RoutingStrategy,
    TaskClassification,
    TaskType,
)
