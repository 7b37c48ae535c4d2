"""
Task Router - Capability Resolver

Derives a CapabilityProfile for a catalog entry.  An explicitly declared
profile always wins; otherwise the profile is inferred from declared
attributes first and name markers second.
"""

from __future__ import annotations

import math
import re
from typing import Dict, Optional, Set

from task_router.types import (
    CapabilityProfile,
    CatalogEntry,
    Complexity,
    CostFigures,
    CostTier,
    InputModality,
    TaskType,
)

DEFAULT_CONTEXT_WINDOW = 8192

VISION_MARKERS = re.compile(r"vision|vlm|llava|bakllava|moondream", re.IGNORECASE)
CODING_MARKERS = re.compile(r"code|coder|codellama|starcoder|deepseek-coder|qwen.*coder", re.IGNORECASE)
REASONING_MARKERS = re.compile(r"r1|reasoning|deepseek-r1|qwen-r1", re.IGNORECASE)
CONTEXT_MARKER = re.compile(r"(\d+)k", re.IGNORECASE)


def detect_name_capabilities(name: str) -> Dict[str, object]:
    """Signals readable from a model name alone."""
    lowered = name.lower()
    context_window: Optional[int] = None
    match = CONTEXT_MARKER.search(lowered)
    if match:
        parsed = int(match.group(1))
        if parsed > 0:
            context_window = parsed * 1000
    return {
        "supports_vision": bool(VISION_MARKERS.search(lowered)),
        "supports_coding": bool(CODING_MARKERS.search(lowered)),
        "supports_reasoning": bool(REASONING_MARKERS.search(lowered)),
        "context_window": context_window,
    }


def _finite(value: Optional[float]) -> float:
    if value is None or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0.0
    return float(value)


def infer_cost_tier(cost: Optional[CostFigures], fallback: CostTier = CostTier.MEDIUM) -> CostTier:
    if cost is None:
        return fallback
    total = (_finite(cost.input) + _finite(cost.output)
             + _finite(cost.cache_read) + _finite(cost.cache_write))
    if total == 0:
        return CostTier.FREE
    if total <= 2:
        return CostTier.LOW
    if total <= 10:
        return CostTier.MEDIUM
    return CostTier.HIGH


def infer_max_complexity(context_window: int, supports_reasoning: bool) -> Complexity:
    if supports_reasoning or context_window >= 100_000:
        return Complexity.COMPLEX
    if context_window >= 32_000:
        return Complexity.MODERATE
    return Complexity.SIMPLE


def infer_task_types(
    supports_vision: bool,
    supports_reasoning: bool,
    supports_coding: bool,
    context_window: int,
) -> Set[TaskType]:
    task_types = {TaskType.GENERAL, TaskType.CHAT}
    if supports_vision:
        task_types.add(TaskType.VISION)
    if supports_reasoning:
        task_types.add(TaskType.REASONING)
    if supports_coding:
        task_types.add(TaskType.CODING)
    if supports_reasoning or context_window >= 32_000:
        task_types.add(TaskType.ANALYSIS)
    return task_types


def resolve_capabilities(
    entry: CatalogEntry,
    default_context_window: int = DEFAULT_CONTEXT_WINDOW,
    default_cost_tier: CostTier = CostTier.MEDIUM,
) -> CapabilityProfile:
    """Explicit profile short-circuits; everything else is inferred."""
    if entry.capabilities is not None:
        return entry.capabilities

    name = (entry.display_name or "").strip()
    target = f"{name} {entry.id}" if name else entry.id
    signals = detect_name_capabilities(target)

    if entry.supported_inputs is not None:
        supports_vision = InputModality.IMAGE in entry.supported_inputs
    else:
        supports_vision = bool(signals["supports_vision"])

    if entry.reasoning is not None:
        supports_reasoning = bool(entry.reasoning)
    else:
        supports_reasoning = bool(signals["supports_reasoning"])

    supports_coding = bool(signals["supports_coding"])

    if entry.context_window is not None and entry.context_window > 0:
        context_window = entry.context_window
    elif signals["context_window"]:
        context_window = int(signals["context_window"])
    else:
        context_window = default_context_window

    return CapabilityProfile(
        task_types=frozenset(infer_task_types(
            supports_vision, supports_reasoning, supports_coding, context_window,
        )),
        max_complexity=infer_max_complexity(context_window, supports_reasoning),
        supports_vision=supports_vision,
        supports_reasoning=supports_reasoning,
        context_window=context_window,
        cost_tier=infer_cost_tier(entry.cost, default_cost_tier),
    )


def model_supports_vision(entry: Optional[CatalogEntry]) -> bool:
    """Vision support from the explicit profile, then declared inputs."""
    if entry is None:
        return False
    if entry.capabilities is not None:
        return entry.capabilities.supports_vision
    if entry.supported_inputs is not None:
        return InputModality.IMAGE in entry.supported_inputs
    return False
