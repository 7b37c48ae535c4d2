"""
Task Router - Task Classifier

Keyword-driven classification of a prompt into a task type, complexity
and capability requirements.  Deterministic: same inputs always yield
the same classification.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

from task_router.types import (
    ClassificationHints,
    Complexity,
    TaskClassification,
    TaskType,
)

logger = logging.getLogger("task-router.classifier")

VISION_IMAGE_BOOST = 3
SIMPLE_MAX_CHARS = 100
COMPLEX_MIN_CHARS = 500


def _p(expr: str) -> re.Pattern:
    return re.compile(expr, re.IGNORECASE)


# ---------------------------------------------------------------------------
# Keyword families
# ---------------------------------------------------------------------------

# Each matching pattern counts once toward its task type's score.
_TASK_PATTERNS: Dict[TaskType, List[re.Pattern]] = {
    TaskType.CODING: [
        _p(r"\b(debug|implement|refactor|function|class|method|variable|code|compile|syntax|bug|fix|error|exception)\b"),
        _p(r"\b(typescript|javascript|python|rust|go|java|c\+\+|css|html|sql|api|endpoint)\b"),
        _p(r"\b(test|unit test|integration|mock|stub|coverage)\b"),
        _p(r"\b(git|commit|merge|branch|pull request|pr)\b"),
    ],
    TaskType.REASONING: [
        _p(r"\b(analyze|prove|deduce|calculate|solve|derive|infer|reason|logic|theorem)\b"),
        _p(r"\b(step[- ]by[- ]step|think through|work out|figure out|explain why)\b"),
        _p(r"\b(mathematical|equation|formula|proof|hypothesis)\b"),
        _p(r"\b(compare and contrast|evaluate|assess|critique)\b"),
    ],
    TaskType.CHAT: [
        _p(r"\b(hello|hi|hey|thanks|thank you|please|sorry|excuse me)\b"),
        _p(r"\b(how are you|what's up|good morning|good evening)\b"),
        _p(r"\b(yes|no|ok|okay|sure|got it|understood)\b"),
    ],
    TaskType.VISION: [
        _p(r"\b(image|photo|picture|screenshot|diagram|chart|graph|visual|ui|design)\b"),
        _p(r"\b(look at|see|view|show|display|render|draw)\b"),
        _p(r"\b(ocr|recognize|identify|detect|scan)\b"),
    ],
    TaskType.ANALYSIS: [
        _p(r"\b(summarize|summary|overview|review|analyze|analysis|evaluate|assessment)\b"),
        _p(r"\b(compare|contrast|difference|similarity|pros and cons)\b"),
        _p(r"\b(report|findings|conclusion|recommendation)\b"),
        _p(r"\b(data|metrics|statistics|trends|patterns)\b"),
    ],
    TaskType.GENERAL: [],
}

_COMPLEX_PATTERNS: List[re.Pattern] = [
    _p(r"\b(complex|complicated|advanced|sophisticated|comprehensive|thorough|detailed)\b"),
    _p(r"\b(multi[- ]step|multiple|several|many|all|entire|complete)\b"),
    _p(r"\b(architecture|system|design|refactor|rewrite|overhaul)\b"),
    _p(r"\b(optimize|performance|scale|production|enterprise)\b"),
]

_SIMPLE_PATTERNS: List[re.Pattern] = [
    _p(r"\b(simple|basic|quick|easy|small|minor|trivial|just|only)\b"),
    _p(r"\b(one|single|a|the)\s+(function|method|line|file|change)\b"),
    _p(r"\b(typo|rename|format|lint|style)\b"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def infer_complexity(prompt: str) -> Complexity:
    """Complex keywords win over simple ones; length decides otherwise."""
    for pattern in _COMPLEX_PATTERNS:
        if pattern.search(prompt):
            return Complexity.COMPLEX
    for pattern in _SIMPLE_PATTERNS:
        if pattern.search(prompt):
            return Complexity.SIMPLE

    if len(prompt) < SIMPLE_MAX_CHARS:
        return Complexity.SIMPLE
    if len(prompt) > COMPLEX_MIN_CHARS:
        return Complexity.COMPLEX
    return Complexity.MODERATE


def estimate_context_tokens(prompt: str) -> Optional[int]:
    """Rough token estimate (1.3 tokens per word); None for empty prompts."""
    words = len(prompt.split())
    if words == 0:
        return None
    return int(words * 1.3)


def _coerce_hint(enum_cls, value, name: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning("classify: ignoring unknown %s hint %r", name, value)
        return None


def score_task_types(prompt: str, has_images: bool) -> Dict[TaskType, int]:
    """Count distinct matching patterns per task type."""
    scores = {t: 0 for t in TaskType}
    for task_type, patterns in _TASK_PATTERNS.items():
        for pattern in patterns:
            if pattern.search(prompt):
                scores[task_type] += 1
    if has_images:
        scores[TaskType.VISION] += VISION_IMAGE_BOOST
    return scores


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

def classify_task(
    prompt: str,
    has_images: bool,
    hints: Optional[ClassificationHints] = None,
) -> TaskClassification:
    """
    Classify *prompt* into a TaskClassification.

    A hinted ``task_type`` skips pattern scoring and yields confidence 1.0.
    Other hint fields override only their own computed value.  Ties between
    task types go to the earlier type in ``TaskType`` declaration order.
    """
    prompt = prompt or ""
    hints = hints or ClassificationHints()
    tokens = (hints.estimated_context_tokens
              if hints.estimated_context_tokens is not None
              else estimate_context_tokens(prompt))

    task_type = _coerce_hint(TaskType, hints.task_type, "task_type")
    complexity_hint = _coerce_hint(Complexity, hints.complexity, "complexity")
    if task_type is not None:
        return TaskClassification(
            type=task_type,
            complexity=complexity_hint or infer_complexity(prompt),
            requires_vision=(hints.requires_vision
                             if hints.requires_vision is not None else has_images),
            requires_reasoning=(hints.requires_reasoning
                                if hints.requires_reasoning is not None
                                else task_type is TaskType.REASONING),
            confidence=1.0,
            estimated_context_tokens=tokens,
        )

    scores = score_task_types(prompt, has_images)

    detected = TaskType.GENERAL
    max_score = 0
    for task_type in TaskType:
        if scores[task_type] > max_score:
            max_score = scores[task_type]
            detected = task_type

    total = sum(scores.values())
    confidence = min(max_score / total + 0.3, 1.0) if total > 0 else 0.5

    complexity = complexity_hint or infer_complexity(prompt)

    if hints.requires_reasoning is not None:
        requires_reasoning = hints.requires_reasoning
    else:
        requires_reasoning = (
            detected is TaskType.REASONING
            or complexity is Complexity.COMPLEX
            or scores[TaskType.REASONING] > 1
        )

    classification = TaskClassification(
        type=detected,
        complexity=complexity,
        requires_vision=(hints.requires_vision
                         if hints.requires_vision is not None else has_images),
        requires_reasoning=requires_reasoning,
        confidence=confidence,
        estimated_context_tokens=tokens,
    )
    logger.debug("classify: type=%s complexity=%s confidence=%.2f scores=%s",
                 classification.type.value, classification.complexity.value,
                 confidence, {t.value: s for t, s in scores.items() if s})
    return classification
