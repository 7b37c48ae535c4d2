"""Shared fixtures for the task-router suite."""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from task_router.metrics import reset_global_routing_metrics
from task_router.types import CatalogEntry, CostFigures, InputModality

TEXT = frozenset({InputModality.TEXT})
TEXT_IMAGE = frozenset({InputModality.TEXT, InputModality.IMAGE})


def local_coder() -> CatalogEntry:
    return CatalogEntry(
        id="qwen2.5-coder:7b",
        display_name="qwen2.5-coder:7b",
        provider_id="ollama",
        context_window=32768,
        reasoning=False,
        supported_inputs=TEXT,
        cost=CostFigures(input=0, output=0),
    )


def cloud_reasoner() -> CatalogEntry:
    return CatalogEntry(
        id="claude-opus-4",
        display_name="Claude Opus 4",
        provider_id="anthropic",
        context_window=200_000,
        reasoning=True,
        supported_inputs=TEXT_IMAGE,
        cost=CostFigures(input=15, output=75, cache_read=1.5, cache_write=18.75),
    )


def cloud_mini() -> CatalogEntry:
    return CatalogEntry(
        id="gpt-4o-mini",
        display_name="GPT-4o mini",
        provider_id="openai",
        context_window=128_000,
        reasoning=False,
        supported_inputs=TEXT_IMAGE,
        cost=CostFigures(input=0.15, output=0.6),
    )


def local_vision() -> CatalogEntry:
    return CatalogEntry(
        id="llava:13b",
        display_name="llava:13b",
        provider_id="ollama",
        cost=CostFigures(input=0, output=0),
    )


@pytest.fixture
def catalog_entries():
    return [local_coder(), cloud_reasoner(), cloud_mini(), local_vision()]


@pytest.fixture(autouse=True)
def _fresh_global_metrics():
    reset_global_routing_metrics()
    yield
    reset_global_routing_metrics()
