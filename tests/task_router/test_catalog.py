"""Pytest suite for the single-flight backend catalog."""

import asyncio
import logging
import math
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from task_router.catalog import CatalogState, ModelCatalog, find_model_in_catalog, normalize_descriptor
from task_router.types import CostTier

DESCRIPTORS = [
    {"id": "gpt-4o", "name": "GPT-4o", "provider": "openai", "context_window": 128000,
     "input": ["text", "image"], "cost": {"input": 2.5, "output": 10}},
    {"id": "qwen2.5:7b", "name": "qwen2.5:7b", "provider": "ollama",
     "cost": {"input": 0, "output": 0}},
    {"id": "claude-sonnet-4", "name": "Claude Sonnet 4", "provider": "anthropic",
     "context_window": 200000, "reasoning": True},
    {"id": "llama3.2:3b", "name": "Llama3.2:3b", "provider": "Ollama"},
]


class CountingDiscovery:
    def __init__(self, results=None, delay: float = 0.0):
        self.calls = 0
        self.results = list(results or [])
        self.delay = delay
        self.gate = None

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.mark.asyncio
async def test_bc1_concurrent_loads_discover_once():
    discovery = CountingDiscovery([DESCRIPTORS])
    discovery.gate = asyncio.Event()
    catalog = ModelCatalog(discovery)

    first = asyncio.ensure_future(catalog.load())
    second = asyncio.ensure_future(catalog.load())
    await asyncio.sleep(0)
    assert catalog.state == CatalogState.LOADING
    discovery.gate.set()
    a, b = await asyncio.gather(first, second)

    assert discovery.calls == 1
    assert [e.id for e in a] == [e.id for e in b]
    assert len(a) == 4


@pytest.mark.asyncio
async def test_bc2_success_is_cached():
    discovery = CountingDiscovery([DESCRIPTORS])
    catalog = ModelCatalog(discovery)
    await catalog.load()
    await catalog.load()
    assert discovery.calls == 1
    assert catalog.state == CatalogState.READY


@pytest.mark.asyncio
async def test_bc3_bypass_cache_rediscovers():
    discovery = CountingDiscovery([DESCRIPTORS])
    catalog = ModelCatalog(discovery)
    await catalog.load()
    await catalog.load(use_cache=False)
    assert discovery.calls == 2


@pytest.mark.asyncio
async def test_bc4_failure_does_not_poison_cache():
    discovery = CountingDiscovery([RuntimeError("discovery down"), DESCRIPTORS])
    catalog = ModelCatalog(discovery)
    assert await catalog.load() == []
    assert catalog.state == CatalogState.EMPTY
    entries = await catalog.load()
    assert len(entries) == 4
    assert discovery.calls == 2


@pytest.mark.asyncio
async def test_bc5_empty_result_not_cached():
    discovery = CountingDiscovery([[], DESCRIPTORS])
    catalog = ModelCatalog(discovery)
    assert await catalog.load() == []
    assert catalog.state == CatalogState.EMPTY
    assert len(await catalog.load()) == 4


@pytest.mark.asyncio
async def test_bc6_failure_logged_once_per_outage(caplog):
    discovery = CountingDiscovery([RuntimeError("down")])
    catalog = ModelCatalog(discovery)
    with caplog.at_level(logging.WARNING, logger="task-router.catalog"):
        await catalog.load()
        await catalog.load()
        await catalog.load()
    failures = [r for r in caplog.records if "failed to load model catalog" in r.getMessage()]
    assert len(failures) == 1
    assert discovery.calls == 3


@pytest.mark.asyncio
async def test_bc7_timeout_returns_empty_without_cancelling_load():
    discovery = CountingDiscovery([DESCRIPTORS], delay=0.05)
    catalog = ModelCatalog(discovery)
    assert await catalog.load(timeout=0.001) == []
    entries = await catalog.load()
    assert len(entries) == 4
    assert discovery.calls == 1


@pytest.mark.asyncio
async def test_bc8_sorted_by_provider_then_name():
    catalog = ModelCatalog(CountingDiscovery([DESCRIPTORS]))
    entries = await catalog.load()
    assert [(e.provider_id, e.display_name) for e in entries] == [
        ("anthropic", "Claude Sonnet 4"),
        ("Ollama", "Llama3.2:3b"),
        ("ollama", "qwen2.5:7b"),
        ("openai", "GPT-4o"),
    ]


@pytest.mark.asyncio
async def test_bc9_capabilities_attached_on_load():
    catalog = ModelCatalog(CountingDiscovery([DESCRIPTORS]), default_cost_tier=CostTier.LOW)
    entries = {e.id: e for e in await catalog.load()}
    assert entries["gpt-4o"].capabilities.supports_vision is True
    assert entries["gpt-4o"].capabilities.cost_tier == CostTier.HIGH
    assert entries["qwen2.5:7b"].capabilities.cost_tier == CostTier.FREE
    assert entries["claude-sonnet-4"].capabilities.supports_reasoning is True
    assert entries["claude-sonnet-4"].capabilities.cost_tier == CostTier.LOW


def test_bc10_normalisation_skips_and_sanitises():
    assert normalize_descriptor({"name": "no id", "provider": "x"}) is None
    assert normalize_descriptor({"id": "m"}) is None
    assert normalize_descriptor("not a mapping") is None

    entry = normalize_descriptor({
        "id": "m1", "provider": "p", "context_window": -5,
        "cost": {"input": math.nan, "output": 1.0}, "input": ["text", "audio"],
    })
    assert entry.display_name == "m1"
    assert entry.context_window is None
    assert entry.cost.input is None
    assert entry.cost.output == 1.0
    assert [m.value for m in entry.supported_inputs] == ["text"]


@pytest.mark.asyncio
async def test_bc11_find_by_identity_case_insensitive():
    catalog = ModelCatalog(CountingDiscovery([DESCRIPTORS]))
    entries = await catalog.load()
    assert catalog.find_by_identity("OPENAI", "GPT-4O").id == "gpt-4o"
    assert catalog.find_by_identity("openai", "missing") is None
    assert find_model_in_catalog(entries, "ollama", "LLAMA3.2:3B").provider_id == "Ollama"


@pytest.mark.asyncio
async def test_bc12_reset_clears_cache():
    discovery = CountingDiscovery([DESCRIPTORS])
    catalog = ModelCatalog(discovery)
    await catalog.load()
    catalog.reset()
    assert catalog.state == CatalogState.EMPTY
    assert catalog.cached == []
    await catalog.load()
    assert discovery.calls == 2


@pytest.mark.asyncio
async def test_bc13_cancelled_discovery_degrades_to_empty_and_retries():
    discovery = CountingDiscovery([asyncio.CancelledError(), DESCRIPTORS])
    catalog = ModelCatalog(discovery)
    assert await catalog.load() == []
    assert catalog.state == CatalogState.EMPTY
    entries = await catalog.load()
    assert len(entries) == 4
    assert discovery.calls == 2


def test_bc14_load_cancelled_at_loop_shutdown_is_retried():
    discovery = CountingDiscovery([DESCRIPTORS], delay=0.05)
    catalog = ModelCatalog(discovery)
    assert asyncio.run(catalog.load(timeout=0.001)) == []
    assert catalog.state == CatalogState.EMPTY
    entries = asyncio.run(catalog.load())
    assert len(entries) == 4
    assert discovery.calls == 2
    assert catalog.state == CatalogState.READY


@pytest.mark.asyncio
async def test_bc15_partial_discovery_returned_but_not_cached():
    def broken_stream():
        yield DESCRIPTORS[0]
        raise RuntimeError("stream interrupted")

    discovery = CountingDiscovery([broken_stream(), DESCRIPTORS])
    catalog = ModelCatalog(discovery)
    entries = await catalog.load()
    assert [e.id for e in entries] == ["gpt-4o"]
    assert catalog.state == CatalogState.EMPTY
    assert len(await catalog.load()) == 4
