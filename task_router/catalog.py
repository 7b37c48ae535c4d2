"""
Task Router - Backend Catalog

Asynchronous, memoised list of available backends.  Discovery itself is
an injected coroutine; this module only normalises its output and owns
the cache.

State machine::

    EMPTY   --load-------------------> LOADING (shared pending task)
    LOADING --non-empty success------> READY(entries)
    LOADING --failure / empty result-> EMPTY
    READY   --load(use_cache=False)--> EMPTY -> LOADING

Concurrent ``load()`` calls during LOADING await the same task, so
discovery runs once per flight.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from collections.abc import Mapping
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from task_router.capabilities import DEFAULT_CONTEXT_WINDOW, resolve_capabilities
from task_router.types import (
    CapabilityProfile,
    CatalogEntry,
    Complexity,
    CostFigures,
    CostTier,
    InputModality,
    TaskType,
)

logger = logging.getLogger("task-router.catalog")

Discover = Callable[[], Awaitable[Iterable[Any]]]


class CatalogState(str, Enum):
    EMPTY   = "empty"
    LOADING = "loading"
    READY   = "ready"


# ---------------------------------------------------------------------------
# Descriptor normalisation
# ---------------------------------------------------------------------------

def _finite_or_none(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _parse_cost(value: Any) -> Optional[CostFigures]:
    if isinstance(value, CostFigures):
        return value
    if not isinstance(value, Mapping):
        return None
    cost = CostFigures(
        input=_finite_or_none(value.get("input")),
        output=_finite_or_none(value.get("output")),
        cache_read=_finite_or_none(value.get("cache_read")),
        cache_write=_finite_or_none(value.get("cache_write")),
    )
    if all(v is None for v in (cost.input, cost.output, cost.cache_read, cost.cache_write)):
        return None
    return cost


def _parse_inputs(value: Any) -> Optional[frozenset]:
    if value is None or isinstance(value, (str, bytes)):
        return None
    modalities = set()
    try:
        items = list(value)
    except TypeError:
        return None
    for item in items:
        try:
            modalities.add(InputModality(item))
        except ValueError:
            logger.debug("catalog: ignoring unknown input modality %r", item)
    return frozenset(modalities)


def _parse_capabilities(value: Any) -> Optional[CapabilityProfile]:
    if isinstance(value, CapabilityProfile):
        return value
    if not isinstance(value, Mapping):
        return None
    try:
        return CapabilityProfile(
            task_types=frozenset(TaskType(t) for t in value.get("task_types", [])),
            max_complexity=Complexity(value.get("max_complexity", Complexity.MODERATE.value)),
            supports_vision=bool(value.get("supports_vision", False)),
            supports_reasoning=bool(value.get("supports_reasoning", False)),
            context_window=int(value.get("context_window", DEFAULT_CONTEXT_WINDOW)),
            cost_tier=CostTier(value.get("cost_tier", CostTier.MEDIUM.value)),
        )
    except (TypeError, ValueError) as e:
        logger.warning("catalog: ignoring malformed capability profile: %s", e)
        return None


def normalize_descriptor(raw: Any) -> Optional[CatalogEntry]:
    """Turn one raw discovery descriptor into a CatalogEntry (None to skip)."""
    if isinstance(raw, CatalogEntry):
        return raw
    if not isinstance(raw, Mapping):
        return None

    model_id = str(raw.get("id") or "").strip()
    provider = str(raw.get("provider") or "").strip()
    if not model_id or not provider:
        return None
    name = str(raw.get("name") or model_id).strip() or model_id

    context_window = raw.get("context_window")
    if isinstance(context_window, bool) or not isinstance(context_window, int) or context_window <= 0:
        context_window = None

    reasoning = raw.get("reasoning")
    if not isinstance(reasoning, bool):
        reasoning = None

    return CatalogEntry(
        id=model_id,
        display_name=name,
        provider_id=provider,
        context_window=context_window,
        reasoning=reasoning,
        supported_inputs=_parse_inputs(raw.get("input")),
        cost=_parse_cost(raw.get("cost")),
        capabilities=_parse_capabilities(raw.get("capabilities")),
    )


def sort_entries(entries: Iterable[CatalogEntry]) -> List[CatalogEntry]:
    return sorted(entries, key=lambda e: (e.provider_id.lower(), e.display_name.lower()))


def find_model_in_catalog(
    entries: Iterable[CatalogEntry],
    provider_id: str,
    model_id: str,
) -> Optional[CatalogEntry]:
    """Case-insensitive lookup by ``(provider, model)`` identity."""
    key = (provider_id.strip().lower(), model_id.strip().lower())
    for entry in entries:
        if entry.identity == key:
            return entry
    return None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class ModelCatalog:
    """
    Single-flight, failure-non-poisoning cache over a discovery coroutine.

    Parameters
    ----------
    discover : async callable
        Returns raw descriptors (mappings or CatalogEntry objects).
    default_context_window : int
        Used when neither the descriptor nor its name declares a window.
    default_cost_tier : CostTier
        Used when the descriptor declares no cost figures.
    """

    def __init__(
        self,
        discover: Discover,
        default_context_window: int = DEFAULT_CONTEXT_WINDOW,
        default_cost_tier: CostTier = CostTier.MEDIUM,
    ):
        self._discover = discover
        self._default_context_window = default_context_window
        self._default_cost_tier = default_cost_tier
        self._lock = threading.Lock()
        self._state = CatalogState.EMPTY
        self._pending: Optional[asyncio.Future] = None
        self._entries: List[CatalogEntry] = []
        self._generation = 0
        self._failure_logged = False

    # ---- public API -------------------------------------------------------

    async def load(self, use_cache: bool = True, timeout: Optional[float] = None) -> List[CatalogEntry]:
        """
        Return the catalog, discovering it if needed.

        *timeout* bounds this caller's wait only; the shared discovery
        keeps running for other callers.  A timed-out wait returns ``[]``, as
        does a shared discovery that was cancelled; the next call retries.
        """
        with self._lock:
            if not use_cache:
                self._invalidate_locked()
            if self._state is CatalogState.READY:
                return list(self._entries)
            if (self._state is CatalogState.LOADING and self._pending is not None
                    and not self._pending.cancelled()):
                pending = self._pending
            else:
                self._generation += 1
                pending = asyncio.ensure_future(self._run_discovery(self._generation))
                self._pending = pending
                self._state = CatalogState.LOADING

        try:
            if timeout is None:
                entries = await asyncio.shield(pending)
            else:
                entries = await asyncio.wait_for(asyncio.shield(pending), timeout)
        except asyncio.TimeoutError:
            logger.warning("catalog: load timed out after %.2fs, treating as empty", timeout)
            return []
        except asyncio.CancelledError:
            if not pending.cancelled():
                raise
            self._settle_cancelled(pending)
            return []
        return list(entries)

    def find_by_identity(self, provider_id: str, model_id: str) -> Optional[CatalogEntry]:
        with self._lock:
            entries = list(self._entries)
        return find_model_in_catalog(entries, provider_id, model_id)

    @property
    def state(self) -> CatalogState:
        return self._state

    @property
    def cached(self) -> List[CatalogEntry]:
        with self._lock:
            return list(self._entries)

    def reset(self) -> None:
        """Drop the cache and the logged-failure flag."""
        with self._lock:
            self._invalidate_locked()
            self._failure_logged = False

    # ---- internal ---------------------------------------------------------

    def _invalidate_locked(self) -> None:
        self._generation += 1
        self._pending = None
        self._entries = []
        self._state = CatalogState.EMPTY

    def _settle(self, generation: int, entries: List[CatalogEntry]) -> None:
        with self._lock:
            if generation != self._generation:
                # superseded by an explicit bypass
                return
            self._pending = None
            if entries:
                self._entries = entries
                self._state = CatalogState.READY
                self._failure_logged = False
            else:
                self._entries = []
                self._state = CatalogState.EMPTY

    def _settle_cancelled(self, pending: asyncio.Future) -> None:
        with self._lock:
            if self._pending is pending:
                self._pending = None
                self._state = CatalogState.EMPTY

    async def _run_discovery(self, generation: int) -> List[CatalogEntry]:
        entries: List[CatalogEntry] = []
        try:
            raw = await self._discover()
            for item in raw or []:
                entry = normalize_descriptor(item)
                if entry is None:
                    continue
                caps = resolve_capabilities(
                    entry,
                    default_context_window=self._default_context_window,
                    default_cost_tier=self._default_cost_tier,
                )
                entries.append(CatalogEntry(
                    id=entry.id,
                    display_name=entry.display_name,
                    provider_id=entry.provider_id,
                    context_window=entry.context_window,
                    reasoning=entry.reasoning,
                    supported_inputs=entry.supported_inputs,
                    cost=entry.cost,
                    capabilities=caps,
                ))
        except asyncio.CancelledError:
            logger.warning("catalog: model discovery cancelled, treating as empty")
            self._settle(generation, [])
            raise
        except Exception as e:
            if not self._failure_logged:
                self._failure_logged = True
                logger.warning("catalog: failed to load model catalog: %s", e)
            self._settle(generation, [])
            # partial results are returned but never cached
            return sort_entries(entries)

        entries = sort_entries(entries)
        if not entries:
            logger.info("catalog: discovery returned no models, not caching")
        else:
            logger.info("catalog: loaded %d models", len(entries))
        self._settle(generation, entries)
        return entries
