"""
Task Router - Discovery Sources

Async callables that produce raw model descriptors for ModelCatalog.
Sources raise on failure; the catalog decides how failures are logged
and cached.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

logger = logging.getLogger("task-router.discovery")

Discover = Callable[[], Awaitable[List[Any]]]


def ollama_discovery(
    endpoint: str = "http://127.0.0.1:11434",
    timeout_s: float = 5.0,
    provider: str = "ollama",
    client: Optional[httpx.AsyncClient] = None,
) -> Discover:
    """Descriptors for every model a local Ollama runtime has pulled."""
    url = endpoint.rstrip("/") + "/api/tags"

    async def discover() -> List[Dict[str, Any]]:
        if client is not None:
            response = await client.get(url, timeout=timeout_s)
        else:
            async with httpx.AsyncClient(timeout=timeout_s) as owned:
                response = await owned.get(url)
        response.raise_for_status()

        descriptors = []
        for model_data in response.json().get("models", []):
            name = model_data.get("name") or model_data.get("model")
            if not name:
                continue
            descriptors.append({
                "id": name,
                "name": name,
                "provider": provider,
                # local inference has no per-token price
                "cost": {"input": 0, "output": 0},
            })
        logger.debug("discovery: %s reported %d models", url, len(descriptors))
        return descriptors

    return discover


def static_discovery(descriptors: Sequence[Any]) -> Discover:
    """A fixed descriptor list, e.g. cloud models declared in a file."""
    snapshot = list(descriptors)

    async def discover() -> List[Any]:
        return list(snapshot)

    return discover


def file_discovery(path: str) -> Discover:
    """Descriptors read from a JSON file holding a list (or ``{"models": [...]}``)."""
    async def discover() -> List[Any]:
        with open(Path(path), "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("models", [])
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a list of model descriptors")
        return data

    return discover


def combined_discovery(*sources: Discover) -> Discover:
    """
    Run *sources* concurrently and concatenate their descriptors.

    A failing source is logged and skipped; only when every source fails
    is the first error raised.
    """
    async def discover() -> List[Any]:
        results = await asyncio.gather(*(s() for s in sources), return_exceptions=True)
        merged: List[Any] = []
        errors: List[BaseException] = []
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("discovery: source failed: %s", result)
                errors.append(result)
            else:
                merged.extend(result or [])
        if errors and len(errors) == len(results):
            raise errors[0]
        return merged

    return discover
