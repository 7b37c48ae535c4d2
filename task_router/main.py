"""
Task Router - HTTP Service

FastAPI surface over ``route_model_for_task``:

- ``GET  /healthz``  service, version, routing flag, catalog state
- ``POST /route``    route one prompt
- ``GET  /metrics``  routing counters snapshot
- ``GET  /catalog``  cached catalog entries
"""

import json
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from task_router import __version__
from task_router.catalog import ModelCatalog
from task_router.config import RoutingConfig, load_routing_config
from task_router.discovery import combined_discovery, file_discovery, ollama_discovery
from task_router.health import ProviderHealthRegistry, refresh_provider_health
from task_router.metrics import RoutingMetrics, get_global_routing_metrics
from task_router.router import DefaultModel, route_model_for_task
from task_router.types import ClassificationHints

logger = logging.getLogger("task-router")

SERVICE_NAME = "task-router"
CATALOG_LOAD_TIMEOUT_S = 10.0


# ─────────────────────────────────────────────────────────────────────────────
# Request Models
# ─────────────────────────────────────────────────────────────────────────────

class RouteHints(BaseModel):
    task_type: Optional[str] = None
    complexity: Optional[str] = None
    requires_vision: Optional[bool] = None
    requires_reasoning: Optional[bool] = None
    estimated_context_tokens: Optional[int] = None

    def to_hints(self) -> ClassificationHints:
        return ClassificationHints(
            task_type=self.task_type,
            complexity=self.complexity,
            requires_vision=self.requires_vision,
            requires_reasoning=self.requires_reasoning,
            estimated_context_tokens=self.estimated_context_tokens,
        )


class RouteRequest(BaseModel):
    prompt: str = ""
    has_images: bool = False
    hints: Optional[RouteHints] = None
    override_model: Optional[str] = None
    allowed_providers: Optional[List[str]] = None


# ─────────────────────────────────────────────────────────────────────────────
# App factory
# ─────────────────────────────────────────────────────────────────────────────

def create_app(
    catalog: ModelCatalog,
    config: RoutingConfig,
    *,
    metrics: Optional[RoutingMetrics] = None,
    default_model: Optional[DefaultModel] = None,
    cooldown_filter: Optional[Callable[[str, List[str]], Iterable[str]]] = None,
    health: Optional[ProviderHealthRegistry] = None,
) -> FastAPI:
    """Build the service around an injected catalog and config."""
    metrics = metrics if metrics is not None else get_global_routing_metrics()
    availability = health.availability if health is not None else None

    @asynccontextmanager
    async def lifespan(a: FastAPI):
        logger.info("Task Router starting up (routing %s, strategy=%s)",
                    "enabled" if config.enabled else "disabled", config.strategy.value)
        if health is not None and config.health.enabled:
            for provider in config.local_providers:
                result = await refresh_provider_health(
                    health, provider, config.health.endpoint, config.health.timeout_s,
                )
                logger.info("Local runtime %s at %s: %s", provider, config.health.endpoint,
                            "available" if result.available else f"unavailable ({result.error})")
        yield
        logger.info("Task Router shutting down...")

    app = FastAPI(
        title="Task Router",
        description="Task-based model routing",
        version=__version__,
        lifespan=lifespan,
    )

    # ─── Health & Status ──────────────────────────────────────────────────

    @app.get("/healthz")
    def healthz():
        result = {
            "ok": True,
            "service": SERVICE_NAME,
            "version": __version__,
            "routing_enabled": config.enabled,
            "catalog": {
                "state": catalog.state.value,
                "models": len(catalog.cached),
            },
        }
        if health is not None:
            result["provider_health"] = health.to_dict()
        return result

    @app.get("/metrics")
    def get_metrics():
        return metrics.get_snapshot().to_dict()

    @app.get("/catalog")
    def get_catalog():
        return {"state": catalog.state.value,
                "models": [e.to_dict() for e in catalog.cached]}

    # ─── Routing ──────────────────────────────────────────────────────────

    @app.post("/route")
    async def route(request: RouteRequest):
        result = await route_model_for_task(
            config,
            catalog,
            request.prompt,
            request.has_images,
            hints=request.hints.to_hints() if request.hints else None,
            override_model=request.override_model,
            allowed_providers=request.allowed_providers,
            default_model=default_model,
            cooldown_filter=cooldown_filter,
            metrics=metrics,
            availability=availability,
            load_timeout=CATALOG_LOAD_TIMEOUT_S,
        )
        return result.to_dict()

    # ─── Error Handlers ───────────────────────────────────────────────────

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": str(exc),
                "service": SERVICE_NAME,
            },
        )

    return app


# ─────────────────────────────────────────────────────────────────────────────
# Main Entry Point
# ─────────────────────────────────────────────────────────────────────────────

def build_default_app() -> FastAPI:
    """
    Service wiring from the environment:

    - ``TASK_ROUTER_CONFIG``: JSON routing config file
    - ``TASK_ROUTER_MODELS``: JSON file of cloud model descriptors
    - ``OLLAMA_ENDPOINT``: local runtime for discovery and health probes
    """
    raw = {}
    cfg_path = os.getenv("TASK_ROUTER_CONFIG")
    if cfg_path and Path(cfg_path).exists():
        with open(cfg_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    config = load_routing_config(raw)

    ollama_endpoint = os.getenv("OLLAMA_ENDPOINT", config.health.endpoint)
    sources = [ollama_discovery(ollama_endpoint)]
    models_path = os.getenv("TASK_ROUTER_MODELS")
    if models_path:
        sources.append(file_discovery(models_path))

    catalog = ModelCatalog(combined_discovery(*sources))
    return create_app(catalog, config, health=ProviderHealthRegistry())


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )
    host = os.getenv("TASK_ROUTER_HOST", "127.0.0.1")
    port = int(os.getenv("TASK_ROUTER_PORT", "7010"))
    logger.info("Starting Task Router on http://%s:%d", host, port)
    uvicorn.run(build_default_app(), host=host, port=port, reload=False, log_level="info")


if __name__ == "__main__":
    main()
