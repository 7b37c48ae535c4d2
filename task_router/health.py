"""
Task Router - Provider Health

Tracks provider health with rolling failure windows, temporary quarantine
and probe-based re-entry, and exposes it to the scorer as an availability
signal in [0, 1].  Also probes a local model runtime over HTTP.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("task-router.health")

TAGS_PATH = "/api/tags"


class ProviderState(str, Enum):
    HEALTHY     = "healthy"
    DEGRADED    = "degraded"
    QUARANTINED = "quarantined"
    UNKNOWN     = "unknown"


_STATE_AVAILABILITY = {
    ProviderState.HEALTHY: 1.0,
    ProviderState.UNKNOWN: 1.0,
    ProviderState.DEGRADED: 0.5,
    ProviderState.QUARANTINED: 0.0,
}


@dataclass
class ProviderHealth:
    provider: str
    state: ProviderState = ProviderState.UNKNOWN
    failure_times: List[float] = field(default_factory=list)
    last_error: str = ""
    quarantine_until: float = 0.0
    consecutive_successes: int = 0
    total_successes: int = 0
    total_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "state": self.state.value,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "consecutive_successes": self.consecutive_successes,
            "recent_failures": len(self.failure_times),
            "last_error": self.last_error,
        }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ProviderHealthRegistry:
    """
    Thread-safe per-provider health.

    Parameters
    ----------
    failure_window_s : float
        Rolling window (seconds) for counting recent failures.
    failure_threshold : int
        Failures within the window that trigger quarantine.
    quarantine_s : float
        Quarantine duration (seconds).
    recovery_probes : int
        Consecutive successes needed to leave DEGRADED/QUARANTINED.
    clock : callable
        Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        failure_window_s: float = 60.0,
        failure_threshold: int = 3,
        quarantine_s: float = 30.0,
        recovery_probes: int = 2,
        clock=time.monotonic,
    ):
        self._lock = threading.Lock()
        self._providers: Dict[str, ProviderHealth] = {}
        self._clock = clock
        self.failure_window_s = failure_window_s
        self.failure_threshold = failure_threshold
        self.quarantine_s = quarantine_s
        self.recovery_probes = recovery_probes

    # ---- internal helpers -------------------------------------------------

    def _ensure(self, provider: str) -> ProviderHealth:
        key = provider.strip().lower()
        if key not in self._providers:
            self._providers[key] = ProviderHealth(provider=key)
        return self._providers[key]

    def _expire(self, ph: ProviderHealth, now: float) -> None:
        cutoff = now - self.failure_window_s
        ph.failure_times = [t for t in ph.failure_times if t >= cutoff]
        if ph.state is ProviderState.QUARANTINED and now >= ph.quarantine_until:
            ph.state = ProviderState.DEGRADED
            logger.info("health: %s quarantine expired, allowing probes", ph.provider)

    # ---- recorders --------------------------------------------------------

    def record_success(self, provider: str) -> None:
        now = self._clock()
        with self._lock:
            ph = self._ensure(provider)
            self._expire(ph, now)
            ph.total_successes += 1
            if ph.state is ProviderState.QUARANTINED:
                ph.consecutive_successes = 0
                return
            ph.consecutive_successes += 1
            if ph.state is ProviderState.DEGRADED:
                if ph.consecutive_successes >= self.recovery_probes:
                    ph.state = ProviderState.HEALTHY
                    ph.quarantine_until = 0.0
                    logger.info("health: %s recovered after %d probes",
                                ph.provider, ph.consecutive_successes)
            else:
                ph.state = ProviderState.HEALTHY

    def record_failure(self, provider: str, error: str = "") -> None:
        now = self._clock()
        with self._lock:
            ph = self._ensure(provider)
            self._expire(ph, now)
            ph.total_failures += 1
            ph.consecutive_successes = 0
            ph.last_error = error
            ph.failure_times.append(now)

            if len(ph.failure_times) >= self.failure_threshold:
                ph.state = ProviderState.QUARANTINED
                ph.quarantine_until = now + self.quarantine_s
                logger.warning("health: %s quarantined for %.0fs (%d failures in %.0fs)",
                               ph.provider, self.quarantine_s,
                               len(ph.failure_times), self.failure_window_s)
            elif ph.state is not ProviderState.QUARANTINED:
                ph.state = ProviderState.DEGRADED

    # ---- queries ----------------------------------------------------------

    def get_state(self, provider: str) -> ProviderState:
        now = self._clock()
        with self._lock:
            ph = self._ensure(provider)
            self._expire(ph, now)
            return ph.state

    def availability(self, provider: str) -> float:
        """Availability signal for the scorer."""
        return _STATE_AVAILABILITY[self.get_state(provider)]

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            providers = {p: ph.to_dict() for p, ph in self._providers.items()}
        return {
            "providers": providers,
            "config": {
                "failure_window_s": self.failure_window_s,
                "failure_threshold": self.failure_threshold,
                "quarantine_s": self.quarantine_s,
                "recovery_probes": self.recovery_probes,
            },
        }


# ---------------------------------------------------------------------------
# Local runtime probe
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProbeResult:
    available: bool
    latency_ms: float = 0.0
    model_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": self.available,
            "latency_ms": round(self.latency_ms, 2),
            "model_count": self.model_count,
            "error": self.error,
        }


async def probe_provider(
    endpoint: str,
    timeout_s: float = 2.0,
    client: Optional[httpx.AsyncClient] = None,
) -> ProbeResult:
    """
    GET ``{endpoint}/api/tags``.  Never raises; any failure (connection,
    timeout, non-200, bad body) yields an unavailable result.
    """
    url = endpoint.rstrip("/") + TAGS_PATH
    start = time.perf_counter()
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout_s)
    try:
        response = await client.get(url, timeout=timeout_s)
        latency_ms = (time.perf_counter() - start) * 1000
        if response.status_code != 200:
            return ProbeResult(available=False, latency_ms=latency_ms,
                               error=f"HTTP {response.status_code}")
        data = response.json()
        models = data.get("models", []) if isinstance(data, dict) else []
        return ProbeResult(available=True, latency_ms=latency_ms,
                           model_count=len(models) if isinstance(models, list) else 0)
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.debug("health: probe of %s failed: %s", url, e)
        return ProbeResult(available=False, latency_ms=latency_ms,
                           error=str(e) or type(e).__name__)
    finally:
        if owns_client:
            await client.aclose()


async def refresh_provider_health(
    registry: ProviderHealthRegistry,
    provider: str,
    endpoint: str,
    timeout_s: float = 2.0,
    client: Optional[httpx.AsyncClient] = None,
) -> ProbeResult:
    """Probe *endpoint* and record the outcome against *provider*."""
    result = await probe_provider(endpoint, timeout_s, client=client)
    if result.available:
        registry.record_success(provider)
    else:
        registry.record_failure(provider, result.error or "unavailable")
    return result
