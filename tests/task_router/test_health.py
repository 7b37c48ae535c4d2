"""Pytest suite for provider health tracking and the local runtime probe."""

import sys
from pathlib import Path

import httpx
import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from task_router.health import (
    ProviderHealthRegistry,
    ProviderState,
    probe_provider,
    refresh_provider_health,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _registry(**kw):
    clock = FakeClock()
    return ProviderHealthRegistry(clock=clock, **kw), clock


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---- registry --------------------------------------------------------------

def test_ph1_unknown_provider_fully_available():
    hr, _ = _registry()
    assert hr.get_state("ollama") == ProviderState.UNKNOWN
    assert hr.availability("ollama") == 1.0


def test_ph2_success_is_healthy():
    hr, _ = _registry()
    hr.record_success("ollama")
    assert hr.get_state("ollama") == ProviderState.HEALTHY
    assert hr.availability("OLLAMA") == 1.0


def test_ph3_single_failure_degrades():
    hr, _ = _registry(failure_threshold=3)
    hr.record_failure("ollama", "timeout")
    assert hr.get_state("ollama") == ProviderState.DEGRADED
    assert hr.availability("ollama") == 0.5


def test_ph4_threshold_quarantines():
    hr, _ = _registry(failure_threshold=3)
    for _ in range(3):
        hr.record_failure("ollama", "refused")
    assert hr.get_state("ollama") == ProviderState.QUARANTINED
    assert hr.availability("ollama") == 0.0


def test_ph5_quarantine_expires_to_degraded():
    hr, clock = _registry(failure_threshold=2, quarantine_s=30)
    hr.record_failure("ollama")
    hr.record_failure("ollama")
    clock.now += 31
    assert hr.get_state("ollama") == ProviderState.DEGRADED
    assert hr.availability("ollama") == 0.5


def test_ph6_recovery_needs_consecutive_probes():
    hr, clock = _registry(failure_threshold=2, quarantine_s=10, recovery_probes=2)
    hr.record_failure("ollama")
    hr.record_failure("ollama")
    clock.now += 100
    hr.record_success("ollama")
    assert hr.get_state("ollama") == ProviderState.DEGRADED
    hr.record_success("ollama")
    assert hr.get_state("ollama") == ProviderState.HEALTHY


def test_ph7_success_during_quarantine_keeps_quarantine():
    hr, _ = _registry(failure_threshold=1, quarantine_s=60)
    hr.record_failure("ollama")
    hr.record_success("ollama")
    assert hr.get_state("ollama") == ProviderState.QUARANTINED


def test_ph8_old_failures_leave_window():
    hr, clock = _registry(failure_threshold=2, failure_window_s=60)
    hr.record_failure("ollama")
    clock.now += 120
    hr.record_failure("ollama")
    assert hr.get_state("ollama") == ProviderState.DEGRADED


def test_ph9_to_dict():
    hr, _ = _registry()
    hr.record_failure("ollama", "refused")
    data = hr.to_dict()
    assert data["providers"]["ollama"]["last_error"] == "refused"
    assert data["config"]["failure_threshold"] == 3


# ---- probe -----------------------------------------------------------------

@pytest.mark.asyncio
async def test_ph10_probe_available():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "a"}, {"name": "b"}]})

    async with _client(handler) as client:
        result = await probe_provider("http://127.0.0.1:11434/", 1.0, client=client)
    assert result.available is True
    assert result.model_count == 2
    assert result.error is None


@pytest.mark.asyncio
async def test_ph11_probe_non_200():
    async with _client(lambda request: httpx.Response(503)) as client:
        result = await probe_provider("http://127.0.0.1:11434", 1.0, client=client)
    assert result.available is False
    assert result.error == "HTTP 503"


@pytest.mark.asyncio
async def test_ph12_probe_timeout_is_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    async with _client(handler) as client:
        result = await probe_provider("http://127.0.0.1:11434", 0.1, client=client)
    assert result.available is False
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_ph13_refresh_records_outcome():
    hr, _ = _registry()
    async with _client(lambda request: httpx.Response(200, json={"models": []})) as client:
        await refresh_provider_health(hr, "ollama", "http://127.0.0.1:11434", client=client)
    assert hr.get_state("ollama") == ProviderState.HEALTHY

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(refuse) as client:
        result = await refresh_provider_health(hr, "ollama", "http://127.0.0.1:11434", client=client)
    assert result.available is False
    assert hr.get_state("ollama") == ProviderState.DEGRADED


def test_ph14_successes_during_quarantine_do_not_count_toward_recovery():
    hr, clock = _registry(failure_threshold=1, quarantine_s=30, recovery_probes=2)
    hr.record_failure("ollama")
    hr.record_success("ollama")
    hr.record_success("ollama")
    clock.now += 31
    hr.record_success("ollama")
    assert hr.get_state("ollama") == ProviderState.DEGRADED
    hr.record_success("ollama")
    assert hr.get_state("ollama") == ProviderState.HEALTHY
