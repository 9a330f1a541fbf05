import asyncio
import time

import httpx
import pytest

from ake_orchestrator.backends.client import BackendClient
from ake_orchestrator.core.ake_types import SelectionInput
from ake_orchestrator.core.errors import NoSignatureServiceReachable
from ake_orchestrator.core.health import HealthAggregator
from ake_orchestrator.core.policy import SchemeSelector, decide


@pytest.mark.parametrize("hint", [1, 512, 1024])
def test_tight_payload_prefers_falcon(hint):
    decision = decide(SelectionInput(payload_hint_bytes=hint), True, True)

    assert decision.scheme == "falcon"
    assert decision.reason == "payload_tight"


@pytest.mark.parametrize("hint", [None, 1025, 4096])
def test_large_or_missing_payload_defaults_to_dilithium(hint):
    decision = decide(SelectionInput(payload_hint_bytes=hint), True, True)

    assert decision.scheme == "dilithium"
    assert decision.reason == "default_or_health"


@pytest.mark.parametrize("scheme", ["dilithium", "falcon"])
@pytest.mark.parametrize("hint", [None, 100, 5000])
def test_reachable_preference_wins(scheme, hint):
    selection = SelectionInput(payload_hint_bytes=hint, policy_preferred_sig=scheme)

    decision = decide(selection, True, True)

    assert decision.scheme == scheme
    assert decision.reason == f"policy:{scheme}"


def test_tight_payload_without_falcon_uses_dilithium():
    decision = decide(SelectionInput(payload_hint_bytes=200), True, False)

    assert decision.scheme == "dilithium"
    assert decision.reason == "default_or_health"


def test_only_falcon_reachable():
    decision = decide(SelectionInput(policy_preferred_sig="dilithium", payload_hint_bytes=4096), False, True)

    assert decision.scheme == "falcon"
    assert decision.reason == "default_or_health"


def test_nothing_reachable_fails():
    with pytest.raises(NoSignatureServiceReachable, match="No signature service reachable"):
        decide(SelectionInput(policy_preferred_sig="falcon"), False, False)


def test_selector_probes_both_backends(backend_client, fake):
    fake.up["falcon"] = False
    selector = SchemeSelector(HealthAggregator(backend_client))

    decision = asyncio.run(selector.select(SelectionInput(payload_hint_bytes=10)))

    assert decision.scheme == "dilithium"
    assert ("dilithium", "GET", "/health") in fake.calls
    assert ("falcon", "GET", "/health") in fake.calls


HEALTH_DELAY = 0.4


def _slow_client(config):
    async def handler(request):
        await asyncio.sleep(HEALTH_DELAY)
        return httpx.Response(200)

    return BackendClient(config, transport=httpx.MockTransport(handler))


def test_selector_checks_backends_concurrently(config):
    selector = SchemeSelector(HealthAggregator(_slow_client(config)))

    started = time.monotonic()
    decision = asyncio.run(selector.select(SelectionInput(payload_hint_bytes=10)))
    elapsed = time.monotonic() - started

    assert decision.scheme == "falcon"
    assert elapsed < HEALTH_DELAY * 1.75


def test_health_report_checks_backends_concurrently(config):
    health = HealthAggregator(_slow_client(config))

    started = time.monotonic()
    report = asyncio.run(health.report())
    elapsed = time.monotonic() - started

    assert report.status == "ok"
    assert report.rotation.reachable is True
    assert elapsed < HEALTH_DELAY * 2.5
