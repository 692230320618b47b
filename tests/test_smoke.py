"""
PURPOSE: Tests for the smoke check runner.
"""

import pytest

from shared_event_bus import smoke
from shared_event_bus.config.settings import Settings


@pytest.mark.asyncio
async def test_in_process_checks_pass_without_broker():
    results = await smoke.run_smoke(redis_url="")

    assert [r.name for r in results] == [
        "In-process Event",
        "Multiple Subscribers",
        "Different Event Types",
        "Event Payload Structure",
    ]
    assert all(r.passed for r in results)


@pytest.mark.asyncio
async def test_distributed_check_runs_with_broker(broker, test_settings):
    results = await smoke.run_smoke(settings=test_settings, client_factory=broker.factory)

    assert results[-1].name == "Distributed Event"
    assert all(r.passed for r in results), [r for r in results if not r.passed]


@pytest.mark.asyncio
async def test_unreachable_broker_skips_distributed_check(broker):
    broker.down = True
    settings = Settings(REDIS_URL="redis://fake-redis:6379/0", EVENT_BUS_CONNECT_RETRIES=0)

    results = await smoke.run_smoke(settings=settings, client_factory=broker.factory)

    assert len(results) == 4
    assert all(r.passed for r in results)


def test_main_exit_codes(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setattr(smoke, "setup_logging", lambda level: None)
    assert smoke.main() == 0

    async def failing_run(**kwargs):
        return [smoke.SmokeResult(name="In-process Event", passed=False)]

    monkeypatch.setattr(smoke, "run_smoke", failing_run)
    assert smoke.main() == 1
