from __future__ import annotations

import os

import pytest

from config import KuyoConfig, load_config
from kuyo import KuyoClient, MetricRecord


def _has_collector() -> bool:
    # `load_config()` loads `.env` first, so call it before reading env vars.
    try:
        load_config()
    except Exception:
        return False
    return bool(os.getenv("KUYO_INTEGRATION_ENDPOINT"))


def _integration_config() -> KuyoConfig:
    cfg = load_config()
    return cfg.model_copy(
        update={
            "endpoint": os.environ["KUYO_INTEGRATION_ENDPOINT"].rstrip("/"),
            "environment": "development",
            "plugins": [],
        }
    )


@pytest.mark.asyncio
@pytest.mark.integration
async def test_integration_delivers_to_collector() -> None:
    """Sends an event, a batch and a critical metric to a running collector.

    To run:
    - set KUYO_API_KEY and KUYO_INTEGRATION_ENDPOINT
    - run: pytest -m integration
    """
    if not _has_collector():
        pytest.skip("Missing KUYO_API_KEY/KUYO_INTEGRATION_ENDPOINT; skipping network integration test.")

    client = KuyoClient(_integration_config())
    client.start()
    try:
        client.capture_message("integration ping", "info", {"suite": "integration"})
        for i in range(3):
            client.add_metric(MetricRecord(type="custom", name="integration_counter", value=i))

        assert await client.send_critical_metric(MetricRecord(type="custom", name="integration_critical", value=1))
        assert await client.flush() is True
        assert client.scheduler.store.pending_count() == 0
    finally:
        await client.aclose()
