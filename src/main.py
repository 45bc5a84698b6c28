"""Demo entrypoint wiring together the Kuyo client.

This module contains a small, end-to-end "smoke test" that:

- Loads configuration from environment.
- Starts the client with a DuckDB delivery log.
- Captures a message and an exception, buffers a few metrics and sends a
  critical one.
- Flushes and closes the client.

It is **not** intended as production wiring; it is a convenient manual
harness against a local collector.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import structlog

from config import load_config
from kuyo import KuyoClient, MetricRecord
from kuyo.log import configure_logging
from observability import DeliveryRecorder, DuckDBDeliverySink

logger = structlog.get_logger(__name__)


async def run_demo() -> None:
    """Exercise capture, buffering, the critical path and shutdown."""
    cfg = load_config()
    configure_logging(debug=cfg.debug)

    repo_root = Path(__file__).resolve().parent.parent
    db_path = os.getenv("KUYO_DELIVERY_DB_PATH", str(repo_root / "kuyo_deliveries.duckdb"))
    recorder = DeliveryRecorder(sink=DuckDBDeliverySink(path=db_path))

    client = KuyoClient(cfg, recorder=recorder)
    client.start()
    try:
        client.capture_message("Kuyo demo started", "info", {"demo": True})

        for i in range(5):
            client.add_metric(MetricRecord(type="custom", name="demo_counter", value=i, unit="count"))

        await client.send_critical_metric(MetricRecord(type="web_vitals", name="lcp", value=1234.5, unit="ms"))

        handler = client.get_adapter().wrap_handler(lambda: 1 / 0)  # type: ignore[union-attr]
        try:
            handler()
        except ZeroDivisionError:
            pass

        delivered = await client.flush()
        logger.info("Demo flush finished", delivered=delivered, session_id=client.session.id)
        logger.info("Delivery log", **await recorder.summary())
    finally:
        await client.aclose()
        logger.info("Delivery diagnostics", **recorder.degraded_status())


def main() -> None:
    """CLI entrypoint for running the demo with `python src/main.py`."""
    asyncio.run(run_demo())


if __name__ == "__main__":
    main()
