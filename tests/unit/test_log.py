from __future__ import annotations

import json
import logging

import pytest
import structlog

from kuyo.log import configure_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_configure_logging_renders_json_lines(restore_logging, capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(debug=True, json_output=True)

    structlog.get_logger("kuyo.buffer").debug("Flushing metric batch", key="s1-server", count=3)

    line = capsys.readouterr().err.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["event"] == "Flushing metric batch"
    assert payload["level"] == "debug"
    assert payload["logger"] == "kuyo.buffer"
    assert payload["count"] == 3
    assert "_record" not in payload


def test_configure_logging_quiets_http_libraries(restore_logging) -> None:
    configure_logging(debug=True)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("urllib3").level == logging.WARNING

    configure_logging()
    assert logging.getLogger().level == logging.INFO
