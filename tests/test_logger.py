import json
import logging

import pytest
from loguru import logger

from deepreport.config import Settings
from deepreport.services.logger import NOISY_LOGGERS, log_event, log_llm_call, setup_logging


@pytest.fixture
def captured():
    messages: list[str] = []
    sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(sink_id)


def _payload(message: str, prefix: str) -> dict:
    assert message.startswith(prefix)
    return json.loads(message[len(prefix):])


def test_llm_call_success_and_failure(captured):
    log_llm_call("llama3.2", "planner", duration_ms=120, prompt_chars=40, response_chars=12)
    log_llm_call("llama3.2", "scorer", status="error", error="timeout")

    ok = _payload(captured[0], "LLM_CALL: ")
    failed = _payload(captured[1], "LLM_CALL_FAILED: ")
    assert ok["caller"] == "planner"
    assert ok["duration_ms"] == 120
    assert ok["error"] is None
    assert failed["status"] == "error"
    assert failed["error"] == "timeout"


def test_event_carries_extra_fields(captured):
    log_event("research_complete", "done", sources=12, intensity="quick")

    payload = _payload(captured[0], "EVENT: ")
    assert payload["event_type"] == "research_complete"
    assert payload["sources"] == 12


def test_setup_logging_creates_file_sink(tmp_path):
    settings = Settings(
        _env_file=None,
        log_to_file=True,
        log_dir=str(tmp_path / "logs"),
        noisy_log_level="ERROR",
    )

    try:
        setup_logging(settings)
        logger.info("hello file sink")
        logger.complete()
    finally:
        logger.remove()

    files = list((tmp_path / "logs").glob("deepreport_*.log"))
    assert len(files) == 1
    assert "hello file sink" in files[0].read_text()
    assert all(logging.getLogger(name).level == logging.ERROR for name in NOISY_LOGGERS)
