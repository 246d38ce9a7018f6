"""Centralized logging service using loguru."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from deepreport.config import Settings

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "trafilatura",
    "asyncio",
)


def setup_logging(settings: Settings) -> None:
    """Install console (and optionally daily file) sinks. Call once from the entrypoint."""
    logger.remove()

    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.app_log_level.upper(),
        colorize=True,
    )

    if settings.log_to_file:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "deepreport_{time:YYYY-MM-DD}.log",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
        )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def _log_json(level: str, prefix: str, **fields: Any) -> None:
    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), **fields}
    logger.log(level, f"{prefix}: {json.dumps(payload, default=str)}")


def log_llm_call(
    model: str,
    caller: str,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
    prompt_chars: int = 0,
    response_chars: int = 0,
) -> None:
    """One line per completion call; failures go out at ERROR as ``LLM_CALL_FAILED``."""
    _log_json(
        "ERROR" if error else "INFO",
        "LLM_CALL_FAILED" if error else "LLM_CALL",
        model=model,
        caller=caller,
        prompt_chars=prompt_chars,
        response_chars=response_chars,
        duration_ms=duration_ms,
        status=status,
        error=error,
    )


def log_research_step(
    run_id: str,
    step_type: str,
    status: str,
    data: Optional[dict[str, Any]] = None,
) -> None:
    _log_json("DEBUG", "RESEARCH_STEP", run_id=run_id, step_type=step_type, status=status, data=data)


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    _log_json("INFO", "EVENT", event_type=event_type, message=message, **kwargs)
