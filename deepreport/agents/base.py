from __future__ import annotations

import time
from typing import Optional

from deepreport.config import ResearchConfig
from deepreport.intensity import IntensityConfig, get_intensity_config
from deepreport.llm_client import CompletionClient, StreamCallback
from deepreport.models.events import ProgressCallback, ResearchStep
from deepreport.services import logger as log_service
from deepreport.services.cancellation import CancellationToken
from deepreport.services.prompt_store import render_prompt


def _noop_progress(_step: ResearchStep) -> None:
    return None


class PipelineStage:
    """Shared plumbing for the engine's stages.

    Each stage talks to the completion endpoint through ``_chat`` (which times and
    logs every call), reports through ``_emit`` and honours cancellation through
    ``_checkpoint``.
    """

    name: str = "stage"

    def __init__(
        self,
        completion: CompletionClient,
        config: ResearchConfig,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.completion = completion
        self.config = config
        self.profile: IntensityConfig = get_intensity_config(config.intensity)
        self.on_progress = on_progress or _noop_progress
        self.cancel_token = cancel_token or CancellationToken()

    @property
    def model_name(self) -> str:
        return str(getattr(self.completion, "model", "unknown"))

    def _emit(self, step: ResearchStep) -> None:
        self.on_progress(step)

    def _checkpoint(self) -> None:
        self.cancel_token.raise_if_aborted()

    async def _chat(
        self,
        caller: str,
        system: str,
        user: str,
        *,
        on_stream_chunk: Optional[StreamCallback] = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        t0 = time.monotonic()
        try:
            response = await self.completion.chat(
                messages,
                on_stream_chunk,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model_name,
                caller=f"{self.name}.{caller}",
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
                prompt_chars=len(system) + len(user),
            )
            raise
        content = response.content or ""
        log_service.log_llm_call(
            model=self.model_name,
            caller=f"{self.name}.{caller}",
            duration_ms=int((time.monotonic() - t0) * 1000),
            prompt_chars=len(system) + len(user),
            response_chars=len(content),
        )
        return content

    async def _chat_prompt(
        self,
        caller: str,
        system_key: str,
        user_key: str,
        *,
        system_values: dict | None = None,
        on_stream_chunk: Optional[StreamCallback] = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **user_values,
    ) -> str:
        return await self._chat(
            caller,
            render_prompt(system_key, **(system_values or {})),
            render_prompt(user_key, **user_values),
            on_stream_chunk=on_stream_chunk,
            max_tokens=max_tokens,
            temperature=temperature,
        )
