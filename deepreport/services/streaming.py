from __future__ import annotations

from typing import Any

from deepreport.models.events import ResearchStep, StepProgress, StepType


def _step(
    step_type: StepType,
    message: str,
    current: int | None = None,
    total: int | None = None,
    phase: str | None = None,
    data: dict[str, Any] | None = None,
) -> ResearchStep:
    progress = None
    if phase is not None:
        progress = StepProgress(current=current or 0, total=total or 0, phase=phase)
    return ResearchStep(type=step_type, message=message, progress=progress, data=data)


def clarifying(message: str, **kwargs: Any) -> ResearchStep:
    return _step(StepType.CLARIFYING, message, **kwargs)


def planning(message: str, **kwargs: Any) -> ResearchStep:
    return _step(StepType.PLANNING, message, **kwargs)


def searching(message: str, **kwargs: Any) -> ResearchStep:
    return _step(StepType.SEARCHING, message, **kwargs)


def reading(message: str, **kwargs: Any) -> ResearchStep:
    return _step(StepType.READING, message, **kwargs)


def synthesizing(message: str, **kwargs: Any) -> ResearchStep:
    return _step(StepType.SYNTHESIZING, message, **kwargs)


def writing(message: str, **kwargs: Any) -> ResearchStep:
    return _step(StepType.WRITING, message, **kwargs)


def complete(message: str, **kwargs: Any) -> ResearchStep:
    return _step(StepType.COMPLETE, message, **kwargs)
