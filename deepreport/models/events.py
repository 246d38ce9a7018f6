from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable


class StepType(str, Enum):
    CLARIFYING = "clarifying"
    PLANNING = "planning"
    SEARCHING = "searching"
    READING = "reading"
    SYNTHESIZING = "synthesizing"
    WRITING = "writing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class StepProgress:
    current: int
    total: int
    phase: str


@dataclass(frozen=True)
class ResearchStep:
    """One progress event. The engine emits these and never stores them."""

    type: StepType
    message: str
    progress: StepProgress | None = None
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "progress": asdict(self.progress) if self.progress else None,
            "data": self.data,
        }


ProgressCallback = Callable[[ResearchStep], None]
