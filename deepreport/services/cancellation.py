"""Cooperative cancellation for research runs."""
from __future__ import annotations


class ResearchCancelled(Exception):
    """Raised at a checkpoint once the run's CancellationToken was aborted.

    Not a ResearchError: callers that render failures should let this one pass silently.
    """

    def __init__(self, message: str = "Research cancelled"):
        super().__init__(message)


class CancellationToken:
    """Shared abort flag polled by the engine at its checkpoints.

    Checkpoints: before each search batch, before relevance scoring, before each
    synthesis level, before each gap-fill round and query, before each report section.
    """

    def __init__(self) -> None:
        self._aborted = False

    def abort(self) -> None:
        self._aborted = True

    @property
    def aborted(self) -> bool:
        return self._aborted

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise ResearchCancelled()
