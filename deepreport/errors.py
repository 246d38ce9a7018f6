from __future__ import annotations


class ResearchError(Exception):
    """A research run failed for a reason other than user cancellation."""


class PlanningError(ResearchError):
    """The search plan could not be generated; the run cannot continue."""


class CompletionError(ResearchError):
    """The completion endpoint rejected or failed a request."""


class SearchError(ResearchError):
    """The metasearch endpoint rejected or failed a request."""
