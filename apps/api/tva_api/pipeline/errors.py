from __future__ import annotations


class PipelineError(RuntimeError):
    """Executor-internal failure: the run cannot continue and ends with an `error` event."""


class PersistenceError(RuntimeError):
    """The violation/escalation unit of work failed and was rolled back."""
