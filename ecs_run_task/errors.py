from __future__ import annotations


class RunTaskError(RuntimeError):
    """Base class for failures that abort or degrade a task run."""


class InputError(RunTaskError):
    pass


class LaunchError(RunTaskError):
    """The scheduler rejected the run request or returned no task."""


class WaitTimeout(RunTaskError):
    def __init__(self, task_arn: str, expected: str, attempts: int, last_status: str | None = None) -> None:
        self.task_arn = task_arn
        self.expected = expected
        self.attempts = attempts
        self.last_status = last_status
        super().__init__(
            f"Timed out after {attempts} attempts waiting for task {task_arn} to be {expected} "
            f"(last status: {last_status or 'unknown'})"
        )


class LogFetchError(RunTaskError):
    """A single log poll failed. Never fatal to the run."""
