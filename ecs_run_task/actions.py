"""GitHub Actions runtime glue: workflow commands, step outputs and log routing."""

from __future__ import annotations

import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Dict, Mapping, Optional, TextIO

LOGGER = logging.getLogger("ecs_run_task.actions")


def escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class WorkflowCommandHandler(logging.Handler):
    """Render records as workflow commands so the runner annotates warnings and errors."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        super().__init__()
        self._stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            if record.levelno >= logging.ERROR:
                line = f"::error::{escape_data(message)}"
            elif record.levelno >= logging.WARNING:
                line = f"::warning::{escape_data(message)}"
            elif record.levelno >= logging.INFO:
                line = message
            else:
                line = f"::debug::{escape_data(message)}"
            stream = self._stream or sys.stdout
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


def configure_logging(env: Optional[Mapping[str, str]] = None) -> None:
    source = os.environ if env is None else env
    root = logging.getLogger("ecs_run_task")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    if source.get("GITHUB_ACTIONS") == "true":
        handler: logging.Handler = WorkflowCommandHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        # Debug commands are hidden by the runner unless step debugging is on.
        root.setLevel(logging.DEBUG)
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        debug = source.get("RUNNER_DEBUG") == "1" or source.get("ECS_RUN_TASK_DEBUG") == "1"
        root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(handler)
    root.propagate = False
    # Container output is printed verbatim.
    container = logging.getLogger("ecs_run_task.container")
    for existing in list(container.handlers):
        container.removeHandler(existing)
    plain = logging.StreamHandler(sys.stdout)
    plain.setFormatter(logging.Formatter("%(message)s"))
    container.addHandler(plain)
    container.setLevel(logging.INFO)
    container.propagate = False


class ActionReporter:
    """Collect step outputs and the failure state of the invocation."""

    def __init__(self, output_path: Optional[Path] = None) -> None:
        self._output_path = output_path
        self.outputs: Dict[str, str] = {}
        self.failure: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ActionReporter":
        source = os.environ if env is None else env
        raw = source.get("GITHUB_OUTPUT", "").strip()
        return cls(Path(raw) if raw else None)

    @property
    def exit_code(self) -> int:
        return 1 if self.failure is not None else 0

    def set_output(self, name: str, value: str) -> None:
        self.outputs[name] = value
        if self._output_path is None:
            LOGGER.debug("GITHUB_OUTPUT is not set; keeping output %s in memory", name)
            return
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        if delimiter in name or delimiter in value:
            raise ValueError(f"Unexpected input: output value contains the delimiter {delimiter}")
        with self._output_path.open("a", encoding="utf-8") as handle:
            handle.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")

    def set_failed(self, message: str) -> None:
        self.failure = message
        LOGGER.error(message)
