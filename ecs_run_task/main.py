from __future__ import annotations

import asyncio
import logging
import sys

from ecs_run_task.actions import ActionReporter, configure_logging
from ecs_run_task.config import ActionInputs
from ecs_run_task.services.aws import create_services
from ecs_run_task.services.orchestrator import RunTaskOrchestrator

LOGGER = logging.getLogger("ecs_run_task.main")


def run_action(reporter: ActionReporter) -> None:
    inputs = ActionInputs.from_env()
    execution, logs = create_services()
    orchestrator = RunTaskOrchestrator(execution, logs, reporter=reporter)
    result = asyncio.run(orchestrator.run(inputs))
    if not result.outcome.success:
        reporter.set_failed(result.outcome.message or "Task failed")


def main() -> None:
    configure_logging()
    reporter = ActionReporter.from_env()
    try:
        run_action(reporter)
    except Exception as exc:
        reporter.set_failed(str(exc))
        LOGGER.debug("Run aborted", exc_info=True)
    sys.exit(reporter.exit_code)


if __name__ == "__main__":
    main()
