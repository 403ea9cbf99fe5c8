from __future__ import annotations

import logging
from typing import Optional

from ecs_run_task.schemas import TaskDescription, TaskHandle, TaskOutcome

LOGGER = logging.getLogger("ecs_run_task.reconciler")

GENERIC_FAILURE_MESSAGE = "Task stopped without reporting a successful exit code"


def console_url(region: Optional[str], cluster: str, task_id: str) -> str:
    return (
        f"https://console.aws.amazon.com/ecs/home?region={region or ''}"
        f"#/clusters/{cluster}/tasks/{task_id}/details"
    )


def reconcile(task: TaskDescription) -> TaskOutcome:
    exit_code = task.containers[0].exit_code if task.containers else None
    if exit_code == 0:
        return TaskOutcome(exit_code=0, stopped_reason=task.stopped_reason, success=True)
    return TaskOutcome(
        exit_code=exit_code,
        stopped_reason=task.stopped_reason,
        success=False,
        message=task.stopped_reason or GENERIC_FAILURE_MESSAGE,
    )


class ResultReconciler:
    def __init__(self, region: Optional[str], cluster: str) -> None:
        self._region = region
        self._cluster = cluster

    def report(self, handle: TaskHandle, task: TaskDescription) -> tuple[TaskOutcome, Optional[str]]:
        outcome = reconcile(task)
        if outcome.success:
            LOGGER.info("Task %s exited successfully.", handle.task_id)
            return outcome, None
        url = console_url(self._region, self._cluster, handle.task_id)
        if outcome.exit_code is None:
            LOGGER.error("Task %s exited without reporting an exit status.", handle.task_id)
        else:
            LOGGER.warning("Task %s exited with non-zero exit code %s.", handle.task_id, outcome.exit_code)
        LOGGER.info("Task failed, see details on Amazon ECS console: %s", url)
        return outcome, url
