from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ecs_run_task.errors import WaitTimeout
from ecs_run_task.schemas import TaskDescription, TaskHandle, TaskPhase, WaitSpec
from ecs_run_task.services.aws import ExecutionService

LOGGER = logging.getLogger("ecs_run_task.waiter")

_PHASE_RANK = {TaskPhase.submitted: 0, TaskPhase.running: 1, TaskPhase.stopped: 2}


class StateWaiter:
    """Poll a task's status with a fixed delay and a bounded number of attempts."""

    def __init__(self, service: ExecutionService, cluster: str) -> None:
        self._service = service
        self._cluster = cluster
        self._last_status: Optional[str] = None

    async def wait_until_running(self, handle: TaskHandle, spec: WaitSpec) -> TaskDescription:
        return await self._wait_for(handle, spec, TaskPhase.running)

    async def wait_until_stopped(self, handle: TaskHandle, spec: WaitSpec) -> TaskDescription:
        return await self._wait_for(handle, spec, TaskPhase.stopped)

    async def _wait_for(self, handle: TaskHandle, spec: WaitSpec, target: TaskPhase) -> TaskDescription:
        LOGGER.debug(
            "Waiting for task %s to be %s (delay=%ss, max_attempts=%s)",
            handle.task_id,
            target.value,
            spec.delay_seconds,
            spec.max_attempts,
        )
        for attempt in range(1, spec.max_attempts + 1):
            task = await asyncio.to_thread(self._service.describe_task, self._cluster, handle.task_arn)
            if task is None:
                LOGGER.debug("Task %s not found on attempt %s", handle.task_id, attempt)
            else:
                if task.last_status != self._last_status:
                    LOGGER.info("Task %s status is %s", handle.task_id, task.last_status)
                    self._last_status = task.last_status
                if _PHASE_RANK[task.phase] >= _PHASE_RANK[target]:
                    return task
            if attempt < spec.max_attempts:
                await asyncio.sleep(spec.delay_seconds)
        raise WaitTimeout(handle.task_arn, target.value, spec.max_attempts, self._last_status)
