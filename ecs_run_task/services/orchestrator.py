from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Optional

from ecs_run_task.actions import ActionReporter
from ecs_run_task.config import ActionInputs
from ecs_run_task.errors import RunTaskError, WaitTimeout
from ecs_run_task.schemas import NetworkConfig, RunRequest, RunResult, TaskHandle, WaitSpec
from ecs_run_task.services.aws import ExecutionService, LogService
from ecs_run_task.services.launcher import TaskLauncher
from ecs_run_task.services.log_tailer import DEFAULT_POLL_INTERVAL, LogTailer, discover_log_cursor
from ecs_run_task.services.overrides import build_container_override
from ecs_run_task.services.reconciler import ResultReconciler
from ecs_run_task.services.waiter import StateWaiter

LOGGER = logging.getLogger("ecs_run_task.orchestrator")


def build_run_request(inputs: ActionInputs) -> RunRequest:
    override = build_container_override(
        inputs.override_container,
        inputs.override_container_command,
        inputs.override_container_environment,
    )
    return RunRequest(
        cluster=inputs.cluster,
        task_definition=inputs.task_definition,
        network=NetworkConfig(
            subnets=inputs.subnet_ids,
            security_groups=inputs.security_group_ids,
            assign_public_ip=inputs.assign_public_ip,
        ),
        container_override=override,
    )


class RunTaskOrchestrator:
    """Launch one task, follow it to STOPPED while tailing its logs, and reconcile the result."""

    def __init__(
        self,
        execution: ExecutionService,
        logs: Optional[LogService] = None,
        *,
        reporter: Optional[ActionReporter] = None,
        log_poll_interval: float = DEFAULT_POLL_INTERVAL,
        wait_delay_seconds: Optional[float] = None,
    ) -> None:
        self._execution = execution
        self._logs = logs
        self._reporter = reporter or ActionReporter()
        self._log_poll_interval = log_poll_interval
        self._wait_delay_seconds = wait_delay_seconds
        self.handle: Optional[TaskHandle] = None

    @property
    def reporter(self) -> ActionReporter:
        return self._reporter

    def _wait_spec(self, inputs: ActionInputs) -> WaitSpec:
        spec = inputs.wait_spec
        if self._wait_delay_seconds is None:
            return spec
        return WaitSpec(delay_seconds=self._wait_delay_seconds, max_attempts=spec.max_attempts)

    async def _arm_tailer(
        self, inputs: ActionInputs, handle: TaskHandle, task_definition_ref: str
    ) -> Optional[LogTailer]:
        if self._logs is None:
            LOGGER.warning("Log tailing requested but no log service is configured")
            return None
        LOGGER.debug("Logging enabled. Getting logConfiguration from TaskDefinition %s.", task_definition_ref)
        try:
            task_definition = await asyncio.to_thread(
                self._execution.describe_task_definition, task_definition_ref
            )
        except Exception as exc:
            LOGGER.warning("Could not describe task definition %s; logs will not be tailed: %s", task_definition_ref, exc)
            LOGGER.debug("describe_task_definition failure", exc_info=True)
            return None
        cursor = discover_log_cursor(task_definition, handle.task_id, inputs.override_container)
        if cursor is None:
            LOGGER.info("No container with an awslogs log configuration found; logs will not be tailed.")
            return None
        LOGGER.info("Tailing logs from %s/%s", cursor.log_group, cursor.log_stream)
        return LogTailer(self._logs, cursor, poll_interval=self._log_poll_interval)

    async def run(self, inputs: ActionInputs) -> RunResult:
        request = build_run_request(inputs)
        spec = self._wait_spec(inputs)

        launcher = TaskLauncher(self._execution)
        handle = await asyncio.to_thread(launcher.launch, request)
        self.handle = handle
        self._reporter.set_output("task-arn", handle.task_arn)
        self._reporter.set_output("task-id", handle.task_id)

        waiter = StateWaiter(self._execution, inputs.cluster)
        LOGGER.debug("Waiting for task to be in running state, then to stop.")
        running = await waiter.wait_until_running(handle, spec)

        tailer: Optional[LogTailer] = None
        if inputs.tail_logs:
            # A family name may resolve to a newer revision than the one that was launched.
            task_definition_ref = running.task_definition_arn or inputs.task_definition
            tailer = await self._arm_tailer(inputs, handle, task_definition_ref)
        closed = asyncio.Event()
        tail_task: Optional[asyncio.Task] = None
        if tailer is not None:
            tail_task = asyncio.create_task(tailer.run(closed), name=f"ecs-log-{handle.task_id[:8]}")

        try:
            await waiter.wait_until_stopped(handle, spec)
        except BaseException as exc:
            if tail_task is not None:
                tail_task.cancel()
                with suppress(asyncio.CancelledError):
                    await tail_task
            if tailer is not None and isinstance(exc, WaitTimeout):
                self._reporter.set_output("log-output", tailer.output)
            raise

        log_output: Optional[str] = None
        if tail_task is not None:
            closed.set()
            log_output = await tail_task
        elif inputs.tail_logs:
            log_output = ""
        if log_output is not None:
            self._reporter.set_output("log-output", log_output)

        LOGGER.debug("Process exit code and exception.")
        description = await asyncio.to_thread(self._execution.describe_task, inputs.cluster, handle.task_arn)
        if description is None:
            raise RunTaskError(f"Task {handle.task_arn} could not be described after it stopped")
        reconciler = ResultReconciler(self._execution.region, inputs.cluster)
        outcome, url = reconciler.report(handle, description)
        return RunResult(handle=handle, outcome=outcome, log_output=log_output, console_url=url)
