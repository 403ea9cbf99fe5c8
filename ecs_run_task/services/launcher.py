from __future__ import annotations

import json
import logging
from typing import Any, Dict

from ecs_run_task.errors import LaunchError
from ecs_run_task.schemas import RunRequest, TaskHandle
from ecs_run_task.services.aws import ExecutionService

LOGGER = logging.getLogger("ecs_run_task.launcher")

LAUNCH_TYPE = "FARGATE"


def build_run_task_params(request: RunRequest) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "count": 1,
        "cluster": request.cluster,
        "taskDefinition": request.task_definition,
        "launchType": LAUNCH_TYPE,
        "networkConfiguration": {
            "awsvpcConfiguration": {
                "subnets": list(request.network.subnets),
                "securityGroups": list(request.network.security_groups),
                "assignPublicIp": request.network.assign_public_ip.value,
            }
        },
    }
    if request.container_override is not None:
        params["overrides"] = {"containerOverrides": [request.container_override.to_request()]}
    return params


class TaskLauncher:
    """Submit a single Fargate task run and hand back its identity."""

    def __init__(self, service: ExecutionService) -> None:
        self._service = service

    def launch(self, request: RunRequest) -> TaskHandle:
        params = build_run_task_params(request)
        LOGGER.debug("RunTask request: %s", json.dumps(params))
        LOGGER.debug("Starting task.")
        response = self._service.run_task(params)

        tasks = response.get("tasks") or []
        if not tasks:
            reasons = [
                f"{failure.get('arn') or request.task_definition}: {failure.get('reason', 'unknown')}"
                + (f" ({failure['detail']})" if failure.get("detail") else "")
                for failure in response.get("failures") or []
            ]
            detail = "; ".join(reasons) if reasons else "no task was returned"
            raise LaunchError(f"Failed to start task on cluster {request.cluster!r}: {detail}")

        handle = TaskHandle.from_arn(tasks[0]["taskArn"])
        LOGGER.info("Starting Task with ARN: %s", handle.task_arn)
        return handle
