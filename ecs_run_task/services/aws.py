from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ecs_run_task.errors import LaunchError, LogFetchError
from ecs_run_task.schemas import LogEventPage, TaskDefinition, TaskDescription

LOGGER = logging.getLogger("ecs_run_task.aws")

USER_AGENT_EXTRA = "github-action-aws-ecs-run-task"


class ExecutionService:
    """Remote scheduler operations used during a task run."""

    region: Optional[str] = None

    def run_task(self, params: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - interface stub
        raise NotImplementedError

    def describe_task(self, cluster: str, task_arn: str) -> Optional[TaskDescription]:  # pragma: no cover - interface stub
        raise NotImplementedError

    def describe_task_definition(self, task_definition: str) -> TaskDefinition:  # pragma: no cover - interface stub
        raise NotImplementedError


class LogService:
    def get_log_events(
        self,
        log_group: str,
        log_stream: str,
        start_time: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> LogEventPage:  # pragma: no cover - interface stub
        raise NotImplementedError


class ECSExecutionService(ExecutionService):
    def __init__(self, client: Any) -> None:
        self._client = client

    @property
    def region(self) -> Optional[str]:
        return self._client.meta.region_name

    def run_task(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self._client.run_task(**params)
        except (ClientError, BotoCoreError) as exc:
            cluster = params.get("cluster", "default")
            if "ClusterNotFoundException" in str(exc):
                raise LaunchError(
                    f"Failed to run ECS task, cluster {cluster!r} not found. "
                    "Confirm that the cluster is configured in your region."
                ) from exc
            raise LaunchError(f"Failed to run ECS task on cluster {cluster!r}: {exc}") from exc

    def describe_task(self, cluster: str, task_arn: str) -> Optional[TaskDescription]:
        response = self._client.describe_tasks(cluster=cluster, tasks=[task_arn])
        tasks = response.get("tasks") or []
        if not tasks:
            for failure in response.get("failures") or []:
                LOGGER.debug("describe_tasks failure for %s: %s", failure.get("arn"), failure.get("reason"))
            return None
        return TaskDescription.model_validate(tasks[0])

    def describe_task_definition(self, task_definition: str) -> TaskDefinition:
        response = self._client.describe_task_definition(taskDefinition=task_definition)
        return TaskDefinition.model_validate(response.get("taskDefinition") or {})


class CloudWatchLogService(LogService):
    def __init__(self, client: Any) -> None:
        self._client = client

    def get_log_events(
        self,
        log_group: str,
        log_stream: str,
        start_time: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> LogEventPage:
        request: Dict[str, Any] = {
            "logGroupName": log_group,
            "logStreamName": log_stream,
            "startFromHead": True,
        }
        if start_time is not None:
            request["startTime"] = start_time
        if next_token is not None:
            request["nextToken"] = next_token

        try:
            response = self._client.get_log_events(**request)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code == "ResourceNotFoundException":
                # The stream is created lazily when the container first writes output.
                LOGGER.debug("Log stream %s/%s does not exist yet", log_group, log_stream)
                return LogEventPage()
            raise LogFetchError(f"Failed to read log events from {log_group}/{log_stream}: {exc}") from exc
        except BotoCoreError as exc:
            raise LogFetchError(f"Failed to read log events from {log_group}/{log_stream}: {exc}") from exc

        return LogEventPage(
            events=response.get("events") or [],
            next_token=response.get("nextForwardToken"),
        )


def create_services(region: Optional[str] = None) -> tuple[ECSExecutionService, CloudWatchLogService]:
    session = boto3.session.Session(region_name=region)
    config = Config(user_agent_extra=USER_AGENT_EXTRA)
    ecs_client = session.client("ecs", config=config)
    logs_client = session.client("logs", config=config)
    return ECSExecutionService(ecs_client), CloudWatchLogService(logs_client)
