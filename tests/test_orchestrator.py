from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from ecs_run_task import main as entrypoint
from ecs_run_task.actions import ActionReporter
from ecs_run_task.config import ActionInputs
from ecs_run_task.errors import LaunchError, WaitTimeout
from ecs_run_task.schemas import LogEvent, LogEventPage, TaskDefinition, TaskDescription
from ecs_run_task.services.orchestrator import RunTaskOrchestrator, build_run_request

TASK_ARN = "arn:aws:ecs:us-east-1:123456789012:task/demo-cluster/9f8e7d6c5b4a"
TASK_ID = "9f8e7d6c5b4a"
BASE_TS = 1_700_000_000_000


class StubExecution:
    region = "us-east-1"

    def __init__(
        self,
        statuses: List[str],
        *,
        exit_code: Optional[int] = 0,
        stopped_reason: Optional[str] = None,
        run_response: Optional[Dict[str, Any]] = None,
        task_definition: Optional[Dict[str, Any]] = None,
        task_definition_arn: Optional[str] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self._statuses = statuses
        self._exit_code = exit_code
        self._stopped_reason = stopped_reason
        self._run_response = run_response or {"tasks": [{"taskArn": TASK_ARN}], "failures": []}
        self._task_definition = task_definition or {"containerDefinitions": [{"name": "web"}]}
        self._task_definition_arn = task_definition_arn
        # Once the task is running, hold status polls until this is set.
        self._gate = gate
        self.run_calls: List[Dict[str, Any]] = []
        self.definition_lookups: List[str] = []
        self.describe_calls = 0
        self.stopped_seen = False

    def run_task(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.run_calls.append(params)
        return self._run_response

    def describe_task(self, cluster: str, task_arn: str) -> Optional[TaskDescription]:
        if self._gate is not None and self.describe_calls > 0:
            self._gate.wait(timeout=5)
        status = self._statuses[min(self.describe_calls, len(self._statuses) - 1)]
        self.describe_calls += 1
        payload: Dict[str, Any] = {"taskArn": task_arn, "lastStatus": status, "containers": [{"name": "web"}]}
        if self._task_definition_arn is not None:
            payload["taskDefinitionArn"] = self._task_definition_arn
        if status == "STOPPED":
            self.stopped_seen = True
            if self._exit_code is not None:
                payload["containers"][0]["exitCode"] = self._exit_code
            if self._stopped_reason is not None:
                payload["stoppedReason"] = self._stopped_reason
        return TaskDescription.model_validate(payload)

    def describe_task_definition(self, task_definition: str) -> TaskDefinition:
        self.definition_lookups.append(task_definition)
        return TaskDefinition.model_validate(self._task_definition)


class SingleLineLogService:
    """Serve one line on the first read, then nothing new."""

    def __init__(self) -> None:
        self.served = threading.Event()

    def get_log_events(
        self,
        log_group: str,
        log_stream: str,
        start_time: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> LogEventPage:
        if next_token is not None:
            return LogEventPage(events=[], next_token=next_token)
        if not self.served.is_set():
            self.served.set()
            return LogEventPage(events=[LogEvent(timestamp=BASE_TS, message="captured")], next_token="f/1")
        return LogEventPage(events=[], next_token="f/1")


class LateLogService:
    """Deliver one early batch, and one batch that only shows up once the task has stopped."""

    def __init__(self, execution: StubExecution) -> None:
        self._execution = execution
        self._early_sent = False
        self._late_sent = False
        self.streams: List[str] = []

    def get_log_events(
        self,
        log_group: str,
        log_stream: str,
        start_time: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> LogEventPage:
        self.streams.append(f"{log_group}|{log_stream}")
        if next_token is not None:
            return LogEventPage(events=[], next_token=next_token)
        if not self._early_sent:
            self._early_sent = True
            return LogEventPage(events=[LogEvent(timestamp=BASE_TS, message="starting")], next_token="f/1")
        if self._execution.stopped_seen and not self._late_sent:
            self._late_sent = True
            return LogEventPage(events=[LogEvent(timestamp=BASE_TS + 1000, message="finished")], next_token="f/2")
        return LogEventPage(events=[], next_token="f/0")


def _inputs(**overrides: Any) -> ActionInputs:
    payload: Dict[str, Any] = {
        "cluster": "demo-cluster",
        "task_definition": "migrate:3",
        "subnet_ids": ["subnet-a"],
        "security_group_ids": ["sg-1"],
        "max_attempts": 5,
    }
    payload.update(overrides)
    return ActionInputs(**payload)


AWSLOGS_DEFINITION = {
    "containerDefinitions": [
        {
            "name": "web",
            "logConfiguration": {
                "logDriver": "awslogs",
                "options": {"awslogs-group": "/ecs/migrate", "awslogs-stream-prefix": "ci"},
            },
        }
    ]
}


@pytest.mark.integration
def test_successful_run_exposes_arn_and_id() -> None:
    execution = StubExecution(["RUNNING", "STOPPED"], exit_code=0)
    reporter = ActionReporter()
    orchestrator = RunTaskOrchestrator(execution, reporter=reporter, wait_delay_seconds=0)

    result = asyncio.run(orchestrator.run(_inputs()))

    assert result.outcome.success is True
    assert result.outcome.message is None
    assert result.handle.task_id == TASK_ID
    assert reporter.outputs == {"task-arn": TASK_ARN, "task-id": TASK_ID}
    assert reporter.failure is None
    assert len(execution.run_calls) == 1


@pytest.mark.integration
def test_running_timeout_aborts_without_log_output() -> None:
    execution = StubExecution(["PENDING"], task_definition=AWSLOGS_DEFINITION)
    logs = LateLogService(execution)
    reporter = ActionReporter()
    orchestrator = RunTaskOrchestrator(execution, logs, reporter=reporter, wait_delay_seconds=0, log_poll_interval=0)

    with pytest.raises(WaitTimeout) as excinfo:
        asyncio.run(orchestrator.run(_inputs(tail_logs=True, max_attempts=3)))

    assert "Timed out" in str(excinfo.value)
    assert execution.describe_calls == 3
    assert "log-output" not in reporter.outputs
    assert reporter.outputs["task-id"] == TASK_ID
    assert logs.streams == []


@pytest.mark.integration
def test_stopped_timeout_still_publishes_captured_logs() -> None:
    logs = SingleLineLogService()
    execution = StubExecution(["RUNNING"], task_definition=AWSLOGS_DEFINITION, gate=logs.served)
    reporter = ActionReporter()
    orchestrator = RunTaskOrchestrator(execution, logs, reporter=reporter, wait_delay_seconds=0, log_poll_interval=0)

    with pytest.raises(WaitTimeout, match="to be stopped"):
        asyncio.run(orchestrator.run(_inputs(tail_logs=True, max_attempts=5)))

    assert execution.describe_calls == 6
    assert execution.stopped_seen is False
    assert reporter.outputs["log-output"] == "2023-11-14T22:13:20.000Z: captured\n"
    assert reporter.outputs["task-id"] == TASK_ID


@pytest.mark.integration
def test_log_configuration_comes_from_the_revision_that_ran() -> None:
    revision_arn = "arn:aws:ecs:us-east-1:123456789012:task-definition/migrate:7"
    execution = StubExecution(
        ["RUNNING", "STOPPED"], task_definition=AWSLOGS_DEFINITION, task_definition_arn=revision_arn
    )
    orchestrator = RunTaskOrchestrator(
        execution, LateLogService(execution), wait_delay_seconds=0, log_poll_interval=0
    )

    result = asyncio.run(orchestrator.run(_inputs(task_definition="migrate", tail_logs=True)))

    assert result.outcome.success is True
    assert execution.definition_lookups == [revision_arn]
    assert execution.run_calls[0]["taskDefinition"] == "migrate"


@pytest.mark.integration
def test_log_configuration_falls_back_to_input_name() -> None:
    execution = StubExecution(["RUNNING", "STOPPED"], task_definition=AWSLOGS_DEFINITION)
    orchestrator = RunTaskOrchestrator(
        execution, LateLogService(execution), wait_delay_seconds=0, log_poll_interval=0
    )

    asyncio.run(orchestrator.run(_inputs(tail_logs=True)))

    assert execution.definition_lookups == ["migrate:3"]


@pytest.mark.integration
def test_tailing_collects_logs_including_lines_after_stop() -> None:
    execution = StubExecution(["PENDING", "RUNNING", "RUNNING", "STOPPED"], task_definition=AWSLOGS_DEFINITION)
    logs = LateLogService(execution)
    reporter = ActionReporter()
    orchestrator = RunTaskOrchestrator(execution, logs, reporter=reporter, wait_delay_seconds=0, log_poll_interval=0)

    result = asyncio.run(orchestrator.run(_inputs(tail_logs=True)))

    assert result.outcome.success is True
    assert result.log_output == (
        "2023-11-14T22:13:20.000Z: starting\n"
        "2023-11-14T22:13:21.000Z: finished\n"
    )
    assert reporter.outputs["log-output"] == result.log_output
    assert set(logs.streams) == {f"/ecs/migrate|ci/web/{TASK_ID}"}


@pytest.mark.integration
def test_tailing_without_log_configuration_yields_empty_output() -> None:
    execution = StubExecution(["RUNNING", "STOPPED"])
    reporter = ActionReporter()
    orchestrator = RunTaskOrchestrator(execution, LateLogService(execution), reporter=reporter, wait_delay_seconds=0)

    result = asyncio.run(orchestrator.run(_inputs(tail_logs=True)))

    assert result.outcome.success is True
    assert result.log_output == ""
    assert reporter.outputs["log-output"] == ""


@pytest.mark.integration
def test_nonzero_exit_is_reported_as_outcome_not_exception() -> None:
    execution = StubExecution(["RUNNING", "STOPPED"], exit_code=137, stopped_reason="Essential container in task exited")
    reporter = ActionReporter()
    orchestrator = RunTaskOrchestrator(execution, reporter=reporter, wait_delay_seconds=0)

    result = asyncio.run(orchestrator.run(_inputs()))

    assert result.outcome.success is False
    assert result.outcome.exit_code == 137
    assert result.outcome.message == "Essential container in task exited"
    assert result.console_url is not None and TASK_ID in result.console_url
    assert reporter.outputs["task-arn"] == TASK_ARN


@pytest.mark.integration
def test_launch_failure_is_fatal() -> None:
    execution = StubExecution(["RUNNING"], run_response={"tasks": [], "failures": [{"reason": "RESOURCE:MEMORY"}]})
    reporter = ActionReporter()
    orchestrator = RunTaskOrchestrator(execution, reporter=reporter, wait_delay_seconds=0)

    with pytest.raises(LaunchError):
        asyncio.run(orchestrator.run(_inputs()))

    assert reporter.outputs == {}
    assert execution.describe_calls == 0


@pytest.mark.unit
def test_build_run_request_carries_override() -> None:
    request = build_run_request(
        _inputs(
            override_container="web",
            override_container_command=["echo", "hel\\", "lo"],
            override_container_environment=["A=1"],
        )
    )
    assert request.container_override is not None
    assert request.container_override.command == ["echo", "hello"]
    assert request.network.assign_public_ip.value == "DISABLED"


def _action_env(tmp_path: Path) -> Dict[str, str]:
    return {
        "INPUT_CLUSTER": "demo-cluster",
        "INPUT_TASK-DEFINITION": "migrate:3",
        "INPUT_SUBNET-IDS": "subnet-a\nsubnet-b",
        "INPUT_SECURITY-GROUP-IDS": "sg-1",
        "INPUT_TAIL-LOGS": "false",
        "GITHUB_OUTPUT": str(tmp_path / "output.txt"),
    }


@pytest.mark.integration
def test_main_exits_nonzero_and_writes_outputs_on_task_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    execution = StubExecution(["RUNNING", "STOPPED"], exit_code=2, stopped_reason="Essential container in task exited")
    for key, value in _action_env(tmp_path).items():
        monkeypatch.setenv(key, value)
    monkeypatch.setattr(entrypoint, "create_services", lambda: (execution, LateLogService(execution)))
    monkeypatch.setattr(entrypoint, "configure_logging", lambda: None)

    with pytest.raises(SystemExit) as excinfo:
        entrypoint.main()

    assert excinfo.value.code == 1
    written = (tmp_path / "output.txt").read_text(encoding="utf-8")
    assert "task-arn<<ghadelimiter_" in written
    assert TASK_ARN in written
    assert TASK_ID in written


@pytest.mark.integration
def test_main_reports_invalid_inputs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env = _action_env(tmp_path)
    env.pop("INPUT_CLUSTER")
    monkeypatch.delenv("INPUT_CLUSTER", raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setattr(entrypoint, "configure_logging", lambda: None)

    def _unreachable():
        raise AssertionError("services must not be created when inputs are invalid")

    monkeypatch.setattr(entrypoint, "create_services", _unreachable)

    with pytest.raises(SystemExit) as excinfo:
        entrypoint.main()

    assert excinfo.value.code == 1
