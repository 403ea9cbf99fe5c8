from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AssignPublicIp(str, Enum):
    enabled = "ENABLED"
    disabled = "DISABLED"


class TaskPhase(str, Enum):
    submitted = "submitted"
    running = "running"
    stopped = "stopped"


# ECS lastStatus values in lifecycle order.
TASK_STATUS_ORDER = [
    "PROVISIONING",
    "PENDING",
    "ACTIVATING",
    "RUNNING",
    "DEACTIVATING",
    "STOPPING",
    "DEPROVISIONING",
    "STOPPED",
]


def task_phase(last_status: Optional[str]) -> TaskPhase:
    status = (last_status or "").upper()
    if status == "STOPPED":
        return TaskPhase.stopped
    if status in TASK_STATUS_ORDER and TASK_STATUS_ORDER.index(status) >= TASK_STATUS_ORDER.index("RUNNING"):
        return TaskPhase.running
    return TaskPhase.submitted


class EnvironmentVariable(BaseModel):
    name: str
    value: str = ""


class ContainerOverride(BaseModel):
    name: str
    command: Optional[List[str]] = None
    environment: Optional[List[EnvironmentVariable]] = None

    model_config = {"frozen": True}

    def to_request(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name}
        if self.command is not None:
            payload["command"] = list(self.command)
        if self.environment is not None:
            payload["environment"] = [item.model_dump() for item in self.environment]
        return payload


class NetworkConfig(BaseModel):
    subnets: List[str]
    security_groups: List[str]
    assign_public_ip: AssignPublicIp = AssignPublicIp.disabled

    model_config = {"frozen": True}


class RunRequest(BaseModel):
    cluster: str
    task_definition: str
    network: NetworkConfig
    container_override: Optional[ContainerOverride] = None

    model_config = {"frozen": True}


class TaskHandle(BaseModel):
    task_arn: str
    task_id: str

    model_config = {"frozen": True}

    @classmethod
    def from_arn(cls, task_arn: str) -> "TaskHandle":
        return cls(task_arn=task_arn, task_id=task_arn.split("/")[-1])


class WaitSpec(BaseModel):
    delay_seconds: float = Field(default=6, ge=0)
    max_attempts: int = Field(..., gt=0)

    model_config = {"frozen": True}


class ContainerState(BaseModel):
    name: Optional[str] = None
    exit_code: Optional[int] = Field(default=None, alias="exitCode")
    reason: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}


class TaskDescription(BaseModel):
    task_arn: str = Field(..., alias="taskArn")
    task_definition_arn: Optional[str] = Field(default=None, alias="taskDefinitionArn")
    last_status: Optional[str] = Field(default=None, alias="lastStatus")
    stopped_reason: Optional[str] = Field(default=None, alias="stoppedReason")
    stop_code: Optional[str] = Field(default=None, alias="stopCode")
    containers: List[ContainerState] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def phase(self) -> TaskPhase:
        return task_phase(self.last_status)


class LogConfiguration(BaseModel):
    log_driver: Optional[str] = Field(default=None, alias="logDriver")
    options: Dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True, "extra": "ignore"}


class ContainerDefinition(BaseModel):
    name: str
    log_configuration: Optional[LogConfiguration] = Field(default=None, alias="logConfiguration")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class TaskDefinition(BaseModel):
    task_definition_arn: Optional[str] = Field(default=None, alias="taskDefinitionArn")
    container_definitions: List[ContainerDefinition] = Field(default_factory=list, alias="containerDefinitions")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class LogEvent(BaseModel):
    timestamp: int
    message: str = ""

    model_config = {"extra": "ignore"}


class LogEventPage(BaseModel):
    events: List[LogEvent] = Field(default_factory=list)
    next_token: Optional[str] = None


class TaskOutcome(BaseModel):
    exit_code: Optional[int] = None
    stopped_reason: Optional[str] = None
    success: bool
    message: Optional[str] = None


class RunResult(BaseModel):
    handle: TaskHandle
    outcome: TaskOutcome
    log_output: Optional[str] = None
    console_url: Optional[str] = None
