from __future__ import annotations

import os
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from ecs_run_task.errors import InputError
from ecs_run_task.schemas import AssignPublicIp, WaitSpec

DEFAULT_MAX_ATTEMPTS = 100
WAIT_DELAY_SECONDS = 6

_TRUE_VALUES = {"true", "True", "TRUE"}
_FALSE_VALUES = {"false", "False", "FALSE"}


def _env_name(name: str) -> str:
    return f"INPUT_{name.replace(' ', '_').upper()}"


def get_input(name: str, env: Mapping[str, str], *, required: bool = False) -> str:
    value = env.get(_env_name(name), "").strip()
    if required and not value:
        raise InputError(f"Input required and not supplied: {name}")
    return value


def get_multiline_input(name: str, env: Mapping[str, str], *, required: bool = False) -> List[str]:
    raw = get_input(name, env, required=required)
    return [line.strip() for line in raw.split("\n") if line.strip()]


def get_boolean_input(name: str, env: Mapping[str, str], *, default: bool = False) -> bool:
    value = get_input(name, env)
    if not value:
        return default
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise InputError(
        f"Input does not meet YAML 1.2 \"Core Schema\" specification: {name}\n"
        "Support boolean input list: `true | True | TRUE | false | False | FALSE`"
    )


class ActionInputs(BaseModel):
    cluster: str = Field(..., min_length=1)
    task_definition: str = Field(..., min_length=1)
    subnet_ids: List[str] = Field(..., min_length=1)
    security_group_ids: List[str] = Field(..., min_length=1)
    tail_logs: bool = False
    assign_public_ip: AssignPublicIp = AssignPublicIp.disabled
    override_container: Optional[str] = None
    override_container_command: List[str] = Field(default_factory=list)
    override_container_environment: List[str] = Field(default_factory=list)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, gt=0)

    @field_validator("override_container", mode="before")
    @classmethod
    def _blank_container_is_none(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("assign_public_ip", mode="before")
    @classmethod
    def _normalize_public_ip(cls, value: object) -> object:
        if value is None or value == "":
            return AssignPublicIp.disabled
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def wait_spec(self) -> WaitSpec:
        return WaitSpec(delay_seconds=WAIT_DELAY_SECONDS, max_attempts=self.max_attempts)

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "ActionInputs":
        source = os.environ if env is None else env
        raw_attempts = get_input("task-stopped-wait-for-max-attempts", source)
        try:
            max_attempts = int(raw_attempts) if raw_attempts else DEFAULT_MAX_ATTEMPTS
        except ValueError as exc:
            raise InputError(f"task-stopped-wait-for-max-attempts must be an integer, got {raw_attempts!r}") from exc

        try:
            return ActionInputs(
                cluster=get_input("cluster", source, required=True),
                task_definition=get_input("task-definition", source, required=True),
                subnet_ids=get_multiline_input("subnet-ids", source, required=True),
                security_group_ids=get_multiline_input("security-group-ids", source, required=True),
                tail_logs=get_boolean_input("tail-logs", source),
                assign_public_ip=get_input("assign-public-ip", source),
                override_container=get_input("override-container", source),
                override_container_command=get_multiline_input("override-container-command", source),
                override_container_environment=get_multiline_input("override-container-environment", source),
                max_attempts=max_attempts,
            )
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
            )
            raise InputError(f"Invalid inputs: {problems}") from exc
