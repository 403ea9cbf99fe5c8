from __future__ import annotations

import json
import logging
from typing import List, Optional, Sequence

from ecs_run_task.schemas import ContainerOverride, EnvironmentVariable

LOGGER = logging.getLogger("ecs_run_task.overrides")

LINE_CONTINUATION = "\\"


def parse_command(fragments: Sequence[str]) -> List[str]:
    """Fold backslash-continued lines into the line that follows them."""
    merged: List[Optional[str]] = list(fragments)
    last = len(merged) - 1
    for index, fragment in enumerate(merged):
        if fragment is None or not fragment.endswith(LINE_CONTINUATION):
            continue
        stripped = fragment[: -len(LINE_CONTINUATION)]
        if index == last:
            merged[index] = stripped
            continue
        merged[index + 1] = stripped + (merged[index + 1] or "")
        merged[index] = None
    return [fragment for fragment in merged if fragment]


def parse_environment(fragments: Sequence[str]) -> List[EnvironmentVariable]:
    variables: List[EnvironmentVariable] = []
    for fragment in fragments:
        name, _, value = fragment.partition("=")
        variables.append(EnvironmentVariable(name=name, value=value))
    return variables


def build_container_override(
    container_name: Optional[str],
    command: Sequence[str] = (),
    environment: Sequence[str] = (),
) -> Optional[ContainerOverride]:
    if not container_name:
        return None

    parsed_command: Optional[List[str]] = None
    if command:
        LOGGER.debug("Container %s has a command override; merging continued lines", container_name)
        parsed_command = parse_command(command)
        LOGGER.debug("Resulting command: %s", json.dumps(parsed_command))

    parsed_environment: Optional[List[EnvironmentVariable]] = None
    if environment:
        LOGGER.debug("Container %s has an environment override", container_name)
        parsed_environment = parse_environment(environment)

    return ContainerOverride(name=container_name, command=parsed_command, environment=parsed_environment)
