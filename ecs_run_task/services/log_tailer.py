from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, List, Optional

from ecs_run_task.schemas import LogEvent, TaskDefinition
from ecs_run_task.services.aws import LogService

LOGGER = logging.getLogger("ecs_run_task.log_tailer")
CONTAINER_LOGGER = logging.getLogger("ecs_run_task.container")

AWSLOGS_DRIVER = "awslogs"
DEFAULT_POLL_INTERVAL = 5.0


@dataclass
class LogCursor:
    log_group: str
    log_stream: str
    last_timestamp: Optional[int] = None
    # Events already consumed that carry exactly last_timestamp.
    consumed_at_last: int = 0

    @property
    def next_start_time(self) -> Optional[int]:
        # startTime is inclusive so later events sharing the newest millisecond are still returned.
        return self.last_timestamp

    def advance(self, timestamp: int) -> None:
        if self.last_timestamp is None or timestamp > self.last_timestamp:
            self.last_timestamp = timestamp
            self.consumed_at_last = 1
        elif timestamp == self.last_timestamp:
            self.consumed_at_last += 1


def discover_log_cursor(
    task_definition: TaskDefinition,
    task_id: str,
    container_name: Optional[str] = None,
) -> Optional[LogCursor]:
    """Locate the awslogs stream for the overridden container, or the first one that has it."""
    for container in task_definition.container_definitions:
        LOGGER.debug("Looking for logConfiguration in container '%s'.", container.name)
        if container_name and container.name != container_name:
            continue
        config = container.log_configuration
        if config is None or config.log_driver != AWSLOGS_DRIVER:
            continue
        log_group = config.options.get("awslogs-group")
        prefix = config.options.get("awslogs-stream-prefix")
        if not log_group or not prefix:
            LOGGER.warning(
                "Container '%s' uses the awslogs driver without awslogs-group/awslogs-stream-prefix; "
                "output cannot be streamed.",
                container.name,
            )
            return None
        log_stream = "/".join([prefix, container.name, task_id])
        LOGGER.debug("Found matching container with 'awslogs' logDriver. Creating LogStream for '%s'", log_stream)
        return LogCursor(log_group=log_group, log_stream=log_stream)
    return None


def format_log_line(event: LogEvent) -> str:
    moment = datetime.fromtimestamp(event.timestamp / 1000.0, tz=timezone.utc)
    return f"{moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')}: {event.message}"


class LogTailer:
    """Pull new log events for one stream until told to close, then drain once more."""

    def __init__(
        self,
        service: LogService,
        cursor: LogCursor,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        emit: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._service = service
        self._cursor = cursor
        self._poll_interval = poll_interval
        self._emit = emit or CONTAINER_LOGGER.info
        self._lines: List[str] = []

    @property
    def cursor(self) -> LogCursor:
        return self._cursor

    @property
    def output(self) -> str:
        return "".join(self._lines)

    async def _fetch(self) -> List[LogEvent]:
        floor = self._cursor.last_timestamp
        already_seen = self._cursor.consumed_at_last
        start_time = self._cursor.next_start_time
        fresh: List[LogEvent] = []
        previous_token: Optional[str] = None
        token: Optional[str] = None
        while True:
            page = await asyncio.to_thread(
                self._service.get_log_events,
                self._cursor.log_group,
                self._cursor.log_stream,
                start_time,
                token,
            )
            for event in page.events:
                if floor is not None:
                    if event.timestamp < floor:
                        continue
                    if event.timestamp == floor and already_seen > 0:
                        already_seen -= 1
                        continue
                fresh.append(event)
            # Empty pages can sit in front of more events; only the echoed token marks the end.
            if page.next_token is None or page.next_token in (token, previous_token):
                break
            previous_token, token = token, page.next_token
        for event in fresh:
            self._cursor.advance(event.timestamp)
        return fresh

    async def batches(self, closed: asyncio.Event) -> AsyncIterator[List[LogEvent]]:
        while True:
            final = closed.is_set()
            try:
                events = await self._fetch()
            except Exception as exc:
                LOGGER.warning("Error fetching log events from %s: %s", self._cursor.log_stream, exc)
                LOGGER.debug("Log fetch failure", exc_info=True)
                events = []
            if events:
                yield events
            if final:
                return
            try:
                await asyncio.wait_for(closed.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def run(self, closed: asyncio.Event) -> str:
        async for batch in self.batches(closed):
            for event in batch:
                line = format_log_line(event)
                self._emit(line)
                self._lines.append(line + "\n")
        LOGGER.debug("Closing logStream.")
        return self.output
