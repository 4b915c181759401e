"""
Meilisearch Update Components
Copyright (C) 2024 HOMESERVER LLC

Export Coordinator

Triggers a dump on the running engine and polls the resulting task until it
reaches a terminal state. Polling uses a fixed interval with no overall cap;
dumps are expected to take seconds to minutes.
"""

import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, Optional

from meili_updates.utils.errors import ExportFailedError, TriggerFailedError
from meili_updates.utils.index import log_message
from .engine_client import MeilisearchClient


class TaskStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @classmethod
    def from_api(cls, value: Optional[str]) -> "TaskStatus":
        """Map an engine task status onto the three states the upgrade cares about."""
        if value == "succeeded":
            return cls.SUCCEEDED
        if value in ("failed", "canceled"):
            return cls.FAILED
        return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PENDING


@dataclass
class ExportTask:
    """A dump task on the engine."""
    id: str
    status: TaskStatus = TaskStatus.PENDING
    artifact_id: Optional[str] = None
    engine_status: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ExportTask":
        """Build a task record from a GET /tasks/{uid} payload."""
        engine_status = payload.get("status")
        details = payload.get("details") or {}
        error = payload.get("error") or {}
        return cls(
            id=str(payload.get("uid", payload.get("taskUid", ""))),
            status=TaskStatus.from_api(engine_status),
            artifact_id=details.get("dumpUid"),
            engine_status=engine_status,
            error=error.get("message") if isinstance(error, dict) else str(error),
        )


class ExportCoordinator:
    """Creates a dump and waits for it to finish."""

    def __init__(self, client: MeilisearchClient, poll_interval: float = 5,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.poll_interval = poll_interval
        self._sleep = sleep

    def start_export(self) -> ExportTask:
        """
        Issue one POST /dumps.
        Raises:
            ServiceUnreachableError: engine not reachable
            TriggerFailedError: response without a task id
        """
        response = self.client.create_dump()
        try:
            payload = response.json()
        except ValueError:
            payload = {}

        task_uid = payload.get("taskUid") if isinstance(payload, dict) else None
        if not response.ok or task_uid is None:
            raise TriggerFailedError(f"Failed to create dump. Response: {response.text}")

        task = ExportTask(id=str(task_uid), engine_status=payload.get("status"))
        log_message(f"Dump task created with UID: {task.id}")
        return task

    def await_completion(self, task: ExportTask, poll_interval: Optional[float] = None) -> ExportTask:
        """
        Poll a task until it succeeds or fails.
        Returns:
            ExportTask: the succeeded task with artifact_id populated
        Raises:
            ExportFailedError: the task failed or was canceled
        """
        interval = self.poll_interval if poll_interval is None else poll_interval
        log_message("Waiting for dump to complete...")
        while True:
            current = ExportTask.from_payload(self.client.get_task(task.id))
            if not current.id:
                current.id = task.id

            if current.status is TaskStatus.SUCCEEDED:
                log_message("Dump completed successfully")
                if not current.artifact_id:
                    log_message(f"Dump task {current.id} reported no dumpUid", "WARNING")
                return current
            if current.status is TaskStatus.FAILED:
                reason = f": {current.error}" if current.error else ""
                raise ExportFailedError(f"Dump creation failed (task {current.id}, status {current.engine_status}){reason}")

            log_message(f"Dump status: {current.engine_status}")
            self._sleep(interval)

    def export(self) -> ExportTask:
        """Start a dump and block until it finishes."""
        return self.await_completion(self.start_export())
