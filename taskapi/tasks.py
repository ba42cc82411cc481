import logging
from datetime import datetime
from typing import Callable
from uuid import uuid4

from taskapi.models import DEFAULT_TASK_STATUS, DEFAULT_TASK_TITLE, Task, TaskCreate, TaskUpdate
from taskapi.repository import RecordStore, StorageError, to_iso, utc_now
from taskapi.results import Failure, Result, Success, not_found, upstream_failure

logger = logging.getLogger(__name__)


class TaskService:
    """CRUD over task records held in a single-key record store."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def _now(self) -> str:
        return to_iso(self.clock())

    def find_task(self, task_id: str) -> Result:
        """Look up one task; the success body is ``{"task": Task}``."""
        try:
            item = self.store.get(task_id)
        except StorageError as exc:
            logger.error("Failed to read task %s: %s", task_id, exc)
            return upstream_failure(f"Failed to read task: {exc}")
        if item is None:
            return not_found("Task not found", task_id=task_id)
        return Success({"task": Task.model_validate(item)})

    def list_tasks(self) -> Result:
        try:
            items = self.store.scan()
        except StorageError as exc:
            logger.error("Failed to scan tasks: %s", exc)
            return upstream_failure(f"Failed to list tasks: {exc}")
        # Stable sort: records sharing a created_at keep scan order.
        tasks = sorted(
            (Task.model_validate(item) for item in items),
            key=lambda task: task.created_at,
            reverse=True,
        )
        return Success({"message": "Tasks retrieved successfully", "count": len(tasks), "tasks": tasks})

    def create_task(self, payload: TaskCreate | None) -> Result:
        payload = payload or TaskCreate()
        now = self._now()
        task = Task(
            task_id=str(uuid4()),
            title=DEFAULT_TASK_TITLE if payload.title is None else payload.title,
            description=payload.description or "",
            status=DEFAULT_TASK_STATUS if payload.status is None else payload.status,
            created_at=now,
            updated_at=now,
        )
        try:
            self.store.put(task.model_dump())
        except StorageError as exc:
            logger.error("Failed to create task: %s", exc)
            return upstream_failure(f"Failed to create task: {exc}")
        logger.info("Created task %s", task.task_id)
        return Success({"message": "Task created successfully", "task": task}, status_code=201)

    def get_task(self, task_id: str) -> Result:
        found = self.find_task(task_id)
        if isinstance(found, Failure):
            return found
        return Success({"message": "Task retrieved successfully", **found.body})

    def update_task(self, task_id: str, payload: TaskUpdate | None) -> Result:
        found = self.find_task(task_id)
        if isinstance(found, Failure):
            return found

        changes = (payload or TaskUpdate()).changes()
        changes["updated_at"] = self._now()
        try:
            item = self.store.update(task_id, changes)
        except StorageError as exc:
            logger.error("Failed to update task %s: %s", task_id, exc)
            return upstream_failure(f"Failed to update task: {exc}")
        if item is None:
            return not_found("Task not found", task_id=task_id)
        logger.info("Updated task %s (%s)", task_id, ", ".join(sorted(changes)))
        return Success({"message": "Task updated successfully", "task": Task.model_validate(item)})

    def delete_task(self, task_id: str) -> Result:
        try:
            item = self.store.delete(task_id)
        except StorageError as exc:
            logger.error("Failed to delete task %s: %s", task_id, exc)
            return upstream_failure(f"Failed to delete task: {exc}")
        if item is None:
            return not_found("Task not found", task_id=task_id)
        logger.info("Deleted task %s", task_id)
        return Success(
            {
                "message": "Task deleted successfully",
                "deleted_task": {"task_id": item["task_id"], "title": item.get("title")},
            }
        )
