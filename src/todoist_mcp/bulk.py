import asyncio
import datetime
import logging
import time
from typing import Any, Dict, List, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .client import TodoistApiService
from .commands import (
    CommandStatus,
    IdArgs,
    ItemCompleteCommand,
    ItemUncompleteCommand,
    ItemUpdateArgs,
    ItemUpdateCommand,
    OK_STATUS,
    SyncCommand,
)
from .errors import InvalidParamsError
from .models import BulkOperationSummary, OperationResult

MAX_BULK_TASKS = 50
DISALLOWED_FIELDS = ("content", "description", "comments")
DESTINATION_FIELDS = ("project_id", "section_id", "parent_id")
DEADLINE_UPDATE_FAILED = "DEADLINE_UPDATE_FAILED"

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

BulkAction = Literal["update", "complete", "uncomplete", "move", "delete"]


class BulkTaskRequest(BaseModel):
    """Validated input of a bulk task operation."""

    model_config = ConfigDict(extra="forbid")

    action: BulkAction
    task_ids: List[str] = Field(min_length=1)

    project_id: Optional[str] = None
    section_id: Optional[str] = None
    parent_id: Optional[str] = None
    order: Optional[int] = None
    labels: Optional[List[str]] = None
    priority: Optional[int] = Field(default=None, ge=1, le=4)
    assignee_id: Optional[Union[int, str]] = None
    due_string: Optional[str] = None
    due_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    due_datetime: Optional[str] = None
    due_lang: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0)
    duration_unit: Optional[Literal["minute", "day"]] = None
    deadline_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)

    @field_validator("due_datetime")
    @classmethod
    def _iso_datetime(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("due_datetime must be an ISO 8601 datetime")
        return value

    def update_args(self) -> Dict[str, Any]:
        """Fields for an `item_update` command, with due and duration folded into objects."""
        args: Dict[str, Any] = {}
        for name in ("project_id", "section_id", "parent_id", "order", "labels", "priority", "assignee_id"):
            value = getattr(self, name)
            if value is not None:
                args[name] = value

        if self.due_string is not None or self.due_date is not None or self.due_datetime is not None:
            due: Dict[str, Any] = {}
            if self.due_string is not None:
                due["string"] = self.due_string
            if self.due_date is not None:
                due["date"] = self.due_date
            if self.due_datetime is not None:
                due["datetime"] = self.due_datetime
            if self.due_lang is not None:
                due["lang"] = self.due_lang
            args["due"] = due

        if self.duration is not None and self.duration_unit is not None:
            args["duration"] = {"amount": self.duration, "unit": self.duration_unit}
        return args

    def destination(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in DESTINATION_FIELDS if getattr(self, name)}

    def verified_fields(self, task: Dict[str, Any]) -> Dict[str, Any]:
        """Picks the re-fetched values of just the fields this request changed."""
        values: Dict[str, Any] = {}
        if self.due_string or self.due_date or self.due_datetime:
            values["due"] = task.get("due")
        if self.deadline_date is not None:
            values["deadline"] = task.get("deadline")
        for name in ("priority", "labels", "project_id", "section_id", "parent_id"):
            if getattr(self, name) is not None:
                values[name] = task.get(name)
        if self.duration is not None:
            values["duration"] = task.get("duration")
        return values


def command_uuid(index: int, task_id: str) -> str:
    return f"cmd-{index}-task-{task_id}"


def dedupe(task_ids: List[str]) -> List[str]:
    """Removes duplicate ids, keeping the first occurrence of each."""
    return list(dict.fromkeys(task_ids))


class BulkTasksService:
    """
    Applies one action to up to 50 tasks and reports a result per task.

    Partial failure is a normal outcome: once validation passes, `execute`
    returns `success: True` and individual failures are recorded inside
    `data.results`. Only invalid input raises.
    """

    def __init__(self, api: TodoistApiService, max_tasks: int = MAX_BULK_TASKS):
        self.api = api
        self.max_tasks = max_tasks

    async def execute(self, action: str, task_ids: List[str], **fields) -> Dict[str, Any]:
        """
        Runs a bulk action.

        Args:
            action: "update", "complete", "uncomplete", "move" or "delete".
            task_ids: Task IDs to act on. Duplicates are dropped.
            **fields: Update fields (priority, labels, due_*, duration,
                deadline_date...) or, for move, exactly one destination.

        Returns:
            {"success": True, "data": <summary>, "metadata": {...}}

        Raises:
            InvalidParamsError: the request is malformed, names a disallowed
                field, exceeds the task ceiling or has an ambiguous move target.
        """
        start = time.monotonic()
        request = self._validate(action, task_ids, fields)

        original_count = len(request.task_ids)
        unique_ids = dedupe(request.task_ids)
        if len(unique_ids) > self.max_tasks:
            raise InvalidParamsError(
                f"Maximum {self.max_tasks} tasks allowed, received {len(unique_ids)}",
                {"received": len(unique_ids), "maximum": self.max_tasks},
            )

        logging.info(f"Bulk {request.action} on {len(unique_ids)} tasks ({original_count} requested)")

        if request.action == "update":
            summary = await self._update(unique_ids, request)
        elif request.action == "complete":
            summary = await self._sync_each(unique_ids, ItemCompleteCommand)
        elif request.action == "uncomplete":
            summary = await self._sync_each(unique_ids, ItemUncompleteCommand)
        elif request.action == "move":
            summary = await self._move(unique_ids, request)
        else:
            summary = await self._delete(unique_ids)

        return {
            "success": True,
            "data": summary.to_dict(),
            "metadata": {
                "deduplication_applied": len(unique_ids) != original_count,
                "original_count": original_count,
                "deduplicated_count": len(unique_ids),
                "execution_time_ms": int((time.monotonic() - start) * 1000),
            },
        }

    @staticmethod
    def _validate(action: str, task_ids: List[str], fields: Dict[str, Any]) -> BulkTaskRequest:
        disallowed = [name for name in DISALLOWED_FIELDS if name in fields]
        if disallowed:
            raise InvalidParamsError(
                "Cannot modify content, description, or comments in bulk operations",
                {"fields": disallowed},
            )

        try:
            request = BulkTaskRequest(action=action, task_ids=task_ids, **fields)
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            message = first.get("msg", "Validation error")
            raise InvalidParamsError(f"{location}: {message}" if location else message) from e

        if (request.duration is None) != (request.duration_unit is None):
            raise InvalidParamsError("duration and duration_unit must be provided together")

        if request.action == "move" and len(request.destination()) != 1:
            raise InvalidParamsError(
                "Exactly one of project_id, section_id, or parent_id must be specified for move operation"
            )
        return request

    # --- Sync-batched actions --- #

    async def _submit(self, task_ids: List[str], commands: List[SyncCommand]) -> Dict[str, CommandStatus]:
        """Submits commands and returns each task's status, keyed by task id."""
        try:
            response = await self.api.execute_batch(commands)
        except Exception as e:
            # The batch call itself failed: every task in it failed the same way.
            logging.error(f"Bulk sync batch of {len(commands)} commands failed: {e}", exc_info=True)
            failed = CommandStatus(ok=False, error=type(e).__name__, error_message=str(e))
            return {task_id: failed for task_id in task_ids}
        return {task_id: response.status_for(cmd.uuid) for task_id, cmd in zip(task_ids, commands)}

    async def _sync_each(self, task_ids: List[str], command_cls) -> BulkOperationSummary:
        commands = [
            command_cls(uuid=command_uuid(i, task_id), args=IdArgs(id=task_id))
            for i, task_id in enumerate(task_ids)
        ]
        statuses = await self._submit(task_ids, commands)
        return BulkOperationSummary.from_results([
            OperationResult(task_id, statuses[task_id].ok, None if statuses[task_id].ok else statuses[task_id].message)
            for task_id in task_ids
        ])

    async def _update(self, task_ids: List[str], request: BulkTaskRequest) -> BulkOperationSummary:
        args = request.update_args()
        if args:
            commands = [
                ItemUpdateCommand(uuid=command_uuid(i, task_id), args=ItemUpdateArgs(id=task_id, **args))
                for i, task_id in enumerate(task_ids)
            ]
            statuses = await self._submit(task_ids, commands)
        else:
            # Only a deadline (or nothing) to change: no sync commands are sent.
            statuses = {task_id: OK_STATUS for task_id in task_ids}

        if request.deadline_date is not None:
            deadline_errors = await self._apply_deadlines(task_ids, request.deadline_date)
            statuses = self._merge_deadline_results(statuses, deadline_errors)

        results = [
            OperationResult(task_id, statuses[task_id].ok, None if statuses[task_id].ok else statuses[task_id].message)
            for task_id in task_ids
        ]
        await self._verify(results, request)
        return BulkOperationSummary.from_results(results)

    async def _apply_deadlines(self, task_ids: List[str], deadline_date: str) -> Dict[str, Optional[str]]:
        """Sets the deadline on each task over REST. Maps task id to an error message, or None on success."""

        async def apply(task_id: str) -> Optional[str]:
            try:
                await self.api.update_task(task_id, {"deadline": deadline_date})
            except Exception as e:
                logging.warning(f"Deadline update failed for task {task_id}: {e}")
                return str(e) or "Failed to update deadline"
            return None

        errors = await asyncio.gather(*(apply(task_id) for task_id in task_ids))
        return dict(zip(task_ids, errors))

    @staticmethod
    def _merge_deadline_results(
        statuses: Dict[str, CommandStatus],
        deadline_errors: Dict[str, Optional[str]],
    ) -> Dict[str, CommandStatus]:
        merged = {}
        for task_id, status in statuses.items():
            deadline_error = deadline_errors.get(task_id)
            if not status.ok or deadline_error is None:
                merged[task_id] = status
            else:
                merged[task_id] = CommandStatus(
                    ok=False,
                    error=DEADLINE_UPDATE_FAILED,
                    error_message=f"Deadline update failed: {deadline_error}",
                )
        return merged

    async def _verify(self, results: List[OperationResult], request: BulkTaskRequest) -> None:
        """Attaches re-fetched values to successful results. A failed re-fetch leaves `verified_values` as None."""

        async def verify(result: OperationResult) -> None:
            try:
                task = await self.api.get_task(result.task_id)
            except Exception as e:
                logging.warning(f"Could not verify bulk update of task {result.task_id}: {e}")
                return
            result.verified_values = request.verified_fields(task or {})

        await asyncio.gather(*(verify(r) for r in results if r.success))

    # --- Per-task actions --- #

    async def _each(self, task_ids: List[str], call) -> BulkOperationSummary:
        async def run(task_id: str) -> OperationResult:
            try:
                await call(task_id)
            except Exception as e:
                logging.warning(f"Bulk operation failed for task {task_id}: {e}")
                return OperationResult(task_id, False, str(e) or "Operation failed")
            return OperationResult(task_id, True)

        results = await asyncio.gather(*(run(task_id) for task_id in task_ids))
        return BulkOperationSummary.from_results(list(results))

    async def _move(self, task_ids: List[str], request: BulkTaskRequest) -> BulkOperationSummary:
        destination = request.destination()
        return await self._each(task_ids, lambda task_id: self.api.move_task(task_id, destination))

    async def _delete(self, task_ids: List[str]) -> BulkOperationSummary:
        return await self._each(task_ids, self.api.delete_task)
