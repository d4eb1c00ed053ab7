"""
Batch orchestration on top of the Todoist Sync API.

`BatchOperationsService` validates a list of sync commands, submits them as
one batch and folds the per-command `sync_status` back into a
`BatchOperationResult`. `BatchBuilder` is a small fluent helper for building
such batches with generated temp ids.
"""
import dataclasses
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Union

import pydantic

from .client import TodoistApiService
from .commands import (
    IdArgs,
    ItemAddArgs,
    ItemAddCommand,
    ItemCompleteCommand,
    ItemDeleteCommand,
    ItemMoveArgs,
    ItemMoveCommand,
    ItemUpdateArgs,
    ItemUpdateCommand,
    ProjectAddArgs,
    ProjectAddCommand,
    ProjectUpdateArgs,
    ProjectUpdateCommand,
    SectionAddArgs,
    SectionAddCommand,
    SectionUpdateArgs,
    SectionUpdateCommand,
    SyncCommand,
    parse_command,
)
from .errors import TodoistAPIError, TodoistErrorCode, ValidationError
from .models import BatchOperationError, BatchOperationResult

MAX_BATCH_SIZE = 100


@dataclasses.dataclass
class CommandDependency:
    """Declares that `commands[command_index]` references another command's temp id in `field`."""

    command_index: int
    depends_on: str
    field: str = ""


@dataclasses.dataclass
class BatchOperationRequest:
    commands: List[Union[SyncCommand, Dict[str, Any]]]
    dependencies: List[CommandDependency] = dataclasses.field(default_factory=list)
    continue_on_error: bool = False
    validate_only: bool = False


class BatchOperationsService:
    def __init__(self, api: TodoistApiService, max_batch_size: int = MAX_BATCH_SIZE):
        self.api = api
        self.max_batch_size = max_batch_size

    async def execute_batch(self, request: BatchOperationRequest) -> BatchOperationResult:
        """
        Validates and submits a batch of sync commands.

        Commands run in submission order. Declared dependencies are checked
        for existence only; they never reorder commands or rewrite args.

        Raises:
            ValidationError: empty or oversized batch, malformed command,
                duplicate uuid/temp_id, or a dangling dependency.
        """
        if not request.commands:
            raise ValidationError("Batch cannot be empty")
        if len(request.commands) > self.max_batch_size:
            raise ValidationError(
                f"Batch size exceeds maximum of {self.max_batch_size} commands",
                {"provided": len(request.commands), "maximum": self.max_batch_size},
            )

        commands = self._prepare_commands(request.commands)
        self._validate_dependencies(commands, request.dependencies)

        if request.validate_only:
            return BatchOperationResult(success=True, completed_commands=len(commands))

        logging.info(f"Submitting sync batch of {len(commands)} commands")
        try:
            response = await self.api.execute_batch(commands)
        except Exception as e:
            logging.error(f"Sync batch of {len(commands)} commands failed: {e}", exc_info=True)
            return self._batch_failure(e, commands)

        return self._fold_statuses(response, commands, request.continue_on_error)

    def create_batch(self) -> "BatchBuilder":
        return BatchBuilder(self)

    # --- Common batches --- #

    async def create_project_with_structure(
        self,
        project_data: Dict[str, Any],
        sections: Optional[List[Dict[str, Any]]] = None,
        tasks: Optional[List[Dict[str, Any]]] = None,
    ) -> BatchOperationResult:
        """Creates a project, its sections and its tasks in one batch.

        A task may carry `section_index` to land in the n-th new section.
        """
        batch = self.create_batch()
        project_temp_id = batch.add_project(project_data)

        section_temp_ids = [
            batch.add_section({**section, "project_id": project_temp_id})
            for section in sections or []
        ]

        for task in tasks or []:
            task_data = {k: v for k, v in task.items() if k != "section_index"}
            section_index = task.get("section_index")
            if section_index is not None:
                if not 0 <= section_index < len(section_temp_ids):
                    raise ValidationError(
                        f"section_index {section_index} does not refer to a new section",
                        {"task": task},
                    )
                task_data["section_id"] = section_temp_ids[section_index]
            batch.add_task({**task_data, "project_id": project_temp_id})

        return await batch.execute()

    async def move_tasks(
        self,
        task_ids: List[str],
        target_project_id: Optional[str] = None,
        target_section_id: Optional[str] = None,
    ) -> BatchOperationResult:
        """Moves tasks in one batch. A section target wins over a project target."""
        if target_section_id:
            destination = {"section_id": target_section_id}
        elif target_project_id:
            destination = {"project_id": target_project_id}
        else:
            raise ValidationError("A target project or section is required to move tasks")

        batch = self.create_batch()
        for task_id in task_ids:
            batch.move_task(task_id, destination)
        return await batch.execute()

    async def complete_tasks(self, task_ids: List[str]) -> BatchOperationResult:
        batch = self.create_batch()
        for task_id in task_ids:
            batch.complete_task(task_id)
        return await batch.execute()

    # --- Internals --- #

    @staticmethod
    def _prepare_commands(raw_commands) -> List[SyncCommand]:
        commands: List[SyncCommand] = []
        seen_uuids = set()
        seen_temp_ids = set()

        for index, raw in enumerate(raw_commands):
            try:
                command = parse_command(raw)
            except pydantic.ValidationError as e:
                raise ValidationError(
                    f"Command {index} is invalid: {e.errors()[0]['msg']}",
                    {"command_index": index},
                ) from e

            if not command.uuid:
                command = command.model_copy(update={"uuid": str(uuid.uuid4())})
            if command.uuid in seen_uuids:
                raise ValidationError(f"Duplicate command uuid '{command.uuid}'", {"command_index": index})
            seen_uuids.add(command.uuid)

            if command.temp_id:
                if command.temp_id in seen_temp_ids:
                    raise ValidationError(f"Duplicate temp_id '{command.temp_id}'", {"command_index": index})
                seen_temp_ids.add(command.temp_id)

            commands.append(command)
        return commands

    @staticmethod
    def _validate_dependencies(commands: List[SyncCommand], dependencies: List[CommandDependency]) -> None:
        temp_ids = {c.temp_id for c in commands if c.temp_id}
        for dep in dependencies:
            if not 0 <= dep.command_index < len(commands):
                raise ValidationError(
                    f"Invalid dependency: command index {dep.command_index} does not exist",
                    {"dependency": dataclasses.asdict(dep)},
                )
            if dep.depends_on not in temp_ids:
                raise ValidationError(
                    f"Invalid dependency: temp_id '{dep.depends_on}' does not exist",
                    {"dependency": dataclasses.asdict(dep)},
                )

    @staticmethod
    def _fold_statuses(response, commands: List[SyncCommand], continue_on_error: bool) -> BatchOperationResult:
        completed = 0
        failed = 0
        errors: List[BatchOperationError] = []

        for index, command in enumerate(commands):
            status = response.status_for(command.uuid)
            if status.ok:
                completed += 1
                continue

            failed += 1
            errors.append(BatchOperationError(
                command_index=index,
                temp_id=command.temp_id,
                error={
                    "code": TodoistErrorCode.SYNC_ERROR.value,
                    "message": status.message,
                    "details": {"command_type": command.type, "status": status.to_dict()},
                },
            ))

        return BatchOperationResult(
            success=not (failed and not continue_on_error),
            completed_commands=completed,
            failed_commands=failed,
            errors=errors,
            temp_id_mapping=dict(response.temp_id_mapping),
        )

    @staticmethod
    def _batch_failure(exc: Exception, commands: List[SyncCommand]) -> BatchOperationResult:
        if isinstance(exc, TodoistAPIError):
            error = exc.to_dict()
        else:
            error = {
                "code": TodoistErrorCode.UNKNOWN_ERROR.value,
                "message": str(exc) or "Batch execution failed",
                "retryable": False,
            }
        return BatchOperationResult(
            success=False,
            completed_commands=0,
            failed_commands=len(commands),
            errors=[BatchOperationError(command_index=-1, error=error)],
        )


class BatchBuilder:
    """Fluent builder; `add_*` methods return the generated temp id, the rest return the builder."""

    def __init__(self, service: BatchOperationsService):
        self._service = service
        self._commands: List[SyncCommand] = []
        self._dependencies: List[CommandDependency] = []
        self._temp_id_counter = 0

    def _temp_id(self, kind: str) -> str:
        self._temp_id_counter += 1
        return f"temp_{kind}_{self._temp_id_counter}_{int(time.time() * 1000)}"

    def _add(self, command: SyncCommand) -> None:
        self._commands.append(command.model_copy(update={"uuid": str(uuid.uuid4())}))

    def _track(self, temp_ids: set, data: Dict[str, Any], fields=("project_id", "section_id", "parent_id")) -> None:
        # References to earlier temp ids become declared dependencies.
        for field in fields:
            value = data.get(field)
            if value in temp_ids:
                self._dependencies.append(CommandDependency(len(self._commands), value, field))

    def _known_temp_ids(self) -> set:
        return {c.temp_id for c in self._commands if c.temp_id}

    def add_task(self, task_data: Dict[str, Any]) -> str:
        temp_id = self._temp_id("task")
        self._track(self._known_temp_ids(), task_data)
        self._add(ItemAddCommand(temp_id=temp_id, args=ItemAddArgs(**task_data)))
        return temp_id

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> "BatchBuilder":
        self._add(ItemUpdateCommand(args=ItemUpdateArgs(id=task_id, **updates)))
        return self

    def move_task(self, task_id: str, destination: Dict[str, Any]) -> "BatchBuilder":
        self._add(ItemMoveCommand(args=ItemMoveArgs(id=task_id, **destination)))
        return self

    def delete_task(self, task_id: str) -> "BatchBuilder":
        self._add(ItemDeleteCommand(args=IdArgs(id=task_id)))
        return self

    def complete_task(self, task_id: str) -> "BatchBuilder":
        self._add(ItemCompleteCommand(args=IdArgs(id=task_id)))
        return self

    def add_project(self, project_data: Dict[str, Any]) -> str:
        temp_id = self._temp_id("project")
        self._track(self._known_temp_ids(), project_data, fields=("parent_id",))
        self._add(ProjectAddCommand(temp_id=temp_id, args=ProjectAddArgs(**project_data)))
        return temp_id

    def update_project(self, project_id: str, updates: Dict[str, Any]) -> "BatchBuilder":
        self._add(ProjectUpdateCommand(args=ProjectUpdateArgs(id=project_id, **updates)))
        return self

    def add_section(self, section_data: Dict[str, Any]) -> str:
        temp_id = self._temp_id("section")
        self._track(self._known_temp_ids(), section_data, fields=("project_id",))
        self._add(SectionAddCommand(temp_id=temp_id, args=SectionAddArgs(**section_data)))
        return temp_id

    def update_section(self, section_id: str, updates: Dict[str, Any]) -> "BatchBuilder":
        self._add(SectionUpdateCommand(args=SectionUpdateArgs(id=section_id, **updates)))
        return self

    @property
    def commands(self) -> List[SyncCommand]:
        return list(self._commands)

    @property
    def dependencies(self) -> List[CommandDependency]:
        return list(self._dependencies)

    def size(self) -> int:
        return len(self._commands)

    def clear(self) -> "BatchBuilder":
        self._commands = []
        self._dependencies = []
        self._temp_id_counter = 0
        return self

    async def execute(self, continue_on_error: bool = False) -> BatchOperationResult:
        return await self._service.execute_batch(BatchOperationRequest(
            commands=list(self._commands),
            dependencies=list(self._dependencies),
            continue_on_error=continue_on_error,
        ))
