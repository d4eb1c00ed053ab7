"""
Typed Sync API commands.

Each command verb gets its own model with a typed `args` block, so a batch is
a list of well-formed objects instead of loose dictionaries. Verbs that are not
modelled here still round-trip through `GenericCommand`.
"""
import dataclasses
from typing import Any, ClassVar, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# --- Argument blocks --- #

class _Args(BaseModel):
    # The remote API grows new optional fields; keep them rather than fail.
    model_config = ConfigDict(extra="allow")


class IdArgs(_Args):
    id: str


class ItemAddArgs(_Args):
    content: str
    description: Optional[str] = None
    project_id: Optional[str] = None
    section_id: Optional[str] = None
    parent_id: Optional[str] = None
    order: Optional[int] = None
    labels: Optional[List[str]] = None
    priority: Optional[int] = None
    assignee_id: Optional[Union[str, int]] = None
    due: Optional[Dict[str, Any]] = None
    duration: Optional[Dict[str, Any]] = None


class ItemUpdateArgs(_Args):
    id: str
    content: Optional[str] = None
    description: Optional[str] = None
    project_id: Optional[str] = None
    section_id: Optional[str] = None
    parent_id: Optional[str] = None
    order: Optional[int] = None
    labels: Optional[List[str]] = None
    priority: Optional[int] = None
    assignee_id: Optional[Union[str, int]] = None
    due: Optional[Dict[str, Any]] = None
    duration: Optional[Dict[str, Any]] = None


class ItemMoveArgs(_Args):
    id: str
    project_id: Optional[str] = None
    section_id: Optional[str] = None
    parent_id: Optional[str] = None

    @model_validator(mode="after")
    def _single_destination(self):
        destinations = [d for d in (self.project_id, self.section_id, self.parent_id) if d]
        if len(destinations) != 1:
            raise ValueError("Exactly one of project_id, section_id, or parent_id must be specified for move operation")
        return self


class ProjectAddArgs(_Args):
    name: str
    color: Optional[str] = None
    parent_id: Optional[str] = None
    is_favorite: Optional[bool] = None
    view_style: Optional[str] = None


class ProjectUpdateArgs(_Args):
    id: str
    name: Optional[str] = None
    color: Optional[str] = None
    is_favorite: Optional[bool] = None
    view_style: Optional[str] = None


class SectionAddArgs(_Args):
    name: str
    project_id: str
    order: Optional[int] = None


class SectionUpdateArgs(_Args):
    id: str
    name: Optional[str] = None


class ReminderAddArgs(_Args):
    item_id: str
    type: Optional[str] = None
    due: Optional[Dict[str, Any]] = None
    minute_offset: Optional[int] = None


class ReminderUpdateArgs(_Args):
    id: str


class SharedLabelRenameArgs(_Args):
    name: str
    new_name: str


class SharedLabelRemoveArgs(_Args):
    name: str


# --- Commands --- #

class SyncCommand(BaseModel):
    """Base for every command submitted to `POST /sync`.

    `uuid` may be left empty; the batch service assigns one before submission.
    """

    type: str
    uuid: Optional[str] = None
    temp_id: Optional[str] = None
    args: Any = None

    def to_payload(self) -> Dict[str, Any]:
        if isinstance(self.args, BaseModel):
            args = self.args.model_dump(exclude_unset=True)
        else:
            args = dict(self.args or {})
        payload: Dict[str, Any] = {"type": self.type, "uuid": self.uuid, "args": args}
        if self.temp_id:
            payload["temp_id"] = self.temp_id
        return payload


class ItemAddCommand(SyncCommand):
    type: Literal["item_add"] = "item_add"
    args: ItemAddArgs


class ItemUpdateCommand(SyncCommand):
    type: Literal["item_update"] = "item_update"
    args: ItemUpdateArgs


class ItemDeleteCommand(SyncCommand):
    type: Literal["item_delete"] = "item_delete"
    args: IdArgs


class ItemCompleteCommand(SyncCommand):
    type: Literal["item_complete"] = "item_complete"
    args: IdArgs


class ItemUncompleteCommand(SyncCommand):
    type: Literal["item_uncomplete"] = "item_uncomplete"
    args: IdArgs


class ItemMoveCommand(SyncCommand):
    type: Literal["item_move"] = "item_move"
    args: ItemMoveArgs


class ProjectAddCommand(SyncCommand):
    type: Literal["project_add"] = "project_add"
    args: ProjectAddArgs


class ProjectUpdateCommand(SyncCommand):
    type: Literal["project_update"] = "project_update"
    args: ProjectUpdateArgs


class ProjectDeleteCommand(SyncCommand):
    type: Literal["project_delete"] = "project_delete"
    args: IdArgs


class ProjectArchiveCommand(SyncCommand):
    type: Literal["project_archive"] = "project_archive"
    args: IdArgs


class SectionAddCommand(SyncCommand):
    type: Literal["section_add"] = "section_add"
    args: SectionAddArgs


class SectionUpdateCommand(SyncCommand):
    type: Literal["section_update"] = "section_update"
    args: SectionUpdateArgs


class SectionDeleteCommand(SyncCommand):
    type: Literal["section_delete"] = "section_delete"
    args: IdArgs


class ReminderAddCommand(SyncCommand):
    type: Literal["reminder_add"] = "reminder_add"
    args: ReminderAddArgs


class ReminderUpdateCommand(SyncCommand):
    type: Literal["reminder_update"] = "reminder_update"
    args: ReminderUpdateArgs


class ReminderDeleteCommand(SyncCommand):
    type: Literal["reminder_delete"] = "reminder_delete"
    args: IdArgs


class SharedLabelRenameCommand(SyncCommand):
    type: Literal["shared_label_rename"] = "shared_label_rename"
    args: SharedLabelRenameArgs


class SharedLabelRemoveCommand(SyncCommand):
    type: Literal["shared_label_remove"] = "shared_label_remove"
    args: SharedLabelRemoveArgs


class GenericCommand(SyncCommand):
    """Any verb without a dedicated model. Args are passed through as-is."""

    args: Dict[str, Any] = Field(default_factory=dict)


COMMAND_TYPES: Dict[str, Type[SyncCommand]] = {
    cls.model_fields["type"].default: cls
    for cls in (
        ItemAddCommand, ItemUpdateCommand, ItemDeleteCommand, ItemCompleteCommand,
        ItemUncompleteCommand, ItemMoveCommand, ProjectAddCommand, ProjectUpdateCommand,
        ProjectDeleteCommand, ProjectArchiveCommand, SectionAddCommand, SectionUpdateCommand,
        SectionDeleteCommand, ReminderAddCommand, ReminderUpdateCommand, ReminderDeleteCommand,
        SharedLabelRenameCommand, SharedLabelRemoveCommand,
    )
}


def parse_command(data: Union[SyncCommand, Dict[str, Any]]) -> SyncCommand:
    """Builds the typed command for a raw `{type, uuid, temp_id, args}` dict.

    Raises pydantic.ValidationError when a known verb has malformed args.
    """
    if isinstance(data, SyncCommand):
        return data
    command_cls = COMMAND_TYPES.get(data.get("type", ""), GenericCommand)
    return command_cls.model_validate(data)


# --- Responses --- #

@dataclasses.dataclass
class CommandStatus:
    """Outcome of one command as reported in `sync_status`."""

    ok: bool
    error: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[int] = None

    @property
    def message(self) -> str:
        return self.error_message or self.error or "Unknown error"

    def to_dict(self) -> Any:
        if self.ok:
            return "ok"
        data: Dict[str, Any] = {"error": self.error, "error_message": self.error_message}
        if self.error_code is not None:
            data["error_code"] = self.error_code
        return data


OK_STATUS = CommandStatus(ok=True)


@dataclasses.dataclass
class SyncResponse:
    sync_status: Dict[str, Any] = dataclasses.field(default_factory=dict)
    temp_id_mapping: Dict[str, str] = dataclasses.field(default_factory=dict)
    full_sync: bool = False
    reminders: List[Dict[str, Any]] = dataclasses.field(default_factory=list)
    reminders_location: List[Dict[str, Any]] = dataclasses.field(default_factory=list)

    MISSING_STATUS: ClassVar[str] = "MISSING_STATUS"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncResponse":
        data = data if isinstance(data, dict) else {}
        reminders = data.get("reminders")
        reminders_location = data.get("reminders_location")
        return cls(
            sync_status=dict(data.get("sync_status") or {}),
            temp_id_mapping=dict(data.get("temp_id_mapping") or {}),
            full_sync=bool(data.get("full_sync", False)),
            reminders=reminders if isinstance(reminders, list) else [],
            reminders_location=reminders_location if isinstance(reminders_location, list) else [],
        )

    def status_for(self, uuid: str) -> CommandStatus:
        """Status for one command. A uuid the remote never reported is a failure."""
        if uuid not in self.sync_status:
            return CommandStatus(
                ok=False,
                error=self.MISSING_STATUS,
                error_message=f"No status returned for command {uuid}",
            )
        raw = self.sync_status[uuid]
        if raw == "ok":
            return OK_STATUS
        if isinstance(raw, dict):
            return CommandStatus(
                ok=False,
                error=raw.get("error"),
                error_message=raw.get("error_message"),
                error_code=raw.get("error_code"),
            )
        return CommandStatus(ok=False, error=str(raw))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sync_status": self.sync_status,
            "temp_id_mapping": self.temp_id_mapping,
            "full_sync": self.full_sync,
        }
