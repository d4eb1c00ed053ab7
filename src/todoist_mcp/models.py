import dataclasses
from typing import Any, Dict, List, Optional

RESOURCE_URI_PREFIX = "todoist://task/"


def task_resource_uri(task_id: str) -> str:
    return f"{RESOURCE_URI_PREFIX}{task_id}"


@dataclasses.dataclass
class BatchOperationError:
    """One failed command. `command_index` is -1 when the whole batch call failed."""

    command_index: int
    error: Dict[str, Any]
    temp_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"command_index": self.command_index, "error": self.error}
        if self.temp_id:
            data["temp_id"] = self.temp_id
        return data


@dataclasses.dataclass
class BatchOperationResult:
    success: bool
    completed_commands: int = 0
    failed_commands: int = 0
    errors: List[BatchOperationError] = dataclasses.field(default_factory=list)
    temp_id_mapping: Dict[str, str] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "completed_commands": self.completed_commands,
            "failed_commands": self.failed_commands,
            "errors": [e.to_dict() for e in self.errors],
            "temp_id_mapping": dict(self.temp_id_mapping),
        }


@dataclasses.dataclass
class OperationResult:
    """Result for one task inside a bulk operation.

    Attributes:
        task_id: Todoist task ID.
        success: Whether the operation succeeded for this task.
        error: Error message when it failed, None otherwise.
        resource_uri: Stable address of the task ("todoist://task/{id}").
        verified_values: Re-fetched values of the requested fields. None means
            verification was not attempted or the re-fetch failed; an empty
            dict means it ran and there was nothing to report.
    """

    task_id: str
    success: bool
    error: Optional[str] = None
    resource_uri: str = ""
    verified_values: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.resource_uri:
            self.resource_uri = task_resource_uri(self.task_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "task_id": self.task_id,
            "success": self.success,
            "error": self.error,
            "resource_uri": self.resource_uri,
        }
        if self.verified_values is not None:
            data["verified_values"] = self.verified_values
        return data


@dataclasses.dataclass
class BulkOperationSummary:
    total_tasks: int
    successful: int
    failed: int
    results: List[OperationResult]

    @classmethod
    def from_results(cls, results: List[OperationResult]) -> "BulkOperationSummary":
        successful = sum(1 for r in results if r.success)
        return cls(
            total_tasks=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "successful": self.successful,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }
