import logging
from typing import Any, Dict, List, Optional, Union

from ..mcp_instance import mcp
from ..client import TodoistClientSingleton
from ..batch import BatchOperationRequest, BatchOperationsService, CommandDependency
from ..bulk import BulkTasksService
from ..errors import InvalidParamsError, ValidationError
from ..helpers import ToolLogicError, error_response, format_response, require_todoist_client, strip_none

# ================== #
# Bulk & Batch Tools #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_bulk_tasks(
    action: str,
    task_ids: List[str],
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
    parent_id: Optional[str] = None,
    order: Optional[int] = None,
    labels: Optional[List[str]] = None,
    priority: Optional[int] = None,
    assignee_id: Optional[Union[int, str]] = None,
    due_string: Optional[str] = None,
    due_date: Optional[str] = None,
    due_datetime: Optional[str] = None,
    due_lang: Optional[str] = None,
    duration: Optional[int] = None,
    duration_unit: Optional[str] = None,
    deadline_date: Optional[str] = None,
) -> str:
    """
    Performs one operation on up to 50 tasks at once.

    Duplicate task IDs are removed before processing. Execution is partial:
    a failure on one task does not stop the others, and every task gets its
    own entry in the results.

    Args:
        action (str): "update", "complete", "uncomplete", "move" or "delete". Required.
        task_ids (List[str]): 1-50 task IDs (after de-duplication). Required.
        project_id / section_id / parent_id (str, optional): For "move", exactly
            one of these is the destination. For "update" they are written as fields.
        order, labels, priority (1-4), assignee_id: Update fields.
        due_string, due_date (YYYY-MM-DD), due_datetime (ISO 8601), due_lang: Due date update.
        duration (int), duration_unit ("minute" | "day"): Must be given together.
        deadline_date (str, optional): YYYY-MM-DD. Applied per task in a separate call.

    Content, description and comments cannot be changed in bulk.

    Returns:
        A JSON string:
        {
            "success": true,
            "data": {"total_tasks": 3, "successful": 2, "failed": 1, "results": [...]},
            "metadata": {"deduplication_applied": false, "original_count": 3,
                         "deduplicated_count": 3, "execution_time_ms": 412}
        }
        Each result is {"task_id", "success", "error", "resource_uri", "verified_values"?}.
        Invalid input returns {"success": false, "error": {"code": "INVALID_PARAMS", "message": ...}}.

    Examples:
        Complete three tasks:
        {"action": "complete", "task_ids": ["101", "102", "103"]}

        Reschedule and reprioritize:
        {"action": "update", "task_ids": ["101", "102"], "due_string": "tomorrow", "priority": 4}

        Move into a project:
        {"action": "move", "task_ids": ["101", "102"], "project_id": "220474322"}
    """
    logging.info(f"Attempting bulk '{action}' on {len(task_ids) if task_ids else 0} task IDs")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        fields = strip_none({
            "project_id": project_id,
            "section_id": section_id,
            "parent_id": parent_id,
            "order": order,
            "labels": labels,
            "priority": priority,
            "assignee_id": assignee_id,
            "due_string": due_string,
            "due_date": due_date,
            "due_datetime": due_datetime,
            "due_lang": due_lang,
            "duration": duration,
            "duration_unit": duration_unit,
            "deadline_date": deadline_date,
        })
        result = await BulkTasksService(client).execute(action, task_ids, **fields)
        data = result["data"]
        logging.info(f"Bulk '{action}' finished: {data['successful']} succeeded, {data['failed']} failed")
        return format_response(result)
    except InvalidParamsError as e:
        logging.warning(f"Rejected bulk '{action}' request: {e.message}")
        return format_response({"success": False, "error": {"code": e.code.value, "message": e.message}})
    except Exception as e:
        logging.error(f"Bulk '{action}' failed: {e}", exc_info=True)
        return format_response(error_response(e))


@mcp.tool()
@require_todoist_client
async def todoist_batch(
    commands: List[Dict[str, Any]],
    dependencies: Optional[List[Dict[str, Any]]] = None,
    continue_on_error: bool = False,
    validate_only: bool = False,
) -> str:
    """
    Submits raw Todoist Sync API commands as one batch (max 100).

    Args:
        commands (List[Dict]): Commands of the form
            {"type": "item_add", "temp_id": "...", "uuid": "...", "args": {...}}.
            uuid is generated when omitted. Later commands may reference an
            earlier command's temp_id in their args (e.g. as project_id).
        dependencies (List[Dict], optional): Declared references
            {"command_index": 2, "depends_on": "<temp_id>", "field": "project_id"},
            checked for existence before submission.
        continue_on_error (bool): Report success even when some commands fail.
            Every command is counted either way.
        validate_only (bool): Validate the batch without submitting it.

    Returns:
        A JSON string:
        {"success": bool, "completed_commands": int, "failed_commands": int,
         "errors": [{"command_index", "temp_id"?, "error"}], "temp_id_mapping": {...}}

    Example:
        {
            "commands": [
                {"type": "project_add", "temp_id": "p1", "args": {"name": "Launch"}},
                {"type": "item_add", "args": {"content": "Write brief", "project_id": "p1"}}
            ]
        }
    """
    logging.info(f"Attempting sync batch of {len(commands) if commands else 0} commands (validate_only={validate_only})")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        try:
            parsed_dependencies = [
                CommandDependency(int(d["command_index"]), str(d["depends_on"]), str(d.get("field", "")))
                for d in dependencies or []
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid dependency entry: {e}") from e

        request = BatchOperationRequest(
            commands=list(commands or []),
            dependencies=parsed_dependencies,
            continue_on_error=continue_on_error,
            validate_only=validate_only,
        )
        result = await BatchOperationsService(client).execute_batch(request)
        logging.info(f"Sync batch finished: {result.completed_commands} completed, {result.failed_commands} failed")
        return format_response(result.to_dict())
    except Exception as e:
        logging.error(f"Sync batch failed: {e}", exc_info=True)
        return format_response(error_response(e))
