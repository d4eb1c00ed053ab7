import logging
from typing import Any, Dict, Optional

from ..mcp_instance import mcp
from ..client import TodoistClientSingleton
from ..helpers import ToolLogicError, error_response, format_response, require_arg, require_todoist_client, strip_none

COMMENT_ACTIONS = ("list", "get", "create", "update", "delete")
REMINDER_ACTIONS = ("list", "create", "update", "delete")
REMINDER_TYPES = ("relative", "absolute", "location")

# ================== #
# Comment Tools      #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_comments(
    action: str,
    comment_id: Optional[str] = None,
    task_id: Optional[str] = None,
    project_id: Optional[str] = None,
    content: Optional[str] = None,
    attachment: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Manages comments on tasks and projects.

    Args:
        action (str): One of "list", "get", "create", "update", "delete". Required.
        comment_id (str, optional): Required for get, update and delete.
        task_id (str, optional): Task to list/create comments for.
        project_id (str, optional): Project to list/create comments for.
            list and create need exactly one of task_id or project_id.
        content (str, optional): Comment text. Required for create and update.
        attachment (Dict, optional): File attachment object for create.

    Returns:
        A JSON string with the comment(s), a status object, or an error object.

    Example:
        {"action": "create", "task_id": "7025928378", "content": "Waiting on legal review"}
    """
    logging.info(f"Attempting comment action '{action}' (comment_id={comment_id}, task_id={task_id})")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        if action in ("list", "create") and bool(task_id) == bool(project_id):
            raise ToolLogicError(f"Exactly one of task_id or project_id is required for action '{action}'.")

        if action == "list":
            return format_response(await client.get_comments(task_id=task_id, project_id=project_id))
        if action == "get":
            return format_response(await client.get_comment(require_arg(comment_id, "comment_id", action)))
        if action == "create":
            data = strip_none({
                "content": require_arg(content, "content", action),
                "task_id": task_id,
                "project_id": project_id,
                "attachment": attachment,
            })
            return format_response(await client.create_comment(data))
        if action == "update":
            require_arg(comment_id, "comment_id", action)
            return format_response(
                await client.update_comment(comment_id, {"content": require_arg(content, "content", action)})
            )
        if action == "delete":
            await client.delete_comment(require_arg(comment_id, "comment_id", action))
            return format_response({"status": "success", "deleted_comment_id": comment_id})
        raise ToolLogicError(f"Unknown action '{action}'. Expected one of: {', '.join(COMMENT_ACTIONS)}")
    except Exception as e:
        logging.error(f"Comment action '{action}' failed: {e}", exc_info=True)
        return format_response(error_response(e))


# ================== #
# Reminder Tools     #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_reminders(
    action: str,
    reminder_id: Optional[str] = None,
    item_id: Optional[str] = None,
    type: Optional[str] = None,
    minute_offset: Optional[int] = None,
    due_string: Optional[str] = None,
    due_date: Optional[str] = None,
    name: Optional[str] = None,
    loc_lat: Optional[str] = None,
    loc_long: Optional[str] = None,
    loc_trigger: Optional[str] = None,
    radius: Optional[int] = None,
) -> str:
    """
    Manages task reminders. Reminders live only in the Todoist Sync API.

    Args:
        action (str): One of "list", "create", "update", "delete". Required.
        reminder_id (str, optional): Required for update and delete.
        item_id (str, optional): Task the reminder belongs to. Required for
            create; optional filter for list.
        type (str, optional): "relative" (minute_offset before due),
            "absolute" (at due_string/due_date) or "location".
        minute_offset (int, optional): Minutes before the task's due time, for relative reminders.
        due_string / due_date (str, optional): When an absolute reminder fires.
        name, loc_lat, loc_long, loc_trigger ("on_enter" | "on_leave"), radius:
            Location reminder fields.

    Returns:
        A JSON string with the reminder(s), a status object, or an error object.

    Example:
        {"action": "create", "item_id": "7025928378", "type": "relative", "minute_offset": 30}
    """
    logging.info(f"Attempting reminder action '{action}' (reminder_id={reminder_id}, item_id={item_id})")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        if type is not None and type not in REMINDER_TYPES:
            raise ToolLogicError(f"type must be one of: {', '.join(REMINDER_TYPES)}")

        due = strip_none({"string": due_string, "date": due_date}) or None
        fields = strip_none({
            "type": type,
            "minute_offset": minute_offset,
            "due": due,
            "name": name,
            "loc_lat": loc_lat,
            "loc_long": loc_long,
            "loc_trigger": loc_trigger,
            "radius": radius,
        })

        if action == "list":
            return format_response(await client.get_reminders(item_id))
        if action == "create":
            fields["item_id"] = require_arg(item_id, "item_id", action)
            return format_response(await client.create_reminder(fields))
        if action == "update":
            require_arg(reminder_id, "reminder_id", action)
            if not fields:
                raise ToolLogicError("No fields to update were provided.")
            return format_response(await client.update_reminder(reminder_id, fields))
        if action == "delete":
            await client.delete_reminder(require_arg(reminder_id, "reminder_id", action))
            return format_response({"status": "success", "deleted_reminder_id": reminder_id})
        raise ToolLogicError(f"Unknown action '{action}'. Expected one of: {', '.join(REMINDER_ACTIONS)}")
    except Exception as e:
        logging.error(f"Reminder action '{action}' failed: {e}", exc_info=True)
        return format_response(error_response(e))
