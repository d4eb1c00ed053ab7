import logging
from typing import Optional

from ..mcp_instance import mcp
from ..client import TodoistClientSingleton
from ..helpers import ToolLogicError, error_response, format_response, require_arg, require_todoist_client, strip_none

LABEL_ACTIONS = ("list", "get", "create", "update", "delete", "rename_shared", "remove_shared")
FILTER_ACTIONS = ("list", "get", "create", "update", "delete")

# ================== #
# Label Tools        #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_labels(
    action: str,
    label_id: Optional[str] = None,
    name: Optional[str] = None,
    new_name: Optional[str] = None,
    color: Optional[str] = None,
    order: Optional[int] = None,
    is_favorite: Optional[bool] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
) -> str:
    """
    Manages personal labels, and renames or removes shared labels.

    Args:
        action (str): One of "list", "get", "create", "update", "delete",
            "rename_shared", "remove_shared". Required.
        label_id (str, optional): Required for get, update and delete.
        name (str, optional): Label name. Required for create and for the
            shared-label actions (the current shared label name).
        new_name (str, optional): New name, for rename_shared.
        color, order, is_favorite (optional): Label attributes.
        cursor, limit (optional): Pagination for list.

    Returns:
        A JSON string with the label(s) (list returns {"results", "next_cursor"}),
        a status object, or an error object.

    Notes:
        Shared labels are the labels collaborators put on tasks in shared
        projects. They have no ID and are addressed by name; renaming or
        removing one affects every task that carries it.

    Examples:
        {"action": "create", "name": "waiting", "color": "grey"}
        {"action": "rename_shared", "name": "urgent", "new_name": "p-urgent"}
    """
    logging.info(f"Attempting label action '{action}' (label_id={label_id}, name={name!r})")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        fields = strip_none({"name": name, "color": color, "order": order, "is_favorite": is_favorite})

        if action == "list":
            return format_response(await client.get_labels(cursor=cursor, limit=limit))
        if action == "get":
            return format_response(await client.get_label(require_arg(label_id, "label_id", action)))
        if action == "create":
            require_arg(name, "name", action)
            return format_response(await client.create_label(fields))
        if action == "update":
            require_arg(label_id, "label_id", action)
            if not fields:
                raise ToolLogicError("No fields to update were provided.")
            return format_response(await client.update_label(label_id, fields))
        if action == "delete":
            await client.delete_label(require_arg(label_id, "label_id", action))
            return format_response({"status": "success", "deleted_label_id": label_id})
        if action == "rename_shared":
            response = await client.rename_shared_label(
                require_arg(name, "name", action), require_arg(new_name, "new_name", action),
            )
            return format_response(response.to_dict())
        if action == "remove_shared":
            response = await client.remove_shared_label(require_arg(name, "name", action))
            return format_response(response.to_dict())
        raise ToolLogicError(f"Unknown action '{action}'. Expected one of: {', '.join(LABEL_ACTIONS)}")
    except Exception as e:
        logging.error(f"Label action '{action}' failed: {e}", exc_info=True)
        return format_response(error_response(e))


# ================== #
# Filter Tools       #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_filters(
    action: str,
    filter_id: Optional[str] = None,
    name: Optional[str] = None,
    query: Optional[str] = None,
    color: Optional[str] = None,
    order: Optional[int] = None,
    is_favorite: Optional[bool] = None,
) -> str:
    """
    Manages saved filters.

    Args:
        action (str): One of "list", "get", "create", "update", "delete". Required.
        filter_id (str, optional): Required for get, update and delete.
        name (str, optional): Filter name. Required for create.
        query (str, optional): Todoist filter query, e.g. "today & #Work". Required for create.
        color, order, is_favorite (optional): Filter attributes.

    Returns:
        A JSON string with the filter(s), a status object, or an error object.

    Example:
        {"action": "create", "name": "Urgent work", "query": "p1 & #Work"}
    """
    logging.info(f"Attempting filter action '{action}' (filter_id={filter_id})")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        fields = strip_none({"name": name, "query": query, "color": color, "order": order, "is_favorite": is_favorite})

        if action == "list":
            return format_response(await client.get_filters())
        if action == "get":
            return format_response(await client.get_filter(require_arg(filter_id, "filter_id", action)))
        if action == "create":
            require_arg(name, "name", action)
            require_arg(query, "query", action)
            return format_response(await client.create_filter(fields))
        if action == "update":
            require_arg(filter_id, "filter_id", action)
            if not fields:
                raise ToolLogicError("No fields to update were provided.")
            return format_response(await client.update_filter(filter_id, fields))
        if action == "delete":
            await client.delete_filter(require_arg(filter_id, "filter_id", action))
            return format_response({"status": "success", "deleted_filter_id": filter_id})
        raise ToolLogicError(f"Unknown action '{action}'. Expected one of: {', '.join(FILTER_ACTIONS)}")
    except Exception as e:
        logging.error(f"Filter action '{action}' failed: {e}", exc_info=True)
        return format_response(error_response(e))
