import logging
from typing import Optional

from ..mcp_instance import mcp
from ..client import TodoistClientSingleton
from ..helpers import ToolLogicError, error_response, format_response, require_arg, require_todoist_client, strip_none

PROJECT_ACTIONS = ("list", "get", "create", "update", "delete", "archive", "unarchive")
SECTION_ACTIONS = ("list", "get", "create", "update", "delete")


# ================== #
# Project Tools      #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_projects(
    action: str,
    project_id: Optional[str] = None,
    name: Optional[str] = None,
    parent_id: Optional[str] = None,
    color: Optional[str] = None,
    is_favorite: Optional[bool] = None,
    view_style: Optional[str] = None,
) -> str:
    """
    Manages Todoist projects.

    Args:
        action (str): One of "list", "get", "create", "update", "delete",
            "archive", "unarchive". Required.
        project_id (str, optional): Required for every action except list and create.
        name (str, optional): Project name. Required for create.
        parent_id (str, optional): Parent project, for create.
        color (str, optional): Color name, e.g. "berry_red".
        is_favorite (bool, optional): Whether the project is a favorite.
        view_style (str, optional): "list" or "board".

    Returns:
        A JSON string with the project(s), a status object, or an error object.

    Examples:
        {"action": "list"}
        {"action": "create", "name": "Home renovation", "color": "blue"}
        {"action": "archive", "project_id": "2203306141"}
    """
    logging.info(f"Attempting project action '{action}' (project_id={project_id})")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        fields = strip_none({"name": name, "color": color, "is_favorite": is_favorite, "view_style": view_style})

        if action == "list":
            projects = await client.get_projects()
            logging.info(f"Found {len(projects)} projects.")
            return format_response(projects)
        if action == "get":
            return format_response(await client.get_project(require_arg(project_id, "project_id", action)))
        if action == "create":
            require_arg(name, "name", action)
            if parent_id:
                fields["parent_id"] = parent_id
            return format_response(await client.create_project(fields))
        if action == "update":
            require_arg(project_id, "project_id", action)
            if not fields:
                raise ToolLogicError("No fields to update were provided.")
            return format_response(await client.update_project(project_id, fields))
        if action == "delete":
            await client.delete_project(require_arg(project_id, "project_id", action))
            return format_response({"status": "success", "deleted_project_id": project_id})
        if action == "archive":
            await client.archive_project(require_arg(project_id, "project_id", action))
            return format_response({"status": "success", "archived_project_id": project_id})
        if action == "unarchive":
            await client.unarchive_project(require_arg(project_id, "project_id", action))
            return format_response({"status": "success", "unarchived_project_id": project_id})
        raise ToolLogicError(f"Unknown action '{action}'. Expected one of: {', '.join(PROJECT_ACTIONS)}")
    except Exception as e:
        logging.error(f"Project action '{action}' failed: {e}", exc_info=True)
        return format_response(error_response(e))


# ================== #
# Section Tools      #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_sections(
    action: str,
    section_id: Optional[str] = None,
    project_id: Optional[str] = None,
    name: Optional[str] = None,
    order: Optional[int] = None,
) -> str:
    """
    Manages sections inside Todoist projects.

    Args:
        action (str): One of "list", "get", "create", "update", "delete". Required.
        section_id (str, optional): Required for get, update and delete.
        project_id (str, optional): Filters list; required for create.
        name (str, optional): Section name. Required for create and update.
        order (int, optional): Position of a new section in its project.

    Returns:
        A JSON string with the section(s), a status object, or an error object.

    Example:
        {"action": "create", "project_id": "2203306141", "name": "Backlog"}
    """
    logging.info(f"Attempting section action '{action}' (section_id={section_id}, project_id={project_id})")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        if action == "list":
            return format_response(await client.get_sections(project_id))
        if action == "get":
            return format_response(await client.get_section(require_arg(section_id, "section_id", action)))
        if action == "create":
            data = strip_none({
                "name": require_arg(name, "name", action),
                "project_id": require_arg(project_id, "project_id", action),
                "order": order,
            })
            return format_response(await client.create_section(data))
        if action == "update":
            require_arg(section_id, "section_id", action)
            return format_response(await client.update_section(section_id, {"name": require_arg(name, "name", action)}))
        if action == "delete":
            await client.delete_section(require_arg(section_id, "section_id", action))
            return format_response({"status": "success", "deleted_section_id": section_id})
        raise ToolLogicError(f"Unknown action '{action}'. Expected one of: {', '.join(SECTION_ACTIONS)}")
    except Exception as e:
        logging.error(f"Section action '{action}' failed: {e}", exc_info=True)
        return format_response(error_response(e))
