import logging
from typing import List, Optional, Union

# Import the shared MCP instance for the decorator
from ..mcp_instance import mcp
from ..client import TodoistClientSingleton
from ..helpers import ToolLogicError, error_response, format_response, require_todoist_client, strip_none

TaskId = str


def _task_fields(
    content: Optional[str] = None,
    description: Optional[str] = None,
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
    parent_id: Optional[str] = None,
    labels: Optional[List[str]] = None,
    priority: Optional[int] = None,
    due_string: Optional[str] = None,
    due_date: Optional[str] = None,
    due_datetime: Optional[str] = None,
    due_lang: Optional[str] = None,
    assignee_id: Optional[Union[int, str]] = None,
    duration: Optional[int] = None,
    duration_unit: Optional[str] = None,
    deadline_date: Optional[str] = None,
) -> dict:
    if priority is not None and not 1 <= priority <= 4:
        raise ToolLogicError("priority must be between 1 and 4")
    if (duration is None) != (duration_unit is None):
        raise ToolLogicError("duration and duration_unit must be provided together")
    return strip_none({
        "content": content,
        "description": description,
        "project_id": project_id,
        "section_id": section_id,
        "parent_id": parent_id,
        "labels": labels,
        "priority": priority,
        "due_string": due_string,
        "due_date": due_date,
        "due_datetime": due_datetime,
        "due_lang": due_lang,
        "assignee_id": assignee_id,
        "duration": duration,
        "duration_unit": duration_unit,
        "deadline": deadline_date,
    })


# ================== #
# Task Tools         #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_create_task(
    content: str,
    description: Optional[str] = None,
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
    parent_id: Optional[str] = None,
    labels: Optional[List[str]] = None,
    priority: Optional[int] = None,
    due_string: Optional[str] = None,
    due_date: Optional[str] = None,
    due_datetime: Optional[str] = None,
    due_lang: Optional[str] = None,
    assignee_id: Optional[Union[int, str]] = None,
    duration: Optional[int] = None,
    duration_unit: Optional[str] = None,
    deadline_date: Optional[str] = None,
) -> str:
    """
    Creates a new task in Todoist.

    Args:
        content (str): The task title. Supports Todoist markdown.
        description (str, optional): Longer notes for the task.
        project_id (str, optional): Project to add the task to. Defaults to Inbox.
        section_id (str, optional): Section inside the project.
        parent_id (str, optional): Parent task ID, to create a subtask.
        labels (List[str], optional): Label names to attach.
        priority (int, optional): 1 (normal) to 4 (urgent).
        due_string (str, optional): Natural language due date, e.g. "every monday at 9am".
        due_date (str, optional): Due date as YYYY-MM-DD.
        due_datetime (str, optional): Due date and time in ISO 8601 format.
        due_lang (str, optional): Language of due_string, e.g. "en".
        assignee_id (str, optional): User ID to assign the task to (shared projects).
        duration (int, optional): Planned duration. Requires duration_unit.
        duration_unit (str, optional): "minute" or "day".
        deadline_date (str, optional): Deadline as YYYY-MM-DD.

    Returns:
        A JSON string containing the created task object or an error object.

    Example:
        {
            "content": "Prepare quarterly report",
            "project_id": "2203306141",
            "priority": 4,
            "due_string": "next friday",
            "deadline_date": "2025-03-31"
        }
    """
    logging.info(f"Attempting to create task with content: '{content}'")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        task_data = _task_fields(
            content=content, description=description, project_id=project_id,
            section_id=section_id, parent_id=parent_id, labels=labels, priority=priority,
            due_string=due_string, due_date=due_date, due_datetime=due_datetime, due_lang=due_lang,
            assignee_id=assignee_id, duration=duration, duration_unit=duration_unit,
            deadline_date=deadline_date,
        )
        created_task = await client.create_task(task_data)
        logging.info(f"Successfully created task: {created_task.get('id') if isinstance(created_task, dict) else created_task}")
        return format_response(created_task)
    except Exception as e:
        logging.error(f"Failed to create task '{content}': {e}", exc_info=True)
        return format_response(error_response(e))


@mcp.tool()
@require_todoist_client
async def todoist_get_task(task_id: TaskId) -> str:
    """
    Retrieves a single task by its ID.

    Args:
        task_id (str): The task ID. Required.

    Returns:
        A JSON string with the task object, or an error object (code
        RESOURCE_NOT_FOUND when the task does not exist).
    """
    logging.info(f"Attempting to get task: {task_id}")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")
        return format_response(await client.get_task(task_id))
    except Exception as e:
        logging.error(f"Failed to get task {task_id}: {e}", exc_info=True)
        return format_response(error_response(e))


@mcp.tool()
@require_todoist_client
async def todoist_update_task(
    task_id: TaskId,
    content: Optional[str] = None,
    description: Optional[str] = None,
    labels: Optional[List[str]] = None,
    priority: Optional[int] = None,
    due_string: Optional[str] = None,
    due_date: Optional[str] = None,
    due_datetime: Optional[str] = None,
    due_lang: Optional[str] = None,
    assignee_id: Optional[Union[int, str]] = None,
    duration: Optional[int] = None,
    duration_unit: Optional[str] = None,
    deadline_date: Optional[str] = None,
) -> str:
    """
    Updates fields of an existing task. Only the fields given are changed.

    Moving a task to another project, section or parent is not an update;
    use todoist_move_task for that.

    Args:
        task_id (str): The task to update. Required.
        content, description, labels, priority, due_*, assignee_id,
        duration, duration_unit, deadline_date: Same meaning as in
        todoist_create_task.

    Returns:
        A JSON string containing the updated task object or an error object.

    Example:
        {
            "task_id": "7025928378",
            "priority": 3,
            "labels": ["work", "review"]
        }
    """
    logging.info(f"Attempting to update task: {task_id}")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        task_data = _task_fields(
            content=content, description=description, labels=labels, priority=priority,
            due_string=due_string, due_date=due_date, due_datetime=due_datetime, due_lang=due_lang,
            assignee_id=assignee_id, duration=duration, duration_unit=duration_unit,
            deadline_date=deadline_date,
        )
        if not task_data:
            raise ToolLogicError("No fields to update were provided.")
        updated_task = await client.update_task(task_id, task_data)
        logging.info(f"Successfully updated task: {task_id}")
        return format_response(updated_task)
    except Exception as e:
        logging.error(f"Failed to update task {task_id}: {e}", exc_info=True)
        return format_response(error_response(e))


@mcp.tool()
@require_todoist_client
async def todoist_delete_task(task_id: TaskId) -> str:
    """
    Permanently deletes a task and its subtasks.

    Args:
        task_id (str): The task to delete. Required.

    Returns:
        A JSON string: {"status": "success", "deleted_task_id": ...} or an error object.
    """
    logging.info(f"Attempting to delete task: {task_id}")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")
        await client.delete_task(task_id)
        logging.info(f"Successfully deleted task: {task_id}")
        return format_response({"status": "success", "deleted_task_id": task_id})
    except Exception as e:
        logging.error(f"Failed to delete task {task_id}: {e}", exc_info=True)
        return format_response(error_response(e))


@mcp.tool()
@require_todoist_client
async def todoist_list_tasks(
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
    label: Optional[str] = None,
    ids: Optional[List[str]] = None,
    filter: Optional[str] = None,
    lang: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
) -> str:
    """
    Lists active tasks, one page at a time.

    Either narrow by project/section/label/ids, or pass a Todoist filter
    query in `filter` (e.g. "today | overdue", "#Work & p1"). The two modes
    cannot be combined.

    Args:
        project_id (str, optional): Only tasks in this project.
        section_id (str, optional): Only tasks in this section.
        label (str, optional): Only tasks with this label name.
        ids (List[str], optional): Only these task IDs.
        filter (str, optional): Todoist filter query.
        lang (str, optional): Language of the filter query.
        cursor (str, optional): `next_cursor` from the previous page.
        limit (int, optional): Page size (max 200).

    Returns:
        A JSON string: {"results": [...tasks], "next_cursor": str | null}.

    Agent Usage Guide:
        - Keep calling with the returned next_cursor until it is null to read every page.
        - "What's due today?" → {"filter": "today"}
    """
    logging.info(f"Attempting to list tasks (filter={filter!r}, project_id={project_id})")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")

        if filter:
            if project_id or section_id or label or ids:
                raise ToolLogicError("filter cannot be combined with project_id, section_id, label or ids.")
            page = await client.get_tasks_by_filter(filter, lang=lang, cursor=cursor, limit=limit)
        else:
            page = await client.get_tasks(
                project_id=project_id, section_id=section_id, label=label, ids=ids, cursor=cursor, limit=limit,
            )
        logging.info(f"Found {len(page['results'])} tasks.")
        return format_response(page)
    except Exception as e:
        logging.error(f"Failed to list tasks: {e}", exc_info=True)
        return format_response(error_response(e))


@mcp.tool()
@require_todoist_client
async def todoist_complete_task(task_id: TaskId) -> str:
    """
    Marks a task as completed. Recurring tasks move to their next occurrence.

    Args:
        task_id (str): The task to complete. Required.

    Returns:
        A JSON string: {"status": "success", "completed_task_id": ...} or an error object.
    """
    logging.info(f"Attempting to complete task: {task_id}")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")
        await client.complete_task(task_id)
        logging.info(f"Successfully completed task: {task_id}")
        return format_response({"status": "success", "completed_task_id": task_id})
    except Exception as e:
        logging.error(f"Failed to complete task {task_id}: {e}", exc_info=True)
        return format_response(error_response(e))


@mcp.tool()
@require_todoist_client
async def todoist_uncomplete_task(task_id: TaskId) -> str:
    """
    Reopens a completed task.

    Args:
        task_id (str): The task to reopen. Required.
    """
    logging.info(f"Attempting to reopen task: {task_id}")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")
        await client.reopen_task(task_id)
        return format_response({"status": "success", "reopened_task_id": task_id})
    except Exception as e:
        logging.error(f"Failed to reopen task {task_id}: {e}", exc_info=True)
        return format_response(error_response(e))


@mcp.tool()
@require_todoist_client
async def todoist_move_task(
    task_id: TaskId,
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
    parent_id: Optional[str] = None,
) -> str:
    """
    Moves a task to another project, section or parent task.

    Args:
        task_id (str): The task to move. Required.
        project_id (str, optional): Destination project.
        section_id (str, optional): Destination section.
        parent_id (str, optional): Destination parent task.
        Exactly one destination must be given.

    Returns:
        A JSON string: {"status": "success", "moved_task_id": ..., "destination": {...}} or an error object.

    Example:
        {"task_id": "7025928378", "section_id": "98765"}
    """
    destination = strip_none({"project_id": project_id, "section_id": section_id, "parent_id": parent_id})
    logging.info(f"Attempting to move task {task_id} to {destination}")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")
        await client.move_task(task_id, destination)
        logging.info(f"Successfully moved task: {task_id}")
        return format_response({"status": "success", "moved_task_id": task_id, "destination": destination})
    except Exception as e:
        logging.error(f"Failed to move task {task_id}: {e}", exc_info=True)
        return format_response(error_response(e))
