import functools
import json
import logging
from typing import Any, Dict

from .client import TodoistClientSingleton
from .errors import TodoistAPIError, mcp_error_code, user_friendly_message


class ToolLogicError(Exception):
    """Raised inside a tool when it cannot proceed (e.g. client unavailable)."""
    pass


# --- Helper Function --- #
def format_response(result: Any) -> str:
    """Formats a service result into a JSON string for MCP."""
    if isinstance(result, (dict, list)):
        try:
            # default=str covers datetimes (e.g. rate limiter reset times)
            return json.dumps(result, indent=2, default=str)
        except TypeError as e:
            logging.error(f"Failed to serialize response object: {e} - Object: {result}", exc_info=True)
            return json.dumps({"error": "Failed to serialize response", "details": str(e)})
    elif result is None:
        return json.dumps(None)
    else:
        logging.warning(f"Formatting unexpected type: {type(result)} - Value: {result}")
        return json.dumps({"result": str(result)})


def error_response(exc: Exception) -> Dict[str, Any]:
    """
    Builds the error payload a tool returns for an exception.

    Todoist errors are reduced to a code, a sanitized message and retry
    hints. Anything else is reported as an internal error without details.
    """
    if isinstance(exc, TodoistAPIError):
        error: Dict[str, Any] = {
            "code": exc.code.value,
            "mcp_code": int(mcp_error_code(exc.code)),
            "message": user_friendly_message(exc.code, exc.message),
            "retryable": exc.retryable,
        }
        if exc.retry_after is not None:
            error["retry_after"] = exc.retry_after
    elif isinstance(exc, ToolLogicError):
        error = {"code": "TOOL_ERROR", "message": str(exc), "retryable": False}
    else:
        error = {"code": "INTERNAL_ERROR", "message": "Internal server error", "retryable": False}
    return {"error": error, "status": "error"}


def strip_none(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drops unset optional tool arguments before they reach the API."""
    return {k: v for k, v in data.items() if v is not None}


# --- Decorator for Client Check --- #
def require_todoist_client(func):
    """Decorator to check that the Todoist client is initialized before calling the tool."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        if TodoistClientSingleton.get_client() is None:
            logging.error("Todoist client accessed before initialization in tool function.")
            return format_response({
                "error": {"code": "TOOL_ERROR", "message": "Todoist client not initialized.", "retryable": False},
                "status": "error",
            })
        return await func(*args, **kwargs)
    return wrapper


def require_arg(value, name: str, action: str):
    """Returns `value`, or raises ToolLogicError when an action's required argument is missing."""
    if not value:
        raise ToolLogicError(f"{name} is required for action '{action}'.")
    return value
