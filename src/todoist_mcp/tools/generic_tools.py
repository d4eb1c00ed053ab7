import logging

from ..mcp_instance import mcp
from ..client import TodoistClientSingleton
from ..helpers import ToolLogicError, error_response, format_response, require_todoist_client

# ================== #
# Generic Tools      #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_get_rate_limit_status() -> str:
    """
    Reports the client-side rate limit budget for the REST and Sync endpoints.

    Returns:
        A JSON string:
        {
            "rest": {"remaining": 998, "reset_time": "2025-01-01 12:15:00+00:00", "is_limited": false},
            "sync": {"remaining": 100, "reset_time": "...", "is_limited": false}
        }

    Agent Usage Guide:
        - Check this before large bulk or batch operations.
        - When "is_limited" is true, wait until "reset_time" before retrying.
    """
    logging.info("Attempting to get rate limit status")
    try:
        client = TodoistClientSingleton.get_client()
        if not client:
            raise ToolLogicError("Todoist client is not available.")
        return format_response(client.get_rate_limit_status())
    except Exception as e:
        logging.error(f"Failed to get rate limit status: {e}", exc_info=True)
        return format_response(error_response(e))
