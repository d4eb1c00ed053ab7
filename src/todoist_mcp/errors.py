import enum
from typing import Any, Dict, Optional


class TodoistErrorCode(str, enum.Enum):
    """Domain error codes attached to every Todoist error."""

    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"

    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SYNC_LIMIT_EXCEEDED = "SYNC_LIMIT_EXCEEDED"

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_ALREADY_EXISTS = "RESOURCE_ALREADY_EXISTS"
    RESOURCE_DELETED = "RESOURCE_DELETED"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PARAMS = "INVALID_PARAMS"
    INVALID_REQUEST_FORMAT = "INVALID_REQUEST_FORMAT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"

    SYNC_ERROR = "SYNC_ERROR"
    BATCH_PARTIAL_FAILURE = "BATCH_PARTIAL_FAILURE"
    OPERATION_NOT_SUPPORTED = "OPERATION_NOT_SUPPORTED"

    NETWORK_ERROR = "NETWORK_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class MCPErrorCode(enum.IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    TOOL_NOT_FOUND = -32000
    RESOURCE_NOT_FOUND = -32001
    AUTHENTICATION_REQUIRED = -32002
    PERMISSION_DENIED = -32003
    RATE_LIMITED = -32004
    OPERATION_CANCELLED = -32005


class TodoistAPIError(Exception):
    """Base class for every error raised by the Todoist service layer."""

    def __init__(
        self,
        code: TodoistErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
        retry_after: Optional[int] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        self.retry_after = retry_after
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            data["details"] = self.details
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if self.http_status is not None:
            data["http_status"] = self.http_status
        return data


class ValidationError(TodoistAPIError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(TodoistErrorCode.VALIDATION_ERROR, message, details, False, None, 400)


class InvalidParamsError(ValidationError):
    """Structural problem with a tool request, raised before any network call."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = TodoistErrorCode.INVALID_PARAMS


class ConfigurationError(ValidationError):
    pass


class AuthenticationError(TodoistAPIError):
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: TodoistErrorCode = TodoistErrorCode.INVALID_TOKEN,
    ):
        http_status = 403 if code == TodoistErrorCode.INSUFFICIENT_PERMISSIONS else 401
        super().__init__(code, message, details, False, None, http_status)


class NotFoundError(TodoistAPIError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(TodoistErrorCode.RESOURCE_NOT_FOUND, message, details, False, None, 404)


class RateLimitError(TodoistAPIError):
    def __init__(
        self,
        message: str,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(TodoistErrorCode.RATE_LIMIT_EXCEEDED, message, details, True, retry_after, 429)


class ServiceUnavailableError(TodoistAPIError):
    def __init__(
        self,
        message: str,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        http_status: Optional[int] = 503,
    ):
        super().__init__(TodoistErrorCode.SERVICE_UNAVAILABLE, message, details, True, retry_after, http_status)


class RequestTimeoutError(ServiceUnavailableError):
    """A request exceeded its timeout. Retried like any transient outage."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, None, details, http_status=None)
        self.code = TodoistErrorCode.TIMEOUT_ERROR


class NetworkError(TodoistAPIError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(TodoistErrorCode.NETWORK_ERROR, message, details, True)


class SyncError(TodoistAPIError):
    """A single sync command was rejected by the remote endpoint."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(TodoistErrorCode.SYNC_ERROR, message, details, False)


def mcp_error_code(code: TodoistErrorCode) -> MCPErrorCode:
    if code in (TodoistErrorCode.INVALID_TOKEN, TodoistErrorCode.TOKEN_EXPIRED):
        return MCPErrorCode.AUTHENTICATION_REQUIRED
    if code == TodoistErrorCode.INSUFFICIENT_PERMISSIONS:
        return MCPErrorCode.PERMISSION_DENIED
    if code in (TodoistErrorCode.RATE_LIMIT_EXCEEDED, TodoistErrorCode.SYNC_LIMIT_EXCEEDED):
        return MCPErrorCode.RATE_LIMITED
    if code == TodoistErrorCode.RESOURCE_NOT_FOUND:
        return MCPErrorCode.RESOURCE_NOT_FOUND
    if code in (
        TodoistErrorCode.VALIDATION_ERROR,
        TodoistErrorCode.INVALID_PARAMS,
        TodoistErrorCode.INVALID_REQUEST_FORMAT,
        TodoistErrorCode.MISSING_REQUIRED_FIELD,
    ):
        return MCPErrorCode.INVALID_PARAMS
    if code == TodoistErrorCode.OPERATION_NOT_SUPPORTED:
        return MCPErrorCode.METHOD_NOT_FOUND
    return MCPErrorCode.INTERNAL_ERROR


_FRIENDLY_MESSAGES = {
    TodoistErrorCode.INVALID_TOKEN: "Invalid Todoist API token. Please check your configuration.",
    TodoistErrorCode.TOKEN_EXPIRED: "Your Todoist API token has expired. Please generate a new one.",
    TodoistErrorCode.INSUFFICIENT_PERMISSIONS: "Insufficient permissions for this operation.",
    TodoistErrorCode.RATE_LIMIT_EXCEEDED: "Rate limit exceeded. Please wait before making more requests.",
    TodoistErrorCode.SYNC_LIMIT_EXCEEDED: "Sync operation limit exceeded.",
    TodoistErrorCode.RESOURCE_NOT_FOUND: "The requested resource was not found.",
    TodoistErrorCode.NETWORK_ERROR: "Network connection failed. Please check your internet connection.",
    TodoistErrorCode.SERVICE_UNAVAILABLE: "Todoist service is temporarily unavailable.",
    TodoistErrorCode.TIMEOUT_ERROR: "Request timed out. Please try again.",
    TodoistErrorCode.SYNC_ERROR: "Synchronization with Todoist failed.",
    TodoistErrorCode.BATCH_PARTIAL_FAILURE: "Some operations in the batch failed.",
    TodoistErrorCode.OPERATION_NOT_SUPPORTED: "This operation is not supported.",
    TodoistErrorCode.UNKNOWN_ERROR: "An unexpected error occurred.",
}


def user_friendly_message(code: TodoistErrorCode, original_message: str) -> str:
    """Sanitized message for a tool response.

    Validation-type errors keep their original message since it describes the
    caller's own input.
    """
    return _FRIENDLY_MESSAGES.get(code, original_message)
