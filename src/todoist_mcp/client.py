import asyncio
import logging
import os
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import httpx
import pydantic

from .commands import (
    IdArgs,
    ItemMoveArgs,
    ItemMoveCommand,
    ReminderAddArgs,
    ReminderAddCommand,
    ReminderDeleteCommand,
    ReminderUpdateArgs,
    ReminderUpdateCommand,
    SharedLabelRemoveArgs,
    SharedLabelRemoveCommand,
    SharedLabelRenameArgs,
    SharedLabelRenameCommand,
    SyncCommand,
    SyncResponse,
    parse_command,
)
from .config import APIConfiguration
from .errors import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    ServiceUnavailableError,
    SyncError,
    TodoistAPIError,
    TodoistErrorCode,
    ValidationError,
)
from .rate_limiter import REST_CAPACITY, SYNC_CAPACITY, TokenBucketRateLimiter

USER_AGENT = "todoist-mcp/0.1.0"
SYNC_PATH = "/sync"

DEFAULT_RATE_LIMIT_RETRY_SECONDS = 60
MAX_SERVICE_RETRY_SECONDS = 30

CommandLike = Union[SyncCommand, Dict[str, Any]]
Paginated = Dict[str, Any]


def _paginated(response: Any) -> Paginated:
    """Normalizes a `{results, next_cursor}` page; a malformed body is an empty page."""
    if not isinstance(response, dict):
        return {"results": [], "next_cursor": None}
    results = response.get("results")
    return {
        "results": results if isinstance(results, list) else [],
        "next_cursor": response.get("next_cursor") or None,
    }


def _with_deadline_date(data: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrites a `deadline` field into the `deadline_date` field the API expects.

    A string is passed through, `{"date": ...}` is unwrapped and None becomes
    an empty string, which removes the deadline.
    """
    payload = dict(data)
    if "deadline" not in payload:
        return payload
    deadline = payload.pop("deadline")
    if isinstance(deadline, dict):
        payload["deadline_date"] = deadline.get("date") or ""
    elif deadline is None:
        payload["deadline_date"] = ""
    else:
        payload["deadline_date"] = str(deadline)
    return payload


def _drop_none(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None}


def _new_uuid() -> str:
    return str(uuid.uuid4())


class TodoistApiService:
    """
    Rate-limited client for the Todoist REST and Sync APIs.

    Owns one `httpx.AsyncClient` and two independent token buckets: one for
    the Sync endpoint and one for everything else. Every error is raised as a
    `TodoistAPIError` subclass.
    """

    def __init__(
        self,
        config: APIConfiguration,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rest_limiter: Optional[TokenBucketRateLimiter] = None,
        sync_limiter: Optional[TokenBucketRateLimiter] = None,
    ):
        self.config = config
        self._token = config.token
        self._sleep = sleep
        self.rest_limiter = rest_limiter or TokenBucketRateLimiter("rest", REST_CAPACITY, sleep=sleep)
        self.sync_limiter = sync_limiter or TokenBucketRateLimiter("sync", SYNC_CAPACITY, sleep=sleep)
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
        )

    async def __aenter__(self) -> "TodoistApiService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def set_token(self, token: str) -> None:
        self._token = token

    # --- Request execution --- #

    async def execute(
        self,
        path: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        is_sync_endpoint: bool = False,
    ) -> Any:
        """Sends one request through the matching rate limiter and returns the decoded body."""
        token = self._token or os.getenv("TODOIST_API_TOKEN")
        if not token:
            raise AuthenticationError("Todoist API token is not configured")

        limiter = self.sync_limiter if is_sync_endpoint else self.rest_limiter
        await limiter.acquire(path)

        try:
            return await self._send(method, path, params, json, token)
        except RateLimitError:
            await limiter.backoff()
            raise

    async def _send(self, method: str, path: str, params: Optional[Dict[str, Any]], json: Any, token: str) -> Any:
        logging.debug(f"Todoist request: {method} {path}")
        try:
            response = await self._http.request(
                method,
                path,
                params=_drop_none(params),
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError("Request timed out", {"path": path}) from e
        except httpx.NetworkError as e:
            raise NetworkError("Network connection failed", {"original_error": str(e)}) from e
        except httpx.HTTPError as e:
            raise TodoistAPIError(
                TodoistErrorCode.UNKNOWN_ERROR,
                str(e) or "An unexpected error occurred",
                {"path": path},
            ) from e

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                return response.text

        raise self._classify(response)

    @staticmethod
    def _classify(response: httpx.Response) -> TodoistAPIError:
        status = response.status_code
        try:
            data = response.json()
        except ValueError:
            data = None
        details = {"original_error": data if data is not None else response.text}

        if status == 401:
            return AuthenticationError("Invalid or expired Todoist API token", details)
        if status == 403:
            return AuthenticationError(
                "Insufficient permissions for this operation",
                details,
                code=TodoistErrorCode.INSUFFICIENT_PERMISSIONS,
            )
        if status == 404:
            return NotFoundError("Resource not found", details)
        if status == 429:
            retry_after = None
            header = response.headers.get("retry-after")
            if header is not None:
                try:
                    retry_after = int(header)
                except ValueError:
                    retry_after = None
            return RateLimitError("API rate limit exceeded", retry_after, details)
        if status == 400:
            message = "Invalid request data"
            if isinstance(data, dict) and isinstance(data.get("error"), str):
                message = data["error"]
            return ValidationError(message, details)
        if status in (500, 502, 503, 504):
            return ServiceUnavailableError(
                "Todoist service temporarily unavailable",
                None,
                {**details, "status": status},
                http_status=status,
            )
        return TodoistAPIError(
            TodoistErrorCode.UNKNOWN_ERROR,
            f"Unexpected response status {status}",
            details,
            http_status=status,
        )

    def get_rate_limit_status(self) -> Dict[str, Dict[str, Any]]:
        return {
            "rest": self.rest_limiter.get_status(),
            "sync": self.sync_limiter.get_status(),
        }

    # --- Sync protocol --- #

    @staticmethod
    def _command_payloads(commands: Iterable[CommandLike]) -> List[Dict[str, Any]]:
        payloads = []
        for raw in commands:
            try:
                command = parse_command(raw)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid sync command: {e.errors()[0]['msg']}", {"command": raw}) from e
            if not command.uuid:
                command = command.model_copy(update={"uuid": _new_uuid()})
            payloads.append(command.to_payload())
        return payloads

    async def sync(self, commands: Iterable[CommandLike]) -> SyncResponse:
        """Submits commands to `POST /sync` once, without retrying."""
        payloads = self._command_payloads(commands)
        response = await self.execute(SYNC_PATH, "POST", json={"commands": payloads}, is_sync_endpoint=True)
        return SyncResponse.from_dict(response)

    async def execute_batch(self, commands: Iterable[CommandLike]) -> SyncResponse:
        """
        Submits a command batch with retry.

        Rate limits wait for the server-provided `retry_after` (60s when
        unknown); outages and timeouts wait 1s, 2s, 4s... capped at 30s. Any
        other error, or the last failed attempt, propagates to the caller.
        """
        payloads = self._command_payloads(commands)
        attempts = max(1, self.config.retry_attempts)

        attempt = 1
        while True:
            try:
                return await self.sync(payloads)
            except RateLimitError as e:
                if attempt >= attempts:
                    raise
                delay = e.retry_after if e.retry_after is not None else DEFAULT_RATE_LIMIT_RETRY_SECONDS
                logging.warning(f"Sync batch rate limited (attempt {attempt}/{attempts}); retrying in {delay}s")
                await self._sleep(delay)
            except ServiceUnavailableError as e:
                if attempt >= attempts:
                    raise
                delay = min(2 ** (attempt - 1), MAX_SERVICE_RETRY_SECONDS)
                logging.warning(f"Sync batch failed with {e.code.value} (attempt {attempt}/{attempts}); retrying in {delay}s")
                await self._sleep(delay)
            attempt += 1

    # --- Tasks --- #

    async def get_tasks(
        self,
        project_id: Optional[str] = None,
        section_id: Optional[str] = None,
        label: Optional[str] = None,
        ids: Optional[List[str]] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Paginated:
        params = {
            "project_id": project_id,
            "section_id": section_id,
            "label": label,
            "ids": ",".join(ids) if ids else None,
            "cursor": cursor,
            "limit": limit,
        }
        return _paginated(await self.execute("/tasks", params=params))

    async def get_tasks_by_filter(
        self,
        query: str,
        lang: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Paginated:
        params = {"query": query, "lang": lang, "cursor": cursor, "limit": limit}
        return _paginated(await self.execute("/tasks/filter", params=params))

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        return await self.execute(f"/tasks/{task_id}")

    async def create_task(self, task_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute("/tasks", "POST", json=_with_deadline_date(task_data))

    async def update_task(self, task_id: str, task_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute(f"/tasks/{task_id}", "POST", json=_with_deadline_date(task_data))

    async def delete_task(self, task_id: str) -> None:
        await self.execute(f"/tasks/{task_id}", "DELETE")

    async def complete_task(self, task_id: str) -> None:
        await self.execute(f"/tasks/{task_id}/close", "POST")

    async def reopen_task(self, task_id: str) -> None:
        await self.execute(f"/tasks/{task_id}/reopen", "POST")

    async def move_task(self, task_id: str, destination: Dict[str, Optional[str]]) -> None:
        """Moves one task with a single `item_move` command. Exactly one destination is allowed."""
        try:
            args = ItemMoveArgs(id=task_id, **{k: v for k, v in destination.items() if v})
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Exactly one of project_id, section_id, or parent_id must be specified for move operation",
                {"destination": destination},
            ) from e

        command = ItemMoveCommand(uuid=_new_uuid(), args=args)
        response = await self.sync([command])
        status = response.status_for(command.uuid)
        if not status.ok:
            raise SyncError(status.message, {"task_id": task_id, "status": status.to_dict()})

    # --- Projects --- #

    async def get_projects(self) -> List[Dict[str, Any]]:
        return _paginated(await self.execute("/projects"))["results"]

    async def get_project(self, project_id: str) -> Dict[str, Any]:
        return await self.execute(f"/projects/{project_id}")

    async def create_project(self, project_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute("/projects", "POST", json=project_data)

    async def update_project(self, project_id: str, project_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute(f"/projects/{project_id}", "POST", json=project_data)

    async def delete_project(self, project_id: str) -> None:
        await self.execute(f"/projects/{project_id}", "DELETE")

    async def archive_project(self, project_id: str) -> None:
        await self.execute(f"/projects/{project_id}/archive", "POST")

    async def unarchive_project(self, project_id: str) -> None:
        await self.execute(f"/projects/{project_id}/unarchive", "POST")

    # --- Sections --- #

    async def get_sections(self, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return _paginated(await self.execute("/sections", params={"project_id": project_id}))["results"]

    async def get_section(self, section_id: str) -> Dict[str, Any]:
        return await self.execute(f"/sections/{section_id}")

    async def create_section(self, section_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute("/sections", "POST", json=section_data)

    async def update_section(self, section_id: str, section_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute(f"/sections/{section_id}", "POST", json=section_data)

    async def delete_section(self, section_id: str) -> None:
        await self.execute(f"/sections/{section_id}", "DELETE")

    # --- Comments --- #

    async def get_comments(self, task_id: Optional[str] = None, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"task_id": task_id, "project_id": project_id}
        return _paginated(await self.execute("/comments", params=params))["results"]

    async def get_comment(self, comment_id: str) -> Dict[str, Any]:
        return await self.execute(f"/comments/{comment_id}")

    async def create_comment(self, comment_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute("/comments", "POST", json=comment_data)

    async def update_comment(self, comment_id: str, comment_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute(f"/comments/{comment_id}", "POST", json=comment_data)

    async def delete_comment(self, comment_id: str) -> None:
        await self.execute(f"/comments/{comment_id}", "DELETE")

    # --- Labels --- #

    async def get_labels(self, cursor: Optional[str] = None, limit: Optional[int] = None) -> Paginated:
        return _paginated(await self.execute("/labels", params={"cursor": cursor, "limit": limit}))

    async def get_label(self, label_id: str) -> Dict[str, Any]:
        return await self.execute(f"/labels/{label_id}")

    async def create_label(self, label_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute("/labels", "POST", json=label_data)

    async def update_label(self, label_id: str, label_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute(f"/labels/{label_id}", "POST", json=label_data)

    async def delete_label(self, label_id: str) -> None:
        await self.execute(f"/labels/{label_id}", "DELETE")

    async def rename_shared_label(self, name: str, new_name: str) -> SyncResponse:
        command = SharedLabelRenameCommand(args=SharedLabelRenameArgs(name=name, new_name=new_name))
        return await self.sync([command])

    async def remove_shared_label(self, name: str) -> SyncResponse:
        command = SharedLabelRemoveCommand(args=SharedLabelRemoveArgs(name=name))
        return await self.sync([command])

    # --- Filters --- #

    async def get_filters(self) -> List[Dict[str, Any]]:
        return _paginated(await self.execute("/filters"))["results"]

    async def get_filter(self, filter_id: str) -> Dict[str, Any]:
        return await self.execute(f"/filters/{filter_id}")

    async def create_filter(self, filter_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute("/filters", "POST", json=filter_data)

    async def update_filter(self, filter_id: str, filter_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.execute(f"/filters/{filter_id}", "POST", json=filter_data)

    async def delete_filter(self, filter_id: str) -> None:
        await self.execute(f"/filters/{filter_id}", "DELETE")

    # --- Reminders (Sync API only) --- #

    async def get_reminders(self, item_id: Optional[str] = None) -> List[Dict[str, Any]]:
        body = {"sync_token": "*", "resource_types": ["reminders", "reminders_location"]}
        response = SyncResponse.from_dict(await self.execute(SYNC_PATH, "POST", json=body, is_sync_endpoint=True))
        reminders = response.reminders + response.reminders_location
        if item_id:
            reminders = [r for r in reminders if r.get("item_id") == item_id]
        return reminders

    async def create_reminder(self, reminder_data: Dict[str, Any]) -> Dict[str, Any]:
        temp_id = f"temp_reminder_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        try:
            args = ReminderAddArgs(**reminder_data)
        except pydantic.ValidationError as e:
            raise ValidationError("Reminder requires an item_id", {"reminder": reminder_data}) from e
        command = ReminderAddCommand(uuid=_new_uuid(), temp_id=temp_id, args=args)
        response = await self.sync([command])

        reminder_id = response.temp_id_mapping.get(temp_id)
        if not reminder_id:
            status = response.status_for(command.uuid)
            raise SyncError(
                f"Failed to create reminder: {status.message}",
                {"status": status.to_dict()},
            )

        for reminder in await self.get_reminders(reminder_data.get("item_id")):
            if reminder.get("id") == reminder_id:
                return reminder
        return {"id": reminder_id, **reminder_data, "is_deleted": False}

    async def update_reminder(self, reminder_id: str, reminder_data: Dict[str, Any]) -> Dict[str, Any]:
        command = ReminderUpdateCommand(uuid=_new_uuid(), args=ReminderUpdateArgs(id=reminder_id, **reminder_data))
        response = await self.sync([command])
        status = response.status_for(command.uuid)
        if not status.ok:
            raise SyncError(status.message, {"reminder_id": reminder_id, "status": status.to_dict()})

        for reminder in await self.get_reminders(reminder_data.get("item_id")):
            if reminder.get("id") == reminder_id:
                return reminder
        raise NotFoundError("Reminder not found after update", {"reminder_id": reminder_id})

    async def delete_reminder(self, reminder_id: str) -> None:
        command = ReminderDeleteCommand(uuid=_new_uuid(), args=IdArgs(id=reminder_id))
        response = await self.sync([command])
        status = response.status_for(command.uuid)
        if not status.ok:
            raise SyncError(status.message, {"reminder_id": reminder_id, "status": status.to_dict()})


class TodoistClientSingleton:
    """Holds the process's one `TodoistApiService` for the tool layer."""

    _instance: Optional[TodoistApiService] = None

    @classmethod
    def initialize(cls, config: APIConfiguration) -> TodoistApiService:
        if cls._instance is not None:
            logging.info("Todoist client already initialized.")
            return cls._instance
        logging.info(f"Initializing Todoist client for {config.base_url}")
        cls._instance = TodoistApiService(config)
        return cls._instance

    @classmethod
    def get_client(cls) -> Optional[TodoistApiService]:
        return cls._instance

    @classmethod
    def set_client(cls, service: Optional[TodoistApiService]) -> None:
        cls._instance = service

    @classmethod
    async def close(cls) -> None:
        if cls._instance is not None:
            await cls._instance.aclose()
            cls._instance = None
