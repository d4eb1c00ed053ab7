import json

import httpx
import pytest

from todoist_mcp.commands import ItemCompleteCommand, IdArgs, SyncResponse
from todoist_mcp.errors import (
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


def _json_body(request: httpx.Request):
    return json.loads(request.content) if request.content else None


def _sync_ok(request: httpx.Request) -> httpx.Response:
    commands = _json_body(request)["commands"]
    return httpx.Response(200, json={
        "sync_status": {c["uuid"]: "ok" for c in commands},
        "temp_id_mapping": {},
        "full_sync": False,
    })


# --- execute --- #

@pytest.mark.anyio
async def test_missing_token_fails_before_any_request(make_service):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    service = make_service(handler, token="")

    with pytest.raises(AuthenticationError):
        await service.execute("/tasks")

    assert calls == []
    assert service.rest_limiter.tokens == service.rest_limiter.capacity


@pytest.mark.anyio
async def test_token_falls_back_to_environment(make_service, monkeypatch):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "1"})

    monkeypatch.setenv("TODOIST_API_TOKEN", "env-token-0123456789")
    service = make_service(handler, token="")

    await service.execute("/tasks/1")
    assert seen["auth"] == "Bearer env-token-0123456789"


@pytest.mark.anyio
async def test_request_carries_bearer_token_and_base_path(make_service):
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "123", "content": "Buy milk"})

    service = make_service(handler)
    task = await service.get_task("123")

    assert task == {"id": "123", "content": "Buy milk"}
    assert seen["url"].path == "/api/v1/tasks/123"
    assert seen["auth"] == f"Bearer {service.config.token}"


@pytest.mark.anyio
async def test_set_token_applies_to_the_next_request(make_service):
    seen = []

    def handler(request):
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, json={})

    service = make_service(handler)
    await service.execute("/projects/1")
    service.set_token("rotated-token-0123456789")
    await service.execute("/projects/1")

    assert seen == ["Bearer test-token-0123456789", "Bearer rotated-token-0123456789"]


@pytest.mark.anyio
async def test_rest_and_sync_use_separate_limiters(make_service):
    service = make_service(_sync_ok)

    await service.sync([ItemCompleteCommand(args=IdArgs(id="1"))])

    assert service.sync_limiter.tokens == service.sync_limiter.capacity - 1
    assert service.rest_limiter.tokens == service.rest_limiter.capacity


@pytest.mark.anyio
async def test_empty_body_returns_none(make_service):
    service = make_service(lambda request: httpx.Response(204))
    assert await service.execute("/tasks/1", "DELETE") is None


@pytest.mark.anyio
async def test_none_params_are_not_sent(make_service):
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"results": []})

    service = make_service(handler)
    await service.get_tasks(project_id="p1")

    assert seen["params"] == {"project_id": "p1"}


@pytest.mark.anyio
@pytest.mark.parametrize(
    "status, body, error_cls, code",
    [
        (401, {}, AuthenticationError, TodoistErrorCode.INVALID_TOKEN),
        (403, {}, AuthenticationError, TodoistErrorCode.INSUFFICIENT_PERMISSIONS),
        (404, {}, NotFoundError, TodoistErrorCode.RESOURCE_NOT_FOUND),
        (400, {"error": "Invalid argument value"}, ValidationError, TodoistErrorCode.VALIDATION_ERROR),
        (500, {}, ServiceUnavailableError, TodoistErrorCode.SERVICE_UNAVAILABLE),
        (502, {}, ServiceUnavailableError, TodoistErrorCode.SERVICE_UNAVAILABLE),
        (504, {}, ServiceUnavailableError, TodoistErrorCode.SERVICE_UNAVAILABLE),
        (418, {}, TodoistAPIError, TodoistErrorCode.UNKNOWN_ERROR),
    ],
)
async def test_error_statuses_are_classified(make_service, status, body, error_cls, code):
    service = make_service(lambda request: httpx.Response(status, json=body))

    with pytest.raises(error_cls) as exc_info:
        await service.execute("/tasks/1")

    assert exc_info.value.code == code


@pytest.mark.anyio
async def test_bad_request_uses_body_error_message(make_service):
    service = make_service(lambda request: httpx.Response(400, json={"error": "Invalid argument value"}))

    with pytest.raises(ValidationError, match="Invalid argument value"):
        await service.execute("/tasks", "POST", json={})


@pytest.mark.anyio
async def test_bad_request_without_body_gets_generic_message(make_service):
    service = make_service(lambda request: httpx.Response(400, text="nope"))

    with pytest.raises(ValidationError, match="Invalid request data"):
        await service.execute("/tasks", "POST", json={})


@pytest.mark.anyio
async def test_429_reads_retry_after_and_backs_off(make_service, sleeper):
    service = make_service(lambda request: httpx.Response(429, headers={"Retry-After": "7"}, json={}))

    with pytest.raises(RateLimitError) as exc_info:
        await service.execute("/tasks")

    assert exc_info.value.retry_after == 7
    assert exc_info.value.retryable is True
    # The limiter backed off once before the error propagated.
    assert len(sleeper.delays) == 1


@pytest.mark.anyio
async def test_limiter_rejection_propagates_without_backoff(make_service, sleeper):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    service = make_service(handler)
    service.rest_limiter._tokens = 0

    with pytest.raises(RateLimitError):
        await service.execute("/tasks")

    assert calls == []
    assert sleeper.delays == []


@pytest.mark.anyio
async def test_timeout_becomes_retryable_timeout_error(make_service):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    service = make_service(handler)

    with pytest.raises(RequestTimeoutError) as exc_info:
        await service.execute("/tasks")

    assert exc_info.value.code == TodoistErrorCode.TIMEOUT_ERROR
    assert isinstance(exc_info.value, ServiceUnavailableError)


@pytest.mark.anyio
async def test_connection_failure_becomes_network_error(make_service):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    service = make_service(handler)

    with pytest.raises(NetworkError):
        await service.execute("/tasks")


# --- sync / execute_batch --- #

@pytest.mark.anyio
async def test_sync_assigns_missing_uuids(make_service):
    seen = {}

    def handler(request):
        seen["body"] = _json_body(request)
        return _sync_ok(request)

    service = make_service(handler)
    response = await service.sync([
        {"type": "item_complete", "args": {"id": "1"}},
        {"type": "item_complete", "uuid": "fixed-uuid", "args": {"id": "2"}},
    ])

    commands = seen["body"]["commands"]
    assert commands[0]["uuid"]
    assert commands[1]["uuid"] == "fixed-uuid"
    assert "temp_id" not in commands[0]
    assert isinstance(response, SyncResponse)
    assert response.status_for("fixed-uuid").ok


@pytest.mark.anyio
async def test_sync_rejects_malformed_known_command(make_service):
    service = make_service(_sync_ok)

    with pytest.raises(ValidationError):
        await service.sync([{"type": "item_move", "args": {"id": "1"}}])


@pytest.mark.anyio
async def test_execute_batch_retries_outages_with_growing_delay(make_service, sleeper):
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503, json={})
        return _sync_ok(request)

    service = make_service(handler, retry_attempts=3)
    response = await service.execute_batch([{"type": "item_complete", "uuid": "u1", "args": {"id": "1"}}])

    assert len(attempts) == 3
    assert sleeper.delays == [1, 2]
    assert response.status_for("u1").ok


@pytest.mark.anyio
async def test_execute_batch_retries_timeouts(make_service, sleeper):
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ReadTimeout("timed out", request=request)
        return _sync_ok(request)

    service = make_service(handler, retry_attempts=3)
    response = await service.execute_batch([{"type": "item_complete", "uuid": "u1", "args": {"id": "1"}}])

    assert len(attempts) == 3
    assert sleeper.delays == [1, 2]
    assert response.status_for("u1").ok


@pytest.mark.anyio
async def test_execute_batch_gives_up_after_retry_attempts(make_service, sleeper):
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(503, json={})

    service = make_service(handler, retry_attempts=4)

    with pytest.raises(ServiceUnavailableError):
        await service.execute_batch([{"type": "item_complete", "args": {"id": "1"}}])

    assert len(attempts) == 4
    assert sleeper.delays == [1, 2, 4]
    assert sleeper.delays == sorted(sleeper.delays)


@pytest.mark.anyio
async def test_execute_batch_waits_retry_after_on_rate_limit(make_service, sleeper):
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(429, headers={"Retry-After": "5"}, json={})
        return _sync_ok(request)

    service = make_service(handler)
    await service.execute_batch([{"type": "item_complete", "args": {"id": "1"}}])

    assert len(attempts) == 2
    # Limiter backoff first, then the server-provided wait.
    assert sleeper.delays[-1] == 5


@pytest.mark.anyio
async def test_execute_batch_does_not_retry_validation_errors(make_service, sleeper):
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(400, json={"error": "bad command"})

    service = make_service(handler)

    with pytest.raises(ValidationError):
        await service.execute_batch([{"type": "item_complete", "args": {"id": "1"}}])

    assert len(attempts) == 1
    assert sleeper.delays == []


@pytest.mark.anyio
async def test_execute_batch_makes_one_attempt_when_retries_disabled(make_service):
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(503, json={})

    service = make_service(handler, retry_attempts=0)

    with pytest.raises(ServiceUnavailableError):
        await service.execute_batch([{"type": "item_complete", "args": {"id": "1"}}])

    assert len(attempts) == 1


# --- REST surface --- #

@pytest.mark.anyio
@pytest.mark.parametrize(
    "deadline, expected",
    [
        ("2025-03-31", "2025-03-31"),
        ({"date": "2025-04-01"}, "2025-04-01"),
        (None, ""),
    ],
)
async def test_task_deadline_is_sent_as_deadline_date(make_service, deadline, expected):
    seen = {}

    def handler(request):
        seen["body"] = _json_body(request)
        return httpx.Response(200, json={"id": "1"})

    service = make_service(handler)
    await service.update_task("1", {"deadline": deadline, "priority": 2})

    assert seen["body"] == {"deadline_date": expected, "priority": 2}


@pytest.mark.anyio
async def test_pagination_is_normalized(make_service):
    service = make_service(lambda request: httpx.Response(200, json={"results": [{"id": "1"}], "next_cursor": ""}))
    assert await service.get_tasks() == {"results": [{"id": "1"}], "next_cursor": None}

    service = make_service(lambda request: httpx.Response(200, json={}))
    assert await service.get_tasks_by_filter("today") == {"results": [], "next_cursor": None}


@pytest.mark.anyio
async def test_filter_query_goes_to_filter_endpoint(make_service):
    seen = {}

    def handler(request):
        seen["url"] = request.url
        return httpx.Response(200, json={"results": [], "next_cursor": "abc"})

    service = make_service(handler)
    page = await service.get_tasks_by_filter("today | overdue", limit=10)

    assert seen["url"].path == "/api/v1/tasks/filter"
    assert seen["url"].params["query"] == "today | overdue"
    assert page["next_cursor"] == "abc"


@pytest.mark.anyio
async def test_move_task_sends_single_item_move(make_service):
    seen = {}

    def handler(request):
        seen["body"] = _json_body(request)
        return _sync_ok(request)

    service = make_service(handler)
    await service.move_task("42", {"project_id": "220474322"})

    [command] = seen["body"]["commands"]
    assert command["type"] == "item_move"
    assert command["args"] == {"id": "42", "project_id": "220474322"}


@pytest.mark.anyio
@pytest.mark.parametrize("destination", [{}, {"project_id": "p1", "section_id": "s1"}])
async def test_move_task_requires_exactly_one_destination(make_service, destination):
    calls = []

    def handler(request):
        calls.append(request)
        return _sync_ok(request)

    service = make_service(handler)

    with pytest.raises(ValidationError):
        await service.move_task("42", destination)

    assert calls == []


@pytest.mark.anyio
async def test_move_task_raises_on_rejected_command(make_service):
    def handler(request):
        [command] = _json_body(request)["commands"]
        return httpx.Response(200, json={
            "sync_status": {command["uuid"]: {"error": "ITEM_NOT_FOUND", "error_message": "Task not found"}},
        })

    service = make_service(handler)

    with pytest.raises(SyncError, match="Task not found"):
        await service.move_task("42", {"section_id": "s1"})


@pytest.mark.anyio
async def test_get_reminders_merges_and_filters_by_task(make_service):
    seen = {}

    def handler(request):
        seen["body"] = _json_body(request)
        return httpx.Response(200, json={
            "reminders": [{"id": "r1", "item_id": "t1"}, {"id": "r2", "item_id": "t2"}],
            "reminders_location": [{"id": "r3", "item_id": "t1"}],
        })

    service = make_service(handler)
    reminders = await service.get_reminders("t1")

    assert [r["id"] for r in reminders] == ["r1", "r3"]
    assert seen["body"]["sync_token"] == "*"


@pytest.mark.anyio
async def test_create_reminder_resolves_temp_id(make_service):
    def handler(request):
        body = _json_body(request)
        if "commands" in body:
            [command] = body["commands"]
            assert command["type"] == "reminder_add"
            return httpx.Response(200, json={
                "sync_status": {command["uuid"]: "ok"},
                "temp_id_mapping": {command["temp_id"]: "rem-9"},
            })
        return httpx.Response(200, json={"reminders": [{"id": "rem-9", "item_id": "t1", "minute_offset": 30}]})

    service = make_service(handler)
    reminder = await service.create_reminder({"item_id": "t1", "type": "relative", "minute_offset": 30})

    assert reminder == {"id": "rem-9", "item_id": "t1", "minute_offset": 30}


@pytest.mark.anyio
async def test_create_reminder_without_mapping_is_a_sync_error(make_service):
    def handler(request):
        [command] = _json_body(request)["commands"]
        return httpx.Response(200, json={
            "sync_status": {command["uuid"]: {"error": "INVALID_ARGUMENT", "error_message": "Bad offset"}},
            "temp_id_mapping": {},
        })

    service = make_service(handler)

    with pytest.raises(SyncError, match="Bad offset"):
        await service.create_reminder({"item_id": "t1", "minute_offset": -5})


@pytest.mark.anyio
async def test_rate_limit_status_covers_both_limiters(make_service):
    service = make_service(lambda request: httpx.Response(200, json={}))
    await service.execute("/projects")

    status = service.get_rate_limit_status()

    assert set(status) == {"rest", "sync"}
    assert status["rest"]["remaining"] == service.rest_limiter.capacity - 1
    assert status["sync"]["remaining"] == service.sync_limiter.capacity
