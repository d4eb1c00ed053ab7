import pytest

from todoist_mcp.bulk import BulkTasksService, command_uuid, dedupe
from todoist_mcp.commands import SyncResponse
from todoist_mcp.errors import InvalidParamsError, NetworkError, NotFoundError


class FakeApi:
    """In-memory stand-in for TodoistApiService, recording every call."""

    def __init__(self, failing_ids=(), deadline_failures=(), call_failures=(), tasks=None,
                 unverifiable=(), batch_error=None):
        self.failing_ids = set(failing_ids)
        self.deadline_failures = set(deadline_failures)
        self.call_failures = set(call_failures)
        self.unverifiable = set(unverifiable)
        self.tasks = tasks or {}
        self.batch_error = batch_error
        self.batches = []
        self.updates = []
        self.moves = []
        self.deletes = []
        self.fetched = []

    async def execute_batch(self, commands):
        self.batches.append(list(commands))
        if self.batch_error:
            raise self.batch_error
        status = {}
        for command in commands:
            if command.args.id in self.failing_ids:
                status[command.uuid] = {"error": "ITEM_NOT_FOUND", "error_message": f"Task {command.args.id} not found"}
            else:
                status[command.uuid] = "ok"
        return SyncResponse(sync_status=status)

    async def update_task(self, task_id, data):
        self.updates.append((task_id, data))
        if task_id in self.deadline_failures:
            raise NotFoundError("Resource not found")
        return {"id": task_id}

    async def move_task(self, task_id, destination):
        self.moves.append((task_id, destination))
        if task_id in self.call_failures:
            raise NotFoundError("Resource not found")

    async def delete_task(self, task_id):
        self.deletes.append(task_id)
        if task_id in self.call_failures:
            raise NotFoundError("Resource not found")

    async def get_task(self, task_id):
        self.fetched.append(task_id)
        if task_id in self.unverifiable:
            raise NetworkError("Network connection failed")
        return self.tasks.get(task_id, {"id": task_id})


def _ids(n, prefix="t"):
    return [f"{prefix}{i}" for i in range(n)]


# --- Deduplication and ceiling --- #

def test_dedupe_keeps_first_occurrence_order_and_is_idempotent():
    ids = ["b", "a", "b", "c", "a"]
    assert dedupe(ids) == ["b", "a", "c"]
    assert dedupe(dedupe(ids)) == dedupe(ids)


@pytest.mark.anyio
async def test_duplicate_ids_are_processed_once():
    api = FakeApi()
    response = await BulkTasksService(api).execute("complete", ["a", "b", "a", "c", "b"])

    assert [c.args.id for c in api.batches[0]] == ["a", "b", "c"]
    assert [r["task_id"] for r in response["data"]["results"]] == ["a", "b", "c"]
    assert response["metadata"]["deduplication_applied"] is True
    assert response["metadata"]["original_count"] == 5
    assert response["metadata"]["deduplicated_count"] == 3
    assert isinstance(response["metadata"]["execution_time_ms"], int)


@pytest.mark.anyio
async def test_fifty_tasks_are_accepted():
    api = FakeApi()
    response = await BulkTasksService(api).execute("complete", _ids(50))

    assert response["success"] is True
    assert response["data"]["total_tasks"] == 50
    assert response["metadata"]["deduplication_applied"] is False


@pytest.mark.anyio
async def test_fifty_one_tasks_are_rejected_before_any_call():
    api = FakeApi()

    with pytest.raises(InvalidParamsError, match="Maximum 50 tasks allowed, received 51"):
        await BulkTasksService(api).execute("complete", _ids(51))

    assert api.batches == []


@pytest.mark.anyio
async def test_ceiling_applies_after_deduplication():
    api = FakeApi()
    response = await BulkTasksService(api).execute("delete", _ids(50) + ["t0", "t1"])

    assert response["data"]["total_tasks"] == 50
    assert len(api.deletes) == 50


# --- Validation --- #

@pytest.mark.anyio
@pytest.mark.parametrize(
    "fields",
    [
        {"content": "New title"},
        {"description": "New notes"},
        {"comments": ["hi"]},
        {"content": "x", "description": "y", "comments": ["z"]},
        {"content": "x", "priority": 2},
    ],
)
async def test_free_text_fields_are_rejected(fields):
    api = FakeApi()

    with pytest.raises(InvalidParamsError, match="Cannot modify content, description, or comments"):
        await BulkTasksService(api).execute("update", ["t1"], **fields)

    assert api.batches == [] and api.updates == []


@pytest.mark.anyio
@pytest.mark.parametrize(
    "action, task_ids, fields",
    [
        ("archive", ["t1"], {}),
        ("update", [], {"priority": 2}),
        ("update", ["t1"], {"priority": 5}),
        ("update", ["t1"], {"due_date": "31/12/2025"}),
        ("update", ["t1"], {"deadline_date": "2025-1-1"}),
        ("update", ["t1"], {"due_datetime": "tomorrow"}),
        ("update", ["t1"], {"duration_unit": "hour", "duration": 3}),
        ("update", ["t1"], {"duration": 30}),
        ("update", ["t1"], {"colour": "red"}),
    ],
)
async def test_invalid_requests_raise_invalid_params(action, task_ids, fields):
    api = FakeApi()

    with pytest.raises(InvalidParamsError):
        await BulkTasksService(api).execute(action, task_ids, **fields)

    assert api.batches == []


@pytest.mark.anyio
@pytest.mark.parametrize("fields", [{}, {"project_id": "p1", "section_id": "s1"}])
async def test_move_requires_exactly_one_destination(fields):
    api = FakeApi()

    with pytest.raises(InvalidParamsError, match="Exactly one of project_id, section_id, or parent_id"):
        await BulkTasksService(api).execute("move", ["t1", "t2"], **fields)

    assert api.moves == []


# --- Dispatch --- #

@pytest.mark.anyio
async def test_partial_failure_is_reported_per_task():
    ids = _ids(5)
    api = FakeApi(failing_ids={ids[1], ids[3]})

    response = await BulkTasksService(api).execute("complete", ids)

    assert response["success"] is True
    data = response["data"]
    assert (data["total_tasks"], data["successful"], data["failed"]) == (5, 3, 2)
    assert [r["task_id"] for r in data["results"]] == ids
    errors = [r["error"] for r in data["results"]]
    assert errors[1] == "Task t1 not found"
    assert errors[3] == "Task t3 not found"
    assert [errors[i] for i in (0, 2, 4)] == [None, None, None]


@pytest.mark.anyio
@pytest.mark.parametrize("action, command_type", [("complete", "item_complete"), ("uncomplete", "item_uncomplete")])
async def test_complete_and_uncomplete_send_id_only_commands(action, command_type):
    api = FakeApi()
    await BulkTasksService(api).execute(action, ["a", "b"])

    [batch] = api.batches
    assert [c.type for c in batch] == [command_type, command_type]
    assert [c.uuid for c in batch] == [command_uuid(0, "a"), command_uuid(1, "b")]
    assert batch[0].to_payload()["args"] == {"id": "a"}


@pytest.mark.anyio
async def test_every_result_has_a_resource_uri():
    api = FakeApi(call_failures={"b"})
    response = await BulkTasksService(api).execute("delete", ["a", "b"])

    assert [r["resource_uri"] for r in response["data"]["results"]] == ["todoist://task/a", "todoist://task/b"]
    assert response["data"]["results"][1]["success"] is False


@pytest.mark.anyio
async def test_move_dispatches_one_call_per_task():
    api = FakeApi()
    ids = ["101", "102", "103"]

    response = await BulkTasksService(api).execute("move", ids, project_id="220474322")

    assert api.batches == []
    assert api.moves == [(task_id, {"project_id": "220474322"}) for task_id in ids]
    assert response["data"]["successful"] == 3


@pytest.mark.anyio
async def test_move_failure_is_isolated_to_its_task():
    api = FakeApi(call_failures={"102"})
    response = await BulkTasksService(api).execute("move", ["101", "102", "103"], section_id="s9")

    results = response["data"]["results"]
    assert [r["success"] for r in results] == [True, False, True]
    assert results[1]["error"] == "Resource not found"


@pytest.mark.anyio
async def test_batch_call_failure_fails_every_task_but_not_the_envelope():
    api = FakeApi(batch_error=NetworkError("Network connection failed"))
    response = await BulkTasksService(api).execute("complete", ["a", "b"])

    assert response["success"] is True
    assert response["data"]["failed"] == 2
    assert all(r["error"] == "Network connection failed" for r in response["data"]["results"])


# --- Update --- #

@pytest.mark.anyio
async def test_update_folds_due_and_duration_fields():
    api = FakeApi()
    await BulkTasksService(api).execute(
        "update", ["a"],
        priority=3, labels=["work"], due_string="every monday", due_lang="en",
        duration=45, duration_unit="minute",
    )

    args = api.batches[0][0].to_payload()["args"]
    assert args == {
        "id": "a",
        "priority": 3,
        "labels": ["work"],
        "due": {"string": "every monday", "lang": "en"},
        "duration": {"amount": 45, "unit": "minute"},
    }


@pytest.mark.anyio
async def test_deadline_requires_both_updates_to_succeed():
    api = FakeApi(deadline_failures={"b"})

    response = await BulkTasksService(api).execute("update", ["a", "b"], priority=4, deadline_date="2025-06-30")

    [batch] = api.batches
    assert all("deadline" not in c.to_payload()["args"] for c in batch)
    assert sorted(api.updates) == [("a", {"deadline": "2025-06-30"}), ("b", {"deadline": "2025-06-30"})]

    a, b = response["data"]["results"]
    assert a["success"] is True and a["error"] is None
    assert b["success"] is False
    assert b["error"].startswith("Deadline update failed:")
    assert response["data"]["failed"] == 1


@pytest.mark.anyio
async def test_sync_failure_wins_over_deadline_outcome():
    api = FakeApi(failing_ids={"a"})
    response = await BulkTasksService(api).execute("update", ["a"], priority=2, deadline_date="2025-06-30")

    [a] = response["data"]["results"]
    assert a["success"] is False
    assert a["error"] == "Task a not found"


@pytest.mark.anyio
async def test_deadline_only_update_skips_the_sync_batch():
    api = FakeApi()
    response = await BulkTasksService(api).execute("update", ["a", "b"], deadline_date="2025-06-30")

    assert api.batches == []
    assert len(api.updates) == 2
    assert response["data"]["successful"] == 2


@pytest.mark.anyio
async def test_verified_values_hold_only_requested_fields():
    api = FakeApi(tasks={"a": {"id": "a", "priority": 4, "labels": ["x"], "content": "Keep"}})
    response = await BulkTasksService(api).execute("update", ["a"], priority=4)

    assert response["data"]["results"][0]["verified_values"] == {"priority": 4}


@pytest.mark.anyio
async def test_failed_refetch_leaves_verification_absent():
    api = FakeApi(unverifiable={"b"})
    response = await BulkTasksService(api).execute("update", ["a", "b"], priority=2)

    a, b = response["data"]["results"]
    assert "verified_values" in a
    assert "verified_values" not in b
    assert b["success"] is True


@pytest.mark.anyio
async def test_failed_updates_are_not_verified():
    api = FakeApi(failing_ids={"b"})
    response = await BulkTasksService(api).execute("update", ["a", "b"], priority=2)

    assert api.fetched == ["a"]
    assert "verified_values" not in response["data"]["results"][1]
