import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from src.admin.interfaces.admin_api import build_admin_router
from src.execution.domain.command import CallableCommand, CallableUndoableCommand
from src.execution.runtime.command_engine import CommandEngine
from src.execution.runtime.command_queue import CommandQueue, CommandQueueConfig


def _failing():
    raise RuntimeError("downstream timeout")


@pytest.fixture
def engine():
    queue = CommandQueue(
        config=CommandQueueConfig(
            worker_count=1,
            queue_capacity=2,
            worker_poll_interval_seconds=0.01,
            autostart=False,
        )
    )
    engine = CommandEngine(queue)
    yield engine
    engine.close(grace_period=0.1)


def _client(engine) -> TestClient:
    app = fastapi.FastAPI()
    app.include_router(build_admin_router(engine))
    return TestClient(app)


def _dead_letter(engine) -> str:
    command_id = engine.enqueue(CallableCommand(_failing, name="sync-inventory", max_retries=0))
    engine.queue.workers[0].run_once()
    return command_id


def test_stats(engine):
    engine.enqueue(CallableCommand(lambda: None))

    response = _client(engine).get("/commands/v1/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["queued"] == 1
    assert body["dead_lettered"] == 0
    assert body["accepting"] is True


def test_dead_letter_listing_and_detail(engine):
    command_id = _dead_letter(engine)
    client = _client(engine)

    items = client.get("/commands/v1/dead-letters").json()["items"]
    assert [item["command_id"] for item in items] == [command_id]
    assert items[0]["error_type"] == "RuntimeError"
    assert items[0]["attempts"] == 1

    detail = client.get(f"/commands/v1/dead-letters/{command_id}")
    assert detail.status_code == 200
    assert detail.json()["name"] == "sync-inventory"
    assert client.get("/commands/v1/dead-letters/unknown").status_code == 404


def test_retry_dead_letter(engine):
    command_id = _dead_letter(engine)
    client = _client(engine)

    response = client.post(f"/commands/v1/dead-letters/{command_id}/retry")

    assert response.status_code == 200
    assert response.json() == {"status": "queued", "command_id": command_id}
    assert engine.get_stats().queued == 1
    assert client.post(f"/commands/v1/dead-letters/{command_id}/retry").status_code == 404


def test_retry_when_queue_full_returns_429(engine):
    command_id = _dead_letter(engine)
    engine.enqueue(CallableCommand(lambda: None))
    engine.enqueue(CallableCommand(lambda: None))

    response = _client(engine).post(f"/commands/v1/dead-letters/{command_id}/retry")

    assert response.status_code == 429
    assert engine.get_dead_letter(command_id) is not None


def test_purge_dead_letters(engine):
    first = _dead_letter(engine)
    _dead_letter(engine)
    client = _client(engine)

    assert client.delete(f"/commands/v1/dead-letters/{first}").status_code == 200
    assert client.delete(f"/commands/v1/dead-letters/{first}").status_code == 404

    response = client.delete("/commands/v1/dead-letters", params={"older_than": "2999-01-01T00:00:00"})
    assert response.json() == {"status": "purged", "count": 1}
    assert engine.get_stats().dead_lettered == 0


def test_history_info(engine):
    engine.execute_command(CallableUndoableCommand(lambda: None, lambda: None, name="rename"), session_id="s-1")
    client = _client(engine)

    body = client.get("/commands/v1/history/s-1").json()
    assert body["undo_count"] == 1
    assert body["undo_description"] == "rename"
    assert client.get("/commands/v1/history/other").json()["can_undo"] is False
