"""Integration tests for the HTTP surface."""

import asyncio
import shlex
import sys

import httpx
import pytest

from commitreel.api_server import APIServer
from commitreel.core.models import checkpoint_uri
from commitreel.core.recorder import CheckpointRecorder
from commitreel.core.run_manager import RunManager
from commitreel.core.store import open_store
from commitreel.core.store_writer import StoreWriter
from tests.conftest import commit_files

PYTHON = shlex.quote(sys.executable)


@pytest.fixture
async def env(git_repo, tmp_path):
    """API server over a tape holding one checkpoint whose code prints and exits."""
    workspace = git_repo.working_tree_dir
    sha = commit_files(git_repo, {"tool.py": "print('hello from the past', flush=True)\n"}, "Add greeting tool")
    store = await open_store(tmp_path / "tape.db")
    writer = StoreWriter(store)
    recorder = CheckpointRecorder(workspace, writer, run_command=f"{PYTHON} tool.py")
    await recorder.record_from_revision_change(None, sha, "Baseline")

    manager = RunManager(workspace, run_mode="cli", stop_grace=2.0)
    server = APIServer(
        store,
        manager,
        cwd=workspace,
        tape_path=tmp_path / "tape.db",
        run_command=f"{PYTHON} tool.py",
        run_mode="cli",
    )
    transport = httpx.ASGITransport(app=server.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://commitreel.test") as client:
        yield client, sha, manager, recorder
    await manager.shutdown()
    await writer.close()
    await store.close()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_status_reports_tape_and_run_settings(env, tmp_path):
    client, _sha, _manager, _recorder = env

    response = await client.get("/api/status")

    assert response.status_code == 200
    data = response.json()
    assert data["path"] == str(tmp_path / "tape.db")
    assert data["stats"]["checkpoints"] == 1
    assert data["runMode"] == "cli"
    assert data["runCommand"].endswith("tool.py")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_timeline_and_view(env):
    client, sha, _manager, _recorder = env

    entries = (await client.get("/api/timeline", params={"limit": 10})).json()["entries"]
    assert [entry["uri"] for entry in entries] == [checkpoint_uri(sha)]

    view = (await client.get("/api/view", params={"uri": checkpoint_uri(sha)})).json()
    assert view["text"].startswith("Checkpoint: Add greeting tool")
    assert view["parsed"]["gitSha"] == sha
    assert view["parsed"]["note"] == "Baseline"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_view_errors(env):
    client, _sha, _manager, _recorder = env

    assert (await client.get("/api/view")).status_code == 400
    assert (await client.get("/api/view", params={"uri": "mv2://checkpoint/missing"})).status_code == 404


@pytest.mark.integration
@pytest.mark.asyncio
async def test_find(env):
    client, sha, _manager, _recorder = env

    assert (await client.get("/api/find")).status_code == 400
    hits = (await client.get("/api/find", params={"q": "greeting"})).json()["hits"]
    assert [hit["uri"] for hit in hits] == [checkpoint_uri(sha)]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_run_checkpoint_then_poll_logs_and_status(env):
    client, sha, _manager, _recorder = env

    response = await client.post("/api/run", json={"checkpointId": sha})
    assert response.status_code == 200
    run = response.json()
    assert run["mode"] == "cli"
    assert run["port"] is None
    run_id = run["runId"]

    status = {}
    for _ in range(200):
        status = (await client.get(f"/api/run/{run_id}/status")).json()
        if status["status"] == "exited":
            break
        await asyncio.sleep(0.05)
    assert status["status"] == "exited"
    assert status["exit_code"] == 0

    logs = (await client.get(f"/api/run/{run_id}/logs", params={"since": 0})).json()
    assert logs == {"lines": ["hello from the past"], "next": 1}
    assert (await client.get(f"/api/run/{run_id}/logs", params={"since": 1})).json()["lines"] == []

    assert (await client.post(f"/api/run/{run_id}/stop")).json() == {"stopped": False}
    assert (await client.get(f"/api/run/{run_id}/status")).json()["status"] == "exited"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_run_errors(env):
    client, _sha, _manager, _recorder = env

    assert (await client.post("/api/run", json={})).status_code == 422
    assert (await client.post("/api/run", json={"checkpointId": "missing"})).status_code == 404


@pytest.mark.integration
@pytest.mark.asyncio
async def test_unknown_run_status_and_logs(env):
    client, _sha, _manager, _recorder = env

    assert (await client.get("/api/run/nope/status")).json() == {"status": "unknown"}
    assert (await client.get("/api/run/nope/logs")).json() == {"lines": [], "next": 0}
    assert (await client.post("/api/run/nope/stop")).json() == {"stopped": False}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_run_precondition_failure_is_400(env, git_repo):
    client, _sha, manager, recorder = env
    sha = commit_files(git_repo, {"notes.txt": "nothing to run\n"}, "Notes")
    bare_recorder = CheckpointRecorder(git_repo.working_tree_dir, recorder.writer)
    await bare_recorder.record_from_revision_change(None, sha)

    response = await client.post("/api/run", json={"checkpointId": sha})

    assert response.status_code == 400
    assert "no run command" in response.json()["detail"]
    assert manager.active_run_id is None
