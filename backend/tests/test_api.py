"""HTTP surface tests, driven through httpx against the ASGI app."""
import asyncio
import logging
import os

import httpx
import pytest
from httpx import ASGITransport

from videoconv.api.logs import install_log_handler, log_handler
from videoconv.config import settings
from videoconv.main import app
from videoconv.services.engine import EngineFailed, EngineProgress, EngineSucceeded
from videoconv.workers.scheduler import get_orchestrator

from fakes import FakeEngine, listdir

MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 256


@pytest.fixture
async def api(make_orchestrator):
    """Returns a function that wires an orchestrator into the app and yields a client."""
    clients = []

    async def _client(engine=None, **kwargs):
        orch = make_orchestrator(engine=engine, **kwargs)
        app.dependency_overrides[get_orchestrator] = lambda: orch
        client = httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")
        clients.append(client)
        return client, orch

    yield _client

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()


def upload(name="clip.mp4", data=MP4_BYTES, mime="video/mp4"):
    return {"video": (name, data, mime)}


@pytest.mark.asyncio
async def test_convert_download_and_stats(api):
    client, orch = await api(FakeEngine(script=[EngineProgress(50.0, 5.0, 25.0), EngineSucceeded()]))

    resp = await client.post("/api/convert", files=upload(), data={"input_format": "mp4", "output_format": "ivf"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["status"] == "succeeded"
    assert body["filename"].endswith(".ivf")
    assert body["filename"] == f"{body['job_id']}.ivf"

    download = await client.get(f"/api/download/{body['filename']}")
    assert download.status_code == 200
    assert download.content == b"converted-video"
    assert body["filename"] in download.headers["content-disposition"]

    stats = await client.get("/api/stats")
    assert stats.json() == {"total": 1, "succeeded": 1, "failed": 0}


@pytest.mark.asyncio
async def test_unsupported_extension_never_touches_disk(api, storage):
    client, orch = await api()

    resp = await client.post("/api/convert", files=upload("notes.txt", b"hello", "video/mp4"))
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["kind"] == "InvalidFormat"
    assert ".txt" in body["error"]
    assert listdir(storage[0]) == []
    assert orch.stats().total == 0


@pytest.mark.asyncio
async def test_unsupported_output_format(api):
    client, _ = await api()
    resp = await client.post("/api/convert", files=upload(), data={"output_format": "gif"})
    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidFormat"


@pytest.mark.asyncio
async def test_missing_file_field(api):
    client, _ = await api()
    resp = await client.post("/api/convert", data={"input_format": "mp4"})
    assert resp.status_code == 400
    assert resp.json()["kind"] == "UploadRejected"


@pytest.mark.asyncio
async def test_upload_over_limit_is_rejected(api, storage, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 64)
    client, orch = await api()

    resp = await client.post("/api/convert", files=upload(data=b"x" * 1024))
    assert resp.status_code == 413
    assert resp.json()["kind"] == "UploadRejected"
    assert listdir(storage[0]) == []
    assert orch.stats().total == 0


@pytest.mark.asyncio
async def test_engine_failure_maps_to_500(api):
    client, orch = await api(FakeEngine(script=[EngineFailed("Invalid data found when processing input")]))

    resp = await client.post("/api/convert", files=upload())
    assert resp.status_code == 500
    body = resp.json()
    assert body["kind"] == "EngineFailure"
    assert body["error"] == "Video conversion failed: Invalid data found when processing input"
    assert orch.stats().to_dict() == {"total": 1, "succeeded": 0, "failed": 1}


@pytest.mark.asyncio
async def test_no_wait_returns_accepted(api):
    engine = FakeEngine(hold=True)
    client, orch = await api(engine)

    resp = await client.post("/api/convert?wait=false", files=upload())
    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "running"

    status = await client.get(f"/api/jobs/{body['job_id']}")
    assert status.json()["phase"] == "running"
    assert status.json()["filename"] is None

    job = orch.get_job(body["job_id"])
    with open(job.output_path, "wb") as f:
        f.write(b"done")
    engine.handles[job.id].push(EngineSucceeded(), None)
    assert (await asyncio.wait_for(job.wait(), 2)).value == "succeeded"

    status = await client.get(f"/api/jobs/{body['job_id']}")
    assert status.json()["filename"] == body["filename"]


@pytest.mark.asyncio
async def test_download_of_failed_or_unknown_output_is_404(api):
    client, orch = await api(FakeEngine(script=[EngineFailed("boom")]))

    resp = await client.post("/api/convert?wait=false", files=upload())
    job = orch.get_job(resp.json()["job_id"])
    await asyncio.wait_for(job.wait(), 2)

    failed = await client.get(f"/api/download/{job.output_filename}")
    assert failed.status_code == 404
    assert failed.json()["kind"] == "ArtifactNotFound"

    unknown = await client.get("/api/download/1-000000000.ivf")
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_download_after_retention_is_410(api, storage):
    client, orch = await api(retention_seconds=0.05)

    resp = await client.post("/api/convert", files=upload())
    filename = resp.json()["filename"]
    for _ in range(50):
        if not listdir(storage[1]):
            break
        await asyncio.sleep(0.02)
    assert listdir(storage[1]) == []

    gone = await client.get(f"/api/download/{filename}")
    assert gone.status_code == 410
    assert gone.json()["kind"] == "ArtifactExpired"


@pytest.mark.asyncio
async def test_job_listing_and_unknown_job(api):
    client, _ = await api()
    first = (await client.post("/api/convert", files=upload("a.mov", mime="video/quicktime"))).json()
    second = (await client.post("/api/convert", files=upload("b.mkv", mime="video/x-matroska"))).json()

    listing = (await client.get("/api/jobs")).json()
    assert listing["total"] == 2
    assert {j["job_id"] for j in listing["items"]} == {first["job_id"], second["job_id"]}

    missing = await client.get("/api/jobs/nope")
    assert missing.status_code == 404
    assert missing.json()["kind"] == "JobNotFound"


@pytest.mark.asyncio
async def test_cancel_running_job(api):
    client, orch = await api(FakeEngine(hold=True))
    job_id = (await client.post("/api/convert?wait=false", files=upload())).json()["job_id"]

    resp = await client.patch(f"/api/jobs/{job_id}", json={"status": "cancelled"})
    assert resp.status_code == 200
    assert resp.json()["cancelled"] is True

    job = orch.get_job(job_id)
    assert (await asyncio.wait_for(job.wait(), 2)).value == "failed"
    assert job.error == "Cancelled"

    again = await client.patch(f"/api/jobs/{job_id}", json={"status": "cancelled"})
    assert again.json()["cancelled"] is False


@pytest.mark.asyncio
async def test_unsupported_job_update(api):
    client, _ = await api(FakeEngine(hold=True))
    job_id = (await client.post("/api/convert?wait=false", files=upload())).json()["job_id"]
    resp = await client.patch(f"/api/jobs/{job_id}", json={"status": "paused"})
    assert resp.status_code == 400
    assert resp.json()["kind"] == "InvalidRequest"


@pytest.mark.asyncio
async def test_logs_filtered_by_job(api):
    install_log_handler()
    logging.getLogger("videoconv").setLevel(logging.INFO)
    log_handler.records.clear()
    client, _ = await api()

    job_id = (await client.post("/api/convert", files=upload())).json()["job_id"]
    await client.post("/api/convert", files=upload())

    logs = (await client.get("/api/logs", params={"job_id": job_id})).json()
    assert logs["total"] > 0
    assert all(item["message"].startswith(f"Job {job_id}:") for item in logs["items"])
    assert any("conversion finished" in item["message"] for item in logs["items"])

    export = await client.get("/api/logs/export")
    assert export.status_code == 200
    assert f"Job {job_id}:" in export.text


@pytest.mark.asyncio
async def test_health(api):
    client, orch = await api()
    sub = orch.subscribe()
    resp = await client.get("/api/health")
    assert resp.json() == {"status": "ok", "active_jobs": 0, "subscribers": 1}
    sub.close()
