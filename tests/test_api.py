import httpx
import pytest

from payment_queue.api.rest import create_app
from payment_queue.dead_letter import DeadLetterRouter

from conftest import UnavailableRedis


@pytest.fixture
def app(test_settings, redis_client):
    return create_app(test_settings, redis_client)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "redis_connected": True,
        "queue_size": 0,
        "dead_letter_size": 0,
    }


async def test_health_reports_unreachable_redis(test_settings):
    app = create_app(test_settings, UnavailableRedis())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    assert response.json()["status"] == "unhealthy"
    assert response.json()["redis_connected"] is False


async def test_submit_and_fetch_job(client):
    response = await client.post("/jobs", json={"payload": {"paymentId": "pay_1", "amount": 10}})
    assert response.status_code == 200
    job_id = response.json()["jobId"]

    record = (await client.get(f"/jobs/{job_id}")).json()
    assert record["id"] == job_id
    assert record["status"] == "pending"
    assert record["attempts"] == 0
    assert record["maxAttempts"] == 3
    assert record["payload"] == {"paymentId": "pay_1", "amount": 10}
    assert "error" not in record
    assert "lastAttemptAt" not in record


async def test_submit_with_caller_id_and_duplicate(client):
    body = {"payload": {}, "job_id": "pay_2", "max_attempts": 5}
    first = await client.post("/jobs", json=body)
    assert first.json() == {"jobId": "pay_2"}

    second = await client.post("/jobs", json=body)
    assert second.status_code == 409


async def test_submit_rejects_invalid_max_attempts(client):
    response = await client.post("/jobs", json={"payload": {}, "max_attempts": 0})
    assert response.status_code == 422


async def test_submit_returns_503_when_store_is_down(test_settings):
    app = create_app(test_settings, UnavailableRedis())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/jobs", json={"payload": {}})

    assert response.status_code == 503


async def test_unknown_job_is_404(client):
    response = await client.get("/jobs/job_missing")
    assert response.status_code == 404


async def test_recent_jobs_and_queue_overview(client):
    ids = [(await client.post("/jobs", json={"payload": {"n": i}})).json()["jobId"] for i in range(3)]

    recent = (await client.get("/jobs", params={"limit": 2})).json()
    assert recent["count"] == 2
    assert [j["id"] for j in recent["jobs"]] == [ids[2], ids[1]]

    queues = (await client.get("/queues", params={"sample": 1})).json()
    assert queues["pending"] == 3
    assert queues["dead_letter"] == 0
    assert queues["delayed"] == 0
    assert len(queues["pending_sample"]) == 1


async def test_dead_letter_listing_summary_and_reprocess(app, client):
    job_id = (await client.post("/jobs", json={"payload": {"paymentId": "pay_3"}})).json()["jobId"]
    queue = app.state.queue
    DeadLetterRouter(queue).route(queue.load_job(job_id), "Invalid destination address")

    listing = (await client.get("/dead-letter")).json()
    assert listing["count"] == 1
    assert listing["jobs"][0]["error"] == "Invalid destination address"

    summary = (await client.get("/dead-letter/summary")).json()
    assert summary["total_jobs"] == 1
    assert summary["jobs_by_status"] == {"failed": 1}

    missing_key = await client.post(f"/dead-letter/{job_id}/reprocess")
    assert missing_key.status_code == 401

    wrong_key = await client.post(f"/dead-letter/{job_id}/reprocess", headers={"X-API-Key": "nope"})
    assert wrong_key.status_code == 403

    ok = await client.post(f"/dead-letter/{job_id}/reprocess", headers={"X-API-Key": "admin-key"})
    assert ok.status_code == 200
    body = ok.json()
    assert body["success"] is True
    assert body["previousJobId"] == job_id
    assert body["jobId"] != job_id

    again = await client.post(f"/dead-letter/{job_id}/reprocess", headers={"X-API-Key": "admin-key"})
    assert again.status_code == 400

    unknown = await client.post("/dead-letter/job_missing/reprocess", headers={"X-API-Key": "admin-key"})
    assert unknown.status_code == 404


async def test_reprocess_is_forbidden_without_configured_key(test_settings, redis_client):
    app = create_app(test_settings.model_copy(update={"admin_api_key": None}), redis_client)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/dead-letter/job_1/reprocess", headers={"X-API-Key": "anything"})

    assert response.status_code == 403


async def test_requests_are_counted_per_route(app, client):
    await client.get("/health")
    await client.get("/jobs/job_missing")
    await client.get("/jobs/job_other")
    await client.get("/no-such-route")

    reader = app.state.status_reader
    assert reader.endpoint_stats("health").to_dict() == {"total": 1, "errors": 0, "server_errors": 0}
    assert reader.endpoint_stats("jobs/{job_id}").to_dict() == {"total": 2, "errors": 2, "server_errors": 0}
    assert reader.endpoint_stats("no-such-route").errors == 1

    stats = (await client.get("/stats/health")).json()
    assert stats == {"endpoint": "health", "total": 1, "errors": 0, "server_errors": 0}


async def test_metrics_endpoint_exposes_queue_counters(client):
    await client.post("/jobs", json={"payload": {}})

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "jobs_enqueued_total 1.0" in response.text
