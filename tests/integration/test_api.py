"""
Integration tests for the REST API, end to end through the routers,
services, in-memory store and the Redis double.
"""

import pytest

from conftest import OTHER_USER_ID, TRANSCRIPT


@pytest.mark.asyncio
async def test_health_needs_no_identity(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "call-intelligence-service"}
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_missing_user_header_is_401(client):
    response = await client.get("/jobs/stats")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_call_without_content_is_422(client, headers):
    response = await client.post("/calls/", json={"phone_number": "555-123-4567"}, headers=headers)

    assert response.status_code == 422
    assert response.json()["errors"] == ["Either transcript or recording_url is required"]


@pytest.mark.asyncio
async def test_ingest_flow(client, headers):
    response = await client.post(
        "/calls/ingest", json={"phone_number": "555-123-4567", "transcript": TRANSCRIPT}, headers=headers
    )

    assert response.status_code == 200
    outcome = response.json()
    assert outcome["status"] == "completed"
    assert outcome["job_id"]

    extraction = await client.get(f"/extractions/{outcome['extraction_id']}", headers=headers)
    assert extraction.json()["customer_name"] == "John Smith"

    job = await client.get(f"/jobs/{outcome['job_id']}", headers=headers)
    assert job.json()["status"] == "QUOTING"

    profile = await client.get(f"/customers/{outcome['customer_id']}/profile", headers=headers)
    assert profile.json()["stats"]["total_jobs"] == 1

    call = await client.get(f"/calls/{outcome['call_id']}", headers=headers)
    assert call.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_register_then_process(client, headers):
    created = await client.post("/calls/", json={"transcript": TRANSCRIPT}, headers=headers)
    assert created.status_code == 201
    call_id = created.json()["id"]
    assert created.json()["status"] == "processing"

    processed = await client.post(f"/calls/{call_id}/process", headers=headers)
    again = await client.post(f"/calls/{call_id}/process", headers=headers)

    assert processed.json()["extraction_id"] == again.json()["extraction_id"]


@pytest.mark.asyncio
async def test_other_tenant_gets_404(client, headers):
    created = await client.post("/calls/", json={"transcript": TRANSCRIPT}, headers=headers)
    call_id = created.json()["id"]

    response = await client.get(f"/calls/{call_id}", headers={"X-User-Id": OTHER_USER_ID})

    assert response.status_code == 404
    assert response.json()["error"] == "Call not found"


@pytest.mark.asyncio
async def test_job_creation_errors_are_422(client, headers):
    response = await client.post(
        "/jobs/",
        json={"title": "Fix Sink", "customer_name": "Jo", "customer_phone": "555-123-4567", "estimated_cost": -5},
        headers=headers,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert len(body["errors"]) == 2


@pytest.mark.asyncio
async def test_job_lifecycle(client, headers):
    created = await client.post("/jobs/", json={"title": "Fix Sink", "customer_name": "Joan Smith"}, headers=headers)
    assert created.status_code == 201
    job_id = created.json()["job_id"]

    illegal = await client.put(f"/jobs/{job_id}/status", json={"status": "COMPLETED"}, headers=headers)
    assert illegal.status_code == 422

    for status in ("CONFIRMED", "IN_PROGRESS", "COMPLETED"):
        response = await client.put(f"/jobs/{job_id}/status", json={"status": status}, headers=headers)
        assert response.status_code == 200
    assert response.json()["completed_at"] is not None

    stats = await client.get("/jobs/stats", headers=headers)
    assert stats.json()["status_breakdown"] == {"COMPLETED": 1}

    deleted = await client.delete(f"/jobs/{job_id}", headers=headers)
    assert deleted.status_code == 204
    assert (await client.get(f"/jobs/{job_id}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_feedback_and_summary(client, headers):
    ingest = await client.post("/calls/ingest", json={"transcript": TRANSCRIPT}, headers=headers)
    outcome = ingest.json()

    response = await client.post(
        "/feedback/",
        json={
            "extraction_id": outcome["extraction_id"],
            "category": "SERVICE_TYPE_CORRECTION",
            "rating": 2,
            "original_value": "Plumbing",
            "corrected_value": "Drain cleaning",
        },
        headers=headers,
    )
    assert response.status_code == 201
    assert response.json()["confidence_delta"] == pytest.approx(-0.06)

    invalid = await client.post(
        "/feedback/",
        json={"extraction_id": outcome["extraction_id"], "category": "PRICE_CORRECTION", "rating": 9},
        headers=headers,
    )
    assert invalid.status_code == 422

    summary = await client.get("/feedback/summary", params={"days": 7}, headers=headers)
    assert summary.json()["total_feedbacks"] == 1

    history = await client.get(f"/feedback/calls/{outcome['call_id']}", headers=headers)
    assert len(history.json()) == 1


@pytest.mark.asyncio
async def test_manual_override_and_review_queue(client, headers):
    created = await client.post("/calls/", json={"transcript": TRANSCRIPT}, headers=headers)
    call_id = created.json()["id"]

    response = await client.post(
        "/extractions/override",
        json={
            "call_id": call_id,
            "override_data": {"has_appointment": True, "customer_name": "Jane Doe", "service_type": "HVAC"},
            "reason": "caller rang back",
        },
        headers=headers,
    )
    assert response.status_code == 200
    extraction_id = response.json()["extraction_id"]

    extraction = await client.get(f"/extractions/{extraction_id}", headers=headers)
    assert extraction.json()["confidence"] == 1.0
    assert extraction.json()["manual_override"] is True

    pending = await client.get("/extractions/pending", headers=headers)
    assert pending.json()["total"] == 0


@pytest.mark.asyncio
async def test_customer_match_and_search(client, headers):
    first = await client.post("/customers/match", json={"name": "Alice Moore", "phone": "555-777-7777"}, headers=headers)
    second = await client.post("/customers/match", json={"phone": "(555) 777-7777"}, headers=headers)

    assert first.json()["is_new_customer"] is True
    assert second.json()["matched_by"] == "phone"
    assert first.json()["customer"]["id"] == second.json()["customer"]["id"]

    results = await client.get("/customers/", params={"search": "alice"}, headers=headers)
    assert results.json()["total"] == 1

    customer_id = first.json()["customer"]["id"]
    updated = await client.patch(f"/customers/{customer_id}", json={"email": "bad"}, headers=headers)
    assert updated.status_code == 422

    deleted = await client.delete(f"/customers/{customer_id}", headers=headers)
    assert deleted.json()["status"] == "FORMER"


@pytest.mark.asyncio
async def test_notifications_follow_pipeline(client, headers, services):
    await client.post("/calls/ingest", json={"transcript": TRANSCRIPT}, headers=headers)
    await services.notifications.drain()

    listed = await client.get("/notifications", headers=headers)
    types = {item["type"] for item in listed.json()}
    assert {"customer_created", "appointment_extracted", "job_created"} <= types

    marked = await client.post("/notifications/read-all", headers=headers)
    assert marked.json()["marked"] == len(listed.json())

    unread = await client.get("/notifications", params={"unread_only": "true"}, headers=headers)
    assert unread.json() == []

    missing = await client.post("/notifications/missing/read", headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_verification_codes(client, headers):
    sent = await client.post("/verification/send", json={"channel": "phone", "target": "555-123-4567"}, headers=headers)
    assert sent.status_code == 200
    code = sent.json()["code"]
    assert sent.json()["expires_in"] == 600

    wrong = await client.post(
        "/verification/verify", json={"channel": "phone", "target": "555-123-4567", "code": "abc"}, headers=headers
    )
    assert wrong.json()["verified"] is False

    right = await client.post(
        "/verification/verify", json={"channel": "phone", "target": "+1 555 123 4567", "code": code}, headers=headers
    )
    assert right.json()["verified"] is True


@pytest.mark.asyncio
async def test_rate_limit(client, headers, monkeypatch):
    from call_intel.config import get_settings

    monkeypatch.setattr(get_settings(), "rate_limit_max_requests", 2)

    statuses = [(await client.get("/jobs/stats", headers=headers)).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
