import pytest
from fastapi.testclient import TestClient

from donation_relay.main import create_app
from tests.conftest import MINUTE_MS, FakeRelay, no_sleep, request_body


def queue(client, **overrides):
    return client.post("/queue-donation", json=request_body(**overrides))


def test_root(client):
    assert client.get("/").status_code == 200


def test_queue_donation(client):
    response = queue(client)
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["donationId"].startswith("don_")
    assert data["queuePosition"] == 1
    assert data["estimatedProcessingTime"] == 30


def test_estimate_grows_with_queue(client):
    for _ in range(3):
        data = queue(client).json()
    assert data["queuePosition"] == 3
    assert data["estimatedProcessingTime"] == 45


def test_duplicate_commitment_returns_existing_id(client):
    body = request_body()
    first = client.post("/queue-donation", json=body).json()

    response = client.post("/queue-donation", json=body)
    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "error": "Donation already queued",
        "donationId": first["donationId"],
    }
    assert client.get("/queue-donation").json()["stats"]["total"] == 1


@pytest.mark.parametrize("field", [
    "commitment", "nullifier", "secretHash", "amount", "campaignId", "campaignVault", "donorSignature",
])
def test_missing_field_is_400(client, field):
    body = request_body()
    del body[field]
    response = client.post("/queue-donation", json=body)
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert field in response.json()["error"]


@pytest.mark.parametrize("vault", ["not-a-key", "0OIl" * 8, "1111"])
def test_invalid_vault_is_400(client, vault):
    response = queue(client, campaignVault=vault)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid campaign vault address"


def test_non_positive_amount_is_400(client):
    assert queue(client, amount=0).status_code == 400


def test_lookup_by_id_and_commitment(client):
    body = request_body()
    donation_id = client.post("/queue-donation", json=body).json()["donationId"]

    by_id = client.get("/queue-donation", params={"id": donation_id}).json()
    by_commitment = client.get("/queue-donation", params={"commitment": body["commitment"]}).json()

    assert by_id == by_commitment
    donation = by_id["donation"]
    assert donation["status"] == "pending"
    assert donation["amount"] == body["amount"]
    assert donation["campaignId"] == body["campaignId"]
    # the donor's nullifier and signature are never echoed back
    assert "nullifier" not in donation
    assert "donorSignature" not in donation


def test_lookup_unknown_is_404(client):
    response = client.get("/queue-donation", params={"id": "don_nope"})
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Donation not found"}


def test_stats_without_query(client):
    queue(client)
    stats = client.get("/queue-donation").json()["stats"]
    assert stats == {
        "pending": 1, "processing": 0, "completed": 0, "failed": 0, "total": 1, "lastProcessed": 0,
    }


def test_process_batch_with_nothing_pending(client):
    data = client.post("/process-batch").json()
    assert data == {"success": True, "message": "No pending donations", "processed": 0}


def test_process_batch_waits_below_threshold(client, clock):
    queue(client)
    clock.advance(MINUTE_MS)

    data = client.post("/process-batch").json()

    assert data["success"] is True
    assert data["pending"] == 1
    assert data["queueAgeSeconds"] == 60
    assert "processed" not in data


def test_two_donations_scenario(client, clock, relay):
    a = queue(client, amount=100).json()["donationId"]
    clock.advance(MINUTE_MS)
    b = queue(client, amount=200).json()["donationId"]

    status = client.get("/process-batch").json()["status"]
    assert status["pending"] == 2
    assert status["shouldProcess"] is True
    assert status["minBatchSize"] == 2

    data = client.post("/process-batch").json()
    assert data["success"] is True
    assert data["processed"] + data["failed"] == 2
    assert {r["id"] for r in data["results"]} == {a, b}

    status = client.get("/process-batch").json()["status"]
    assert status["pending"] == 0
    assert status["totalProcessed"] + status["totalFailed"] == 2
    assert status["lastProcessed"] == clock.now

    for donation_id in (a, b):
        donation = client.get("/queue-donation", params={"id": donation_id}).json()["donation"]
        assert donation["status"] in ("completed", "failed")


def test_failed_item_reported_in_results(client, relay):
    body = request_body()
    bad = client.post("/queue-donation", json=body).json()["donationId"]
    queue(client)
    relay.fail(body["commitment"], "recipient")

    data = client.post("/process-batch").json()

    assert (data["processed"], data["failed"]) == (1, 1)
    failed = next(r for r in data["results"] if r["id"] == bad)
    assert failed["success"] is False
    assert "error" in failed
    assert "signature" not in failed


def test_recent_completed_hides_amounts_unless_known(client):
    a = queue(client).json()["donationId"]
    b = queue(client).json()["donationId"]
    client.post("/process-batch")

    recent = client.get("/process-batch").json()["recentCompleted"]
    assert {d["id"] for d in recent} == {a, b}
    assert all(d["amount"] is None for d in recent)

    recent = client.get("/process-batch", params={"known": a}).json()["recentCompleted"]
    amounts = {d["id"]: d["amount"] for d in recent}
    assert amounts[a] is not None
    assert amounts[b] is None


def test_underfunded_relayer_is_500(client, relay):
    relay.balance = 0
    queue(client)
    queue(client)

    response = client.post("/process-batch")

    assert response.status_code == 500
    assert response.json()["error"] == "Relayer has insufficient balance for gas"
    assert client.get("/queue-donation").json()["stats"]["pending"] == 2


def test_unconfigured_relayer_is_500(settings):
    app = create_app(settings)
    with TestClient(app) as client:
        response = client.post("/process-batch")
    assert response.status_code == 500
    assert response.json()["error"] == "Relayer not configured"


def test_api_key_required_when_configured(settings):
    settings.api_key = "s3cret"
    app = create_app(settings, relay=FakeRelay(), sleep=no_sleep)
    with TestClient(app) as client:
        assert client.post("/process-batch").status_code == 401
        assert client.post("/process-batch", headers={"Authorization": "Bearer nope"}).status_code == 401
        response = client.post("/process-batch", headers={"Authorization": "Bearer s3cret"})
        assert response.status_code == 200


def test_relay_is_closed_on_shutdown(app, relay):
    with TestClient(app):
        pass
    assert relay.closed
