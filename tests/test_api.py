import pytest
from fastapi.testclient import TestClient
from walletsync import config

CRON_URL = "/api/v1/cron/wallet-jobs"
AUTH_PREFIX = "ApplePass "


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "Basic dGVzdA=="}])
def test_cron_rejects_missing_or_wrong_secret(client: TestClient, headers, queue, google_driver):
    queue.enqueue("google_patch", {"objectId": "obj-1", "balance": 5})
    r = client.get(CRON_URL, headers=headers)
    assert r.status_code == 401
    assert google_driver.calls == []


def test_cron_refuses_when_secret_unset(client: TestClient, monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "")
    r = client.post(CRON_URL, headers={"Authorization": "Bearer anything"})
    assert r.status_code == 401


def test_cron_summary_shape_and_limit(client: TestClient, cron_headers, queue):
    for i in range(3):
        queue.enqueue("google_patch", {"objectId": f"obj-{i}", "balance": i})
    r = client.post(f"{CRON_URL}?limit=2", headers=cron_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["message"]
    assert body["processed"] == 2 and body["total"] == 2
    assert "duration_ms" in body


def test_wallet_jobs_listing_and_lookup(client: TestClient, cron_headers, queue):
    job_id = queue.enqueue("google_patch", {"objectId": "obj-1", "balance": 5})

    assert client.get("/api/v1/wallet-jobs/").status_code == 401

    r = client.get("/api/v1/wallet-jobs/", headers=cron_headers)
    assert r.status_code == 200
    assert [j["id"] for j in r.json()] == [job_id]

    r = client.get("/api/v1/wallet-jobs/", params={"status": "done"}, headers=cron_headers)
    assert r.json() == []

    r = client.get(f"/api/v1/wallet-jobs/{job_id}", headers=cron_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "pending"

    assert client.get("/api/v1/wallet-jobs/missing", headers=cron_headers).status_code == 404

    snap = client.get("/api/v1/wallet-jobs/snapshot", headers=cron_headers).json()
    assert snap["counts"]["pending"] == 1
    assert snap["due"] == 1


def test_manual_enqueue(client: TestClient, cron_headers, queue):
    r = client.post(
        "/api/v1/wallet-jobs/",
        json={"jobType": "regenerate_pkpass", "payload": {"passId": "p-1"}, "maxAttempts": 3},
        headers=cron_headers,
    )
    assert r.status_code == 201, r.text
    job = queue.get(r.json()["id"])
    assert job.max_attempts == 3

    r = client.post("/api/v1/wallet-jobs/", json={"jobType": "google_patch", "payload": {"balance": 1}}, headers=cron_headers)
    assert r.status_code == 422


def test_register_pass_created_then_ok(client: TestClient, program_factory, pass_factory):
    program = program_factory()
    wallet_pass = pass_factory(pass_data={"googleObjectId": "issuer.g-1"})
    body = {"customerProgramId": program.id, "wallet": "google"}

    r = client.post(f"/api/v1/passes/{wallet_pass.id}/register", json=body)
    assert r.status_code == 201, r.text
    assert r.json()["google_object_id"] == "issuer.g-1"

    r = client.post(f"/api/v1/passes/{wallet_pass.id}/register", json=body)
    assert r.status_code == 200

    r = client.post("/api/v1/passes/unknown/register", json=body)
    assert r.status_code == 404


def test_points_endpoint(client: TestClient, program_factory):
    program = program_factory(points=100)
    r = client.put(f"/api/v1/customers/{program.id}/points", json={"points": 30, "updateType": "subtract", "tier": "bronze"})
    assert r.status_code == 200
    body = r.json()
    assert body["customerProgramId"] == program.id
    assert body["points"] == 70 and body["tier"] == "bronze"
    assert body["jobsEnqueued"] == 0

    assert client.put("/api/v1/customers/9999/points", json={"points": 1}).status_code == 404
    assert client.put(f"/api/v1/customers/{program.id}/points", json={"points": -1}).status_code == 422


class TestPassKitWebService:
    @pytest.fixture()
    def apple_pass(self, program_factory, pass_factory, registration_factory):
        program = program_factory()
        wallet_pass = pass_factory(serial_number="SN-WS")
        registration_factory(wallet_pass, program, wallet="apple")
        return wallet_pass

    def _registration_url(self, device="lib-ws", serial="SN-WS"):
        return f"/api/v1/apple/v1/devices/{device}/registrations/pass.com.example.loyalty/{serial}"

    def test_device_registration_lifecycle(self, client: TestClient, apple_pass, monkeypatch):
        monkeypatch.setitem(config.APPLE_WALLET_SETTINGS, "pass_type_id", "pass.com.example.loyalty")
        auth = {"Authorization": AUTH_PREFIX + apple_pass.authentication_token}

        r = client.post(self._registration_url(), json={"pushToken": "tok-ws"}, headers=auth)
        assert r.status_code == 201
        r = client.post(self._registration_url(), json={"pushToken": "tok-ws-2"}, headers=auth)
        assert r.status_code == 200

        r = client.get("/api/v1/apple/v1/devices/lib-ws/registrations/pass.com.example.loyalty")
        assert r.status_code == 200
        assert r.json()["serialNumbers"] == ["SN-WS"]

        r = client.get("/api/v1/apple/v1/devices/lib-ws/registrations/pass.com.example.loyalty", params={"passesUpdatedSince": "999999999999"})
        assert r.status_code == 204

        r = client.delete(self._registration_url(), headers=auth)
        assert r.status_code == 200
        r = client.get("/api/v1/apple/v1/devices/lib-ws/registrations/pass.com.example.loyalty")
        assert r.status_code == 204

    def test_wrong_token_or_pass_type(self, client: TestClient, apple_pass, monkeypatch):
        monkeypatch.setitem(config.APPLE_WALLET_SETTINGS, "pass_type_id", "pass.com.example.loyalty")
        r = client.post(self._registration_url(), json={"pushToken": "tok"}, headers={"Authorization": AUTH_PREFIX + "nope"})
        assert r.status_code == 401
        r = client.post(self._registration_url(), json={"pushToken": "tok"})
        assert r.status_code == 401

        auth = {"Authorization": AUTH_PREFIX + apple_pass.authentication_token}
        r = client.post("/api/v1/apple/v1/devices/lib/registrations/pass.other/SN-WS", json={"pushToken": "tok"}, headers=auth)
        assert r.status_code == 404

    def test_latest_pass_download(self, client: TestClient, apple_pass, publisher):
        auth = {"Authorization": AUTH_PREFIX + apple_pass.authentication_token}
        url = "/api/v1/apple/v1/passes/pass.com.example.loyalty/SN-WS"
        assert client.get(url, headers=auth).status_code == 404

        publisher.publish(apple_pass.id, "SN-WS", b"PK\x03\x04bundle")
        r = client.get(url, headers=auth)
        assert r.status_code == 200
        assert r.content == b"PK\x03\x04bundle"
        assert r.headers["content-type"] == "application/vnd.apple.pkpass"

    def test_device_log(self, client: TestClient):
        r = client.post("/api/v1/apple/v1/log", json={"logs": ["Web service error for pass.x: 500"]})
        assert r.status_code == 200


def test_health_endpoints(client: TestClient):
    assert client.get("/health").json()["status"] == "healthy"
    body = client.get("/health/detailed").json()
    assert "queue" in body["checks"]
    assert body["checks"]["worker"] == "disabled"
