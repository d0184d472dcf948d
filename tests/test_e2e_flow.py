from fastapi.testclient import TestClient
from walletsync.errors import VendorError

CRON_URL = "/api/v1/cron/wallet-jobs"


def test_points_change_reaches_google_wallet(client: TestClient, cron_headers, google_driver, program_factory, pass_factory, registration_factory):
    program = program_factory(points=10)
    wallet_pass = pass_factory(pass_data={"googleObjectId": "obj-1"})
    registration_factory(wallet_pass, program, wallet="google")

    r = client.put(f"/api/v1/customers/{program.id}/points", json={"points": 50, "updateType": "set"})
    assert r.status_code == 200, r.text
    assert r.json()["jobsEnqueued"] == 1

    r = client.get(CRON_URL, headers=cron_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["processed"] == 1
    assert body["failed"] == 0
    assert body["total"] == 1
    assert google_driver.calls == [("obj-1", 50)]

    # Nothing left: a second tick is a no-op
    body = client.post(CRON_URL, headers=cron_headers).json()
    assert (body["processed"], body["failed"], body["total"]) == (0, 0, 0)


def test_persistent_failure_gives_up_after_five_attempts(client: TestClient, cron_headers, queue, google_driver, clock):
    google_driver.error = VendorError("backend unavailable", vendor="google_wallet", kind="server_error", status_code=503)
    job_id = queue.enqueue("google_patch", {"objectId": "obj-1", "balance": 50})

    for backoff in (120, 240, 480, 960, None):
        body = client.get(CRON_URL, headers=cron_headers).json()
        assert body["failed"] == 1 and body["processed"] == 0
        if backoff is not None:
            clock.advance(backoff)

    job = queue.get(job_id)
    assert job.status == "done"
    assert job.outcome == "given_up"
    assert job.attempts == 5
    assert "backend unavailable" in job.last_error

    clock.advance(100_000)
    assert client.get(CRON_URL, headers=cron_headers).json()["total"] == 0
    assert len(google_driver.calls) == 5


def test_apple_registration_to_device_download(client: TestClient, cron_headers, apple_driver, program_factory, pass_factory):
    program = program_factory(points=0)
    wallet_pass = pass_factory(serial_number="SN-E2E")

    r = client.post(f"/api/v1/passes/{wallet_pass.id}/register", json={"customerProgramId": program.id, "wallet": "apple", "deviceToken": "tok-e2e"})
    assert r.status_code == 201, r.text

    r = client.put(f"/api/v1/customers/{program.id}/points", json={"points": 30, "updateType": "add"})
    assert r.json()["points"] == 30

    body = client.get(CRON_URL, headers=cron_headers).json()
    assert body["processed"] == 1
    assert apple_driver.apply_calls[0]["pass_id"] == wallet_pass.id
    assert apple_driver.apply_calls[0]["device_token"] == "tok-e2e"
