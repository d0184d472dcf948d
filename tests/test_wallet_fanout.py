import pytest
from walletsync.models.db import CustomerProgram
from walletsync.services.points import compute_new_balance, update_points
from walletsync.services.wallet_fanout import enqueue_wallet_updates


@pytest.mark.parametrize(
    "current,points,update_type,expected",
    [(100, 40, "set", 40), (100, 40, "add", 140), (100, 40, "subtract", 60), (10, 40, "subtract", 0)],
)
def test_compute_new_balance(current, points, update_type, expected):
    assert compute_new_balance(current, points, update_type) == expected


def test_compute_new_balance_rejects_unknown_type():
    with pytest.raises(ValueError):
        compute_new_balance(1, 1, "multiply")


def test_fanout_one_job_per_wallet(db_session, queue, program_factory, pass_factory, registration_factory):
    program = program_factory(points=50)
    google_pass = pass_factory(pass_data={"googleObjectId": "issuer.obj-1"})
    apple_pass = pass_factory(serial_number="SN-FAN")
    registration_factory(google_pass, program, wallet="google")
    apple_reg = registration_factory(apple_pass, program, wallet="apple", device_token="tok-1")

    job_ids = enqueue_wallet_updates(db_session, queue, program.id, 50)
    jobs = {queue.get(job_id).job_type: queue.get(job_id).payload for job_id in job_ids}
    assert jobs == {
        "google_patch": {"objectId": "issuer.obj-1", "balance": 50},
        "regenerate_pkpass": {"passId": apple_pass.id, "registrationId": apple_reg.id, "deviceToken": "tok-1"},
    }


def test_fanout_skips_registrations_without_vendor_id(db_session, queue, program_factory, pass_factory, registration_factory):
    program = program_factory()
    registration_factory(pass_factory(pass_data={}), program, wallet="google")
    assert enqueue_wallet_updates(db_session, queue, program.id, 10) == []


def test_fanout_survives_enqueue_failure(db_session, queue, program_factory, pass_factory, registration_factory, monkeypatch):
    program = program_factory()
    registration_factory(pass_factory(pass_data={"googleObjectId": "a"}), program, wallet="google")
    registration_factory(pass_factory(pass_data={"googleObjectId": "b"}), program, wallet="google")

    original = queue.enqueue

    def flaky(job_type, payload, **kwargs):
        if payload["objectId"] == "a":
            raise RuntimeError("database is locked")
        return original(job_type, payload, **kwargs)

    monkeypatch.setattr(queue, "enqueue", flaky)
    job_ids = enqueue_wallet_updates(db_session, queue, program.id, 10)
    assert len(job_ids) == 1


def test_points_committed_before_fanout(db_session, session_factory, queue, program_factory, monkeypatch):
    import walletsync.services.points as points_module

    program = program_factory(points=10)

    def check_committed(session, q, customer_program_id, balance, **kwargs):
        with session_factory() as other:
            assert other.get(CustomerProgram, customer_program_id).points == 35
        return []

    monkeypatch.setattr(points_module, "enqueue_wallet_updates", check_committed)
    updated, job_ids = update_points(db_session, queue, program.id, points=25, update_type="add", tier="gold")
    assert updated.points == 35 and updated.tier == "gold"
    assert job_ids == []


def test_update_points_unknown_program(db_session, queue):
    with pytest.raises(LookupError):
        update_points(db_session, queue, 4242, points=1)
