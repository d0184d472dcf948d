import pytest
from walletsync.services import registration_ledger


def test_upsert_creates_then_refreshes(db_session, program_factory, pass_factory):
    program = program_factory()
    wallet_pass = pass_factory(pass_data={"googleObjectId": "issuer.obj-7"})

    registration, created = registration_ledger.upsert_registration(
        db_session, pass_id=wallet_pass.id, customer_program_id=program.id, wallet="google"
    )
    db_session.commit()
    assert created is True
    assert registration.google_object_id == "issuer.obj-7"

    again, created_again = registration_ledger.upsert_registration(
        db_session, pass_id=wallet_pass.id, customer_program_id=program.id, wallet="google"
    )
    db_session.commit()
    assert created_again is False
    assert again.id == registration.id


def test_upsert_apple_copies_serial_and_token(db_session, program_factory, pass_factory):
    program = program_factory()
    wallet_pass = pass_factory(serial_number="SN-LEDGER")
    registration, _ = registration_ledger.upsert_registration(
        db_session, pass_id=wallet_pass.id, customer_program_id=program.id, wallet="apple", device_token="tok-1"
    )
    assert registration.apple_serial_number == "SN-LEDGER"
    assert registration.apple_device_token == "tok-1"


def test_upsert_rejects_unknown_rows(db_session, program_factory, pass_factory):
    program = program_factory()
    wallet_pass = pass_factory()
    with pytest.raises(LookupError):
        registration_ledger.upsert_registration(db_session, pass_id="nope", customer_program_id=program.id, wallet="apple")
    with pytest.raises(LookupError):
        registration_ledger.upsert_registration(db_session, pass_id=wallet_pass.id, customer_program_id=9999, wallet="apple")
    with pytest.raises(ValueError):
        registration_ledger.upsert_registration(db_session, pass_id=wallet_pass.id, customer_program_id=program.id, wallet="samsung")


def test_stamp_push_token_fills_pending_apple_row(db_session, program_factory, pass_factory, registration_factory):
    program = program_factory()
    wallet_pass = pass_factory(serial_number="SN-STAMP")
    pending = registration_factory(wallet_pass, program, wallet="apple")

    registration, created = registration_ledger.stamp_push_token(
        db_session, wallet_pass=wallet_pass, device_library_id="lib-1", push_token="tok-1"
    )
    db_session.commit()
    assert created is True
    assert registration.id == pending.id
    assert registration.apple_device_token == "tok-1"

    # Same device re-registering only refreshes the token
    registration, created = registration_ledger.stamp_push_token(
        db_session, wallet_pass=wallet_pass, device_library_id="lib-1", push_token="tok-2"
    )
    assert created is False
    assert registration.apple_device_token == "tok-2"


def test_second_device_gets_its_own_row(db_session, program_factory, pass_factory, registration_factory):
    program = program_factory()
    wallet_pass = pass_factory(serial_number="SN-TWO")
    registration_factory(wallet_pass, program, wallet="apple", device_token="tok-1", device_library_id="lib-1")

    registration, created = registration_ledger.stamp_push_token(
        db_session, wallet_pass=wallet_pass, device_library_id="lib-2", push_token="tok-2"
    )
    db_session.commit()
    assert created is True
    assert registration.customer_program_id == program.id
    assert len(registration_ledger.registrations_for_program(db_session, program.id)) == 2


def test_stamp_without_membership_is_rejected(db_session, pass_factory):
    wallet_pass = pass_factory()
    with pytest.raises(LookupError):
        registration_ledger.stamp_push_token(db_session, wallet_pass=wallet_pass, device_library_id="lib", push_token="tok")


def test_serials_for_device_filters_by_update_tag(db_session, program_factory, pass_factory, registration_factory):
    program = program_factory()
    old = pass_factory(serial_number="SN-OLD")
    new = pass_factory(serial_number="SN-NEW")
    old.update_tag = 100
    new.update_tag = 200
    db_session.commit()
    registration_factory(old, program, device_library_id="lib-9")
    registration_factory(new, program, device_library_id="lib-9")

    serials, last_updated = registration_ledger.serials_for_device(db_session, "lib-9")
    assert serials == ["SN-NEW", "SN-OLD"]
    assert last_updated == 200

    serials, _ = registration_ledger.serials_for_device(db_session, "lib-9", updated_since=150)
    assert serials == ["SN-NEW"]
    assert registration_ledger.serials_for_device(db_session, "lib-unknown") == ([], 0)


def test_remove_and_clear_device_token(db_session, program_factory, pass_factory, registration_factory):
    program = program_factory()
    wallet_pass = pass_factory(serial_number="SN-RM")
    registration_factory(wallet_pass, program, device_token="dead-token", device_library_id="lib-a")
    other = registration_factory(wallet_pass, program, device_token="dead-token", device_library_id="lib-b")

    assert registration_ledger.clear_device_token(db_session, "dead-token") == 2
    db_session.commit()
    db_session.refresh(other)
    assert other.apple_device_token is None

    assert registration_ledger.remove_device_registration(db_session, serial_number="SN-RM", device_library_id="lib-a") is True
    assert registration_ledger.remove_device_registration(db_session, serial_number="SN-RM", device_library_id="lib-a") is False
