import secrets
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure project root on sys.path so 'walletsync' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from walletsync import config  # type: ignore
from walletsync.main import app  # type: ignore
from walletsync.database import Base  # type: ignore
from walletsync.api import deps  # type: ignore
"""Pytest fixtures and factories.

Important: SQLAlchemy relationship configuration requires all model modules to be imported
before Base.metadata.create_all(), otherwise back_populates targets might not exist yet.
"""
from walletsync.models.db import CustomerProgram, Pass, WalletRegistration  # noqa: E402
from walletsync.errors import NotFoundError, PushError, RegenerateError  # noqa: E402,F401
from walletsync.integrations.base import PatchOutcome, PushOutcome, RegenerateOutcome  # noqa: E402
from walletsync.integrations.pass_storage import FilesystemPassPublisher  # noqa: E402
from walletsync.jobs.factory import WalletServices  # noqa: E402
from walletsync.jobs.queue import WalletJobQueue  # noqa: E402
from walletsync.jobs.scheduler import WalletJobScheduler  # noqa: E402
from walletsync.utils.circuit_breaker import CircuitBreaker  # noqa: E402

CRON_SECRET = "test-cron-secret"


class FakeClock:
    """Deterministic clock; tests move time forward explicitly."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


class FakeGoogleDriver:
    def __init__(self):
        self.calls: list[tuple[str, int]] = []
        self.balances: dict[str, int] = {}
        self.error: Exception | None = None

    def apply(self, object_id, new_balance):
        self.calls.append((object_id, new_balance))
        if self.error is not None:
            raise self.error
        self.balances[object_id] = new_balance
        return PatchOutcome(object_id=object_id, object_type="loyaltyObject", balance=new_balance, status_code=200)


class FakeAppleDriver:
    def __init__(self):
        self.apply_calls: list[dict] = []
        self.push_calls: list[tuple[str, str]] = []
        self.apply_error: Exception | None = None
        self.push_error: Exception | None = None

    def apply(self, pass_id, device_token=None, registration_id=None):
        self.apply_calls.append({"pass_id": pass_id, "device_token": device_token, "registration_id": registration_id})
        if self.apply_error is not None:
            raise self.apply_error
        return RegenerateOutcome(pass_id=pass_id, serial_number=f"serial-{pass_id}", pass_url="http://testserver/p", update_tag=1)

    def push(self, serial_number, device_token):
        self.push_calls.append((serial_number, device_token))
        if self.push_error is not None:
            raise self.push_error
        return PushOutcome(device_token=device_token, delivered=True, status_code=200)


@pytest.fixture()
def engine():
    # In-memory database shared across threads (TestClient runs sync routes in a threadpool)
    test_engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def queue(session_factory, clock):
    return WalletJobQueue(session_factory, clock=clock)


@pytest.fixture()
def google_driver():
    return FakeGoogleDriver()


@pytest.fixture()
def apple_driver():
    return FakeAppleDriver()


@pytest.fixture()
def scheduler(queue, google_driver, apple_driver):
    return WalletJobScheduler(
        queue,
        google_driver=google_driver,
        apple_driver=apple_driver,
        worker_id="test-worker",
        retry_not_found=False,
        split_apple_push=True,
    )


@pytest.fixture()
def publisher(tmp_path):
    return FilesystemPassPublisher(storage_dir=str(tmp_path / "passes"), public_base_url="http://testserver/passes")


@pytest.fixture()
def wallet_services(queue, scheduler, publisher, clock):
    return WalletServices(queue=queue, scheduler=scheduler, publisher=publisher, breaker=CircuitBreaker(clock=clock))


@pytest.fixture()
def client(session_factory, wallet_services, monkeypatch):
    """TestClient wired to the per-test database and fake drivers.

    Lifespan is not run (no context manager), so app.state is populated here.
    """
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(config, "CRON_SECRET", CRON_SECRET)
    app.dependency_overrides[deps.get_db] = _override_get_db
    app.state.wallet_services = wallet_services  # type: ignore[attr-defined]
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.wallet_services = None  # type: ignore[attr-defined]


@pytest.fixture()
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}

# ---------- Data factory helpers ----------

@pytest.fixture()
def program_factory(db_session):
    def _create(points: int = 0, tier: str | None = None, customer_name: str = "Ada Lovelace"):
        program = CustomerProgram(customer_name=customer_name, points=points, tier=tier)
        db_session.add(program)
        db_session.commit()
        db_session.refresh(program)
        return program
    return _create


@pytest.fixture()
def pass_factory(db_session):
    def _create(pass_data: dict | None = None, serial_number: str | None = None, pass_id: str | None = None):
        suffix = secrets.token_hex(4)
        wallet_pass = Pass(
            id=pass_id or f"pass-{suffix}",
            serial_number=serial_number or f"SN-{suffix}",
            pass_type="storeCard",
            pass_data=pass_data or {},
            authentication_token=f"auth-{secrets.token_hex(12)}",
        )
        db_session.add(wallet_pass)
        db_session.commit()
        db_session.refresh(wallet_pass)
        return wallet_pass
    return _create


@pytest.fixture()
def registration_factory(db_session):
    def _create(
        wallet_pass: Pass,
        program: CustomerProgram,
        wallet: str = "apple",
        device_token: str | None = None,
        device_library_id: str | None = None,
    ):
        registration = WalletRegistration(
            pass_id=wallet_pass.id,
            customer_program_id=program.id,
            wallet_type=wallet,
            google_object_id=wallet_pass.google_object_id if wallet == "google" else None,
            apple_serial_number=wallet_pass.serial_number if wallet == "apple" else None,
            apple_device_token=device_token,
            device_library_id=device_library_id,
        )
        db_session.add(registration)
        db_session.commit()
        db_session.refresh(registration)
        return registration
    return _create
