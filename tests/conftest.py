"""Pytest fixtures for paylink engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from paylink_engine.database import create_session_factory, create_tables, get_engine
from paylink_engine.engine import EngineConfig, PaylinkEngine
from paylink_engine.models import AppUser
from paylink_engine.providers import LoggingNotifier, StubTransferExecutor, StubVerifier

OWNER_ID = "11111111-1111-1111-1111-111111111111"
OWNER_EMAIL = "owner@example.com"
OWNER_WALLET = "0xOwnerWallet00000000000000000000000000001"
NO_WALLET_OWNER_ID = "22222222-2222-2222-2222-222222222222"
PAYER_ADDRESS = "0xPayer0000000000000000000000000000000001"
BASE_URL = "https://pay.example.com"

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock so tests control simulated time."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingMirror:
    """Workspace mirror that keeps one merged record per request id."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def upsert_record(self, user_id: str, request_id: str, fields: dict[str, Any]) -> None:
        self.calls.append((user_id, request_id, dict(fields)))
        if self.fail:
            raise RuntimeError("workspace unavailable")
        self.records.setdefault(request_id, {}).update(fields)


class FailingNotifier(LoggingNotifier):
    """Notifier whose every send raises."""

    async def send_payment_request_email(self, **kwargs: Any) -> None:
        raise ConnectionError("smtp down")

    async def send_payment_received_email(self, **kwargs: Any) -> None:
        raise ConnectionError("smtp down")


@pytest.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database, fresh per test."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'paylink.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
async def owners(session_factory) -> dict[str, AppUser]:
    """One owner with a wallet and one without."""
    async with session_factory() as session:
        owner = AppUser(
            user_id=OWNER_ID,
            email=OWNER_EMAIL,
            name="Owner",
            wallet_address=OWNER_WALLET,
            notion_api_key="secret_test",
            notion_database_id="db-incoming",
        )
        no_wallet = AppUser(
            user_id=NO_WALLET_OWNER_ID,
            email="nowallet@example.com",
            name="No Wallet",
        )
        session.add_all([owner, no_wallet])
        await session.commit()
    return {"owner": owner, "no_wallet": no_wallet}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def verifier() -> StubVerifier:
    return StubVerifier(payer_address=PAYER_ADDRESS)


@pytest.fixture
def executor() -> StubTransferExecutor:
    return StubTransferExecutor()


@pytest.fixture
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


@pytest.fixture
def mirror() -> RecordingMirror:
    return RecordingMirror()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        base_url=BASE_URL,
        verification_timeout_seconds=0.5,
        scheduler_enabled=False,
        background_events=False,
    )


@pytest.fixture
def paylink(
    engine_config,
    session_factory,
    owners,
    verifier,
    executor,
    notifier,
    mirror,
    clock,
) -> PaylinkEngine:
    """Fully wired engine with stub collaborators and a fake clock."""
    return PaylinkEngine(
        engine_config,
        session_factory,
        verifier=verifier,
        transfer_executor=executor,
        notifier=notifier,
        mirror=mirror,
        clock=clock,
    )
