"""Tests for settings and engine configuration."""

from decimal import Decimal

import pytest

from paylink_engine.config import Settings
from paylink_engine.engine import EngineConfig, PaylinkEngine
from paylink_engine.providers import (
    FacilitatorVerifier,
    LoggingNotifier,
    SmtpNotifier,
    StubTransferExecutor,
    UnconfiguredTransferExecutor,
)
from paylink_engine.providers.transfer import NOT_CONFIGURED
from paylink_engine.services import LedgerService
from tests.conftest import OWNER_ID


@pytest.fixture
def env(monkeypatch):
    for name in (
        "SMTP_HOST",
        "OPTIMISTIC_SETTLE_ON_TIMEOUT",
        "BASE_URL",
        "VERIFICATION_TIMEOUT_SECONDS",
        "REFUND_INTERVAL_SECONDS",
        "OUTGOING_INTERVAL_SECONDS",
        "MAX_PAYMENT_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    def test_defaults(self, env):
        settings = Settings.from_env()
        assert settings.verification_timeout_seconds == 5
        assert settings.optimistic_settle_on_timeout is True
        assert settings.refund_interval_seconds == 3600
        assert settings.smtp_host is None

    def test_overrides(self, env):
        env.setenv("BASE_URL", "https://pay.example.com/")
        env.setenv("OPTIMISTIC_SETTLE_ON_TIMEOUT", "false")
        env.setenv("VERIFICATION_TIMEOUT_SECONDS", "2.5")

        settings = Settings.from_env()

        assert settings.base_url == "https://pay.example.com"
        assert settings.optimistic_settle_on_timeout is False
        assert settings.verification_timeout_seconds == 2.5


class TestEngineConfig:
    def test_from_settings(self, env):
        config = EngineConfig.from_settings(Settings.from_env())
        assert config.outgoing_interval_seconds == 60
        assert config.max_payment_timeout_seconds == 300

    @pytest.mark.parametrize(
        "overrides",
        [
            {"base_url": ""},
            {"verification_timeout_seconds": 0},
            {"max_payment_timeout_seconds": 0},
            {"refund_interval_seconds": -1},
        ],
    )
    def test_invalid(self, overrides):
        values = {"base_url": "https://pay.example.com", **overrides}
        with pytest.raises(ValueError):
            EngineConfig(**values)


class TestPaylinkEngineFromSettings:
    async def test_logging_notifier_without_smtp(self, env, session_factory):
        engine = PaylinkEngine.from_settings(Settings.from_env(), session_factory)
        try:
            assert isinstance(engine.notifier, LoggingNotifier)
            assert isinstance(engine.verifier, FacilitatorVerifier)
        finally:
            await engine.shutdown()

    async def test_smtp_notifier_when_configured(self, env, session_factory):
        env.setenv("SMTP_HOST", "smtp.example.com")
        engine = PaylinkEngine.from_settings(Settings.from_env(), session_factory)
        try:
            assert isinstance(engine.notifier, SmtpNotifier)
            assert engine.notifier.host == "smtp.example.com"
        finally:
            await engine.shutdown()

    async def test_startup_rebuilds_routes(self, paylink):
        await paylink.startup()
        assert len(paylink.registry) == 0
        assert paylink.scheduler.is_running is False
        await paylink.shutdown()

    async def test_sends_fail_without_transfer_executor(self, env, session_factory, owners):
        engine = PaylinkEngine.from_settings(Settings.from_env(), session_factory)
        try:
            assert isinstance(engine.transfer_executor, UnconfiguredTransferExecutor)
            assert not isinstance(engine.transfer_executor, StubTransferExecutor)

            payment = await engine.outgoing_payments.schedule_payment(
                user_id=OWNER_ID, amount=Decimal("3"), recipient_address="0xRecipient"
            )
            result = await engine.outgoing_payments.execute(payment.outgoing_payment_id)

            assert result.executed
            assert not result.success
            assert result.error == NOT_CONFIGURED
            assert result.tx_hash is None
            async with session_factory() as session:
                assert await LedgerService(session).list_entries(OWNER_ID) == []
        finally:
            await engine.shutdown()

    async def test_injected_transfer_executor(self, env, session_factory):
        executor = StubTransferExecutor()
        engine = PaylinkEngine.from_settings(
            Settings.from_env(), session_factory, transfer_executor=executor
        )
        try:
            assert engine.transfer_executor is executor
        finally:
            await engine.shutdown()
