"""External collaborators of the lifecycle engine."""

from paylink_engine.providers.base import (
    Notifier,
    PaymentVerifier,
    SettleResult,
    TransferExecutor,
    TransferResult,
    VerificationRequirements,
    VerifyResult,
    WalletDirectory,
    WorkspaceMirror,
)
from paylink_engine.providers.email import LoggingNotifier, SmtpNotifier
from paylink_engine.providers.facilitator import FacilitatorVerifier
from paylink_engine.providers.notion import NotionWorkspaceMirror
from paylink_engine.providers.stub import StubTransferExecutor, StubVerifier
from paylink_engine.providers.transfer import UnconfiguredTransferExecutor
from paylink_engine.providers.users import NotionCredentials, UserDirectory

__all__ = [
    "FacilitatorVerifier",
    "LoggingNotifier",
    "NotionCredentials",
    "NotionWorkspaceMirror",
    "Notifier",
    "PaymentVerifier",
    "SettleResult",
    "SmtpNotifier",
    "StubTransferExecutor",
    "StubVerifier",
    "TransferExecutor",
    "TransferResult",
    "UnconfiguredTransferExecutor",
    "UserDirectory",
    "VerificationRequirements",
    "VerifyResult",
    "WalletDirectory",
    "WorkspaceMirror",
]
