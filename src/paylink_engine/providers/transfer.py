"""Transfer executor used when no signer is configured.

Sending funds needs a wallet signer, which deployments plug in through
the TransferExecutor Protocol. Until one is wired, every send fails with
a reason an operator can read, so no ledger entry is written for money
that never moved.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from paylink_engine.providers.base import TransferResult

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "no transfer executor configured"


class UnconfiguredTransferExecutor:
    async def send(
        self,
        *,
        user_id: str,
        to_address: str,
        amount: Decimal,
        currency: str,
        network: str,
    ) -> TransferResult:
        logger.error(
            "Refusing to send %s %s to %s for user %s: %s",
            amount,
            currency,
            to_address,
            user_id,
            NOT_CONFIGURED,
        )
        return TransferResult(success=False, error=NOT_CONFIGURED)
