# oneshot_webhook/x402/settlement.py
"""
Verify-then-settle coordination with the 1Shot API.

Settlement is only ever requested for a payment the 1Shot API has verified.
Once verification succeeded, a settle call that fails in transport (timeouts
at a proxy, a 502 from the edge) is not treated as a rejected payment: the
transfer may well have gone through, so the request continues with the
TX_HASH_PENDING placeholder instead of a transaction hash. A settle call that
answers {"success": false} is a rejection.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from starlette.concurrency import run_in_threadpool

from oneshot_webhook.api.models.x402 import PaymentRequirement
from oneshot_webhook.services.oneshot_api import OneShotClient
from oneshot_webhook.x402 import X402_VERSION
from oneshot_webhook.x402.audit import log_payment_rejected, log_payment_settled, log_settlement_ambiguous
from oneshot_webhook.x402.errors import BackendError, SettlementAmbiguity

logger = logging.getLogger(__name__)

# Transaction hash reported when the settlement outcome is unknown
TX_HASH_PENDING = "TBD"


class SettlementStatus(Enum):
    VERIFY_REJECTED = "verify_rejected"
    SETTLE_REJECTED = "settle_rejected"
    SETTLED = "settled"
    AMBIGUOUS = "ambiguous"


@dataclass
class SettlementOutcome:
    status: SettlementStatus
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    payer: Optional[str] = None

    @property
    def accepted(self) -> bool:
        """True when the request should go ahead (settled or ambiguous)."""
        return self.status in (SettlementStatus.SETTLED, SettlementStatus.AMBIGUOUS)


def _record_detached_settlement(
    payment_payload: Dict[str, Any],
    requirement: PaymentRequirement,
    task: "asyncio.Future"
) -> None:
    """Log and audit a settle call that outlived its request."""
    authorization = payment_payload["payload"]["authorization"]
    amount = authorization["value"]
    payer = authorization.get("from")

    if task.cancelled():
        logger.error("x402: Detached settle call was cancelled, outcome unknown")
        log_settlement_ambiguous(TX_HASH_PENDING, requirement.network, amount, "settle call cancelled", payer)
        return

    error = task.exception()
    if error is not None:
        logger.error(f"x402: Detached settle call of a verified payment failed: {error}")
        log_settlement_ambiguous(TX_HASH_PENDING, requirement.network, amount, str(error), payer)
        return

    settle_response = task.result()
    if settle_response.success:
        logger.info(f"x402: Detached settle call completed in transaction {settle_response.txHash}")
        log_payment_settled(settle_response.txHash, requirement.network, amount, payer)
    else:
        logger.warning(f"x402: Detached settle call failed: {settle_response.error}")
        log_payment_rejected("settle", settle_response.error, payer)


class SettlementCoordinator:
    """Runs backend verification and settlement for one payment."""

    def __init__(self, client: OneShotClient):
        self._client = client

    async def verify(
        self,
        payment_payload: Dict[str, Any],
        requirement: PaymentRequirement
    ):
        """
        Verify a payment with the 1Shot API.

        Raises:
            BackendError: If the verify call fails
        """
        x402_version = payment_payload.get("x402Version", X402_VERSION)
        return await run_in_threadpool(
            self._client.verify_x402_payment, x402_version, payment_payload, requirement
        )

    async def settle(
        self,
        payment_payload: Dict[str, Any],
        requirement: PaymentRequirement
    ):
        """
        Settle a verified payment with the 1Shot API.

        The call runs as its own task and is shielded, so a client that
        disconnects mid-request cannot abandon an on-chain transfer. If the
        request is cancelled first, the outcome is logged and audited when
        the call finishes.

        Raises:
            BackendError: If the settle call fails
        """
        x402_version = payment_payload.get("x402Version", X402_VERSION)
        task = asyncio.ensure_future(
            run_in_threadpool(
                self._client.settle_x402_payment, x402_version, payment_payload, requirement
            )
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning("x402: Request cancelled during settlement, the settle call continues")
            task.add_done_callback(functools.partial(_record_detached_settlement, payment_payload, requirement))
            raise

    async def process(
        self,
        payment_payload: Dict[str, Any],
        requirement: PaymentRequirement
    ) -> SettlementOutcome:
        """
        Verify, then settle, a payment.

        Args:
            payment_payload: The decoded, validated x-payment header
            requirement: The payment requirement the payment matched

        Returns:
            The settlement outcome

        Raises:
            BackendError: If the verify call fails
        """
        try:
            verify_response = await self.verify(payment_payload, requirement)
        except BackendError as e:
            logger.error(f"x402: Payment verification call failed: {e}")
            raise

        if not verify_response.isValid:
            logger.warning(f"x402: Payment verification failed: {verify_response.invalidReason}")
            return SettlementOutcome(
                status=SettlementStatus.VERIFY_REJECTED,
                error=verify_response.invalidReason,
                payer=verify_response.payer,
            )

        logger.info(f"x402: Payment verified for payer {verify_response.payer}")

        try:
            settle_response = await self.settle(payment_payload, requirement)
        except BackendError as e:
            ambiguity = SettlementAmbiguity(f"Settlement of a verified payment failed: {e}")
            logger.error(f"x402: {ambiguity}, continuing with txHash={TX_HASH_PENDING}")
            return SettlementOutcome(
                status=SettlementStatus.AMBIGUOUS,
                tx_hash=TX_HASH_PENDING,
                error=str(ambiguity),
                payer=verify_response.payer,
            )

        if not settle_response.success:
            logger.warning(f"x402: Payment settlement failed: {settle_response.error}")
            return SettlementOutcome(
                status=SettlementStatus.SETTLE_REJECTED,
                error=settle_response.error,
                payer=verify_response.payer,
            )

        logger.info(f"x402: Payment settled in transaction {settle_response.txHash}")
        return SettlementOutcome(
            status=SettlementStatus.SETTLED,
            tx_hash=settle_response.txHash,
            payer=verify_response.payer,
        )
