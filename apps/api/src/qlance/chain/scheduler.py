from __future__ import annotations

import base64
from dataclasses import dataclass, field
import logging
from time import sleep
from typing import Any, Callable

from qlance.chain.client import BroadcastReceipt, ChainClient
from qlance.chain.codec import Procedure, encode_procedure_input
from qlance.chain.signer import TransactionSigner
from qlance.errors import EncodingError, NetworkError
from qlance.identity import require_public_id, require_seed

logger = logging.getLogger(__name__)

DEFAULT_TICK_OFFSET = 10


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 0
    delay_seconds: float = 0.0


@dataclass(frozen=True)
class UnsignedTransaction:
    source_public_id: str
    destination_public_id: str
    tick: int
    input_type: int
    payload: bytes = field(repr=False)
    amount: int = 0

    def to_fields(self) -> dict[str, Any]:
        return {
            "sourcePublicKey": self.source_public_id,
            "destinationPublicKey": self.destination_public_id,
            "amount": str(self.amount),
            "tick": self.tick,
            "inputType": self.input_type,
            "inputSize": len(self.payload),
            "payload": base64.b64encode(self.payload).decode("ascii"),
        }


@dataclass(frozen=True)
class ScheduledTransaction:
    procedure: Procedure
    current_tick: int
    target_tick: int
    receipt: BroadcastReceipt


class TransactionScheduler:
    def __init__(
        self,
        *,
        chain_client: ChainClient,
        signer: TransactionSigner,
        contract_address: str,
        tick_offset: int = DEFAULT_TICK_OFFSET,
        retry_policy: RetryPolicy | None = None,
        sleep_fn: Callable[[float], None] = sleep,
    ) -> None:
        if tick_offset < 1:
            raise ValueError("tick_offset must be at least 1")
        self._chain_client = chain_client
        self._signer = signer
        self._contract_address = contract_address
        self._tick_offset = tick_offset
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep_fn

    @property
    def tick_offset(self) -> int:
        return self._tick_offset

    def post_job(self, *, seed: str, source_public_id: str, price: int) -> ScheduledTransaction:
        return self.schedule(Procedure.POST_JOB, price, seed=seed, source_public_id=source_public_id)

    def claim_job(self, *, seed: str, source_public_id: str, job_id: int) -> ScheduledTransaction:
        return self.schedule(Procedure.CLAIM_JOB, job_id, seed=seed, source_public_id=source_public_id)

    def submit_work(self, *, seed: str, source_public_id: str, job_id: int) -> ScheduledTransaction:
        return self.schedule(Procedure.SUBMIT_WORK, job_id, seed=seed, source_public_id=source_public_id)

    def approve_work(self, *, seed: str, source_public_id: str, job_id: int) -> ScheduledTransaction:
        return self.schedule(Procedure.APPROVE_WORK, job_id, seed=seed, source_public_id=source_public_id)

    def reject_work(self, *, seed: str, source_public_id: str, job_id: int) -> ScheduledTransaction:
        return self.schedule(Procedure.REJECT_WORK, job_id, seed=seed, source_public_id=source_public_id)

    def schedule(
        self,
        procedure: Procedure,
        value: int,
        *,
        seed: str,
        source_public_id: str,
    ) -> ScheduledTransaction:
        require_seed(seed)
        require_public_id(source_public_id, field="walletAddress")
        payload = encode_procedure_input(procedure, value)
        if len(payload) != procedure.input_size:
            raise EncodingError(
                f"{procedure.name} input must be {procedure.input_size} bytes, got {len(payload)}"
            )

        current_tick = self._chain_client.get_current_tick()
        target_tick = current_tick + self._tick_offset

        unsigned = UnsignedTransaction(
            source_public_id=source_public_id,
            destination_public_id=self._contract_address,
            tick=target_tick,
            input_type=int(procedure),
            payload=payload,
        )
        signed = self._signer.sign(unsigned.to_fields(), seed)
        receipt = self._broadcast(signed, procedure=procedure)

        logger.info(
            "%s scheduled source=%s tick=%s->%s tx=%s accepted=%s",
            procedure.name,
            source_public_id,
            current_tick,
            target_tick,
            receipt.transaction_id,
            receipt.accepted,
        )
        return ScheduledTransaction(
            procedure=procedure,
            current_tick=current_tick,
            target_tick=target_tick,
            receipt=receipt,
        )

    def _broadcast(self, signed: bytes, *, procedure: Procedure) -> BroadcastReceipt:
        delay = self._retry_policy.delay_seconds
        attempt = 1

        while True:
            try:
                return self._chain_client.broadcast_transaction(signed)
            except NetworkError as exc:
                if attempt > self._retry_policy.max_retries:
                    raise
                logger.warning(
                    "%s broadcast failed attempt=%s error=%s; retrying in %.1fs",
                    procedure.name,
                    attempt,
                    exc,
                    delay,
                )
                self._sleep(delay)
                attempt += 1
