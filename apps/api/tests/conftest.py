from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from qlance.chain import BroadcastReceipt
from qlance.chain.codec import OnChainJob
from qlance.config import get_settings
from qlance.errors import NetworkError, NotFoundError, SigningError
from qlance.main import app, get_chain_client, get_identity_deriver, get_signer


class FakeChainClient:
    def __init__(self) -> None:
        self.tick = 38_648_500
        self.reachable = True
        self.balances: dict[str, int] = {}
        self.balance_error: Exception | None = None
        self.jobs_count = 0
        self.onchain_jobs: dict[int, OnChainJob] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self.broadcast_failures = 0
        self.broadcasts: list[bytes] = []
        self.calls: list[str] = []
        self.receipt = BroadcastReceipt(
            accepted=True,
            status_code=200,
            transaction_id="tx-abc",
            body={"transactionId": "tx-abc", "peersBroadcasted": 3},
        )

    def ping(self) -> bool:
        return self.reachable

    def get_current_tick(self) -> int:
        self.calls.append("get_current_tick")
        return self.tick

    def get_balance(self, public_id: str) -> int:
        self.calls.append("get_balance")
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(public_id, 0)

    def query_function(self, contract_index: int, function_id: int, payload: bytes) -> bytes:
        raise NotImplementedError

    def broadcast_transaction(self, signed_transaction: bytes) -> BroadcastReceipt:
        self.calls.append("broadcast_transaction")
        if self.broadcast_failures > 0:
            self.broadcast_failures -= 1
            raise NetworkError("Broadcast failed: connection reset")
        self.broadcasts.append(signed_transaction)
        return self.receipt

    def get_transaction_status(self, transaction_id: str) -> dict[str, Any]:
        if transaction_id not in self.transactions:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return self.transactions[transaction_id]

    def get_jobs_count(self) -> int:
        return self.jobs_count

    def get_job(self, job_id: int) -> OnChainJob:
        return self.onchain_jobs.get(job_id, OnChainJob(job_id=0, price=0, status=0))


class FakeSigner:
    def __init__(self) -> None:
        self.public_id = "B" * 60
        self.fail = False
        self.requests: list[tuple[dict[str, Any], str]] = []

    def sign(self, unsigned: dict[str, Any], seed: str) -> bytes:
        if self.fail:
            raise SigningError("signer failed (exit=1)")
        self.requests.append((unsigned, seed))
        return f"signed:{unsigned['inputType']}:{unsigned['tick']}:{unsigned['payload']}".encode()

    def derive_public_id(self, seed: str) -> str:
        if self.fail:
            raise SigningError("signer failed (exit=1)")
        return self.public_id


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def chain_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def client(
    monkeypatch: pytest.MonkeyPatch,
    chain_client: FakeChainClient,
    signer: FakeSigner,
) -> Iterator[TestClient]:
    monkeypatch.setenv("QLANCE_RETRY_DELAY_MS", "0")
    monkeypatch.setenv("QUBIC_RPC_URL", "http://qubic-rpc.test")

    app.dependency_overrides[get_chain_client] = lambda: chain_client
    app.dependency_overrides[get_signer] = lambda: signer
    app.dependency_overrides[get_identity_deriver] = lambda: signer

    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
