from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import logging
from typing import Any, Protocol

import httpx

from qlance.chain.codec import (
    ContractFunction,
    OnChainJob,
    decode_get_job,
    decode_jobs_count,
    encode_get_job,
    encode_get_jobs_count,
)
from qlance.errors import NetworkError, NotFoundError, ProtocolError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastReceipt:
    accepted: bool
    status_code: int
    transaction_id: str
    body: dict[str, Any]

    @property
    def error_message(self) -> str:
        for key in ("message", "error", "detail"):
            value = self.body.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return f"RPC rejected the transaction (HTTP {self.status_code})"


class ChainClient(Protocol):
    def ping(self) -> bool: ...

    def get_current_tick(self) -> int: ...

    def get_balance(self, public_id: str) -> int: ...

    def query_function(self, contract_index: int, function_id: int, payload: bytes) -> bytes: ...

    def broadcast_transaction(self, signed_transaction: bytes) -> BroadcastReceipt: ...

    def get_transaction_status(self, transaction_id: str) -> dict[str, Any]: ...

    def get_jobs_count(self) -> int: ...

    def get_job(self, job_id: int) -> OnChainJob: ...


class QubicRpcClient:
    def __init__(
        self,
        *,
        base_url: str,
        contract_index: int,
        timeout_seconds: float = 10.0,
        health_timeout_seconds: float = 5.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._contract_index = contract_index
        self._timeout_seconds = timeout_seconds
        self._health_timeout_seconds = health_timeout_seconds

    @property
    def base_url(self) -> str:
        return self._base_url

    def ping(self) -> bool:
        try:
            httpx.get(self._base_url, timeout=self._health_timeout_seconds)
        except httpx.TransportError as exc:
            logger.warning("Qubic RPC unreachable at %s: %s", self._base_url, exc)
            return False
        # Any HTTP answer, a 404 on the root included, means the node is up.
        return True

    def get_current_tick(self) -> int:
        last_error: Exception | None = None
        for path, extract in (
            ("/status", _tick_from_status),
            ("/v1/tick-info", _tick_from_tick_info),
        ):
            try:
                payload = self._get_json(path)
                return extract(payload)
            except (NetworkError, ProtocolError) as exc:
                logger.warning("Tick lookup via %s failed: %s", path, exc)
                last_error = exc

        if last_error is not None:
            raise last_error
        raise ProtocolError("No tick endpoints configured")

    def get_balance(self, public_id: str) -> int:
        payload = self._get_json(f"/v1/balances/{public_id}")

        # The RPC has served all three shapes over time.
        balance = payload.get("balance")
        if isinstance(balance, dict) and balance.get("balance") is not None:
            value = balance["balance"]
        elif isinstance(balance, str):
            value = balance
        elif isinstance(payload.get("balanceData"), dict) and payload["balanceData"].get("balance") is not None:
            value = payload["balanceData"]["balance"]
        else:
            logger.warning("Unexpected balance response format for %s: %r", public_id, payload)
            return 0

        return _as_balance(value)

    def query_function(self, contract_index: int, function_id: int, payload: bytes) -> bytes:
        body = self._post_json(
            "/v1/querySmartContract",
            {
                "contractIndex": contract_index,
                "inputType": function_id,
                "inputSize": len(payload),
                "requestData": base64.b64encode(payload).decode("ascii"),
            },
        )
        response_data = body.get("responseData")
        if not isinstance(response_data, str):
            raise ProtocolError("No response data from contract query")

        try:
            return base64.b64decode(response_data, validate=True)
        except binascii.Error as exc:
            raise ProtocolError("Contract query returned invalid base64 data") from exc

    def broadcast_transaction(self, signed_transaction: bytes) -> BroadcastReceipt:
        encoded = base64.b64encode(signed_transaction).decode("ascii")
        try:
            response = httpx.post(
                f"{self._base_url}/v1/broadcast-transaction",
                json={"encodedTransaction": encoded},
                timeout=self._timeout_seconds,
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Broadcast failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}
        if not isinstance(body, dict):
            body = {"result": body}

        accepted = 200 <= response.status_code < 300
        transaction_id = body.get("transactionId") or body.get("id") or "pending"
        if not accepted:
            logger.warning("Broadcast rejected by RPC: status=%s body=%r", response.status_code, body)
        return BroadcastReceipt(
            accepted=accepted,
            status_code=response.status_code,
            transaction_id=str(transaction_id),
            body=body,
        )

    def get_transaction_status(self, transaction_id: str) -> dict[str, Any]:
        try:
            return self._get_json(f"/v1/transactions/{transaction_id}")
        except _HttpStatusError as exc:
            if exc.status_code == 404:
                raise NotFoundError(f"Transaction {transaction_id} not found") from exc
            raise

    def get_jobs_count(self) -> int:
        data = self.query_function(
            self._contract_index,
            ContractFunction.GET_JOBS_COUNT,
            encode_get_jobs_count(),
        )
        return decode_jobs_count(data)

    def get_job(self, job_id: int) -> OnChainJob:
        data = self.query_function(
            self._contract_index,
            ContractFunction.GET_JOB,
            encode_get_job(job_id),
        )
        return decode_get_job(data)

    def _get_json(self, path: str) -> dict[str, Any]:
        try:
            response = httpx.get(f"{self._base_url}{path}", timeout=self._timeout_seconds)
        except httpx.TransportError as exc:
            raise NetworkError(f"GET {path} failed: {exc}") from exc
        return _parse_json_object(response, f"GET {path}")

    def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = httpx.post(
                f"{self._base_url}{path}",
                json=body,
                timeout=self._timeout_seconds,
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"POST {path} failed: {exc}") from exc
        return _parse_json_object(response, f"POST {path}")


class _HttpStatusError(ProtocolError):
    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def _parse_json_object(response: httpx.Response, label: str) -> dict[str, Any]:
    if response.status_code >= 400:
        raise _HttpStatusError(
            f"{label} returned HTTP {response.status_code}",
            status_code=response.status_code,
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProtocolError(f"{label} returned a non-JSON body") from exc
    if not isinstance(payload, dict):
        raise ProtocolError(f"{label} returned {type(payload).__name__}, expected an object")
    return payload


def _tick_from_status(payload: dict[str, Any]) -> int:
    return _as_tick(payload.get("tick"), "status")


def _tick_from_tick_info(payload: dict[str, Any]) -> int:
    tick_info = payload.get("tickInfo")
    tick = tick_info.get("tick") if isinstance(tick_info, dict) else None
    return _as_tick(tick, "tick-info")


def _as_balance(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    if isinstance(value, str) and value.isascii() and value.isdecimal():
        return int(value)
    raise ProtocolError(f"Invalid balance value: {value!r}")


def _as_tick(value: Any, source: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ProtocolError(f"Could not read current tick from {source} response")
    return value
