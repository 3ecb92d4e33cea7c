"""Binary layouts for the Qlance contract entry points.

Every input is a single little-endian uint64. Outputs are the contract's
C structs with natural alignment, so a trailing status byte is padded to
the next 8-byte boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import struct

from qlance.errors import EncodingError, ProtocolError

U64_MAX = 2**64 - 1

_U64 = struct.Struct("<Q")
_STATUS = struct.Struct("<B")
_POST_JOB_OUTPUT = struct.Struct("<QB7x")
_GET_JOB_OUTPUT = struct.Struct("<QQB7x")


class Procedure(IntEnum):
    POST_JOB = 1
    CLAIM_JOB = 2
    SUBMIT_WORK = 3
    APPROVE_WORK = 4
    REJECT_WORK = 5

    @property
    def input_size(self) -> int:
        return _U64.size

    @property
    def output_size(self) -> int:
        if self is Procedure.POST_JOB:
            return _POST_JOB_OUTPUT.size
        return _STATUS.size


class ContractFunction(IntEnum):
    GET_JOBS_COUNT = 1
    GET_JOB = 2

    @property
    def input_size(self) -> int:
        if self is ContractFunction.GET_JOBS_COUNT:
            return 0
        return _U64.size

    @property
    def output_size(self) -> int:
        if self is ContractFunction.GET_JOBS_COUNT:
            return _U64.size
        return _GET_JOB_OUTPUT.size


class OnChainJobStatus(IntEnum):
    OPEN = 0
    CLAIMED = 1
    SUBMITTED = 2
    APPROVED = 3
    REJECTED = 4


@dataclass(frozen=True)
class PostJobOutput:
    job_id: int
    status: int


@dataclass(frozen=True)
class OnChainJob:
    job_id: int
    price: int
    status: int

    @property
    def status_name(self) -> str:
        try:
            return OnChainJobStatus(self.status).name.lower()
        except ValueError:
            return "unknown"


def encode_u64(value: int) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"uint64 value must be an integer, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise EncodingError(f"value {value} is outside the uint64 range")
    return _U64.pack(value)


def decode_u64(data: bytes) -> int:
    _require_size(data, _U64.size, "uint64")
    return _U64.unpack_from(data)[0]


def encode_post_job(price: int) -> bytes:
    return encode_u64(price)


def encode_job_id(job_id: int) -> bytes:
    return encode_u64(job_id)


def encode_procedure_input(procedure: Procedure, value: int) -> bytes:
    if procedure is Procedure.POST_JOB:
        return encode_post_job(value)
    return encode_job_id(value)


def encode_get_jobs_count() -> bytes:
    return b""


def encode_get_job(job_id: int) -> bytes:
    return encode_u64(job_id)


def decode_post_job_output(data: bytes) -> PostJobOutput:
    _require_size(data, _POST_JOB_OUTPUT.size, "PostJob output")
    job_id, status = _POST_JOB_OUTPUT.unpack_from(data)
    return PostJobOutput(job_id=job_id, status=status)


def decode_status_output(data: bytes) -> int:
    _require_size(data, _STATUS.size, "procedure status")
    return _STATUS.unpack_from(data)[0]


def decode_jobs_count(data: bytes) -> int:
    _require_size(data, _U64.size, "GetJobsCount output")
    return _U64.unpack_from(data)[0]


def decode_get_job(data: bytes) -> OnChainJob:
    _require_size(data, _GET_JOB_OUTPUT.size, "GetJob output")
    job_id, price, status = _GET_JOB_OUTPUT.unpack_from(data)
    return OnChainJob(job_id=job_id, price=price, status=status)


def _require_size(data: bytes, expected: int, label: str) -> None:
    if len(data) < expected:
        raise ProtocolError(f"{label} needs {expected} bytes, got {len(data)}")
