import pytest

from qlance.chain.codec import (
    ContractFunction,
    OnChainJob,
    PostJobOutput,
    Procedure,
    U64_MAX,
    decode_get_job,
    decode_jobs_count,
    decode_post_job_output,
    decode_status_output,
    decode_u64,
    encode_get_job,
    encode_get_jobs_count,
    encode_post_job,
    encode_procedure_input,
    encode_u64,
)
from qlance.errors import EncodingError, ProtocolError


def test_post_job_payload_is_little_endian_price() -> None:
    assert encode_post_job(1000) == bytes.fromhex("e803000000000000")


@pytest.mark.parametrize("value", [0, 1, 255, 2**32, U64_MAX])
def test_u64_boundaries_decode_to_original_value(value: int) -> None:
    encoded = encode_u64(value)

    assert len(encoded) == 8
    assert decode_u64(encoded) == value


@pytest.mark.parametrize("value", [-1, U64_MAX + 1, True, 1.5, "10"])
def test_encode_u64_rejects_unrepresentable_values(value: object) -> None:
    with pytest.raises(EncodingError):
        encode_u64(value)


def test_every_procedure_encodes_eight_bytes() -> None:
    for procedure in Procedure:
        payload = encode_procedure_input(procedure, 5)

        assert len(payload) == procedure.input_size == 8
        assert payload == bytes([5, 0, 0, 0, 0, 0, 0, 0])


def test_declared_sizes_match_contract_structs() -> None:
    assert Procedure.POST_JOB.output_size == 16
    assert Procedure.CLAIM_JOB.output_size == 1
    assert ContractFunction.GET_JOBS_COUNT.input_size == 0
    assert ContractFunction.GET_JOBS_COUNT.output_size == 8
    assert ContractFunction.GET_JOB.input_size == 8
    assert ContractFunction.GET_JOB.output_size == 24
    assert encode_get_jobs_count() == b""
    assert encode_get_job(7) == bytes([7, 0, 0, 0, 0, 0, 0, 0])


def test_decode_outputs() -> None:
    post_job = (42).to_bytes(8, "little") + b"\x00" + b"\x00" * 7
    get_job = (3).to_bytes(8, "little") + (1000).to_bytes(8, "little") + b"\x02" + b"\x00" * 7

    assert decode_post_job_output(post_job) == PostJobOutput(job_id=42, status=0)
    assert decode_status_output(b"\x01") == 1
    assert decode_jobs_count((12).to_bytes(8, "little")) == 12
    assert decode_get_job(get_job) == OnChainJob(job_id=3, price=1000, status=2)
    assert decode_get_job(get_job).status_name == "submitted"


def test_decode_rejects_short_buffers() -> None:
    with pytest.raises(ProtocolError, match="GetJob output needs 24 bytes"):
        decode_get_job(b"\x00" * 16)

    with pytest.raises(ProtocolError):
        decode_jobs_count(b"")


def test_unknown_on_chain_status_has_readable_name() -> None:
    assert OnChainJob(job_id=1, price=1, status=9).status_name == "unknown"
