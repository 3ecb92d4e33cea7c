import base64
import json
import subprocess

import pytest

from qlance.chain.signer import CommandSigner
from qlance.errors import SigningError

SEED = "z" * 55
UNSIGNED = {
    "sourcePublicKey": "A" * 60,
    "destinationPublicKey": "K" * 60,
    "amount": "0",
    "tick": 1010,
    "inputType": 2,
    "inputSize": 8,
    "payload": "BwAAAAAAAAA=",
}


def _completed(stdout: str, returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=["signer"], returncode=returncode, stdout=stdout, stderr=stderr)


def test_sign_sends_request_on_stdin_and_decodes_output(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_run(command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        captured["command"] = command
        captured["request"] = json.loads(str(kwargs["input"]))
        captured["timeout"] = kwargs["timeout"]
        encoded = base64.b64encode(b"signed-bytes").decode()
        return _completed(f"loading wallet\n{json.dumps({'encodedTransaction': encoded})}\n")

    monkeypatch.setattr("qlance.chain.signer.subprocess.run", fake_run)

    signer = CommandSigner(command="node sign.js --network testnet", timeout_seconds=12)

    assert signer.sign(UNSIGNED, SEED) == b"signed-bytes"
    assert captured["command"] == ["node", "sign.js", "--network", "testnet"]
    assert captured["request"] == {"action": "sign", "seed": SEED, "transaction": UNSIGNED}
    assert captured["timeout"] == 12


def test_derive_public_id(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        assert json.loads(str(kwargs["input"]))["action"] == "publicId"
        return _completed(json.dumps({"publicId": "B" * 60}))

    monkeypatch.setattr("qlance.chain.signer.subprocess.run", fake_run)

    assert CommandSigner(command=["signer"]).derive_public_id(SEED) == "B" * 60


def test_invalid_public_id_from_signer_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "qlance.chain.signer.subprocess.run",
        lambda command, **kwargs: _completed(json.dumps({"publicId": "b" * 60})),
    )

    with pytest.raises(SigningError, match="invalid public id"):
        CommandSigner(command=["signer"]).derive_public_id(SEED)


def test_failed_signer_never_leaks_seed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "qlance.chain.signer.subprocess.run",
        lambda command, **kwargs: _completed("", returncode=2, stderr=f"bad seed {SEED}"),
    )

    with pytest.raises(SigningError) as excinfo:
        CommandSigner(command=["signer"]).sign(UNSIGNED, SEED)

    assert "exit=2" in str(excinfo.value)
    assert SEED not in str(excinfo.value)


@pytest.mark.parametrize(
    ("stdout", "message"),
    [
        ("", "no output"),
        ("not json", "invalid JSON"),
        ("[1, 2]", "must be an object"),
        (json.dumps({"error": "unsupported network"}), "unsupported network"),
        (json.dumps({"encodedTransaction": "%%%"}), "invalid base64"),
        (json.dumps({}), "missing encodedTransaction"),
    ],
)
def test_bad_signer_output(monkeypatch: pytest.MonkeyPatch, stdout: str, message: str) -> None:
    monkeypatch.setattr("qlance.chain.signer.subprocess.run", lambda command, **kwargs: _completed(stdout))

    with pytest.raises(SigningError, match=message):
        CommandSigner(command=["signer"]).sign(UNSIGNED, SEED)


def test_timeout_is_signing_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(cmd=command, timeout=5)

    monkeypatch.setattr("qlance.chain.signer.subprocess.run", fake_run)

    with pytest.raises(SigningError, match="timed out"):
        CommandSigner(command=["signer"], timeout_seconds=5).sign(UNSIGNED, SEED)


def test_unconfigured_signer_fails_without_running_anything(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise AssertionError("subprocess must not run")

    monkeypatch.setattr("qlance.chain.signer.subprocess.run", fake_run)
    signer = CommandSigner(command="")

    assert signer.configured is False
    with pytest.raises(SigningError, match="QLANCE_SIGNER_COMMAND"):
        signer.sign(UNSIGNED, SEED)
