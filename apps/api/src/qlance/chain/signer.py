"""Signing and identity derivation through an external wallet tool.

Key derivation and transaction signing are not implemented here. The
``CommandSigner`` hands the request to a local command (for example a small
Node script around the official Qubic library) over stdin and reads one JSON
object back from the last line of stdout.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import shlex
import subprocess
from typing import Any, Protocol

from qlance.errors import SigningError
from qlance.identity import is_valid_public_id

logger = logging.getLogger(__name__)


class TransactionSigner(Protocol):
    def sign(self, unsigned: dict[str, Any], seed: str) -> bytes: ...


class IdentityDeriver(Protocol):
    def derive_public_id(self, seed: str) -> str: ...


class CommandSigner:
    def __init__(self, *, command: str | list[str], timeout_seconds: float = 30.0) -> None:
        self._command = shlex.split(command) if isinstance(command, str) else list(command)
        self._timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self._command)

    def sign(self, unsigned: dict[str, Any], seed: str) -> bytes:
        result = self._run({"action": "sign", "seed": seed, "transaction": unsigned})
        encoded = result.get("encodedTransaction")
        if not isinstance(encoded, str) or not encoded:
            raise SigningError("signer output is missing encodedTransaction")
        try:
            return base64.b64decode(encoded, validate=True)
        except binascii.Error as exc:
            raise SigningError("signer returned invalid base64 transaction") from exc

    def derive_public_id(self, seed: str) -> str:
        result = self._run({"action": "publicId", "seed": seed})
        public_id = result.get("publicId")
        if not is_valid_public_id(public_id):
            raise SigningError("signer returned an invalid public id")
        return public_id

    def _run(self, request: dict[str, Any]) -> dict[str, Any]:
        if not self._command:
            raise SigningError("no signer command configured (set QLANCE_SIGNER_COMMAND)")

        action = request["action"]
        try:
            completed = subprocess.run(
                self._command,
                input=json.dumps(request),
                capture_output=True,
                text=True,
                check=False,
                timeout=self._timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise SigningError(f"signer timed out after {self._timeout_seconds:.0f}s") from exc
        except OSError as exc:
            raise SigningError(f"signer could not be started: {exc.strerror or exc}") from exc

        # stderr may echo the request, so it is never copied into the error.
        if completed.returncode != 0:
            logger.error("signer action=%s failed exit=%s", action, completed.returncode)
            raise SigningError(f"signer failed (exit={completed.returncode})")

        output = completed.stdout.strip().splitlines()
        if not output:
            raise SigningError("signer produced no output")

        try:
            parsed = json.loads(output[-1])
        except json.JSONDecodeError as exc:
            raise SigningError("signer returned invalid JSON") from exc

        if not isinstance(parsed, dict):
            raise SigningError("signer payload must be an object")
        if isinstance(parsed.get("error"), str):
            raise SigningError(f"signer reported an error: {parsed['error']}")
        return parsed
