from dataclasses import dataclass
from functools import lru_cache
import os


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


def _to_list(value: str | None, *, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    rpc_timeout_seconds: float
    health_timeout_seconds: float
    contract_address: str
    contract_index: int
    tick_offset: int
    max_retries: int
    retry_delay_ms: int
    signer_command: str
    signer_timeout_seconds: float
    environment: str
    log_level: str
    cors_origins: list[str]

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000


@lru_cache
def get_settings() -> Settings:
    return Settings(
        rpc_url=os.getenv("QUBIC_RPC_URL", "https://testnet-rpc.qubicdev.com"),
        rpc_timeout_seconds=_to_float(
            os.getenv("QUBIC_RPC_TIMEOUT_SECONDS"), default=10.0, minimum=0.5
        ),
        health_timeout_seconds=_to_float(
            os.getenv("QUBIC_HEALTH_TIMEOUT_SECONDS"), default=5.0, minimum=0.5
        ),
        contract_address=os.getenv(
            "QUBIC_CONTRACT_ADDRESS",
            "KAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAXIUO",
        ),
        contract_index=_to_int(os.getenv("QUBIC_CONTRACT_INDEX"), default=100, minimum=0),
        tick_offset=_to_int(os.getenv("QLANCE_TICK_OFFSET"), default=10, minimum=1),
        max_retries=_to_int(os.getenv("QLANCE_MAX_RETRIES"), default=3, minimum=0),
        retry_delay_ms=_to_int(os.getenv("QLANCE_RETRY_DELAY_MS"), default=1000, minimum=0),
        signer_command=os.getenv("QLANCE_SIGNER_COMMAND", ""),
        signer_timeout_seconds=_to_float(
            os.getenv("QLANCE_SIGNER_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        environment=os.getenv("QLANCE_ENV", "development"),
        log_level=os.getenv("QLANCE_LOG_LEVEL", "INFO").upper(),
        cors_origins=_to_list(os.getenv("QLANCE_CORS_ORIGINS"), default=["*"]),
    )
