from datetime import datetime, timezone
import logging
from typing import Annotated, Any, Callable

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from qlance.chain import (
    ChainClient,
    CommandSigner,
    IdentityDeriver,
    QubicRpcClient,
    RetryPolicy,
    ScheduledTransaction,
    TransactionScheduler,
    TransactionSigner,
)
from qlance.chain.codec import U64_MAX
from qlance.config import get_settings
from qlance.errors import (
    EncodingError,
    InvalidStateError,
    NetworkError,
    NotFoundError,
    ProtocolError,
    QlanceError,
    SigningError,
    ValidationError,
)
from qlance.identity import is_valid_public_id, require_public_id, require_seed
from qlance.models import Job, JobStatus
from qlance.registry import JobRegistry, parse_status

logger = logging.getLogger(__name__)

SERVICE_NAME = "Qlance Backend"
APP_VERSION = "0.1.0"

app = FastAPI(title="Qlance API", version=APP_VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

_ERROR_STATUS: dict[type[QlanceError], int] = {
    ValidationError: 400,
    EncodingError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
    NetworkError: 502,
    ProtocolError: 502,
    SigningError: 500,
}


class JobCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str | None = None
    description: str | None = None
    category: str | None = None
    price_in_qubic: int | str | None = Field(default=None, alias="priceInQubic")
    client_address: str | None = Field(default=None, alias="clientAddress")
    deadline: str | None = None
    contract_address: str | None = Field(default=None, alias="contractAddress")


class ClaimRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    worker_address: str | None = Field(default=None, alias="workerAddress")


class OnChainRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    seed: str | None = None
    wallet_address: str | None = Field(default=None, alias="walletAddress")


class PostOnChainRequest(OnChainRequest):
    price_in_qubic: int | str | None = Field(default=None, alias="priceInQubic")


class WalletImportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    seed: str | None = None


@app.on_event("startup")
def startup() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app.state.job_registry = JobRegistry()
    logger.info(
        "%s %s starting environment=%s rpc=%s",
        SERVICE_NAME,
        APP_VERSION,
        settings.environment,
        settings.rpc_url,
    )


@app.middleware("http")
async def log_requests(request: Request, call_next: Callable[..., Any]) -> Any:
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


@app.exception_handler(QlanceError)
def handle_qlance_error(request: Request, exc: QlanceError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    content: dict[str, Any] = {"success": False, "error": str(exc)}
    if isinstance(exc, InvalidStateError):
        content["currentStatus"] = exc.current_status
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    return JSONResponse(status_code=400, content={"success": False, "error": f"Invalid request: {problems}"})


@app.exception_handler(StarletteHTTPException)
def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = "Route not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": message})


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


def get_job_registry(request: Request) -> JobRegistry:
    return request.app.state.job_registry


def get_chain_client() -> ChainClient:
    settings = get_settings()
    return QubicRpcClient(
        base_url=settings.rpc_url,
        contract_index=settings.contract_index,
        timeout_seconds=settings.rpc_timeout_seconds,
        health_timeout_seconds=settings.health_timeout_seconds,
    )


def get_signer() -> TransactionSigner:
    settings = get_settings()
    return CommandSigner(
        command=settings.signer_command,
        timeout_seconds=settings.signer_timeout_seconds,
    )


def get_identity_deriver() -> IdentityDeriver:
    settings = get_settings()
    return CommandSigner(
        command=settings.signer_command,
        timeout_seconds=settings.signer_timeout_seconds,
    )


def get_scheduler(
    chain_client: Annotated[ChainClient, Depends(get_chain_client)],
    signer: Annotated[TransactionSigner, Depends(get_signer)],
) -> TransactionScheduler:
    settings = get_settings()
    return TransactionScheduler(
        chain_client=chain_client,
        signer=signer,
        contract_address=settings.contract_address,
        tick_offset=settings.tick_offset,
        retry_policy=RetryPolicy(
            max_retries=settings.max_retries,
            delay_seconds=settings.retry_delay_seconds,
        ),
    )


Registry = Annotated[JobRegistry, Depends(get_job_registry)]
Chain = Annotated[ChainClient, Depends(get_chain_client)]
Scheduler = Annotated[TransactionScheduler, Depends(get_scheduler)]


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _ok(data: Any, message: str | None = None, status_code: int = 200) -> JSONResponse:
    content: dict[str, Any] = {"success": True, "data": data}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def _job_payload(job: Job) -> dict[str, Any]:
    return {
        "id": job.id,
        "title": job.title,
        "description": job.description,
        "category": job.category,
        "priceInQubic": job.price_in_qubic,
        "status": job.status.value,
        "clientAddress": job.client_address,
        "workerAddress": job.worker_address,
        "deadline": _to_iso(job.deadline),
        "createdAt": _to_iso(job.created_at),
        "updatedAt": _to_iso(job.updated_at),
        "contractAddress": job.contract_address,
    }


def _parse_onchain_job_id(value: str) -> int:
    normalized = value.strip()
    if not (normalized.isascii() and normalized.isdecimal()) or int(normalized) > U64_MAX:
        raise ValidationError("Job id must be an unsigned 64-bit integer")
    return int(normalized)


def _parse_price(value: int | str | None) -> int:
    if isinstance(value, int):
        return value
    if value is None or not (value.strip().isascii() and value.strip().isdecimal()):
        raise ValidationError("priceInQubic must be a non-negative integer")
    return int(value.strip())


def _require_signing_fields(body: OnChainRequest) -> tuple[str, str]:
    if not body.seed or not body.wallet_address:
        raise ValidationError("Missing required fields: seed, walletAddress")
    return require_seed(body.seed), require_public_id(body.wallet_address, field="walletAddress")


def _scheduled_response(result: ScheduledTransaction, message: str) -> JSONResponse:
    receipt = result.receipt
    if not receipt.accepted:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": receipt.error_message, "details": receipt.body},
        )
    return _ok(
        {
            "message": message,
            "transactionId": receipt.transaction_id,
            "currentTick": result.current_tick,
            "targetTick": result.target_tick,
            "details": receipt.body,
        }
    )


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "message": "Qlance Backend API - Qubic Micro-Freelance Marketplace",
        "version": APP_VERSION,
        "endpoints": {"health": "/health", "jobs": "/api/jobs", "wallet": "/api/wallet"},
    }


@app.get("/api/info")
def info() -> dict[str, Any]:
    settings = get_settings()
    return {
        "project": "Qlance - Qubic Micro-Freelance Marketplace",
        "version": APP_VERSION,
        "environment": settings.environment,
        "blockchain": {
            "network": "Qubic",
            "rpcUrl": settings.rpc_url,
            "contractAddress": settings.contract_address,
            "contractIndex": settings.contract_index,
        },
    }


@app.get("/health")
def health(chain_client: Chain) -> dict[str, Any]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": APP_VERSION,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "qubic": {"rpcUrl": settings.rpc_url, "connected": chain_client.ping()},
    }


@app.get("/api/jobs")
def list_jobs(
    registry: Registry,
    status: str | None = Query(default=JobStatus.OPEN.value),
) -> JSONResponse:
    status_filter = None if status in (None, "", "all") else parse_status(status)
    jobs = registry.list(status_filter)
    label = status_filter.value if status_filter is not None else "all"
    return _ok([_job_payload(job) for job in jobs], f"Retrieved {len(jobs)} {label} jobs")


@app.post("/api/jobs")
def create_job(body: JobCreateRequest, registry: Registry) -> JSONResponse:
    job = registry.create(
        title=body.title,
        description=body.description,
        category=body.category,
        price_in_qubic=body.price_in_qubic,
        client_address=body.client_address,
        deadline=body.deadline,
        contract_address=body.contract_address,
    )
    return _ok(_job_payload(job), "Job created successfully", status_code=201)


@app.get("/api/jobs/on-chain/count")
def get_onchain_jobs_count(chain_client: Chain) -> JSONResponse:
    return _ok({"count": chain_client.get_jobs_count()})


@app.get("/api/jobs/on-chain/{job_id}")
def get_onchain_job(job_id: str, chain_client: Chain) -> JSONResponse:
    onchain_job = chain_client.get_job(_parse_onchain_job_id(job_id))
    return _ok(
        {
            "jobId": str(onchain_job.job_id),
            "priceInQubic": str(onchain_job.price),
            "status": onchain_job.status_name,
            "statusCode": onchain_job.status,
        }
    )


@app.post("/api/jobs/post-on-chain")
def post_job_on_chain(body: PostOnChainRequest, scheduler: Scheduler) -> JSONResponse:
    if not body.seed or not body.wallet_address or body.price_in_qubic in (None, ""):
        raise ValidationError("Missing required fields: seed, walletAddress, priceInQubic")
    seed, wallet_address = _require_signing_fields(body)
    result = scheduler.post_job(
        seed=seed,
        source_public_id=wallet_address,
        price=_parse_price(body.price_in_qubic),
    )
    return _scheduled_response(result, "Job posted to contract")


@app.get("/api/jobs/{job_id}")
def get_job(job_id: str, registry: Registry) -> JSONResponse:
    return _ok(_job_payload(registry.get(job_id)))


@app.put("/api/jobs/{job_id}/claim")
def claim_job(job_id: str, body: ClaimRequest, registry: Registry) -> JSONResponse:
    if not body.worker_address:
        raise ValidationError("workerAddress is required")
    job = registry.claim(job_id, body.worker_address)
    return _ok(_job_payload(job), "Job claimed successfully")


@app.put("/api/jobs/{job_id}/submit")
def submit_job(job_id: str, registry: Registry) -> JSONResponse:
    return _ok(_job_payload(registry.submit(job_id)), "Work submitted")


@app.put("/api/jobs/{job_id}/approve")
def approve_job(job_id: str, registry: Registry) -> JSONResponse:
    return _ok(_job_payload(registry.approve(job_id)), "Work approved")


@app.put("/api/jobs/{job_id}/reject")
def reject_job(job_id: str, registry: Registry) -> JSONResponse:
    return _ok(_job_payload(registry.reject(job_id)), "Work rejected")


@app.put("/api/jobs/{job_id}/complete")
def complete_job(job_id: str, registry: Registry) -> JSONResponse:
    return _ok(_job_payload(registry.complete(job_id)), "Job completed")


@app.post("/api/jobs/{job_id}/claim-on-chain")
def claim_job_on_chain(job_id: str, body: OnChainRequest, scheduler: Scheduler) -> JSONResponse:
    seed, wallet_address = _require_signing_fields(body)
    result = scheduler.claim_job(
        seed=seed,
        source_public_id=wallet_address,
        job_id=_parse_onchain_job_id(job_id),
    )
    return _scheduled_response(result, "Job claimed on contract")


@app.post("/api/jobs/{job_id}/submit-work-on-chain")
def submit_work_on_chain(job_id: str, body: OnChainRequest, scheduler: Scheduler) -> JSONResponse:
    seed, wallet_address = _require_signing_fields(body)
    result = scheduler.submit_work(
        seed=seed,
        source_public_id=wallet_address,
        job_id=_parse_onchain_job_id(job_id),
    )
    return _scheduled_response(result, "Work submitted on contract")


@app.post("/api/jobs/{job_id}/approve-work-on-chain")
def approve_work_on_chain(job_id: str, body: OnChainRequest, scheduler: Scheduler) -> JSONResponse:
    seed, wallet_address = _require_signing_fields(body)
    result = scheduler.approve_work(
        seed=seed,
        source_public_id=wallet_address,
        job_id=_parse_onchain_job_id(job_id),
    )
    return _scheduled_response(result, "Work approved on contract")


@app.post("/api/jobs/{job_id}/reject-work-on-chain")
def reject_work_on_chain(job_id: str, body: OnChainRequest, scheduler: Scheduler) -> JSONResponse:
    seed, wallet_address = _require_signing_fields(body)
    result = scheduler.reject_work(
        seed=seed,
        source_public_id=wallet_address,
        job_id=_parse_onchain_job_id(job_id),
    )
    return _scheduled_response(result, "Work rejected on contract")


@app.get("/api/transactions/{transaction_id}")
def get_transaction_status(transaction_id: str, chain_client: Chain) -> JSONResponse:
    return _ok(chain_client.get_transaction_status(transaction_id))


@app.post("/api/wallet/import")
def import_wallet(
    body: WalletImportRequest,
    chain_client: Chain,
    deriver: Annotated[IdentityDeriver, Depends(get_identity_deriver)],
) -> JSONResponse:
    if not body.seed:
        raise ValidationError("Seed phrase is required")
    public_id = deriver.derive_public_id(require_seed(body.seed))

    balance = 0
    try:
        balance = chain_client.get_balance(public_id)
    except (NetworkError, ProtocolError) as exc:
        logger.warning("Could not fetch balance for %s: %s", public_id, exc)

    return _ok(
        {
            "publicKey": public_id,
            "balance": str(balance),
            "message": "Wallet imported successfully",
        }
    )


@app.get("/api/wallet/validate/{address}")
def validate_address(address: str) -> JSONResponse:
    return _ok({"address": address, "isValid": is_valid_public_id(address)})


@app.get("/api/wallet/{public_key}/balance")
def get_wallet_balance(public_key: str, chain_client: Chain) -> JSONResponse:
    require_public_id(public_key, field="publicKey")
    balance = chain_client.get_balance(public_key)
    return _ok({"publicKey": public_key, "balance": str(balance)})


def run() -> None:
    import uvicorn

    uvicorn.run("qlance.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
