"""In-memory mirror of marketplace jobs.

The registry is the only off-chain record of jobs; it is created when the
application starts and lost when the process exits.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
import logging
from threading import Lock
from typing import Any
import uuid

from qlance.chain.codec import U64_MAX
from qlance.errors import InvalidStateError, NotFoundError, ValidationError
from qlance.identity import require_public_id
from qlance.models import ALLOWED_TRANSITIONS, Job, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "general"
DEFAULT_DEADLINE = timedelta(days=30)
REQUIRED_FIELDS = ("title", "description", "price_in_qubic", "client_address")
_FIELD_LABELS = {
    "title": "title",
    "description": "description",
    "price_in_qubic": "priceInQubic",
    "client_address": "clientAddress",
}


class JobRegistry:
    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def create(
        self,
        *,
        title: str | None,
        description: str | None,
        price_in_qubic: Any,
        client_address: str | None,
        category: str | None = None,
        deadline: Any = None,
        contract_address: str | None = None,
    ) -> Job:
        values = {
            "title": title,
            "description": description,
            "price_in_qubic": price_in_qubic,
            "client_address": client_address,
        }
        missing = [_FIELD_LABELS[name] for name in REQUIRED_FIELDS if _is_blank(values[name])]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        price = _parse_price(price_in_qubic)
        client = require_public_id(client_address, field="clientAddress")
        now = _utcnow()

        job = Job(
            id=str(uuid.uuid4()),
            title=str(title).strip(),
            description=str(description).strip(),
            category=(category or "").strip() or DEFAULT_CATEGORY,
            price_in_qubic=price,
            status=JobStatus.OPEN,
            client_address=client,
            deadline=_parse_deadline(deadline, now=now),
            created_at=now,
            updated_at=now,
            contract_address=contract_address or None,
        )
        with self._lock:
            self._jobs[job.id] = job

        logger.info("job created id=%s price=%s client=%s", job.id, job.price_in_qubic, job.client_address)
        return job

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job

    def list(self, status: JobStatus | None = None) -> list[Job]:
        with self._lock:
            jobs = list(self._jobs.values())
        if status is None:
            return jobs
        return [job for job in jobs if job.status is status]

    def claim(self, job_id: str, worker_address: str | None) -> Job:
        worker = require_public_id(worker_address, field="workerAddress")
        return self.transition(job_id, JobStatus.CLAIMED, worker_address=worker)

    def submit(self, job_id: str) -> Job:
        return self.transition(job_id, JobStatus.SUBMITTED)

    def approve(self, job_id: str) -> Job:
        return self.transition(job_id, JobStatus.APPROVED)

    def reject(self, job_id: str) -> Job:
        return self.transition(job_id, JobStatus.REJECTED)

    def complete(self, job_id: str) -> Job:
        return self.transition(job_id, JobStatus.COMPLETED)

    def transition(
        self,
        job_id: str,
        target: JobStatus,
        *,
        worker_address: str | None = None,
    ) -> Job:
        if target is JobStatus.CLAIMED and worker_address is None:
            raise ValidationError("workerAddress is required")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("Job not found")
            if target not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidStateError(
                    f"Job cannot be moved to {target.value}. Current status: {job.status.value}",
                    current_status=job.status.value,
                )

            changes: dict[str, Any] = {"status": target, "updated_at": _utcnow()}
            if target is JobStatus.CLAIMED:
                changes["worker_address"] = worker_address
            updated = replace(job, **changes)
            self._jobs[job_id] = updated

        logger.info("job %s %s -> %s", job_id, job.status.value, target.value)
        return updated


def parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    try:
        return JobStatus(value.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(status.value for status in JobStatus)
        raise ValidationError(f"Unknown job status '{value}'. Expected one of: {allowed}") from exc


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _parse_price(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("priceInQubic must be a positive integer")
    if isinstance(value, str):
        normalized = value.strip()
        if not (normalized.isascii() and normalized.isdecimal()):
            raise ValidationError("priceInQubic must be a positive integer")
        value = int(normalized)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise ValidationError("priceInQubic must be a positive integer")
    if value > U64_MAX:
        raise ValidationError("priceInQubic exceeds the uint64 range")
    return value


def _parse_deadline(value: Any, *, now: datetime) -> datetime:
    if _is_blank(value):
        return now + DEFAULT_DEADLINE
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError("deadline must be an ISO-8601 timestamp") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
