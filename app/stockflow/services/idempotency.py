import hashlib
import json
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.db.models import IdempotencyRecord
from app.stockflow.repos.idempotency import IdempotencyRepository


IDEMPOTENCY_HEADER = "Idempotency-Key"


def _is_retryable(status_code: int | None) -> bool:
    return status_code is None or status_code >= 500 or status_code == 409


@dataclass
class IdempotencyReplay:
    status_code: int
    response_body: dict


class IdempotencyContext:
    def __init__(self, record: IdempotencyRecord, repo: IdempotencyRepository):
        self._record = record
        self._repo = repo

    def record_success(self, *, status_code: int, response_body: dict) -> None:
        self._store(state="succeeded", status_code=status_code, response_body=response_body)

    def record_failure(self, *, status_code: int, response_body: dict) -> None:
        self._store(state="failed", status_code=status_code, response_body=response_body)

    def _store(self, *, state: str, status_code: int, response_body: dict) -> None:
        self._record.status_code = status_code
        self._record.response_body = json.dumps(response_body, default=str)
        self._record.state = state
        self._record.updated_at = datetime.utcnow()
        self._repo.update(self._record)


class IdempotencyService:
    """Per-actor request replay protection keyed by the ``Idempotency-Key`` header.

    Succeeded and client-error responses are replayed verbatim. A stored 5xx or 409 failure
    leaves the key open so the caller can retry the same request.
    """

    def __init__(self, db):
        self.repo = IdempotencyRepository(db)

    @staticmethod
    def fingerprint(payload: object) -> str:
        payload_bytes = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(payload_bytes).hexdigest()

    def start(
        self,
        *,
        actor_id: str,
        endpoint: str,
        method: str,
        idempotency_key: str,
        request_hash: str,
    ) -> tuple[IdempotencyContext | None, IdempotencyReplay | None]:
        existing = self.repo.get_by_key(
            actor_id=actor_id,
            endpoint=endpoint,
            method=method,
            idempotency_key=idempotency_key,
        )
        if existing:
            return self._handle_existing(existing, request_hash)

        record = IdempotencyRecord(
            actor_id=actor_id,
            endpoint=endpoint,
            method=method,
            idempotency_key=idempotency_key,
            request_hash=request_hash,
            state="in_progress",
            status_code=None,
            response_body=None,
        )
        try:
            record = self.repo.create(record)
        except IntegrityError:
            self.repo.db.rollback()
            return self._handle_existing(
                self.repo.get_by_key(
                    actor_id=actor_id,
                    endpoint=endpoint,
                    method=method,
                    idempotency_key=idempotency_key,
                ),
                request_hash,
            )

        return IdempotencyContext(record, self.repo), None

    def _handle_existing(
        self, existing: IdempotencyRecord | None, request_hash: str
    ) -> tuple[IdempotencyContext | None, IdempotencyReplay | None]:
        if existing is None:
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        if existing.request_hash != request_hash:
            raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD)
        if existing.state == "in_progress":
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        if existing.state == "failed" and _is_retryable(existing.status_code):
            existing.state = "in_progress"
            existing.status_code = None
            existing.response_body = None
            existing.updated_at = datetime.utcnow()
            self.repo.update(existing)
            return IdempotencyContext(existing, self.repo), None
        if existing.response_body is None or existing.status_code is None:
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        response_body = json.loads(existing.response_body)
        return None, IdempotencyReplay(status_code=existing.status_code, response_body=response_body)


def extract_idempotency_key(headers, *, required: bool) -> str | None:
    key = headers.get(IDEMPOTENCY_HEADER)
    if not key and required:
        raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REQUIRED)
    return key
