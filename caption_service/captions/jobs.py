"""
Caption job records and in-process cancellation tokens.

The record lives in DynamoDB so any request can read a job's state; the
cancellation token is an ``asyncio.Event`` that only exists in the worker
process running the job.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from caption_service.storage.dynamodb import DynamoDBService
from caption_service.captions.models import CaptionJob, JobKind, JobState
from caption_service.models import new_job_id
from caption_service.exceptions import DynamoDBException, InvalidRequestException, JobNotFoundException

log = logging.getLogger(__name__)

TERMINAL_STATES = {JobState.completed, JobState.failed, JobState.cancelled}


class JobRegistry:
    """Tracks the cancellation token of every running job in this process. Event-loop thread only."""

    def __init__(self):
        self._tokens: Dict[str, asyncio.Event] = {}
        self._sessions: Dict[str, str] = {}

    def register(self, job_id: str, session_id: str) -> asyncio.Event:
        if job_id in self._tokens:
            raise InvalidRequestException(f"Caption job '{job_id}' is already running")
        token = asyncio.Event()
        self._tokens[job_id] = token
        self._sessions[job_id] = session_id
        return token

    def release(self, job_id: str):
        self._tokens.pop(job_id, None)
        self._sessions.pop(job_id, None)

    def is_active(self, job_id: str) -> bool:
        return job_id in self._tokens

    def cancel(self, job_id: str) -> bool:
        token = self._tokens.get(job_id)
        if token is None:
            return False
        token.set()
        log.info(f"Cancellation requested for job {job_id}")
        return True

    def cancel_session(self, session_id: str) -> List[str]:
        job_ids = [j for j, s in self._sessions.items() if s == session_id]
        for job_id in job_ids:
            self.cancel(job_id)
        return job_ids

    def cancel_all(self):
        for job_id in list(self._tokens):
            self.cancel(job_id)


def create_job(
    db: DynamoDBService,
    session_id: str,
    kind: JobKind,
    total: int,
    job_id: Optional[str] = None,
) -> CaptionJob:
    now = datetime.now(timezone.utc)
    job = CaptionJob(
        job_id=job_id or new_job_id(),
        session_id=session_id,
        kind=kind,
        total=total,
        created_at=now,
        updated_at=now,
    )
    try:
        db.put_job(_to_item(job))
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB put_job failed: {e}")
        raise DynamoDBException(f"Failed to save caption job: {e}")
    return job


def update_job(db: DynamoDBService, job: CaptionJob, state: JobState, **fields) -> CaptionJob:
    """Moves a job to ``state`` and stores any counters passed in ``fields``."""
    updated = job.model_copy(update={"state": state, "updated_at": datetime.now(timezone.utc), **fields})
    changes = {"state": state.value, "updated_at": updated.updated_at.isoformat()}
    changes.update(fields)
    try:
        db.update_job(job.job_id, changes)
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB update_job failed: {e}")
        raise DynamoDBException(f"Failed to update caption job: {e}")
    log.info(f"Job {job.job_id} -> {state.value}")
    return updated


def get_job(db: DynamoDBService, job_id: str) -> CaptionJob:
    try:
        item = db.get_job(job_id)
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB get_job failed: {e}")
        raise DynamoDBException(f"Failed to get caption job: {e}")
    if not item:
        raise JobNotFoundException(job_id)
    return _to_job(item)


def latest_job(db: DynamoDBService, session_id: str) -> Optional[CaptionJob]:
    try:
        items = db.query_jobs(session_id, limit=1)
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB query_jobs failed: {e}")
        raise DynamoDBException(f"Failed to query caption jobs: {e}")
    return _to_job(items[0]) if items else None


def _to_item(job: CaptionJob) -> dict:
    item = job.model_dump()
    item["kind"] = job.kind.value
    item["state"] = job.state.value
    item["created_at"] = job.created_at.isoformat()
    item["updated_at"] = job.updated_at.isoformat()
    return item


def _to_job(item: dict) -> CaptionJob:
    # DynamoDB hands numbers back as Decimal
    return CaptionJob(
        job_id=item["job_id"],
        session_id=item["session_id"],
        kind=item["kind"],
        state=item["state"],
        total=int(item.get("total", 0)),
        succeeded=int(item.get("succeeded", 0)),
        failed=int(item.get("failed", 0)),
        error=item.get("error"),
        created_at=datetime.fromisoformat(item["created_at"]),
        updated_at=datetime.fromisoformat(item["updated_at"]),
    )
