from fastapi import APIRouter, Depends
from typing import Callable
import logging

from caption_service.storage.dynamodb import DynamoDBService
from caption_service.storage.filesystem import SessionStorage, validate_session_id
from caption_service.dependencies import (
    get_storage,
    get_dynamodb_service,
    get_job_registry,
    get_captioner_factory,
)
from caption_service.captions.jobs import JobRegistry, get_job
from caption_service.captions.service import (
    Captioner,
    run_caption_job,
    add_global_tags,
    caption_status,
)
from caption_service.captions.models import (
    BatchRequest,
    GenerateRequest,
    GenerateResponse,
    GlobalTagsRequest,
    GlobalTagsResponse,
    CaptionStatus,
    CaptionJob,
    CancelResponse,
    JobKind,
)
from caption_service.exceptions import InvalidRequestException

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/caption",
    tags=["caption"]
)


def require_credentials(body: GenerateRequest) -> str:
    session_id = validate_session_id(body.session_id)
    if not body.api_key:
        raise InvalidRequestException("OpenAI API key is required")
    return session_id


async def _run(
    body: GenerateRequest,
    kind: JobKind,
    db: DynamoDBService,
    storage: SessionStorage,
    registry: JobRegistry,
    captioner_factory: Callable[[str], Captioner],
) -> GenerateResponse:
    session_id = require_credentials(body)
    captioner = captioner_factory(body.api_key)
    try:
        return await run_caption_job(
            db,
            storage,
            registry,
            captioner,
            session_id,
            kind,
            global_tags=body.global_tags,
            max_tokens=body.max_tokens,
            file_indices=getattr(body, "file_indices", None),
            job_id=body.job_id,
        )
    finally:
        close = getattr(captioner, "close", None)
        if close is not None:
            await close()


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    body: GenerateRequest,
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
    registry: JobRegistry = Depends(get_job_registry),
    captioner_factory: Callable = Depends(get_captioner_factory),
):
    """Captions every image of a session, five at a time."""
    return await _run(body, JobKind.generate, db, storage, registry, captioner_factory)


@router.post("/batch", response_model=GenerateResponse)
async def batch(
    body: BatchRequest,
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
    registry: JobRegistry = Depends(get_job_registry),
    captioner_factory: Callable = Depends(get_captioner_factory),
):
    """Captions the selected images of a session (all when no indices are given), three at a time."""
    return await _run(body, JobKind.batch, db, storage, registry, captioner_factory)


@router.post("/add-global-tags", response_model=GlobalTagsResponse)
def add_global_tags_handler(
    body: GlobalTagsRequest,
    storage: SessionStorage = Depends(get_storage),
):
    """Appends global tags to every existing caption of a session."""
    session_id = validate_session_id(body.session_id)
    return add_global_tags(storage, session_id, body.global_tags)


@router.get("/status/{session_id}", response_model=CaptionStatus)
def get_status(
    session_id: str,
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
):
    """Caption progress of a session, derived from the files on disk."""
    return caption_status(db, storage, validate_session_id(session_id))


@router.get("/jobs/{job_id}", response_model=CaptionJob)
def get_job_handler(
    job_id: str,
    db: DynamoDBService = Depends(get_dynamodb_service),
):
    """Gets a caption job record."""
    return get_job(db, job_id)


@router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(
    job_id: str,
    db: DynamoDBService = Depends(get_dynamodb_service),
    registry: JobRegistry = Depends(get_job_registry),
):
    """Cancels a running caption job."""
    if not registry.cancel(job_id):
        job = get_job(db, job_id)
        raise InvalidRequestException(f"Caption job '{job_id}' is not running (state: {job.state.value})")
    return CancelResponse(message="Cancellation requested", cancelled_jobs=[job_id])


@router.post("/cancel/{session_id}", response_model=CancelResponse)
async def cancel_session_jobs(
    session_id: str,
    registry: JobRegistry = Depends(get_job_registry),
):
    """Cancels every running caption job of a session."""
    cancelled = registry.cancel_session(validate_session_id(session_id))
    message = "Cancellation requested" if cancelled else "No running caption jobs for this session"
    return CancelResponse(message=message, cancelled_jobs=cancelled)
