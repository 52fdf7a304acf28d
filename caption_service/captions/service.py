import asyncio
import logging
from typing import List, Optional, Protocol
from pathlib import Path

from caption_service.storage.dynamodb import DynamoDBService
from caption_service.storage.filesystem import SessionStorage
from caption_service.captions.jobs import JobRegistry, create_job, update_job, latest_job
from caption_service.captions.tags import append_global_tags, merge_tags, split_tags
from caption_service.captions.models import (
    CaptionOutcome,
    CaptionSuccess,
    CaptionFailure,
    CaptionCancelled,
    CaptionStatus,
    GenerateResponse,
    GlobalTagsResponse,
    JobKind,
    JobState,
    TagUpdate,
    TagUpdateError,
)
from caption_service.uploads.models import SessionStatus
from caption_service.uploads.service import set_session_status
from caption_service.models import new_job_id
from caption_service.settings import settings
from caption_service.exceptions import (
    FileNotFoundException,
    InvalidRequestException,
    SessionNotFoundException,
)

log = logging.getLogger(__name__)


class Captioner(Protocol):
    async def caption(self, image_path: Path, max_tokens: int) -> str:
        ...


def chunked(items: List[str], size: int) -> List[List[str]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


def select_images(storage: SessionStorage, session_id: str, file_indices: Optional[List[int]] = None) -> List[str]:
    """Qualifying images of a session, optionally narrowed to positions in the sorted listing."""
    if not storage.session_exists(session_id):
        raise SessionNotFoundException(session_id)
    files = storage.list_images(session_id)
    if file_indices:
        files = [files[i] for i in file_indices if 0 <= i < len(files)]
    if not files:
        raise InvalidRequestException("No image files found in session")
    return files


async def caption_file(
    storage: SessionStorage,
    captioner: Captioner,
    session_id: str,
    filename: str,
    global_tags: str,
    max_tokens: int,
) -> CaptionOutcome:
    """Captions one image and writes ``<basename>.txt``. Failures are returned, never raised."""
    try:
        caption = await captioner.caption(storage.image_path(session_id, filename), max_tokens)
        caption = caption.strip()
        caption = append_global_tags(caption, global_tags)
        output_path = storage.write_caption(session_id, filename, caption)
    except Exception as e:
        log.error(f"Error processing file {filename}: {e}")
        return CaptionFailure(file=filename, error=str(e) or "Unknown error")
    return CaptionSuccess(file=filename, output_path=str(output_path), caption=caption)


async def _wait_for_chunk(tasks: List[asyncio.Task], token: Optional[asyncio.Event]):
    if token is None:
        await asyncio.wait(tasks)
        return

    waiter = asyncio.ensure_future(token.wait())
    try:
        remaining = set(tasks)
        while remaining and not waiter.done():
            done, _ = await asyncio.wait(remaining | {waiter}, return_when=asyncio.FIRST_COMPLETED)
            remaining -= done
        if remaining:
            for task in remaining:
                task.cancel()
            await asyncio.wait(remaining)
    finally:
        waiter.cancel()


async def caption_files(
    storage: SessionStorage,
    captioner: Captioner,
    session_id: str,
    files: List[str],
    global_tags: str,
    max_tokens: int,
    chunk_size: int,
    token: Optional[asyncio.Event] = None,
) -> List[CaptionOutcome]:
    """
    Captions ``files`` in fixed-size chunks.

    Chunks run one after another; the files inside a chunk are captioned
    concurrently and the whole chunk is awaited before the next one starts.
    Setting ``token`` cancels the in-flight calls of the current chunk and
    skips the remaining chunks.
    """
    outcomes: List[CaptionOutcome] = []
    for chunk in chunked(files, chunk_size):
        if token is not None and token.is_set():
            outcomes.extend(CaptionCancelled(file=f) for f in chunk)
            continue

        tasks = [
            asyncio.create_task(caption_file(storage, captioner, session_id, f, global_tags, max_tokens))
            for f in chunk
        ]
        await _wait_for_chunk(tasks, token)

        for filename, task in zip(chunk, tasks):
            if task.cancelled():
                outcomes.append(CaptionCancelled(file=filename))
            else:
                outcomes.append(task.result())
    return outcomes


async def run_caption_job(
    db: DynamoDBService,
    storage: SessionStorage,
    registry: JobRegistry,
    captioner: Captioner,
    session_id: str,
    kind: JobKind,
    global_tags: str = "",
    max_tokens: Optional[int] = None,
    file_indices: Optional[List[int]] = None,
    job_id: Optional[str] = None,
) -> GenerateResponse:
    """Runs the batch processor over a session as a tracked, cancellable job."""
    files = select_images(storage, session_id, file_indices)
    chunk_size = settings.generate_chunk_size if kind == JobKind.generate else settings.batch_chunk_size
    max_tokens = max_tokens or settings.default_max_tokens

    job_id = job_id or new_job_id()
    token = registry.register(job_id, session_id)
    try:
        job = create_job(db, session_id, kind, total=len(files), job_id=job_id)
        job = update_job(db, job, JobState.running)
        set_session_status(db, session_id, SessionStatus.processing)
        log.info(f"Captioning {len(files)} files of session {session_id} in chunks of {chunk_size}")

        try:
            outcomes = await caption_files(
                storage, captioner, session_id, files, global_tags, max_tokens, chunk_size, token
            )
        except Exception as e:
            update_job(db, job, JobState.failed, error=str(e))
            set_session_status(db, session_id, SessionStatus.uploaded)
            raise
    finally:
        registry.release(job_id)

    succeeded = sum(isinstance(o, CaptionSuccess) for o in outcomes)
    failed = sum(isinstance(o, CaptionFailure) for o in outcomes)
    if token.is_set():
        state = JobState.cancelled
    elif succeeded == 0:
        state = JobState.failed
    else:
        state = JobState.completed

    update_job(db, job, state, succeeded=succeeded, failed=failed)
    set_session_status(
        db, session_id, SessionStatus.captioned if state == JobState.completed else SessionStatus.uploaded
    )

    message = f"Caption generation completed for {succeeded} files. {failed} errors."
    if state == JobState.cancelled:
        message = f"Caption generation cancelled after {succeeded} files. {failed} errors."
    return GenerateResponse(
        message=message,
        session_id=session_id,
        job_id=job_id,
        state=state,
        outcomes=outcomes,
    )


def add_global_tags(storage: SessionStorage, session_id: str, global_tags: Optional[str]) -> GlobalTagsResponse:
    """Appends every requested tag missing from each caption file of a session."""
    tags = split_tags(global_tags or "")
    if not tags:
        raise InvalidRequestException("Global tags are required")
    if not storage.results_exist(session_id):
        raise FileNotFoundException("Results not found for this session")
    files = storage.list_captions(session_id)
    if not files:
        raise InvalidRequestException("No caption files found for this session")

    results, errors = [], []
    for filename in files:
        try:
            caption, added = merge_tags(storage.read_caption(session_id, filename), tags)
            if added:
                storage.overwrite_caption(session_id, filename, caption)
        except (OSError, UnicodeDecodeError) as e:
            log.error(f"Error updating file {filename}: {e}")
            errors.append(TagUpdateError(file=filename, error=str(e)))
            continue
        results.append(TagUpdate(file=filename, updated_caption=caption, added_tags=added))

    return GlobalTagsResponse(
        message=f"Global tags added to {len(results)} files. {len(errors)} errors.",
        session_id=session_id,
        results=results,
        errors=errors,
    )


def compute_progress(total_images: int, processed_images: int) -> int:
    """floor(processed / total * 100); 0 when there are no images."""
    if total_images <= 0:
        return 0
    return (processed_images * 100) // total_images


def caption_status(db: DynamoDBService, storage: SessionStorage, session_id: str) -> CaptionStatus:
    """Re-derived from the directory listing on every call."""
    if not storage.session_exists(session_id):
        raise SessionNotFoundException(session_id)

    total = len(storage.list_images(session_id))
    processed = len(storage.list_captions(session_id))
    complete = total > 0 and processed >= total
    return CaptionStatus(
        session_id=session_id,
        total_images=total,
        processed_images=processed,
        progress=compute_progress(total, processed),
        is_complete=complete,
        status="complete" if complete else "in-progress",
        job=latest_job(db, session_id),
    )
