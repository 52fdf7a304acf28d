from fastapi import APIRouter, Depends, UploadFile, File, Header, Response
from typing import List, Optional
import logging

from caption_service.storage.dynamodb import DynamoDBService
from caption_service.storage.filesystem import SessionStorage, validate_session_id
from caption_service.dependencies import get_storage, get_dynamodb_service
from caption_service.uploads.service import (
    IncomingFile,
    save_uploads,
    group_by_directory,
    list_sessions,
    get_session_detail,
    remove_session,
)
from caption_service.uploads.models import (
    SingleUploadResponse,
    UploadResponse,
    FolderUploadResponse,
    SessionListResponse,
    SessionDetail,
    DeleteSessionResponse,
)
from caption_service.models import new_session_id
from caption_service.exceptions import InvalidRequestException
from caption_service.settings import settings

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/upload",
    tags=["upload"]
)


def resolve_session_id(x_session_id: Optional[str] = Header(None)) -> str:
    """Session id from the X-Session-ID header, generated when absent."""
    if x_session_id:
        return validate_session_id(x_session_id)
    return new_session_id()


async def read_files(files: Optional[List[UploadFile]]) -> List[IncomingFile]:
    if not files:
        raise InvalidRequestException("No files uploaded")
    return [(f.filename or "", f.content_type, await f.read()) for f in files]


@router.post("/single", response_model=SingleUploadResponse)
async def upload_single(
    response: Response,
    image: Optional[UploadFile] = File(None),
    session_id: str = Depends(resolve_session_id),
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
):
    """Uploads one image into the session."""
    response.headers["X-Content-Type-Options"] = "nosniff"
    if image is None:
        raise InvalidRequestException("No file uploaded")

    incoming = await read_files([image])
    uploaded = save_uploads(db, storage, session_id, incoming, max_files=1)
    return SingleUploadResponse(
        message="File uploaded successfully",
        file=uploaded[0],
        session_id=session_id,
    )


@router.post("/multiple", response_model=UploadResponse)
async def upload_multiple(
    response: Response,
    images: Optional[List[UploadFile]] = File(None),
    session_id: str = Depends(resolve_session_id),
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
):
    """Uploads up to ``max_multiple_files`` images into the session."""
    response.headers["X-Content-Type-Options"] = "nosniff"
    incoming = await read_files(images)
    uploaded = save_uploads(db, storage, session_id, incoming, max_files=settings.max_multiple_files)
    return UploadResponse(
        message=f"{len(uploaded)} files uploaded successfully",
        files=uploaded,
        session_id=session_id,
    )


@router.post("/folder", response_model=FolderUploadResponse)
async def upload_folder(
    response: Response,
    images: Optional[List[UploadFile]] = File(None),
    session_id: str = Depends(resolve_session_id),
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
):
    """
    Uploads a folder of images.

    Files are grouped by their client-side directory in the response but are
    stored flat in the session directory.
    """
    response.headers["X-Content-Type-Options"] = "nosniff"
    incoming = await read_files(images)
    uploaded = save_uploads(db, storage, session_id, incoming, max_files=settings.max_folder_files)
    return FolderUploadResponse(
        message=f"{len(uploaded)} files uploaded successfully",
        files=uploaded,
        files_by_directory=group_by_directory(uploaded),
        session_id=session_id,
    )


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions_handler(
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
):
    """Lists upload sessions, newest first."""
    return SessionListResponse(sessions=list_sessions(db, storage))


@router.get("/sessions/{session_id}", response_model=SessionDetail)
def get_session(
    session_id: str,
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
):
    """Gets the files of one session."""
    return get_session_detail(db, storage, validate_session_id(session_id))


@router.delete("/sessions/{session_id}", response_model=DeleteSessionResponse)
def delete_session(
    session_id: str,
    db: DynamoDBService = Depends(get_dynamodb_service),
    storage: SessionStorage = Depends(get_storage),
):
    """Deletes a session, its files and its caption jobs."""
    remove_session(db, storage, validate_session_id(session_id))
    return DeleteSessionResponse(message="Session deleted successfully", session_id=session_id)
