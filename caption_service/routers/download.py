from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse, StreamingResponse
import io
import logging

from caption_service.storage.filesystem import SessionStorage, validate_session_id
from caption_service.dependencies import get_storage
from caption_service.downloads.service import (
    session_archive,
    captions_archive,
    custom_archive,
    resolve_image,
    resolve_caption,
    download_status,
)
from caption_service.downloads.models import DownloadFormat, DownloadStatus, CustomDownloadRequest

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/download",
    tags=["download"]
)


def zip_response(filename: str, archive: io.BytesIO) -> StreamingResponse:
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(archive, media_type="application/zip", headers=headers)


@router.get("/caption/{session_id}/{filename}")
def download_caption(
    session_id: str,
    filename: str,
    storage: SessionStorage = Depends(get_storage),
):
    """Downloads a single caption file."""
    path = resolve_caption(storage, validate_session_id(session_id), filename)
    return FileResponse(path, filename=filename, media_type="text/plain")


@router.get("/image/{session_id}/{filename}")
def download_image(
    session_id: str,
    filename: str,
    storage: SessionStorage = Depends(get_storage),
):
    """Downloads a single image file."""
    path = resolve_image(storage, validate_session_id(session_id), filename)
    return FileResponse(path, filename=filename)


@router.get("/all-captions/{session_id}")
def download_all_captions(
    session_id: str,
    storage: SessionStorage = Depends(get_storage),
):
    """Downloads every caption file of a session as a zip archive."""
    filename, archive = captions_archive(storage, validate_session_id(session_id))
    return zip_response(filename, archive)


@router.get("/all/{session_id}")
def download_all(
    session_id: str,
    format: DownloadFormat = Query(DownloadFormat.separate, description="separate | paired | flat"),
    storage: SessionStorage = Depends(get_storage),
):
    """Downloads all images and captions of a session as a zip archive."""
    filename, archive = session_archive(storage, validate_session_id(session_id), format)
    return zip_response(filename, archive)


@router.get("/status/{session_id}", response_model=DownloadStatus)
def get_download_status(
    session_id: str,
    storage: SessionStorage = Depends(get_storage),
):
    """Available files and download links of a session."""
    return download_status(storage, validate_session_id(session_id))


@router.post("/custom")
def download_custom(
    body: CustomDownloadRequest,
    storage: SessionStorage = Depends(get_storage),
):
    """Downloads a selection of images and captions as a zip archive."""
    session_id = validate_session_id(body.session_id)
    filename, archive = custom_archive(storage, session_id, body.image_files, body.caption_files)
    return zip_response(filename, archive)
