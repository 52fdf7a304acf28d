from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from io import BytesIO
from pathlib import PurePosixPath
import logging
from PIL import Image
from botocore.exceptions import BotoCoreError, ClientError

from caption_service.storage.dynamodb import DynamoDBService
from caption_service.storage.filesystem import SessionStorage
from caption_service.uploads.models import (
    SessionRecord,
    SessionStatus,
    UploadedFile,
    SessionSummary,
    SessionFile,
    SessionDetail,
)
from caption_service.settings import settings
from caption_service.exceptions import (
    InvalidImageException,
    InvalidRequestException,
    SessionNotFoundException,
    StorageException,
    DynamoDBException,
)

log = logging.getLogger(__name__)

# Allowed content types
ALLOWED_IMAGE_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
}

MIME_MAP = {
    "JPEG": "image/jpeg",
    "MPO": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}

# (original filename, declared content type, raw bytes)
IncomingFile = Tuple[str, Optional[str], bytes]


def validate_image_bytes(file_bytes: bytes, content_type: str) -> str:
    """Validate that the uploaded file is a real image of an allowed type."""
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise InvalidImageException(
            f"Invalid file type: {content_type}. Only image files are allowed."
        )
    if len(file_bytes) > settings.max_file_size:
        raise InvalidImageException(
            f"File too large: {len(file_bytes)} bytes (limit {settings.max_file_size})"
        )
    try:
        img = Image.open(BytesIO(file_bytes))
        img.load()
    except Exception:
        raise InvalidImageException("Invalid image file")
    mime_type = MIME_MAP.get((img.format or "").upper())
    if mime_type not in ALLOWED_IMAGE_TYPES:
        raise InvalidImageException(f"Unsupported image type: {img.format}")
    return mime_type


def stored_filename(originalname: str) -> str:
    """Folder uploads carry relative paths; only the basename is kept on disk."""
    name = PurePosixPath(originalname.replace("\\", "/")).name
    if not name or name in {".", ".."}:
        raise InvalidImageException(f"Invalid filename: {originalname}")
    return name


def save_uploads(
    db: DynamoDBService,
    storage: SessionStorage,
    session_id: str,
    files: List[IncomingFile],
    max_files: int,
) -> List[UploadedFile]:
    """Validates every file, writes them under the session's upload directory and records the session."""
    if not files:
        raise InvalidRequestException("No files uploaded")
    if len(files) > max_files:
        raise InvalidRequestException(f"Too many files: {len(files)} (limit {max_files})")

    # Reject the whole request before anything lands on disk
    validated = []
    for originalname, content_type, data in files:
        mimetype = validate_image_bytes(data, content_type)
        validated.append((originalname, stored_filename(originalname), mimetype, data))

    uploaded = []
    for originalname, filename, mimetype, data in validated:
        try:
            path = storage.save_upload(session_id, filename, data)
        except OSError as e:
            log.error(f"Writing {filename} failed: {e}")
            raise StorageException(f"Failed to store {filename}: {e}")
        uploaded.append(UploadedFile(
            filename=filename,
            originalname=originalname,
            mimetype=mimetype,
            size=len(data),
            path=str(path),
        ))

    record_session_files(db, session_id, [f.filename for f in uploaded])
    log.info(f"Stored {len(uploaded)} files in session {session_id}")
    return uploaded


def group_by_directory(files: List[UploadedFile]) -> Dict[str, List[UploadedFile]]:
    """Groups uploads by the directory part of their original (client-side) path."""
    groups: Dict[str, List[UploadedFile]] = {}
    for f in files:
        directory = str(PurePosixPath(f.originalname.replace("\\", "/")).parent)
        groups.setdefault(directory, []).append(f)
    return groups


def record_session_files(db: DynamoDBService, session_id: str, filenames: List[str]) -> SessionRecord:
    """Creates the session record or extends its file manifest."""
    now = datetime.now(timezone.utc)
    try:
        item = db.get_session(session_id)
        if item:
            record = _to_record(item)
            record.files = sorted(set(record.files) | set(filenames))
            record.updated_at = now
        else:
            record = SessionRecord(
                session_id=session_id,
                created_at=now,
                updated_at=now,
                files=sorted(set(filenames)),
            )
        db.put_session(_to_item(record))
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB put_session failed: {e}")
        raise DynamoDBException(f"Failed to save session record: {e}")
    return record


def set_session_status(db: DynamoDBService, session_id: str, status: SessionStatus):
    """Updates the status of an existing session record; sessions without a record are left alone."""
    try:
        if db.get_session(session_id) is None:
            return
        db.update_session(session_id, {
            "status": status.value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        })
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB update_session failed: {e}")
        raise DynamoDBException(f"Failed to update session record: {e}")


def get_session_record(db: DynamoDBService, session_id: str) -> Optional[SessionRecord]:
    try:
        item = db.get_session(session_id)
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB get_session failed: {e}")
        raise DynamoDBException(f"Failed to get session record: {e}")
    return _to_record(item) if item else None


def list_sessions(db: DynamoDBService, storage: SessionStorage) -> List[SessionSummary]:
    """
    Every session, newest first, with the file count currently on disk.

    Upload directories without a record are listed too, as ``uploaded``
    sessions dated by their directory.
    """
    try:
        items = db.scan_sessions()
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB scan_sessions failed: {e}")
        raise DynamoDBException(f"Failed to list sessions: {e}")

    sessions = []
    recorded = set()
    for item in items:
        record = _to_record(item)
        recorded.add(record.session_id)
        sessions.append(SessionSummary(
            session_id=record.session_id,
            file_count=len(storage.list_files(record.session_id)),
            created_at=record.created_at,
            status=record.status,
        ))

    for session_id in storage.list_session_ids():
        if session_id in recorded:
            continue
        ctime = storage.upload_dir(session_id).stat().st_ctime
        sessions.append(SessionSummary(
            session_id=session_id,
            file_count=len(storage.list_files(session_id)),
            created_at=datetime.fromtimestamp(ctime, tz=timezone.utc),
            status=SessionStatus.uploaded,
        ))
    sessions.sort(key=lambda s: s.created_at, reverse=True)
    return sessions


def get_session_detail(db: DynamoDBService, storage: SessionStorage, session_id: str) -> SessionDetail:
    record = get_session_record(db, session_id)
    if record is None and not storage.session_exists(session_id):
        raise SessionNotFoundException(session_id)

    files = [SessionFile(**f) for f in storage.list_files(session_id)]
    return SessionDetail(
        session_id=session_id,
        file_count=len(files),
        files=files,
        status=record.status if record else None,
        created_at=record.created_at if record else None,
    )


def remove_session(db: DynamoDBService, storage: SessionStorage, session_id: str) -> bool:
    """Removes session files, the session record and its caption jobs."""
    record = get_session_record(db, session_id)
    try:
        removed_files = storage.delete_session(session_id)
    except OSError as e:
        log.error(f"Deleting session {session_id} failed: {e}")
        raise StorageException(f"Failed to delete session files: {e}")

    if record is None and not removed_files:
        raise SessionNotFoundException(session_id)

    try:
        for job in db.query_jobs(session_id):
            db.delete_job(job["job_id"])
        db.delete_session(session_id)
    except (BotoCoreError, ClientError) as e:
        log.error(f"DynamoDB delete_session failed: {e}")
        raise DynamoDBException(f"Failed to delete session record: {e}")
    log.info(f"Deleted session {session_id}")
    return True


def _to_item(record: SessionRecord) -> dict:
    item = record.model_dump()
    # Dynamo needs datetimes as ISO strings
    item["created_at"] = record.created_at.isoformat()
    item["updated_at"] = record.updated_at.isoformat()
    item["status"] = record.status.value
    return item


def _to_record(item: dict) -> SessionRecord:
    return SessionRecord(
        session_id=item["session_id"],
        created_at=datetime.fromisoformat(item["created_at"]),
        updated_at=datetime.fromisoformat(item.get("updated_at", item["created_at"])),
        status=item.get("status", SessionStatus.uploaded.value),
        files=list(item.get("files", [])),
    )
