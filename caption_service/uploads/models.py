from typing import Dict, List, Optional
from datetime import datetime
from enum import Enum

from caption_service.models import CamelModel


class SessionStatus(str, Enum):
    uploaded = "uploaded"
    processing = "processing"
    captioned = "captioned"


class SessionRecord(CamelModel):
    session_id: str
    created_at: datetime
    updated_at: datetime
    status: SessionStatus = SessionStatus.uploaded
    files: List[str] = []


class UploadedFile(CamelModel):
    filename: str
    originalname: str
    mimetype: str
    size: int
    path: str


class SingleUploadResponse(CamelModel):
    message: str
    file: UploadedFile
    session_id: str


class UploadResponse(CamelModel):
    message: str
    files: List[UploadedFile]
    session_id: str


class FolderUploadResponse(UploadResponse):
    files_by_directory: Dict[str, List[UploadedFile]]


class SessionSummary(CamelModel):
    session_id: str
    file_count: int
    created_at: datetime
    status: SessionStatus


class SessionListResponse(CamelModel):
    sessions: List[SessionSummary]


class SessionFile(CamelModel):
    filename: str
    path: str
    size: int
    created_at: datetime


class SessionDetail(CamelModel):
    session_id: str
    file_count: int
    files: List[SessionFile]
    status: Optional[SessionStatus] = None
    created_at: Optional[datetime] = None


class DeleteSessionResponse(CamelModel):
    message: str
    session_id: str
