from typing import List, Optional
from enum import Enum

from caption_service.models import CamelModel


class DownloadFormat(str, Enum):
    separate = "separate"
    paired = "paired"
    flat = "flat"


class CustomDownloadRequest(CamelModel):
    session_id: Optional[str] = None
    image_files: List[str] = []
    caption_files: List[str] = []


class ImageFileEntry(CamelModel):
    name: str
    path: str
    size: int


class CaptionFileEntry(CamelModel):
    name: str
    path: str
    size: int
    image_file: Optional[str] = None


class DownloadLinks(CamelModel):
    all_captions: str
    all_files_separate: str
    all_files_paired: str
    all_files_flat: str


class DownloadStatus(CamelModel):
    session_id: str
    image_count: int
    caption_count: int
    all_captioned: bool
    download_links: DownloadLinks
    image_files: List[ImageFileEntry]
    caption_files: List[CaptionFileEntry]
