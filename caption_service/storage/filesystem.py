import shutil
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Any

from caption_service.settings import settings
from caption_service.exceptions import InvalidRequestException

log = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}
CAPTION_EXTENSION = ".txt"


def is_image_file(name: str) -> bool:
    return Path(name).suffix.lower() in IMAGE_EXTENSIONS


def is_caption_file(name: str) -> bool:
    return Path(name).suffix.lower() == CAPTION_EXTENSION


def caption_name_for(image_name: str) -> str:
    """Caption files pair with images by basename only."""
    return f"{Path(image_name).stem}{CAPTION_EXTENSION}"


def validate_session_id(session_id: str) -> str:
    """Session ids become directory names, so they must be a single path segment."""
    if not session_id or not session_id.strip():
        raise InvalidRequestException("Session ID is required")
    if "/" in session_id or "\\" in session_id or session_id in {".", ".."}:
        raise InvalidRequestException(f"Invalid session ID: {session_id}")
    return session_id


def validate_filename(filename: str) -> str:
    if not filename or "/" in filename or "\\" in filename or filename in {".", ".."}:
        raise InvalidRequestException(f"Invalid filename: {filename}")
    return filename


# -------------------------
# Session file store
# -------------------------
class SessionStorage:
    """Uploads live under ``uploads/<session_id>/``, captions under ``results/<session_id>/``."""

    def __init__(self, uploads_dir: Path = None, results_dir: Path = None):
        self.uploads_dir = Path(uploads_dir or settings.uploads_dir)
        self.results_dir = Path(results_dir or settings.results_dir)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)
        log.info(f"Initialized session storage (uploads={self.uploads_dir}, results={self.results_dir})")

    def upload_dir(self, session_id: str) -> Path:
        return self.uploads_dir / validate_session_id(session_id)

    def result_dir(self, session_id: str) -> Path:
        return self.results_dir / validate_session_id(session_id)

    def session_exists(self, session_id: str) -> bool:
        return self.upload_dir(session_id).is_dir()

    def results_exist(self, session_id: str) -> bool:
        return self.result_dir(session_id).is_dir()

    def list_session_ids(self) -> List[str]:
        return sorted(p.name for p in self.uploads_dir.iterdir() if p.is_dir())

    # ---- uploads ----

    def save_upload(self, session_id: str, filename: str, data: bytes) -> Path:
        session_dir = self.upload_dir(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)
        path = session_dir / validate_filename(filename)
        path.write_bytes(data)
        log.debug(f"Stored {path} ({len(data)} bytes)")
        return path

    def list_files(self, session_id: str) -> List[Dict[str, Any]]:
        """Every regular file in the upload directory, with size and creation time."""
        session_dir = self.upload_dir(session_id)
        if not session_dir.is_dir():
            return []
        files = []
        for path in sorted(session_dir.iterdir()):
            if not path.is_file():
                continue
            stat = path.stat()
            files.append({
                "filename": path.name,
                "path": str(path),
                "size": stat.st_size,
                "created_at": datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc),
            })
        return files

    def list_images(self, session_id: str) -> List[str]:
        session_dir = self.upload_dir(session_id)
        if not session_dir.is_dir():
            return []
        return sorted(p.name for p in session_dir.iterdir() if p.is_file() and is_image_file(p.name))

    def image_path(self, session_id: str, filename: str) -> Path:
        return self.upload_dir(session_id) / validate_filename(filename)

    # ---- captions ----

    def list_captions(self, session_id: str) -> List[str]:
        result_dir = self.result_dir(session_id)
        if not result_dir.is_dir():
            return []
        return sorted(p.name for p in result_dir.iterdir() if p.is_file() and is_caption_file(p.name))

    def caption_path(self, session_id: str, filename: str) -> Path:
        return self.result_dir(session_id) / validate_filename(filename)

    def read_caption(self, session_id: str, filename: str) -> str:
        return self.caption_path(session_id, filename).read_text(encoding="utf-8")

    def write_caption(self, session_id: str, image_name: str, caption: str) -> Path:
        result_dir = self.result_dir(session_id)
        result_dir.mkdir(parents=True, exist_ok=True)
        path = result_dir / caption_name_for(image_name)
        path.write_text(caption, encoding="utf-8")
        log.debug(f"Wrote caption {path}")
        return path

    def overwrite_caption(self, session_id: str, filename: str, caption: str) -> Path:
        path = self.caption_path(session_id, filename)
        path.write_text(caption, encoding="utf-8")
        return path

    # ---- lifecycle ----

    def delete_session(self, session_id: str) -> bool:
        """Removes upload and result directories. Returns False if neither existed."""
        removed = False
        for directory in (self.upload_dir(session_id), self.result_dir(session_id)):
            if directory.is_dir():
                shutil.rmtree(directory)
                removed = True
        if removed:
            log.info(f"Deleted session files for {session_id}")
        return removed

    def close(self):
        log.info("Closed session storage")
