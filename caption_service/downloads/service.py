"""
Zip packaging of session images and captions.
"""
import io
import logging
import zipfile
from pathlib import Path
from typing import List, Tuple

from caption_service.storage.filesystem import SessionStorage, validate_filename
from caption_service.downloads.models import (
    DownloadFormat,
    DownloadLinks,
    DownloadStatus,
    ImageFileEntry,
    CaptionFileEntry,
)
from caption_service.exceptions import (
    FileNotFoundException,
    InvalidRequestException,
    SessionNotFoundException,
)

log = logging.getLogger(__name__)

# (source path on disk, name inside the archive)
ArchiveEntry = Tuple[Path, str]


def build_zip(entries: List[ArchiveEntry], compresslevel: int = 6) -> io.BytesIO:
    mem = io.BytesIO()
    with zipfile.ZipFile(mem, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=compresslevel) as zf:
        for source, arcname in entries:
            zf.write(source, arcname=arcname)
    mem.seek(0)
    return mem


def layout_entries(
    storage: SessionStorage,
    session_id: str,
    images: List[str],
    captions: List[str],
    fmt: DownloadFormat,
) -> List[ArchiveEntry]:
    """Maps images and captions to archive names for one of the three layouts."""
    if fmt == DownloadFormat.separate:
        return (
            [(storage.image_path(session_id, f), f"images/{f}") for f in images]
            + [(storage.caption_path(session_id, f), f"captions/{f}") for f in captions]
        )

    if fmt == DownloadFormat.paired:
        by_basename = {Path(f).stem: f for f in captions}
        entries = []
        paired = set()
        for f in images:
            base = Path(f).stem
            entries.append((storage.image_path(session_id, f), f"{base}/{f}"))
            # a.jpg and a.png share a/ and a single a.txt
            if base in by_basename and base not in paired:
                paired.add(base)
                caption = by_basename[base]
                entries.append((storage.caption_path(session_id, caption), f"{base}/{caption}"))
        return entries

    return (
        [(storage.image_path(session_id, f), f) for f in images]
        + [(storage.caption_path(session_id, f), f) for f in captions]
    )


def session_archive(storage: SessionStorage, session_id: str, fmt: DownloadFormat) -> Tuple[str, io.BytesIO]:
    """All images and captions of a session."""
    if not storage.session_exists(session_id):
        raise SessionNotFoundException(session_id)
    entries = layout_entries(
        storage, session_id, storage.list_images(session_id), storage.list_captions(session_id), fmt
    )
    log.info(f"Packaging {len(entries)} files of session {session_id} as {fmt.value}")
    return f"lora-training-{session_id}.zip", build_zip(entries)


def captions_archive(storage: SessionStorage, session_id: str) -> Tuple[str, io.BytesIO]:
    """Every caption file at the archive root."""
    if not storage.results_exist(session_id):
        raise FileNotFoundException("No results found for this session")
    captions = storage.list_captions(session_id)
    if not captions:
        raise FileNotFoundException("No caption files found for this session")
    entries = [(storage.caption_path(session_id, f), f) for f in captions]
    return f"captions-{session_id}.zip", build_zip(entries, compresslevel=9)


def custom_archive(
    storage: SessionStorage,
    session_id: str,
    image_files: List[str],
    caption_files: List[str],
) -> Tuple[str, io.BytesIO]:
    """Selected files in the ``separate`` layout; names that do not exist are skipped."""
    if not image_files and not caption_files:
        raise InvalidRequestException("No files selected for download")
    if not storage.session_exists(session_id):
        raise SessionNotFoundException(session_id)

    entries = []
    for f in image_files:
        path = storage.image_path(session_id, f)
        if path.is_file():
            entries.append((path, f"images/{f}"))
    for f in caption_files:
        path = storage.caption_path(session_id, f)
        if path.is_file():
            entries.append((path, f"captions/{f}"))
    return f"custom-lora-{session_id}.zip", build_zip(entries)


def resolve_image(storage: SessionStorage, session_id: str, filename: str) -> Path:
    path = storage.image_path(session_id, validate_filename(filename))
    if not path.is_file():
        raise FileNotFoundException("Image file not found")
    return path


def resolve_caption(storage: SessionStorage, session_id: str, filename: str) -> Path:
    path = storage.caption_path(session_id, validate_filename(filename))
    if not path.is_file():
        raise FileNotFoundException("Caption file not found")
    return path


def download_status(storage: SessionStorage, session_id: str) -> DownloadStatus:
    if not storage.session_exists(session_id):
        raise SessionNotFoundException(session_id)

    images = storage.list_images(session_id)
    captions = storage.list_captions(session_id)
    image_by_basename = {Path(f).stem: f for f in images}

    image_files = [
        ImageFileEntry(
            name=f,
            path=f"/api/download/image/{session_id}/{f}",
            size=storage.image_path(session_id, f).stat().st_size,
        )
        for f in images
    ]
    caption_files = [
        CaptionFileEntry(
            name=f,
            path=f"/api/download/caption/{session_id}/{f}",
            size=storage.caption_path(session_id, f).stat().st_size,
            image_file=image_by_basename.get(Path(f).stem),
        )
        for f in captions
    ]
    caption_basenames = {Path(f).stem for f in captions}

    return DownloadStatus(
        session_id=session_id,
        image_count=len(images),
        caption_count=len(captions),
        all_captioned=bool(images) and all(Path(f).stem in caption_basenames for f in images),
        download_links=DownloadLinks(
            all_captions=f"/api/download/all-captions/{session_id}",
            all_files_separate=f"/api/download/all/{session_id}?format=separate",
            all_files_paired=f"/api/download/all/{session_id}?format=paired",
            all_files_flat=f"/api/download/all/{session_id}?format=flat",
        ),
        image_files=image_files,
        caption_files=caption_files,
    )
