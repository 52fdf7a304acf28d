from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from enum import Enum

from pydantic import Field, computed_field, field_validator

from caption_service.models import CamelModel


class JobState(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class JobKind(str, Enum):
    generate = "generate"
    batch = "batch"


class CaptionJob(CamelModel):
    job_id: str
    session_id: str
    kind: JobKind
    state: JobState = JobState.pending
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---- per-file outcomes ----

class CaptionSuccess(CamelModel):
    status: Literal["success"] = "success"
    file: str
    output_path: str
    caption: str


class CaptionFailure(CamelModel):
    status: Literal["failed"] = "failed"
    file: str
    error: str


class CaptionCancelled(CamelModel):
    status: Literal["cancelled"] = "cancelled"
    file: str


CaptionOutcome = Annotated[
    Union[CaptionSuccess, CaptionFailure, CaptionCancelled],
    Field(discriminator="status"),
]


# ---- requests ----

class GenerateRequest(CamelModel):
    session_id: Optional[str] = None
    api_key: Optional[str] = None
    global_tags: Optional[str] = ""
    max_tokens: Optional[int] = Field(None, ge=1, le=4096)
    job_id: Optional[str] = None

    @field_validator("global_tags")
    @classmethod
    def empty_when_null(cls, v: Optional[str]) -> str:
        return v or ""


class BatchRequest(GenerateRequest):
    file_indices: Optional[List[int]] = None


class GlobalTagsRequest(CamelModel):
    session_id: Optional[str] = None
    global_tags: Optional[str] = None


# ---- responses ----

class GenerateResponse(CamelModel):
    message: str
    session_id: str
    job_id: str
    state: JobState
    outcomes: List[CaptionOutcome] = Field(default_factory=list)

    @computed_field
    @property
    def results(self) -> List[CaptionSuccess]:
        return [o for o in self.outcomes if isinstance(o, CaptionSuccess)]

    @computed_field
    @property
    def errors(self) -> List[CaptionFailure]:
        return [o for o in self.outcomes if isinstance(o, CaptionFailure)]


class TagUpdate(CamelModel):
    file: str
    updated_caption: str
    added_tags: List[str]


class TagUpdateError(CamelModel):
    file: str
    error: str


class GlobalTagsResponse(CamelModel):
    message: str
    session_id: str
    results: List[TagUpdate]
    errors: List[TagUpdateError]


class CaptionStatus(CamelModel):
    session_id: str
    total_images: int
    processed_images: int
    progress: int
    is_complete: bool
    status: Literal["complete", "in-progress"]
    job: Optional[CaptionJob] = None


class CancelResponse(CamelModel):
    message: str
    cancelled_jobs: List[str]
