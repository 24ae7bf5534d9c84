from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PersonaRole(str, Enum):
    HOST = "host"
    GUEST = "guest"
    NARRATOR = "narrator"


class PersonaGender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    NEUTRAL = "neutral"


class SourceType(str, Enum):
    TEXT = "text"
    URL = "url"
    YOUTUBE = "youtube"
    PDF = "pdf"


class EpisodeStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({EpisodeStatus.COMPLETED, EpisodeStatus.FAILED, EpisodeStatus.CANCELLED})


class Persona(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Speaker name shown in the script")
    role: PersonaRole = PersonaRole.GUEST
    gender: PersonaGender | None = None
    voice_id: str | None = Field(default=None, description="Server-side voice identifier, if pinned.")
    personality: str | None = Field(default=None, description="Free-text speaking style")

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("persona name must not be blank")
        return value


class EpisodeCreateRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1)
    description: str | None = None
    source_type: SourceType = SourceType.TEXT
    source_url: str | None = None
    source_content: str | None = None
    personas: tuple[Persona, ...] = Field(..., min_length=1, max_length=4)
    generate_cover: bool = True


class Episode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str | None = None
    title: str
    description: str | None = None
    source_type: str | None = None
    source_url: str | None = None
    personas: list[Persona] = Field(default_factory=list)
    audio_url: str | None = None
    cover_url: str | None = None
    duration_seconds: float | None = None
    word_count: int | None = None
    job_id: str | None = None
    status: EpisodeStatus = EpisodeStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    status_message: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    job_id: str
    episode_id: str | None = None
    status: EpisodeStatus
    progress: int = 0
    message: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp_progress(cls, value: Any) -> int:
        if value is None:
            return 0
        return max(0, min(100, int(value)))


class EpisodeListResponse(BaseModel):
    episodes: list[Episode] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 20
    total_pages: int = 1


class TranscriptResponse(BaseModel):
    episode_id: str
    title: str
    script: str | None = None
    transcript: str | None = None
    word_count: int | None = None

    @property
    def text(self) -> str | None:
        return self.script or self.transcript or None


class ExportResponse(BaseModel):
    episode_id: str
    audio_url: str | None = None
    transcript_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str
    version: str | None = None
