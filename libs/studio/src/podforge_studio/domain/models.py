from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from podforge_contracts.episode import (
    EpisodeCreateRequest,
    Persona,
    PersonaGender,
    PersonaRole,
    SourceType,
)

if TYPE_CHECKING:
    from podforge_studio.application.ports import AudioDecoder


@dataclass(frozen=True)
class Credentials:
    user_id: str
    access_token: str
    expires_at: int | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return self.expires_at < int(current)


@dataclass
class PersonaDraft:
    name: str = ""
    role: PersonaRole = PersonaRole.GUEST
    gender: PersonaGender | None = PersonaGender.MALE
    personality: str = ""
    voice_id: str | None = None

    def to_persona(self) -> Persona:
        return Persona(
            name=self.name,
            role=self.role,
            gender=self.gender,
            voice_id=self.voice_id,
            personality=self.personality or None,
        )

    @classmethod
    def from_persona(cls, persona: Persona) -> "PersonaDraft":
        return cls(
            name=persona.name,
            role=persona.role,
            gender=persona.gender,
            personality=persona.personality or "",
            voice_id=persona.voice_id,
        )


def default_personas() -> List[PersonaDraft]:
    return [
        PersonaDraft(
            name="Alex",
            role=PersonaRole.HOST,
            gender=PersonaGender.MALE,
            personality="Friendly and curious, speaks with enthusiasm and asks thoughtful questions. "
            "Uses casual language and occasional humor.",
        ),
        PersonaDraft(
            name="Sam",
            role=PersonaRole.GUEST,
            gender=PersonaGender.FEMALE,
            personality="Expert and insightful, provides deep analysis with clear explanations. "
            "Speaks confidently and uses professional yet accessible language.",
        ),
    ]


@dataclass
class EpisodeDraft:
    title: str = ""
    description: str = ""
    source_type: SourceType = SourceType.TEXT
    source_url: str = ""
    source_content: str = ""
    personas: List[PersonaDraft] = field(default_factory=default_personas)
    generate_cover: bool = True

    def to_request(self) -> EpisodeCreateRequest:
        return EpisodeCreateRequest(
            title=self.title.strip(),
            description=self.description or None,
            source_type=self.source_type,
            source_url=self.source_url or None,
            source_content=self.source_content or None,
            personas=tuple(p.to_persona() for p in self.personas),
            generate_cover=self.generate_cover,
        )


class WizardStep(IntEnum):
    SOURCE = 0
    PERSONAS = 1
    PREVIEW = 2
    GENERATE = 3

    @property
    def title(self) -> str:
        return _STEP_COPY[self][0]

    @property
    def description(self) -> str:
        return _STEP_COPY[self][1]


_STEP_COPY = {
    WizardStep.SOURCE: ("Content Source", "Choose your content"),
    WizardStep.PERSONAS: ("Personas", "Configure speakers"),
    WizardStep.PREVIEW: ("Preview", "Review your podcast"),
    WizardStep.GENERATE: ("Generate", "Create your episode"),
}


@dataclass
class WizardState:
    step_index: int = 0
    draft: EpisodeDraft = field(default_factory=EpisodeDraft)


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    def messages(self) -> list[str]:
        return [e.message for e in self.errors]

    @classmethod
    def fail(cls, field_name: str, message: str) -> "ValidationResult":
        return cls(errors=(FieldError(field_name, message),))


@dataclass(frozen=True)
class SubmitResult:
    request: EpisodeCreateRequest | None = None
    errors: tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.request is not None and not self.errors


@dataclass
class PollingSession:
    episode_id: str
    timer_handle: Optional[asyncio.TimerHandle] = None
    request_task: Optional[asyncio.Task] = None
    active: bool = True
    failures: int = 0

    @property
    def in_flight(self) -> bool:
        return self.request_task is not None and not self.request_task.done()


@dataclass
class PollingHandle:
    """Cancellation token returned by ``StatusPoller.start``."""

    episode_id: str
    _session: PollingSession
    _cancel: Callable[[PollingSession], None]

    @property
    def active(self) -> bool:
        return self._session.active

    def cancel(self) -> None:
        self._cancel(self._session)


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass(frozen=True)
class BlobHandle:
    url: str
    path: str
    size: int


@dataclass
class AudioSession:
    source_url: str
    blob_handle: BlobHandle | None = None
    decoder: Optional["AudioDecoder"] = None
    is_muted: bool = False
    volume: float = 0.8
    duration_seconds: float = 0.0
    ready: bool = False
    state: PlaybackState = PlaybackState.LOADING
    load_task: Optional[asyncio.Future[Any]] = None
    closed: bool = False

    @property
    def is_playing(self) -> bool:
        return self.state is PlaybackState.PLAYING

    @property
    def position_seconds(self) -> float:
        if self.decoder is None or not self.ready:
            return 0.0
        return self.decoder.current_time()
