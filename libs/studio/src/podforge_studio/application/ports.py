from __future__ import annotations

from typing import Awaitable, Callable, Protocol

from podforge_contracts.episode import (
    Episode,
    EpisodeCreateRequest,
    EpisodeListResponse,
    JobStatus,
    TranscriptResponse,
)
from podforge_studio.domain.models import BlobHandle, Credentials


class EpisodeApi(Protocol):
    async def create_episode(self, request: EpisodeCreateRequest) -> Episode: ...
    async def list_episodes(self, page: int = 1, per_page: int = 20, status: str | None = None) -> EpisodeListResponse: ...
    async def get_episode(self, episode_id: str) -> Episode: ...
    async def get_episode_status(self, episode_id: str) -> JobStatus: ...
    async def delete_episode(self, episode_id: str) -> None: ...
    async def get_transcript(self, episode_id: str) -> TranscriptResponse: ...
    async def fetch_audio(self, url: str) -> bytes: ...
    def audio_url(self, episode_id: str) -> str: ...


class StatusSource(Protocol):
    async def get_episode_status(self, episode_id: str) -> JobStatus: ...


AudioFetcher = Callable[[str], Awaitable[bytes]]


class BlobStore(Protocol):
    def create(self, data: bytes, *, suffix: str = "") -> BlobHandle: ...
    def revoke(self, handle: BlobHandle) -> None: ...


class AudioDecoder(Protocol):
    """Waveform/decoder engine bound to one local blob."""

    async def load(self, path: str) -> float:
        """Decode the file and return its duration in seconds."""

    def play(self) -> None: ...
    def pause(self) -> None: ...
    def stop(self) -> None: ...
    def seek(self, seconds: float) -> None: ...
    def set_volume(self, volume: float) -> None: ...
    def current_time(self) -> float: ...
    def is_playing(self) -> bool: ...
    def on_finish(self, callback: Callable[[], None]) -> None: ...
    def destroy(self) -> None: ...


DecoderFactory = Callable[[], AudioDecoder]


class AuthProvider(Protocol):
    """External identity provider; only the credential shape is consumed."""

    async def get_credentials(self) -> Credentials | None: ...
    async def refresh(self) -> Credentials | None: ...
    async def sign_out(self) -> None: ...
    def on_auth_change(self, listener: Callable[[Credentials | None], None]) -> Callable[[], None]:
        """Register ``listener`` and return a function that unregisters it."""


class CredentialSink(Protocol):
    def set_auth(self, credentials: Credentials) -> None: ...
    def clear_auth(self) -> None: ...


class ShareTarget(Protocol):
    def can_share(self, payload: dict[str, str]) -> bool: ...
    async def share(self, payload: dict[str, str]) -> None: ...


class Clipboard(Protocol):
    async def write_text(self, text: str) -> None: ...
