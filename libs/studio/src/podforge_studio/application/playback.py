from __future__ import annotations

import asyncio
from typing import Any, Awaitable, TypeVar
from urllib.parse import urlparse

from podforge_contracts.errors import ResourceError
from podforge_studio.application.ports import AudioFetcher, BlobStore, DecoderFactory
from podforge_studio.domain.models import AudioSession, PlaybackState
from podforge_studio.infrastructure.logging import get_logger
from podforge_studio.infrastructure.metrics import (
    audio_session_closed,
    audio_session_failed,
    audio_session_opened,
)

log = get_logger(__name__)

T = TypeVar("T")

_TRANSPORT_STATES = {PlaybackState.READY, PlaybackState.PLAYING, PlaybackState.PAUSED, PlaybackState.ENDED}


class _Superseded(Exception):
    """The session was closed while one of its load steps was pending."""


class AudioPlaybackManager:
    """Owns one "now playing" session.

    ``open`` fetches the audio with auth headers, materialises a local blob and
    hands it to a decoder. The session owns the blob and the decoder and
    ``close`` releases both, whatever state playback is in. Transport calls
    made before the decoder is ready are ignored.
    """

    def __init__(
        self,
        *,
        fetch: AudioFetcher,
        blobs: BlobStore,
        decoder_factory: DecoderFactory,
        initial_volume: float = 0.8,
    ) -> None:
        self._fetch = fetch
        self._blobs = blobs
        self._decoder_factory = decoder_factory
        self._volume = _clamp(initial_volume, 0.0, 1.0)
        self._muted = False
        self._session: AudioSession | None = None
        self.last_error: ResourceError | None = None

    async def __aenter__(self) -> "AudioPlaybackManager":
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()

    # State

    @property
    def session(self) -> AudioSession | None:
        return self._session

    @property
    def state(self) -> PlaybackState:
        return self._session.state if self._session else PlaybackState.IDLE

    @property
    def ready(self) -> bool:
        return self._session is not None and self._session.ready

    @property
    def is_playing(self) -> bool:
        return self.state is PlaybackState.PLAYING

    @property
    def position(self) -> float:
        return self._session.position_seconds if self._session else 0.0

    @property
    def duration(self) -> float:
        return self._session.duration_seconds if self._session else 0.0

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def is_muted(self) -> bool:
        return self._muted

    # Lifecycle

    async def open(self, source_url: str) -> AudioSession:
        self.close()
        self.last_error = None
        session = AudioSession(source_url=source_url, volume=self._volume, is_muted=self._muted)
        self._session = session
        audio_session_opened()
        log.info("playback.open url=%s", source_url)

        try:
            data = await self._step(session, self._fetch(source_url))
            session.blob_handle = self._blobs.create(data, suffix=_suffix_for(source_url))
            decoder = self._decoder_factory()
            session.decoder = decoder
            decoder.on_finish(lambda: self._handle_finish(session))
            duration = await self._step(session, decoder.load(session.blob_handle.path))
        except _Superseded:
            log.debug("playback.open_superseded url=%s", source_url)
            return session
        except asyncio.CancelledError:
            self._release(session)
            raise
        except Exception as exc:
            audio_session_failed()
            self.last_error = ResourceError(f"Failed to load audio: {exc}")
            log.error("playback.load_failed url=%s error=%s", source_url, exc)
            self._release(session)
            raise self.last_error from exc

        session.duration_seconds = max(0.0, float(duration))
        session.ready = True
        session.state = PlaybackState.READY
        self._apply_volume(session)
        log.info("playback.ready url=%s duration=%.2f", source_url, session.duration_seconds)
        return session

    async def _step(self, session: AudioSession, awaitable: Awaitable[T]) -> T:
        """Await one load step as a task that ``close`` can cancel."""
        task: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
        session.load_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            session.load_task = None
        if task.cancelled() or session.closed:
            raise _Superseded()
        return task.result()

    def close(self) -> None:
        session = self._session
        if session is None:
            return
        self._release(session)

    def _release(self, session: AudioSession) -> None:
        if session.closed:
            return
        session.closed = True
        if self._session is session:
            self._session = None

        if session.load_task is not None and not session.load_task.done():
            session.load_task.cancel()

        decoder = session.decoder
        if decoder is not None:
            try:
                if decoder.is_playing():
                    decoder.pause()
                decoder.stop()
            except Exception:
                log.warning("playback.stop_failed url=%s", session.source_url, exc_info=True)
            try:
                decoder.destroy()
            except Exception:
                log.warning("playback.destroy_failed url=%s", session.source_url, exc_info=True)
            session.decoder = None

        if session.blob_handle is not None:
            try:
                self._blobs.revoke(session.blob_handle)
            except Exception:
                log.warning("playback.revoke_failed url=%s", session.source_url, exc_info=True)
            session.blob_handle = None

        session.ready = False
        session.state = PlaybackState.IDLE
        audio_session_closed()
        log.info("playback.close url=%s", session.source_url)

    # Transport

    def _live(self) -> AudioSession | None:
        session = self._session
        if session is None or not session.ready or session.decoder is None:
            return None
        if session.state not in _TRANSPORT_STATES:
            return None
        return session

    def play(self) -> None:
        session = self._live()
        if session is None:
            return
        if session.state is PlaybackState.ENDED:
            session.decoder.seek(0.0)
        session.decoder.play()
        session.state = PlaybackState.PLAYING

    def pause(self) -> None:
        session = self._live()
        if session is None or session.state is not PlaybackState.PLAYING:
            return
        session.decoder.pause()
        session.state = PlaybackState.PAUSED

    def toggle(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def seek_to(self, seconds: float) -> None:
        session = self._live()
        if session is None:
            return
        target = _clamp(seconds, 0.0, session.duration_seconds)
        session.decoder.seek(target)
        if session.state is PlaybackState.ENDED and target < session.duration_seconds:
            session.state = PlaybackState.PAUSED

    def skip(self, delta_seconds: float) -> None:
        session = self._live()
        if session is None:
            return
        self.seek_to(session.decoder.current_time() + delta_seconds)

    def set_volume(self, volume: float) -> None:
        self._volume = _clamp(volume, 0.0, 1.0)
        if self._volume > 0 and self._muted:
            self._muted = False
        self._sync_settings()

    def mute(self) -> None:
        self._muted = True
        self._sync_settings()

    def unmute(self) -> None:
        self._muted = False
        self._sync_settings()

    def toggle_mute(self) -> None:
        if self._muted:
            self.unmute()
        else:
            self.mute()

    def _sync_settings(self) -> None:
        session = self._session
        if session is None:
            return
        session.volume = self._volume
        session.is_muted = self._muted
        if session.ready:
            self._apply_volume(session)

    def _apply_volume(self, session: AudioSession) -> None:
        if session.decoder is not None:
            session.decoder.set_volume(0.0 if self._muted else self._volume)

    def _handle_finish(self, session: AudioSession) -> None:
        if session is not self._session or session.closed:
            return
        session.state = PlaybackState.ENDED
        log.debug("playback.ended url=%s", session.source_url)

    # Host context events

    def on_visibility_change(self, hidden: bool) -> None:
        if hidden and self.is_playing:
            log.debug("playback.pause_hidden")
            self.pause()

    def on_unload(self) -> None:
        try:
            self.pause()
        except Exception:
            log.warning("playback.unload_pause_failed", exc_info=True)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _suffix_for(url: str) -> str:
    path = urlparse(url).path
    name = path.rsplit("/", 1)[-1]
    if "." in name:
        return "." + name.rsplit(".", 1)[-1]
    return ".mp3"
