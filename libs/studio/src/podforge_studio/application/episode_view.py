from __future__ import annotations

import asyncio

from podforge_contracts.episode import Episode, EpisodeStatus
from podforge_contracts.errors import PodforgeError
from podforge_studio.application.playback import AudioPlaybackManager
from podforge_studio.application.poller import StatusPoller
from podforge_studio.application.ports import EpisodeApi
from podforge_studio.application.store import EpisodeStore
from podforge_studio.domain.models import AudioSession, PollingHandle
from podforge_studio.infrastructure.logging import bind_episode, get_logger, unbind_episode

log = get_logger(__name__)


class EpisodeView:
    """Lifecycle of one displayed episode.

    ``enter`` fetches the episode and polls it while it is pending or
    processing; ``exit`` stops the poll session and closes playback. Entering
    another episode exits the current one first.
    """

    def __init__(
        self,
        *,
        api: EpisodeApi,
        store: EpisodeStore,
        poller: StatusPoller,
        playback: AudioPlaybackManager,
    ) -> None:
        self.api = api
        self.store = store
        self.poller = poller
        self.playback = playback
        self.episode_id: str | None = None
        self.fetch_error: str | None = None
        self.transcript: str | None = None
        self.terminal = asyncio.Event()
        self._handle: PollingHandle | None = None
        self._followups: set[asyncio.Task] = set()
        self._load_task: asyncio.Task | None = None

    @property
    def episode(self) -> Episode | None:
        current = self.store.current
        if current is not None and current.id == self.episode_id:
            return current
        return None

    @property
    def is_polling(self) -> bool:
        return self._handle is not None and self._handle.active

    async def enter(self, episode_id: str) -> Episode | None:
        if self.episode_id is not None:
            self.exit()
        self.episode_id = episode_id
        self.terminal = asyncio.Event()
        bind_episode(episode_id)
        return await self._run_load()

    async def retry(self) -> Episode | None:
        if self.episode_id is None:
            return None
        return await self._run_load()

    async def _run_load(self) -> Episode | None:
        if self._load_task is not None:
            self._load_task.cancel()
        task = asyncio.ensure_future(self._load())
        self._load_task = task
        try:
            return await task
        except asyncio.CancelledError:
            # Superseded by exit or another enter; the caller itself was not cancelled.
            if task.cancelled() and not asyncio.current_task().cancelling():
                return None
            raise
        finally:
            if self._load_task is task:
                self._load_task = None

    async def _load(self) -> Episode | None:
        episode_id = self.episode_id
        self.fetch_error = None
        try:
            episode = await self.store.fetch_one(episode_id)
        except PodforgeError as exc:
            self.fetch_error = str(exc) or "Failed to load episode. Please try again later."
            log.error("view.fetch_failed episode=%s error=%s", episode_id, exc)
            return None
        if episode_id != self.episode_id:
            return None

        if episode.is_terminal:
            self.terminal.set()
            if episode.status is EpisodeStatus.COMPLETED:
                await self._load_transcript(episode_id)
        elif not self.is_polling:
            self._handle = self.store.watch(episode_id, self.poller, on_terminal=self._on_terminal)
        return episode

    def _on_terminal(self, status: EpisodeStatus) -> None:
        episode_id = self.episode_id
        if episode_id is None:
            return
        log.info("view.terminal episode=%s status=%s", episode_id, status.value)
        task = asyncio.ensure_future(self._refresh_after_terminal(episode_id, status))
        self._followups.add(task)
        task.add_done_callback(self._followups.discard)

    async def _refresh_after_terminal(self, episode_id: str, status: EpisodeStatus) -> None:
        try:
            await self.store.fetch_one(episode_id)
            if status is EpisodeStatus.COMPLETED and episode_id == self.episode_id:
                await self._load_transcript(episode_id)
        except PodforgeError as exc:
            self.fetch_error = str(exc)
            log.error("view.refresh_failed episode=%s error=%s", episode_id, exc)
        finally:
            if episode_id == self.episode_id:
                self.terminal.set()

    async def _load_transcript(self, episode_id: str) -> None:
        try:
            transcript = await self.api.get_transcript(episode_id)
        except PodforgeError as exc:
            log.warning("view.transcript_failed episode=%s error=%s", episode_id, exc)
            return
        if episode_id == self.episode_id:
            self.transcript = transcript.text

    async def play(self) -> AudioSession | None:
        episode = self.episode
        if episode is None or episode.status is not EpisodeStatus.COMPLETED:
            return None
        session = await self.playback.open(self.api.audio_url(episode.id))
        if session.ready:
            self.playback.play()
        return session

    def on_visibility_change(self, hidden: bool) -> None:
        self.playback.on_visibility_change(hidden)

    def on_unload(self) -> None:
        self.playback.on_unload()

    def exit(self) -> None:
        if self._load_task is not None:
            self._load_task.cancel()
            self._load_task = None
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self.episode_id is not None:
            self.poller.stop(self.episode_id)
        for task in list(self._followups):
            task.cancel()
        self._followups.clear()
        self.playback.close()
        log.debug("view.exit episode=%s", self.episode_id)
        self.episode_id = None
        self.transcript = None
        self.fetch_error = None
        unbind_episode()
