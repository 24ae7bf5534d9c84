from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from podforge_contracts.episode import Episode, EpisodeCreateRequest, EpisodeStatus, JobStatus
from podforge_contracts.errors import PodforgeError
from podforge_studio.application.export import download_audio
from podforge_studio.application.ports import EpisodeApi
from podforge_studio.application.poller import StatusPoller
from podforge_studio.domain.models import PollingHandle
from podforge_studio.infrastructure.logging import get_logger

log = get_logger(__name__)


class EpisodeStore:
    """Canonical episode list plus the episode currently being viewed.

    Status updates from the poller only touch status, progress and the
    message/error fields; every other field comes from full episode fetches.
    ``error`` is a single advisory slot for display, overwritten by each
    failing operation.
    """

    def __init__(self, api: EpisodeApi, *, per_page: int = 20) -> None:
        self.api = api
        self.per_page = per_page
        self._episodes: list[Episode] = []
        self._current: Episode | None = None
        self.error: str | None = None
        self.is_loading = False
        self.page = 1
        self.total_pages = 1
        self.total = 0

    @property
    def episodes(self) -> list[Episode]:
        return list(self._episodes)

    @property
    def current(self) -> Episode | None:
        return self._current

    def get(self, episode_id: str) -> Episode | None:
        for ep in self._episodes:
            if ep.id == episode_id:
                return ep
        if self._current is not None and self._current.id == episode_id:
            return self._current
        return None

    def set_current(self, episode: Episode | None) -> None:
        self._current = episode

    def clear_error(self) -> None:
        self.error = None

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        self.is_loading = True
        self.error = None
        try:
            yield
        except PodforgeError as exc:
            self.error = str(exc)
            log.warning("store.%s_failed error=%s", name, exc)
            raise
        finally:
            self.is_loading = False

    async def list(self, page: int = 1, status: EpisodeStatus | str | None = None) -> list[Episode]:
        status_value = status.value if isinstance(status, EpisodeStatus) else status
        with self._operation("list"):
            response = await self.api.list_episodes(page=page, per_page=self.per_page, status=status_value)
        self._episodes = list(response.episodes)
        self.page = response.page
        self.total_pages = response.total_pages
        self.total = response.total
        return self.episodes

    async def fetch_one(self, episode_id: str) -> Episode:
        with self._operation("fetch_one"):
            episode = await self.api.get_episode(episode_id)
        self._current = episode
        self._replace(episode)
        return episode

    async def create(self, request: EpisodeCreateRequest) -> Episode:
        with self._operation("create"):
            episode = await self.api.create_episode(request)
        self._episodes = [episode, *[ep for ep in self._episodes if ep.id != episode.id]]
        self._current = episode
        self.total += 1
        log.info("store.created episode=%s status=%s", episode.id, episode.status.value)
        return episode

    async def remove(self, episode_id: str) -> None:
        before = len(self._episodes)
        self._episodes = [ep for ep in self._episodes if ep.id != episode_id]
        if len(self._episodes) < before:
            self.total = max(0, self.total - 1)
        if self._current is not None and self._current.id == episode_id:
            self._current = None
        with self._operation("remove"):
            await self.api.delete_episode(episode_id)
        log.info("store.removed episode=%s", episode_id)

    async def download(self, episode: Episode, dest_dir: Path | str) -> Path:
        with self._operation("download"):
            return await download_audio(self.api, episode, dest_dir)

    def apply_status(self, episode_id: str, job: JobStatus) -> None:
        """Reconcile a poll result onto the matching records."""
        self._episodes = [self._merged(ep, job) if ep.id == episode_id else ep for ep in self._episodes]
        if self._current is not None and self._current.id == episode_id:
            self._current = self._merged(self._current, job)

    def watch(
        self,
        episode_id: str,
        poller: StatusPoller,
        on_terminal: Callable[[EpisodeStatus], None] | None = None,
    ) -> PollingHandle | None:
        episode = self.get(episode_id)
        if episode is not None and episode.is_terminal:
            return None
        return poller.start(
            episode_id,
            lambda job: self.apply_status(episode_id, job),
            on_terminal or (lambda status: None),
        )

    def _replace(self, episode: Episode) -> None:
        self._episodes = [episode if ep.id == episode.id else ep for ep in self._episodes]

    @staticmethod
    def _merged(episode: Episode, job: JobStatus) -> Episode:
        if episode.is_terminal:
            return episode
        return episode.model_copy(
            update={
                "status": job.status,
                "progress": job.progress,
                "status_message": job.message,
                "error_message": job.error,
            }
        )
