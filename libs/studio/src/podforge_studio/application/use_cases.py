from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from podforge_contracts.episode import Episode, EpisodeStatus
from podforge_contracts.errors import PodforgeError
from podforge_studio.application.poller import StatusPoller
from podforge_studio.application.store import EpisodeStore
from podforge_studio.application.wizard import WizardController
from podforge_studio.domain.models import FieldError, PollingHandle
from podforge_studio.infrastructure.logging import episode_context, get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class GenerationOutcome:
    episode: Episode | None = None
    errors: tuple[FieldError, ...] = ()
    error: str | None = None
    handle: PollingHandle | None = None

    @property
    def ok(self) -> bool:
        return self.episode is not None


class GenerateEpisode:
    """Submit the wizard draft, create the episode and start tracking it."""

    def __init__(
        self,
        wizard: WizardController,
        store: EpisodeStore,
        poller: StatusPoller,
        *,
        on_terminal: Callable[[EpisodeStatus], None] | None = None,
    ) -> None:
        self.wizard = wizard
        self.store = store
        self.poller = poller
        self.on_terminal = on_terminal

    async def run(self) -> GenerationOutcome:
        submitted = self.wizard.submit()
        if not submitted.ok:
            return GenerationOutcome(errors=submitted.errors)

        try:
            episode = await self.store.create(submitted.request)
        except PodforgeError as exc:
            # Wizard keeps its step and draft so the user can retry.
            log.error("generate.create_failed title=%s error=%s", submitted.request.title, exc)
            return GenerationOutcome(error=str(exc) or "Failed to create episode")

        with episode_context(episode.id):
            self.wizard.reset()
            handle = self.store.watch(episode.id, self.poller, on_terminal=self.on_terminal)
            log.info("generate.created episode=%s watching=%s", episode.id, handle is not None)
        return GenerationOutcome(episode=episode, handle=handle)
