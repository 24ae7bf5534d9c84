from __future__ import annotations

import asyncio

from podforge_contracts.episode import Episode, EpisodeStatus, JobStatus
from podforge_contracts.errors import ApiError
from podforge_studio.application.poller import StatusPoller
from podforge_studio.application.store import EpisodeStore
from podforge_studio.application.use_cases import GenerateEpisode
from podforge_studio.application.wizard import WizardController
from podforge_studio.domain.models import WizardStep
from podforge_studio.infrastructure.logging import bound_episode


class DummyApi:
    def __init__(self, fail: Exception | None = None, created_status: str = "pending") -> None:
        self.fail = fail
        self.created_status = created_status
        self.requests = []
        self.status_calls = 0

    async def create_episode(self, request):
        self.requests.append(request)
        if self.fail:
            raise self.fail
        return Episode(id="ep-9", title=request.title, status=self.created_status)

    async def get_episode_status(self, episode_id):
        self.status_calls += 1
        return JobStatus(job_id="j", episode_id=episode_id, status="completed", progress=100)


def ready_wizard() -> WizardController:
    wizard = WizardController()
    wizard.update_draft(title="Energy explained", source_content="w" * 150)
    wizard.go_next()
    wizard.go_next()
    wizard.go_next()
    return wizard


def test_validation_errors_are_returned_without_calling_api():
    api = DummyApi()
    wizard = WizardController()
    store = EpisodeStore(api)

    async def scenario():
        return await GenerateEpisode(wizard, store, StatusPoller(api)).run()

    outcome = asyncio.run(scenario())

    assert not outcome.ok
    assert {e.field for e in outcome.errors} == {"title", "source_content"}
    assert api.requests == []


def test_create_failure_keeps_wizard_state():
    api = DummyApi(fail=ApiError("Quota exceeded", status_code=429))
    wizard = ready_wizard()
    store = EpisodeStore(api)

    async def scenario():
        return await GenerateEpisode(wizard, store, StatusPoller(api)).run()

    outcome = asyncio.run(scenario())

    assert outcome.error == "Quota exceeded"
    assert outcome.episode is None
    assert wizard.current_step() is WizardStep.GENERATE
    assert wizard.draft.title == "Energy explained"
    assert store.error == "Quota exceeded"


def test_success_resets_wizard_and_tracks_episode():
    api = DummyApi()
    wizard = ready_wizard()
    store = EpisodeStore(api)
    terminal = []

    async def scenario():
        poller = StatusPoller(api, interval_s=0.01)
        done = asyncio.Event()

        def on_terminal(status):
            terminal.append(status)
            done.set()

        outcome = await GenerateEpisode(wizard, store, poller, on_terminal=on_terminal).run()
        assert outcome.handle is not None and outcome.handle.active
        assert bound_episode() is None
        await asyncio.wait_for(done.wait(), timeout=1.0)
        return outcome

    outcome = asyncio.run(scenario())

    assert outcome.ok
    assert outcome.episode.id == "ep-9"
    assert api.requests[0].title == "Energy explained"
    assert wizard.current_step() is WizardStep.SOURCE
    assert wizard.draft.title == ""
    assert terminal == [EpisodeStatus.COMPLETED]
    assert store.get("ep-9").status is EpisodeStatus.COMPLETED


def test_already_terminal_episode_is_not_polled():
    api = DummyApi(created_status="completed")
    wizard = ready_wizard()
    store = EpisodeStore(api)

    async def scenario():
        return await GenerateEpisode(wizard, store, StatusPoller(api, interval_s=0.01)).run()

    outcome = asyncio.run(scenario())

    assert outcome.ok
    assert outcome.handle is None
    assert api.status_calls == 0
