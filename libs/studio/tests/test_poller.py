from __future__ import annotations

import asyncio

from podforge_contracts.episode import Episode, EpisodeStatus, JobStatus
from podforge_contracts.errors import ApiError, TransportError
from podforge_studio.application.poller import StatusPoller, _Session
from podforge_studio.application.store import EpisodeStore


def job(status: str, progress: int = 0, **extra) -> JobStatus:
    return JobStatus(job_id="job-1", episode_id="ep-1", status=status, progress=progress, **extra)


class ScriptedSource:
    """Returns (or raises) the scripted results in order, repeating the last."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls: list[str] = []

    async def get_episode_status(self, episode_id: str) -> JobStatus:
        self.calls.append(episode_id)
        result = self.results[0] if len(self.results) == 1 else self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class BlockingSource:
    def __init__(self) -> None:
        self.calls = 0
        self.release = asyncio.Event()
        self.cancelled = False

    async def get_episode_status(self, episode_id: str) -> JobStatus:
        self.calls += 1
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return job("processing", 10)


class DummyApi:
    def __init__(self, source: ScriptedSource) -> None:
        self.source = source

    async def create_episode(self, request):
        return Episode(id="ep-1", title="Energy", status="pending")

    async def get_episode_status(self, episode_id: str) -> JobStatus:
        return await self.source.get_episode_status(episode_id)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def test_pending_to_completed_scenario():
    source = ScriptedSource(job("processing", 40), job("completed", 100))
    terminal: list[EpisodeStatus] = []
    snapshots: list[tuple[str, int]] = []

    async def scenario():
        store = EpisodeStore(DummyApi(source))
        poller = StatusPoller(source, interval_s=0.02)
        episode = await store.create(request=None)
        assert episode.status is EpisodeStatus.PENDING

        def on_update(status: JobStatus) -> None:
            store.apply_status("ep-1", status)
            snapshots.append((store.get("ep-1").status.value, store.get("ep-1").progress))

        poller.start("ep-1", on_update, terminal.append)
        await wait_until(lambda: terminal)
        await asyncio.sleep(0.1)
        return store, poller

    store, poller = asyncio.run(scenario())

    assert snapshots == [("processing", 40), ("completed", 100)]
    assert store.current.status is EpisodeStatus.COMPLETED
    assert store.current.progress == 100
    assert terminal == [EpisodeStatus.COMPLETED]
    assert len(source.calls) == 2
    assert poller.active_ids() == []


def test_store_watch_routes_updates_and_skips_terminal():
    source = ScriptedSource(job("processing", 40), job("failed", 40, error="TTS failed"))

    async def scenario():
        store = EpisodeStore(DummyApi(source))
        poller = StatusPoller(source, interval_s=0.01)
        await store.create(request=None)
        done = asyncio.Event()
        handle = store.watch("ep-1", poller, on_terminal=lambda status: done.set())
        assert handle.active
        await asyncio.wait_for(done.wait(), timeout=1.0)
        assert not handle.active
        # terminal records are not polled again
        assert store.watch("ep-1", poller) is None
        return store

    store = asyncio.run(scenario())
    assert store.current.status is EpisodeStatus.FAILED
    assert store.current.error_message == "TTS failed"


def test_overlapping_ticks_are_skipped():
    source = BlockingSource()

    async def scenario():
        poller = StatusPoller(source, interval_s=0.01)
        poller.start("ep-1", lambda s: None, lambda s: None)
        await asyncio.sleep(0.1)
        assert source.calls == 1
        poller.stop("ep-1")
        await asyncio.sleep(0.01)
        assert not poller.is_active("ep-1")

    asyncio.run(scenario())
    assert source.cancelled


def test_transient_errors_do_not_end_the_session():
    source = ScriptedSource(TransportError("offline"), ApiError("busy", status_code=503), job("completed", 100))
    errors = []
    terminal = []

    async def scenario():
        poller = StatusPoller(source, interval_s=0.01)
        poller.start("ep-1", lambda s: None, terminal.append, errors.append)
        await wait_until(lambda: terminal)

    asyncio.run(scenario())

    assert [e.episode_id for e in errors] == ["ep-1", "ep-1"]
    assert isinstance(errors[0].cause, TransportError)
    assert terminal == [EpisodeStatus.COMPLETED]


def test_one_session_per_episode():
    source = ScriptedSource(job("processing", 5))

    async def scenario():
        poller = StatusPoller(source, interval_s=0.05)
        first = poller.start("ep-1", lambda s: None, lambda s: None)
        second = poller.start("ep-1", lambda s: None, lambda s: None)
        other = poller.start("ep-2", lambda s: None, lambda s: None)
        assert not first.active
        assert second.active
        assert sorted(poller.active_ids()) == ["ep-1", "ep-2"]

        # cancelling a superseded handle leaves the live session alone
        first.cancel()
        assert poller.is_active("ep-1")

        other.cancel()
        assert poller.active_ids() == ["ep-1"]
        poller.stop_all()
        assert poller.active_ids() == []

    asyncio.run(scenario())


def test_callback_errors_are_contained():
    source = ScriptedSource(job("processing", 10), job("completed", 100))
    terminal = []

    def boom(status):
        raise RuntimeError("render failed")

    async def scenario():
        poller = StatusPoller(source, interval_s=0.01)
        poller.start("ep-1", boom, terminal.append)
        await wait_until(lambda: terminal)

    asyncio.run(scenario())
    assert terminal == [EpisodeStatus.COMPLETED]


def test_backoff_delay_is_capped():
    poller = StatusPoller(ScriptedSource(job("pending")), interval_s=5.0, backoff_cap_s=30.0)
    session = _Session("ep-1", lambda s: None, lambda s: None, None)

    delays = []
    for failures in range(5):
        session.failures = failures
        delays.append(poller._next_delay(session))

    assert delays == [5.0, 10.0, 20.0, 30.0, 30.0]

    fixed = StatusPoller(ScriptedSource(job("pending")), interval_s=5.0)
    session.failures = 3
    assert fixed._next_delay(session) == 5.0
