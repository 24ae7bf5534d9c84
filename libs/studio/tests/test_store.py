from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from podforge_contracts.episode import Episode, EpisodeListResponse, EpisodeStatus, JobStatus
from podforge_contracts.errors import ApiError, TransportError
from podforge_studio.application.store import EpisodeStore


def episode(episode_id: str, status: str = "completed", **extra) -> Episode:
    return Episode(id=episode_id, title=f"Episode {episode_id}", status=status, **extra)


class DummyApi:
    def __init__(self, episodes: list[Episode] | None = None) -> None:
        self.episodes = episodes or []
        self.deleted: list[str] = []
        self.list_calls: list[dict] = []
        self.fail_delete: Exception | None = None
        self.fail_list: Exception | None = None
        self.fail_audio: Exception | None = None

    async def list_episodes(self, page=1, per_page=20, status=None):
        self.list_calls.append({"page": page, "per_page": per_page, "status": status})
        if self.fail_list:
            raise self.fail_list
        return EpisodeListResponse(episodes=self.episodes, total=len(self.episodes), page=page, per_page=per_page, total_pages=1)

    async def get_episode(self, episode_id):
        for ep in self.episodes:
            if ep.id == episode_id:
                return ep.model_copy(update={"title": f"{ep.title} (fresh)"})
        raise ApiError("Episode not found", status_code=404)

    async def create_episode(self, request):
        return episode("new", status="pending")

    def audio_url(self, episode_id):
        return f"http://api.test/export/{episode_id}/audio"

    async def fetch_audio(self, url):
        if self.fail_audio:
            raise self.fail_audio
        return b"ID3"

    async def delete_episode(self, episode_id):
        if self.fail_delete:
            raise self.fail_delete
        self.deleted.append(episode_id)


def loaded_store(api: DummyApi) -> EpisodeStore:
    store = EpisodeStore(api, per_page=10)
    asyncio.run(store.list())
    return store


def test_list_replaces_state_and_passes_filters():
    api = DummyApi([episode("a"), episode("b", status="processing")])
    store = EpisodeStore(api, per_page=10)

    episodes = asyncio.run(store.list(page=2, status=EpisodeStatus.PROCESSING))

    assert [ep.id for ep in episodes] == ["a", "b"]
    assert api.list_calls == [{"page": 2, "per_page": 10, "status": "processing"}]
    assert store.total == 2 and store.page == 2
    assert not store.is_loading


def test_episodes_is_a_copy():
    store = loaded_store(DummyApi([episode("a")]))
    store.episodes.clear()
    assert len(store.episodes) == 1


def test_remove_is_immediate_and_not_resurrected_on_failure():
    api = DummyApi([episode("a"), episode("b")])
    store = loaded_store(api)
    store.set_current(store.get("a"))
    api.fail_delete = ApiError("Server exploded", status_code=500)

    with pytest.raises(ApiError):
        asyncio.run(store.remove("a"))

    assert [ep.id for ep in store.episodes] == ["b"]
    assert store.current is None
    assert store.error == "Server exploded"
    assert store.total == 1


def test_remove_success():
    api = DummyApi([episode("a"), episode("b")])
    store = loaded_store(api)

    asyncio.run(store.remove("b"))

    assert api.deleted == ["b"]
    assert [ep.id for ep in store.episodes] == ["a"]
    assert store.error is None


def test_create_prepends_and_sets_current():
    store = loaded_store(DummyApi([episode("a")]))

    created = asyncio.run(store.create(request=None))

    assert [ep.id for ep in store.episodes] == ["new", "a"]
    assert store.current == created
    assert store.total == 2


def test_fetch_one_refreshes_list_entry():
    store = loaded_store(DummyApi([episode("a"), episode("b")]))

    fresh = asyncio.run(store.fetch_one("b"))

    assert fresh.title == "Episode b (fresh)"
    assert store.get("b").title == "Episode b (fresh)"
    assert store.current is fresh


def test_failures_record_error_and_next_operation_clears_it():
    api = DummyApi([episode("a")])
    api.fail_list = TransportError("Network error: Unable to reach the server.")
    store = EpisodeStore(api)

    with pytest.raises(TransportError):
        asyncio.run(store.list())
    assert store.error.startswith("Network error")
    assert not store.is_loading

    api.fail_list = None
    asyncio.run(store.list())
    assert store.error is None


def test_download_failure_records_error(tmp_path: Path):
    api = DummyApi([episode("a")])
    api.fail_audio = ApiError("Audio file not found", status_code=404)
    store = loaded_store(api)

    with pytest.raises(ApiError):
        asyncio.run(store.download(episode("a"), tmp_path))

    assert store.error == "Audio file not found"
    assert not store.is_loading
    assert list(tmp_path.iterdir()) == []

    api.fail_audio = None
    path = asyncio.run(store.download(episode("a"), tmp_path))
    assert path.read_bytes() == b"ID3"
    assert store.error is None

def test_apply_status_merges_only_status_fields():
    store = loaded_store(DummyApi([episode("a", status="processing", progress=10, audio_url="/a.mp3")]))
    store.set_current(store.get("a"))

    store.apply_status("a", JobStatus(job_id="j", status="processing", progress=55, message="Synthesizing voices"))

    updated = store.get("a")
    assert updated.progress == 55
    assert updated.status_message == "Synthesizing voices"
    assert updated.audio_url == "/a.mp3"
    assert updated.title == "Episode a"
    assert store.current.progress == 55


def test_apply_status_ignores_terminal_records():
    store = loaded_store(DummyApi([episode("a", status="completed", progress=100)]))

    store.apply_status("a", JobStatus(job_id="j", status="processing", progress=20))

    assert store.get("a").status is EpisodeStatus.COMPLETED
    assert store.get("a").progress == 100
