from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from podforge_contracts.episode import EpisodeCreateRequest, EpisodeStatus, Persona
from podforge_contracts.errors import ApiError, RequestTimeoutError, ResponseDecodeError, TransportError
from podforge_studio.domain.models import Credentials
from podforge_studio.infrastructure.http.client import NETWORK_ERROR, TIMEOUT_ERROR, EpisodeClient

BASE = "http://api.test/api/v1"

EPISODE = {
    "id": "ep-1",
    "user_id": "user-1",
    "title": "Energy explained",
    "status": "processing",
    "progress": 40,
    "personas": [{"name": "Alex", "role": "host", "gender": "male"}],
    "unexpected_server_field": True,
}


def make_client(handler) -> EpisodeClient:
    return EpisodeClient(base_url=BASE + "/", transport=httpx.MockTransport(handler))


def call(client: EpisodeClient, coro):
    async def runner():
        try:
            return await coro
        finally:
            await client.aclose()

    return asyncio.run(runner())


def test_auth_headers_added_and_removed():
    seen: list[httpx.Headers] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers)
        return httpx.Response(200, json=EPISODE)

    client = make_client(handler)
    client.set_auth(Credentials(user_id="user-1", access_token="tok"))

    async def scenario():
        await client.get_episode("ep-1")
        client.clear_auth()
        await client.get_episode("ep-1")

    call(client, scenario())

    assert seen[0]["X-User-ID"] == "user-1"
    assert seen[0]["Authorization"] == "Bearer tok"
    assert seen[0]["Content-Type"] == "application/json"
    assert "Authorization" not in seen[1]
    assert "X-User-ID" not in seen[1]


def test_create_episode_posts_json_body():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={**EPISODE, "status": "pending", "progress": 0})

    client = make_client(handler)
    request = EpisodeCreateRequest(
        title="Energy explained",
        source_type="url",
        source_url="https://example.com/energy",
        personas=(Persona(name="Alex", role="host"),),
    )

    episode = call(client, client.create_episode(request))

    assert captured["method"] == "POST"
    assert captured["url"] == f"{BASE}/episodes/"
    assert captured["body"]["personas"] == [{"name": "Alex", "role": "host"}]
    assert captured["body"]["generate_cover"] is True
    assert "source_content" not in captured["body"]
    assert episode.status is EpisodeStatus.PENDING


def test_list_episodes_sends_query():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["page"] == "2"
        assert request.url.params["per_page"] == "5"
        assert request.url.params["status"] == "completed"
        return httpx.Response(200, json={"episodes": [EPISODE], "total": 6, "page": 2, "per_page": 5, "total_pages": 2})

    client = make_client(handler)
    page = call(client, client.list_episodes(page=2, per_page=5, status="completed"))

    assert page.total_pages == 2
    assert page.episodes[0].personas[0].name == "Alex"


def test_status_progress_is_clamped():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/episodes/ep-1/status"
        return httpx.Response(200, json={"job_id": "j", "status": "processing", "progress": 140})

    client = make_client(handler)
    status = call(client, client.get_episode_status("ep-1"))
    assert status.progress == 100


def test_delete_accepts_empty_body():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(204)

    client = make_client(handler)
    assert call(client, client.delete_episode("ep-1")) is None


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"detail": "Episode not found"}, "Episode not found"),
        ({"detail": [{"loc": ["body", "title"], "msg": "field required"}, {"msg": "too short"}]}, "field required; too short"),
        ({"message": "nope"}, "HTTP 404: Not Found"),
    ],
)
def test_http_errors_carry_server_detail(body, expected):
    client = make_client(lambda request: httpx.Response(404, json=body))

    with pytest.raises(ApiError) as excinfo:
        call(client, client.get_episode("missing"))

    assert excinfo.value.detail == expected
    assert excinfo.value.status_code == 404


def test_non_json_error_body_falls_back_to_status_line():
    client = make_client(lambda request: httpx.Response(502, text="<html>bad gateway</html>"))

    with pytest.raises(ApiError, match="HTTP 502: Bad Gateway"):
        call(client, client.get_episode("ep-1"))


def test_timeout_and_network_errors_are_mapped():
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = make_client(timeout)
    with pytest.raises(RequestTimeoutError) as excinfo:
        call(client, client.get_episode("ep-1"))
    assert str(excinfo.value) == TIMEOUT_ERROR

    client = make_client(refused)
    with pytest.raises(TransportError) as excinfo:
        call(client, client.get_episode("ep-1"))
    assert str(excinfo.value) == NETWORK_ERROR
    assert not isinstance(excinfo.value, RequestTimeoutError)


def test_slow_body_hits_the_total_deadline():
    body = json.dumps(EPISODE).encode()

    async def trickle():
        for i in range(0, len(body), 10):
            await asyncio.sleep(0.1)
            yield body[i : i + 10]

    async def slow(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=trickle())

    client = EpisodeClient(base_url=BASE, timeout_s=0.3, transport=httpx.MockTransport(slow))

    async def scenario():
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RequestTimeoutError):
            await client.get_episode("ep-1")
        await client.aclose()
        return loop.time() - started

    assert asyncio.run(scenario()) < 1.0


def test_malformed_success_body_is_a_decode_error():
    client = make_client(lambda request: httpx.Response(200, text="not json"))
    with pytest.raises(ResponseDecodeError):
        call(client, client.get_episode("ep-1"))

    client = make_client(lambda request: httpx.Response(200, json={"id": "ep-1"}))
    with pytest.raises(ResponseDecodeError):
        call(client, client.get_episode("ep-1"))


def test_fetch_audio_sends_auth_without_content_type():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        return httpx.Response(200, content=b"ID3audio", headers={"Content-Type": "audio/mpeg"})

    client = make_client(handler)
    client.set_auth(Credentials(user_id="user-1", access_token="tok"))

    data = call(client, client.fetch_audio(client.audio_url("ep-1")))

    assert data == b"ID3audio"
    assert seen["url"] == f"{BASE}/export/ep-1/audio"
    assert seen["headers"]["Authorization"] == "Bearer tok"
    assert "Content-Type" not in seen["headers"]


def test_transcript_and_health():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/health"):
            return httpx.Response(200, json={"status": "healthy", "version": "1.0.0"})
        return httpx.Response(
            200, json={"episode_id": "ep-1", "title": "Energy", "script": None, "transcript": "ALEX: Hello."}
        )

    client = make_client(handler)

    async def scenario():
        return await client.get_transcript("ep-1"), await client.health_check()

    transcript, health = call(client, scenario())

    assert transcript.text == "ALEX: Hello."
    assert health.status == "healthy"
