from __future__ import annotations

import asyncio
import json
import time
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from podforge_contracts.episode import (
    Episode,
    EpisodeCreateRequest,
    EpisodeListResponse,
    ExportResponse,
    HealthResponse,
    JobStatus,
    TranscriptResponse,
)
from podforge_contracts.errors import (
    ApiError,
    RequestTimeoutError,
    ResponseDecodeError,
    TransportError,
)
from podforge_studio.domain.models import Credentials
from podforge_studio.infrastructure.config import DEFAULT_API_URL
from podforge_studio.infrastructure.logging import get_logger
from podforge_studio.infrastructure.metrics import api_request, observe_api_latency

log = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

NETWORK_ERROR = "Network error: Unable to reach the server. Please check your connection."
TIMEOUT_ERROR = "Request timeout: The server took too long to respond."


class EpisodeClient:
    """Typed client for the episode REST API.

    Credentials are read when each request is built, so a sign-out affects
    every request sent afterwards but never one already in flight.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_API_URL,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._credentials: Credentials | None = None
        self._http = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    async def __aenter__(self) -> "EpisodeClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # Auth

    def set_auth(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def clear_auth(self) -> None:
        self._credentials = None

    @property
    def is_authenticated(self) -> bool:
        return self._credentials is not None

    def auth_headers(self) -> dict[str, str]:
        creds = self._credentials
        if creds is None:
            return {}
        headers: dict[str, str] = {}
        if creds.user_id:
            headers["X-User-ID"] = creds.user_id
        if creds.access_token:
            headers["Authorization"] = f"Bearer {creds.access_token}"
        return headers

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", **self.auth_headers()}

    # Episodes

    async def create_episode(self, request: EpisodeCreateRequest) -> Episode:
        payload = request.model_dump(mode="json", exclude_none=True)
        return await self._request_model(Episode, "POST", "/episodes/", json=payload)

    async def list_episodes(self, page: int = 1, per_page: int = 20, status: str | None = None) -> EpisodeListResponse:
        params: dict[str, Any] = {"page": page, "per_page": per_page}
        if status:
            params["status"] = status
        return await self._request_model(EpisodeListResponse, "GET", "/episodes/", params=params)

    async def get_episode(self, episode_id: str) -> Episode:
        return await self._request_model(Episode, "GET", f"/episodes/{episode_id}")

    async def get_episode_status(self, episode_id: str) -> JobStatus:
        return await self._request_model(JobStatus, "GET", f"/episodes/{episode_id}/status")

    async def delete_episode(self, episode_id: str) -> None:
        await self._request("DELETE", f"/episodes/{episode_id}")

    # Jobs

    async def get_job_status(self, job_id: str) -> JobStatus:
        return await self._request_model(JobStatus, "GET", f"/jobs/{job_id}")

    # Export

    async def get_export(self, episode_id: str) -> ExportResponse:
        return await self._request_model(ExportResponse, "GET", f"/export/{episode_id}")

    async def get_transcript(self, episode_id: str) -> TranscriptResponse:
        return await self._request_model(TranscriptResponse, "GET", f"/export/{episode_id}/transcript")

    def audio_url(self, episode_id: str) -> str:
        return f"{self.base_url}/export/{episode_id}/audio"

    def cover_url(self, episode_id: str) -> str:
        return f"{self.base_url}/export/{episode_id}/cover"

    async def fetch_audio(self, url: str) -> bytes:
        """Fetch binary audio with auth headers only (no JSON content type)."""
        return await self._fetch_binary(url)

    async def fetch_cover(self, episode_id: str) -> bytes:
        return await self._fetch_binary(self.cover_url(episode_id))

    # Health

    async def health_check(self) -> HealthResponse:
        return await self._request_model(HealthResponse, "GET", "/health")

    # Internals

    async def _fetch_binary(self, url: str) -> bytes:
        response = await self._send("GET", url, headers=self.auth_headers())
        return response.content

    async def _request_model(self, model: type[ModelT], method: str, path: str, **kwargs: Any) -> ModelT:
        data = await self._request(method, path, **kwargs)
        if data is None:
            raise ResponseDecodeError(f"Empty response body from {method} {path}")
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            log.warning("api.decode_failed method=%s path=%s model=%s", method, path, model.__name__)
            raise ResponseDecodeError(f"Unexpected response from {method} {path}: {exc.error_count()} invalid field(s)") from exc

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, f"{self.base_url}{path}", headers=self.headers(), **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ResponseDecodeError(f"Invalid JSON from {method} {path}", status_code=response.status_code) from exc

    async def _send(self, method: str, url: str, *, headers: dict[str, str], **kwargs: Any) -> httpx.Response:
        log.debug("api.request method=%s url=%s", method, url)
        started = time.perf_counter()
        try:
            # httpx limits each phase; this bounds the whole exchange, body included.
            async with asyncio.timeout(self.timeout_s):
                response = await self._http.request(method, url, headers=headers, **kwargs)
        except (httpx.TimeoutException, TimeoutError) as exc:
            api_request(method, "timeout")
            log.warning("api.timeout method=%s url=%s", method, url)
            raise RequestTimeoutError(TIMEOUT_ERROR) from exc
        except httpx.TransportError as exc:
            api_request(method, "transport_error")
            log.warning("api.unreachable method=%s url=%s error=%s", method, url, exc)
            raise TransportError(NETWORK_ERROR) from exc
        finally:
            observe_api_latency(method, time.perf_counter() - started)

        if response.is_success:
            api_request(method, "ok")
            return response

        api_request(method, "http_error")
        detail = _error_detail(response)
        log.warning("api.error method=%s url=%s status=%s detail=%s", method, url, response.status_code, detail)
        raise ApiError(detail, status_code=response.status_code)


def _error_detail(response: httpx.Response) -> str:
    fallback = f"HTTP {response.status_code}: {response.reason_phrase}".rstrip(": ")
    try:
        body = response.json()
    except ValueError:
        return fallback
    detail = body.get("detail") if isinstance(body, dict) else None
    if not detail:
        return fallback
    if isinstance(detail, str):
        return detail
    # FastAPI validation errors arrive as a list of {loc, msg, ...}
    if isinstance(detail, list):
        messages = [str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in detail]
        return "; ".join(messages) or fallback
    return json.dumps(detail, separators=(",", ":"))
