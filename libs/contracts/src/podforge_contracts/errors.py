from __future__ import annotations


class PodforgeError(Exception):
    """Base exception for domain-safe errors."""


class ConfigurationError(PodforgeError):
    pass


class TransportError(PodforgeError):
    """The server could not be reached (DNS, refused connection, timeout)."""


class RequestTimeoutError(TransportError):
    pass


class ApiError(PodforgeError):
    """Non-2xx response; ``detail`` is the server-supplied message."""

    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class ResponseDecodeError(ApiError):
    pass


class PollingTransientError(PodforgeError):
    """One failed status check. Reported, never fatal to the poll session."""

    def __init__(self, episode_id: str, cause: BaseException) -> None:
        super().__init__(f"Status check for {episode_id} failed: {cause}")
        self.episode_id = episode_id
        self.cause = cause


class ResourceError(PodforgeError):
    """Audio could not be fetched or decoded."""
