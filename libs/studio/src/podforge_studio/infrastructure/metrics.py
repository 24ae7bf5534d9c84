from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

_API_REQUESTS = Counter(
    "podforge_api_requests_total",
    "Requests sent to the episode API",
    ["method", "outcome"],
)
_API_LATENCY_SEC = Histogram(
    "podforge_api_request_seconds",
    "Episode API round-trip time in seconds",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)
_POLLS = Counter("podforge_status_polls_total", "Status checks by outcome", ["outcome"])
_POLL_TICKS_SKIPPED = Counter("podforge_status_poll_ticks_skipped_total", "Ticks skipped while a request was in flight")
_POLL_SESSIONS = Gauge("podforge_status_poll_sessions", "Live polling sessions")
_AUDIO_OPENED = Counter("podforge_audio_sessions_opened_total", "Audio sessions opened")
_AUDIO_CLOSED = Counter("podforge_audio_sessions_closed_total", "Audio sessions closed")
_AUDIO_FAILED = Counter("podforge_audio_sessions_failed_total", "Audio sessions that failed to load")
_AUDIO_LIVE = Gauge("podforge_audio_sessions_live", "Audio sessions currently holding a blob or decoder")

_server_started = False

def maybe_start_server(port: int) -> bool:
    global _server_started
    if _server_started:
        return True
    try:
        start_http_server(port)
    except OSError:
        return False
    _server_started = True
    return True

def api_request(method: str, outcome: str) -> None:
    _API_REQUESTS.labels(method=method, outcome=outcome).inc()

def observe_api_latency(method: str, seconds: float) -> None:
    _API_LATENCY_SEC.labels(method=method).observe(max(0.0, seconds))

def poll_succeeded() -> None:
    _POLLS.labels(outcome="ok").inc()

def poll_failed() -> None:
    _POLLS.labels(outcome="error").inc()

def poll_tick_skipped() -> None:
    _POLL_TICKS_SKIPPED.inc()

def set_poll_sessions(count: int) -> None:
    _POLL_SESSIONS.set(count)

def audio_session_opened() -> None:
    _AUDIO_OPENED.inc()
    _AUDIO_LIVE.inc()

def audio_session_closed() -> None:
    _AUDIO_CLOSED.inc()
    _AUDIO_LIVE.dec()

def audio_session_failed() -> None:
    _AUDIO_FAILED.inc()
