from __future__ import annotations

import asyncio
from typing import Callable

from podforge_contracts.episode import EpisodeStatus, JobStatus
from podforge_contracts.errors import PodforgeError, PollingTransientError
from podforge_studio.application.ports import StatusSource
from podforge_studio.domain.models import PollingHandle, PollingSession
from podforge_studio.infrastructure.logging import episode_context, get_logger
from podforge_studio.infrastructure.metrics import (
    poll_failed,
    poll_succeeded,
    poll_tick_skipped,
    set_poll_sessions,
)

log = get_logger(__name__)

UpdateCallback = Callable[[JobStatus], None]
TerminalCallback = Callable[[EpisodeStatus], None]
ErrorCallback = Callable[[PollingTransientError], None]

DEFAULT_INTERVAL_S = 5.0


class _Session(PollingSession):
    def __init__(
        self,
        episode_id: str,
        on_update: UpdateCallback,
        on_terminal: TerminalCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        super().__init__(episode_id=episode_id)
        self.on_update = on_update
        self.on_terminal = on_terminal
        self.on_error = on_error


class StatusPoller:
    """Tracks server jobs to a terminal status at a fixed cadence.

    One session per episode id. A session requests status immediately, then on
    every tick; a tick that fires while the previous request is still in flight
    is skipped. Transient failures never end a session: only a terminal status
    or ``stop``/``stop_all`` do. With ``backoff_cap_s`` set, the delay doubles
    after each consecutive failure up to the cap and resets on success.
    """

    def __init__(
        self,
        source: StatusSource,
        *,
        interval_s: float = DEFAULT_INTERVAL_S,
        backoff_cap_s: float | None = None,
    ) -> None:
        self.source = source
        self.interval_s = interval_s
        self.backoff_cap_s = backoff_cap_s
        self._sessions: dict[str, _Session] = {}

    def __enter__(self) -> "StatusPoller":
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop_all()

    def start(
        self,
        episode_id: str,
        on_update: UpdateCallback,
        on_terminal: TerminalCallback,
        on_error: ErrorCallback | None = None,
    ) -> PollingHandle:
        loop = asyncio.get_running_loop()
        self.stop(episode_id)
        session = _Session(episode_id, on_update, on_terminal, on_error)
        self._sessions[episode_id] = session
        set_poll_sessions(len(self._sessions))
        log.info("poller.start episode=%s interval=%.1fs", episode_id, self.interval_s)
        session.timer_handle = loop.call_soon(self._tick, session)
        return PollingHandle(episode_id, session, self._cancel)

    def stop(self, episode_id: str) -> None:
        session = self._sessions.get(episode_id)
        if session is not None:
            self._cancel(session)

    def stop_all(self) -> None:
        for session in list(self._sessions.values()):
            self._cancel(session)

    def is_active(self, episode_id: str) -> bool:
        session = self._sessions.get(episode_id)
        return session is not None and session.active

    def active_ids(self) -> list[str]:
        return [eid for eid, s in self._sessions.items() if s.active]

    def _cancel(self, session: _Session) -> None:
        if not session.active:
            return
        session.active = False
        if session.timer_handle is not None:
            session.timer_handle.cancel()
            session.timer_handle = None
        if session.request_task is not None and not session.request_task.done():
            session.request_task.cancel()
        # A superseded session must not evict its replacement.
        if self._sessions.get(session.episode_id) is session:
            del self._sessions[session.episode_id]
        set_poll_sessions(len(self._sessions))
        log.debug("poller.stop episode=%s", session.episode_id)

    def _next_delay(self, session: _Session) -> float:
        if not self.backoff_cap_s or session.failures == 0:
            return self.interval_s
        return min(self.backoff_cap_s, self.interval_s * (2 ** session.failures))

    def _schedule(self, session: _Session) -> None:
        if not session.active:
            return
        loop = asyncio.get_running_loop()
        session.timer_handle = loop.call_later(self._next_delay(session), self._tick, session)

    def _tick(self, session: _Session) -> None:
        session.timer_handle = None
        if not session.active:
            return
        if session.in_flight:
            poll_tick_skipped()
            log.debug("poller.tick_skipped episode=%s", session.episode_id)
        else:
            session.request_task = asyncio.ensure_future(self._check(session))
        self._schedule(session)

    async def _check(self, session: _Session) -> None:
        with episode_context(session.episode_id):
            await self._check_once(session)

    async def _check_once(self, session: _Session) -> None:
        try:
            status = await self.source.get_episode_status(session.episode_id)
        except PodforgeError as exc:
            session.request_task = None
            if not session.active:
                return
            session.failures += 1
            poll_failed()
            error = PollingTransientError(session.episode_id, exc)
            log.warning("poller.check_failed episode=%s failures=%s error=%s", session.episode_id, session.failures, exc)
            if session.on_error is not None:
                self._safe_call(session, session.on_error, error)
            return

        session.request_task = None
        if not session.active:
            return
        session.failures = 0
        poll_succeeded()
        log.debug(
            "poller.update episode=%s status=%s progress=%s", session.episode_id, status.status.value, status.progress
        )
        self._safe_call(session, session.on_update, status)

        if status.status.is_terminal:
            self._cancel(session)
            log.info("poller.terminal episode=%s status=%s", session.episode_id, status.status.value)
            self._safe_call(session, session.on_terminal, status.status)

    @staticmethod
    def _safe_call(session: _Session, callback: Callable, arg: object) -> None:
        try:
            callback(arg)
        except Exception:
            log.exception("poller.callback_failed episode=%s", session.episode_id)
