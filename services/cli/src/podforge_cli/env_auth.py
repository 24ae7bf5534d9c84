from __future__ import annotations

import os
from typing import Callable

from podforge_contracts.errors import ConfigurationError
from podforge_studio.domain.models import Credentials
from podforge_studio.infrastructure.logging import get_logger

log = get_logger(__name__)

Listener = Callable[[Credentials | None], None]


class EnvAuthProvider:
    """Identity read from ``PODFORGE_USER_ID`` / ``PODFORGE_ACCESS_TOKEN``.

    The environment cannot refresh a token, so ``refresh`` re-reads it and
    yields nothing when the token is still expired.
    """

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ
        self._listeners: list[Listener] = []
        self._signed_out = False

    def _read(self) -> Credentials | None:
        user_id = self._environ.get("PODFORGE_USER_ID", "").strip()
        token = self._environ.get("PODFORGE_ACCESS_TOKEN", "").strip()
        if not user_id and not token:
            return None
        raw_expiry = self._environ.get("PODFORGE_TOKEN_EXPIRES_AT", "").strip()
        try:
            expires_at = int(raw_expiry) if raw_expiry else None
        except ValueError as exc:
            raise ConfigurationError(f"PODFORGE_TOKEN_EXPIRES_AT must be a unix timestamp, got {raw_expiry!r}") from exc
        return Credentials(user_id=user_id, access_token=token, expires_at=expires_at)

    async def get_credentials(self) -> Credentials | None:
        if self._signed_out:
            return None
        return self._read()

    async def refresh(self) -> Credentials | None:
        creds = self._read()
        if creds is None or creds.is_expired():
            return None
        return creds

    async def sign_out(self) -> None:
        self._signed_out = True
        self._notify(None)

    def on_auth_change(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, credentials: Credentials | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(credentials)
            except Exception:
                log.warning("auth.listener_failed", exc_info=True)
