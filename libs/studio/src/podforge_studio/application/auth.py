from __future__ import annotations

from typing import Callable

from podforge_contracts.errors import PodforgeError
from podforge_studio.application.ports import AuthProvider, CredentialSink
from podforge_studio.domain.models import Credentials
from podforge_studio.infrastructure.logging import get_logger

log = get_logger(__name__)


class AuthSubscription:
    """Owned handle for one auth-change listener registration."""

    def __init__(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe = unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        try:
            self._unsubscribe()
        except Exception:
            log.warning("auth.unsubscribe_failed", exc_info=True)


class AuthSession:
    """Keeps the HTTP client's credentials in step with the identity provider."""

    def __init__(self, provider: AuthProvider, client: CredentialSink) -> None:
        self.provider = provider
        self.client = client
        self.current: Credentials | None = None
        self.subscription: AuthSubscription | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.current is not None

    async def start(self) -> AuthSubscription:
        if self.subscription is not None and self.subscription.active:
            return self.subscription

        try:
            credentials = await self.provider.get_credentials()
            if credentials is not None and credentials.is_expired():
                log.info("auth.session_expired user=%s; refreshing", credentials.user_id)
                credentials = await self.provider.refresh()
                if credentials is None:
                    await self.provider.sign_out()
        except (PodforgeError, OSError) as exc:
            log.error("auth.initialize_failed error=%s", exc)
            credentials = None
        self._apply(credentials)

        self.subscription = AuthSubscription(self.provider.on_auth_change(self._apply))
        return self.subscription

    def stop(self) -> None:
        if self.subscription is not None:
            self.subscription.unsubscribe()
            self.subscription = None

    async def sign_out(self) -> None:
        await self.provider.sign_out()
        self._apply(None)

    def _apply(self, credentials: Credentials | None) -> None:
        self.current = credentials
        if credentials is None:
            self.client.clear_auth()
            log.info("auth.signed_out")
        else:
            self.client.set_auth(credentials)
            log.info("auth.signed_in user=%s", credentials.user_id)
