"""Session lifecycle for the client surfaces.

The controller exclusively owns the cached actor and the server permission
mirror. The guard and resolver only read that state. Every collaborator
call funnels through :meth:`SessionController.perform` so an authentication
failure anywhere moves the session to ``session_expired`` exactly once.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Protocol, TypeVar

from loguru import logger

from config import get_settings
from portal.api_client import AccessClient, Actor
from services.errors import AccessError, AuthenticationError, TransientError
from services.guard import LOGIN_PATH, GuardDecision, Notice, NoticeSeverity, evaluate_route
from services.permission_registry import PermissionSet, permissions_for_actor
from services.roles import home_path_for

T = TypeVar("T")

SESSION_EXPIRED_NOTICE = Notice(
    title="Session Expired",
    message="Your session has expired or you're not authorized to access this page.",
    kind="SessionExpired",
)
CONNECTION_NOTICE = Notice(
    title="Connection Problem",
    message="We couldn't reach the server. Please try again.",
    severity=NoticeSeverity.WARNING,
    kind="TransientError",
)


class SessionState(StrEnum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    LOGGED_OUT = "logged_out"
    SESSION_EXPIRED = "session_expired"


class Navigator(Protocol):
    def notify(self, notice: Notice) -> None: ...

    def navigate(self, path: str) -> None: ...


class SessionController:
    def __init__(
        self,
        client: AccessClient,
        navigator: Navigator,
        *,
        redirect_delay: float | None = None,
        recheck_seconds: float | None = None,
    ):
        settings = get_settings()
        self.client = client
        self.navigator = navigator
        self.redirect_delay = (
            settings.SESSION_EXPIRED_REDIRECT_SECONDS if redirect_delay is None else redirect_delay
        )
        self.recheck_seconds = (
            settings.GUARD_RECHECK_SECONDS if recheck_seconds is None else recheck_seconds
        )

        self.state = SessionState.ANONYMOUS
        self.actor: Actor | None = None
        self.server_permissions: PermissionSet | None = None
        # False until the first actor fetch finishes; the guard stays pending until then.
        self.resolved = False
        self.just_logged_out = False
        self.last_decision: GuardDecision | None = None

        self._redirect_handle: asyncio.TimerHandle | None = None
        self._expired_redirected = False
        self._poll_task: asyncio.Task | None = None

    # --- state ---

    @property
    def permissions(self) -> PermissionSet:
        """Server mirror when known, otherwise the local resolver's optimistic default."""
        if self.server_permissions is not None:
            return self.server_permissions
        return permissions_for_actor(self.actor)

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED and self.actor is not None

    def _clear(self) -> None:
        self.actor = None
        self.server_permissions = None
        self.last_decision = None

    def consume_just_logged_out(self) -> bool:
        flag = self.just_logged_out
        self.just_logged_out = False
        return flag

    # --- fetches ---

    async def _load_permissions(self) -> None:
        try:
            self.server_permissions = await self.client.get_permissions()
        except AuthenticationError:
            self.expire()
        except TransientError as e:
            logger.warning(f"Permission fetch failed, using local resolver: {e}")

    async def refresh(self) -> Actor | None:
        """Re-fetch the actor, then the server permissions."""
        had_session = self.state is SessionState.AUTHENTICATED
        if not had_session and self.state is not SessionState.SESSION_EXPIRED:
            self.state = SessionState.AUTHENTICATING
        try:
            actor = await self.client.get_current_actor()
        except AuthenticationError:
            self.resolved = True
            if had_session:
                self.expire()
            elif self.state is not SessionState.SESSION_EXPIRED:
                self._clear()
                self.state = SessionState.ANONYMOUS
            return None
        except TransientError as e:
            logger.warning(f"Actor fetch failed: {e}")
            if not had_session and self.state is SessionState.AUTHENTICATING:
                self.state = SessionState.ANONYMOUS
            self.navigator.notify(CONNECTION_NOTICE)
            return self.actor

        self.actor = actor
        self.server_permissions = None
        self.state = SessionState.AUTHENTICATED
        self.resolved = True
        await self._load_permissions()
        return self.actor

    # --- identity mutations ---

    async def login(self, email: str, password: str) -> Actor:
        self.state = SessionState.AUTHENTICATING
        try:
            actor = await self.client.login(email, password)
        except AccessError:
            self.state = SessionState.ANONYMOUS
            raise
        self._cancel_expired_redirect()
        self._expired_redirected = False
        self.just_logged_out = False
        self.actor = actor
        self.server_permissions = None
        self.state = SessionState.AUTHENTICATED
        self.resolved = True
        await self._load_permissions()
        logger.info(f"Logged in as {actor.email}")
        self.navigator.navigate(home_path_for(actor.role))
        return actor

    async def logout(self) -> None:
        self.stop_polling()
        try:
            await self.client.logout()
        except AccessError as e:
            # The local session ends regardless of what the server said.
            logger.warning(f"Logout request failed: {e}")
        self._clear()
        self.state = SessionState.LOGGED_OUT
        self.resolved = True
        self.just_logged_out = True
        self.navigator.navigate(LOGIN_PATH)

    def expire(self) -> bool:
        """Move to ``session_expired``; returns False when already there."""
        if self.state is SessionState.SESSION_EXPIRED:
            return False
        logger.info("Session expired")
        self.stop_polling()
        self._clear()
        self.state = SessionState.SESSION_EXPIRED
        self.resolved = True
        self.just_logged_out = True
        self._expired_redirected = False
        self.navigator.notify(SESSION_EXPIRED_NOTICE)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._redirect_to_login()
        else:
            self._redirect_handle = loop.call_later(self.redirect_delay, self._redirect_to_login)
        return True

    def acknowledge_expired(self) -> None:
        """The "Login Now" action on the expired screen."""
        self._cancel_expired_redirect()
        self._redirect_to_login()

    def _redirect_to_login(self) -> None:
        self._redirect_handle = None
        if self._expired_redirected or self.state is not SessionState.SESSION_EXPIRED:
            return
        self._expired_redirected = True
        self.navigator.navigate(LOGIN_PATH)

    def _cancel_expired_redirect(self) -> None:
        if self._redirect_handle is not None:
            self._redirect_handle.cancel()
            self._redirect_handle = None

    async def perform(self, action: Callable[[], Awaitable[T]]) -> T:
        """Run a collaborator call, translating failures at the session boundary."""
        try:
            return await action()
        except AuthenticationError:
            self.expire()
            raise
        except TransientError:
            self.navigator.notify(CONNECTION_NOTICE)
            raise

    # --- guard ---

    def evaluate(self, path: str) -> GuardDecision:
        decision = evaluate_route(
            self.actor,
            path,
            resolved=self.resolved,
            permissions=self.server_permissions,
            just_logged_out=self.consume_just_logged_out(),
        )
        self.last_decision = decision
        return decision

    def on_navigate(self, path: str) -> GuardDecision:
        decision = self.evaluate(path)
        if not decision.denied:
            return decision
        # The expired screen owns its own redirect.
        if self.state is SessionState.SESSION_EXPIRED and not self._expired_redirected:
            return decision
        if decision.notice:
            self.navigator.notify(decision.notice)
        if decision.redirect_to and decision.redirect_to != decision.path:
            self.navigator.navigate(decision.redirect_to)
        return decision

    async def on_focus(self, path: str) -> GuardDecision:
        if self.state is SessionState.AUTHENTICATED or not self.resolved:
            await self.refresh()
        return self.on_navigate(path)

    def start_polling(
        self,
        current_path: str | Callable[[], str],
        interval: float | None = None,
    ) -> asyncio.Task:
        self.stop_polling()
        period = self.recheck_seconds if interval is None else interval

        async def _poll() -> None:
            while True:
                await asyncio.sleep(period)
                path = current_path() if callable(current_path) else current_path
                await self.on_focus(path)
                if self.state is not SessionState.AUTHENTICATED:
                    return

        self._poll_task = asyncio.create_task(_poll())
        return self._poll_task

    def stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # --- invitation shortcuts ---

    async def accept_invitation(self, token: str) -> dict:
        result = await self.perform(lambda: self.client.accept_invitation(token))
        await self.refresh()
        return result

    async def reject_invitation(self, token: str) -> dict:
        result = await self.perform(lambda: self.client.reject_invitation(token))
        await self.refresh()
        return result
