"""Authentication session management for a single provider.

Owns the provider's session and its one live token through the lifecycle:

    unauthenticated -> authenticating -> authenticated -> refreshing
        -> authenticated -> revoked/expired -> unauthenticated

The manager shares the provider's lock with the rest of the provider
context. Token reads, state changes and rate-limiter permits happen under
that lock. Every network exchange runs outside it, and concurrent callers
join the single in-flight refresh instead of starting their own.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..config import DEFAULT_TOKEN_LIFETIME_SECONDS
from ..errors import (
    InsuranceError,
    InvalidAuthResponse,
    InvalidCredentials,
    NetworkError,
    NoActiveSession,
    NoActiveToken,
    RateLimitExceeded,
)
from ..events import EventSinks
from ..models import AuthResponse, AuthState, AuthToken, Credentials
from ..rate_limiter import RateLimiter
from ..transport.session import ProviderSession, utcnow

logger = logging.getLogger(__name__)


def validate_credentials(credentials: Credentials, provider_id: str) -> None:
    """Reject empty client credentials.

    Raises:
        InvalidCredentials: If the client id or secret is blank
    """
    if not credentials.client_id.strip():
        raise InvalidCredentials("Client ID cannot be empty", provider_id)
    if not credentials.client_secret.get_secret_value().strip():
        raise InvalidCredentials("Client Secret cannot be empty", provider_id)


class AuthSessionManager:
    """Token and session lifecycle for one provider."""

    def __init__(
        self,
        provider_id: str,
        rate_limiter: RateLimiter,
        session_factory: Callable[[], ProviderSession],
        lock: asyncio.Lock,
        sinks: EventSinks,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the manager.

        Args:
            provider_id: Provider this manager belongs to
            rate_limiter: The provider's rate limiter
            session_factory: Builds a new ProviderSession
            lock: The provider's exclusive lock
            sinks: Audit/metrics reporting
            clock: Source of the current time
        """
        self.provider_id = provider_id
        self.state = AuthState.UNAUTHENTICATED
        self._limiter = rate_limiter
        self._session_factory = session_factory
        self._lock = lock
        self._sinks = sinks
        self._clock = clock
        self._token: AuthToken | None = None
        self._session: ProviderSession | None = None
        self._refresh_task: asyncio.Task[AuthToken] | None = None

    @property
    def token(self) -> AuthToken | None:
        return self._token

    @property
    def session(self) -> ProviderSession | None:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_open

    def has_valid_token(self) -> bool:
        return self._token is not None and not self._token.is_expired(self._clock())

    def open_session(self) -> ProviderSession:
        """Return the open session, creating one if needed."""
        if self._session is None or not self._session.is_open:
            self._session = self._session_factory()
            self._sinks.audit("session_initialized", self.provider_id)
            self._log("info", "Session initialized")
        return self._session

    # --- Public lifecycle ---

    async def authenticate(self, credentials: Credentials) -> AuthToken:
        """Exchange credentials for a token.

        Raises:
            InvalidCredentials: Blank client id or secret, or the provider
                rejected them (HTTP 401/403)
            RateLimitExceeded: No permit available
            InvalidAuthResponse: Provider answered without an access token
            NetworkError / EncryptionError: Infrastructure failure
        """
        validate_credentials(credentials, self.provider_id)

        async with self._lock:
            self._admit()
            session = self.open_session()
            self._transition(AuthState.AUTHENTICATING, "authentication_started")

        try:
            response = await session.authenticate(credentials)
            token = self._token_from_response(response)
        except asyncio.CancelledError:
            self._abandon_authentication()
            raise
        except NetworkError as e:
            if e.auth_rejected:
                self._token = None
            self._abandon_authentication()
            self._sinks.metric("authentication", self.provider_id, success=False)
            if e.auth_rejected:
                raise InvalidCredentials(
                    f"rejected by provider (HTTP {e.status_code})", self.provider_id
                ) from e
            raise
        except InsuranceError as e:
            if isinstance(e, InvalidAuthResponse):
                self._token = None
            self._abandon_authentication()
            self._sinks.metric("authentication", self.provider_id, success=False)
            raise

        try:
            async with self._lock:
                self._token = token
                self._transition(AuthState.AUTHENTICATED, "authentication_success")
        except asyncio.CancelledError:
            self._abandon_authentication()
            raise
        return token

    async def refresh(self, force: bool = False) -> AuthToken:
        """Refresh the token if it is inside the refresh margin.

        Concurrent callers share one in-flight refresh.

        Args:
            force: Refresh even if the token is still fresh

        Returns:
            The current (possibly new) token

        Raises:
            NoActiveToken: Nothing to refresh
            NoActiveSession: Token exists but the session is gone
            RateLimitExceeded: No permit available for the refresh
            InvalidAuthResponse: Provider answered without an access token
            NetworkError / EncryptionError: Infrastructure failure
        """
        async with self._lock:
            pending = self._refresh_task or self._start_refresh_locked(force)
            if pending is None:
                return self._require_token()
        return await self._join_refresh(pending)

    async def revoke(self) -> None:
        """Revoke the token server-side and clear local state.

        Raises:
            NoActiveToken: Nothing to revoke
            NoActiveSession: No session to send the revocation through
            RateLimitExceeded: No permit available
        """
        while True:
            async with self._lock:
                pending = self._refresh_task
                if pending is None:
                    token = self._require_token()
                    session = self._require_session()
                    self._admit()
                    break
            await asyncio.wait([pending])

        await session.revoke_token(token.access_token)

        async with self._lock:
            # A concurrent authenticate may have installed a newer token
            revoked = self._token == token
            if revoked:
                self._token = None
                self._session = None
                self._transition(AuthState.REVOKED, "token_revoked")

        if revoked:
            await session.close()

    async def close(self) -> None:
        """Close the session and forget the token."""
        async with self._lock:
            if self._refresh_task is not None:
                self._refresh_task.cancel()
                self._refresh_task = None
            session = self._session
            self._session = None
            self._token = None
            self.state = AuthState.UNAUTHENTICATED
        if session is not None:
            await session.close()

    # --- Used by provider operations ---

    async def checkout(self) -> tuple[ProviderSession, AuthToken]:
        """Take a fresh token and a rate-limit permit for one remote call.

        The token read and the permit happen under the provider lock. An
        automatic refresh is awaited outside it; the caller sends the request
        after this returns.

        Raises:
            NoActiveToken: No token, or the automatic refresh failed
            NoActiveSession: No open session
            RateLimitExceeded: No permit available
        """
        async with self._lock:
            token = self._require_token()
            pending = self._refresh_task or self._start_refresh_locked()
            if pending is None:
                session = self._require_session()
                self._admit()
                return session, token

        token = await self._await_refresh(pending)
        async with self._lock:
            session = self._require_session()
            self._admit()
            return session, token

    async def recover_rejected(self, rejected: AuthToken) -> None:
        """Run one forced refresh after the provider rejected ``rejected``.

        Skips the refresh when another caller already replaced the token.

        Raises:
            NoActiveToken: The refresh failed and the token was cleared
        """
        async with self._lock:
            token = self._require_token()
            pending = self._refresh_task
            if pending is None:
                if token != rejected:
                    return
                pending = self._start_refresh_locked(force=True)
        await self._await_refresh(pending)

    async def invalidate(self, reason: str) -> None:
        """Drop the token after a hard authentication failure."""
        async with self._lock:
            if self._token is None:
                return
            self._token = None
            self._transition(
                AuthState.UNAUTHENTICATED, "token_invalidated", success=False, reason=reason
            )

    # --- Internals ---

    def _require_token(self) -> AuthToken:
        if self._token is None:
            raise NoActiveToken(self.provider_id)
        return self._token

    def _require_session(self) -> ProviderSession:
        session = self._session
        if session is None or not session.is_open:
            raise NoActiveSession(self.provider_id)
        return session

    def _start_refresh_locked(self, force: bool = False) -> asyncio.Task[AuthToken] | None:
        """Spend a permit and launch the refresh exchange.

        Returns None when the token is still fresh. Must run under the lock.
        """
        token = self._require_token()
        if not force and not token.needs_refresh(self._clock()):
            return None

        session = self._require_session()
        self._admit()
        self._transition(AuthState.REFRESHING, "token_refresh_started")
        self._refresh_task = asyncio.ensure_future(self._run_refresh(session, token))
        return self._refresh_task

    async def _join_refresh(self, pending: asyncio.Task[AuthToken]) -> AuthToken:
        # Shielded so one waiter's cancellation does not abort the shared refresh
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            if pending.cancelled():
                raise NoActiveToken(self.provider_id) from None
            raise

    async def _await_refresh(self, pending: asyncio.Task[AuthToken]) -> AuthToken:
        try:
            return await self._join_refresh(pending)
        except NoActiveToken:
            raise
        except InsuranceError as e:
            raise NoActiveToken(self.provider_id) from e

    async def _run_refresh(self, session: ProviderSession, token: AuthToken) -> AuthToken:
        try:
            try:
                response = await session.refresh_token(token.refresh_token)
                new_token = self._token_from_response(response, token.refresh_token)
            except InsuranceError as e:
                async with self._lock:
                    if self._token == token:
                        self._token = None
                    final_state = (
                        AuthState.EXPIRED
                        if token.is_expired(self._clock())
                        else AuthState.UNAUTHENTICATED
                    )
                    self._transition(
                        final_state, "token_refresh_failed", success=False, error=e.code
                    )
                raise

            async with self._lock:
                self._token = new_token
                self._transition(AuthState.AUTHENTICATED, "token_refreshed")
            return new_token
        except asyncio.CancelledError:
            if self.state is AuthState.REFRESHING:
                self.state = AuthState.AUTHENTICATED
            raise
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None

    def _admit(self) -> None:
        if not self._limiter.try_acquire(self._clock()):
            raise RateLimitExceeded(self.provider_id)

    def _abandon_authentication(self) -> None:
        # A cancelled or failed exchange must not leave the state at authenticating
        if self.state is AuthState.AUTHENTICATING:
            self.state = (
                AuthState.AUTHENTICATED if self._token is not None else AuthState.UNAUTHENTICATED
            )
            self._sinks.audit(
                "authentication_failed", self.provider_id, status="error", to_state=self.state.value
            )

    def _token_from_response(
        self, response: AuthResponse, previous_refresh_token: str = ""
    ) -> AuthToken:
        if not response.access_token:
            raise InvalidAuthResponse("Access token cannot be empty", self.provider_id)

        now = self._clock()
        if response.expires_at is not None:
            expires_at = response.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        else:
            lifetime = (
                response.expires_in
                if response.expires_in is not None
                else DEFAULT_TOKEN_LIFETIME_SECONDS
            )
            expires_at = now + timedelta(seconds=lifetime)

        return AuthToken(
            access_token=response.access_token,
            refresh_token=response.refresh_token or previous_refresh_token,
            expires_at=expires_at,
            token_type=response.token_type,
        )

    def _transition(
        self, state: AuthState, action: str, success: bool = True, **details: Any
    ) -> None:
        previous = self.state
        self.state = state
        self._sinks.audit(
            action,
            self.provider_id,
            status="success" if success else "error",
            from_state=previous.value,
            to_state=state.value,
            **details,
        )
        self._sinks.metric(action, self.provider_id, success=success)
        self._log("debug", f"{previous.value} -> {state.value} ({action})")

    def _log(self, level: str, message: str, **context: Any) -> None:
        log_fn = getattr(logger, level.lower(), logger.info)
        log_fn(
            f"[{self.provider_id}] {message}",
            extra={"provider_id": self.provider_id, **context},
        )
