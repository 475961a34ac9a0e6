"""Connection orchestrator: authorize -> callback -> exchange -> profile -> persist, plus refresh/disconnect."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

from config import Settings, settings
from services.connection_store import ConnectionStore
from services.connectors.base import BaseOAuthProvider
from services.connectors.errors import (
    ConnectionNotFoundError,
    ConnectorError,
    MissingParameterError,
    NoRefreshTokenError,
    StoreError,
    TokenRefreshError,
)
from services.connectors.pkce import generate_state
from services.connectors.registry import get_connector_provider, require_platform
from services.connectors.state_store import PendingAuthorization, PendingAuthorizationStore
from services.connectors.types import ConnectionRecord, PlatformProfile, TokenSet

logger = logging.getLogger(__name__)

ProviderFactory = Callable[..., BaseOAuthProvider]

_SAFE_ERROR_CODE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


class AttemptState(str, Enum):
    UNSTARTED = "unstarted"
    AUTHORIZING = "authorizing"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    FETCHING_PROFILE = "fetching_profile"
    PERSISTING = "persisting"
    COMPLETE = "complete"
    ERRORED = "errored"


_NEXT_STATE = {
    AttemptState.UNSTARTED: AttemptState.AUTHORIZING,
    AttemptState.AUTHORIZING: AttemptState.AWAITING_CALLBACK,
    AttemptState.AWAITING_CALLBACK: AttemptState.EXCHANGING,
    AttemptState.EXCHANGING: AttemptState.FETCHING_PROFILE,
    AttemptState.FETCHING_PROFILE: AttemptState.PERSISTING,
    AttemptState.PERSISTING: AttemptState.COMPLETE,
}

_TERMINAL_STATES = {AttemptState.COMPLETE, AttemptState.ERRORED}


@dataclass
class ConnectionAttempt:
    """State machine for one connection attempt. ERRORED is reachable from any non-terminal state."""

    platform: str
    state: AttemptState = AttemptState.UNSTARTED
    history: List[AttemptState] = field(default_factory=list)
    error_code: Optional[str] = None

    def __post_init__(self) -> None:
        self.history.append(self.state)

    def advance(self, target: AttemptState) -> None:
        if _NEXT_STATE.get(self.state) != target:
            raise ValueError(f"Illegal connection attempt transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)
        logger.debug("%s connection attempt -> %s", self.platform, target.value)

    def fail(self, error_code: str) -> None:
        if self.state in _TERMINAL_STATES:
            raise ValueError(f"Connection attempt already {self.state.value}")
        self.state = AttemptState.ERRORED
        self.history.append(AttemptState.ERRORED)
        self.error_code = error_code
        logger.debug("%s connection attempt errored: %s", self.platform, error_code)


@dataclass(frozen=True)
class CallbackResult:
    platform: str
    redirect_url: str
    attempt: ConnectionAttempt
    error_code: Optional[str] = None
    connection: Optional[ConnectionRecord] = None

    @property
    def success(self) -> bool:
        return self.error_code is None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_expiry(issued_at: datetime, expires_in: Optional[int]) -> Optional[datetime]:
    if expires_in is None:
        return None
    return issued_at + timedelta(seconds=int(expires_in))


class ConnectionService:
    """Drives connection lifecycles against a ``ConnectionStore``.

    Holds no per-attempt state: everything that must survive the provider
    redirect lives in the pending-authorization store, keyed by ``state``.
    """

    def __init__(
        self,
        store: ConnectionStore,
        state_store: PendingAuthorizationStore,
        *,
        app_settings: Optional[Settings] = None,
        provider_factory: ProviderFactory = get_connector_provider,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.state_store = state_store
        self.settings = app_settings or settings
        self.provider_factory = provider_factory
        self.clock = clock

    def _provider(self, platform: str, shop: Optional[str] = None) -> BaseOAuthProvider:
        return self.provider_factory(platform, shop=shop, app_settings=self.settings)

    # ------------------------------------------------------------------
    # Redirect targets
    # ------------------------------------------------------------------

    def _dashboard_url(self, **params: str) -> str:
        base = self.settings.FRONTEND_URL.rstrip("/")
        return f"{base}/dashboard?{urlencode(params)}"

    def success_redirect(self, platform: str) -> str:
        return self._dashboard_url(connected=platform)

    def error_redirect(self, error_code: str) -> str:
        return self._dashboard_url(error=error_code)

    # ------------------------------------------------------------------
    # Authorize
    # ------------------------------------------------------------------

    async def authorize(self, platform: str, user_id: Optional[str], shop: Optional[str] = None) -> str:
        """Return the provider authorize URL for ``user_id`` and remember the attempt under a fresh state."""
        key = require_platform(platform)
        if not user_id:
            raise MissingParameterError("user_id")
        attempt = ConnectionAttempt(platform=key)
        attempt.advance(AttemptState.AUTHORIZING)

        provider = self._provider(key, shop=shop)
        request = provider.prepare_authorization(generate_state())
        await self.state_store.save(
            PendingAuthorization(
                state=request.params.state,
                user_id=str(user_id),
                platform=key,
                code_verifier=request.params.code_verifier,
                shop=getattr(provider, "shop", None),
            )
        )
        attempt.advance(AttemptState.AWAITING_CALLBACK)
        logger.info("OAuth authorize issued platform=%s user=%s", key, user_id)
        return request.url

    # ------------------------------------------------------------------
    # Callback
    # ------------------------------------------------------------------

    def _failed(self, attempt: ConnectionAttempt, error_code: str) -> CallbackResult:
        attempt.fail(error_code)
        return CallbackResult(
            platform=attempt.platform,
            redirect_url=self.error_redirect(error_code),
            attempt=attempt,
            error_code=error_code,
        )

    def build_connection(
        self,
        *,
        user_id: str,
        platform: str,
        provider: BaseOAuthProvider,
        tokens: TokenSet,
        profile: PlatformProfile,
    ) -> ConnectionRecord:
        now = self.clock()
        return ConnectionRecord(
            user_id=user_id,
            platform=platform,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            platform_user_id=profile.id,
            platform_username=profile.username,
            platform_email=profile.email,
            display_name=profile.display_name,
            token_expires_at=compute_expiry(now, tokens.expires_in),
            token_status="active",
            scopes=provider.scopes,
            metadata=profile.as_metadata(),
            connected_at=now,
            last_refresh_at=now,
        )

    async def handle_callback(
        self,
        platform: str,
        *,
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
    ) -> CallbackResult:
        """Complete a connection. Never raises; every outcome is a dashboard redirect."""
        attempt = ConnectionAttempt(platform=str(platform), state=AttemptState.AWAITING_CALLBACK)

        if error:
            error_code = error if _SAFE_ERROR_CODE.match(error) else "oauth_failed"
            logger.info("OAuth callback for %s returned provider error %s", platform, error_code)
            return self._failed(attempt, error_code)
        if not code or not state:
            return self._failed(attempt, "missing_code_or_state")

        try:
            key = require_platform(platform)
        except ConnectorError:
            return self._failed(attempt, "oauth_failed")

        pending = await self.state_store.consume(state)
        if pending is None or pending.platform != key:
            logger.warning("OAuth callback for %s with unknown or expired state", key)
            return self._failed(attempt, "invalid_state")

        try:
            provider = self._provider(key, shop=pending.shop)
            attempt.advance(AttemptState.EXCHANGING)
            tokens = await provider.exchange_code_for_token(code, pending.code_verifier)
            attempt.advance(AttemptState.FETCHING_PROFILE)
            profile = await provider.get_user_profile(tokens.access_token)
        except ConnectorError as exc:
            logger.warning("OAuth callback for %s failed during %s: %s", key, attempt.state.value, exc)
            return self._failed(attempt, "oauth_failed")
        except Exception:
            logger.exception("Unexpected error in %s OAuth callback during %s", key, attempt.state.value)
            return self._failed(attempt, "oauth_failed")

        attempt.advance(AttemptState.PERSISTING)
        record = self.build_connection(
            user_id=pending.user_id,
            platform=key,
            provider=provider,
            tokens=tokens,
            profile=profile,
        )
        try:
            saved = await self.store.upsert(record)
        except StoreError as exc:
            logger.error("Persisting %s connection for user %s failed: %s", key, pending.user_id, exc)
            return self._failed(attempt, "database_error")

        attempt.advance(AttemptState.COMPLETE)
        logger.info("Connected platform=%s user=%s platform_user=%s", key, pending.user_id, profile.id)
        return CallbackResult(
            platform=key,
            redirect_url=self.success_redirect(key),
            attempt=attempt,
            connection=saved,
        )

    # ------------------------------------------------------------------
    # Lifecycle after connect
    # ------------------------------------------------------------------

    async def _require_connection(self, platform: str, user_id: Optional[str]) -> ConnectionRecord:
        if not user_id:
            raise MissingParameterError("user_id")
        record = await self.store.select_one(str(user_id), platform)
        if record is None:
            raise ConnectionNotFoundError(str(user_id), platform)
        return record

    def _provider_for(self, record: ConnectionRecord) -> BaseOAuthProvider:
        return self._provider(record.platform, shop=record.metadata.get("shop"))

    async def refresh(self, platform: str, user_id: Optional[str]) -> ConnectionRecord:
        key = require_platform(platform)
        record = await self._require_connection(key, user_id)
        provider = self._provider_for(record)

        credential = record.access_token if provider.refresh_uses_access_token else record.refresh_token
        if record.token_status == "revoked" or not credential:
            raise NoRefreshTokenError(key)

        try:
            tokens = await provider.refresh_access_token(credential)
        except TokenRefreshError as exc:
            logger.warning("Token refresh failed platform=%s user=%s: %s", key, record.user_id, exc)
            try:
                await self.store.update(replace(record, token_status="error"))
            except StoreError:
                logger.exception("Could not mark %s connection as errored for user %s", key, record.user_id)
            raise

        now = self.clock()
        refreshed = replace(
            record,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or record.refresh_token,
            token_expires_at=compute_expiry(now, tokens.expires_in),
            token_status="active",
            last_refresh_at=now,
        )
        saved = await self.store.update(refreshed)
        logger.info("Refreshed token platform=%s user=%s", key, record.user_id)
        return saved

    async def disconnect(self, platform: str, user_id: Optional[str]) -> None:
        key = require_platform(platform)
        if not user_id:
            raise MissingParameterError("user_id")
        await self.store.delete(str(user_id), key)
        logger.info("Disconnected platform=%s user=%s", key, user_id)

    async def revoke(self, platform: str, user_id: Optional[str]) -> ConnectionRecord:
        key = require_platform(platform)
        record = await self._require_connection(key, user_id)
        provider = self._provider_for(record)
        if record.access_token:
            await provider.revoke_token(record.access_token, "access_token")
        # A revoked row keeps no token material, so refresh cannot reactivate it.
        saved = await self.store.update(
            replace(record, access_token=None, refresh_token=None, token_status="revoked")
        )
        logger.info("Revoked token platform=%s user=%s", key, record.user_id)
        return saved

    async def list_connections(self, user_id: Optional[str]) -> List[ConnectionRecord]:
        """All connections for ``user_id``; active rows past their expiry are marked expired."""
        if not user_id:
            raise MissingParameterError("user_id")
        now = self.clock()
        records = []
        for record in await self.store.select_by_user(str(user_id)):
            if (
                record.token_status == "active"
                and record.token_expires_at is not None
                and record.token_expires_at <= now
            ):
                record = await self.store.update(replace(record, token_status="expired"))
            records.append(record)
        return records

    async def fetch_content(self, platform: str, user_id: Optional[str], content_type: str) -> Any:
        key = require_platform(platform)
        record = await self._require_connection(key, user_id)
        if not record.access_token:
            raise ConnectionNotFoundError(record.user_id, key)
        provider = self._provider_for(record)
        content = await provider.fetch_user_content(record.access_token, content_type)
        await self.store.update(replace(record, last_synced_at=self.clock()))
        return content

    async def connected_platforms(self, user_id: str) -> Dict[str, str]:
        return {record.platform: record.token_status for record in await self.store.select_by_user(user_id)}
