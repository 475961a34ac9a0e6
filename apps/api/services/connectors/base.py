"""Base OAuth 2.0 provider: the capability contract every platform adapter implements."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Type
from urllib.parse import urlencode

import httpx

from services.connectors.errors import (
    ContentFetchError,
    ProviderError,
    RevocationNotSupportedError,
    TokenExchangeError,
    TokenRefreshError,
    UnsupportedContentTypeError,
    describe_provider_error,
)
from services.connectors.pkce import generate_code_challenge, generate_code_verifier
from services.connectors.types import (
    AuthorizationParams,
    AuthorizationRequest,
    OAuthConfig,
    PlatformProfile,
    TokenSet,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

ContentFetcher = Callable[[str], Awaitable[Any]]


def _response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class BaseOAuthProvider(ABC):
    """Vanilla authorization-code flow; platforms override where they deviate."""

    platform: str
    provider_name: str
    scope_delimiter: str = " "
    # Instagram refreshes with the current access token instead of a refresh token.
    refresh_uses_access_token: bool = False

    def __init__(
        self,
        platform: str,
        config: OAuthConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.platform = platform
        self.config = config
        self.timeout = timeout
        self._http_client = http_client

    @property
    def scopes(self) -> list:
        return list(self.config.scopes)

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        error_cls: Type[ProviderError],
        **kwargs: Any,
    ) -> Any:
        """Issue one provider call and translate every transport failure to ``error_cls``."""
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                if not response.content:
                    return {}
                return response.json()
        except httpx.HTTPStatusError as exc:
            description = describe_provider_error(
                _response_payload(exc.response),
                f"HTTP {exc.response.status_code}",
            )
            raise error_cls(self.provider_name, description) from exc
        except httpx.TimeoutException as exc:
            raise error_cls(self.provider_name, "request timed out") from exc
        except httpx.HTTPError as exc:
            raise error_cls(self.provider_name, str(exc) or exc.__class__.__name__) from exc
        except ValueError as exc:
            raise error_cls(self.provider_name, "provider returned invalid JSON") from exc

    def _bearer(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    def _token_auth(self) -> Optional[httpx.Auth]:
        """Client authentication for the token endpoint; credentials go in the body by default."""
        return None

    def _parse_token_response(self, data: Any, error_cls: Type[ProviderError]) -> TokenSet:
        if not isinstance(data, dict):
            raise error_cls(self.provider_name, "unexpected token response")
        try:
            tokens = TokenSet.from_payload(data)
        except (TypeError, ValueError) as exc:
            raise error_cls(self.provider_name, "malformed token response") from exc
        if not tokens.access_token:
            raise error_cls(
                self.provider_name,
                describe_provider_error(data, "token response did not include an access token"),
            )
        return tokens

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def serialize_scopes(self) -> str:
        return self.scope_delimiter.join(self.config.scopes)

    def build_authorization_params(self, state: str) -> AuthorizationParams:
        """Fresh per-attempt parameters; PKCE material only when the platform uses it."""
        if not self.config.use_pkce:
            return AuthorizationParams(state=state)
        verifier = generate_code_verifier()
        return AuthorizationParams(
            state=state,
            code_verifier=verifier,
            code_challenge=generate_code_challenge(verifier),
        )

    def authorization_url(self, params: AuthorizationParams) -> str:
        query: Dict[str, str] = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": self.serialize_scopes(),
            "state": params.state,
        }
        if self.config.use_pkce:
            if not params.code_challenge:
                raise ValueError(f"{self.provider_name} requires a PKCE code challenge")
            query["code_challenge"] = params.code_challenge
            query["code_challenge_method"] = "S256"
        if params.nonce:
            query["nonce"] = params.nonce
        query.update(self.config.additional_params)

        separator = "&" if "?" in self.config.authorization_url else "?"
        return f"{self.config.authorization_url}{separator}{urlencode(query)}"

    def prepare_authorization(self, state: str) -> AuthorizationRequest:
        params = self.build_authorization_params(state)
        return AuthorizationRequest(url=self.authorization_url(params), params=params)

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    async def exchange_code_for_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        data: Dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": self.config.redirect_uri,
        }
        if self.config.use_pkce:
            if not code_verifier:
                raise TokenExchangeError(self.provider_name, "missing PKCE code verifier")
            data["code_verifier"] = code_verifier

        payload = await self._request(
            "POST",
            self.config.token_url,
            error_cls=TokenExchangeError,
            data=data,
            auth=self._token_auth(),
            headers={"Accept": "application/json"},
        )
        return self._parse_token_response(payload, TokenExchangeError)

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        payload = await self._request(
            "POST",
            self.config.token_url,
            error_cls=TokenRefreshError,
            data=data,
            auth=self._token_auth(),
            headers={"Accept": "application/json"},
        )
        return self._parse_token_response(payload, TokenRefreshError)

    async def revoke_token(self, token: str, token_type_hint: Optional[str] = None) -> None:
        raise RevocationNotSupportedError(self.provider_name)

    @property
    def supports_revocation(self) -> bool:
        return type(self).revoke_token is not BaseOAuthProvider.revoke_token

    # ------------------------------------------------------------------
    # Profile and content
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_user_profile(self, access_token: str) -> PlatformProfile:
        raise NotImplementedError

    @abstractmethod
    def content_fetchers(self) -> Dict[str, ContentFetcher]:
        """Map of content-type tag to coroutine taking an access token."""
        raise NotImplementedError

    @property
    def content_types(self) -> list:
        return sorted(self.content_fetchers())

    async def fetch_user_content(self, access_token: str, content_type: str) -> Any:
        fetcher = self.content_fetchers().get(content_type)
        if fetcher is None:
            raise UnsupportedContentTypeError(self.provider_name, content_type)
        logger.debug("Fetching %s content type=%s", self.provider_name, content_type)
        return await fetcher(access_token)

    async def _get_content(self, url: str, **kwargs: Any) -> Any:
        return await self._request("GET", url, error_cls=ContentFetchError, **kwargs)
