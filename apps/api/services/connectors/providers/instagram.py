"""Instagram (Business Login) provider.

Instagram deviates from vanilla OAuth in two places:

* the code exchange returns a short-lived token that must immediately be
  traded for a long-lived (~60 day) token with a second call;
* there is no refresh token. A long-lived token is "refreshed" with a GET
  against ``/refresh_access_token`` keyed by the current access token.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from services.connectors.base import BaseOAuthProvider, ContentFetcher
from services.connectors.errors import (
    ProfileFetchError,
    TokenExchangeError,
    TokenRefreshError,
)
from services.connectors.types import OAuthConfig, PlatformProfile, TokenSet


GRAPH_API_URL = "https://graph.instagram.com"


class InstagramProvider(BaseOAuthProvider):
    provider_name = "instagram"
    scope_delimiter = ","
    refresh_uses_access_token = True

    def __init__(self, config: OAuthConfig, **kwargs: Any) -> None:
        super().__init__("instagram", config, **kwargs)

    async def exchange_code_for_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        short_lived = await self._request(
            "POST",
            self.config.token_url,
            error_cls=TokenExchangeError,
            data={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": self.config.redirect_uri,
                "code": code,
            },
        )
        short_tokens = self._parse_token_response(short_lived, TokenExchangeError)

        long_lived = await self._request(
            "GET",
            f"{GRAPH_API_URL}/access_token",
            error_cls=TokenExchangeError,
            params={
                "grant_type": "ig_exchange_token",
                "client_secret": self.config.client_secret,
                "access_token": short_tokens.access_token,
            },
        )
        long_tokens = self._parse_token_response(long_lived, TokenExchangeError)
        return TokenSet(
            access_token=long_tokens.access_token,
            expires_in=long_tokens.expires_in,
            token_type="Bearer",
            scope=short_tokens.scope,
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """``refresh_token`` here is the current long-lived access token."""
        payload = await self._request(
            "GET",
            f"{GRAPH_API_URL}/refresh_access_token",
            error_cls=TokenRefreshError,
            params={
                "grant_type": "ig_refresh_token",
                "access_token": refresh_token,
            },
        )
        tokens = self._parse_token_response(payload, TokenRefreshError)
        return TokenSet(access_token=tokens.access_token, expires_in=tokens.expires_in, token_type="Bearer")

    async def get_user_profile(self, access_token: str) -> PlatformProfile:
        data = await self._request(
            "GET",
            f"{GRAPH_API_URL}/me",
            error_cls=ProfileFetchError,
            params={
                "fields": "id,username,account_type,media_count",
                "access_token": access_token,
            },
        )
        if not data.get("id"):
            raise ProfileFetchError(self.provider_name, "profile response did not include an id")
        return PlatformProfile(
            id=str(data["id"]),
            username=data.get("username"),
            display_name=data.get("username"),
            metadata={
                "account_type": data.get("account_type"),
                "media_count": data.get("media_count"),
            },
        )

    def content_fetchers(self) -> Dict[str, ContentFetcher]:
        return {
            "posts": self._fetch_posts,
            "stories": self._fetch_stories,
            "insights": self._fetch_insights,
        }

    async def _fetch_posts(self, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get_content(
            f"{GRAPH_API_URL}/me/media",
            params={
                "fields": "id,caption,media_type,media_url,thumbnail_url,permalink,timestamp,like_count,comments_count",
                "access_token": access_token,
                "limit": 25,
            },
        )
        return [
            {
                "id": post.get("id"),
                "caption": post.get("caption"),
                "media_type": post.get("media_type"),
                "media_url": post.get("media_url"),
                "thumbnail_url": post.get("thumbnail_url"),
                "permalink": post.get("permalink"),
                "timestamp": post.get("timestamp"),
                "like_count": post.get("like_count"),
                "comment_count": post.get("comments_count"),
            }
            for post in data.get("data") or []
        ]

    async def _fetch_stories(self, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get_content(
            f"{GRAPH_API_URL}/me/stories",
            params={
                "fields": "id,media_type,media_url,permalink,timestamp",
                "access_token": access_token,
            },
        )
        return list(data.get("data") or [])

    async def _fetch_insights(self, access_token: str) -> Dict[str, Any]:
        return await self._get_content(
            f"{GRAPH_API_URL}/me/insights",
            params={
                "metric": "impressions,reach,profile_views",
                "period": "day",
                "access_token": access_token,
            },
        )
