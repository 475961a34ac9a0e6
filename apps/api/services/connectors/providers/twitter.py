"""Twitter / X provider. Always PKCE; confidential-client Basic auth on the token endpoint."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional

import httpx

from services.connectors.base import BaseOAuthProvider, ContentFetcher
from services.connectors.errors import ContentFetchError, ProfileFetchError, TokenRevocationError
from services.connectors.types import OAuthConfig, PlatformProfile


API_URL = "https://api.twitter.com/2"
REVOKE_URL = "https://api.twitter.com/2/oauth2/revoke"


class TwitterProvider(BaseOAuthProvider):
    provider_name = "twitter"

    def __init__(self, config: OAuthConfig, **kwargs: Any) -> None:
        super().__init__("twitter", replace(config, use_pkce=True), **kwargs)

    def _token_auth(self) -> Optional[httpx.Auth]:
        return httpx.BasicAuth(self.config.client_id, self.config.client_secret)

    async def _me(self, access_token: str, error_cls=ProfileFetchError, fields: Optional[str] = None) -> Dict[str, Any]:
        params = {"user.fields": fields} if fields else None
        data = await self._request(
            "GET",
            f"{API_URL}/users/me",
            error_cls=error_cls,
            headers=self._bearer(access_token),
            params=params,
        )
        user = data.get("data") or {}
        if not user.get("id"):
            raise error_cls(self.provider_name, "users/me response did not include an id")
        return user

    async def get_user_profile(self, access_token: str) -> PlatformProfile:
        user = await self._me(
            access_token,
            fields="id,name,username,profile_image_url,description,public_metrics,created_at,verified",
        )
        metrics = user.get("public_metrics") or {}
        return PlatformProfile(
            id=str(user["id"]),
            username=user.get("username"),
            display_name=user.get("name"),
            metadata={
                "profile_picture": user.get("profile_image_url"),
                "bio": user.get("description"),
                "follower_count": metrics.get("followers_count"),
                "following_count": metrics.get("following_count"),
                "tweet_count": metrics.get("tweet_count"),
                "verified": user.get("verified"),
                "created_at": user.get("created_at"),
            },
        )

    async def revoke_token(self, token: str, token_type_hint: Optional[str] = None) -> None:
        await self._request(
            "POST",
            REVOKE_URL,
            error_cls=TokenRevocationError,
            data={
                "token": token,
                "token_type_hint": token_type_hint or "access_token",
                "client_id": self.config.client_id,
            },
            auth=self._token_auth(),
        )

    def content_fetchers(self) -> Dict[str, ContentFetcher]:
        return {
            "tweets": self._fetch_tweets,
            "mentions": self._fetch_mentions,
            "followers": self._fetch_followers,
        }

    async def _fetch_tweets(self, access_token: str) -> List[Dict[str, Any]]:
        user = await self._me(access_token, error_cls=ContentFetchError)
        data = await self._get_content(
            f"{API_URL}/users/{user['id']}/tweets",
            headers=self._bearer(access_token),
            params={
                "tweet.fields": "id,text,created_at,public_metrics,referenced_tweets,attachments",
                "max_results": 25,
                "exclude": "retweets,replies",
            },
        )
        tweets = []
        for tweet in data.get("data") or []:
            metrics = tweet.get("public_metrics") or {}
            tweets.append(
                {
                    "id": tweet.get("id"),
                    "text": tweet.get("text"),
                    "created_at": tweet.get("created_at"),
                    "like_count": metrics.get("like_count"),
                    "retweet_count": metrics.get("retweet_count"),
                    "reply_count": metrics.get("reply_count"),
                    "quote_count": metrics.get("quote_count"),
                    "impression_count": metrics.get("impression_count"),
                }
            )
        return tweets

    async def _fetch_mentions(self, access_token: str) -> List[Dict[str, Any]]:
        user = await self._me(access_token, error_cls=ContentFetchError)
        data = await self._get_content(
            f"{API_URL}/users/{user['id']}/mentions",
            headers=self._bearer(access_token),
            params={"tweet.fields": "id,text,created_at,author_id,public_metrics", "max_results": 25},
        )
        return list(data.get("data") or [])

    async def _fetch_followers(self, access_token: str) -> List[Dict[str, Any]]:
        user = await self._me(access_token, error_cls=ContentFetchError)
        data = await self._get_content(
            f"{API_URL}/users/{user['id']}/followers",
            headers=self._bearer(access_token),
            params={"user.fields": "id,name,username,profile_image_url,public_metrics", "max_results": 25},
        )
        followers = []
        for follower in data.get("data") or []:
            metrics = follower.get("public_metrics") or {}
            followers.append(
                {
                    "id": follower.get("id"),
                    "username": follower.get("username"),
                    "display_name": follower.get("name"),
                    "profile_picture": follower.get("profile_image_url"),
                    "follower_count": metrics.get("followers_count"),
                    "following_count": metrics.get("following_count"),
                }
            )
        return followers
