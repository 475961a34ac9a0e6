"""Google provider shared by YouTube and Google Calendar."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.connectors.base import BaseOAuthProvider, ContentFetcher
from services.connectors.errors import ProfileFetchError, TokenRevocationError
from services.connectors.types import OAuthConfig, PlatformProfile


USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"
CALENDAR_API_URL = "https://www.googleapis.com/calendar/v3"


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class GoogleProvider(BaseOAuthProvider):
    """Same credentials and token endpoints for both platforms; the API surface differs."""

    def __init__(self, platform: str, config: OAuthConfig, **kwargs: Any) -> None:
        if platform not in ("youtube", "google_calendar"):
            raise ValueError(f"GoogleProvider does not serve platform {platform}")
        super().__init__(platform, config, **kwargs)
        self.provider_name = platform

    async def get_user_profile(self, access_token: str) -> PlatformProfile:
        data = await self._request(
            "GET",
            USERINFO_URL,
            error_cls=ProfileFetchError,
            headers=self._bearer(access_token),
        )
        profile_id = data.get("sub") or data.get("id")
        if not profile_id:
            raise ProfileFetchError(self.provider_name, "profile response did not include a subject")
        return PlatformProfile(
            id=str(profile_id),
            email=data.get("email"),
            display_name=data.get("name"),
            metadata={
                "profile_picture": data.get("picture"),
                "email_verified": data.get("email_verified"),
            },
        )

    async def revoke_token(self, token: str, token_type_hint: Optional[str] = None) -> None:
        data = {"token": token}
        if token_type_hint:
            data["token_type_hint"] = token_type_hint
        await self._request("POST", REVOKE_URL, error_cls=TokenRevocationError, data=data)

    def content_fetchers(self) -> Dict[str, ContentFetcher]:
        if self.platform == "youtube":
            return {
                "videos": self._fetch_youtube_videos,
                "channel": self._fetch_youtube_channel,
                "playlists": self._fetch_youtube_playlists,
            }
        return {
            "events": self._fetch_calendar_events,
            "calendars": self._fetch_calendar_list,
        }

    # YouTube ---------------------------------------------------------------

    async def _fetch_youtube_videos(self, access_token: str) -> List[Dict[str, Any]]:
        headers = self._bearer(access_token)
        channels = await self._get_content(
            f"{YOUTUBE_API_URL}/channels",
            headers=headers,
            params={"part": "contentDetails", "mine": "true"},
        )
        items = channels.get("items") or []
        uploads_playlist_id = (
            ((items[0].get("contentDetails") or {}).get("relatedPlaylists") or {}).get("uploads")
            if items
            else None
        )
        if not uploads_playlist_id:
            return []

        playlist = await self._get_content(
            f"{YOUTUBE_API_URL}/playlistItems",
            headers=headers,
            params={"part": "snippet,contentDetails", "playlistId": uploads_playlist_id, "maxResults": 25},
        )
        playlist_items = playlist.get("items") or []
        # Deleted and private uploads come back without contentDetails.
        playlist_items = [item for item in playlist_items if (item.get("contentDetails") or {}).get("videoId")]
        video_ids = [item["contentDetails"]["videoId"] for item in playlist_items]
        if not video_ids:
            return []

        stats = await self._get_content(
            f"{YOUTUBE_API_URL}/videos",
            headers=headers,
            params={"part": "statistics,contentDetails", "id": ",".join(video_ids)},
        )
        stats_by_id = {item.get("id"): item for item in stats.get("items") or []}

        videos = []
        for item in playlist_items:
            video_id = item["contentDetails"]["videoId"]
            snippet = item.get("snippet") or {}
            video_stats = stats_by_id.get(video_id) or {}
            statistics = video_stats.get("statistics") or {}
            thumbnails = snippet.get("thumbnails") or {}
            videos.append(
                {
                    "id": video_id,
                    "title": snippet.get("title"),
                    "description": snippet.get("description"),
                    "thumbnail_url": (thumbnails.get("high") or thumbnails.get("default") or {}).get("url"),
                    "published_at": snippet.get("publishedAt"),
                    "view_count": _to_int(statistics.get("viewCount")),
                    "like_count": _to_int(statistics.get("likeCount")),
                    "comment_count": _to_int(statistics.get("commentCount")),
                    "duration": (video_stats.get("contentDetails") or {}).get("duration"),
                    "tags": snippet.get("tags") or [],
                }
            )
        return videos

    async def _fetch_youtube_channel(self, access_token: str) -> Optional[Dict[str, Any]]:
        data = await self._get_content(
            f"{YOUTUBE_API_URL}/channels",
            headers=self._bearer(access_token),
            params={"part": "snippet,statistics", "mine": "true"},
        )
        items = data.get("items") or []
        if not items:
            return None
        channel = items[0]
        snippet = channel.get("snippet") or {}
        statistics = channel.get("statistics") or {}
        return {
            "id": channel.get("id"),
            "title": snippet.get("title"),
            "description": snippet.get("description"),
            "custom_url": snippet.get("customUrl"),
            "published_at": snippet.get("publishedAt"),
            "thumbnail_url": ((snippet.get("thumbnails") or {}).get("high") or {}).get("url"),
            "view_count": _to_int(statistics.get("viewCount")),
            "subscriber_count": _to_int(statistics.get("subscriberCount")),
            "video_count": _to_int(statistics.get("videoCount")),
        }

    async def _fetch_youtube_playlists(self, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get_content(
            f"{YOUTUBE_API_URL}/playlists",
            headers=self._bearer(access_token),
            params={"part": "snippet,contentDetails", "mine": "true", "maxResults": 25},
        )
        playlists = []
        for item in data.get("items") or []:
            snippet = item.get("snippet") or {}
            playlists.append(
                {
                    "id": item.get("id"),
                    "title": snippet.get("title"),
                    "description": snippet.get("description"),
                    "thumbnail_url": ((snippet.get("thumbnails") or {}).get("high") or {}).get("url"),
                    "item_count": (item.get("contentDetails") or {}).get("itemCount"),
                    "published_at": snippet.get("publishedAt"),
                }
            )
        return playlists

    # Calendar --------------------------------------------------------------

    async def _fetch_calendar_events(self, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get_content(
            f"{CALENDAR_API_URL}/calendars/primary/events",
            headers=self._bearer(access_token),
            params={
                "timeMin": datetime.now(timezone.utc).isoformat(),
                "maxResults": 25,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        events = []
        for event in data.get("items") or []:
            start = event.get("start") or {}
            end = event.get("end") or {}
            events.append(
                {
                    "id": event.get("id"),
                    "title": event.get("summary"),
                    "description": event.get("description"),
                    "start_time": start.get("dateTime") or start.get("date"),
                    "end_time": end.get("dateTime") or end.get("date"),
                    "location": event.get("location"),
                    "attendees": [a.get("email") for a in event.get("attendees") or []],
                    "is_recurring": bool(event.get("recurringEventId")),
                }
            )
        return events

    async def _fetch_calendar_list(self, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get_content(
            f"{CALENDAR_API_URL}/users/me/calendarList",
            headers=self._bearer(access_token),
        )
        return [
            {
                "id": calendar.get("id"),
                "summary": calendar.get("summary"),
                "description": calendar.get("description"),
                "primary": bool(calendar.get("primary")),
                "access_role": calendar.get("accessRole"),
            }
            for calendar in data.get("items") or []
        ]
