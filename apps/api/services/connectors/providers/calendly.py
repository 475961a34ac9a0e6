"""Calendly provider."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.connectors.base import BaseOAuthProvider, ContentFetcher
from services.connectors.errors import ContentFetchError, ProfileFetchError, TokenRevocationError
from services.connectors.types import OAuthConfig, PlatformProfile


API_URL = "https://api.calendly.com"
REVOKE_URL = "https://auth.calendly.com/oauth/revoke"


def _id_from_uri(uri: str) -> str:
    return uri.rstrip("/").rsplit("/", 1)[-1]


class CalendlyProvider(BaseOAuthProvider):
    provider_name = "calendly"

    def __init__(self, config: OAuthConfig, **kwargs: Any) -> None:
        super().__init__("calendly", config, **kwargs)

    async def _me(self, access_token: str, error_cls=ProfileFetchError) -> Dict[str, Any]:
        data = await self._request(
            "GET",
            f"{API_URL}/users/me",
            error_cls=error_cls,
            headers=self._bearer(access_token),
        )
        resource = data.get("resource") or {}
        if not resource.get("uri"):
            raise error_cls(self.provider_name, "users/me response did not include a resource uri")
        return resource

    async def get_user_profile(self, access_token: str) -> PlatformProfile:
        user = await self._me(access_token)
        return PlatformProfile(
            id=user["uri"],
            username=user.get("slug"),
            email=user.get("email"),
            display_name=user.get("name"),
            metadata={
                "profile_picture": user.get("avatar_url"),
                "timezone": user.get("timezone"),
                "current_organization": user.get("current_organization"),
                "created_at": user.get("created_at"),
                "updated_at": user.get("updated_at"),
            },
        )

    async def revoke_token(self, token: str, token_type_hint: Optional[str] = None) -> None:
        await self._request(
            "POST",
            REVOKE_URL,
            error_cls=TokenRevocationError,
            data={
                "token": token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
        )

    def content_fetchers(self) -> Dict[str, ContentFetcher]:
        return {
            "event_types": self._fetch_event_types,
            "scheduled_events": self._fetch_scheduled_events,
            "invitees": self._fetch_invitees,
            "availability": self._fetch_availability,
        }

    async def _fetch_event_types(self, access_token: str) -> List[Dict[str, Any]]:
        user = await self._me(access_token, error_cls=ContentFetchError)
        data = await self._get_content(
            f"{API_URL}/event_types",
            headers=self._bearer(access_token),
            params={"organization": user.get("current_organization"), "active": "true", "count": 50},
        )
        return [
            {
                "id": event_type.get("uri"),
                "name": event_type.get("name"),
                "description": event_type.get("description_plain"),
                "duration": event_type.get("duration"),
                "slug": event_type.get("slug"),
                "color": event_type.get("color"),
                "type": event_type.get("type"),
                "scheduling_url": event_type.get("scheduling_url"),
                "active": event_type.get("active"),
                "kind": event_type.get("kind"),
                "pooling_type": event_type.get("pooling_type"),
                "custom_questions": event_type.get("custom_questions"),
            }
            for event_type in data.get("collection") or []
        ]

    async def _fetch_scheduled_events(self, access_token: str) -> List[Dict[str, Any]]:
        user = await self._me(access_token, error_cls=ContentFetchError)
        data = await self._get_content(
            f"{API_URL}/scheduled_events",
            headers=self._bearer(access_token),
            params={
                "organization": user.get("current_organization"),
                "status": "active",
                "min_start_time": datetime.now(timezone.utc).isoformat(),
                "count": 50,
            },
        )
        events = []
        for event in data.get("collection") or []:
            location = event.get("location") or {}
            invitee_total = (event.get("invitees_counter") or {}).get("total", 0)
            events.append(
                {
                    "id": event.get("uri"),
                    "title": event.get("name"),
                    "description": f"Event with {invitee_total} invitee(s)",
                    "start_time": event.get("start_time"),
                    "end_time": event.get("end_time"),
                    "location": location.get("location") or "Online",
                    "attendees": [],
                    "is_recurring": False,
                    "status": event.get("status"),
                    "event_type": event.get("event_type"),
                    "meeting_url": location.get("join_url"),
                }
            )
        return events

    async def _fetch_invitees(self, access_token: str) -> List[Dict[str, Any]]:
        events = [event for event in await self._fetch_scheduled_events(access_token) if event.get("id")]
        if not events:
            return []
        # Invitees of the next upcoming event.
        event_id = _id_from_uri(events[0]["id"])
        data = await self._get_content(
            f"{API_URL}/scheduled_events/{event_id}/invitees",
            headers=self._bearer(access_token),
            params={"count": 50},
        )
        return [
            {
                "id": invitee.get("uri"),
                "email": invitee.get("email"),
                "name": invitee.get("name"),
                "status": invitee.get("status"),
                "timezone": invitee.get("timezone"),
                "created_at": invitee.get("created_at"),
                "updated_at": invitee.get("updated_at"),
                "rescheduled": invitee.get("rescheduled"),
                "canceled": invitee.get("canceled"),
                "cancellation_reason": (invitee.get("cancellation") or {}).get("reason"),
            }
            for invitee in data.get("collection") or []
        ]

    async def _fetch_availability(self, access_token: str) -> List[Dict[str, Any]]:
        user = await self._me(access_token, error_cls=ContentFetchError)
        data = await self._get_content(
            f"{API_URL}/availability_schedules",
            headers=self._bearer(access_token),
            params={"user": user["uri"]},
        )
        return [
            {
                "id": schedule.get("uri"),
                "name": schedule.get("name"),
                "timezone": schedule.get("timezone"),
                "default": schedule.get("default"),
                "rules": [
                    {
                        "type": rule.get("type"),
                        "intervals": rule.get("intervals"),
                        "date": rule.get("date"),
                        "wday": rule.get("wday"),
                    }
                    for rule in schedule.get("rules") or []
                ],
            }
            for schedule in data.get("collection") or []
        ]
