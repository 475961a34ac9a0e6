"""Connector provider contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional


PlatformKey = Literal["instagram", "youtube", "twitter", "shopify", "google_calendar", "calendly"]

PLATFORM_KEYS: List[str] = ["instagram", "youtube", "twitter", "shopify", "google_calendar", "calendly"]

TokenStatus = Literal["active", "expired", "revoked", "error"]


@dataclass(frozen=True)
class OAuthConfig:
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str
    authorization_url: str
    token_url: str
    scopes: List[str] = field(default_factory=list)
    use_pkce: bool = False
    additional_params: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthorizationParams:
    state: str
    code_verifier: Optional[str] = field(default=None, repr=False)
    code_challenge: Optional[str] = None
    nonce: Optional[str] = None


@dataclass(frozen=True)
class AuthorizationRequest:
    """Everything the orchestrator needs to remember across the redirect."""

    url: str
    params: AuthorizationParams


@dataclass(frozen=True)
class TokenSet:
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_in: Optional[int] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None
    id_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "TokenSet":
        """Normalize a standard OAuth token endpoint response."""
        expires_in = data.get("expires_in")
        return cls(
            access_token=str(data.get("access_token") or ""),
            refresh_token=data.get("refresh_token") or None,
            expires_in=int(expires_in) if expires_in is not None else None,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope") or None,
            id_token=data.get("id_token") or None,
        )


@dataclass(frozen=True)
class PlatformProfile:
    id: str
    username: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_metadata(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "display_name": self.display_name,
        }
        payload.update(self.metadata)
        return payload


@dataclass
class ConnectionRecord:
    """A persisted (user_id, platform) connection with plain-text tokens."""

    user_id: str
    platform: str
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    platform_user_id: Optional[str] = None
    platform_username: Optional[str] = None
    platform_email: Optional[str] = None
    display_name: Optional[str] = None
    token_expires_at: Optional[Any] = None
    token_status: str = "active"
    scopes: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    connected_at: Optional[Any] = None
    last_synced_at: Optional[Any] = None
    last_refresh_at: Optional[Any] = None
    id: Optional[str] = None

    def to_public_dict(self) -> Dict[str, Any]:
        """Serializable view without token material."""

        def _iso(value: Any) -> Optional[str]:
            return value.isoformat() if value is not None else None

        return {
            "id": self.id,
            "user_id": self.user_id,
            "platform": self.platform,
            "platform_user_id": self.platform_user_id,
            "platform_username": self.platform_username,
            "platform_email": self.platform_email,
            "display_name": self.display_name,
            "token_expires_at": _iso(self.token_expires_at),
            "token_status": self.token_status,
            "scopes": list(self.scopes),
            "metadata": dict(self.metadata),
            "connected_at": _iso(self.connected_at),
            "last_synced_at": _iso(self.last_synced_at),
            "last_refresh_at": _iso(self.last_refresh_at),
        }
