"""Platform registry: static OAuth endpoints/scopes, credential lookup and adapter construction."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx

from config import Settings, settings
from services.connectors.base import BaseOAuthProvider
from services.connectors.errors import ConfigurationError, UnknownPlatformError
from services.connectors.providers import (
    CalendlyProvider,
    GoogleProvider,
    InstagramProvider,
    ShopifyProvider,
    TwitterProvider,
)
from services.connectors.providers.shopify import normalize_shop
from services.connectors.types import PLATFORM_KEYS, OAuthConfig


@dataclass(frozen=True)
class PlatformSpec:
    display_name: str
    authorization_url: str
    token_url: str
    scopes: List[str]
    credential_prefix: str
    credential_suffixes: Tuple[str, str] = ("_CLIENT_ID", "_CLIENT_SECRET")
    use_pkce: bool = False
    secure_redirect: bool = False
    additional_params: Dict[str, str] = field(default_factory=dict)


GOOGLE_OFFLINE_PARAMS = {"access_type": "offline", "prompt": "consent"}

PLATFORM_CONFIGS: Dict[str, PlatformSpec] = {
    "instagram": PlatformSpec(
        display_name="Instagram",
        authorization_url="https://api.instagram.com/oauth/authorize",
        token_url="https://api.instagram.com/oauth/access_token",
        scopes=[
            "instagram_business_basic",
            "instagram_business_content_publish",
            "instagram_business_manage_comments",
            "instagram_business_manage_messages",
        ],
        credential_prefix="INSTAGRAM",
        secure_redirect=True,
    ),
    "youtube": PlatformSpec(
        display_name="YouTube",
        authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=[
            "https://www.googleapis.com/auth/userinfo.profile",
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/youtube.readonly",
            "openid",
        ],
        credential_prefix="GOOGLE",
        additional_params=GOOGLE_OFFLINE_PARAMS,
    ),
    "twitter": PlatformSpec(
        display_name="X / Twitter",
        authorization_url="https://twitter.com/i/oauth2/authorize",
        token_url="https://api.twitter.com/2/oauth2/token",
        scopes=["tweet.read", "users.read", "follows.read", "offline.access"],
        credential_prefix="TWITTER",
        use_pkce=True,
    ),
    "shopify": PlatformSpec(
        display_name="Shopify",
        # Resolved per shop by ShopifyProvider.
        authorization_url="",
        token_url="",
        scopes=["read_products", "read_orders", "read_customers", "read_inventory"],
        credential_prefix="SHOPIFY_API",
        credential_suffixes=("_KEY", "_SECRET"),
    ),
    "google_calendar": PlatformSpec(
        display_name="Google Calendar",
        authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=[
            "https://www.googleapis.com/auth/calendar.readonly",
            "https://www.googleapis.com/auth/calendar.events.readonly",
        ],
        credential_prefix="GOOGLE",
        additional_params=GOOGLE_OFFLINE_PARAMS,
    ),
    "calendly": PlatformSpec(
        display_name="Calendly",
        authorization_url="https://auth.calendly.com/oauth/authorize",
        token_url="https://auth.calendly.com/oauth/token",
        scopes=[],
        credential_prefix="CALENDLY",
    ),
}


def require_platform(platform: str) -> str:
    key = str(platform or "").strip().lower()
    if key not in PLATFORM_CONFIGS:
        raise UnknownPlatformError(str(platform))
    return key


def credential_env_names(platform: str) -> Tuple[str, str]:
    """Environment variable names holding a platform's client id and secret."""
    spec = PLATFORM_CONFIGS[require_platform(platform)]
    id_suffix, secret_suffix = spec.credential_suffixes
    return f"{spec.credential_prefix}{id_suffix}", f"{spec.credential_prefix}{secret_suffix}"


def lookup_credentials(platform: str, source: Mapping[str, Any]) -> Tuple[str, str]:
    """Read (client_id, client_secret) from ``source``; raise naming every missing variable."""
    id_var, secret_var = credential_env_names(platform)
    client_id = str(source.get(id_var) or "").strip()
    client_secret = str(source.get(secret_var) or "").strip()
    missing = [name for name, value in ((id_var, client_id), (secret_var, client_secret)) if not value]
    if missing:
        raise ConfigurationError(missing, platform=platform)
    return client_id, client_secret


def resolve_redirect_uri(platform: str, app_settings: Optional[Settings] = None) -> str:
    """Callback URL registered with the provider.

    Instagram only accepts https redirects, so it points at the TLS listener;
    everything else uses the plain HTTP port. ``BACKEND_URL`` overrides both.
    """
    app_settings = app_settings or settings
    key = require_platform(platform)
    override = (app_settings.BACKEND_URL or "").strip().rstrip("/")
    if override:
        return f"{override}/oauth/{key}/callback"
    if PLATFORM_CONFIGS[key].secure_redirect:
        return f"https://localhost:{app_settings.API_HTTPS_PORT}/oauth/{key}/callback"
    return f"http://localhost:{app_settings.API_PORT}/oauth/{key}/callback"


def build_oauth_config(
    platform: str,
    app_settings: Optional[Settings] = None,
    source: Optional[Mapping[str, Any]] = None,
) -> OAuthConfig:
    app_settings = app_settings or settings
    key = require_platform(platform)
    spec = PLATFORM_CONFIGS[key]
    client_id, client_secret = lookup_credentials(key, source if source is not None else app_settings.model_dump())
    return OAuthConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=resolve_redirect_uri(key, app_settings),
        authorization_url=spec.authorization_url,
        token_url=spec.token_url,
        scopes=list(spec.scopes),
        use_pkce=spec.use_pkce,
        additional_params=dict(spec.additional_params),
    )


_PROVIDER_FACTORIES: Dict[str, Callable[..., BaseOAuthProvider]] = {
    "instagram": lambda config, shop, **kw: InstagramProvider(config, **kw),
    "youtube": lambda config, shop, **kw: GoogleProvider("youtube", config, **kw),
    "google_calendar": lambda config, shop, **kw: GoogleProvider("google_calendar", config, **kw),
    "twitter": lambda config, shop, **kw: TwitterProvider(config, **kw),
    "shopify": lambda config, shop, **kw: ShopifyProvider(shop, config, **kw),
    "calendly": lambda config, shop, **kw: CalendlyProvider(config, **kw),
}


def get_connector_provider(
    platform: str,
    *,
    shop: Optional[str] = None,
    app_settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> BaseOAuthProvider:
    """Construct the adapter for ``platform``. Pure: no registry state is mutated."""
    app_settings = app_settings or settings
    key = require_platform(platform)
    if key == "shopify":
        # Validated before credentials are read or anything is constructed.
        shop = normalize_shop(shop)
    config = build_oauth_config(key, app_settings)
    return _PROVIDER_FACTORIES[key](
        config,
        shop,
        http_client=http_client,
        timeout=float(app_settings.OAUTH_HTTP_TIMEOUT_SECONDS),
    )


def is_platform_configured(platform: str, app_settings: Optional[Settings] = None) -> bool:
    app_settings = app_settings or settings
    try:
        lookup_credentials(platform, app_settings.model_dump())
    except ConfigurationError:
        return False
    return True


def connector_capabilities(app_settings: Optional[Settings] = None) -> Dict[str, bool]:
    return {
        f"{platform}_oauth_available": is_platform_configured(platform, app_settings)
        for platform in PLATFORM_KEYS
    }


def platform_catalogue(app_settings: Optional[Settings] = None) -> List[Dict[str, Any]]:
    return [
        {
            "id": platform,
            "name": PLATFORM_CONFIGS[platform].display_name,
            "configured": is_platform_configured(platform, app_settings),
            "uses_pkce": PLATFORM_CONFIGS[platform].use_pkce,
            "requires_shop": platform == "shopify",
        }
        for platform in PLATFORM_KEYS
    ]
