"""Public connector provider utilities."""

from services.connectors.base import BaseOAuthProvider
from services.connectors.registry import (
    PLATFORM_CONFIGS,
    build_oauth_config,
    connector_capabilities,
    credential_env_names,
    get_connector_provider,
    lookup_credentials,
    platform_catalogue,
    resolve_redirect_uri,
)
from services.connectors.types import (
    AuthorizationParams,
    ConnectionRecord,
    OAuthConfig,
    PlatformKey,
    PlatformProfile,
    TokenSet,
)

__all__ = [
    "AuthorizationParams",
    "BaseOAuthProvider",
    "ConnectionRecord",
    "OAuthConfig",
    "PLATFORM_CONFIGS",
    "PlatformKey",
    "PlatformProfile",
    "TokenSet",
    "build_oauth_config",
    "connector_capabilities",
    "credential_env_names",
    "get_connector_provider",
    "lookup_credentials",
    "platform_catalogue",
    "resolve_redirect_uri",
]
