"""Typed error taxonomy for the connection lifecycle."""

from __future__ import annotations

from typing import Any, Iterable, Optional


class ConnectorError(Exception):
    """Base class. ``status_code`` maps to HTTP, ``error_code`` is an opaque tag."""

    status_code: int = 500
    error_code: str = "oauth_failed"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ConnectorError):
    status_code = 500
    error_code = "configuration_error"

    def __init__(self, missing: Iterable[str], platform: Optional[str] = None) -> None:
        self.missing = list(missing)
        self.platform = platform
        label = f" for {platform}" if platform else ""
        super().__init__(f"Missing OAuth configuration{label}: {', '.join(self.missing)}")


class UnknownPlatformError(ConnectorError):
    status_code = 400
    error_code = "unknown_platform"

    def __init__(self, platform: str) -> None:
        self.platform = platform
        super().__init__(f"Unknown platform: {platform}")


class MissingParameterError(ConnectorError):
    status_code = 400
    error_code = "missing_parameter"

    def __init__(self, parameter: str, message: Optional[str] = None) -> None:
        self.parameter = parameter
        super().__init__(message or f"Missing required parameter: {parameter}")


class ProviderError(ConnectorError):
    """Upstream rejection. Carries the provider's own description."""

    status_code = 502
    action = "call provider"

    def __init__(self, provider: str, description: str) -> None:
        self.provider = provider
        self.description = description
        super().__init__(f"{provider} failed to {self.action}: {description}")


class TokenExchangeError(ProviderError):
    action = "exchange code for token"


class TokenRefreshError(ProviderError):
    action = "refresh token"


class ProfileFetchError(ProviderError):
    action = "fetch profile"


class ContentFetchError(ProviderError):
    action = "fetch content"


class TokenRevocationError(ProviderError):
    action = "revoke token"


class UnsupportedContentTypeError(ConnectorError):
    status_code = 400
    error_code = "unsupported_content_type"

    def __init__(self, provider: str, content_type: str) -> None:
        self.provider = provider
        self.content_type = content_type
        super().__init__(f"Unsupported {provider} content type: {content_type}")


class RevocationNotSupportedError(ConnectorError, NotImplementedError):
    status_code = 501
    error_code = "revocation_not_supported"

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Token revocation not implemented for {provider}")


class ConnectionNotFoundError(ConnectorError):
    status_code = 404
    error_code = "connection_not_found"

    def __init__(self, user_id: str, platform: str) -> None:
        self.user_id = user_id
        self.platform = platform
        super().__init__(f"No {platform} connection found for user {user_id}")


class NoRefreshTokenError(ConnectorError):
    status_code = 400
    error_code = "no_refresh_token"

    def __init__(self, platform: str) -> None:
        self.platform = platform
        super().__init__(f"No refresh token stored for {platform} connection")


class StoreError(ConnectorError):
    status_code = 500
    error_code = "database_error"


def describe_provider_error(payload: Any, fallback: str) -> str:
    """Pull a human-readable description out of a provider error body."""
    if isinstance(payload, dict):
        for key in ("error_description", "error_message", "detail", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        elif isinstance(error, str) and error.strip():
            return error.strip()
        errors = payload.get("errors")
        if errors:
            return str(errors)
    elif isinstance(payload, str) and payload.strip():
        return payload.strip()[:200]
    return fallback
