import base64
import hashlib
import hmac
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from services.connectors.errors import (
    ProfileFetchError,
    RevocationNotSupportedError,
    TokenExchangeError,
    TokenRefreshError,
    UnsupportedContentTypeError,
)
from services.connectors.pkce import generate_code_challenge
from services.connectors.providers import ShopifyProvider
from services.connectors.registry import PLATFORM_CONFIGS, get_connector_provider
from services.connectors.types import TokenSet


GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
IG_TOKEN_URL = "https://api.instagram.com/oauth/access_token"
IG_GRAPH = "https://graph.instagram.com"


def _query(url: str) -> dict:
    return parse_qs(urlparse(url).query, keep_blank_values=True)


def _form(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def _provider(platform, test_settings, provider_api, shop=None):
    return get_connector_provider(
        platform,
        shop=shop,
        app_settings=test_settings,
        http_client=provider_api.client(),
    )


# ---------------------------------------------------------------------------
# Authorization URL
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "platform, delimiter",
    [
        ("instagram", ","),
        ("youtube", " "),
        ("google_calendar", " "),
        ("twitter", " "),
        ("shopify", ","),
        ("calendly", " "),
    ],
)
def test_authorization_url_contains_core_params_and_each_scope_once(test_settings, platform, delimiter):
    provider = get_connector_provider(platform, shop="demo-shop", app_settings=test_settings)
    request = provider.prepare_authorization("opaque-state")
    query = _query(request.url)

    assert query["client_id"] == [provider.config.client_id]
    assert query["redirect_uri"] == [provider.config.redirect_uri]
    assert query["response_type"] == ["code"]
    assert query["state"] == ["opaque-state"]

    configured = PLATFORM_CONFIGS[platform].scopes
    serialized = query["scope"][0]
    granted = serialized.split(delimiter) if serialized else []
    assert sorted(granted) == sorted(configured)
    for scope in configured:
        assert granted.count(scope) == 1


def test_google_authorization_url_requests_offline_access(test_settings):
    provider = get_connector_provider("youtube", app_settings=test_settings)
    query = _query(provider.prepare_authorization("s").url)
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert urlparse(provider.prepare_authorization("s").url).netloc == "accounts.google.com"


def test_twitter_authorization_url_carries_pkce_challenge(test_settings):
    provider = get_connector_provider("twitter", app_settings=test_settings)
    request = provider.prepare_authorization("s")
    query = _query(request.url)

    assert request.params.code_verifier
    assert query["code_challenge"] == [generate_code_challenge(request.params.code_verifier)]
    assert query["code_challenge_method"] == ["S256"]


def test_non_pkce_provider_omits_challenge(test_settings):
    provider = get_connector_provider("calendly", app_settings=test_settings)
    request = provider.prepare_authorization("s")
    assert request.params.code_verifier is None
    assert "code_challenge" not in _query(request.url)


def test_shopify_authorization_url_is_per_shop(test_settings):
    provider = get_connector_provider("shopify", shop="demo-shop", app_settings=test_settings)
    url = provider.prepare_authorization("s").url
    assert url.startswith("https://demo-shop.myshopify.com/admin/oauth/authorize?")


# ---------------------------------------------------------------------------
# Token exchange / refresh
# ---------------------------------------------------------------------------


def test_token_set_from_standard_payload():
    tokens = TokenSet.from_payload({"access_token": "a", "refresh_token": "b", "expires_in": 3600})
    assert tokens == TokenSet(access_token="a", refresh_token="b", expires_in=3600, token_type="Bearer")


@pytest.mark.asyncio
async def test_default_exchange_posts_form_and_normalizes(test_settings, provider_api):
    provider_api.add(
        "POST",
        GOOGLE_TOKEN_URL,
        json={"access_token": "ya29", "refresh_token": "1//r", "expires_in": 3599, "scope": "openid", "id_token": "jwt"},
    )
    provider = _provider("youtube", test_settings, provider_api)

    tokens = await provider.exchange_code_for_token("auth-code")

    assert tokens.access_token == "ya29"
    assert tokens.refresh_token == "1//r"
    assert tokens.expires_in == 3599
    assert tokens.id_token == "jwt"
    form = _form(provider_api.calls("POST", GOOGLE_TOKEN_URL)[0])
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "auth-code"
    assert form["redirect_uri"] == "http://localhost:3001/oauth/youtube/callback"


@pytest.mark.asyncio
async def test_exchange_rejection_carries_upstream_description(test_settings, provider_api):
    provider_api.add(
        "POST",
        GOOGLE_TOKEN_URL,
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Bad Request: code already used"},
    )
    provider = _provider("youtube", test_settings, provider_api)

    with pytest.raises(TokenExchangeError) as exc_info:
        await provider.exchange_code_for_token("stale")
    assert exc_info.value.description == "Bad Request: code already used"
    assert exc_info.value.provider == "youtube"


@pytest.mark.asyncio
async def test_exchange_timeout_becomes_token_exchange_error(test_settings, provider_api):
    def _timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    provider_api.add("POST", GOOGLE_TOKEN_URL, handler=_timeout)
    provider = _provider("youtube", test_settings, provider_api)

    with pytest.raises(TokenExchangeError, match="timed out"):
        await provider.exchange_code_for_token("code")


@pytest.mark.asyncio
async def test_exchange_without_access_token_fails(test_settings, provider_api):
    provider_api.add("POST", GOOGLE_TOKEN_URL, json={"token_type": "Bearer"})
    provider = _provider("youtube", test_settings, provider_api)

    with pytest.raises(TokenExchangeError):
        await provider.exchange_code_for_token("code")


@pytest.mark.asyncio
async def test_instagram_exchange_trades_short_token_for_long_lived(test_settings, provider_api):
    provider_api.add("POST", IG_TOKEN_URL, json={"access_token": "short", "user_id": 17841})
    provider_api.add(
        "GET",
        f"{IG_GRAPH}/access_token",
        json={"access_token": "long-lived", "token_type": "bearer", "expires_in": 5183944},
    )
    provider = _provider("instagram", test_settings, provider_api)

    tokens = await provider.exchange_code_for_token("ig-code")

    assert tokens.access_token == "long-lived"
    assert tokens.expires_in == 5183944
    assert tokens.refresh_token is None
    exchange_call = provider_api.calls("GET", f"{IG_GRAPH}/access_token")[0]
    assert exchange_call.url.params["grant_type"] == "ig_exchange_token"
    assert exchange_call.url.params["access_token"] == "short"


@pytest.mark.asyncio
async def test_instagram_refresh_is_a_get_keyed_by_access_token(test_settings, provider_api):
    provider_api.add(
        "GET",
        f"{IG_GRAPH}/refresh_access_token",
        json={"access_token": "renewed", "expires_in": 5183944},
    )
    provider = _provider("instagram", test_settings, provider_api)

    assert provider.refresh_uses_access_token is True
    tokens = await provider.refresh_access_token("current-long-lived")

    assert tokens.access_token == "renewed"
    call = provider_api.calls("GET", f"{IG_GRAPH}/refresh_access_token")[0]
    assert call.url.params["grant_type"] == "ig_refresh_token"
    assert call.url.params["access_token"] == "current-long-lived"


@pytest.mark.asyncio
async def test_twitter_exchange_sends_verifier_with_basic_auth(test_settings, provider_api):
    provider_api.add("POST", TWITTER_TOKEN_URL, json={"access_token": "tw-a", "refresh_token": "tw-r", "expires_in": 7200})
    provider = _provider("twitter", test_settings, provider_api)

    tokens = await provider.exchange_code_for_token("tw-code", "the-verifier")

    assert tokens.refresh_token == "tw-r"
    request = provider_api.calls("POST", TWITTER_TOKEN_URL)[0]
    assert _form(request)["code_verifier"] == "the-verifier"
    expected = base64.b64encode(b"tw-client:tw-secret").decode()
    assert request.headers["Authorization"] == f"Basic {expected}"


@pytest.mark.asyncio
async def test_twitter_exchange_requires_verifier(test_settings, provider_api):
    provider = _provider("twitter", test_settings, provider_api)
    with pytest.raises(TokenExchangeError, match="PKCE"):
        await provider.exchange_code_for_token("tw-code")
    assert provider_api.requests == []


@pytest.mark.asyncio
async def test_refresh_failure_becomes_token_refresh_error(test_settings, provider_api):
    provider_api.add("POST", TWITTER_TOKEN_URL, status_code=400, json={"error": "invalid_request", "error_description": "Value passed for the token was invalid."})
    provider = _provider("twitter", test_settings, provider_api)

    with pytest.raises(TokenRefreshError, match="token was invalid"):
        await provider.refresh_access_token("bad")
    assert _form(provider_api.requests[0])["grant_type"] == "refresh_token"


@pytest.mark.asyncio
async def test_shopify_exchange_posts_json(test_settings, provider_api):
    token_url = "https://demo-shop.myshopify.com/admin/oauth/access_token"
    provider_api.add("POST", token_url, json={"access_token": "shpat_1", "scope": "read_products,read_orders"})
    provider = _provider("shopify", test_settings, provider_api, shop="demo-shop")

    tokens = await provider.exchange_code_for_token("shop-code")

    assert tokens.access_token == "shpat_1"
    assert tokens.scope == "read_products,read_orders"
    request = provider_api.calls("POST", token_url)[0]
    assert request.headers["content-type"] == "application/json"
    assert b'"code":"shop-code"' in request.content.replace(b" ", b"")


@pytest.mark.asyncio
async def test_shopify_refresh_is_rejected_without_a_call(test_settings, provider_api):
    provider = _provider("shopify", test_settings, provider_api, shop="demo-shop")
    with pytest.raises(TokenRefreshError):
        await provider.refresh_access_token("anything")
    assert provider_api.requests == []


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_google_profile_normalization(test_settings, provider_api):
    provider_api.add(
        "GET",
        "https://www.googleapis.com/oauth2/v3/userinfo",
        json={"sub": "1090", "email": "creator@example.com", "name": "Creator", "picture": "http://pic"},
    )
    provider = _provider("google_calendar", test_settings, provider_api)

    profile = await provider.get_user_profile("ya29")

    assert profile.id == "1090"
    assert profile.email == "creator@example.com"
    assert profile.display_name == "Creator"
    assert profile.metadata["profile_picture"] == "http://pic"
    assert provider_api.requests[0].headers["Authorization"] == "Bearer ya29"


@pytest.mark.asyncio
async def test_twitter_profile_normalization(test_settings, provider_api):
    provider_api.add(
        "GET",
        "https://api.twitter.com/2/users/me",
        json={"data": {"id": "44", "username": "creator", "name": "The Creator", "public_metrics": {"followers_count": 10}}},
    )
    provider = _provider("twitter", test_settings, provider_api)

    profile = await provider.get_user_profile("tw-a")

    assert (profile.id, profile.username, profile.display_name) == ("44", "creator", "The Creator")
    assert profile.metadata["follower_count"] == 10


@pytest.mark.asyncio
async def test_calendly_profile_uses_resource_uri(test_settings, provider_api):
    provider_api.add(
        "GET",
        "https://api.calendly.com/users/me",
        json={"resource": {"uri": "https://api.calendly.com/users/ABC", "slug": "creator", "email": "c@example.com", "name": "C"}},
    )
    provider = _provider("calendly", test_settings, provider_api)

    profile = await provider.get_user_profile("cal-a")

    assert profile.id == "https://api.calendly.com/users/ABC"
    assert profile.username == "creator"


@pytest.mark.asyncio
async def test_shopify_profile_records_shop(test_settings, provider_api):
    provider_api.add(
        "GET",
        "https://demo-shop.myshopify.com/admin/api/2024-01/shop.json",
        json={"shop": {"id": 548380009, "name": "Demo Shop", "email": "owner@example.com", "currency": "USD"}},
    )
    provider = _provider("shopify", test_settings, provider_api, shop="demo-shop")

    profile = await provider.get_user_profile("shpat_1")

    assert profile.id == "548380009"
    assert profile.metadata["shop"] == "demo-shop"
    assert provider_api.requests[0].headers["X-Shopify-Access-Token"] == "shpat_1"


@pytest.mark.asyncio
async def test_profile_failure_becomes_profile_fetch_error(test_settings, provider_api):
    provider_api.add(
        "GET",
        f"{IG_GRAPH}/me",
        status_code=400,
        json={"error": {"message": "Invalid OAuth access token", "type": "OAuthException"}},
    )
    provider = _provider("instagram", test_settings, provider_api)

    with pytest.raises(ProfileFetchError) as exc_info:
        await provider.get_user_profile("expired")
    assert exc_info.value.description == "Invalid OAuth access token"


# ---------------------------------------------------------------------------
# Content and revocation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unsupported_content_type(test_settings, provider_api):
    provider = _provider("instagram", test_settings, provider_api)
    assert provider.content_types == ["insights", "posts", "stories"]
    with pytest.raises(UnsupportedContentTypeError):
        await provider.fetch_user_content("token", "reels")
    assert provider_api.requests == []


@pytest.mark.asyncio
async def test_youtube_and_calendar_expose_different_content(test_settings):
    youtube = get_connector_provider("youtube", app_settings=test_settings)
    calendar = get_connector_provider("google_calendar", app_settings=test_settings)
    assert youtube.content_types == ["channel", "playlists", "videos"]
    assert calendar.content_types == ["calendars", "events"]


@pytest.mark.asyncio
async def test_instagram_posts_content(test_settings, provider_api):
    provider_api.add(
        "GET",
        f"{IG_GRAPH}/me/media",
        json={"data": [{"id": "1", "caption": "hi", "media_type": "IMAGE", "comments_count": 3}]},
    )
    provider = _provider("instagram", test_settings, provider_api)

    posts = await provider.fetch_user_content("token", "posts")

    assert posts[0]["id"] == "1"
    assert posts[0]["comment_count"] == 3


@pytest.mark.asyncio
async def test_default_revoke_is_not_implemented(test_settings, provider_api):
    provider = _provider("instagram", test_settings, provider_api)
    assert provider.supports_revocation is False
    with pytest.raises(NotImplementedError):
        await provider.revoke_token("token")
    with pytest.raises(RevocationNotSupportedError):
        await provider.revoke_token("token")


@pytest.mark.asyncio
async def test_twitter_revoke(test_settings, provider_api):
    revoke_url = "https://api.twitter.com/2/oauth2/revoke"
    provider_api.add("POST", revoke_url, json={"revoked": True})
    provider = _provider("twitter", test_settings, provider_api)

    assert provider.supports_revocation is True
    await provider.revoke_token("tw-a", "access_token")

    request = provider_api.calls("POST", revoke_url)[0]
    assert _form(request) == {"token": "tw-a", "token_type_hint": "access_token", "client_id": "tw-client"}
    assert request.headers["Authorization"].startswith("Basic ")


@pytest.mark.asyncio
async def test_calendly_revoke(test_settings, provider_api):
    revoke_url = "https://auth.calendly.com/oauth/revoke"
    provider_api.add("POST", revoke_url, json={})
    provider = _provider("calendly", test_settings, provider_api)

    await provider.revoke_token("cal-a")

    assert _form(provider_api.calls("POST", revoke_url)[0])["token"] == "cal-a"


def test_shopify_webhook_signature():
    body = b'{"id": 1}'
    signature = base64.b64encode(hmac.new(b"shop-secret", body, hashlib.sha256).digest()).decode()
    assert ShopifyProvider.verify_webhook_signature(body, signature, "shop-secret") is True
    assert ShopifyProvider.verify_webhook_signature(body, signature, "other-secret") is False
    assert ShopifyProvider.verify_webhook_signature(body, "", "shop-secret") is False


@pytest.mark.asyncio
async def test_exchange_with_non_numeric_expiry_is_a_typed_failure(test_settings, provider_api):
    provider_api.add("POST", GOOGLE_TOKEN_URL, json={"access_token": "ya29", "expires_in": "soon"})
    provider = _provider("youtube", test_settings, provider_api)

    with pytest.raises(TokenExchangeError, match="malformed token response"):
        await provider.exchange_code_for_token("code")


@pytest.mark.asyncio
async def test_youtube_videos_skip_uploads_without_content_details(test_settings, provider_api):
    youtube_api = "https://www.googleapis.com/youtube/v3"
    provider_api.add(
        "GET",
        f"{youtube_api}/channels",
        json={"items": [{"contentDetails": {"relatedPlaylists": {"uploads": "UU123"}}}]},
    )
    provider_api.add(
        "GET",
        f"{youtube_api}/playlistItems",
        json={
            "items": [
                {"snippet": {"title": "Private video"}},
                {"snippet": {"title": "Launch"}, "contentDetails": {"videoId": "vid-1"}},
            ]
        },
    )
    provider_api.add(
        "GET",
        f"{youtube_api}/videos",
        json={"items": [{"id": "vid-1", "statistics": {"viewCount": "12"}, "contentDetails": {"duration": "PT1M"}}]},
    )
    provider = _provider("youtube", test_settings, provider_api)

    videos = await provider.fetch_user_content("ya29", "videos")

    assert [video["id"] for video in videos] == ["vid-1"]
    assert videos[0]["view_count"] == 12
    assert provider_api.calls("GET", f"{youtube_api}/videos")[0].url.params["id"] == "vid-1"
