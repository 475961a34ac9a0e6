"""Shopify provider. Endpoints are per-shop; scopes are comma-separated; the exchange is JSON."""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
from dataclasses import replace
from typing import Any, Dict, List, Optional

from services.connectors.base import BaseOAuthProvider, ContentFetcher
from services.connectors.errors import (
    MissingParameterError,
    ProfileFetchError,
    TokenExchangeError,
    TokenRefreshError,
)
from services.connectors.types import OAuthConfig, PlatformProfile, TokenSet


API_VERSION = "2024-01"

_SHOP_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def normalize_shop(shop: Optional[str]) -> str:
    """Reduce ``https://my-store.myshopify.com/`` or ``my-store`` to ``my-store``."""
    value = str(shop or "").strip().lower()
    if not value:
        raise MissingParameterError("shop", "Shop domain is required for Shopify")
    value = re.sub(r"^https?://", "", value).split("/", 1)[0]
    if value.endswith(".myshopify.com"):
        value = value[: -len(".myshopify.com")]
    if not _SHOP_PATTERN.match(value):
        raise MissingParameterError("shop", f"Invalid Shopify shop domain: {shop}")
    return value


def shop_endpoints(shop: str) -> Dict[str, str]:
    base = f"https://{shop}.myshopify.com/admin"
    return {
        "authorization_url": f"{base}/oauth/authorize",
        "token_url": f"{base}/oauth/access_token",
        "api_url": f"{base}/api/{API_VERSION}",
    }


class ShopifyProvider(BaseOAuthProvider):
    provider_name = "shopify"
    scope_delimiter = ","

    def __init__(self, shop: str, config: OAuthConfig, **kwargs: Any) -> None:
        self.shop = normalize_shop(shop)
        endpoints = shop_endpoints(self.shop)
        self.api_url = endpoints["api_url"]
        super().__init__(
            "shopify",
            replace(
                config,
                authorization_url=endpoints["authorization_url"],
                token_url=endpoints["token_url"],
            ),
            **kwargs,
        )

    def _admin_headers(self, access_token: str) -> Dict[str, str]:
        return {"X-Shopify-Access-Token": access_token}

    async def exchange_code_for_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        payload = await self._request(
            "POST",
            self.config.token_url,
            error_cls=TokenExchangeError,
            json={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "code": code,
            },
        )
        tokens = self._parse_token_response(payload, TokenExchangeError)
        return TokenSet(access_token=tokens.access_token, token_type="Bearer", scope=tokens.scope)

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        raise TokenRefreshError(self.provider_name, "offline access tokens do not expire and cannot be refreshed")

    async def get_user_profile(self, access_token: str) -> PlatformProfile:
        data = await self._request(
            "GET",
            f"{self.api_url}/shop.json",
            error_cls=ProfileFetchError,
            headers=self._admin_headers(access_token),
        )
        shop = data.get("shop") or {}
        if not shop.get("id"):
            raise ProfileFetchError(self.provider_name, "shop response did not include an id")
        return PlatformProfile(
            id=str(shop["id"]),
            username=self.shop,
            email=shop.get("email"),
            display_name=shop.get("name"),
            metadata={
                "shop": self.shop,
                "domain": shop.get("domain"),
                "currency": shop.get("currency"),
                "timezone": shop.get("timezone"),
                "country": shop.get("country_name"),
                "phone": shop.get("phone"),
                "plan_name": shop.get("plan_name"),
                "primary_location_id": shop.get("primary_location_id"),
            },
        )

    @staticmethod
    def verify_webhook_signature(raw_body: bytes, signature: str, secret: str) -> bool:
        """Check the ``X-Shopify-Hmac-Sha256`` header against the raw request body."""
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, signature or "")

    def content_fetchers(self) -> Dict[str, ContentFetcher]:
        return {
            "products": self._fetch_products,
            "orders": self._fetch_orders,
            "customers": self._fetch_customers,
            "inventory": self._fetch_inventory,
        }

    async def _fetch_products(self, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get_content(
            f"{self.api_url}/products.json",
            headers=self._admin_headers(access_token),
            params={"limit": 50},
        )
        products = []
        for product in data.get("products") or []:
            variants = product.get("variants") or []
            images = product.get("images") or []
            products.append(
                {
                    "id": str(product.get("id")),
                    "title": product.get("title"),
                    "description": product.get("body_html"),
                    "price": variants[0].get("price") if variants else "0",
                    "image_url": images[0].get("src") if images else None,
                    "inventory_quantity": sum(int(v.get("inventory_quantity") or 0) for v in variants),
                    "variants": [
                        {
                            "id": str(v.get("id")),
                            "title": v.get("title"),
                            "price": v.get("price"),
                            "inventory_quantity": v.get("inventory_quantity"),
                        }
                        for v in variants
                    ],
                    "vendor": product.get("vendor"),
                    "product_type": product.get("product_type"),
                    "tags": product.get("tags"),
                    "status": product.get("status"),
                    "created_at": product.get("created_at"),
                    "updated_at": product.get("updated_at"),
                }
            )
        return products

    async def _fetch_orders(self, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get_content(
            f"{self.api_url}/orders.json",
            headers=self._admin_headers(access_token),
            params={"status": "any", "limit": 50},
        )
        orders = []
        for order in data.get("orders") or []:
            customer = order.get("customer") or {}
            name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()
            orders.append(
                {
                    "id": str(order.get("id")),
                    "order_number": order.get("order_number"),
                    "email": order.get("email"),
                    "total_price": order.get("total_price"),
                    "currency": order.get("currency"),
                    "financial_status": order.get("financial_status"),
                    "fulfillment_status": order.get("fulfillment_status"),
                    "customer_name": name,
                    "line_items": len(order.get("line_items") or []),
                    "created_at": order.get("created_at"),
                    "processed_at": order.get("processed_at"),
                }
            )
        return orders

    async def _fetch_customers(self, access_token: str) -> List[Dict[str, Any]]:
        data = await self._get_content(
            f"{self.api_url}/customers.json",
            headers=self._admin_headers(access_token),
            params={"limit": 50},
        )
        return [
            {
                "id": str(customer.get("id")),
                "email": customer.get("email"),
                "first_name": customer.get("first_name"),
                "last_name": customer.get("last_name"),
                "orders_count": customer.get("orders_count"),
                "total_spent": customer.get("total_spent"),
                "currency": customer.get("currency"),
                "state": customer.get("state"),
                "verified": customer.get("verified_email"),
                "created_at": customer.get("created_at"),
                "updated_at": customer.get("updated_at"),
            }
            for customer in data.get("customers") or []
        ]

    async def _fetch_inventory(self, access_token: str) -> List[Dict[str, Any]]:
        headers = self._admin_headers(access_token)
        locations = await self._get_content(f"{self.api_url}/locations.json", headers=headers)
        location_ids = [location.get("id") for location in locations.get("locations") or []]
        if not location_ids:
            return []
        # Only the first location is reported.
        data = await self._get_content(
            f"{self.api_url}/inventory_levels.json",
            headers=headers,
            params={"location_ids": location_ids[0], "limit": 50},
        )
        return list(data.get("inventory_levels") or [])
