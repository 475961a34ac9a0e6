"""Platform adapters."""

from services.connectors.providers.calendly import CalendlyProvider
from services.connectors.providers.google import GoogleProvider
from services.connectors.providers.instagram import InstagramProvider
from services.connectors.providers.shopify import ShopifyProvider
from services.connectors.providers.twitter import TwitterProvider

__all__ = [
    "CalendlyProvider",
    "GoogleProvider",
    "InstagramProvider",
    "ShopifyProvider",
    "TwitterProvider",
]
