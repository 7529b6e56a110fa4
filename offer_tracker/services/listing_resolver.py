# offer_tracker/services/listing_resolver.py
"""
Resolves a listing the tracked seller has no record of yet.

The upstream pricing endpoint is rate limited (0.5 requests / second). Calls
made through one resolver are serialized and spaced at least
LISTING_RESOLVER_DELAY_SECONDS apart, so share a single resolver between
message tasks. Callers must not hold a listing lock while resolving.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from offer_tracker.core.config import Settings, get_settings
from offer_tracker.core.exceptions import TransientDependencyError
from offer_tracker.models.listing import Listing
from offer_tracker.models.seller import Seller

logger = logging.getLogger(__name__)


class ListingResolver(ABC):
    """Base class for listing resolvers"""

    @abstractmethod
    async def resolve(self, db: AsyncSession, seller: Seller, asin: str) -> Optional[Listing]:
        """Return a persisted Listing for ``asin``, or None when upstream has no data for it.

        Raises:
            TransientDependencyError: upstream unavailable; retry later
        """
        pass


class PricingApiListingResolver(ListingResolver):
    """Creates listings after confirming them with the selling partner pricing API."""

    PRICING_PATH = "/products/pricing/v0/items/{asin}/offers"

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 30.0):
        self.settings = settings or get_settings()
        self.timeout = timeout
        self._throttle_lock = asyncio.Lock()
        self._last_call_at: Optional[float] = None

    def _get_headers(self) -> Dict[str, str]:
        return {
            "x-amz-access-token": self.settings.PRICING_API_ACCESS_TOKEN,
            "Accept": "application/json",
        }

    async def _wait_for_slot(self, asin: str) -> None:
        """Block until LISTING_RESOLVER_DELAY_SECONDS have passed since the previous call."""
        delay = self.settings.LISTING_RESOLVER_DELAY_SECONDS
        loop = asyncio.get_running_loop()
        async with self._throttle_lock:
            if delay > 0 and self._last_call_at is not None:
                wait = self._last_call_at + delay - loop.time()
                if wait > 0:
                    logger.info(f"Sleeping for {wait:.2f} seconds before calling getItemOffers for {asin}")
                    await asyncio.sleep(wait)
            self._last_call_at = loop.time()

    async def fetch_pricing(self, asin: str) -> Optional[Dict[str, Any]]:
        await self._wait_for_slot(asin)

        url = f"{self.settings.PRICING_API_BASE_URL.rstrip('/')}{self.PRICING_PATH.format(asin=asin)}"
        params = {
            "MarketplaceId": self.settings.DESIGNATED_MARKETPLACE_ID,
            "ItemCondition": "New",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers=self._get_headers(), params=params)
        except httpx.HTTPError as e:
            raise TransientDependencyError(f"Pricing API request for {asin} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientDependencyError(
                f"Pricing API returned {response.status_code} for {asin}"
            )
        if response.status_code != 200:
            logger.error(f"Pricing API error for {asin}: {response.status_code} {response.text}")
            return None

        data = response.json().get("payload")
        return data or None

    async def resolve(self, db: AsyncSession, seller: Seller, asin: str) -> Optional[Listing]:
        pricing = await self.fetch_pricing(asin)
        if pricing is None:
            logger.error(f"Could not retrieve listing data for asin `{asin}` from the pricing API")
            return None

        listing = Listing(seller_id=seller.id, asin=asin)
        db.add(listing)
        await db.commit()
        logger.info(f"Created listing {listing.id} for asin {asin} (seller {seller.merchant_id})")
        return listing
