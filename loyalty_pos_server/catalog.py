"""Custom loyalty offers and customer progress."""

import logging
from typing import Optional

from .api_client import LoyaltyApiClient
from .models import LoyaltyOffer, LoyaltyProgress

logger = logging.getLogger(__name__)


class LoyaltyCatalog:
    """Read-only access to a business's loyalty offers."""

    def __init__(self, api: LoyaltyApiClient) -> None:
        self.api = api

    async def list_offers(self, business_id: int) -> list[LoyaltyOffer]:
        """
        Active offers of a business, in the order the backend returns them.

        A rejected request yields an empty list. Network errors propagate.
        """
        response = await self.api.list_offers(business_id)
        if not response.success:
            logger.warning(f"Could not load offers for business {business_id}: {response.message}")
            return []
        offers = [offer for offer in response.offers if offer.active]
        logger.info(f"Loaded {len(offers)} active offer(s) of {len(response.offers)} for business {business_id}")
        return offers

    async def get_progress(self, business_id: int, customer_phone: str, offer_id: int) -> Optional[LoyaltyProgress]:
        """
        Customer's progress toward an offer.

        Progress is advisory: any failure is logged and returns None.
        """
        try:
            response = await self.api.get_progress(business_id, customer_phone, offer_id)
        except Exception as e:
            logger.warning(f"Progress lookup failed for {customer_phone} / offer {offer_id}: {e}")
            return None

        if not response.success:
            logger.info(f"No progress for {customer_phone} / offer {offer_id}: {response.message}")
            return None
        return response.progress
