import logging
import os
from typing import List

import httpx
from dotenv import load_dotenv

from .models import DeliveryResult, Review

load_dotenv()
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
DELIVERY_TIMEOUT = float(os.getenv("DELIVERY_TIMEOUT", "30"))

logger = logging.getLogger("harvester.delivery")


class DeliveryClient:
    def __init__(self, backend_url=BACKEND_URL, timeout=DELIVERY_TIMEOUT, transport=None):
        self.endpoint = f"{backend_url.rstrip('/')}/reviews"
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def deliver(self, reviews: List[Review], hotel_id: str, ota: str) -> DeliveryResult:
        """
        Post one finished batch to the backend collector.

        An empty batch is not sent. Network errors and non-success statuses are
        logged and reported as FAILED; they are never retried or raised, so the
        harvest's termination reason stays as decided.

        Args:
            reviews (list[Review]): accepted reviews, harvest order
            hotel_id (str): backend hotel identifier
            ota (str): OTA name expected by the collector, e.g. "ticket.com"

        Returns:
            DeliveryResult: SKIPPED, SENT or FAILED
        """
        if not reviews:
            logger.info("No valid reviews found, nothing delivered.")
            return DeliveryResult.SKIPPED

        payload = {
            "reviews": [r.model_dump(by_alias=True) for r in reviews],
            "hotel_id": hotel_id,
            "ota": ota,
        }
        try:
            resp = await self.client.post(self.endpoint, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error sending {len(reviews)} reviews for hotel {hotel_id}: {e}")
            return DeliveryResult.FAILED

        logger.info(f"Sent {len(reviews)} reviews for hotel {hotel_id} to backend")
        return DeliveryResult.SENT
