"""
kakao_geocoder.py -- Reverse geocoding through the Kakao Local REST API.

Resolution order for a coordinate:
1. coord2address road address (+ building name when present)
2. coord2address lot-number address
3. keyword search within 50 m -> nearest place name

Every HTTP or payload failure is logged and resolves to None; a missing
location never blocks a recording's pipeline.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

KAKAO_BASE_URL: str = "https://dapi.kakao.com"
HTTP_TIMEOUT_SECONDS: float = 10.0
KEYWORD_RADIUS_METERS: int = 50


def _first_document(payload: Any) -> Optional[dict[str, Any]]:
    if not isinstance(payload, dict):
        return None
    documents = payload.get("documents")
    if not isinstance(documents, list) or not documents:
        return None
    first = documents[0]
    return first if isinstance(first, dict) else None


def address_from_coord2address(payload: Any) -> Optional[str]:
    """Pick the road address (with building name) or the lot-number address."""
    doc = _first_document(payload)
    if doc is None:
        return None
    road = doc.get("road_address")
    if isinstance(road, dict) and road.get("address_name"):
        building = road.get("building_name") or ""
        return f"{road['address_name']} {building}".strip()
    lot = doc.get("address")
    if isinstance(lot, dict) and lot.get("address_name"):
        return lot["address_name"]
    return None


def place_from_keyword_search(payload: Any) -> Optional[str]:
    doc = _first_document(payload)
    if doc is None:
        return None
    return doc.get("place_name") or None


class KakaoGeocoder:
    """Geocoder port backed by Kakao Local."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = KAKAO_BASE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key or os.getenv("KAKAO_REST_API_KEY", "")
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def _get(self, client: httpx.AsyncClient, path: str, params: dict[str, Any]) -> Any:
        try:
            resp = await client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("Kakao returned %d for %s", exc.response.status_code, path)
        except httpx.RequestError as exc:
            logger.warning("Failed to reach Kakao at %s: %s", path, exc)
        except ValueError as exc:
            logger.warning("Kakao sent non-JSON body for %s: %s", path, exc)
        return None

    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        if not self.api_key:
            logger.info("KAKAO_REST_API_KEY not set; skipping reverse geocoding")
            return None

        headers = {"Authorization": f"KakaoAK {self.api_key}"}
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            payload = await self._get(
                client,
                "/v2/local/geo/coord2address.json",
                {"x": longitude, "y": latitude, "input_coord": "WGS84"},
            )
            address = address_from_coord2address(payload)
            if address:
                logger.info("Resolved (%.5f, %.5f) -> %s", latitude, longitude, address)
                return address

            payload = await self._get(
                client,
                "/v2/local/search/keyword.json",
                {"x": longitude, "y": latitude, "radius": KEYWORD_RADIUS_METERS},
            )
            place = place_from_keyword_search(payload)
            if place:
                logger.info("Resolved (%.5f, %.5f) -> place %s", latitude, longitude, place)
            else:
                logger.info("No address found for (%.5f, %.5f)", latitude, longitude)
            return place
