"""
Address search and reverse geocoding against Nominatim.
"""
import logging
from typing import Optional

import httpx

from fleetdispatch.config import get_settings
from fleetdispatch.schemas.schemas import GeoPoint

logger = logging.getLogger(__name__)
settings = get_settings()


def format_coordinates(lat: float, lng: float) -> str:
    return f"{lat:.5f}, {lng:.5f}"


async def _get(path: str, params: dict, client: Optional[httpx.AsyncClient]):
    url = f"{settings.nominatim_base_url}/{path}"
    headers = {"User-Agent": settings.http_user_agent}
    params = {"format": "json", "addressdetails": 1, **params}
    if client is None:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as own_client:
            resp = await own_client.get(url, params=params, headers=headers)
    else:
        resp = await client.get(url, params=params, headers=headers)
    resp.raise_for_status()
    return resp.json()


async def search(query: str, client: Optional[httpx.AsyncClient] = None) -> Optional[GeoPoint]:
    """First match for a free-text address, or None."""
    if not query.strip():
        return None
    try:
        data = await _get("search", {"q": query, "limit": 1}, client)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Geocode search failed for %r: %s", query, exc)
        return None
    if not data:
        return None
    first = data[0]
    try:
        return GeoPoint(
            lat=float(first["lat"]),
            lng=float(first["lon"]),
            address=first.get("display_name") or query,
        )
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Unexpected geocode payload for %r: %s", query, exc)
        return None


async def reverse(lat: float, lng: float, client: Optional[httpx.AsyncClient] = None) -> str:
    """Human-readable address for a point; falls back to the coordinates themselves."""
    try:
        data = await _get("reverse", {"lat": lat, "lon": lng, "zoom": 18}, client)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Reverse geocode failed for (%s, %s): %s", lat, lng, exc)
        return format_coordinates(lat, lng)
    if isinstance(data, dict) and data.get("display_name"):
        return data["display_name"]
    return format_coordinates(lat, lng)
