"""
Free-form fleet questions answered by a generative model (Gemini REST API).

The report never affects trip state; when the model is unreachable the
caller gets a fixed apology string instead of an error.
"""
import json
import logging
from typing import Optional

import httpx

from fleetdispatch.config import get_settings
from fleetdispatch.schemas.schemas import Trip

logger = logging.getLogger(__name__)
settings = get_settings()

MISSING_KEY_MESSAGE = "AI Service Unavailable: Missing API Key."
FAILURE_MESSAGE = "Failed to generate report. Please try again."
EMPTY_MESSAGE = "No insights generated."


def summarize_trips(trips: list[Trip]) -> list[dict]:
    return [
        {
            "id": t.id[:4],
            "driver": t.driver_id,
            "customer": t.customer_name,
            "status": t.status.value,
            "amount": float(t.payment_amount) if t.payment_amount is not None else 0,
            "date": t.scheduled_time.date().isoformat(),
            "paymentMethod": t.payment_method.value if t.payment_method else None,
        }
        for t in trips
    ]


def build_prompt(trips: list[Trip], query: str) -> str:
    return (
        "You are a logistics fleet manager assistant.\n"
        "Here is the current trip data in JSON format:\n"
        f"{json.dumps(summarize_trips(trips))}\n\n"
        f"User Query: {query}\n\n"
        "Provide a concise, professional summary or answer based on the data provided.\n"
        "If asking for a report, summarize completed trips, total revenue, and any pending issues.\n"
        "Keep it readable as plain text or a simple list."
    )


async def generate_trip_report(
    trips: list[Trip],
    query: str,
    client: Optional[httpx.AsyncClient] = None,
    api_key: Optional[str] = None,
) -> str:
    key = settings.gemini_api_key if api_key is None else api_key
    if not key:
        logger.warning("Gemini API key not configured")
        return MISSING_KEY_MESSAGE

    url = f"{settings.gemini_base_url}/models/{settings.gemini_model}:generateContent"
    body = {"contents": [{"parts": [{"text": build_prompt(trips, query)}]}]}
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.http_timeout_seconds * 3) as own_client:
                resp = await own_client.post(url, params={"key": key}, json=body)
        else:
            resp = await client.post(url, params={"key": key}, json=body)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Gemini report failed: %s", exc)
        return FAILURE_MESSAGE

    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return EMPTY_MESSAGE
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    return text or EMPTY_MESSAGE
