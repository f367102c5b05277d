"""
End-to-end smoke run against a live server (uvicorn fleetdispatch.main:app).
Logs in with the seeded accounts and walks one trip from request to payment.
"""
import asyncio
import uuid

import httpx

BASE_URL = "http://localhost:8000"


async def safe_request(resp: httpx.Response, step: str):
    """Print response + fail loudly if error"""
    print(f"{step}: {resp.status_code}")

    try:
        print(resp.json())
    except ValueError:
        print(resp.text)

    resp.raise_for_status()


async def login(client: httpx.AsyncClient, identifier: str, password: str) -> dict:
    resp = await client.post(f"{BASE_URL}/v1/auth/login", json={"identifier": identifier, "password": password})
    await safe_request(resp, f"Login {identifier}")
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


async def main():

    async with httpx.AsyncClient(timeout=30.0) as client:

        print("\n1. Checking health...")
        resp = await client.get(f"{BASE_URL}/health")
        await safe_request(resp, "Health")

        print("\n2. Logging in...")
        admin_headers = await login(client, "admin@fleet.local", "admin@123")
        driver_headers = await login(client, "arun@fleet.local", "arun@123")

        print("\n3. Driver requests an ad-hoc trip...")
        resp = await client.post(
            f"{BASE_URL}/v1/drivers/me/trip-requests",
            json={
                "customer_name": "Walk-in Client",
                "pickup_location": "MG Road, Bengaluru",
                "pickup_lat": 12.9756,
                "pickup_lng": 77.6050,
                "drop_location": "Indiranagar, Bengaluru",
                "drop_lat": 12.9784,
                "drop_lng": 77.6408,
            },
            headers={**driver_headers, "Idempotency-Key": str(uuid.uuid4())},
        )
        await safe_request(resp, "Request Trip")
        trip_id = resp.json()["id"]

        print("\n4. Admin approves...")
        resp = await client.post(f"{BASE_URL}/v1/trips/{trip_id}/approve", headers=admin_headers)
        await safe_request(resp, "Approve")

        print("\n5. Driver runs the trip...")
        for step in ("start", "pickup", "transit"):
            resp = await client.post(f"{BASE_URL}/v1/trips/{trip_id}/{step}", headers=driver_headers)
            await safe_request(resp, step.title())

        print("\n6. Driver records cash payment...")
        resp = await client.post(
            f"{BASE_URL}/v1/trips/{trip_id}/complete",
            json={"method": "CASH", "amount": 1200},
            headers=driver_headers,
        )
        await safe_request(resp, "Complete")

        timeline = [e["status"] for e in resp.json()["timeline"]]
        print(f"\nTimeline: {' -> '.join(timeline)}")
        print("\nFLOW COMPLETED SUCCESSFULLY")


if __name__ == "__main__":
    asyncio.run(main())
