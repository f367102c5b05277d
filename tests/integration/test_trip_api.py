"""
Integration tests for the trip lifecycle over HTTP.
Uses pytest-asyncio + HTTPX against the ASGI app with the in-memory store.
"""
import base64
import json

import pytest
import pytest_asyncio
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from unittest.mock import AsyncMock

from fleetdispatch.main import app
from fleetdispatch.middleware.auth import create_access_token
from fleetdispatch.redis_client import get_redis
from fleetdispatch.schemas.schemas import DistanceEstimate
from fleetdispatch.services.store import InMemoryTripStore, get_store

ADMIN_TOKEN = create_access_token({"sub": "admin_01", "role": "ADMIN"})
DRIVER_TOKEN = create_access_token({"sub": "driver_01", "role": "DRIVER"})
OTHER_DRIVER_TOKEN = create_access_token({"sub": "driver_02", "role": "DRIVER"})

ADMIN = {"Authorization": f"Bearer {ADMIN_TOKEN}"}
DRIVER = {"Authorization": f"Bearer {DRIVER_TOKEN}"}
OTHER_DRIVER = {"Authorization": f"Bearer {OTHER_DRIVER_TOKEN}"}

UPI_PROOF = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8" + b"\x00" * 64).decode()


@pytest.fixture
def store():
    store = InMemoryTripStore()
    app.dependency_overrides[get_store] = lambda: store
    yield store
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(store):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def _create_trip(client, **overrides):
    body = {"customer_name": "Acme", "driver_id": "driver_01", "pickup_location": "A", "drop_location": "B"}
    body.update(overrides)
    resp = await client.post("/v1/trips", headers=ADMIN, json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _advance_to_transit(client, trip_id):
    for step in ("start", "pickup", "transit"):
        resp = await client.post(f"/v1/trips/{trip_id}/{step}", headers=DRIVER)
        assert resp.status_code == 200, resp.text


@pytest.mark.asyncio
class TestAuthAPI:
    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_login_by_email(self, client):
        resp = await client.post("/v1/auth/login", json={"identifier": "arun@fleet.local", "password": "arun@123"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["role"] == "DRIVER"

        me = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["id"] == "driver_01"
        assert "password" not in me.json()

    async def test_login_by_phone(self, client):
        resp = await client.post("/v1/auth/login", json={"identifier": "9998887777", "password": "admin@123"})
        assert resp.status_code == 200
        assert resp.json()["role"] == "ADMIN"

    async def test_login_wrong_password(self, client):
        resp = await client.post("/v1/auth/login", json={"identifier": "arun@fleet.local", "password": "nope"})
        assert resp.status_code == 401

    async def test_missing_auth(self, client):
        resp = await client.get("/v1/trips")
        assert resp.status_code == 401

    async def test_driver_cannot_list_all_trips(self, client):
        resp = await client.get("/v1/trips", headers=DRIVER)
        assert resp.status_code == 403


@pytest.mark.asyncio
class TestTripLifecycleAPI:
    async def test_admin_trip_end_to_end(self, client):
        trip = await _create_trip(client)
        assert trip["status"] == "SCHEDULED"

        await _advance_to_transit(client, trip["id"])
        resp = await client.post(
            f"/v1/trips/{trip['id']}/complete", headers=DRIVER, json={"method": "CASH", "amount": 1200}
        )
        assert resp.status_code == 200, resp.text
        done = resp.json()
        assert done["status"] == "COMPLETED"
        assert done["payment_method"] == "CASH"
        assert done["payment_amount"] == 1200
        assert [e["status"] for e in done["timeline"]] == [
            "SCHEDULED", "STARTED", "PICKUP_COMPLETED", "IN_TRANSIT", "COMPLETED",
        ]

    async def test_driver_request_and_approval(self, client):
        resp = await client.post(
            "/v1/drivers/me/trip-requests",
            headers=DRIVER,
            json={"customer_name": "Walk-in Client", "pickup_location": "Depot", "drop_location": "Market"},
        )
        assert resp.status_code == 201, resp.text
        requested = resp.json()
        assert requested["status"] == "PENDING_APPROVAL"
        assert requested["is_driver_requested"] is True

        blocked = await client.post(f"/v1/trips/{requested['id']}/start", headers=DRIVER)
        assert blocked.status_code == 409

        pending = await client.get("/v1/trips", headers=ADMIN, params={"status": "PENDING_APPROVAL"})
        assert [t["id"] for t in pending.json()] == [requested["id"]]

        approved = await client.post(f"/v1/trips/{requested['id']}/approve", headers=ADMIN)
        assert approved.status_code == 200
        body = approved.json()
        assert body["status"] == "SCHEDULED"
        assert len(body["timeline"]) == len(requested["timeline"]) + 1
        assert body["timeline"][-1]["status"] == "SCHEDULED"

    async def test_driver_cannot_approve(self, client):
        resp = await client.post(
            "/v1/drivers/me/trip-requests",
            headers=DRIVER,
            json={"customer_name": "Walk-in", "pickup_location": "A", "drop_location": "B"},
        )
        approve = await client.post(f"/v1/trips/{resp.json()['id']}/approve", headers=DRIVER)
        assert approve.status_code == 409

    async def test_out_of_order_transition(self, client):
        trip = await _create_trip(client)
        resp = await client.post(
            f"/v1/trips/{trip['id']}/complete", headers=DRIVER, json={"method": "CASH", "amount": 50}
        )
        assert resp.status_code == 409
        current = await client.get(f"/v1/trips/{trip['id']}", headers=DRIVER)
        assert current.json()["status"] == "SCHEDULED"
        assert len(current.json()["timeline"]) == 1

    async def test_repeated_pickup_is_rejected(self, client):
        trip = await _create_trip(client)
        await client.post(f"/v1/trips/{trip['id']}/start", headers=DRIVER)
        first = await client.post(f"/v1/trips/{trip['id']}/pickup", headers=DRIVER)
        second = await client.post(f"/v1/trips/{trip['id']}/pickup", headers=DRIVER)
        assert first.status_code == 200
        assert second.status_code == 409
        current = await client.get(f"/v1/trips/{trip['id']}", headers=ADMIN)
        assert len(current.json()["timeline"]) == 3

    async def test_complete_without_method(self, client):
        trip = await _create_trip(client)
        await _advance_to_transit(client, trip["id"])
        resp = await client.post(f"/v1/trips/{trip['id']}/complete", headers=DRIVER, json={"amount": 100})
        assert resp.status_code == 400
        assert resp.json()["field"] == "method"

    async def test_upi_without_proof(self, client):
        trip = await _create_trip(client)
        await _advance_to_transit(client, trip["id"])
        resp = await client.post(
            f"/v1/trips/{trip['id']}/complete", headers=DRIVER, json={"method": "UPI", "amount": 100}
        )
        assert resp.status_code == 400
        assert resp.json()["field"] == "proof"

    async def test_upi_with_proof(self, client):
        trip = await _create_trip(client)
        await _advance_to_transit(client, trip["id"])
        resp = await client.post(
            f"/v1/trips/{trip['id']}/complete",
            headers=DRIVER,
            json={"method": "UPI", "amount": 640.5, "proof": UPI_PROOF},
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["payment_proof"] == UPI_PROOF
        assert resp.json()["payment_amount"] == 640.5

    async def test_zero_amount(self, client):
        trip = await _create_trip(client)
        await _advance_to_transit(client, trip["id"])
        resp = await client.post(
            f"/v1/trips/{trip['id']}/complete", headers=DRIVER, json={"method": "CASH", "amount": 0}
        )
        assert resp.status_code == 400
        assert resp.json()["field"] == "amount"

    async def test_other_driver_cannot_see_or_move_trip(self, client):
        trip = await _create_trip(client)
        assert (await client.get(f"/v1/trips/{trip['id']}", headers=OTHER_DRIVER)).status_code == 403
        assert (await client.post(f"/v1/trips/{trip['id']}/start", headers=OTHER_DRIVER)).status_code == 409

    async def test_unknown_trip(self, client):
        resp = await client.post("/v1/trips/does-not-exist/start", headers=DRIVER)
        assert resp.status_code == 404

    async def test_create_requires_driver(self, client):
        resp = await client.post(
            "/v1/trips", headers=ADMIN, json={"customer_name": "Acme", "pickup_location": "A", "drop_location": "B"}
        )
        assert resp.status_code == 400
        assert resp.json()["field"] == "driver_id"

    async def test_create_with_inline_customer(self, client):
        trip = await _create_trip(
            client,
            customer_name=None,
            new_customer={"name": "Fresh Mart", "address": "4 Lake Rd", "phone": "9000000001"},
        )
        assert trip["customer_name"] == "Fresh Mart"
        customers = (await client.get("/v1/customers", headers=ADMIN)).json()
        assert [c["id"] for c in customers] == [trip["customer_id"]]

    async def test_failed_create_leaves_customers_unchanged(self, client):
        resp = await client.post(
            "/v1/trips",
            headers=ADMIN,
            json={
                "driver_id": "nobody",
                "pickup_location": "A",
                "drop_location": "B",
                "new_customer": {"name": "N", "address": "Z"},
            },
        )
        assert resp.status_code == 400
        assert resp.json()["field"] == "driver_id"
        assert (await client.get("/v1/customers", headers=ADMIN)).json() == []

    async def test_driver_trip_list_hides_completed(self, client):
        open_trip = await _create_trip(client, customer_name="Open")
        finished = await _create_trip(client, customer_name="Finished")
        await _advance_to_transit(client, finished["id"])
        await client.post(
            f"/v1/trips/{finished['id']}/complete", headers=DRIVER, json={"method": "CASH", "amount": 10}
        )
        resp = await client.get("/v1/drivers/me/trips", headers=DRIVER)
        assert [t["id"] for t in resp.json()] == [open_trip["id"]]


class FakeRedis:
    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value


@pytest.mark.asyncio
class TestIdempotency:
    async def test_repeated_create_is_replayed(self, client, store, monkeypatch):
        fake = FakeRedis()

        async def fake_get_redis():
            return fake

        monkeypatch.setattr("fleetdispatch.middleware.idempotency.get_redis", fake_get_redis)
        headers = {**ADMIN, "Idempotency-Key": "create-42"}
        body = {"customer_name": "Acme", "driver_id": "driver_01", "pickup_location": "A", "drop_location": "B"}

        first = await client.post("/v1/trips", headers=headers, json=body)
        second = await client.post("/v1/trips", headers=headers, json=body)

        assert first.status_code == second.status_code == 201
        assert second.headers["X-Idempotency-Replay"] == "true"
        assert second.json()["id"] == first.json()["id"]
        assert len(await store.list_trips()) == 1


@pytest.mark.asyncio
class TestCustomersAPI:
    async def test_crud(self, client):
        created = await client.post(
            "/v1/customers", headers=ADMIN, json={"name": "Acme", "address": "1 High St"}
        )
        assert created.status_code == 201
        cid = created.json()["id"]

        updated = await client.put(
            f"/v1/customers/{cid}", headers=ADMIN, json={"name": "Acme Ltd", "address": "1 High St", "phone": "123"}
        )
        assert updated.json()["name"] == "Acme Ltd"

        assert (await client.delete(f"/v1/customers/{cid}", headers=ADMIN)).status_code == 204
        assert (await client.delete(f"/v1/customers/{cid}", headers=ADMIN)).status_code == 404

    async def test_name_and_address_required(self, client):
        resp = await client.post("/v1/customers", headers=ADMIN, json={"name": "", "address": ""})
        assert resp.status_code == 422

    async def test_driver_forbidden(self, client):
        assert (await client.get("/v1/customers", headers=DRIVER)).status_code == 403


@pytest.mark.asyncio
class TestGeoAPI:
    @pytest.fixture
    def redis(self):
        fake = AsyncMock()
        fake.get = AsyncMock(return_value=None)
        fake.setex = AsyncMock()
        app.dependency_overrides[get_redis] = lambda: fake
        return fake

    async def test_distance_is_looked_up_and_cached(self, client, redis, monkeypatch):
        estimate = AsyncMock(return_value=DistanceEstimate(km=15.4))
        monkeypatch.setattr("fleetdispatch.routers.geo.estimate_distance", estimate)

        resp = await client.get(
            "/v1/geo/distance",
            headers=ADMIN,
            params={"origin_lat": 12.97, "origin_lng": 77.59, "dest_lat": 13.08, "dest_lng": 77.62},
        )
        assert resp.status_code == 200
        assert resp.json() == {"km": 15.4, "label": "15.4 km"}
        redis.setex.assert_awaited_once()

    async def test_cached_distance_skips_lookup(self, client, redis, monkeypatch):
        redis.get = AsyncMock(return_value=json.dumps({"km": 3.2, "label": "3.2 km"}))
        estimate = AsyncMock()
        monkeypatch.setattr("fleetdispatch.routers.geo.estimate_distance", estimate)

        resp = await client.get(
            "/v1/geo/distance",
            headers=DRIVER,
            params={"origin_lat": 1, "origin_lng": 2, "dest_lat": 3, "dest_lng": 4},
        )
        assert resp.json()["km"] == 3.2
        estimate.assert_not_awaited()

    async def test_unresolvable_distance_is_empty(self, client, redis, monkeypatch):
        monkeypatch.setattr("fleetdispatch.routers.geo.estimate_distance", AsyncMock(return_value=None))
        resp = await client.get(
            "/v1/geo/distance",
            headers=ADMIN,
            params={"origin_lat": 1, "origin_lng": 2, "dest_lat": 3, "dest_lng": 4},
        )
        assert resp.status_code == 200
        assert resp.json() == {"km": None, "label": ""}
        redis.setex.assert_not_awaited()



class TestLiveDistanceSocket:
    @pytest.fixture
    def ws_client(self, store, monkeypatch):
        fake = AsyncMock()
        fake.get = AsyncMock(return_value=None)
        fake.setex = AsyncMock()
        app.dependency_overrides[get_redis] = lambda: fake
        monkeypatch.setattr("fleetdispatch.services.distance.settings.distance_debounce_seconds", 0)
        return TestClient(app)

    def test_estimate_then_cleared(self, ws_client, monkeypatch):
        estimate = AsyncMock(return_value=DistanceEstimate(km=15.4))
        monkeypatch.setattr("fleetdispatch.routers.geo.estimate_distance", estimate)

        with ws_client.websocket_connect(f"/v1/geo/distance/live?token={ADMIN_TOKEN}") as ws:
            ws.send_json({"pickup": [12.97, 77.59], "drop": [13.08, 77.62]})
            assert ws.receive_json() == {"km": 15.4, "label": "15.4 km"}
            ws.send_json({"pickup": [12.97, 77.59], "drop": None})
            assert ws.receive_json() == {"km": None, "label": ""}
        estimate.assert_awaited_once_with(12.97, 77.59, 13.08, 77.62)

    def test_malformed_message_reports_error(self, ws_client):
        with ws_client.websocket_connect(f"/v1/geo/distance/live?token={DRIVER_TOKEN}") as ws:
            ws.send_json({"pickup": "somewhere"})
            assert "error" in ws.receive_json()

    def test_bad_token_is_refused(self, ws_client):
        with pytest.raises(WebSocketDisconnect):
            with ws_client.websocket_connect("/v1/geo/distance/live?token=not-a-jwt") as ws:
                ws.receive_json()


@pytest.mark.asyncio
class TestDriversAndReportsAPI:
    async def test_admin_lists_drivers_only(self, client):
        resp = await client.get("/v1/drivers", headers=ADMIN)
        assert resp.status_code == 200
        drivers = resp.json()
        assert [d["id"] for d in drivers] == ["driver_01"]
        assert "password" not in drivers[0]

    async def test_driver_cannot_list_drivers(self, client):
        resp = await client.get("/v1/drivers", headers=DRIVER)
        assert resp.status_code == 403

    async def test_report_query_passes_trips_and_query(self, client, monkeypatch):
        trip = await _create_trip(client)
        report = AsyncMock(return_value="1 trip scheduled.")
        monkeypatch.setattr("fleetdispatch.routers.reports.generate_trip_report", report)

        resp = await client.post("/v1/reports/query", headers=ADMIN, json={"query": "  How many trips?  "})
        assert resp.status_code == 200
        assert resp.json() == {"answer": "1 trip scheduled."}
        trips, query = report.await_args.args
        assert [t.id for t in trips] == [trip["id"]]
        assert query == "How many trips?"

    async def test_report_query_admin_only(self, client):
        resp = await client.post("/v1/reports/query", headers=DRIVER, json={"query": "hi"})
        assert resp.status_code == 403
