"""
Reports router — POST /v1/reports/query
"""
from fastapi import APIRouter, Depends

from fleetdispatch.middleware.auth import get_current_admin
from fleetdispatch.schemas.schemas import ReportQueryRequest, ReportResponse
from fleetdispatch.services.lifecycle import Actor
from fleetdispatch.services.reports import generate_trip_report
from fleetdispatch.services.store import TripStore, get_store

router = APIRouter(prefix="/v1/reports", tags=["Reports"])


@router.post("/query", response_model=ReportResponse)
async def query_fleet(
    payload: ReportQueryRequest,
    actor: Actor = Depends(get_current_admin),
    store: TripStore = Depends(get_store),
):
    trips = await store.list_trips()
    return ReportResponse(answer=await generate_trip_report(trips, payload.query.strip()))
