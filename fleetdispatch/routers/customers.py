"""
Customers router — admin CRUD under /v1/customers
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Response, status

from fleetdispatch.errors import CustomerNotFoundError
from fleetdispatch.middleware.auth import get_current_admin
from fleetdispatch.schemas.schemas import Customer, CustomerUpsertRequest
from fleetdispatch.services.lifecycle import Actor
from fleetdispatch.services.store import TripStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/customers", tags=["Customers"])


@router.get("", response_model=list[Customer])
async def list_customers(
    actor: Actor = Depends(get_current_admin),
    store: TripStore = Depends(get_store),
):
    return await store.list_customers()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Customer)
async def create_customer(
    payload: CustomerUpsertRequest,
    actor: Actor = Depends(get_current_admin),
    store: TripStore = Depends(get_store),
):
    customer = Customer(id=str(uuid.uuid4()), **payload.model_dump())
    await store.save_customer(customer)
    logger.info("Customer %s created by admin=%s", customer.id, actor.user_id)
    return customer


@router.put("/{customer_id}", response_model=Customer)
async def update_customer(
    customer_id: str,
    payload: CustomerUpsertRequest,
    actor: Actor = Depends(get_current_admin),
    store: TripStore = Depends(get_store),
):
    if await store.get_customer(customer_id) is None:
        raise CustomerNotFoundError(f"Customer {customer_id} not found")
    return await store.save_customer(Customer(id=customer_id, **payload.model_dump()))


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: str,
    actor: Actor = Depends(get_current_admin),
    store: TripStore = Depends(get_store),
):
    if not await store.delete_customer(customer_id):
        raise CustomerNotFoundError(f"Customer {customer_id} not found")
    logger.info("Customer %s deleted by admin=%s", customer_id, actor.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
