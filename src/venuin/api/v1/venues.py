"""Venue and booking endpoints.

These are the tenant-owned resources that exercise the full chain:
resolver -> tenant guard -> capability gate. Creating a venue or booking
reserves one unit of the plan limit inside the request's transaction.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.venuin.api.deps import get_gate, get_principal, get_store, require_capability
from src.venuin.auth.gate import CapabilityGate, CapabilityGrant
from src.venuin.auth.guard import authorize_tenant_access
from src.venuin.auth.principal import Principal
from src.venuin.core.errors import NotFound
from src.venuin.schemas.tenant import BookingCreate, BookingResponse, VenueCreate, VenueResponse
from src.venuin.storage.repository import AccessStore

router = APIRouter(prefix="/api/v1", tags=["venues"])


@router.post("/tenants/{tenant_id}/venues", response_model=VenueResponse, status_code=status.HTTP_201_CREATED)
async def create_venue(
    tenant_id: str,
    body: VenueCreate,
    store: AccessStore = Depends(get_store, scope="function"),
    grant: CapabilityGrant = Depends(require_capability("manage_venues", quantity_delta=1)),
):
    venue = await store.create_venue(tenant_id, body.name)
    return VenueResponse(**venue.model_dump())


@router.get("/tenants/{tenant_id}/venues", response_model=list[VenueResponse])
async def list_venues(
    tenant_id: str,
    store: AccessStore = Depends(get_store, scope="function"),
    grant: CapabilityGrant = Depends(require_capability("view_venues")),
):
    venues = await store.list_venues(tenant_id)
    return [VenueResponse(**v.model_dump()) for v in venues]


@router.get("/venues/{venue_id}", response_model=VenueResponse)
async def get_venue(
    venue_id: str,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(get_principal),
    gate: CapabilityGate = Depends(get_gate),
):
    venue = await store.get_venue(venue_id)
    if venue is None:
        raise NotFound("Venue not found")
    authorize_tenant_access(principal, venue.tenant_id)
    await gate.check_capability(principal, "view_venues", tenant_id=venue.tenant_id)
    return VenueResponse(**venue.model_dump())


@router.post("/tenants/{tenant_id}/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    tenant_id: str,
    body: BookingCreate,
    store: AccessStore = Depends(get_store, scope="function"),
    grant: CapabilityGrant = Depends(require_capability("manage_events", quantity_delta=1)),
):
    """Create a booking; counts against ``max_bookings_per_month``."""
    venue = await store.get_venue(body.venue_id)
    # A venue from another tenant is reported as missing
    if venue is None or venue.tenant_id != tenant_id:
        raise NotFound("Venue not found")
    booking = await store.create_booking(tenant_id, venue.id, body.title)
    return BookingResponse(**booking.model_dump())


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(get_principal),
    gate: CapabilityGate = Depends(get_gate),
):
    booking = await store.get_booking(booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    authorize_tenant_access(principal, booking.tenant_id)
    await gate.check_capability(principal, "view_events", tenant_id=booking.tenant_id)
    return BookingResponse(**booking.model_dump())
