"""Properties API routes: hosts manage their own listings."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.api.deps import get_current_user, get_db
from staybook.models.property import Property
from staybook.models.user import User
from staybook.schemas.property import (
    PropertyCreate,
    PropertyListResponse,
    PropertyResponse,
    PropertyUpdate,
)

router = APIRouter(prefix="/api/v1/properties", tags=["properties"])


async def _get_owned_property(db: AsyncSession, property_id: uuid.UUID, owner: User) -> Property:
    """Fetch a property owned by ``owner``. Returns 404 otherwise."""
    result = await db.execute(select(Property).where(Property.id == property_id))
    prop = result.scalar_one_or_none()
    if prop is None or prop.owner_id != owner.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Property not found",
        )
    return prop


@router.post(
    "",
    response_model=PropertyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="List a new property",
)
async def create_property(
    body: PropertyCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PropertyResponse:
    """Create a property hosted by the authenticated user."""
    prop = Property(owner_id=current_user.id, **body.model_dump())
    db.add(prop)
    await db.flush()
    await db.refresh(prop)
    return PropertyResponse.model_validate(prop)


@router.get(
    "",
    response_model=PropertyListResponse,
    summary="List properties hosted by the current user",
)
async def list_properties(
    status_filter: str | None = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PropertyListResponse:
    """Return paginated properties hosted by the current user."""
    filters = [Property.owner_id == current_user.id]
    if status_filter is not None:
        filters.append(Property.status == status_filter)

    total_result = await db.execute(select(func.count()).select_from(Property).where(*filters))
    total = total_result.scalar_one()

    result = await db.execute(
        select(Property).where(*filters).order_by(Property.created_at.desc()).offset(skip).limit(limit)
    )
    return PropertyListResponse(
        items=[PropertyResponse.model_validate(p) for p in result.scalars().all()],
        total=total,
    )


@router.get(
    "/{property_id}",
    response_model=PropertyResponse,
    summary="Get a property by ID",
)
async def get_property(
    property_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PropertyResponse:
    """Retrieve any property; listings are public to signed-in users."""
    result = await db.execute(select(Property).where(Property.id == property_id))
    prop = result.scalar_one_or_none()
    if prop is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Property not found",
        )
    return PropertyResponse.model_validate(prop)


@router.put(
    "/{property_id}",
    response_model=PropertyResponse,
    summary="Update a property",
)
async def update_property(
    property_id: uuid.UUID,
    body: PropertyUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PropertyResponse:
    """Partially update a property. Existing bookings keep their price snapshot."""
    prop = await _get_owned_property(db, property_id, current_user)

    update_data = body.model_dump(exclude_unset=True)
    min_stay = update_data.get("min_stay", prop.min_stay)
    max_stay = update_data.get("max_stay", prop.max_stay)
    if max_stay is not None and max_stay < min_stay:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="max_stay must be greater than or equal to min_stay",
        )

    for field, value in update_data.items():
        setattr(prop, field, value)

    await db.flush()
    await db.refresh(prop)
    return PropertyResponse.model_validate(prop)
