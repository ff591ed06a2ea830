from typing import Dict, List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.auth import current_user_id
from stockledger.db.database import get_async_session
from stockledger.schemas.locations import LocationCreate, LocationOut, LocationTreeOut, LocationUpdate
from stockledger.services.locations import LocationNode, LocationRegistry

router = APIRouter()


def _tree_out(node: LocationNode) -> LocationTreeOut:
    loc = node.location
    return LocationTreeOut(
        id=loc.id,
        name=loc.name,
        code=loc.code,
        level=loc.level,
        full_path=loc.full_path,
        is_active=loc.is_active,
        children=[_tree_out(c) for c in node.children],
    )


@router.get("", response_model=List[LocationOut])
async def list_locations(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_async_session),
):
    return await LocationRegistry(db).list_locations(include_inactive=include_inactive)


@router.post("", response_model=LocationOut, status_code=status.HTTP_201_CREATED)
async def create_location(
    payload: LocationCreate,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    return await LocationRegistry(db).create_location(payload.model_dump())


@router.get("/tree", response_model=List[LocationTreeOut])
async def get_location_tree(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_async_session),
):
    roots = await LocationRegistry(db).get_tree(include_inactive=include_inactive)
    return [_tree_out(n) for n in roots]


@router.get("/{location_id}", response_model=LocationOut)
async def get_location(location_id: int, db: AsyncSession = Depends(get_async_session)):
    return await LocationRegistry(db).get_location(location_id)


@router.put("/{location_id}", response_model=LocationOut)
async def update_location(
    location_id: int,
    payload: LocationUpdate,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    return await LocationRegistry(db).update_location(location_id, payload.model_dump(exclude_unset=True))


@router.delete("/{location_id}", response_model=Dict)
async def delete_location(
    location_id: int,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    await LocationRegistry(db).delete_location(location_id)
    return {"ok": True}
