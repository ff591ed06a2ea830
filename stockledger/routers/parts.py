from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.auth import current_user_id
from stockledger.core.config import settings
from stockledger.db.database import get_async_session
from stockledger.db.part import Part
from stockledger.routers.transactions import serialize_page, transaction_filter
from stockledger.schemas.inventory import (
    PagedTransactions,
    PartStockOut,
    StockAdjustmentRequest,
    StockConsumeRequest,
    StockReserveRequest,
    StockTransferRequest,
    TransferOut,
)
from stockledger.schemas.parts import PagedParts, PartCreate, PartOut, PartUpdate, ReorderStatusOut
from stockledger.services.catalog import PartCatalog, StockSummary
from stockledger.services.journal import TransactionFilter
from stockledger.services.ledger import StockLedger

router = APIRouter()


def _part_out(part: Part, summary: Optional[StockSummary]) -> PartOut:
    out = PartOut.model_validate(part)
    if summary is None:
        return out
    return out.model_copy(
        update={
            "total_on_hand": summary.total_on_hand,
            "total_reserved": summary.total_reserved,
            "total_available": summary.total_available,
            "reorder_status": summary.reorder_status.value,
        }
    )


# ---------------------------------------------------------------------------
# catalog
# ---------------------------------------------------------------------------

@router.get("", response_model=PagedParts)
async def list_parts(
    search: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    low_stock: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: AsyncSession = Depends(get_async_session),
):
    catalog = PartCatalog(db)
    result = await catalog.list_parts(
        search=search, status=status_filter, low_stock=low_stock, page=page, page_size=page_size
    )
    summaries = await catalog.stock_summaries(result.items)
    return PagedParts(
        items=[_part_out(p, summaries.get(p.id)) for p in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.post("", response_model=PartOut, status_code=status.HTTP_201_CREATED)
async def create_part(
    payload: PartCreate,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    catalog = PartCatalog(db)
    part = await catalog.create_part(payload.model_dump())
    return _part_out(part, await catalog.stock_summary(part.id))


@router.get("/low-stock", response_model=List[PartOut])
async def list_low_stock_parts(db: AsyncSession = Depends(get_async_session)):
    """Active parts at or below their reorder point, with their status."""
    rows = await PartCatalog(db).low_stock_parts()
    return [_part_out(part, summary) for part, summary in rows]


@router.get("/{part_id}", response_model=PartOut)
async def get_part(part_id: int, db: AsyncSession = Depends(get_async_session)):
    catalog = PartCatalog(db)
    part = await catalog.get_part(part_id)
    return _part_out(part, await catalog.stock_summary(part_id))


@router.put("/{part_id}", response_model=PartOut)
async def update_part(
    part_id: int,
    payload: PartUpdate,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    catalog = PartCatalog(db)
    part = await catalog.update_part(part_id, payload.model_dump(exclude_unset=True))
    return _part_out(part, await catalog.stock_summary(part_id))


@router.delete("/{part_id}", response_model=Dict)
async def delete_part(
    part_id: int,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    await PartCatalog(db).delete_part(part_id)
    return {"ok": True}


@router.get("/{part_id}/reorder-status", response_model=ReorderStatusOut)
async def get_reorder_status(part_id: int, db: AsyncSession = Depends(get_async_session)):
    catalog = PartCatalog(db)
    part = await catalog.get_part(part_id)
    summary = await catalog.stock_summary(part_id)
    return ReorderStatusOut(
        part_id=part.id,
        total_on_hand=summary.total_on_hand,
        total_reserved=summary.total_reserved,
        total_available=summary.total_available,
        reorder_point=part.reorder_point,
        min_stock_level=part.min_stock_level,
        reorder_quantity=part.reorder_quantity,
        reorder_status=summary.reorder_status.value,
    )


# ---------------------------------------------------------------------------
# stock
# ---------------------------------------------------------------------------

@router.get("/{part_id}/stock", response_model=List[PartStockOut])
async def get_part_stock(
    part_id: int,
    location_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_async_session),
):
    ledger = StockLedger(db)
    if location_id is not None:
        return [PartStockOut.model_validate(await ledger.get_stock(part_id, location_id))]
    return [PartStockOut.model_validate(s) for s in await ledger.list_stock(part_id)]


@router.post("/{part_id}/stock/adjust", response_model=PartStockOut, status_code=status.HTTP_201_CREATED)
async def adjust_stock(
    part_id: int,
    payload: StockAdjustmentRequest,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    stock = await StockLedger(db).adjust_stock(
        part_id,
        payload.location_id,
        payload.transaction_type,
        payload.quantity,
        user_id,
        unit_cost=payload.unit_cost,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        notes=payload.notes,
    )
    return PartStockOut.model_validate(stock)


@router.post("/{part_id}/stock/transfer", response_model=TransferOut, status_code=status.HTTP_201_CREATED)
async def transfer_stock(
    part_id: int,
    payload: StockTransferRequest,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    from_stock, to_stock = await StockLedger(db).transfer_stock(
        part_id,
        payload.from_location_id,
        payload.to_location_id,
        payload.quantity,
        user_id,
        notes=payload.notes,
    )
    return TransferOut(
        from_stock=PartStockOut.model_validate(from_stock),
        to_stock=PartStockOut.model_validate(to_stock),
    )


@router.post("/{part_id}/stock/reserve", response_model=PartStockOut, status_code=status.HTTP_201_CREATED)
async def reserve_stock(
    part_id: int,
    payload: StockReserveRequest,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    stock = await StockLedger(db).reserve_stock(
        part_id,
        payload.location_id,
        payload.quantity,
        user_id,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        notes=payload.notes,
    )
    return PartStockOut.model_validate(stock)


@router.post("/{part_id}/stock/unreserve", response_model=PartStockOut, status_code=status.HTTP_201_CREATED)
async def unreserve_stock(
    part_id: int,
    payload: StockReserveRequest,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    stock = await StockLedger(db).unreserve_stock(
        part_id,
        payload.location_id,
        payload.quantity,
        user_id,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        notes=payload.notes,
    )
    return PartStockOut.model_validate(stock)


@router.post("/{part_id}/stock/consume", response_model=PartStockOut, status_code=status.HTTP_201_CREATED)
async def consume_reserved_stock(
    part_id: int,
    payload: StockConsumeRequest,
    user_id: int = Depends(current_user_id),
    db: AsyncSession = Depends(get_async_session),
):
    """Issue previously reserved stock against its reference (work order by default)."""
    stock = await StockLedger(db).consume_reservation(
        part_id,
        payload.location_id,
        payload.quantity,
        user_id,
        reference_type=payload.reference_type or "WorkOrder",
        reference_id=payload.reference_id,
        unit_cost=payload.unit_cost,
        notes=payload.notes,
    )
    return PartStockOut.model_validate(stock)


@router.get("/{part_id}/transactions", response_model=PagedTransactions)
async def list_part_transactions(
    part_id: int,
    flt: TransactionFilter = Depends(transaction_filter),
    db: AsyncSession = Depends(get_async_session),
):
    await PartCatalog(db).get_part(part_id)
    flt.part_id = part_id
    return serialize_page(await StockLedger(db).get_transactions(flt))
