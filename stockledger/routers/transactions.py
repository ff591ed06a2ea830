from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import settings
from stockledger.db.database import get_async_session
from stockledger.schemas.inventory import PagedTransactions, PartTransactionOut, ReplayMismatchOut, ReplayReport
from stockledger.services.journal import PagedResult, TransactionFilter
from stockledger.services.ledger import StockLedger

router = APIRouter()


def transaction_filter(
    location_id: Optional[int] = Query(None, description="Matches source or destination location"),
    transaction_type: Optional[str] = Query(None),
    reference_type: Optional[str] = Query(None),
    reference_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None, description="Inclusive"),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    sort_by: Literal["date", "type", "quantity"] = Query("date"),
    sort_descending: bool = Query(True),
) -> TransactionFilter:
    return TransactionFilter(
        location_id=location_id,
        transaction_type=transaction_type,
        reference_type=reference_type,
        reference_id=reference_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_descending=sort_descending,
    )


def serialize_page(result: PagedResult) -> PagedTransactions:
    return PagedTransactions(
        items=[PartTransactionOut.model_validate(t) for t in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("", response_model=PagedTransactions)
async def list_transactions(
    part_id: Optional[int] = Query(None),
    flt: TransactionFilter = Depends(transaction_filter),
    db: AsyncSession = Depends(get_async_session),
):
    flt.part_id = part_id
    return serialize_page(await StockLedger(db).get_transactions(flt))


@router.get("/replay", response_model=ReplayReport)
async def replay_journal(
    part_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_async_session),
):
    """Rebuild balances from the journal and report rows that disagree."""
    mismatches = await StockLedger(db).verify_replay(part_id)
    return ReplayReport(
        consistent=not mismatches,
        mismatches=[ReplayMismatchOut.model_validate(m) for m in mismatches],
    )
