from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import settings
from stockledger.core.exceptions import Conflict, InvalidRequest, NotFound
from stockledger.core.logging_config import get_logger, log_extra
from stockledger.core.reorder import ReorderPolicy, ReorderStatus, evaluate_reorder_status
from stockledger.db.database import begin_write
from stockledger.db.inventory.stock import PartStock
from stockledger.db.part import Part, PartStatus, UnitOfMeasure
from stockledger.services.journal import PagedResult

logger = get_logger(__name__)

THRESHOLD_FIELDS = ("reorder_point", "reorder_quantity", "min_stock_level", "max_stock_level", "lead_time_days")


@dataclass
class StockSummary:
    part_id: int
    total_on_hand: int
    total_reserved: int
    reorder_status: ReorderStatus

    @property
    def total_available(self) -> int:
        return self.total_on_hand - self.total_reserved


def _validate_part_fields(data: dict) -> None:
    for name in THRESHOLD_FIELDS:
        value = data.get(name)
        if value is not None and int(value) < 0:
            raise InvalidRequest(f"{name} cannot be negative")
    unit_cost = data.get("unit_cost")
    if unit_cost is not None and Decimal(str(unit_cost)) < 0:
        raise InvalidRequest("unit_cost cannot be negative")
    min_level = int(data.get("min_stock_level") or 0)
    max_level = int(data.get("max_stock_level") or 0)
    if max_level < min_level:
        raise InvalidRequest("max_stock_level must be greater than or equal to min_stock_level")
    if "status" in data and data["status"] is not None:
        try:
            PartStatus(data["status"])
        except ValueError:
            raise InvalidRequest(f"Unknown part status: {data['status']}")
    if "unit_of_measure" in data and data["unit_of_measure"] is not None:
        try:
            UnitOfMeasure(data["unit_of_measure"])
        except ValueError:
            raise InvalidRequest(f"Unknown unit of measure: {data['unit_of_measure']}")
    if "name" in data and not (data["name"] or "").strip():
        raise InvalidRequest("name is required")


class PartCatalog:
    """Part identity and reorder thresholds."""

    def __init__(self, db: AsyncSession, reorder_policy: Optional[ReorderPolicy] = None):
        self.db = db
        self.reorder_policy = reorder_policy or ReorderPolicy.from_settings()

    async def get_part(self, part_id: int, lock: Optional[str] = None) -> Part:
        """``lock``: None, 'share' (ledger writers) or 'update' (deletion)."""
        stmt = select(Part).where(Part.id == part_id, Part.is_deleted == False)  # noqa: E712
        if lock == "share":
            stmt = stmt.with_for_update(read=True).execution_options(populate_existing=True)
        elif lock == "update":
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        part = (await self.db.execute(stmt)).scalar_one_or_none()
        if not part:
            raise NotFound("Part", part_id)
        return part

    async def require_active_part(self, part_id: int, lock: Optional[str] = None) -> Part:
        part = await self.get_part(part_id, lock=lock)
        if not part.is_active:
            raise NotFound("Active part", part_id)
        return part

    async def part_number_exists(self, part_number: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(func.count()).select_from(Part).where(Part.part_number == part_number)
        if exclude_id is not None:
            stmt = stmt.where(Part.id != exclude_id)
        return int((await self.db.execute(stmt)).scalar_one() or 0) > 0

    async def generate_part_number(self, prefix: Optional[str] = None) -> str:
        prefix = prefix or settings.part_number_prefix
        res = await self.db.execute(
            select(Part.part_number)
            .where(Part.part_number.like(f"{prefix}-%"))
            .order_by(Part.part_number.desc())
            .limit(1)
        )
        last = res.scalar_one_or_none()
        next_number = 1
        if last:
            tail = last.rsplit("-", 1)[-1]
            if tail.isdigit():
                next_number = int(tail) + 1
        return f"{prefix}-{next_number:06d}"

    async def create_part(self, data: dict) -> Part:
        _validate_part_fields(data)
        data = dict(data)
        part_number = (data.pop("part_number", None) or "").strip()
        if not part_number:
            part_number = await self.generate_part_number()
        elif await self.part_number_exists(part_number):
            raise Conflict(f"Part number already exists: {part_number}")

        part = Part(part_number=part_number, **{k: v for k, v in data.items() if v is not None})
        part.name = part.name.strip()
        self.db.add(part)
        await self.db.commit()
        await self.db.refresh(part)
        logger.info(f"Created part {part.part_number}", extra=log_extra(part_id=part.id))
        return part

    async def update_part(self, part_id: int, data: dict) -> Part:
        part = await self.get_part(part_id)
        merged = {name: getattr(part, name) for name in THRESHOLD_FIELDS}
        merged.update({k: v for k, v in data.items() if v is not None})
        _validate_part_fields(merged)

        part_number = data.get("part_number")
        if part_number and part_number != part.part_number:
            if await self.part_number_exists(part_number, exclude_id=part.id):
                raise Conflict(f"Part number already exists: {part_number}")

        for name, value in data.items():
            if value is not None:
                setattr(part, name, value.strip() if name == "name" else value)
        await self.db.commit()
        await self.db.refresh(part)
        return part

    async def has_stock(self, part_id: int) -> bool:
        res = await self.db.execute(
            select(func.count())
            .select_from(PartStock)
            .where(PartStock.part_id == part_id)
            .where(or_(PartStock.quantity_on_hand != 0, PartStock.quantity_reserved != 0))
        )
        return int(res.scalar_one() or 0) > 0

    async def delete_part(self, part_id: int) -> None:
        await begin_write(self.db, settings.lock_timeout_seconds)
        try:
            # Ledger writers hold the part FOR SHARE until they commit.
            part = await self.get_part(part_id, lock="update")
            if await self.has_stock(part_id):
                raise Conflict(f"Part {part_id} still has stock on hand or reserved")
        except BaseException:
            await self.db.rollback()
            raise
        part.is_deleted = True
        await self.db.commit()
        logger.info(f"Deleted part {part.part_number}", extra=log_extra(part_id=part_id))

    async def list_parts(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        low_stock: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> PagedResult[Part]:
        if page < 1 or not 1 <= page_size <= settings.max_page_size:
            raise InvalidRequest("invalid page or page_size")

        stmt = select(Part).where(Part.is_deleted == False)  # noqa: E712
        if search:
            qq = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Part.name).like(qq),
                    func.lower(Part.part_number).like(qq),
                    func.lower(Part.barcode).like(qq),
                    func.lower(Part.manufacturer).like(qq),
                )
            )
        if status:
            stmt = stmt.where(Part.status == status)
        if low_stock:
            available = (
                select(func.coalesce(func.sum(PartStock.quantity_on_hand - PartStock.quantity_reserved), 0))
                .where(PartStock.part_id == Part.id)
                .scalar_subquery()
            )
            stmt = stmt.where(available <= Part.reorder_point)

        total = int((await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one() or 0)
        res = await self.db.execute(
            stmt.order_by(func.lower(Part.name).asc(), Part.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return PagedResult(items=list(res.scalars().all()), total_count=total, page=page, page_size=page_size)

    async def _totals(self, part_ids: List[int]) -> dict[int, tuple[int, int]]:
        if not part_ids:
            return {}
        res = await self.db.execute(
            select(
                PartStock.part_id,
                func.coalesce(func.sum(PartStock.quantity_on_hand), 0),
                func.coalesce(func.sum(PartStock.quantity_reserved), 0),
            )
            .where(PartStock.part_id.in_(part_ids))
            .group_by(PartStock.part_id)
        )
        return {row[0]: (int(row[1]), int(row[2])) for row in res.all()}

    def _summarize(self, part: Part, on_hand: int, reserved: int) -> StockSummary:
        return StockSummary(
            part_id=part.id,
            total_on_hand=on_hand,
            total_reserved=reserved,
            reorder_status=evaluate_reorder_status(
                on_hand,
                on_hand - reserved,
                int(part.reorder_point or 0),
                int(part.min_stock_level or 0),
                self.reorder_policy,
            ),
        )

    async def stock_summary(self, part_id: int) -> StockSummary:
        part = await self.get_part(part_id)
        on_hand, reserved = (await self._totals([part.id])).get(part.id, (0, 0))
        return self._summarize(part, on_hand, reserved)

    async def stock_summaries(self, parts: List[Part]) -> dict[int, StockSummary]:
        totals = await self._totals([p.id for p in parts])
        return {p.id: self._summarize(p, *totals.get(p.id, (0, 0))) for p in parts}

    async def low_stock_parts(self) -> List[tuple[Part, StockSummary]]:
        """Active parts whose reorder status is anything but Ok."""
        res = await self.db.execute(
            select(Part)
            .where(Part.is_deleted == False)  # noqa: E712
            .where(Part.status == PartStatus.ACTIVE.value)
            .order_by(func.lower(Part.name).asc())
        )
        parts = list(res.scalars().all())
        summaries = await self.stock_summaries(parts)
        return [(p, summaries[p.id]) for p in parts if summaries[p.id].reorder_status != ReorderStatus.OK]
