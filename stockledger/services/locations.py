"""
Storage location tree.

Locations form a forest through ``parent_id``. ``level`` and ``full_path``
are materialized on every write and refreshed for the whole subtree when a
node is renamed or moved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import settings
from stockledger.core.exceptions import Conflict, InvalidRequest, NotFound
from stockledger.core.logging_config import get_logger, log_extra
from stockledger.db.database import begin_write
from stockledger.db.inventory.stock import PartStock
from stockledger.db.location import PATH_SEPARATOR, StorageLocation

logger = get_logger(__name__)


@dataclass
class LocationNode:
    location: StorageLocation
    children: List["LocationNode"] = field(default_factory=list)


class LocationRegistry:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_all(self) -> Dict[int, StorageLocation]:
        res = await self.db.execute(
            select(StorageLocation).where(StorageLocation.is_deleted == False)  # noqa: E712
        )
        return {loc.id: loc for loc in res.scalars().all()}

    async def get_location(self, location_id: int, lock: Optional[str] = None) -> StorageLocation:
        """``lock``: None, 'share' (ledger writers) or 'update' (deletion)."""
        stmt = select(StorageLocation).where(
            StorageLocation.id == location_id,
            StorageLocation.is_deleted == False,  # noqa: E712
        )
        if lock == "share":
            stmt = stmt.with_for_update(read=True).execution_options(populate_existing=True)
        elif lock == "update":
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        loc = (await self.db.execute(stmt)).scalar_one_or_none()
        if not loc:
            raise NotFound("Storage location", location_id)
        return loc

    async def require_active_location(self, location_id: int, lock: Optional[str] = None) -> StorageLocation:
        loc = await self.get_location(location_id, lock=lock)
        if not loc.is_active:
            raise NotFound("Active storage location", location_id)
        return loc

    async def list_locations(self, include_inactive: bool = False) -> List[StorageLocation]:
        stmt = select(StorageLocation).where(StorageLocation.is_deleted == False)  # noqa: E712
        if not include_inactive:
            stmt = stmt.where(StorageLocation.is_active == True)  # noqa: E712
        res = await self.db.execute(stmt.order_by(func.coalesce(StorageLocation.full_path, StorageLocation.name)))
        return list(res.scalars().all())

    async def get_tree(self, include_inactive: bool = False) -> List[LocationNode]:
        locations = await self.list_locations(include_inactive=include_inactive)
        nodes = {loc.id: LocationNode(loc) for loc in locations}
        roots: List[LocationNode] = []
        for loc in locations:
            node = nodes[loc.id]
            parent = nodes.get(loc.parent_id) if loc.parent_id is not None else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        for node in nodes.values():
            node.children.sort(key=lambda n: n.location.name.lower())
        return sorted(roots, key=lambda n: n.location.name.lower())

    async def code_exists(self, code: str, exclude_id: Optional[int] = None) -> bool:
        stmt = (
            select(func.count())
            .select_from(StorageLocation)
            .where(StorageLocation.code == code, StorageLocation.is_deleted == False)  # noqa: E712
        )
        if exclude_id is not None:
            stmt = stmt.where(StorageLocation.id != exclude_id)
        return int((await self.db.execute(stmt)).scalar_one() or 0) > 0

    @staticmethod
    def _ancestors(by_id: Dict[int, StorageLocation], parent_id: Optional[int], node_id: Optional[int]) -> List[StorageLocation]:
        """Ancestor chain from the direct parent up to the root.

        Raises InvalidRequest if the chain reaches ``node_id`` or loops.
        """
        chain: List[StorageLocation] = []
        visited = set()
        current = parent_id
        while current is not None:
            if current == node_id:
                raise InvalidRequest(f"Location {node_id} cannot be placed under its own descendant {parent_id}")
            if current in visited or len(visited) > len(by_id):
                raise InvalidRequest(f"Location tree contains a cycle at {current}")
            visited.add(current)
            loc = by_id.get(current)
            if loc is None:
                raise NotFound("Storage location", current)
            chain.append(loc)
            current = loc.parent_id
        return chain

    @staticmethod
    def _materialize(loc: StorageLocation, ancestors: List[StorageLocation]) -> None:
        loc.level = len(ancestors)
        loc.full_path = PATH_SEPARATOR.join([a.name for a in reversed(ancestors)] + [loc.name])

    def _refresh_subtree(self, by_id: Dict[int, StorageLocation], root: StorageLocation) -> None:
        children: Dict[int, List[StorageLocation]] = {}
        for loc in by_id.values():
            if loc.parent_id is not None:
                children.setdefault(loc.parent_id, []).append(loc)
        stack = [root]
        while stack:
            node = stack.pop()
            for child in children.get(node.id, []):
                child.level = node.level + 1
                child.full_path = f"{node.full_path}{PATH_SEPARATOR}{child.name}"
                stack.append(child)

    async def build_full_path(self, parent_id: Optional[int], name: str) -> str:
        by_id = await self._load_all()
        ancestors = self._ancestors(by_id, parent_id, None)
        return PATH_SEPARATOR.join([a.name for a in reversed(ancestors)] + [name])

    async def create_location(self, data: dict) -> StorageLocation:
        name = (data.get("name") or "").strip()
        if not name:
            raise InvalidRequest("name is required")
        code = (data.get("code") or "").strip() or None
        if code and await self.code_exists(code):
            raise Conflict(f"Location code already exists: {code}")

        by_id = await self._load_all()
        parent_id = data.get("parent_id")
        ancestors = self._ancestors(by_id, parent_id, None)

        loc = StorageLocation(
            name=name,
            code=code,
            description=data.get("description"),
            parent_id=parent_id,
            is_active=data.get("is_active", True),
        )
        self._materialize(loc, ancestors)
        self.db.add(loc)
        await self.db.commit()
        await self.db.refresh(loc)
        logger.info(f"Created location {loc.full_path}", extra=log_extra(location_id=loc.id))
        return loc

    async def update_location(self, location_id: int, data: dict) -> StorageLocation:
        by_id = await self._load_all()
        loc = by_id.get(location_id)
        if loc is None:
            raise NotFound("Storage location", location_id)

        # Validate everything before touching the tracked object.
        name = loc.name
        if "name" in data and data["name"] is not None:
            name = data["name"].strip()
            if not name:
                raise InvalidRequest("name is required")
        code = loc.code
        if "code" in data:
            code = (data["code"] or "").strip() or None
            if code and await self.code_exists(code, exclude_id=location_id):
                raise Conflict(f"Location code already exists: {code}")
        parent_id = data["parent_id"] if "parent_id" in data else loc.parent_id
        ancestors = self._ancestors(by_id, parent_id, location_id)

        loc.name = name
        loc.code = code
        loc.parent_id = parent_id
        if "description" in data:
            loc.description = data["description"]
        if "is_active" in data and data["is_active"] is not None:
            loc.is_active = bool(data["is_active"])

        self._materialize(loc, ancestors)
        self._refresh_subtree(by_id, loc)
        await self.db.commit()
        await self.db.refresh(loc)
        logger.info(f"Updated location {loc.full_path}", extra=log_extra(location_id=loc.id))
        return loc

    async def has_stock(self, location_id: int) -> bool:
        res = await self.db.execute(
            select(func.count())
            .select_from(PartStock)
            .where(PartStock.location_id == location_id)
            .where(or_(PartStock.quantity_on_hand != 0, PartStock.quantity_reserved != 0))
        )
        return int(res.scalar_one() or 0) > 0

    async def delete_location(self, location_id: int) -> None:
        await begin_write(self.db, settings.lock_timeout_seconds)
        try:
            # Ledger writers hold the location FOR SHARE until they commit.
            loc = await self.get_location(location_id, lock="update")
            if await self.has_stock(location_id):
                raise Conflict(f"Location {location_id} still holds stock")
            res = await self.db.execute(
                select(func.count())
                .select_from(StorageLocation)
                .where(StorageLocation.parent_id == location_id, StorageLocation.is_deleted == False)  # noqa: E712
            )
            if int(res.scalar_one() or 0) > 0:
                raise Conflict(f"Location {location_id} has child locations")
        except BaseException:
            await self.db.rollback()
            raise
        loc.is_deleted = True
        loc.is_active = False
        await self.db.commit()
        logger.info(f"Deleted location {loc.full_path}", extra=log_extra(location_id=location_id))
