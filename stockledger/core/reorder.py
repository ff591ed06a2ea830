"""
Reorder status derivation.

The status depends only on aggregate balances and the part's thresholds, so
the evaluator is a pure function. The boundaries are held in a policy object
because the exact Critical/Low/OutOfStock edges are a business choice that
differs between sites.
"""

from dataclasses import dataclass
from enum import Enum

from stockledger.core.config import settings


class ReorderStatus(str, Enum):
    OK = "Ok"
    LOW = "Low"
    CRITICAL = "Critical"
    OUT_OF_STOCK = "OutOfStock"


@dataclass(frozen=True)
class ReorderPolicy:
    # 'on_hand': OutOfStock when nothing is physically present.
    # 'available': OutOfStock when nothing is free to issue.
    out_of_stock_basis: str = "on_hand"
    # 'lesser': Critical at or below min(min_stock_level, reorder_point).
    # 'min_stock': Critical at or below min_stock_level.
    critical_threshold: str = "lesser"

    def __post_init__(self):
        if self.out_of_stock_basis not in ("on_hand", "available"):
            raise ValueError(f"unknown out_of_stock_basis: {self.out_of_stock_basis!r}")
        if self.critical_threshold not in ("lesser", "min_stock"):
            raise ValueError(f"unknown critical_threshold: {self.critical_threshold!r}")

    @classmethod
    def from_settings(cls) -> "ReorderPolicy":
        return cls(
            out_of_stock_basis=settings.reorder_out_of_stock_basis,
            critical_threshold=settings.reorder_critical_threshold,
        )


DEFAULT_POLICY = ReorderPolicy()


def evaluate_reorder_status(
    total_on_hand: int,
    total_available: int,
    reorder_point: int,
    min_stock_level: int,
    policy: ReorderPolicy = DEFAULT_POLICY,
) -> ReorderStatus:
    if policy.out_of_stock_basis == "on_hand":
        if total_on_hand <= 0:
            return ReorderStatus.OUT_OF_STOCK
    elif total_available <= 0:
        return ReorderStatus.OUT_OF_STOCK

    if policy.critical_threshold == "lesser":
        critical_at = min(min_stock_level, reorder_point)
    else:
        critical_at = min_stock_level

    if total_available > 0 and total_available <= critical_at:
        return ReorderStatus.CRITICAL
    if total_available <= reorder_point:
        return ReorderStatus.LOW
    return ReorderStatus.OK
