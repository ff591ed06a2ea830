"""
Replay the part transaction journal and compare it with the stored balances.

Exits non-zero when any (part, location) balance disagrees with the journal.

  python -m stockledger.scripts.verify_journal [--part-id 12]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from stockledger.core.config import settings
from stockledger.core.logging_config import setup_logging
from stockledger.db.database import async_session_maker, import_models
from stockledger.services.ledger import StockLedger


async def main(part_id: Optional[int] = None) -> int:
    setup_logging(settings.log_level)
    import_models()
    async with async_session_maker() as db:
        mismatches = await StockLedger(db).verify_replay(part_id)

    if not mismatches:
        print("Journal and balances agree")
        return 0
    for m in mismatches:
        print(
            f"part={m.part_id} location={m.location_id} "
            f"on_hand={m.quantity_on_hand} (journal {m.replayed_on_hand}) "
            f"reserved={m.quantity_reserved} (journal {m.replayed_reserved})"
        )
    return 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--part-id", type=int, default=None)
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.part_id)))
