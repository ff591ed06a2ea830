"""
ORM-level guard keeping the part transaction journal append-only.

Any UPDATE or DELETE of a PartTransaction flushed through a Session is
rejected before SQL reaches the database.
"""

from sqlalchemy import event

from stockledger.core.exceptions import ImmutableJournalError
from stockledger.db.inventory.transaction import PartTransaction


def _reject_update(mapper, connection, target):
    raise ImmutableJournalError(target.id, "update")


def _reject_delete(mapper, connection, target):
    raise ImmutableJournalError(target.id, "delete")


def register_immutability_listeners() -> None:
    """Idempotent; safe to call at every startup."""
    if not event.contains(PartTransaction, "before_update", _reject_update):
        event.listen(PartTransaction, "before_update", _reject_update)
    if not event.contains(PartTransaction, "before_delete", _reject_delete):
        event.listen(PartTransaction, "before_delete", _reject_delete)


def unregister_immutability_listeners() -> None:
    if event.contains(PartTransaction, "before_update", _reject_update):
        event.remove(PartTransaction, "before_update", _reject_update)
    if event.contains(PartTransaction, "before_delete", _reject_delete):
        event.remove(PartTransaction, "before_delete", _reject_delete)
