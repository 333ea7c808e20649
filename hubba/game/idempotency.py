"""
Transactional Idempotent Operation

Games and battles share one way of applying a client event:

1. open a transaction and lock the row (``SELECT ... FOR UPDATE``)
2. missing row -> not-found result, nothing written
3. event id already in the row's ledger -> replay result, nothing written
4. otherwise run the transition; a ``RuleViolation`` becomes a rejected
   result and the transaction is rolled back
5. append the event id to the ledger (oldest evicted past the cap) and commit

Persistence errors are not caught here. Nothing is committed when they are
raised, so the caller may retry with the same event id.
"""

from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.database import DatabaseSession
from ..utils.logging_config import get_logger
from .errors import RuleViolation

logger = get_logger(__name__)

R = TypeVar("R")


def append_event_id(ledger: Optional[List[str]], event_id: str, max_size: int) -> List[str]:
    """
    Return a new ledger with ``event_id`` appended, keeping the newest ``max_size`` ids.

    A new list is returned so the JSON column sees the change.
    """
    updated = list(ledger or []) + [event_id]
    if max_size > 0 and len(updated) > max_size:
        updated = updated[-max_size:]
    return updated


async def lock_row(session: AsyncSession, model, key: Any):
    """Load a row by primary key with an exclusive row lock."""
    mapper_key = model.__mapper__.primary_key[0]
    result = await session.execute(select(model).where(mapper_key == key).with_for_update())
    return result.scalar_one_or_none()


async def run_locked_transition(
    model,
    key: Any,
    event_id: Optional[str],
    transition: Callable[[AsyncSession, Any], Awaitable[R]],
    replay: Callable[[Any], R],
    not_found: Callable[[], R],
    rejected: Callable[[RuleViolation], R],
    ledger_size: int,
) -> R:
    """
    Apply ``transition`` to one row at most once per ``event_id``.

    Args:
        model: ORM class with a ``processed_event_ids`` column
        key: Primary key of the row
        event_id: Caller-supplied idempotency key; None skips the ledger
            (transport side effects such as disconnects)
        transition: ``async (session, row) -> result``; raises ``RuleViolation``
            to reject the move
        replay: Builds the result for an event that was already applied
        not_found: Builds the result for a missing row
        rejected: Builds the result for a rejected move
        ledger_size: Maximum number of ids kept in the ledger

    Returns:
        The result built by one of the callbacks
    """
    async with DatabaseSession() as session:
        row = await lock_row(session, model, key)
        if row is None:
            return not_found()

        if event_id is not None and event_id in (row.processed_event_ids or []):
            logger.debug(f"Event already processed - {model.__tablename__}={key} event_id={event_id}")
            return replay(row)

        try:
            result = await transition(session, row)
        except RuleViolation as e:
            await session.rollback()
            logger.debug(f"Transition rejected - {model.__tablename__}={key} error={e.message}")
            return rejected(e)

        if event_id is not None:
            row.processed_event_ids = append_event_id(row.processed_event_ids, event_id, ledger_size)
        return result
