"""
Write transactions with post-commit cache invalidation.

Usage:
    async with write_transaction(db, cache) as tx:
        role.name = "editor"
        await apply_sync(tx, role, "permissions", names)
        tx.touch_graph()
"""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CachePort, invalidate_permission_graph
from app.core.errors import TransactionError, ValidationError
from app.utils import get_logger


log = get_logger(__name__)


class WriteTransaction:
    """Handle passed to code running inside write_transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.graph_dirty = False

    def touch_graph(self) -> None:
        """Mark the permission graph as changed by this transaction."""
        self.graph_dirty = True


@asynccontextmanager
async def write_transaction(
    db: AsyncSession,
    cache: Optional[CachePort] = None,
    conflicts: Optional[Mapping[str, dict[str, str]]] = None,
) -> AsyncIterator[WriteTransaction]:
    """
    Run a block of writes as one unit.

    Commits when the block exits cleanly. Any exception rolls everything back;
    domain errors propagate unchanged, persistence errors become TransactionError.
    The permission graph cache is invalidated only after a successful commit.

    conflicts maps a fragment of the driver's integrity error message (the
    constrained column or constraint name) to the field errors reported when
    that constraint is violated, e.g. a duplicate name inserted by a
    concurrent request after the uniqueness pre-check passed.
    """
    tx = WriteTransaction(db)
    try:
        yield tx
        await db.flush()
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        message = str(e.orig)
        for fragment, errors in (conflicts or {}).items():
            if fragment in message:
                log.info("Unique constraint conflict on %s", fragment)
                raise ValidationError(errors) from e
        log.error("Transaction rolled back: %s", e, exc_info=True)
        raise TransactionError() from e
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("Transaction rolled back: %s", e, exc_info=True)
        raise TransactionError() from e
    except Exception:
        await db.rollback()
        raise

    if tx.graph_dirty:
        invalidate_permission_graph(cache)
