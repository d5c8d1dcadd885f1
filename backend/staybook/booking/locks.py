"""Per-property write guard for check-then-write booking operations.

Two layers serialize writers for one property while leaving other properties
untouched:

* an in-process ``asyncio.Lock`` keyed by property id, and
* ``SELECT ... FOR UPDATE`` on the property row, which orders writers from
  separate worker processes on PostgreSQL (SQLite ignores it).

The guarded block commits before either lock is released, so a competing
writer always sees the committed booking when it runs its own conflict check.
"""

import asyncio
import logging
import uuid
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.booking.errors import NotFoundError, PropertyBusyError
from staybook.config import settings
from staybook.models.property import Property

logger = logging.getLogger(__name__)


class PropertyLockRegistry:
    """Hands out one ``asyncio.Lock`` per property id.

    Locks are held weakly and disappear once no coroutine is using them.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, property_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(property_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[property_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, property_id: uuid.UUID, timeout: float | None = None) -> AsyncIterator[None]:
        """Acquire the property's lock, raising PropertyBusyError after ``timeout`` seconds."""
        lock = self.get(property_id)
        try:
            async with asyncio.timeout(timeout):
                await lock.acquire()
        except TimeoutError:
            logger.warning("Timed out waiting for write lock on property %s", property_id)
            raise PropertyBusyError(
                "Property is busy with another booking request, please retry",
                property_id=str(property_id),
            ) from None
        try:
            yield
        finally:
            lock.release()


property_locks = PropertyLockRegistry()


@asynccontextmanager
async def property_write_guard(
    db: AsyncSession,
    property_id: uuid.UUID,
    registry: PropertyLockRegistry | None = None,
) -> AsyncIterator[Property]:
    """Serialize writers for ``property_id`` and yield the row-locked property.

    The session is committed when the block exits normally. If the block
    raises, nothing is committed and the exception propagates.

    Raises:
        NotFoundError: If the property does not exist.
        PropertyBusyError: If the lock could not be acquired in time.
    """
    registry = registry or property_locks
    async with registry.hold(property_id, timeout=settings.booking_lock_timeout_seconds):
        result = await db.execute(
            select(Property).where(Property.id == property_id).with_for_update()
        )
        prop = result.scalar_one_or_none()
        if prop is None:
            raise NotFoundError("Property not found", field="property_id", property_id=str(property_id))

        yield prop
        await db.commit()
