"""Process-local pointer to the newest hash in the audit chain."""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.audit.models import AuditEventModel

logger = logging.getLogger(__name__)


class ChainTail:
    """Owns the "previous hash" used for the next append.

    The value is reconstructed from the most recent persisted event the first
    time it is needed. Writers hold ``lock`` across read-tail, hash, persist
    and advance; ``advance`` must only be called once the event is committed.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self._last_hash: str | None = None

    @property
    def loaded(self) -> bool:
        return self._last_hash is not None

    @property
    def last_hash(self) -> str:
        if self._last_hash is None:
            raise RuntimeError("ChainTail not loaded, call load() first")
        return self._last_hash

    async def load(self, session: AsyncSession) -> str:
        result = await session.execute(
            select(AuditEventModel.event_hash)
            .order_by(AuditEventModel.id.desc())
            .limit(1)
        )
        self._last_hash = result.scalar_one_or_none() or ""
        logger.debug("audit chain tail loaded: %s", self._last_hash or "<empty>")
        return self._last_hash

    def advance(self, event_hash: str) -> None:
        self._last_hash = event_hash

    def reset(self) -> None:
        self._last_hash = None
