"""Audit logger: append to, verify, and query the hash-chained event log."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentalcore.audit.chain import ChainTail
from rentalcore.audit.events import (
    SYSTEM_ACTOR,
    AuditActor,
    AuditEventType,
    RequestContext,
    SecurityNotice,
    to_plain,
)
from rentalcore.audit.models import AuditEventModel
from rentalcore.common.config import RentalCoreSettings
from rentalcore.common.database import DatabaseManager
from rentalcore.common.hashing import canonical_json, format_timestamp, sha256_hex
from rentalcore.common.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ChainVerification:
    valid: bool
    events_checked: int
    break_at: Optional[int] = None
    reason: str = ""


def serialize_values(value: Any) -> str:
    """Old/new snapshots are stored as canonical JSON text; absent means ''."""
    plain = to_plain(value)
    if plain is None:
        return ""
    return canonical_json(plain)


def compute_event_hash(
    event_type: str,
    object_type: str,
    object_id: str,
    user_id: int,
    action: str,
    previous_hash: str,
    timestamp: datetime,
    old_values: str,
    new_values: str,
) -> str:
    """SHA-256 over the colon-joined event fields."""
    data = ":".join([
        event_type,
        object_type,
        object_id,
        str(user_id),
        action,
        previous_hash,
        format_timestamp(timestamp),
        old_values,
        new_values,
    ])
    return sha256_hex(data)


def hash_for(event: AuditEventModel) -> str:
    return compute_event_hash(
        event.event_type,
        event.object_type,
        event.object_id,
        event.user_id,
        event.action,
        event.previous_hash,
        event.timestamp,
        event.old_values,
        event.new_values,
    )


class AuditLogger:
    """Append-only audit chain.

    Every write runs in its own session and is committed before ``record``
    returns. Appends are serialized on the chain tail lock.
    """

    def __init__(
        self,
        db: DatabaseManager,
        settings: RentalCoreSettings,
        tail: ChainTail | None = None,
    ):
        self.db = db
        self.settings = settings
        self.tail = tail or ChainTail()

    # ── Write ──

    async def record(
        self,
        event_type: AuditEventType | str,
        object_type: str,
        object_id: str,
        actor: AuditActor = SYSTEM_ACTOR,
        action: str = "",
        old_value: Any = None,
        new_value: Any = None,
        context: Optional[dict[str, Any]] = None,
        request: Optional[RequestContext] = None,
    ) -> AuditEventModel:
        """Append one event and return it once it is committed."""
        request = request or RequestContext()
        old_values = serialize_values(old_value)
        new_values = serialize_values(new_value)
        event_type = to_plain(event_type)

        async with self.tail.lock:
            if not self.tail.loaded:
                async with self.db.get_session() as session:
                    await self.tail.load(session)

            timestamp = utcnow()
            previous_hash = self.tail.last_hash
            event = AuditEventModel(
                event_type=event_type,
                object_type=object_type,
                object_id=str(object_id),
                user_id=actor.user_id,
                username=actor.username,
                action=action,
                old_values=old_values,
                new_values=new_values,
                ip_address=request.ip_address,
                user_agent=request.user_agent,
                session_id=request.session_id,
                context=json.loads(canonical_json(context or {})),
                previous_hash=previous_hash,
                is_compliant=True,
                retention_date=timestamp + relativedelta(
                    years=self.settings.audit_retention_years
                ),
                timestamp=timestamp,
            )
            event.event_hash = compute_event_hash(
                event_type, object_type, event.object_id, actor.user_id,
                action, previous_hash, timestamp, old_values, new_values,
            )

            async with self.db.get_session() as session:
                session.add(event)
                await session.flush()

            # Only reached after commit; a failed write leaves the tail alone.
            self.tail.advance(event.event_hash)

        return event

    async def record_invoice_event(
        self,
        event_type: AuditEventType | str,
        invoice_id: str,
        actor: AuditActor,
        action: str,
        old_value: Any = None,
        new_value: Any = None,
        request: Optional[RequestContext] = None,
    ) -> AuditEventModel:
        context = {
            "document_type": "invoice",
            "gobd_relevant": True,
            "tax_relevant": True,
        }
        return await self.record(
            event_type, "invoice", invoice_id, actor, action,
            old_value, new_value, context, request,
        )

    async def record_customer_event(
        self,
        event_type: AuditEventType | str,
        customer_id: str,
        actor: AuditActor,
        action: str,
        old_value: Any = None,
        new_value: Any = None,
        request: Optional[RequestContext] = None,
    ) -> AuditEventModel:
        context = {
            "document_type": "customer_data",
            "gdpr_relevant": True,
            "pii_involved": True,
        }
        return await self.record(
            event_type, "customer", customer_id, actor, action,
            old_value, new_value, context, request,
        )

    async def record_system_event(
        self,
        action: str,
        details: Optional[dict[str, Any]] = None,
        actor: AuditActor = SYSTEM_ACTOR,
        request: Optional[RequestContext] = None,
        event_type: AuditEventType | str = AuditEventType.SYSTEM,
    ) -> AuditEventModel:
        context = dict(details or {})
        context["system_event"] = True
        return await self.record(
            event_type, "system", "system", actor, action,
            context=context, request=request,
        )

    async def record_security_event(
        self,
        action: str,
        notice: SecurityNotice,
        actor: AuditActor = SYSTEM_ACTOR,
        request: Optional[RequestContext] = None,
    ) -> AuditEventModel:
        context = dict(notice.detail)
        context.update({
            "security_event": True,
            "severity": notice.severity,
            "requires_review": notice.requires_review,
        })
        if notice.requires_review:
            logger.warning(
                "security event requires review: %s (%s)", action, notice.severity,
                extra={"severity": notice.severity},
            )
        return await self.record(
            AuditEventType.SECURITY, "security", "security", actor, action,
            context=context, request=request,
        )

    # ── Verify ──

    async def verify_chain_integrity(self) -> ChainVerification:
        """Walk the chain in insertion order and recompute every link."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(AuditEventModel).order_by(AuditEventModel.id.asc())
            )
            events = list(result.scalars().all())

        previous_hash = ""
        for index, event in enumerate(events):
            if event.previous_hash != previous_hash:
                reason = (
                    "first event has a previous hash"
                    if index == 0
                    else "previous hash does not match predecessor"
                )
                logger.error("audit chain broken at event %s: %s", event.id, reason)
                return ChainVerification(False, index, event.id, reason)

            if hash_for(event) != event.event_hash:
                reason = "event hash mismatch"
                logger.error("audit chain broken at event %s: %s", event.id, reason)
                return ChainVerification(False, index, event.id, reason)

            previous_hash = event.event_hash

        return ChainVerification(True, len(events))

    # ── Read ──

    async def get_audit_trail(
        self, object_type: str, object_id: str,
    ) -> list[AuditEventModel]:
        """All events for one object, oldest first."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(AuditEventModel)
                .where(
                    AuditEventModel.object_type == object_type,
                    AuditEventModel.object_id == str(object_id),
                )
                .order_by(AuditEventModel.id.asc())
            )
            return list(result.scalars().all())

    async def get_events(
        self,
        event_type: str | None = None,
        object_type: str | None = None,
        object_id: str | None = None,
        user_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditEventModel], int]:
        """Filtered, paginated events (newest first) and the total match count."""
        conditions = []
        if event_type:
            conditions.append(AuditEventModel.event_type == event_type)
        if object_type:
            conditions.append(AuditEventModel.object_type == object_type)
        if object_id:
            conditions.append(AuditEventModel.object_id == object_id)
        if user_id is not None:
            conditions.append(AuditEventModel.user_id == user_id)
        if start is not None:
            conditions.append(AuditEventModel.timestamp >= start)
        if end is not None:
            conditions.append(AuditEventModel.timestamp <= end)

        async with self.db.get_session() as session:
            total = (await session.execute(
                select(func.count(AuditEventModel.id)).where(*conditions)
            )).scalar_one()
            result = await session.execute(
                select(AuditEventModel)
                .where(*conditions)
                .order_by(AuditEventModel.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    async def count_events(self, session: AsyncSession) -> int:
        result = await session.execute(select(func.count(AuditEventModel.id)))
        return result.scalar_one()

    async def get_statistics(self) -> dict[str, Any]:
        async with self.db.get_session() as session:
            total = await self.count_events(session)
            by_type = await session.execute(
                select(AuditEventModel.event_type, func.count(AuditEventModel.id))
                .group_by(AuditEventModel.event_type)
            )
            by_user = await session.execute(
                select(AuditEventModel.username, func.count(AuditEventModel.id))
                .group_by(AuditEventModel.username)
            )
            last = await session.execute(
                select(AuditEventModel.timestamp)
                .order_by(AuditEventModel.id.desc())
                .limit(1)
            )
            events_by_type = {row[0]: row[1] for row in by_type.all()}
            events_by_user = {row[0]: row[1] for row in by_user.all()}
            last_event = last.scalar_one_or_none()

        verification = await self.verify_chain_integrity()
        return {
            "total_events": total,
            "events_by_type": events_by_type,
            "events_by_user": events_by_user,
            "last_event": last_event,
            "chain_intact": verification.valid,
        }
