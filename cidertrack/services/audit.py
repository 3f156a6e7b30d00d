"""In-process audit event bus.

Every row created by press completion is announced here as a ``create``
event.  Subscribers (audit-log writers, cache invalidation, the log sink
registered at start-up) receive events after the transaction commits.

A failing subscriber is logged and skipped; it never propagates to the
publisher, so an audit-sink outage cannot undo a committed allocation.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    table_name: str
    record_id: str
    operation: str  # create | update | delete | soft_delete | restore
    new_data: dict[str, Any] | None = None
    old_data: dict[str, Any] | None = None
    changed_by: str | None = None
    reason: str | None = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


EventHandler = Callable[[AuditEvent], Union[None, Awaitable[None]]]


@dataclass
class _Subscription:
    id: str
    handler: EventHandler
    table_name: str | None = None


class AuditEventBus:
    """Pub/sub for audit events, optionally filtered by table name."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, _Subscription] = {}
        self._next_id = 1

    def subscribe(self, handler: EventHandler, table_name: str | None = None) -> str:
        sub_id = f"sub_{self._next_id}"
        self._next_id += 1
        self._subscriptions[sub_id] = _Subscription(sub_id, handler, table_name)
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        return self._subscriptions.pop(sub_id, None) is not None

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def clear(self) -> None:
        self._subscriptions.clear()

    async def publish(self, event: AuditEvent) -> None:
        pending: list[tuple[str, Awaitable[None]]] = []

        for sub in list(self._subscriptions.values()):
            if sub.table_name and sub.table_name != event.table_name:
                continue
            try:
                result = sub.handler(event)
            except Exception:
                logger.exception(
                    "Audit handler %s failed for %s/%s",
                    sub.id, event.table_name, event.record_id,
                )
                continue
            if inspect.isawaitable(result):
                pending.append((sub.id, result))

        if not pending:
            return

        results = await asyncio.gather(
            *(aw for _, aw in pending), return_exceptions=True
        )
        for (sub_id, _), result in zip(pending, results):
            if isinstance(result, Exception):
                logger.error(
                    "Audit handler %s failed for %s/%s: %s",
                    sub_id, event.table_name, event.record_id, result,
                    exc_info=result,
                )


# Process-wide default bus
audit_event_bus = AuditEventBus()


async def publish_create_event(
    table_name: str,
    record_id: str,
    new_data: dict[str, Any],
    changed_by: str | None = None,
    reason: str | None = None,
    bus: AuditEventBus | None = None,
) -> None:
    await (bus or audit_event_bus).publish(
        AuditEvent(
            table_name=table_name,
            record_id=record_id,
            operation="create",
            new_data=new_data,
            changed_by=changed_by,
            reason=reason,
        )
    )


def log_audit_event(event: AuditEvent) -> None:
    """Default subscriber: write the event to the application log."""
    logger.info(
        "audit %s %s/%s",
        event.operation, event.table_name, event.record_id,
        extra={"audit_event": event.new_data},
    )
