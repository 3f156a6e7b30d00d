"""Audit event bus and press-run lock tests."""

import asyncio
import logging

import pytest

from cidertrack.services.audit import (
    AuditEvent,
    AuditEventBus,
    log_audit_event,
    publish_create_event,
)
from cidertrack.utils.locks import held_local_locks, press_run_lock


@pytest.mark.unit
@pytest.mark.asyncio
class TestAuditEventBus:

    async def test_sync_and_async_handlers(self):
        bus = AuditEventBus()
        seen = []

        async def async_handler(event):
            seen.append(("async", event.record_id))

        bus.subscribe(lambda event: seen.append(("sync", event.record_id)))
        bus.subscribe(async_handler)

        await publish_create_event("batches", "b-1", {"name": "x"}, bus=bus)

        assert sorted(seen) == [("async", "b-1"), ("sync", "b-1")]

    async def test_table_filter(self):
        bus = AuditEventBus()
        seen = []
        bus.subscribe(seen.append, table_name="batch_compositions")

        await publish_create_event("batches", "b-1", {}, bus=bus)
        await publish_create_event("batch_compositions", "c-1", {}, bus=bus)

        assert [e.record_id for e in seen] == ["c-1"]

    async def test_failing_handler_is_isolated(self, caplog):
        bus = AuditEventBus()
        seen = []

        def broken(event):
            raise RuntimeError("sink down")

        async def broken_async(event):
            raise RuntimeError("sink down")

        bus.subscribe(broken)
        bus.subscribe(broken_async)
        bus.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="cidertrack.services.audit"):
            await bus.publish(AuditEvent("batches", "b-1", "create", {}))

        assert len(seen) == 1
        assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 2

    async def test_unsubscribe_and_clear(self):
        bus = AuditEventBus()
        first = bus.subscribe(log_audit_event)
        bus.subscribe(log_audit_event)
        assert bus.subscription_count == 2

        assert bus.unsubscribe(first) is True
        assert bus.unsubscribe(first) is False
        assert bus.subscription_count == 1

        bus.clear()
        assert bus.subscription_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestPressRunLock:

    async def test_same_press_run_is_serialized(self):
        order = []

        async def worker(name):
            async with press_run_lock("pr-1", backend="local"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )
        assert held_local_locks() == []

    async def test_different_press_runs_do_not_block(self):
        async with press_run_lock("pr-1", backend="local"):
            await asyncio.wait_for(self._enter("pr-2"), timeout=1)

    async def _enter(self, press_run_id):
        async with press_run_lock(press_run_id, backend="local"):
            return True

    async def test_lock_released_on_error(self):
        with pytest.raises(RuntimeError):
            async with press_run_lock("pr-1", backend="local"):
                raise RuntimeError("boom")
        assert held_local_locks() == []

    async def test_unknown_backend(self):
        with pytest.raises(ValueError):
            async with press_run_lock("pr-1", backend="memcached"):
                pass
