"""
Core Infrastructure Tests

Event bus, periodic scheduling and state persistence.
"""

import asyncio

import pytest

from core import EventBus, PeriodicTask, StateStore


class TestEventBus:

    @pytest.mark.asyncio
    async def test_async_handlers_awaited(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            await asyncio.sleep(0)
            seen.append(event.get_event_data('value'))

        bus.subscribe('thing', handler)
        handled = await bus.emit_async('thing', source='test', value=42)

        assert handled == 1
        assert seen == [42]

    @pytest.mark.asyncio
    async def test_handler_failure_isolated(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe('thing', broken, handler_id='broken')
        bus.subscribe('thing', lambda event: seen.append(event.event_type), handler_id='ok')

        await bus.emit_async('thing')

        assert seen == ['thing']
        assert bus.get_stats()['handler_errors'] == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_and_history(self):
        bus = EventBus()
        handler_id = bus.subscribe('thing', lambda event: None)

        assert bus.unsubscribe(handler_id) is True
        assert bus.unsubscribe(handler_id) is False

        await bus.emit_async('thing', n=1)
        await bus.emit_async('other', n=2)
        assert [e.event_type for e in bus.get_event_history(event_type='thing')] == ['thing']


class TestPeriodicTask:

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask('tick', 0.01, tick)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()

        assert not task.is_running
        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_callback(self):
        finished = asyncio.Event()
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(0.05)
            finished.set()

        task = PeriodicTask('slow', 10.0, slow)
        task.start()
        await started.wait()
        await task.stop()

        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_kill_loop(self):
        calls = []

        async def flaky():
            calls.append(1)
            raise RuntimeError("transient")

        task = PeriodicTask('flaky', 0.01, flaky)
        task.start()
        await asyncio.sleep(0.05)
        stats = task.get_stats()
        await task.stop()

        assert len(calls) >= 2
        assert stats['failures'] >= 2

    @pytest.mark.asyncio
    async def test_delayed_first_run(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask('delayed', 10.0, tick, run_immediately=False)
        task.start()
        await asyncio.sleep(0.02)
        await task.stop()

        assert calls == []

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PeriodicTask('bad', 0, lambda: None)


class TestStateStore:

    def test_round_trip(self, tmp_path):
        store = StateStore(tmp_path / "state")
        store.save('secrets', {'names': ['API_KEY']})

        assert store.load('secrets') == {'names': ['API_KEY']}
        assert list((tmp_path / "state").iterdir()) == [tmp_path / "state" / "secrets.json"]

    def test_missing_key_returns_default(self, tmp_path):
        assert StateStore(tmp_path).load('nothing', []) == []

    def test_corrupt_document_returns_default(self, tmp_path):
        (tmp_path / "history.json").write_text("{not json", encoding="utf-8")
        assert StateStore(tmp_path).load('history', []) == []

    @pytest.mark.asyncio
    async def test_async_wrappers(self, tmp_path):
        store = StateStore(tmp_path)
        await store.save_async('runs', [1, 2, 3])
        assert await store.load_async('runs') == [1, 2, 3]
