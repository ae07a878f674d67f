from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock

import pytest
from chain_fakes import DECODER, make_log

from intent_indexer.engine.dispatcher import EventDispatcher
from intent_indexer.event_queue import EventQueue


def _event(block_number: int, log_index: int = 0):
    return DECODER.decode(make_log(block_number, log_index))


class TestEventDispatcher(IsolatedAsyncioTestCase):
    def setUp(self):
        self.queue = EventQueue()
        self.dispatcher = EventDispatcher(self.queue, max_retries=2, retry_delay=0)

    async def test_delivers_in_order_to_every_processor(self):
        calls = []

        async def first(event):
            calls.append(("first", event.block_number))

        def second(event):
            calls.append(("second", event.block_number))

        self.dispatcher.add_processor(first)
        self.dispatcher.add_processor(second)
        self.queue.add(_event(1))
        self.queue.add(_event(2))

        await self.dispatcher.process_event_queue()

        assert calls == [("first", 1), ("second", 1), ("first", 2), ("second", 2)]
        assert self.queue.is_empty()
        assert self.dispatcher.delivered_count == 2

    async def test_handle_objects_are_supported(self):
        processor = SimpleNamespace(handle=AsyncMock())
        self.dispatcher.add_processor(processor)
        event = _event(1)
        self.queue.add(event)

        await self.dispatcher.process_event_queue()

        processor.handle.assert_awaited_once_with(event)

    async def test_failing_event_is_retried_then_dead_lettered(self):
        bad = _event(1)
        good = _event(2)
        seen = []

        async def processor(event):
            seen.append(event.block_number)
            if event is bad:
                raise RuntimeError("boom")

        self.dispatcher.add_processor(processor)
        self.queue.add(bad)
        self.queue.add(good)

        with self.assertLogs("intent_indexer.engine.dispatcher", level="ERROR") as logs:
            await self.dispatcher.process_event_queue()

        # initial attempt plus max_retries, all before the successor
        assert seen == [1, 1, 1, 2]
        assert bad.retries == 2
        assert self.queue.is_empty()
        assert self.dispatcher.dead_letter_count == 1
        assert self.dispatcher.last_dead_letter is bad
        assert self.dispatcher.delivered_count == 1
        assert any("[DEAD_LETTER]" in line for line in logs.output)

    async def test_transient_failure_recovers(self):
        processor = AsyncMock(side_effect=[RuntimeError("flaky"), None])
        self.dispatcher.add_processor(processor)
        self.queue.add(_event(1))

        await self.dispatcher.process_event_queue()

        assert processor.await_count == 2
        assert self.dispatcher.dead_letter_count == 0
        assert self.queue.is_empty()

    async def test_zero_max_retries_dead_letters_immediately(self):
        dispatcher = EventDispatcher(self.queue, max_retries=0, retry_delay=0)
        processor = AsyncMock(side_effect=RuntimeError("boom"))
        dispatcher.add_processor(processor)
        self.queue.add(_event(1))

        await dispatcher.process_event_queue()

        assert processor.await_count == 1
        assert self.queue.is_empty()

    async def test_reentrant_call_is_ignored(self):
        processor = AsyncMock()
        self.dispatcher.add_processor(processor)
        self.queue.add(_event(1))
        self.dispatcher._processing = True

        await self.dispatcher.process_event_queue()

        processor.assert_not_awaited()
        assert self.queue.size() == 1

    async def test_no_processors_leaves_queue_untouched(self):
        self.queue.add(_event(1))

        await self.dispatcher.process_event_queue()

        assert self.queue.size() == 1
        assert not self.dispatcher.is_processing

    async def test_processing_flag_reset_after_failure(self):
        self.dispatcher.add_processor(MagicMock(side_effect=RuntimeError("boom")))
        self.queue.add(_event(1))

        await self.dispatcher.process_event_queue()

        assert not self.dispatcher.is_processing


def test_rejects_non_callable_processor():
    dispatcher = EventDispatcher(EventQueue())

    with pytest.raises(TypeError):
        dispatcher.add_processor(object())
