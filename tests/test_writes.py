import asyncio

from scrabble_server.errors import PersistenceError
from scrabble_server.managers.timer import EvictionTimer
from scrabble_server.managers.writes import WriteQueue


class TestWriteQueue:
    async def test_writes_land_in_submission_order(self):
        queue = WriteQueue('s1')
        applied = []

        async def slow():
            await asyncio.sleep(0.02)
            applied.append('first')

        async def fast():
            applied.append('second')

        first = queue.submit('first', slow)
        second = queue.submit('second', fast)
        assert await second is True
        assert first.done()
        assert applied == ['first', 'second']

    async def test_failed_write_does_not_block_the_next(self, caplog):
        queue = WriteQueue('s1')
        applied = []

        async def broken():
            raise PersistenceError('store unavailable')

        async def fine():
            applied.append('ok')

        failed = queue.submit('state', broken)
        ok = queue.submit('roster', fine)
        assert await failed is False
        assert await ok is True
        assert applied == ['ok']
        assert 'store unavailable' in caplog.text

    async def test_unexpected_errors_are_logged_too(self, caplog):
        queue = WriteQueue('s1')

        async def crash():
            raise RuntimeError('boom')

        assert await queue.submit('chat message', crash) is False
        assert 'chat message failed' in caplog.text

    async def test_drain_waits_for_everything_submitted(self):
        queue = WriteQueue('s1')
        applied = []

        async def write(n):
            await asyncio.sleep(0)
            applied.append(n)

        for n in range(5):
            queue.submit(f'write {n}', lambda n=n: write(n))
        await queue.drain()
        assert applied == [0, 1, 2, 3, 4]
        assert queue.pending == 0

    async def test_drain_on_an_idle_queue(self):
        await WriteQueue('s1').drain()


class TestEvictionTimer:
    async def test_fires_after_the_delay(self):
        expired = []
        timer = EvictionTimer(expired.append)
        timer.schedule('s1', 0.01)
        assert timer.pending('s1')
        await asyncio.sleep(0.05)
        assert expired == ['s1']
        assert not timer.pending('s1')

    async def test_cancel_wins(self):
        expired = []
        timer = EvictionTimer(expired.append)
        timer.schedule('s1', 0.01)
        assert timer.cancel('s1')
        await asyncio.sleep(0.05)
        assert expired == []
        assert not timer.cancel('s1')

    async def test_reschedule_replaces_the_countdown(self):
        expired = []
        timer = EvictionTimer(expired.append)
        timer.schedule('s1', 0.01)
        timer.schedule('s1', 0.08)
        await asyncio.sleep(0.04)
        assert expired == []
        timer.cancel_all()
