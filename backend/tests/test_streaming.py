import asyncio
import unittest

from ragbuilder_backend.orchestrator.streaming import FragmentStream


class FragmentStreamTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_yields_fragments_in_order(self) -> None:
        async def source():
            for fragment in ("The ", "answer", "."):
                yield fragment

        stream = FragmentStream(source, buffer_size=1)
        self.assertEqual(await stream.collect(), ["The ", "answer", "."])
        self.assertTrue(stream.closed)

    async def test_producer_starts_lazily(self) -> None:
        started = []

        async def source():
            started.append(True)
            yield "x"

        stream = FragmentStream(source)
        await asyncio.sleep(0)
        self.assertEqual(started, [])
        self.assertEqual(await stream.text(), "x")
        self.assertEqual(started, [True])

    async def test_is_not_restartable(self) -> None:
        async def source():
            yield "once"

        stream = FragmentStream(source)
        self.assertEqual(await stream.collect(), ["once"])
        self.assertEqual(await stream.collect(), [])

    async def test_aclose_cancels_producer(self) -> None:
        finished = asyncio.Event()

        async def source():
            try:
                yield "first"
                await asyncio.sleep(3600)
                yield "never"
            finally:
                finished.set()

        stream = FragmentStream(source)
        self.assertEqual(await stream.__anext__(), "first")
        await stream.aclose()

        self.assertTrue(finished.is_set())
        with self.assertRaises(StopAsyncIteration):
            await stream.__anext__()

    async def test_idle_consumer_closes_the_stream(self) -> None:
        closed = asyncio.Event()

        async def source():
            try:
                while True:
                    yield "fragment"
            finally:
                closed.set()

        stream = FragmentStream(source, buffer_size=1, idle_timeout=0.05)
        self.assertEqual(await stream.__anext__(), "fragment")

        await asyncio.wait_for(closed.wait(), timeout=5)
        self.assertTrue(stream.closed)
        self.assertEqual(await stream.collect(), [])

    async def test_slow_reader_within_idle_timeout_gets_everything(self) -> None:
        async def source():
            for fragment in ("a", "b", "c"):
                yield fragment

        stream = FragmentStream(source, buffer_size=1, idle_timeout=1.0)
        received = []
        async for fragment in stream:
            received.append(fragment)
            await asyncio.sleep(0.02)
        self.assertEqual(received, ["a", "b", "c"])

    async def test_cancel_wakes_blocked_consumer(self) -> None:
        async def source():
            await asyncio.sleep(3600)
            yield "never"

        stream = FragmentStream(source)
        consumer = asyncio.create_task(stream.collect())
        await asyncio.sleep(0.01)
        stream.cancel()
        self.assertEqual(await asyncio.wait_for(consumer, timeout=1), [])

    async def test_context_manager_closes(self) -> None:
        async def source():
            yield "a"
            yield "b"

        async with FragmentStream(source) as stream:
            self.assertEqual(await stream.__anext__(), "a")
        self.assertTrue(stream.closed)

    async def test_producer_error_reaches_consumer(self) -> None:
        async def source():
            yield "partial"
            raise RuntimeError("boom")

        stream = FragmentStream(source)
        self.assertEqual(await stream.__anext__(), "partial")
        with self.assertRaises(RuntimeError):
            await stream.__anext__()
        with self.assertRaises(StopAsyncIteration):
            await stream.__anext__()


if __name__ == "__main__":
    unittest.main()
