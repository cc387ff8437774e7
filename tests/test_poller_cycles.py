import contextlib
import hashlib
import io
import logging
import os
import tempfile
import threading
import unittest
from datetime import datetime, timezone
from pathlib import Path

from url_poller.poller.models import ErrorStatus, NotModified, PollPolicy, ResourceTarget, TransportFailure
from url_poller.poller.scheduler import Poller

from tests.http_fixtures import LAST_MODIFIED_1, LAST_MODIFIED_2, Reply, ScriptedServer, unused_url

POLICY = PollPolicy(interval=1.0, timeout=5.0, backoff=30.0)


class RecordingCallback:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.bodies: list[bytes] = []
        self.names: list[str] = []

    def __call__(self, fh) -> bool:
        self.names.append(str(fh.name))
        self.bodies.append(fh.read())
        return self.result


class PollerCycleTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.cache_dir = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _poller(self, url: str, policy: PollPolicy = POLICY) -> Poller:
        return Poller(target=ResourceTarget(url=url), policy=policy, cache_dir=str(self.cache_dir))

    async def test_first_fetch_into_empty_cache_promotes_and_notifies(self) -> None:
        callback = RecordingCallback()
        async with ScriptedServer([Reply(body=b"A")]) as server:
            async with self._poller(server.url) as poller:
                result = await poller.run_cycle(callback)

        self.assertTrue(result.promoted)
        self.assertTrue(result.notified)
        self.assertTrue(result.should_continue)
        self.assertEqual(result.sleep_seconds, POLICY.interval)
        self.assertEqual(callback.bodies, [b"A"])
        self.assertEqual(callback.names, [str(self.cache_dir / "master")])
        self.assertEqual((self.cache_dir / "master").read_bytes(), b"A")

    async def test_identical_refetch_neither_promotes_nor_notifies(self) -> None:
        callback = RecordingCallback()
        async with ScriptedServer([Reply(body=b"A")]) as server:
            async with self._poller(server.url) as poller:
                await poller.run_cycle(callback)
                master_stat = os.stat(self.cache_dir / "master")
                result = await poller.run_cycle(callback)

        self.assertFalse(result.promoted)
        self.assertFalse(result.notified)
        self.assertEqual(result.sleep_seconds, POLICY.interval)
        self.assertEqual(callback.bodies, [b"A"])
        self.assertEqual(os.stat(self.cache_dir / "master").st_ino, master_stat.st_ino)
        self.assertIn("If-Modified-Since", server.request_headers[1])

    async def test_identical_last_modified_refetch_is_not_a_change(self) -> None:
        callback = RecordingCallback()
        replies = [Reply(body=b"A", last_modified=LAST_MODIFIED_1)]
        async with ScriptedServer(replies) as server:
            async with self._poller(server.url) as poller:
                await poller.run_cycle(callback)
                result = await poller.run_cycle(callback)

        self.assertFalse(result.promoted)
        self.assertEqual(len(callback.bodies), 1)
        self.assertEqual(server.request_headers[1]["If-Modified-Since"], LAST_MODIFIED_1)

    async def test_new_content_notifies_again(self) -> None:
        callback = RecordingCallback()
        async with ScriptedServer([Reply(body=b"A"), Reply(body=b"B")]) as server:
            async with self._poller(server.url) as poller:
                await poller.run_cycle(callback)
                result = await poller.run_cycle(callback)

        self.assertTrue(result.notified)
        self.assertEqual(callback.bodies, [b"A", b"B"])

    async def test_timestamp_only_change_promotes_without_notifying_by_default(self) -> None:
        callback = RecordingCallback()
        replies = [
            Reply(body=b"A", last_modified=LAST_MODIFIED_1),
            Reply(body=b"A", last_modified=LAST_MODIFIED_2),
        ]
        async with ScriptedServer(replies) as server:
            async with self._poller(server.url) as poller:
                await poller.run_cycle(callback)
                result = await poller.run_cycle(callback)

        self.assertTrue(result.promoted)
        self.assertFalse(result.notified)
        self.assertTrue(result.should_continue)
        self.assertEqual(len(callback.bodies), 1)
        self.assertEqual(
            datetime.fromtimestamp(os.stat(self.cache_dir / "master").st_mtime, tz=timezone.utc),
            datetime(2015, 10, 22, 9, 0, tzinfo=timezone.utc),
        )

    async def test_timestamp_only_change_notifies_with_mtime_updates(self) -> None:
        callback = RecordingCallback()
        policy = PollPolicy(interval=1.0, timeout=5.0, backoff=30.0, mtime_updates=True)
        replies = [
            Reply(body=b"A", last_modified=LAST_MODIFIED_1),
            Reply(body=b"A", last_modified=LAST_MODIFIED_2),
        ]
        async with ScriptedServer(replies) as server:
            async with self._poller(server.url, policy) as poller:
                await poller.run_cycle(callback)
                result = await poller.run_cycle(callback)

        self.assertTrue(result.promoted)
        self.assertTrue(result.notified)
        self.assertEqual(callback.bodies, [b"A", b"A"])

    async def test_not_modified_keeps_master(self) -> None:
        (self.cache_dir / "master").write_bytes(b"A")
        callback = RecordingCallback()
        async with ScriptedServer([Reply(status=304)]) as server:
            async with self._poller(server.url) as poller:
                result = await poller.run_cycle(callback)

        self.assertIsInstance(result.outcome, NotModified)
        self.assertFalse(result.promoted)
        self.assertEqual(result.sleep_seconds, POLICY.interval)
        self.assertEqual(callback.bodies, [])

    async def test_error_status_backs_off_and_success_reverts_to_interval(self) -> None:
        (self.cache_dir / "master").write_bytes(b"A")
        callback = RecordingCallback()
        async with ScriptedServer([Reply(status=500), Reply(body=b"B")]) as server:
            async with self._poller(server.url) as poller:
                failed = await poller.run_cycle(callback)
                self.assertEqual((self.cache_dir / "master").read_bytes(), b"A")
                recovered = await poller.run_cycle(callback)

        self.assertIsInstance(failed.outcome, ErrorStatus)
        self.assertFalse(failed.promoted)
        self.assertFalse(failed.notified)
        self.assertTrue(failed.should_continue)
        self.assertEqual(failed.sleep_seconds, POLICY.backoff)
        self.assertEqual(recovered.sleep_seconds, POLICY.interval)
        self.assertEqual(callback.bodies, [b"B"])

    async def test_transport_failure_backs_off(self) -> None:
        url = await unused_url()
        callback = RecordingCallback()
        async with self._poller(url) as poller:
            result = await poller.run_cycle(callback)
            candidate = poller.candidate_path

        self.assertIsInstance(result.outcome, TransportFailure)
        self.assertEqual(result.sleep_seconds, POLICY.backoff)
        self.assertFalse((self.cache_dir / "master").exists())
        self.assertFalse(candidate.exists())

    async def test_async_callback_return_value_controls_continuation(self) -> None:
        seen: list[bytes] = []

        async def callback(fh) -> bool:
            seen.append(fh.read())
            return False

        async with ScriptedServer([Reply(body=b"A")]) as server:
            async with self._poller(server.url) as poller:
                result = await poller.run_cycle(callback)

        self.assertEqual(seen, [b"A"])
        self.assertFalse(result.should_continue)

    async def test_readers_never_observe_partial_master(self) -> None:
        bodies = [bytes([65 + i]) * (512 * 1024) for i in range(4)]
        allowed = {hashlib.sha256(body).hexdigest() for body in bodies}
        master = self.cache_dir / "master"
        observed: list[str] = []
        done = threading.Event()

        def read_master() -> None:
            while not done.is_set():
                try:
                    data = master.read_bytes()
                except FileNotFoundError:
                    continue
                observed.append(hashlib.sha256(data).hexdigest())

        reader = threading.Thread(target=read_master)
        reader.start()
        try:
            async with ScriptedServer([Reply(body=body) for body in bodies * 3]) as server:
                async with self._poller(server.url) as poller:
                    for _ in range(len(bodies) * 3):
                        result = await poller.run_cycle(RecordingCallback())
                        self.assertTrue(result.promoted)
        finally:
            done.set()
            reader.join()

        self.assertTrue(observed)
        self.assertTrue(set(observed) <= allowed)


class DefaultLoggingTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = logging.getLogger()
        self._root_handlers = root.handlers[:]
        for handler in self._root_handlers:
            root.removeHandler(handler)

    def tearDown(self) -> None:
        root = logging.getLogger()
        for handler in self._root_handlers:
            root.addHandler(handler)
        self._tmp.cleanup()

    async def test_error_status_is_silent_without_logging_configured(self) -> None:
        captured = io.StringIO()
        async with ScriptedServer([Reply(status=500)]) as server:
            poller = Poller(target=ResourceTarget(url=server.url), policy=POLICY, cache_dir=self._tmp.name)
            with contextlib.redirect_stderr(captured):
                async with poller:
                    result = await poller.run_cycle(RecordingCallback())

        self.assertIsInstance(result.outcome, ErrorStatus)
        self.assertEqual(captured.getvalue(), "")


if __name__ == "__main__":
    unittest.main()
