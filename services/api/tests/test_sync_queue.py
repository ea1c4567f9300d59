"""
Tests for the offline queue: FIFO replay, retry limits, single-flight
draining, write-through persistence and the sync triggers.
"""
import asyncio
import json

import httpx
import pytest

from adapters.json import JsonQueueStore, MemoryQueueStore
from models.pending_operation import OperationState, OperationType, PendingOperation, ResourceType
from offline.api_client import ApiClient
from offline.connectivity import ConnectivityMonitor, OfflineManager
from offline.errors import ApiError, SyncError
from offline.handlers import ResourceDispatcher
from offline.sync_queue import SyncQueue


class ScriptedDispatcher:
    """Records calls; ops whose resource_id is in `failing` raise."""

    def __init__(self, failing=(), error=None):
        self.calls = []
        self.failing = set(failing)
        self.error = error or ApiError(503, "unavailable")

    async def dispatch(self, op):
        self.calls.append(op.resource_id)
        if op.resource_id in self.failing:
            raise self.error
        return {"ok": op.resource_id}


def _queue(dispatcher=None, store=None, connected=True):
    return SyncQueue(
        store or MemoryQueueStore(),
        dispatcher or ScriptedDispatcher(),
        ConnectivityMonitor(connected),
    )


def _add(queue, resource_id, operation=OperationType.CREATE):
    return queue.enqueue(operation, ResourceType.DAILY_LOG, resource_id=resource_id, payload={"n": resource_id})


class TestPendingOperation:
    def test_states(self):
        op = PendingOperation(OperationType.CREATE, ResourceType.INCIDENT)
        assert op.state() == OperationState.QUEUED
        once = op.failed("boom")
        assert op.retry_count == 0
        assert once.retry_count == 1
        assert once.state() == OperationState.FAILED
        assert once.failed("x").failed("y").state() == OperationState.EXHAUSTED
        assert not once.failed("x").failed("y").can_retry(3)

    def test_display_description(self):
        assert PendingOperation(OperationType.CREATE, ResourceType.DAILY_LOG).display_description == "Create Daily Log"
        assert PendingOperation(OperationType.SUBMIT, ResourceType.PUNCH_LIST).display_description == "Submit Punch List"


class TestProcessPending:
    def test_fifo_and_exhaustion(self):
        dispatcher = ScriptedDispatcher(failing={"B"})
        queue = _queue(dispatcher)
        for rid in ("A", "B", "C"):
            _add(queue, rid)

        first = asyncio.run(queue.process_pending())
        assert dispatcher.calls == ["A", "B", "C"]
        assert (first.succeeded, first.failed) == (2, 1)
        assert [op.resource_id for op in queue.operations] == ["B"]
        assert queue.last_sync_error == "1 operation(s) failed to sync"

        asyncio.run(queue.process_pending())
        asyncio.run(queue.process_pending())
        op = queue.operations[0]
        assert op.retry_count == 3
        assert op.error.startswith("HTTP 503")
        assert queue.exhausted_operations == [op]

        # exhausted: stays queued but is never attempted again
        dispatcher.calls.clear()
        result = asyncio.run(queue.process_pending())
        assert dispatcher.calls == []
        assert (result.succeeded, result.failed, result.skipped) == (0, 0, None)
        assert queue.last_sync_error is not None

    def test_listeners(self):
        queue = _queue(ScriptedDispatcher(failing={"B"}))
        applied, failed, synced = [], [], []
        queue.on_applied(lambda op, res: applied.append((op.resource_id, res)))
        queue.on_failed(lambda op: failed.append((op.resource_id, op.retry_count)))
        queue.on_synced(lambda: synced.append(True))
        _add(queue, "A")
        _add(queue, "B")

        asyncio.run(queue.process_pending())
        assert applied == [("A", {"ok": "A"})]
        assert failed == [("B", 1)]
        assert synced == [True]

    def test_single_flight(self):
        class Blocking:
            def __init__(self):
                self.started = None
                self.release = None
                self.calls = 0

            async def dispatch(self, op):
                self.calls += 1
                self.started.set()
                await self.release.wait()
                return {}

        async def scenario():
            dispatcher = Blocking()
            dispatcher.started = asyncio.Event()
            dispatcher.release = asyncio.Event()
            queue = _queue(dispatcher)
            _add(queue, "A")

            first = asyncio.create_task(queue.process_pending())
            await dispatcher.started.wait()
            assert queue.is_syncing
            second = await queue.process_pending()
            assert second.skipped == "already_syncing"

            dispatcher.release.set()
            done = await first
            return queue, dispatcher, done

        queue, dispatcher, done = asyncio.run(scenario())
        assert done.succeeded == 1
        assert dispatcher.calls == 1
        assert not queue.is_syncing
        assert not queue.has_pending

    def test_unexpected_error_fails_only_that_operation(self):
        dispatcher = ScriptedDispatcher(failing={"A"}, error=RuntimeError("bug"))
        queue = _queue(dispatcher)
        _add(queue, "A")
        _add(queue, "B")

        result = asyncio.run(queue.process_pending())

        assert (result.succeeded, result.failed) == (1, 1)
        assert dispatcher.calls == ["A", "B"]
        assert [(op.resource_id, op.retry_count, op.error) for op in queue.operations] == [("A", 1, "bug")]
        assert not queue.is_syncing

        for _ in range(2):
            asyncio.run(queue.process_pending())
        assert queue.get(queue.operations[0].id).state() == OperationState.FAILED
        assert asyncio.run(queue.process_pending()).failed == 0
        assert dispatcher.calls == ["A", "B", "A", "A"]

    def test_non_json_success_body_still_dequeues(self):
        sent = []

        def handler(request):
            sent.append(request.url.path)
            if len(sent) == 1:
                return httpx.Response(200, text="OK")
            return httpx.Response(201, json={"id": "log-2"})

        api = ApiClient("http://testserver", "userX", transport=httpx.MockTransport(handler))
        queue = _queue(ResourceDispatcher(api))
        _add(queue, "A")
        _add(queue, "B")

        applied = []
        queue.on_applied(lambda op, response: applied.append((op.resource_id, response)))

        result = asyncio.run(queue.process_pending())

        assert (result.succeeded, result.failed) == (2, 0)
        assert sent == ["/daily-logs", "/daily-logs"]
        assert applied == [("A", "OK"), ("B", {"id": "log-2"})]
        assert not queue.has_pending
        assert asyncio.run(queue.process_pending()).skipped == "empty"

    def test_listener_errors_do_not_stop_the_pass(self):
        queue = _queue(ScriptedDispatcher(failing={"B"}))
        _add(queue, "A")
        _add(queue, "B")
        _add(queue, "C")

        def explode(*args):
            raise KeyError("listener bug")

        queue.on_applied(explode)
        queue.on_failed(explode)
        queue.on_synced(explode)

        result = asyncio.run(queue.process_pending())

        assert (result.succeeded, result.failed) == (2, 1)
        assert [(op.resource_id, op.retry_count) for op in queue.operations] == [("B", 1)]
        assert not queue.is_syncing

    def test_operation_discarded_mid_dispatch(self):
        class Discarding:
            def __init__(self):
                self.calls = []
                self.queue = None

            async def dispatch(self, op):
                self.calls.append(op.resource_id)
                if op.resource_id == "A":
                    self.queue.dequeue(op.id)
                    raise ApiError(503, "unavailable")
                return {}

        dispatcher = Discarding()
        queue = _queue(dispatcher)
        dispatcher.queue = queue
        _add(queue, "A")
        _add(queue, "B")

        seen = []
        queue.on_failed(lambda op: seen.append(op.resource_type))

        result = asyncio.run(queue.process_pending())

        assert (result.succeeded, result.failed) == (1, 0)
        assert dispatcher.calls == ["A", "B"]
        assert seen == []
        assert not queue.has_pending
        assert queue.last_sync_error is None

    def test_offline_and_empty(self):
        dispatcher = ScriptedDispatcher()
        queue = _queue(dispatcher, connected=False)
        assert asyncio.run(queue.process_pending()).skipped == "offline"
        _add(queue, "A")
        assert asyncio.run(queue.process_pending()).skipped == "offline"
        assert dispatcher.calls == []

        queue.connectivity.set_connected(True)
        assert asyncio.run(queue.process_pending()).succeeded == 1
        assert asyncio.run(queue.process_pending()).skipped == "empty"

    def test_transport_and_sync_errors_count_as_failures(self):
        queue = _queue(ResourceDispatcher(api=None))
        queue.enqueue(OperationType.UPDATE, ResourceType.EQUIPMENT, resource_id="eq-1", payload=None)
        queue.enqueue(OperationType.SUBMIT, ResourceType.PROJECT, resource_id="p-1")
        result = asyncio.run(queue.process_pending())
        assert result.failed == 2
        assert all(op.retry_count == 1 for op in queue.operations)

        offline_queue = _queue(ScriptedDispatcher(failing={"A"}, error=httpx.ConnectError("down")))
        _add(offline_queue, "A")
        assert asyncio.run(offline_queue.process_pending()).failed == 1

    def test_items_enqueued_mid_pass_wait(self):
        class Enqueuing:
            def __init__(self):
                self.calls = []
                self.queue = None

            async def dispatch(self, op):
                self.calls.append(op.resource_id)
                if op.resource_id == "A":
                    _add(self.queue, "late")
                return {}

        dispatcher = Enqueuing()
        queue = _queue(dispatcher)
        dispatcher.queue = queue
        _add(queue, "A")
        _add(queue, "B")

        asyncio.run(queue.process_pending())
        assert dispatcher.calls == ["A", "B"]
        assert [op.resource_id for op in queue.operations] == ["late"]


class TestQueueMaintenance:
    def _exhaust(self, queue):
        for _ in range(3):
            asyncio.run(queue.process_pending())

    def test_retry_resets_counter(self):
        dispatcher = ScriptedDispatcher(failing={"A"})
        queue = _queue(dispatcher)
        op = _add(queue, "A")
        self._exhaust(queue)
        assert queue.get(op.id).state() == OperationState.EXHAUSTED

        queue.retry(op.id)
        assert queue.get(op.id).retry_count == 0
        assert queue.get(op.id).error is None

        dispatcher.failing.clear()
        assert asyncio.run(queue.process_pending()).succeeded == 1
        assert queue.last_sync_error is None

    def test_clear_failed_and_clear(self):
        queue = _queue(ScriptedDispatcher(failing={"A"}))
        _add(queue, "A")
        self._exhaust(queue)
        _add(queue, "B")

        assert queue.clear_failed() == 1
        assert [op.resource_id for op in queue.operations] == ["B"]
        assert queue.last_sync_error is None

        queue.clear()
        assert queue.pending_count == 0

    def test_dequeue_unknown_is_noop(self):
        queue = _queue()
        _add(queue, "A")
        queue.dequeue("missing")
        assert queue.pending_count == 1


class TestPersistence:
    def test_every_change_is_written_through(self):
        store = MemoryQueueStore()
        queue = _queue(ScriptedDispatcher(failing={"B"}), store=store)
        _add(queue, "A")
        _add(queue, "B")
        assert store.saves == 2
        assert [r["resource_id"] for r in store.rows] == ["A", "B"]

        asyncio.run(queue.process_pending())
        assert [(r["resource_id"], r["retry_count"]) for r in store.rows] == [("B", 1)]

    def test_json_store_survives_restart(self, tmp_path):
        path = tmp_path / "queue" / "sync_queue.json"
        queue = _queue(ScriptedDispatcher(failing={"B"}), store=JsonQueueStore(path))
        first = _add(queue, "A")
        _add(queue, "B")
        asyncio.run(queue.process_pending())

        reloaded = _queue(store=JsonQueueStore(path))
        ops = reloaded.operations
        assert [op.resource_id for op in ops] == ["B"]
        assert ops[0].retry_count == 1
        assert ops[0].payload == {"n": "B"}
        assert first.id not in {op.id for op in ops}

        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw[0]["resource_type"] == "dailyLog"

    def test_corrupt_file_is_moved_aside(self, tmp_path):
        path = tmp_path / "sync_queue.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonQueueStore(path)
        assert store.load() == []
        assert (tmp_path / "sync_queue.corrupt").exists()


class TestOfflineManager:
    def test_status_progression(self):
        dispatcher = ScriptedDispatcher()
        queue = _queue(dispatcher)
        manager = OfflineManager(queue, queue.connectivity)
        assert manager.status.state == "idle"
        assert manager.status.display_text == "Ready"

        _add(queue, "A")
        assert manager.status.state == "pending"
        assert manager.status.display_text == "1 pending"

        asyncio.run(manager.sync_now())
        assert manager.status.state == "synced"
        assert manager.last_sync_time is not None

        dispatcher.failing.add("B")
        _add(queue, "B")
        asyncio.run(manager.on_foreground())
        assert manager.status.state == "error"
        assert manager.status.display_text == "Error: 1 operation(s) failed to sync"

    def test_triggers_noop_when_offline_or_empty(self):
        queue = _queue(connected=False)
        manager = OfflineManager(queue, queue.connectivity)
        assert asyncio.run(manager.on_launch()) is None
        _add(queue, "A")
        assert asyncio.run(manager.on_launch()) is None
        assert manager.is_offline_mode
        assert queue.pending_count == 1

    def test_reconnect_drains(self):
        dispatcher = ScriptedDispatcher()
        queue = _queue(dispatcher, connected=False)
        manager = OfflineManager(queue, queue.connectivity)
        _add(queue, "A")
        _add(queue, "B")

        async def go_online():
            queue.connectivity.set_connected(True)
            assert manager.reconnect_task is not None
            return await manager.reconnect_task

        result = asyncio.run(go_online())
        assert result.succeeded == 2
        assert dispatcher.calls == ["A", "B"]
        assert not queue.has_pending

    def test_reconnect_failure_is_logged(self, caplog):
        queue = _queue(connected=False)
        manager = OfflineManager(queue, queue.connectivity)
        _add(queue, "A")

        async def broken_pass():
            raise RuntimeError("store unavailable")

        queue.process_pending = broken_pass

        async def go_online():
            queue.connectivity.set_connected(True)
            await asyncio.wait([manager.reconnect_task])
            await asyncio.sleep(0)

        asyncio.run(go_online())
        assert "Sync on reconnect failed" in caplog.text
        assert queue.pending_count == 1

    def test_reconnect_without_loop_waits(self):
        queue = _queue(connected=False)
        manager = OfflineManager(queue, queue.connectivity)
        _add(queue, "A")
        queue.connectivity.set_connected(True)
        assert manager.reconnect_task is None
        assert asyncio.run(manager.on_launch()).succeeded == 1


class RecordingApi:
    def __init__(self):
        self.calls = []

    async def _record(self, method, path, json=None):
        self.calls.append((method, path, json))
        return {"method": method}

    async def post(self, path, json=None):
        return await self._record("POST", path, json)

    async def put(self, path, json=None):
        return await self._record("PUT", path, json)

    async def patch(self, path, json=None):
        return await self._record("PATCH", path, json)

    async def delete(self, path):
        return await self._record("DELETE", path)


class TestResourceDispatcher:
    def _dispatch(self, op):
        api = RecordingApi()
        asyncio.run(ResourceDispatcher(api).dispatch(op))
        return api.calls[0]

    def test_rest_mapping(self):
        assert self._dispatch(
            PendingOperation(OperationType.CREATE, ResourceType.DAILY_LOG, payload={"a": 1})
        ) == ("POST", "/daily-logs", {"a": 1})
        assert self._dispatch(
            PendingOperation(OperationType.UPDATE, ResourceType.EQUIPMENT, "eq-1", {"a": 2})
        ) == ("PUT", "/equipment/eq-1", {"a": 2})
        assert self._dispatch(
            PendingOperation(OperationType.DELETE, ResourceType.COMMENT, "c-1")
        ) == ("DELETE", "/comments/c-1", None)
        assert self._dispatch(
            PendingOperation(OperationType.SUBMIT, ResourceType.INCIDENT, "i-1")
        ) == ("POST", "/safety/incidents/i-1/submit", None)

    def test_annotation_mapping(self):
        create = PendingOperation(
            OperationType.CREATE, ResourceType.ANNOTATION, "a-1", {"doc_id": "d-1", "comment": "x"}
        )
        assert self._dispatch(create) == (
            "POST", "/documents/d-1/annotations", {"comment": "x", "annotation_id": "a-1"}
        )
        update = PendingOperation(OperationType.UPDATE, ResourceType.ANNOTATION, "a-1", {"doc_id": "d-1", "label": "L"})
        assert self._dispatch(update) == ("PATCH", "/documents/d-1/annotations/a-1", {"label": "L"})
        remove = PendingOperation(OperationType.DELETE, ResourceType.ANNOTATION, "a-1", {"doc_id": "d-1"})
        assert self._dispatch(remove) == ("DELETE", "/documents/d-1/annotations/a-1", None)

    @pytest.mark.parametrize(
        "op",
        [
            PendingOperation(OperationType.CREATE, ResourceType.PROJECT),
            PendingOperation(OperationType.DELETE, ResourceType.DOCUMENT),
            PendingOperation(OperationType.SUBMIT, ResourceType.TIME_ENTRY, "t-1"),
            PendingOperation(OperationType.DELETE, ResourceType.ANNOTATION, "a-1"),
        ],
    )
    def test_rejected_before_sending(self, op):
        api = RecordingApi()
        with pytest.raises(SyncError):
            asyncio.run(ResourceDispatcher(api).dispatch(op))
        assert api.calls == []
