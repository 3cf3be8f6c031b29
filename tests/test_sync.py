"""Tests for sync functionality."""

import asyncio
import itertools
import json
import shutil
import tempfile

import httpx
import pytest

from devcontext._api_client import SyncApiClient
from devcontext._sync import (
    SYNC_IN_PROGRESS,
    SyncResult,
    chunk_changes,
    collapse_queue,
)
from devcontext.content_manager import ContentManager
from devcontext.errors import RateLimitedError, SyncAuthError, SyncRejectedError, SyncTransportError
from devcontext.models import SYNC_PENDING, SYNC_SYNCED, EntityKind, Snippet, SyncQueueItem
from devcontext.server.auth import create_access_token

API_URL = "http://testserver"
EMPTY_PULL = {"syncVersion": 0, "changes": {"projects": [], "snippets": [], "knowledge": []}}


@pytest.fixture
def ordered_clock(monkeypatch):
    """Make store timestamps strictly increasing."""
    clock = itertools.count(1_700_000_000_000)
    monkeypatch.setattr("devcontext._store.now_ms", lambda: next(clock))


@pytest.fixture
def sync_token(server_store, server_settings):
    """Access token for a fresh server user."""
    user = server_store.create_user("dev@example.com")
    return create_access_token(user["id"], server_settings)


@pytest.fixture
def make_device(server_app, sync_token):
    """Factory for content managers syncing against the in-process server."""
    created = []

    def factory():
        path = tempfile.mkdtemp()
        cm = ContentManager(base_path=path, transport=httpx.ASGITransport(app=server_app))
        cm.cloud_login(sync_token, api_url=API_URL)
        created.append((cm, path))
        return cm

    yield factory
    for cm, path in created:
        cm.close()
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def make_mock_cm():
    """Factory for content managers whose server is a mock handler."""
    created = []

    def factory(handler):
        path = tempfile.mkdtemp()
        cm = ContentManager(base_path=path, transport=httpx.MockTransport(handler))
        cm.cloud_login("token", api_url=API_URL)
        created.append((cm, path))
        return cm

    yield factory
    for cm, path in created:
        cm.close()
        shutil.rmtree(path, ignore_errors=True)


def respond(push_response, pull_response=None):
    """Build a mock handler answering push and pull requests."""

    def handler(request):
        if request.url.path == "/sync/push":
            return push_response
        return pull_response or httpx.Response(200, json=EMPTY_PULL)

    return handler


class TestQueueHelpers:
    """Tests for queue collapsing and chunking."""

    def _item(self, item_id, store_name, record_id, data=None, retries=0):
        return SyncQueueItem(
            id=item_id,
            store_name=store_name,
            operation="upsert",
            data={"id": record_id, **(data or {})},
            timestamp=item_id,
            retries=retries,
        )

    def test_collapse_keeps_latest_state(self):
        """Several queued writes of one record collapse to the last one."""
        queue = [
            self._item(1, "snippets", "s1", {"code": "v1"}),
            self._item(2, "projects", "p1"),
            self._item(3, "snippets", "s1", {"code": "v2"}, retries=1),
        ]
        grouped = collapse_queue(queue)
        assert len(grouped[EntityKind.SNIPPET]) == 1
        change = grouped[EntityKind.SNIPPET][0]
        assert change.data["code"] == "v2"
        assert change.queue_ids == [1, 3]
        assert change.retries == 1
        assert [c.record_id for c in grouped[EntityKind.PROJECT]] == ["p1"]

    def test_chunking(self):
        """Large queues split into batches of at most 500 per kind, projects first."""
        queue = [self._item(i, "snippets", f"s{i}") for i in range(1200)]
        queue += [self._item(2000 + i, "projects", f"p{i}") for i in range(3)]
        batches = chunk_changes(collapse_queue(queue))
        assert len(batches) == 3
        assert len(batches[0][EntityKind.PROJECT]) == 3
        assert len(batches[0][EntityKind.SNIPPET]) == 500
        assert len(batches[2][EntityKind.SNIPPET]) == 200
        assert batches[1][EntityKind.PROJECT] == []

    def test_chunking_empty(self):
        """An empty queue produces no batches."""
        assert chunk_changes(collapse_queue([])) == []


class TestMergeRemote:
    """Tests for last-write-wins merging of pulled rows."""

    def _local(self, cm, updated_at):
        snippet = Snippet(id="s1", project_id="p1", code="local", updated_at=updated_at)
        cm.store.put_direct(EntityKind.SNIPPET, snippet)

    def _remote(self, updated_at):
        return {"id": "s1", "projectId": "p1", "code": "remote", "language": "text",
                "createdAt": 1, "updatedAt": updated_at, "syncVersion": 4}

    def test_newer_remote_applied(self, temp_cm):
        """A newer remote row replaces the local one and is marked synced."""
        self._local(temp_cm, 100)
        assert temp_cm.sync_engine.merge_remote(EntityKind.SNIPPET, self._remote(150)) is True
        stored = temp_cm.store.get_by_id(EntityKind.SNIPPET, "s1")
        assert stored.code == "remote"
        assert stored.sync_status == SYNC_SYNCED
        assert stored.sync_version == 4

    def test_older_remote_ignored(self, temp_cm):
        """An older remote row does not overwrite local data."""
        self._local(temp_cm, 100)
        assert temp_cm.sync_engine.merge_remote(EntityKind.SNIPPET, self._remote(50)) is False
        assert temp_cm.store.get_by_id(EntityKind.SNIPPET, "s1").code == "local"

    def test_equal_timestamp_keeps_local(self, temp_cm):
        """Ties keep the local copy."""
        self._local(temp_cm, 100)
        assert temp_cm.sync_engine.merge_remote(EntityKind.SNIPPET, self._remote(100)) is False

    def test_missing_local_applied(self, temp_cm):
        """Rows unknown locally are inserted without being queued."""
        assert temp_cm.sync_engine.merge_remote(EntityKind.SNIPPET, self._remote(1)) is True
        assert temp_cm.store.queue_size() == 0


class TestSyncEndToEnd:
    """Tests syncing two devices through the real server app."""

    @pytest.mark.asyncio
    async def test_two_devices(self, make_device):
        """Items saved on one device appear on the other."""
        laptop = make_device()
        desktop = make_device()
        laptop.save_snippet("const x = 1;", language="javascript", description="Counter")
        laptop.save_knowledge("What is a closure?", "A function bundled with its scope.")

        first = await laptop.sync_async()
        assert first.success, first.errors
        assert first.pushed == 3
        assert first.pulled == 0
        assert laptop.store.queue_size() == 0
        assert all(s.sync_status == SYNC_SYNCED for s in laptop.get_snippets())

        second = await desktop.sync_async()
        assert second.success, second.errors
        assert second.pulled == 3
        assert [s.code for s in desktop.get_snippets()] == ["const x = 1;"]
        assert desktop.get_active_project().id == laptop.get_active_project().id
        assert desktop.store.queue_size() == 0
        assert desktop.sync_status()["lastPullSyncVersion"] == first.sync_version

    @pytest.mark.asyncio
    async def test_delete_propagates(self, make_device):
        """Deleting on one device removes the item on the other."""
        laptop = make_device()
        desktop = make_device()
        snippet_id = laptop.save_snippet("print('bye')").id
        await laptop.sync_async()
        await desktop.sync_async()

        assert desktop.delete_snippet(snippet_id) is True
        await desktop.sync_async()
        result = await laptop.sync_async()
        assert result.pulled == 1
        assert laptop.get(snippet_id) is None
        assert laptop.store.get_by_id(EntityKind.SNIPPET, snippet_id).is_deleted

    @pytest.mark.asyncio
    async def test_latest_edit_wins(self, make_device, ordered_clock):
        """Concurrent edits converge on the one made last."""
        laptop = make_device()
        desktop = make_device()
        item_id = laptop.save_knowledge("Q?", "original answer").id
        await laptop.sync_async()
        await desktop.sync_async()

        laptop.update_knowledge(item_id, answer="laptop answer")
        desktop.update_knowledge(item_id, answer="desktop answer")
        await laptop.sync_async()
        await desktop.sync_async()
        await laptop.sync_async()

        assert laptop.get(item_id)[1].answer == "desktop answer"
        assert desktop.get(item_id)[1].answer == "desktop answer"

    @pytest.mark.asyncio
    async def test_oversized_item_does_not_block_others(self, make_device):
        """One item over the server limits is dropped alone; valid items still sync."""
        laptop = make_device()
        desktop = make_device()
        good_id = laptop.save_snippet("print('ok')").id
        project_id = laptop.get_active_project().id
        laptop.store.put(EntityKind.SNIPPET, Snippet(id="big1", project_id=project_id, code="x" * 100_001))

        results = [await laptop.sync_async() for _ in range(3)]

        assert results[0].pushed == 2
        assert results[2].dropped == 1
        assert laptop.store.queue_size() == 0
        assert laptop.get_activity_log(action="sync_error")[0].item_id == "big1"

        await desktop.sync_async()
        assert [s.id for s in desktop.get_snippets()] == [good_id]
        assert desktop.get_project(project_id) is not None

    @pytest.mark.asyncio
    async def test_bad_token_disables_sync(self, make_device):
        """A rejected token turns sync off."""
        device = make_device()
        device.cloud_login("not-a-valid-token")
        result = await device.sync_async()
        assert result.success is False
        assert result.errors[0].startswith("Authentication failed")
        assert device.sync_status()["enabled"] is False


class TestSyncFailures:
    """Tests for failure handling against a mock server."""

    @pytest.mark.asyncio
    async def test_server_error_retries_then_drops(self, make_mock_cm):
        """Changes are retried and dropped once they reach the retry limit."""
        cm = make_mock_cm(respond(httpx.Response(500, json={"error": "boom"})))
        project = cm.create_project("Doomed")

        for attempt in (1, 2):
            result = await cm.sync_async()
            assert result.success is False
            assert result.errors == ["Server error 500: boom"]
            assert cm.store.get_queue()[0].retries == attempt

        result = await cm.sync_async()
        assert result.dropped == 1
        assert cm.store.queue_size() == 0
        entry = cm.get_activity_log(action="sync_error")[0]
        assert entry.item_id == project.id
        assert entry.metadata == {"error": "Server error 500: boom", "retries": 3}
        assert cm.sync_status()["lastError"].startswith("Dropped project")

    @pytest.mark.asyncio
    async def test_auth_failure_keeps_queue(self, make_mock_cm):
        """A 401 disables sync without touching the queue."""
        cm = make_mock_cm(respond(httpx.Response(401, json={"error": "Invalid or expired token"})))
        cm.save_snippet("print(1)")
        result = await cm.sync_async()
        assert result.errors == ["Authentication failed: Invalid or expired token"]
        assert cm.store.get_setting("cloudSyncEnabled") is False
        assert cm.store.queue_size() == 2
        assert all(item.retries == 0 for item in cm.store.get_queue())

    @pytest.mark.asyncio
    async def test_rate_limited_keeps_queue(self, make_mock_cm):
        """A 429 reports the wait and leaves the queue untouched."""
        cm = make_mock_cm(
            respond(httpx.Response(429, json={"error": "Too many sync requests", "retryAfter": 42}))
        )
        cm.save_snippet("print(1)")
        result = await cm.sync_async()
        assert result.errors == ["Rate limited, retry after 42 seconds"]
        assert cm.store.queue_size() == 2
        assert all(item.retries == 0 for item in cm.store.get_queue())
        assert cm.store.get_setting("cloudSyncEnabled") is True

    @pytest.mark.asyncio
    async def test_partial_rejection(self, make_mock_cm):
        """Accepted items are acknowledged; rejected ones stay queued with a retry."""
        state = {}

        def handler(request):
            if request.url.path == "/sync/push":
                return httpx.Response(
                    400,
                    json={
                        "error": "Invalid project references",
                        "invalidProjectIds": ["p-x"],
                        "rejectedIds": {"projects": [], "snippets": [state["snippet"]], "knowledge": []},
                        "syncVersion": 7,
                    },
                )
            return httpx.Response(200, json={**EMPTY_PULL, "syncVersion": 7})

        cm = make_mock_cm(handler)
        state["snippet"] = cm.save_snippet("print(1)").id
        result = await cm.sync_async()

        assert result.pushed == 1
        assert result.rejected == [state["snippet"]]
        queue = cm.store.get_queue()
        assert [q.record_id for q in queue] == [state["snippet"]]
        assert queue[0].retries == 1
        project = cm.get_active_project()
        assert project.sync_status == SYNC_SYNCED
        assert project.sync_version == 7

    @pytest.mark.asyncio
    async def test_schema_rejection_retries_everything(self, make_mock_cm):
        """A 400 without per-item IDs counts a failure for the whole batch."""
        cm = make_mock_cm(respond(httpx.Response(400, json={"error": "Invalid sync data", "details": []})))
        cm.save_snippet("print(1)")
        result = await cm.sync_async()
        assert [q.retries for q in cm.store.get_queue()] == [1, 1]
        assert result.success is False
        assert result.pushed == 0
        assert result.errors == ["Push rejected: Invalid sync data"]
        assert cm.sync_status()["lastError"] == "Push rejected: Invalid sync data"

    @pytest.mark.asyncio
    async def test_schema_rejection_blames_named_items(self, make_mock_cm):
        """Validation paths in the error details limit the retry charge to those items."""
        cm = make_mock_cm(
            respond(
                httpx.Response(
                    400,
                    json={
                        "error": "Invalid sync data",
                        "details": [{"path": "changes.snippets.0.code", "message": "too long"}],
                    },
                )
            )
        )
        snippet_id = cm.save_snippet("print(1)").id
        result = await cm.sync_async()
        retries = {q.record_id: q.retries for q in cm.store.get_queue()}
        assert retries[snippet_id] == 1
        assert retries[cm.get_active_project().id] == 0
        assert result.success is False

    @pytest.mark.asyncio
    async def test_invalid_change_held_back(self, make_mock_cm):
        """A change the server would refuse is not sent; the rest of the batch is."""
        sent = []

        def handler(request):
            if request.url.path == "/sync/push":
                sent.append(json.loads(request.content))
                return httpx.Response(200, json={"success": True, "syncVersion": 1})
            return httpx.Response(200, json={**EMPTY_PULL, "syncVersion": 1})

        cm = make_mock_cm(handler)
        good_id = cm.save_snippet("print('ok')").id
        project_id = cm.get_active_project().id
        cm.store.put(EntityKind.SNIPPET, Snippet(id="big1", project_id=project_id, code="x" * 100_001))

        result = await cm.sync_async()

        assert [s["id"] for s in sent[0]["changes"]["snippets"]] == [good_id]
        assert result.pushed == 2
        assert result.success is False
        assert result.rejected == ["big1"]
        assert result.errors[0].startswith("Invalid snippet big1: code")
        queue = cm.store.get_queue()
        assert [(q.record_id, q.retries) for q in queue] == [("big1", 1)]
        assert cm.store.get_by_id(EntityKind.SNIPPET, good_id).sync_status == SYNC_SYNCED

    @pytest.mark.asyncio
    async def test_edit_during_push_stays_pending(self, make_mock_cm, ordered_clock):
        """A local edit made while a push is in flight is kept for the next cycle."""
        holder = {}

        def handler(request):
            if request.url.path == "/sync/push":
                holder["cm"].update_snippet(holder["id"], code="print('edited')")
                return httpx.Response(200, json={"success": True, "syncVersion": 1})
            return httpx.Response(200, json={**EMPTY_PULL, "syncVersion": 1})

        cm = make_mock_cm(handler)
        holder["cm"] = cm
        holder["id"] = cm.save_snippet("print('original')").id
        result = await cm.sync_async()

        assert result.pushed == 2
        snippet = cm.store.get_by_id(EntityKind.SNIPPET, holder["id"])
        assert snippet.code == "print('edited')"
        assert snippet.sync_status == SYNC_PENDING
        queue = cm.store.get_queue()
        assert len(queue) == 1
        assert queue[0].data["code"] == "print('edited')"

    @pytest.mark.asyncio
    async def test_pull_stores_version(self, make_mock_cm):
        """The pulled sync version becomes the next since value."""
        seen = []

        def handler(request):
            seen.append(request.url.params.get("since"))
            return httpx.Response(200, json={**EMPTY_PULL, "syncVersion": 9})

        cm = make_mock_cm(handler)
        await cm.sync_async(push=False)
        await cm.sync_async(push=False)
        assert seen == ["0", "9"]
        assert cm.sync_status()["lastPullSyncVersion"] == 9

    @pytest.mark.asyncio
    async def test_concurrent_sync_skipped(self, make_mock_cm):
        """A second sync started while one is running is skipped."""

        async def handler(request):
            await asyncio.sleep(0.05)
            return httpx.Response(200, json=EMPTY_PULL)

        cm = make_mock_cm(handler)
        first, second = await asyncio.gather(cm.sync_async(), cm.sync_async())
        assert first.success is True
        assert second.skipped is True
        assert second.errors == [SYNC_IN_PROGRESS]

    @pytest.mark.asyncio
    async def test_periodic_start_stop(self, make_mock_cm):
        """The periodic task can be started and stopped."""
        cm = make_mock_cm(respond(httpx.Response(200, json={"success": True, "syncVersion": 1})))
        engine = cm.sync_engine
        await engine.start(interval=3600)
        assert engine.is_running is True
        await engine.start(interval=3600)
        await engine.stop()
        assert engine.is_running is False

    def test_result_to_dict(self):
        """Sync results serialize with camelCase keys."""
        data = SyncResult(pushed=2, sync_version=5).to_dict()
        assert data["pushed"] == 2
        assert data["syncVersion"] == 5
        assert data["errors"] == []


class TestApiClient:
    """Tests for HTTP error mapping."""

    async def _call(self, handler):
        async with SyncApiClient(API_URL, "token", transport=httpx.MockTransport(handler)) as client:
            return await client.pull(0)

    @pytest.mark.asyncio
    async def test_bearer_header(self):
        """Requests carry the bearer token."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json=EMPTY_PULL)

        assert await self._call(handler) == EMPTY_PULL
        assert seen["auth"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        """401 maps to SyncAuthError."""
        with pytest.raises(SyncAuthError):
            await self._call(lambda r: httpx.Response(401, json={"error": "nope"}))

    @pytest.mark.asyncio
    async def test_retry_after_header(self):
        """The Retry-After header is used when the body has no value."""
        with pytest.raises(RateLimitedError) as exc_info:
            await self._call(lambda r: httpx.Response(429, headers={"Retry-After": "17"}))
        assert exc_info.value.retry_after == 17

    @pytest.mark.asyncio
    async def test_retry_after_default(self):
        """Without any hint the client waits 60 seconds."""
        with pytest.raises(RateLimitedError) as exc_info:
            await self._call(lambda r: httpx.Response(429, text="slow down"))
        assert exc_info.value.retry_after == 60

    @pytest.mark.asyncio
    async def test_bad_request(self):
        """400 maps to SyncRejectedError with the parsed body."""
        with pytest.raises(SyncRejectedError) as exc_info:
            await self._call(lambda r: httpx.Response(400, json={"error": "Invalid sync data"}))
        assert exc_info.value.body == {"error": "Invalid sync data"}

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Timeouts map to SyncTransportError."""

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(SyncTransportError, match="timed out"):
            await self._call(handler)

    @pytest.mark.asyncio
    async def test_server_error(self):
        """5xx responses map to SyncTransportError."""
        with pytest.raises(SyncTransportError, match="Server error 503"):
            await self._call(lambda r: httpx.Response(503))
