"""Sync engine for pushing local changes to and pulling changes from the server."""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from devcontext._api_client import SyncApiClient
from devcontext.errors import (
    DevContextError,
    RateLimitedError,
    SyncAuthError,
    SyncRejectedError,
    SyncTransportError,
)
from devcontext.models import SYNC_SYNCED, ActivityLogEntry, EntityKind, SyncQueueItem
from devcontext.utils import now_ms
from devcontext.wire import change_problem

if TYPE_CHECKING:
    from devcontext._config import ConfigManager
    from devcontext._store import ContentStore

MAX_ITEMS_PER_PUSH = 500

# Projects go first so items in the same chunk can reference them
PUSH_ORDER = (EntityKind.PROJECT, EntityKind.SNIPPET, EntityKind.KNOWLEDGE)

SYNC_IN_PROGRESS = "Sync already in progress"


@dataclass
class SyncResult:
    """Result of one sync cycle."""

    success: bool = True
    skipped: bool = False
    pushed: int = 0
    pulled: int = 0
    dropped: int = 0
    rejected: list[str] = field(default_factory=list)
    sync_version: int | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "pushed": self.pushed,
            "pulled": self.pulled,
            "dropped": self.dropped,
            "rejected": self.rejected,
            "syncVersion": self.sync_version,
            "errors": self.errors,
        }


@dataclass
class _PendingChange:
    """Latest queued state of one record plus every queue row it replaces."""

    kind: EntityKind
    data: dict[str, Any]
    queue_ids: list[int] = field(default_factory=list)
    retries: int = 0

    @property
    def record_id(self) -> str:
        return self.data["id"]


def collapse_queue(queue: list[SyncQueueItem]) -> dict[EntityKind, list[_PendingChange]]:
    """Group queued changes by kind, keeping only the last state of each record.

    Args:
        queue: Queue rows, oldest first.

    Returns:
        Pending changes per kind, in first-queued order.
    """
    latest: dict[tuple[EntityKind, str], _PendingChange] = {}
    for item in queue:
        key = (item.kind, item.record_id)
        change = latest.get(key)
        if change is None:
            change = latest[key] = _PendingChange(kind=item.kind, data=item.data)
        change.data = item.data
        change.queue_ids.append(item.id)
        change.retries = max(change.retries, item.retries)

    grouped: dict[EntityKind, list[_PendingChange]] = {kind: [] for kind in PUSH_ORDER}
    for change in latest.values():
        grouped[change.kind].append(change)
    return grouped


def chunk_changes(
    grouped: dict[EntityKind, list[_PendingChange]], size: int = MAX_ITEMS_PER_PUSH
) -> list[dict[EntityKind, list[_PendingChange]]]:
    """Split grouped changes into push batches of at most ``size`` per kind."""
    longest = max((len(v) for v in grouped.values()), default=0)
    return [
        {kind: grouped[kind][start : start + size] for kind in PUSH_ORDER}
        for start in range(0, longest, size)
    ]


class SyncEngine:
    """Reconciles the local content store with the sync server.

    At most one cycle runs at a time; a second call made while a cycle is
    in flight returns immediately with ``skipped=True``. Local writes made
    during a cycle land in the queue after the snapshot taken for the push
    and are sent in the next cycle.
    """

    def __init__(
        self,
        store: "ContentStore",
        config: "ConfigManager",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the sync engine.

        Args:
            store: Local content store.
            config: Client configuration (server URL, device ID, timeouts).
            transport: Optional httpx transport for the API client.
        """
        self.store = store
        self.config = config
        self._transport = transport
        self._syncing = False
        self._task: asyncio.Task | None = None

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _client(self, token: str) -> SyncApiClient:
        return SyncApiClient(
            self.config.get_api_url(),
            token,
            timeout=self.config.get_request_timeout(),
            transport=self._transport,
        )

    async def sync(self, push: bool = True, pull: bool = True) -> SyncResult:
        """Run one push-then-pull cycle.

        Args:
            push: Send queued local changes.
            pull: Merge remote changes newer than the last pulled version.

        Returns:
            SyncResult describing what happened. Failures are reported in
            ``errors`` rather than raised.
        """
        if self._syncing:
            return SyncResult(success=False, skipped=True, errors=[SYNC_IN_PROGRESS])

        token = self.store.get_setting("cloudAuthToken")
        if not self.store.get_setting("cloudSyncEnabled", False) or not token:
            return SyncResult(success=False, errors=["Cloud sync is not enabled"])

        self._syncing = True
        result = SyncResult()
        try:
            async with self._client(token) as client:
                if push:
                    await self._push(client, result)
                if pull:
                    await self._pull(client, result)
        except SyncAuthError as e:
            logger.warning(f"Sync disabled: server rejected credentials ({e})")
            self.store.set_setting("cloudSyncEnabled", False)
            result.success = False
            result.errors.append(f"Authentication failed: {e}")
        except RateLimitedError as e:
            logger.info(f"Sync rate limited, retry after {e.retry_after}s")
            result.success = False
            result.errors.append(f"Rate limited, retry after {e.retry_after} seconds")
        except SyncTransportError as e:
            logger.warning(f"Sync failed: {e}")
            result.success = False
            result.errors.append(str(e))
        finally:
            self._syncing = False

        self.store.set_setting("lastSyncAt", now_ms())
        self.store.set_setting("lastSyncError", "; ".join(result.errors) or None)
        return result

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def _push(self, client: SyncApiClient, result: SyncResult) -> None:
        queue = self.store.get_queue()
        if not queue:
            return

        device_id = self.config.get_device_id()
        last_version = int(self.store.get_setting("lastPullSyncVersion", 0) or 0)
        for batch in chunk_changes(collapse_queue(queue)):
            batch = self._drop_invalid(batch, result)
            changes = [c for kind in PUSH_ORDER for c in batch[kind]]
            if not changes:
                continue
            payload = {
                "deviceId": device_id,
                "lastSyncVersion": last_version,
                "changes": {kind.value: [c.data for c in batch[kind]] for kind in PUSH_ORDER},
            }
            try:
                response = await client.push(payload)
            except SyncRejectedError as e:
                self._handle_rejection(batch, e, result)
                continue
            except SyncTransportError as e:
                self._record_failure(changes, str(e), result)
                raise

            result.sync_version = response.get("syncVersion")
            self._acknowledge(changes, result.sync_version)
            result.pushed += len(changes)

        logger.info(f"Pushed {result.pushed} changes ({result.dropped} dropped)")

    def _drop_invalid(
        self, batch: dict[EntityKind, list[_PendingChange]], result: SyncResult
    ) -> dict[EntityKind, list[_PendingChange]]:
        """Hold back changes the server would refuse, charging each one a retry."""
        sendable: dict[EntityKind, list[_PendingChange]] = {}
        for kind in PUSH_ORDER:
            sendable[kind] = []
            for change in batch[kind]:
                problem = change_problem(kind, change.data)
                if problem is None:
                    sendable[kind].append(change)
                    continue
                reason = f"Invalid {kind.item_type} {change.record_id}: {problem}"
                logger.warning(f"Not pushing {kind.item_type} {change.record_id}: {problem}")
                result.success = False
                result.rejected.append(change.record_id)
                result.errors.append(reason)
                self._record_failure([change], reason, result)
        return sendable

    def _handle_rejection(
        self,
        batch: dict[EntityKind, list[_PendingChange]],
        error: SyncRejectedError,
        result: SyncResult,
    ) -> None:
        changes = [c for kind in PUSH_ORDER for c in batch[kind]]
        result.success = False
        rejected_ids = error.body.get("rejectedIds")
        if not isinstance(rejected_ids, dict):
            # Schema error: nothing in the batch was applied
            blamed = self._blamed_changes(error.body.get("details"), batch)
            result.errors.append(f"Push rejected: {error}")
            self._record_failure(blamed or changes, str(error), result)
            return

        rejected = {
            (kind, record_id)
            for kind in PUSH_ORDER
            for record_id in rejected_ids.get(kind.value, [])
        }
        accepted = [c for c in changes if (c.kind, c.record_id) not in rejected]
        failed = [c for c in changes if (c.kind, c.record_id) in rejected]

        version = error.body.get("syncVersion")
        if version is not None:
            result.sync_version = version
        self._acknowledge(accepted, version)
        result.pushed += len(accepted)
        result.rejected.extend(c.record_id for c in failed)

        invalid = ", ".join(error.body.get("invalidProjectIds", []))
        reason = f"Invalid project reference: {invalid}"
        result.errors.append(f"Push rejected {len(failed)} changes: {reason}")
        self._record_failure(failed, reason, result)

    @staticmethod
    def _blamed_changes(
        details: Any, batch: dict[EntityKind, list[_PendingChange]]
    ) -> list[_PendingChange]:
        """Map validation paths like ``changes.snippets.3.code`` back to changes."""
        blamed: dict[tuple[EntityKind, str], _PendingChange] = {}
        for detail in details if isinstance(details, list) else []:
            parts = str(detail.get("path", "")).split(".") if isinstance(detail, dict) else []
            if len(parts) < 3 or parts[0] != "changes":
                continue
            try:
                kind = EntityKind(parts[1])
                index = int(parts[2])
            except ValueError:
                continue
            if 0 <= index < len(batch[kind]):
                change = batch[kind][index]
                blamed[(kind, change.record_id)] = change
        return list(blamed.values())

    def _acknowledge(self, changes: list[_PendingChange], sync_version: int | None) -> None:
        """Clear pushed rows from the queue and mark unchanged records synced."""
        self.store.remove_from_queue([qid for c in changes for qid in c.queue_ids])
        for change in changes:
            record = self.store.get_by_id(change.kind, change.record_id)
            # A newer local edit stays pending for the next cycle
            if record is None or record.updated_at != change.data.get("updatedAt"):
                continue
            record.sync_status = SYNC_SYNCED
            if sync_version is not None:
                record.sync_version = sync_version
            self.store.put_direct(change.kind, record)

    def _record_failure(self, changes: list[_PendingChange], reason: str, result: SyncResult) -> None:
        """Count a failed attempt, dropping changes that reached the retry cap."""
        max_retries = self.config.get_max_retries()
        for change in changes:
            retries = change.retries + 1
            if retries < max_retries:
                for qid in change.queue_ids:
                    self.store.set_queue_retries(qid, retries)
                continue

            self.store.remove_from_queue(change.queue_ids)
            result.dropped += 1
            result.errors.append(f"Dropped {change.kind.item_type} {change.record_id}: {reason}")
            logger.error(
                f"Dropping {change.kind.item_type} {change.record_id} after {retries} attempts: {reason}"
            )
            project_id = (
                change.record_id
                if change.kind is EntityKind.PROJECT
                else change.data.get("projectId")
            )
            self.store.log_activity(
                ActivityLogEntry(
                    timestamp=now_ms(),
                    action="sync_error",
                    item_type=change.kind.item_type,
                    item_id=change.record_id,
                    project_id=project_id,
                    metadata={"error": reason, "retries": retries},
                )
            )

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def _pull(self, client: SyncApiClient, result: SyncResult) -> None:
        since = int(self.store.get_setting("lastPullSyncVersion", 0) or 0)
        response = await client.pull(since)
        changes = response.get("changes") or {}

        for kind in PUSH_ORDER:
            for row in changes.get(kind.value) or []:
                if self.merge_remote(kind, row):
                    result.pulled += 1

        version = response.get("syncVersion")
        if version is not None:
            self.store.set_setting("lastPullSyncVersion", version)
            result.sync_version = version
        logger.info(f"Pulled {result.pulled} changes (since version {since}, now {version})")

    def merge_remote(self, kind: EntityKind, row: dict[str, Any]) -> bool:
        """Apply a pulled row if it is newer than the local copy.

        Last write wins by ``updatedAt``; equal timestamps keep the local copy.

        Returns:
            True if the row was written.
        """
        remote = kind.record(row)
        local = self.store.get_by_id(kind, remote.id)
        if local is not None and remote.updated_at <= local.updated_at:
            return False
        remote.sync_status = SYNC_SYNCED
        self.store.put_direct(kind, remote)
        return True

    # ------------------------------------------------------------------
    # Periodic sync
    # ------------------------------------------------------------------

    async def start(self, interval: float | None = None) -> None:
        """Start the periodic sync task on the running event loop."""
        if self.is_running:
            return
        interval = interval if interval is not None else self.config.get_sync_interval()
        self._task = asyncio.create_task(self._run_periodic(interval))
        logger.debug(f"Auto-sync started (every {interval}s)")

    async def stop(self) -> None:
        """Stop the periodic sync task and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Auto-sync stopped")

    async def _run_periodic(self, interval: float) -> None:
        while True:
            try:
                await self.sync()
            except DevContextError as e:
                logger.error(f"Auto-sync cycle failed: {e}")
            await asyncio.sleep(interval)
