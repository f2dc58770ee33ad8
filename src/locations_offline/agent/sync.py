"""
Replay of deferred photo uploads.

``BackgroundSyncAgent`` only reacts to triggers. ``SyncScheduler`` produces
them: while a registration is pending it probes upstream connectivity and fires
a sync once the probe succeeds.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from locations_offline.agent.errors import NetworkError, QueueStoreError
from locations_offline.agent.messages import UPLOAD_COMPLETED, UPLOAD_FAILED
from locations_offline.agent.models import SyncReport, UploadJob
from locations_offline.agent.notifier import ClientNotifier
from locations_offline.agent.queue_store import UploadQueueStore
from locations_offline.agent.transport import Transport
from locations_offline.config.models import NetworkSettings, QueueSettings

logger = logging.getLogger(__name__)


class BackgroundSyncAgent:
    def __init__(
        self,
        *,
        config: QueueSettings,
        queue_store: UploadQueueStore,
        transport: Transport,
        notifier: ClientNotifier,
    ) -> None:
        self._config = config
        self._queue = queue_store
        self._transport = transport
        self._notifier = notifier
        self._pending_tags: set[str] = set()
        self._registered_during_run: set[str] = set()
        self._run_lock = asyncio.Lock()

    @property
    def pending_tags(self) -> frozenset[str]:
        return frozenset(self._pending_tags)

    async def register(self, tag: Optional[str] = None) -> None:
        tag = tag or self._config.sync_tag
        if tag not in self._pending_tags:
            logger.info("Background sync registered. tag=%s", tag)
        self._pending_tags.add(tag)
        if self._run_lock.locked():
            # Jobs queued now were not in the running drain snapshot.
            self._registered_during_run.add(tag)

    def clear_registration(self, tag: str) -> None:
        self._pending_tags.discard(tag)

    async def handle_sync(self, tag: str) -> SyncReport:
        report = SyncReport(tag=tag)
        if tag != self._config.sync_tag:
            logger.info("Ignoring sync for unknown tag. tag=%s", tag)
            return report

        if self._run_lock.locked():
            logger.warning("Sync already in progress, skipping trigger. tag=%s", tag)
            report.skipped = True
            return report

        async with self._run_lock:
            self._registered_during_run.discard(tag)
            started = time.monotonic()
            async for job in self._queue.drain_all():
                report.attempted += 1
                await self._replay(job, report)
            logger.info(
                "Upload sync finished. tag=%s attempted=%d completed=%d failed=%d dead_lettered=%d seconds=%.2f",
                tag,
                report.attempted,
                report.completed,
                report.failed,
                report.dead_lettered,
                time.monotonic() - started,
            )
            if tag in self._registered_during_run:
                self._registered_during_run.discard(tag)
                report.registered_during_run = True
                logger.info("Sync registered again during the run; keeping it pending. tag=%s", tag)
        return report

    async def _replay(self, job: UploadJob, report: SyncReport) -> None:
        job.status = "uploading"
        try:
            await self._queue.update(job)
        except QueueStoreError:
            logger.exception("Failed to mark upload job as uploading. job_id=%s", job.id)

        try:
            response = await self._transport.send_form(
                url=job.url,
                method=job.method,
                headers=job.headers,
                fields=job.fields,
            )
            error = "" if response.ok else f"status={response.status}"
        except NetworkError as e:
            error = e.reason

        if not error:
            await self._queue.mark_done(job.id)
            report.completed += 1
            logger.info("Uploaded queued photo. job_id=%s", job.id)
            await self._notifier.broadcast(UPLOAD_COMPLETED, uploadId=job.id, success=True)
            return

        job.attempts += 1
        job.last_error = error
        limit = self._config.max_attempts
        dead = limit > 0 and job.attempts >= limit
        job.status = "failed" if dead else "queued"
        try:
            await self._queue.update(job)
        except QueueStoreError:
            logger.exception("Failed to record upload attempt. job_id=%s", job.id)

        if dead:
            report.dead_lettered += 1
            logger.error(
                "Upload job exhausted its attempts and was parked. job_id=%s attempts=%d error=%s",
                job.id,
                job.attempts,
                error,
            )
            await self._notifier.broadcast(UPLOAD_FAILED, uploadId=job.id, attempts=job.attempts, error=error)
        else:
            report.failed += 1
            logger.warning(
                "Queued photo upload failed, will retry on next sync. job_id=%s attempts=%d error=%s",
                job.id,
                job.attempts,
                error,
            )


class SyncScheduler:
    """Fires pending sync registrations once upstream answers a connectivity probe."""

    def __init__(
        self,
        *,
        config: NetworkSettings,
        sync_agent: BackgroundSyncAgent,
        transport: Transport,
        probe_url: str,
    ) -> None:
        self._config = config
        self._sync = sync_agent
        self._transport = transport
        self._probe_url = probe_url
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._runtime_loop())

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None

    async def _runtime_loop(self) -> None:
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                await self.tick()
            except Exception:
                logger.exception("Sync scheduler tick failed.")
            elapsed = time.monotonic() - started
            sleep_seconds = max(0.0, self._config.probe_interval_seconds - elapsed)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_seconds)
            except asyncio.TimeoutError:
                continue

    async def tick(self) -> list[SyncReport]:
        pending = sorted(self._sync.pending_tags)
        if not pending:
            return []
        if not await self._transport.probe(self._probe_url):
            logger.debug("Upstream unreachable, sync deferred. tags=%s", ",".join(pending))
            return []

        reports = []
        for tag in pending:
            report = await self._sync.handle_sync(tag)
            if report.drained:
                self._sync.clear_registration(tag)
            reports.append(report)
        return reports
