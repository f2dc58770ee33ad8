from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Optional

from locations_offline.agent.errors import QueueStoreError
from locations_offline.agent.form_codec import decode_fields, encode_fields
from locations_offline.agent.io import atomic_write_json, read_json
from locations_offline.agent.models import JobStatus, NewUpload, UploadJob
from locations_offline.agent.utils import now_ms

logger = logging.getLogger(__name__)

SchemaVersion = 1


def _encode_job(job: UploadJob) -> dict:
    return {
        "schema_version": SchemaVersion,
        "id": job.id,
        "url": job.url,
        "method": job.method,
        "fields": encode_fields(job.fields),
        "headers": dict(job.headers),
        "timestamp": job.timestamp,
        "status": job.status,
        "attempts": job.attempts,
        "last_error": job.last_error,
    }


def _decode_job(payload: dict) -> UploadJob:
    return UploadJob(
        id=int(payload["id"]),
        url=payload["url"],
        method=payload.get("method", "POST"),
        fields=decode_fields(payload.get("fields", [])),
        headers=dict(payload.get("headers", {})),
        timestamp=int(payload.get("timestamp", payload["id"])),
        status=payload.get("status", "queued"),
        attempts=int(payload.get("attempts", 0)),
        last_error=payload.get("last_error", ""),
    )


class UploadQueueStore:
    """
    Durable queue of deferred photo uploads, one JSON file per job.

    Job ids are creation timestamps in milliseconds. File names are zero-padded
    ids, so directory order is enqueue order.
    """

    def __init__(self, queue_dir: str) -> None:
        self._dir = Path(queue_dir)
        self._lock = asyncio.Lock()
        self._last_id = 0

    def _job_path(self, job_id: int) -> Path:
        return self._dir / f"{job_id:016d}.json"

    def _job_paths(self) -> list[Path]:
        if not self._dir.exists():
            return []
        # Only zero-padded job ids; anything else in the directory is not a job.
        return sorted(p for p in self._dir.glob("*.json") if p.stem.isdigit())

    async def enqueue(self, upload: NewUpload) -> UploadJob:
        async with self._lock:
            job_id = await asyncio.to_thread(self._next_id)
            job = UploadJob(
                id=job_id,
                url=upload.url,
                method=upload.method.upper(),
                fields=list(upload.fields),
                headers=dict(upload.headers),
                timestamp=now_ms(),
                status="queued",
            )
            try:
                await asyncio.to_thread(atomic_write_json, self._job_path(job.id), _encode_job(job))
            except OSError as e:
                raise QueueStoreError(f"Failed to persist upload job. job_id={job.id}") from e
        logger.info("Upload job queued. job_id=%s url=%s fields=%d", job.id, job.url, len(job.fields))
        return job

    def _next_id(self) -> int:
        candidate = now_ms()
        paths = self._job_paths()
        if paths:
            candidate = max(candidate, int(paths[-1].stem) + 1)
        candidate = max(candidate, self._last_id + 1)
        self._last_id = candidate
        return candidate

    async def get(self, job_id: int) -> Optional[UploadJob]:
        return await asyncio.to_thread(self._read_job, self._job_path(job_id))

    def _read_job(self, path: Path) -> Optional[UploadJob]:
        try:
            return _decode_job(read_json(path))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError):
            logger.exception("Failed to read upload job, skipping. path=%s", path)
            return None

    async def drain_all(self) -> AsyncIterator[UploadJob]:
        """
        Yield every job currently in ``queued`` status, oldest first.

        Each call re-lists the store. Jobs are read one at a time as iteration
        reaches them, so a job removed mid-iteration is skipped.
        """
        paths = await asyncio.to_thread(self._job_paths)
        for path in paths:
            job = await asyncio.to_thread(self._read_job, path)
            if job is None or job.status != "queued":
                continue
            yield job

    async def list_jobs(self, status: Optional[JobStatus] = None) -> list[UploadJob]:
        def _load() -> list[UploadJob]:
            jobs = [self._read_job(path) for path in self._job_paths()]
            return [job for job in jobs if job is not None and (status is None or job.status == status)]

        return await asyncio.to_thread(_load)

    async def count(self, status: Optional[JobStatus] = "queued") -> int:
        return len(await self.list_jobs(status))

    async def update(self, job: UploadJob) -> None:
        async with self._lock:
            path = self._job_path(job.id)
            if not await asyncio.to_thread(path.exists):
                logger.warning("Upload job vanished before update. job_id=%s", job.id)
                return
            try:
                await asyncio.to_thread(atomic_write_json, path, _encode_job(job))
            except OSError as e:
                raise QueueStoreError(f"Failed to update upload job. job_id={job.id}") from e

    async def mark_done(self, job_id: int) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._job_path(job_id).unlink, missing_ok=True)
            except OSError:
                logger.exception(
                    "Failed to delete completed upload job; it may be replayed again. job_id=%s",
                    job_id,
                )
                return
        logger.debug("Upload job removed. job_id=%s", job_id)

    async def recover(self) -> int:
        """Return jobs interrupted mid-upload by a crash to the queue."""
        recovered = 0
        for job in await self.list_jobs("uploading"):
            job.status = "queued"
            await self.update(job)
            recovered += 1
        if recovered:
            logger.warning("Recovered interrupted upload jobs. count=%d", recovered)
        return recovered

    async def requeue_failed(self) -> int:
        requeued = 0
        for job in await self.list_jobs("failed"):
            job.status = "queued"
            job.attempts = 0
            await self.update(job)
            requeued += 1
        if requeued:
            logger.info("Requeued failed upload jobs. count=%d", requeued)
        return requeued
