from __future__ import annotations

import asyncio
import hashlib
import logging
import shutil
from pathlib import Path
from typing import Dict, Optional

from locations_offline.agent.io import atomic_write_bytes, atomic_write_json, read_json
from locations_offline.agent.models import AgentResponse
from locations_offline.agent.utils import format_rfc3339, utc_now

logger = logging.getLogger(__name__)


def _entry_key(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class NamedCache:
    """
    One named response cache on disk.

    Each entry is a metadata JSON file plus a body file. The body is written
    under a content-derived name first, and the metadata file (which points at
    it) is replaced last, so readers see either the old or the new entry.
    """

    def __init__(self, name: str, directory: Path) -> None:
        self.name = name
        self._dir = directory
        self._lock = asyncio.Lock()

    def _meta_path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    async def match(self, url: str) -> Optional[AgentResponse]:
        return await asyncio.to_thread(self._match_sync, url)

    def _match_sync(self, url: str) -> Optional[AgentResponse]:
        meta_path = self._meta_path(_entry_key(url))
        if not meta_path.exists():
            return None
        try:
            meta = read_json(meta_path)
            body = (self._dir / meta["body_file"]).read_bytes()
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError):
            logger.exception("Failed to read cache entry, treating as miss. cache=%s url=%s", self.name, url)
            return None
        if meta.get("url") != url:
            logger.warning("Cache entry key collision, treating as miss. cache=%s url=%s", self.name, url)
            return None
        return AgentResponse(
            status=int(meta["status"]),
            headers=dict(meta.get("headers", {})),
            body=body,
            reason=meta.get("reason", ""),
        )

    async def put(self, url: str, response: AgentResponse) -> None:
        async with self._lock:
            await asyncio.to_thread(self._put_sync, url, response)

    def _put_sync(self, url: str, response: AgentResponse) -> None:
        key = _entry_key(url)
        meta_path = self._meta_path(key)
        body_file = f"{key}.{hashlib.sha256(response.body).hexdigest()[:16]}.body"

        previous_body: Optional[str] = None
        if meta_path.exists():
            try:
                previous_body = read_json(meta_path).get("body_file")
            except (OSError, ValueError):
                previous_body = None

        atomic_write_bytes(self._dir / body_file, response.body)
        atomic_write_json(
            meta_path,
            {
                "url": url,
                "status": response.status,
                "reason": response.reason,
                "headers": dict(response.headers),
                "body_file": body_file,
                "stored_at": format_rfc3339(utc_now()),
            },
        )
        if previous_body and previous_body != body_file:
            (self._dir / previous_body).unlink(missing_ok=True)
        logger.debug("Cache entry stored. cache=%s url=%s size=%d", self.name, url, len(response.body))

    async def size(self) -> int:
        return await asyncio.to_thread(lambda: sum(1 for _ in self._dir.glob("*.json")))


class CacheStore:
    """Named caches under one root directory; the counterpart of the browser Cache Storage."""

    def __init__(self, root_dir: str) -> None:
        self._root = Path(root_dir)
        self._open: Dict[str, NamedCache] = {}

    def _cache_dir(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ValueError(f"Invalid cache name: {name!r}")
        return self._root / name

    async def open(self, name: str) -> NamedCache:
        cache = self._open.get(name)
        directory = self._cache_dir(name)
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        if cache is None:
            cache = NamedCache(name, directory)
            self._open[name] = cache
        return cache

    async def keys(self) -> list[str]:
        def _list() -> list[str]:
            if not self._root.exists():
                return []
            return sorted(p.name for p in self._root.iterdir() if p.is_dir())

        return await asyncio.to_thread(_list)

    async def has(self, name: str) -> bool:
        return await asyncio.to_thread(self._cache_dir(name).is_dir)

    async def delete(self, name: str) -> bool:
        directory = self._cache_dir(name)
        self._open.pop(name, None)
        if not await asyncio.to_thread(directory.is_dir):
            return False
        await asyncio.to_thread(shutil.rmtree, directory)
        logger.info("Cache deleted. cache=%s", name)
        return True
