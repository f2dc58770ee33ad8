from __future__ import annotations

import asyncio
import logging
from typing import Optional

from locations_offline.agent.cache_store import CacheStore, NamedCache
from locations_offline.agent.classifier import RequestClassifier
from locations_offline.agent.errors import NetworkError, QueueStoreError
from locations_offline.agent.interceptor import CacheNames, FetchInterceptor
from locations_offline.agent.messages import (
    AgentMessage,
    ClearCacheMessage,
    GetOfflineStatusMessage,
    QueuePhotoUploadMessage,
)
from locations_offline.agent.models import AgentResponse, InterceptedRequest, NewUpload, SyncReport
from locations_offline.agent.notifier import ClientNotifier
from locations_offline.agent.queue_store import UploadQueueStore
from locations_offline.agent.sync import BackgroundSyncAgent, SyncScheduler
from locations_offline.agent.transport import AiohttpTransport, Transport
from locations_offline.config.models import AppConfig

logger = logging.getLogger(__name__)


class OfflineAgent:
    """
    The offline layer between application pages and the REST backend.

    One instance per process. It owns both stores and every strategy object;
    nothing is kept in module globals. Lifecycle: ``install`` -> ``activate``
    -> ``start``; ``stop`` on shutdown.
    """

    def __init__(self, config: AppConfig, *, transport: Optional[Transport] = None) -> None:
        self._config = config
        self._owns_transport = transport is None
        self.transport: Transport = transport if transport is not None else AiohttpTransport(config.network)
        self.cache_names = CacheNames(config.cache.version)
        self.cache_store = CacheStore(config.cache.root_dir)
        self.queue_store = UploadQueueStore(config.queue.dir)
        self.notifier = ClientNotifier()
        self.sync_agent = BackgroundSyncAgent(
            config=config.queue,
            queue_store=self.queue_store,
            transport=self.transport,
            notifier=self.notifier,
        )
        self.classifier = RequestClassifier(routing=config.routing, cache=config.cache)
        self.interceptor = FetchInterceptor(
            routing=config.routing,
            classifier=self.classifier,
            cache_store=self.cache_store,
            cache_names=self.cache_names,
            queue_store=self.queue_store,
            transport=self.transport,
            register_sync=self.sync_agent.register,
            on_network_result=self._record_network_result,
        )
        self.scheduler = SyncScheduler(
            config=config.network,
            sync_agent=self.sync_agent,
            transport=self.transport,
            probe_url=self.upstream_url(config.network.connectivity_probe_path),
        )
        self.is_offline = False
        self.active = False

    def upstream_url(self, path_qs: str) -> str:
        if "://" in path_qs:
            return path_qs
        base = self._config.server.upstream_base_url.rstrip("/")
        return f"{base}/{path_qs.lstrip('/')}"

    def _record_network_result(self, reachable: bool) -> None:
        if self.is_offline == reachable:
            logger.info("Connectivity changed. offline=%s", not reachable)
        self.is_offline = not reachable

    async def install(self) -> int:
        """Pre-populate the static cache; returns the number of assets cached."""
        static_cache = await self.cache_store.open(self.cache_names.static)
        await self.cache_store.open(self.cache_names.photos)

        marker = self._config.cache.placeholder_marker
        urls = []
        for asset in self._config.cache.static_assets:
            if marker and marker in asset:
                logger.debug("Skipping static asset with unresolved placeholder. asset=%s", asset)
                continue
            urls.append(self.upstream_url(asset))

        # Assets are fetched concurrently, so install waits at most one network timeout.
        results = await asyncio.gather(*(self._precache(static_cache, url) for url in urls))
        cached = sum(results)
        logger.info("Agent installed. static_assets_cached=%d total=%d", cached, len(urls))
        return cached

    async def _precache(self, cache: NamedCache, url: str) -> bool:
        try:
            response = await self.transport.fetch(InterceptedRequest(method="GET", url=url))
        except NetworkError as e:
            logger.warning("Failed to pre-cache static asset. url=%s reason=%s", url, e.reason)
            return False
        if not response.ok:
            logger.warning("Failed to pre-cache static asset. url=%s status=%s", url, response.status)
            return False
        await cache.put(url, response)
        return True

    async def activate(self) -> list[str]:
        """Delete caches outside the current version set, then start serving."""
        current = self.cache_names.current()
        deleted = []
        for name in await self.cache_store.keys():
            if name not in current:
                logger.info("Deleting old cache. cache=%s", name)
                await self.cache_store.delete(name)
                deleted.append(name)
        self.active = True
        logger.info("Agent activated. stale_caches_deleted=%d", len(deleted))
        return deleted

    async def start(self) -> None:
        await self.queue_store.recover()
        if await self.queue_store.count() > 0:
            await self.sync_agent.register()
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self._owns_transport and isinstance(self.transport, AiohttpTransport):
            await self.transport.close()

    async def handle_fetch(self, request: InterceptedRequest) -> AgentResponse:
        return await self.interceptor.handle(request)

    async def handle_sync(self, tag: Optional[str] = None) -> SyncReport:
        return await self.sync_agent.handle_sync(tag or self._config.queue.sync_tag)

    async def clear_all_caches(self) -> int:
        names = await self.cache_store.keys()
        for name in names:
            await self.cache_store.delete(name)
        return len(names)

    async def offline_status(self) -> dict:
        return {"isOffline": self.is_offline, "queuedUploads": await self.queue_store.count()}

    async def handle_message(self, message: AgentMessage) -> Optional[dict]:
        """Dispatch a validated page message; returns the reply, or None for fire-and-forget kinds."""
        match message:
            case QueuePhotoUploadMessage(data=data):
                upload = NewUpload(
                    url=data.url or self.upstream_url(self._config.routing.photo_upload_path),
                    method=data.method,
                    fields=data.to_fields(),
                    headers=dict(data.headers),
                )
                try:
                    await self.queue_store.enqueue(upload)
                except QueueStoreError:
                    logger.exception("Failed to queue photo upload from page message.")
                    return None
                await self.sync_agent.register()
                return None
            case GetOfflineStatusMessage():
                return await self.offline_status()
            case ClearCacheMessage():
                deleted = await self.clear_all_caches()
                logger.info("All caches cleared on request. deleted=%d", deleted)
                return {"success": True}
            case _:
                raise TypeError(f"Unhandled agent message: {type(message).__name__}")
