from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from locations_offline.agent.cache_store import CacheStore
from locations_offline.agent.classifier import RequestClassifier
from locations_offline.agent.errors import NetworkError, QueueStoreError
from locations_offline.agent.form_codec import parse_form_body
from locations_offline.agent.models import (
    AgentResponse,
    InterceptedRequest,
    NewUpload,
    RequestCategory,
    json_response,
    text_response,
)
from locations_offline.agent.queue_store import UploadQueueStore
from locations_offline.agent.transport import Transport, filter_headers
from locations_offline.config.models import RoutingSettings

logger = logging.getLogger(__name__)


class CacheNames:
    """The cache names of one deployed version; anything else is stale."""

    def __init__(self, version: str) -> None:
        self.dynamic = f"mobile-app-{version}"
        self.static = f"static-{version}"
        self.photos = f"photos-{version}"

    def current(self) -> frozenset[str]:
        return frozenset({self.dynamic, self.static, self.photos})


class FetchInterceptor:
    def __init__(
        self,
        *,
        routing: RoutingSettings,
        classifier: RequestClassifier,
        cache_store: CacheStore,
        cache_names: CacheNames,
        queue_store: UploadQueueStore,
        transport: Transport,
        register_sync: Callable[[], Awaitable[None]],
        on_network_result: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self._routing = routing
        self._classifier = classifier
        self._caches = cache_store
        self._names = cache_names
        self._queue = queue_store
        self._transport = transport
        self._register_sync = register_sync
        self._on_network_result = on_network_result

    async def handle(self, request: InterceptedRequest) -> AgentResponse:
        category = self._classifier.classify(request)
        logger.debug("Request intercepted. category=%s method=%s url=%s", category.value, request.method, request.url)
        try:
            if category is RequestCategory.PHOTO_UPLOAD:
                return await self.handle_photo_upload(request)
            if category is RequestCategory.STATIC:
                return await self.handle_static(request)
            if category is RequestCategory.PHOTO:
                return await self.handle_photo(request)
            if category is RequestCategory.API:
                return await self.handle_api(request)
            return await self.handle_generic(request)
        except Exception:
            logger.exception("Unexpected error while handling request. category=%s url=%s", category.value, request.url)
            return text_response(503, "Offline", reason="Service Unavailable")

    async def _fetch(self, request: InterceptedRequest) -> AgentResponse:
        try:
            response = await self._transport.fetch(request)
        except NetworkError:
            self._report(False)
            raise
        self._report(True)
        return response

    def _report(self, reachable: bool) -> None:
        if self._on_network_result is not None:
            self._on_network_result(reachable)

    async def handle_static(self, request: InterceptedRequest) -> AgentResponse:
        cacheable = request.method.upper() == "GET"
        cache = await self._caches.open(self._names.static)
        if cacheable:
            cached = await cache.match(request.url)
            if cached is not None:
                logger.debug("Serving static resource from cache. url=%s", request.url)
                return cached

        try:
            response = await self._fetch(request)
        except NetworkError as e:
            logger.warning("Static resource unavailable. url=%s reason=%s", request.url, e.reason)
            return text_response(503, "Offline - Resource not available", reason="Service Unavailable")

        if cacheable and response.ok:
            await cache.put(request.url, response)
        return response

    async def handle_photo(self, request: InterceptedRequest) -> AgentResponse:
        cacheable = request.method.upper() == "GET"
        try:
            response = await self._fetch(request)
        except NetworkError as e:
            if cacheable:
                cache = await self._caches.open(self._names.photos)
                cached = await cache.match(request.url)
                if cached is not None:
                    logger.info("Serving photo from cache. url=%s", request.url)
                    return cached
            logger.warning("Photo unavailable offline. url=%s reason=%s", request.url, e.reason)
            return text_response(503, "Photo not available offline", reason="Service Unavailable")

        if cacheable and response.ok:
            cache = await self._caches.open(self._names.photos)
            await cache.put(request.url, response)
        return response

    async def handle_api(self, request: InterceptedRequest) -> AgentResponse:
        try:
            return await self._fetch(request)
        except NetworkError as e:
            logger.warning("API request failed. url=%s reason=%s", request.url, e.reason)
            return self._offline_api_response(request.path)

    def _offline_api_response(self, path: str) -> AgentResponse:
        prefix = self._routing.api_prefix.rstrip("/")
        for collection in self._routing.offline_collections:
            if path.startswith(f"{prefix}/{collection}"):
                return json_response(
                    503,
                    {
                        collection: [],
                        "offline": True,
                        "message": f"Offline {collection} data",
                    },
                )
        return json_response(503, {"error": "Offline - API not available", "offline": True})

    async def handle_generic(self, request: InterceptedRequest) -> AgentResponse:
        try:
            return await self._fetch(request)
        except NetworkError as e:
            logger.debug("Generic request failed. url=%s reason=%s", request.url, e.reason)
            return text_response(503, "Offline", reason="Service Unavailable")

    async def handle_photo_upload(self, request: InterceptedRequest) -> AgentResponse:
        response: Optional[AgentResponse] = None
        try:
            response = await self._fetch(request)
            if response.ok:
                return response
            failure = f"status={response.status}"
        except NetworkError as e:
            failure = e.reason

        logger.info("Queueing photo upload for background sync. url=%s failure=%s", request.url, failure)
        if not await self._queue_upload(request):
            if response is not None:
                return response
            return json_response(503, {"error": "Offline - upload could not be queued", "offline": True})
        return json_response(
            202,
            {
                "success": True,
                "queued": True,
                "message": "Photo queued for upload when online",
            },
        )

    async def _queue_upload(self, request: InterceptedRequest) -> bool:
        """Returns False when the body could not be read as a form; nothing is queued then."""
        try:
            fields = await parse_form_body(request.body, request.header("Content-Type"))
        except (ValueError, LookupError):
            logger.exception("Failed to parse upload form body; upload not queued. url=%s", request.url)
            return False

        upload = NewUpload(
            url=request.url,
            method=request.method,
            fields=fields,
            headers=filter_headers(request.headers),
        )
        try:
            await self._queue.enqueue(upload)
        except QueueStoreError:
            logger.exception("Failed to queue photo upload; upload lost. url=%s", request.url)
            return True

        try:
            await self._register_sync()
        except Exception:
            logger.exception("Failed to register background sync after queueing upload.")
        return True
