from __future__ import annotations

from locations_offline.agent.models import InterceptedRequest, RequestCategory
from locations_offline.config.models import CacheSettings, RoutingSettings


class RequestClassifier:
    """Maps each intercepted request to exactly one strategy category."""

    def __init__(self, *, routing: RoutingSettings, cache: CacheSettings) -> None:
        self._routing = routing
        self._static_suffixes = tuple(
            asset.lstrip("/")
            for asset in cache.static_assets
            if asset.lstrip("/") and "://" not in asset
        )

    def classify(self, request: InterceptedRequest) -> RequestCategory:
        if self.is_photo_upload(request):
            return RequestCategory.PHOTO_UPLOAD
        if self.is_static(request):
            return RequestCategory.STATIC
        if self.is_photo(request):
            return RequestCategory.PHOTO
        if self.is_api(request):
            return RequestCategory.API
        return RequestCategory.GENERIC

    def is_photo_upload(self, request: InterceptedRequest) -> bool:
        return request.method.upper() == "POST" and self._routing.photo_upload_path in request.path

    def is_static(self, request: InterceptedRequest) -> bool:
        path = request.path
        if self._static_suffixes and path.endswith(self._static_suffixes):
            return True
        return any(segment in path for segment in self._routing.static_path_segments)

    def is_photo(self, request: InterceptedRequest) -> bool:
        if request.destination == "image":
            return True
        path = request.path
        return any(segment in path for segment in self._routing.photo_path_segments)

    def is_api(self, request: InterceptedRequest) -> bool:
        return request.path.startswith(self._routing.api_prefix)
