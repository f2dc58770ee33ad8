import unittest

from locations_offline.agent.classifier import RequestClassifier
from locations_offline.agent.models import InterceptedRequest, RequestCategory
from locations_offline.config.models import CacheSettings, RoutingSettings


def _classifier() -> RequestClassifier:
    return RequestClassifier(
        routing=RoutingSettings(),
        cache=CacheSettings(static_assets=("/mobile-app.html", "/js/mobile-app.js")),
    )


def _req(path: str, method: str = "GET", destination: str = "") -> InterceptedRequest:
    return InterceptedRequest(method=method, url=f"http://backend.test{path}", destination=destination)


class RequestClassifierTests(unittest.TestCase):
    def test_categories(self) -> None:
        classifier = _classifier()
        cases = [
            (_req("/css/styles.css"), RequestCategory.STATIC),
            (_req("/js/utils/helpers.js"), RequestCategory.STATIC),
            (_req("/mobile-app.html"), RequestCategory.STATIC),
            (_req("/uploads/abc.jpg"), RequestCategory.PHOTO),
            (_req("/anything", destination="image"), RequestCategory.PHOTO),
            (_req("/api/locations"), RequestCategory.API),
            (_req("/api/photos/upload", method="POST"), RequestCategory.PHOTO_UPLOAD),
            (_req("/index.html"), RequestCategory.GENERIC),
        ]
        for request, expected in cases:
            with self.subTest(path=request.path, method=request.method):
                self.assertIs(classifier.classify(request), expected)

    def test_upload_endpoint_requires_post(self) -> None:
        # GET on the upload path falls through to the photo segment rule.
        self.assertIs(_classifier().classify(_req("/api/photos/upload")), RequestCategory.PHOTO)

    def test_static_takes_precedence_over_photo_and_api(self) -> None:
        classifier = _classifier()
        self.assertIs(classifier.classify(_req("/css/photos/bg.png", destination="image")), RequestCategory.STATIC)
        self.assertIs(classifier.classify(_req("/api/js/utils/x.js")), RequestCategory.STATIC)

    def test_photo_takes_precedence_over_api(self) -> None:
        self.assertIs(_classifier().classify(_req("/api/photos/location/p1")), RequestCategory.PHOTO)

    def test_query_string_is_ignored(self) -> None:
        self.assertIs(_classifier().classify(_req("/css/app.css?v=3")), RequestCategory.STATIC)


if __name__ == "__main__":
    unittest.main()
