import base64
import tempfile
import unittest
from pathlib import Path

from backend.config import Settings
from backend.references import DEFAULT_IMAGE_URL, EMPTY, InlineRef, LocalRef, RemoteRef
from backend.resolver import ImageResolver, RequestContext
from backend.storage import InlineImageStore, LocalImageStore


class RequestContextTests(unittest.TestCase):
    def test_forwarded_headers_win(self):
        context = RequestContext.from_headers(
            {
                "host": "10.0.0.5:8000",
                "x-forwarded-host": "api.example.com, proxy.internal",
                "x-forwarded-proto": "https",
            },
            scheme="http",
        )
        self.assertEqual(context.base_url(), "https://api.example.com")

    def test_host_header_fallback(self):
        context = RequestContext.from_headers({"host": "localhost:9000"}, scheme="http")
        self.assertEqual(context.base_url(), "http://localhost:9000")

    def test_no_host(self):
        self.assertIsNone(RequestContext().base_url())


class ImageResolverTests(unittest.TestCase):
    def test_empty_resolves_to_default(self):
        resolver = ImageResolver()
        self.assertEqual(resolver.resolve(EMPTY), DEFAULT_IMAGE_URL)
        self.assertEqual(resolver.resolve(None), DEFAULT_IMAGE_URL)

    def test_default_is_overridable(self):
        resolver = ImageResolver(default_image_url="https://cdn.example.com/none.png")
        self.assertEqual(resolver.resolve(EMPTY), "https://cdn.example.com/none.png")

    def test_remote_and_inline_verbatim(self):
        resolver = ImageResolver()
        self.assertEqual(
            resolver.resolve(RemoteRef("https://cdn.example.com/a.jpg", "listings/a.jpg")),
            "https://cdn.example.com/a.jpg",
        )
        inline = InlineRef("image/png", "iVBORw0KGgo=")
        self.assertEqual(resolver.resolve(inline), "data:image/png;base64,iVBORw0KGgo=")

    def test_local_uses_configured_base(self):
        resolver = ImageResolver(public_base_url="https://api.example.com/")
        context = RequestContext(host="other.example.com")
        self.assertEqual(
            resolver.resolve(LocalRef("/uploads/1-2.jpg"), context),
            "https://api.example.com/uploads/1-2.jpg",
        )

    def test_local_uses_request_when_unconfigured(self):
        resolver = ImageResolver(is_production=True)
        context = RequestContext(forwarded_host="api.example.com", forwarded_proto="https")
        self.assertEqual(
            resolver.resolve(LocalRef("/uploads/1-2.jpg"), context),
            "https://api.example.com/uploads/1-2.jpg",
        )

    def test_local_uses_dev_default(self):
        resolver = ImageResolver(dev_base_url="http://localhost:5000")
        self.assertEqual(
            resolver.resolve(LocalRef("/uploads/1-2.jpg")),
            "http://localhost:5000/uploads/1-2.jpg",
        )

    def test_local_in_production_without_base_is_placeholder(self):
        resolver = ImageResolver(is_production=True)
        self.assertEqual(resolver.resolve(LocalRef("/uploads/1-2.jpg")), DEFAULT_IMAGE_URL)

    def test_legacy_values(self):
        resolver = ImageResolver(public_base_url="https://api.example.com")
        self.assertEqual(
            resolver.resolve_value("http://localhost:5000/uploads/1-2.jpg"),
            "https://api.example.com/uploads/1-2.jpg",
        )
        self.assertEqual(
            resolver.resolve_value("uploads/1-2.jpg"),
            "https://api.example.com/uploads/1-2.jpg",
        )
        self.assertEqual(
            resolver.resolve_value("data:image/svg+xml;utf8,%3Csvg%3E%3C%2Fsvg%3E"),
            DEFAULT_IMAGE_URL,
        )

    def test_unrecognized_values_degrade(self):
        resolver = ImageResolver()
        for value in ["", None, "not an image", "data:text/html;base64,PGI+", "ftp://x"]:
            with self.subTest(value=value):
                self.assertEqual(resolver.resolve_value(value), DEFAULT_IMAGE_URL)

    def test_from_settings(self):
        settings = Settings(
            _env_file=None,
            public_base_url=" https://api.example.com ",
            environment="production",
            port=5000,
            default_image_url="https://cdn.example.com/none.png",
        )
        resolver = ImageResolver.from_settings(settings)
        self.assertEqual(resolver.public_base_url, "https://api.example.com")
        self.assertTrue(resolver.is_production)
        self.assertEqual(resolver.dev_base_url, "http://localhost:5000")
        self.assertEqual(resolver.default_image_url, "https://cdn.example.com/none.png")


class StoreThenResolveTests(unittest.TestCase):
    def test_inline_round_trip_preserves_bytes(self):
        resolver = ImageResolver()
        store = InlineImageStore()
        for subtype in ["jpeg", "png", "webp", "gif", "bmp", "svg+xml", "avif"]:
            with self.subTest(subtype=subtype):
                data = f"payload-{subtype}".encode("utf-8") + bytes(range(16))
                url = resolver.resolve(store.put(data, f"image/{subtype}"))
                header, payload = url.split(",", 1)
                self.assertEqual(header, f"data:image/{subtype};base64")
                self.assertEqual(base64.b64decode(payload), data)

    def test_local_put_resolves_to_public_url(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = LocalImageStore(Path(tmp))
            resolver = ImageResolver(public_base_url="https://api.example.com")
            ref = store.put(b"\xff\xd8\xff", "image/jpeg")
            self.assertRegex(
                resolver.resolve(ref),
                r"^https://api\.example\.com/uploads/\d+-\d+\.jpg$",
            )


if __name__ == "__main__":
    unittest.main()
