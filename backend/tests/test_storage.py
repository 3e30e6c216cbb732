import tempfile
import unittest
from pathlib import Path

import boto3
from botocore.stub import ANY, Stubber

from backend.errors import StoreTransientFailure
from backend.references import InlineRef, LocalRef, RemoteRef
from backend.storage import (
    InlineImageStore,
    InMemoryRemoteImageStore,
    LocalImageStore,
    S3ImageStore,
    generate_filename,
)

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


class GenerateFilenameTests(unittest.TestCase):
    def test_shape(self):
        name = generate_filename("image/jpeg")
        self.assertRegex(name, r"^\d{13}-\d+\.jpg$")

    def test_unknown_mime_has_no_extension(self):
        self.assertRegex(generate_filename("image/x-weird"), r"^\d+-\d+$")

    def test_names_do_not_collide(self):
        names = {generate_filename("image/png") for _ in range(200)}
        self.assertEqual(len(names), 200)


class LocalImageStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name) / "uploads"
        self.store = LocalImageStore(self.root)

    def tearDown(self):
        self.tmp.cleanup()

    def test_put_creates_root_and_file(self):
        ref = self.store.put(JPEG_BYTES, "image/jpeg")
        self.assertIsInstance(ref, LocalRef)
        self.assertRegex(ref.relative_path, r"^/uploads/\d+-\d+\.jpg$")
        self.assertEqual((self.root / ref.filename).read_bytes(), JPEG_BYTES)

    def test_delete_removes_file(self):
        ref = self.store.put(JPEG_BYTES, "image/jpeg")
        self.store.delete(ref)
        self.assertFalse((self.root / ref.filename).exists())

    def test_delete_missing_file_is_silent(self):
        self.store.delete(LocalRef("/uploads/does-not-exist.jpg"))

    def test_delete_only_touches_its_own_file(self):
        keep = self.store.put(JPEG_BYTES, "image/jpeg")
        drop = self.store.put(JPEG_BYTES, "image/jpeg")
        self.store.delete(drop)
        self.assertTrue((self.root / keep.filename).exists())

    def test_delete_ignores_other_kinds(self):
        ref = self.store.put(JPEG_BYTES, "image/jpeg")
        self.store.delete(RemoteRef("https://cdn.example.com/" + ref.filename, "x"))
        self.assertTrue((self.root / ref.filename).exists())

    def test_path_for_refuses_escape(self):
        self.assertIsNone(self.store.path_for(LocalRef("/uploads/..")))

    def test_put_fails_when_root_is_a_file(self):
        blocker = Path(self.tmp.name) / "blocker"
        blocker.write_text("not a directory")
        store = LocalImageStore(blocker)
        self.assertFalse(store.is_writable())
        with self.assertRaises(StoreTransientFailure):
            store.put(JPEG_BYTES, "image/jpeg")

    def test_owns(self):
        self.assertTrue(self.store.owns(LocalRef("/uploads/a.jpg")))
        self.assertFalse(self.store.owns(InlineRef("image/png", "AAAA")))


class InlineImageStoreTests(unittest.TestCase):
    def test_put_encodes_bytes(self):
        ref = InlineImageStore().put(JPEG_BYTES, "image/jpeg")
        self.assertIsInstance(ref, InlineRef)
        self.assertTrue(ref.to_storage().startswith("data:image/jpeg;base64,"))
        self.assertEqual(ref.decode(), JPEG_BYTES)

    def test_delete_is_noop(self):
        store = InlineImageStore()
        store.delete(store.put(JPEG_BYTES, "image/jpeg"))


class InMemoryRemoteImageStoreTests(unittest.TestCase):
    def test_put_and_delete(self):
        store = InMemoryRemoteImageStore()
        ref = store.put(JPEG_BYTES, "image/jpeg")
        self.assertIsInstance(ref, RemoteRef)
        self.assertEqual(store.get_bytes(ref.object_id), JPEG_BYTES)
        store.delete(ref)
        store.delete(ref)
        self.assertEqual(store.stored_objects, {})

    def test_failing_put(self):
        with self.assertRaises(StoreTransientFailure):
            InMemoryRemoteImageStore(fail_puts=True).put(JPEG_BYTES, "image/jpeg")


class S3ImageStoreTests(unittest.TestCase):
    def setUp(self):
        self.client = boto3.client(
            "s3",
            region_name="eu-west-1",
            aws_access_key_id="test-key",
            aws_secret_access_key="test-secret",
        )
        self.stubber = Stubber(self.client)
        self.stubber.activate()
        self.store = S3ImageStore(
            bucket="listing-images",
            access_key_id="test-key",
            secret_access_key="test-secret",
            region="eu-west-1",
            client=self.client,
        )

    def tearDown(self):
        self.stubber.deactivate()

    def test_put_returns_url_and_object_id(self):
        self.stubber.add_response(
            "put_object",
            {"ETag": '"etag"'},
            {
                "Bucket": "listing-images",
                "Key": ANY,
                "Body": ANY,
                "ContentType": "image/jpeg",
            },
        )
        ref = self.store.put(JPEG_BYTES, "image/jpeg")
        self.stubber.assert_no_pending_responses()
        self.assertIsInstance(ref, RemoteRef)
        self.assertRegex(ref.object_id, r"^listings/\d+-\d+\.jpg$")
        self.assertEqual(
            ref.url,
            f"https://listing-images.s3.eu-west-1.amazonaws.com/{ref.object_id}",
        )

    def test_put_error_is_transient_failure(self):
        self.stubber.add_client_error(
            "put_object", service_error_code="InternalError", http_status_code=500
        )
        with self.assertRaises(StoreTransientFailure):
            self.store.put(JPEG_BYTES, "image/jpeg")

    def test_delete_uses_object_id(self):
        self.stubber.add_response(
            "delete_object", {}, {"Bucket": "listing-images", "Key": "listings/a.jpg"}
        )
        self.store.delete(RemoteRef("https://x/listings/a.jpg", "listings/a.jpg"))
        self.stubber.assert_no_pending_responses()

    def test_delete_without_object_id_is_skipped(self):
        self.store.delete(RemoteRef("https://elsewhere.example.com/a.jpg"))
        self.stubber.assert_no_pending_responses()

    def test_delete_errors_are_logged_not_raised(self):
        self.stubber.add_client_error(
            "delete_object", service_error_code="AccessDenied", http_status_code=403
        )
        with self.assertLogs("backend.storage", level="WARNING") as logs:
            self.store.delete(RemoteRef("https://x/listings/a.jpg", "listings/a.jpg"))
        self.assertTrue(any("listings/a.jpg" in line for line in logs.output))

    def test_missing_object_is_not_an_error(self):
        self.stubber.add_client_error(
            "delete_object", service_error_code="NoSuchKey", http_status_code=404
        )
        self.store.delete(RemoteRef("https://x/listings/a.jpg", "listings/a.jpg"))

    def test_object_url_variants(self):
        public = S3ImageStore(
            bucket="b",
            access_key_id="k",
            secret_access_key="s",
            public_base_url="https://cdn.example.com/",
            client=self.client,
        )
        self.assertEqual(public.object_url("listings/a.jpg"), "https://cdn.example.com/listings/a.jpg")

        endpoint = S3ImageStore(
            bucket="b",
            access_key_id="k",
            secret_access_key="s",
            endpoint="https://cos.ap-guangzhou.myqcloud.com",
            client=self.client,
        )
        self.assertEqual(
            endpoint.object_url("listings/a.jpg"),
            "https://b.cos.ap-guangzhou.myqcloud.com/listings/a.jpg",
        )


if __name__ == "__main__":
    unittest.main()
