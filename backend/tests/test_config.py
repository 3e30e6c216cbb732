import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from backend.config import PROJECT_ROOT, Settings


class SettingsTests(unittest.TestCase):
    def test_missing_remote_vars_lists_unset_and_blank(self):
        settings = Settings(
            _env_file=None,
            s3_bucket="bucket",
            aws_access_key_id="  ",
            aws_secret_access_key=None,
        )
        self.assertEqual(
            settings.missing_remote_store_vars(),
            ["AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"],
        )
        self.assertFalse(settings.has_remote_store)

    def test_remote_store_enabled_when_all_set(self):
        settings = Settings(
            _env_file=None,
            s3_bucket="bucket",
            aws_access_key_id="key",
            aws_secret_access_key="secret",
        )
        self.assertTrue(settings.has_remote_store)

    def test_environment_aliases(self):
        with mock.patch.dict(
            os.environ,
            {"APP_ENV": "production", "API_BASE_URL": "https://api.example.com"},
        ):
            settings = Settings(_env_file=None)
        self.assertTrue(settings.is_production)
        self.assertEqual(settings.public_base_url, "https://api.example.com")

    def test_uploads_dir(self):
        with tempfile.TemporaryDirectory() as tmp:
            explicit = Settings(_env_file=None, upload_dir=tmp)
            self.assertEqual(explicit.uploads_dir, Path(tmp).resolve())

        production = Settings(_env_file=None, upload_dir=None, environment="production")
        self.assertEqual(
            production.uploads_dir,
            Path(tempfile.gettempdir()) / "listing-uploads",
        )
        development = Settings(_env_file=None, upload_dir=None, environment="development")
        self.assertEqual(development.uploads_dir, PROJECT_ROOT / "uploads")


if __name__ == "__main__":
    unittest.main()
