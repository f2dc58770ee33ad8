import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from locations_offline.config import ConfigLoadRequest, YamlConfigLoader

MINIMAL_YAML = """
logging:
  level: INFO
  file:
    path: ""
    rotation:
      backup_count: 3
server:
  upstream_base_url: http://127.0.0.1:3000
"""


class YamlConfigLoaderTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.config_dir = Path(self._tmp.name) / "data" / "config"
        self.config_dir.mkdir(parents=True)
        self.yaml_path = self.config_dir / "config.yaml"
        self.yaml_path.write_text(MINIMAL_YAML, encoding="utf-8")

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def _load(self):
        request = ConfigLoadRequest(yaml_path=str(self.yaml_path), env_prefix="LOCOFF_TEST__", dotenv_path=None)
        return await YamlConfigLoader().load(request)

    async def test_defaults_fill_omitted_sections(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=False):
            config = await self._load()

        self.assertEqual(config.queue.sync_tag, "photo-upload-sync")
        self.assertEqual(config.routing.photo_upload_path, "/api/photos/upload")
        self.assertEqual(config.cache.version, "v1.0.0")
        self.assertTrue((self.config_dir.parent / "upload-queue").is_dir())

    async def test_env_overrides_reach_omitted_sections(self) -> None:
        env = {
            "LOCOFF_TEST__QUEUE__MAX_ATTEMPTS": "3",
            "LOCOFF_TEST__CACHE__STATIC_ASSETS": '["/css/a.css", "/js/b.js"]',
            "LOCOFF_TEST__SERVER__PORT": "9090",
        }
        with mock.patch.dict(os.environ, env, clear=False):
            config = await self._load()

        self.assertEqual(config.queue.max_attempts, 3)
        self.assertEqual(list(config.cache.static_assets), ["/css/a.css", "/js/b.js"])
        self.assertEqual(config.server.port, 9090)

    async def test_unknown_override_path_is_an_error(self) -> None:
        with mock.patch.dict(os.environ, {"LOCOFF_TEST__QUEUE__NOPE": "1"}, clear=False):
            with self.assertRaises(KeyError):
                await self._load()


if __name__ == "__main__":
    unittest.main()
