import os
import unittest
from dataclasses import replace
from pathlib import Path
from unittest import mock

from src.config import PROJECT_ROOT, SAMPLE_RATE, Settings


class SettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.render_workers, 2)
        self.assertIsNone(settings.resampler_path)
        self.assertEqual(settings.sample_rate, 44100)
        self.assertTrue(settings.keep_render_cache)
        self.assertEqual(settings.app_env, "dev")
        self.assertEqual(settings.dictionaries_dir, PROJECT_ROOT / "dictionaries")

    def test_environment_overrides(self) -> None:
        env = {
            "RENDER_WORKERS": "6",
            "RESAMPLER_PATH": " /opt/tn_fnds ",
            "RESAMPLER_TIMEOUT_SECONDS": "2.5",
            "RENDER_KEEP_CACHE": "no",
            "RENDER_CACHE_DIR": "cache/renders",
            "APP_ENV": "prod",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.render_workers, 6)
        self.assertEqual(settings.resampler_path, Path("/opt/tn_fnds"))
        self.assertEqual(settings.resampler_timeout_seconds, 2.5)
        self.assertFalse(settings.keep_render_cache)
        self.assertEqual(settings.cache_dir, PROJECT_ROOT / "cache" / "renders")
        self.assertEqual(settings.app_env, "prod")

    def test_invalid_worker_count(self) -> None:
        with mock.patch.dict(os.environ, {"RENDER_WORKERS": "0"}, clear=True):
            with self.assertRaises(ValueError):
                Settings.from_env()

    def test_sample_rate_is_pinned_to_resampler_output(self) -> None:
        with mock.patch.dict(os.environ, {"RENDER_SAMPLE_RATE": "22050"}, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.sample_rate, SAMPLE_RATE)
        with self.assertRaises(ValueError):
            replace(settings, sample_rate=48000)

    def test_settings_are_frozen(self) -> None:
        settings = Settings.from_env()
        with self.assertRaises(AttributeError):
            settings.render_workers = 10


if __name__ == "__main__":
    unittest.main(verbosity=2)
