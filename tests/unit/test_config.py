import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from tidytree.config import DEFAULT_HISTORY_LIMIT, load_settings
from tidytree.errors import ConfigError
from tidytree.models import ConflictStrategy


class TestSettings(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        # An empty .env keeps python-dotenv from picking up a stray one
        self.env_file = self.tmp / ".env"
        self.env_file.write_text("")

    def tearDown(self):
        self._tmp.cleanup()

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        os.environ["TIDYTREE_HOME"] = str(self.tmp / "home")

        settings = load_settings(self.env_file)

        self.assertEqual(settings.journal_path, self.tmp / "home" / "journal.jsonl")
        self.assertEqual(settings.history_limit, DEFAULT_HISTORY_LIMIT)
        self.assertEqual(settings.conflict, ConflictStrategy.RENAME)
        self.assertEqual(settings.mode, "by-type")
        self.assertFalse(settings.include_hidden)

    @patch.dict(os.environ, {
        "TIDYTREE_JOURNAL": "/var/tmp/custom.jsonl",
        "TIDYTREE_HISTORY_LIMIT": "7",
        "TIDYTREE_CONFLICT": "Backup",
        "TIDYTREE_INCLUDE_HIDDEN": "yes",
        "TIDYTREE_SIMILARITY_THRESHOLD": "12",
    }, clear=True)
    def test_environment_overrides(self):
        settings = load_settings(self.env_file)

        self.assertEqual(settings.journal_path, Path("/var/tmp/custom.jsonl"))
        self.assertEqual(settings.history_limit, 7)
        self.assertEqual(settings.conflict, ConflictStrategy.BACKUP)
        self.assertTrue(settings.include_hidden)
        self.assertEqual(settings.similarity_threshold, 12)

    @patch.dict(os.environ, {}, clear=True)
    def test_dotenv_file(self):
        self.env_file.write_text("TIDYTREE_MODE=by-date\nTIDYTREE_WORKERS=3\n")

        settings = load_settings(self.env_file)

        self.assertEqual(settings.mode, "by-date")
        self.assertEqual(settings.workers, 3)

    def test_invalid_values(self):
        cases = [
            {"TIDYTREE_HISTORY_LIMIT": "many"},
            {"TIDYTREE_HISTORY_LIMIT": "0"},
            {"TIDYTREE_CONFLICT": "explode"},
            {"TIDYTREE_INCLUDE_HIDDEN": "perhaps"},
            {"TIDYTREE_SIMILARITY_THRESHOLD": "65"},
        ]
        for env in cases:
            with self.subTest(env=env), patch.dict(os.environ, env, clear=True):
                with self.assertRaises(ConfigError):
                    load_settings(self.env_file)


if __name__ == "__main__":
    unittest.main()
