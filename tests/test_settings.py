import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from dtbridge.kernel.errors import ConfigError
from dtbridge.kernel.settings import (
    get_account,
    list_account_ids,
    load_config,
    require_credentials,
)

CONFIG_YAML = """
channels:
  dingtalk:
    accounts:
      default:
        enabled: true
        client_id: key-1
        client_secret_env: DTBRIDGE_TEST_SECRET
        robot_code: robot-1
      camel:
        clientId: key-2
        clientSecret: secret-2
        robotCode: robot-2
      pasted:
        client_id: key-3
        client_secret_env: raw-secret-value
      disabled:
        enabled: "no"
        client_id: key-4
        client_secret: secret-4
"""


class TestSettings(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "config.yaml"
        self.path.write_text(CONFIG_YAML, encoding="utf-8")

    def test_missing_file_is_empty(self) -> None:
        self.assertEqual(load_config(Path(self._tmp.name) / "missing.yaml"), {})

    def test_default_path_uses_home_env(self) -> None:
        with patch.dict(os.environ, {"DTBRIDGE_HOME": self._tmp.name}):
            cfg = load_config()
        self.assertIn("channels", cfg)

    def test_invalid_yaml(self) -> None:
        self.path.write_text("channels: [unclosed", encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_config(self.path)
        self.path.write_text("- just\n- a list\n", encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_config(self.path)

    def test_secret_from_env(self) -> None:
        cfg = load_config(self.path)
        with patch.dict(os.environ, {"DTBRIDGE_TEST_SECRET": "from-env"}):
            account = get_account(cfg, "default")
        self.assertEqual(account.client_secret, "from-env")
        self.assertEqual(account.robot_code, "robot-1")
        self.assertTrue(account.configured)

    def test_unset_env_secret_is_not_configured(self) -> None:
        cfg = load_config(self.path)
        with patch.dict(os.environ, {}, clear=True):
            account = get_account(cfg, "default")
            self.assertFalse(account.configured)
            with self.assertRaises(ConfigError):
                require_credentials(cfg, "default")

    def test_camel_case_keys(self) -> None:
        account = get_account(load_config(self.path), "camel")
        self.assertEqual(
            (account.client_id, account.client_secret, account.robot_code),
            ("key-2", "secret-2", "robot-2"),
        )

    def test_raw_secret_in_env_field(self) -> None:
        account = get_account(load_config(self.path), "pasted")
        self.assertEqual(account.client_secret, "raw-secret-value")
        self.assertIsNone(account.robot_code)

    def test_enabled_accounts(self) -> None:
        cfg = load_config(self.path)
        self.assertEqual(list_account_ids(cfg), ["default", "camel", "pasted"])
        self.assertFalse(get_account(cfg, "disabled").enabled)

    def test_unknown_account(self) -> None:
        cfg = load_config(self.path)
        self.assertIsNone(get_account(cfg, "nope"))
        with self.assertRaises(ConfigError):
            require_credentials(cfg, "nope")
        self.assertEqual(list_account_ids({}), [])


if __name__ == "__main__":
    unittest.main()
