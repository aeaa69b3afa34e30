import json
import pathlib
import sys
import tempfile
import unittest


ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fleet_agent.config import (
    AgentConfig,
    ConfigError,
    check_proxy_count,
    load_config,
    load_proxies,
    load_wallets,
)


class LoadConfigTests(unittest.TestCase):
    def test_defaults(self):
        cfg = load_config(env={})
        self.assertEqual(cfg.heartbeat_interval, 30.0)
        self.assertEqual(cfg.reconnect_delay, 30.0)
        self.assertEqual(cfg.provision_retry_delay, 60.0)
        self.assertEqual(cfg.details_attempts, 3)
        self.assertEqual(cfg.medal_tiers, 8)
        self.assertEqual(cfg.data_path, pathlib.Path("data.json"))

    def test_file_then_env_precedence(self):
        with tempfile.TemporaryDirectory() as td:
            path = pathlib.Path(td) / "fleet.json"
            path.write_text(json.dumps({"heartbeat_interval": 5, "data_path": "from-file.json"}))
            cfg = load_config(path, env={"FLEET_DATA_PATH": "from-env.json"})
            self.assertEqual(cfg.heartbeat_interval, 5)
            self.assertEqual(cfg.data_path, pathlib.Path("from-env.json"))

    def test_unknown_keys_rejected(self):
        with tempfile.TemporaryDirectory() as td:
            path = pathlib.Path(td) / "fleet.json"
            path.write_text(json.dumps({"heartbeat_intervall": 5}))
            with self.assertRaises(ConfigError):
                load_config(path, env={})

    def test_urls_are_joined_under_api_v1(self):
        cfg = AgentConfig(api_base_url="https://api.test/", rewards_base_url="https://rw.test")
        self.assertEqual(cfg.api_url("users/me"), "https://api.test/api/v1/users/me")
        self.assertEqual(cfg.rewards_url("/claim_tier"), "https://rw.test/api/v1/claim_tier")


class InputListTests(unittest.TestCase):
    def test_wallets_are_whitespace_delimited(self):
        with tempfile.TemporaryDirectory() as td:
            path = pathlib.Path(td) / "account.txt"
            path.write_text("0x1\n0x2  0x3\n\n")
            self.assertEqual(load_wallets(path), ["0x1", "0x2", "0x3"])

    def test_missing_or_empty_wallet_list_is_fatal(self):
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ConfigError):
                load_wallets(pathlib.Path(td) / "absent.txt")
            empty = pathlib.Path(td) / "account.txt"
            empty.write_text("  \n")
            with self.assertRaises(ConfigError):
                load_wallets(empty)

    def test_missing_proxy_list_means_no_proxies(self):
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(load_proxies(pathlib.Path(td) / "absent.txt"), [])

    def test_proxy_count_check(self):
        check_proxy_count(["a", "b"], [])
        check_proxy_count(["a", "b"], ["p1", "p2", "p3"])
        with self.assertRaises(ConfigError):
            check_proxy_count(["a", "b", "c"], ["p1"])


if __name__ == "__main__":
    unittest.main()
