"""Tests for relay configuration loading and validation."""

import json
import os
from unittest import TestCase
from unittest.mock import patch

from scripts.validate_config import CONFIG_PATH, validate_relay_config
from shared.config.relay import MIN_POLL_INTERVAL, load_app_config


class TestLoadAppConfig(TestCase):
    """Test cases for load_app_config."""

    def test_defaults(self):
        cfg = load_app_config({}, use_env=False)

        self.assertEqual(cfg.discovery.site_url, "https://ppv.to/")
        self.assertEqual(cfg.discovery.landing_timeout_ms, 30000)
        self.assertEqual(cfg.resolver.navigation_timeout_ms, 25000)
        self.assertEqual(cfg.resolver.initial_wait, 8.0)
        self.assertEqual(cfg.server.port, 7000)
        self.assertTrue(cfg.browser.headless)

    def test_json_values_are_coerced(self):
        cfg = load_app_config({
            "server": {"port": "8080"},
            "resolver": {"initial_wait": 3},
            "discovery": {"excluded_paths": ["/live/sports", "/live/all"]},
            "browser": {"headless": "false"},
        }, use_env=False)

        self.assertEqual(cfg.server.port, 8080)
        self.assertEqual(cfg.resolver.initial_wait, 3.0)
        self.assertEqual(cfg.discovery.excluded_paths, ("/live/sports", "/live/all"))
        self.assertFalse(cfg.browser.headless)

    def test_invalid_values_keep_defaults(self):
        cfg = load_app_config({
            "server": {"port": "not-a-port", "unknown": 1},
            "browser": {"headless": "maybe"},
            "scheduler": "every minute",
        }, use_env=False)

        self.assertEqual(cfg.server.port, 7000)
        self.assertTrue(cfg.browser.headless)
        self.assertEqual(cfg.scheduler.interval_seconds, 600.0)

    def test_interval_is_clamped(self):
        cfg = load_app_config({"scheduler": {"interval_seconds": 1}}, use_env=False)
        self.assertEqual(cfg.scheduler.interval_seconds, 30.0)

    def test_poll_interval_has_floor(self):
        """Test that a zero poll interval cannot stall manifest capture."""
        cfg = load_app_config({"resolver": {"poll_interval": 0}}, use_env=False)
        self.assertEqual(cfg.resolver.poll_interval, MIN_POLL_INTERVAL)
        self.assertGreater(cfg.resolver.poll_interval, 0)

    def test_public_base_url_trailing_slash(self):
        cfg = load_app_config({"proxy": {"public_base_url": "https://relay.example/"}}, use_env=False)
        self.assertEqual(cfg.proxy.public_base_url, "https://relay.example")

    def test_environment_overrides(self):
        env = {
            "PPVRELAY_PORT": "9001",
            "PPVRELAY_HEADLESS": "0",
            "PPVRELAY_PUBLIC_BASE_URL": "https://relay.example/",
            "PPVRELAY_CHROME_PATH": "/usr/bin/chromium",
        }
        with patch.dict(os.environ, env):
            cfg = load_app_config({"server": {"port": 7100}})

        self.assertEqual(cfg.server.port, 9001)
        self.assertFalse(cfg.browser.headless)
        self.assertEqual(cfg.proxy.public_base_url, "https://relay.example")
        self.assertEqual(cfg.browser.executable_path, "/usr/bin/chromium")


class TestValidateRelayConfig(TestCase):
    """Test cases for the relay.json validator."""

    def test_shipped_config_is_valid(self):
        with CONFIG_PATH.open("r", encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(validate_relay_config(data), [])

    def test_reports_wrong_types(self):
        problems = validate_relay_config({
            "server": {"port": "7000"},
            "browser": {"headless": 1},
            "resolver": {"initial_wait": True},
            "proxy": [],
        })

        self.assertIn("'server.port' must be int", problems)
        self.assertIn("'browser.headless' must be bool", problems)
        self.assertIn("'resolver.initial_wait' must not be a boolean", problems)
        self.assertIn("'proxy' must be an object", problems)

    def test_reports_non_positive_waits(self):
        problems = validate_relay_config({"resolver": {"poll_interval": 0, "initial_wait": -1}})
        self.assertEqual(problems, [
            "'resolver.poll_interval' must be greater than 0",
            "'resolver.initial_wait' must be greater than 0",
        ])

    def test_reports_port_range(self):
        problems = validate_relay_config({"server": {"port": 70000}})
        self.assertEqual(problems, ["'server.port' must be between 1 and 65535"])
