"""Tests for configuration loading helpers."""

import os
import unittest

from oddsflow.config import Config

_PREFIXES = ("ODDSFLOW_", "SUPABASE_", "VITE_", "ODDS_", "NEXT_PUBLIC_ODDS_", "TELEGRAM_", "BOT_TOKEN", "MINIAPP_URL", "CORS_ORIGINS")


def _is_config_key(key: str) -> bool:
    return key.startswith(_PREFIXES)


class ConfigEnvTestCase(unittest.TestCase):
    """Ensure config-related environment variables are isolated per test."""

    def setUp(self) -> None:  # noqa: D401 - short description inherited
        self._original_env = {
            key: os.environ[key] for key in os.environ if _is_config_key(key)
        }
        for key in list(os.environ):
            if _is_config_key(key):
                del os.environ[key]

    def tearDown(self) -> None:
        for key in list(os.environ):
            if _is_config_key(key):
                del os.environ[key]
        for key, value in self._original_env.items():
            os.environ[key] = value


class TestConfig(ConfigEnvTestCase):
    def test_defaults(self) -> None:
        cfg = Config()

        self.assertEqual(cfg.SUPABASE_URL, "")
        self.assertEqual(cfg.FEED_LIMIT, 0)
        self.assertEqual(cfg.BACKOFF_BASE, 1.0)
        self.assertEqual(cfg.RESYNC_AFTER, 5.0)
        self.assertEqual(cfg.backend_credentials, {})
        cfg.validate()

    def test_first_matching_alias_wins(self) -> None:
        os.environ["VITE_SUPABASE_URL"] = "https://vite.supabase.co"
        os.environ["SUPABASE_URL"] = "https://plain.supabase.co"
        os.environ["SUPABASE_ANON_KEY"] = "anon"
        os.environ["NEXT_PUBLIC_ODDS_SUPABASE_URL"] = "https://odds.supabase.co"
        os.environ["ODDS_SUPABASE_KEY"] = "odds-key"

        cfg = Config()

        self.assertEqual(cfg.SUPABASE_URL, "https://plain.supabase.co")
        self.assertEqual(
            cfg.backend_credentials,
            {
                "main": ("https://plain.supabase.co", "anon"),
                "odds": ("https://odds.supabase.co", "odds-key"),
            },
        )

    def test_blank_values_are_ignored(self) -> None:
        os.environ["ODDSFLOW_SUPABASE_URL"] = "   "
        os.environ["SUPABASE_URL"] = "https://fallback.supabase.co"

        self.assertEqual(Config().SUPABASE_URL, "https://fallback.supabase.co")

    def test_invalid_number_raises(self) -> None:
        os.environ["ODDSFLOW_BACKOFF_MAX"] = "soon"

        with self.assertRaises(ValueError):
            Config()

    def test_half_configured_project_fails_validation(self) -> None:
        os.environ["ODDSFLOW_SUPABASE_URL"] = "https://x.supabase.co"

        with self.assertRaises(ValueError):
            Config().validate()

    def test_backoff_sanity_checks(self) -> None:
        os.environ["ODDSFLOW_BACKOFF_BASE"] = "10"
        os.environ["ODDSFLOW_BACKOFF_MAX"] = "5"

        with self.assertRaises(ValueError):
            Config().validate()

    def test_cors_origins_include_miniapp_url(self) -> None:
        os.environ["ODDSFLOW_MINIAPP_URL"] = "https://radar.example.com/"
        os.environ["ODDSFLOW_CORS_ORIGINS"] = "https://a.example.com, https://t.me"

        cfg = Config()

        self.assertEqual(
            cfg.CORS_ORIGINS,
            [
                "https://t.me",
                "https://web.telegram.org",
                "https://radar.example.com",
                "https://a.example.com",
            ],
        )

    def test_session_settings(self) -> None:
        os.environ["ODDSFLOW_BOT_TOKEN"] = "123:abc"
        os.environ["TELEGRAM_JWT_TTL"] = "5"

        cfg = Config()

        self.assertEqual(cfg.JWT_SECRET, "123:abc")
        self.assertEqual(cfg.JWT_TTL, 60)
        self.assertEqual(cfg.INITDATA_MAX_AGE, 600)

        os.environ["ODDSFLOW_JWT_SECRET"] = "dedicated"
        os.environ["ODDSFLOW_INITDATA_MAX_AGE"] = "0"
        cfg = Config()

        self.assertEqual(cfg.JWT_SECRET, "dedicated")
        self.assertEqual(cfg.INITDATA_MAX_AGE, 0)

    def test_bot_validation_requires_token_and_https_url(self) -> None:
        os.environ["ODDSFLOW_MINIAPP_URL"] = "http://radar.example.com"

        with self.assertRaises(ValueError):
            Config().validate_bot()

        os.environ["ODDSFLOW_BOT_TOKEN"] = "123:abc"
        with self.assertRaises(ValueError):
            Config().validate_bot()

        os.environ["ODDSFLOW_MINIAPP_URL"] = "https://radar.example.com"
        Config().validate_bot()


if __name__ == "__main__":
    unittest.main()
