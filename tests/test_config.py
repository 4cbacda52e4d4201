"""Tests for global configuration module."""

import os
import unittest
from unittest.mock import patch

from cordrest._config import (
    CORDREST,
    AuthConfig,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    CordRestConfig,
    RateLimitConfig,
    RestConfig,
)


class TestDefaults(unittest.TestCase):
    """Tests for default configuration values."""

    def setUp(self):
        CORDREST.reset()

    def tearDown(self):
        CORDREST.reset()

    def test_rest_defaults(self):
        """Should use the default REST settings."""
        self.assertEqual(CORDREST.config.rest.base_url, "https://discord.com/api/v6")
        self.assertEqual(CORDREST.config.rest.request_timeout, 30)
        self.assertEqual(CORDREST.config.rest.max_workers, 8)
        self.assertTrue(CORDREST.config.rest.user_agent)

    def test_rate_limit_defaults(self):
        """Should use the default rate limit settings."""
        self.assertEqual(CORDREST.config.rate_limit.max_retries, 3)
        self.assertEqual(CORDREST.config.rate_limit.backoff_factor, 0.5)
        self.assertEqual(CORDREST.config.rate_limit.max_retry_after, 60.0)
        self.assertTrue(CORDREST.config.rate_limit.respect_global)

    def test_auth_defaults(self):
        """Should default to bot tokens with no token set."""
        self.assertEqual(CORDREST.config.auth.token_type, "bot")

    def test_has_token_false_without_token(self):
        """Should report no token when none is set."""
        self.assertFalse(AuthConfig().has_token())
        self.assertTrue(AuthConfig(token="abc").has_token())


class TestConfigure(unittest.TestCase):
    """Tests for CORDREST.configure()."""

    def setUp(self):
        CORDREST.reset()

    def tearDown(self):
        CORDREST.reset()

    def test_configure_overrides_sections(self):
        """Should override the given fields of each section."""
        CORDREST.configure(
            rest={"request_timeout": 60, "user_agent": "MyBot (https://example.com, 1.0)"},
            rate_limit={"max_retries": 5},
            auth={"token": "abc"},
            allow_env_override=False,
        )

        self.assertEqual(CORDREST.config.rest.request_timeout, 60)
        self.assertEqual(CORDREST.config.rest.user_agent, "MyBot (https://example.com, 1.0)")
        self.assertEqual(CORDREST.config.rate_limit.max_retries, 5)
        self.assertEqual(CORDREST.config.auth.token, "abc")
        # Untouched fields keep their defaults
        self.assertEqual(CORDREST.config.rest.max_workers, 8)

    def test_configure_ignores_none_values(self):
        """Should keep defaults for None values."""
        CORDREST.configure(rest={"request_timeout": None}, allow_env_override=False)

        self.assertEqual(CORDREST.config.rest.request_timeout, 30)

    def test_configure_rejects_unknown_fields(self):
        """Should reject unknown field names."""
        with self.assertRaises(ValueError) as ctx:
            CORDREST.configure(rest={"unknown_field": 1})

        self.assertIn("unknown_field", str(ctx.exception))

    def test_configure_validates(self):
        """Should validate the new configuration."""
        with self.assertRaises(ConfigValidationError) as ctx:
            CORDREST.configure(rate_limit={"max_retries": -1})

        self.assertEqual(ctx.exception.field, "max_retries")
        self.assertEqual(ctx.exception.section, "rate_limit")

    def test_reset_restores_defaults(self):
        """Should restore defaults on reset()."""
        CORDREST.configure(rest={"request_timeout": 99}, allow_env_override=False)

        CORDREST.reset()

        self.assertEqual(CORDREST.config.rest.request_timeout, 30)


class TestEnvVars(unittest.TestCase):
    """Tests for CORDREST_* environment variables."""

    def setUp(self):
        CORDREST.reset()

    def tearDown(self):
        CORDREST.reset()

    @patch.dict(os.environ, {
        "CORDREST_REST_REQUEST_TIMEOUT": "45",
        "CORDREST_RATE_LIMIT_MAX_RETRY_AFTER": "12.5",
        "CORDREST_RATE_LIMIT_RESPECT_GLOBAL": "false",
        "CORDREST_AUTH_TOKEN": "from-env",
    })
    def test_env_vars_are_applied(self):
        """Should convert env vars to the field types."""
        config = CordRestConfig().with_env_vars()

        self.assertEqual(config.rest.request_timeout, 45)
        self.assertEqual(config.rate_limit.max_retry_after, 12.5)
        self.assertFalse(config.rate_limit.respect_global)
        self.assertEqual(config.auth.token, "from-env")

    @patch.dict(os.environ, {"CORDREST_REST_REQUEST_TIMEOUT": "45"})
    def test_configure_wins_over_env_vars(self):
        """Should prefer configure() values over env vars."""
        CORDREST.configure(rest={"request_timeout": 10})

        self.assertEqual(CORDREST.config.rest.request_timeout, 10)

    @patch.dict(os.environ, {"CORDREST_REST_MAX_WORKERS": "3"})
    def test_env_vars_fill_fields_not_configured(self):
        """Should use env vars for fields not given to configure()."""
        CORDREST.configure(rest={"request_timeout": 10})

        self.assertEqual(CORDREST.config.rest.max_workers, 3)

    @patch.dict(os.environ, {"CORDREST_REST_MAX_WORKERS": "3"})
    def test_env_vars_ignored_when_not_allowed(self):
        """Should ignore env vars when allow_env_override is False."""
        CORDREST.configure(rest={"request_timeout": 10}, allow_env_override=False)

        self.assertEqual(CORDREST.config.rest.max_workers, 8)

    @patch.dict(os.environ, {"CORDREST_REST_REQUEST_TIMEOUT": "not-a-number"})
    def test_invalid_env_var_raises(self):
        """Should raise ConfigEnvVarError for unconvertible values."""
        with self.assertRaises(ConfigEnvVarError) as ctx:
            RestConfig().with_env_vars()

        self.assertEqual(ctx.exception.env_var, "CORDREST_REST_REQUEST_TIMEOUT")
        self.assertIn("not-a-number", str(ctx.exception))


class TestValidation(unittest.TestCase):
    """Tests for section validation."""

    def test_rest_base_url_must_be_http(self):
        """Should reject non-HTTP base URLs."""
        with self.assertRaises(ConfigValidationError):
            RestConfig(base_url="ftp://example.com").validate()

    def test_rest_user_agent_not_blank(self):
        """Should reject a blank user agent."""
        with self.assertRaises(ConfigValidationError):
            RestConfig(user_agent="   ").validate()

    def test_rate_limit_backoff_factor_positive(self):
        """Should reject a non-positive backoff factor."""
        with self.assertRaises(ConfigValidationError):
            RateLimitConfig(backoff_factor=0).validate()

    def test_auth_token_type_must_be_known(self):
        """Should reject unknown token types."""
        with self.assertRaises(ConfigValidationError):
            AuthConfig(token_type="webhook").validate()

    def test_auth_token_not_blank(self):
        """Should reject a blank token."""
        with self.assertRaises(ConfigValidationError):
            AuthConfig(token=" ").validate()

    def test_valid_sections_return_self(self):
        """Should return the section itself when valid."""
        config = RestConfig()
        self.assertIs(config.validate(), config)


class TestExplain(unittest.TestCase):
    """Tests for CORDREST.explain()."""

    def setUp(self):
        CORDREST.reset()

    def tearDown(self):
        CORDREST.reset()

    def test_explain_data_tracks_sources(self):
        """Should record configure() as the source of configured fields."""
        CORDREST.configure(rate_limit={"max_retries": 7}, allow_env_override=False)

        data = CORDREST.config.explain_data()
        entries = {entry.name: entry for entry in data["rate_limit"]}

        self.assertEqual(entries["max_retries"].value, 7)
        self.assertEqual(entries["max_retries"].source, "configure")
        self.assertEqual(entries["backoff_factor"].source, "default")

    @patch.dict(os.environ, {"CORDREST_REST_MAX_WORKERS": "3"})
    def test_explain_data_tracks_env_source(self):
        """Should record the env var as the source of env fields."""
        CORDREST.reset()

        entries = {entry.name: entry for entry in CORDREST.config.explain_data()["rest"]}

        self.assertEqual(entries["max_workers"].source, "env:CORDREST_REST_MAX_WORKERS")

    def test_explain_masks_token(self):
        """Should never print the full token."""
        CORDREST.configure(auth={"token": "super-secret-token"}, allow_env_override=False)
        lines = []

        CORDREST.explain(output=lines.append)

        output = "\n".join(lines)
        self.assertNotIn("super-secret-token", output)
        self.assertIn("supe********oken", output)
        self.assertIn("[rest]", output)
        self.assertIn("[rate_limit]", output)
        self.assertIn("[auth]", output)

    def test_config_entry_formatting(self):
        """Should mask tokens and truncate long values."""
        self.assertEqual(ConfigEntry("token", "short", "configure").formatted_value, "********")
        self.assertEqual(ConfigEntry("token", None, "default").formatted_value, "None")
        self.assertTrue(ConfigEntry("base_url", "x" * 80, "default").formatted_value.endswith("..."))


if __name__ == "__main__":
    unittest.main()
