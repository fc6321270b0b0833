"""Tests for configuration management and validation.

Validates GlobalConfig behavior including:
- Environment variable loading precedence
- Pydantic validation rules
- Path and country-code normalization
- Singleton cache behavior

Testing Philosophy:
    Configuration errors should fail-fast at startup, not during runtime.
    These tests ensure invalid configurations are caught immediately.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from config.settings import GlobalConfig


class TestGlobalConfigValidation:
    """Test suite for GlobalConfig validation rules."""

    def test_default_values_are_sane(self, mock_config: GlobalConfig) -> None:
        """Verify defaults match the documented session behaviour."""
        assert mock_config.headless is True
        assert mock_config.navigation_timeout_ms == 60000
        assert mock_config.readiness_timeout_ms == 30000
        assert mock_config.click_timeout_ms == 5000
        assert mock_config.reviews_inline_threshold == 24
        assert mock_config.reviews_no_growth_limit == 4
        assert mock_config.proxy_default_batch == 6
        assert mock_config.proxy_candidate_countries == 4
        assert mock_config.aggregator_queue_size >= 1

    def test_run_retry_attempts_bounds(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify run_retry_attempts rejects zero and excessive values."""
        from config.settings import get_config

        get_config.cache_clear()

        monkeypatch.setenv("RUN_RETRY_ATTEMPTS", "0")
        with pytest.raises(ValidationError) as exc_info:
            get_config()
        assert "run_retry_attempts" in str(exc_info.value)

        get_config.cache_clear()

        monkeypatch.setenv("RUN_RETRY_ATTEMPTS", "50")
        with pytest.raises(ValidationError):
            get_config()

        get_config.cache_clear()

    def test_navigation_timeout_range(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify navigation timeout stays within 5s-180s."""
        from config.settings import get_config

        get_config.cache_clear()

        monkeypatch.setenv("NAVIGATION_TIMEOUT_MS", "100")
        with pytest.raises(ValidationError):
            get_config()

        get_config.cache_clear()

    def test_path_field_normalization(self, mock_config: GlobalConfig) -> None:
        """Verify string paths are converted to Path objects."""
        assert isinstance(mock_config.log_dir, Path)
        assert isinstance(mock_config.data_dir, Path)

    def test_default_country_is_lowercased(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify the default proxy country is normalized for table lookups."""
        from config.settings import get_config

        get_config.cache_clear()

        monkeypatch.setenv("PROXY_DEFAULT_COUNTRY", " GB ")
        assert get_config().proxy_default_country == "gb"

        get_config.cache_clear()

    def test_persistence_enabled_requires_both_credentials(
        self, mock_config: GlobalConfig
    ) -> None:
        """Verify persistence is only enabled with URL and key."""
        assert mock_config.persistence_enabled is False

        partial = mock_config.model_copy(update={"supabase_url": "https://x.supabase.co"})
        assert partial.persistence_enabled is False

        full = partial.model_copy(update={"supabase_key": "service-key"})
        assert full.persistence_enabled is True


class TestConfigSingletonBehavior:
    """Test suite for get_config() singleton caching."""

    def test_singleton_returns_same_instance(self, mock_config: GlobalConfig) -> None:
        """Verify get_config() returns cached instance within same scope."""
        from config.settings import get_config

        assert get_config() is get_config()

    def test_cache_clear_forces_new_instance(
        self, mock_config: GlobalConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify cache_clear() allows reconfiguration."""
        from config.settings import get_config

        config1 = get_config()

        get_config.cache_clear()
        monkeypatch.setenv("APP_NAME", "NewApp")

        config2 = get_config()

        assert config1 is not config2
        assert config2.app_name == "NewApp"

        get_config.cache_clear()


class TestEnvironmentVariableOverrides:
    """Test suite for environment variable precedence."""

    def test_env_var_overrides_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify environment variables override default values."""
        from config.settings import get_config

        get_config.cache_clear()

        monkeypatch.setenv("REVIEWS_INLINE_THRESHOLD", "10")

        config = get_config()
        assert config.reviews_inline_threshold == 10

        get_config.cache_clear()

    def test_boolean_env_var_parsing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify boolean environment variables are parsed correctly."""
        from config.settings import get_config

        test_cases = [
            ("true", True),
            ("1", True),
            ("yes", True),
            ("false", False),
            ("0", False),
            ("no", False),
        ]

        for env_value, expected in test_cases:
            get_config.cache_clear()
            monkeypatch.setenv("HEADLESS", env_value)
            config = get_config()
            assert config.headless is expected, f"Failed for {env_value}"

        get_config.cache_clear()

    def test_user_agents_from_json_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify list settings are read as JSON from the environment."""
        from config.settings import get_config

        get_config.cache_clear()

        monkeypatch.setenv("USER_AGENTS", '["Agent/1.0", "Agent/2.0"]')
        assert get_config().user_agents == ["Agent/1.0", "Agent/2.0"]

        get_config.cache_clear()
