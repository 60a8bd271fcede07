"""Tests for configuration module."""

import pytest
from pydantic import ValidationError

from hybrid_search.config import Settings, get_settings


class TestSettings:
    """Tests for Settings configuration."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        settings = Settings(_env_file=None)

        assert settings.search_host == "0.0.0.0"
        assert settings.search_port == 5002
        assert settings.qdrant_collection == "documents"
        assert settings.qdrant_vector_name == "text_dense"
        assert settings.namespace_field == "namespace"
        assert settings.search_default_k == 6
        assert settings.search_score_threshold == 0.1
        assert settings.semantic_score_threshold == 0.5
        assert settings.cache_ttl == 600.0
        assert settings.retry_max_retries == 3
        assert settings.circuit_max_failures == 5
        assert settings.upsert_batch_size == 15

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test values are read from environment variables."""
        monkeypatch.setenv("QDRANT_URL", "http://qdrant:6333")
        monkeypatch.setenv("NAMESPACE_FANOUT", "4")

        settings = Settings(_env_file=None)

        assert settings.qdrant_url == "http://qdrant:6333"
        assert settings.namespace_fanout == 4

    def test_namespace_aliases_from_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test alias maps are parsed from JSON."""
        monkeypatch.setenv("NAMESPACE_ALIASES", '{"rain": ["mazha", "barish"]}')

        settings = Settings(_env_file=None)

        assert settings.namespace_aliases == {"rain": ["mazha", "barish"]}

    def test_cors_origins_from_string(self) -> None:
        """Test parsing CORS origins from comma-separated string."""
        settings = Settings(
            _env_file=None,
            cors_origins="http://localhost:3000, http://localhost:5000",
        )
        assert settings.cors_origins == ["http://localhost:3000", "http://localhost:5000"]

    def test_cors_origins_from_json(self) -> None:
        """Test parsing CORS origins from JSON array string."""
        settings = Settings(
            _env_file=None,
            cors_origins='["http://localhost:3000", "http://localhost:5000"]',
        )
        assert settings.cors_origins == ["http://localhost:3000", "http://localhost:5000"]

    def test_cors_origins_invalid_json(self) -> None:
        """Test malformed JSON for CORS origins is rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, cors_origins='["http://localhost:3000"')

    @pytest.mark.parametrize(
        "field", ["namespace_threshold_factor", "namespace_fallback_threshold_factor"]
    )
    def test_threshold_factor_range(self, field: str) -> None:
        """Test threshold multipliers outside [0, 1] are rejected."""
        with pytest.raises(ValidationError, match="between 0 and 1"):
            Settings(_env_file=None, **{field: 1.5})

    def test_get_settings_cached(self) -> None:
        """Test get_settings returns the same instance."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
