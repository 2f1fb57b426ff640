"""
Tests for pipeline settings - defaults, validation and environment loading.
"""

import os
import pytest
from unittest.mock import patch

from ingestion.config import (
    ConfigurationError,
    DEFAULT_ARCHIVES_BASE_URL,
    PipelineSettings,
)


USER_AGENT = 'Test User test@example.com'


class TestPipelineSettings:
    """Tests for PipelineSettings validation."""

    def test_defaults(self):
        """Defaults match the documented configuration."""
        settings = PipelineSettings(user_agent=USER_AGENT)

        assert settings.requests_per_second == 8
        assert settings.batch_size == 100
        assert settings.batch_delay_ms == 1000
        assert settings.max_retries == 3
        assert settings.retry_delay_ms == 5000
        assert settings.auto_backfill is False
        assert settings.max_backfill_days == 30
        assert settings.form_types == ('3', '4', '5')
        assert settings.max_concurrent_jobs == 5
        assert settings.archives_base_url == DEFAULT_ARCHIVES_BASE_URL

    def test_delay_properties(self):
        settings = PipelineSettings(user_agent=USER_AGENT, batch_delay_ms=250, retry_delay_ms=1500)

        assert settings.batch_delay_seconds == 0.25
        assert settings.retry_delay_seconds == 1.5

    @pytest.mark.parametrize('user_agent', ['', 'nobody', 'test@example.com'])
    def test_invalid_user_agent(self, user_agent):
        """User agent must look like 'Name email'."""
        with pytest.raises(ConfigurationError, match="SEC_USER_AGENT"):
            PipelineSettings(user_agent=user_agent)

    @pytest.mark.parametrize('rps', [0, 11, -1])
    def test_rate_limit_out_of_range(self, rps):
        with pytest.raises(ConfigurationError, match="requests_per_second"):
            PipelineSettings(user_agent=USER_AGENT, requests_per_second=rps)

    def test_negative_delay_rejected(self):
        with pytest.raises(ConfigurationError, match="batch_delay_ms"):
            PipelineSettings(user_agent=USER_AGENT, batch_delay_ms=-1)

    def test_feed_url_needs_placeholders(self):
        with pytest.raises(ConfigurationError, match="count"):
            PipelineSettings(user_agent=USER_AGENT, feed_url='https://example.com/?type={type}&start={start}')

    def test_archives_base_url_gets_trailing_slash(self):
        settings = PipelineSettings(user_agent=USER_AGENT, archives_base_url='https://example.com/data')
        assert settings.archives_base_url == 'https://example.com/data/'


class TestFromEnv:
    """Tests for PipelineSettings.from_env()."""

    @patch.dict(os.environ, {
        'SEC_USER_AGENT': USER_AGENT,
        'SEC_RATE_LIMIT_RPS': '5',
        'PIPELINE_BATCH_SIZE': '40',
        'PIPELINE_AUTO_BACKFILL': 'true',
        'PIPELINE_FORM_TYPES': '4, 8-k ,13F-HR',
        'PIPELINE_DB_PATH': '/tmp/filings-test.db',
    }, clear=True)
    def test_reads_environment(self):
        settings = PipelineSettings.from_env()

        assert settings.user_agent == USER_AGENT
        assert settings.requests_per_second == 5
        assert settings.batch_size == 40
        assert settings.auto_backfill is True
        assert settings.form_types == ('4', '8-K', '13F-HR')
        assert settings.db_path == '/tmp/filings-test.db'
        # untouched keys keep their defaults
        assert settings.max_retries == 3

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_user_agent(self):
        with pytest.raises(ConfigurationError, match="SEC_USER_AGENT environment variable is required"):
            PipelineSettings.from_env()

    @patch.dict(os.environ, {'SEC_USER_AGENT': USER_AGENT, 'PIPELINE_MAX_RETRIES': 'three'}, clear=True)
    def test_non_integer_value_names_key(self):
        with pytest.raises(ConfigurationError, match="PIPELINE_MAX_RETRIES"):
            PipelineSettings.from_env()

    @patch.dict(os.environ, {'SEC_USER_AGENT': USER_AGENT, 'SEC_RATE_LIMIT_RPS': '20'}, clear=True)
    def test_rate_limit_above_policy(self):
        with pytest.raises(ConfigurationError):
            PipelineSettings.from_env()
