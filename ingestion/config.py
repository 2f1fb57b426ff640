"""
Pipeline settings - one validated bundle of knobs for the filing pipeline.
Values come from environment variables (optionally via a .env file).
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv


DEFAULT_FEED_URL = (
    "https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent&type={type}"
    "&company=&dateb=&owner=include&start={start}&count={count}&output=atom"
)
DEFAULT_ARCHIVES_BASE_URL = "https://www.sec.gov/Archives/edgar/data/"

# SEC fair-access policy allows 10 requests/second
MAX_REQUESTS_PER_SECOND = 10


class ConfigurationError(ValueError):
    """Raised when settings or job arguments are invalid."""
    pass


@dataclass
class PipelineSettings:
    """Settings for the filing download pipeline."""
    user_agent: str
    requests_per_second: int = 8
    batch_size: int = 100
    batch_delay_ms: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 5000
    auto_backfill: bool = False
    max_backfill_days: int = 30
    form_types: Tuple[str, ...] = ('3', '4', '5')
    max_concurrent_jobs: int = 5
    request_timeout: float = 30.0
    archives_base_url: str = DEFAULT_ARCHIVES_BASE_URL
    feed_url: str = DEFAULT_FEED_URL
    db_path: str = './data/filings.db'

    def __post_init__(self):
        """Validate settings."""
        _validate_user_agent(self.user_agent)

        if not 1 <= self.requests_per_second <= MAX_REQUESTS_PER_SECOND:
            raise ConfigurationError(
                f"requests_per_second must be between 1 and {MAX_REQUESTS_PER_SECOND}, "
                f"got {self.requests_per_second}"
            )

        if self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")

        for name in ('batch_delay_ms', 'retry_delay_ms', 'max_retries'):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative, got {getattr(self, name)}")

        if self.max_backfill_days <= 0:
            raise ConfigurationError(
                f"max_backfill_days must be positive, got {self.max_backfill_days}"
            )

        if self.max_concurrent_jobs <= 0:
            raise ConfigurationError(
                f"max_concurrent_jobs must be positive, got {self.max_concurrent_jobs}"
            )

        if self.request_timeout <= 0:
            raise ConfigurationError(f"request_timeout must be positive, got {self.request_timeout}")

        if not self.form_types:
            raise ConfigurationError("At least one form type is required")

        for placeholder in ('{type}', '{start}', '{count}'):
            if placeholder not in self.feed_url:
                raise ConfigurationError(f"feed_url is missing the {placeholder} placeholder")

        if not self.archives_base_url.endswith('/'):
            self.archives_base_url += '/'

    @property
    def batch_delay_seconds(self) -> float:
        return self.batch_delay_ms / 1000.0

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000.0

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'PipelineSettings':
        """
        Build settings from environment variables.

        Args:
            env_file: Optional path to a .env file (default: search from cwd)

        Returns:
            Validated PipelineSettings

        Raises:
            ConfigurationError: If a variable is missing or malformed
        """
        load_dotenv(env_file)

        user_agent = os.getenv('SEC_USER_AGENT')
        if not user_agent:
            raise ConfigurationError(
                "SEC_USER_AGENT environment variable is required. "
                "Set it to 'Your Name your.email@example.com'"
            )

        form_types = tuple(
            part.strip().upper()
            for part in os.getenv('PIPELINE_FORM_TYPES', '3,4,5').split(',')
            if part.strip()
        )

        return cls(
            user_agent=user_agent,
            requests_per_second=_env_int('SEC_RATE_LIMIT_RPS', 8),
            batch_size=_env_int('PIPELINE_BATCH_SIZE', 100),
            batch_delay_ms=_env_int('PIPELINE_BATCH_DELAY_MS', 1000),
            max_retries=_env_int('PIPELINE_MAX_RETRIES', 3),
            retry_delay_ms=_env_int('PIPELINE_RETRY_DELAY_MS', 5000),
            auto_backfill=_env_bool('PIPELINE_AUTO_BACKFILL', False),
            max_backfill_days=_env_int('PIPELINE_MAX_BACKFILL_DAYS', 30),
            form_types=form_types,
            max_concurrent_jobs=_env_int('PIPELINE_MAX_CONCURRENT_JOBS', 5),
            request_timeout=float(_env_int('PIPELINE_REQUEST_TIMEOUT', 30)),
            archives_base_url=os.getenv('SEC_ARCHIVES_BASE_URL', DEFAULT_ARCHIVES_BASE_URL),
            feed_url=os.getenv('SEC_FEED_URL', DEFAULT_FEED_URL),
            db_path=os.getenv('PIPELINE_DB_PATH', './data/filings.db'),
        )


def _validate_user_agent(user_agent: str) -> None:
    """SEC requires a 'Name email' style User-Agent on every request."""
    if not user_agent or '@' not in user_agent or len(user_agent.split()) < 2:
        raise ConfigurationError(
            "SEC_USER_AGENT should be in format 'Your Name your.email@example.com'. "
            "SEC requires proper identification for API access."
        )


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid {key}: {raw}. Must be integer.")


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')
