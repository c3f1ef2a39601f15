"""Settings validation for delivery timing."""

import pytest
from pydantic import ValidationError

from renewhook.common.config import CommonSettings


def test_attempt_timeout_must_be_below_processing_timeout():
    with pytest.raises(ValidationError, match="PROCESSING_TIMEOUT_SECONDS"):
        CommonSettings(
            _env_file=None,
            postgres_dsn="sqlite+pysqlite:///:memory:",
            webhook_timeout_seconds=60,
            processing_timeout_seconds=60,
        )


def test_default_timing_is_accepted():
    config = CommonSettings(_env_file=None, postgres_dsn="sqlite+pysqlite:///:memory:")

    assert config.webhook_timeout_seconds < config.processing_timeout_seconds
