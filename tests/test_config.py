import pytest

from config import PipelineConfig
from exceptions import ConfigurationError

BASE_ENV = {
    "RESULTS_BUCKET": "clip-studio-results",
    "CATALOG_TABLE": "catalog",
    "JOBS_TABLE": "jobs",
}


def test_minimal_environment():
    config = PipelineConfig.from_env(BASE_ENV)

    assert config.results_bucket == "clip-studio-results"
    assert config.remote_concatenation_available is False
    assert config.template_rendering_available is False
    assert config.asset_polling.max_attempts == 10
    assert config.asset_polling.interval_ms == 2000
    assert config.render_polling.max_attempts == 60
    assert config.inline_publish_max_bytes == 200 * 1024


def test_full_environment():
    env = dict(
        BASE_ENV,
        ENVIRONMENT="PROD",
        CLOUDINARY_CLOUD_NAME="demo",
        CLOUDINARY_API_KEY="key",
        CLOUDINARY_API_SECRET="secret",
        CREATOMATE_API_KEY="token",
        ASSET_POLL_MAX_ATTEMPTS="4",
        RENDER_POLL_INTERVAL_MS="250",
    )

    config = PipelineConfig.from_env(env)

    assert config.environment == "prod"
    assert config.remote_concatenation_available is True
    assert config.template_rendering_available is True
    assert config.asset_polling.max_attempts == 4
    assert config.render_polling.interval_ms == 250


def test_missing_bucket_is_rejected():
    env = dict(BASE_ENV)
    del env["RESULTS_BUCKET"]

    with pytest.raises(ConfigurationError):
        PipelineConfig.from_env(env)


def test_partial_media_host_credentials_are_rejected():
    with pytest.raises(ConfigurationError, match="CLOUDINARY"):
        PipelineConfig.from_env(dict(BASE_ENV, CLOUDINARY_CLOUD_NAME="demo"))


@pytest.mark.parametrize("name, value", [
    ("ASSET_POLL_MAX_ATTEMPTS", "0"),
    ("ASSET_POLL_MAX_ATTEMPTS", "many"),
    ("MAX_DOWNLOAD_BYTES", "-1"),
    ("INLINE_PUBLISH_MAX_BYTES", str(5 * 1024 * 1024)),
])
def test_invalid_numbers_are_rejected(name, value):
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_env(dict(BASE_ENV, **{name: value}))


def test_blank_values_count_as_unset():
    config = PipelineConfig.from_env(dict(BASE_ENV, CREATOMATE_API_KEY="   "))
    assert config.creatomate_api_key is None


def test_config_is_immutable(config):
    with pytest.raises(Exception):
        config.results_bucket = "other"
