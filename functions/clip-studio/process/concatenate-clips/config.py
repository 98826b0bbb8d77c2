import os
from functools import lru_cache
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

import constants
from exceptions import ConfigurationError


class PollingBounds(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(ge=1)
    interval_ms: int = Field(ge=0)
    backoff: float = Field(1.0, ge=1.0)
    max_interval_ms: Optional[int] = None


class PipelineConfig(BaseModel):
    """
    Process-wide configuration. Built once at start-up from the environment,
    validated eagerly and never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True)

    environment: str = "dev"
    aws_region: str = "us-east-1"
    catalog_table: str = Field(min_length=1)
    jobs_table: str = Field(min_length=1)
    results_bucket: str = Field(min_length=1)
    results_public_base_url: Optional[str] = None

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    creatomate_api_key: Optional[str] = None

    asset_polling: PollingBounds = PollingBounds(
        max_attempts=constants.DEFAULT_ASSET_POLL_MAX_ATTEMPTS,
        interval_ms=constants.DEFAULT_ASSET_POLL_INTERVAL_MS,
    )
    render_polling: PollingBounds = PollingBounds(
        max_attempts=constants.DEFAULT_RENDER_POLL_MAX_ATTEMPTS,
        interval_ms=constants.DEFAULT_RENDER_POLL_INTERVAL_MS,
    )

    download_timeout_seconds: float = Field(constants.DEFAULT_DOWNLOAD_TIMEOUT_SECONDS, gt=0)
    max_download_bytes: int = Field(constants.DEFAULT_MAX_DOWNLOAD_BYTES, gt=0)
    inline_publish_max_bytes: int = Field(
        constants.DEFAULT_INLINE_PUBLISH_MAX_BYTES, ge=0, le=constants.MAX_INLINE_PUBLISH_BYTES
    )

    @model_validator(mode="after")
    def _cloudinary_all_or_nothing(self) -> "PipelineConfig":
        parts = [self.cloudinary_cloud_name, self.cloudinary_api_key, self.cloudinary_api_secret]
        if any(parts) and not all(parts):
            raise ValueError(
                "CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET must be set together"
            )
        return self

    @property
    def remote_concatenation_available(self) -> bool:
        return bool(self.cloudinary_cloud_name)

    @property
    def template_rendering_available(self) -> bool:
        return bool(self.creatomate_api_key)

    @classmethod
    def from_env(cls, env: Mapping[str, str] = None) -> "PipelineConfig":
        env = os.environ if env is None else env

        def _get(name: str) -> Optional[str]:
            value = env.get(name)
            return value.strip() if value and value.strip() else None

        try:
            return cls(
                environment=(_get("ENVIRONMENT") or "dev").lower(),
                aws_region=_get("AWS_REGION") or "us-east-1",
                catalog_table=_get("CATALOG_TABLE") or constants.CATALOG_DYNAMODB_TABLE,
                jobs_table=_get("JOBS_TABLE") or constants.JOBS_DYNAMODB_TABLE,
                results_bucket=_get("RESULTS_BUCKET") or "",
                results_public_base_url=_get("RESULTS_PUBLIC_BASE_URL"),
                cloudinary_cloud_name=_get("CLOUDINARY_CLOUD_NAME"),
                cloudinary_api_key=_get("CLOUDINARY_API_KEY"),
                cloudinary_api_secret=_get("CLOUDINARY_API_SECRET"),
                creatomate_api_key=_get("CREATOMATE_API_KEY"),
                asset_polling=PollingBounds(
                    max_attempts=int(_get("ASSET_POLL_MAX_ATTEMPTS") or constants.DEFAULT_ASSET_POLL_MAX_ATTEMPTS),
                    interval_ms=int(_get("ASSET_POLL_INTERVAL_MS") or constants.DEFAULT_ASSET_POLL_INTERVAL_MS),
                ),
                render_polling=PollingBounds(
                    max_attempts=int(_get("RENDER_POLL_MAX_ATTEMPTS") or constants.DEFAULT_RENDER_POLL_MAX_ATTEMPTS),
                    interval_ms=int(_get("RENDER_POLL_INTERVAL_MS") or constants.DEFAULT_RENDER_POLL_INTERVAL_MS),
                ),
                download_timeout_seconds=float(
                    _get("DOWNLOAD_TIMEOUT_SECONDS") or constants.DEFAULT_DOWNLOAD_TIMEOUT_SECONDS
                ),
                max_download_bytes=int(_get("MAX_DOWNLOAD_BYTES") or constants.DEFAULT_MAX_DOWNLOAD_BYTES),
                inline_publish_max_bytes=int(
                    _get("INLINE_PUBLISH_MAX_BYTES") or constants.DEFAULT_INLINE_PUBLISH_MAX_BYTES
                ),
            )
        except (PydanticValidationError, ValueError) as e:
            raise ConfigurationError(f"Invalid pipeline configuration: {e}") from e


@lru_cache(maxsize=1)
def get_config() -> PipelineConfig:
    return PipelineConfig.from_env()
