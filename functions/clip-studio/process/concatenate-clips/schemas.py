import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

import constants
from exceptions import InvalidStateTransitionError, ValidationError


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    READY_TO_CONCATENATE = "ready_to_concatenate"
    COMPLETED = "completed"
    FAILED = "failed"


# Forward-only lifecycle; FAILED is reachable from every non-terminal state.
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.IN_PROGRESS, JobStatus.FAILED},
    JobStatus.IN_PROGRESS: {JobStatus.READY_TO_CONCATENATE, JobStatus.FAILED},
    JobStatus.READY_TO_CONCATENATE: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class ResourceKind(str, Enum):
    VIDEO = "video"
    RAW = "raw"
    RENDER = "render"


class ProgressPhase(str, Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    DOWNLOADING = "downloading"
    TRIMMING = "trimming"
    CONCATENATING = "concatenating"
    RENDERING = "rendering"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class StrategyKind(str, Enum):
    TRANSFORMATION_CHAIN = "transformation_chain"
    MANIFEST = "manifest"
    BINARY_CONCAT = "binary_concat"
    TEMPLATE_RENDER = "template_render"


class CatalogAsset(BaseModel):
    """Snapshot of a catalog row, fetched at job-submission time."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    duration_seconds: float = 0.0
    hosted_url: str = ""
    active: bool = True
    category: Optional[str] = None
    created_at: Optional[str] = None


class ClipReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = ""
    duration_seconds: float = Field(gt=0)
    source_url: str = Field(min_length=1)
    public_id: str = Field(min_length=1)
    order: int = Field(ge=0)


class TrimPlanEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    clip_id: str
    original_duration: float
    trimmed_duration: float


class SupersSettings(BaseModel):
    text: str = ""
    position: Literal["top", "center", "bottom"] = "bottom"
    style: Literal["bold", "light", "outline"] = "bold"


class EndFrameSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    text: str = ""
    logo_position: Literal["center", "corner"] = Field("center", alias="logoPosition")


class CtaSettings(BaseModel):
    enabled: bool = False
    text: str = ""
    style: Literal["button", "text", "animated"] = "button"


class Customization(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    supers: SupersSettings = Field(default_factory=SupersSettings)
    end_frame: EndFrameSettings = Field(default_factory=EndFrameSettings, alias="endFrame")
    cta: CtaSettings = Field(default_factory=CtaSettings)

    def has_overlays(self) -> bool:
        """True when anything has to be burned into the pixels."""
        return bool(
            self.supers.text.strip()
            or self.end_frame.enabled
            or (self.cta.enabled and self.cta.text.strip())
        )


class ExportRequest(BaseModel):
    """The payload submitted by the export step of the wizard."""
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(min_length=1, alias="jobId")
    selected_clip_ids: List[str] = Field(alias="selectedClipIds")
    target_duration: float = Field(alias="targetDuration")
    platform: str
    language: str = "en"
    customization: Customization = Field(default_factory=Customization)

    @field_validator("selected_clip_ids")
    @classmethod
    def _selection_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one clip must be selected")
        return value

    @field_validator("target_duration")
    @classmethod
    def _positive_duration(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("target duration must be a positive number of seconds")
        return value

    @field_validator("platform")
    @classmethod
    def _known_platform(cls, value: str) -> str:
        platform = (value or "").lower()
        if platform not in constants.PLATFORM_DIMENSIONS:
            raise ValueError(f"unsupported platform '{value}'")
        return platform

    @field_validator("language")
    @classmethod
    def _known_language(cls, value: str) -> str:
        if value not in constants.SUPPORTED_LANGUAGES:
            raise ValueError(f"unsupported language '{value}'")
        return value


def parse_export_request(payload: Dict[str, Any]) -> ExportRequest:
    """Validate a raw payload, turning pydantic errors into a ValidationError."""
    try:
        return ExportRequest.model_validate(payload)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid export request: {details}") from e


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: ProgressPhase
    percent: int = Field(ge=0, le=100)


class ResourceStatus(BaseModel):
    """What a status source reports about one remote resource."""
    state: Literal["pending", "ready", "failed"]
    url: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[str] = None


class StrategyResult(BaseModel):
    strategy: StrategyKind
    final_url: Optional[str] = None
    payload: Optional[bytes] = None
    clip_order: List[str] = Field(default_factory=list)
    degraded: bool = False
    manifest: Optional[str] = None
    template: Optional[Dict[str, Any]] = None


class CleanupReport(BaseModel):
    deleted: List[str] = Field(default_factory=list)
    already_absent: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.deleted) + len(self.failed)


class PublishResult(BaseModel):
    public_url: str
    filename: str
    mode: Literal["inline", "storage"]
    size_bytes: int


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProcessingJob(BaseModel):
    job_id: str
    clips: List[ClipReference] = Field(default_factory=list)
    target_duration: float
    platform: str
    language: str = "en"
    status: JobStatus = JobStatus.PENDING
    phase: ProgressPhase = ProgressPhase.PENDING
    progress: int = 0
    temporary_asset_ids: Set[str] = Field(default_factory=set)
    temporary_asset_kinds: Dict[str, ResourceKind] = Field(default_factory=dict)
    strategy: Optional[StrategyKind] = None
    degraded: bool = False
    public_url: Optional[str] = None
    filename: Optional[str] = None
    error: Optional[str] = None
    cancel_requested: bool = False
    created_at: str = Field(default_factory=_utc_now)
    updated_at: str = Field(default_factory=_utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def transition_to(self, target: JobStatus) -> None:
        if target == self.status:
            return
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateTransitionError(self.job_id, self.status.value, target.value)
        self.status = target
        self.updated_at = _utc_now()

    def register_temporary_asset(self, asset_id: str, kind: ResourceKind) -> None:
        self.temporary_asset_ids.add(asset_id)
        self.temporary_asset_kinds[asset_id] = kind

    def forget_temporary_assets(self, asset_ids: List[str]) -> None:
        for asset_id in asset_ids:
            self.temporary_asset_ids.discard(asset_id)
            self.temporary_asset_kinds.pop(asset_id, None)
