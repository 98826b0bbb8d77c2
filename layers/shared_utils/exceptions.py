"""Custom exception classes for the Clip Studio service."""


class ClipStudioError(Exception):
    """Base class for every error raised by the concatenation pipeline."""
    pass


class ValidationError(ClipStudioError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(ClipStudioError):
    """Raised when required configuration is missing or malformed."""
    pass


class DynamoDBError(ClipStudioError):
    """Raised when DynamoDB operations fail."""
    pass


class AssetResolutionError(ClipStudioError):
    """Raised when no selected clip can be resolved to a hosted asset."""
    pass


class RemoteStrategyError(ClipStudioError):
    """Raised when a concatenation/render strategy is rejected by the backend."""

    def __init__(self, strategy: str, reason: str):
        self.strategy = strategy
        self.reason = reason
        super().__init__(f"Strategy '{strategy}' failed: {reason}")


class PollingTimeoutError(ClipStudioError, TimeoutError):
    """Raised when an asset never became ready within the polling bounds."""

    def __init__(self, asset_id: str, attempts: int):
        self.asset_id = asset_id
        self.attempts = attempts
        super().__init__(f"Asset {asset_id} not ready after {attempts} attempts")


class JobCancelledError(ClipStudioError):
    """Raised when the user aborted the job while it was waiting on the backend."""
    pass


class DownloadError(ClipStudioError):
    """Raised when a clip or intermediate asset could not be fetched."""
    pass


class StorageError(ClipStudioError):
    """Raised when the final asset could not be stored or exposed."""
    pass


class CleanupError(ClipStudioError):
    """Raised when a temporary asset could not be deleted. Never fatal."""
    pass


class InvalidStateTransitionError(ClipStudioError):
    """Raised when attempting an illegal job status transition."""

    def __init__(self, job_id: str, current_state: str, target_state: str):
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid job state transition for {job_id}: "
            f"{current_state} -> {target_state}"
        )


class JobFailedError(ClipStudioError):
    """Single consolidated failure surfaced to the caller for a job."""

    def __init__(self, job_id: str, cause: Exception):
        self.job_id = job_id
        self.cause = cause
        super().__init__(f"Job {job_id} failed: {cause}")
