import os

SERVICE_NAME = "concatenate-clips"
STATUS_SERVICE_NAME = "check-job-status"
SWEEPER_SERVICE_NAME = "cleanup-temp-assets"

CATALOG_DYNAMODB_TABLE = os.environ.get("CATALOG_TABLE", "clip-studio-catalog")
JOBS_DYNAMODB_TABLE = os.environ.get("JOBS_TABLE", "clip-studio-jobs")

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"
CLOUDINARY_DELIVERY_BASE = "https://res.cloudinary.com"
CREATOMATE_API_BASE = "https://api.creatomate.com/v1"

# Platform -> output frame (width, height)
PLATFORM_DIMENSIONS = {
    "youtube": (1920, 1080),
    "facebook": (1080, 1080),
    "instagram": (1080, 1920),
    "instagram_story": (1080, 1920),
    "tiktok": (1080, 1920),
    "instagram_post": (1080, 1080),
}

SUPPORTED_LANGUAGES = ("en", "es", "fr", "de")

# Intermediate asset naming. The sweeper relies on these prefixes.
TRIMMED_ASSET_PREFIX = "p1_trimmed_"
MANIFEST_ASSET_PREFIX = "p2_manifest_"
MANIFEST_HEADER = "v:1"

# Delivery URLs longer than this are rejected by the media host
MAX_TRANSFORMATION_URL_LENGTH = 2000

# Trim durations are sent with microsecond resolution
DURATION_DECIMALS = 6

# Below this a trimmed clip is barely visible; logged, not enforced
MIN_RECOMMENDED_CLIP_SECONDS = 0.5

# Polling bounds (overridable through the environment, see config.py)
DEFAULT_ASSET_POLL_MAX_ATTEMPTS = 10
DEFAULT_ASSET_POLL_INTERVAL_MS = 2000
DEFAULT_RENDER_POLL_MAX_ATTEMPTS = 60
DEFAULT_RENDER_POLL_INTERVAL_MS = 5000

# Cleanup retry policy
CLEANUP_MAX_ATTEMPTS = 3
CLEANUP_BASE_DELAY_SECONDS = 1.0
CLEANUP_INTER_ASSET_DELAY_SECONDS = 0.2

# Downloads / publishing
DEFAULT_DOWNLOAD_TIMEOUT_SECONDS = 45
DEFAULT_MAX_DOWNLOAD_BYTES = 50 * 1024 * 1024
DEFAULT_INLINE_PUBLISH_MAX_BYTES = 200 * 1024
# Inline data URIs are stored in the job record, which DynamoDB caps at 400KB
MAX_INLINE_PUBLISH_BYTES = 240 * 1024
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
RESULT_CONTENT_TYPE = "video/mp4"
RESULTS_KEY_PREFIX = "processed-videos"

# Sweeper: intermediates younger than this may still belong to a running job
SWEEP_MIN_AGE_MINUTES = 60
SWEEP_MAX_RESULTS = 500

# Cancellation watcher poll interval
CANCEL_CHECK_INTERVAL_SECONDS = 3.0

# Overlay timings (seconds)
SUPERS_MAX_SECONDS = 7
END_FRAME_SECONDS = 3
OVERLAY_FONT_FAMILY = "Arial"
OVERLAY_FILL_COLOR = "#ffffff"

SUPERS_Y_POSITION = {
    "top": "15%",
    "center": "50%",
    "bottom": "85%",
}

# Human readable labels for progress phases, shown by the client
PHASE_LABELS = {
    "pending": "Waiting to start...",
    "resolving": "Preparing video clips...",
    "downloading": "Downloading video clips...",
    "trimming": "Trimming clips to fit your duration...",
    "concatenating": "Joining clips together...",
    "rendering": "Rendering overlays and final video...",
    "finalizing": "Finalizing export...",
    "completed": "Your video is ready!",
    "failed": "Video processing failed.",
}
