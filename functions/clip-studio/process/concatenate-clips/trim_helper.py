import logging
import math
from typing import List, Sequence

import constants
from exceptions import ValidationError
from schemas import ClipReference, TrimPlanEntry

logger = logging.getLogger(__name__)


def _validate_target(target_duration: float) -> None:
    if isinstance(target_duration, bool) or not isinstance(target_duration, (int, float)):
        raise ValidationError(f"Target duration must be a number, got {target_duration!r}")
    if not math.isfinite(target_duration) or target_duration <= 0:
        raise ValidationError(f"Target duration must be positive, got {target_duration}")


def allocate_durations(durations: Sequence[float], target_duration: float) -> List[float]:
    """
    Proportionally scale clip durations down to a target total.

    When the target is at least the combined length every clip keeps its
    recorded duration (clips are never stretched). Otherwise every clip is
    scaled by the same factor, so each one stays represented in the output
    in proportion to its original contribution.
    """
    if not durations:
        raise ValidationError("At least one clip duration is required")
    _validate_target(target_duration)
    for index, duration in enumerate(durations):
        if not isinstance(duration, (int, float)) or not math.isfinite(duration) or duration <= 0:
            raise ValidationError(f"Clip duration at position {index} must be positive, got {duration!r}")

    # Plain left-to-right summation keeps results reproducible
    total = 0.0
    for duration in durations:
        total += duration

    if target_duration >= total:
        return [float(d) for d in durations]

    scale = target_duration / total
    return [d * scale for d in durations]


def allocate(clips: Sequence[ClipReference], target_duration: float) -> List[TrimPlanEntry]:
    """Build the trim plan for an ordered list of clips."""
    if not clips:
        raise ValidationError("Cannot build a trim plan without clips")

    trimmed = allocate_durations([clip.duration_seconds for clip in clips], target_duration)

    plan = []
    for clip, trimmed_duration in zip(clips, trimmed):
        if trimmed_duration < constants.MIN_RECOMMENDED_CLIP_SECONDS:
            logger.warning(
                f"Clip {clip.id} allocated only {trimmed_duration:.3f}s "
                f"(original {clip.duration_seconds}s, target {target_duration}s)"
            )
        plan.append(TrimPlanEntry(
            clip_id=clip.id,
            original_duration=clip.duration_seconds,
            trimmed_duration=trimmed_duration,
        ))

    logger.info(
        f"Trim plan for {len(plan)} clips: total {sum(e.trimmed_duration for e in plan):.3f}s "
        f"(target {target_duration}s)"
    )
    return plan


def format_duration(seconds: float) -> str:
    """Render a duration the way the media host expects it in transformations."""
    return f"{seconds:.{constants.DURATION_DECIMALS}f}"
