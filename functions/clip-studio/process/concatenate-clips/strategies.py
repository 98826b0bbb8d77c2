import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

import constants
from cloudinary_helper import CloudinaryAPIError, CloudinaryClient, to_data_uri
from config import PollingBounds
from creatomate_helper import CreatomateAPIError, CreatomateClient, build_render_template, get_platform_dimensions
from exceptions import DownloadError, RemoteStrategyError
from polling_helper import CompletionWaiter
from schemas import (
    ClipReference,
    Customization,
    ProcessingJob,
    ProgressPhase,
    ResourceKind,
    StrategyKind,
    StrategyResult,
    TrimPlanEntry,
)
from storage_helper import download_bytes
from trim_helper import format_duration

logger = logging.getLogger(__name__)

ProgressEmitter = Callable[[ProgressPhase, int], Awaitable[None]]
TemporaryAssetRegistrar = Callable[[str, ResourceKind], Awaitable[None]]


@dataclass
class StrategyContext:
    """Everything a strategy needs for one job. Built fresh per job, never shared."""
    job: ProcessingJob
    plan: List[TrimPlanEntry]
    customization: Customization
    emit: ProgressEmitter
    register_temporary: TemporaryAssetRegistrar
    http: httpx.AsyncClient
    asset_polling: PollingBounds
    render_polling: PollingBounds
    cloudinary: Optional[CloudinaryClient] = None
    creatomate: Optional[CreatomateClient] = None
    asset_waiter: Optional[CompletionWaiter] = None
    render_waiter: Optional[CompletionWaiter] = None
    download_timeout: float = constants.DEFAULT_DOWNLOAD_TIMEOUT_SECONDS
    max_download_bytes: int = constants.DEFAULT_MAX_DOWNLOAD_BYTES

    @property
    def ordered_clips(self) -> List[ClipReference]:
        return sorted(self.job.clips, key=lambda clip: clip.order)

    @property
    def trimmed_by_id(self) -> Dict[str, float]:
        return {entry.clip_id: entry.trimmed_duration for entry in self.plan}


def job_namespace(job: ProcessingJob) -> str:
    """`<epoch ms>_<first 8 job id chars>`, unique across concurrent jobs."""
    try:
        millis = int(datetime.fromisoformat(job.created_at).timestamp() * 1000)
    except ValueError:
        millis = int(datetime.now().timestamp() * 1000)
    short_id = re.sub(r"[^A-Za-z0-9]", "", job.job_id)[:8] or "job"
    return f"{millis}_{short_id}"


def _pad_transformation(platform: str) -> str:
    width, height = get_platform_dimensions(platform)
    return f"c_pad,w_{width},h_{height}"


class ConcatenationStrategy(ABC):
    """One complete way of turning an ordered clip list into a single video."""

    kind: StrategyKind

    @abstractmethod
    async def execute(self, ctx: StrategyContext) -> StrategyResult:
        ...

    def _fail(self, reason: str) -> RemoteStrategyError:
        return RemoteStrategyError(self.kind.value, reason)

    def _require_cloudinary(self, ctx: StrategyContext) -> CloudinaryClient:
        if ctx.cloudinary is None:
            raise self._fail("remote concatenation is not configured")
        return ctx.cloudinary


class TransformationChainStrategy(ConcatenationStrategy):
    """Single delivery URL: trim the first clip, splice the others on in order."""

    kind = StrategyKind.TRANSFORMATION_CHAIN

    def build_url(self, ctx: StrategyContext) -> str:
        cloudinary = self._require_cloudinary(ctx)
        clips = ctx.ordered_clips
        trimmed = ctx.trimmed_by_id
        pad = _pad_transformation(ctx.job.platform)

        first = clips[0]
        transformations = [f"du_{format_duration(trimmed[first.id])},{pad}"]
        for clip in clips[1:]:
            overlay_id = clip.public_id.replace("/", ":")
            transformations.append(
                f"fl_splice,l_video:{overlay_id},du_{format_duration(trimmed[clip.id])},{pad}"
            )
            transformations.append("fl_layer_apply")
        transformations.append("ac_aac,q_auto:good")

        return cloudinary.delivery_url(first.public_id, "video", transformations, fmt="mp4")

    async def execute(self, ctx: StrategyContext) -> StrategyResult:
        cloudinary = self._require_cloudinary(ctx)
        await ctx.emit(ProgressPhase.CONCATENATING, 40)

        url = self.build_url(ctx)
        if len(url) > constants.MAX_TRANSFORMATION_URL_LENGTH:
            raise self._fail(
                f"transformation URL is {len(url)} characters "
                f"(limit {constants.MAX_TRANSFORMATION_URL_LENGTH})"
            )

        try:
            await cloudinary.check_delivery(url)
        except CloudinaryAPIError as e:
            raise self._fail(f"backend rejected the transformation chain: {e}") from e

        await ctx.emit(ProgressPhase.FINALIZING, 80)
        return StrategyResult(
            strategy=self.kind,
            final_url=url,
            clip_order=[clip.id for clip in ctx.ordered_clips],
        )


class ManifestStrategy(ConcatenationStrategy):
    """
    Two phases on the media host:
      1. upload one trimmed copy per clip and wait until each is playable
      2. upload a manifest listing them in order and deliver it as one mp4
    """

    kind = StrategyKind.MANIFEST

    @staticmethod
    def build_manifest(public_ids: List[str]) -> str:
        return "\n".join([constants.MANIFEST_HEADER, *public_ids])

    async def execute(self, ctx: StrategyContext) -> StrategyResult:
        cloudinary = self._require_cloudinary(ctx)
        if ctx.asset_waiter is None:
            raise self._fail("no completion waiter available for intermediate assets")

        namespace = job_namespace(ctx.job)
        clips = ctx.ordered_clips
        trimmed = ctx.trimmed_by_id
        bounds = ctx.asset_polling

        # ==========================================================
        # PHASE 1: trimmed intermediates
        # ==========================================================
        trimmed_ids = []
        for index, clip in enumerate(clips):
            trimmed_id = f"{constants.TRIMMED_ASSET_PREFIX}{namespace}_{clip.order}"
            await ctx.register_temporary(trimmed_id, ResourceKind.VIDEO)
            await ctx.emit(ProgressPhase.TRIMMING, 10 + int(50 * index / len(clips)))

            source = cloudinary.delivery_url(
                clip.public_id, "video", [f"du_{format_duration(trimmed[clip.id])}"]
            )
            try:
                await cloudinary.upload(source, trimmed_id, resource_type="video")
            except CloudinaryAPIError as e:
                raise self._fail(f"could not create trimmed copy of {clip.id}: {e}") from e

            await ctx.asset_waiter.await_result(
                trimmed_id,
                ResourceKind.VIDEO,
                max_attempts=bounds.max_attempts,
                interval_ms=bounds.interval_ms,
                backoff=bounds.backoff,
                max_interval_ms=bounds.max_interval_ms,
            )
            trimmed_ids.append(trimmed_id)
            logger.info(f"Trimmed copy {index + 1}/{len(clips)} ready: {trimmed_id}")

        # ==========================================================
        # PHASE 2: manifest concatenation
        # ==========================================================
        await ctx.emit(ProgressPhase.CONCATENATING, 65)
        manifest = self.build_manifest(trimmed_ids)
        manifest_id = f"{constants.MANIFEST_ASSET_PREFIX}{namespace}.vtt"
        await ctx.register_temporary(manifest_id, ResourceKind.RAW)

        try:
            await cloudinary.upload(to_data_uri(manifest), manifest_id, resource_type="raw")
        except CloudinaryAPIError as e:
            raise self._fail(f"manifest upload failed: {e}") from e

        final_url = cloudinary.delivery_url(
            manifest_id,
            "video",
            [_pad_transformation(ctx.job.platform), "ac_aac,q_auto:good"],
            fmt="mp4",
        )
        try:
            await cloudinary.check_delivery(final_url)
        except CloudinaryAPIError as e:
            raise self._fail(f"backend rejected the manifest: {e}") from e

        await ctx.emit(ProgressPhase.FINALIZING, 80)
        return StrategyResult(
            strategy=self.kind,
            final_url=final_url,
            clip_order=[clip.id for clip in clips],
            manifest=manifest,
        )


class BinaryConcatStrategy(ConcatenationStrategy):
    """
    Download every clip and join the raw bytes in order.

    Degraded output: the result is only a valid container when every clip
    shares codec and container parameters. Trim durations are not applied.
    """

    kind = StrategyKind.BINARY_CONCAT

    async def _download(self, ctx: StrategyContext, clip: ClipReference) -> Optional[bytes]:
        try:
            content = await download_bytes(ctx.http, clip.source_url, ctx.download_timeout, ctx.max_download_bytes)
        except DownloadError as e:
            logger.warning(f"Dropping clip {clip.id} from the output: {e}")
            return None
        logger.info(f"Downloaded clip {clip.id}: {len(content)} bytes")
        return content

    async def execute(self, ctx: StrategyContext) -> StrategyResult:
        logger.warning("Using binary concatenation. Output is best-effort and may not play everywhere.")
        clips = ctx.ordered_clips
        await ctx.emit(ProgressPhase.DOWNLOADING, 10)

        # gather() keeps input order whatever order the downloads finish in
        contents = await asyncio.gather(*(self._download(ctx, clip) for clip in clips))

        kept = [(clip, content) for clip, content in zip(clips, contents) if content]
        if not kept:
            raise DownloadError("None of the selected clips could be downloaded")

        await ctx.emit(ProgressPhase.CONCATENATING, 60)
        payload = b"".join(content for _, content in kept)
        logger.info(f"Concatenated {len(kept)}/{len(clips)} clips into {len(payload)} bytes")

        await ctx.emit(ProgressPhase.FINALIZING, 80)
        return StrategyResult(
            strategy=self.kind,
            payload=payload,
            clip_order=[clip.id for clip, _ in kept],
            degraded=True,
        )


class TemplateRenderStrategy(ConcatenationStrategy):
    """Hand the whole edit, overlays included, to the remote renderer."""

    kind = StrategyKind.TEMPLATE_RENDER

    async def execute(self, ctx: StrategyContext) -> StrategyResult:
        if ctx.creatomate is None or ctx.render_waiter is None:
            raise self._fail("template rendering is not configured")

        template = build_render_template(ctx.ordered_clips, ctx.plan, ctx.job.platform, ctx.customization)
        await ctx.emit(ProgressPhase.RENDERING, 20)

        try:
            render_id = await ctx.creatomate.create_render(template)
        except CreatomateAPIError as e:
            raise self._fail(f"render was not accepted: {e}") from e

        bounds = ctx.render_polling

        async def _on_attempt(attempt: int, max_attempts: int) -> None:
            await ctx.emit(ProgressPhase.RENDERING, 20 + int(60 * attempt / max_attempts))

        status = await ctx.render_waiter.await_result(
            render_id,
            ResourceKind.RENDER,
            max_attempts=bounds.max_attempts,
            interval_ms=bounds.interval_ms,
            backoff=bounds.backoff,
            max_interval_ms=bounds.max_interval_ms,
            on_attempt=_on_attempt,
        )

        await ctx.emit(ProgressPhase.FINALIZING, 85)
        return StrategyResult(
            strategy=self.kind,
            final_url=status.url,
            clip_order=[clip.id for clip in ctx.ordered_clips],
            template=template,
        )


STRATEGIES: Dict[StrategyKind, ConcatenationStrategy] = {
    strategy.kind: strategy
    for strategy in (
        TransformationChainStrategy(),
        ManifestStrategy(),
        BinaryConcatStrategy(),
        TemplateRenderStrategy(),
    )
}
