import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

import constants
from asset_helper import CatalogReader, resolve
from cleanup_helper import AssetCleaner
from cloudinary_helper import CloudinaryClient
from config import PipelineConfig
from creatomate_helper import CreatomateClient
from dynamodb_helper import DynamoDBHelper
from exceptions import DynamoDBError, JobCancelledError, JobFailedError
from job_driver import RemoteJobDriver
from job_store import JobStore, ProgressTracker
from polling_helper import CompletionWaiter
from schemas import (
    CleanupReport,
    ExportRequest,
    JobStatus,
    ProcessingJob,
    ProgressEvent,
    ProgressPhase,
    ResourceKind,
)
from storage_helper import ObjectStorage, ResultPublisher
from strategies import StrategyContext
from trim_helper import allocate

logger = logging.getLogger(__name__)

_TEMPORARY_FIELDS = ("temporary_asset_ids", "temporary_asset_kinds")


class ExportOrchestrator:
    """
    Runs one export end to end:

      resolve -> allocate -> drive strategies -> publish -> cleanup

    Cleanup always runs, after publishing, whatever happened before it.
    A download link is only stored once the job reached Completed.
    """

    def __init__(
        self,
        config: PipelineConfig,
        catalog: CatalogReader,
        store: JobStore,
        publisher: ResultPublisher,
        http_client: httpx.AsyncClient,
        cloudinary: CloudinaryClient = None,
        creatomate: CreatomateClient = None,
        driver: RemoteJobDriver = None,
        cleaner: AssetCleaner = None,
        sleep: Callable[[float], Awaitable[None]] = None,
        on_progress: Callable[[ProgressEvent], Awaitable[None]] = None,
        cancel_check_interval: float = constants.CANCEL_CHECK_INTERVAL_SECONDS,
    ):
        self.config = config
        self.catalog = catalog
        self.store = store
        self.publisher = publisher
        self.http = http_client
        self.cloudinary = cloudinary
        self.creatomate = creatomate
        self.driver = driver or RemoteJobDriver(config)
        self.cleaner = cleaner or (AssetCleaner(cloudinary, sleep=sleep) if cloudinary else None)
        self._sleep = sleep
        self.on_progress = on_progress
        self.cancel_check_interval = cancel_check_interval

    @classmethod
    def from_config(cls, config: PipelineConfig, http_client: httpx.AsyncClient) -> "ExportOrchestrator":
        cloudinary = None
        if config.remote_concatenation_available:
            cloudinary = CloudinaryClient.from_config(config, http_client=http_client)
        creatomate = None
        if config.template_rendering_available:
            creatomate = CreatomateClient.from_config(config, http_client=http_client)

        return cls(
            config=config,
            catalog=CatalogReader(DynamoDBHelper(config.catalog_table, region=config.aws_region)),
            store=JobStore(DynamoDBHelper(config.jobs_table, region=config.aws_region)),
            publisher=ResultPublisher(
                ObjectStorage.from_config(config),
                http_client=http_client,
                inline_max_bytes=config.inline_publish_max_bytes,
                download_timeout=config.download_timeout_seconds,
                max_download_bytes=config.max_download_bytes,
            ),
            http_client=http_client,
            cloudinary=cloudinary,
            creatomate=creatomate,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    async def _save(self, job: ProcessingJob, *fields: str) -> None:
        await asyncio.to_thread(self.store.save, job, fields or None)

    async def _register_temporary(self, job: ProcessingJob, asset_id: str, kind: ResourceKind) -> None:
        # Recorded before the asset is created
        job.register_temporary_asset(asset_id, kind)
        await self._save(job, *_TEMPORARY_FIELDS)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    async def _watch_cancellation(self, job_id: str, cancel_event: asyncio.Event) -> None:
        while not cancel_event.is_set():
            await asyncio.sleep(self.cancel_check_interval)
            try:
                requested = await asyncio.to_thread(self.store.is_cancel_requested, job_id)
            except DynamoDBError as e:
                logger.warning(f"Could not check cancellation for job {job_id}: {e}")
                continue
            if requested:
                logger.info(f"🛑 Cancellation requested for job {job_id}")
                cancel_event.set()

    @staticmethod
    def _raise_if_cancelled(job: ProcessingJob, cancel_event: asyncio.Event) -> None:
        if cancel_event.is_set():
            raise JobCancelledError(f"Job {job.job_id} was cancelled")

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------
    async def _cleanup(self, job: ProcessingJob) -> CleanupReport:
        if not job.temporary_asset_ids:
            return CleanupReport()
        if self.cleaner is None:
            logger.warning(
                f"No media host configured. Leaving {len(job.temporary_asset_ids)} "
                f"temporary assets of job {job.job_id} to the sweeper."
            )
            return CleanupReport(failed=sorted(job.temporary_asset_ids))

        report = await self.cleaner.cleanup(set(job.temporary_asset_ids), dict(job.temporary_asset_kinds))
        job.forget_temporary_assets(report.deleted)
        try:
            await self._save(job, *_TEMPORARY_FIELDS)
        except DynamoDBError as e:
            logger.warning(f"Could not record cleanup result for job {job.job_id}: {e}")
        return report

    async def cleanup_only(self, job_id: str) -> Optional[CleanupReport]:
        """Delete whatever intermediates are still recorded against a job."""
        job = await asyncio.to_thread(self.store.load, job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found. Skipping cleanup.")
            return None
        return await self._cleanup(job)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def _build_context(self, job: ProcessingJob, plan, request: ExportRequest,
                       tracker: ProgressTracker, cancel_event: asyncio.Event) -> StrategyContext:
        async def register(asset_id: str, kind: ResourceKind) -> None:
            await self._register_temporary(job, asset_id, kind)

        return StrategyContext(
            job=job,
            plan=plan,
            customization=request.customization,
            emit=tracker.emit,
            register_temporary=register,
            http=self.http,
            asset_polling=self.config.asset_polling,
            render_polling=self.config.render_polling,
            cloudinary=self.cloudinary,
            creatomate=self.creatomate,
            asset_waiter=CompletionWaiter(self.cloudinary, cancel_event, sleep=self._sleep) if self.cloudinary else None,
            render_waiter=CompletionWaiter(self.creatomate, cancel_event, sleep=self._sleep) if self.creatomate else None,
            download_timeout=self.config.download_timeout_seconds,
            max_download_bytes=self.config.max_download_bytes,
        )

    @staticmethod
    def _new_job(request: ExportRequest, previous: Optional[ProcessingJob]) -> ProcessingJob:
        job = ProcessingJob(
            job_id=request.job_id,
            target_duration=request.target_duration,
            platform=request.platform,
            language=request.language,
        )
        if previous is None:
            return job

        # A re-run keeps the first attempt's timestamp (and so its result key)
        # and still owns whatever intermediates that attempt left behind
        logger.info(f"Re-running job {job.job_id} (previous attempt was {previous.status.value})")
        job.created_at = previous.created_at
        for asset_id in previous.temporary_asset_ids:
            job.register_temporary_asset(
                asset_id, previous.temporary_asset_kinds.get(asset_id, ResourceKind.VIDEO)
            )
        return job

    @staticmethod
    def _as_completed(job: ProcessingJob) -> ProcessingJob:
        finished = job.model_copy(deep=True)
        finished.transition_to(JobStatus.COMPLETED)
        return finished

    async def run(self, request: ExportRequest) -> ProcessingJob:
        previous = await asyncio.to_thread(self.store.load, request.job_id)
        if previous is not None and previous.status == JobStatus.COMPLETED:
            logger.info(f"Job {previous.job_id} already completed. Returning the stored result.")
            return previous

        job = self._new_job(request, previous)
        tracker = ProgressTracker(job, self.store, self.on_progress)
        await asyncio.to_thread(self.store.create, job)

        cancel_event = asyncio.Event()
        watcher = asyncio.create_task(self._watch_cancellation(job.job_id, cancel_event))

        try:
            # 1. Resolve the selection against the catalog
            job.transition_to(JobStatus.IN_PROGRESS)
            await self._save(job, "status")
            await tracker.emit(ProgressPhase.RESOLVING, 5)

            catalog = await asyncio.to_thread(self.catalog.list_active_clips)
            url_builder = None
            if self.cloudinary is not None:
                url_builder = lambda public_id: self.cloudinary.delivery_url(public_id, "video")
            job.clips = resolve(request.selected_clip_ids, catalog, url_builder)
            await self._save(job, "clips")

            # 2. Trim plan
            plan = allocate(job.clips, request.target_duration)
            self._raise_if_cancelled(job, cancel_event)

            # 3. Concatenate
            ctx = self._build_context(job, plan, request, tracker, cancel_event)
            result = await self.driver.run(ctx)
            self._raise_if_cancelled(job, cancel_event)

            job.transition_to(JobStatus.READY_TO_CONCATENATE)
            await self._save(job, "status", "strategy", "degraded")

            # 4. Publish
            await tracker.emit(ProgressPhase.FINALIZING, 90)
            published = await self.publisher.publish(
                result.payload if result.payload is not None else result.final_url,
                platform=job.platform,
                clip_count=len(result.clip_order),
                job_id=job.job_id,
                created_at=job.created_at,
            )

            # Link first, while the record still reads ready_to_concatenate.
            # Completed only once that status write went through.
            job.public_url = published.public_url
            job.filename = published.filename
            await self._save(job, "public_url", "filename")
            await self._save(self._as_completed(job), "status")
            job.transition_to(JobStatus.COMPLETED)

        except Exception as e:
            logger.error(f"Job {job.job_id} failed: {e}", exc_info=True)
            job.public_url = None
            job.filename = None
            job.error = str(e)
            if not job.is_terminal:
                job.transition_to(JobStatus.FAILED)
            await tracker.fail()
            try:
                await self._save(job, "status", "phase", "error", "public_url", "filename")
            except DynamoDBError as update_err:
                logger.error(f"CRITICAL: Failed to record failure of job {job.job_id}: {update_err}")
            raise JobFailedError(job.job_id, e) from e

        finally:
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass
            await self._cleanup(job)

        await tracker.complete()
        logger.info(f"✅ Job {job.job_id} completed ({published.mode}, {published.size_bytes} bytes)")
        return job
