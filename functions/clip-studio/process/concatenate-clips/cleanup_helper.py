import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional

import constants
from cloudinary_helper import CloudinaryClient
from exceptions import CleanupError
from retry_helper import retry_async
from schemas import CleanupReport, ResourceKind

logger = logging.getLogger(__name__)

_SUCCESS_VERDICTS = ("deleted", "not_found")


class AssetCleaner:
    """Best-effort deletion of intermediate assets. Never raises."""

    def __init__(
        self,
        cloudinary: CloudinaryClient,
        max_attempts: int = constants.CLEANUP_MAX_ATTEMPTS,
        base_delay: float = constants.CLEANUP_BASE_DELAY_SECONDS,
        inter_asset_delay: float = constants.CLEANUP_INTER_ASSET_DELAY_SECONDS,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.cloudinary = cloudinary
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.inter_asset_delay = inter_asset_delay
        self._sleep = sleep or asyncio.sleep

    async def _delete_once(self, asset_id: str, kind: ResourceKind) -> str:
        verdict = await self.cloudinary.delete_resource(asset_id, kind.value)
        if verdict not in _SUCCESS_VERDICTS:
            raise CleanupError(f"Deletion of {asset_id} returned '{verdict}'")
        return verdict

    async def cleanup(
        self,
        asset_ids: Iterable[str],
        resource_kind_by_asset: Dict[str, ResourceKind] = None,
    ) -> CleanupReport:
        report = CleanupReport()
        ids = sorted(set(asset_ids))
        if not ids:
            logger.info("No temporary assets to clean up.")
            return report

        kinds = resource_kind_by_asset or {}
        logger.info(f"🧹 Deleting {len(ids)} temporary assets...")

        for index, asset_id in enumerate(ids):
            kind = kinds.get(asset_id, ResourceKind.VIDEO)
            try:
                verdict = await retry_async(
                    lambda asset_id=asset_id, kind=kind: self._delete_once(asset_id, kind),
                    attempts=self.max_attempts,
                    base_delay=self.base_delay,
                    description=f"Deletion of {kind.value} asset {asset_id}",
                    sleep=self._sleep,
                )
            except Exception as e:
                logger.warning(f"Could not delete {asset_id}: {e}")
                report.failed.append(asset_id)
            else:
                report.deleted.append(asset_id)
                if verdict == "not_found":
                    logger.info(f"Asset {asset_id} was already deleted or not found.")
                    report.already_absent.append(asset_id)

            # Small delay between assets to stay under the admin API rate limit
            if index < len(ids) - 1 and self.inter_asset_delay > 0:
                await self._sleep(self.inter_asset_delay)

        logger.info(
            f"Cleanup complete. Deleted {len(report.deleted)}/{len(ids)} assets "
            f"({len(report.already_absent)} already absent, {len(report.failed)} failed)."
        )
        return report
