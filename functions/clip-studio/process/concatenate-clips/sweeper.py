import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import httpx
from aws_lambda_powertools import Logger

import constants
from cleanup_helper import AssetCleaner
from cloudinary_helper import CloudinaryClient
from config import get_config
from exceptions import ConfigurationError
from schemas import ResourceKind

logger = Logger(service=f"{constants.SWEEPER_SERVICE_NAME}-scheduled")


def _parse_created_at(value: str):
    if not value:
        return None
    try:
        stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)


def _old_enough(resources: List[Dict[str, Any]], prefix: str, cutoff: datetime) -> List[str]:
    ids = []
    for resource in resources:
        public_id = resource.get("public_id", "")
        if not public_id.startswith(prefix):
            continue
        created_at = _parse_created_at(resource.get("created_at"))
        if created_at is None:
            logger.warning(f"Skipping {public_id}: unknown creation time")
            continue
        if created_at <= cutoff:
            ids.append(public_id)
    return ids


async def find_temporary_assets(cloudinary: CloudinaryClient,
                                min_age_minutes: int = constants.SWEEP_MIN_AGE_MINUTES,
                                now: datetime = None) -> Dict[str, List[str]]:
    """Intermediates old enough that no running job can still need them."""
    logger.info("🔍 Searching for temporary assets...")
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=min_age_minutes)

    videos = await cloudinary.search(f"resource_type:video AND public_id:{constants.TRIMMED_ASSET_PREFIX}*")
    manifests = await cloudinary.search(f"resource_type:raw AND public_id:{constants.MANIFEST_ASSET_PREFIX}*")

    found = {
        "videos": _old_enough(videos, constants.TRIMMED_ASSET_PREFIX, cutoff),
        "manifests": _old_enough(manifests, constants.MANIFEST_ASSET_PREFIX, cutoff),
    }
    logger.info(
        f"Found {len(found['videos'])} temporary video assets and "
        f"{len(found['manifests'])} manifest assets older than {min_age_minutes} minutes"
    )
    return found


async def sweep(cloudinary: CloudinaryClient, cleaner: AssetCleaner = None,
                min_age_minutes: int = constants.SWEEP_MIN_AGE_MINUTES,
                now: datetime = None) -> Dict[str, Any]:
    cleaner = cleaner or AssetCleaner(cloudinary)
    found = await find_temporary_assets(cloudinary, min_age_minutes, now)

    kinds = {asset_id: ResourceKind.VIDEO for asset_id in found["videos"]}
    kinds.update({asset_id: ResourceKind.RAW for asset_id in found["manifests"]})
    report = await cleaner.cleanup(kinds.keys(), kinds)

    total_processed = report.total_processed
    total_deleted = len(report.deleted)
    success_rate = (total_deleted / total_processed * 100) if total_processed else 100.0

    stats = {
        "total_processed": total_processed,
        "total_deleted": total_deleted,
        "total_failed": len(report.failed),
        "success_rate": f"{success_rate:.1f}%",
    }
    logger.info(f"🎉 Sweep completed: {stats}")

    return {
        "stats": stats,
        "deleted": {
            "videos": [i for i in report.deleted if kinds[i] == ResourceKind.VIDEO],
            "manifests": [i for i in report.deleted if kinds[i] == ResourceKind.RAW],
        },
        "failed": {
            "videos": [i for i in report.failed if kinds[i] == ResourceKind.VIDEO],
            "manifests": [i for i in report.failed if kinds[i] == ResourceKind.RAW],
        },
    }


async def _run(min_age_minutes: int) -> Dict[str, Any]:
    config = get_config()
    if not config.remote_concatenation_available:
        raise ConfigurationError("Cloudinary credentials are required to sweep temporary assets")

    async with httpx.AsyncClient(timeout=60.0) as http:
        cloudinary = CloudinaryClient.from_config(config, http_client=http)
        return await sweep(cloudinary, min_age_minutes=min_age_minutes)


def lambda_handler(event, context):
    logger.info("🧹 Starting cleanup of temporary media assets...")
    min_age = int((event or {}).get("min_age_minutes", constants.SWEEP_MIN_AGE_MINUTES))
    try:
        return asyncio.run(_run(min_age))
    except Exception as e:
        logger.error(f"Sweep failed: {e}", exc_info=True)
        raise
