import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import unquote, urlparse

from boto3.dynamodb.conditions import Attr

from dynamodb_helper import DynamoDBHelper
from exceptions import AssetResolutionError, ValidationError
from schemas import CatalogAsset, ClipReference

logger = logging.getLogger(__name__)

# .../<resource_type>/<delivery_type>/<rest>
_HOSTED_PATH_PATTERN = re.compile(r"/(?:video|image|raw)/(?:upload|authenticated|private)/(?P<rest>.+)$")
# v1699999999/<public_id>
_VERSION_PATTERN = re.compile(r"(?:^|/)v\d+/(?P<public_id>.+)$")
_EXTENSION_PATTERN = re.compile(r"\.[A-Za-z0-9]{2,5}$")
_PUBLIC_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9_\-.]*(?:/[A-Za-z0-9_\-.]+)*$")


def extract_public_id(hosted_url: str) -> str:
    """
    Extract the media host's public id from a hosted asset URL.

    Handles three shapes:
      https://res.cloudinary.com/<cloud>/video/upload/v123/folder/clip.mp4 -> folder/clip
      https://res.cloudinary.com/<cloud>/video/upload/folder/clip.mp4      -> folder/clip
      https://cdn.example.com/any/path/clip.mp4 or just clip.mp4           -> clip
    """
    if not isinstance(hosted_url, str) or not hosted_url.strip():
        raise AssetResolutionError("Cannot extract a public id from an empty URL")

    raw = hosted_url.strip()
    parsed = urlparse(raw)
    path = unquote(parsed.path or "")

    hosted_match = _HOSTED_PATH_PATTERN.search(path)
    if hosted_match:
        rest = hosted_match.group("rest")
        version_match = _VERSION_PATTERN.search(rest)
        candidate = version_match.group("public_id") if version_match else rest
    else:
        candidate = path.rstrip("/").rsplit("/", 1)[-1] if path else ""

    candidate = _EXTENSION_PATTERN.sub("", candidate.strip("/"))
    if not candidate or ".." in candidate or not _PUBLIC_ID_PATTERN.match(candidate):
        raise AssetResolutionError(f"Could not extract a public id from URL: {hosted_url}")
    return candidate


def _is_absolute_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def resolve(
    selected_ids: Sequence[str],
    catalog: Sequence[CatalogAsset],
    url_for_public_id: Optional[Callable[[str], str]] = None,
) -> List[ClipReference]:
    """
    Map the user's ordered selection onto hosted clips.

    Unmatched, inactive or unextractable clips are dropped with a warning;
    the job only fails when nothing at all is left. `order` follows the
    selection, never the catalog.
    """
    if not selected_ids:
        raise ValidationError("No clips selected")

    by_id = {asset.id: asset for asset in catalog}
    resolved = []
    seen = set()

    for clip_id in selected_ids:
        if clip_id in seen:
            logger.warning(f"Clip {clip_id} selected more than once. Keeping the first occurrence.")
            continue
        seen.add(clip_id)

        asset = by_id.get(clip_id)
        if asset is None or not asset.active:
            logger.warning(f"Clip {clip_id} is not an active catalog entry. Skipping.")
            continue
        if not asset.hosted_url or not asset.hosted_url.strip():
            logger.warning(f"Clip {clip_id} has no hosted URL. Skipping.")
            continue
        if asset.duration_seconds <= 0:
            logger.warning(f"Clip {clip_id} has non-positive duration {asset.duration_seconds}. Skipping.")
            continue

        try:
            public_id = extract_public_id(asset.hosted_url)
        except AssetResolutionError as e:
            logger.warning(f"Clip {clip_id} dropped: {e}")
            continue

        source_url = asset.hosted_url.strip()
        if not _is_absolute_http_url(source_url):
            if url_for_public_id is None:
                logger.warning(f"Clip {clip_id} has no absolute URL ({source_url}). Skipping.")
                continue
            source_url = url_for_public_id(public_id)

        resolved.append(ClipReference(
            id=asset.id,
            name=asset.name,
            duration_seconds=asset.duration_seconds,
            source_url=source_url,
            public_id=public_id,
            order=len(resolved),
        ))

    if not resolved:
        raise AssetResolutionError(
            "None of the selected clips could be resolved. Please re-select your clips."
        )

    if len(resolved) < len(seen):
        logger.warning(f"Resolved {len(resolved)} of {len(seen)} selected clips.")
    else:
        logger.info(f"Resolved all {len(resolved)} selected clips.")
    return resolved


class CatalogReader:
    """Read-only view over the clip catalog table."""

    def __init__(self, db: DynamoDBHelper):
        self.db = db

    @staticmethod
    def _to_asset(item: Dict[str, Any]) -> Optional[CatalogAsset]:
        try:
            return CatalogAsset(
                id=str(item["id"]),
                name=item.get("name", ""),
                duration_seconds=float(item.get("duration", 0) or 0),
                hosted_url=item.get("file_url", "") or "",
                active=bool(item.get("is_active", False)),
                category=item.get("category"),
                created_at=item.get("created_at"),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed catalog row {item.get('id')}: {e}")
            return None

    def list_active_clips(self, platform: str = None) -> List[CatalogAsset]:
        """Active clips, newest first, optionally restricted to one platform category."""
        expression = Attr("is_active").eq(True)
        if platform:
            expression = expression & Attr("category").eq(platform.lower())

        items = self.db.scan_items(expression)
        assets = [a for a in (self._to_asset(item) for item in items) if a is not None]
        assets.sort(key=lambda a: a.created_at or "", reverse=True)
        logger.info(f"Fetched {len(assets)} active catalog clips (platform={platform or 'any'})")
        return assets
