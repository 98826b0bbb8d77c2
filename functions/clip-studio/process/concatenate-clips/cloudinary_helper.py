import base64
import hashlib
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

import constants
from schemas import ResourceKind, ResourceStatus

logger = logging.getLogger(__name__)

# Parameters that never take part in the upload signature
_UNSIGNED_PARAMS = {"file", "api_key", "resource_type", "cloud_name"}


class CloudinaryAPIError(Exception):
    """Raised when the media host answers with an error."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message if status_code is None else f"{status_code}: {message}")


def to_data_uri(content: str, mime_type: str = "text/plain") -> str:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


class CloudinaryClient:
    """Minimal async client for the upload, admin and delivery APIs."""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str,
                 http_client: httpx.AsyncClient = None, timeout: float = 60.0):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @classmethod
    def from_config(cls, config, http_client: httpx.AsyncClient = None) -> "CloudinaryClient":
        return cls(
            cloud_name=config.cloudinary_cloud_name,
            api_key=config.cloudinary_api_key,
            api_secret=config.cloudinary_api_secret,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    def delivery_url(self, public_id: str, resource_type: str = "video",
                     transformations: List[str] = None, fmt: str = None) -> str:
        segments = [constants.CLOUDINARY_DELIVERY_BASE, self.cloud_name, resource_type, "upload"]
        segments.extend(t for t in (transformations or []) if t)
        segments.append(f"{public_id}.{fmt}" if fmt else public_id)
        return "/".join(segments)

    async def check_delivery(self, url: str) -> None:
        """Ask the CDN for a derived asset without downloading it; raise when it is rejected."""
        try:
            async with self.http.stream("GET", url) as response:
                error = response.headers.get("x-cld-error")
                if response.status_code >= 400 or error:
                    raise CloudinaryAPIError(error or "delivery rejected", response.status_code)
        except httpx.HTTPError as e:
            raise CloudinaryAPIError(f"delivery request failed: {e}") from e

    # ------------------------------------------------------------------
    # Upload API
    # ------------------------------------------------------------------
    def _sign(self, params: Dict[str, Any]) -> str:
        to_sign = "&".join(
            f"{key}={params[key]}" for key in sorted(params)
            if key not in _UNSIGNED_PARAMS and params[key] not in (None, "")
        )
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    async def upload(self, file: str, public_id: str, resource_type: str = "video",
                     overwrite: bool = True) -> Dict[str, Any]:
        """Upload from a remote URL or data URI under a fixed public id."""
        params = {
            "public_id": public_id,
            "overwrite": "true" if overwrite else "false",
            "timestamp": str(int(time.time())),
        }
        params["signature"] = self._sign(params)
        params["api_key"] = self.api_key
        params["file"] = file

        url = f"{constants.CLOUDINARY_API_BASE}/{self.cloud_name}/{resource_type}/upload"
        logger.info(f"Uploading {resource_type} asset {public_id}")
        response = await self.http.post(url, data=params)
        body = self._json_or_raise(response, f"upload of {public_id}")
        return body

    # ------------------------------------------------------------------
    # Admin API
    # ------------------------------------------------------------------
    def _admin_url(self, *parts: str) -> str:
        return "/".join([constants.CLOUDINARY_API_BASE, self.cloud_name, *parts])

    @staticmethod
    def _json_or_raise(response: httpx.Response, action: str) -> Dict[str, Any]:
        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            raise CloudinaryAPIError(f"{action} failed: {message}", response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise CloudinaryAPIError(f"{action} returned a malformed response") from e

    async def get_resource(self, public_id: str, resource_type: str = "video") -> Optional[Dict[str, Any]]:
        response = await self.http.get(
            self._admin_url("resources", resource_type, "upload", public_id),
            auth=(self.api_key, self.api_secret),
        )
        if response.status_code == 404:
            return None
        return self._json_or_raise(response, f"lookup of {public_id}")

    async def check_status(self, asset_id: str, kind: ResourceKind) -> ResourceStatus:
        """Videos are ready once they report a non-zero duration; raw files once they exist."""
        resource = await self.get_resource(asset_id, kind.value)
        if resource is None:
            return ResourceStatus(state="pending")
        if kind == ResourceKind.VIDEO:
            duration = resource.get("duration") or 0
            if duration <= 0:
                return ResourceStatus(state="pending")
            return ResourceStatus(state="ready", url=resource.get("secure_url"), duration=float(duration))
        return ResourceStatus(state="ready", url=resource.get("secure_url"))

    async def delete_resource(self, public_id: str, resource_type: str = "video") -> str:
        """Delete one asset. Returns the host's verdict: 'deleted', 'not_found', ..."""
        response = await self.http.request(
            "DELETE",
            self._admin_url("resources", resource_type, "upload"),
            params=[("public_ids[]", public_id), ("invalidate", "true")],
            auth=(self.api_key, self.api_secret),
        )
        if response.status_code == 404:
            return "not_found"
        body = self._json_or_raise(response, f"deletion of {public_id}")
        return (body.get("deleted") or {}).get(public_id, "unknown")

    async def search(self, expression: str, max_results: int = constants.SWEEP_MAX_RESULTS) -> List[Dict[str, Any]]:
        """Run a search expression, following cursors until exhausted."""
        resources = []
        payload: Dict[str, Any] = {"expression": expression, "max_results": max_results}
        while True:
            response = await self.http.post(
                self._admin_url("resources", "search"),
                json=payload,
                auth=(self.api_key, self.api_secret),
            )
            body = self._json_or_raise(response, f"search '{expression}'")
            resources.extend(body.get("resources", []))
            cursor = body.get("next_cursor")
            if not cursor:
                break
            payload["next_cursor"] = cursor
        return resources
