import logging
from typing import Any, Dict, List, Sequence

import httpx

import constants
from exceptions import ValidationError
from schemas import ClipReference, Customization, ResourceKind, ResourceStatus, TrimPlanEntry

logger = logging.getLogger(__name__)


class CreatomateAPIError(Exception):
    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message if status_code is None else f"{status_code}: {message}")


def get_platform_dimensions(platform: str) -> tuple:
    dimensions = constants.PLATFORM_DIMENSIONS.get((platform or "").lower())
    if dimensions is None:
        raise ValidationError(f"Unsupported platform '{platform}'")
    return dimensions


def _text_element(text: str, y: str, time: float, duration: float, font_size: float,
                  bold: bool = True, width: str = "80%") -> Dict[str, Any]:
    return {
        "type": "text",
        "text": text,
        "x": "50%",
        "y": y,
        "width": width,
        "height": "auto",
        "time": time,
        "duration": duration,
        "font_family": constants.OVERLAY_FONT_FAMILY,
        "font_size": round(font_size),
        "font_weight": "bold" if bold else "normal",
        "fill_color": constants.OVERLAY_FILL_COLOR,
        "align": "center",
    }


def build_render_template(
    clips: Sequence[ClipReference],
    plan: Sequence[TrimPlanEntry],
    platform: str,
    customization: Customization,
) -> Dict[str, Any]:
    """
    Describe the whole video declaratively: clips back to back in `order`
    with their trimmed durations, then the text overlays.
    """
    width, height = get_platform_dimensions(platform)
    trimmed_by_id = {entry.clip_id: entry.trimmed_duration for entry in plan}

    elements: List[Dict[str, Any]] = []
    current_time = 0.0
    for clip in sorted(clips, key=lambda c: c.order):
        duration = trimmed_by_id[clip.id]
        elements.append({
            "type": "video",
            "source": clip.source_url,
            "x": "50%",
            "y": "50%",
            "width": "100%",
            "height": "100%",
            "time": current_time,
            "duration": duration,
            "fit": "cover",
        })
        current_time += duration

    total_duration = current_time

    # Supers: first few seconds only
    supers = customization.supers
    if supers.text.strip():
        elements.append(_text_element(
            supers.text,
            y=constants.SUPERS_Y_POSITION.get(supers.position, "50%"),
            time=0,
            duration=min(constants.SUPERS_MAX_SECONDS, total_duration),
            font_size=min(width, height) * 0.06,
            bold=supers.style == "bold",
        ))

    end_frame_start = max(total_duration - constants.END_FRAME_SECONDS, 0)
    end_frame_duration = total_duration - end_frame_start

    end_frame = customization.end_frame
    if end_frame.enabled and end_frame_duration > 0:
        # Logo asset is not uploaded yet, a text placeholder marks its slot
        if end_frame.logo_position == "center":
            elements.append(_text_element(
                "LOGO", y="40%", time=end_frame_start, duration=end_frame_duration,
                font_size=width * 0.08, width="auto",
            ))
        if end_frame.text.strip():
            elements.append(_text_element(
                end_frame.text,
                y="60%" if end_frame.logo_position == "center" else "50%",
                time=end_frame_start,
                duration=end_frame_duration,
                font_size=width * 0.05,
            ))

    cta = customization.cta
    if cta.enabled and cta.text.strip() and end_frame_duration > 0:
        cta_text = cta.text
        if cta.style == "button":
            cta_text = f"[{cta.text}]"
        elif cta.style == "animated":
            cta_text = f"✨ {cta.text} ✨"
        elements.append(_text_element(
            cta_text, y="85%", time=end_frame_start, duration=end_frame_duration,
            font_size=width * 0.04,
        ))

    return {
        "output_format": "mp4",
        "width": width,
        "height": height,
        "duration": total_duration,
        "elements": elements,
    }


class CreatomateClient:
    def __init__(self, api_key: str, http_client: httpx.AsyncClient = None, timeout: float = 60.0):
        self.api_key = api_key
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config, http_client: httpx.AsyncClient = None) -> "CreatomateClient":
        return cls(api_key=config.creatomate_api_key, http_client=http_client)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def create_render(self, template: Dict[str, Any]) -> str:
        """Submit a render and return its id."""
        logger.info(f"Creating render with {len(template.get('elements', []))} elements")
        response = await self.http.post(
            f"{constants.CREATOMATE_API_BASE}/renders",
            headers=self._headers,
            json={"source": template, "output_format": "mp4"},
        )
        if response.status_code >= 400:
            raise CreatomateAPIError(f"render creation failed: {response.text}", response.status_code)

        try:
            result = response.json()
        except ValueError as e:
            raise CreatomateAPIError("render creation returned a malformed response") from e

        # The API answers with a list of renders (one per output)
        if isinstance(result, list):
            result = result[0] if result else {}
        render_id = result.get("id") if isinstance(result, dict) else None
        if not render_id:
            raise CreatomateAPIError("render creation succeeded but no id was returned")

        logger.info(f"Render {render_id} created with status {result.get('status')}")
        return render_id

    async def get_render(self, render_id: str) -> Dict[str, Any]:
        response = await self.http.get(
            f"{constants.CREATOMATE_API_BASE}/renders/{render_id}",
            headers=self._headers,
        )
        if response.status_code == 404:
            raise CreatomateAPIError(f"render {render_id} not found", 404)
        if response.status_code == 401:
            raise CreatomateAPIError("authentication failed, check the Creatomate API key", 401)
        if response.status_code >= 400:
            raise CreatomateAPIError(f"status check failed: {response.text}", response.status_code)
        return response.json()

    async def check_status(self, asset_id: str, kind: ResourceKind) -> ResourceStatus:
        render = await self.get_render(asset_id)
        status = render.get("status")
        if status == "succeeded":
            if not render.get("url"):
                return ResourceStatus(state="failed", error="render succeeded but no URL was provided")
            return ResourceStatus(state="ready", url=render["url"], duration=render.get("duration"))
        if status == "failed":
            reason = render.get("error_message") or render.get("error") or "unknown render failure"
            return ResourceStatus(state="failed", error=reason)
        return ResourceStatus(state="pending")
