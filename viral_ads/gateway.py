from __future__ import annotations

"""
Gemini-backed content generation: research, ad scripts, images and video.

Every remote call is bounded by a fixed timeout and every failure leaves this
module as a GatewayError subclass. Payloads going in and out are data: URLs,
except videos, which are written to the media directory and returned as
file:// URIs.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, List, Optional, Tuple, TypeVar

from google import genai
from google.genai import types

from .config import Settings
from .errors import EntitlementError, GatewayError, GatewayTimeout, MalformedResponse
from .models import (
    SCRIPTS_PER_AD,
    AdFormat,
    CampaignInput,
    CarouselSlide,
    ResearchSource,
    Script,
)
from .prompts import (
    FORMAT_TEXT,
    RESEARCH_DISABLED_TEXT,
    SCRIPTS_RESPONSE_SCHEMA,
    build_edit_prompt,
    build_refinement_prompt,
    build_research_prompt,
    build_generation_prompt,
    build_system_instruction,
)
from .strategies import Strategy, first_success
from .utils import (
    VIDEO_ASPECT_RATIOS,
    aspect_ratio_for,
    canvas_size_for,
    decode_payload,
    fit_image_to_canvas,
    image_from_payload,
    image_to_payload,
    new_id,
    payload_body,
    payload_mime_type,
    stamp_logo,
    to_data_url,
)

T = TypeVar("T")

# Base64 bodies shorter than this cannot be a real image.
MIN_PAYLOAD_CHARS = 100

ENTITLEMENT_SIGNATURES = ("Requested entity was not found", "404")


@dataclass(frozen=True)
class ResearchResult:
    summary: str
    sources: Tuple[ResearchSource, ...]


@dataclass(frozen=True)
class ScriptBatch:
    scripts: Tuple[Script, ...]
    image_prompt: str


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def classify_error(exc: BaseException) -> GatewayError:
    """Map an SDK or transport exception onto the gateway error taxonomy."""
    if isinstance(exc, GatewayError):
        return exc
    text = str(exc)
    code = getattr(exc, "code", None)
    if code == 404 or any(sig in text for sig in ENTITLEMENT_SIGNATURES):
        return EntitlementError(text)
    return GatewayError(text or exc.__class__.__name__)


def parse_script_batch(text: Optional[str]) -> ScriptBatch:
    """
    Turn the JSON answer of the text model into scripts and an image prompt.

    Raises MalformedResponse when the answer is empty, not JSON, or carries no
    usable script.
    """
    raw_text = (text or "").strip()
    if not raw_text:
        raise MalformedResponse("No response from the text model")
    try:
        data = json.loads(raw_text)
    except ValueError as exc:
        logging.debug("Raw text response (truncated): %s", raw_text[:500])
        raise MalformedResponse(f"Text model did not return JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponse("Text model returned JSON that is not an object")

    image_prompt = data.get("imagePrompt")
    scripts_raw = data.get("scripts")
    if not isinstance(image_prompt, str) or not image_prompt.strip():
        raise MalformedResponse("Response has no imagePrompt")
    if not isinstance(scripts_raw, list) or not scripts_raw:
        raise MalformedResponse("Response has no scripts")

    scripts: List[Script] = []
    try:
        for item in scripts_raw:
            scripts.append(_script_from_item(item))
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(f"Unusable script entry: {exc}") from exc

    if len(scripts) != SCRIPTS_PER_AD:
        logging.warning(
            "Text model returned %d scripts instead of %d.", len(scripts), SCRIPTS_PER_AD
        )
    return ScriptBatch(scripts=tuple(scripts), image_prompt=image_prompt.strip())


def _script_from_item(item: Any) -> Script:
    if not isinstance(item, dict):
        raise TypeError("script entries must be objects")
    slides = None
    if isinstance(item.get("slides"), list):
        slides = tuple(
            CarouselSlide(
                slide_number=int(s.get("slideNumber") or i + 1),
                visual_description=str(s.get("visualDescription") or ""),
                headline=str(s.get("headline") or ""),
                body=str(s.get("body") or ""),
            )
            for i, s in enumerate(item["slides"])
            if isinstance(s, dict)
        )
    return Script(
        title=str(item.get("title") or ""),
        hook=str(item.get("hook") or ""),
        body=str(item.get("body") or ""),
        cta=str(item.get("cta") or ""),
        slides=slides,
    )


def extract_sources(response: Any) -> Tuple[ResearchSource, ...]:
    """Collect web sources from the grounding metadata of a search response."""
    sources: List[ResearchSource] = []
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return ()
    metadata = getattr(candidates[0], "grounding_metadata", None)
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is not None:
            sources.append(
                ResearchSource(
                    title=getattr(web, "title", None) or "Source",
                    uri=getattr(web, "uri", None) or "#",
                )
            )
    return tuple(sources)


def extract_first_image(response: Any) -> Tuple[bytes, str]:
    """Return (bytes, mime type) of the first inline image in a response."""
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        if not content:
            continue
        for part in getattr(content, "parts", None) or []:
            inline_data = getattr(part, "inline_data", None)
            if inline_data and (getattr(inline_data, "mime_type", "") or "").startswith("image/"):
                data = getattr(inline_data, "data", None)
                if data:
                    return data, inline_data.mime_type
    raise MalformedResponse("No image data found in model response")


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class GeminiGateway:
    """Content generation over the Google Gen AI SDK (async client)."""

    def __init__(self, settings: Settings, client: Optional[Any] = None) -> None:
        self.settings = settings
        self._client = client

    def _get_client(self) -> Any:
        """Lazily create the Gen AI client from the configured API key."""
        if self._client is not None:
            return self._client
        if not self.settings.api_key:
            raise GatewayError(
                "GEMINI_API_KEY or GOOGLE_API_KEY must be set in the environment."
            )
        self._client = genai.Client(api_key=self.settings.api_key)
        # Do not log the key, only that the client exists.
        logging.info("Initialized Gemini client.")
        return self._client

    def use_api_key(self, api_key: str) -> None:
        """Switch credentials; the next call builds a fresh client."""
        self.settings = self.settings.with_api_key(api_key)
        self._client = None

    async def _bounded(self, call: Awaitable[T], what: str, timeout: Optional[float] = None) -> T:
        limit = self.settings.request_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(call, timeout=limit)
        except asyncio.TimeoutError as exc:
            raise GatewayTimeout(f"Timeout: {what} took longer than {limit:g}s") from exc
        except GatewayError:
            raise
        except Exception as exc:
            raise classify_error(exc) from exc

    # -- text -------------------------------------------------------------------

    async def research(
            self,
            product_name: str,
            audience: str,
            pain_point: str,
            enabled: bool = True,
    ) -> ResearchResult:
        if not enabled:
            return ResearchResult(summary=RESEARCH_DISABLED_TEXT, sources=())

        client = self._get_client()
        logging.info("Researching market context for '%s'", product_name)
        response = await self._bounded(
            client.aio.models.generate_content(
                model=self.settings.text_model,
                contents=build_research_prompt(product_name, audience, pain_point),
                config=types.GenerateContentConfig(
                    tools=[types.Tool(google_search=types.GoogleSearch())],
                ),
            ),
            "research",
        )
        sources = extract_sources(response)
        logging.info("Research returned %d source(s)", len(sources))
        return ResearchResult(
            summary=getattr(response, "text", None) or "No research data available.",
            sources=sources,
        )

    async def _scripts(self, prompt: str, use_pro_mode: bool, what: str) -> ScriptBatch:
        client = self._get_client()
        response = await self._bounded(
            client.aio.models.generate_content(
                model=self.settings.text_model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=build_system_instruction(
                        use_pro_mode, self.settings.copy_language
                    ),
                    response_mime_type="application/json",
                    response_schema=SCRIPTS_RESPONSE_SCHEMA,
                ),
            ),
            what,
        )
        return parse_script_batch(getattr(response, "text", None))

    async def generate_scripts(
            self,
            data: CampaignInput,
            research_context: str,
            color_directive: str,
    ) -> ScriptBatch:
        """Write the ad scripts and the image prompt for a new ad set."""
        logging.info(
            "Generating scripts for '%s' (archetype=%s, format=%s, tone=%s)",
            data.product_name,
            data.archetype.name,
            data.format.name,
            data.tone.name,
        )
        prompt = build_generation_prompt(data, research_context, color_directive)
        return await self._scripts(prompt, data.use_pro_mode, "script generation")

    async def refine_scripts(
            self,
            data: CampaignInput,
            previous_image_prompt: str,
            instruction: str,
    ) -> ScriptBatch:
        """Rewrite scripts and image prompt following a refinement instruction."""
        logging.info("Refining scripts for '%s'", data.product_name)
        prompt = build_refinement_prompt(data, previous_image_prompt, instruction)
        return await self._scripts(prompt, data.use_pro_mode, "script refinement")

    # -- images -----------------------------------------------------------------

    async def _imagen(self, prompt: str, fmt: AdFormat) -> str:
        client = self._get_client()
        response = await self._bounded(
            client.aio.models.generate_images(
                model=self.settings.image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/png",
                    aspect_ratio=aspect_ratio_for(fmt),
                ),
            ),
            "image generation",
        )
        generated = getattr(response, "generated_images", None) or []
        image = getattr(generated[0], "image", None) if generated else None
        data = getattr(image, "image_bytes", None)
        if not data:
            raise MalformedResponse("Image model returned no image")
        return to_data_url(data, "image/png")

    async def _flash_image(self, prompt: str, fmt: AdFormat) -> str:
        client = self._get_client()
        response = await self._bounded(
            client.aio.models.generate_content(
                model=self.settings.edit_model,
                contents=prompt,
                config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
            ),
            "image generation (fallback)",
        )
        data, mime_type = extract_first_image(response)
        return self._fit(to_data_url(data, mime_type), fmt)

    async def generate_image(self, prompt: str, fmt: AdFormat) -> str:
        """Prompt-only image generation at the aspect ratio of fmt."""
        logging.info("Generating image (format=%s, aspect=%s)", fmt.name, aspect_ratio_for(fmt))
        return await first_success([
            Strategy("imagen", lambda: self._imagen(prompt, fmt)),
            Strategy("flash-image", lambda: self._flash_image(prompt, fmt)),
        ])

    async def edit_image(
            self,
            source: str,
            prompt: str,
            fmt: AdFormat,
            logo: Optional[str] = None,
    ) -> str:
        """
        Put the product from source into a new scene described by prompt.

        The product itself must survive unchanged; only background and lighting
        may change. When a logo is given the model is asked to place it and it
        is also stamped onto the result, so it is always visible.
        """
        if not source or len(payload_body(source)) < MIN_PAYLOAD_CHARS:
            raise GatewayError("Invalid image data (too short)")

        try:
            parts: List[Any] = [
                types.Part.from_bytes(
                    data=decode_payload(source), mime_type=payload_mime_type(source)
                )
            ]
            if logo:
                parts.append(
                    types.Part.from_bytes(
                        data=decode_payload(logo), mime_type=payload_mime_type(logo)
                    )
                )
        except ValueError as exc:
            raise GatewayError(f"Could not decode input image: {exc}") from exc
        parts.append(build_edit_prompt(prompt, FORMAT_TEXT[fmt], with_logo=bool(logo)))

        client = self._get_client()
        logging.info("Editing image (format=%s, logo=%s)", fmt.name, bool(logo))
        response = await self._bounded(
            client.aio.models.generate_content(
                model=self.settings.edit_model,
                contents=parts,
                config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
            ),
            "image edit",
        )
        data, mime_type = extract_first_image(response)
        return self._fit(to_data_url(data, mime_type), fmt, logo)

    def _fit(self, payload: str, fmt: AdFormat, logo: Optional[str] = None) -> str:
        """Bring a model image onto the canvas of fmt and stamp the logo if any."""
        try:
            img = fit_image_to_canvas(image_from_payload(payload).convert("RGB"), canvas_size_for(fmt))
            if logo:
                img = stamp_logo(img, image_from_payload(logo))
        except (OSError, ValueError) as exc:
            raise MalformedResponse(f"Model returned an unreadable image: {exc}") from exc
        return image_to_payload(img)

    # -- video ------------------------------------------------------------------

    async def animate_image(self, image: str, fmt: AdFormat) -> str:
        """
        Turn an image into a short video and return its file:// URI.

        The video job is polled every video_poll_interval seconds; the whole
        job, download included, is bounded by video_timeout.
        """
        return await self._bounded(
            self._animate(image, fmt),
            "video generation",
            timeout=self.settings.video_timeout,
        )

    async def _animate(self, image: str, fmt: AdFormat) -> str:
        client = self._get_client()
        aspect = VIDEO_ASPECT_RATIOS[fmt]
        logging.info("Starting video job (model=%s, aspect=%s)", self.settings.video_model, aspect)
        operation = await client.aio.models.generate_videos(
            model=self.settings.video_model,
            image=types.Image(
                image_bytes=decode_payload(image),
                mime_type=payload_mime_type(image),
            ),
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                resolution="720p",
                aspect_ratio=aspect,
            ),
        )
        while not operation.done:
            await asyncio.sleep(self.settings.video_poll_interval)
            operation = await client.aio.operations.get(operation)

        error = getattr(operation, "error", None)
        if error:
            raise classify_error(RuntimeError(str(error)))

        response = getattr(operation, "response", None)
        videos = getattr(response, "generated_videos", None) or []
        video = getattr(videos[0], "video", None) if videos else None
        if video is None:
            raise MalformedResponse("Video generation failed.")

        data = getattr(video, "video_bytes", None)
        if not data:
            data = await client.aio.files.download(file=video)
        return self._save_video(data)

    def _save_video(self, data: bytes) -> str:
        media_dir = Path(self.settings.media_dir)
        media_dir.mkdir(parents=True, exist_ok=True)
        path = media_dir / f"{new_id()}.mp4"
        path.write_bytes(data)
        logging.info("Saved video (%d bytes) to %s", len(data), path)
        return path.resolve().as_uri()
