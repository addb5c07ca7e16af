"""
Gemini integration for the studio.

- Text + vision (scripts, comic panel breakdowns, image analysis): Gemini 2.0 Flash via REST
- Image generation (candidates, comic strips): Gemini 3 Pro Image via REST generateContent
- Video generation: Veo via REST predictLongRunning + operation polling

All calls go through one httpx.AsyncClient so tests can swap the transport.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, Field

from . import config
from .errors import (
    AuthorizationRequired,
    GenerationError,
    ResponseShapeError,
    VideoTimeoutError,
)
from .models import ComicCharacter, EmbeddedImage
from .prompts import (
    DEFAULT_ANALYSIS_PROMPT,
    build_panel_breakdown_prompt,
    build_script_prompt,
    reference_instruction,
)

logger = logging.getLogger(__name__)

SCRIPT_FALLBACK = "Could not generate script."
ANALYSIS_FALLBACK = "No analysis could be generated."


# =========================================================================
# Veo operation schema
# =========================================================================

class VideoRef(BaseModel):
    uri: Optional[str] = None


class GeneratedSample(BaseModel):
    video: Optional[VideoRef] = None


class GenerateVideoResponse(BaseModel):
    generated_samples: list[GeneratedSample] = Field(default_factory=list, alias="generatedSamples")


class OperationError(BaseModel):
    code: Optional[int] = None
    message: Optional[str] = None


class OperationResponse(BaseModel):
    generate_video_response: Optional[GenerateVideoResponse] = Field(
        default=None, alias="generateVideoResponse"
    )
    generated_videos: list[GeneratedSample] = Field(default_factory=list, alias="generatedVideos")
    videos: list[VideoRef] = Field(default_factory=list)
    video_uri: Optional[str] = Field(default=None, alias="videoUri")


class VideoOperation(BaseModel):
    """Long-running Veo job as returned by submit and by each poll."""

    name: str = ""
    done: bool = False
    error: Optional[OperationError] = None
    response: Optional[OperationResponse] = None

    def result_uri(self) -> Optional[str]:
        """First populated result location wins; the provider schema has drifted before."""
        resp = self.response
        if resp is None:
            return None

        candidates: list[Optional[str]] = []
        if resp.generate_video_response and resp.generate_video_response.generated_samples:
            sample = resp.generate_video_response.generated_samples[0]
            candidates.append(sample.video.uri if sample.video else None)
        if resp.generated_videos:
            sample = resp.generated_videos[0]
            candidates.append(sample.video.uri if sample.video else None)
        if resp.videos:
            candidates.append(resp.videos[0].uri)
        candidates.append(resp.video_uri)

        for uri in candidates:
            if uri:
                return uri
        return None


# =========================================================================
# Video access gate
# =========================================================================

class VideoAccessGate:
    """
    The billed video capability is a separate permission from basic usage.

    `request()` starts the out-of-band consent flow (the UI asks the user for
    a paid key); `grant()` completes it.
    """

    def __init__(self, api_key: str = ""):
        self._api_key = api_key
        self.pending = False

    @property
    def api_key(self) -> str:
        return self._api_key

    def is_granted(self) -> bool:
        return bool(self._api_key)

    async def request(self) -> None:
        self.pending = True
        logger.info("Video access requested — waiting for user to supply a billed key")

    def grant(self, api_key: str) -> None:
        if not api_key:
            raise AuthorizationRequired("A video API key is required.")
        self._api_key = api_key
        self.pending = False
        logger.info("Video access granted")


# =========================================================================
# Client
# =========================================================================

class GeminiClient:
    """Call/poll wrapper around the Generative Language REST API."""

    def __init__(
        self,
        api_key: str = config.GEMINI_API_KEY,
        http: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        poll_interval: float = config.VIDEO_POLL_INTERVAL,
        poll_timeout: float = config.VIDEO_POLL_TIMEOUT,
        api_base: str = config.GEMINI_API_BASE,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=config.REQUEST_TIMEOUT)
        self._sleep = sleep
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Transport ────────────────────────────────────────────────────────

    async def _post(self, path: str, body: dict, key: Optional[str] = None) -> dict:
        if not (key or self.api_key):
            raise GenerationError("GEMINI_API_KEY not set")

        resp = await self._http.post(
            f"{self.api_base}/{path}",
            params={"key": key or self.api_key},
            json=body,
        )
        if resp.status_code != 200:
            raise GenerationError(f"Gemini API error {resp.status_code}: {resp.text[:500]}")
        return resp.json()

    async def _get(self, path: str, key: Optional[str] = None) -> dict:
        resp = await self._http.get(
            f"{self.api_base}/{path}",
            params={"key": key or self.api_key},
        )
        if resp.status_code != 200:
            raise GenerationError(f"Gemini API error {resp.status_code}: {resp.text[:500]}")
        return resp.json()

    async def _generate_content(self, model: str, parts: list, config_: Optional[dict] = None) -> dict:
        body: dict = {"contents": [{"parts": parts}]}
        if config_:
            body["generationConfig"] = config_
        return await self._post(f"models/{model}:generateContent", body)

    @staticmethod
    def _response_parts(result: dict) -> list:
        candidates = result.get("candidates") or []
        if not candidates:
            return []
        return (candidates[0].get("content") or {}).get("parts") or []

    @classmethod
    def _response_text(cls, result: dict) -> str:
        texts = [p.get("text", "") for p in cls._response_parts(result) if "text" in p]
        return "".join(texts).strip()

    # ── Image ────────────────────────────────────────────────────────────

    async def generate_image(
        self,
        prompt: str,
        aspect_ratio: str,
        reference_image: Optional[EmbeddedImage] = None,
        secondary_image: Optional[EmbeddedImage] = None,
    ) -> str:
        """
        Generate one image and return it as a data URI.

        Args:
            prompt:          Full image description.
            aspect_ratio:    e.g. "9:16".
            reference_image: The product photo, if any.
            secondary_image: Character style reference, only used with a product.

        Raises:
            GenerationError: no inline image came back.
        """
        references = [img for img in (reference_image, secondary_image) if img is not None]
        parts: list = [
            {"inlineData": {"mimeType": img.mime_type, "data": img.data}} for img in references
        ]
        parts.append({"text": reference_instruction(prompt, len(references))})

        logger.info(f"Image request: {len(references)} reference(s), prompt={prompt[:60]}...")
        result = await self._generate_content(
            config.MODELS["IMAGE"],
            parts,
            {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": aspect_ratio, "imageSize": "1K"},
            },
        )

        return self._image_uri(result)

    async def generate_comic(
        self,
        prompt: str,
        aspect_ratio: str,
        character_references: Optional[list[EmbeddedImage]] = None,
    ) -> str:
        """Render a whole multi-panel strip as one image; character sheets ride along inline."""
        references = character_references or []
        parts: list = [
            {"inlineData": {"mimeType": img.mime_type, "data": img.data}} for img in references
        ]
        parts.append({"text": prompt})

        logger.info(f"Comic request: {len(references)} character reference(s)")
        result = await self._generate_content(
            config.MODELS["IMAGE"],
            parts,
            {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": aspect_ratio, "imageSize": "1K"},
            },
        )
        return self._image_uri(result)

    @classmethod
    def _image_uri(cls, result: dict) -> str:
        for part in cls._response_parts(result):
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                mime = inline.get("mimeType", "image/png")
                return f"data:{mime};base64,{inline['data']}"

        raise GenerationError("Failed to generate image. No image data returned.")

    # ── Video ────────────────────────────────────────────────────────────

    async def generate_video(
        self,
        prompt: str,
        aspect_ratio: str,
        image: Optional[EmbeddedImage] = None,
        api_key: Optional[str] = None,
    ) -> str:
        """
        Submit a Veo job, poll until done, and return the clip as a data URI.

        Polls every `poll_interval` seconds up to `poll_timeout`.

        Raises:
            GenerationError:    provider reported an error.
            ResponseShapeError: job finished without a recognisable video URI.
            VideoTimeoutError:  ceiling reached.
        """
        instance: dict = {}
        if prompt:
            instance["prompt"] = prompt
        if image is not None:
            instance["image"] = {"bytesBase64Encoded": image.data, "mimeType": image.mime_type}
        if not instance:
            raise GenerationError("A prompt or an image is required for video generation.")

        body = {
            "instances": [instance],
            "parameters": {"aspectRatio": aspect_ratio, "sampleCount": 1, "resolution": "720p"},
        }
        submitted = await self._post(
            f"models/{config.MODELS['VIDEO']}:predictLongRunning", body, key=api_key
        )
        operation = VideoOperation.model_validate(submitted)
        if not operation.name and not operation.done:
            raise ResponseShapeError(f"Veo submit returned no operation name: {submitted}")

        logger.info(f"Veo job submitted: {operation.name}")

        max_polls = max(1, int(self.poll_timeout // self.poll_interval))
        polls = 0
        while not operation.done:
            if polls >= max_polls:
                raise VideoTimeoutError(
                    f"Video generation timed out after {int(self.poll_timeout)}s"
                )
            await self._sleep(self.poll_interval)
            polls += 1
            operation = VideoOperation.model_validate(await self._get(operation.name, key=api_key))
            logger.debug(f"Veo poll #{polls}: done={operation.done}")

        if operation.error is not None:
            raise GenerationError(operation.error.message or "Video generation failed.")

        uri = operation.result_uri()
        if not uri:
            raise ResponseShapeError("Video generation completed but no URI was returned.")

        video = await self._download(uri, api_key or self.api_key)
        return EmbeddedImage.from_bytes(video, "video/mp4").data_uri

    async def _download(self, uri: str, key: str) -> bytes:
        resp = await self._http.get(uri, params={"key": key}, follow_redirects=True)
        if resp.status_code != 200:
            raise GenerationError(f"Could not download generated video ({resp.status_code})")
        return resp.content

    # ── Text ─────────────────────────────────────────────────────────────

    async def generate_script(
        self,
        product_name: str,
        description: str,
        target_audience: str,
        price: Optional[str] = None,
    ) -> str:
        prompt = build_script_prompt(product_name, description, target_audience, price)
        result = await self._generate_content(config.MODELS["ANALYSIS"], [{"text": prompt}])
        return self._response_text(result) or SCRIPT_FALLBACK

    async def analyze_image(self, prompt: str, image: EmbeddedImage) -> str:
        parts = [
            {"inlineData": {"mimeType": image.mime_type, "data": image.data}},
            {"text": prompt or DEFAULT_ANALYSIS_PROMPT},
        ]
        result = await self._generate_content(config.MODELS["ANALYSIS"], parts)
        return self._response_text(result) or ANALYSIS_FALLBACK

    async def generate_panel_breakdown(
        self,
        story: str,
        panel_count: int,
        characters: Optional[list[ComicCharacter]] = None,
    ) -> list[str]:
        """
        Split a short story into one description per comic panel.

        Raises:
            ResponseShapeError: the model did not return `panel_count` descriptions.
        """
        prompt = build_panel_breakdown_prompt(story, panel_count, characters or [])
        result = await self._generate_content(
            config.MODELS["ANALYSIS"],
            [{"text": prompt}],
            {"responseMimeType": "application/json"},
        )
        text = self._response_text(result)
        try:
            panels = json.loads(text)
        except ValueError as e:
            raise ResponseShapeError(f"Panel breakdown was not JSON: {text[:200]}") from e

        if not isinstance(panels, list):
            raise ResponseShapeError("Panel breakdown was not a list.")
        panels = [str(p).strip() for p in panels if str(p).strip()]
        if len(panels) < panel_count:
            raise ResponseShapeError(
                f"Could not split the story into {panel_count} panels (got {len(panels)})."
            )
        return panels[:panel_count]
