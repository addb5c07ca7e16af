"""
Single-shot generators that sit next to the wizard: one image, one video,
one image analysis, one comic strip. Same rules as the wizard: check the
balance before calling the provider, charge only after it succeeded.
"""

import logging
from typing import Optional

from . import config
from .assets import AssetRepository
from .config import CostTable
from .errors import AuthorizationRequired, StudioError, ValidationError
from .gemini import GeminiClient, VideoAccessGate
from .ledger import CreditLedger
from .models import (
    ArtStyle,
    AssetType,
    ColorMode,
    ComicCharacter,
    ComicLayout,
    ComicStrip,
    EmbeddedImage,
    GeneratedAsset,
)
from .prompts import build_comic_prompt

logger = logging.getLogger(__name__)


class StudioTools:
    def __init__(
        self,
        user_id: str,
        client: GeminiClient,
        ledger: CreditLedger,
        assets: AssetRepository,
        gate: VideoAccessGate,
        costs: CostTable = config.COSTS,
    ):
        self.user_id = user_id
        self.client = client
        self.ledger = ledger
        self.assets = assets
        self.gate = gate
        self.costs = costs

    async def quick_image(
        self,
        prompt: str,
        aspect_ratio: str = "1:1",
        reference: Optional[EmbeddedImage] = None,
    ) -> GeneratedAsset:
        if not prompt.strip():
            raise ValidationError("Please enter a prompt.", {"prompt": "Prompt is required."})
        if aspect_ratio not in config.IMAGE_ASPECT_RATIOS:
            raise ValidationError(f"Unsupported aspect ratio {aspect_ratio}.")
        self.ledger.require(
            self.costs.image, f"Insufficient credits. An image costs {self.costs.image:g} credits."
        )

        url = await self.client.generate_image(prompt, aspect_ratio, reference)
        asset = GeneratedAsset(
            type=AssetType.IMAGE, url=url, prompt=prompt, aspect_ratio=aspect_ratio
        )
        asset = await self._persist(asset, "images")
        await self._charge(self.costs.image)
        return asset

    async def quick_video(
        self,
        prompt: str,
        aspect_ratio: str = "16:9",
        image: Optional[EmbeddedImage] = None,
    ) -> GeneratedAsset:
        if not prompt.strip() and image is None:
            raise ValidationError(
                "Please enter a prompt or upload an image.", {"prompt": "Prompt is required."}
            )
        if aspect_ratio not in config.VIDEO_ASPECT_RATIOS:
            raise ValidationError(f"Unsupported aspect ratio {aspect_ratio}.")
        if not self.gate.is_granted():
            await self.gate.request()
            raise AuthorizationRequired("Video generation needs a billed API key.")
        self.ledger.require(
            self.costs.video, f"Insufficient credits. A video costs {self.costs.video:g} credits."
        )

        url = await self.client.generate_video(prompt, aspect_ratio, image, api_key=self.gate.api_key)
        asset = GeneratedAsset(
            type=AssetType.VIDEO, url=url, prompt=prompt, aspect_ratio=aspect_ratio
        )
        asset = await self._persist(asset, "videos")
        await self._charge(self.costs.video)
        return asset

    async def analyze(self, prompt: str, image: EmbeddedImage) -> str:
        self.ledger.require(
            self.costs.analysis,
            f"Insufficient credits. An analysis costs {self.costs.analysis:g} credits.",
        )
        text = await self.client.analyze_image(prompt, image)
        await self._charge(self.costs.analysis)
        return text

    async def comic_panels(
        self,
        story: str,
        layout: ComicLayout = ComicLayout.FOUR_PANEL,
        characters: Optional[list[ComicCharacter]] = None,
    ) -> list[str]:
        """Split the story into per-panel descriptions the user can edit. Free."""
        if not story.strip():
            raise ValidationError("Please enter a story.", {"story": "Story is required."})
        return await self.client.generate_panel_breakdown(story, layout.panel_count, characters or [])

    async def comic(
        self,
        story: str,
        layout: ComicLayout = ComicLayout.FOUR_PANEL,
        art_style: ArtStyle = ArtStyle.ANIME,
        color_mode: ColorMode = ColorMode.COLOR,
        characters: Optional[list[ComicCharacter]] = None,
        panels: Optional[list[str]] = None,
    ) -> ComicStrip:
        """
        Render the whole strip as one image and save it under comics.

        `panels` comes from a prior `comic_panels` call, possibly edited; when
        empty the story is broken down here first.
        """
        characters = characters or []
        panels = [p.strip() for p in panels or [] if p.strip()]
        if not story.strip() and not panels:
            raise ValidationError("Please enter a story.", {"story": "Story is required."})
        if panels and len(panels) != layout.panel_count:
            raise ValidationError(
                f"The {layout.value} layout needs {layout.panel_count} panels, got {len(panels)}.",
                {"panels": f"Exactly {layout.panel_count} panels are required."},
            )
        self.ledger.require(
            self.costs.comic, f"Insufficient credits. A comic costs {self.costs.comic:g} credits."
        )

        if not panels:
            panels = await self.client.generate_panel_breakdown(
                story, layout.panel_count, characters
            )
        prompt = build_comic_prompt(layout, art_style, color_mode, characters, panels)
        references = [c.visual_reference for c in characters if c.visual_reference]

        url = await self.client.generate_comic(prompt, config.COMIC_ASPECT_RATIO, references)
        asset = GeneratedAsset(
            type=AssetType.IMAGE, url=url, prompt=prompt, aspect_ratio=config.COMIC_ASPECT_RATIO
        )
        asset = await self._persist(asset, "comics")
        await self._charge(self.costs.comic)
        return ComicStrip(panels=panels, asset=asset)

    async def _persist(self, asset: GeneratedAsset, category: str) -> GeneratedAsset:
        try:
            saved = await self.assets.save_user_asset(self.user_id, asset, category)
        except StudioError as e:
            return getattr(e, "asset", None) or asset
        return saved.asset

    async def _charge(self, amount: float) -> None:
        try:
            await self.ledger.debit(amount)
        except StudioError as e:
            logger.error(f"Could not charge {amount:g} credits to {self.user_id}: {e}")
