"""
CreatorPipeline — the product → character → images → clips wizard.

Billed transitions:
  2 → 3  Batch generate: 1 script, then 3 candidate images one at a time.
  4 → 6  Final generate: N clips one at a time from the selected image.

Generation calls are strictly sequential with fixed pauses in between; the
provider rate-limits bursts. Every failure is caught here, turned into one
message on the state, and the wizard stays interactive.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .. import config
from ..assets import AssetRepository
from ..config import CostTable
from ..errors import PersistenceError, StudioError, describe_failure
from ..gemini import GeminiClient, VideoAccessGate
from ..ledger import CreditLedger
from ..models import (
    AssetType,
    CharacterInfo,
    CreatorStep,
    GeneratedAsset,
    ProductInfo,
    ReferenceType,
    VideoLength,
)
from ..prompts import build_image_prompt, build_video_prompt
from ..storage import fetch_embedded
from .costs import batch_cost, final_cost
from .state import (
    AuthorizationGranted,
    AuthorizationNeeded,
    BatchFailed,
    BatchStarted,
    BatchSucceeded,
    CharacterChanged,
    ClipProgress,
    ClipSaved,
    ClipStarted,
    CreatorState,
    Event,
    FailureReported,
    GenerationFailed,
    GenerationStarted,
    GenerationSucceeded,
    ImageToggled,
    ProductChanged,
    ProductSubmitted,
    Reset,
    ScriptEdited,
    SelectionConfirmed,
    StepBack,
    VideoLengthChosen,
    accepts,
    reduce,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_MESSAGE = (
    "Video generation needs a billed API key. Please authorize video access and try again."
)


class CreatorPipeline:
    """
    One wizard session for one user.

    Usage:
        pipeline = CreatorPipeline(user_id, client, ledger, assets, gate)
        pipeline.update_product(product)
        pipeline.submit_product()
        await pipeline.generate_assets()
        pipeline.toggle_image(image_id)
        pipeline.confirm_selection()
        pipeline.choose_video_length(VideoLength.MEDIUM)
        await pipeline.generate_video()
    """

    def __init__(
        self,
        user_id: str,
        client: GeminiClient,
        ledger: CreditLedger,
        assets: AssetRepository,
        gate: VideoAccessGate,
        costs: CostTable = config.COSTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        batch_delay: float = config.IMAGE_BATCH_DELAY,
        clip_delay: float = config.CLIP_DELAY,
        session_id: str = "",
    ):
        self.user_id = user_id
        self.client = client
        self.ledger = ledger
        self.assets = assets
        self.gate = gate
        self.costs = costs
        self._sleep = sleep
        self.batch_delay = batch_delay
        self.clip_delay = clip_delay
        self.session_id = session_id or user_id
        self._state = CreatorState()

    # ── State ────────────────────────────────────────────────────────────

    @property
    def state(self) -> CreatorState:
        return self._state

    @property
    def progress(self) -> Optional[ClipProgress]:
        return self._state.progress

    def dispatch(self, event: Event) -> CreatorState:
        before = self._state.step
        self._state = reduce(self._state, event)
        if self._state.step != before:
            logger.info(
                f"[{self.session_id}] step {int(before)} → {int(self._state.step)} "
                f"({type(event).__name__})"
            )
        return self._state

    # ── Steps 1–2: inputs ────────────────────────────────────────────────

    def update_product(self, product: ProductInfo) -> CreatorState:
        return self.dispatch(ProductChanged(product))

    def submit_product(self) -> CreatorState:
        return self.dispatch(ProductSubmitted())

    def update_character(self, character: CharacterInfo) -> CreatorState:
        return self.dispatch(CharacterChanged(character))

    # ── Step 2 → 3: batch generate ───────────────────────────────────────

    async def generate_assets(self) -> CreatorState:
        """
        Generate the script and the 3 candidate images, then charge once.

        Nothing is persisted or charged unless all 3 images succeed.
        """
        if not accepts(self._state, BatchStarted()):
            return self.dispatch(BatchStarted())  # reducer reports why

        cost = batch_cost(self.costs)
        if not self.ledger.can_afford(cost):
            return self.dispatch(FailureReported(
                f"Insufficient credits. Generating {config.IMAGE_BATCH_SIZE} variations "
                f"costs {cost:g} credits."
            ))

        self.dispatch(BatchStarted())
        project = self._state.project

        try:
            script = await self.client.generate_script(
                project.product.name,
                project.product.description,
                project.product.target_audience,
                project.product.price or None,
            )

            prompt = build_image_prompt(project.product, project.character)
            reference, secondary = self._image_references(project.product, project.character)

            image_urls: list[str] = []
            for index in range(config.IMAGE_BATCH_SIZE):
                if index > 0:
                    await self._sleep(self.batch_delay)
                logger.info(
                    f"[{self.session_id}] candidate image {index + 1}/{config.IMAGE_BATCH_SIZE}"
                )
                image_urls.append(await self.client.generate_image(
                    prompt, config.CREATOR_ASPECT_RATIO, reference, secondary
                ))

            if not accepts(self._state, BatchSucceeded(script=script, images=())):
                logger.warning(
                    f"[{self.session_id}] wizard left step {int(CreatorStep.CHARACTER)} "
                    f"during the batch; discarding results"
                )
                return self._state

            images = []
            for url in image_urls:
                asset = GeneratedAsset(
                    type=AssetType.IMAGE,
                    url=url,
                    prompt=prompt,
                    aspect_ratio=config.CREATOR_ASPECT_RATIO,
                    user_id=self.user_id,
                )
                images.append(await self._persist(asset, "tiktok", project.product.name))
        except Exception as e:
            logger.error(f"[{self.session_id}] batch generation failed: {e}", exc_info=True)
            return self.dispatch(BatchFailed(describe_failure(e)))

        await self._charge(cost, "image batch")
        return self.dispatch(BatchSucceeded(script=script, images=tuple(images)))

    @staticmethod
    def _image_references(product: ProductInfo, character: CharacterInfo):
        if character.reference_type == ReferenceType.UPLOAD and character.reference_image:
            return product.image, character.reference_image
        return product.image, None

    # ── Step 3 → 4: selection ────────────────────────────────────────────

    def toggle_image(self, image_id: str, multiple: bool = False) -> CreatorState:
        return self.dispatch(ImageToggled(image_id, multiple))

    def confirm_selection(self) -> CreatorState:
        return self.dispatch(SelectionConfirmed())

    def choose_video_length(self, length: VideoLength) -> CreatorState:
        return self.dispatch(VideoLengthChosen(VideoLength(length)))

    def edit_script(self, script: str) -> CreatorState:
        return self.dispatch(ScriptEdited(script))

    def grant_video_access(self, api_key: str) -> CreatorState:
        self.gate.grant(api_key)
        return self.dispatch(AuthorizationGranted())

    # ── Step 4 → 5 → 6: final generate ───────────────────────────────────

    def video_cost(self) -> float:
        return final_cost(self._state.project.video_length, self.costs)

    async def generate_video(self) -> CreatorState:
        """
        Generate every clip for the chosen length and charge once at the end.

        Each clip is saved as its own VIDEO asset as soon as it exists. If clip
        k fails, clips 1..k-1 stay saved, nothing is charged, and the wizard
        returns to step 4.
        """
        if not await self.begin_video():
            return self._state
        return await self.render_clips()

    async def begin_video(self) -> bool:
        """
        Check the preconditions for the final generate and enter step 5.

        Returns False (with the reason on the state) when generation must not
        start.
        """
        if self._state.step != CreatorStep.VIDEO_SETTINGS:
            self.dispatch(GenerationStarted(total_clips=0))  # reducer reports the bad step
            return False

        if not self.gate.is_granted():
            await self.gate.request()
            self.dispatch(AuthorizationNeeded(AUTHORIZATION_MESSAGE))
            return False

        if not self._state.selected_images():
            self.dispatch(FailureReported("Please select at least one image."))
            return False

        length = self._state.project.video_length
        cost = self.video_cost()
        if not self.ledger.can_afford(cost):
            self.dispatch(FailureReported(
                f"Insufficient credits for {int(length)}s video. Need {cost:g} credits."
            ))
            return False

        self.dispatch(GenerationStarted(total_clips=length.clip_count))
        return True

    async def render_clips(self) -> CreatorState:
        """Step 5 body: generate, save and finally charge. Call after begin_video."""
        if self._state.step != CreatorStep.GENERATING:
            return self.dispatch(ClipStarted(0))  # reducer reports the bad step

        project = self._state.project
        length = project.video_length
        total = length.clip_count
        cost = self.video_cost()
        selected = self._state.selected_images()

        try:
            seed = await fetch_embedded(selected[0].url)
            for index in range(1, total + 1):
                if index > 1:
                    await self._sleep(self.clip_delay)
                self.dispatch(ClipStarted(index))
                logger.info(f"[{self.session_id}] clip {index}/{total}")

                prompt = build_video_prompt(
                    project.product, project.character, index, total, project.script
                )
                video_url = await self.client.generate_video(
                    prompt, config.CREATOR_ASPECT_RATIO, seed, api_key=self.gate.api_key
                )
                asset = GeneratedAsset(
                    type=AssetType.VIDEO,
                    url=video_url,
                    prompt=prompt,
                    aspect_ratio=config.CREATOR_ASPECT_RATIO,
                    user_id=self.user_id,
                )
                self.dispatch(ClipSaved(await self._persist(asset, "videos", project.product.name)))
        except Exception as e:
            saved = len(self._state.clips)
            logger.error(
                f"[{self.session_id}] video generation failed after {saved}/{total} clip(s): {e}",
                exc_info=True,
            )
            message = describe_failure(e)
            if saved:
                message += f" ({saved} of {total} clips were saved to your assets.)"
            return self.dispatch(GenerationFailed(message))

        await self._charge(cost, f"{int(length)}s video")
        return self.dispatch(GenerationSucceeded())

    # ── Navigation ───────────────────────────────────────────────────────

    def go_back(self) -> CreatorState:
        return self.dispatch(StepBack())

    def reset(self) -> CreatorState:
        return self.dispatch(Reset())

    # ── Internals ────────────────────────────────────────────────────────

    async def _persist(self, asset: GeneratedAsset, category: str, name: str) -> GeneratedAsset:
        """Save one asset; on a failed row insert keep showing the optimistic record."""
        try:
            saved = await self.assets.save_user_asset(
                self.user_id, asset, category, {"name": name}
            )
        except PersistenceError as e:
            return e.asset or asset
        return saved.asset

    async def _charge(self, amount: float, reason: str) -> None:
        try:
            balance = await self.ledger.debit(amount)
        except StudioError as e:
            logger.error(f"[{self.session_id}] could not charge {amount:g} for {reason}: {e}")
            return
        logger.info(f"[{self.session_id}] charged {amount:g} for {reason}, balance {balance:g}")
