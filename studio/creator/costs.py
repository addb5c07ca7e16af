"""Credit prices for the two billed wizard transitions."""

from .. import config
from ..config import CostTable
from ..models import VideoLength


def batch_cost(costs: CostTable = config.COSTS) -> float:
    """Three candidate images, charged once as a batch."""
    return round(costs.image * config.IMAGE_BATCH_SIZE, 2)


def final_cost(length: VideoLength, costs: CostTable = config.COSTS) -> float:
    clips = VideoLength(length).clip_count
    voiceover = costs.voiceover * config.IMAGE_BATCH_SIZE
    voice = costs.voice_base + costs.voice_per_clip * clips
    video = costs.video * clips
    return round(voiceover + voice + video, 2)
