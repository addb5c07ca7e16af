"""
Creator wizard

  1 Product → 2 Character → 3 Review (script + 3 images, 15 credits)
  → 4 Video settings → 5 Generating (N × 8s clips) → 6 Result
"""

from .costs import batch_cost, final_cost
from .pipeline import CreatorPipeline
from .state import CreatorState, reduce

__all__ = [
    "CreatorPipeline",
    "CreatorState",
    "reduce",
    "batch_cost",
    "final_cost",
]
