# src/location_swap.py
"""
Main / alternative location swap for location blocks.
"""

import logging
from dataclasses import dataclass

from blocks import Block, Location, LocationBlock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapResult:
    block: Block
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_displayable(location: Location | None) -> bool:
    return location is not None and location.is_displayable()


def swap(block: Block, index: int) -> SwapResult:
    """
    Promotes `alternativeLocations[index]` to `mainLocation`. The previous main
    location takes the promoted one's slot, so swapping the same index twice
    restores the original block.

    Returns a new block; the input is never mutated. An out-of-range index is a
    no-op with a diagnostic instead of an exception.
    """
    if not isinstance(block, LocationBlock):
        message = f"Block {getattr(block, 'id', '?')} is not a location block"
        logger.warning("Location Swap: %s", message)
        return SwapResult(block, message)

    alternatives = block.content.alternative_locations
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(alternatives):
        message = f"Alternative index {index!r} out of range for block {block.id} ({len(alternatives)} alternatives)"
        logger.warning("Location Swap: %s", message)
        return SwapResult(block, message)

    promoted = alternatives[index].model_copy(deep=True)
    demoted = block.content.main_location.model_copy(deep=True)
    new_alternatives = [alt.model_copy(deep=True) for alt in alternatives]
    new_alternatives[index] = demoted

    new_content = block.content.model_copy(update={
        "main_location": promoted,
        "alternative_locations": new_alternatives,
        "enable_time_field": block.content.enable_time_field,
    })
    new_block = block.model_copy(update={"content": new_content})
    logger.info("Location Swap: Block %s now shows '%s' (was '%s')", block.id, promoted.title, demoted.title)
    return SwapResult(new_block)
