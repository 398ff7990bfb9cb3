# src/map_locations.py
"""
Builds the location list shown on a map block.

If the author did not supply locations, the list is derived from the main
location of every location block in the document. In both cases entries are
enriched with photos pulled from the matching location block, matched by
(block id, title) first and by title alone second.
"""

import logging

import photo_pipeline
from blocks import Block, Location, LocationBlock, MapBlock, location_blocks

logger = logging.getLogger(__name__)


def derive_map_locations(blocks: list[Block]) -> list[Location]:
    derived = []
    for block in location_blocks(blocks):
        main = block.content.main_location
        if not main.is_displayable():
            continue
        derived.append(main.model_copy(update={"block_id": block.id}, deep=True))
    return derived


def _block_photos(block: LocationBlock) -> list[str]:
    return photo_pipeline.render_photos(block.content.main_location.photos)


def enrich_with_block_photos(locations: list[Location], blocks: list[Block]) -> list[Location]:
    """Returns new Location objects; entries that already have valid photos are left as they are."""
    by_block_and_title = {}
    by_title = {}
    for block in location_blocks(blocks):
        main = block.content.main_location
        photos = _block_photos(block)
        if not photos:
            continue
        by_block_and_title[(block.id, main.title)] = (block.id, photos)
        by_title.setdefault(main.title, (block.id, photos))

    enriched = []
    for location in locations:
        own_photos = photo_pipeline.render_photos(location.photos)
        if own_photos:
            enriched.append(location.model_copy(update={"photos": own_photos}))
            continue
        match = by_block_and_title.get((location.block_id, location.title)) or by_title.get(location.title)
        if match is None:
            enriched.append(location.model_copy())
            continue
        block_id, photos = match
        update = {"photos": list(photos)}
        if location.block_id is None:
            update["block_id"] = block_id
        enriched.append(location.model_copy(update=update))
    return enriched


def map_block_locations(map_block: MapBlock, blocks: list[Block]) -> list[Location]:
    supplied = [loc for loc in map_block.content.locations if loc.is_displayable()]
    if supplied:
        locations = supplied
    else:
        locations = derive_map_locations(blocks)
        logger.debug("Map Locations: Derived %d locations for map block %s", len(locations), map_block.id)
    return enrich_with_block_photos(locations, blocks)
