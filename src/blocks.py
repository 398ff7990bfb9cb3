# src/blocks.py
"""
Block document model.

A tour document is an ordered list of blocks `{id, type, content}`. The
`content` payload depends on `type`; there are nine known types and an
explicit `UnknownBlock` fallback so that malformed documents degrade to a
visible placeholder instead of failing.
"""

import json
import logging
from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

import photo_pipeline

logger = logging.getLogger(__name__)

BLOCK_TYPES = ("location", "title", "photo_text", "text", "slide", "3columns", "photo", "divider", "map")


def merge_legacy_photo(data):
    # Older documents store a single `photo` instead of `photos`
    if isinstance(data, dict) and "photo" in data and not data.get("photos"):
        data = dict(data)
        data["photos"] = data.pop("photo")
    return data


class Location(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str = ""
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    place_id: Optional[str] = None
    rating: Optional[float] = None
    price_level: Optional[Union[int, str]] = None
    approx_cost: Optional[str] = None
    description: Optional[str] = None
    recommendations: Optional[str] = None
    photos: list[str] = Field(default_factory=list)
    time: Optional[str] = None
    block_id: Optional[str] = Field(default=None, alias="blockId")

    @model_validator(mode="before")
    @classmethod
    def _merge_legacy_photo(cls, data):
        return merge_legacy_photo(data)

    @field_validator("title", "address", mode="before")
    @classmethod
    def _to_text(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v if isinstance(v, str) else ""

    @field_validator("place_id", "approx_cost", "description", "recommendations", "time", "block_id", mode="before")
    @classmethod
    def _to_optional_text(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v if isinstance(v, str) else None

    @field_validator("price_level", mode="before")
    @classmethod
    def _scalar_price_level(cls, v):
        if isinstance(v, float):
            return int(v) if v.is_integer() else None
        return v if isinstance(v, (int, str)) and not isinstance(v, bool) else None

    @field_validator("photos", mode="before")
    @classmethod
    def _normalize_photos(cls, v):
        return photo_pipeline.normalize(v)

    @field_validator("lat", "lng", "rating", mode="before")
    @classmethod
    def _lenient_number(cls, v):
        # Editors send "" for cleared numeric fields; "n/a" and the like mean unknown too
        if v is None or isinstance(v, bool):
            return None
        try:
            return float(v)
        except (TypeError, ValueError):
            return None

    def is_displayable(self) -> bool:
        return bool(self.title.strip() or self.address.strip())

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Content payloads ---

def _location_entries(v) -> list:
    """Drops entries that cannot be a location at all; one stray value must not void the block."""
    if not isinstance(v, list):
        return []
    return [entry for entry in v if isinstance(entry, (dict, Location))]


class _Content(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class LocationContent(_Content):
    main_location: Location = Field(default_factory=Location, alias="mainLocation")
    alternative_locations: list[Location] = Field(default_factory=list, alias="alternativeLocations")
    enable_time_field: bool = Field(default=False, alias="enableTimeField")

    @field_validator("main_location", mode="before")
    @classmethod
    def _empty_main(cls, v):
        return {} if v is None else v

    @field_validator("alternative_locations", mode="before")
    @classmethod
    def _empty_alternatives(cls, v):
        return _location_entries(v)


class TitleContent(_Content):
    text: str = ""
    size: Literal["small", "medium", "large"] = "large"


class PhotoTextContent(_Content):
    photos: list[str] = Field(default_factory=list)
    text: str = ""
    alignment: Literal["left", "right"] = "left"

    @model_validator(mode="before")
    @classmethod
    def _merge_legacy_photo(cls, data):
        return merge_legacy_photo(data)

    @field_validator("photos", mode="before")
    @classmethod
    def _normalize_photos(cls, v):
        return photo_pipeline.normalize(v)


class SlideContent(PhotoTextContent):
    title: str = ""


class PhotoContent(_Content):
    photos: list[str] = Field(default_factory=list)
    caption: str = ""

    @model_validator(mode="before")
    @classmethod
    def _merge_legacy_photo(cls, data):
        return merge_legacy_photo(data)

    @field_validator("photos", mode="before")
    @classmethod
    def _normalize_photos(cls, v):
        return photo_pipeline.normalize(v)


class TextContent(_Content):
    layout: Literal["single", "two-columns"] = "single"
    text: str = ""
    column1: str = ""
    column2: str = ""
    formatted: bool = False


class Column(_Content):
    photo: Optional[str] = None
    text: str = ""

    @field_validator("photo", mode="before")
    @classmethod
    def _first_photo(cls, v):
        photos = photo_pipeline.normalize(v)
        return photos[0] if photos else None


class ThreeColumnsContent(_Content):
    columns: list[Column] = Field(default_factory=list)

    @field_validator("columns", mode="after")
    @classmethod
    def _exactly_three(cls, v):
        v = list(v[:3])
        while len(v) < 3:
            v.append(Column())
        return v


class DividerContent(_Content):
    style: Literal["solid", "dashed", "dotted"] = "solid"


class MapContent(_Content):
    hidden: bool = False
    locations: list[Location] = Field(default_factory=list)

    @field_validator("locations", mode="before")
    @classmethod
    def _object_entries(cls, v):
        return _location_entries(v)


# --- Blocks ---

class Block(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    type: str = Field(validation_alias=AliasChoices("type", "block_type"))

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v):
        return str(v)

    @model_validator(mode="before")
    @classmethod
    def _content_default(cls, data):
        if isinstance(data, dict) and data.get("content") is None:
            data = dict(data)
            data["content"] = {}
        return data

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class LocationBlock(Block):
    type: Literal["location"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: LocationContent


class TitleBlock(Block):
    type: Literal["title"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: TitleContent


class PhotoTextBlock(Block):
    type: Literal["photo_text"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: PhotoTextContent


class TextBlock(Block):
    type: Literal["text"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: TextContent


class SlideBlock(Block):
    type: Literal["slide"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: SlideContent


class ThreeColumnsBlock(Block):
    type: Literal["3columns"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: ThreeColumnsContent


class PhotoBlock(Block):
    type: Literal["photo"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: PhotoContent


class DividerBlock(Block):
    type: Literal["divider"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: DividerContent


class MapBlock(Block):
    type: Literal["map"] = Field(validation_alias=AliasChoices("type", "block_type"))
    content: MapContent


class UnknownBlock(Block):
    """Anything that is not one of the nine known types, or failed validation."""
    content: Any = None
    error: Optional[str] = None


BLOCK_MODELS = {
    "location": LocationBlock,
    "title": TitleBlock,
    "photo_text": PhotoTextBlock,
    "text": TextBlock,
    "slide": SlideBlock,
    "3columns": ThreeColumnsBlock,
    "photo": PhotoBlock,
    "divider": DividerBlock,
    "map": MapBlock,
}


def parse_block(raw) -> Block:
    """Parse one raw block dict. Never raises: bad blocks become UnknownBlock."""
    if isinstance(raw, Block):
        return raw
    if not isinstance(raw, dict):
        return UnknownBlock(id="", type=type(raw).__name__, content=raw, error="block is not an object")

    block_type = raw.get("type", raw.get("block_type"))
    model = BLOCK_MODELS.get(block_type)
    if model is None:
        return UnknownBlock(id=str(raw.get("id", "")), type=str(block_type), content=raw.get("content"))
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning("Block Model: Invalid '%s' block %s - %s", block_type, raw.get("id"), e.error_count())
        return UnknownBlock(
            id=str(raw.get("id", "")),
            type=str(block_type),
            content=raw.get("content"),
            error=f"invalid {block_type} content",
        )


def parse_document(raw_blocks) -> list[Block]:
    if not raw_blocks:
        return []
    return [parse_block(raw) for raw in raw_blocks]


def location_blocks(blocks: list[Block]) -> list[LocationBlock]:
    return [b for b in blocks if isinstance(b, LocationBlock)]


def document_blocks(raw) -> list:
    """Raw block list of a decoded document: a list, or an object with a "blocks" list."""
    raw_blocks = raw.get("blocks", []) if isinstance(raw, dict) else raw
    if not isinstance(raw_blocks, list):
        raise ValueError('A tour document is a list of blocks (or an object with a "blocks" list).')
    return raw_blocks


def load_document_file(path) -> list:
    with open(path, encoding="utf-8") as f:
        return document_blocks(json.load(f))
