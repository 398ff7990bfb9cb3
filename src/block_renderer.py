# src/block_renderer.py
"""
Render dispatcher: turns a parsed block into a presentation-independent
`ViewNode` tree. The Streamlit layer (streamlit_view.py) draws the tree; tests
inspect it directly.

Dispatch is total: each of the nine block types has a renderer and anything
else (including blocks that failed validation) becomes a visible
"Unknown block type" placeholder.
"""

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable

import photo_pipeline
import tools
from block_view_state import BlockViewState, CarouselState, FullscreenViewer, ViewStateStore, viewport_class
from blocks import (
    Block,
    DividerBlock,
    LocationBlock,
    MapBlock,
    PhotoBlock,
    PhotoTextBlock,
    SlideBlock,
    TextBlock,
    ThreeColumnsBlock,
    TitleBlock,
    UnknownBlock,
)
from location_swap import SwapResult, swap
from map_locations import map_block_locations

logger = logging.getLogger(__name__)

TITLE_FONT_SIZES = {
    "desktop": {"small": 24, "medium": 32, "large": 48},
    "mobile": {"small": 20, "medium": 26, "large": 34},
}
IMAGE_HEIGHTS = {
    "photo_text": {"desktop": 200, "mobile": 240},
    "slide": {"desktop": 300, "mobile": 220},
    "3columns": {"desktop": 150, "mobile": 200},
    "photo": {"desktop": 400, "mobile": 240},
    "location": {"desktop": 300, "mobile": 260},
    "alternative": {"desktop": 120, "mobile": 96},
}


@dataclass
class ViewNode:
    kind: str
    props: dict[str, Any] = field(default_factory=dict)
    children: list["ViewNode"] = field(default_factory=list)

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()

    def find_all(self, kind: str) -> list["ViewNode"]:
        return [node for node in self.walk() if node.kind == kind]

    def find(self, kind: str) -> "ViewNode | None":
        return next((node for node in self.walk() if node.kind == kind), None)


@dataclass
class RenderContext:
    blocks: list[Block] = field(default_factory=list)
    viewport_width: int | None = None
    on_switch_location: Callable[[Block], Any] | None = None
    on_edit: Callable[[Block], Any] | None = None
    view_states: ViewStateStore = field(default_factory=ViewStateStore)
    fullscreen: FullscreenViewer | None = None
    highlighted_block_id: str | None = None
    editable: bool = False
    api_key: str | None = None

    @property
    def viewport(self) -> str:
        return viewport_class(self.viewport_width)


def _action(label: str, handler, **props) -> ViewNode:
    return ViewNode("action", {"label": label, "handler": handler, **props})


def _text(text: str, **props) -> ViewNode:
    return ViewNode("text", {"text": text, **props})


def _placeholder(text: str, **props) -> ViewNode:
    return ViewNode("placeholder", {"text": text, **props})


def _open_fullscreen(ctx: RenderContext, photos: list[str], carousel: CarouselState):
    if ctx.fullscreen is not None:
        ctx.fullscreen.open(photos, carousel.index)


def photo_carousel(photo_field, state: BlockViewState, ctx: RenderContext, slot: str, height: int, alt: str = "") -> ViewNode:
    """0 photos -> placeholder, 1 -> image only, >1 -> image + dots + navigation."""
    photos = photo_pipeline.render_photos(photo_field, ctx.api_key)
    carousel = state.carousel(slot)
    count = len(photos)
    carousel.clamp(count)
    if not count:
        return _placeholder("No photo", height=height)

    node = ViewNode("carousel", {
        "photos": photos,
        "index": carousel.index,
        "src": photos[carousel.index],
        "height": height,
        "alt": alt or f"Photo {carousel.index + 1}",
        "carousel": carousel,
        "show_dots": count > 1,
        "on_open": partial(_open_fullscreen, ctx, photos, carousel),
    })
    if count > 1:
        node.children.append(ViewNode("dots", {"count": count, "active": carousel.index}, [
            _action(str(i + 1), partial(carousel.select, i, count), active=(i == carousel.index))
            for i in range(count)
        ]))
        node.children.append(_action("‹", carousel.previous, role="previous", disabled=carousel.index == 0))
        node.children.append(_action("›", partial(carousel.next, count), role="next", disabled=carousel.index >= count - 1))
    return node


# --- Renderers ---

def _switch_location(block: LocationBlock, index: int, ctx: RenderContext, state: BlockViewState) -> SwapResult:
    result = swap(block, index)
    if not result.ok:
        return result
    state.carousel("main").index = 0
    if ctx.on_switch_location is not None:
        ctx.on_switch_location(result.block)
    return result


def render_location(block: LocationBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    content = block.content
    main = content.main_location
    direction = "column" if state.is_mobile else "row"
    node = ViewNode("location", {"layout": direction, "title": main.title})

    if not main.is_displayable():
        node.children.append(_placeholder("Location not set"))
    else:
        if content.enable_time_field and main.time:
            node.children.append(ViewNode("badge", {"text": main.time}))

        details = ViewNode("details")
        details.children.append(ViewNode("heading", {"text": main.title, "level": 3}))
        if main.address:
            details.children.append(ViewNode("link", {
                "text": main.address,
                "href": tools.external_map_url(address=main.address),
                "icon": "📍",
            }))
        if main.approx_cost:
            details.children.append(_text(f"Avg. spend: {main.approx_cost}", icon="💰"))
        if main.price_level not in (None, ""):
            details.children.append(_text(f"Price level: {main.price_level}", icon="⭐"))
        if main.rating is not None:
            details.children.append(_text(f"Rating: {main.rating:g}", icon="★"))

        height = IMAGE_HEIGHTS["location"][state.layout]
        node.children.append(ViewNode("row", {"direction": direction}, [
            photo_carousel(main.photos, state, ctx, "main", height, alt=main.title or "Location"),
            details,
        ]))
        if main.description:
            node.children.append(ViewNode("paragraph", {"text": main.description}))
        if main.recommendations:
            node.children.append(ViewNode("section", {"title": "Recommendations"}, [
                ViewNode("paragraph", {"text": main.recommendations}),
            ]))

    alternatives = [(i, alt) for i, alt in enumerate(content.alternative_locations) if alt.is_displayable()]
    if alternatives:
        section = ViewNode("alternatives", {"title": "Alternatives", "columns": 1 if state.is_mobile else 2})
        thumb_height = IMAGE_HEIGHTS["alternative"][state.layout]
        for i, alt in alternatives:
            thumbs = photo_pipeline.render_photos(alt.photos, ctx.api_key)
            card = ViewNode("alternative", {"index": i, "title": alt.title, "address": alt.address}, [
                ViewNode("image", {"src": thumbs[0], "height": thumb_height, "alt": alt.title})
                if thumbs else _placeholder("No photo", height=thumb_height),
                _action("Switch to this location", partial(_switch_location, block, i, ctx, state), role="switch"),
            ])
            if alt.description:
                card.children.insert(1, ViewNode("paragraph", {"text": alt.description}))
            section.children.append(card)
        node.children.append(section)
    return node


def render_title(block: TitleBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    size = block.content.size
    return ViewNode("heading", {
        "text": block.content.text,
        "size": size,
        "font_size": TITLE_FONT_SIZES[state.layout][size],
        "level": 2,
    })


def render_photo_text(block: PhotoTextBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    content = block.content
    height = IMAGE_HEIGHTS["photo_text"][state.layout]
    if state.is_mobile:
        direction = "column"
    else:
        direction = "row-reverse" if content.alignment == "right" else "row"
    return ViewNode("row", {"direction": direction}, [
        photo_carousel(content.photos, state, ctx, "main", height),
        ViewNode("paragraph", {"text": content.text}),
    ])


def render_text(block: TextBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    content = block.content
    kind = "html" if content.formatted else "paragraph"
    if content.layout == "two-columns":
        return ViewNode("columns", {"count": 1 if state.is_mobile else 2}, [
            ViewNode(kind, {"text": content.column1}),
            ViewNode(kind, {"text": content.column2}),
        ])
    return ViewNode(kind, {"text": content.text})


def render_slide(block: SlideBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    content = block.content
    height = IMAGE_HEIGHTS["slide"][state.layout]
    children = []
    if content.title:
        children.append(ViewNode("heading", {"text": content.title, "level": 3}))
    children.append(photo_carousel(content.photos, state, ctx, "main", height, alt=content.title))
    if content.text:
        children.append(ViewNode("paragraph", {"text": content.text, "muted": True}))
    return ViewNode("slide", {}, children)


def render_three_columns(block: ThreeColumnsBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    height = IMAGE_HEIGHTS["3columns"][state.layout]
    columns = []
    for i, column in enumerate(block.content.columns):
        columns.append(ViewNode("column", {"index": i}, [
            photo_carousel(column.photo, state, ctx, f"column{i}", height, alt=f"Column {i + 1}"),
            ViewNode("paragraph", {"text": column.text, "muted": True}),
        ]))
    return ViewNode("columns", {"count": 1 if state.is_mobile else 3}, columns)


def render_photo(block: PhotoBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    content = block.content
    node = ViewNode("figure", {}, [
        photo_carousel(content.photos, state, ctx, "main", IMAGE_HEIGHTS["photo"][state.layout]),
    ])
    if content.caption and node.children[0].kind != "placeholder":
        node.children.append(ViewNode("caption", {"text": content.caption}))
    return node


def render_divider(block: DividerBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    return ViewNode("divider", {"style": block.content.style})


def render_map(block: MapBlock, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    if block.content.hidden:
        return ViewNode("hidden")
    return ViewNode("map", {
        "block_id": block.id,
        "locations": map_block_locations(block, ctx.blocks),
        "editable": ctx.editable,
        "layout": state.layout,
    })


def render_unknown(block: Block, ctx: RenderContext, state: BlockViewState) -> ViewNode:
    error = getattr(block, "error", None)
    text = f"Unknown block type: {block.type}"
    if error:
        text = f"{text} ({error})"
    return _placeholder(text, unknown=True)


RENDERERS = {
    LocationBlock: render_location,
    TitleBlock: render_title,
    PhotoTextBlock: render_photo_text,
    TextBlock: render_text,
    SlideBlock: render_slide,
    ThreeColumnsBlock: render_three_columns,
    PhotoBlock: render_photo,
    DividerBlock: render_divider,
    MapBlock: render_map,
    UnknownBlock: render_unknown,
}


def render(block: Block, ctx: RenderContext) -> ViewNode:
    """Render one block inside a container tagged with its block id."""
    state = ctx.view_states.get(block.id)
    state.sync_viewport(ctx.viewport_width)
    renderer = RENDERERS.get(type(block), render_unknown)
    body = renderer(block, ctx, state)

    container = ViewNode("block", {
        "block_id": block.id,
        "block_type": block.type,
        "layout": state.layout,
        "highlighted": ctx.highlighted_block_id == block.id,
    }, [body])
    if ctx.editable and ctx.on_edit is not None:
        container.children.append(_action("Edit", partial(ctx.on_edit, block), role="edit"))
    return container


def render_document(blocks: list[Block], ctx: RenderContext) -> list[ViewNode]:
    ctx.blocks = blocks
    ctx.view_states.prune(b.id for b in blocks)
    return [render(block, ctx) for block in blocks]


def render_fullscreen(viewer: FullscreenViewer) -> ViewNode | None:
    if not viewer.is_open:
        return None
    count = len(viewer.photos)
    index = viewer.carousel.index
    node = ViewNode("fullscreen", {
        "src": viewer.current_photo,
        "alt": f"Photo {index + 1} of {count}",
        "carousel": viewer.carousel,
    }, [_action("×", viewer.close, role="close")])
    if count > 1:
        node.children.append(ViewNode("dots", {"count": count, "active": index}, [
            _action(str(i + 1), partial(viewer.carousel.select, i, count), active=(i == index))
            for i in range(count)
        ]))
        node.children.append(_action("‹", partial(viewer.handle_key, "ArrowLeft"), role="previous", disabled=index == 0))
        node.children.append(_action("›", partial(viewer.handle_key, "ArrowRight"), role="next", disabled=index >= count - 1))
    return node
