# src/streamlit_view.py
"""
Streamlit drawing layer: view trees from block_renderer and the synced map.

Engines and view state live in st.session_state so that they survive reruns.
The helpers that touch session state take an optional `state` mapping, which
defaults to st.session_state.
"""

import asyncio
import html
import json
import logging
import uuid

import streamlit as st
import streamlit.components.v1 as components

import config
import tools
from block_renderer import RenderContext, ViewNode, render_document, render_fullscreen
from map_provider import GeoMapProvider
from map_sync import HostPage, MapState, MapSyncEngine, index_for_offset, offset_for_index

logger = logging.getLogger(__name__)

MAP_HEIGHT = 400


def _session(state=None):
    return st.session_state if state is None else state


# --- Host page bridge ---

class StreamlitHostPage(HostPage):
    """Records what the engine asked for; applied on the current or next rerun."""

    def __init__(self, block_id: str, state=None):
        self.block_id = block_id
        self._state = state

    @property
    def _offset_key(self):
        return f"carousel_offset_{self.block_id}"

    def scroll_carousel_to(self, offset: float):
        _session(self._state)[self._offset_key] = int(offset)

    def scroll_to_block(self, block_id: str):
        _session(self._state)["scroll_target_block"] = block_id

    def open_external(self, url: str):
        _session(self._state)["last_external_url"] = url


def _scroll_script(block_id: str) -> str:
    target = json.dumps(f'[data-block-id="{block_id}"]')
    return f"""
    <script>
      const el = window.parent.document.querySelector({target});
      if (el) {{
        el.scrollIntoView({{behavior: "smooth", block: "center"}});
      }}
    </script>
    """


def apply_pending_scroll():
    block_id = st.session_state.pop("scroll_target_block", None)
    if block_id:
        components.html(_scroll_script(block_id), height=0)


@st.cache_data(show_spinner=False)
def cached_walking_path(points: tuple) -> list:
    """Walking route through the markers, cached per marker set."""
    return tools.get_walking_path(list(points))


def get_map_engine(block_id: str, editable: bool, state=None) -> MapSyncEngine:
    session = _session(state)
    key = f"map_engine_{block_id}"
    if key not in session:
        # Provider callbacks are process-wide, so names must not repeat across sessions
        session_tag = session.setdefault("map_session_tag", uuid.uuid4().hex[:12])
        session[key] = MapSyncEngine(
            GeoMapProvider(),
            name=f"tour_map_{block_id}_{session_tag}",
            host_page=StreamlitHostPage(block_id, state),
            editable=editable,
        )
    engine = session[key]
    engine.editable = editable
    return engine


def unmount_map_engines(keep_block_ids=(), state=None):
    """Unmount engines whose map block is gone, or all of them when leaving the page."""
    state = _session(state)
    keep = {f"map_engine_{b}" for b in keep_block_ids}
    for key in [k for k in list(state.keys()) if str(k).startswith("map_engine_")]:
        if key not in keep:
            state[key].unmount()
            del state[key]


# --- Map + carousel ---

def _deck_key(block_id: str) -> str:
    return f"map_deck_{block_id}"


def _last_pick_key(block_id: str) -> str:
    return f"map_deck_{block_id}_last_pick"


def _selected_marker(event) -> int | None:
    """`order` of the picked marker in a pydeck selection state, or None."""
    if not event:
        return None
    selection = event.get("selection") if isinstance(event, dict) else getattr(event, "selection", None)
    objects = selection.get("objects") if isinstance(selection, dict) else None
    for layer_objects in (objects or {}).values():
        if layer_objects:
            order = layer_objects[0].get("order")
            return int(order) if isinstance(order, (int, float)) else None
    return None


def pick_marker(engine: MapSyncEngine, order: int | None, last_order: int | None) -> int | None:
    """Marker index for a fresh deck pick.

    The chart keeps its selection across reruns, so a pick that was already
    handled must not be replayed after the user scrolled the carousel away.
    """
    if order is None or order == last_order or not 0 <= order < engine.marker_count:
        return None
    return engine.markers.indices()[order]


def sync_map_selection(engine: MapSyncEngine, block_id: str, state=None) -> bool:
    state = _session(state)
    order = _selected_marker(state.get(_deck_key(block_id)))
    clicked = pick_marker(engine, order, state.get(_last_pick_key(block_id)))
    state[_last_pick_key(block_id)] = order
    if clicked is None:
        return False
    return engine.on_marker_click(clicked)


def sync_map_engines(map_ids, state=None) -> str | None:
    """Applies pending marker picks and returns the block to highlight, if any."""
    state = _session(state)
    highlighted = None
    for map_id in map_ids:
        engine = state.get(f"map_engine_{map_id}")
        if engine is None:
            continue
        sync_map_selection(engine, map_id, state)
        if highlighted is None:
            highlighted = engine.highlighted_block_id()
    return highlighted

def draw_location_carousel(engine: MapSyncEngine, block_id: str):
    count = len(engine.locations)
    if count == 0:
        return
    offset_key = f"carousel_offset_{block_id}"
    max_offset = int(offset_for_index(count - 1))

    def on_scroll():
        engine.on_carousel_scroll(st.session_state[offset_key], user_gesture=True)

    if count > 1:
        st.slider(
            "Browse locations",
            min_value=0,
            max_value=max_offset,
            step=config.CARD_WIDTH_PX // 4,
            key=offset_key,
            on_change=on_scroll,
            label_visibility="collapsed",
        )
    active = engine.active_index if engine.active_index is not None else index_for_offset(
        st.session_state.get(offset_key, 0), count)

    # Show the active card with its neighbours
    start = max(0, min(active - 1, count - 3))
    visible = list(range(start, min(count, start + 3)))
    cols = st.columns(len(visible))
    for col, index in zip(cols, visible):
        location = engine.locations[index]
        with col:
            with st.container(border=True):
                if location.photos:
                    st.image(location.photos[0], use_container_width=True)
                title = f"**{index + 1}. {location.title or location.address}**"
                if index == active:
                    title = f":blue[{title}]"
                st.markdown(title)
                if location.address and location.title:
                    st.caption(location.address)
                if index in engine.failed:
                    st.caption("❌ Not found on the map")
                url = tools.external_map_url(location.title, location.address, location.place_id)
                st.link_button("Open in Maps", url, use_container_width=True)


def draw_map(node: ViewNode, key: str):
    block_id = node.props["block_id"]
    locations = node.props["locations"]
    engine = get_map_engine(block_id, node.props.get("editable", False))

    if not locations:
        st.info("Add locations to the tour to see them on the map.")
        return

    if engine.needs_remount(locations) or engine.state == MapState.IDLE:
        with st.spinner("Loading map..."):
            asyncio.run(engine.update_locations(locations, container=key))
        # A pick left on the chart belongs to the previous markers
        st.session_state[_last_pick_key(block_id)] = _selected_marker(st.session_state.get(_deck_key(block_id)))

    if engine.editable:
        label = "Show map" if engine.collapsed else "Hide map"
        st.button(label, key=f"{key}_collapse", on_click=engine.toggle_collapsed)

    if engine.state == MapState.ERROR:
        st.error(f"🗺️ Map unavailable. {engine.user_error}")
        return
    if engine.collapsed:
        return

    if engine.state == MapState.READY and engine.map is not None:
        points = tuple((engine.resolved[i].lat, engine.resolved[i].lng) for i in engine.markers.indices())
        path = cached_walking_path(points) if len(points) > 1 else None
        engine.map.active_index = (
            engine.markers.indices().index(engine.active_index) if engine.active_index in engine.markers else None
        )
        deck = engine.map.to_deck(path=path, height=MAP_HEIGHT)
        # Picks are applied by sync_map_engines at the start of the next run
        st.pydeck_chart(deck, on_select="rerun", selection_mode="single-object", key=_deck_key(block_id))
        st.caption(f"{engine.marker_count}/{len(engine.locations)} locations on the map.")
        if engine.failed:
            with st.expander("⚠️ Some locations could not be found on the map:"):
                for index in sorted(engine.failed):
                    st.markdown(f"- {engine.locations[index].title or engine.locations[index].address}")

    draw_location_carousel(engine, block_id)


# --- View tree ---

def _draw_children(node: ViewNode, key: str):
    for i, child in enumerate(node.children):
        draw_node(child, f"{key}_{i}")


def _draw_block(node: ViewNode, key: str):
    style = "outline: 3px solid #3b82f6; border-radius: 8px;" if node.props.get("highlighted") else ""
    st.markdown(
        f'<div data-block-id="{html.escape(node.props["block_id"])}" style="{style}"></div>',
        unsafe_allow_html=True,
    )
    _draw_children(node, key)


def _draw_heading(node: ViewNode, key: str):
    level = node.props.get("level", 2)
    size = node.props.get("font_size")
    style = f' style="font-size: {size}px; margin: 0;"' if size else ""
    st.markdown(f"<h{level}{style}>{html.escape(node.props['text'])}</h{level}>", unsafe_allow_html=True)


def _draw_paragraph(node: ViewNode, key: str):
    if node.props.get("muted"):
        st.caption(node.props["text"])
    else:
        st.markdown(node.props["text"])


def _draw_html(node: ViewNode, key: str):
    st.markdown(node.props["text"], unsafe_allow_html=True)


def _draw_text(node: ViewNode, key: str):
    icon = node.props.get("icon", "")
    st.markdown(f"{icon} {node.props['text']}".strip())


def _draw_link(node: ViewNode, key: str):
    st.markdown(f"{node.props.get('icon', '')} [{node.props['text']}]({node.props['href']})")


def _draw_badge(node: ViewNode, key: str):
    st.markdown(
        f'<span style="display:inline-block;padding:6px 12px;background:#3b82f6;color:white;'
        f'border-radius:20px;font-size:14px;">{html.escape(node.props["text"])}</span>',
        unsafe_allow_html=True,
    )


def _draw_placeholder(node: ViewNode, key: str):
    if node.props.get("unknown"):
        st.warning(node.props["text"])
        return
    height = node.props.get("height", 120)
    st.markdown(
        f'<div style="height:{height}px;background:#e5e7eb;border-radius:8px;display:flex;'
        f'align-items:center;justify-content:center;color:#9ca3af;">{html.escape(node.props["text"])}</div>',
        unsafe_allow_html=True,
    )


def _draw_image(node: ViewNode, key: str):
    st.image(node.props["src"], caption=None, use_container_width=True)


def _draw_carousel(node: ViewNode, key: str):
    st.image(node.props["src"], use_container_width=True)
    if not node.props.get("show_dots"):
        st.button("⛶", key=f"{key}_open", on_click=node.props["on_open"], help="Fullscreen")
        return
    dots = next(child for child in node.children if child.kind == "dots")
    nav = [child for child in node.children if child.kind == "action"]
    cols = st.columns(len(dots.children) + len(nav) + 1)
    draw_node(nav[0], f"{key}_prev", container=cols[0])
    for i, dot in enumerate(dots.children):
        label = "●" if dot.props.get("active") else "○"
        cols[i + 1].button(label, key=f"{key}_dot{i}", on_click=dot.props["handler"])
    draw_node(nav[1], f"{key}_next", container=cols[len(dots.children) + 1])
    cols[-1].button("⛶", key=f"{key}_open", on_click=node.props["on_open"], help="Fullscreen")


def _draw_action(node: ViewNode, key: str, container=None):
    target = container or st
    target.button(
        node.props["label"],
        key=key,
        on_click=node.props["handler"],
        disabled=node.props.get("disabled", False),
    )


def _draw_row(node: ViewNode, key: str):
    if node.props.get("direction") == "column" or len(node.children) < 2:
        _draw_children(node, key)
        return
    children = list(node.children)
    if node.props["direction"] == "row-reverse":
        children.reverse()
    cols = st.columns([2, 3] if node.props["direction"] == "row" else [3, 2])
    for i, (col, child) in enumerate(zip(cols, children)):
        with col:
            draw_node(child, f"{key}_{i}")


def _draw_columns(node: ViewNode, key: str):
    count = max(1, node.props.get("count", len(node.children)))
    if count == 1:
        _draw_children(node, key)
        return
    cols = st.columns(count)
    for i, child in enumerate(node.children):
        with cols[i % count]:
            draw_node(child, f"{key}_{i}")


def _draw_section(node: ViewNode, key: str):
    st.markdown(f"**{node.props['title']}**")
    _draw_children(node, key)


def _draw_alternatives(node: ViewNode, key: str):
    st.markdown(f"**{node.props['title']}**")
    count = node.props.get("columns", 2)
    cols = st.columns(count)
    for i, child in enumerate(node.children):
        with cols[i % count]:
            draw_node(child, f"{key}_{i}")


def _draw_alternative(node: ViewNode, key: str):
    with st.container(border=True):
        st.markdown(f"**{node.props['title'] or node.props['address']}**")
        if node.props["title"] and node.props["address"]:
            st.caption(node.props["address"])
        _draw_children(node, key)


def _draw_caption(node: ViewNode, key: str):
    st.caption(node.props["text"])


def _draw_divider(node: ViewNode, key: str):
    st.markdown(
        f'<hr style="border:none;border-top:2px {node.props["style"]} #e5e7eb;margin:0;">',
        unsafe_allow_html=True,
    )


def _draw_fullscreen(node: ViewNode, key: str):
    with st.container(border=True):
        st.image(node.props["src"], caption=node.props["alt"], use_container_width=True)
        for i, child in enumerate(node.children):
            if child.kind == "action":
                draw_node(child, f"{key}_{i}")


DRAWERS = {
    "block": _draw_block,
    "heading": _draw_heading,
    "paragraph": _draw_paragraph,
    "html": _draw_html,
    "text": _draw_text,
    "link": _draw_link,
    "badge": _draw_badge,
    "placeholder": _draw_placeholder,
    "image": _draw_image,
    "carousel": _draw_carousel,
    "row": _draw_row,
    "columns": _draw_columns,
    "section": _draw_section,
    "alternatives": _draw_alternatives,
    "alternative": _draw_alternative,
    "caption": _draw_caption,
    "divider": _draw_divider,
    "map": draw_map,
    "fullscreen": _draw_fullscreen,
    "hidden": lambda node, key: None,
}


def draw_node(node: ViewNode, key: str, container=None):
    if node.kind == "action":
        _draw_action(node, key, container)
        return
    drawer = DRAWERS.get(node.kind)
    if drawer is None:
        # location, details, slide, figure, column, dots: plain containers
        _draw_children(node, key)
        return
    drawer(node, key)


def draw_document(blocks, ctx: RenderContext):
    fullscreen = render_fullscreen(ctx.fullscreen) if ctx.fullscreen is not None else None
    if fullscreen is not None:
        draw_node(fullscreen, "fullscreen")

    map_ids = [b.id for b in blocks if b.type == "map"]
    unmount_map_engines(map_ids)
    # Before any block draws, so a marker pick highlights its block in this same run
    highlighted = sync_map_engines(map_ids)
    if ctx.highlighted_block_id is None:
        ctx.highlighted_block_id = highlighted

    for node in render_document(blocks, ctx):
        draw_node(node, f"block_{node.props['block_id']}")
        st.write("")
    apply_pending_scroll()
