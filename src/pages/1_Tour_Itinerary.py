# src/pages/1_Tour_Itinerary.py

import streamlit as st

import config
from block_renderer import RenderContext
from block_view_state import FullscreenViewer, ViewStateStore
from blocks import parse_document
from streamlit_view import draw_document, unmount_map_engines

config.setup_logging()

st.set_page_config(layout="wide", page_title="Tour Itinerary")

# --- Session state ---
if 'tour_blocks' not in st.session_state: st.session_state.tour_blocks = []
if 'view_states' not in st.session_state: st.session_state.view_states = ViewStateStore()
if 'fullscreen_viewer' not in st.session_state: st.session_state.fullscreen_viewer = FullscreenViewer()
if 'editor_mode' not in st.session_state: st.session_state.editor_mode = False


def on_switch_location(updated_block):
    """Write the swapped block back to the document store (session state here)."""
    st.session_state.tour_blocks = [
        updated_block.dump() if str(raw.get("id")) == updated_block.id else raw
        for raw in st.session_state.tour_blocks
    ]


def on_edit(block):
    st.session_state.editing_block_id = block.id


# --- Sidebar ---
with st.sidebar:
    st.header("View")
    preview = st.radio("Preview as", ["Desktop", "Mobile"], horizontal=True)
    viewport_width = 390 if preview == "Mobile" else 1280
    st.toggle("Editor mode", key="editor_mode")
    if st.session_state.get("editing_block_id"):
        st.caption(f"Editing block {st.session_state.editing_block_id} (opens the tour editor).")

st.session_state.view_states.on_resize(viewport_width)

# --- Document ---
if not st.session_state.tour_blocks:
    st.info("No tour loaded. Load a document on the main page.")
    unmount_map_engines()
    st.stop()

blocks = parse_document(st.session_state.tour_blocks)
ctx = RenderContext(
    blocks=blocks,
    viewport_width=viewport_width,
    on_switch_location=on_switch_location,
    on_edit=on_edit,
    view_states=st.session_state.view_states,
    fullscreen=st.session_state.fullscreen_viewer,
    editable=st.session_state.editor_mode,
    api_key=config.GOOGLE_MAPS_API_KEY or None,
)
draw_document(blocks, ctx)
