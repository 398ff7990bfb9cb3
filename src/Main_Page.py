# src/Main_Page.py

import json
from pathlib import Path

import streamlit as st

import config
from blocks import UnknownBlock, document_blocks, load_document_file, parse_document
from streamlit_view import unmount_map_engines

config.setup_logging()

st.set_page_config(
    layout="wide",
    page_title="WayLi Tour Viewer",
    page_icon="🗺️"
)

# Maps only live on the itinerary page
unmount_map_engines()

SAMPLE_TOUR = Path(__file__).resolve().parent.parent / "data" / "sample_tour.json"

st.title("🗺️ WayLi - Tour itinerary viewer")

st.markdown(
    """
    Load a tour document (a JSON list of content blocks) and open **Tour Itinerary** in the sidebar
    to browse it with the interactive map.
    """
)

uploaded = st.file_uploader("Tour document (JSON)", type=["json"])
if uploaded is not None:
    try:
        raw_blocks = document_blocks(json.loads(uploaded.getvalue().decode("utf-8")))
    except ValueError as e:
        st.error(f"🔴 Could not read the document: {e}")
    else:
        st.session_state.tour_blocks = raw_blocks
        unknown = [b for b in parse_document(raw_blocks) if isinstance(b, UnknownBlock)]
        st.success(f"Loaded {len(raw_blocks)} blocks.")
        if unknown:
            st.warning(f"⚠️ {len(unknown)} blocks have an unknown type or invalid content and will show as placeholders.")

if "tour_blocks" not in st.session_state and SAMPLE_TOUR.exists():
    st.session_state.tour_blocks = load_document_file(SAMPLE_TOUR)

if not config.GOOGLE_MAPS_API_KEY and config.GEOCODER_BACKEND == "google":
    st.warning("⚠️ GOOGLE_MAPS_API_KEY missing. The map needs it in .env (or set GEOCODER_BACKEND=nominatim).")

if st.session_state.get("tour_blocks"):
    st.caption(f"Current document: {len(st.session_state.tour_blocks)} blocks.")
