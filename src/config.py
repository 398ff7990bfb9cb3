# src/config.py

import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Map provider ---
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
GEOCODER_BACKEND = os.getenv("GEOCODER_BACKEND", "google").lower()  # "google" | "nominatim"
GEOCODER_USER_AGENT = "wayli_tour_viewer_v0.1"  # Nominatim wants a unique user agent
GEOCODER_TIMEOUT_SECS = int(os.getenv("GEOCODER_TIMEOUT_SECS", "10"))
MAPBOX_ACCESS_TOKEN = os.getenv("MAPBOX_ACCESS_TOKEN")

# Place-photo URLs are recognised by this path and carry a rewritable `key` param
PLACE_PHOTO_PATH = "maps.googleapis.com/maps/api/place/photo"
EXTERNAL_MAP_SEARCH_URL = "https://www.google.com/maps/search/"
OSRM_ROUTE_URL = "http://router.project-osrm.org/route/v1/foot/"

# --- Layout ---
MOBILE_BREAKPOINT_PX = 768
SWIPE_THRESHOLD_PX = 50

# --- Location carousel ---
CARD_WIDTH_PX = 280
CARD_GAP_PX = 16
CAROUSEL_LEFT_SPACER_PX = 16
HIGHLIGHT_DURATION_SECS = 2.0

# --- Provider readiness / container polling ---
PROVIDER_READY_MAX_ATTEMPTS = 12
PROVIDER_READY_BACKOFF_SECS = 0.1
CONTAINER_MAX_ATTEMPTS = 5
CONTAINER_RETRY_SECS = 0.1

DEFAULT_ZOOM = 13
SINGLE_MARKER_ZOOM = 15

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(level: str | None = None):
    """Configure root logging once for the Streamlit pages."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
