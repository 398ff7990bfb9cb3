# src/map_provider.py
"""
Map provider seam.

The engine only talks to a `MapProvider`: `load()`, `is_ready()`, the
`Map` / `Marker` / `Geocoder` / `LatLng` / `LatLngBounds` constructors and the
global ready / auth-failure callback registries. `GeoMapProvider` binds this to
geopy (geocoding) and pydeck (drawing); tests bind it to an in-memory fake.
"""

import asyncio
import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

import pandas as pd
import pydeck as pdk
from geopy.exc import ConfigurationError

import config
import tools
from errors import ProviderAuthError, ProviderConfigError, ProviderLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


class LatLngBounds:
    def __init__(self):
        self.south = self.west = math.inf
        self.north = self.east = -math.inf

    def extend(self, point: LatLng):
        self.south = min(self.south, point.lat)
        self.north = max(self.north, point.lat)
        self.west = min(self.west, point.lng)
        self.east = max(self.east, point.lng)
        return self

    def is_empty(self) -> bool:
        return self.south == math.inf

    def center(self) -> LatLng:
        return LatLng((self.south + self.north) / 2, (self.west + self.east) / 2)

    def zoom_for(self, width_px: int = 640, height_px: int = 400) -> float:
        """Web-mercator zoom that fits the bounds into a viewport of the given size."""
        if self.is_empty():
            return config.DEFAULT_ZOOM
        lat_span = self.north - self.south
        lng_span = self.east - self.west
        if lat_span == 0 and lng_span == 0:
            return config.SINGLE_MARKER_ZOOM
        lng_zoom = math.log2(360 * width_px / 256 / max(lng_span, 1e-9))
        lat_zoom = math.log2(180 * height_px / 256 / max(lat_span, 1e-9))
        return max(1.0, min(lng_zoom, lat_zoom, 18.0) - 0.5)


class MapProvider(ABC):
    LatLng = LatLng
    LatLngBounds = LatLngBounds

    @abstractmethod
    async def load(self):
        """Load the provider. Raises ProviderConfigError / ProviderLoadError / ProviderAuthError."""

    @abstractmethod
    def is_loaded(self) -> bool:
        """True when the provider is already present process-wide."""

    @abstractmethod
    def is_ready(self) -> bool:
        """True once the map, bounds and marker constructors are usable."""

    @abstractmethod
    def Map(self, container, center: LatLng, zoom: float):
        pass

    @abstractmethod
    def Marker(self, map_, position: LatLng, title: str, label: str):
        pass

    @abstractmethod
    def Geocoder(self, on_auth_failure=None):
        """
        Returns an object with `async geocode({'address': str}) -> {'status', 'results'}`.

        A denied request is reported to `on_auth_failure` when given, otherwise to every
        registered auth-failure callback.
        """

    @abstractmethod
    def register_ready_callback(self, name: str, callback) -> bool:
        pass

    @abstractmethod
    def remove_ready_callback(self, name: str, callback=None):
        pass

    @abstractmethod
    def register_auth_failure_callback(self, name: str, callback) -> bool:
        pass

    @abstractmethod
    def remove_auth_failure_callback(self, name: str, callback=None):
        pass


# --- Production provider: geopy + pydeck ---

class DeckMarker:
    def __init__(self, map_, position: LatLng, title: str, label: str):
        self.position = position
        self.title = title
        self.label = label
        self.map = None
        self.set_map(map_)

    def set_map(self, map_):
        if self.map is not None:
            self.map.markers.remove(self)
        self.map = map_
        if map_ is not None:
            map_.markers.append(self)


class DeckMap:
    """Viewport + markers; turned into a pydeck Deck at draw time."""

    def __init__(self, container, center: LatLng, zoom: float):
        self.container = container
        self.center = center
        self.zoom = zoom
        self.markers: list[DeckMarker] = []
        self.active_index: int | None = None

    def pan_to(self, position: LatLng):
        self.center = position

    def fit_bounds(self, bounds: LatLngBounds):
        if bounds.is_empty():
            return
        self.center = bounds.center()
        self.zoom = bounds.zoom_for()

    def to_deck(self, path: list[list[float]] | None = None, height: int = 400) -> pdk.Deck:
        points = pd.DataFrame([
            {"order": i, "lat": m.position.lat, "lon": m.position.lng, "name": m.title, "label": m.label,
             "color": [59, 130, 246, 220] if i == self.active_index else [239, 68, 68, 200]}
            for i, m in enumerate(self.markers)
        ])
        layers = []
        if path and len(path) > 1:
            layers.append(pdk.Layer(
                "PathLayer",
                [{"path": path}],
                get_path="path",
                get_color=[59, 130, 246, 200],
                width_min_pixels=4,
            ))
        layers.append(pdk.Layer(
            "ScatterplotLayer",
            points,
            id="markers",
            get_position=["lon", "lat"],
            get_fill_color="color",
            get_radius=60,
            radius_min_pixels=9,
            radius_max_pixels=30,
            pickable=True,
            auto_highlight=True,
        ))
        layers.append(pdk.Layer(
            "TextLayer",
            points,
            get_position=["lon", "lat"],
            get_text="label",
            get_color=[255, 255, 255, 255],
            get_size=14,
        ))
        return pdk.Deck(
            layers=layers,
            initial_view_state=pdk.ViewState(
                latitude=self.center.lat, longitude=self.center.lng, zoom=self.zoom, pitch=0, bearing=0,
            ),
            map_provider="mapbox" if config.MAPBOX_ACCESS_TOKEN else "carto",
            map_style="light",
            api_keys={"mapbox": config.MAPBOX_ACCESS_TOKEN} if config.MAPBOX_ACCESS_TOKEN else None,
            tooltip={"html": "<b>{name}</b>"},
            height=height,
        )


class _GeopyGeocoder:
    def __init__(self, provider: "GeoMapProvider", geolocator, on_auth_failure=None):
        self._provider = provider
        self._geolocator = geolocator
        self._on_auth_failure = on_auth_failure

    async def geocode(self, request: dict) -> dict:
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, tools.geocode_location, self._geolocator, request.get("address", ""))
        if response["status"] == tools.STATUS_REQUEST_DENIED:
            # Back on the loop thread; only the requester learns about its denied key
            if self._on_auth_failure is not None:
                self._on_auth_failure(_auth_error())
            else:
                self._provider.report_auth_failure()
        return response


def _auth_error() -> ProviderAuthError:
    return ProviderAuthError("The map provider rejected the configured API key.")


# Process-wide provider state, shared by every session of the Streamlit server
_handle_lock = threading.Lock()
_handle = None
_ready_callbacks: dict = {}
_auth_failure_callbacks: dict = {}


def _register(registry: dict, name: str, callback) -> bool:
    with _handle_lock:
        existing = registry.get(name)
        if existing is None:
            registry[name] = callback
            return True
    if existing != callback:
        logger.warning("Map Provider: Callback name '%s' already taken by another map", name)
    return False


def _remove(registry: dict, name: str, callback=None):
    with _handle_lock:
        # Never drop a callback that another map registered under the same name
        if callback is None or registry.get(name) == callback:
            registry.pop(name, None)


class GeoMapProvider(MapProvider):
    def __init__(self, backend: str | None = None, api_key: str | None = None):
        self.backend = (backend or config.GEOCODER_BACKEND).lower()
        self.api_key = api_key if api_key is not None else config.GOOGLE_MAPS_API_KEY

    async def load(self):
        global _handle
        with _handle_lock:
            if _handle is None:
                if self.backend == "google" and not self.api_key:
                    raise ProviderConfigError("Map unavailable: no Google Maps API key is configured.")
                try:
                    geolocator = tools.build_geolocator(self.backend, self.api_key)
                except ConfigurationError as e:
                    raise ProviderConfigError(f"Map unavailable: {e}") from e
                except Exception as e:
                    raise ProviderLoadError("Failed to load the map provider.") from e
                _handle = {"backend": self.backend, "geolocator": geolocator}
                logger.info("Map Provider: Loaded %s geocoder", self.backend)
            callbacks = list(_ready_callbacks.values())
        for callback in callbacks:
            callback()

    def is_loaded(self) -> bool:
        return _handle is not None

    def is_ready(self) -> bool:
        return _handle is not None and hasattr(_handle["geolocator"], "geocode")

    def Map(self, container, center: LatLng, zoom: float):
        return DeckMap(container, center, zoom)

    def Marker(self, map_, position: LatLng, title: str, label: str):
        return DeckMarker(map_, position, title, label)

    def Geocoder(self, on_auth_failure=None):
        if _handle is None:
            raise ProviderLoadError("Geocoder requested before the map provider was loaded.")
        return _GeopyGeocoder(self, _handle["geolocator"], on_auth_failure)

    def register_ready_callback(self, name: str, callback) -> bool:
        return _register(_ready_callbacks, name, callback)

    def remove_ready_callback(self, name: str, callback=None):
        _remove(_ready_callbacks, name, callback)

    def register_auth_failure_callback(self, name: str, callback) -> bool:
        return _register(_auth_failure_callbacks, name, callback)

    def remove_auth_failure_callback(self, name: str, callback=None):
        _remove(_auth_failure_callbacks, name, callback)

    def report_auth_failure(self):
        """Provider-wide key rejection: every registered map goes to Error."""
        with _handle_lock:
            callbacks = list(_auth_failure_callbacks.values())
        error = _auth_error()
        for callback in callbacks:
            callback(error)


def reset_provider_handle():
    """Drops the process-wide handle, e.g. after the API key was changed."""
    global _handle
    with _handle_lock:
        _handle = None
