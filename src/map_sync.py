# src/map_sync.py
"""
Map synchronization engine.

Loads the map provider, resolves every location to coordinates (directly or by
geocoding), places one marker per resolved location, fits the bounds once all
geocode requests have completed, and keeps the location carousel and the map
in sync:

* marker click   -> pan map, activate card, scroll carousel, scroll page to block
* carousel scroll -> activate nearest card, pan map
* card click     -> open the external map application

Lifecycle:

    Idle -> LoadingProvider -> Initializing -> Ready
                     \\-> Error (config / load / auth failures, not retryable)

`unmount()` returns to Idle from any state. All work runs on one asyncio loop;
responses that arrive after an unmount (or a remount) are ignored.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import partial

import config
import tools
from blocks import Location
from errors import (
    MapContainerNotFoundError,
    ProviderConfigError,
    ProviderNotReadyError,
    TourMapError,
)
from map_provider import LatLng, MapProvider

logger = logging.getLogger(__name__)


class MapState(str, Enum):
    IDLE = "Idle"
    LOADING_PROVIDER = "LoadingProvider"
    INITIALIZING = "Initializing"
    READY = "Ready"
    ERROR = "Error"


@dataclass(frozen=True)
class Ok:
    coords: LatLng


@dataclass(frozen=True)
class Err:
    reason: str


def geocode_result(response) -> Ok | Err:
    """Only status OK with at least one result counts as success."""
    if not isinstance(response, dict):
        return Err("malformed geocode response")
    status = response.get("status")
    results = response.get("results") or []
    if status != "OK" or not results:
        return Err(status or "no status")
    try:
        location = results[0]["geometry"]["location"]
        return Ok(LatLng(float(location["lat"]), float(location["lng"])))
    except (KeyError, TypeError, ValueError):
        return Err("geocode result without coordinates")


class StaleMarkerError(RuntimeError):
    pass


@dataclass(frozen=True)
class MarkerHandle:
    index: int
    generation: int


class MarkerArena:
    """Markers keyed by location index. `clear()` disposes them and invalidates every handle."""

    def __init__(self):
        self._markers = {}
        self.generation = 0

    def put(self, index: int, marker) -> MarkerHandle:
        self._markers[index] = marker
        return MarkerHandle(index, self.generation)

    def get(self, handle: MarkerHandle):
        if handle.generation != self.generation or handle.index not in self._markers:
            raise StaleMarkerError(f"Marker handle {handle} is no longer valid")
        return self._markers[handle.index]

    def handle_for(self, index: int) -> MarkerHandle | None:
        if index not in self._markers:
            return None
        return MarkerHandle(index, self.generation)

    def clear(self) -> int:
        disposed = len(self._markers)
        for marker in self._markers.values():
            marker.set_map(None)
        self._markers.clear()
        self.generation += 1
        return disposed

    def indices(self) -> list[int]:
        return sorted(self._markers)

    def __contains__(self, index):
        return index in self._markers

    def __len__(self):
        return len(self._markers)


class HostPage:
    """What the engine may ask of the page around it. The default does nothing."""

    def scroll_carousel_to(self, offset: float):
        pass

    def scroll_to_block(self, block_id: str):
        pass

    def open_external(self, url: str):
        pass


def index_for_offset(offset: float, count: int) -> int:
    """Nearest card for a carousel scroll offset, clamped to the card range."""
    if count <= 0:
        return 0
    step = config.CARD_WIDTH_PX + config.CARD_GAP_PX
    index = round(max(0.0, offset - config.CAROUSEL_LEFT_SPACER_PX) / step)
    return max(0, min(index, count - 1))


def offset_for_index(index: int) -> float:
    return config.CAROUSEL_LEFT_SPACER_PX + index * (config.CARD_WIDTH_PX + config.CARD_GAP_PX)


def _location_key(locations: list[Location]) -> list[dict]:
    return [loc.dump() for loc in locations]


class MapSyncEngine:
    def __init__(self, provider: MapProvider, *, name: str | None = None, host_page: HostPage | None = None,
                 container_lookup=None, editable: bool = False, clock=time.monotonic, sleep=asyncio.sleep):
        self.provider = provider
        self.name = name or f"tour_map_{id(self)}"
        self.host_page = host_page or HostPage()
        self.container_lookup = container_lookup
        self.editable = editable
        self.clock = clock
        self._sleep = sleep

        self.state = MapState.IDLE
        self.error: TourMapError | None = None
        self.locations: list[Location] = []
        self.map = None
        self.markers = MarkerArena()
        self.resolved: dict[int, LatLng] = {}
        self.failed: dict[int, str] = {}
        self.active_index: int | None = None
        self.collapsed = False
        self.bounds_fit_count = 0

        self._generation = 0
        self._completed = 0
        self._expected = 0
        self._all_resolved: asyncio.Event | None = None
        self._programmatic_target: int | None = None
        self._highlight: tuple[str, float] | None = None

    # --- lifecycle ---

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _fail(self, error: TourMapError):
        logger.error("Map Sync: %s (%s)", error, type(error).__name__)
        self.state = MapState.ERROR
        self.error = error
        self.markers.clear()
        if self._all_resolved is not None:
            self._all_resolved.set()
        return self.state

    def _on_provider_ready(self):
        logger.debug("Map Sync: Provider ready callback fired for %s", self.name)

    def _on_auth_failure(self, error: TourMapError):
        if self.state in (MapState.IDLE, MapState.ERROR):
            return
        self._fail(error)

    async def mount(self, locations: list[Location], container=None) -> MapState:
        """Runs the whole pipeline for `locations` and returns the resulting state."""
        self._generation += 1
        generation = self._generation
        if self._all_resolved is not None:
            # Wake a previous mount still waiting on its geocodes
            self._all_resolved.set()
        self.markers.clear()
        self.resolved = {}
        self.failed = {}
        self.error = None
        self.map = None
        self.active_index = None
        self._programmatic_target = None
        self.locations = list(locations)

        if not self.locations:
            self.state = MapState.IDLE
            return self.state

        self.provider.register_ready_callback(self.name, self._on_provider_ready)
        self.provider.register_auth_failure_callback(self.name, self._on_auth_failure)

        if self.provider.is_loaded():
            self.state = MapState.INITIALIZING
        else:
            self.state = MapState.LOADING_PROVIDER
            try:
                await self.provider.load()
            except TourMapError as e:
                if not self._is_stale(generation):
                    self._fail(e)
                return self.state
            if self._is_stale(generation) or self.state == MapState.ERROR:
                return self.state

        try:
            await self._wait_for_provider(generation)
        except ProviderNotReadyError as e:
            if not self._is_stale(generation):
                self._fail(e)
            return self.state
        if self._is_stale(generation) or self.state == MapState.ERROR:
            return self.state
        self.state = MapState.INITIALIZING

        try:
            container = await self._wait_for_container(container, generation)
        except MapContainerNotFoundError as e:
            if not self._is_stale(generation):
                self._fail(e)
            return self.state
        if self._is_stale(generation):
            return self.state

        center = next((LatLng(l.lat, l.lng) for l in self.locations if l.has_coordinates()), LatLng(0.0, 0.0))
        self.map = self.provider.Map(container, center, config.DEFAULT_ZOOM)
        await self._resolve_and_place(generation)
        return self.state

    async def _wait_for_provider(self, generation: int):
        # Providers can report "loaded" before every constructor is usable
        for attempt in range(1, config.PROVIDER_READY_MAX_ATTEMPTS + 1):
            if self._is_stale(generation):
                return
            if self.provider.is_ready():
                if attempt > 1:
                    logger.debug("Map Sync: Provider ready after %d attempts", attempt)
                return
            await self._sleep(config.PROVIDER_READY_BACKOFF_SECS)
        raise ProviderNotReadyError(
            f"Map provider not ready after {config.PROVIDER_READY_MAX_ATTEMPTS} attempts."
        )

    async def _wait_for_container(self, container, generation: int):
        if self.container_lookup is None:
            return container
        for attempt in range(1, config.CONTAINER_MAX_ATTEMPTS + 1):
            if self._is_stale(generation):
                return None
            found = self.container_lookup()
            if found is not None:
                return found
            logger.debug("Map Sync: Map container missing (attempt %d)", attempt)
            await self._sleep(config.CONTAINER_RETRY_SECS)
        raise MapContainerNotFoundError("Map container not found.")

    async def _resolve_and_place(self, generation: int):
        self._expected = len(self.locations)
        self._completed = 0
        self._all_resolved = asyncio.Event()
        all_resolved = self._all_resolved
        geocoder = None

        for index, location in enumerate(self.locations):
            if location.has_coordinates():
                self._complete(generation, index, Ok(LatLng(location.lat, location.lng)))
            elif location.address.strip():
                if geocoder is None:
                    geocoder = self.provider.Geocoder(on_auth_failure=self._on_auth_failure)
                task = asyncio.ensure_future(geocoder.geocode({"address": location.address}))
                task.add_done_callback(partial(self._on_geocode_done, generation, index))
            else:
                self._complete(generation, index, Err("no coordinates and no address"))

        await all_resolved.wait()

    def _on_geocode_done(self, generation: int, index: int, task: asyncio.Future):
        if task.cancelled():
            result = Err("cancelled")
        elif task.exception() is not None:
            result = Err(str(task.exception()) or type(task.exception()).__name__)
        else:
            result = geocode_result(task.result())
        self._complete(generation, index, result)

    def _complete(self, generation: int, index: int, result: Ok | Err):
        if self._is_stale(generation) or self.state != MapState.INITIALIZING:
            return
        if isinstance(result, Ok):
            self.resolved[index] = result.coords
        else:
            self.failed[index] = result.reason
            logger.warning("Map Sync: Geocoding failed for '%s': %s", self.locations[index].title or self.locations[index].address, result.reason)
        self._completed += 1
        if self._completed == self._expected:
            self._finalize()
            self._all_resolved.set()

    def _finalize(self):
        bounds = self.provider.LatLngBounds()
        for index in sorted(self.resolved):
            position = self.resolved[index]
            location = self.locations[index]
            marker = self.provider.Marker(self.map, position, f"{index + 1}. {location.title}", str(index + 1))
            self.markers.put(index, marker)
            bounds.extend(position)
        if len(self.markers):
            self.map.fit_bounds(bounds)
            self.bounds_fit_count += 1
        self.state = MapState.READY
        logger.info("Map Sync: Placed %d/%d markers", len(self.markers), len(self.locations))

    def unmount(self):
        self._generation += 1
        disposed = self.markers.clear()
        self.provider.remove_ready_callback(self.name, self._on_provider_ready)
        self.provider.remove_auth_failure_callback(self.name, self._on_auth_failure)
        self.map = None
        self.state = MapState.IDLE
        self.active_index = None
        self._programmatic_target = None
        self._highlight = None
        if self._all_resolved is not None:
            self._all_resolved.set()
        logger.debug("Map Sync: Unmounted %s, disposed %d markers", self.name, disposed)

    def needs_remount(self, locations: list[Location]) -> bool:
        return _location_key(locations) != _location_key(self.locations)

    async def update_locations(self, locations: list[Location], container=None) -> bool:
        """Re-runs the pipeline only when the location list actually changed."""
        if not self.needs_remount(locations) and self.state != MapState.IDLE:
            return False
        await self.mount(locations, container)
        return True

    # --- carousel <-> map sync ---

    @property
    def marker_count(self) -> int:
        return len(self.markers)

    def on_marker_click(self, index: int) -> bool:
        if self.state != MapState.READY or index not in self.markers:
            return False
        self.map.pan_to(self.resolved[index])
        self.active_index = index
        # Our own carousel scroll must not be read back as a user scroll
        self._programmatic_target = index
        self.host_page.scroll_carousel_to(offset_for_index(index))
        block_id = self.locations[index].block_id
        if block_id:
            self.host_page.scroll_to_block(block_id)
            self._highlight = (block_id, self.clock() + config.HIGHLIGHT_DURATION_SECS)
        return True

    def on_carousel_scroll(self, offset: float, user_gesture: bool = False) -> int | None:
        """Returns the newly active index, or None when nothing changed."""
        count = len(self.locations)
        if count == 0:
            return None
        index = index_for_offset(offset, count)
        if user_gesture:
            self._programmatic_target = None
        if self._programmatic_target is not None:
            if index == self._programmatic_target:
                self._programmatic_target = None
            return None
        if index == self.active_index:
            return None
        self.active_index = index
        position = self.resolved.get(index)
        if position is not None and self.map is not None:
            self.map.pan_to(position)
        return index

    def on_card_click(self, index: int) -> str | None:
        if not 0 <= index < len(self.locations):
            return None
        location = self.locations[index]
        url = tools.external_map_url(location.title, location.address, location.place_id)
        self.host_page.open_external(url)
        return url

    def on_card_key(self, index: int, key: str) -> bool:
        """Enter/space on a focused card selects it on the map instead of leaving the page."""
        if key not in ("Enter", " ") or not 0 <= index < len(self.locations):
            return False
        self.active_index = index
        position = self.resolved.get(index)
        if position is not None and self.map is not None:
            self.map.pan_to(position)
        self.host_page.scroll_carousel_to(offset_for_index(index))
        self._programmatic_target = index
        return True

    def highlighted_block_id(self, now: float | None = None) -> str | None:
        if self._highlight is None:
            return None
        block_id, expires_at = self._highlight
        if (now if now is not None else self.clock()) >= expires_at:
            self._highlight = None
            return None
        return block_id

    # --- editor affordance ---

    def toggle_collapsed(self) -> bool:
        """Hides/shows the map viewport; markers and resolved coordinates are kept."""
        if not self.editable:
            return self.collapsed
        self.collapsed = not self.collapsed
        return self.collapsed

    @property
    def user_error(self) -> str | None:
        if self.error is None:
            return None
        return self.error.user_message

    @property
    def is_configuration_error(self) -> bool:
        return isinstance(self.error, ProviderConfigError)
