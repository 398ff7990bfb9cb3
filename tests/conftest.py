"""
Shared fixtures: an in-memory map provider whose geocode requests stay pending
until a test resolves them, plus small document builders.
"""

import asyncio

import pytest

from blocks import Location, parse_document
from errors import ProviderAuthError
from map_provider import MapProvider
from map_sync import HostPage, MapSyncEngine


class FakeMarker:
    def __init__(self, map_, position, title, label):
        self.position = position
        self.title = title
        self.label = label
        self.map = map_
        self.disposed = False

    def set_map(self, map_):
        self.map = map_
        if map_ is None:
            self.disposed = True


class FakeMap:
    def __init__(self, container, center, zoom):
        self.container = container
        self.center = center
        self.zoom = zoom
        self.pans = []
        self.fitted = []

    def pan_to(self, position):
        self.pans.append(position)
        self.center = position

    def fit_bounds(self, bounds):
        self.fitted.append(bounds)


class FakeGeocoder:
    def __init__(self, provider, on_auth_failure=None):
        self.provider = provider
        self.on_auth_failure = on_auth_failure

    async def geocode(self, request):
        future = asyncio.get_running_loop().create_future()
        self.provider.pending.append((request["address"], future))
        response = await future
        if response["status"] == "REQUEST_DENIED" and self.on_auth_failure is not None:
            self.on_auth_failure(ProviderAuthError("denied"))
        return response


class FakeMapProvider(MapProvider):
    def __init__(self, loaded=True, ready_after=1, load_error=None):
        self.loaded = loaded
        self.ready_after = ready_after
        self.load_error = load_error
        self.load_gate = None
        self.load_calls = 0
        self.ready_polls = 0
        self.maps = []
        self.markers = []
        self.pending = []
        self.ready_callbacks = {}
        self.auth_failure_callbacks = {}

    async def load(self):
        self.load_calls += 1
        if self.load_gate is not None:
            await self.load_gate
        if self.load_error is not None:
            raise self.load_error
        self.loaded = True
        for callback in list(self.ready_callbacks.values()):
            callback()

    def is_loaded(self):
        return self.loaded

    def is_ready(self):
        self.ready_polls += 1
        return self.ready_after is not None and self.ready_polls >= self.ready_after

    def Map(self, container, center, zoom):
        map_ = FakeMap(container, center, zoom)
        self.maps.append(map_)
        return map_

    def Marker(self, map_, position, title, label):
        marker = FakeMarker(map_, position, title, label)
        self.markers.append(marker)
        return marker

    def Geocoder(self, on_auth_failure=None):
        return FakeGeocoder(self, on_auth_failure)

    def register_ready_callback(self, name, callback):
        if name in self.ready_callbacks:
            return False
        self.ready_callbacks[name] = callback
        return True

    def remove_ready_callback(self, name, callback=None):
        if callback is None or self.ready_callbacks.get(name) == callback:
            self.ready_callbacks.pop(name, None)

    def register_auth_failure_callback(self, name, callback):
        if name in self.auth_failure_callbacks:
            return False
        self.auth_failure_callbacks[name] = callback
        return True

    def remove_auth_failure_callback(self, name, callback=None):
        if callback is None or self.auth_failure_callbacks.get(name) == callback:
            self.auth_failure_callbacks.pop(name, None)

    # --- test controls ---

    def resolve(self, address, lat=None, lng=None, status="OK"):
        """Completes the oldest pending request for `address`."""
        for i, (pending_address, future) in enumerate(self.pending):
            if pending_address == address:
                del self.pending[i]
                if status == "OK":
                    results = [{"geometry": {"location": {"lat": lat, "lng": lng}}, "formatted_address": address}]
                else:
                    results = []
                future.set_result({"status": status, "results": results})
                return
        raise AssertionError(f"no pending geocode for {address!r}")

    def fail(self, address, exc):
        for i, (pending_address, future) in enumerate(self.pending):
            if pending_address == address:
                del self.pending[i]
                future.set_exception(exc)
                return
        raise AssertionError(f"no pending geocode for {address!r}")

    def fire_auth_failure(self, error):
        for callback in list(self.auth_failure_callbacks.values()):
            callback(error)


class RecordingHostPage(HostPage):
    def __init__(self):
        self.carousel_offsets = []
        self.scrolled_blocks = []
        self.opened = []

    def scroll_carousel_to(self, offset):
        self.carousel_offsets.append(offset)

    def scroll_to_block(self, block_id):
        self.scrolled_blocks.append(block_id)

    def open_external(self, url):
        self.opened.append(url)


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


async def settle(rounds=10):
    """Let scheduled tasks and done-callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def provider():
    return FakeMapProvider()


@pytest.fixture
def host_page():
    return RecordingHostPage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_engine(provider, host_page, clock, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)
        await asyncio.sleep(0)

    def _make(**kwargs):
        kwargs.setdefault("name", "tour_map_test")
        kwargs.setdefault("host_page", host_page)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", fake_sleep)
        return MapSyncEngine(kwargs.pop("provider", provider), **kwargs)

    return _make


@pytest.fixture
def loc():
    def _loc(title, address="", lat=None, lng=None, block_id=None, **extra):
        return Location(title=title, address=address, lat=lat, lng=lng, block_id=block_id, **extra)
    return _loc


@pytest.fixture
def cafe_document():
    """Café A with two alternatives (Café B first) and a map that derives its locations."""
    return parse_document([
        {"id": "t1", "type": "title", "content": {"text": "Day one", "size": "medium"}},
        {
            "id": "L1",
            "type": "location",
            "content": {
                "enableTimeField": True,
                "mainLocation": {
                    "title": "Café A",
                    "address": "1 Main St",
                    "lat": 10.0,
                    "lng": 20.0,
                    "time": "09:00",
                    "photos": ["https://example.com/a1.jpg", "https://example.com/a2.jpg"],
                },
                "alternativeLocations": [
                    {"title": "Café B", "address": "2 Side St", "photos": ["https://example.com/b.jpg"]},
                    {"title": "Café C", "address": "3 Back St"},
                ],
            },
        },
        {
            "id": "L2",
            "type": "location",
            "content": {"mainLocation": {"title": "Park", "address": "Park Rd"}},
        },
        {"id": "m1", "type": "map", "content": {"locations": []}},
    ])
