from unittest.mock import MagicMock, patch

import pydeck as pdk
import pytest

import config
import map_provider
from errors import ProviderAuthError, ProviderConfigError
from blocks import Location
from map_provider import GeoMapProvider, LatLng, LatLngBounds
from map_sync import MapState, MapSyncEngine


@pytest.fixture(autouse=True)
def fresh_provider_state():
    map_provider.reset_provider_handle()
    map_provider._ready_callbacks.clear()
    map_provider._auth_failure_callbacks.clear()
    yield
    map_provider.reset_provider_handle()
    map_provider._ready_callbacks.clear()
    map_provider._auth_failure_callbacks.clear()


class TestLatLngBounds:
    def test_extend_and_center(self):
        bounds = LatLngBounds().extend(LatLng(10, 20)).extend(LatLng(20, 40))
        assert bounds.center() == LatLng(15, 30)
        assert not bounds.is_empty()

    def test_zoom(self):
        assert LatLngBounds().zoom_for() == config.DEFAULT_ZOOM
        assert LatLngBounds().extend(LatLng(1, 1)).zoom_for() == config.SINGLE_MARKER_ZOOM
        wide = LatLngBounds().extend(LatLng(-40, -100)).extend(LatLng(40, 100)).zoom_for()
        narrow = LatLngBounds().extend(LatLng(38.70, -9.15)).extend(LatLng(38.72, -9.13)).zoom_for()
        assert wide < narrow


class TestDeckMap:
    def test_markers_and_deck(self):
        provider = GeoMapProvider(backend="nominatim")
        deck_map = provider.Map("container", LatLng(0, 0), 3)
        a = provider.Marker(deck_map, LatLng(1, 2), "1. A", "1")
        provider.Marker(deck_map, LatLng(3, 4), "2. B", "2")
        deck_map.fit_bounds(LatLngBounds().extend(LatLng(1, 2)).extend(LatLng(3, 4)))

        assert deck_map.center == LatLng(2, 3)
        deck = deck_map.to_deck(path=[[2, 1], [4, 3]])
        assert isinstance(deck, pdk.Deck)
        assert len(deck.layers) == 3

        a.set_map(None)
        assert len(deck_map.markers) == 1


class TestGeoMapProvider:
    @pytest.mark.asyncio
    async def test_google_without_key_is_config_error(self):
        provider = GeoMapProvider(backend="google", api_key="")
        with pytest.raises(ProviderConfigError):
            await provider.load()
        assert not provider.is_loaded()

    @pytest.mark.asyncio
    async def test_load_fires_ready_callbacks(self):
        provider = GeoMapProvider(backend="nominatim")
        fired = []
        assert provider.register_ready_callback("a", lambda: fired.append("a"))
        assert not provider.register_ready_callback("a", lambda: fired.append("dup"))

        await provider.load()
        assert provider.is_loaded() and provider.is_ready()
        assert fired == ["a"]

    @pytest.mark.asyncio
    async def test_handle_shared_across_instances(self):
        await GeoMapProvider(backend="nominatim").load()
        assert GeoMapProvider(backend="nominatim").is_loaded()

    @pytest.mark.asyncio
    async def test_denied_geocode_reports_auth_failure(self):
        provider = GeoMapProvider(backend="nominatim")
        await provider.load()
        errors = []
        provider.register_auth_failure_callback("engine", errors.append)

        denied = {"status": "REQUEST_DENIED", "results": []}
        with patch("map_provider.tools.geocode_location", MagicMock(return_value=denied)):
            response = await provider.Geocoder().geocode({"address": "Lisbon"})

        assert response == denied
        assert len(errors) == 1
        assert isinstance(errors[0], ProviderAuthError)

    @pytest.mark.asyncio
    async def test_removed_callback_not_called(self):
        provider = GeoMapProvider(backend="nominatim")
        errors = []
        provider.register_auth_failure_callback("engine", errors.append)
        provider.remove_auth_failure_callback("engine")
        provider.report_auth_failure()
        assert errors == []


class TestSessionIsolation:
    """Two sessions of the same server share the provider registries."""

    @pytest.mark.asyncio
    async def test_denied_key_stays_with_the_requesting_map(self):
        healthy = MapSyncEngine(GeoMapProvider(backend="nominatim"), name="tour_map_m1")
        denied = MapSyncEngine(GeoMapProvider(backend="nominatim"), name="tour_map_m1")

        assert await healthy.mount([Location(title="A", lat=1, lng=1)]) == MapState.READY
        response = {"status": "REQUEST_DENIED", "results": []}
        with patch("map_provider.tools.geocode_location", MagicMock(return_value=response)):
            assert await denied.mount([Location(title="B", address="b street")]) == MapState.ERROR

        assert isinstance(denied.error, ProviderAuthError)
        assert "API key" in denied.user_error
        assert healthy.state == MapState.READY
        assert healthy.error is None

    @pytest.mark.asyncio
    async def test_duplicate_name_does_not_steal_callbacks(self):
        provider = GeoMapProvider(backend="nominatim")
        first, second = [], []
        assert provider.register_auth_failure_callback("tour_map_m1", first.append)
        assert not provider.register_auth_failure_callback("tour_map_m1", second.append)

        provider.remove_auth_failure_callback("tour_map_m1", second.append)
        provider.report_auth_failure()
        assert len(first) == 1 and second == []
