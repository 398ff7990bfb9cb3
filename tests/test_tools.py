from unittest.mock import MagicMock, patch

import requests
from geopy.exc import GeocoderAuthenticationFailure, GeocoderQueryError, GeocoderQuotaExceeded, GeocoderTimedOut
from geopy.geocoders import GoogleV3, Nominatim

import tools


def _geolocator(result=None, side_effect=None):
    geolocator = MagicMock()
    geolocator.geocode.return_value = result
    geolocator.geocode.side_effect = side_effect
    return geolocator


class TestBuildGeolocator:
    def test_nominatim(self):
        assert isinstance(tools.build_geolocator("nominatim"), Nominatim)

    def test_google(self):
        assert isinstance(tools.build_geolocator("google", api_key="AIzaFAKEKEY"), GoogleV3)


class TestGeocodeLocation:
    def test_success(self):
        location = MagicMock(latitude=38.7, longitude=-9.1, address="Lisboa, Portugal")
        response = tools.geocode_location(_geolocator(location), "Lisbon")

        assert response["status"] == tools.STATUS_OK
        assert response["results"][0]["geometry"]["location"] == {"lat": 38.7, "lng": -9.1}
        assert response["results"][0]["formatted_address"] == "Lisboa, Portugal"

    def test_no_match(self):
        assert tools.geocode_location(_geolocator(None), "Atlantis")["status"] == tools.STATUS_ZERO_RESULTS

    def test_blank_address_skips_lookup(self):
        geolocator = _geolocator()
        assert tools.geocode_location(geolocator, "   ")["status"] == tools.STATUS_ZERO_RESULTS
        geolocator.geocode.assert_not_called()

    @patch("tools.time.sleep")
    def test_timeout_retries(self, mock_sleep):
        location = MagicMock(latitude=1.0, longitude=2.0, address="x")
        geolocator = _geolocator(side_effect=[GeocoderTimedOut("slow"), location])

        assert tools.geocode_location(geolocator, "x")["status"] == tools.STATUS_OK
        assert geolocator.geocode.call_count == 2
        mock_sleep.assert_called_once_with(1)

    @patch("tools.time.sleep")
    def test_timeout_gives_up(self, mock_sleep):
        geolocator = _geolocator(side_effect=GeocoderTimedOut("slow"))
        assert tools.geocode_location(geolocator, "x", max_attempts=2)["status"] == tools.STATUS_UNKNOWN_ERROR
        assert geolocator.geocode.call_count == 2

    def test_auth_failure_is_request_denied(self):
        geolocator = _geolocator(side_effect=GeocoderAuthenticationFailure("bad key"))
        assert tools.geocode_location(geolocator, "x")["status"] == tools.STATUS_REQUEST_DENIED

    def test_denied_query_error_is_request_denied(self):
        geolocator = _geolocator(side_effect=GeocoderQueryError("This API project is not authorized. REQUEST_DENIED"))
        assert tools.geocode_location(geolocator, "x")["status"] == tools.STATUS_REQUEST_DENIED

    def test_quota(self):
        geolocator = _geolocator(side_effect=GeocoderQuotaExceeded("slow down"))
        assert tools.geocode_location(geolocator, "x")["status"] == tools.STATUS_OVER_QUERY_LIMIT


class TestRouting:
    @patch("tools.requests.get")
    def test_route(self, mock_get):
        mock_get.return_value.json.return_value = {
            "code": "Ok",
            "routes": [{"distance": 850.0, "duration": 600.0, "geometry": {"coordinates": [[2, 1], [4, 3]]}}],
        }
        route = tools.get_route((1, 2), (3, 4))

        assert route == {"distance_meters": 850.0, "duration_seconds": 600.0, "geometry": [[2, 1], [4, 3]]}
        assert "2,1;4,3" in mock_get.call_args[0][0]

    @patch("tools.requests.get")
    def test_route_request_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("offline")
        assert tools.get_route((1, 2), (3, 4)) is None

    @patch("tools.requests.get")
    def test_no_route(self, mock_get):
        mock_get.return_value.json.return_value = {"code": "NoRoute", "routes": []}
        assert tools.get_route((1, 2), (3, 4)) is None

    @patch("tools.get_route")
    def test_walking_path_falls_back_to_straight_line(self, mock_route):
        mock_route.side_effect = [{"geometry": [[2, 1], [2.5, 1.5], [4, 3]]}, None]
        path = tools.get_walking_path([(1, 2), (3, 4), (5, 6)])
        assert path == [[2, 1], [2.5, 1.5], [4, 3], [4, 3], [6, 5]]


class TestExternalMapUrl:
    def test_query_and_place_id(self):
        url = tools.external_map_url("Café A", "1 Main St", "ChIJ123")
        assert url.startswith("https://www.google.com/maps/search/?api=1&query=")
        assert "Caf%C3%A9+A+1+Main+St" in url
        assert url.endswith("query_place_id=ChIJ123")

    def test_address_only(self):
        assert "query_place_id" not in tools.external_map_url(address="1 Main St")
