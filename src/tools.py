# src/tools.py

import json
import logging
import time
from urllib.parse import urlencode

import requests
from geopy.geocoders import GoogleV3, Nominatim
from geopy.exc import (
    GeocoderAuthenticationFailure,
    GeocoderInsufficientPrivileges,
    GeocoderQuotaExceeded,
    GeocoderServiceError,
    GeocoderTimedOut,
)

import config

logger = logging.getLogger(__name__)

# Geocode statuses, same vocabulary as the Google geocoder
STATUS_OK = "OK"
STATUS_ZERO_RESULTS = "ZERO_RESULTS"
STATUS_REQUEST_DENIED = "REQUEST_DENIED"
STATUS_OVER_QUERY_LIMIT = "OVER_QUERY_LIMIT"
STATUS_UNKNOWN_ERROR = "UNKNOWN_ERROR"


def build_geolocator(backend: str | None = None, api_key: str | None = None):
    """
    Creates the geopy geocoder for the configured backend.

    Args:
        backend: "google" (needs an API key) or "nominatim".
        api_key: Google Maps client key; defaults to GOOGLE_MAPS_API_KEY.

    Returns:
        A geopy geocoder instance.
    """
    backend = (backend or config.GEOCODER_BACKEND).lower()
    if backend == "nominatim":
        return Nominatim(user_agent=config.GEOCODER_USER_AGENT, timeout=config.GEOCODER_TIMEOUT_SECS)
    key = api_key if api_key is not None else config.GOOGLE_MAPS_API_KEY
    return GoogleV3(api_key=key, timeout=config.GEOCODER_TIMEOUT_SECS)


# Tool 1: Geocoding
def geocode_location(geolocator, address: str, attempt=1, max_attempts=3) -> dict:
    """
    Geocodes an address and reports the outcome as a geocode response.

    Args:
        geolocator: A geopy geocoder (see build_geolocator).
        address: The address or place name to resolve.
        attempt: Current retry attempt number.
        max_attempts: Maximum number of attempts on timeouts.

    Returns:
        {'status': str, 'results': [{'geometry': {'location': {'lat': float, 'lng': float}},
                                     'formatted_address': str}]}
        Only status 'OK' with a non-empty results list is a success.
    """
    if not address or not address.strip():
        return {"status": STATUS_ZERO_RESULTS, "results": []}
    try:
        location = geolocator.geocode(address)
    except GeocoderTimedOut:
        if attempt < max_attempts:
            logger.debug("Geocoding: timed out for '%s', retrying (%d/%d)", address, attempt, max_attempts)
            time.sleep(1)
            return geocode_location(geolocator, address, attempt + 1, max_attempts)
        logger.warning("Geocoding: '%s' failed after %d attempts (timeout)", address, max_attempts)
        return {"status": STATUS_UNKNOWN_ERROR, "results": []}
    except (GeocoderAuthenticationFailure, GeocoderInsufficientPrivileges) as e:
        logger.error("Geocoding: request denied for '%s': %s", address, e)
        return {"status": STATUS_REQUEST_DENIED, "results": []}
    except GeocoderQuotaExceeded as e:
        logger.warning("Geocoding: quota exceeded for '%s': %s", address, e)
        return {"status": STATUS_OVER_QUERY_LIMIT, "results": []}
    except GeocoderServiceError as e:
        # GoogleV3 reports a denied key as a query error with this text
        if "denied" in str(e).lower():
            logger.error("Geocoding: request denied for '%s': %s", address, e)
            return {"status": STATUS_REQUEST_DENIED, "results": []}
        logger.warning("Geocoding: service error for '%s': %s", address, e)
        return {"status": STATUS_UNKNOWN_ERROR, "results": []}

    if location is None:
        return {"status": STATUS_ZERO_RESULTS, "results": []}
    return {
        "status": STATUS_OK,
        "results": [{
            "geometry": {"location": {"lat": location.latitude, "lng": location.longitude}},
            "formatted_address": location.address,
        }],
    }


# Tool 2: Walking route between consecutive stops
def get_route(start_coords: tuple[float, float], end_coords: tuple[float, float]) -> dict | None:
    """
    Gets a walking route between two points using OSRM.

    Args:
        start_coords: Tuple of (latitude, longitude) for the start point.
        end_coords: Tuple of (latitude, longitude) for the end point.

    Returns:
        {'distance_meters': float, 'duration_seconds': float, 'geometry': list[list[float]]}
        where geometry is a list of [lon, lat] pairs, or None on failure.
    """
    # OSRM expects {longitude},{latitude} pairs
    coords_param = f"{start_coords[1]},{start_coords[0]};{end_coords[1]},{end_coords[0]}"
    url = f"{config.OSRM_ROUTE_URL}{coords_param}?overview=simplified&geometries=geojson"

    try:
        response = requests.get(url, timeout=15)
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        logger.warning("Routing: OSRM request failed: %s", e)
        return None
    except json.JSONDecodeError as e:
        logger.warning("Routing: could not parse OSRM response: %s", e)
        return None

    if data.get("code") != "Ok" or not data.get("routes"):
        logger.info("Routing: OSRM found no route (code=%s)", data.get("code"))
        return None
    route = data["routes"][0]
    try:
        geometry = route["geometry"]["coordinates"]
    except (KeyError, TypeError):
        logger.warning("Routing: OSRM route without geometry")
        return None
    return {
        "distance_meters": route.get("distance"),
        "duration_seconds": route.get("duration"),
        "geometry": geometry,
    }


def get_walking_path(points: list[tuple[float, float]]) -> list[list[float]]:
    """Concatenates leg geometries for consecutive (lat, lng) points; legs that fail fall back to a straight line."""
    path = []
    for start, end in zip(points, points[1:]):
        leg = get_route(start, end)
        if leg and leg["geometry"]:
            path.extend(leg["geometry"])
        else:
            path.extend([[start[1], start[0]], [end[1], end[0]]])
    return path


# Tool 3: External map link
def external_map_url(title: str = "", address: str = "", place_id: str | None = None) -> str:
    """Link that opens a location in the external map application."""
    query = " ".join(part for part in (title, address) if part).strip()
    params = {"api": "1", "query": query}
    if place_id:
        params["query_place_id"] = place_id
    return f"{config.EXTERNAL_MAP_SEARCH_URL}?{urlencode(params)}"
