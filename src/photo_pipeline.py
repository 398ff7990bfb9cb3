# src/photo_pipeline.py
"""
Photo reference normalization.

A photo reference is either an absolute http(s) URL or a base64
`data:image/...` URI. Everything here is pure and never raises: invalid
entries are dropped from the render list instead.
"""

from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

import config


def normalize(photo_field) -> list[str]:
    """Accepts a single string, a list of strings or nothing; always returns a list."""
    if photo_field is None:
        return []
    if isinstance(photo_field, str):
        return [photo_field] if photo_field else []
    if isinstance(photo_field, (list, tuple)):
        return [p for p in photo_field if isinstance(p, str) and p]
    return []


def is_valid(ref) -> bool:
    return isinstance(ref, str) and (ref.startswith("http") or ref.startswith("data:image/"))


def is_place_photo_url(url: str) -> bool:
    return isinstance(url, str) and config.PLACE_PHOTO_PATH in url


def refresh_key(url: str, api_key: str | None = None) -> str:
    """
    Rewrites the `key` query parameter of a provider place-photo URL to the
    currently configured client key. Photo URLs are persisted with whatever key
    generated them, which may have rotated since.

    Any URL that is not a place-photo URL is returned unchanged.
    """
    if not is_place_photo_url(url):
        return url
    key = api_key if api_key is not None else config.GOOGLE_MAPS_API_KEY
    if not key:
        return url

    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    params = parse_qsl(parts.query, keep_blank_values=True)
    replaced = False
    new_params = []
    for name, value in params:
        if name == "key":
            if not replaced:
                new_params.append((name, key))
                replaced = True
            continue
        new_params.append((name, value))
    if not replaced:
        new_params.append(("key", key))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(new_params), parts.fragment))


def render_photos(photo_field, api_key: str | None = None) -> list[str]:
    """normalize -> drop invalid refs -> refresh provider keys."""
    return [refresh_key(p, api_key) for p in normalize(photo_field) if is_valid(p)]
