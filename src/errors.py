# src/errors.py
"""
Error types surfaced by the map engine.

Every error carries a short, actionable `hint` that is shown to the user in
place of the raw exception text.
"""


class TourMapError(Exception):
    hint = "Please try again later."

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        if hint is not None:
            self.hint = hint

    @property
    def user_message(self) -> str:
        return f"{self} {self.hint}"


class ProviderConfigError(TourMapError):
    """Missing or unusable client key. Not retryable."""
    hint = "Check your API key configuration (GOOGLE_MAPS_API_KEY in .env)."


class ProviderLoadError(TourMapError):
    hint = "Check your network connection and API key configuration."


class ProviderAuthError(TourMapError):
    hint = "The map provider rejected the API key. Check your API key configuration and enabled APIs."


class ProviderNotReadyError(TourMapError):
    hint = "The map service did not finish loading. Reload the page."


class MapContainerNotFoundError(TourMapError):
    hint = "Reload the page. If the problem persists, the map section may be hidden."
