"""Error taxonomy for the alert pipeline."""

from __future__ import annotations


class AlertPipelineError(Exception):
    """Base class for all pipeline errors."""


class UpstreamUnavailable(AlertPipelineError):
    """The NWS API could not be reached, timed out, or answered non-2xx."""

    def __init__(self, message: str, url: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class NoDataAvailable(AlertPipelineError):
    """No fresh fetch succeeded and there is no snapshot to fall back to."""


class MalformedGeometry(AlertPipelineError, ValueError):
    """A GeoJSON geometry could not be parsed into a polygon or multipolygon."""
