"""Error types raised by the monitor. Every one of them aborts the run."""

from typing import Optional


class MonitorError(Exception):
    """Base class for all fatal monitor errors"""


class ConfigError(MonitorError):
    """Missing or invalid process configuration"""


class ExtractionError(MonitorError):
    """An expected element was missing from a page or could not be parsed"""


class EncodingError(MonitorError):
    """Malformed embedded identifier or stored record"""


class RegionMismatchError(MonitorError):
    """The shop reports a different active region than the one requested"""

    def __init__(self, requested: str, reported: Optional[str]):
        super().__init__(f"requested region {requested} but shop reports {reported or 'nothing'}")
        self.requested = requested
        self.reported = reported


class TransportError(MonitorError):
    """Non-success HTTP response from the shop, the CDN or the webhook"""

    def __init__(self, action: str, status: int, body: str = ""):
        super().__init__(f"{action} failed with HTTP {status}: {body[:500]}")
        self.action = action
        self.status = status
        self.body = body
