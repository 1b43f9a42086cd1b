"""Endpoint discovery for platform troubleshooting."""

from .endpoint_discoverer import (
    DEFAULT_CATALOGUE,
    BookingSearch,
    DiscoveryReport,
    EndpointDiscoverer,
    ProbeResult,
    count_records,
    format_ranked,
    match_booking,
)

__all__ = [
    "DEFAULT_CATALOGUE",
    "BookingSearch",
    "DiscoveryReport",
    "EndpointDiscoverer",
    "ProbeResult",
    "count_records",
    "format_ranked",
    "match_booking",
]
