"""Core."""

from .destination import DEFAULT_FALLBACK_PORT, Destination, build_candidates
from .config import (
    RelayConfig,
    RelaySettings,
    clear_settings,
    get_settings,
    load_config_from_file,
    parse_identity,
)
from .outbound import ConnectionFactory, OutboundConnection, open_outbound_connection
from .streams import InboundChannel, PayloadTap, ReplayableStream

__all__ = [
    # Destinations
    "Destination",
    "DEFAULT_FALLBACK_PORT",
    "build_candidates",
    # Config
    "RelayConfig",
    "RelaySettings",
    "get_settings",
    "clear_settings",
    "load_config_from_file",
    "parse_identity",
    # Outbound
    "ConnectionFactory",
    "OutboundConnection",
    "open_outbound_connection",
    # Streams
    "InboundChannel",
    "PayloadTap",
    "ReplayableStream",
]
