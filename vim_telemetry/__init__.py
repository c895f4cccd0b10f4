"""
vim-telemetry - vSphere SOAP client for inventory and performance telemetry.

Provides:
- Session discovery and authentication against the vim25 SOAP endpoint
- Whole-inventory traversal through the PropertyCollector
- Performance counter discovery, metadata lookup and sample retrieval
- Metric catalog pipelines for VMs, clusters and hosts
"""

from vim_telemetry.client import ApiResult, VimClient
from vim_telemetry.config import ClientSettings, ResultOptions
from vim_telemetry.errors import (
    ConfigError,
    ProtocolError,
    SessionError,
    TransportError,
    ValidationError,
    VimApiError,
)

__version__ = "1.0.0"

__all__ = [
    'ApiResult',
    'VimClient',
    'ClientSettings',
    'ResultOptions',
    'VimApiError',
    'ConfigError',
    'ValidationError',
    'SessionError',
    'TransportError',
    'ProtocolError',
]
