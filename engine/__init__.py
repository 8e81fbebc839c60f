"""
FocusGate enforcement engine.
"""

from .blocklist           import Blocklist, normalize
from .connection_registry import ConnectionRegistry
from .errors              import (
    FocusGateError, ClientProtocolError, UpstreamUnreachable,
    SystemProxyCommandFailure,
)
from .http_parsing        import HttpParsing, RequestHead
from .proxy_server        import ProxyServer, PACFileGenerator
from .system_proxy        import SystemProxyConfig, ConfigResult
from .session_controller  import SessionController

__all__ = [
    "Blocklist",
    "normalize",
    "ConnectionRegistry",
    "FocusGateError",
    "ClientProtocolError",
    "UpstreamUnreachable",
    "SystemProxyCommandFailure",
    "HttpParsing",
    "RequestHead",
    "ProxyServer",
    "PACFileGenerator",
    "SystemProxyConfig",
    "ConfigResult",
    "SessionController",
]
