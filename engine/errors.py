"""
Error taxonomy for the FocusGate engine.

Nothing here is fatal to the host process: every error is turned into an
HTTP status, a logged warning or an ``{"ok": False}`` result.
"""


class FocusGateError(Exception):
    """Base class for engine errors."""


class ClientProtocolError(FocusGateError):
    """Malformed request line or headers from the client (answered 400)."""


class UpstreamUnreachable(FocusGateError):
    """The real destination could not be reached (502 / tunnel teardown)."""

    def __init__(self, host: str, port: int, reason: str = ""):
        self.host   = host
        self.port   = port
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot reach {host}:{port}{detail}")


class SystemProxyCommandFailure(FocusGateError):
    """One OS proxy command failed for a single sub-target."""

    def __init__(self, target: str, command: list[str], detail: str = ""):
        self.target  = target
        self.command = command
        self.detail  = detail
        super().__init__(
            f"{target}: {' '.join(command)} failed"
            + (f" ({detail})" if detail else "")
        )
