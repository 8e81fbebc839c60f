"""
Focus-session orchestration.

``SessionController`` turns ``start(sites)`` / ``stop()`` into proxy
bring-up, graceful restart and teardown, including pointing the system
proxy at the listener and clearing it again.  It owns the single live
``ProxyServer``; a new site list always means a new engine instance.
"""

import threading
import logging

from config.settings       import Settings
from engine.blocklist      import Blocklist
from engine.proxy_server   import ProxyServer
from engine.system_proxy   import SystemProxyConfig, ConfigResult

logger = logging.getLogger("FocusGate.Session")


class SessionController:
    """
    Idle → Running → Idle, with Running → Running as an internal restart.

    Calls are serialized by one lock so a restart's teardown and rebind
    never interleave with another start or stop.

    Parameters
    ----------
    configurator : SystemProxyConfig | None
        Platform proxy adapter.  ``None`` leaves the OS settings alone
        (the engine still runs and can be used as an explicit proxy).
    host, port : str, int
        Listening address; the port is the first one tried.
    on_request : callable | None
        ``callback(method, host, port, blocked)`` forwarded to each
        engine instance.
    """

    def __init__(
        self,
        configurator: SystemProxyConfig | None = None,
        host: str = Settings.PROXY_HOST,
        port: int = Settings.PROXY_PORT,
        on_request=None,
        engine_factory=ProxyServer,
    ):
        self.configurator = configurator
        self.host         = host
        self.base_port    = port
        self.on_request   = on_request
        self._engine_factory = engine_factory

        self._engine: ProxyServer | None = None
        self._lock = threading.Lock()

    # ── host-facing API ─────────────────────────────────────────

    def start(self, sites) -> dict:
        """Start (or restart) a session blocking *sites*."""
        blocklist = Blocklist.build(sites)

        with self._lock:
            was_running = self._engine is not None
            if was_running:
                logger.info("Restarting proxy with %d blocked site(s)",
                            len(blocklist))
                self._engine.stop()
                self._engine = None

            engine = self._engine_factory(
                blocklist=blocklist,
                host=self.host,
                port=self.base_port,
                on_request=self.on_request,
            )
            try:
                engine.start()
            except OSError as exc:
                logger.error("Cannot start proxy on %s:%d: %s",
                             self.host, self.base_port, exc)
                if was_running:
                    # the old session pointed the system proxy here
                    self._disable_system_proxy()
                return {"ok": False, "error": f"Failed to start proxy: {exc}"}

            self._engine = engine
            logger.info("Session started on port %d blocking: %s",
                        engine.port, ", ".join(blocklist) or "(nothing)")

            if self.configurator is not None:
                self._call_configurator("enable", engine.port)

            return {"ok": True}

    def stop(self) -> dict:
        """End the session; a no-op when idle."""
        with self._lock:
            if self._engine is None:
                return {"ok": True}

            self._engine.stop()
            self._engine = None
            self._disable_system_proxy()
            logger.info("Session ended")
            return {"ok": True}

    # names used by the host application
    start_session = start
    end_session   = stop

    # ── state ───────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._engine is not None

    @property
    def port(self) -> int | None:
        return self._engine.port if self._engine is not None else None

    def stats(self) -> dict:
        engine = self._engine
        if engine is None:
            return {"running": False}
        return engine.stats()

    # ── system proxy ────────────────────────────────────────────

    def _disable_system_proxy(self):
        if self.configurator is not None:
            self._call_configurator("disable")

    def _call_configurator(self, action: str, *args) -> ConfigResult:
        """Run enable/disable; failures are logged, never raised."""
        try:
            result = getattr(self.configurator, action)(*args)
        except Exception as exc:
            logger.error("System proxy %s raised", action, exc_info=True)
            return ConfigResult(False, str(exc))

        for warning in result.warnings:
            logger.warning("System proxy %s: %s", action, warning)
        if not result.ok:
            logger.warning("System proxy %s failed: %s", action,
                           result.message)
        return result
