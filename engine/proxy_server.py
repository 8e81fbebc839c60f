"""
FocusGate local HTTP/HTTPS forward proxy.

Relays every request whose hostname is not on the session blocklist and
answers the rest itself:

  Browser → Proxy → (allowed)  → Internet
                  → (blocked)  → 403 block page / "Blocked." for CONNECT

HTTPS is tunneled opaquely through CONNECT; nothing is decrypted.

Lifecycle:  stopped → listening → draining → stopped.  An instance is
never restarted; a new blocklist means a new ``ProxyServer``.

Browser Setup:
  - Set HTTP/HTTPS proxy to 127.0.0.1:<port>
  - Or let ``SystemProxyConfig`` do it
  - Or use the PAC file served at http://127.0.0.1:<port>/proxy.pac
"""

import errno
import json
import socket
import sys
import threading
import select
import logging
import time

from config.settings             import Settings
from engine.blocklist            import Blocklist
from engine.connection_registry  import ConnectionRegistry
from engine.errors               import ClientProtocolError, UpstreamUnreachable
from engine.http_parsing         import (
    HttpParsing, RequestHead, CONNECT_BLOCKED, CONNECT_ESTABLISHED,
)

logger = logging.getLogger("FocusGate.Proxy")

# only Linux refuses SO_REUSEADDR binds next to a live listener
_REUSE_ADDR = sys.platform.startswith("linux")

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", 10048)}

_LOCAL_NAMES = {"127.0.0.1", "localhost", "::1"}


def _is_addr_in_use(exc: OSError) -> bool:
    return (exc.errno in _ADDR_IN_USE
            or getattr(exc, "winerror", None) == 10048)


class ProxyRequest:
    """Tracks a single proxied request for logging/stats."""

    def __init__(self, method: str, host: str, port: int,
                 client_addr: tuple):
        self.method      = method
        self.host        = host
        self.port        = port
        self.client_addr = client_addr
        self.blocked     = False
        self.responded   = False
        self.bytes_sent  = 0
        self.bytes_recv  = 0


class PACFileGenerator:
    """Generate a Proxy Auto-Config file for browsers."""

    @staticmethod
    def generate(proxy_host: str, proxy_port: int,
                 bypass_list: list[str] | None = None) -> str:
        bypasses = Settings.PROXY_BYPASS if bypass_list is None else bypass_list

        conditions = []
        for b in bypasses:
            if "*" in b:
                conditions.append(
                    f'    if (shExpMatch(host, "{b}")) return "DIRECT";'
                )
            else:
                conditions.append(
                    f'    if (host == "{b}") return "DIRECT";'
                )
        bypass_block = "\n".join(conditions)

        return f"""function FindProxyForURL(url, host) {{
{bypass_block}
    return "PROXY {proxy_host}:{proxy_port}";
}}"""


class ProxyServer:
    """
    Local forward proxy enforcing one immutable ``Blocklist``.

    Each accepted connection is handled in its own daemon thread; every
    socket it touches is tracked by ``registry`` so that ``stop`` can cut
    them all without waiting.
    """

    def __init__(
        self,
        blocklist: Blocklist | None = None,
        host: str = Settings.PROXY_HOST,
        port: int = Settings.PROXY_PORT,
        on_request=None,
        buffer_size: int = Settings.BUFFER_SIZE,
        connect_timeout: float = Settings.CONNECT_TIMEOUT,
        idle_timeout: float = Settings.IDLE_TIMEOUT,
    ):
        self.blocklist       = blocklist if blocklist is not None else Blocklist()
        self.host            = host
        self.port            = port
        self.buffer_size     = buffer_size
        self.connect_timeout = connect_timeout
        self.idle_timeout    = idle_timeout
        self._on_request     = on_request

        self.registry = ConnectionRegistry()
        self.state    = "stopped"

        self._server_sock: socket.socket | None = None
        self._running       = False
        self._accept_thread: threading.Thread | None = None
        self._lock          = threading.Lock()

        # Stats
        self.total_requests     = 0
        self.active_connections = 0
        self.blocked_requests   = 0

    # ── lifecycle ───────────────────────────────────────────────

    def start(self):
        """
        Bind, listen and start accepting connections.

        The requested port is tried first and incremented while it is in
        use; ``self.port`` holds the bound port afterwards.  Any other
        bind error propagates.
        """
        if self.state != "stopped" or self._accept_thread is not None:
            logger.warning("Proxy already started")
            return

        self._server_sock, self.port = self._bind(self.host, self.port)
        self._server_sock.settimeout(Settings.ACCEPT_TIMEOUT)
        self._server_sock.listen(Settings.BACKLOG)

        self._running = True
        self.state    = "listening"
        self._accept_thread = threading.Thread(
            target=self._accept_loop, daemon=True,
            name=f"ProxyAccept-{self.port}",
        )
        self._accept_thread.start()

        logger.info(
            "Proxy listening on %s:%d (%d blocked site(s))",
            self.host, self.port, len(self.blocklist),
        )

    def stop(self):
        """
        Drain: destroy every live connection, close the listener and
        wait for the accept thread, so the port is free on return.
        """
        if self.state != "listening":
            return
        self.state    = "draining"
        self._running = False

        dropped = self.registry.destroy_all()

        if self._server_sock:
            try:
                # wakes a blocked accept() where the platform supports it
                self._server_sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        if self._accept_thread and self._accept_thread.is_alive():
            self._accept_thread.join(timeout=Settings.ACCEPT_TIMEOUT * 5)
        if self._server_sock:
            try:
                self._server_sock.close()
            except OSError:
                pass
            self._server_sock = None

        self.state = "stopped"
        logger.info("Proxy on port %d stopped (%d connection(s) dropped)",
                    self.port, dropped)

    @property
    def is_running(self) -> bool:
        return self._running

    @staticmethod
    def _bind(host: str, port: int) -> tuple[socket.socket, int]:
        while True:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            if _REUSE_ADDR:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((host, port))
                return sock, port
            except OSError as exc:
                sock.close()
                if not _is_addr_in_use(exc) or port >= Settings.MAX_PORT:
                    raise
                logger.info("Port %d in use, trying %d", port, port + 1)
                port += 1

    # ── accept loop ─────────────────────────────────────────────

    def _accept_loop(self):
        while self._running:
            try:
                client_sock, addr = self._server_sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._running:
                    logger.error("Proxy accept error", exc_info=True)
                break

            # the snapshot current at accept time serves this connection
            threading.Thread(
                target=self._handle_client,
                args=(client_sock, addr, self.blocklist),
                daemon=True,
                name=f"Proxy-{addr[0]}:{addr[1]}",
            ).start()

    # ── per-client handler ──────────────────────────────────────

    def _handle_client(self, client_sock: socket.socket, addr: tuple,
                       blocklist: Blocklist):
        if not self.registry.register(client_sock):
            return

        with self._lock:
            self.active_connections += 1
            self.total_requests += 1

        tracker: ProxyRequest | None = None
        try:
            client_sock.settimeout(Settings.REQUEST_TIMEOUT)
            try:
                received = HttpParsing.recv_head(
                    client_sock, self.buffer_size, Settings.MAX_HEAD_SIZE
                )
            except (socket.timeout, ConnectionError) as exc:
                logger.debug("Client %s:%d went away before a request: %s",
                             addr[0], addr[1], exc)
                return
            if received is None:
                return
            head, rest = received
            client_sock.settimeout(None)

            request = HttpParsing.parse_request_head(head)
            tracker = ProxyRequest(request.method, "", 0, addr)
            if request.is_connect:
                self._handle_connect(
                    client_sock, request, rest, blocklist, tracker
                )
            else:
                self._handle_http(
                    client_sock, request, rest, blocklist, tracker
                )

        except ClientProtocolError as exc:
            logger.info("Bad request from %s:%d: %s", addr[0], addr[1], exc)
            self._send(client_sock,
                       HttpParsing.error_response(400, "Bad Request"))
        except OSError as exc:
            # client side went away, or the engine is draining
            logger.debug("Connection %s:%d closed: %s", addr[0], addr[1], exc)
        except Exception:
            logger.error("Proxy handler error (%s:%d)", addr[0], addr[1],
                         exc_info=True)
            if tracker is None or not tracker.responded:
                self._send(client_sock, HttpParsing.error_response(
                    500, "Internal Proxy Error"))
        finally:
            self._close(client_sock)
            with self._lock:
                self.active_connections -= 1

    # ── plain HTTP ──────────────────────────────────────────────

    def _handle_http(self, client_sock: socket.socket, request: RequestHead,
                     rest: bytes, blocklist: Blocklist,
                     tracker: ProxyRequest):
        authority = (request.get_header("Host")
                     or HttpParsing.target_authority(request.target))
        if not authority:
            raise ClientProtocolError("Missing Host header")
        host, port = HttpParsing.split_host_port(authority, 80)
        tracker.host, tracker.port = host.lower(), port
        host = tracker.host
        path = HttpParsing.origin_form(request.target)

        if port == self.port and host in _LOCAL_NAMES | {self.host}:
            tracker.responded = True
            self._serve_local(client_sock, path)
            return

        if blocklist.matches(host):
            self._mark_blocked(tracker)
            body = HttpParsing.block_page(host)
            tracker.responded = True
            self._send(client_sock, HttpParsing.build_response(
                403, "Forbidden", body))
            return

        logger.info("%s %s:%d%s from %s:%d", request.method, host, port,
                    path, *tracker.client_addr[:2])
        self._fire_on_request(request.method, host, port, False)

        try:
            upstream = self._connect_upstream(host, port)
        except UpstreamUnreachable as exc:
            logger.warning("%s", exc)
            tracker.responded = True
            self._send(client_sock,
                       HttpParsing.error_response(502, "Bad Gateway"))
            return
        if upstream is None:
            return

        try:
            try:
                upstream.sendall(
                    HttpParsing.rewrite_request(request.raw, path) + rest
                )
            except OSError as exc:
                ended_by = upstream
                logger.warning("Upstream %s:%d failed: %s", host, port, exc)
            else:
                ended_by = self._splice(client_sock, upstream, tracker,
                                        half_close=True)

            if (ended_by is upstream and not tracker.responded
                    and self._running):
                logger.warning("Upstream %s:%d ended without a response",
                               host, port)
                tracker.responded = True
                self._send(client_sock,
                           HttpParsing.error_response(502, "Bad Gateway"))
        finally:
            self._close(upstream)

    # ── CONNECT tunnel ──────────────────────────────────────────

    def _handle_connect(self, client_sock: socket.socket,
                        request: RequestHead, rest: bytes,
                        blocklist: Blocklist, tracker: ProxyRequest):
        host, port = HttpParsing.split_host_port(request.target, 443)
        tracker.host, tracker.port = host.lower(), port
        host = tracker.host

        if blocklist.matches(host):
            self._mark_blocked(tracker)
            tracker.responded = True
            self._send(client_sock, CONNECT_BLOCKED)
            return

        logger.info("CONNECT %s:%d from %s:%d", host, port,
                    *tracker.client_addr[:2])
        self._fire_on_request("CONNECT", host, port, False)

        try:
            upstream = self._connect_upstream(host, port)
        except UpstreamUnreachable as exc:
            logger.warning("%s", exc)
            return
        if upstream is None:
            return

        try:
            if not self._send(client_sock, CONNECT_ESTABLISHED):
                return
            tracker.responded = True
            if rest:
                upstream.sendall(rest)
                tracker.bytes_sent += len(rest)
            self._splice(client_sock, upstream, tracker)
        finally:
            self._close(upstream)

    # ── relay ───────────────────────────────────────────────────

    def _connect_upstream(self, host: str, port: int
                          ) -> socket.socket | None:
        """
        Open a registered connection to the destination.  Returns None
        when the engine started draining while the connect was pending.
        """
        try:
            sock = socket.create_connection(
                (host, port), timeout=self.connect_timeout
            )
        except OSError as exc:
            raise UpstreamUnreachable(host, port, str(exc)) from exc
        sock.settimeout(None)

        if not self._running or not self.registry.register(sock):
            logger.debug("Discarding late connect to %s:%d", host, port)
            self._close(sock)
            return None
        return sock

    def _splice(self, client: socket.socket, upstream: socket.socket,
                tracker: ProxyRequest, half_close: bool = False
                ) -> socket.socket | None:
        """
        Copy bytes both ways until one side closes or errors.

        Returns the socket whose EOF/error ended the relay, or None on
        idle timeout or teardown.  With *half_close* a client EOF only
        shuts the upstream write side so the response can still arrive,
        and an upstream that stays silent until the idle timeout counts
        as having ended the relay.
        """
        readers = [client, upstream]
        last_activity = time.monotonic()

        while self._running and readers:
            try:
                readable, _, _ = select.select(
                    readers, [], [], Settings.SELECT_INTERVAL
                )
            except (ValueError, OSError):
                return None
            if not readable:
                if time.monotonic() - last_activity > self.idle_timeout:
                    logger.debug("Relay to %s:%d idle, closing",
                                 tracker.host, tracker.port)
                    if half_close and not tracker.responded:
                        return upstream
                    return None
                continue
            last_activity = time.monotonic()

            for sock in readable:
                other = upstream if sock is client else client
                try:
                    data = sock.recv(self.buffer_size)
                except OSError:
                    return sock
                if not data:
                    if half_close and sock is client:
                        readers.remove(client)
                        try:
                            upstream.shutdown(socket.SHUT_WR)
                        except OSError:
                            return upstream
                        continue
                    return sock
                try:
                    other.sendall(data)
                except OSError:
                    return other
                if sock is upstream:
                    tracker.bytes_recv += len(data)
                    tracker.responded = True
                else:
                    tracker.bytes_sent += len(data)
        return None

    def _close(self, sock: socket.socket):
        self.registry.unregister(sock)
        try:
            sock.close()
        except OSError:
            pass

    @staticmethod
    def _send(sock: socket.socket, data: bytes) -> bool:
        try:
            sock.sendall(data)
            return True
        except OSError:
            return False

    # ── local endpoints (PAC file, status) ──────────────────────

    def _serve_local(self, sock: socket.socket, path: str):
        path = path.split("?", 1)[0]
        if path in ("/proxy.pac", "/wpad.dat"):
            body = PACFileGenerator.generate(self.host, self.port).encode()
            response = HttpParsing.build_response(
                200, "OK", body, "application/x-ns-proxy-autoconfig")
        elif path == "/status":
            body = json.dumps(self.stats(), indent=2).encode("utf-8")
            response = HttpParsing.build_response(
                200, "OK", body, "application/json")
        else:
            response = HttpParsing.error_response(404, "Not Found")
        self._send(sock, response)

    # ── callbacks & stats ───────────────────────────────────────

    def _mark_blocked(self, tracker: ProxyRequest):
        tracker.blocked = True
        with self._lock:
            self.blocked_requests += 1
        logger.info("Blocked %s %s:%d from %s:%d", tracker.method,
                    tracker.host, tracker.port, *tracker.client_addr[:2])
        self._fire_on_request(tracker.method, tracker.host, tracker.port,
                              True)

    def _fire_on_request(self, method: str, host: str, port: int,
                         blocked: bool):
        if self._on_request:
            try:
                self._on_request(method, host, port, blocked)
            except Exception:
                logger.error("on_request callback error", exc_info=True)

    def stats(self) -> dict:
        return {
            "running":            self._running,
            "state":              self.state,
            "listen":             f"{self.host}:{self.port}",
            "total_requests":     self.total_requests,
            "active_connections": self.active_connections,
            "blocked_requests":   self.blocked_requests,
            "blocked_sites":      len(self.blocklist),
        }
