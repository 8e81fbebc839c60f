"""Loopback servers and socket helpers shared by the network tests."""

import http.server
import socket
import socketserver
import struct
import threading
import time

TIMEOUT = 5.0


def free_port() -> int:
    """A port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def occupy_port() -> socket.socket:
    """A listening socket holding an ephemeral port; caller closes it."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    s.listen(1)
    return s


def recv_all(sock: socket.socket, timeout: float = TIMEOUT) -> bytes:
    """Read until EOF (a reset counts as EOF)."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        try:
            data = sock.recv(65536)
        except ConnectionResetError:
            break
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def recv_exact(sock: socket.socket, n: int,
               timeout: float = TIMEOUT) -> bytes:
    sock.settimeout(timeout)
    buf = b""
    while len(buf) < n:
        data = sock.recv(n - len(buf))
        if not data:
            break
        buf += data
    return buf


def is_closed(sock: socket.socket, timeout: float = TIMEOUT) -> bool:
    """True once the peer closed or reset *sock*."""
    sock.settimeout(timeout)
    try:
        while True:
            data = sock.recv(65536)
            if not data:
                return True
    except ConnectionResetError:
        return True
    except socket.timeout:
        return False


def wait_for(predicate, timeout: float = TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def send_through_proxy(port: int, raw: bytes) -> bytes:
    with socket.create_connection(("127.0.0.1", port), timeout=TIMEOUT) as s:
        s.sendall(raw)
        return recv_all(s)


# ── upstream HTTP server ────────────────────────────────────────

class _RecordingHandler(http.server.BaseHTTPRequestHandler):
    def do_GET(self):
        self._reply()

    def do_POST(self):
        length = int(self.headers.get("Content-Length") or 0)
        self._reply(self.rfile.read(length))

    def _reply(self, body: bytes = b""):
        self.server.requests.append({
            "method":  self.command,
            "path":    self.path,
            "headers": dict(self.headers),
            "body":    body,
        })
        payload = self.server.reply_body or body
        self.send_response(self.server.reply_status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, *args):
        pass


class UpstreamHTTPServer:
    """HTTP server on an ephemeral loopback port recording each request."""

    def __init__(self, status: int = 200, body: bytes = b"upstream ok"):
        self.server = http.server.ThreadingHTTPServer(
            ("127.0.0.1", 0), _RecordingHandler
        )
        self.server.daemon_threads = True
        self.server.requests = []
        self.server.reply_status = status
        self.server.reply_body = body
        self.port = self.server.server_address[1]
        self._thread = threading.Thread(
            target=self.server.serve_forever, daemon=True
        )

    @property
    def requests(self) -> list[dict]:
        return self.server.requests

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self.server.shutdown()
        self.server.server_close()


# ── upstream raw TCP servers ────────────────────────────────────

class _EchoHandler(socketserver.BaseRequestHandler):
    def handle(self):
        self.server.connections.append(self.request)
        while True:
            try:
                data = self.request.recv(65536)
            except OSError:
                return
            if not data:
                return
            if self.server.close_on_data:
                self.request.close()
                return
            self.request.sendall(data)


class _TCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


class EchoServer:
    """
    TCP echo server.  With *close_on_data* it drops the connection as
    soon as anything arrives instead of echoing it.
    """

    def __init__(self, close_on_data: bool = False):
        self.server = _TCPServer(("127.0.0.1", 0), _EchoHandler)
        self.server.connections = []
        self.server.close_on_data = close_on_data
        self.port = self.server.server_address[1]
        self._thread = threading.Thread(
            target=self.server.serve_forever, daemon=True
        )

    @property
    def connections(self) -> list:
        return self.server.connections

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self.server.shutdown()
        self.server.server_close()


class _ScriptedHandler(socketserver.BaseRequestHandler):
    def handle(self):
        buf = b""
        while b"\r\n\r\n" not in buf:
            data = self.request.recv(65536)
            if not data:
                return
            buf += data
        self.request.sendall(self.server.reply)
        # give the proxy time to relay the reply before the reset
        time.sleep(0.3)
        # linger 0 turns close() into a reset
        self.request.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER,
                                struct.pack("ii", 1, 0))
        self.request.close()


class PartialReplyServer:
    """Reads one request head, sends *reply*, then resets the connection."""

    def __init__(self, reply: bytes):
        self.server = _TCPServer(("127.0.0.1", 0), _ScriptedHandler)
        self.server.reply = reply
        self.port = self.server.server_address[1]
        self._thread = threading.Thread(
            target=self.server.serve_forever, daemon=True
        )

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self.server.shutdown()
        self.server.server_close()
