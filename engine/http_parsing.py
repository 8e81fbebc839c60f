"""
Minimal HTTP/1.x request-head codec for the FocusGate proxy.

Only the request head (request line + headers) is parsed; bodies and
responses are relayed as opaque bytes.

Head layout:
    METHOD SP target SP HTTP/x.y CRLF
    (name ":" value CRLF)*
    CRLF
"""

import html
import re
import socket
from urllib.parse import urlsplit

from engine.errors import ClientProtocolError

HEAD_TERMINATOR = b"\r\n\r\n"

CONNECT_ESTABLISHED = b"HTTP/1.1 200 Connection Established\r\n\r\n"
CONNECT_BLOCKED     = b"HTTP/1.1 403 Forbidden\r\n\r\nBlocked.\r\n"

# hop-by-hop headers the proxy never forwards upstream
_STRIPPED_HEADERS = {
    b"proxy-connection",
    b"proxy-authorization",
    b"connection",
    b"keep-alive",
}

_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class RequestHead:
    """Parsed request line and headers."""

    def __init__(self, method: str, target: str, version: str,
                 headers: list[tuple[str, str]], raw: bytes = b""):
        self.method  = method
        self.target  = target
        self.version = version
        self.headers = headers
        self.raw     = raw

    def get_header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    @property
    def is_connect(self) -> bool:
        return self.method == "CONNECT"

    def __repr__(self) -> str:
        return f"<RequestHead {self.method} {self.target} {self.version}>"


class HttpParsing:

    @staticmethod
    def recv_head(sock: socket.socket, buffer_size: int,
                  max_size: int) -> tuple[bytes, bytes] | None:
        """
        Read until the blank line ending the request head.

        Returns *(head, rest)* where *rest* holds any bytes already read
        past the head, or None if the peer closed before a full head
        arrived.  Timeouts and resets propagate to the caller.
        """
        buf = b""
        while True:
            idx = buf.find(HEAD_TERMINATOR)
            if idx != -1:
                end = idx + len(HEAD_TERMINATOR)
                return buf[:end], buf[end:]
            if len(buf) > max_size:
                raise ClientProtocolError("Request head too large")
            chunk = sock.recv(buffer_size)
            if not chunk:
                return None
            buf += chunk

    @staticmethod
    def parse_request_head(head: bytes) -> RequestHead:
        text = head.decode("iso-8859-1")
        lines = text.split("\r\n")
        while lines and lines[-1] == "":
            lines.pop()
        if not lines:
            raise ClientProtocolError("Empty request")

        parts = lines[0].split(" ")
        if len(parts) != 3:
            raise ClientProtocolError(f"Malformed request line: {lines[0]!r}")
        method, target, version = parts
        if not _TOKEN_RE.match(method):
            raise ClientProtocolError(f"Invalid method: {method!r}")
        if not target:
            raise ClientProtocolError("Empty request target")
        if not re.match(r"^HTTP/\d\.\d$", version):
            raise ClientProtocolError(f"Unsupported version: {version!r}")

        headers: list[tuple[str, str]] = []
        for line in lines[1:]:
            name, sep, value = line.partition(":")
            if not sep or not _TOKEN_RE.match(name):
                raise ClientProtocolError(f"Malformed header: {line!r}")
            headers.append((name, value.strip()))

        return RequestHead(method.upper(), target, version, headers, head)

    @staticmethod
    def split_host_port(authority: str, default_port: int) -> tuple[str, int]:
        """Split ``host[:port]``; bracketed IPv6 literals are unwrapped."""
        authority = authority.strip()
        if authority.startswith("["):
            end = authority.find("]")
            if end == -1:
                raise ClientProtocolError(f"Bad authority: {authority!r}")
            host = authority[1:end]
            rest = authority[end + 1:]
            if not rest:
                port_s = ""
            elif rest.startswith(":"):
                port_s = rest[1:]
            else:
                raise ClientProtocolError(f"Bad authority: {authority!r}")
        elif authority.count(":") == 1:
            host, port_s = authority.split(":")
        else:
            # bare IPv6 literals carry more than one colon and no port
            host, port_s = authority, ""

        if not host:
            raise ClientProtocolError(f"Missing host: {authority!r}")
        if not port_s:
            return host, default_port
        if not port_s.isdigit() or not 0 < int(port_s) < 65536:
            raise ClientProtocolError(f"Bad port: {port_s!r}")
        return host, int(port_s)

    @staticmethod
    def target_authority(target: str) -> str | None:
        """Authority part of an absolute-form target, else None."""
        if re.match(r"^[A-Za-z][A-Za-z0-9+.\-]*://", target):
            return urlsplit(target).netloc or None
        return None

    @staticmethod
    def origin_form(target: str) -> str:
        if HttpParsing.target_authority(target) is None:
            return target
        parts = urlsplit(target)
        path = parts.path or "/"
        if parts.query:
            path += "?" + parts.query
        return path

    @staticmethod
    def rewrite_request(head: bytes, path: str) -> bytes:
        """
        Request line switched to origin-form, proxy and connection
        headers dropped, ``Connection: close`` appended.
        """
        lines = head.split(b"\r\n")
        first = lines[0].split(b" ", 2)
        if len(first) == 3:
            first[1] = path.encode("iso-8859-1")
        lines[0] = b" ".join(first)

        filtered: list[bytes] = [lines[0]]
        for line in lines[1:]:
            if not line:
                continue
            name = line.split(b":", 1)[0].strip().lower()
            if name in _STRIPPED_HEADERS:
                continue
            filtered.append(line)
        filtered.append(b"Connection: close")
        return b"\r\n".join(filtered) + HEAD_TERMINATOR

    @staticmethod
    def build_response(code: int, reason: str, body: bytes,
                       content_type: str = "text/html; charset=utf-8"
                       ) -> bytes:
        return (
            f"HTTP/1.1 {code} {reason}\r\n"
            f"Content-Type: {content_type}\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"Cache-Control: no-store\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        ).encode() + body

    @staticmethod
    def html_page(title: str, heading: str, message: str) -> bytes:
        return (
            f"<!DOCTYPE html><html><head><meta charset='utf-8'>"
            f"<title>{html.escape(title)}</title>"
            f"<style>"
            f"body{{font-family:sans-serif;background:#1e1e2e;"
            f"color:#cdd6f4;display:flex;justify-content:center;"
            f"align-items:center;height:100vh;margin:0}}"
            f".box{{background:#313244;padding:40px;border-radius:12px;"
            f"text-align:center;max-width:500px}}"
            f"h1{{color:#f38ba8}}p{{color:#a6adc8}}"
            f"</style></head>"
            f"<body><div class='box'>"
            f"<h1>{html.escape(heading)}</h1>"
            f"<p>{html.escape(message)}</p>"
            f"</div></body></html>"
        ).encode("utf-8")

    @staticmethod
    def block_page(host: str) -> bytes:
        return HttpParsing.html_page(
            "Blocked",
            "Stay focused",
            f"{host} is blocked for the rest of this focus session.",
        )

    @staticmethod
    def error_response(code: int, reason: str) -> bytes:
        body = HttpParsing.html_page(
            f"{code} {reason}", f"{code} {reason}", "FocusGate proxy"
        )
        return HttpParsing.build_response(code, reason, body)
