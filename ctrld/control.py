"""HTTP control server and client over a Unix domain socket."""

from __future__ import annotations

import http.client
import http.server
import os
import socket
import socketserver
import threading
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Union
from urllib.parse import urlsplit

CONTENT_TYPE_JSON = "application/json"
LIST_CLIENTS_PATH = "/clients"
STARTED_PATH = "/started"
RELOAD_PATH = "/reload"
DEACTIVATION_PATH = "/deactivation"
CD_PATH = "/cd"
IFACE_PATH = "/iface"

# A pin equal to this value means no pin was set.
DEFAULT_DEACTIVATION_PIN = -1


@dataclass
class Response:
    """An HTTP response; header names are stored lower-cased."""

    status: int = 200
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}


@dataclass
class DeactivationRequest:
    """Request body for validating a deactivation pin."""

    pin: int


HandlerResult = Union[Response, bytes, str, None]
Handler = Callable[[bytes], HandlerResult]


def deactivation_status(cd_uid: str, cd_pin: int, requested_pin: int | None) -> int:
    """Return the HTTP status for a deactivation request.

    requested_pin is None when the request body could not be decoded.
    """
    if not cd_uid or cd_pin == DEFAULT_DEACTIVATION_PIN:
        return 200
    if requested_pin is None:
        return 412
    if requested_pin == cd_pin:
        return 200
    if requested_pin == DEFAULT_DEACTIVATION_PIN:
        return 400
    return 403


class _UnixHTTPServer(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    daemon_threads = True

    def __init__(self, addr: str, control: "ControlServer") -> None:
        self.control = control
        super().__init__(addr, _RequestHandler)


class _RequestHandler(http.server.BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.0"
    server: _UnixHTTPServer

    def _dispatch(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length > 0 else b""
        handler = self.server.control._resolve(urlsplit(self.path).path)
        if handler is None:
            self._send(Response(404, b"404 page not found\n", {"Content-Type": "text/plain; charset=utf-8"}))
            return
        try:
            result = handler(body)
        except Exception as exc:  # a failing handler must not kill the server
            self._send(Response(500, str(exc).encode(), {"Content-Type": CONTENT_TYPE_JSON}))
            return
        response = _to_response(result)
        response.headers["content-type"] = CONTENT_TYPE_JSON
        self._send(response)

    def _send(self, response: Response) -> None:
        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        self.wfile.write(response.body)

    do_GET = do_POST = do_PUT = do_DELETE = do_HEAD = _dispatch

    def log_message(self, format: str, *args: object) -> None:
        pass


def _to_response(result: HandlerResult) -> Response:
    if isinstance(result, Response):
        return result
    if result is None:
        return Response()
    if isinstance(result, str):
        return Response(body=result.encode())
    return Response(body=bytes(result))


class ControlServer:
    """Serves registered handlers over HTTP on a Unix socket."""

    def __init__(self, addr: str) -> None:
        self.addr = addr
        self._routes: dict[str, Handler] = {}
        self._server: _UnixHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def register(self, pattern: str, handler: Handler) -> None:
        """Register a handler taking the request body and returning a response.

        A pattern ending in "/" matches every path below it; others match exactly.
        """
        self._routes[pattern] = handler

    def _resolve(self, path: str) -> Handler | None:
        if path in self._routes:
            return self._routes[path]
        prefixes = [p for p in self._routes if p.endswith("/") and path.startswith(p)]
        if not prefixes:
            return None
        return self._routes[max(prefixes, key=len)]

    def start(self) -> None:
        """Bind the socket and serve in a background thread."""
        try:
            os.remove(self.addr)
        except FileNotFoundError:
            pass
        self._server = _UnixHTTPServer(self.addr, self)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop serving and remove the socket file."""
        try:
            os.remove(self.addr)
        except FileNotFoundError:
            pass
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._server = None
        self._thread = None


class _UnixHTTPConnection(http.client.HTTPConnection):
    def __init__(self, path: str, timeout: float) -> None:
        super().__init__("unix", timeout=timeout)
        self._path = path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(self._path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


class ControlClient:
    """Sends requests to a control server listening on a Unix socket."""

    def __init__(self, addr: str, timeout: float = 30.0) -> None:
        self.addr = addr
        self.timeout = timeout

    def post(self, path: str, data: bytes | str | BinaryIO | None = None) -> Response:
        """POST data to path and return the response."""
        if data is None:
            payload = b""
        elif isinstance(data, str):
            payload = data.encode()
        elif isinstance(data, (bytes, bytearray)):
            payload = bytes(data)
        else:
            payload = data.read()
        conn = _UnixHTTPConnection(self.addr, self.timeout)
        try:
            conn.request("POST", path, body=payload, headers={"Content-Type": CONTENT_TYPE_JSON})
            resp = conn.getresponse()
            body = resp.read()
            return Response(resp.status, body, dict(resp.getheaders()))
        finally:
            conn.close()