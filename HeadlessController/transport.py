#!/usr/bin/env python3

"""
Transports to the browser's debug endpoint.

Chrome-family browsers publish a WebSocket URL through an HTTP discovery
endpoint on the debug port. Firefox speaks its actor protocol over a raw
TCP stream on the debug server port.
"""

import json
import logging
import socket
import threading
import time
import urllib.request
from typing import Any, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect

from .exceptions import BrowserConnectFailure, BrowserConnectionClosed

log = logging.getLogger("HeadlessController.Transport")

# Large enough for full page screenshots
MAX_MESSAGE_SIZE = 64 * 1024 * 1024


def fetch_json(host: str, port: int, path: str, timeout: float = 5):
    """GET a JSON document from the browser's HTTP discovery endpoint."""
    url = "http://{}:{}{}".format(host, port, path)
    with urllib.request.urlopen(url, timeout=timeout) as response:
        return json.loads(response.read().decode("utf-8"))


def discover_websocket_url(host: str, port: int, attempts: int = 20, delay: float = 0.5,
                           process_alive: Optional[Callable[[], bool]] = None) -> str:
    """
    Poll ``/json/version`` until the browser answers and return its WebSocket URL.

    Args:
        host: Debug host
        port: Debug port
        attempts: Number of polls before giving up
        delay: Seconds between polls
        process_alive: Optional check that the browser has not exited meanwhile

    Raises:
        BrowserConnectFailure: If the endpoint never answered
    """
    last_error = None
    for attempt in range(attempts):
        if process_alive is not None and not process_alive():
            raise BrowserConnectFailure("Browser process exited before its debug endpoint came up")
        try:
            info = fetch_json(host, port, "/json/version")
            return info["webSocketDebuggerUrl"]
        except (OSError, ValueError, KeyError) as e:
            last_error = e
            log.debug("Discovery attempt {}/{} failed: {}".format(attempt + 1, attempts, e))
            if attempt < attempts - 1:
                time.sleep(delay)

    raise BrowserConnectFailure("Debug endpoint http://{}:{}/json/version did not answer after {} attempts. Last error: {}".format(
        host, port, attempts, last_error))


def list_targets(host: str, port: int) -> List[Dict[str, Any]]:
    """Return the browser's targets from ``/json/list``."""
    try:
        return fetch_json(host, port, "/json/list")
    except (OSError, ValueError) as e:
        raise BrowserConnectFailure("Could not list targets on {}:{}: {}".format(host, port, e))


class WebSocketTransport:
    """One WebSocket, one JSON document per text frame."""

    def __init__(self, url: str, max_size: int = MAX_MESSAGE_SIZE):
        self.url = url
        self.max_size = max_size
        self.connection = None

    def connect(self):
        try:
            self.connection = connect(self.url, max_size=self.max_size)
        except (OSError, ConnectionClosed) as e:
            raise BrowserConnectFailure("Could not open WebSocket {}: {}".format(self.url, e))
        log.info("Connected to {}".format(self.url))

    def send(self, text: str):
        if self.connection is None:
            raise BrowserConnectionClosed("WebSocket is not connected")
        try:
            self.connection.send(text)
        except ConnectionClosed as e:
            raise BrowserConnectionClosed("WebSocket closed: {}".format(e))

    def receive(self) -> Optional[str]:
        """Next text frame, or None once the socket is closed."""
        if self.connection is None:
            return None
        try:
            return self.connection.recv()
        except ConnectionClosed:
            return None

    def close(self):
        if self.connection is not None:
            try:
                self.connection.close()
            except OSError as e:
                log.debug("Error closing WebSocket: {}".format(e))
            self.connection = None


class StreamTransport:
    """A raw TCP stream to the Firefox debugger server."""

    def __init__(self, host: str, port: int, recv_size: int = 65536):
        self.host = host
        self.port = port
        self.recv_size = recv_size
        self.sock = None
        self._send_lock = threading.Lock()

    def connect(self, attempts: int = 20, delay: float = 0.5,
                process_alive: Optional[Callable[[], bool]] = None):
        """
        Connect once the debugger server is listening.

        Raises:
            BrowserConnectFailure: If the port refused every attempt
        """
        last_error = None
        for attempt in range(attempts):
            if process_alive is not None and not process_alive():
                raise BrowserConnectFailure("Browser process exited before its debugger server came up")
            try:
                self.sock = socket.create_connection((self.host, self.port), timeout=delay * 4)
                self.sock.settimeout(None)
                log.info("Connected to debugger server {}:{}".format(self.host, self.port))
                return
            except OSError as e:
                last_error = e
                log.debug("Connect attempt {}/{} failed: {}".format(attempt + 1, attempts, e))
                if attempt < attempts - 1:
                    time.sleep(delay)

        raise BrowserConnectFailure("Connection refused by {}:{} after {} attempts. Last error: {}".format(
            self.host, self.port, attempts, last_error))

    def send(self, data: bytes):
        if self.sock is None:
            raise BrowserConnectionClosed("Stream is not connected")
        try:
            with self._send_lock:
                self.sock.sendall(data)
        except OSError as e:
            raise BrowserConnectionClosed("Stream closed: {}".format(e))

    def receive(self) -> bytes:
        """Next chunk of bytes, or b"" once the stream is closed."""
        sock = self.sock
        if sock is None:
            return b""
        try:
            return sock.recv(self.recv_size)
        except OSError:
            return b""

    def close(self):
        sock, self.sock = self.sock, None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()
