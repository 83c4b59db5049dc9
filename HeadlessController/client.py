#!/usr/bin/env python3

"""
Browser client base class.

A client owns one browser: its subprocess, the connection to its debug
endpoint, and a reader thread that feeds every inbound message to the
correlator (replies) or the router (events). Callers block on futures
handed out by those two.

Shutdown always runs in the same order: transport, process, profile
directory, forced kill of stragglers.
"""

import concurrent.futures
import logging
import threading
from concurrent.futures import Future
from typing import Any, List, Optional

from .exceptions import (
    BrowserConnectionClosed,
    BrowserResponseNotReceived,
    HeadlessControllerException,
)
from .protocol import MessageCorrelator, NotificationRouter
from .utils import find_available_port

# Marker for "use the browser family's default debug port"
DEFAULT_PORT = object()


def preview(text, limit=300) -> str:
    text = str(text)
    if len(text) > limit:
        return text[:limit] + "... ({} chars)".format(len(text))
    return text


class BrowserClient:
    """
    Shared lifecycle for the Chrome and Firefox clients.

    Args:
        hostname: Host the debug endpoint listens on
        debugger_port: Debug port; None picks a free port
        binary_path: Browser binary to launch instead of the platform default
        default_url: URL the browser opens on start
        headless: Run the browser without a window
        additional_options: Extra command line options for the browser
        remote: Connect to an already running browser instead of launching one
        wait_timeout: Seconds to wait for any reply or event; None waits forever
        connect_attempts: How many times to poll the debug endpoint before giving up
        retry_delay: Seconds between those polls
    """

    browser_name = None
    default_port = None

    def __init__(self,
                 hostname: str = "localhost",
                 debugger_port=DEFAULT_PORT,
                 binary_path: Optional[str] = None,
                 default_url: str = "about:blank",
                 headless: bool = True,
                 additional_options: Optional[List[str]] = None,
                 remote: bool = False,
                 wait_timeout: Optional[float] = None,
                 connect_attempts: int = 20,
                 retry_delay: float = 0.5):
        self.log = logging.getLogger("HeadlessController.{}".format(type(self).__name__))

        self.hostname = hostname
        if debugger_port is DEFAULT_PORT:
            self.port = self.default_port
        elif debugger_port is None:
            self.port = find_available_port()
            self.log.info("Auto-selected port: {}".format(self.port))
        else:
            self.port = debugger_port

        self.binary_path = binary_path
        self.default_url = default_url
        self.headless = headless
        self.additional_options = additional_options or []
        self.remote = remote
        self.wait_timeout = wait_timeout
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay

        self.supervisor = None
        self.transport = None
        self.correlator = MessageCorrelator()
        self.router = NotificationRouter()
        self.pages = []

        self._reader = None
        self._closed = False
        self._close_lock = threading.Lock()
        self._close_done = threading.Event()
        self._closing_thread = None

    @classmethod
    def build(cls, **options):
        """
        Launch and connect a browser.

        Returns:
            Tuple of (client, initial page)
        """
        client = cls(**options)
        try:
            page = client.start()
        except Exception:
            # start() never returned a handle, so nobody else can close() it
            client.close()
            raise
        return client, page

    def start(self):
        """Launch the browser, connect, and return the initial page."""
        raise NotImplementedError

    @property
    def closed(self) -> bool:
        return self._closed

    def _process_alive(self) -> bool:
        """
        Raises:
            BrowserStartupException: If the browser already exited, with its last output
        """
        if self.supervisor is not None:
            self.supervisor.check_alive()
        return True

    # Reader thread

    def _start_reader(self):
        self._reader = threading.Thread(
            target=self._read_loop,
            name="{}-reader".format(self.browser_name),
            daemon=True,
        )
        self._reader.start()

    def _receive(self):
        """Next inbound message, or None when the connection is gone."""
        raise NotImplementedError

    def _dispatch(self, message):
        raise NotImplementedError

    def _read_loop(self):
        reason = "Connection closed by browser"
        try:
            while True:
                message = self._receive()
                if message is None:
                    break
                self._dispatch(message)
        except HeadlessControllerException as e:
            self.log.error("Reader stopped: {}".format(e))
            reason = str(e)
        finally:
            # A lost connection is fatal: run the whole shutdown, not only the waiters
            if not self._closed:
                self.log.warning("{}".format(reason))
            self.close(reason)

    def _connection_lost(self, reason: str):
        self.correlator.cancel_all(reason)
        self.router.cancel_all(reason)
        for page in list(self.pages):
            page._abandon(reason)

    # Waiting

    def wait(self, future: Future, description: str) -> Any:
        """
        Block until ``future`` resolves.

        Raises:
            BrowserResponseNotReceived: If ``wait_timeout`` is set and expires
            BrowserConnectionClosed: If the connection went away first
        """
        try:
            return future.result(timeout=self.wait_timeout)
        except concurrent.futures.TimeoutError:
            raise BrowserResponseNotReceived("No response for {} within {} seconds".format(
                description, self.wait_timeout))
        except BrowserConnectionClosed:
            if self._closed:
                # Returns once a teardown running on another thread is complete
                self.close()
            raise

    def fail(self, exc: HeadlessControllerException):
        """Tear the connection down, then raise ``exc``."""
        self.close(str(exc))
        raise exc

    # Lifecycle

    def _close_transport(self):
        if self.transport is not None:
            self.transport.close()

    def _cleanup_profile(self):
        pass

    def close(self, reason: Optional[str] = None):
        """
        Close the connection and stop the browser. Safe to call more than once.

        Args:
            reason: Why the client is closing; handed to any caller still waiting
        """
        with self._close_lock:
            already_closing = self._closed
            if not already_closing:
                self._closed = True
                self._closing_thread = threading.current_thread()

        if already_closing:
            # Another thread is tearing down; callers only return once it is done
            if threading.current_thread() not in (self._reader, self._closing_thread):
                self._close_done.wait()
            return

        try:
            self._teardown(reason or "Client closed")
        finally:
            self._close_done.set()

    def _teardown(self, reason: str):
        self.log.info("Closing {} client: {}".format(self.browser_name, reason))

        try:
            self._close_transport()
        except OSError as e:
            self.log.debug("Error closing transport: {}".format(e))
        self._connection_lost(reason)

        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=5)

        if self.supervisor is not None:
            self.supervisor.terminate()

        self._cleanup_profile()

        if self.supervisor is not None:
            self.supervisor.force_kill_by_image_name()

        self.pages = []
        self.transport = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def ensure_open(client: BrowserClient):
    if client.closed:
        # Returns once a teardown running on another thread has finished
        client.close()
        raise BrowserConnectionClosed("Client is closed")
