#!/usr/bin/env python3

"""
Chrome client: Chrome DevTools Protocol over the browser WebSocket.

One WebSocket is opened to the browser endpoint. Pages are attached with
``flatten`` so every page session is multiplexed on that socket, with the
session id carried in each message.
"""

import json
import time
from typing import Any, Dict, Optional

from .chrome_page import ChromePage
from .client import BrowserClient, ensure_open, preview
from .exceptions import (
    BrowserCommunicationsError,
    BrowserConnectFailure,
    BrowserConnectionClosed,
    BrowserProtocolError,
)
from .process import ProcessSupervisor, find_browser_binary
from .transport import WebSocketTransport, discover_websocket_url, list_targets
from .wire_types import (
    Error,
    Notification,
    TargetContext,
    decode_message,
    error_text,
)

DEFAULT_CHROME_PORT = 9292

PAGE_DOMAINS = ("Page", "Runtime", "Log", "Network")


class ChromeClient(BrowserClient):
    """
    Example:
        client, page = ChromeClient.build()
        with client:
            page.location("https://example.com")
            print(page.evaluate("document.title"))
    """

    browser_name = "chrome"
    default_port = DEFAULT_CHROME_PORT

    def build_command(self, binary: str):
        cmd = [binary]
        if self.headless:
            cmd.append("--headless")
        cmd.extend([
            "--remote-debugging-port={}".format(self.port),
            "--disable-gpu",
            "--no-sandbox",
        ])
        cmd.extend(self.additional_options)
        cmd.append(self.default_url)
        return cmd

    def start(self) -> ChromePage:
        if not self.remote:
            binary = find_browser_binary("chrome", self.binary_path)
            self.supervisor = ProcessSupervisor(self.build_command(binary))
            self.supervisor.launch()

        ws_url = discover_websocket_url(
            self.hostname, self.port,
            attempts=self.connect_attempts,
            delay=self.retry_delay,
            process_alive=self._process_alive,
        )
        self.transport = WebSocketTransport(ws_url)
        self.transport.connect()
        self._start_reader()

        self.call("Target.setDiscoverTargets", {"discover": True})
        return self.attach_page(self._initial_target_id())

    def _initial_target_id(self) -> str:
        for attempt in range(self.connect_attempts):
            pages = [target for target in list_targets(self.hostname, self.port) if target.get("type") == "page"]
            if pages:
                return pages[0]["id"]
            time.sleep(self.retry_delay)
        raise BrowserConnectFailure("No page target appeared on {}:{}".format(self.hostname, self.port))

    def find_target_id(self, url: Optional[str], fallback: Optional[str] = None) -> str:
        """
        Look up a page target by URL through the discovery endpoint.

        Args:
            url: The URL the target was opened with
            fallback: Target id to use if no target with that URL shows up
        """
        if url:
            for attempt in range(self.connect_attempts):
                for target in list_targets(self.hostname, self.port):
                    if target.get("type") == "page" and target.get("url") == url:
                        return target["id"]
                time.sleep(self.retry_delay)
            self.log.warning("No target with URL {} listed, using {}".format(url, fallback))
        if fallback is None:
            raise BrowserConnectFailure("No target found for {}".format(url))
        return fallback

    def attach_page(self, target_id: str) -> ChromePage:
        """Open a session on ``target_id`` and return a page for it."""
        session_id = self.call("Target.attachToTarget", {"targetId": target_id, "flatten": True})["sessionId"]

        # Subscribes before the domains are enabled
        page = ChromePage(self, TargetContext(target_id, session_id=session_id))
        for domain in PAGE_DOMAINS:
            self.call("{}.enable".format(domain), session_id=session_id)
        self.call("Page.setLifecycleEventsEnabled", {"enabled": True}, session_id)

        frame_id = self.call("Page.getFrameTree", session_id=session_id)["frameTree"]["frame"]["id"]
        page.context = page.context._replace(frame_id=frame_id)

        self.pages.append(page)
        self.log.info("Attached to target {} (session {})".format(target_id, session_id))
        return page

    # Messaging

    @staticmethod
    def event_key(method: str, session_id: Optional[str] = None) -> str:
        if session_id:
            return "{}@{}".format(method, session_id)
        return method

    def send(self, method: str, params: Optional[Dict[str, Any]] = None, session_id: Optional[str] = None):
        """
        Write one command without waiting for its reply.

        Returns:
            Tuple of (id, Future resolving to Success or Error)
        """
        ensure_open(self)
        try:
            msg_id, future = self.correlator.register()
        except BrowserConnectionClosed as e:
            self.close(str(e))
            raise
        message = {"id": msg_id, "method": method}
        if params:
            message["params"] = params
        if session_id:
            message["sessionId"] = session_id

        text = json.dumps(message)
        self.log.debug("-> {}".format(preview(text)))
        try:
            self.transport.send(text)
        except BrowserConnectionClosed as e:
            self.correlator.discard(msg_id)
            self.close(str(e))
            raise
        return msg_id, future

    def call_raw(self, method: str, params: Optional[Dict[str, Any]] = None, session_id: Optional[str] = None):
        """Send a command and return its Success or Error reply."""
        msg_id, future = self.send(method, params, session_id)
        try:
            return self.wait(future, method)
        finally:
            self.correlator.discard(msg_id)

    def call(self, method: str, params: Optional[Dict[str, Any]] = None, session_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Send a command and return its result.

        Raises:
            BrowserProtocolError: If the browser answered with an error; the
                client is closed first
        """
        reply = self.call_raw(method, params, session_id)
        if isinstance(reply, Error):
            self.fail(BrowserProtocolError(
                "{}: {}".format(method, error_text(reply.error)), error=reply.error, method=method))
        return reply.result

    def _receive(self):
        transport = self.transport
        return transport.receive() if transport is not None else None

    def _dispatch(self, raw: str):
        self.log.debug("<- {}".format(preview(raw)))
        try:
            message = decode_message(json.loads(raw))
        except (ValueError, BrowserCommunicationsError) as e:
            self.log.warning("Ignoring undecodable message: {}".format(e))
            return

        if isinstance(message, Notification):
            self.router.deliver(self.event_key(message.method, message.session_id), message.params)
        else:
            self.correlator.resolve(message.id, message)
