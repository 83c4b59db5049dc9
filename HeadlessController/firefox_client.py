#!/usr/bin/env python3

"""
Firefox client: the actor based Remote Debugging Protocol over TCP.

Requests are ``{"to": actor, "type": request, ...}`` packets. Replies carry
``from`` but no id, and each actor answers its requests in the order they
were sent, so replies are matched to the oldest outstanding request for the
same actor. Packets that carry a ``type`` are events and go to the router,
keyed ``"<type>@<actor>"``.
"""

import collections
import os
import os.path
import shutil
import tempfile
import threading
import time
from typing import Any, Dict, Optional

from .client import BrowserClient, ensure_open, preview
from .exceptions import (
    BrowserConnectFailure,
    BrowserConnectionClosed,
    BrowserProtocolError,
    BrowserResponseNotReceived,
)
from .firefox_page import FirefoxPage
from .framer import PacketFramer
from .process import ProcessSupervisor, find_browser_binary, IMAGE_NAMES
from .transport import StreamTransport
from .wire_types import TargetContext

DEFAULT_FIREFOX_PORT = 9293

PROFILE_PREFS = """user_pref("devtools.chrome.enabled", true);
user_pref("devtools.debugger.prompt-connection", false);
user_pref("devtools.debugger.remote-enabled", true);
user_pref("devtools.debugger.remote-port", {port});
user_pref("browser.shell.checkDefaultBrowser", false);
user_pref("browser.startup.homepage_override.mstone", "ignore");
user_pref("datareporting.policy.dataSubmissionEnabled", false);
user_pref("toolkit.telemetry.reportingpolicy.firstRun", false);
"""

CONSOLE_LISTENERS = ["PageError", "ConsoleAPI", "NetworkActivity"]


class FirefoxClient(BrowserClient):
    """
    Example:
        client, page = FirefoxClient.build()
        with client:
            page.location("https://example.com")
            print(page.evaluate("document.title"))
    """

    browser_name = "firefox"
    default_port = DEFAULT_FIREFOX_PORT

    def __init__(self, **options):
        super().__init__(**options)
        self.profile_dir = None
        self.framer = None
        self._actor_queues = {}  # actor -> deque of request ids, oldest first
        self._send_lock = threading.Lock()

    def _create_profile(self) -> str:
        """Create a temporary profile with remote debugging enabled."""
        profile_dir = tempfile.mkdtemp(prefix="headless_controller_firefox_")
        with open(os.path.join(profile_dir, "prefs.js"), "w") as f:
            f.write(PROFILE_PREFS.format(port=self.port))
        self.log.debug("Created temporary profile: {}".format(profile_dir))
        return profile_dir

    def build_command(self, binary: str):
        cmd = [binary, "--start-debugger-server", str(self.port), "--profile", self.profile_dir]
        if self.headless:
            cmd.append("--headless")
        cmd.extend(self.additional_options)
        cmd.append(self.default_url)
        return cmd

    def start(self) -> FirefoxPage:
        binary = find_browser_binary("firefox", self.binary_path)
        self.profile_dir = self._create_profile()
        self.supervisor = ProcessSupervisor(self.build_command(binary), image_name=IMAGE_NAMES["firefox"])
        self.supervisor.launch()

        self.transport = StreamTransport(self.hostname, self.port)
        self.transport.connect(
            attempts=self.connect_attempts,
            delay=self.retry_delay,
            process_alive=self._process_alive,
        )
        self.framer = PacketFramer(self.transport.receive, on_filtered=self._on_filtered_packet)

        welcome = self.framer.read_packet()
        if welcome is None:
            raise BrowserConnectionClosed("Debugger server closed the connection before greeting")
        self.log.debug("Welcome: {}".format(preview(welcome)))
        self._start_reader()

        tab = self._selected_tab()
        frame = self.request(tab["actor"], "getTarget")["frame"]
        context = TargetContext(
            target_id=frame["actor"],
            frame_id=str(frame.get("outerWindowID", "")),
            console_actor=frame["consoleActor"],
        )
        page = FirefoxPage(self, context, tab_actor=tab["actor"])
        self.request(context.console_actor, "startListeners", {"listeners": CONSOLE_LISTENERS})
        self.pages.append(page)
        return page

    def _selected_tab(self) -> Dict[str, Any]:
        """The selected tab, retrying while the browser is still opening it."""
        for attempt in range(self.connect_attempts):
            tabs = self.request("root", "listTabs").get("tabs") or []
            for tab in tabs:
                if tab.get("selected"):
                    return tab
            if tabs:
                return tabs[0]
            self.log.debug("No tabs listed yet (attempt {}/{})".format(attempt + 1, self.connect_attempts))
            time.sleep(self.retry_delay)
        raise BrowserConnectFailure("Firefox did not list any tabs after {} attempts".format(self.connect_attempts))

    # Messaging

    @staticmethod
    def event_key(event_type: str, actor: str) -> str:
        return "{}@{}".format(event_type, actor)

    def send(self, actor: str, request_type: str, params: Optional[Dict[str, Any]] = None):
        """
        Write one request packet without waiting for its reply.

        Returns:
            Tuple of (id, Future resolving to the reply packet)
        """
        ensure_open(self)
        packet = {"to": actor, "type": request_type}
        if params:
            packet.update(params)
        data = PacketFramer.encode(packet)

        # Queue order must match write order
        with self._send_lock:
            try:
                msg_id, future = self.correlator.register()
                queue = self._actor_queues.setdefault(actor, collections.deque())
                queue.append(msg_id)
                self.log.debug("-> {}".format(preview(data)))
                try:
                    self.transport.send(data)
                except BrowserConnectionClosed:
                    queue.remove(msg_id)
                    self.correlator.discard(msg_id)
                    raise
            except BrowserConnectionClosed as e:
                error = e
            else:
                error = None

        if error is not None:
            self.close(str(error))
            raise error
        return msg_id, future

    def request(self, actor: str, request_type: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send a request and return the reply packet.

        Raises:
            BrowserProtocolError: If the actor answered with an error; the
                client is closed first
        """
        msg_id, future = self.send(actor, request_type, params)
        try:
            reply = self.wait(future, "{} to {}".format(request_type, actor))
        except BrowserResponseNotReceived:
            self._forget_request(actor, msg_id)
            raise
        finally:
            self.correlator.discard(msg_id)

        if "error" in reply:
            self.fail(BrowserProtocolError(
                "{}: {}".format(reply["error"], reply.get("message", "")), error=reply, method=request_type))
        return reply

    def _forget_request(self, actor: str, msg_id: int):
        """
        Give up the actor queue slot of a request that was never answered, so
        the actor's next reply goes to the next request.

        A reply that does arrive after this is taken for the following
        request to the same actor.
        """
        with self._send_lock:
            queue = self._actor_queues.get(actor)
            if queue and msg_id in queue:
                queue.remove(msg_id)
                self.log.warning("Dropped unanswered request {} to {}".format(msg_id, actor))

    def _receive(self):
        framer = self.framer
        return framer.read_packet() if framer is not None else None

    def _dispatch(self, packet: Dict[str, Any]):
        self.log.debug("<- {}".format(preview(packet)))
        actor = packet.get("from")

        if "type" in packet:
            self.router.deliver(self.event_key(packet["type"], actor), packet)
            return

        with self._send_lock:
            queue = self._actor_queues.get(actor)
            msg_id = queue.popleft() if queue else None
        if msg_id is None:
            self.log.debug("Unsolicited packet from {}".format(actor))
            return
        self.correlator.resolve(msg_id, packet)

    def _on_filtered_packet(self, packet: Dict[str, Any]):
        # Page errors are dropped from the stream but still feed console capture
        self.router.deliver(self.event_key(packet.get("type"), packet.get("from")), packet)

    # Lifecycle

    def _cleanup_profile(self):
        profile_dir, self.profile_dir = self.profile_dir, None
        if profile_dir and os.path.exists(profile_dir):
            try:
                shutil.rmtree(profile_dir)
                self.log.debug("Cleaned up temporary profile: {}".format(profile_dir))
            except OSError as e:
                self.log.warning("Could not remove profile {}: {}".format(profile_dir, e))
