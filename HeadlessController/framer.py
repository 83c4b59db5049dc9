#!/usr/bin/env python3

"""
Firefox Packet Framer

The Firefox remote debugging server writes packets as ``<byteLength>:<json>``
back to back on a plain TCP stream. A single ``recv()`` may hold several
packets, or only part of one. This module turns the byte stream back into
one JSON packet at a time, in arrival order, and drops the chatter that
nobody is waiting for.
"""

import collections
import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .exceptions import BrowserCommunicationsError


# Event packets the server pushes on its own and that no request waits for.
# tabNavigated is handled separately, only its "start" half is noise.
UNSOLICITED_EVENTS = frozenset([
    'styleApplied',
    'propertyChange',
    'networkEventUpdate',
    'networkEvent',
    'newMutations',
    'appOpen',
    'appClose',
    'appInstall',
    'appUninstall',
    'frameUpdate',
    'tabListChanged',
    'consoleAPICall',
])

# Longest length prefix we accept before giving up on the stream
MAX_PREFIX_DIGITS = 12


class PacketFramer:
    """
    Reassembles length-prefixed packets from a byte stream.

    Args:
        read: Callable returning the next chunk of bytes, or b"" at end of stream
        on_filtered: Optional callable handed page error packets that were
            filtered out of the stream
    """

    def __init__(self, read: Callable[[], bytes], on_filtered: Optional[Callable[[Dict[str, Any]], None]] = None):
        self.read = read
        self.on_filtered = on_filtered
        self.log = logging.getLogger("HeadlessController.Framer")

        self._lock = threading.Lock()
        self._partial = b""
        self._queue = collections.deque()

    @staticmethod
    def encode(packet: Dict[str, Any]) -> bytes:
        """Frame a packet as ``<utf-8 byte length>:<json>``."""
        body = json.dumps(packet).encode("utf-8")
        return str(len(body)).encode("ascii") + b":" + body

    @property
    def queued(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def partial(self) -> bytes:
        with self._lock:
            return self._partial

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        """
        Add raw bytes to the stream and decode every packet they complete.

        Returns:
            The complete packets, in order, with noise events removed. Any
            trailing incomplete packet is held until more bytes arrive.

        Raises:
            BrowserCommunicationsError: If the stream is not validly framed
        """
        with self._lock:
            buf = self._partial + data
            packets, consumed = self._split(buf)
            self._partial = buf[consumed:]

        return [packet for packet in packets if self._keep(packet)]

    def _split(self, buf: bytes):
        packets = []
        pos = 0
        while pos < len(buf):
            colon = buf.find(b":", pos, pos + MAX_PREFIX_DIGITS + 1)
            if colon == -1:
                tail = buf[pos:]
                if not tail.isdigit() or len(tail) > MAX_PREFIX_DIGITS:
                    raise BrowserCommunicationsError(
                        "Malformed packet length prefix: {!r}".format(tail[:40]))
                break

            prefix = buf[pos:colon]
            if not prefix.isdigit():
                raise BrowserCommunicationsError(
                    "Malformed packet length prefix: {!r}".format(buf[pos:pos + 40]))

            end = colon + 1 + int(prefix)
            if end > len(buf):
                break

            body = buf[colon + 1:end]
            try:
                packets.append(json.loads(body.decode("utf-8")))
            except (ValueError, UnicodeDecodeError) as e:
                raise BrowserCommunicationsError(
                    "Undecodable packet body ({}): {!r}".format(e, body[:80]))
            pos = end
        return packets, pos

    def _keep(self, packet: Dict[str, Any]) -> bool:
        ptype = packet.get("type")

        if ptype in UNSOLICITED_EVENTS:
            return False

        if ptype == "tabNavigated" and packet.get("state") == "start":
            return False

        if ptype == "pageError":
            details = packet.get("pageError") or {}
            if details.get("warning") or details.get("error") or packet.get("warning") or packet.get("error"):
                if self.on_filtered is not None:
                    try:
                        self.on_filtered(packet)
                    except Exception:
                        self.log.exception("Page error observer raised")
                return False

        return True

    def read_packet(self) -> Optional[Dict[str, Any]]:
        """
        Return the next packet, reading from the stream only when nothing is queued.

        Extra packets that arrive in the same read are queued and handed out
        by later calls before the stream is touched again. Reads that only
        contain noise or part of a packet are followed by more reads.

        Returns:
            The packet, or None once the stream has ended
        """
        while True:
            with self._lock:
                if self._queue:
                    return self._queue.popleft()

            data = self.read()
            if not data:
                if self.partial:
                    self.log.warning("Stream ended inside a packet ({} bytes discarded)".format(len(self.partial)))
                return None

            packets = self.feed(data)
            if packets:
                with self._lock:
                    self._queue.extend(packets[1:])
                return packets[0]
