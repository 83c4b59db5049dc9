#!/usr/bin/env python3

"""
Request correlation and notification routing.

Both classes are shared between the reader thread, which resolves things as
messages arrive, and any number of caller threads, which register and then
block on the returned futures.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Tuple

from .exceptions import BrowserConnectionClosed, BrowserPreconditionError


def dictionaries_match(pattern: dict, data: dict) -> bool:
    """
    Check that every key of ``pattern`` is in ``data`` with an equal value.

    Nested dictionaries are matched the same way, so ``{"targetInfo": {"type": "page"}}``
    only looks at the nested ``type`` field.
    """
    if not isinstance(data, dict):
        return False
    for key in pattern:
        if key not in data:
            return False
        if isinstance(pattern[key], dict):
            if not dictionaries_match(pattern[key], data[key]):
                return False
        elif str(data[key]) != str(pattern[key]):
            return False
    return True


class MessageCorrelator:
    """
    Hands out request ids and parks one future per id until its reply arrives.

    Ids start at 1 and are never reused for the lifetime of the correlator.
    """

    def __init__(self):
        self.log = logging.getLogger("HeadlessController.Correlator")
        self._lock = threading.Lock()
        self._next_id = 1
        self._pending = {}  # id -> Future
        self._closed_reason = None

    def register(self) -> Tuple[int, Future]:
        """Allocate the next id and the future its reply resolves."""
        with self._lock:
            if self._closed_reason is not None:
                raise BrowserConnectionClosed(self._closed_reason)
            msg_id = self._next_id
            self._next_id += 1
            future = Future()
            self._pending[msg_id] = future
        return msg_id, future

    def resolve(self, msg_id: int, payload: Any) -> bool:
        """
        Resolve the request ``msg_id`` with the raw reply payload.

        Returns:
            False if no request with that id is pending
        """
        with self._lock:
            future = self._pending.pop(msg_id, None)
        if future is None:
            self.log.debug("Dropping reply for unknown id {}".format(msg_id))
            return False
        if not future.done():
            future.set_result(payload)
        return True

    def discard(self, msg_id: int):
        with self._lock:
            self._pending.pop(msg_id, None)

    def cancel_all(self, reason: str = "Connection closed"):
        """Fail every pending request; later registrations fail immediately."""
        with self._lock:
            self._closed_reason = reason
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(BrowserConnectionClosed(reason))
        if pending:
            self.log.debug("Cancelled {} pending request(s): {}".format(len(pending), reason))

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)


class Subscription:
    """A persistent listener for one notification key, owned by whoever subscribed."""

    def __init__(self, router: 'NotificationRouter', key: str, callback: Callable[[Dict[str, Any]], None]):
        self.router = router
        self.key = key
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.router._remove_subscription(self)
            self.active = False


class NotificationRouter:
    """
    Delivers out-of-band events to one-shot waiters and persistent subscriptions.

    Keys are free-form strings. Callers usually scope them, for example
    ``"Page.loadEventFired@<sessionId>"`` or ``"tabNavigated@<actor>"``.
    """

    def __init__(self):
        self.log = logging.getLogger("HeadlessController.Router")
        self._lock = threading.Lock()
        self._waiters = {}  # key -> (criteria, Future)
        self._subscriptions = {}  # key -> [Subscription]
        self._closed_reason = None

    def expect(self, key: str, criteria: Optional[Dict[str, Any]] = None) -> Future:
        """
        Register a one-shot wait for the next event on ``key`` matching ``criteria``.

        Raises:
            BrowserPreconditionError: If a waiter for ``key`` is already registered
            BrowserConnectionClosed: If the router has been shut down
        """
        with self._lock:
            if self._closed_reason is not None:
                raise BrowserConnectionClosed(self._closed_reason)
            if key in self._waiters:
                raise BrowserPreconditionError("A waiter for '{}' is already registered".format(key))
            future = Future()
            self._waiters[key] = (criteria or {}, future)
        return future

    def discard(self, key: str):
        with self._lock:
            self._waiters.pop(key, None)

    def is_waiting(self, key: str) -> bool:
        with self._lock:
            return key in self._waiters

    def subscribe(self, key: str, callback: Callable[[Dict[str, Any]], None]) -> Subscription:
        subscription = Subscription(self, key, callback)
        with self._lock:
            self._subscriptions.setdefault(key, []).append(subscription)
        return subscription

    def _remove_subscription(self, subscription: Subscription):
        with self._lock:
            subs = self._subscriptions.get(subscription.key, [])
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._subscriptions.pop(subscription.key, None)

    def deliver(self, key: str, event: Dict[str, Any]) -> bool:
        """
        Offer an event to the waiter and subscriptions registered for ``key``.

        Returns:
            True if anything consumed the event
        """
        future = None
        with self._lock:
            subs = list(self._subscriptions.get(key, ()))
            waiter = self._waiters.get(key)
            if waiter is not None and dictionaries_match(waiter[0], event):
                del self._waiters[key]
                future = waiter[1]

        for sub in subs:
            try:
                sub.callback(event)
            except Exception:
                self.log.exception("Subscriber for '{}' raised".format(key))

        if future is not None and not future.done():
            future.set_result(event)

        if future is None and not subs:
            self.log.debug("No waiter for event '{}'".format(key))
        return future is not None or bool(subs)

    def cancel_all(self, reason: str = "Connection closed"):
        """Fail every waiter and drop every subscription."""
        with self._lock:
            self._closed_reason = reason
            waiters = list(self._waiters.values())
            self._waiters.clear()
            subs = [sub for group in self._subscriptions.values() for sub in group]
            self._subscriptions.clear()
        for sub in subs:
            sub.active = False
        for _criteria, future in waiters:
            if not future.done():
                future.set_exception(BrowserConnectionClosed(reason))
