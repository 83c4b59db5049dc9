#!/usr/bin/env python3

"""
Firefox page backend.

Everything goes through the tab's console actor: scripts are evaluated with
``evaluateJSAsync`` and their results arrive later as ``evaluationResult``
events tagged with the ``resultID`` from the reply.
"""

import collections
import json
import threading
from concurrent.futures import Future
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from .exceptions import (
    BrowserConnectionClosed,
    BrowserFeatureUnsupported,
    BrowserNavigationError,
    ElementNotFoundError,
)
from .firefox_element import FirefoxElement, ELEMENT_REGISTRY
from .page import PageInterface
from .wire_types import (
    TargetContext,
    decode_grip,
    parse_cookie_string,
    to_js_literal,
    validate_cookie,
    validate_screenshot_options,
)

_REGISTER_ELEMENT = """function(selector) {
    const element = document.querySelector(selector);
    if (!element) {
        return null;
    }
    const registry = window.%(registry)s = window.%(registry)s || {nextId: 1, nodes: new Map()};
    const id = String(registry.nextId++);
    registry.nodes.set(id, element);
    return id;
}""" % {"registry": ELEMENT_REGISTRY}

# Results kept for evaluateJSAsync replies that have not been read yet
MAX_EARLY_RESULTS = 32


class FirefoxPage(PageInterface):
    """
    Args:
        client: The owning FirefoxClient
        context: target_id is the frame target actor, console_actor its console
        tab_actor: The tab descriptor actor
    """

    def __init__(self, client, context: TargetContext, tab_actor: Optional[str] = None):
        super().__init__(client, context)
        self.tab_actor = tab_actor

        self._results = {}  # resultID -> Future of a caller still waiting
        self._early = collections.OrderedDict()  # resultID -> packet nobody waits for yet
        self._expired = set()  # resultIDs whose caller timed out
        self._results_lock = threading.Lock()
        self._abandoned = None

        self._subscriptions = [
            client.router.subscribe(client.event_key("evaluationResult", context.console_actor), self._on_evaluation_result),
            client.router.subscribe(client.event_key("pageError", context.console_actor), self._on_page_error),
        ]

    @property
    def console_actor(self) -> str:
        return self.context.console_actor

    # Event handlers, called on the reader thread

    def _on_evaluation_result(self, packet):
        result_id = packet.get("resultID")
        with self._results_lock:
            if self._abandoned is not None:
                return
            future = self._results.get(result_id)
            if future is None:
                if result_id in self._expired:
                    self._expired.discard(result_id)
                    self.log.debug("Dropped late evaluationResult {}".format(result_id))
                    return
                # The result can beat the evaluateJSAsync reply that names it
                self._early[result_id] = packet
                while len(self._early) > MAX_EARLY_RESULTS:
                    self._early.popitem(last=False)
                return
        if not future.done():
            future.set_result(packet)

    def _on_page_error(self, packet):
        details = packet.get("pageError") or {}
        if details.get("warning") and not details.get("error"):
            return
        text = details.get("errorMessage", "")
        if details.get("sourceName"):
            text = "{} ({})".format(text, details["sourceName"])
        self._record_console_error(text)

    # Evaluation

    def _evaluate_js(self, text: str, command: str):
        reply = self.client.request(self.console_actor, "evaluateJSAsync", {"text": text})
        result_id = reply.get("resultID")
        with self._results_lock:
            if self._abandoned is not None:
                raise BrowserConnectionClosed(self._abandoned)
            future = Future()
            if result_id in self._early:
                future.set_result(self._early.pop(result_id))
            else:
                self._results[result_id] = future
        try:
            packet = self.client.wait(future, "evaluationResult {}".format(result_id))
        finally:
            with self._results_lock:
                self._results.pop(result_id, None)
                if not future.done():
                    self._expired.add(result_id)

        if packet.get("hasException") or packet.get("exceptionMessage"):
            message = packet.get("exceptionMessage") or "Uncaught exception"
            self._check_for_error_result({"text": message, "exception": {"description": message}}, command)
        return decode_grip(packet.get("result"))

    def evaluate(self, expression: str) -> Any:
        return self._evaluate_js(expression, expression)

    def evaluate_function(self, declaration: str, *args) -> Any:
        # Grips only preview objects, JSON carries the whole value
        text = "JSON.stringify(({})({}))".format(declaration, ", ".join(to_js_literal(arg) for arg in args))
        value = self._evaluate_js(text, declaration)
        if isinstance(value, str):
            return json.loads(value)
        return None

    def query_selector(self, selector: str) -> FirefoxElement:
        element_id = self.evaluate_function(_REGISTER_ELEMENT, selector)
        if element_id is None:
            raise ElementNotFoundError('The selector "{}" does not exist inside the DOM'.format(selector))
        return FirefoxElement(self, selector, element_id)

    # Navigation

    def _navigation_error(self) -> Optional[str]:
        document_uri = self.evaluate("document.documentURI")
        if isinstance(document_uri, str) and document_uri.startswith("about:neterror"):
            return parse_qs(urlparse(document_uri).query).get("e", ["netError"])[0]
        return None

    def expect_navigation(self):
        """Arm a wait for the tab's next completed navigation."""
        key = self.client.event_key("tabNavigated", self.target_id)
        return key, self.client.router.expect(key, {"state": "stop"})

    def location(self, url: Optional[str] = None) -> str:
        if url is None:
            return self.evaluate("window.location.href")

        key, navigated = self.expect_navigation()
        try:
            self.client.request(self.target_id, "navigateTo", {"url": url})
        except Exception:
            self.client.router.discard(key)
            raise
        event = self.client.wait(navigated, key)

        reason = self._navigation_error()
        if reason is not None:
            self.client.fail(BrowserNavigationError('{}: Error for navigating to page "{}"'.format(reason, url)))
        return event.get("url") or url

    # Cookies

    def cookie(self, new_cookie: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        if new_cookie is None:
            return parse_cookie_string(self.evaluate("document.cookie") or "", self.evaluate("window.location.href"))
        cookie = validate_cookie(new_cookie)
        self.evaluate("document.cookie = {}".format(json.dumps("{}={}".format(cookie["name"], cookie["value"]))))
        return []

    # Unsupported over this protocol

    def take_screenshot(self, format: Optional[str] = None, quality: Optional[int] = None,
                        selector: Optional[str] = None) -> bytes:
        validate_screenshot_options(format, quality)
        raise BrowserFeatureUnsupported("Screenshots are not supported by the Firefox client")

    def _capture_screenshot(self, fmt, quality, clip) -> bytes:
        raise BrowserFeatureUnsupported("Screenshots are not supported by the Firefox client")

    def expect_dialog(self):
        raise BrowserFeatureUnsupported("Dialogs are not supported by the Firefox client")

    def dialog(self, accept: bool, prompt_text: Optional[str] = None, trigger=None):
        raise BrowserFeatureUnsupported("Dialogs are not supported by the Firefox client")

    def new_page_click(self, selector: str):
        raise BrowserFeatureUnsupported("Opening new pages is not supported by the Firefox client")

    # Lifecycle

    def _abandon(self, reason: str):
        super()._abandon(reason)
        with self._results_lock:
            self._abandoned = reason
            pending = list(self._results.values())
            self._results.clear()
            self._early.clear()
            self._expired.clear()
        for future in pending:
            if not future.done():
                future.set_exception(BrowserConnectionClosed(reason))

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._abandon("Page closed")
        if self in self.client.pages:
            self.client.pages.remove(self)
