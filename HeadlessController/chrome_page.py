#!/usr/bin/env python3

"""
Chrome page backend, driven over a flattened CDP session.
"""

import base64
import concurrent.futures
import json
from typing import Any, Callable, Dict, List, Optional

from .chrome_element import ChromeElement
from .exceptions import (
    BrowserNavigationError,
    BrowserPreconditionError,
    ElementNotFoundError,
    HeadlessControllerException,
)
from .page import PageInterface
from .wire_types import (
    TargetContext,
    serialize_call_argument,
    unwrap_remote_object,
    validate_cookie,
)


class ChromePage(PageInterface):

    def __init__(self, client, context: TargetContext):
        super().__init__(client, context)
        self._dialog_opened = None

        sid = context.session_id
        self._subscriptions = [
            client.router.subscribe(client.event_key("Runtime.exceptionThrown", sid), self._on_exception_thrown),
            client.router.subscribe(client.event_key("Log.entryAdded", sid), self._on_log_entry),
        ]

    @property
    def session_id(self) -> str:
        return self.context.session_id

    def _key(self, method: str) -> str:
        return self.client.event_key(method, self.session_id)

    def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a CDP command scoped to this page's session."""
        return self.client.call(method, params, self.session_id)

    # Console capture

    def _on_exception_thrown(self, params):
        details = params.get("exceptionDetails", {})
        text = (details.get("exception") or {}).get("description") or details.get("text", "")
        self._record_console_error(text)

    def _on_log_entry(self, params):
        entry = params.get("entry", {})
        if entry.get("level") != "error":
            return
        text = entry.get("text", "")
        if entry.get("url"):
            text = "{} ({})".format(text, entry["url"])
        self._record_console_error(text)

    # Navigation

    def location(self, url: Optional[str] = None) -> str:
        if url is None:
            targets = self.client.call("Target.getTargets")["targetInfos"]
            for target in targets:
                if target["targetId"] == self.target_id:
                    return target["url"]
            return ""

        router = self.client.router
        idle_key = self._key("Page.lifecycleEvent")
        load_key = self._key("Page.loadEventFired")
        idle = router.expect(idle_key, {"name": "networkIdle", "frameId": self.context.frame_id})
        loaded = router.expect(load_key)

        try:
            result = self.call("Page.navigate", {"url": url})
        except Exception:
            router.discard(idle_key)
            router.discard(load_key)
            raise

        if result.get("errorText"):
            router.discard(idle_key)
            router.discard(load_key)
            self.client.fail(BrowserNavigationError(
                '{}: Error for navigating to page "{}"'.format(result["errorText"], url)))

        self.client.wait(loaded, load_key)
        self.client.wait(idle, idle_key)
        return self.location()

    # Evaluation

    def evaluate(self, expression: str) -> Any:
        result = self.call("Runtime.evaluate", {
            "expression": expression,
            "includeCommandLineAPI": True,
            "returnByValue": True,
            "awaitPromise": True,
        })
        self._check_for_error_result(result.get("exceptionDetails"), expression)
        return unwrap_remote_object(result.get("result"))

    def evaluate_function(self, declaration: str, *args) -> Any:
        world = self.call("Page.createIsolatedWorld", {"frameId": self.context.frame_id})
        result = self.call("Runtime.callFunctionOn", {
            "functionDeclaration": declaration,
            "executionContextId": world["executionContextId"],
            "arguments": [serialize_call_argument(arg) for arg in args],
            "returnByValue": True,
            "awaitPromise": True,
            "userGesture": True,
        })
        self._check_for_error_result(result.get("exceptionDetails"), declaration)
        return unwrap_remote_object(result.get("result"))

    def query_selector(self, selector: str) -> ChromeElement:
        command = "document.querySelector({})".format(json.dumps(selector))
        result = self.call("Runtime.evaluate", {
            "expression": command,
            "includeCommandLineAPI": True,
        })
        self._check_for_error_result(result.get("exceptionDetails"), command)

        remote = result.get("result") or {}
        if "objectId" not in remote:
            raise ElementNotFoundError('The selector "{}" does not exist inside the DOM'.format(selector))
        return ChromeElement(self, selector, remote["objectId"])

    def new_page_click(self, selector: str) -> 'ChromePage':
        router = self.client.router
        created_key = self.client.event_key("Target.targetCreated")
        created = router.expect(created_key, {"targetInfo": {"type": "page"}})
        try:
            requested = self.query_selector(selector).click(wait_for="newPage")
        except Exception:
            router.discard(created_key)
            raise

        info = self.client.wait(created, created_key)["targetInfo"]
        target_id = self.client.find_target_id(requested.get("url"), fallback=info["targetId"])
        return self.client.attach_page(target_id)

    # Cookies

    def cookie(self, new_cookie: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        if new_cookie is None:
            return self.call("Network.getCookies").get("cookies", [])
        self.call("Network.setCookie", validate_cookie(new_cookie))
        return []

    # Screenshots

    def _capture_screenshot(self, fmt: str, quality: Optional[int], clip: Optional[Dict[str, float]]) -> bytes:
        params = {"format": fmt}
        if quality is not None:
            params["quality"] = quality
        if clip is not None:
            params["clip"] = {
                "x": clip["x"],
                "y": clip["y"],
                "width": clip["width"],
                "height": clip["height"],
                "scale": 2,
            }
        result = self.call("Page.captureScreenshot", params)
        return base64.b64decode(result["data"])

    # Dialogs

    def expect_dialog(self):
        self._dialog_opened = self.client.router.expect(self._key("Page.javascriptDialogOpening"))

    def dialog(self, accept: bool, prompt_text: Optional[str] = None,
               trigger: Optional[Callable[[], Any]] = None) -> Dict[str, Any]:
        """
        Returns:
            The Page.javascriptDialogOpening event, which carries the dialog message
        """
        if self._dialog_opened is None:
            raise BrowserPreconditionError("dialog() requires a prior expect_dialog() call")

        opened_key = self._key("Page.javascriptDialogOpening")
        opened, self._dialog_opened = self._dialog_opened, None
        triggered = self._start_trigger(trigger) if trigger is not None else None

        if triggered is not None:
            concurrent.futures.wait([opened, triggered], timeout=self.client.wait_timeout,
                                    return_when=concurrent.futures.FIRST_COMPLETED)
            if not opened.done() and triggered.done() and triggered.exception() is not None:
                # The trigger failed before any dialog showed up
                self.client.router.discard(opened_key)
                raise triggered.exception()
        try:
            event = self.client.wait(opened, opened_key)
        except HeadlessControllerException:
            self.client.router.discard(opened_key)
            # Report why the trigger failed rather than the teardown it caused
            if triggered is not None and triggered.done() and triggered.exception() is not None:
                raise triggered.exception()
            raise

        closed_key = self._key("Page.javascriptDialogClosed")
        closed = self.client.router.expect(closed_key)
        params = {"accept": accept}
        if prompt_text is not None:
            params["promptText"] = prompt_text
        try:
            self.call("Page.handleJavaScriptDialog", params)
        except Exception:
            self.client.router.discard(closed_key)
            raise

        self.client.wait(closed, closed_key)
        if triggered is not None:
            self.client.wait(triggered, "dialog trigger")
        return event

    # Lifecycle

    def _abandon(self, reason: str):
        super()._abandon(reason)
        self._dialog_opened = None

    def close(self):
        """Close the tab. The client stays open."""
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

        if self._dialog_opened is not None:
            self.client.router.discard(self._key("Page.javascriptDialogOpening"))
            self._dialog_opened = None

        if not self.client.closed:
            self.client.call("Target.closeTarget", {"targetId": self.target_id})
        if self in self.client.pages:
            self.client.pages.remove(self)
