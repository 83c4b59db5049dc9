#!/usr/bin/env python3

"""
Chrome element backend, driven through a Runtime remote object id.
"""

import os.path
from typing import Any, Optional

from .element import ElementInterface
from .exceptions import BrowserProtocolError, StaleElementError
from .geometry import compute_click_point
from .wire_types import Error, error_text, serialize_call_argument, unwrap_remote_object

# Errors meaning the object id died with its execution context
STALE_OBJECT_ERRORS = (
    "Could not find object with given id",
    "Cannot find context with specified id",
)


class ChromeElement(ElementInterface):
    """
    Args:
        page: The owning ChromePage
        selector: The selector the node was found with
        object_id: Runtime remote object id of the node
    """

    def __init__(self, page, selector: str, object_id: str):
        super().__init__(page, selector)
        self.object_id = object_id

    @property
    def session_id(self):
        return self.page.context.session_id

    def _call_function_on(self, declaration: str, *args):
        reply = self.client.call_raw("Runtime.callFunctionOn", {
            "functionDeclaration": declaration,
            "objectId": self.object_id,
            "arguments": [serialize_call_argument(arg) for arg in args],
            "returnByValue": True,
            "awaitPromise": True,
        }, self.session_id)
        if isinstance(reply, Error):
            message = error_text(reply.error)
            if any(text in message for text in STALE_OBJECT_ERRORS):
                raise StaleElementError('The element "{}" is no longer attached to the document'.format(self.selector))
            self.client.fail(BrowserProtocolError(
                "Runtime.callFunctionOn: {}".format(message), error=reply.error, method="Runtime.callFunctionOn"))
        self.page._check_for_error_result(reply.result.get("exceptionDetails"), declaration)
        return unwrap_remote_object(reply.result.get("result"))

    def _is_connected(self) -> bool:
        return bool(self._call_function_on("function() { return this.isConnected; }"))

    def _call(self, declaration: str, *args) -> Any:
        return self._call_function_on(declaration, *args)

    def _dispatch_mouse(self, event_type: str, x: float, y: float):
        params = {"type": event_type, "x": x, "y": y}
        if event_type != "mouseMoved":
            params.update({"button": "left", "clickCount": 1})
        self.client.call("Input.dispatchMouseEvent", params, self.session_id)

    def click(self, wait_for: Optional[str] = None):
        """
        Click the element.

        Returns:
            For wait_for="newPage", the Page.frameRequestedNavigation event;
            for wait_for="navigation", the network idle lifecycle event
        """
        self._validate_wait_for(wait_for)
        self._ensure_attached()

        sid = self.session_id
        self.client.call("DOM.scrollIntoViewIfNeeded", {"objectId": self.object_id}, sid)
        quads = self.client.call("DOM.getContentQuads", {"objectId": self.object_id}, sid).get("quads", [])
        metrics = self.client.call("Page.getLayoutMetrics", session_id=sid)
        viewport = metrics.get("cssLayoutViewport") or metrics["layoutViewport"]

        point = compute_click_point(quads, viewport["clientWidth"], viewport["clientHeight"])
        if point is None:
            raise self._not_clickable()
        x, y = point

        key = None
        criteria = None
        if wait_for == "newPage":
            key = self.client.event_key("Page.frameRequestedNavigation", sid)
        elif wait_for == "navigation":
            key = self.client.event_key("Page.lifecycleEvent", sid)
            criteria = {"name": "networkIdle", "frameId": self.page.context.frame_id}

        # Must be armed before the press
        future = self.client.router.expect(key, criteria) if key else None
        try:
            self._dispatch_mouse("mouseMoved", x, y)
            self._dispatch_mouse("mousePressed", x, y)
            self._dispatch_mouse("mouseReleased", x, y)
        except Exception:
            if key:
                self.client.router.discard(key)
            raise

        if future is None:
            return None
        return self.client.wait(future, key)

    def files(self, *paths: str):
        self._check_file_input(paths)
        node = self.client.call("DOM.describeNode", {"objectId": self.object_id}, self.session_id)["node"]
        self.client.call("DOM.setFileInputFiles", {
            "files": [os.path.abspath(path) for path in paths],
            "backendNodeId": node["backendNodeId"],
        }, self.session_id)
