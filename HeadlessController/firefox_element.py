#!/usr/bin/env python3

"""
Firefox element backend.

The console actor has no remote object handles, so query_selector() parks
the node in a page global registry and the element refers to it by id. A
navigation wipes the registry along with the old document.
"""

from typing import Any, Optional

from .element import ElementInterface
from .exceptions import BrowserFeatureUnsupported
from .geometry import compute_click_point, rect_to_quad

ELEMENT_REGISTRY = "__headlessControllerElements"

_IS_CONNECTED = """function(id) {
    const registry = window.%(registry)s;
    const node = registry && registry.nodes.get(id);
    return !!node && node.isConnected;
}""" % {"registry": ELEMENT_REGISTRY}

_CALL_ON_NODE = """function(id, args) {
    return (%(declaration)s).apply(window.%(registry)s.nodes.get(id), args);
}"""

_CLIENT_RECTS = """function() {
    this.scrollIntoView({block: 'center', inline: 'center'});
    return Array.from(this.getClientRects()).map(r => [r.left, r.top, r.width, r.height]);
}"""

_VIEWPORT = "function() { return [document.documentElement.clientWidth, document.documentElement.clientHeight]; }"

_DISPATCH_CLICK = """function(x, y) {
    const target = document.elementFromPoint(x, y) || this;
    const init = {bubbles: true, cancelable: true, view: window, clientX: x, clientY: y, button: 0};
    for (const type of ['mousemove', 'mousedown', 'mouseup', 'click']) {
        target.dispatchEvent(new MouseEvent(type, init));
    }
}"""


class FirefoxElement(ElementInterface):
    """
    Args:
        page: The owning FirefoxPage
        selector: The selector the node was found with
        element_id: Key of the node in the page's element registry
    """

    def __init__(self, page, selector: str, element_id: str):
        super().__init__(page, selector)
        self.element_id = element_id

    def _is_connected(self) -> bool:
        return bool(self.page.evaluate_function(_IS_CONNECTED, self.element_id))

    def _call(self, declaration: str, *args) -> Any:
        wrapper = _CALL_ON_NODE % {"declaration": declaration, "registry": ELEMENT_REGISTRY}
        return self.page.evaluate_function(wrapper, self.element_id, list(args))

    def click(self, wait_for: Optional[str] = None):
        self._validate_wait_for(wait_for)
        if wait_for == "newPage":
            raise BrowserFeatureUnsupported("Opening new pages is not supported by the Firefox client")

        rects = self._evaluate_on(_CLIENT_RECTS) or []
        width, height = self.page.evaluate_function(_VIEWPORT)
        point = compute_click_point([rect_to_quad(*rect) for rect in rects], width, height)
        if point is None:
            raise self._not_clickable()
        x, y = point

        key = navigated = None
        if wait_for == "navigation":
            key, navigated = self.page.expect_navigation()
        try:
            self._call(_DISPATCH_CLICK, x, y)
        except Exception:
            if key:
                self.client.router.discard(key)
            raise

        if navigated is None:
            return None
        return self.client.wait(navigated, key)

    def files(self, *paths: str):
        self._check_file_input(paths)
        raise BrowserFeatureUnsupported("Setting file inputs is not supported by the Firefox client")
