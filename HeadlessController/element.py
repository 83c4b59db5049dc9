#!/usr/bin/env python3

"""
Element interface.

An element is a handle on one DOM node, found through a selector. Once the
node leaves the document every call fails with StaleElementError.
"""

import os.path
from typing import Any, Dict, Optional

from .exceptions import (
    BrowserPreconditionError,
    ElementNotClickable,
    StaleElementError,
)
from .wire_types import validate_screenshot_options

WAIT_FOR_VALUES = (None, "navigation", "newPage")

_VALUE_GETTER = "function() { return this.value; }"
_VALUE_SETTER = """function(value) {
    this.value = value;
    this.dispatchEvent(new Event('input', {bubbles: true}));
    this.dispatchEvent(new Event('change', {bubbles: true}));
}"""
_ATTRIBUTE_GETTER = "function(name) { return this.getAttribute(name); }"
_ATTRIBUTE_SETTER = "function(name, value) { this.setAttribute(name, value); }"
_BOUNDING_BOX = """function() {
    const rect = this.getBoundingClientRect();
    return {x: rect.x, y: rect.y, width: rect.width, height: rect.height};
}"""
_FILE_INPUT_INFO = """function() {
    return {
        tag: this.tagName.toLowerCase(),
        type: (this.getAttribute('type') || '').toLowerCase(),
        multiple: this.hasAttribute('multiple')
    };
}"""


class ElementInterface:
    """
    Args:
        page: The page the node lives in
        selector: The selector the node was found with
    """

    def __init__(self, page, selector: str):
        self.page = page
        self.selector = selector

    @property
    def client(self):
        return self.page.client

    def _is_connected(self) -> bool:
        raise NotImplementedError

    def _call(self, declaration: str, *args) -> Any:
        """Call ``declaration`` with the node as ``this`` and return its value."""
        raise NotImplementedError

    def _ensure_attached(self):
        if not self._is_connected():
            raise StaleElementError('The element "{}" is no longer attached to the document'.format(self.selector))

    def _evaluate_on(self, declaration: str, *args) -> Any:
        self._ensure_attached()
        return self._call(declaration, *args)

    def _not_clickable(self):
        return ElementNotClickable(
            'Unable to click the element "{}". It could be that it is invalid HTML'.format(self.selector))

    @staticmethod
    def _validate_wait_for(wait_for: Optional[str]):
        if wait_for not in WAIT_FOR_VALUES:
            raise BrowserPreconditionError("Invalid wait_for '{}'. Valid values: {}".format(
                wait_for, list(WAIT_FOR_VALUES)))

    def click(self, wait_for: Optional[str] = None):
        """
        Click the centre of the element's first visible box.

        Args:
            wait_for: None, "navigation" to wait for the page to settle
                afterwards, or "newPage" when the click opens a new tab

        Raises:
            ElementNotClickable: If no part of the element is inside the viewport
        """
        raise NotImplementedError

    def value(self, new_value: Optional[str] = None) -> Optional[str]:
        """Get the element's value, or set it and fire input/change events."""
        if new_value is None:
            return self._evaluate_on(_VALUE_GETTER)
        self._evaluate_on(_VALUE_SETTER, new_value)
        return None

    def get_attribute(self, name: str) -> Optional[str]:
        return self._evaluate_on(_ATTRIBUTE_GETTER, name)

    def set_attribute(self, name: str, value: str):
        self._evaluate_on(_ATTRIBUTE_SETTER, name, value)

    def bounding_box(self) -> Dict[str, float]:
        return self._evaluate_on(_BOUNDING_BOX)

    def _check_file_input(self, paths):
        if not paths:
            raise BrowserPreconditionError("At least one file path is required")
        for path in paths:
            if not os.path.isfile(path):
                raise BrowserPreconditionError("The file {} does not exist".format(path))

        info = self._evaluate_on(_FILE_INPUT_INFO)
        if info["tag"] != "input" or info["type"] != "file":
            raise BrowserPreconditionError(
                'Trying to set a file on the element "{}", but it is not an input[type="file"]'.format(self.selector))
        if len(paths) > 1 and not info["multiple"]:
            raise BrowserPreconditionError(
                'Trying to set files on the element "{}", but it does not have the "multiple" attribute'.format(
                    self.selector))

    def files(self, *paths: str):
        """
        Set the files of an ``<input type="file">``.

        Raises:
            BrowserPreconditionError: If the element is not a file input, or
                several paths are given and it is not ``multiple``
        """
        raise NotImplementedError

    def file(self, path: str):
        self.files(path)

    def take_screenshot(self, format: Optional[str] = None, quality: Optional[int] = None) -> bytes:
        fmt, quality = validate_screenshot_options(format, quality)
        return self.page._capture_screenshot(fmt, quality, self.bounding_box())

    def __repr__(self):
        return "<{} selector={!r}>".format(type(self).__name__, self.selector)
