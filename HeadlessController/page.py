#!/usr/bin/env python3

"""
Page interface.

A page is one open tab. The backends translate these calls into their wire
protocol; validation, error translation and the bits that only need other
page calls live here.
"""

import datetime
import logging
import os
import os.path
import re
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional

from .exceptions import (
    BrowserEvaluationError,
    BrowserPreconditionError,
    BrowserScriptSyntaxError,
)
from .wire_types import TargetContext, validate_screenshot_options

# Seconds without new console errors before console_errors() returns
CONSOLE_SETTLE_DELAY = 1.0


class PageInterface:
    """
    Operations available on every page, whatever the browser.

    Args:
        client: The owning BrowserClient
        context: Identity of the tab inside the browser
    """

    def __init__(self, client, context: TargetContext):
        self.client = client
        self.context = context
        self.log = logging.getLogger("HeadlessController.{}".format(type(self).__name__))

        self._console_errors = []
        self._console_lock = threading.Lock()
        self._subscriptions = []
        self._closed = False

    @property
    def target_id(self) -> str:
        return self.context.target_id

    @property
    def closed(self) -> bool:
        return self._closed or self.client.closed

    # Navigation and evaluation

    def location(self, url: Optional[str] = None) -> str:
        """
        Get the current URL, or navigate to ``url`` and wait for it to load.

        Raises:
            BrowserNavigationError: If the browser could not load ``url``
        """
        raise NotImplementedError

    def evaluate(self, expression: str) -> Any:
        """
        Evaluate a JavaScript expression in the page and return its value.

        Raises:
            BrowserEvaluationError: If the script throws
            BrowserScriptSyntaxError: If the script does not parse
        """
        raise NotImplementedError

    def evaluate_function(self, declaration: str, *args) -> Any:
        """
        Call a JavaScript function declaration with ``args`` and return its value.

        Example:
            page.evaluate_function("(a, b) => a + b", 1, 10)
        """
        raise NotImplementedError

    def query_selector(self, selector: str):
        """
        Raises:
            ElementNotFoundError: If nothing matches ``selector``
        """
        raise NotImplementedError

    def new_page_click(self, selector: str) -> 'PageInterface':
        """Click an element that opens a new tab and return a page for that tab."""
        raise NotImplementedError

    def cookie(self, new_cookie: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """
        Read all cookies, or set one.

        Args:
            new_cookie: {"name": .., "value": .., "url": ..} to set

        Returns:
            Every cookie for the page, or an empty list after setting one
        """
        raise NotImplementedError

    # Screenshots

    def take_screenshot(self, format: Optional[str] = None, quality: Optional[int] = None,
                        selector: Optional[str] = None) -> bytes:
        """
        Capture the page, or only the element matching ``selector``.

        Args:
            format: "jpeg" (default) or "png"
            quality: jpeg quality 0-100, default 80

        Returns:
            The encoded image
        """
        fmt, quality = validate_screenshot_options(format, quality)
        clip = None
        if selector is not None:
            clip = self.query_selector(selector).bounding_box()
        return self._capture_screenshot(fmt, quality, clip)

    def _capture_screenshot(self, fmt: str, quality: Optional[int], clip: Optional[Dict[str, float]]) -> bytes:
        raise NotImplementedError

    def save_screenshot(self, directory: str, file_name: Optional[str] = None, **options) -> str:
        """
        Take a screenshot and write it into ``directory``.

        Args:
            directory: Existing folder to write into
            file_name: Name without extension; defaults to a timestamp
            options: Passed on to take_screenshot()

        Returns:
            Path of the written file
        """
        if not os.path.isdir(directory):
            raise BrowserPreconditionError("The provided folder path - {} doesn't exist".format(directory))

        fmt, _ = validate_screenshot_options(options.get("format"), options.get("quality"))
        if file_name:
            base = re.sub(r"\.(jpeg|jpg|png)$", "", file_name)
        else:
            base = datetime.datetime.now().strftime("%Y_%m_%d_%H_%M_%S")

        image = self.take_screenshot(**options)
        path = os.path.join(directory, "{}.{}".format(base, fmt))
        with open(path, "wb") as f:
            f.write(image)
        return path

    # Dialogs

    def expect_dialog(self):
        """Arm a wait for the next JavaScript dialog. Must precede the action that opens it."""
        raise NotImplementedError

    def dialog(self, accept: bool, prompt_text: Optional[str] = None, trigger: Optional[Callable[[], Any]] = None):
        """
        Accept or dismiss the dialog announced to expect_dialog().

        The action that opens a dialog does not return until the dialog is
        closed, so pass it as ``trigger``: it runs on a worker thread while
        this call waits for the dialog, answers it, then waits for the
        trigger to finish.

        Example:
            page.expect_dialog()
            page.dialog(True, "Ed", trigger=page.query_selector("#ask").click)

        Raises:
            BrowserPreconditionError: If expect_dialog() was not called first
        """
        raise NotImplementedError

    @staticmethod
    def _start_trigger(trigger: Callable[[], Any]) -> Future:
        """Run ``trigger`` on a daemon thread; the future carries its result or exception."""
        future = Future()

        def run():
            try:
                future.set_result(trigger())
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=run, name="dialog-trigger", daemon=True).start()
        return future

    # Console errors

    def _record_console_error(self, text: str):
        with self._console_lock:
            self._console_errors.append(text)
        self.log.debug("Console error: {}".format(text))

    def console_errors(self, settle_delay: Optional[float] = None, exceptions: Optional[List[str]] = None) -> List[str]:
        """
        Errors reported by the page so far, oldest first.

        Waits until no new error has arrived for ``settle_delay`` seconds, so
        errors caused by the action just performed are included.

        Args:
            settle_delay: Quiet period to wait for, default CONSOLE_SETTLE_DELAY
            exceptions: Substrings; errors containing any of them are left out
        """
        delay = CONSOLE_SETTLE_DELAY if settle_delay is None else settle_delay

        seen = 0
        while True:
            time.sleep(delay)
            with self._console_lock:
                count = len(self._console_errors)
            if count > seen:
                seen = count
                continue
            break

        with self._console_lock:
            errors = list(self._console_errors)

        if exceptions:
            errors = [error for error in errors if not any(exception in error for exception in exceptions)]
        return errors

    # Errors

    def _check_for_error_result(self, details: Optional[Dict[str, Any]], command: str):
        """
        Translate exception details from an evaluation into an exception.

        Any exception closes the client before it is raised.
        """
        if not details:
            return

        exception = details.get("exception")
        if details.get("text") and not exception:
            text = details["text"]
            self.client.fail(BrowserEvaluationError(text, description=text, command=command))

        description = (exception or {}).get("description") or details.get("text") or "Unknown error"
        if "SyntaxError" in description:
            message = description.replace("SyntaxError: ", "")
            self.client.fail(BrowserScriptSyntaxError(
                "{}: `{}`".format(message, command), description=description, command=command))

        self.client.fail(BrowserEvaluationError(
            '{}: "{}"'.format(description, command), description=description, command=command))

    # Lifecycle

    def _abandon(self, reason: str):
        """Called when the connection is lost."""
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    def close(self):
        raise NotImplementedError

    def __repr__(self):
        return "<{} target={}>".format(type(self).__name__, self.target_id)
