#!/usr/bin/env python3

"""
HeadlessController - Main package initialization

This package drives headless Chrome over the DevTools Protocol and headless
Firefox over its Remote Debugging Protocol.

    from HeadlessController import build_for

    client, page = build_for("chrome")
    with client:
        page.location("https://example.com")
        print(page.evaluate("document.title"))
"""

from .client import BrowserClient
from .chrome_client import ChromeClient
from .firefox_client import FirefoxClient
from .chrome_page import ChromePage
from .firefox_page import FirefoxPage
from .exceptions import (
    HeadlessControllerException,
    BrowserStartupException,
    BrowserConnectFailure,
    BrowserConnectionClosed,
    BrowserCommunicationsError,
    BrowserProtocolError,
    BrowserNavigationError,
    BrowserEvaluationError,
    BrowserScriptSyntaxError,
    BrowserPreconditionError,
    BrowserFeatureUnsupported,
    ElementNotFoundError,
    ElementNotClickable,
    StaleElementError,
    BrowserResponseNotReceived,
)
from .utils import setup_logging

BROWSERS = {
    "chrome": ChromeClient,
    "firefox": FirefoxClient,
}


def build_for(browser: str, **options):
    """
    Launch ``browser`` and connect to it.

    Args:
        browser: "chrome" or "firefox"
        options: Passed to the client, see BrowserClient

    Returns:
        Tuple of (client, initial page)
    """
    try:
        client_class = BROWSERS[browser.lower()]
    except KeyError:
        raise BrowserPreconditionError("Unsupported browser '{}'. Valid browsers: {}".format(
            browser, sorted(BROWSERS)))
    return client_class.build(**options)


# Main exports
__all__ = [
    'build_for',
    'BROWSERS',
    'BrowserClient',
    'ChromeClient',
    'FirefoxClient',
    'ChromePage',
    'FirefoxPage',
    'HeadlessControllerException',
    'BrowserStartupException',
    'BrowserConnectFailure',
    'BrowserConnectionClosed',
    'BrowserCommunicationsError',
    'BrowserProtocolError',
    'BrowserNavigationError',
    'BrowserEvaluationError',
    'BrowserScriptSyntaxError',
    'BrowserPreconditionError',
    'BrowserFeatureUnsupported',
    'ElementNotFoundError',
    'ElementNotClickable',
    'StaleElementError',
    'BrowserResponseNotReceived',
    'setup_logging',
]
