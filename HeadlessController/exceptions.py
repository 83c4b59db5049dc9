#!/usr/bin/env python3

"""
HeadlessController Exceptions

This module contains all custom exceptions for HeadlessController.
"""


class HeadlessControllerException(Exception):
    """Base exception for HeadlessController errors"""
    pass


class BrowserStartupException(HeadlessControllerException):
    """Exception raised when the browser fails to start"""
    pass


class BrowserConnectFailure(HeadlessControllerException):
    """Exception raised when the debug endpoint never became reachable"""
    pass


class BrowserConnectionClosed(HeadlessControllerException):
    """Exception raised for calls outstanding when the connection goes away"""
    pass


class BrowserCommunicationsError(HeadlessControllerException):
    """Exception raised when the wire stream cannot be decoded"""
    pass


class BrowserProtocolError(HeadlessControllerException):
    """Exception raised when the browser answers a request with an error payload"""

    def __init__(self, message, error=None, method=None):
        super().__init__(message)
        self.error = error
        self.method = method


class BrowserNavigationError(HeadlessControllerException):
    """Exception raised when a navigation ends on an error page"""
    pass


class BrowserEvaluationError(HeadlessControllerException):
    """Exception raised when evaluated script throws"""

    def __init__(self, message, description=None, command=None):
        super().__init__(message)
        self.description = description
        self.command = command


class BrowserScriptSyntaxError(BrowserEvaluationError):
    """Exception raised when evaluated script does not parse"""
    pass


class BrowserPreconditionError(HeadlessControllerException):
    """Exception raised for caller misuse detected before anything is sent"""
    pass


class BrowserFeatureUnsupported(BrowserPreconditionError):
    """Exception raised when a backend cannot perform an operation"""
    pass


class ElementNotFoundError(BrowserPreconditionError):
    """Exception raised when a selector matches nothing"""
    pass


class ElementNotClickable(BrowserPreconditionError):
    """Exception raised when an element has no clickable area in the viewport"""
    pass


class StaleElementError(HeadlessControllerException):
    """Exception raised when an element handle no longer refers to a live node"""
    pass


class BrowserResponseNotReceived(HeadlessControllerException):
    """Exception raised when expected response is not received"""
    pass
