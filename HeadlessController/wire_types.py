#!/usr/bin/env python3

"""
Wire Types and Codecs

Typed views of the messages exchanged with the browser, plus the conversions
needed between Python values and what each protocol puts on the wire.

Chrome messages decode into one of three variants, picked by which fields are
present:

    {"id": .., "result": ..}   -> Success
    {"id": .., "error": ..}    -> Error
    {"method": .., "params": ..} -> Notification
"""

import json
import math
from typing import Any, Dict, List, NamedTuple, Optional, Union

from .exceptions import BrowserCommunicationsError, BrowserPreconditionError


# Largest integer a JS number holds exactly
MAX_SAFE_INTEGER = 2 ** 53 - 1

SCREENSHOT_FORMATS = ("jpeg", "png")
DEFAULT_SCREENSHOT_FORMAT = "jpeg"
DEFAULT_SCREENSHOT_QUALITY = 80


class Success(NamedTuple):
    id: int
    result: Dict[str, Any]


class Error(NamedTuple):
    id: int
    error: Any


class Notification(NamedTuple):
    method: str
    params: Dict[str, Any]
    session_id: Optional[str] = None


Message = Union[Success, Error, Notification]


class TargetContext(NamedTuple):
    """Identity of one open page inside the browser."""
    target_id: str
    frame_id: Optional[str] = None
    session_id: Optional[str] = None
    console_actor: Optional[str] = None


def decode_message(message: Dict[str, Any]) -> Message:
    """
    Decode one inbound CDP message into its tagged variant.

    Raises:
        BrowserCommunicationsError: If the message is neither a reply nor a notification
    """
    if not isinstance(message, dict):
        raise BrowserCommunicationsError("Expected a JSON object, got: {!r}".format(message))

    if "id" in message:
        if "error" in message:
            return Error(message["id"], message["error"])
        return Success(message["id"], message.get("result", {}))

    if "method" in message:
        return Notification(message["method"], message.get("params", {}), message.get("sessionId"))

    raise BrowserCommunicationsError("Unrecognised message shape: {}".format(json.dumps(message)[:200]))


def error_text(error: Any) -> str:
    """Human readable text for a protocol error payload."""
    if isinstance(error, dict):
        if "message" in error:
            if "data" in error:
                return "{} ({})".format(error["message"], error["data"])
            return str(error["message"])
        return json.dumps(error)
    return str(error)


def _is_negative_zero(value) -> bool:
    return isinstance(value, float) and value == 0 and math.copysign(1.0, value) < 0


def _unserializable(value) -> Optional[str]:
    """The JS source text for values that JSON can not carry, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            return "{}n".format(value)
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if _is_negative_zero(value):
            return "-0"
    return None


def serialize_call_argument(value) -> Dict[str, Any]:
    """
    Build a Runtime.CallArgument for a Python value.

    Large integers become BigInt literals, and NaN, the infinities and
    negative zero travel as ``unserializableValue``.
    """
    special = _unserializable(value)
    if special is not None:
        return {"unserializableValue": special}
    return {"value": value}


def to_js_literal(value) -> str:
    """Render a Python value as JavaScript source, for protocols without call arguments."""
    special = _unserializable(value)
    if special is not None:
        return special
    return json.dumps(value)


def _decode_unserializable(text: str):
    if text == "NaN":
        return float("nan")
    if text == "Infinity":
        return float("inf")
    if text == "-Infinity":
        return float("-inf")
    if text == "-0":
        return -0.0
    if text.endswith("n"):
        try:
            return int(text[:-1])
        except ValueError:
            pass
    return text


def unwrap_remote_object(remote: Optional[Dict[str, Any]]):
    """Extract the Python value from a CDP RemoteObject returned by value."""
    if not remote:
        return None
    if "unserializableValue" in remote:
        return _decode_unserializable(remote["unserializableValue"])
    if remote.get("type") == "undefined":
        return None
    return remote.get("value")


def decode_grip(grip):
    """
    Convert a Firefox value grip to a Python value.

    Primitives arrive as plain JSON. Everything else is an object with a
    ``type`` field; objects come back as their preview when one is present.
    """
    if not isinstance(grip, dict):
        return grip

    grip_type = grip.get("type")
    if grip_type in ("undefined", "null"):
        return None
    if grip_type in ("NaN", "Infinity", "-Infinity", "-0"):
        return _decode_unserializable(grip_type)
    if grip_type == "BigInt":
        return int(grip["text"])
    if grip_type == "longString":
        return grip.get("initial")
    if grip_type == "object":
        preview = grip.get("preview") or {}
        if "items" in preview:
            return [decode_grip(item) for item in preview["items"]]
        if "ownProperties" in preview:
            return {
                key: decode_grip(prop.get("value"))
                for key, prop in preview["ownProperties"].items()
            }
        return grip
    return grip


def validate_screenshot_options(format: Optional[str] = None, quality: Optional[int] = None):
    """
    Normalise screenshot options.

    Args:
        format: "jpeg" or "png", default jpeg
        quality: 0-100, jpeg only, default 80

    Returns:
        Tuple of (format, quality); quality is None for png

    Raises:
        BrowserPreconditionError: If the options can not be honoured
    """
    fmt = format or DEFAULT_SCREENSHOT_FORMAT
    if fmt not in SCREENSHOT_FORMATS:
        raise BrowserPreconditionError("Invalid screenshot format '{}'. Valid formats: {}".format(
            fmt, list(SCREENSHOT_FORMATS)))

    if quality is not None and abs(quality) > 100 and fmt == "jpeg":
        raise BrowserPreconditionError("A quality value greater than 100 is not allowed.")

    if fmt != "jpeg":
        return fmt, None
    return fmt, abs(quality) if quality else DEFAULT_SCREENSHOT_QUALITY


def validate_cookie(cookie: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a cookie to be set.

    Raises:
        BrowserPreconditionError: If a required field is missing
    """
    if not isinstance(cookie, dict):
        raise BrowserPreconditionError("Cookie must be a dictionary")
    for field in ("name", "value", "url"):
        if not isinstance(cookie.get(field), str):
            raise BrowserPreconditionError("Cookie field '{}' must be a string".format(field))
    return {"name": cookie["name"], "value": cookie["value"], "url": cookie["url"]}


def parse_cookie_string(cookie_string: str, url: str) -> List[Dict[str, Any]]:
    """Split a ``document.cookie`` string into cookie dictionaries."""
    cookies = []
    for part in cookie_string.split(";"):
        part = part.strip()
        if not part:
            continue
        name, _, value = part.partition("=")
        cookies.append({"name": name, "value": value, "url": url})
    return cookies
