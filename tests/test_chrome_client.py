#!/usr/bin/env python3

"""
Tests for the Chrome client, page and element against a scripted CDP endpoint.
"""

import base64
import os.path
import threading

import pytest
from unittest.mock import Mock, patch

from HeadlessController.chrome_client import ChromeClient
from HeadlessController.exceptions import (
    BrowserConnectFailure,
    BrowserConnectionClosed,
    BrowserEvaluationError,
    BrowserNavigationError,
    BrowserPreconditionError,
    BrowserProtocolError,
    BrowserResponseNotReceived,
    BrowserScriptSyntaxError,
    BrowserStartupException,
    ElementNotClickable,
    ElementNotFoundError,
    StaleElementError,
)

from fakes import DEFERRED, NO_REPLY, FakeError, FakeWebSocketTransport, chrome_session_handlers, wait_until

SESSION = "SESSION-TARGET1"


@pytest.fixture
def chrome():
    """Factory for a ChromeClient wired to a fake socket, attached to TARGET1."""
    clients = []

    def factory(handlers=None, wait_timeout=5):
        all_handlers = chrome_session_handlers()
        all_handlers.update(handlers or {})
        transport = FakeWebSocketTransport(all_handlers)

        client = ChromeClient(debugger_port=9292, wait_timeout=wait_timeout)
        client.transport = transport
        client._start_reader()
        clients.append(client)

        page = client.attach_page("TARGET1")
        return client, page, transport

    yield factory
    for client in clients:
        client.close()


def remote_value(value, kind="object"):
    return {"result": {"type": kind, "value": value}}


def element_handlers(connected=True, values=None, quads=None):
    """Handlers for a page whose querySelector always finds OBJ1."""
    values = dict(values or {})

    def call_function_on(params, sid):
        declaration = params["functionDeclaration"]
        if "isConnected" in declaration:
            return remote_value(connected, "boolean")
        for fragment, value in values.items():
            if fragment in declaration:
                return remote_value(value)
        return {"result": {"type": "undefined"}}

    return {
        "Runtime.evaluate": lambda params, sid: {"result": {"type": "object", "subtype": "node", "objectId": "OBJ1"}},
        "Runtime.callFunctionOn": call_function_on,
        "DOM.getContentQuads": lambda params, sid: {
            "quads": quads if quads is not None else [[10, 10, 30, 10, 30, 30, 10, 30]]},
        "Page.getLayoutMetrics": lambda params, sid: {
            "cssLayoutViewport": {"pageX": 0, "pageY": 0, "clientWidth": 800, "clientHeight": 600}},
    }


class TestAttach:

    def test_session_setup(self, chrome):
        client, page, transport = chrome()

        assert page.target_id == "TARGET1"
        assert page.session_id == SESSION
        assert page.context.frame_id == "FRAME1"
        assert client.pages == [page]

        attach = transport.sent_with("Target.attachToTarget")[0]
        assert attach["params"] == {"targetId": "TARGET1", "flatten": True}
        assert "sessionId" not in attach

        for domain in ("Page", "Runtime", "Log", "Network"):
            assert transport.sent_with("{}.enable".format(domain))[0]["sessionId"] == SESSION
        assert transport.sent_with("Page.setLifecycleEventsEnabled")[0]["params"] == {"enabled": True}

    def test_message_ids_increase(self, chrome):
        client, page, transport = chrome()
        ids = [message["id"] for message in transport.sent]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)


class TestEvaluate:

    def test_expression(self, chrome):
        client, page, transport = chrome({
            "Runtime.evaluate": lambda params, sid: remote_value(11, "number"),
        })
        assert page.evaluate("1 + 10") == 11

        params = transport.sent_with("Runtime.evaluate")[0]["params"]
        assert params["expression"] == "1 + 10"
        assert params["returnByValue"] is True
        assert params["awaitPromise"] is True

    def test_syntax_error_closes_client(self, chrome):
        client, page, transport = chrome({
            "Runtime.evaluate": lambda params, sid: {
                "result": {"type": "object", "subtype": "error"},
                "exceptionDetails": {
                    "text": "Uncaught",
                    "exception": {"description": "SyntaxError: Unexpected token ')'"},
                },
            },
        })
        with pytest.raises(BrowserScriptSyntaxError) as excinfo:
            page.evaluate("1 +)")

        assert str(excinfo.value) == "Unexpected token ')': `1 +)`"
        assert client.closed

    def test_thrown_error(self, chrome):
        client, page, transport = chrome({
            "Runtime.evaluate": lambda params, sid: {
                "exceptionDetails": {
                    "text": "Uncaught",
                    "exception": {"description": "ReferenceError: foo is not defined"},
                },
            },
        })
        with pytest.raises(BrowserEvaluationError) as excinfo:
            page.evaluate("foo")

        assert not isinstance(excinfo.value, BrowserScriptSyntaxError)
        assert str(excinfo.value) == 'ReferenceError: foo is not defined: "foo"'
        assert client.closed

    def test_text_only_details(self, chrome):
        client, page, transport = chrome({
            "Runtime.evaluate": lambda params, sid: {"exceptionDetails": {"text": "Promise was collected"}},
        })
        with pytest.raises(BrowserEvaluationError, match="Promise was collected"):
            page.evaluate("new Promise(() => {})")

    def test_function_arguments(self, chrome):
        client, page, transport = chrome({
            "Page.createIsolatedWorld": lambda params, sid: {"executionContextId": 7},
            "Runtime.callFunctionOn": lambda params, sid: remote_value(11, "number"),
        })
        assert page.evaluate_function("(a, b) => a + b", 1, 10) == 11

        world = transport.sent_with("Page.createIsolatedWorld")[0]["params"]
        assert world == {"frameId": "FRAME1"}

        params = transport.sent_with("Runtime.callFunctionOn")[0]["params"]
        assert params["executionContextId"] == 7
        assert params["arguments"] == [{"value": 1}, {"value": 10}]
        assert params["userGesture"] is True

    def test_function_special_numbers(self, chrome):
        client, page, transport = chrome({
            "Page.createIsolatedWorld": lambda params, sid: {"executionContextId": 7},
            "Runtime.callFunctionOn": lambda params, sid: {"result": {"type": "number", "unserializableValue": "-0"}},
        })
        page.evaluate_function("(a, b, c) => -0", float("nan"), -0.0, 2 ** 60)

        params = transport.sent_with("Runtime.callFunctionOn")[0]["params"]
        assert params["arguments"] == [
            {"unserializableValue": "NaN"},
            {"unserializableValue": "-0"},
            {"unserializableValue": "{}n".format(2 ** 60)},
        ]


class TestNavigation:

    def test_location_waits_for_load_and_idle(self, chrome):
        client, page, transport = chrome({
            "Target.getTargets": lambda params, sid: {"targetInfos": [
                {"targetId": "OTHER", "url": "about:blank"},
                {"targetId": "TARGET1", "url": "https://example.test/"},
            ]},
            "Runtime.evaluate": lambda params, sid: remote_value("Example", "string"),
        })

        def navigate(params, sid):
            # Events before the reply: the waiters must already be armed
            transport.emit("Page.lifecycleEvent", {"name": "networkIdle", "frameId": "FRAME-CHILD"}, sid)
            transport.emit("Page.loadEventFired", {"timestamp": 1}, sid)
            transport.emit("Page.lifecycleEvent", {"name": "networkIdle", "frameId": "FRAME1"}, sid)
            return {"frameId": "FRAME1", "loaderId": "L1"}

        transport.handlers["Page.navigate"] = navigate

        assert page.location("https://example.test/") == "https://example.test/"
        assert page.evaluate("document.title") == "Example"
        assert transport.sent_with("Page.navigate")[0]["sessionId"] == SESSION
        assert not client.router.is_waiting("Page.loadEventFired@" + SESSION)

    def test_navigation_error_text(self, chrome):
        client, page, transport = chrome({
            "Page.navigate": lambda params, sid: {"frameId": "FRAME1", "errorText": "net::ERR_NAME_NOT_RESOLVED"},
        })
        with pytest.raises(BrowserNavigationError) as excinfo:
            page.location("https://nowhere.invalid/")

        assert str(excinfo.value) == 'net::ERR_NAME_NOT_RESOLVED: Error for navigating to page "https://nowhere.invalid/"'
        assert client.closed

    def test_protocol_error_tears_down(self, chrome):
        client, page, transport = chrome({
            "Page.navigate": lambda params, sid: FakeError({"code": -32000, "message": "Cannot navigate to invalid URL"}),
        })
        with pytest.raises(BrowserProtocolError, match="Page.navigate: Cannot navigate to invalid URL") as excinfo:
            page.location("bogus")

        assert excinfo.value.method == "Page.navigate"
        assert client.closed
        assert transport.close_count == 1

        with pytest.raises(BrowserConnectionClosed):
            page.evaluate("1")


class TestCookies:

    def test_set_then_read(self, chrome):
        jar = []
        client, page, transport = chrome({
            "Network.setCookie": lambda params, sid: jar.append(params) or {"success": True},
            "Network.getCookies": lambda params, sid: {"cookies": list(jar)},
        })

        assert page.cookie({"name": "user", "value": "ed", "url": "https://example.test"}) == []
        cookies = page.cookie()
        assert len(cookies) == 1
        assert cookies[0]["value"] == "ed"

    def test_invalid_cookie_not_sent(self, chrome):
        client, page, transport = chrome()
        sent = len(transport.sent)
        with pytest.raises(BrowserPreconditionError):
            page.cookie({"name": "user"})
        assert len(transport.sent) == sent
        assert not client.closed


class TestScreenshots:

    def test_bad_quality_sends_nothing(self, chrome):
        client, page, transport = chrome()
        sent = len(transport.sent)
        with pytest.raises(BrowserPreconditionError, match="A quality value greater than 100 is not allowed."):
            page.take_screenshot(quality=999)
        assert len(transport.sent) == sent
        assert not client.closed

    def test_default_jpeg(self, chrome):
        image = b"\xff\xd8fake jpeg"
        client, page, transport = chrome({
            "Page.captureScreenshot": lambda params, sid: {"data": base64.b64encode(image).decode("ascii")},
        })
        assert page.take_screenshot() == image
        assert transport.sent_with("Page.captureScreenshot")[0]["params"] == {"format": "jpeg", "quality": 80}

    def test_selector_clip(self, chrome):
        handlers = element_handlers(values={"getBoundingClientRect": {"x": 5, "y": 6, "width": 70, "height": 80}})
        handlers["Page.captureScreenshot"] = lambda params, sid: {"data": base64.b64encode(b"png").decode("ascii")}
        client, page, transport = chrome(handlers)

        page.take_screenshot(format="png", selector="#logo")

        params = transport.sent_with("Page.captureScreenshot")[0]["params"]
        assert params == {"format": "png", "clip": {"x": 5, "y": 6, "width": 70, "height": 80, "scale": 2}}

    def test_save_screenshot(self, chrome, tmp_path):
        client, page, transport = chrome({
            "Page.captureScreenshot": lambda params, sid: {"data": base64.b64encode(b"img").decode("ascii")},
        })
        path = page.save_screenshot(str(tmp_path), "shot")
        assert path == os.path.join(str(tmp_path), "shot.jpeg")
        with open(path, "rb") as f:
            assert f.read() == b"img"

    def test_save_screenshot_missing_folder(self, chrome, tmp_path):
        client, page, transport = chrome()
        missing = str(tmp_path / "nope")
        with pytest.raises(BrowserPreconditionError, match="doesn't exist"):
            page.save_screenshot(missing)


class TestDialogs:

    def test_dialog_requires_expectation(self, chrome):
        client, page, transport = chrome()
        with pytest.raises(BrowserPreconditionError):
            page.dialog(True)
        assert not transport.sent_with("Page.handleJavaScriptDialog")

    @staticmethod
    def blocking_prompt(transport, reply=None):
        """
        Handlers for a browser that opens a prompt and, like Chrome, holds the
        reply to whatever opened it until the prompt is answered.
        """
        def opens_prompt(params, sid):
            transport.emit("Page.javascriptDialogOpening", {"message": "Name?", "type": "prompt"}, sid)
            return DEFERRED

        def handle(params, sid):
            transport.emit("Page.javascriptDialogClosed", {
                "result": params["accept"], "userInput": params.get("promptText", "")}, sid)
            transport.release(reply)
            return {}

        return opens_prompt, handle

    def test_dialog_opened_by_evaluate(self, chrome):
        client, page, transport = chrome()
        opens_prompt, handle = self.blocking_prompt(transport, remote_value("Ed", "string"))
        transport.handlers["Runtime.evaluate"] = opens_prompt
        transport.handlers["Page.handleJavaScriptDialog"] = handle

        answers = []
        page.expect_dialog()
        event = page.dialog(True, "Ed", trigger=lambda: answers.append(page.evaluate("prompt('Name?')")))

        assert event["message"] == "Name?"
        assert answers == ["Ed"]
        params = transport.sent_with("Page.handleJavaScriptDialog")[0]["params"]
        assert params == {"accept": True, "promptText": "Ed"}
        assert not client.closed

    def test_dialog_opened_by_click(self, chrome):
        client, page, transport = chrome(element_handlers())
        opens_prompt, handle = self.blocking_prompt(transport)
        transport.handlers["Input.dispatchMouseEvent"] = lambda params, sid: (
            opens_prompt(params, sid) if params["type"] == "mousePressed" else {})
        transport.handlers["Page.handleJavaScriptDialog"] = handle
        button = page.query_selector("#ask")

        page.expect_dialog()
        event = page.dialog(False, trigger=button.click)

        assert event["type"] == "prompt"
        presses = [message["params"]["type"] for message in transport.sent_with("Input.dispatchMouseEvent")]
        assert presses == ["mouseMoved", "mousePressed", "mouseReleased"]
        assert transport.sent_with("Page.handleJavaScriptDialog")[0]["params"] == {"accept": False}

    def test_trigger_failure_before_dialog(self, chrome):
        client, page, transport = chrome({
            "Runtime.evaluate": lambda params, sid: {"result": {"type": "object", "subtype": "null", "value": None}},
        })

        page.expect_dialog()
        with pytest.raises(ElementNotFoundError):
            page.dialog(True, trigger=lambda: page.query_selector("#nope").click())

        assert not transport.sent_with("Page.handleJavaScriptDialog")
        assert not client.closed
        # The opening waiter was released, so a new expectation can be armed
        page.expect_dialog()


class TestConsoleErrors:

    def test_errors_in_order(self, chrome):
        client, page, transport = chrome()
        transport.emit("Runtime.exceptionThrown", {
            "exceptionDetails": {"text": "Uncaught", "exception": {"description": "Error: boom"}}}, SESSION)
        transport.emit("Log.entryAdded", {"entry": {"level": "warning", "text": "meh"}}, SESSION)
        transport.emit("Log.entryAdded", {"entry": {
            "level": "error", "text": "Failed to load resource", "url": "https://example.test/favicon.ico"}}, SESSION)
        transport.emit("Log.entryAdded", {"entry": {"level": "error", "text": "other tab"}}, "SESSION-OTHER")
        # Replies share the queue with events, so this returns after all of them
        page.evaluate("1")

        assert page.console_errors(settle_delay=0.05) == [
            "Error: boom",
            "Failed to load resource (https://example.test/favicon.ico)",
        ]
        assert page.console_errors(settle_delay=0.05, exceptions=["favicon"]) == ["Error: boom"]


class TestConnection:

    def test_pending_call_fails_when_connection_drops(self, chrome):
        client, page, transport = chrome({"Runtime.evaluate": lambda params, sid: NO_REPLY})

        errors = []

        def evaluate():
            try:
                page.evaluate("1")
            except BrowserConnectionClosed as e:
                errors.append(e)

        worker = threading.Thread(target=evaluate)
        worker.start()
        wait_until(lambda: transport.sent_with("Runtime.evaluate"))

        transport.close()
        worker.join(timeout=5)

        assert len(errors) == 1
        wait_until(lambda: client.closed)
        assert client.correlator.pending == 0

    def test_browser_hangup_tears_down(self, chrome):
        client, page, transport = chrome()
        supervisor = Mock()
        client.supervisor = supervisor

        transport.drop()

        wait_until(lambda: supervisor.force_kill_by_image_name.called)
        assert client.closed
        assert transport.close_count == 1
        supervisor.terminate.assert_called_once_with()
        with pytest.raises(BrowserConnectionClosed):
            page.evaluate("1")

    def test_waiting_caller_sees_finished_teardown(self, chrome):
        client, page, transport = chrome({"Runtime.evaluate": lambda params, sid: NO_REPLY})
        supervisor = Mock()
        client.supervisor = supervisor

        terminated = []

        def evaluate():
            try:
                page.evaluate("1")
            except BrowserConnectionClosed:
                terminated.append(supervisor.terminate.called)

        worker = threading.Thread(target=evaluate)
        worker.start()
        wait_until(lambda: transport.sent_with("Runtime.evaluate"))

        transport.drop()
        worker.join(timeout=5)

        assert terminated == [True]

    def test_wait_timeout(self, chrome):
        client, page, transport = chrome({"Runtime.evaluate": lambda params, sid: NO_REPLY}, wait_timeout=0.2)

        with pytest.raises(BrowserResponseNotReceived):
            page.evaluate("1")
        assert not client.closed
        assert client.correlator.pending == 0

    def test_close_is_idempotent(self, chrome):
        client, page, transport = chrome()
        supervisor = Mock()
        client.supervisor = supervisor

        client.close()
        client.close()

        supervisor.terminate.assert_called_once_with()
        supervisor.force_kill_by_image_name.assert_called_once_with()
        assert transport.close_count == 1
        assert page.closed
        assert client.pages == []

    def test_calls_after_close(self, chrome):
        client, page, transport = chrome()
        client.close()
        with pytest.raises(BrowserConnectionClosed):
            client.call("Browser.getVersion")

    def test_page_close(self, chrome):
        client, page, transport = chrome()
        page.close()

        close = transport.sent_with("Target.closeTarget")[0]
        assert close["params"] == {"targetId": "TARGET1"}
        assert page.closed
        assert page not in client.pages
        assert not client.closed


class TestElements:

    def test_missing_selector(self, chrome):
        client, page, transport = chrome({
            "Runtime.evaluate": lambda params, sid: {"result": {"type": "object", "subtype": "null", "value": None}},
        })
        with pytest.raises(ElementNotFoundError, match='The selector "#nope" does not exist inside the DOM'):
            page.query_selector("#nope")
        assert not client.closed

    def test_selector_is_quoted(self, chrome):
        client, page, transport = chrome(element_handlers())
        page.query_selector('a[href="x"]')
        expression = transport.sent_with("Runtime.evaluate")[0]["params"]["expression"]
        assert expression == 'document.querySelector("a[href=\\"x\\"]")'

    def test_click_dispatches_at_centre(self, chrome):
        client, page, transport = chrome(element_handlers())
        assert page.query_selector("#button").click() is None

        events = [message["params"] for message in transport.sent_with("Input.dispatchMouseEvent")]
        assert [event["type"] for event in events] == ["mouseMoved", "mousePressed", "mouseReleased"]
        assert all((event["x"], event["y"]) == (20, 20) for event in events)
        assert events[1]["button"] == "left" and events[1]["clickCount"] == 1

        methods = transport.methods()
        assert methods.index("DOM.scrollIntoViewIfNeeded") < methods.index("DOM.getContentQuads")
        assert methods.index("Page.getLayoutMetrics") < methods.index("Input.dispatchMouseEvent")

    def test_click_not_clickable(self, chrome):
        client, page, transport = chrome(element_handlers(quads=[[0, 0, 0, 0, 0, 0, 0, 0]]))
        with pytest.raises(ElementNotClickable) as excinfo:
            page.query_selector("#hidden").click()

        assert str(excinfo.value) == 'Unable to click the element "#hidden". It could be that it is invalid HTML'
        assert not transport.sent_with("Input.dispatchMouseEvent")
        assert not client.closed

    def test_detached_element_is_stale(self, chrome):
        client, page, transport = chrome(element_handlers(connected=False))
        element = page.query_selector("#gone")
        with pytest.raises(StaleElementError, match='The element "#gone" is no longer attached'):
            element.click()
        assert not transport.sent_with("DOM.scrollIntoViewIfNeeded")
        assert not client.closed

    def test_dead_object_id_is_stale(self, chrome):
        handlers = element_handlers()
        handlers["Runtime.callFunctionOn"] = lambda params, sid: FakeError(
            {"code": -32000, "message": "Could not find object with given id"})
        client, page, transport = chrome(handlers)

        with pytest.raises(StaleElementError):
            page.query_selector("#gone").value()
        assert not client.closed

    def test_dead_context_is_stale(self, chrome):
        handlers = element_handlers()
        handlers["Runtime.callFunctionOn"] = lambda params, sid: FakeError(
            {"code": -32000, "message": "Cannot find context with specified id"})
        client, page, transport = chrome(handlers)

        with pytest.raises(StaleElementError):
            page.query_selector("#gone").value()
        assert not client.closed

    def test_other_call_errors_tear_down(self, chrome):
        handlers = element_handlers()
        handlers["Runtime.callFunctionOn"] = lambda params, sid: FakeError(
            {"code": -32602, "message": "Invalid parameters", "data": "Failed to deserialize params.arguments"})
        client, page, transport = chrome(handlers)
        element = page.query_selector("#field")

        with pytest.raises(BrowserProtocolError) as excinfo:
            element.value()

        assert not isinstance(excinfo.value, StaleElementError)
        assert str(excinfo.value) == (
            "Runtime.callFunctionOn: Invalid parameters (Failed to deserialize params.arguments)")
        assert excinfo.value.method == "Runtime.callFunctionOn"
        assert client.closed

    def test_invalid_wait_for(self, chrome):
        client, page, transport = chrome(element_handlers())
        with pytest.raises(BrowserPreconditionError):
            page.query_selector("#button").click(wait_for="load")

    def test_click_waits_for_new_page_request(self, chrome):
        client, page, transport = chrome(element_handlers())

        def mouse(params, sid):
            if params["type"] == "mousePressed":
                transport.emit("Page.frameRequestedNavigation", {
                    "frameId": "FRAME1", "url": "https://example.test/new", "disposition": "newTab"}, sid)
            return {}

        transport.handlers["Input.dispatchMouseEvent"] = mouse

        event = page.query_selector("a").click(wait_for="newPage")
        assert event["url"] == "https://example.test/new"

    def test_click_waits_for_navigation(self, chrome):
        client, page, transport = chrome(element_handlers())

        def mouse(params, sid):
            if params["type"] == "mouseReleased":
                transport.emit("Page.lifecycleEvent", {"name": "networkIdle", "frameId": "FRAME1"}, sid)
            return {}

        transport.handlers["Input.dispatchMouseEvent"] = mouse

        event = page.query_selector("a").click(wait_for="navigation")
        assert event["name"] == "networkIdle"

    def test_new_page_click(self, chrome):
        client, page, transport = chrome(element_handlers())

        def mouse(params, sid):
            if params["type"] == "mousePressed":
                transport.emit("Page.frameRequestedNavigation", {
                    "frameId": "FRAME1", "url": "https://example.test/new", "disposition": "newTab"}, sid)
                transport.emit("Target.targetCreated", {
                    "targetInfo": {"targetId": "TARGET2", "type": "page", "url": ""}})
            return {}

        transport.handlers["Input.dispatchMouseEvent"] = mouse
        targets = [{"id": "TARGET2", "type": "page", "url": "https://example.test/new"}]

        with patch("HeadlessController.chrome_client.list_targets", return_value=targets):
            new_page = page.new_page_click("a")

        assert new_page.target_id == "TARGET2"
        assert new_page.session_id == "SESSION-TARGET2"
        assert client.pages == [page, new_page]

        new_page.evaluate("1")
        assert transport.sent_with("Runtime.evaluate")[-1]["sessionId"] == "SESSION-TARGET2"

    def test_value_and_attributes(self, chrome):
        client, page, transport = chrome(element_handlers(values={
            "return this.value": "hello",
            "getAttribute(name)": "text",
        }))
        element = page.query_selector("input")

        assert element.value() == "hello"
        assert element.get_attribute("type") == "text"

        element.value("typed")
        setter = [message["params"] for message in transport.sent_with("Runtime.callFunctionOn")
                  if "dispatchEvent" in message["params"]["functionDeclaration"]]
        assert setter[0]["arguments"] == [{"value": "typed"}]
        assert setter[0]["objectId"] == "OBJ1"

    def test_files(self, chrome, tmp_path):
        upload = tmp_path / "upload.txt"
        upload.write_text("data")

        handlers = element_handlers(values={"tagName": {"tag": "input", "type": "file", "multiple": False}})
        handlers["DOM.describeNode"] = lambda params, sid: {"node": {"backendNodeId": 42}}
        client, page, transport = chrome(handlers)

        page.query_selector("#upload").file(str(upload))

        params = transport.sent_with("DOM.setFileInputFiles")[0]["params"]
        assert params == {"files": [os.path.abspath(str(upload))], "backendNodeId": 42}

    def test_files_needs_multiple(self, chrome, tmp_path):
        first = tmp_path / "a.txt"
        second = tmp_path / "b.txt"
        first.write_text("a")
        second.write_text("b")

        client, page, transport = chrome(element_handlers(
            values={"tagName": {"tag": "input", "type": "file", "multiple": False}}))

        with pytest.raises(BrowserPreconditionError, match='does not have the "multiple" attribute'):
            page.query_selector("#upload").files(str(first), str(second))
        assert not transport.sent_with("DOM.setFileInputFiles")

    def test_files_on_non_file_input(self, chrome, tmp_path):
        upload = tmp_path / "upload.txt"
        upload.write_text("data")
        client, page, transport = chrome(element_handlers(
            values={"tagName": {"tag": "input", "type": "text", "multiple": False}}))

        with pytest.raises(BrowserPreconditionError, match="not an input"):
            page.query_selector("#name").file(str(upload))

    def test_files_missing_path(self, chrome, tmp_path):
        client, page, transport = chrome(element_handlers())
        with pytest.raises(BrowserPreconditionError, match="does not exist"):
            page.query_selector("#upload").file(str(tmp_path / "missing.txt"))


class TestStartup:

    def test_build_command(self):
        client = ChromeClient(debugger_port=9222, additional_options=["--lang=en"])
        assert client.build_command("/opt/chrome") == [
            "/opt/chrome",
            "--headless",
            "--remote-debugging-port=9222",
            "--disable-gpu",
            "--no-sandbox",
            "--lang=en",
            "about:blank",
        ]

    def test_default_port(self):
        assert ChromeClient().port == 9292

    def test_start_launches_and_attaches(self):
        transport = FakeWebSocketTransport(chrome_session_handlers())
        transport.connect = Mock()
        supervisor = Mock()
        targets = [{"id": "TARGET1", "type": "page", "url": "about:blank"}]

        with patch("HeadlessController.chrome_client.find_browser_binary", return_value="/opt/chrome"), \
                patch("HeadlessController.chrome_client.ProcessSupervisor", return_value=supervisor) as supervisor_cls, \
                patch("HeadlessController.chrome_client.discover_websocket_url", return_value="ws://localhost:9292/x"), \
                patch("HeadlessController.chrome_client.WebSocketTransport", return_value=transport), \
                patch("HeadlessController.chrome_client.list_targets", return_value=targets):
            client, page = ChromeClient.build(debugger_port=9292, wait_timeout=5)

        try:
            supervisor_cls.assert_called_once_with(client.build_command("/opt/chrome"))
            supervisor.launch.assert_called_once_with()
            transport.connect.assert_called_once_with()
            assert transport.methods()[0] == "Target.setDiscoverTargets"
            assert page.session_id == SESSION
        finally:
            client.close()
        supervisor.terminate.assert_called_once_with()

    def test_remote_skips_launch(self):
        transport = FakeWebSocketTransport(chrome_session_handlers())
        transport.connect = Mock()
        targets = [{"id": "TARGET1", "type": "page", "url": "about:blank"}]

        with patch("HeadlessController.chrome_client.ProcessSupervisor") as supervisor_cls, \
                patch("HeadlessController.chrome_client.discover_websocket_url", return_value="ws://x"), \
                patch("HeadlessController.chrome_client.WebSocketTransport", return_value=transport), \
                patch("HeadlessController.chrome_client.list_targets", return_value=targets):
            client, page = ChromeClient.build(remote=True, wait_timeout=5)

        client.close()
        supervisor_cls.assert_not_called()

    def test_browser_exits_during_startup(self):
        supervisor = Mock()
        supervisor.check_alive.side_effect = BrowserStartupException("Browser exited with status 1: no display")

        with patch("HeadlessController.chrome_client.find_browser_binary", return_value="/opt/chrome"), \
                patch("HeadlessController.chrome_client.ProcessSupervisor", return_value=supervisor), \
                patch("HeadlessController.transport.fetch_json") as fetch:
            with pytest.raises(BrowserStartupException, match="no display"):
                ChromeClient.build()

        fetch.assert_not_called()
        supervisor.terminate.assert_called_once_with()

    def test_build_closes_on_failure(self):
        with patch("HeadlessController.chrome_client.discover_websocket_url",
                   side_effect=BrowserConnectFailure("nothing listening")), \
                patch.object(ChromeClient, "close") as close:
            with pytest.raises(BrowserConnectFailure):
                ChromeClient.build(remote=True)
        close.assert_called_once_with()
