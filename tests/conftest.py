import json
from contextlib import asynccontextmanager

import httpx
import pytest


def mock_client(routes):
    """
    AsyncClient answering from a {url: response} map.

    A value can be a str (HTML), a dict (JSON), an int (bare status code) or
    an Exception instance to raise as a transport error.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        value = routes.get(str(request.url))
        if value is None:
            return httpx.Response(404, text="not found")
        if isinstance(value, Exception):
            raise value
        if isinstance(value, int):
            return httpx.Response(value)
        if isinstance(value, dict):
            return httpx.Response(200, content=json.dumps(value), headers={"content-type": "application/json"})
        return httpx.Response(200, text=value, headers={"content-type": "text/html"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeRoute:
    def __init__(self):
        self.continued = False

    async def continue_(self):
        self.continued = True


class FakeRequest:
    def __init__(self, url, resource_type="xhr"):
        self.url = url
        self.resource_type = resource_type


class FakeResponse:
    def __init__(self, url):
        self.url = url


class FakePage:
    """Stands in for a Playwright page; goto() replays the given traffic"""

    def __init__(self, state=None, requests=(), responses=(), final_url=None, error=None):
        self.state = state or {}
        self.requests = list(requests)
        self.responses = list(responses)
        self.final_url = final_url
        self.error = error
        self.url = "about:blank"
        self.routes = []
        self.handlers = {}
        self.goto_calls = []
        self.evaluate_args = []

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    def on(self, event, handler):
        self.handlers[event] = handler

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append((url, wait_until, timeout))
        for request_url, resource_type in self.requests:
            for _, handler in self.routes:
                route = FakeRoute()
                await handler(route, FakeRequest(request_url, resource_type))
                assert route.continued
        for response_url in self.responses:
            if "response" in self.handlers:
                self.handlers["response"](FakeResponse(response_url))
        if self.error:
            raise self.error
        self.url = self.final_url or url

    async def wait_for_timeout(self, ms):
        pass

    async def evaluate(self, script, *args):
        self.evaluate_args.append(args)
        return self.state


class FakeSession:
    """Stands in for BrowserSession; counts opened and closed contexts"""

    def __init__(self, page):
        self._page = page
        self.referers = []
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def page(self, referer):
        self.referers.append(referer)
        self.opened += 1
        try:
            yield self._page
        finally:
            self.closed += 1


@pytest.fixture
def fake_session():
    def build(**kwargs):
        return FakeSession(FakePage(**kwargs))
    return build


@pytest.fixture
def make_client():
    return mock_client
