"""
Pytest configuration and fixtures for the perfprobe tests.

The fake browser below mirrors the slice of Playwright's async API the engine
uses (browser -> context -> page -> CDP session / routes) and records every
call, so ordering, isolation and cleanup can be asserted without Chromium.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest

from perfprobe.collectors.http_client import FetchedDocument
from perfprobe.config import EngineConfig
from perfprobe.core.perftest import FetchError


class FakeRequest:
    def __init__(self, url: str, resource_type: str = 'document', is_navigation: bool = True,
                 method: str = 'GET', headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.resource_type = resource_type
        self.method = method
        self.headers = headers or {'user-agent': 'FakeChrome/1.0'}
        self._is_navigation = is_navigation

    def is_navigation_request(self) -> bool:
        return self._is_navigation


class FakeRoute:
    def __init__(self, request: FakeRequest):
        self.request = request
        self.resolutions: List[tuple] = []

    async def abort(self, error_code: Optional[str] = None):
        self.resolutions.append(('abort', error_code))

    async def continue_(self):
        self.resolutions.append(('continue', None))

    async def fulfill(self, status: Optional[int] = None, headers: Optional[Dict[str, str]] = None,
                      body: Any = None):
        self.resolutions.append(('fulfill', {'status': status, 'headers': headers, 'body': body}))

    @property
    def action(self) -> Optional[str]:
        return self.resolutions[0][0] if self.resolutions else None


class FakeConsoleMessage:
    def __init__(self, text: str):
        self.text = text


class FakeCDPSession:
    def __init__(self):
        self.commands: List[tuple] = []

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None):
        self.commands.append((method, params))
        return {}

    def methods(self) -> List[str]:
        return [method for method, _ in self.commands]


@dataclass
class PageScenario:
    """What the fake page does when navigated."""
    fcp: Optional[float] = 120.0
    lcp_updates: List[float] = field(default_factory=lambda: [80.0, 150.0, 400.0])
    subresources: List[str] = field(default_factory=list)
    navigation_error: Optional[Exception] = None
    load_delay: float = 0.0
    screenshot: bytes = b'\x89PNG fake screenshot'


class FakePage:
    def __init__(self, context: "FakeContext", scenario: PageScenario):
        self.context = context
        self.scenario = scenario
        self.events: List[str] = []
        self.exposed: Dict[str, Callable] = {}
        self.init_scripts: List[str] = []
        self.route_handlers: List[Callable] = []
        self.routes: List[FakeRoute] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.goto_calls: List[Dict[str, Any]] = []
        self.screenshot_options: Optional[Dict[str, Any]] = None
        self.closed = False

    def on(self, event: str, handler: Callable):
        self.events.append(f'on:{event}')
        self.listeners.setdefault(event, []).append(handler)

    async def expose_function(self, name: str, callback: Callable):
        self.events.append('expose_function')
        self.exposed[name] = callback

    async def add_init_script(self, script: str):
        self.events.append('add_init_script')
        self.init_scripts.append(script)

    async def route(self, pattern: str, handler: Callable):
        self.events.append('route')
        self.route_handlers.append(handler)

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        self.events.append('goto')
        self.goto_calls.append({'url': url, 'wait_until': wait_until, 'timeout': timeout})

        if self.scenario.load_delay:
            await asyncio.sleep(self.scenario.load_delay)
        if self.scenario.navigation_error is not None:
            raise self.scenario.navigation_error

        requests = [FakeRequest(url)] + [
            FakeRequest(sub_url, resource_type='script', is_navigation=False)
            for sub_url in self.scenario.subresources
        ]
        for request in requests:
            route = FakeRoute(request)
            self.routes.append(route)
            for handler in self.route_handlers:
                await handler(route)

        for handler in self.listeners.get('console', []):
            handler(FakeConsoleMessage('[PERF OBSERVER]: script injected'))

        callback = self.exposed.get('__reportFcp')
        if callback is not None and self.scenario.fcp is not None:
            result = callback(self.scenario.fcp)
            if inspect.isawaitable(result):
                await result
        return None

    async def evaluate(self, expression: str):
        self.events.append('evaluate')
        return [
            {'startTime': value, 'size': 1000 * (index + 1), 'element': 'IMG', 'url': 'N/A'}
            for index, value in enumerate(self.scenario.lcp_updates)
        ]

    async def screenshot(self, **options):
        self.events.append('screenshot')
        self.screenshot_options = options
        return self.scenario.screenshot

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, browser: "FakeBrowser", options: Dict[str, Any], scenario: PageScenario):
        self.browser = browser
        self.options = options
        self.scenario = scenario
        self.pages: List[FakePage] = []
        self.cdp_sessions: List[FakeCDPSession] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = FakePage(self, self.scenario)
        self.pages.append(page)
        return page

    async def new_cdp_session(self, page: FakePage) -> FakeCDPSession:
        session = FakeCDPSession()
        self.cdp_sessions.append(session)
        return session

    async def close(self):
        if not self.closed:
            self.closed = True
            self.browser.live_contexts -= 1
            for page in self.pages:
                page.closed = True


class FakeBrowser:
    def __init__(self, scenario: Optional[PageScenario] = None):
        self.scenario = scenario or PageScenario()
        self.contexts: List[FakeContext] = []
        self.live_contexts = 0
        self.max_live_contexts = 0
        self.closed = False

    async def new_context(self, **options) -> FakeContext:
        context = FakeContext(self, options, self.scenario)
        self.contexts.append(context)
        self.live_contexts += 1
        self.max_live_contexts = max(self.max_live_contexts, self.live_contexts)
        return context

    async def close(self):
        self.closed = True

    @property
    def measured_contexts(self) -> List[FakeContext]:
        """Contexts that carried an interceptor, i.e. measurement runs."""
        return [c for c in self.contexts if c.pages and 'route' in c.pages[0].events]


class FakeSession:
    """Stands in for BrowserSession; counts launches and releases."""

    def __init__(self, browser: FakeBrowser, launch_error: Optional[Exception] = None):
        self.browser = browser
        self.launch_error = launch_error
        self.launches = 0
        self.releases = 0

    def __call__(self) -> "FakeSession":
        return self

    async def __aenter__(self) -> FakeBrowser:
        self.launches += 1
        if self.launch_error is not None:
            raise self.launch_error
        return self.browser

    async def __aexit__(self, exc_type, exc, tb):
        self.releases += 1
        await self.browser.close()


class FakeFetcher:
    """Out-of-band fetcher double keyed by URL."""

    def __init__(self, documents: Optional[Dict[str, Any]] = None):
        self.documents = documents or {}
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def __aenter__(self) -> "FakeFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    async def fetch(self, url: str, method: str = 'GET', headers: Optional[Dict[str, str]] = None):
        self.calls.append({'url': url, 'method': method, 'headers': headers})
        document = self.documents.get(url)
        if isinstance(document, Exception):
            raise document
        if document is None:
            raise FetchError(f"No fake document for {url}")
        return document


def html_document(url: str, body: str, status: int = 200,
                  content_type: str = 'text/html; charset=utf-8') -> FetchedDocument:
    return FetchedDocument(
        url=url,
        status=status,
        headers={'Content-Type': content_type, 'Content-Encoding': 'gzip',
                 'Content-Length': '123', 'X-Served-By': 'origin'},
        body=body.encode('utf-8'),
        encoding='utf-8',
    )


# Shared fixtures
@pytest.fixture
def fast_config():
    """Engine configuration with timeouts small enough for unit tests."""
    return EngineConfig(
        fcp_timeout_ms=200,
        navigation_timeout_ms=1000,
        settle_ms=0,
        run_budget_ms=5000,
        fetch_timeout=5,
    )


@pytest.fixture
def page_scenario():
    return PageScenario()


@pytest.fixture
def fake_browser(page_scenario):
    return FakeBrowser(page_scenario)


@pytest.fixture
def fake_session(fake_browser):
    return FakeSession(fake_browser)


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def sample_html():
    return (
        '<html><head>'
        '<script src="/vendor/lib.js"></script>'
        '<script src="/app.js"></script>'
        '<script type="module" SRC="/other.js"></script>'
        '</head><body><h1>Promo</h1><p>Content</p><h1>Second</h1></body></html>'
    )


# Pytest hooks
def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file names."""
    for item in items:
        if "integration" in item.fspath.basename:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


def skip_if_no_playwright_browser():
    """Skip test if Playwright's Chromium cannot be launched."""
    try:
        from playwright.sync_api import sync_playwright
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(headless=True)
            browser.close()
        return False
    except Exception:
        return True


# Environment setup
@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Keep tests independent from the developer's environment."""
    for name in ('PERFPROBE_FCP_TIMEOUT_MS', 'PERFPROBE_NAVIGATION_TIMEOUT_MS', 'PERFPROBE_SETTLE_MS',
                 'PERFPROBE_RUN_BUDGET_MS', 'PERFPROBE_FETCH_TIMEOUT', 'PERFPROBE_HEADLESS',
                 'PERFPROBE_CHROMIUM_PATH'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PERFPROBE_LOG_LEVEL", "DEBUG")
