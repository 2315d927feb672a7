import asyncio
import contextlib
import logging
from typing import Callable, Dict, Optional

from playwright.async_api import Browser, BrowserContext, CDPSession, ConsoleMessage, Page
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from ..collectors.http_client import DocumentFetcher
from ..config import EngineConfig
from ..metrics.bridge import MetricsBridge
from ..rules.engine import RuleEngine
from ..rules.interceptor import RequestInterceptor
from .perftest import NavigationError, NavigationTimeout, PerfTestRequest, RunSample
from .throttling import ThrottlingProfile, get_profile


CACHE_BYPASS_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}


class RunExecutor:
    """
    Runs one isolated, throttled page load and returns its paint timings.

    Each call gets its own browser context, page, CDP session, interceptor and
    metrics bridge; all of them are closed before execute() returns or raises.
    """

    def __init__(self,
                 request: PerfTestRequest,
                 config: Optional[EngineConfig] = None,
                 fetcher_factory: Optional[Callable[[], DocumentFetcher]] = None):
        self.request = request
        self.config = config or EngineConfig()
        self.profile: ThrottlingProfile = get_profile(request.mode)
        self.engine = RuleEngine(request.rules)
        self._fetcher_factory = fetcher_factory or (lambda: DocumentFetcher(timeout=self.config.fetch_timeout))
        self.logger = logging.getLogger("perfprobe.run")

    def _context_options(self) -> Dict:
        options = {'viewport': self.profile.viewport}
        if self.profile.user_agent:
            options['user_agent'] = self.profile.user_agent
        if self.request.disable_cache:
            options['extra_http_headers'] = dict(CACHE_BYPASS_HEADERS)
        return options

    async def execute(self, browser: Browser) -> RunSample:
        """
        Measure one page load.

        Args:
            browser: Browser owned by the current session

        Returns:
            RunSample with FCP and LCP in milliseconds (None when not observed)

        Raises:
            NavigationTimeout: If the load event does not fire in time
            NavigationError: If navigation fails for any other reason
        """
        context = await browser.new_context(**self._context_options())
        try:
            page = await context.new_page()
            page.on('console', self._forward_console)

            cdp = await context.new_cdp_session(page)
            await self._configure_emulation(cdp)

            bridge = MetricsBridge(fcp_timeout_ms=self.config.fcp_timeout_ms)
            await bridge.install(page)

            async with self._fetcher_factory() as fetcher:
                interceptor = RequestInterceptor(self.engine, fetcher)
                await page.route('**/*', interceptor.handle)

                # The FCP deadline starts before navigation
                fcp_task = asyncio.ensure_future(bridge.wait_for_fcp())
                try:
                    await self._navigate(page)
                    await asyncio.sleep(self.config.settle_ms / 1000)
                    fcp = await fcp_task
                finally:
                    if not fcp_task.done():
                        fcp_task.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await fcp_task

                lcp = await bridge.collect_lcp(page)
                self.logger.debug(f"Interception stats: {interceptor.stats}")

            return RunSample(fcp=fcp, lcp=lcp)
        finally:
            await context.close()

    async def _configure_emulation(self, cdp: CDPSession):
        await cdp.send('Network.enable')
        if self.request.disable_cache:
            await cdp.send('Network.setCacheDisabled', {'cacheDisabled': True})
        await cdp.send('Network.emulateNetworkConditions', self.profile.network_conditions())
        await cdp.send('Emulation.setCPUThrottlingRate', {'rate': self.profile.cpu_slowdown})
        self.logger.debug(
            f"Throttling applied - CPU: {self.profile.cpu_slowdown}x, "
            f"Network latency: {self.profile.latency_ms}ms, cache disabled: {self.request.disable_cache}"
        )

    async def _navigate(self, page: Page):
        timeout = self.config.navigation_timeout_ms
        try:
            await page.goto(self.request.url, wait_until='load', timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Navigation to {self.request.url} exceeded {timeout}ms") from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation to {self.request.url} failed: {e.message}") from e
        self.logger.debug('Page "load" event fired.')

    def _forward_console(self, message: ConsoleMessage):
        self.logger.debug(f"[BROWSER]: {message.text}")


async def capture_screenshot(browser: Browser, url: str, profile: ThrottlingProfile,
                             timeout_ms: int = 60000) -> bytes:
    """Load the page once without rules or throttling and take a full-page PNG."""
    options = {'viewport': profile.viewport}
    if profile.user_agent:
        options['user_agent'] = profile.user_agent
    context: BrowserContext = await browser.new_context(**options)
    try:
        page = await context.new_page()
        try:
            await page.goto(url, wait_until='load', timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Screenshot navigation to {url} exceeded {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationError(f"Screenshot navigation to {url} failed: {e.message}") from e
        return await page.screenshot(full_page=True, type='png')
    finally:
        await context.close()
