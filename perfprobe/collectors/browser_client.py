import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from playwright.async_api import async_playwright, Browser, Playwright

from ..config import EngineConfig
from ..core.perftest import LaunchError


DEFAULT_CHROMIUM_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
]


class BrowserLauncher(ABC):
    """Strategy for obtaining a Chromium browser from a started Playwright instance."""

    def __init__(self, headless: bool = True, args: Optional[List[str]] = None, timeout_ms: int = 60000):
        self.headless = headless
        self.args = list(args) if args is not None else list(DEFAULT_CHROMIUM_ARGS)
        self.timeout_ms = timeout_ms

    @abstractmethod
    async def launch(self, playwright: Playwright) -> Browser:
        pass


class LocalChromiumLauncher(BrowserLauncher):
    """Chromium installed and managed by Playwright (`playwright install chromium`)."""

    async def launch(self, playwright: Playwright) -> Browser:
        return await playwright.chromium.launch(
            headless=self.headless,
            args=self.args,
            timeout=self.timeout_ms,
        )


class PackagedChromiumLauncher(BrowserLauncher):
    """Chromium shipped as a standalone binary, e.g. inside a serverless bundle."""

    def __init__(self, executable_path: str, headless: bool = True,
                 args: Optional[List[str]] = None, timeout_ms: int = 60000):
        super().__init__(headless, args, timeout_ms)
        self.executable_path = executable_path

    async def launch(self, playwright: Playwright) -> Browser:
        return await playwright.chromium.launch(
            executable_path=self.executable_path,
            headless=self.headless,
            args=self.args,
            timeout=self.timeout_ms,
        )


def launcher_from_config(config: EngineConfig) -> BrowserLauncher:
    if config.chromium_path:
        return PackagedChromiumLauncher(config.chromium_path, headless=config.headless)
    return LocalChromiumLauncher(headless=config.headless)


class BrowserSession:
    """
    One browser for one test invocation.

    Used as an async context manager: entering starts Playwright and launches
    the browser, leaving closes the browser and stops Playwright on every exit
    path, including errors and cancellation.
    """

    def __init__(self, launcher: BrowserLauncher):
        self.launcher = launcher
        self.browser: Optional[Browser] = None
        self._playwright: Optional[Playwright] = None
        self.logger = logging.getLogger("perfprobe.browser")

    async def __aenter__(self) -> Browser:
        self.logger.info(f"Launching browser with {type(self.launcher).__name__}")
        try:
            self._playwright = await async_playwright().start()
            self.browser = await self.launcher.launch(self._playwright)
        except Exception as e:
            await self.close()
            raise LaunchError(f"Browser failed to start: {e}") from e
        except BaseException:
            # Cancelled mid-launch; __aexit__ will not run
            await self.close()
            raise
        self.logger.info("Browser launched")
        return self.browser

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        try:
            if self.browser is not None:
                self.logger.info("Closing browser")
                await self.browser.close()
        finally:
            self.browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
