import asyncio
import logging
from typing import Any, Dict, List, Optional

from playwright.async_api import Page


# Installed before navigation; runs in the main frame of every new document.
OBSERVER_SCRIPT = """
(() => {
    if (window.self !== window.top) {
        return; // Skip iframes
    }

    // FCP: reported to the host exactly once
    new PerformanceObserver((entryList) => {
        const entries = entryList.getEntries();
        const fcpEntry = entries.find(entry => entry.name === 'first-contentful-paint');
        if (fcpEntry && !window.__fcpReported) {
            window.__fcpReported = true;
            console.log(`[PERF OBSERVER]: FCP detected: ${fcpEntry.startTime}ms`);
            window.__reportFcp(fcpEntry.startTime);
        }
    }).observe({ type: 'paint', buffered: true });

    // LCP: every candidate is kept, the host reads the last one after settle
    window.__lcpUpdates = [];
    new PerformanceObserver((entryList) => {
        entryList.getEntries().forEach(entry => {
            window.__lcpUpdates.push({
                startTime: entry.startTime,
                size: entry.size,
                element: entry.element?.tagName || 'unknown',
                url: entry.url || entry.element?.currentSrc || 'N/A'
            });
        });
    }).observe({ type: 'largest-contentful-paint', buffered: true });
})();
"""

LCP_LOG_EXPRESSION = "() => window.__lcpUpdates || []"


class MetricsBridge:
    """
    Carries paint timings from the page back to the host.

    FCP is pushed by the page through an exposed host function and awaited
    with a timeout. LCP candidates accumulate inside the page and are pulled
    once, after the page has settled.
    """

    FCP_BINDING = '__reportFcp'

    def __init__(self, fcp_timeout_ms: int = 30000):
        self.fcp_timeout_ms = fcp_timeout_ms
        self.logger = logging.getLogger("perfprobe.metrics")
        self._fcp_future: Optional[asyncio.Future] = None
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    async def install(self, page: Page):
        """Expose the FCP callback and register the observers. Call before navigating."""
        self._fcp_future = asyncio.get_running_loop().create_future()
        await page.expose_function(self.FCP_BINDING, self._report_fcp)
        await page.add_init_script(OBSERVER_SCRIPT)
        self._installed = True

    def _report_fcp(self, value: Any):
        self.logger.debug(f"[SERVER]: {self.FCP_BINDING} called from browser with value: {value}")
        if self._fcp_future is None or self._fcp_future.done():
            return
        try:
            self._fcp_future.set_result(float(value))
        except (TypeError, ValueError):
            self.logger.warning(f"Ignoring non-numeric FCP report: {value!r}")

    async def wait_for_fcp(self) -> Optional[float]:
        """
        Wait for the page to report FCP.

        Returns:
            FCP in milliseconds, or None if nothing was reported in time
        """
        if self._fcp_future is None:
            raise RuntimeError("MetricsBridge.install() must run before waiting for FCP")
        try:
            return await asyncio.wait_for(self._fcp_future, timeout=self.fcp_timeout_ms / 1000)
        except asyncio.TimeoutError:
            self.logger.warning(f"FCP not reported within {self.fcp_timeout_ms}ms")
            return None

    async def collect_lcp(self, page: Page) -> Optional[float]:
        """Pull the LCP candidate log once and return the last candidate's start time."""
        candidates: List[Dict[str, Any]] = await page.evaluate(LCP_LOG_EXPRESSION) or []
        if not candidates:
            self.logger.warning("No LCP candidates recorded")
            return None

        for index, candidate in enumerate(candidates, 1):
            self.logger.debug(
                f"[PERF OBSERVER]: LCP update #{index}: {candidate.get('startTime')}ms, "
                f"element: {candidate.get('element')}, size: {candidate.get('size')}"
            )

        final = candidates[-1].get('startTime')
        return None if final is None else float(final)
