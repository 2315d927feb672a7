"""
Test orchestration - drives repeated, isolated page loads for one request.

Workflow for a non-dry-run request:
1. Launch one browser session
2. Run N sequential, isolated measurements (RunExecutor)
3. Aggregate FCP/LCP medians
4. Load the page once more without rules or throttling for a screenshot
5. Close the session on every exit path

The whole workflow races a global deadline of runs x per-run budget.
"""

import asyncio
import base64
import logging
import time
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from playwright.async_api import Browser

from ..collectors.browser_client import BrowserLauncher, BrowserSession, launcher_from_config
from ..collectors.http_client import DocumentFetcher
from ..config import EngineConfig
from ..metrics.aggregator import aggregate
from .perftest import (
    AggregateResult, AverageMetrics, RunSample, PerfTestRequest, PerfTestError,
    ValidationError, MalformedRuleError, GlobalTimeout, DRY_RUN_SENTINEL,
    format_validation_errors
)
from .run_executor import RunExecutor, capture_screenshot
from .throttling import get_profile


def parse_request(payload: Optional[Dict[str, Any]]) -> PerfTestRequest:
    """
    Build a PerfTestRequest from a wire payload.

    Raises:
        MalformedRuleError: If html_replace.find is not a valid regex
        ValidationError: For any other invalid field
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return PerfTestRequest.model_validate(payload)
    except PydanticValidationError as e:
        errors = e.errors()
        message = format_validation_errors(errors)
        if any('html_replace' in error.get('loc', ()) for error in errors):
            raise MalformedRuleError(message) from e
        raise ValidationError(message) from e


class Orchestrator:
    """
    Owns the browser session for one performance test and drives its runs.

    The browser is obtained through an injected launcher strategy, so local
    and packaged Chromium builds share the same orchestration.
    """

    def __init__(self,
                 config: Optional[EngineConfig] = None,
                 launcher: Optional[BrowserLauncher] = None,
                 session_factory: Optional[Callable[[], AsyncContextManager[Browser]]] = None,
                 fetcher_factory: Optional[Callable[[], DocumentFetcher]] = None):
        """
        Initialize orchestrator.

        Args:
            config: Engine timeouts and browser settings, from the environment if None
            launcher: Browser launch strategy, derived from config if None
            session_factory: Produces the browser session context manager
            fetcher_factory: Produces the out-of-band document fetcher for each run
        """
        self.logger = logging.getLogger("perfprobe.orchestrator")
        self.logger.setLevel(logging.INFO)

        self.config = config or EngineConfig.from_env()
        self.launcher = launcher or launcher_from_config(self.config)
        self._session_factory = session_factory or (lambda: BrowserSession(self.launcher))
        self._fetcher_factory = fetcher_factory

    def global_deadline_seconds(self, request: PerfTestRequest) -> float:
        return request.runs * self.config.run_budget_ms / 1000

    async def run_payload(self, payload: Optional[Dict[str, Any]]) -> AggregateResult:
        return await self.run(parse_request(payload))

    async def run(self, request: PerfTestRequest) -> AggregateResult:
        """
        Execute a complete performance test.

        Args:
            request: Validated test request

        Returns:
            AggregateResult with medians, per-run samples and a screenshot

        Raises:
            LaunchError: If the browser cannot be started
            NavigationTimeout: If any run's navigation times out
            GlobalTimeout: If the whole test exceeds its deadline
        """
        if request.dry_run:
            self.logger.info("Dry run requested")
            return self._dry_run_result(request)

        deadline = self.global_deadline_seconds(request)
        self.logger.info(
            f"Starting test for URL: {request.url} in {request.mode.value} mode "
            f"with {request.runs} runs (deadline {deadline:.0f}s)"
        )
        start_time = time.time()
        try:
            result = await asyncio.wait_for(self._run_session(request), timeout=deadline)
        except asyncio.TimeoutError as e:
            self.logger.error(f"Global deadline of {deadline:.0f}s exceeded for {request.url}")
            raise GlobalTimeout(f"Test exceeded global deadline of {deadline:.0f}s") from e

        self.logger.info(f"Test finished in {time.time() - start_time:.2f}s: {result.average_metrics.to_response()}")
        return result

    async def _run_session(self, request: PerfTestRequest) -> AggregateResult:
        async with self._session_factory() as browser:
            executor = RunExecutor(request, self.config, self._fetcher_factory)
            samples: List[RunSample] = []

            for i in range(request.runs):
                self.logger.info(f"Run {i + 1}/{request.runs}")
                sample = await executor.execute(browser)
                samples.append(sample)
                self.logger.info(
                    f"Run {i + 1} complete: FCP={_format_ms(sample.fcp)}, LCP={_format_ms(sample.lcp)}"
                )

            average = aggregate(samples)

            self.logger.info("Taking screenshot...")
            png = await capture_screenshot(
                browser, request.url, get_profile(request.mode), self.config.navigation_timeout_ms
            )

        return AggregateResult(
            parameters=request,
            average_metrics=average,
            individual_runs=tuple(samples),
            screenshot=base64.b64encode(png).decode('ascii'),
        )

    def _dry_run_result(self, request: PerfTestRequest) -> AggregateResult:
        sentinel = RunSample(fcp=DRY_RUN_SENTINEL, lcp=DRY_RUN_SENTINEL)
        return AggregateResult(
            parameters=request,
            average_metrics=AverageMetrics(fcp=DRY_RUN_SENTINEL, lcp=DRY_RUN_SENTINEL),
            individual_runs=(sentinel,),
            screenshot='',
            message='Dry run successful',
        )


def _format_ms(value: Optional[float]) -> str:
    return 'n/a' if value is None else f"{value:.2f}ms"


async def handle_request(payload: Optional[Dict[str, Any]],
                         orchestrator: Optional[Orchestrator] = None) -> Tuple[int, Dict[str, Any]]:
    """
    Transport-independent entry point.

    Returns:
        (status code, JSON-serializable body); errors carry 'error' and 'details'
    """
    logger = logging.getLogger("perfprobe.orchestrator")
    try:
        request = parse_request(payload)
    except ValidationError as e:
        logger.warning(f"Rejected request: {e}")
        return 400, {'error': 'Invalid request', 'details': str(e)}

    try:
        orchestrator = orchestrator or Orchestrator()
        result = await orchestrator.run(request)
    except GlobalTimeout as e:
        return 504, {'error': 'Test timed out', 'details': str(e)}
    except PerfTestError as e:
        logger.error(f"Test failed: {type(e).__name__}: {e}")
        return 500, {'error': 'Test failed', 'details': str(e)}
    except Exception as e:
        logger.exception("Unexpected error during test")
        return 500, {'error': 'Test failed', 'details': str(e)}

    return 200, result.to_response()
