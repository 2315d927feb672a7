import logging
from typing import Dict

from playwright.async_api import Error as PlaywrightError, Route

from ..collectors.http_client import DocumentFetcher, FetchedDocument
from ..core.perftest import FetchError, InterceptionError
from .engine import RuleAction, RuleEngine


class RequestInterceptor:
    """
    Playwright route handler that applies a RuleEngine to every request of a page.

    Every route is resolved exactly once: aborted, fulfilled or continued.
    A failure while handling one request aborts that request and never
    reaches the other in-flight requests.
    """

    # The fulfilled body is never compressed
    STRIPPED_RESPONSE_HEADERS = frozenset({'content-encoding', 'content-length', 'transfer-encoding'})

    def __init__(self, engine: RuleEngine, fetcher: DocumentFetcher):
        self.engine = engine
        self.fetcher = fetcher
        self.logger = logging.getLogger("perfprobe.rules")
        self.stats = {'blocked': 0, 'rewritten': 0, 'passed_through': 0, 'continued': 0, 'failed': 0}

    async def handle(self, route: Route):
        request = route.request
        try:
            action = self.engine.decide(request.url, request.resource_type, request.is_navigation_request())

            if action is RuleAction.ABORT:
                self.logger.info(f"Blocking: {request.url}")
                self.stats['blocked'] += 1
                await route.abort()
            elif action is RuleAction.REWRITE:
                await self._rewrite(route)
            else:
                self.stats['continued'] += 1
                await route.continue_()

        except Exception as e:
            error = InterceptionError(f"Failed to handle {request.url}: {e}")
            self.logger.error(str(error))
            self.stats['failed'] += 1
            await self._abort_unresolved(route)

    async def _rewrite(self, route: Route):
        request = route.request
        try:
            document = await self.fetcher.fetch(request.url, request.method, request.headers)
        except FetchError as e:
            self.logger.error(f"[INTERCEPTOR ERROR]: {e}")
            self.stats['failed'] += 1
            await route.abort('failed')
            return

        headers = self._response_headers(document)

        if document.ok and document.is_html:
            body = document.encode(self.engine.rewrite_html(document.text()))
            self.stats['rewritten'] += 1
            await route.fulfill(status=document.status, headers=headers, body=body)
            return

        self.logger.info(
            f"Passing through unmodified document ({document.status}, "
            f"{document.content_type or 'no content type'}): {request.url}"
        )
        self.stats['passed_through'] += 1
        await route.fulfill(status=document.status, headers=headers, body=document.body)

    def _response_headers(self, document: FetchedDocument) -> Dict[str, str]:
        return {
            name: value for name, value in document.headers.items()
            if name.lower() not in self.STRIPPED_RESPONSE_HEADERS
        }

    async def _abort_unresolved(self, route: Route):
        try:
            await route.abort('failed')
        except PlaywrightError as e:
            self.logger.warning(f"Could not abort request after interception error: {e}")
